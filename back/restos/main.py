import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlmodel import Session, select

from . import models, order_service
from .analytics_routes import router as analytics_router
from .db import check_db_connection, create_db_and_tables, get_session
from .kitchen import bucket_order_items
from .menu_routes import router as menu_router
from .modifiers import ModifierValidationError
from .payment_routes import router as payment_router
from .realtime import publish_order_update
from .settings import settings

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting application...")
    create_db_and_tables()
    yield


app = FastAPI(title="RestOS API", lifespan=lifespan)

# Parse CORS origins from environment (comma-separated)
cors_origins_list = [
    origin.strip()
    for origin in settings.cors_origins.split(",")
    if origin.strip()
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(menu_router, tags=["Menu"])
app.include_router(analytics_router, tags=["Analytics"])
app.include_router(payment_router, tags=["Payments"])


# ============ ERRORS ============

_ERROR_STATUS = {
    order_service.StoreNotFoundError: 404,
    order_service.OrderNotFoundError: 404,
    order_service.MenuItemUnavailableError: 400,
    order_service.EmptyCartError: 400,
    order_service.InvalidStatusTransitionError: 409,
    order_service.OrderLockedError: 409,
}


@app.exception_handler(order_service.OrderServiceError)
async def order_error_handler(request: Request, exc: order_service.OrderServiceError) -> JSONResponse:
    status_code = _ERROR_STATUS.get(type(exc), 400)
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


@app.exception_handler(ModifierValidationError)
async def modifier_error_handler(request: Request, exc: ModifierValidationError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"detail": str(exc), "menu_item_id": exc.menu_item_id})


# ============ HEALTH ============

@app.get("/health")
def health() -> dict:
    return {"status": "ok"}


@app.get("/health/db")
def health_db() -> dict:
    """Check database connection."""
    try:
        check_db_connection()
    except Exception as e:
        logger.error(f"Database health check failed: {e}", exc_info=True)
        raise HTTPException(status_code=503, detail=f"Database error: {e}")
    return {"status": "ok", "database": "connected"}


# ============ STORES ============

@app.get("/stores")
def list_stores(session: Session = Depends(get_session)) -> list[dict]:
    stores = session.exec(select(models.Store).order_by(models.Store.created_at.desc(), models.Store.id.desc())).all()
    return [
        {"id": s.id, "name": s.name, "created_at": models.as_utc(s.created_at).isoformat()}
        for s in stores
    ]


@app.post("/stores")
def create_store(store_data: models.StoreCreate, session: Session = Depends(get_session)) -> dict:
    name = store_data.name.strip()
    if not name:
        raise HTTPException(status_code=400, detail="Store name is required")
    store = models.Store(name=name)
    session.add(store)
    session.commit()
    session.refresh(store)
    logger.info(f"Created store {store.id} ({store.name})")
    return {"id": store.id, "name": store.name, "created_at": models.as_utc(store.created_at).isoformat()}


# ============ ORDER ENTRY (POS) ============

@app.get("/{store_id}/pos/orders")
def list_active_orders(store_id: int, session: Session = Depends(get_session)) -> list[dict]:
    """Orders not yet paid or cancelled, oldest first. Safe to refetch at any time."""
    order_service.get_store(session, store_id)
    return [order_service.serialize_order(o) for o in order_service.list_active_orders(session, store_id)]


@app.post("/{store_id}/pos/orders")
def create_order(
    store_id: int,
    order_data: models.OrderCreate,
    session: Session = Depends(get_session)
) -> dict:
    order = order_service.create_order(session, store_id, order_data)

    publish_order_update(store_id, {
        "type": "new_order",
        "order_id": order.id,
        "order_number": order.order_number,
        "table_number": order.table_number,
        "status": order.status.value,
    })
    return order_service.serialize_order(order)


@app.get("/{store_id}/pos/orders/{order_id}")
def get_order(store_id: int, order_id: int, session: Session = Depends(get_session)) -> dict:
    order = order_service.get_order(session, store_id, order_id)
    return order_service.serialize_order(order, order_service.get_order_items(session, order.id))


@app.get("/{store_id}/pos/orders/{order_id}/cart")
def get_order_cart(store_id: int, order_id: int, session: Session = Depends(get_session)) -> dict:
    """Current order as an editable cart; saving it unchanged writes nothing."""
    return order_service.serialize_cart(order_service.order_cart(session, store_id, order_id))


@app.put("/{store_id}/pos/orders/{order_id}/items")
def update_order_items(
    store_id: int,
    order_id: int,
    update: models.OrderItemsUpdate,
    session: Session = Depends(get_session)
) -> dict:
    order, plan, written = order_service.update_order_items(session, store_id, order_id, update)

    if written:
        publish_order_update(store_id, {
            "type": "items_updated",
            "order_id": order.id,
            "order_number": order.order_number,
            "status": order.status.value,
        })
    result = order_service.serialize_order(order, order_service.get_order_items(session, order.id))
    result["changes"] = {
        "cancelled": len(plan.cancel_ids),
        "reduced": len(plan.reductions),
        "inserted": len(plan.inserts),
    }
    return result


@app.put("/{store_id}/pos/orders/{order_id}/status")
def update_order_status(
    store_id: int,
    order_id: int,
    status_update: models.OrderStatusUpdate,
    session: Session = Depends(get_session)
) -> dict:
    order = order_service.update_status(session, store_id, order_id, status_update.status)

    publish_order_update(store_id, {
        "type": "status_update",
        "order_id": order.id,
        "order_number": order.order_number,
        "status": order.status.value,
    })
    return {"status": "updated", "order_id": order.id, "new_status": order.status.value}


@app.put("/{store_id}/pos/orders/{order_id}/mark-paid")
def mark_order_paid(
    store_id: int,
    order_id: int,
    payment_data: models.OrderMarkPaid,
    session: Session = Depends(get_session)
) -> dict:
    """Mark order as paid manually (cash or external terminal)."""
    order = order_service.mark_paid(
        session, store_id, order_id,
        tip_amount=payment_data.tip_amount,
        payment_method=payment_data.payment_method,
    )

    publish_order_update(store_id, {
        "type": "order_paid",
        "order_id": order.id,
        "order_number": order.order_number,
        "payment_method": order.payment_method,
    })
    return {
        "status": "paid",
        "order_id": order.id,
        "total_amount": order.total_amount,
        "tip_amount": order.tip_amount,
        "payment_method": order.payment_method,
        "paid_at": models.as_utc(order.paid_at).isoformat(),
    }


@app.delete("/{store_id}/pos/orders/{order_id}")
def cancel_order(store_id: int, order_id: int, session: Session = Depends(get_session)) -> dict:
    order = order_service.cancel_order(session, store_id, order_id)

    publish_order_update(store_id, {
        "type": "order_cancelled",
        "order_id": order.id,
        "order_number": order.order_number,
        "status": order.status.value,
    })
    return {"status": "order_cancelled", "order_id": order.id}


# ============ KITCHEN ============

KITCHEN_COLUMNS = [
    (models.OrderStatus.queue, "On Queue"),
    (models.OrderStatus.preparing, "Preparing"),
    (models.OrderStatus.ready, "Ready to Serve"),
]

KITCHEN_ACTIONS = {
    models.OrderStatus.queue: [models.OrderStatus.preparing, models.OrderStatus.cancelled],
    models.OrderStatus.preparing: [models.OrderStatus.ready, models.OrderStatus.cancelled],
    models.OrderStatus.ready: [models.OrderStatus.served],
}


def _serialize_plates(groups) -> list[dict]:
    return [
        {"plate": g.plate, "items": [order_service.serialize_item(i) for i in g.items]}
        for g in groups
    ]


@app.get("/{store_id}/kitchen")
def kitchen_display(
    store_id: int,
    session: Session = Depends(get_session)
) -> dict:
    order_service.get_store(session, store_id)
    orders = order_service.list_active_orders(session, store_id)

    columns = []
    for status, label in KITCHEN_COLUMNS:
        cards = []
        for order in (o for o in orders if o.status == status):
            buckets = bucket_order_items(order.created_at, order.items, settings.kitchen_new_item_threshold_ms)
            card = order_service.serialize_order(order, items=[])
            del card["items"]
            card["items_count"] = sum(
                i.quantity for i in order.items if i.status == models.OrderItemStatus.active
            )
            card["buckets"] = {
                "new": _serialize_plates(buckets.new),
                "prepared": _serialize_plates(buckets.prepared),
                "cancelled": _serialize_plates(buckets.cancelled),
            }
            card["actions"] = [s.value for s in KITCHEN_ACTIONS[status]]
            cards.append(card)
        columns.append({"id": status.value, "label": label, "count": len(cards), "orders": cards})

    return {"columns": columns}
