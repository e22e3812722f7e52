"""
Order Service

Business logic for the order store:
- Order creation with catalog price snapshots
- Order edits through line-item reconciliation
- Status progression, cancellation and payment
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy.orm import selectinload
from sqlmodel import Session, func, select

from . import models
from .cart import Cart, cart_from_items
from .modifiers import resolve_modifiers
from .plates import encode_notes, split_notes
from .reconcile import LineKey, ReconciliationPlan, TargetLine, apply_plan, line_key, plan_reconciliation

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")


class OrderServiceError(Exception):
    """Base class for order errors surfaced to staff"""


class StoreNotFoundError(OrderServiceError):
    def __init__(self, store_id: int):
        self.store_id = store_id
        super().__init__(f"Store {store_id} not found")


class OrderNotFoundError(OrderServiceError):
    def __init__(self, order_id: int):
        self.order_id = order_id
        super().__init__(f"Order {order_id} not found")


class MenuItemUnavailableError(OrderServiceError):
    def __init__(self, menu_item_id: int):
        self.menu_item_id = menu_item_id
        super().__init__(f"Menu item {menu_item_id} is not available")


class EmptyCartError(OrderServiceError):
    def __init__(self):
        super().__init__("Order must have at least one item")


class InvalidStatusTransitionError(OrderServiceError):
    def __init__(self, current: models.OrderStatus, requested: models.OrderStatus):
        self.current = current
        self.requested = requested
        super().__init__(f"Cannot move order from '{current.value}' to '{requested.value}'")


class OrderLockedError(OrderServiceError):
    def __init__(self, order: models.Order):
        self.order_id = order.id
        super().__init__(f"Order #{order.order_number} is {order.status.value} and can no longer be edited")


# ============ LOOKUPS ============

def get_store(session: Session, store_id: int) -> models.Store:
    store = session.get(models.Store, store_id)
    if not store:
        raise StoreNotFoundError(store_id)
    return store


def get_order(session: Session, store_id: int, order_id: int) -> models.Order:
    order = session.exec(
        select(models.Order).where(
            models.Order.id == order_id,
            models.Order.store_id == store_id,
        )
    ).first()
    if not order:
        raise OrderNotFoundError(order_id)
    return order


def get_order_items(session: Session, order_id: int, active_only: bool = False) -> list[models.OrderItem]:
    statement = (
        select(models.OrderItem)
        .where(models.OrderItem.order_id == order_id)
        .order_by(models.OrderItem.created_at.asc(), models.OrderItem.id.asc())
    )
    if active_only:
        statement = statement.where(models.OrderItem.status == models.OrderItemStatus.active)
    return list(session.exec(statement).all())


def list_active_orders(session: Session, store_id: int) -> list[models.Order]:
    """
    Orders still in service (not paid, not cancelled), oldest first.

    This is what screens refetch on every realtime event, so it must stay a
    plain read.
    """
    statement = (
        select(models.Order)
        .where(
            models.Order.store_id == store_id,
            models.Order.status != models.OrderStatus.paid,
            models.Order.status != models.OrderStatus.cancelled,
        )
        .options(selectinload(models.Order.items).selectinload(models.OrderItem.menu_item))
        .order_by(models.Order.created_at.asc(), models.Order.id.asc())
    )
    return list(session.exec(statement).all())


def order_cart(session: Session, store_id: int, order_id: int) -> Cart:
    """Editable cart for an existing order."""
    order = get_order(session, store_id, order_id)
    items = get_order_items(session, order.id, active_only=True)
    return cart_from_items(items, tip=order.tip_amount)


# ============ PRICING ============

def compute_total(items: list[models.OrderItem], tip: Decimal | None) -> Decimal:
    """Sum of active lines (unit price incl. modifiers x quantity) plus tip."""
    subtotal = sum(
        (Decimal(i.price_at_time) * i.quantity for i in items if i.status == models.OrderItemStatus.active),
        Decimal("0"),
    )
    return (subtotal + Decimal(tip or 0)).quantize(CENTS)


def load_menu_items(session: Session, store_id: int, menu_ids: set[int]) -> dict[int, models.MenuItem]:
    if not menu_ids:
        return {}
    return {
        m.id: m
        for m in session.exec(
            select(models.MenuItem).where(
                models.MenuItem.store_id == store_id,
                models.MenuItem.id.in_(menu_ids),
            )
        ).all()
    }


def price_line(menu_item: models.MenuItem | None, line: models.CartLineIn) -> tuple[Decimal, list[dict]]:
    """Unit price snapshot (base price + modifier deltas) and the modifier snapshot."""
    if menu_item is None or not menu_item.available:
        raise MenuItemUnavailableError(line.menu_item_id)
    unit_delta, snapshot = resolve_modifiers(menu_item, line.modifiers)
    return (Decimal(menu_item.price) + unit_delta).quantize(CENTS), snapshot


def build_target_lines(session: Session, store_id: int, lines: list[models.CartLineIn]) -> list[TargetLine]:
    """Resolve every cart line against the current catalog."""
    menu_items = load_menu_items(session, store_id, {line.menu_item_id for line in lines})

    targets = []
    for line in lines:
        unit_price, snapshot = price_line(menu_items.get(line.menu_item_id), line)
        targets.append(TargetLine(
            key=line_key(line.menu_item_id, max(1, line.plate), line.notes, snapshot),
            quantity=line.quantity,
            unit_price=unit_price,
            modifiers=snapshot,
        ))
    return targets


def request_line_key(line: models.CartLineIn) -> LineKey:
    return line_key(line.menu_item_id, max(1, line.plate), line.notes, line.modifiers)


def price_inserts(
    session: Session,
    store_id: int,
    plan: ReconciliationPlan,
    lines: list[models.CartLineIn],
) -> None:
    """
    Snapshot catalog prices for the lines the plan inserts.

    Only growing lines are checked, so an item taken off the menu after it
    was ordered can still be kept, reduced or removed.
    """
    if not plan.inserts:
        return
    by_key: dict[LineKey, models.CartLineIn] = {}
    for line in lines:
        by_key.setdefault(request_line_key(line), line)
    menu_items = load_menu_items(session, store_id, {i.key.menu_item_id for i in plan.inserts})

    for insert in plan.inserts:
        insert.unit_price, insert.modifiers = price_line(
            menu_items.get(insert.key.menu_item_id), by_key[insert.key]
        )


def next_order_number(session: Session, store_id: int) -> int:
    current_max = session.exec(
        select(func.max(models.Order.order_number)).where(models.Order.store_id == store_id)
    ).one()
    return (current_max or 0) + 1


# ============ MUTATIONS ============

def create_order(session: Session, store_id: int, data: models.OrderCreate) -> models.Order:
    """Create an order in `queue` with one row per cart line."""
    get_store(session, store_id)

    lines = [line for line in data.items if line.quantity > 0]
    if not lines:
        raise EmptyCartError()
    targets = build_target_lines(session, store_id, lines)

    now = models.utcnow()
    order = models.Order(
        store_id=store_id,
        order_number=next_order_number(session, store_id),
        table_number=(data.table_number or "").strip() or "Counter",
        customer_name=data.customer_name,
        status=models.OrderStatus.queue,
        tip_amount=Decimal(data.tip_amount or 0).quantize(CENTS),
        notes=data.notes,
        created_at=now,
    )
    try:
        session.add(order)
        session.flush()

        items = []
        for target in targets:
            item = models.OrderItem(
                order_id=order.id,
                menu_item_id=target.key.menu_item_id,
                quantity=target.quantity,
                price_at_time=target.unit_price,
                notes=encode_notes(target.key.plate, target.key.notes),
                modifiers=target.modifiers or None,
                created_at=now,
            )
            session.add(item)
            items.append(item)

        order.total_amount = compute_total(items, order.tip_amount)
        session.add(order)
        session.commit()
    except Exception:
        session.rollback()
        logger.error(f"Failed to create order for store {store_id}", exc_info=True)
        raise

    session.refresh(order)
    logger.info(f"Created order #{order.order_number} (id={order.id}) with {len(items)} line(s)")
    return order


def update_order_items(
    session: Session,
    store_id: int,
    order_id: int,
    data: models.OrderItemsUpdate,
) -> tuple[models.Order, ReconciliationPlan, bool]:
    """
    Bring the order's items in line with the edited cart.

    The cancel/reduce/insert batches and the refreshed total are committed in
    one transaction; any failure rolls all of them back. The returned flag
    tells whether anything was written (items or tip).
    """
    order = get_order(session, store_id, order_id)
    if order.status in models.TERMINAL_STATUSES:
        raise OrderLockedError(order)

    current = get_order_items(session, order.id, active_only=True)
    targets = [TargetLine(key=request_line_key(line), quantity=line.quantity) for line in data.items]
    plan = plan_reconciliation(current, targets)
    price_inserts(session, store_id, plan, data.items)

    tip_changed = data.tip_amount is not None and Decimal(data.tip_amount) != Decimal(order.tip_amount)
    if plan.is_empty and not tip_changed:
        logger.info(f"Order #{order.order_number}: cart unchanged, nothing to write")
        return order, plan, False

    try:
        apply_plan(session, order, current, plan)
        if tip_changed:
            order.tip_amount = Decimal(data.tip_amount).quantize(CENTS)
        session.flush()
        order.total_amount = compute_total(get_order_items(session, order.id, active_only=True), order.tip_amount)
        session.add(order)
        session.commit()
    except Exception:
        session.rollback()
        logger.error(f"Failed to update items of order {order_id}", exc_info=True)
        raise

    session.refresh(order)
    logger.info(
        f"Order #{order.order_number} reconciled: {len(plan.cancel_ids)} cancelled, "
        f"{len(plan.reductions)} reduced, {len(plan.inserts)} inserted"
    )
    return order, plan, True


def can_transition(current: models.OrderStatus, requested: models.OrderStatus) -> bool:
    """Forward moves along the flow; cancellation from any non-terminal state."""
    if current in models.TERMINAL_STATUSES:
        return False
    if requested == models.OrderStatus.cancelled:
        return True
    return models.ORDER_STATUS_FLOW.index(requested) > models.ORDER_STATUS_FLOW.index(current)


def update_status(
    session: Session,
    store_id: int,
    order_id: int,
    status: models.OrderStatus,
) -> models.Order:
    order = get_order(session, store_id, order_id)
    if status == models.OrderStatus.paid:
        return mark_paid(session, store_id, order_id)
    if status == models.OrderStatus.cancelled:
        return cancel_order(session, store_id, order_id)
    if not can_transition(order.status, status):
        raise InvalidStatusTransitionError(order.status, status)

    try:
        order.status = status
        session.add(order)
        session.commit()
    except Exception:
        session.rollback()
        logger.error(f"Failed to move order {order_id} to {status.value}", exc_info=True)
        raise

    session.refresh(order)
    return order


def cancel_order(session: Session, store_id: int, order_id: int) -> models.Order:
    """Cancel the order and every active item; rows are kept for history."""
    order = get_order(session, store_id, order_id)
    if not can_transition(order.status, models.OrderStatus.cancelled):
        raise InvalidStatusTransitionError(order.status, models.OrderStatus.cancelled)

    now = models.utcnow()
    try:
        for item in get_order_items(session, order.id, active_only=True):
            item.status = models.OrderItemStatus.cancelled
            item.cancelled_at = now
            session.add(item)
        order.status = models.OrderStatus.cancelled
        session.add(order)
        session.commit()
    except Exception:
        session.rollback()
        logger.error(f"Failed to cancel order {order_id}", exc_info=True)
        raise

    session.refresh(order)
    return order


def mark_paid(
    session: Session,
    store_id: int,
    order_id: int,
    tip_amount: Decimal | None = None,
    payment_method: str = "cash",
    charged_amount: Decimal | None = None,
) -> models.Order:
    """
    Finalize the order: tip and total are snapshotted at payment time.

    ``charged_amount`` is what a card terminal actually collected. It becomes
    the recorded total even if the items changed while the payment was open.
    """
    order = get_order(session, store_id, order_id)
    if not can_transition(order.status, models.OrderStatus.paid):
        raise InvalidStatusTransitionError(order.status, models.OrderStatus.paid)

    try:
        if tip_amount is not None:
            order.tip_amount = Decimal(tip_amount).quantize(CENTS)
        total = compute_total(get_order_items(session, order.id, active_only=True), order.tip_amount)
        if charged_amount is not None:
            charged = Decimal(charged_amount).quantize(CENTS)
            if charged != total:
                logger.warning(
                    f"Order #{order.order_number} changed during payment: charged {charged}, items total {total}"
                )
            total = charged
        order.total_amount = total
        order.status = models.OrderStatus.paid
        order.paid_at = datetime.now(timezone.utc)
        order.payment_method = payment_method
        session.add(order)
        session.commit()
    except Exception:
        session.rollback()
        logger.error(f"Failed to mark order {order_id} paid", exc_info=True)
        raise

    session.refresh(order)
    logger.info(f"Order #{order.order_number} paid ({payment_method}): {order.total_amount}")
    return order


# ============ SERIALIZATION ============

def serialize_item(item: models.OrderItem) -> dict:
    plate, notes = split_notes(item.notes)
    return {
        "id": item.id,
        "menu_item_id": item.menu_item_id,
        "name": item.menu_item.name if item.menu_item else "Unknown Item",
        "quantity": item.quantity,
        "price_at_time": item.price_at_time,
        "plate": plate,
        "notes": notes,
        "modifiers": item.modifiers or [],
        "status": item.status.value,
        "created_at": models.as_utc(item.created_at).isoformat(),
    }


def serialize_order(order: models.Order, items: list[models.OrderItem] | None = None) -> dict:
    if items is None:
        items = sorted(order.items, key=lambda i: (models.as_utc(i.created_at), i.id or 0))
    return {
        "id": order.id,
        "order_number": order.order_number,
        "table_number": order.table_number,
        "customer_name": order.customer_name,
        "status": order.status.value,
        "notes": order.notes,
        "total_amount": order.total_amount,
        "tip_amount": order.tip_amount,
        "created_at": models.as_utc(order.created_at).isoformat(),
        "paid_at": models.as_utc(order.paid_at).isoformat() if order.paid_at else None,
        "payment_method": order.payment_method,
        "items": [serialize_item(item) for item in items],
        "items_count": sum(i.quantity for i in items if i.status == models.OrderItemStatus.active),
    }


def serialize_cart(cart: Cart) -> dict:
    return {
        "items": [
            {
                "menu_item_id": line.menu_item_id,
                "name": line.name,
                "unit_price": line.unit_price,
                "quantity": line.quantity,
                "plate": line.plate,
                "notes": line.notes,
                "modifiers": [
                    {"group_id": g, "option_id": o, "quantity": q, "piece": p}
                    for g, o, q, p in line.modifiers
                ],
            }
            for line in cart.lines
        ],
        "subtotal": cart.subtotal,
        "tip_amount": cart.tip,
        "total": cart.total,
    }
