"""
Payment API Routes

Thin proxy to the Mercado Pago Point API (the access token never reaches the
browser) and the terminal checkout flow for an order.
"""

import logging
from decimal import Decimal

import httpx
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from fastapi.responses import JSONResponse
from sqlmodel import Session

from . import db, models, order_service
from .db import get_session
from .payments import MercadoPagoPointClient, PaymentOutcome, PointApiError, poll_payment_intent
from .realtime import publish_order_update
from .settings import settings

logger = logging.getLogger(__name__)

router = APIRouter()


def get_point_client() -> MercadoPagoPointClient | None:
    if not settings.mercadopago_access_token:
        return None
    return MercadoPagoPointClient(settings.mercadopago_access_token, settings.mercadopago_api_url)


def _not_configured() -> JSONResponse:
    return JSONResponse(status_code=500, content={"error": "Mercado Pago Access Token not configured"})


@router.post("/api/mercadopago/point")
async def create_point_payment(
    payment: models.PointPaymentCreate,
    client: MercadoPagoPointClient | None = Depends(get_point_client),
):
    if client is None:
        return _not_configured()
    if not payment.device_id:
        return JSONResponse(status_code=400, content={"error": "Device ID is required"})

    try:
        return await client.create_payment_intent(payment.device_id, payment.amount, payment.order_id)
    except PointApiError as e:
        return JSONResponse(status_code=e.status_code, content={"error": str(e)})
    except httpx.HTTPError as e:
        logger.error(f"Mercado Pago unreachable: {e}", exc_info=True)
        return JSONResponse(status_code=500, content={"error": "Internal Server Error"})


@router.get("/api/mercadopago/point")
async def get_point_payment(
    device_id: str | None = None,
    payment_intent_id: str | None = None,
    client: MercadoPagoPointClient | None = Depends(get_point_client),
):
    if client is None:
        return _not_configured()
    if not device_id or not payment_intent_id:
        return JSONResponse(status_code=400, content={"error": "Missing parameters"})

    try:
        return await client.get_payment_intent(device_id, payment_intent_id)
    except PointApiError as e:
        return JSONResponse(status_code=e.status_code, content={"error": str(e)})
    except httpx.HTTPError as e:
        logger.error(f"Mercado Pago unreachable: {e}", exc_info=True)
        return JSONResponse(status_code=500, content={"error": "Internal Server Error"})


async def settle_terminal_payment(
    client: MercadoPagoPointClient,
    store_id: int,
    order_id: int,
    device_id: str,
    payment_intent_id: str,
    amount: Decimal,
) -> PaymentOutcome:
    """
    Poll the terminal; a finished payment goes through the manual mark-paid
    path and records the amount the terminal was asked to charge.
    """
    outcome, state = await poll_payment_intent(
        client,
        device_id,
        payment_intent_id,
        interval=settings.payment_poll_interval_seconds,
        max_attempts=settings.payment_poll_max_attempts,
    )

    if outcome == PaymentOutcome.paid:
        with Session(db.engine) as session:
            try:
                order_service.mark_paid(
                    session, store_id, order_id, payment_method="terminal", charged_amount=amount
                )
            except order_service.OrderServiceError as e:
                logger.error(f"Terminal payment {payment_intent_id} finished but order {order_id} not updated: {e}")
                outcome = PaymentOutcome.failed

    logger.info(f"Terminal payment {payment_intent_id} for order {order_id}: {outcome.value} ({state})")
    publish_order_update(store_id, {
        "type": "terminal_payment",
        "order_id": order_id,
        "payment_intent_id": payment_intent_id,
        "outcome": outcome.value,
        "state": state,
    })
    return outcome


@router.post("/{store_id}/pos/orders/{order_id}/terminal-checkout")
async def terminal_checkout(
    store_id: int,
    order_id: int,
    checkout: models.TerminalCheckout,
    background_tasks: BackgroundTasks,
    client: MercadoPagoPointClient | None = Depends(get_point_client),
    session: Session = Depends(get_session),
):
    """Send the order total to a card terminal and settle it in the background."""
    if client is None:
        return _not_configured()

    order = order_service.get_order(session, store_id, order_id)
    if order.status in models.TERMINAL_STATUSES:
        raise HTTPException(status_code=409, detail=f"Order is already {order.status.value}")

    items = order_service.get_order_items(session, order.id, active_only=True)
    amount = order_service.compute_total(items, order.tip_amount)
    if amount <= 0:
        raise HTTPException(status_code=400, detail="Order has no items")

    try:
        intent = await client.create_payment_intent(checkout.device_id, float(amount), str(order.id))
    except PointApiError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    except httpx.HTTPError as e:
        logger.error(f"Mercado Pago unreachable: {e}", exc_info=True)
        return JSONResponse(status_code=500, content={"error": "Internal Server Error"})

    payment_intent_id = intent.get("id")
    if not payment_intent_id:
        logger.error(f"Mercado Pago returned no payment intent id for order {order.id}: {intent}")
        return JSONResponse(status_code=502, content={"error": "Payment terminal returned no payment intent"})

    background_tasks.add_task(
        settle_terminal_payment, client, store_id, order.id, checkout.device_id, payment_intent_id, amount
    )
    return {"status": "pending", "order_id": order.id, "payment_intent_id": payment_intent_id, "amount": amount}
