"""
Mercado Pago Point (card terminal) integration.

Payment intents are created on a named terminal device and then polled until
the terminal reports a final state.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from enum import Enum

import httpx

from .settings import settings

logger = logging.getLogger(__name__)

SUCCESS_STATES = {"FINISHED", "CLOSED"}
FAILURE_STATES = {"CANCELED", "EXPIRED"}


class PaymentOutcome(str, Enum):
    paid = "paid"
    failed = "failed"
    timeout = "timeout"


class PointApiError(Exception):
    """Upstream (Mercado Pago) rejected a request"""
    def __init__(self, status_code: int, message: str, payload: dict | None = None):
        self.status_code = status_code
        self.payload = payload or {}
        super().__init__(message)


class MercadoPagoPointClient:
    def __init__(
        self,
        access_token: str,
        base_url: str = settings.mercadopago_api_url,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 10.0,
    ):
        self.access_token = access_token
        self.base_url = base_url.rstrip("/")
        self.transport = transport
        self.timeout = timeout

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.timeout,
            transport=self.transport,
            headers={"Authorization": f"Bearer {self.access_token}"},
        )

    async def create_payment_intent(self, device_id: str, amount: float, order_id: str) -> dict:
        body = {
            "amount": round(amount * 100) / 100,
            "description": f"Order #{order_id[:8]}",
            "payment": {
                "installments": 1,
                "type": "credit_card",
            },
        }
        async with self._client() as client:
            response = await client.post(
                f"{self.base_url}/{device_id}/payment_intents",
                json=body,
                headers={"X-Idempotency-Key": order_id},
            )
        data = _json_or_empty(response)
        if response.is_error:
            logger.error(f"MP Point error creating intent on {device_id}: {data}")
            raise PointApiError(
                response.status_code,
                data.get("message") or "Failed to create payment intent",
                data,
            )
        return data

    async def get_payment_intent(self, device_id: str, payment_intent_id: str) -> dict:
        async with self._client() as client:
            response = await client.get(f"{self.base_url}/{device_id}/payment_intents/{payment_intent_id}")
        data = _json_or_empty(response)
        if response.is_error:
            raise PointApiError(response.status_code, "Failed to fetch status", data)
        return data


def _json_or_empty(response: httpx.Response) -> dict:
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


async def poll_payment_intent(
    client: MercadoPagoPointClient,
    device_id: str,
    payment_intent_id: str,
    interval: float = settings.payment_poll_interval_seconds,
    max_attempts: int = settings.payment_poll_max_attempts,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> tuple[PaymentOutcome, str | None]:
    """
    Poll the terminal until it settles.

    Returns the outcome and the last state seen. FINISHED/CLOSED mean paid,
    CANCELED/EXPIRED mean failed; running out of attempts is a timeout.
    """
    state = None
    for attempt in range(1, max_attempts + 1):
        try:
            data = await client.get_payment_intent(device_id, payment_intent_id)
            state = data.get("state")
        except (PointApiError, httpx.HTTPError) as e:
            logger.warning(f"Polling {payment_intent_id} (attempt {attempt}) failed: {e}")
        else:
            if state in SUCCESS_STATES:
                return PaymentOutcome.paid, state
            if state in FAILURE_STATES:
                return PaymentOutcome.failed, state

        if attempt < max_attempts:
            await sleep(interval)

    logger.warning(f"Payment intent {payment_intent_id} timed out after {max_attempts} attempts")
    return PaymentOutcome.timeout, state
