import logging
from dataclasses import asdict
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Annotated
from zoneinfo import ZoneInfo

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import JSONResponse
from sqlmodel import Session

from . import analytics, models
from .db import get_session
from .order_service import get_store
from .security import ADMIN_COOKIE, create_access_token, require_admin, verify_admin_password
from .settings import settings

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/{store_id}/admin/login")
def admin_login(
    store_id: int,
    credentials: models.AdminLogin,
    session: Session = Depends(get_session),
):
    get_store(session, store_id)
    if not verify_admin_password(credentials.password):
        logger.warning(f"Rejected admin login for store {store_id}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect password",
        )

    access_token = analytics_token(store_id)
    response = JSONResponse(content={
        "status": "success",
        "access_token": access_token,
        "token_type": "bearer",
    })
    response.set_cookie(
        key=ADMIN_COOKIE,
        value=access_token,
        httponly=True,
        secure=settings.is_production,
        samesite="lax",
        path="/",
        max_age=settings.access_token_expire_minutes * 60
    )
    return response


def analytics_token(store_id: int) -> str:
    return create_access_token(
        data={"sub": "admin", "store_id": store_id},
        expires_delta=timedelta(minutes=settings.access_token_expire_minutes),
    )


@router.post("/{store_id}/admin/logout")
def admin_logout(store_id: int):
    response = JSONResponse(content={"status": "success", "message": "Logged out"})
    response.delete_cookie(key=ADMIN_COOKIE, path="/")
    return response


def _window(start: datetime, end: datetime) -> dict:
    return {"start": start.isoformat(), "end": end.isoformat()}


@router.get("/{store_id}/admin/analytics")
def get_analytics(
    store_id: int,
    admin_store_id: Annotated[int, Depends(require_admin)],
    time_range: analytics.TimeRange = Query(analytics.TimeRange.week, alias="range", description="Business period"),
    investment: Decimal = Query(Decimal("0"), description="Investment subtracted for net profit"),
    session: Session = Depends(get_session),
) -> dict:
    get_store(session, store_id)
    tz = ZoneInfo(settings.timezone)
    now = datetime.now(tz)

    start, end = analytics.period_range(now, time_range, settings.business_cutoff_hour)
    prev_start, prev_end = analytics.previous_range(start, end, time_range)

    current = analytics.summarize(analytics.fetch_paid_orders(session, store_id, start, end), time_range, tz)
    previous = analytics.summarize(analytics.fetch_paid_orders(session, store_id, prev_start, prev_end), time_range, tz)

    return {
        "range": time_range.value,
        "window": _window(start, end),
        "previous_window": _window(prev_start, prev_end),
        "current": asdict(current),
        "previous": asdict(previous),
        "deltas": analytics.compare(current, previous, investment),
    }
