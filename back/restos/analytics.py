"""
Sales analytics over business periods.

A business day runs from the cutoff hour (noon by default) to the next day's
cutoff, so late-night sales count toward the day they started in. Weeks start
Monday at the cutoff, months on the 1st, years on January 1st.
"""

import calendar
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum
from zoneinfo import ZoneInfo

from sqlalchemy.orm import selectinload
from sqlmodel import Session, select

from . import models


class TimeRange(str, Enum):
    day = "day"
    week = "week"
    month = "month"
    year = "year"


DAYPARTS = [
    ("12 PM – 6 PM", 12, 18),
    ("6 PM – 12 AM", 18, 24),
    ("12 AM – 6 AM", 0, 6),
    ("6 AM – 12 PM", 6, 12),
]

TOP_ITEMS_LIMIT = 5
TOP_MODIFIERS_LIMIT = 8
PEAK_HOURS_LIMIT = 3


def _add_months(d: datetime, months: int) -> datetime:
    month_index = d.month - 1 + months
    year = d.year + month_index // 12
    month = month_index % 12 + 1
    day = min(d.day, calendar.monthrange(year, month)[1])
    return d.replace(year=year, month=month, day=day)


def shift_period(d: datetime, time_range: TimeRange, delta: int) -> datetime:
    """Move ``d`` by whole periods, keeping the wall-clock time."""
    if time_range == TimeRange.day:
        return d + timedelta(days=delta)
    if time_range == TimeRange.week:
        return d + timedelta(days=7 * delta)
    if time_range == TimeRange.month:
        return _add_months(d, delta)
    return _add_months(d, 12 * delta)


def period_range(now: datetime, time_range: TimeRange, cutoff_hour: int = 12) -> tuple[datetime, datetime]:
    """
    Business window ``[start, end)`` containing ``now``.

    Arithmetic happens on the local wall clock of ``now`` (its tzinfo is
    re-attached at the end), so DST changes never move the cutoff.
    """
    tz = now.tzinfo
    wall = now.replace(tzinfo=None)
    at_cutoff = dict(hour=cutoff_hour, minute=0, second=0, microsecond=0)

    if time_range == TimeRange.day:
        start = wall.replace(**at_cutoff)
        if wall < start:
            start -= timedelta(days=1)
    elif time_range == TimeRange.week:
        start = (wall - timedelta(days=wall.weekday())).replace(**at_cutoff)
        # Monday before the cutoff still belongs to the previous week
        if wall < start:
            start -= timedelta(days=7)
    elif time_range == TimeRange.month:
        start = wall.replace(day=1, **at_cutoff)
        if wall < start:
            start = _add_months(start, -1)
    else:
        start = wall.replace(month=1, day=1, **at_cutoff)
        if wall < start:
            start = start.replace(year=start.year - 1)

    end = shift_period(start, time_range, 1)
    return start.replace(tzinfo=tz), end.replace(tzinfo=tz)


def previous_range(start: datetime, end: datetime, time_range: TimeRange) -> tuple[datetime, datetime]:
    return shift_period(start, time_range, -1), shift_period(end, time_range, -1)


def fetch_paid_orders(
    session: Session,
    store_id: int,
    start: datetime,
    end: datetime,
) -> list[models.Order]:
    """Paid orders of a store created within ``[start, end)``."""
    statement = (
        select(models.Order)
        .where(
            models.Order.store_id == store_id,
            models.Order.status == models.OrderStatus.paid,
            models.Order.created_at >= start.astimezone(timezone.utc),
            models.Order.created_at < end.astimezone(timezone.utc),
        )
        .options(selectinload(models.Order.items).selectinload(models.OrderItem.menu_item))
        .order_by(models.Order.created_at.asc())
    )
    return list(session.exec(statement).all())


@dataclass
class PeriodSummary:
    total_revenue: Decimal = Decimal("0")
    total_tips: Decimal = Decimal("0")
    total_orders: int = 0
    avg_order_value: Decimal = Decimal("0")
    tips_rate: float = 0.0
    sales: list[dict] = field(default_factory=list)
    peak_hours: list[dict] = field(default_factory=list)
    dayparts: list[dict] = field(default_factory=list)
    top_items: list[dict] = field(default_factory=list)
    top_modifiers: list[dict] = field(default_factory=list)


def _sales_key(local: datetime, time_range: TimeRange) -> str:
    if time_range == TimeRange.day:
        return local.strftime("%I %p")
    if time_range in (TimeRange.week, TimeRange.month):
        return local.strftime("%b %d")
    return local.strftime("%b")


def _top(counts: dict[str, int], limit: int) -> list[dict]:
    ranked = sorted(counts.items(), key=lambda kv: kv[1], reverse=True)
    return [{"name": name, "value": value} for name, value in ranked[:limit]]


def summarize(orders: list[models.Order], time_range: TimeRange, tz: ZoneInfo | None = None) -> PeriodSummary:
    tz = tz or timezone.utc
    summary = PeriodSummary()

    summary.total_orders = len(orders)
    summary.total_revenue = sum((Decimal(o.total_amount or 0) for o in orders), Decimal("0"))
    summary.total_tips = sum((Decimal(o.tip_amount or 0) for o in orders), Decimal("0"))

    sales_excluding_tips = summary.total_revenue - summary.total_tips
    if summary.total_orders:
        summary.avg_order_value = sales_excluding_tips / summary.total_orders
    if sales_excluding_tips > 0:
        summary.tips_rate = float(summary.total_tips / sales_excluding_tips)

    sales: dict[str, Decimal] = {}
    hours: dict[str, dict] = {}
    parts = [{"label": label, "revenue": Decimal("0"), "orders": 0} for label, _, _ in DAYPARTS]
    item_counts: dict[str, int] = defaultdict(int)
    modifier_counts: dict[str, int] = defaultdict(int)

    for order in orders:
        local = models.as_utc(order.created_at).astimezone(tz)
        amount = Decimal(order.total_amount or 0)

        key = _sales_key(local, time_range)
        sales[key] = sales.get(key, Decimal("0")) + amount

        if time_range == TimeRange.day:
            hour = local.strftime("%I %p")
            bucket = hours.setdefault(hour, {"hour": hour, "revenue": Decimal("0"), "orders": 0})
            bucket["revenue"] += amount
            bucket["orders"] += 1

            index = next((i for i, (_, lo, hi) in enumerate(DAYPARTS) if lo <= local.hour < hi), 0)
            parts[index]["revenue"] += amount
            parts[index]["orders"] += 1

        for item in order.items or []:
            if item.status == models.OrderItemStatus.cancelled:
                continue
            name = item.menu_item.name if item.menu_item else "Unknown"
            item_counts[name] += item.quantity
            # Modifiers are per unit
            for group in item.modifiers or []:
                for sel in group.get("selections") or []:
                    option_name = sel.get("option_name")
                    count = int(sel.get("quantity") or 0) * item.quantity
                    if option_name and count > 0:
                        modifier_counts[option_name] += count

    summary.sales = [{"name": name, "total": total} for name, total in sales.items()]
    if time_range == TimeRange.day:
        summary.peak_hours = sorted(hours.values(), key=lambda h: h["revenue"], reverse=True)[:PEAK_HOURS_LIMIT]
        summary.dayparts = parts
    summary.top_items = _top(item_counts, TOP_ITEMS_LIMIT)
    summary.top_modifiers = _top(modifier_counts, TOP_MODIFIERS_LIMIT)
    return summary


def delta(current: Decimal | int, previous: Decimal | int) -> dict:
    """Absolute change and percentage of the previous value (None when previous is 0)."""
    diff = current - previous
    pct = None
    if previous:
        pct = round(abs(float(diff) / float(previous)) * 100)
    return {"diff": diff, "pct": pct}


def rate_delta(current: float, previous: float) -> dict:
    """Change of a ratio in percentage points."""
    diff = current - previous
    pct = None
    if previous:
        pct = round(abs(diff / previous) * 100)
    return {"pp": round(diff * 100, 1), "pct": pct}


def compare(current: PeriodSummary, previous: PeriodSummary, investment: Decimal = Decimal("0")) -> dict:
    return {
        "revenue": delta(current.total_revenue, previous.total_revenue),
        "tips": delta(current.total_tips, previous.total_tips),
        "orders": delta(current.total_orders, previous.total_orders),
        "avg_order_value": delta(current.avg_order_value, previous.avg_order_value),
        "tips_rate": rate_delta(current.tips_rate, previous.tips_rate),
        "net_profit": current.total_revenue - investment,
    }
