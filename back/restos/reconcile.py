"""
Order line-item reconciliation.

When staff edit a saved order, the edited cart is compared with the order's
active items and turned into the smallest set of writes: cancel rows, reduce
row quantities, insert new rows. Rows whose logical line keeps its quantity
are never touched, so kitchen progress on them is preserved.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal

from sqlmodel import Session

from . import models
from .modifiers import canonical_modifiers
from .plates import encode_notes, split_notes


@dataclass(frozen=True)
class LineKey:
    """Two items are the same logical line iff all four fields are equal."""
    menu_item_id: int
    plate: int
    notes: str
    modifiers: str  # canonical_modifiers() output


@dataclass
class TargetLine:
    key: LineKey
    quantity: int
    unit_price: Decimal | None = None  # priced from the catalog only when inserted
    modifiers: list[dict] = field(default_factory=list)  # snapshot for inserts


@dataclass
class ItemInsert:
    key: LineKey
    quantity: int
    unit_price: Decimal | None
    modifiers: list[dict]


@dataclass
class ReconciliationPlan:
    cancel_ids: list[int] = field(default_factory=list)
    reductions: dict[int, int] = field(default_factory=dict)  # item id -> new quantity
    inserts: list[ItemInsert] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.cancel_ids or self.reductions or self.inserts)


def line_key(menu_item_id: int, plate: int, notes: str | None, modifiers: list | None) -> LineKey:
    return LineKey(
        menu_item_id=menu_item_id,
        plate=plate,
        notes=(notes or "").strip(),
        modifiers=canonical_modifiers(modifiers or []),
    )


def key_for_item(item: models.OrderItem) -> LineKey:
    plate, notes = split_notes(item.notes)
    return line_key(item.menu_item_id, plate, notes, item.modifiers)


def _newest_first(item: models.OrderItem) -> tuple[datetime, int]:
    return models.as_utc(item.created_at), item.id or 0


def plan_reconciliation(
    current: list[models.OrderItem],
    target: list[TargetLine],
) -> ReconciliationPlan:
    """
    Compute the writes that bring ``current`` (active rows) to ``target``.

    Quantity removals take whole rows newest-first; a row is only reduced once
    the remaining amount to remove is smaller than its quantity.
    """
    plan = ReconciliationPlan()

    groups: dict[LineKey, list[models.OrderItem]] = {}
    for item in current:
        if item.status == models.OrderItemStatus.cancelled:
            continue
        groups.setdefault(key_for_item(item), []).append(item)

    # Cart lines sharing a key count as one line
    merged: dict[LineKey, TargetLine] = {}
    for line in target:
        if line.key in merged:
            merged[line.key].quantity += line.quantity
        else:
            merged[line.key] = TargetLine(line.key, line.quantity, line.unit_price, list(line.modifiers))

    for key, line in merged.items():
        rows = groups.pop(key, [])
        diff = line.quantity - sum(row.quantity for row in rows)

        if diff > 0:
            plan.inserts.append(ItemInsert(key, diff, line.unit_price, line.modifiers))
        elif diff < 0:
            remaining_to_remove = -diff
            for row in sorted(rows, key=_newest_first, reverse=True):
                if remaining_to_remove <= 0:
                    break
                if row.quantity <= remaining_to_remove:
                    plan.cancel_ids.append(row.id)
                    remaining_to_remove -= row.quantity
                else:
                    plan.reductions[row.id] = row.quantity - remaining_to_remove
                    remaining_to_remove = 0

    # Lines no longer in the cart
    for rows in groups.values():
        plan.cancel_ids.extend(row.id for row in rows)

    return plan


def apply_plan(
    session: Session,
    order: models.Order,
    current: list[models.OrderItem],
    plan: ReconciliationPlan,
) -> list[models.OrderItem]:
    """
    Stage the plan on ``session``: cancellations, then reductions, then
    inserts. Nothing is committed here; the caller owns the transaction.
    """
    if plan.is_empty:
        return []

    by_id = {item.id: item for item in current}
    now = models.utcnow()

    for item_id in plan.cancel_ids:
        item = by_id[item_id]
        item.status = models.OrderItemStatus.cancelled
        item.cancelled_at = now
        session.add(item)

    for item_id, new_quantity in plan.reductions.items():
        item = by_id[item_id]
        item.quantity = new_quantity
        session.add(item)

    inserted = []
    for insert in plan.inserts:
        item = models.OrderItem(
            order_id=order.id,
            menu_item_id=insert.key.menu_item_id,
            quantity=insert.quantity,
            price_at_time=insert.unit_price,
            notes=encode_notes(insert.key.plate, insert.key.notes),
            modifiers=insert.modifiers or None,
            status=models.OrderItemStatus.active,
            created_at=now,
        )
        session.add(item)
        inserted.append(item)

    return inserted
