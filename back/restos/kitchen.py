"""
Kitchen display bucketing.

Items added to an order well after it was placed are highlighted as "new";
items that arrived with the order are treated as already being prepared.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta

from . import models
from .plates import split_notes

NEW_ITEM_THRESHOLD_MS = 2000


@dataclass
class PlateGroup:
    plate: int
    items: list[models.OrderItem] = field(default_factory=list)


@dataclass
class KitchenBuckets:
    new: list[PlateGroup] = field(default_factory=list)
    prepared: list[PlateGroup] = field(default_factory=list)
    cancelled: list[PlateGroup] = field(default_factory=list)


def group_by_plate(items: list[models.OrderItem]) -> list[PlateGroup]:
    plates: dict[int, PlateGroup] = {}
    for item in items:
        plate, _ = split_notes(item.notes)
        plates.setdefault(plate, PlateGroup(plate)).items.append(item)
    return [plates[p] for p in sorted(plates)]


def bucket_order_items(
    order_created_at: datetime,
    items: list[models.OrderItem],
    threshold_ms: int = NEW_ITEM_THRESHOLD_MS,
) -> KitchenBuckets:
    threshold = timedelta(milliseconds=threshold_ms)
    placed_at = models.as_utc(order_created_at)

    new, prepared, cancelled = [], [], []
    for item in items:
        if item.status == models.OrderItemStatus.cancelled:
            cancelled.append(item)
        elif models.as_utc(item.created_at) - placed_at > threshold:
            new.append(item)
        else:
            prepared.append(item)

    return KitchenBuckets(
        new=group_by_plate(new),
        prepared=group_by_plate(prepared),
        cancelled=group_by_plate(cancelled),
    )
