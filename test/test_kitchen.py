from datetime import datetime, timedelta, timezone
from decimal import Decimal

from restos import models
from restos.kitchen import bucket_order_items, group_by_plate

PLACED = datetime(2026, 3, 4, 18, 0, tzinfo=timezone.utc)


def item(item_id, after_ms, plate=1, status=models.OrderItemStatus.active):
    return models.OrderItem(
        id=item_id,
        order_id=1,
        menu_item_id=1,
        quantity=1,
        price_at_time=Decimal("3.00"),
        notes=f"[PLATE:{plate}]",
        status=status,
        created_at=PLACED + timedelta(milliseconds=after_ms),
    )


def ids(groups):
    return [(g.plate, [i.id for i in g.items]) for g in groups]


def test_items_placed_with_the_order_are_prepared():
    buckets = bucket_order_items(PLACED, [item(1, 0), item(2, 1500)])
    assert ids(buckets.prepared) == [(1, [1, 2])]
    assert buckets.new == []


def test_threshold_is_exclusive():
    buckets = bucket_order_items(PLACED, [item(1, 2000), item(2, 2001)])
    assert ids(buckets.prepared) == [(1, [1])]
    assert ids(buckets.new) == [(1, [2])]


def test_cancelled_items_get_their_own_bucket():
    buckets = bucket_order_items(PLACED, [item(1, 0), item(2, 60000, status=models.OrderItemStatus.cancelled)])
    assert ids(buckets.cancelled) == [(1, [2])]
    assert ids(buckets.prepared) == [(1, [1])]


def test_naive_timestamps_are_read_as_utc():
    naive = item(1, 5000)
    naive.created_at = naive.created_at.replace(tzinfo=None)
    buckets = bucket_order_items(PLACED.replace(tzinfo=None), [naive])
    assert ids(buckets.new) == [(1, [1])]


def test_group_by_plate_sorts_plates():
    groups = group_by_plate([item(1, 0, plate=3), item(2, 0, plate=1), item(3, 0, plate=3)])
    assert ids(groups) == [(1, [2]), (3, [1, 3])]


def test_kitchen_board_columns(client, session, store, taco, soda):
    first = client.post(f"/{store.id}/pos/orders", json={"items": [
        {"menu_item_id": taco.id, "quantity": 2, "plate": 1},
        {"menu_item_id": soda.id, "quantity": 1, "plate": 2},
    ]}).json()
    second = client.post(f"/{store.id}/pos/orders", json={"items": [
        {"menu_item_id": taco.id, "quantity": 1},
    ]}).json()
    client.put(f"/{store.id}/pos/orders/{second['id']}/status", json={"status": "preparing"})

    # Simulate a later addition to the first order
    late = models.OrderItem(
        order_id=first["id"],
        menu_item_id=soda.id,
        quantity=1,
        price_at_time=Decimal("2.50"),
        notes="[PLATE:1] sin hielo",
        created_at=models.utcnow() + timedelta(seconds=30),
    )
    session.add(late)
    session.commit()

    board = client.get(f"/{store.id}/kitchen").json()
    columns = {c["id"]: c for c in board["columns"]}
    assert [c["label"] for c in board["columns"]] == ["On Queue", "Preparing", "Ready to Serve"]
    assert columns["queue"]["count"] == 1
    assert columns["preparing"]["count"] == 1
    assert columns["ready"]["orders"] == []

    card = columns["queue"]["orders"][0]
    assert card["id"] == first["id"]
    assert card["items_count"] == 4
    assert card["actions"] == ["preparing", "cancelled"]
    assert [p["plate"] for p in card["buckets"]["prepared"]] == [1, 2]
    assert card["buckets"]["new"][0]["items"][0]["notes"] == "sin hielo"
