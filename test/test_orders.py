from decimal import Decimal

import pytest
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from restos import db, models, order_service


def line(menu_item_id, quantity, plate=1, notes="", modifiers=None):
    return {
        "menu_item_id": menu_item_id,
        "quantity": quantity,
        "plate": plate,
        "notes": notes,
        "modifiers": modifiers or [],
    }


def rows(session, order_id):
    session.expire_all()
    return session.exec(
        select(models.OrderItem)
        .where(models.OrderItem.order_id == order_id)
        .order_by(models.OrderItem.id)
    ).all()


def create(client, store, items, **extra):
    response = client.post(f"/{store.id}/pos/orders", json={"items": items, **extra})
    assert response.status_code == 200, response.text
    return response.json()


def edit(client, store, order_id, items, **extra):
    response = client.put(f"/{store.id}/pos/orders/{order_id}/items", json={"items": items, **extra})
    assert response.status_code == 200, response.text
    return response.json()


def test_new_order_snapshots_prices(client, session, store, taco, published):
    order = create(client, store, [line(taco.id, 2)], table_number="4")

    assert order["status"] == "queue"
    assert order["order_number"] == 1
    assert order["table_number"] == "4"
    assert Decimal(str(order["total_amount"])) == Decimal("6.00")
    assert order["items_count"] == 2

    items = rows(session, order["id"])
    assert len(items) == 1
    assert items[0].quantity == 2
    assert items[0].status == models.OrderItemStatus.active
    assert items[0].notes == "[PLATE:1]"
    assert published[-1][1]["type"] == "new_order"


def test_edit_flow_grow_shrink_and_empty(client, session, store, taco):
    order = create(client, store, [line(taco.id, 2)])
    order_id = order["id"]
    original_id = rows(session, order_id)[0].id

    # 2 -> 3: one insert, original row untouched
    result = edit(client, store, order_id, [line(taco.id, 3)])
    assert result["changes"] == {"cancelled": 0, "reduced": 0, "inserted": 1}
    items = rows(session, order_id)
    assert [(i.id == original_id, i.quantity, i.status.value) for i in items] == [
        (True, 2, "active"),
        (False, 1, "active"),
    ]
    inserted_id = items[1].id
    assert Decimal(str(result["total_amount"])) == Decimal("9.00")

    # 3 -> 1: newest row cancelled, original reduced
    result = edit(client, store, order_id, [line(taco.id, 1)])
    assert result["changes"] == {"cancelled": 1, "reduced": 1, "inserted": 0}
    by_id = {i.id: i for i in rows(session, order_id)}
    assert by_id[inserted_id].status == models.OrderItemStatus.cancelled
    assert by_id[inserted_id].cancelled_at is not None
    assert by_id[original_id].quantity == 1
    assert by_id[original_id].status == models.OrderItemStatus.active
    assert Decimal(str(result["total_amount"])) == Decimal("3.00")

    # 1 -> 0: every active row cancelled
    result = edit(client, store, order_id, [line(taco.id, 0)])
    assert all(i.status == models.OrderItemStatus.cancelled for i in rows(session, order_id))
    assert Decimal(str(result["total_amount"])) == Decimal("0.00")


def test_saving_unchanged_cart_writes_nothing(client, session, store, taco, soda, published):
    order = create(client, store, [line(taco.id, 2, notes="sin cebolla"), line(soda.id, 1, plate=2)])
    before = [(i.id, i.quantity, i.status, i.notes, i.created_at) for i in rows(session, order["id"])]
    published.clear()

    cart = client.get(f"/{store.id}/pos/orders/{order['id']}/cart").json()
    result = edit(client, store, order["id"], [
        line(i["menu_item_id"], i["quantity"], i["plate"], i["notes"], i["modifiers"]) for i in cart["items"]
    ])

    assert result["changes"] == {"cancelled": 0, "reduced": 0, "inserted": 0}
    after = [(i.id, i.quantity, i.status, i.notes, i.created_at) for i in rows(session, order["id"])]
    assert after == before
    assert published == []


def test_changing_plate_cancels_and_reinserts(client, session, store, taco):
    order = create(client, store, [line(taco.id, 1, plate=1)])
    edit(client, store, order["id"], [line(taco.id, 1, plate=2)])

    items = rows(session, order["id"])
    assert [(i.notes, i.status.value) for i in items] == [
        ("[PLATE:1]", "cancelled"),
        ("[PLATE:2]", "active"),
    ]


def test_modifier_price_is_part_of_the_snapshot(client, session, store, taco_salsa):
    order = create(client, store, [
        line(taco_salsa.id, 2, modifiers=[{"group_id": "salsa", "option_id": "roja"}]),
    ])
    assert Decimal(str(order["total_amount"])) == Decimal("7.00")
    item = rows(session, order["id"])[0]
    assert item.price_at_time == Decimal("3.50")
    assert item.modifiers[0]["selections"][0]["option_name"] == "Roja"


def test_catalog_price_change_keeps_existing_rows(client, session, store, taco):
    order = create(client, store, [line(taco.id, 1)])
    taco.price = Decimal("4.00")
    session.add(taco)
    session.commit()

    edit(client, store, order["id"], [line(taco.id, 2)])
    prices = [i.price_at_time for i in rows(session, order["id"])]
    assert prices == [Decimal("3.00"), Decimal("4.00")]


def test_invalid_modifier_is_rejected_with_item_id(client, store, taco_salsa):
    response = client.post(f"/{store.id}/pos/orders", json={"items": [
        line(taco_salsa.id, 1, modifiers=[{"group_id": "salsa", "option_id": "habanero"}]),
    ]})
    assert response.status_code == 400
    assert response.json()["menu_item_id"] == taco_salsa.id


def test_empty_cart_is_rejected(client, store, taco):
    response = client.post(f"/{store.id}/pos/orders", json={"items": [line(taco.id, 0)]})
    assert response.status_code == 400


def test_negative_quantity_is_rejected(client, store, taco):
    response = client.post(f"/{store.id}/pos/orders", json={"items": [line(taco.id, -1)]})
    assert response.status_code == 422


def test_unavailable_item_is_rejected(client, session, store, taco):
    taco.available = False
    session.add(taco)
    session.commit()
    response = client.post(f"/{store.id}/pos/orders", json={"items": [line(taco.id, 1)]})
    assert response.status_code == 400


def test_sold_out_item_does_not_block_edits(client, session, store, taco, soda, published):
    order = create(client, store, [line(taco.id, 2)])
    taco.available = False
    session.add(taco)
    session.commit()

    result = edit(client, store, order["id"], [line(taco.id, 2), line(soda.id, 1)])
    assert result["changes"] == {"cancelled": 0, "reduced": 0, "inserted": 1}
    assert Decimal(str(result["total_amount"])) == Decimal("8.50")

    result = edit(client, store, order["id"], [line(taco.id, 1), line(soda.id, 1)])
    assert result["changes"] == {"cancelled": 0, "reduced": 1, "inserted": 0}

    # More of a sold-out item is still refused
    response = client.put(f"/{store.id}/pos/orders/{order['id']}/items", json={"items": [
        line(taco.id, 3), line(soda.id, 1),
    ]})
    assert response.status_code == 400
    active = [i for i in rows(session, order["id"]) if i.status == models.OrderItemStatus.active]
    assert [(i.menu_item_id, i.quantity) for i in active] == [(taco.id, 1), (soda.id, 1)]


def test_menu_item_of_other_store_is_rejected(client, session, store, other_store):
    from conftest import add_menu_item
    foreign = add_menu_item(session, other_store.id, "Gringa", "5.00")
    response = client.post(f"/{store.id}/pos/orders", json={"items": [line(foreign.id, 1)]})
    assert response.status_code == 400


def test_order_numbers_are_per_store(client, session, store, other_store, taco):
    from conftest import add_menu_item
    gringa = add_menu_item(session, other_store.id, "Gringa", "5.00")
    assert create(client, store, [line(taco.id, 1)])["order_number"] == 1
    assert create(client, store, [line(taco.id, 1)])["order_number"] == 2
    assert create(client, other_store, [line(gringa.id, 1)])["order_number"] == 1


def test_orders_are_scoped_to_their_store(client, store, other_store, taco):
    order = create(client, store, [line(taco.id, 1)])
    assert client.get(f"/{other_store.id}/pos/orders/{order['id']}").status_code == 404
    assert client.get("/999/pos/orders").status_code == 404


def test_status_progression(client, store, taco, published):
    order = create(client, store, [line(taco.id, 1)])
    url = f"/{store.id}/pos/orders/{order['id']}/status"

    assert client.put(url, json={"status": "preparing"}).json()["new_status"] == "preparing"
    assert published[-1][1]["type"] == "status_update"
    assert client.put(url, json={"status": "queue"}).status_code == 409
    assert client.put(url, json={"status": "served"}).status_code == 200


def test_active_list_excludes_paid_and_cancelled(client, store, taco):
    keep = create(client, store, [line(taco.id, 1)])
    paid = create(client, store, [line(taco.id, 1)])
    cancelled = create(client, store, [line(taco.id, 1)])

    client.put(f"/{store.id}/pos/orders/{paid['id']}/mark-paid", json={})
    client.delete(f"/{store.id}/pos/orders/{cancelled['id']}")

    active = client.get(f"/{store.id}/pos/orders").json()
    assert [o["id"] for o in active] == [keep["id"]]


def test_mark_paid_snapshots_tip_and_locks_order(client, store, taco, published):
    order = create(client, store, [line(taco.id, 2)])
    response = client.put(
        f"/{store.id}/pos/orders/{order['id']}/mark-paid",
        json={"tip_amount": "1.50", "payment_method": "cash"},
    )
    assert response.status_code == 200
    body = response.json()
    assert Decimal(str(body["total_amount"])) == Decimal("7.50")
    assert Decimal(str(body["tip_amount"])) == Decimal("1.50")
    assert body["paid_at"] is not None
    assert published[-1][1]["type"] == "order_paid"

    response = client.put(f"/{store.id}/pos/orders/{order['id']}/items", json={"items": [line(taco.id, 3)]})
    assert response.status_code == 409
    response = client.put(f"/{store.id}/pos/orders/{order['id']}/mark-paid", json={})
    assert response.status_code == 409


def test_cancel_order_cancels_items(client, session, store, taco, soda):
    order = create(client, store, [line(taco.id, 2), line(soda.id, 1)])
    response = client.delete(f"/{store.id}/pos/orders/{order['id']}")
    assert response.status_code == 200

    assert all(i.status == models.OrderItemStatus.cancelled for i in rows(session, order["id"]))
    assert client.delete(f"/{store.id}/pos/orders/{order['id']}").status_code == 409


def test_tip_only_edit_updates_total(client, store, taco, published):
    order = create(client, store, [line(taco.id, 2)])
    published.clear()
    result = edit(client, store, order["id"], [line(taco.id, 2)], tip_amount="2.00")
    assert Decimal(str(result["total_amount"])) == Decimal("8.00")
    assert result["changes"] == {"cancelled": 0, "reduced": 0, "inserted": 0}
    assert [e[1]["type"] for e in published] == ["items_updated"]


def test_failed_status_write_is_rolled_back(client, session, store, taco, monkeypatch):
    order = create(client, store, [line(taco.id, 1)])

    def failing_commit():
        raise SQLAlchemyError("database is locked")

    monkeypatch.setattr(session, "commit", failing_commit)
    with pytest.raises(SQLAlchemyError):
        order_service.update_status(session, store.id, order["id"], models.OrderStatus.preparing)

    with Session(db.engine) as fresh:
        assert fresh.get(models.Order, order["id"]).status == models.OrderStatus.queue
