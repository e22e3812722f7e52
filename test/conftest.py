import os
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

# Must be set before restos.settings is imported
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ADMIN_PASSWORD"] = "letmein"
os.environ["SECRET_KEY"] = "test-secret"
os.environ["TIMEZONE"] = "America/Mexico_City"
os.environ["MERCADOPAGO_ACCESS_TOKEN"] = ""

from sqlmodel import Session, SQLModel  # noqa: E402

from restos import db, main, models, payment_routes  # noqa: E402

ADMIN_PASSWORD = "letmein"


@pytest.fixture(autouse=True)
def fresh_db():
    """Empty schema for every test (one shared in-memory connection)."""
    SQLModel.metadata.drop_all(db.engine)
    db.create_db_and_tables()
    yield
    SQLModel.metadata.drop_all(db.engine)


@pytest.fixture(autouse=True)
def published(monkeypatch):
    """Capture realtime events instead of talking to Redis."""
    events: list[tuple[int, dict]] = []

    def fake_publish(store_id: int, data: dict) -> None:
        events.append((store_id, data))

    monkeypatch.setattr(main, "publish_order_update", fake_publish)
    monkeypatch.setattr(payment_routes, "publish_order_update", fake_publish)
    return events


@pytest.fixture()
def session():
    with Session(db.engine) as s:
        yield s


@pytest.fixture()
def client():
    yield TestClient(main.app)
    main.app.dependency_overrides.clear()


@pytest.fixture()
def store(session) -> models.Store:
    store = models.Store(name="Taqueria Centro")
    session.add(store)
    session.commit()
    session.refresh(store)
    return store


@pytest.fixture()
def other_store(session) -> models.Store:
    store = models.Store(name="Taqueria Norte")
    session.add(store)
    session.commit()
    session.refresh(store)
    return store


def add_menu_item(session: Session, store_id: int, name: str, price: str, **kwargs) -> models.MenuItem:
    item = models.MenuItem(store_id=store_id, name=name, price=Decimal(price), **kwargs)
    session.add(item)
    session.commit()
    session.refresh(item)
    return item


SALSA_GROUP = {
    "id": "salsa",
    "name": "Salsa",
    "mode": "count",
    "min_select": 0,
    "max_select": 2,
    "options": [
        {"id": "verde", "name": "Verde", "price_delta": "0"},
        {"id": "roja", "name": "Roja", "price_delta": "0.50"},
        {"id": "habanero", "name": "Habanero", "price_delta": "1.00", "available": False},
    ],
}

FILLING_GROUP = {
    "id": "filling",
    "name": "Filling",
    "mode": "per_piece",
    "pieces": 3,
    "min_per_piece": 1,
    "options": [
        {"id": "pastor", "name": "Pastor", "price_delta": "0"},
        {"id": "suadero", "name": "Suadero", "price_delta": "2.00"},
    ],
}


@pytest.fixture()
def taco(session, store) -> models.MenuItem:
    return add_menu_item(session, store.id, "Taco", "3.00", category="Tacos")


@pytest.fixture()
def taco_salsa(session, store) -> models.MenuItem:
    return add_menu_item(
        session, store.id, "Taco con Salsa", "3.00", category="Tacos", modifier_groups=[SALSA_GROUP]
    )


@pytest.fixture()
def orden(session, store) -> models.MenuItem:
    return add_menu_item(
        session, store.id, "Orden de 3", "10.00", category="Tacos", modifier_groups=[FILLING_GROUP]
    )


@pytest.fixture()
def soda(session, store) -> models.MenuItem:
    return add_menu_item(session, store.id, "Soda", "2.50", category="Drinks")


@pytest.fixture()
def admin_headers(client, store) -> dict:
    response = client.post(f"/{store.id}/admin/login", json={"password": ADMIN_PASSWORD})
    assert response.status_code == 200
    client.cookies.clear()
    return {"Authorization": f"Bearer {response.json()['access_token']}"}
