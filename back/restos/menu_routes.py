"""
Menu API Routes

Menu catalog for a store:
- Listing (order entry shows available items only)
- Upsert with modifier group validation
- Soft delete (items are only marked unavailable)
"""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException
from sqlmodel import Session, select

from . import models
from .db import get_session
from .modifiers import validate_groups
from .order_service import get_store
from .security import require_admin

logger = logging.getLogger(__name__)

router = APIRouter()


def serialize_menu_item(item: models.MenuItem) -> dict:
    return {
        "id": item.id,
        "name": item.name,
        "description": item.description,
        "price": item.price,
        "category": item.category,
        "available": item.available,
        "image_url": item.image_url,
        "modifier_groups": item.modifier_groups or [],
    }


@router.get("/{store_id}/menu")
def list_menu(
    store_id: int,
    include_unavailable: bool = False,
    session: Session = Depends(get_session),
) -> list[dict]:
    get_store(session, store_id)
    statement = select(models.MenuItem).where(models.MenuItem.store_id == store_id)
    if not include_unavailable:
        statement = statement.where(models.MenuItem.available == True)  # noqa: E712
    statement = statement.order_by(models.MenuItem.category.asc(), models.MenuItem.name.asc())
    return [serialize_menu_item(item) for item in session.exec(statement).all()]


@router.post("/{store_id}/menu")
def upsert_menu_item(
    store_id: int,
    item_data: models.MenuItemUpsert,
    admin_store_id: Annotated[int, Depends(require_admin)],
    session: Session = Depends(get_session),
) -> dict:
    """Create a menu item, or update it when `id` is given."""
    get_store(session, store_id)

    if item_data.price < 0:
        raise HTTPException(status_code=400, detail="Price must not be negative")
    groups = item_data.modifier_groups or []
    validate_groups(groups)

    if item_data.id is not None:
        item = session.exec(
            select(models.MenuItem).where(
                models.MenuItem.id == item_data.id,
                models.MenuItem.store_id == store_id,
            )
        ).first()
        if not item:
            raise HTTPException(status_code=404, detail="Menu item not found")
    else:
        item = models.MenuItem(store_id=store_id, name=item_data.name)

    item.name = item_data.name.strip()
    item.description = item_data.description
    item.price = item_data.price
    item.category = item_data.category
    item.available = item_data.available
    item.image_url = item_data.image_url
    item.modifier_groups = [g.model_dump(mode="json") for g in groups] or None

    session.add(item)
    session.commit()
    session.refresh(item)
    logger.info(f"Saved menu item {item.id} ({item.name}) for store {store_id}")
    return serialize_menu_item(item)


@router.delete("/{store_id}/menu/{item_id}")
def deactivate_menu_item(
    store_id: int,
    item_id: int,
    admin_store_id: Annotated[int, Depends(require_admin)],
    session: Session = Depends(get_session),
) -> dict:
    """Soft delete: existing orders keep referencing the item."""
    item = session.exec(
        select(models.MenuItem).where(
            models.MenuItem.id == item_id,
            models.MenuItem.store_id == store_id,
        )
    ).first()
    if not item:
        raise HTTPException(status_code=404, detail="Menu item not found")

    item.available = False
    session.add(item)
    session.commit()
    return {"status": "deactivated", "id": item.id}
