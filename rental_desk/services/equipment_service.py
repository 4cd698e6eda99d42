from __future__ import annotations

from typing import Any, Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from rental_desk.models.rental_models import Category, EquipmentItem
from rental_desk.services.access_policy import scope_equipment


def map_item_field(field: str) -> str:
    mapping = {
        "name": "name",
        "description": "description",
        "categoryID": "category_id",
        "warehouseID": "warehouse_id",
        "equipmentStatus": "equipment_status",
        "isRentable": "is_rentable",
        "imageUrl": "image_url",
    }
    return mapping.get(field, field)


def apply_item_fields(item: EquipmentItem, values: dict[str, Any]) -> None:
    for field, value in values.items():
        setattr(item, map_item_field(field), value)


def list_items(db: Session, session: dict[str, Any], category_id: str | None = None) -> list[EquipmentItem]:
    stmt = select(EquipmentItem).options(selectinload(EquipmentItem.category)).order_by(EquipmentItem.name)
    if category_id:
        stmt = stmt.where(EquipmentItem.category_id == category_id)
    return db.execute(scope_equipment(stmt, session)).scalars().all()


def find_missing_item_ids(db: Session, item_ids: Iterable[str]) -> list[str]:
    wanted = {str(item_id) for item_id in item_ids}
    if not wanted:
        return []
    found = set(
        db.execute(select(EquipmentItem.id).where(EquipmentItem.id.in_(wanted))).scalars().all()
    )
    return sorted(wanted - found)


def list_categories(db: Session) -> list[Category]:
    return db.execute(select(Category).order_by(Category.name)).scalars().all()


def serialize_item(item: EquipmentItem) -> dict:
    return {
        "id": item.id,
        "name": item.name,
        "description": item.description,
        "categoryID": item.category_id,
        "categoryName": item.category.name if item.category else None,
        "warehouseID": item.warehouse_id,
        "equipmentStatus": item.equipment_status,
        "isRentable": bool(item.is_rentable),
        "imageUrl": item.image_url,
        "createdAt": item.created_at,
        "updatedAt": item.updated_at,
    }


def serialize_category(category: Category) -> dict:
    return {"id": category.id, "name": category.name}
