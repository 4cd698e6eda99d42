from __future__ import annotations

from typing import Any

from sqlalchemy import Select

from rental_desk.models.rental_models import EquipmentItem, Order, Profile

DEFAULT_ROLE = "student"

RIGHTS_BY_ROLE = {
    "manager": {
        "manageOrders": True,
        "manageOperatingHours": True,
        "manageUsers": True,
        "manageEquipment": True,
        "viewAuditLog": True,
        "placeOrders": True,
    },
    "storage_manager": {
        "manageOrders": True,
        "manageOperatingHours": True,
        "manageUsers": False,
        "manageEquipment": True,
        "viewAuditLog": False,
        "placeOrders": True,
    },
    "student": {
        "manageOrders": False,
        "manageOperatingHours": False,
        "manageUsers": False,
        "manageEquipment": False,
        "viewAuditLog": False,
        "placeOrders": True,
    },
}

# Storage managers with a warehouse only see profiles in that warehouse.
LIST_USERS_ROLES = {"manager", "storage_manager"}


def normalize_role(raw_role: str | None) -> str:
    role = (raw_role or "").strip()
    if role in RIGHTS_BY_ROLE:
        return role
    return DEFAULT_ROLE


def rights_for(role: str | None) -> dict[str, bool]:
    return dict(RIGHTS_BY_ROLE[normalize_role(role)])


def has_right(session: dict[str, Any], right: str) -> bool:
    return bool(rights_for(session.get("role")).get(right))


def can_list_users(session: dict[str, Any]) -> bool:
    return normalize_role(session.get("role")) in LIST_USERS_ROLES


def can_access_warehouse(session: dict[str, Any], warehouse_id: str | None) -> bool:
    role = normalize_role(session.get("role"))
    if role == "manager":
        return True
    if role == "storage_manager":
        own = session.get("warehouseID")
        return bool(own) and own == warehouse_id
    return False


def resolve_warehouse_scope(session: dict[str, Any], requested_warehouse_id: str | None = None) -> str | None:
    """Warehouse a management action applies to, or None when the caller may not act."""
    own = session.get("warehouseID")
    target = requested_warehouse_id or own
    if not target:
        return None
    return target if can_access_warehouse(session, target) else None


def can_view_order(session: dict[str, Any], order: Order) -> bool:
    if order.user_id == session.get("userID"):
        return True
    return has_right(session, "manageOrders") and can_access_warehouse(session, order.warehouse_id)


def can_manage_order(session: dict[str, Any], order: Order) -> bool:
    return has_right(session, "manageOrders") and can_access_warehouse(session, order.warehouse_id)


def scope_orders(stmt: Select, session: dict[str, Any]) -> Select:
    role = normalize_role(session.get("role"))
    if role == "manager":
        return stmt
    if role == "storage_manager":
        return stmt.where(Order.warehouse_id == session.get("warehouseID"))
    return stmt.where(Order.user_id == session.get("userID"))


def scope_profiles(stmt: Select, session: dict[str, Any]) -> Select:
    role = normalize_role(session.get("role"))
    if role == "storage_manager" and session.get("warehouseID"):
        return stmt.where(Profile.warehouse_id == session.get("warehouseID"))
    # A storage manager without a warehouse is not narrowed.
    if role in LIST_USERS_ROLES:
        return stmt
    return stmt.where(Profile.id == session.get("userID"))


def scope_equipment(stmt: Select, session: dict[str, Any]) -> Select:
    role = normalize_role(session.get("role"))
    if role == "manager":
        return stmt
    if role == "storage_manager":
        return stmt.where(EquipmentItem.warehouse_id == session.get("warehouseID"))
    return stmt.where(EquipmentItem.is_rentable == True).where(EquipmentItem.equipment_status == "available")
