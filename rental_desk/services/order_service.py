from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from rental_desk.models.rental_models import Notification, Order, OrderItem, Profile
from rental_desk.schemas.orders import CreateRecurringOrdersDto
from rental_desk.services.access_policy import scope_orders
from rental_desk.services.audit_service import log_audit
from rental_desk.services.equipment_service import find_missing_item_ids
from rental_desk.services.errors import InvalidStatusTransition, OrderValidationError, PersistenceFailure
from rental_desk.services.profile_service import display_name
from rental_desk.services.recurrence_service import build_line_items, expand

LOGGER = logging.getLogger("rental_desk.orders")

ORDER_STATUSES = {"pending", "approved", "rejected", "checked_out", "returned", "cancelled"}
STATUS_TRANSITIONS = {
    "pending": {"approved", "rejected", "cancelled"},
    "approved": {"checked_out", "cancelled"},
    "checked_out": {"returned"},
    "rejected": set(),
    "returned": set(),
    "cancelled": set(),
}
OWNER_CANCELLABLE = {"pending", "approved"}


def _to_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _isoformat(value: datetime | None) -> str | None:
    if value is None:
        return None
    return _to_utc(value).isoformat()


def create_recurring_orders(db: Session, profile: Profile, request: CreateRecurringOrdersDto) -> list[Order]:
    generated = expand(request, profile.id, profile.warehouse_id)

    missing = find_missing_item_ids(db, [item.id for item in request.cartItems])
    if missing:
        raise OrderValidationError(f"Unknown equipment items: {', '.join(missing)}")

    now = datetime.now()
    orders = [
        Order(
            user_id=occurrence.user_id,
            warehouse_id=occurrence.warehouse_id,
            requested_start_date=_to_utc(occurrence.requested_start_date),
            requested_end_date=_to_utc(occurrence.requested_end_date),
            notes=occurrence.notes,
            status="pending",
            is_recurring=occurrence.is_recurring,
            recurrence_count=occurrence.recurrence_count,
            recurrence_interval=occurrence.recurrence_interval,
            created_at=now,
            updated_at=now,
        )
        for occurrence in generated
    ]

    # Both batches share one transaction; the failing batch is named in the error.
    batch = "orders"
    try:
        db.add_all(orders)
        db.flush()

        batch = "order_items"
        line_items = build_line_items([order.id for order in orders], request.cartItems)
        db.add_all([OrderItem(**row) for row in line_items])
        db.flush()

        batch = "commit"
        for order in orders:
            log_audit(
                db,
                "orders",
                order.id,
                "INSERT",
                user_id=profile.id,
                new_data={
                    "requested_start_date": _isoformat(order.requested_start_date),
                    "requested_end_date": _isoformat(order.requested_end_date),
                    "is_recurring": order.is_recurring,
                    "recurrence_count": order.recurrence_count,
                    "recurrence_interval": order.recurrence_interval,
                },
            )
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        LOGGER.error("Order creation failed user_id=%s batch=%s error=%s", profile.id, batch, exc)
        raise PersistenceFailure(batch, str(exc)) from exc

    LOGGER.info(
        "Orders created user_id=%s warehouse_id=%s count=%s items_per_order=%s",
        profile.id,
        profile.warehouse_id,
        len(orders),
        len(request.cartItems),
    )
    return orders


def load_order(db: Session, order_id: str) -> Order | None:
    return db.execute(
        select(Order)
        .options(selectinload(Order.order_items).selectinload(OrderItem.item))
        .options(selectinload(Order.owner))
        .where(Order.id == order_id)
    ).scalars().first()


def list_orders(db: Session, session: dict[str, Any], status: str | None = None, mine_only: bool = False) -> list[Order]:
    stmt = (
        select(Order)
        .options(selectinload(Order.order_items).selectinload(OrderItem.item))
        .options(selectinload(Order.owner))
        .order_by(Order.requested_start_date.desc())
    )
    if status:
        stmt = stmt.where(Order.status == status)
    if mine_only:
        stmt = stmt.where(Order.user_id == session.get("userID"))
    else:
        stmt = scope_orders(stmt, session)
    return db.execute(stmt).scalars().all()


def queue_approval_notification(db: Session, order: Order) -> Notification:
    notification = Notification(
        user_id=order.user_id,
        title="Your order was approved!",
        message=f"Order {order.id[:8]}... was approved.",
        link="/my-orders",
        is_read=False,
        created_at=datetime.now(),
    )
    db.add(notification)
    return notification


def transition_order(db: Session, order: Order, target_status: str, actor_id: str | None) -> Order:
    current = order.status or "pending"
    if target_status not in ORDER_STATUSES:
        raise InvalidStatusTransition(f"Unknown order status: {target_status}")
    if target_status == current:
        return order
    if target_status not in STATUS_TRANSITIONS.get(current, set()):
        raise InvalidStatusTransition(f"Invalid status transition: {current} -> {target_status}")

    try:
        order.status = target_status
        order.updated_at = datetime.now()
        if target_status == "approved":
            queue_approval_notification(db, order)
        log_audit(
            db,
            "orders",
            order.id,
            "UPDATE",
            user_id=actor_id,
            old_data={"status": current},
            new_data={"status": target_status},
        )
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        LOGGER.error("Order status update failed order_id=%s target=%s error=%s", order.id, target_status, exc)
        raise PersistenceFailure("orders", str(exc)) from exc

    LOGGER.info("Order status changed order_id=%s from=%s to=%s actor=%s", order.id, current, target_status, actor_id)
    return order


def serialize_order(order: Order) -> dict:
    return {
        "id": order.id,
        "userID": order.user_id,
        "ownerName": display_name(order.owner) if order.owner else None,
        "warehouseID": order.warehouse_id,
        "requestedStartDate": _isoformat(order.requested_start_date),
        "requestedEndDate": _isoformat(order.requested_end_date),
        "notes": order.notes,
        "status": order.status,
        "isRecurring": bool(order.is_recurring),
        "recurrenceCount": order.recurrence_count,
        "recurrenceInterval": order.recurrence_interval,
        "createdAt": order.created_at,
        "items": [
            {
                "id": line.id,
                "itemID": line.item_id,
                "name": line.item.name if line.item else None,
            }
            for line in order.order_items
        ],
    }
