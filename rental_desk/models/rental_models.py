import uuid

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from rental_desk.db.base import Base


def _new_id() -> str:
    return str(uuid.uuid4())


class Warehouse(Base):
    __tablename__ = "warehouses"

    id = Column(String(36), primary_key=True, default=_new_id)
    name = Column(String(255), nullable=False)
    created_at = Column(DateTime, server_default=func.now())

    profiles = relationship("Profile", back_populates="warehouse")
    equipment_items = relationship("EquipmentItem", back_populates="warehouse")
    time_slots = relationship("WarehouseTimeSlot", back_populates="warehouse")


class Profile(Base):
    __tablename__ = "profiles"

    id = Column(String(36), primary_key=True, default=_new_id)
    first_name = Column(String(100))
    last_name = Column(String(100))
    email = Column(String(255), nullable=False, unique=True)
    role = Column(String(30), nullable=False, default="student")
    warehouse_id = Column(String(36), ForeignKey("warehouses.id"))
    password_hash = Column(String(256))
    password_salt = Column(String(64))
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now())

    warehouse = relationship("Warehouse", back_populates="profiles")
    orders = relationship("Order", back_populates="owner")
    notifications = relationship("Notification", back_populates="profile")


class Category(Base):
    __tablename__ = "categories"

    id = Column(String(36), primary_key=True, default=_new_id)
    name = Column(String(100), nullable=False)
    created_at = Column(DateTime, server_default=func.now())

    equipment_items = relationship("EquipmentItem", back_populates="category")


class EquipmentItem(Base):
    __tablename__ = "equipment_items"

    id = Column(String(36), primary_key=True, default=_new_id)
    name = Column(String(255), nullable=False)
    description = Column(Text)
    category_id = Column(String(36), ForeignKey("categories.id"))
    warehouse_id = Column(String(36), ForeignKey("warehouses.id"))
    equipment_status = Column(String(20), default="available")
    is_rentable = Column(Boolean, default=True)
    image_url = Column(String(500))
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now())

    category = relationship("Category", back_populates="equipment_items")
    warehouse = relationship("Warehouse", back_populates="equipment_items")
    order_items = relationship("OrderItem", back_populates="item")


class Order(Base):
    __tablename__ = "orders"

    id = Column(String(36), primary_key=True, default=_new_id)
    user_id = Column(String(36), ForeignKey("profiles.id"), nullable=False)
    warehouse_id = Column(String(36), ForeignKey("warehouses.id"))
    requested_start_date = Column(DateTime(timezone=True), nullable=False)
    requested_end_date = Column(DateTime(timezone=True), nullable=False)
    notes = Column(Text)
    status = Column(String(20), nullable=False, default="pending")
    is_recurring = Column(Boolean, default=False)
    recurrence_count = Column(Integer, default=1)
    recurrence_interval = Column(String(10))
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now())

    owner = relationship("Profile", back_populates="orders")
    order_items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan")


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(String(36), primary_key=True, default=_new_id)
    order_id = Column(String(36), ForeignKey("orders.id"), nullable=False)
    item_id = Column(String(36), ForeignKey("equipment_items.id"), nullable=False)

    order = relationship("Order", back_populates="order_items")
    item = relationship("EquipmentItem", back_populates="order_items")


class WarehouseTimeSlot(Base):
    __tablename__ = "warehouse_time_slots"
    __table_args__ = (UniqueConstraint("warehouse_id", "day_of_week", "slot_start"),)

    id = Column(String(36), primary_key=True, default=_new_id)
    warehouse_id = Column(String(36), ForeignKey("warehouses.id"), nullable=False)
    day_of_week = Column(Integer, nullable=False)
    slot_start = Column(String(5), nullable=False)
    slot_end = Column(String(5), nullable=False)
    is_closed = Column(Boolean, nullable=False)

    warehouse = relationship("Warehouse", back_populates="time_slots")


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(String(36), primary_key=True, default=_new_id)
    user_id = Column(String(36), ForeignKey("profiles.id"), nullable=False)
    title = Column(String(255), nullable=False)
    message = Column(String(1000))
    link = Column(String(255))
    is_read = Column(Boolean, default=False)
    created_at = Column(DateTime, server_default=func.now())

    profile = relationship("Profile", back_populates="notifications")


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(String(36), primary_key=True, default=_new_id)
    logged_at = Column(DateTime, server_default=func.now())
    table_name = Column(String(50), nullable=False)
    action = Column(String(10), nullable=False)
    record_id = Column(String(36), nullable=False)
    user_id = Column(String(36))
    old_data = Column(Text)
    new_data = Column(Text)
