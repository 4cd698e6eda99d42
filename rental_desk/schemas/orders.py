from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class CartItemDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str


class CreateRecurringOrdersDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    startDate: datetime
    endDate: datetime
    notes: Optional[str] = None
    cartItems: List[CartItemDto] = []
    isRecurring: bool = False
    recurrenceCount: int = 1
    # Membership is checked by the recurrence service so a bad value maps to InvalidRecurrence.
    recurrenceInterval: str = Field("week", max_length=10)


class GeneratedOrder(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    user_id: str
    warehouse_id: Optional[str] = None
    requested_start_date: datetime
    requested_end_date: datetime
    notes: Optional[str] = None
    is_recurring: bool
    recurrence_count: int
    recurrence_interval: Optional[str] = None


class OrderStatusUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    status: Literal["pending", "approved", "rejected", "checked_out", "returned", "cancelled"]
