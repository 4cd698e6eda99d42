from __future__ import annotations

from datetime import datetime
from typing import Iterable

from dateutil.relativedelta import relativedelta

from rental_desk.schemas.orders import CartItemDto, CreateRecurringOrdersDto, GeneratedOrder
from rental_desk.services.errors import EmptyCart, InvalidRecurrence, InvalidWindow

MIN_RECURRENCE_COUNT = 1
MAX_RECURRENCE_COUNT = 30

# relativedelta clamps the day-of-month, so Jan 31 + 1 month lands on the last day of February.
INTERVAL_STEPS = {
    "day": relativedelta(days=1),
    "week": relativedelta(weeks=1),
    "month": relativedelta(months=1),
}


def occurrence_count(request: CreateRecurringOrdersDto) -> int:
    return int(request.recurrenceCount) if request.isRecurring else 1


def validate_request(request: CreateRecurringOrdersDto) -> None:
    start = request.startDate
    end = request.endDate
    if (start.tzinfo is None) != (end.tzinfo is None):
        raise InvalidWindow("startDate and endDate must both carry a UTC offset, or neither.")
    if end <= start:
        raise InvalidWindow("endDate must be after startDate.")

    if request.isRecurring:
        count = int(request.recurrenceCount)
        if count < MIN_RECURRENCE_COUNT or count > MAX_RECURRENCE_COUNT:
            raise InvalidRecurrence(
                f"recurrenceCount must be between {MIN_RECURRENCE_COUNT} and {MAX_RECURRENCE_COUNT}."
            )
        if request.recurrenceInterval not in INTERVAL_STEPS:
            raise InvalidRecurrence("recurrenceInterval must be one of day, week, month.")

    if not request.cartItems:
        raise EmptyCart("Cart is empty.")


def occurrence_windows(start: datetime, end: datetime, count: int, interval: str) -> list[tuple[datetime, datetime]]:
    """Return ``count`` (start, end) pairs, one interval unit apart.

    Every occurrence is computed from the first start rather than from the
    previous occurrence, so month clamping never drifts (Jan 31, Feb 29,
    Mar 31). Ends keep the original duration.
    """
    duration = end - start
    step = INTERVAL_STEPS.get(interval, INTERVAL_STEPS["day"])
    windows: list[tuple[datetime, datetime]] = []
    for index in range(count):
        occurrence_start = start + step * index
        windows.append((occurrence_start, occurrence_start + duration))
    return windows


def expand(
    request: CreateRecurringOrdersDto,
    owner_user_id: str,
    owner_warehouse_id: str | None,
) -> list[GeneratedOrder]:
    validate_request(request)
    windows = occurrence_windows(
        request.startDate,
        request.endDate,
        occurrence_count(request),
        request.recurrenceInterval,
    )
    return [
        GeneratedOrder(
            user_id=owner_user_id,
            warehouse_id=owner_warehouse_id,
            requested_start_date=window_start,
            requested_end_date=window_end,
            notes=request.notes,
            is_recurring=request.isRecurring,
            recurrence_count=request.recurrenceCount,
            recurrence_interval=request.recurrenceInterval,
        )
        for window_start, window_end in windows
    ]


def build_line_items(order_ids: Iterable[str], cart_items: Iterable[CartItemDto]) -> list[dict[str, str]]:
    items = list(cart_items)
    return [
        {"order_id": order_id, "item_id": item.id}
        for order_id in order_ids
        for item in items
    ]
