from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Iterable

from sqlalchemy import delete, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from rental_desk.models.rental_models import WarehouseTimeSlot
from rental_desk.schemas.operating_hours import SlotDiff, SlotUpdate, TimeSlotRow
from rental_desk.services.audit_service import log_audit
from rental_desk.services.errors import PersistenceFailure

LOGGER = logging.getLogger("rental_desk.operating_hours")

OPEN_TIME = "09:00"
CLOSE_TIME = "17:00"
SLOT_MINUTES = 30
DAYS_OF_WEEK = tuple(range(7))
DEFAULT_CLOSED_DAYS = frozenset({5, 6})
LOCKED_DAYS = frozenset({6})


def _parse_hhmm(value: str) -> datetime:
    return datetime.strptime(value, "%H:%M")


def build_slot_starts(open_time: str = OPEN_TIME, close_time: str = CLOSE_TIME, minutes: int = SLOT_MINUTES) -> list[str]:
    current = _parse_hhmm(open_time)
    closing = _parse_hhmm(close_time)
    starts: list[str] = []
    while current < closing:
        starts.append(current.strftime("%H:%M"))
        current += timedelta(minutes=minutes)
    return starts


SLOT_STARTS = build_slot_starts()
_SLOT_INDEX = {slot_start: index for index, slot_start in enumerate(SLOT_STARTS)}


def slot_end_for(slot_start: str) -> str:
    return (_parse_hhmm(slot_start) + timedelta(minutes=SLOT_MINUTES)).strftime("%H:%M")


def is_default_closed(day_of_week: int) -> bool:
    return day_of_week in DEFAULT_CLOSED_DAYS


def slot_index(slot_start: str) -> int:
    if slot_start not in _SLOT_INDEX:
        raise ValueError(f"Unknown slot start {slot_start!r}; expected one of {SLOT_STARTS[0]}..{SLOT_STARTS[-1]}.")
    return _SLOT_INDEX[slot_start]


class GridState:
    """Closed/open state of every slot in the weekly grid for one edit session.

    Seeded from the day-of-week defaults and overlaid with persisted override
    rows. Nothing here is written back until the caller reconciles it with
    :func:`diff` and persists the result.
    """

    def __init__(self) -> None:
        self._cells: dict[tuple[int, str], bool] = {
            (day, slot_start): is_default_closed(day)
            for day in DAYS_OF_WEEK
            for slot_start in SLOT_STARTS
        }
        self._anchor: tuple[int, int] | None = None

    @classmethod
    def from_persisted(cls, rows: Iterable[Any]) -> "GridState":
        grid = cls()
        for row in rows:
            key = (int(row.day_of_week), row.slot_start)
            if key in grid._cells:
                grid._cells[key] = bool(row.is_closed)
        return grid

    def _check_day(self, day_of_week: int) -> None:
        if day_of_week not in DAYS_OF_WEEK:
            raise ValueError(f"day_of_week must be 0..6, got {day_of_week}.")

    def is_closed(self, day_of_week: int, slot_start: str) -> bool:
        self._check_day(day_of_week)
        slot_index(slot_start)
        return self._cells[(day_of_week, slot_start)]

    def set_closed(self, day_of_week: int, slot_start: str, closed: bool) -> None:
        self._check_day(day_of_week)
        slot_index(slot_start)
        self._cells[(day_of_week, slot_start)] = bool(closed)

    def toggle(self, day_of_week: int, slot_start: str, shift: bool = False) -> bool:
        """Flip one cell, or a range when ``shift`` follows a click on the same day.

        A range covers every slot between the previous click and this one,
        inclusive and in time order, and takes this click's resulting value.
        Saturday is not editable here and is returned unchanged.
        """
        self._check_day(day_of_week)
        index = slot_index(slot_start)
        current = self._cells[(day_of_week, slot_start)]
        if day_of_week in LOCKED_DAYS:
            return current

        closed = not current
        anchor = self._anchor
        if shift and anchor is not None and anchor[0] == day_of_week:
            low, high = sorted((anchor[1], index))
            for position in range(low, high + 1):
                self._cells[(day_of_week, SLOT_STARTS[position])] = closed
        else:
            self._cells[(day_of_week, slot_start)] = closed
        self._anchor = (day_of_week, index)
        return closed

    def day_values(self, day_of_week: int) -> list[bool]:
        self._check_day(day_of_week)
        return [self._cells[(day_of_week, slot_start)] for slot_start in SLOT_STARTS]


def diff(persisted: Iterable[Any], desired: GridState, warehouse_id: str | None = None) -> SlotDiff:
    existing_by_cell = {(int(row.day_of_week), row.slot_start): row for row in persisted}
    result = SlotDiff()

    for day in DAYS_OF_WEEK:
        default_closed = is_default_closed(day)
        for slot_start in SLOT_STARTS:
            desired_closed = desired.is_closed(day, slot_start)
            existing = existing_by_cell.get((day, slot_start))
            if existing is not None:
                if desired_closed == default_closed:
                    result.to_delete.append(existing.id)
                elif bool(existing.is_closed) != desired_closed:
                    result.to_update.append(SlotUpdate(id=existing.id, is_closed=desired_closed))
                continue
            if desired_closed != default_closed:
                result.to_insert.append(
                    TimeSlotRow(
                        warehouse_id=warehouse_id,
                        day_of_week=day,
                        slot_start=slot_start,
                        slot_end=slot_end_for(slot_start),
                        is_closed=desired_closed,
                    )
                )
    return result


def load_time_slots(db: Session, warehouse_id: str) -> list[WarehouseTimeSlot]:
    return db.execute(
        select(WarehouseTimeSlot)
        .where(WarehouseTimeSlot.warehouse_id == warehouse_id)
        .order_by(WarehouseTimeSlot.day_of_week, WarehouseTimeSlot.slot_start)
        .execution_options(populate_existing=True)
    ).scalars().all()


def apply_slot_diff(db: Session, warehouse_id: str, slot_diff: SlotDiff, user_id: str | None = None) -> dict[str, int]:
    # One transaction; each batch is flushed on its own so a failure names its batch.
    batch = "delete"
    try:
        if slot_diff.to_delete:
            db.execute(
                delete(WarehouseTimeSlot)
                .where(WarehouseTimeSlot.warehouse_id == warehouse_id)
                .where(WarehouseTimeSlot.id.in_(slot_diff.to_delete))
                .execution_options(synchronize_session=False)
            )
            db.flush()

        batch = "update"
        for change in slot_diff.to_update:
            db.execute(
                update(WarehouseTimeSlot)
                .where(WarehouseTimeSlot.warehouse_id == warehouse_id)
                .where(WarehouseTimeSlot.id == change.id)
                .values(is_closed=change.is_closed)
                .execution_options(synchronize_session=False)
            )
        db.flush()

        batch = "insert"
        db.add_all(
            [
                WarehouseTimeSlot(
                    warehouse_id=warehouse_id,
                    day_of_week=row.day_of_week,
                    slot_start=row.slot_start,
                    slot_end=row.slot_end or slot_end_for(row.slot_start),
                    is_closed=row.is_closed,
                )
                for row in slot_diff.to_insert
            ]
        )
        db.flush()

        counts = {
            "deleted": len(slot_diff.to_delete),
            "updated": len(slot_diff.to_update),
            "inserted": len(slot_diff.to_insert),
        }
        batch = "commit"
        if not slot_diff.is_empty():
            log_audit(db, "warehouse_time_slots", warehouse_id, "UPDATE", user_id=user_id, new_data=counts)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        LOGGER.error("Operating hours save failed warehouse_id=%s batch=%s error=%s", warehouse_id, batch, exc)
        raise PersistenceFailure(batch, str(exc)) from exc

    LOGGER.info(
        "Operating hours saved warehouse_id=%s deleted=%s updated=%s inserted=%s",
        warehouse_id,
        counts["deleted"],
        counts["updated"],
        counts["inserted"],
    )
    return counts


def serialize_grid(grid: GridState, persisted: Iterable[Any] = ()) -> dict:
    overrides = {(int(row.day_of_week), row.slot_start) for row in persisted}
    days = []
    for day in DAYS_OF_WEEK:
        days.append(
            {
                "dayOfWeek": day,
                "isDefaultClosed": is_default_closed(day),
                "isLocked": day in LOCKED_DAYS,
                "cells": [
                    {
                        "slotStart": slot_start,
                        "slotEnd": slot_end_for(slot_start),
                        "isClosed": grid.is_closed(day, slot_start),
                        "isOverride": (day, slot_start) in overrides,
                    }
                    for slot_start in SLOT_STARTS
                ],
            }
        )
    return {"slotStarts": list(SLOT_STARTS), "days": days}
