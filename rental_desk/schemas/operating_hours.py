from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class TimeSlotRow(BaseModel):
    model_config = ConfigDict(from_attributes=True, extra="ignore")

    id: Optional[str] = None
    warehouse_id: Optional[str] = None
    day_of_week: int
    slot_start: str
    slot_end: Optional[str] = None
    is_closed: bool


class SlotUpdate(BaseModel):
    id: str
    is_closed: bool


class SlotDiff(BaseModel):
    to_insert: List[TimeSlotRow] = []
    to_update: List[SlotUpdate] = []
    to_delete: List[str] = []

    def is_empty(self) -> bool:
        return not (self.to_insert or self.to_update or self.to_delete)


class GridCellDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    dayOfWeek: int = Field(ge=0, le=6)
    slotStart: str
    isClosed: bool


class SaveOperatingHoursRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    warehouseID: Optional[str] = None
    cells: List[GridCellDto] = []
