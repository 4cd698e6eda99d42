from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict


class EquipmentUpsert(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: Optional[str] = None
    description: Optional[str] = None
    categoryID: Optional[str] = None
    warehouseID: Optional[str] = None
    equipmentStatus: Optional[Literal["available", "faulted"]] = None
    isRentable: Optional[bool] = None
    imageUrl: Optional[str] = None
