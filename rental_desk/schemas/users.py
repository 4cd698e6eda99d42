from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict


class LoginRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    email: str | None = None
    password: str | None = None


class CreateUserDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    firstName: Optional[str] = None
    lastName: Optional[str] = None
    email: str
    password: str
    warehouseID: Optional[str] = None
    role: Optional[Literal["manager", "storage_manager", "student"]] = None


class RoleUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    role: Literal["manager", "storage_manager", "student"]
