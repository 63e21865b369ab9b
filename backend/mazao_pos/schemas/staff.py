"""Staff member schemas."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from mazao_pos.models.role import UserRole
from mazao_pos.schemas.auth import AuthResult


class StaffMember(BaseModel):
    id: str
    full_name: str
    role: UserRole
    shop_id: str | None = None
    active: bool = True
    created_at: datetime | None = None
    last_login_at: datetime | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "StaffMember":
        return cls(
            id=str(row["id"]),
            full_name=row.get("full_name") or "",
            role=row.get("role") or UserRole.CASHIER,
            shop_id=row.get("shop_id"),
            active=row.get("active") is not False,
            created_at=row.get("created_at"),
            last_login_at=row.get("last_login_at"),
        )


class StaffResult(AuthResult):
    user: StaffMember | None = None


class CreateStaffRequest(BaseModel):
    full_name: str = Field(min_length=1, max_length=255)
    pin: str = Field(pattern=r"^\d{4}$")
    role: UserRole = UserRole.CASHIER


class UpdatePinRequest(BaseModel):
    pin: str = Field(pattern=r"^\d{4}$")
