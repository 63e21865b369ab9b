"""Session/auth records, operation results and request bodies."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, EmailStr, Field

from mazao_pos.models.role import UserRole


# ── Records ────────────────────────────────────────
class AuthUser(BaseModel):
    id: str
    email: str = ""
    full_name: str
    phone: str | None = None
    shop_id: str | None = None
    role: UserRole
    active: bool = True
    created_at: datetime | None = None
    last_login_at: datetime | None = None
    # Never serialized: not written to the device cache, not returned by the API
    pin: str | None = Field(default=None, exclude=True, repr=False)

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "AuthUser":
        return cls(
            id=str(row["id"]),
            email=row.get("email") or "",
            full_name=row.get("full_name") or "",
            phone=row.get("phone"),
            shop_id=row.get("shop_id"),
            role=row.get("role") or UserRole.CASHIER,
            active=row.get("active") is not False,
            created_at=row.get("created_at"),
            last_login_at=row.get("last_login_at"),
            pin=row.get("pin"),
        )


class Shop(BaseModel):
    id: str
    name: str
    logo: str | None = None
    address: str | None = None
    phone: str | None = None
    email: str | None = None
    tax_id: str | None = None
    currency: str = "KES"
    receipt_footer: str | None = None
    shop_code: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Shop":
        return cls(
            id=str(row["id"]),
            name=row.get("name") or "",
            logo=row.get("logo"),
            address=row.get("address"),
            phone=row.get("phone"),
            email=row.get("email"),
            tax_id=row.get("tax_id"),
            currency=row.get("currency") or "KES",
            receipt_footer=row.get("receipt_footer"),
            shop_code=row.get("shop_code"),
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
        )


class LastShopInfo(BaseModel):
    """Branding of the last shop used on this device, shown on the staff login screen."""
    name: str
    shop_code: str
    logo: str | None = None

    @classmethod
    def from_shop(cls, shop: Shop) -> "LastShopInfo":
        return cls(name=shop.name, shop_code=shop.shop_code or "", logo=shop.logo)


# ── Operation results ──────────────────────────────
class AuthResult(BaseModel):
    success: bool
    error: str | None = None


class UnlockResult(AuthResult):
    attempts_remaining: int | None = None
    logged_out: bool = False


class ShopLookupResult(AuthResult):
    shop: LastShopInfo | None = None


class SignupResult(AuthResult):
    shop_code: str | None = None
    pin: str | None = None


# ── Requests ───────────────────────────────────────
class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=1)


class StaffLoginRequest(BaseModel):
    shop_code: str = Field(min_length=1, max_length=20)
    pin: str = Field(pattern=r"^\d{4}$")


class UnlockRequest(BaseModel):
    pin: str = Field(pattern=r"^\d{4}$")


class SignupRequest(BaseModel):
    license_key: str = Field(min_length=1)
    phone: str = Field(min_length=1, max_length=20)
    email: EmailStr
    password: str = Field(min_length=6)
    full_name: str = Field(min_length=1, max_length=255)
    shop_name: str = Field(min_length=1, max_length=255)


class PasswordResetRequest(BaseModel):
    email: EmailStr


class ProfileUpdate(BaseModel):
    full_name: str | None = Field(default=None, min_length=1, max_length=255)
    phone: str | None = Field(default=None, max_length=20)


# ── Responses ──────────────────────────────────────
class SessionResponse(BaseModel):
    user: AuthUser | None
    shop: Shop | None
    last_shop: LastShopInfo | None
    is_authenticated: bool
    is_loading: bool
    is_locked: bool
