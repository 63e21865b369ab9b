"""Staff management for the signed-in shop: list, create, change PIN.

Staff members are PIN-only rows in ``users`` (no auth account, no email). PINs
are unique within a shop because staff login matches on shop code + PIN alone.
"""

import logging

from mazao_pos.backends.base import Row
from mazao_pos.core.security import aencode_pin, averify_pin, is_valid_pin
from mazao_pos.models.role import UserRole
from mazao_pos.schemas.auth import AuthResult
from mazao_pos.schemas.staff import StaffMember, StaffResult
from mazao_pos.services.session_manager import SessionManager, failure_result

logger = logging.getLogger(__name__)

NO_SHOP = "No shop selected"
INVALID_PIN = "PIN must be exactly 4 digits"
PIN_IN_USE = "This PIN is already in use by another staff member"
STAFF_NOT_FOUND = "Staff member not found"


class StaffService:
    def __init__(self, manager: SessionManager):
        self.manager = manager

    @property
    def _rows(self):
        return self.manager.backend.rows

    async def _shop_rows(self, shop_id: str) -> list[Row]:
        return await self._rows.select("users", {"shop_id": shop_id})

    @staticmethod
    async def _pin_taken(rows: list[Row], pin: str, exclude_id: str | None = None) -> bool:
        for row in rows:
            if str(row["id"]) != exclude_id and await averify_pin(pin, row.get("pin")):
                return True
        return False

    async def load_staff_list(self) -> list[StaffMember]:
        """Active staff of the current shop that can sign in with a PIN."""
        shop = self.manager.shop
        if shop is None:
            return []
        rows = await self._rows.select("users", {"shop_id": shop.id, "active": True})
        return [StaffMember.from_row(row) for row in rows if row.get("pin")]

    async def create_staff_member(
        self,
        full_name: str,
        pin: str,
        role: UserRole | str = UserRole.CASHIER,
    ) -> StaffResult:
        shop = self.manager.shop
        if shop is None:
            return StaffResult(success=False, error=NO_SHOP)
        if not is_valid_pin(pin):
            return StaffResult(success=False, error=INVALID_PIN)

        try:
            if await self._pin_taken(await self._shop_rows(shop.id), pin):
                return StaffResult(success=False, error=PIN_IN_USE)
            row = await self._rows.insert("users", {
                "full_name": full_name,
                "shop_id": shop.id,
                "role": UserRole(role).value,
                "pin": await aencode_pin(pin),
                "active": True,
            })
        except Exception as exc:
            failure = failure_result(exc, "Failed to create staff member")
            return StaffResult(success=False, error=failure.error)

        member = StaffMember.from_row(row)
        logger.info("Created %s %s in shop %s", member.role.value, member.id, shop.id)
        return StaffResult(success=True, user=member)

    async def update_staff_pin(self, user_id: str, new_pin: str) -> AuthResult:
        shop = self.manager.shop
        if shop is None:
            return AuthResult(success=False, error=NO_SHOP)
        if not is_valid_pin(new_pin):
            return AuthResult(success=False, error=INVALID_PIN)

        try:
            rows = await self._shop_rows(shop.id)
            if not any(str(row["id"]) == user_id for row in rows):
                return AuthResult(success=False, error=STAFF_NOT_FOUND)
            if await self._pin_taken(rows, new_pin, exclude_id=user_id):
                return AuthResult(success=False, error=PIN_IN_USE)
            stored = await aencode_pin(new_pin)
            await self._rows.update("users", {"id": user_id}, {"pin": stored})
        except Exception as exc:
            return failure_result(exc, "Failed to update PIN")

        current = self.manager.user
        if current is not None and current.id == user_id:
            await self.manager.refresh_user(current.model_copy(update={"pin": stored}))
        logger.info("PIN changed for staff %s", user_id)
        return AuthResult(success=True)
