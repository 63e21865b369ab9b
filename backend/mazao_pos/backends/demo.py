"""Demo mode: a fabricated shop and staff held in memory, no network at all.

Used when no remote backend is configured. Any non-empty email/password signs
in as the shop admin. Staff PINs: 1234 (cashier), 5678 (manager); the admin
unlocks with 0000.
"""

import copy
import logging
import uuid
from datetime import datetime, timezone

from mazao_pos.backends.base import (
    AuthEvent,
    BackendError,
    BaseAuthClient,
    RemoteBackend,
    RemoteSession,
    Row,
)
from mazao_pos.models.role import UserRole

logger = logging.getLogger(__name__)

DEMO_SHOP_ID = "demo-shop"
DEMO_SHOP_NAME = "Mazao Animal Supplies"
DEMO_SHOP_CODE = "DEMO1234"
DEMO_ADMIN_AUTH_ID = "demo-auth"


def _now() -> datetime:
    return datetime.now(timezone.utc)


def demo_tables() -> dict[str, list[Row]]:
    now = _now()
    return {
        "shops": [
            {
                "id": DEMO_SHOP_ID,
                "name": DEMO_SHOP_NAME,
                "logo": None,
                "address": None,
                "phone": None,
                "email": None,
                "tax_id": None,
                "currency": "KES",
                "receipt_footer": None,
                "shop_code": DEMO_SHOP_CODE,
                "created_at": now,
                "updated_at": now,
            },
        ],
        "users": [
            {
                "id": "demo-user",
                "auth_id": DEMO_ADMIN_AUTH_ID,
                "email": "",
                "full_name": "Demo Admin",
                "phone": None,
                "shop_id": DEMO_SHOP_ID,
                "role": UserRole.ADMIN.value,
                "active": True,
                "pin": "0000",
                "created_at": now,
                "last_login_at": None,
            },
            {
                "id": "staff-1",
                "auth_id": None,
                "email": "",
                "full_name": "John Cashier",
                "phone": None,
                "shop_id": DEMO_SHOP_ID,
                "role": UserRole.CASHIER.value,
                "active": True,
                "pin": "1234",
                "created_at": now,
                "last_login_at": None,
            },
            {
                "id": "staff-2",
                "auth_id": None,
                "email": "",
                "full_name": "Mary Manager",
                "phone": None,
                "shop_id": DEMO_SHOP_ID,
                "role": UserRole.MANAGER.value,
                "active": True,
                "pin": "5678",
                "created_at": now,
                "last_login_at": None,
            },
        ],
    }


class InMemoryRowStore:
    def __init__(self, tables: dict[str, list[Row]] | None = None):
        self._tables: dict[str, list[Row]] = tables if tables is not None else demo_tables()

    def _table(self, table: str) -> list[Row]:
        try:
            return self._tables[table]
        except KeyError:
            raise BackendError(f"Unknown table: {table}")

    @staticmethod
    def _matches(row: Row, filters: Row) -> bool:
        return all(row.get(column) == value for column, value in filters.items())

    async def select(self, table: str, filters: Row) -> list[Row]:
        return [copy.deepcopy(row) for row in self._table(table) if self._matches(row, filters)]

    async def select_one(self, table: str, filters: Row) -> Row | None:
        for row in self._table(table):
            if self._matches(row, filters):
                return copy.deepcopy(row)
        return None

    async def insert(self, table: str, row: Row) -> Row:
        stored = {"id": str(uuid.uuid4()), "created_at": _now(), **row}
        self._table(table).append(stored)
        return copy.deepcopy(stored)

    async def update(self, table: str, filters: Row, patch: Row) -> list[Row]:
        updated = []
        for row in self._table(table):
            if self._matches(row, filters):
                row.update(patch)
                updated.append(copy.deepcopy(row))
        return updated


class DemoAuthClient(BaseAuthClient):
    def __init__(self, rows: InMemoryRowStore):
        super().__init__(cache=None)
        self._rows = rows

    async def sign_in_with_password(self, email: str, password: str) -> RemoteSession:
        if not email or not password:
            raise BackendError("Email and password are required", 400)
        await self._rows.update("users", {"auth_id": DEMO_ADMIN_AUTH_ID}, {"email": email})
        session = RemoteSession(user_id=DEMO_ADMIN_AUTH_ID, email=email, access_token="demo")
        await self._store_session(session)
        await self._emit(AuthEvent.SIGNED_IN, session)
        return session

    async def sign_up(self, email: str, password: str) -> str:
        raise BackendError("Database not configured")

    async def sign_out(self) -> None:
        await self._clear_session()
        await self._emit(AuthEvent.SIGNED_OUT, None)

    async def get_session(self) -> RemoteSession | None:
        return self._session

    async def reset_password_for_email(self, email: str) -> None:
        raise BackendError("Password reset is not available in demo mode")


class DemoBackend(RemoteBackend):
    name = "demo"
    authoritative = False

    def __init__(self, tables: dict[str, list[Row]] | None = None):
        self.rows = InMemoryRowStore(tables)
        self.auth = DemoAuthClient(self.rows)
        logger.info("Running in demo mode: shop %s (%s)", DEMO_SHOP_NAME, DEMO_SHOP_CODE)
