"""Remote backend protocol: a row store plus an auth sub-client."""

import enum
import inspect
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from typing import Any, Protocol

from pydantic import BaseModel, ValidationError

from mazao_pos.services.local_cache import REMOTE_SESSION_KEY, KeyValueStore

logger = logging.getLogger(__name__)

Row = dict[str, Any]


class BackendError(Exception):
    """Remote failure carrying a message that can be shown to the user."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class RemoteSession(BaseModel):
    user_id: str
    email: str = ""
    access_token: str
    refresh_token: str | None = None
    expires_at: datetime | None = None

    def is_expired(self, now: datetime | None = None) -> bool:
        if self.expires_at is None:
            return False
        now = now or datetime.now(timezone.utc)
        expires_at = self.expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return expires_at <= now


class AuthEvent(str, enum.Enum):
    SIGNED_IN = "SIGNED_IN"
    SIGNED_OUT = "SIGNED_OUT"
    TOKEN_REFRESHED = "TOKEN_REFRESHED"


AuthListener = Callable[[AuthEvent, RemoteSession | None], Awaitable[None] | None]


class RowStore(Protocol):
    async def select_one(self, table: str, filters: Row) -> Row | None: ...

    async def select(self, table: str, filters: Row) -> list[Row]: ...

    async def insert(self, table: str, row: Row) -> Row: ...

    async def update(self, table: str, filters: Row, patch: Row) -> list[Row]: ...


class AuthClient(Protocol):
    async def sign_in_with_password(self, email: str, password: str) -> RemoteSession: ...

    async def sign_up(self, email: str, password: str) -> str: ...

    async def sign_out(self) -> None: ...

    async def get_session(self) -> RemoteSession | None: ...

    async def reset_password_for_email(self, email: str) -> None: ...

    def on_auth_state_change(self, listener: AuthListener) -> Callable[[], None]: ...


class BaseAuthClient:
    """Listener registry and device persistence of the current remote session."""

    def __init__(self, cache: KeyValueStore | None = None):
        self._cache = cache
        self._session: RemoteSession | None = None
        self._listeners: list[AuthListener] = []

    @property
    def access_token(self) -> str | None:
        return self._session.access_token if self._session else None

    def on_auth_state_change(self, listener: AuthListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def _emit(self, event: AuthEvent, session: RemoteSession | None) -> None:
        for listener in list(self._listeners):
            try:
                result = listener(event, session)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Auth listener failed on %s", event.value)

    async def _load_session(self) -> RemoteSession | None:
        if self._cache is None:
            return self._session
        try:
            raw = await self._cache.get_item(REMOTE_SESSION_KEY)
        except Exception:
            logger.warning("Could not read persisted remote session", exc_info=True)
            return None
        if not raw:
            return None
        try:
            return RemoteSession.model_validate_json(raw)
        except ValidationError:
            logger.warning("Discarding unreadable persisted remote session")
            return None

    async def _store_session(self, session: RemoteSession) -> None:
        self._session = session
        if self._cache is None:
            return
        try:
            await self._cache.set_item(REMOTE_SESSION_KEY, session.model_dump_json())
        except Exception:
            logger.warning("Could not persist remote session", exc_info=True)

    async def _clear_session(self) -> None:
        self._session = None
        if self._cache is None:
            return
        try:
            await self._cache.remove_item(REMOTE_SESSION_KEY)
        except Exception:
            logger.warning("Could not remove persisted remote session", exc_info=True)


class RemoteBackend:
    """A row store and an auth client that belong together.

    ``authoritative`` backends are the source of truth on start-up: a cached
    login without a matching remote session is discarded. The demo backend is
    not authoritative because its sessions never outlive the process.
    """

    name: str = "remote"
    authoritative: bool = True
    rows: RowStore
    auth: AuthClient

    async def start(self) -> None:
        return None

    async def aclose(self) -> None:
        return None
