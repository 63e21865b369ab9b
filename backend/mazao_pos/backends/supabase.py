"""Hosted backend: PostgREST tables and GoTrue auth over HTTPS."""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any

import httpx
from pydantic_core import to_jsonable_python

from mazao_pos.backends.base import (
    AuthEvent,
    BackendError,
    BaseAuthClient,
    RemoteBackend,
    RemoteSession,
    Row,
)
from mazao_pos.services.local_cache import KeyValueStore

logger = logging.getLogger(__name__)


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        for key in ("error_description", "msg", "message", "error"):
            if body.get(key):
                return str(body[key])
    return f"Request failed with status {response.status_code}"


async def _send(client: httpx.AsyncClient, method: str, url: str, **kwargs: Any) -> httpx.Response:
    try:
        response = await client.request(method, url, **kwargs)
        response.raise_for_status()
    except httpx.HTTPStatusError as exc:
        logger.info("%s %s -> %s", method, url, exc.response.status_code)
        raise BackendError(_error_message(exc.response), exc.response.status_code) from exc
    except httpx.RequestError as exc:
        logger.warning("%s %s failed: %s", method, url, exc)
        raise BackendError("Network error. Check your connection and try again.") from exc
    return response


def _filter_value(value: Any) -> str:
    if value is None:
        return "is.null"
    if isinstance(value, bool):
        return f"eq.{str(value).lower()}"
    return f"eq.{value}"


class SupabaseRowStore:
    def __init__(self, client: httpx.AsyncClient, auth: "SupabaseAuthClient", anon_key: str):
        self._client = client
        self._auth = auth
        self._anon_key = anon_key

    def _headers(self, **extra: str) -> dict[str, str]:
        token = self._auth.access_token or self._anon_key
        return {"Authorization": f"Bearer {token}", **extra}

    @staticmethod
    def _params(filters: Row, **extra: str) -> dict[str, str]:
        params = {column: _filter_value(value) for column, value in filters.items()}
        params.update(extra)
        return params

    async def select(self, table: str, filters: Row) -> list[Row]:
        response = await _send(
            self._client, "GET", f"/rest/v1/{table}",
            params=self._params(filters, select="*"),
            headers=self._headers(),
        )
        return response.json()

    async def select_one(self, table: str, filters: Row) -> Row | None:
        response = await _send(
            self._client, "GET", f"/rest/v1/{table}",
            params=self._params(filters, select="*", limit="1"),
            headers=self._headers(),
        )
        rows = response.json()
        return rows[0] if rows else None

    async def insert(self, table: str, row: Row) -> Row:
        response = await _send(
            self._client, "POST", f"/rest/v1/{table}",
            json=to_jsonable_python(row),
            headers=self._headers(Prefer="return=representation"),
        )
        rows = response.json()
        if not rows:
            raise BackendError(f"Insert into {table} returned no row")
        return rows[0]

    async def update(self, table: str, filters: Row, patch: Row) -> list[Row]:
        response = await _send(
            self._client, "PATCH", f"/rest/v1/{table}",
            params=self._params(filters),
            json=to_jsonable_python(patch),
            headers=self._headers(Prefer="return=representation"),
        )
        return response.json()


class SupabaseAuthClient(BaseAuthClient):
    def __init__(self, client: httpx.AsyncClient, cache: KeyValueStore | None = None):
        super().__init__(cache)
        self._client = client

    @staticmethod
    def _session_from_payload(data: dict) -> RemoteSession:
        user = data.get("user") or {}
        if data.get("expires_at"):
            expires_at = datetime.fromtimestamp(int(data["expires_at"]), tz=timezone.utc)
        elif data.get("expires_in"):
            expires_at = datetime.now(timezone.utc) + timedelta(seconds=int(data["expires_in"]))
        else:
            expires_at = None
        if not data.get("access_token") or not user.get("id"):
            raise BackendError("Login failed")
        return RemoteSession(
            user_id=str(user["id"]),
            email=user.get("email") or "",
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            expires_at=expires_at,
        )

    async def sign_in_with_password(self, email: str, password: str) -> RemoteSession:
        response = await _send(
            self._client, "POST", "/auth/v1/token",
            params={"grant_type": "password"},
            json={"email": email, "password": password},
        )
        session = self._session_from_payload(response.json())
        await self._store_session(session)
        await self._emit(AuthEvent.SIGNED_IN, session)
        return session

    async def sign_up(self, email: str, password: str) -> str:
        response = await _send(
            self._client, "POST", "/auth/v1/signup",
            json={"email": email, "password": password},
        )
        data = response.json()
        # Returns a session when email confirmation is off, a bare user when it is on
        user = data.get("user") or data
        if not user.get("id"):
            raise BackendError("Sign up failed")
        return str(user["id"])

    async def sign_out(self) -> None:
        token = self.access_token
        await self._clear_session()
        try:
            if token:
                await _send(
                    self._client, "POST", "/auth/v1/logout",
                    headers={"Authorization": f"Bearer {token}"},
                )
        finally:
            await self._emit(AuthEvent.SIGNED_OUT, None)

    async def _refresh(self, session: RemoteSession) -> RemoteSession | None:
        try:
            response = await _send(
                self._client, "POST", "/auth/v1/token",
                params={"grant_type": "refresh_token"},
                json={"refresh_token": session.refresh_token},
            )
        except BackendError as exc:
            if exc.status_code is None:
                raise
            logger.info("Refresh token rejected (%s), signing out", exc.status_code)
            await self._clear_session()
            await self._emit(AuthEvent.SIGNED_OUT, None)
            return None
        refreshed = self._session_from_payload(response.json())
        await self._store_session(refreshed)
        await self._emit(AuthEvent.TOKEN_REFRESHED, refreshed)
        return refreshed

    async def get_session(self) -> RemoteSession | None:
        if self._session is None:
            self._session = await self._load_session()
        session = self._session
        if session is None:
            return None
        if not session.is_expired():
            return session
        if not session.refresh_token:
            await self._clear_session()
            return None
        return await self._refresh(session)

    async def reset_password_for_email(self, email: str) -> None:
        await _send(self._client, "POST", "/auth/v1/recover", json={"email": email})


class SupabaseBackend(RemoteBackend):
    name = "supabase"

    def __init__(
        self,
        url: str,
        anon_key: str,
        cache: KeyValueStore | None = None,
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._client = httpx.AsyncClient(
            base_url=url.rstrip("/"),
            headers={"apikey": anon_key},
            timeout=timeout,
            transport=transport,
        )
        self.auth = SupabaseAuthClient(self._client, cache)
        self.rows = SupabaseRowStore(self._client, self.auth, anon_key)

    async def aclose(self) -> None:
        await self._client.aclose()
