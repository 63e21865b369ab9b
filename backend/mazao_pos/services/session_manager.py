"""Session manager: login flows, cache hydration, inactivity lock, permissions.

Owns the one ``SessionState`` of the process. Every transition goes through
``session_state.reduce``; this class only performs I/O (remote backend, device
cache, timer) and turns outcomes into events. Public operations return result
models and do not raise: a failure leaves the user signed out or where they were.
"""

import asyncio
import logging
import time
from collections.abc import Callable
from datetime import datetime, timezone
from typing import TypeVar

from pydantic import BaseModel, ValidationError

from mazao_pos.backends.base import AuthEvent, BackendError, RemoteBackend, RemoteSession
from mazao_pos.core.config import settings
from mazao_pos.core.security import averify_pin
from mazao_pos.schemas.auth import (
    AuthResult,
    AuthUser,
    LastShopInfo,
    Shop,
    ShopLookupResult,
    UnlockResult,
)
from mazao_pos.services.inactivity import InactivityTimer
from mazao_pos.services.local_cache import (
    AUTH_USER_KEY,
    CURRENT_SHOP_KEY,
    LAST_SHOP_KEY,
    KeyValueStore,
)
from mazao_pos.services.permissions import RoleSpec, has_permission
from mazao_pos.services.session_state import (
    Hydrated,
    LastShopChanged,
    LoadingFinished,
    Locked,
    Reconciled,
    SessionEvent,
    SessionState,
    SignedIn,
    SignedOut,
    Unlocked,
    UserUpdated,
    reduce,
)

logger = logging.getLogger(__name__)

INVALID_STAFF_LOGIN = "Invalid shop code or PIN"
TOO_MANY_ATTEMPTS = "You have entered the wrong PIN too many times. Please log in again."
SHOP_NOT_FOUND = "Shop not found. Please check the shop code."

SessionListener = Callable[[SessionState], None]
M = TypeVar("M", bound=BaseModel)


class ProfileNotFound(BackendError):
    """Authenticated identity without a row in ``users``."""


def failure_result(exc: Exception, fallback: str) -> AuthResult:
    if isinstance(exc, BackendError):
        return AuthResult(success=False, error=exc.message)
    logger.exception("%s", fallback)
    return AuthResult(success=False, error=fallback)


class SessionManager:
    def __init__(
        self,
        backend: RemoteBackend,
        cache: KeyValueStore,
        *,
        inactivity_timeout: float | None = None,
        max_unlock_attempts: int | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.backend = backend
        self._cache = cache
        self._state = SessionState()
        self._listeners: list[SessionListener] = []
        self.max_unlock_attempts = (
            max_unlock_attempts if max_unlock_attempts is not None else settings.MAX_UNLOCK_ATTEMPTS
        )
        self._unlock_failures = 0
        self._signing_out = False
        self._background: set[asyncio.Task] = set()
        self._timer = InactivityTimer(
            inactivity_timeout if inactivity_timeout is not None else settings.INACTIVITY_TIMEOUT_SECONDS,
            self._on_inactivity,
            clock=clock,
        )
        self._unsubscribe_auth = backend.auth.on_auth_state_change(self._on_auth_event)

    # ── State access ───────────────────────────────

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def user(self) -> AuthUser | None:
        return self._state.user

    @property
    def shop(self) -> Shop | None:
        return self._state.shop

    @property
    def is_authenticated(self) -> bool:
        return self._state.is_authenticated

    @property
    def is_locked(self) -> bool:
        return self._state.is_locked

    @property
    def unlock_failures(self) -> int:
        return self._unlock_failures

    @property
    def timer(self) -> InactivityTimer:
        return self._timer

    def subscribe(self, listener: SessionListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _dispatch(self, event: SessionEvent) -> None:
        new_state = reduce(self._state, event)
        if new_state == self._state:
            return
        self._state = new_state
        for listener in list(self._listeners):
            try:
                listener(new_state)
            except Exception:
                logger.exception("Session listener failed")

    # ── Device cache (best-effort) ─────────────────

    async def _cache_read(self, key: str, model: type[M]) -> M | None:
        try:
            raw = await self._cache.get_item(key)
        except Exception:
            logger.warning("Could not read %s from the device cache", key, exc_info=True)
            return None
        if not raw:
            return None
        try:
            return model.model_validate_json(raw)
        except ValidationError:
            logger.warning("Ignoring unreadable cache entry %s", key)
            return None

    async def _cache_write(self, key: str, value: BaseModel | None) -> None:
        try:
            if value is None:
                await self._cache.remove_item(key)
            else:
                await self._cache.set_item(key, value.model_dump_json())
        except Exception:
            logger.warning("Could not write %s to the device cache", key, exc_info=True)

    async def _cache_remove(self, *keys: str) -> None:
        for key in keys:
            try:
                await self._cache.remove_item(key)
            except Exception:
                logger.warning("Could not remove %s from the device cache", key, exc_info=True)

    async def _persist_session(self) -> None:
        await self._cache_write(AUTH_USER_KEY, self._state.user)
        await self._cache_write(CURRENT_SHOP_KEY, self._state.shop)
        if self._state.last_shop is not None:
            await self._cache_write(LAST_SHOP_KEY, self._state.last_shop)

    # ── Background work ────────────────────────────

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _touch_last_login(self, user_id: str) -> None:
        # Best-effort: a failed timestamp update never affects the login
        try:
            await self.backend.rows.update(
                "users", {"id": user_id}, {"last_login_at": datetime.now(timezone.utc)}
            )
        except Exception:
            logger.debug("last_login_at update for %s failed, ignored", user_id, exc_info=True)

    async def aclose(self) -> None:
        self._timer.cancel()
        self._unsubscribe_auth()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

    # ── Start-up ───────────────────────────────────

    async def initialize(self) -> SessionState:
        """Hydrate from the device cache, then reconcile with the remote backend."""
        cached_user = await self._cache_read(AUTH_USER_KEY, AuthUser)
        cached_shop = await self._cache_read(CURRENT_SHOP_KEY, Shop)
        last_shop = await self._cache_read(LAST_SHOP_KEY, LastShopInfo)
        self._dispatch(Hydrated(cached_user, cached_shop, last_shop))

        try:
            if self.backend.authoritative:
                await self._reconcile(cached_user)
        except Exception:
            logger.exception("Session reconciliation failed, continuing signed out")
            self._dispatch(SignedOut())
        finally:
            self._dispatch(LoadingFinished())

        if self.is_authenticated and not self.is_locked:
            self._timer.reset()
        return self._state

    async def _reconcile(self, cached_user: AuthUser | None) -> None:
        remote = await self.backend.auth.get_session()
        if remote is not None:
            try:
                user, shop = await self._load_profile(remote.user_id)
            except ProfileNotFound:
                logger.info("Remote session %s has no staff profile", remote.user_id)
                self._dispatch(SignedOut())
                await self._cache_remove(AUTH_USER_KEY, CURRENT_SHOP_KEY)
                return
            self._dispatch(Reconciled(user, shop))
            await self._persist_session()
            return

        # PIN-only staff sessions never had a remote session; password logins did
        if cached_user is not None and cached_user.email:
            logger.info("Cached login for %s has no remote session, discarding", cached_user.id)
            self._dispatch(SignedOut())
            await self._cache_remove(AUTH_USER_KEY, CURRENT_SHOP_KEY)

    async def _load_profile(self, auth_id: str) -> tuple[AuthUser, Shop | None]:
        rows = self.backend.rows
        user_row = await rows.select_one("users", {"auth_id": auth_id})
        if user_row is None:
            raise ProfileNotFound("No staff profile is linked to this account", 404)
        user = AuthUser.from_row(user_row)
        shop = None
        if user.shop_id:
            shop_row = await rows.select_one("shops", {"id": user.shop_id})
            if shop_row is not None:
                shop = Shop.from_row(shop_row)
        return user, shop

    async def _start_session(self, user: AuthUser, shop: Shop | None) -> None:
        self._unlock_failures = 0
        self._dispatch(SignedIn(user, shop))
        await self._persist_session()
        self._timer.reset()
        self._spawn(self._touch_last_login(user.id))

    # ── Login flows ────────────────────────────────

    async def login(self, email: str, password: str) -> AuthResult:
        """Email/password login through the remote auth client."""
        try:
            remote = await self.backend.auth.sign_in_with_password(email, password)
        except Exception as exc:
            return failure_result(exc, "Login failed")

        try:
            user, shop = await self._load_profile(remote.user_id)
        except Exception as exc:
            await self._sign_out_remote()
            return failure_result(exc, "Login failed")

        if not user.active:
            await self._sign_out_remote()
            return AuthResult(success=False, error="Account is deactivated")

        await self._start_session(user, shop)
        logger.info("User %s signed in to shop %s", user.id, user.shop_id)
        return AuthResult(success=True)

    async def staff_login(self, shop_code: str, pin: str) -> AuthResult:
        """Shop code + PIN login. Never reveals which of the two was wrong."""
        code = shop_code.strip().upper()
        try:
            shop_row = await self.backend.rows.select_one("shops", {"shop_code": code})
            staff_rows = []
            if shop_row is not None:
                staff_rows = await self.backend.rows.select(
                    "users", {"shop_id": shop_row["id"], "active": True}
                )
        except Exception as exc:
            return failure_result(exc, "Login failed")

        match = None
        for row in staff_rows:
            if await averify_pin(pin, row.get("pin")):
                match = row
                break
        if shop_row is None or match is None:
            logger.info("Staff login rejected for shop code %s", code)
            return AuthResult(success=False, error=INVALID_STAFF_LOGIN)

        user = AuthUser.from_row(match)
        await self._end_remote_session()
        await self._start_session(user, Shop.from_row(shop_row))
        logger.info("Staff %s signed in to shop %s", user.id, code)
        return AuthResult(success=True)

    async def lookup_shop_by_code(self, shop_code: str) -> ShopLookupResult:
        code = shop_code.strip().upper()
        try:
            row = await self.backend.rows.select_one("shops", {"shop_code": code})
        except Exception as exc:
            failure = failure_result(exc, "Failed to lookup shop")
            return ShopLookupResult(success=False, error=failure.error)
        if row is None:
            return ShopLookupResult(success=False, error=SHOP_NOT_FOUND)
        return ShopLookupResult(
            success=True,
            shop=LastShopInfo(name=row["name"], shop_code=row["shop_code"], logo=row.get("logo")),
        )

    async def request_password_reset(self, email: str) -> AuthResult:
        try:
            await self.backend.auth.reset_password_for_email(email)
        except Exception as exc:
            return failure_result(exc, "Failed to send reset email")
        return AuthResult(success=True)

    # ── Lock / unlock ──────────────────────────────

    def lock_screen(self) -> None:
        if not self.is_authenticated or self.is_locked:
            return
        self._timer.cancel()
        self._dispatch(Locked())

    def _on_inactivity(self) -> None:
        self.lock_screen()

    def record_activity(self) -> None:
        """Any user interaction. Restarts the inactivity timer while unlocked."""
        if self.is_authenticated and not self.is_locked:
            self._timer.reset()

    def resume(self) -> None:
        """App back in the foreground: lock if idle too long, else restart the timer."""
        if not self.is_authenticated or self.is_locked:
            return
        if self._timer.expired():
            self.lock_screen()
        else:
            self._timer.reset()

    async def _stored_pin(self, user: AuthUser) -> str | None:
        try:
            row = await self.backend.rows.select_one("users", {"id": user.id})
        except BackendError as exc:
            logger.warning("PIN lookup failed (%s), using the PIN loaded at login", exc.message)
            return user.pin
        if row is None:
            return None
        return row.get("pin")

    async def unlock_with_pin(self, pin: str) -> UnlockResult:
        user = self._state.user
        if user is None:
            return UnlockResult(success=False, error="No user session")
        if not self._state.is_locked:
            return UnlockResult(success=True)

        try:
            stored = await self._stored_pin(user)
        except Exception:
            logger.exception("Unlock failed")
            return UnlockResult(success=False, error="Unlock failed")
        if stored is None:
            return UnlockResult(success=False, error="Could not verify PIN")

        if await averify_pin(pin, stored):
            self._unlock_failures = 0
            self._dispatch(Unlocked())
            self._timer.reset()
            return UnlockResult(success=True)

        self._unlock_failures += 1
        remaining = max(self.max_unlock_attempts - self._unlock_failures, 0)
        if remaining == 0:
            logger.warning("Too many wrong PINs for user %s, signing out", user.id)
            await self.logout()
            return UnlockResult(
                success=False, error=TOO_MANY_ATTEMPTS, attempts_remaining=0, logged_out=True
            )
        return UnlockResult(
            success=False,
            error=f"Incorrect PIN. {remaining} attempts remaining",
            attempts_remaining=remaining,
        )

    # ── Logout ─────────────────────────────────────

    async def _sign_out_remote(self) -> None:
        self._signing_out = True
        try:
            await self.backend.auth.sign_out()
        except Exception:
            logger.warning("Remote sign-out failed, clearing the local session anyway", exc_info=True)
        finally:
            self._signing_out = False

    async def _end_remote_session(self) -> None:
        """Drop a password session left on the device so it cannot win the next reconcile."""
        try:
            if await self.backend.auth.get_session() is None:
                return
        except Exception:
            logger.warning("Remote session check failed, signing out anyway", exc_info=True)
        await self._sign_out_remote()

    async def _clear_local(self) -> None:
        self._unlock_failures = 0
        self._timer.cancel()
        self._dispatch(SignedOut())
        await self._cache_remove(AUTH_USER_KEY, CURRENT_SHOP_KEY)

    async def logout(self) -> AuthResult:
        if self._state.user is not None:
            await self._sign_out_remote()
            logger.info("User %s signed out", self._state.user.id)
        await self._clear_local()
        return AuthResult(success=True)

    async def _on_auth_event(self, event: AuthEvent, session: RemoteSession | None) -> None:
        if event is not AuthEvent.SIGNED_OUT or self._signing_out:
            return
        user = self._state.user
        if user is not None and user.email:
            logger.info("Remote session ended, signing out user %s", user.id)
            await self._clear_local()

    # ── Profile / permissions ──────────────────────

    def has_permission(self, required: RoleSpec) -> bool:
        return has_permission(self._state.user, required)

    async def refresh_user(self, user: AuthUser) -> None:
        """Replace the signed-in user's record (same id) in memory and in the cache."""
        self._dispatch(UserUpdated(user))
        if self._state.user is not None and self._state.user.id == user.id:
            await self._cache_write(AUTH_USER_KEY, self._state.user)

    async def update_user_profile(
        self, full_name: str | None = None, phone: str | None = None
    ) -> AuthResult:
        user = self._state.user
        if user is None:
            return AuthResult(success=False, error="No user session")
        patch = {
            key: value
            for key, value in {"full_name": full_name, "phone": phone}.items()
            if value is not None
        }
        if not patch:
            return AuthResult(success=True)
        try:
            await self.backend.rows.update("users", {"id": user.id}, patch)
        except Exception as exc:
            return failure_result(exc, "Failed to update profile")
        await self.refresh_user(user.model_copy(update=patch))
        return AuthResult(success=True)

    async def set_last_shop_info(self, info: LastShopInfo | None) -> None:
        self._dispatch(LastShopChanged(info))
        await self._cache_write(LAST_SHOP_KEY, info)

    async def clear_last_shop_info(self) -> None:
        await self.set_last_shop_info(None)
