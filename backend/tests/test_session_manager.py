"""Unit tests for the session manager: login flows, start-up, lock/unlock, logout."""

import asyncio
import json
import threading
from unittest.mock import AsyncMock

import pytest

from mazao_pos.backends.base import BackendError
from mazao_pos.backends.demo import DEMO_SHOP_CODE, DEMO_SHOP_ID, DEMO_SHOP_NAME
from mazao_pos.core import security
from mazao_pos.core.security import hash_pin
from mazao_pos.models.role import UserRole
from mazao_pos.schemas.auth import LastShopInfo
from mazao_pos.services.local_cache import (
    AUTH_USER_KEY,
    CURRENT_SHOP_KEY,
    LAST_SHOP_KEY,
    MemoryKeyValueStore,
)
from mazao_pos.services.session_manager import (
    INVALID_STAFF_LOGIN,
    SHOP_NOT_FOUND,
    TOO_MANY_ATTEMPTS,
    SessionManager,
)

from conftest import AuthoritativeDemoBackend

EMAIL = "owner@mazao.co.ke"


class BrokenCache:
    async def get_item(self, key):
        raise OSError("disk unavailable")

    async def set_item(self, key, value):
        raise OSError("disk unavailable")

    async def remove_item(self, key):
        raise OSError("disk unavailable")


async def new_manager(backend, cache, **kwargs) -> SessionManager:
    manager = SessionManager(backend, cache, **kwargs)
    await manager.initialize()
    return manager


# ── Password login ─────────────────────────────────

@pytest.mark.asyncio
async def test_demo_login_yields_demo_shop_and_admin(manager):
    result = await manager.login(EMAIL, "any-password")
    assert result.success
    assert result.error is None
    assert manager.is_authenticated
    assert manager.shop.name == DEMO_SHOP_NAME
    assert manager.user.role == UserRole.ADMIN
    assert manager.user.email == EMAIL


@pytest.mark.asyncio
async def test_login_persists_session_without_pin(manager, cache):
    await manager.login(EMAIL, "any-password")
    stored = cache.snapshot()

    cached_user = json.loads(stored[AUTH_USER_KEY])
    assert cached_user["id"] == "demo-user"
    assert "pin" not in cached_user
    assert json.loads(stored[CURRENT_SHOP_KEY])["shop_code"] == DEMO_SHOP_CODE
    assert json.loads(stored[LAST_SHOP_KEY]) == {
        "name": DEMO_SHOP_NAME,
        "shop_code": DEMO_SHOP_CODE,
        "logo": None,
    }


@pytest.mark.asyncio
async def test_login_rejected_credentials(manager):
    result = await manager.login(EMAIL, "")
    assert not result.success
    assert result.error
    assert not manager.is_authenticated


@pytest.mark.asyncio
async def test_login_updates_last_login_in_background(manager, backend):
    await manager.login(EMAIL, "any-password")
    await manager.aclose()
    row = await backend.rows.select_one("users", {"id": "demo-user"})
    assert row["last_login_at"] is not None


@pytest.mark.asyncio
async def test_last_login_failure_does_not_fail_login(manager, backend):
    backend.rows.update = AsyncMock(side_effect=BackendError("Database error"))
    result = await manager.staff_login(DEMO_SHOP_CODE, "1234")
    await manager.aclose()
    assert result.success
    assert manager.is_authenticated
    backend.rows.update.assert_awaited_once()


@pytest.mark.asyncio
async def test_login_inactive_account_rejected(manager, backend):
    await backend.rows.update("users", {"id": "demo-user"}, {"active": False})
    result = await manager.login(EMAIL, "any-password")
    assert not result.success
    assert result.error == "Account is deactivated"
    assert not manager.is_authenticated


@pytest.mark.asyncio
async def test_login_without_profile_rejected_and_signed_out(manager, backend):
    backend.rows._tables["users"] = [
        row for row in backend.rows._tables["users"] if row["id"] != "demo-user"
    ]
    result = await manager.login(EMAIL, "any-password")
    assert not result.success
    assert not manager.is_authenticated
    assert await backend.auth.get_session() is None


@pytest.mark.asyncio
async def test_login_survives_broken_cache(backend):
    manager = await new_manager(backend, BrokenCache())
    try:
        assert not manager.state.is_loading
        result = await manager.login(EMAIL, "any-password")
        assert result.success
        assert manager.is_authenticated
    finally:
        await manager.aclose()


# ── Staff login ────────────────────────────────────

@pytest.mark.asyncio
async def test_staff_login_with_valid_pin(manager):
    result = await manager.staff_login(DEMO_SHOP_CODE, "5678")
    assert result.success
    assert manager.user.full_name == "Mary Manager"
    assert manager.user.role == UserRole.MANAGER
    assert manager.shop.shop_code == DEMO_SHOP_CODE


@pytest.mark.asyncio
async def test_staff_login_normalizes_shop_code(manager):
    result = await manager.staff_login("  demo1234 ", "1234")
    assert result.success
    assert manager.user.full_name == "John Cashier"


@pytest.mark.asyncio
async def test_staff_login_wrong_pin_is_generic(manager):
    result = await manager.staff_login(DEMO_SHOP_CODE, "9999")
    assert not result.success
    assert result.error == INVALID_STAFF_LOGIN
    assert not manager.is_authenticated


@pytest.mark.asyncio
async def test_staff_login_unknown_shop_is_generic(manager):
    result = await manager.staff_login("NOSUCH00", "1234")
    assert result.error == INVALID_STAFF_LOGIN


@pytest.mark.asyncio
async def test_staff_login_skips_inactive_staff(manager, backend):
    await backend.rows.update("users", {"id": "staff-1"}, {"active": False})
    result = await manager.staff_login(DEMO_SHOP_CODE, "1234")
    assert result.error == INVALID_STAFF_LOGIN


@pytest.mark.asyncio
async def test_staff_login_accepts_hashed_pin(manager, backend):
    await backend.rows.update("users", {"id": "staff-1"}, {"pin": hash_pin("4321")})
    result = await manager.staff_login(DEMO_SHOP_CODE, "4321")
    assert result.success
    assert manager.user.id == "staff-1"


@pytest.mark.asyncio
async def test_staff_login_backend_error_surfaces_message(manager, backend):
    backend.rows.select_one = AsyncMock(side_effect=BackendError("Network error"))
    result = await manager.staff_login(DEMO_SHOP_CODE, "1234")
    assert not result.success
    assert result.error == "Network error"


@pytest.mark.asyncio
async def test_staff_login_checks_hashed_pins_off_the_event_loop(manager, backend, monkeypatch):
    for row in await backend.rows.select("users", {"shop_id": DEMO_SHOP_ID}):
        if row.get("pin"):
            await backend.rows.update("users", {"id": row["id"]}, {"pin": hash_pin(row["pin"])})

    checked_on = []
    real_verify = security.verify_pin

    def recording_verify(plain, stored):
        checked_on.append(threading.current_thread())
        return real_verify(plain, stored)

    monkeypatch.setattr(security, "verify_pin", recording_verify)
    assert (await manager.staff_login(DEMO_SHOP_CODE, "5678")).success
    assert checked_on
    assert threading.main_thread() not in checked_on


@pytest.mark.asyncio
async def test_staff_login_signs_out_password_session(manager, backend):
    await manager.login(EMAIL, "any-password")
    assert await backend.auth.get_session() is not None

    assert (await manager.staff_login(DEMO_SHOP_CODE, "1234")).success
    assert manager.user.id == "staff-1"
    assert await backend.auth.get_session() is None


@pytest.mark.asyncio
async def test_staff_login_signs_out_when_session_check_fails(manager, backend):
    await manager.login(EMAIL, "any-password")
    backend.auth.get_session = AsyncMock(side_effect=BackendError("Network error"))

    assert (await manager.staff_login(DEMO_SHOP_CODE, "1234")).success
    assert backend.auth._session is None
    assert manager.is_authenticated


# ── Unlock with PIN ────────────────────────────────

@pytest.mark.asyncio
async def test_unlock_with_correct_pin(cashier_session):
    manager = cashier_session
    manager.lock_screen()
    assert manager.is_locked

    result = await manager.unlock_with_pin("1234")
    assert result.success
    assert not manager.is_locked
    assert manager.timer.active


@pytest.mark.asyncio
async def test_five_wrong_pins_force_logout(cashier_session, cache):
    manager = cashier_session
    manager.lock_screen()

    remaining = []
    for _ in range(4):
        result = await manager.unlock_with_pin("0000")
        assert not result.success
        assert not result.logged_out
        remaining.append(result.attempts_remaining)
    assert remaining == [4, 3, 2, 1]
    assert manager.is_authenticated

    result = await manager.unlock_with_pin("0000")
    assert result.logged_out
    assert result.attempts_remaining == 0
    assert result.error == TOO_MANY_ATTEMPTS
    assert not manager.is_authenticated
    assert not manager.is_locked
    assert AUTH_USER_KEY not in cache.snapshot()


@pytest.mark.asyncio
async def test_successful_unlock_resets_attempts(cashier_session):
    manager = cashier_session
    manager.lock_screen()
    for _ in range(3):
        await manager.unlock_with_pin("0000")
    assert manager.unlock_failures == 3

    await manager.unlock_with_pin("1234")
    assert manager.unlock_failures == 0

    manager.lock_screen()
    result = await manager.unlock_with_pin("0000")
    assert result.attempts_remaining == 4


@pytest.mark.asyncio
async def test_unlock_without_session(manager):
    result = await manager.unlock_with_pin("1234")
    assert not result.success
    assert result.error == "No user session"


@pytest.mark.asyncio
async def test_unlock_when_not_locked_is_noop(cashier_session):
    result = await cashier_session.unlock_with_pin("9999")
    assert result.success
    assert cashier_session.unlock_failures == 0


@pytest.mark.asyncio
async def test_unlock_falls_back_to_loaded_pin_when_store_unreachable(cashier_session, backend):
    manager = cashier_session
    manager.lock_screen()
    backend.rows.select_one = AsyncMock(side_effect=BackendError("Network error"))
    result = await manager.unlock_with_pin("1234")
    assert result.success


@pytest.mark.asyncio
async def test_admin_unlocks_with_admin_pin(manager):
    await manager.login(EMAIL, "any-password")
    manager.lock_screen()
    assert (await manager.unlock_with_pin("0000")).success


@pytest.mark.asyncio
async def test_zero_unlock_attempts_is_respected(backend, cache):
    manager = await new_manager(backend, cache, max_unlock_attempts=0)
    try:
        assert manager.max_unlock_attempts == 0
        await manager.staff_login(DEMO_SHOP_CODE, "1234")
        manager.lock_screen()
        result = await manager.unlock_with_pin("0000")
        assert result.logged_out
        assert not manager.is_authenticated
    finally:
        await manager.aclose()


# ── Inactivity lock ────────────────────────────────

@pytest.mark.asyncio
async def test_resume_locks_only_after_timeout(cashier_session, clock):
    manager = cashier_session
    clock.advance(299)
    manager.resume()
    assert not manager.is_locked

    clock.advance(299)
    manager.record_activity()
    clock.advance(299)
    manager.resume()
    assert not manager.is_locked

    clock.advance(300)
    manager.resume()
    assert manager.is_locked
    assert not manager.timer.active


@pytest.mark.asyncio
async def test_timer_expiry_locks_screen(backend, cache):
    manager = await new_manager(backend, cache, inactivity_timeout=0.05)
    try:
        await manager.staff_login(DEMO_SHOP_CODE, "1234")
        await asyncio.sleep(0.15)
        assert manager.is_locked
        assert manager.is_authenticated
    finally:
        await manager.aclose()


@pytest.mark.asyncio
async def test_activity_postpones_lock(backend, cache):
    manager = await new_manager(backend, cache, inactivity_timeout=0.3)
    try:
        await manager.staff_login(DEMO_SHOP_CODE, "1234")
        await asyncio.sleep(0.2)
        manager.record_activity()
        await asyncio.sleep(0.2)
        assert not manager.is_locked
        await asyncio.sleep(0.25)
        assert manager.is_locked
    finally:
        await manager.aclose()


@pytest.mark.asyncio
async def test_lock_screen_requires_session(manager):
    manager.lock_screen()
    assert not manager.is_locked


@pytest.mark.asyncio
async def test_lock_is_not_persisted(cashier_session, backend, cache):
    cashier_session.lock_screen()
    relaunched = await new_manager(backend, cache)
    try:
        assert relaunched.is_authenticated
        assert not relaunched.is_locked
    finally:
        await relaunched.aclose()


# ── Logout ─────────────────────────────────────────

@pytest.mark.asyncio
async def test_logout_clears_session_and_keeps_last_shop(cashier_session, cache):
    manager = cashier_session
    result = await manager.logout()
    assert result.success
    assert not manager.is_authenticated
    assert not manager.timer.active
    stored = cache.snapshot()
    assert AUTH_USER_KEY not in stored
    assert CURRENT_SHOP_KEY not in stored
    assert LAST_SHOP_KEY in stored
    assert manager.state.last_shop.shop_code == DEMO_SHOP_CODE


@pytest.mark.asyncio
async def test_logout_is_idempotent(manager):
    assert (await manager.logout()).success
    assert (await manager.logout()).success
    assert not manager.is_authenticated


@pytest.mark.asyncio
async def test_logout_then_initialize_is_signed_out(cache):
    server = AuthoritativeDemoBackend()
    first = await new_manager(server, cache)
    await first.login(EMAIL, "any-password")
    await first.logout()
    await first.aclose()

    second = await new_manager(server, cache)
    try:
        assert not second.is_authenticated
        assert not second.state.is_loading
        stored = cache.snapshot()
        assert AUTH_USER_KEY not in stored
        assert CURRENT_SHOP_KEY not in stored
    finally:
        await second.aclose()


@pytest.mark.asyncio
async def test_remote_sign_out_event_clears_password_session(manager, backend):
    await manager.login(EMAIL, "any-password")
    await backend.auth.sign_out()
    assert not manager.is_authenticated


@pytest.mark.asyncio
async def test_remote_sign_out_event_keeps_pin_session(cashier_session, backend):
    await backend.auth.sign_out()
    assert cashier_session.is_authenticated


# ── Start-up ───────────────────────────────────────

@pytest.mark.asyncio
async def test_initialize_without_cache(manager):
    assert not manager.state.is_loading
    assert not manager.is_authenticated


@pytest.mark.asyncio
async def test_initialize_hydrates_from_cache_in_demo_mode(cashier_session, backend, cache):
    relaunched = await new_manager(backend, cache)
    try:
        assert relaunched.user.id == "staff-1"
        assert relaunched.shop.shop_code == DEMO_SHOP_CODE
        assert relaunched.user.pin is None
    finally:
        await relaunched.aclose()


@pytest.mark.asyncio
async def test_initialize_reconciles_with_remote_session(cache):
    server = AuthoritativeDemoBackend()
    first = await new_manager(server, cache)
    await first.login(EMAIL, "any-password")
    await first.aclose()
    await server.rows.update("users", {"id": "demo-user"}, {"full_name": "Renamed Admin"})

    second = await new_manager(server, cache)
    try:
        assert second.user.full_name == "Renamed Admin"
        assert json.loads(cache.snapshot()[AUTH_USER_KEY])["full_name"] == "Renamed Admin"
    finally:
        await second.aclose()


@pytest.mark.asyncio
async def test_initialize_drops_stale_password_login(cache):
    first = await new_manager(AuthoritativeDemoBackend(), cache)
    await first.login(EMAIL, "any-password")
    await first.aclose()

    # Fresh server process: the remote session is gone
    second = await new_manager(AuthoritativeDemoBackend(), cache)
    try:
        assert not second.is_authenticated
        assert AUTH_USER_KEY not in cache.snapshot()
        assert second.state.last_shop.shop_code == DEMO_SHOP_CODE
    finally:
        await second.aclose()


@pytest.mark.asyncio
async def test_initialize_keeps_pin_only_session(cache):
    first = await new_manager(AuthoritativeDemoBackend(), cache)
    await first.staff_login(DEMO_SHOP_CODE, "1234")
    await first.aclose()

    second = await new_manager(AuthoritativeDemoBackend(), cache)
    try:
        assert second.is_authenticated
        assert second.user.id == "staff-1"
    finally:
        await second.aclose()


@pytest.mark.asyncio
async def test_initialize_fails_open_when_remote_errors(cache):
    first = await new_manager(AuthoritativeDemoBackend(), cache)
    await first.login(EMAIL, "any-password")
    await first.aclose()

    server = AuthoritativeDemoBackend()
    server.auth.get_session = AsyncMock(side_effect=BackendError("Network error"))
    second = await new_manager(server, cache)
    try:
        assert not second.is_authenticated
        assert not second.state.is_loading
    finally:
        await second.aclose()


@pytest.mark.asyncio
async def test_initialize_ignores_unreadable_cache(backend):
    cache = MemoryKeyValueStore({AUTH_USER_KEY: "{not json", CURRENT_SHOP_KEY: "[]"})
    manager = await new_manager(backend, cache)
    try:
        assert not manager.is_authenticated
        assert not manager.state.is_loading
    finally:
        await manager.aclose()


# ── Shop lookup / profile / last shop ──────────────

@pytest.mark.asyncio
async def test_lookup_shop_by_code(manager):
    result = await manager.lookup_shop_by_code("demo1234")
    assert result.success
    assert result.shop == LastShopInfo(name=DEMO_SHOP_NAME, shop_code=DEMO_SHOP_CODE)


@pytest.mark.asyncio
async def test_lookup_unknown_shop(manager):
    result = await manager.lookup_shop_by_code("ZZZZ0000")
    assert not result.success
    assert result.error == SHOP_NOT_FOUND
    assert result.shop is None


@pytest.mark.asyncio
async def test_update_user_profile(cashier_session, backend, cache):
    result = await cashier_session.update_user_profile(full_name="John K. Cashier", phone="0712345678")
    assert result.success
    assert cashier_session.user.full_name == "John K. Cashier"
    assert cashier_session.user.pin == "1234"
    row = await backend.rows.select_one("users", {"id": "staff-1"})
    assert row["phone"] == "0712345678"
    assert json.loads(cache.snapshot()[AUTH_USER_KEY])["full_name"] == "John K. Cashier"


@pytest.mark.asyncio
async def test_update_user_profile_requires_session(manager):
    result = await manager.update_user_profile(full_name="Nobody")
    assert not result.success


@pytest.mark.asyncio
async def test_set_and_clear_last_shop(manager, cache):
    info = LastShopInfo(name="Kilimo Agrovet", shop_code="KILIMO01")
    await manager.set_last_shop_info(info)
    assert manager.state.last_shop == info
    assert json.loads(cache.snapshot()[LAST_SHOP_KEY])["shop_code"] == "KILIMO01"

    await manager.clear_last_shop_info()
    assert manager.state.last_shop is None
    assert LAST_SHOP_KEY not in cache.snapshot()


@pytest.mark.asyncio
async def test_password_reset_unavailable_in_demo(manager):
    result = await manager.request_password_reset(EMAIL)
    assert not result.success
    assert "demo" in result.error


# ── Permissions / observers ────────────────────────

@pytest.mark.asyncio
async def test_has_permission_follows_signed_in_role(cashier_session):
    assert cashier_session.has_permission(UserRole.CASHIER)
    assert not cashier_session.has_permission(UserRole.MANAGER)
    assert cashier_session.has_permission([UserRole.ADMIN, UserRole.CASHIER])
    await cashier_session.logout()
    assert not cashier_session.has_permission(UserRole.CASHIER)


@pytest.mark.asyncio
async def test_subscribers_receive_state_changes(manager):
    seen = []
    unsubscribe = manager.subscribe(seen.append)
    await manager.staff_login(DEMO_SHOP_CODE, "1234")
    manager.lock_screen()
    unsubscribe()
    await manager.logout()

    assert seen[0].is_authenticated
    assert seen[-1].is_locked
    assert all(state.is_authenticated for state in seen)
