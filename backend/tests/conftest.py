"""Shared fixtures: in-memory cache, demo data backends, session manager."""

import pytest
import pytest_asyncio

from mazao_pos.backends.demo import DEMO_SHOP_CODE, DemoBackend
from mazao_pos.services.local_cache import MemoryKeyValueStore
from mazao_pos.services.session_manager import SessionManager


class AuthoritativeDemoBackend(DemoBackend):
    """Demo data, but treated as the source of truth on start-up (like a real server)."""

    name = "test"
    authoritative = True


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def cache():
    return MemoryKeyValueStore()


@pytest.fixture
def backend():
    return DemoBackend()


@pytest.fixture
def server_backend():
    return AuthoritativeDemoBackend()


@pytest.fixture
def clock():
    return FakeClock()


@pytest_asyncio.fixture
async def manager(backend, cache, clock):
    session_manager = SessionManager(
        backend, cache, inactivity_timeout=300, max_unlock_attempts=5, clock=clock
    )
    await session_manager.initialize()
    yield session_manager
    await session_manager.aclose()


@pytest_asyncio.fixture
async def cashier_session(manager):
    """Manager with John Cashier signed in through staff login."""
    result = await manager.staff_login(DEMO_SHOP_CODE, "1234")
    assert result.success
    return manager
