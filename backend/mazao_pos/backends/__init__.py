"""Remote backends and the factory that picks one from settings."""

import logging

from mazao_pos.backends.base import BackendError, RemoteBackend, RemoteSession
from mazao_pos.backends.demo import DemoBackend
from mazao_pos.backends.sql import SqlBackend
from mazao_pos.backends.supabase import SupabaseBackend
from mazao_pos.core.config import Settings
from mazao_pos.services.local_cache import KeyValueStore

logger = logging.getLogger(__name__)


def build_backend(settings: Settings, cache: KeyValueStore) -> RemoteBackend:
    mode = settings.backend_mode
    logger.info("Remote backend: %s", mode)
    if mode == "supabase":
        return SupabaseBackend(
            settings.SUPABASE_URL,
            settings.SUPABASE_ANON_KEY,
            cache=cache,
            timeout=settings.HTTP_TIMEOUT_SECONDS,
        )
    if mode == "sql":
        return SqlBackend(settings.DATABASE_URL, cache=cache)
    return DemoBackend()


__all__ = [
    "BackendError",
    "RemoteBackend",
    "RemoteSession",
    "DemoBackend",
    "SqlBackend",
    "SupabaseBackend",
    "build_backend",
]
