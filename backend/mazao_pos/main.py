import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from mazao_pos.api import auth, staff
from mazao_pos.backends import RemoteBackend, build_backend
from mazao_pos.core.config import Settings, settings as default_settings
from mazao_pos.core.logging_setup import configure_logging
from mazao_pos.services.local_cache import KeyValueStore, build_local_cache
from mazao_pos.services.onboarding import LicenseVerifier, OnboardingService
from mazao_pos.services.session_manager import SessionManager

logger = logging.getLogger(__name__)

VERSION = "0.1.0"


def create_app(
    settings: Settings | None = None,
    backend: RemoteBackend | None = None,
    cache: KeyValueStore | None = None,
    verifier: LicenseVerifier | None = None,
) -> FastAPI:
    settings = settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(settings.LOG_LEVEL, json_output=settings.LOG_JSON)
        local_cache = cache if cache is not None else build_local_cache(settings)
        remote = backend if backend is not None else build_backend(settings, local_cache)
        await remote.start()

        manager = SessionManager(
            remote,
            local_cache,
            inactivity_timeout=settings.INACTIVITY_TIMEOUT_SECONDS,
            max_unlock_attempts=settings.MAX_UNLOCK_ATTEMPTS,
        )
        await manager.initialize()
        app.state.session_manager = manager
        app.state.onboarding = OnboardingService(
            remote, verifier or LicenseVerifier.from_settings(settings)
        )
        logger.info("%s started (%s backend)", settings.PROJECT_NAME, remote.name)
        try:
            yield
        finally:
            await manager.aclose()
            await remote.aclose()
            close_cache = getattr(local_cache, "aclose", None)
            if close_cache is not None:
                await close_cache()

    app = FastAPI(
        title=f"{settings.PROJECT_NAME} Session API",
        description="Login, PIN unlock and staff management for the Mazao point of sale",
        version=VERSION,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(auth.router)
    app.include_router(staff.router)

    @app.get("/health")
    async def health_check():
        manager: SessionManager = app.state.session_manager
        return {
            "status": "ok",
            "version": VERSION,
            "backend": manager.backend.name,
        }

    return app


app = create_app()
