import secrets
from urllib.parse import urlparse

from pydantic_settings import BaseSettings


def _generate_secret() -> str:
    """Generate a random secret key if none is provided via env."""
    return secrets.token_urlsafe(64)


def _is_placeholder(value: str | None) -> bool:
    # Unexpanded build-time variables arrive as "$SUPABASE_URL" and friends
    return not value or value.startswith("$")


class Settings(BaseSettings):
    PROJECT_NAME: str = "Mazao POS"

    # Hosted backend (PostgREST + GoTrue). Both must be set, otherwise demo mode.
    SUPABASE_URL: str | None = None
    SUPABASE_ANON_KEY: str | None = None

    # Self-hosted backend, used when the hosted one is not configured
    DATABASE_URL: str | None = None

    # Local device cache
    REDIS_URL: str | None = None
    CACHE_FILE: str | None = None

    SECRET_KEY: str = _generate_secret()  # MUST be set via .env for the SQL backend
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24 * 7

    INACTIVITY_TIMEOUT_SECONDS: float = 5 * 60
    MAX_UNLOCK_ATTEMPTS: int = 5
    HASH_PINS: bool = False

    LICENSE_API_URL: str | None = None
    LICENSE_ALLOW_OFFLINE: bool = False
    HTTP_TIMEOUT_SECONDS: float = 15.0

    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False

    class Config:
        env_file = ".env"
        extra = "ignore"

    @property
    def is_remote_configured(self) -> bool:
        """True when the hosted backend URL and anonymous key are both usable."""
        if _is_placeholder(self.SUPABASE_URL) or _is_placeholder(self.SUPABASE_ANON_KEY):
            return False
        parsed = urlparse(self.SUPABASE_URL)
        return parsed.scheme in ("http", "https") and bool(parsed.netloc)

    @property
    def backend_mode(self) -> str:
        if self.is_remote_configured:
            return "supabase"
        if self.DATABASE_URL:
            return "sql"
        return "demo"


settings = Settings()
