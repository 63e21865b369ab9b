"""Password/PIN hashing and signed session tokens."""

import asyncio
import hmac
import re
import secrets
from datetime import datetime, timedelta, timezone

from jose import jwt
from passlib.context import CryptContext

from mazao_pos.core.config import settings

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

PIN_PATTERN = re.compile(r"^\d{4}$")


def hash_password(plain: str) -> str:
    return pwd_context.hash(plain)


def verify_password(plain: str, hashed: str) -> bool:
    return pwd_context.verify(plain, hashed)


# ── PINs ───────────────────────────────────────────

def is_valid_pin(pin: str | None) -> bool:
    return bool(pin) and PIN_PATTERN.match(pin) is not None


def generate_pin() -> str:
    return f"{secrets.randbelow(9000) + 1000}"


def hash_pin(pin: str) -> str:
    return pwd_context.hash(pin)


def encode_pin(pin: str, hashed: bool | None = None) -> str:
    """Return the stored form of a PIN: bcrypt hash when HASH_PINS is on, else as entered."""
    if hashed is None:
        hashed = settings.HASH_PINS
    return hash_pin(pin) if hashed else pin


def verify_pin(plain: str, stored: str | None) -> bool:
    """Check a PIN against its stored form. Legacy rows hold the PIN in plaintext."""
    if not stored or not plain:
        return False
    if pwd_context.identify(stored) is not None:
        return pwd_context.verify(plain, stored)
    return hmac.compare_digest(plain.encode("utf-8"), stored.encode("utf-8"))


async def averify_pin(plain: str, stored: str | None) -> bool:
    """verify_pin for async callers; bcrypt hashes are checked in a worker thread."""
    if stored and pwd_context.identify(stored) is not None:
        return await asyncio.to_thread(verify_pin, plain, stored)
    return verify_pin(plain, stored)


async def aencode_pin(pin: str, hashed: bool | None = None) -> str:
    if hashed is None:
        hashed = settings.HASH_PINS
    if not hashed:
        return pin
    return await asyncio.to_thread(encode_pin, pin, True)


# ── Session tokens (self-hosted backend) ───────────

def create_session_token(
    account_id: str,
    email: str,
    expires_delta: timedelta | None = None,
) -> tuple[str, datetime]:
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    payload = {
        "sub": account_id,
        "email": email,
        "type": "session",
        "exp": expire,
    }
    token = jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.ALGORITHM)
    return token, expire


def decode_session_token(token: str) -> dict:
    """Decode and validate a session token. Raises JWTError on failure."""
    return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
