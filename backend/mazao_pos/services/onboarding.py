"""Self-service shop onboarding with a license key.

Flow: check the key format, verify it with the license server (when one is
configured), create the owner's auth account, create the shop with a fresh
shop code, then the owner's ``users`` row (role admin, random 4-digit PIN).
The shop code and PIN are returned once so the owner can write them down.
"""

import logging
import re
import secrets
import string

import httpx

from mazao_pos.backends.base import BackendError, RemoteBackend
from mazao_pos.core.config import Settings
from mazao_pos.core.security import aencode_pin, generate_pin
from mazao_pos.models.role import UserRole
from mazao_pos.schemas.auth import SignupResult

logger = logging.getLogger(__name__)

LICENSE_KEY_PATTERN = re.compile(r"^AGRO-\d{4}-\d{4}-\d{4}$")
SHOP_CODE_ALPHABET = string.ascii_uppercase + string.digits
SHOP_CODE_LENGTH = 8
SHOP_CODE_ATTEMPTS = 5

LICENSE_STATUS_ERRORS = {
    404: "License key not found",
    401: "License key is not valid or already in use",
    403: "This license key has expired",
}


def generate_shop_code(length: int = SHOP_CODE_LENGTH) -> str:
    return "".join(secrets.choice(SHOP_CODE_ALPHABET) for _ in range(length))


class LicenseVerifier:
    """Checks a license key against the license server.

    ``verify`` returns ``None`` when the key is accepted, otherwise the message
    to show. Without an API URL only the key format is checked.
    """

    def __init__(
        self,
        api_url: str | None = None,
        allow_offline: bool = False,
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_url = api_url
        self.allow_offline = allow_offline
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(cls, settings: Settings) -> "LicenseVerifier":
        return cls(
            settings.LICENSE_API_URL,
            allow_offline=settings.LICENSE_ALLOW_OFFLINE,
            timeout=settings.HTTP_TIMEOUT_SECONDS,
        )

    async def verify(self, license_key: str) -> str | None:
        if not LICENSE_KEY_PATTERN.match(license_key):
            return "Invalid license key format. Expected: AGRO-XXXX-XXXX-XXXX"
        if not self.api_url:
            logger.warning("No license server configured, accepting %s on format only", license_key[:9])
            return None

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(self.api_url, json={"key": license_key})
        except httpx.RequestError as exc:
            if self.allow_offline:
                logger.warning("License server unreachable (%s), accepting key offline", exc)
                return None
            logger.warning("License server unreachable: %s", exc)
            return "Could not reach the license server. Check your connection and try again."

        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}

        if response.status_code in LICENSE_STATUS_ERRORS:
            return LICENSE_STATUS_ERRORS[response.status_code]
        if response.is_error:
            return body.get("error") or body.get("message") or "Failed to verify license key"
        if body.get("success") is False:
            return body.get("message") or "Invalid license key"
        return None


class OnboardingService:
    def __init__(self, backend: RemoteBackend, verifier: LicenseVerifier):
        self.backend = backend
        self.verifier = verifier

    async def _unused_shop_code(self) -> str:
        for _ in range(SHOP_CODE_ATTEMPTS):
            code = generate_shop_code()
            if await self.backend.rows.select_one("shops", {"shop_code": code}) is None:
                return code
        raise BackendError("Could not allocate a shop code, please try again")

    async def signup_with_license(
        self,
        license_key: str,
        phone: str,
        email: str,
        password: str,
        full_name: str,
        shop_name: str,
    ) -> SignupResult:
        if not self.backend.authoritative:
            return SignupResult(success=False, error="Database not configured")

        license_key = license_key.strip().upper()
        error = await self.verifier.verify(license_key)
        if error:
            logger.info("License check failed: %s", error)
            return SignupResult(success=False, error=error)

        rows = self.backend.rows
        try:
            auth_id = await self.backend.auth.sign_up(email, password)
        except BackendError as exc:
            return SignupResult(success=False, error=exc.message)

        try:
            shop_code = await self._unused_shop_code()
            shop = await rows.insert("shops", {
                "name": shop_name,
                "shop_code": shop_code,
                "currency": "KES",
                "phone": phone,
                "email": email,
            })
        except BackendError as exc:
            logger.error("Shop creation failed, auth account %s is left without a profile", auth_id)
            return SignupResult(success=False, error=f"Failed to create shop: {exc.message}")

        pin = generate_pin()
        try:
            await rows.insert("users", {
                "auth_id": auth_id,
                "email": email,
                "full_name": full_name,
                "phone": phone,
                "shop_id": shop["id"],
                "role": UserRole.ADMIN.value,
                "active": True,
                "pin": await aencode_pin(pin),
            })
        except BackendError as exc:
            logger.error(
                "Admin row creation failed, auth account %s and shop %s are left without a profile",
                auth_id, shop["id"],
            )
            return SignupResult(success=False, error=f"Failed to create user: {exc.message}")

        logger.info("Shop %s created with code %s", shop["id"], shop_code)
        return SignupResult(success=True, shop_code=shop_code, pin=pin)
