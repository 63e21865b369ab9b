"""SQLAlchemy models for the self-hosted backend."""

from mazao_pos.models.role import UserRole
from mazao_pos.models.shop import Shop
from mazao_pos.models.user import User
from mazao_pos.models.auth_account import AuthAccount

__all__ = [
    "UserRole",
    "Shop",
    "User",
    "AuthAccount",
]
