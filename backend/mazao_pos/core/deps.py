"""Dependency injection: session manager lookup, session guards, role enforcement."""

from fastapi import Depends, HTTPException, Request, status

from mazao_pos.models.role import UserRole
from mazao_pos.schemas.auth import AuthUser
from mazao_pos.services.onboarding import OnboardingService
from mazao_pos.services.session_manager import SessionManager
from mazao_pos.services.staff import StaffService


def get_session_manager(request: Request) -> SessionManager:
    return request.app.state.session_manager


def get_onboarding_service(request: Request) -> OnboardingService:
    return request.app.state.onboarding


def get_staff_service(manager: SessionManager = Depends(get_session_manager)) -> StaffService:
    return StaffService(manager)


async def require_authenticated(
    manager: SessionManager = Depends(get_session_manager),
) -> AuthUser:
    """Return the signed-in user. Raises 401 when nobody is signed in."""
    if manager.user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not signed in",
        )
    return manager.user


async def require_unlocked(
    user: AuthUser = Depends(require_authenticated),
    manager: SessionManager = Depends(get_session_manager),
) -> AuthUser:
    """Raises 423 while the screen is locked."""
    if manager.is_locked:
        raise HTTPException(
            status_code=status.HTTP_423_LOCKED,
            detail="Session is locked. Unlock with your PIN.",
        )
    return user


def require_role(*allowed_roles: UserRole):
    """Dependency factory: the user must qualify for at least one of the roles."""

    async def checker(
        user: AuthUser = Depends(require_unlocked),
        manager: SessionManager = Depends(get_session_manager),
    ) -> AuthUser:
        if not manager.has_permission(allowed_roles):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Role '{user.role.value}' not allowed. Required: "
                f"{', '.join(role.value for role in allowed_roles)}",
            )
        return user

    return checker
