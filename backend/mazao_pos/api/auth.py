"""Session endpoints: login flows, lock/unlock, profile, last-shop branding, onboarding."""

from fastapi import APIRouter, Depends, HTTPException, Response, status

from mazao_pos.core.deps import (
    get_onboarding_service,
    get_session_manager,
    require_authenticated,
    require_unlocked,
)
from mazao_pos.schemas.auth import (
    AuthResult,
    AuthUser,
    LastShopInfo,
    LoginRequest,
    PasswordResetRequest,
    ProfileUpdate,
    SessionResponse,
    SignupRequest,
    SignupResult,
    StaffLoginRequest,
    UnlockRequest,
    UnlockResult,
)
from mazao_pos.services.onboarding import OnboardingService
from mazao_pos.services.session_manager import SHOP_NOT_FOUND, SessionManager

router = APIRouter(prefix="/auth", tags=["auth"])


def session_response(manager: SessionManager) -> SessionResponse:
    state = manager.state
    return SessionResponse(
        user=state.user,
        shop=state.shop,
        last_shop=state.last_shop,
        is_authenticated=state.is_authenticated,
        is_loading=state.is_loading,
        is_locked=state.is_locked,
    )


def _raise_for(result: AuthResult, status_code: int = status.HTTP_400_BAD_REQUEST) -> None:
    if not result.success:
        raise HTTPException(status_code=status_code, detail=result.error)


@router.get("/session", response_model=SessionResponse)
async def get_session(manager: SessionManager = Depends(get_session_manager)):
    return session_response(manager)


@router.post("/login", response_model=SessionResponse)
async def login(body: LoginRequest, manager: SessionManager = Depends(get_session_manager)):
    """Owner/admin login with email + password."""
    result = await manager.login(body.email, body.password)
    _raise_for(result, status.HTTP_401_UNAUTHORIZED)
    return session_response(manager)


@router.post("/staff-login", response_model=SessionResponse)
async def staff_login(
    body: StaffLoginRequest,
    manager: SessionManager = Depends(get_session_manager),
):
    """Staff login with shop code + 4-digit PIN."""
    result = await manager.staff_login(body.shop_code, body.pin)
    _raise_for(result, status.HTTP_401_UNAUTHORIZED)
    return session_response(manager)


@router.post("/unlock", response_model=UnlockResult)
async def unlock(
    body: UnlockRequest,
    _: AuthUser = Depends(require_authenticated),
    manager: SessionManager = Depends(get_session_manager),
):
    result = await manager.unlock_with_pin(body.pin)
    if not result.success:
        # Clients need attempts_remaining / logged_out, not just the message
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=result.model_dump(),
        )
    return result


@router.post("/lock", response_model=SessionResponse)
async def lock(
    _: AuthUser = Depends(require_authenticated),
    manager: SessionManager = Depends(get_session_manager),
):
    manager.lock_screen()
    return session_response(manager)


@router.post("/activity", status_code=status.HTTP_204_NO_CONTENT)
async def activity(
    _: AuthUser = Depends(require_unlocked),
    manager: SessionManager = Depends(get_session_manager),
):
    manager.record_activity()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/resume", response_model=SessionResponse)
async def resume(manager: SessionManager = Depends(get_session_manager)):
    """App back in the foreground."""
    manager.resume()
    return session_response(manager)


@router.post("/logout", response_model=AuthResult)
async def logout(manager: SessionManager = Depends(get_session_manager)):
    return await manager.logout()


@router.get("/shops/{shop_code}", response_model=LastShopInfo)
async def lookup_shop(shop_code: str, manager: SessionManager = Depends(get_session_manager)):
    """Shop branding for the staff login screen."""
    result = await manager.lookup_shop_by_code(shop_code)
    if result.error == SHOP_NOT_FOUND:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=result.error)
    _raise_for(result)
    return result.shop


@router.post("/signup", response_model=SignupResult, status_code=status.HTTP_201_CREATED)
async def signup(
    body: SignupRequest,
    onboarding: OnboardingService = Depends(get_onboarding_service),
):
    """Create a shop and its owner account from a license key."""
    result = await onboarding.signup_with_license(
        body.license_key,
        body.phone,
        body.email,
        body.password,
        body.full_name,
        body.shop_name,
    )
    _raise_for(result)
    return result


@router.post("/password-reset", response_model=AuthResult)
async def password_reset(
    body: PasswordResetRequest,
    manager: SessionManager = Depends(get_session_manager),
):
    result = await manager.request_password_reset(body.email)
    _raise_for(result)
    return result


@router.patch("/me", response_model=AuthUser)
async def update_me(
    body: ProfileUpdate,
    _: AuthUser = Depends(require_unlocked),
    manager: SessionManager = Depends(get_session_manager),
):
    result = await manager.update_user_profile(full_name=body.full_name, phone=body.phone)
    _raise_for(result)
    return manager.user


@router.put("/last-shop", response_model=LastShopInfo)
async def set_last_shop(body: LastShopInfo, manager: SessionManager = Depends(get_session_manager)):
    await manager.set_last_shop_info(body)
    return body


@router.delete("/last-shop", status_code=status.HTTP_204_NO_CONTENT)
async def clear_last_shop(manager: SessionManager = Depends(get_session_manager)):
    await manager.clear_last_shop_info()
    return Response(status_code=status.HTTP_204_NO_CONTENT)
