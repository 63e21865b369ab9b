"""Staff management endpoints, scoped to the signed-in shop."""

from fastapi import APIRouter, Depends, HTTPException, status

from mazao_pos.backends.base import BackendError
from mazao_pos.core.deps import get_staff_service, require_role
from mazao_pos.models.role import UserRole
from mazao_pos.schemas.auth import AuthResult
from mazao_pos.schemas.staff import CreateStaffRequest, StaffMember, UpdatePinRequest
from mazao_pos.services.staff import NO_SHOP, PIN_IN_USE, STAFF_NOT_FOUND, StaffService

router = APIRouter(prefix="/staff", tags=["staff"])

ERROR_STATUS = {
    PIN_IN_USE: status.HTTP_409_CONFLICT,
    STAFF_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    NO_SHOP: status.HTTP_400_BAD_REQUEST,
}


def _raise_for(result: AuthResult) -> None:
    if not result.success:
        raise HTTPException(
            status_code=ERROR_STATUS.get(result.error, status.HTTP_400_BAD_REQUEST),
            detail=result.error,
        )


@router.get(
    "",
    response_model=list[StaffMember],
    dependencies=[Depends(require_role(UserRole.MANAGER))],
)
async def list_staff(staff: StaffService = Depends(get_staff_service)):
    try:
        return await staff.load_staff_list()
    except BackendError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.message)


@router.post(
    "",
    response_model=StaffMember,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_role(UserRole.ADMIN))],
)
async def create_staff(body: CreateStaffRequest, staff: StaffService = Depends(get_staff_service)):
    result = await staff.create_staff_member(body.full_name, body.pin, body.role)
    _raise_for(result)
    return result.user


@router.put(
    "/{user_id}/pin",
    response_model=AuthResult,
    dependencies=[Depends(require_role(UserRole.ADMIN))],
)
async def update_pin(
    user_id: str,
    body: UpdatePinRequest,
    staff: StaffService = Depends(get_staff_service),
):
    result = await staff.update_staff_pin(user_id, body.pin)
    _raise_for(result)
    return result
