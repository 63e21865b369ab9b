from mazao_pos.schemas.auth import (
    AuthUser, Shop, LastShopInfo, AuthResult, UnlockResult, ShopLookupResult, SignupResult,
)
from mazao_pos.schemas.staff import StaffMember, StaffResult

__all__ = [
    "AuthUser", "Shop", "LastShopInfo", "AuthResult", "UnlockResult", "ShopLookupResult",
    "SignupResult", "StaffMember", "StaffResult",
]
