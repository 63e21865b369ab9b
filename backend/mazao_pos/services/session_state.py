"""Session state and its pure transitions.

``reduce(state, event)`` never performs I/O. The session manager does the I/O
and feeds the outcome in as events. Start-up runs in two phases: ``Hydrated``
(fast, from the device cache, possibly stale) and then ``Reconciled`` or
``SignedOut`` (from the remote backend). Whatever the second phase reports
replaces what the first phase loaded.
"""

from dataclasses import dataclass

from pydantic import BaseModel, ConfigDict

from mazao_pos.schemas.auth import AuthUser, LastShopInfo, Shop


class SessionState(BaseModel):
    model_config = ConfigDict(frozen=True)

    user: AuthUser | None = None
    shop: Shop | None = None
    last_shop: LastShopInfo | None = None
    is_loading: bool = True
    is_locked: bool = False

    @property
    def is_authenticated(self) -> bool:
        return self.user is not None


# ── Events ─────────────────────────────────────────

@dataclass(frozen=True)
class Hydrated:
    user: AuthUser | None
    shop: Shop | None
    last_shop: LastShopInfo | None


@dataclass(frozen=True)
class Reconciled:
    user: AuthUser
    shop: Shop | None


@dataclass(frozen=True)
class SignedIn:
    user: AuthUser
    shop: Shop | None


@dataclass(frozen=True)
class SignedOut:
    pass


@dataclass(frozen=True)
class LoadingFinished:
    pass


@dataclass(frozen=True)
class Locked:
    pass


@dataclass(frozen=True)
class Unlocked:
    pass


@dataclass(frozen=True)
class UserUpdated:
    user: AuthUser


@dataclass(frozen=True)
class LastShopChanged:
    last_shop: LastShopInfo | None


SessionEvent = (
    Hydrated | Reconciled | SignedIn | SignedOut | LoadingFinished
    | Locked | Unlocked | UserUpdated | LastShopChanged
)


def _remembered_shop(shop: Shop | None, fallback: LastShopInfo | None) -> LastShopInfo | None:
    if shop is not None and shop.shop_code:
        return LastShopInfo.from_shop(shop)
    return fallback


def reduce(state: SessionState, event: SessionEvent) -> SessionState:
    if isinstance(event, Hydrated):
        return state.model_copy(update={
            "user": event.user,
            "shop": event.shop,
            "last_shop": event.last_shop,
        })

    if isinstance(event, Reconciled):
        return state.model_copy(update={
            "user": event.user,
            "shop": event.shop,
            "last_shop": _remembered_shop(event.shop, state.last_shop),
        })

    if isinstance(event, SignedIn):
        return state.model_copy(update={
            "user": event.user,
            "shop": event.shop,
            "last_shop": _remembered_shop(event.shop, state.last_shop),
            "is_locked": False,
        })

    if isinstance(event, SignedOut):
        # last_shop survives logout so the staff login screen keeps its branding
        return state.model_copy(update={"user": None, "shop": None, "is_locked": False})

    if isinstance(event, LoadingFinished):
        return state.model_copy(update={"is_loading": False})

    if isinstance(event, Locked):
        if state.user is None:
            return state
        return state.model_copy(update={"is_locked": True})

    if isinstance(event, Unlocked):
        return state.model_copy(update={"is_locked": False})

    if isinstance(event, UserUpdated):
        if state.user is None or state.user.id != event.user.id:
            return state
        return state.model_copy(update={"user": event.user})

    if isinstance(event, LastShopChanged):
        return state.model_copy(update={"last_shop": event.last_shop})

    raise TypeError(f"Unknown session event: {event!r}")
