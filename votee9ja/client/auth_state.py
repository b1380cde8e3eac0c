# votee9ja/client/auth_state.py

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Optional

# Client-side authentication state as an immutable value updated by
# reduce(state, action). Permissions here only drive what a client offers
# the user; the server re-checks everything.


class ActionType(Enum):
    SET_LOADING = 'set_loading'
    SET_USER = 'set_user'
    SET_ERROR = 'set_error'
    CLEAR_ERROR = 'clear_error'
    SIGN_IN_START = 'sign_in_start'
    SIGN_IN_SUCCESS = 'sign_in_success'
    SIGN_IN_ERROR = 'sign_in_error'
    SIGN_UP_START = 'sign_up_start'
    SIGN_UP_SUCCESS = 'sign_up_success'
    SIGN_UP_ERROR = 'sign_up_error'
    SIGN_OUT_START = 'sign_out_start'
    SIGN_OUT_SUCCESS = 'sign_out_success'
    SIGN_OUT_ERROR = 'sign_out_error'
    UPDATE_PROFILE = 'update_profile'
    UPDATE_PERMISSIONS = 'update_permissions'


@dataclass(frozen=True)
class Action:
    type: ActionType
    payload: Any = None


@dataclass(frozen=True)
class Permissions:
    can_vote: bool = False
    can_admin: bool = False
    can_super: bool = False


@dataclass(frozen=True)
class AuthState:
    user: Optional[dict] = None
    profile: Optional[dict] = None
    is_loading: bool = True
    is_signing_in: bool = False
    is_signing_up: bool = False
    is_signing_out: bool = False
    is_authenticated: bool = False
    is_verified: bool = False
    error: Optional[str] = None
    permissions: Permissions = field(default_factory=Permissions)


INITIAL_STATE = AuthState()


def calculate_permissions(profile) -> Permissions:
    if not profile:
        return Permissions()
    verified = bool(profile.get('is_verified'))
    role = profile.get('role')
    return Permissions(
        can_vote=verified and role == 'voter',
        can_admin=verified and role in ('admin', 'super_admin'),
        can_super=verified and role == 'super_admin',
    )


def display_name(state: AuthState) -> str:
    if state.profile:
        return f"{state.profile.get('first_name', '')} {state.profile.get('last_name', '')}".strip()
    if state.user and state.user.get('email'):
        return state.user['email']
    return 'Guest'


def initials(state: AuthState) -> str:
    if state.profile:
        first = (state.profile.get('first_name') or '')[:1]
        last = (state.profile.get('last_name') or '')[:1]
        return f'{first}{last}'
    if state.user and state.user.get('email'):
        return state.user['email'][0].upper()
    return 'G'


# ------------------------------ handlers ------------------------------- #

def _with_profile(state, user, profile, **changes):
    return replace(
        state,
        user=user,
        profile=profile,
        permissions=calculate_permissions(profile),
        is_verified=bool(profile and profile.get('is_verified')),
        **changes,
    )


def _set_loading(state, payload):
    return replace(state, is_loading=bool(payload))


def _set_user(state, payload):
    payload = payload or {}
    user = payload.get('user')
    return _with_profile(state, user, payload.get('profile'),
                         is_authenticated=user is not None, is_loading=False, error=None)


def _set_error(state, payload):
    return replace(state, error=payload, is_loading=False, is_signing_in=False,
                   is_signing_up=False, is_signing_out=False)


def _clear_error(state, payload):
    return replace(state, error=None)


def _sign_in_start(state, payload):
    return replace(state, is_signing_in=True, error=None)


def _sign_in_success(state, payload):
    return _with_profile(state, payload.get('user'), payload.get('profile'),
                         is_authenticated=True, is_signing_in=False, is_loading=False, error=None)


def _sign_in_error(state, payload):
    return replace(state, is_signing_in=False, error=payload)


def _sign_up_start(state, payload):
    return replace(state, is_signing_up=True, error=None)


def _sign_up_success(state, payload):
    return replace(state, is_signing_up=False, error=None)


def _sign_up_error(state, payload):
    return replace(state, is_signing_up=False, error=payload)


def _sign_out_start(state, payload):
    return replace(state, is_signing_out=True, error=None)


def _sign_out_success(state, payload):
    return replace(INITIAL_STATE, is_loading=False)


def _sign_out_error(state, payload):
    return replace(state, is_signing_out=False, error=payload)


def _update_profile(state, payload):
    return _with_profile(state, state.user, payload)


def _update_permissions(state, payload):
    return replace(state, permissions=replace(state.permissions, **(payload or {})))


_HANDLERS = {
    ActionType.SET_LOADING: _set_loading,
    ActionType.SET_USER: _set_user,
    ActionType.SET_ERROR: _set_error,
    ActionType.CLEAR_ERROR: _clear_error,
    ActionType.SIGN_IN_START: _sign_in_start,
    ActionType.SIGN_IN_SUCCESS: _sign_in_success,
    ActionType.SIGN_IN_ERROR: _sign_in_error,
    ActionType.SIGN_UP_START: _sign_up_start,
    ActionType.SIGN_UP_SUCCESS: _sign_up_success,
    ActionType.SIGN_UP_ERROR: _sign_up_error,
    ActionType.SIGN_OUT_START: _sign_out_start,
    ActionType.SIGN_OUT_SUCCESS: _sign_out_success,
    ActionType.SIGN_OUT_ERROR: _sign_out_error,
    ActionType.UPDATE_PROFILE: _update_profile,
    ActionType.UPDATE_PERMISSIONS: _update_permissions,
}

_unhandled = set(ActionType) - set(_HANDLERS)
if _unhandled:
    raise RuntimeError('No reducer for: ' + ', '.join(sorted(a.name for a in _unhandled)))


def reduce(state: AuthState, action: Action) -> AuthState:
    handler = _HANDLERS.get(action.type)
    if handler is None:
        raise ValueError(f'Unknown action type: {action.type!r}')
    return handler(state, action.payload)
