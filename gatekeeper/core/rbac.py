"""Role ranking - who may manage whom"""

from typing import Dict, Union

from gatekeeper.core.exceptions import AuthorizationError
from gatekeeper.schemas.user import UserRole

ROLE_RANK: Dict[UserRole, int] = {
    UserRole.SUPER_ADMIN: 4,
    UserRole.ADMIN: 3,
    UserRole.SUPERVISOR: 2,
    UserRole.USER: 1,
}

TOP_ROLE = UserRole.SUPER_ADMIN

RoleLike = Union[UserRole, str]


def _coerce(role: RoleLike) -> UserRole:
    return role if isinstance(role, UserRole) else UserRole(role)


def rank_of(role: RoleLike) -> int:
    return ROLE_RANK[_coerce(role)]


def is_top_role(role: RoleLike) -> bool:
    return _coerce(role) is TOP_ROLE


def is_role_at_least(role: RoleLike, required: RoleLike) -> bool:
    return rank_of(role) >= rank_of(required)


def can_manage(target_role: RoleLike, actor_role: RoleLike) -> bool:
    """
    Decide whether an actor may manage an account holding target_role.

    Only a super admin may manage a super admin. Below the top rank the actor
    must rank strictly above the target, so peers never manage each other.
    """
    if is_top_role(target_role):
        return is_top_role(actor_role)
    return rank_of(actor_role) > rank_of(target_role)


def ensure_can_manage(target_role: RoleLike, actor_role: RoleLike) -> None:
    """Raise AuthorizationError unless can_manage() allows the operation"""
    if not can_manage(target_role, actor_role):
        raise AuthorizationError("Insufficient role to manage this account")
