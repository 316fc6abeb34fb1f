"""City (tenant) scope resolution for privileged operations"""

from dataclasses import dataclass
from typing import Optional

from gatekeeper.core.exceptions import ScopeError
from gatekeeper.core.rbac import is_top_role
from gatekeeper.schemas.user import UserRole


@dataclass(frozen=True)
class ActorContext:
    """The authenticated operator a request acts on behalf of."""
    id: str
    role: UserRole
    city_id: Optional[str] = None

    @classmethod
    def from_user(cls, user) -> "ActorContext":
        return cls(id=user.id, role=UserRole(user.role), city_id=user.city_id)

    @property
    def is_top_rank(self) -> bool:
        return is_top_role(self.role)


def effective_city_id(actor: ActorContext, requested_city_id: Optional[str] = None) -> Optional[str]:
    """
    Resolve the city an actor operates within for one request.

    A super admin gets the requested city when one is supplied and None
    (unscoped) otherwise. Every other role always gets its own city; a
    requested city is ignored rather than rejected.
    """
    if actor.is_top_rank:
        return requested_city_id or None
    return actor.city_id or None


def require_city_id(actor: ActorContext, requested_city_id: Optional[str] = None) -> Optional[str]:
    """
    Same as effective_city_id() but fails closed for scoped actors without a city.

    Returns None only for an unscoped super admin.
    """
    city_id = effective_city_id(actor, requested_city_id)
    if city_id is None and not actor.is_top_rank:
        raise ScopeError("Account is not assigned to a city")
    return city_id


def ensure_in_scope(actor: ActorContext, resource_city_id: Optional[str]) -> None:
    """Raise ScopeError when a resource belongs to a city the actor cannot act on"""
    if actor.is_top_rank:
        return
    scoped_city = require_city_id(actor)
    if resource_city_id != scoped_city:
        raise ScopeError()
