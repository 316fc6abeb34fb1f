"""API dependencies - authentication and authorization"""

from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from typing import Callable, Optional

from gatekeeper.core.database import get_db
from gatekeeper.core.exceptions import AuthenticationError, AuthorizationError
from gatekeeper.core.rbac import is_role_at_least
from gatekeeper.core.scope import ActorContext
from gatekeeper.models.user import User
from gatekeeper.schemas.user import UserRole
from gatekeeper.services.token_service import token_service

# HTTP Bearer token scheme; missing headers are reported through our own error envelope
security = HTTPBearer(auto_error=False)


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db)
) -> User:
    """
    Get current authenticated user from the bearer access token

    Raises:
        AuthenticationError: If no token was sent
        InvalidTokenError: If the token is invalid, expired, or its user is gone or disabled
    """
    if credentials is None or not credentials.credentials:
        raise AuthenticationError("Access token is required")
    return token_service.validate_access_token(db, credentials.credentials)


def get_actor(current_user: User = Depends(get_current_user)) -> ActorContext:
    """Explicit actor value threaded into scope and rank checks"""
    return ActorContext.from_user(current_user)


def require_role(minimum: UserRole) -> Callable[..., ActorContext]:
    """Build a dependency that admits actors ranked at least `minimum`"""

    def _dependency(actor: ActorContext = Depends(get_actor)) -> ActorContext:
        if not is_role_at_least(actor.role, minimum):
            raise AuthorizationError()
        return actor

    return _dependency


def client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"
