"""Operator session routes: login, refresh, logout, whoami"""

from typing import Iterable, Tuple

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

from gatekeeper.api.deps import client_ip, get_current_user
from gatekeeper.config import settings
from gatekeeper.core.database import get_db
from gatekeeper.core.exceptions import RateLimitExceededError
from gatekeeper.models.user import User
from gatekeeper.schemas.response import APIResponse
from gatekeeper.schemas.user import RefreshTokenRequest, TokenResponse, UserLogin, UserResponse
from gatekeeper.services.rate_limiter import rate_limiter
from gatekeeper.services.token_service import token_service
from gatekeeper.services.user_service import user_service

router = APIRouter()


def _throttle(scope: str, budgets: Iterable[Tuple[int, int]], message: str) -> None:
    """Check every (limit, window_seconds) budget for ``scope``; the first exhausted one raises"""
    for limit, window in budgets:
        if not rate_limiter.allow(f"{scope}:{window}", limit, window):
            raise RateLimitExceededError(message)


def _token_response(user: User, access_token: str, refresh_token: str) -> TokenResponse:
    return TokenResponse(
        access_token=access_token,
        refresh_token=refresh_token,
        token_type="bearer",
        expires_in=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        user=UserResponse.model_validate(user),
    )


@router.post("/login", response_model=TokenResponse)
def login(credentials: UserLogin, request: Request, db: Session = Depends(get_db)):
    """Exchange email and password for an access/refresh token pair"""
    ip = client_ip(request)
    _throttle(
        f"login:{ip}:{credentials.email.lower()}",
        [(settings.LOGIN_RATE_LIMIT_PER_MINUTE, 60), (settings.LOGIN_RATE_LIMIT_PER_HOUR, 3600)],
        "Too many login attempts. Please try again later.",
    )

    user = user_service.authenticate_user(db, credentials.email, credentials.password)
    access_token, refresh_token = token_service.issue_token_pair(db, user, ip_address=ip)
    return _token_response(user, access_token, refresh_token)


@router.post("/refresh", response_model=TokenResponse)
def refresh(body: RefreshTokenRequest, request: Request, db: Session = Depends(get_db)):
    """
    Redeem a refresh token for a new pair.

    The presented token is consumed; presenting it again fails.
    """
    _throttle(
        f"refresh:{client_ip(request)}",
        [(settings.RATE_LIMIT_PER_MINUTE, 60), (settings.RATE_LIMIT_PER_HOUR, 3600)],
        "Too many refresh attempts. Please slow down.",
    )

    user, access_token, refresh_token = token_service.rotate_refresh_token(db, body.refresh_token)
    return _token_response(user, access_token, refresh_token)


@router.post("/logout", response_model=APIResponse, status_code=status.HTTP_200_OK)
def logout(
    request: Request,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    revoked = token_service.logout(db, current_user, ip_address=client_ip(request))
    return APIResponse(message="Logged out successfully", data={"revoked_refresh_tokens": revoked})


@router.get("/me", response_model=UserResponse)
def whoami(current_user: User = Depends(get_current_user)):
    return UserResponse.model_validate(current_user)
