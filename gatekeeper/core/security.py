"""Password hashing, signed session tokens and the UTC clock convention"""

import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import bcrypt
from jose import JWTError, jwt

from gatekeeper.config import settings

ACCESS = "access"
REFRESH = "refresh"


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Normalize a stored datetime to naive UTC so it compares with utcnow()."""
    if dt is None or dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def get_password_hash(password: str) -> str:
    salted = bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt())
    return salted.decode("utf-8")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Constant-time bcrypt comparison; malformed hashes count as a mismatch"""
    try:
        return bcrypt.checkpw(plain_password.encode("utf-8"), hashed_password.encode("utf-8"))
    except ValueError:
        return False


def new_token_id() -> str:
    return secrets.token_urlsafe(32)


def _sign(claims: Dict[str, Any], kind: str, lifetime: timedelta) -> str:
    now = datetime.now(timezone.utc)
    body = dict(claims)
    body.setdefault("jti", new_token_id())
    body["typ"] = kind
    body["iat"] = now
    body["exp"] = now + lifetime
    return jwt.encode(body, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    """Short-lived bearer token; lifetime defaults to ACCESS_TOKEN_EXPIRE_MINUTES"""
    lifetime = expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    return _sign(data, ACCESS, lifetime)


def create_refresh_token(
    data: Dict[str, Any],
    token_jti: Optional[str] = None,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """
    Refresh token whose ``jti`` names its persisted record.

    Without ``token_jti`` a fresh identifier is generated. Lifetime defaults
    to REFRESH_TOKEN_EXPIRE_DAYS.
    """
    claims = dict(data)
    if token_jti:
        claims["jti"] = token_jti
    lifetime = expires_delta or timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS)
    return _sign(claims, REFRESH, lifetime)


def decode_token(token: str) -> Optional[Dict[str, Any]]:
    """Verified claims of any token type, or None for bad signature, expiry or garbage"""
    try:
        return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        return None


def _decode_kind(token: str, kind: str) -> Optional[Dict[str, Any]]:
    claims = decode_token(token)
    if claims is None or claims.get("typ") != kind:
        return None
    return claims


def decode_access_token(token: str) -> Optional[Dict[str, Any]]:
    return _decode_kind(token, ACCESS)


def decode_refresh_token(token: str) -> Optional[Dict[str, Any]]:
    return _decode_kind(token, REFRESH)
