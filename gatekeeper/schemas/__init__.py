"""Pydantic schemas for API validation"""

from gatekeeper.schemas.user import (
    UserRole,
    UserLogin,
    UserResponse,
    TokenResponse,
    RefreshTokenRequest,
)
from gatekeeper.schemas.access import AccessResult, AccessType, TapEvent, AccessLogResponse, AccessLogPage
from gatekeeper.schemas.permission import PermissionAssign, PermissionResponse, RFIDKeyAssign, RFIDKeyResponse
from gatekeeper.schemas.audit import AuditAction
from gatekeeper.schemas.response import APIResponse, ErrorResponse

__all__ = [
    "UserRole", "UserLogin", "UserResponse", "TokenResponse", "RefreshTokenRequest",
    "AccessResult", "AccessType", "TapEvent", "AccessLogResponse", "AccessLogPage",
    "PermissionAssign", "PermissionResponse", "RFIDKeyAssign", "RFIDKeyResponse",
    "AuditAction",
    "APIResponse", "ErrorResponse"
]
