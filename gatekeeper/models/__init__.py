"""Database models"""

from gatekeeper.models.tenancy import City, Address
from gatekeeper.models.user import User
from gatekeeper.models.lock import Lock
from gatekeeper.models.credential import RFIDKey
from gatekeeper.models.permission import UserPermission
from gatekeeper.models.access import AccessLog
from gatekeeper.models.security import RefreshToken
from gatekeeper.models.audit import AuditEvent

__all__ = [
    "City", "Address", "User", "Lock", "RFIDKey", "UserPermission",
    "AccessLog", "RefreshToken", "AuditEvent",
]
