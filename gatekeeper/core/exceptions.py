"""Error types raised by services and turned into JSON envelopes by the API layer"""

from typing import Any, Dict, Optional


class BaseAPIException(Exception):
    """
    Root of every error the API reports to clients.

    Subclasses pin ``status_code`` and ``code``; ``message`` is safe to show
    to the caller, ``details`` carries structured context.
    """

    status_code = 500
    code = "internal_error"

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.details = dict(details or {})


# 401
class AuthenticationError(BaseAPIException):
    status_code = 401
    code = "authentication_failed"

    def __init__(self, message: str = "Authentication failed", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details=details)


class InvalidCredentialsError(AuthenticationError):
    """Unknown email, wrong password or inactive account; indistinguishable on purpose"""

    code = "invalid_credentials"

    def __init__(self):
        super().__init__("Invalid credentials")


class InvalidTokenError(AuthenticationError):
    """
    Any access or refresh token problem.

    Expired, revoked, unknown and malformed tokens all collapse into this one
    error so callers cannot tell them apart.
    """

    code = "invalid_token"

    def __init__(self, message: str = "Invalid or expired token"):
        super().__init__(message)


class AccountLockedError(AuthenticationError):
    code = "account_locked"

    def __init__(self, locked_until: str):
        super().__init__(f"Account is locked until {locked_until}", details={"locked_until": locked_until})


# 403
class AuthorizationError(BaseAPIException):
    status_code = 403
    code = "forbidden"

    def __init__(self, message: str = "Insufficient permissions"):
        super().__init__(message)


class ScopeError(AuthorizationError):
    """Operation targets a city outside the actor's scope"""

    code = "out_of_scope"

    def __init__(self, message: str = "Resource is outside your city scope"):
        super().__init__(message)


# 404
class ResourceNotFoundError(BaseAPIException):
    status_code = 404
    code = "not_found"

    def __init__(self, resource: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(f"{resource} not found", details=details)


class LockNotFoundError(ResourceNotFoundError):
    """Tap event references a lock that does not exist"""

    def __init__(self, lock_id: str):
        super().__init__("Lock", details={"lock_id": lock_id})


# 422
class ValidationError(BaseAPIException):
    status_code = 422
    code = "validation_error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details=details)


# 429
class RateLimitExceededError(BaseAPIException):
    status_code = 429
    code = "rate_limited"

    def __init__(self, message: str = "Rate limit exceeded. Please try again later."):
        super().__init__(message)


# 500
class DatabaseError(BaseAPIException):
    """Persistence failed; the session has already been rolled back"""

    code = "database_error"

    def __init__(self, message: str = "Database operation failed"):
        super().__init__(message)
