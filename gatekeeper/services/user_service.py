"""Operator login with lockout, and the bootstrap super admin"""

import logging
from datetime import timedelta
from typing import Optional

from sqlalchemy.orm import Session

from gatekeeper.core.exceptions import AccountLockedError, InvalidCredentialsError
from gatekeeper.core.security import as_naive_utc, get_password_hash, utcnow, verify_password
from gatekeeper.models.user import User
from gatekeeper.schemas.user import UserRole

logger = logging.getLogger(__name__)


def _normalize_email(email: str) -> str:
    return email.strip().lower()


class UserService:
    """Operator accounts as seen by the session layer"""

    LOCKOUT_DURATION_MINUTES = 15
    MAX_FAILED_ATTEMPTS = 5

    @staticmethod
    def find_by_email(db: Session, email: str) -> Optional[User]:
        return db.query(User).filter(User.email == _normalize_email(email)).first()

    def _record_failure(self, db: Session, user: User) -> None:
        user.failed_login_attempts = (user.failed_login_attempts or 0) + 1
        locked = user.failed_login_attempts >= self.MAX_FAILED_ATTEMPTS
        if locked:
            user.locked_until = utcnow() + timedelta(minutes=self.LOCKOUT_DURATION_MINUTES)
        db.commit()

        if locked:
            logger.warning("Operator %s locked out after %d failed logins", user.id, user.failed_login_attempts)
            raise AccountLockedError(user.locked_until.isoformat())
        raise InvalidCredentialsError()

    def authenticate_user(self, db: Session, email: str, password: str) -> User:
        """
        Check credentials and return the operator.

        Unknown and deactivated accounts fail like a wrong password. The
        MAX_FAILED_ATTEMPTS-th consecutive failure locks the account for
        LOCKOUT_DURATION_MINUTES; while locked, even the right password
        raises AccountLockedError.
        """
        user = self.find_by_email(db, email)
        if user is None or not user.is_active:
            raise InvalidCredentialsError()

        locked_until = as_naive_utc(user.locked_until)
        if locked_until is not None and locked_until > utcnow():
            raise AccountLockedError(locked_until.isoformat())

        if not verify_password(password, user.password_hash):
            self._record_failure(db, user)

        if user.failed_login_attempts or user.locked_until is not None:
            user.failed_login_attempts = 0
            user.locked_until = None
            db.commit()

        logger.info("Operator %s signed in", user.id)
        return user

    def ensure_super_admin(self, db: Session, email: str, username: str, password: str) -> Optional[User]:
        """Create the bootstrap super admin unless the email is taken; returns the new user or None"""
        if self.find_by_email(db, email) is not None:
            return None

        admin = User(
            email=_normalize_email(email),
            username=username,
            password_hash=get_password_hash(password),
            role=UserRole.SUPER_ADMIN.value,
            city_id=None,
        )
        db.add(admin)
        db.commit()
        db.refresh(admin)
        return admin


user_service = UserService()
