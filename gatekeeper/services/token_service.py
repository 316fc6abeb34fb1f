"""Access-token issuance and single-use refresh-token rotation."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable, Optional, Tuple

from sqlalchemy import update
from sqlalchemy.orm import Session

from gatekeeper.config import settings
from gatekeeper.core.exceptions import InvalidTokenError
from gatekeeper.core.security import (
    as_naive_utc,
    create_access_token,
    create_refresh_token,
    decode_access_token,
    decode_refresh_token,
    new_token_id,
    utcnow,
)
from gatekeeper.models.security import RefreshToken
from gatekeeper.models.user import User
from gatekeeper.schemas.audit import AuditAction
from gatekeeper.services.audit_service import AuditService, audit_service
from gatekeeper.services.notifier import EventPublisher, event_hub

logger = logging.getLogger(__name__)

INVALID_REFRESH = "Invalid refresh token"
INVALID_ACCESS = "Invalid or expired token"


class _Rejected(Exception):
    """Internal rejection reason; never leaves this module."""


class TokenService:
    """
    Manage operator sessions.

    Access tokens are stateless JWTs. Refresh tokens are JWTs backed by a
    RefreshToken row and may be redeemed at most once: redeeming one revokes
    its row and links it to the row of the token issued in its place, in the
    same transaction. Every failure surfaces as the same InvalidTokenError.
    """

    def __init__(
        self,
        auditor: Optional[AuditService] = None,
        publisher: Optional[EventPublisher] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.auditor = auditor or audit_service
        self.publisher = publisher or event_hub
        self.clock = clock

    @staticmethod
    def _claims(user: User) -> dict:
        return {"sub": str(user.id), "email": user.email, "role": user.role}

    def issue_access_token(self, user: User) -> str:
        return create_access_token(self._claims(user))

    def issue_refresh_token(self, db: Session, user: User) -> Tuple[str, str]:
        """Persist a fresh refresh-token row and return (token, record id). Caller commits."""
        ttl = timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS)
        token_jti = new_token_id()
        record = RefreshToken(
            jti=token_jti,
            user_id=user.id,
            expires_at=self.clock() + ttl,
            is_revoked=False,
        )
        db.add(record)
        db.flush()
        token = create_refresh_token(self._claims(user), token_jti=token_jti, expires_delta=ttl)
        return token, record.id

    def issue_token_pair(self, db: Session, user: User, ip_address: Optional[str] = None) -> Tuple[str, str]:
        """Login: new access token plus a new refresh token."""
        refresh_token, record_id = self.issue_refresh_token(db, user)
        user.last_login = self.clock()
        db.commit()
        self.auditor.append(
            db,
            action=AuditAction.LOGIN,
            entity_type="User",
            entity_id=user.id,
            actor_id=user.id,
            new_values={"refresh_token_id": record_id},
            ip_address=ip_address,
        )
        return self.issue_access_token(user), refresh_token

    def validate_access_token(self, db: Session, token: str) -> User:
        """
        Resolve an access token to its user.

        Besides signature and expiry this re-reads the account, so a
        deactivated user loses access before the token expires.
        """
        payload = decode_access_token(token)
        user_id = payload.get("sub") if payload else None
        user = db.query(User).filter(User.id == user_id).first() if user_id else None
        if user is None or not user.is_active:
            raise InvalidTokenError(INVALID_ACCESS)
        return user

    def rotate_refresh_token(self, db: Session, refresh_token: str) -> Tuple[User, str, str]:
        """
        Redeem a refresh token for a new access/refresh pair.

        Returns (user, access_token, refresh_token).
        """
        try:
            user, new_refresh, new_record_id, old_record_id = self._rotate(db, refresh_token)
        except _Rejected as exc:
            db.rollback()
            logger.debug("Refresh rejected: %s", exc)
            raise InvalidTokenError(INVALID_REFRESH)
        except Exception:
            db.rollback()
            raise

        self.auditor.append(
            db,
            action=AuditAction.TOKEN_REFRESH,
            entity_type="RefreshToken",
            entity_id=old_record_id,
            actor_id=user.id,
            new_values={"replaced_by_id": new_record_id},
        )
        return user, self.issue_access_token(user), new_refresh

    def _rotate(self, db: Session, refresh_token: str) -> Tuple[User, str, str, str]:
        payload = decode_refresh_token(refresh_token)
        if not payload:
            raise _Rejected("bad signature, expired or wrong type")
        token_jti = payload.get("jti")
        user_id = payload.get("sub")
        if not token_jti or not user_id:
            raise _Rejected("missing claims")

        record = db.query(RefreshToken).filter(RefreshToken.jti == token_jti).first()
        if record is None or record.user_id != user_id:
            raise _Rejected("unknown token")

        now = self.clock()
        if record.is_revoked:
            if record.replaced_by_id and settings.REFRESH_REUSE_REVOKES_ALL:
                self.revoke_all_for_account(db, record.user_id)
            raise _Rejected("revoked")
        if as_naive_utc(record.expires_at) <= now:
            raise _Rejected("expired")

        user = db.query(User).filter(User.id == record.user_id).first()
        if user is None or not user.is_active:
            raise _Rejected("user missing or inactive")

        # Claim the old row first; a concurrent redemption loses this race and matches no row.
        claimed = db.execute(
            update(RefreshToken)
            .where(RefreshToken.id == record.id, RefreshToken.is_revoked.is_(False))
            .values(is_revoked=True, revoked_at=now)
            .execution_options(synchronize_session=False)
        )
        if claimed.rowcount != 1:
            raise _Rejected("already redeemed")

        new_refresh, new_record_id = self.issue_refresh_token(db, user)
        db.execute(
            update(RefreshToken)
            .where(RefreshToken.id == record.id)
            .values(replaced_by_id=new_record_id)
            .execution_options(synchronize_session=False)
        )
        db.commit()
        return user, new_refresh, new_record_id, record.id

    def revoke_all_for_account(self, db: Session, user_id: str) -> int:
        """Revoke every live refresh token of an account in one statement (logout)."""
        result = db.execute(
            update(RefreshToken)
            .where(RefreshToken.user_id == user_id, RefreshToken.is_revoked.is_(False))
            .values(is_revoked=True, revoked_at=self.clock())
            .execution_options(synchronize_session=False)
        )
        db.commit()
        return result.rowcount or 0

    def logout(self, db: Session, user: User, ip_address: Optional[str] = None) -> int:
        revoked = self.revoke_all_for_account(db, user.id)
        self.auditor.append(
            db,
            action=AuditAction.LOGOUT,
            entity_type="User",
            entity_id=user.id,
            actor_id=user.id,
            new_values={"revoked_refresh_tokens": revoked},
            ip_address=ip_address,
        )
        try:
            self.publisher.emit_to_tenant(user.city_id, "session.revoked", {"user_id": user.id})
        except Exception:
            logger.warning("Session notification failed for user %s", user.id, exc_info=True)
        return revoked

    def purge_expired(self, db: Session, now: Optional[datetime] = None) -> int:
        """Delete refresh-token rows past expiry, revoked or not."""
        cutoff = now or self.clock()
        # Detach forward pointers into rows about to go so the delete cannot trip the FK.
        expired_ids = [
            row_id for (row_id,) in db.query(RefreshToken.id).filter(RefreshToken.expires_at < cutoff).all()
        ]
        if not expired_ids:
            return 0
        db.query(RefreshToken).filter(RefreshToken.replaced_by_id.in_(expired_ids)).update(
            {RefreshToken.replaced_by_id: None}, synchronize_session=False
        )
        deleted = (
            db.query(RefreshToken)
            .filter(RefreshToken.id.in_(expired_ids))
            .delete(synchronize_session=False)
        )
        db.commit()
        return deleted


token_service = TokenService()
