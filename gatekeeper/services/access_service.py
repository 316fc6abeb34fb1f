"""Access decision engine - turns a tap event into one access record."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, List, Optional, Tuple

from sqlalchemy.orm import Session

from gatekeeper.core.exceptions import LockNotFoundError
from gatekeeper.core.metrics import ACCESS_DECISIONS
from gatekeeper.core.security import as_naive_utc, utcnow
from gatekeeper.models.access import AccessLog
from gatekeeper.models.credential import RFIDKey
from gatekeeper.models.lock import Lock
from gatekeeper.models.permission import UserPermission
from gatekeeper.schemas.access import AccessResult, TapEvent
from gatekeeper.schemas.audit import AuditAction
from gatekeeper.services.audit_service import AuditService, audit_service
from gatekeeper.services.credential_store import CredentialStore
from gatekeeper.services.notifier import EventPublisher, event_hub

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 1000


def grant_in_effect(grant: UserPermission, now: datetime) -> bool:
    """True when the grant's [valid_from, valid_to) window contains now"""
    valid_from = as_naive_utc(grant.valid_from)
    valid_to = as_naive_utc(grant.valid_to)
    if valid_from is not None and valid_from > now:
        return False
    if valid_to is not None and valid_to <= now:
        return False
    return True


class AccessService:
    """
    Evaluate tap events against device, card, account and grant state.

    The checks form a strict guard chain; the first failing check decides the
    outcome, so an inactive or offline lock never reveals anything about the
    card that was presented. Denials are ordinary return values. Only a
    missing lock (or an unreachable store) raises.
    """

    def __init__(
        self,
        publisher: Optional[EventPublisher] = None,
        auditor: Optional[AuditService] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.publisher = publisher or event_hub
        self.auditor = auditor or audit_service
        self.clock = clock

    def decide(self, db: Session, tap: TapEvent, admit: Optional[Callable[[Lock], None]] = None) -> AccessLog:
        """
        Evaluate one tap and persist its record.

        ``admit`` runs once the lock is known to exist and may raise to turn
        the tap away (throttling) before anything is recorded.
        """
        store = CredentialStore(db)
        now = self.clock()

        lock = store.lock_by_id(tap.lock_id)
        if lock is None:
            logger.warning("Tap on unknown lock %s", tap.lock_id)
            raise LockNotFoundError(tap.lock_id)
        if admit is not None:
            admit(lock)

        credential = store.credential_by_card(tap.card_id)
        result = self.evaluate(store, lock, credential, now)

        record = store.add_access_log(
            lock=lock,
            result=result.value,
            access_type=getattr(tap.access_type, "value", tap.access_type),
            timestamp=now,
            credential=credential,
            device_info=tap.device_info,
            metadata=tap.metadata,
        )
        ACCESS_DECISIONS.labels(result.value).inc()
        self._publish(record)

        if result is AccessResult.GRANTED:
            self._touch_lock(store, lock, now)
            self.auditor.append(
                db,
                action=AuditAction.ACCESS_ATTEMPT,
                entity_type="AccessLog",
                entity_id=record.id,
                actor_id=credential.user_id,
                new_values={
                    "result": result.value,
                    "lock_name": lock.name,
                    "user_name": credential.user.full_name,
                },
            )
            logger.info("Access granted: lock=%s user=%s", lock.id, credential.user_id)
        else:
            logger.info("Access denied: lock=%s result=%s", lock.id, result.value)

        return record

    def evaluate(
        self,
        store: CredentialStore,
        lock: Lock,
        credential: Optional[RFIDKey],
        now: datetime,
    ) -> AccessResult:
        """Run the guard chain and return the first matching outcome."""
        if not lock.is_active:
            return AccessResult.DENIED_INACTIVE_LOCK
        if not lock.is_online:
            return AccessResult.ERROR_DEVICE_OFFLINE

        if credential is None or not credential.is_active:
            return AccessResult.DENIED_INVALID_CARD
        expires_at = as_naive_utc(credential.expires_at)
        if expires_at is not None and expires_at < now:
            return AccessResult.DENIED_EXPIRED_CARD

        account = credential.user or store.account_by_id(credential.user_id)
        if account is None or not account.is_active:
            return AccessResult.DENIED_INACTIVE_USER

        grant = store.grant_for(account.id, lock.id)
        if grant is None or not grant.can_access:
            return AccessResult.DENIED_NO_PERMISSION
        if not grant_in_effect(grant, now):
            return AccessResult.DENIED_TIME_RESTRICTION

        return AccessResult.GRANTED

    @staticmethod
    def list_access_logs(
        db: Session,
        *,
        city_id: Optional[str] = None,
        lock_id: Optional[str] = None,
        user_id: Optional[str] = None,
        result: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        page: int = 1,
        limit: int = 50,
    ) -> Tuple[List[AccessLog], int]:
        """
        Page through access records, newest first.

        city_id is the already resolved scope; None means unscoped.
        """
        page = max(1, page)
        limit = min(max(1, limit), MAX_PAGE_SIZE)

        query = db.query(AccessLog)
        if city_id:
            query = query.filter(AccessLog.city_id == city_id)
        if lock_id:
            query = query.filter(AccessLog.lock_id == lock_id)
        if user_id:
            query = query.filter(AccessLog.user_id == user_id)
        if result:
            query = query.filter(AccessLog.result == result)
        if start:
            query = query.filter(AccessLog.timestamp >= start)
        if end:
            query = query.filter(AccessLog.timestamp <= end)

        total = query.count()
        items = (
            query.order_by(AccessLog.timestamp.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return items, total

    def _touch_lock(self, store: CredentialStore, lock: Lock, now: datetime) -> None:
        # last_seen is informational; losing it must not undo a recorded decision
        try:
            store.touch_lock(lock, now)
        except Exception:
            store.db.rollback()
            logger.warning("Failed to update last_seen for lock %s", lock.id, exc_info=True)

    def _publish(self, record: AccessLog) -> None:
        """Notify the lock's city after the record is committed. Never raises."""
        payload = {
            "id": record.id,
            "result": record.result,
            "access_type": record.access_type,
            "timestamp": record.timestamp.isoformat() if record.timestamp else None,
            "user_id": record.user_id,
            "rfid_key_id": record.rfid_key_id,
            "lock_id": record.lock_id,
        }
        try:
            self.publisher.emit_to_tenant(record.city_id, "access.created", payload)
            self.publisher.emit_to_tenant(record.city_id, "kpi:update", {"reason": "access.created"})
        except Exception:
            logger.warning("Access notification failed for record %s", record.id, exc_info=True)


access_service = AccessService()
