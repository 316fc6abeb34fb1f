"""Background worker for periodic housekeeping jobs."""

from __future__ import annotations

import logging
import threading
import time
from datetime import datetime
from typing import Callable, Dict, Optional

from sqlalchemy.orm import Session

from gatekeeper.config import settings
from gatekeeper.core.security import utcnow
from gatekeeper.models.credential import RFIDKey
from gatekeeper.schemas.audit import AuditAction
from gatekeeper.services.audit_service import AuditService, audit_service
from gatekeeper.services.token_service import token_service

logger = logging.getLogger(__name__)


def run_key_expiry_check_once(
    db: Session,
    now: Optional[datetime] = None,
    auditor: Optional[AuditService] = None,
) -> int:
    """Deactivate active RFID keys whose expiry has passed; returns how many."""
    now = now or utcnow()
    auditor = auditor or audit_service

    expired = (
        db.query(RFIDKey)
        .filter(RFIDKey.is_active.is_(True), RFIDKey.expires_at.isnot(None), RFIDKey.expires_at <= now)
        .all()
    )
    if not expired:
        return 0

    snapshots = [(key.id, key.user_id, key.card_id, key.expires_at) for key in expired]
    for key in expired:
        key.is_active = False
    db.commit()

    for key_id, user_id, card_id, expires_at in snapshots:
        try:
            auditor.append(
                db,
                action=AuditAction.UPDATE,
                entity_type="RFIDKey",
                entity_id=key_id,
                actor_id=user_id,
                new_values={"is_active": False, "expired_at": expires_at, "card_id": card_id},
            )
        except Exception:
            db.rollback()
            logger.warning("Failed to audit expiry of RFID key %s", key_id, exc_info=True)

    logger.info("Deactivated %d expired RFID keys", len(snapshots))
    return len(snapshots)


def run_refresh_cleanup_once(db: Session, now: Optional[datetime] = None) -> int:
    """Purge expired refresh-token rows; returns how many were deleted."""
    deleted = token_service.purge_expired(db, now)
    if deleted:
        logger.info("Purged %d expired refresh tokens", deleted)
    return deleted


class MaintenanceWorker:
    """Runs each housekeeping job on its own interval in one daemon thread."""

    def __init__(self, session_factory: Optional[Callable[[], Session]] = None) -> None:
        self._session_factory = session_factory
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._heartbeat: float = 0.0
        self._last_run: Dict[str, float] = {}
        self._jobs = {
            "key_expiry": (run_key_expiry_check_once, lambda: settings.KEY_EXPIRY_JOB_INTERVAL_SECONDS),
            "refresh_cleanup": (run_refresh_cleanup_once, lambda: settings.REFRESH_CLEANUP_INTERVAL_SECONDS),
        }

    def _new_session(self) -> Session:
        if self._session_factory is None:
            from gatekeeper.core.database import SessionLocal
            self._session_factory = SessionLocal
        return self._session_factory()

    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.is_running():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run_loop, name="maintenance-worker", daemon=True)
        self._thread.start()
        logger.info("Maintenance worker started")

    def stop(self) -> None:
        self._stop_event.set()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=5)
        logger.info("Maintenance worker stopped")

    def status(self) -> dict:
        return {
            "running": self.is_running(),
            "last_heartbeat": self._heartbeat,
            "last_run": dict(self._last_run),
        }

    def run_due_jobs(self, monotonic_now: Optional[float] = None) -> Dict[str, int]:
        """Run every job whose interval has elapsed (all of them on the first call)."""
        current = time.monotonic() if monotonic_now is None else monotonic_now
        results: Dict[str, int] = {}
        for name, (job, interval) in self._jobs.items():
            last = self._last_run.get(name)
            if last is not None and current - last < interval():
                continue
            self._last_run[name] = current
            db = self._new_session()
            try:
                results[name] = job(db)
            except Exception:
                db.rollback()
                logger.exception("Maintenance job %s failed", name)
            finally:
                db.close()
        return results

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            self.run_due_jobs()
            self._heartbeat = time.time()
            self._stop_event.wait(1.0)


maintenance_worker = MaintenanceWorker()
