"""Audit service for security-relevant events."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from gatekeeper.config import settings
from gatekeeper.models.audit import AuditEvent
from gatekeeper.services.rate_limiter import SlidingWindowLimiter

logger = logging.getLogger(__name__)


def _dump(values: Optional[Dict[str, Any]]) -> Optional[str]:
    if values is None:
        return None
    return json.dumps(values, ensure_ascii=False, default=str)


class AuditService:
    """
    Append-only audit sink.

    Identical entries (same action, entity and actor) written within the
    de-duplication window collapse into the first one. The window is tracked
    in memory per process instead of scanning recent rows.
    """

    def __init__(self, dedup_window_seconds: Optional[float] = None,
                 recent: Optional[SlidingWindowLimiter] = None) -> None:
        self._window = (
            settings.AUDIT_DEDUP_WINDOW_SECONDS if dedup_window_seconds is None else dedup_window_seconds
        )
        self._recent = recent or SlidingWindowLimiter()

    @staticmethod
    def dedup_key(action: str, entity_type: str, entity_id: str, actor_id: Optional[str]) -> str:
        return f"{action}|{entity_type}|{entity_id}|{actor_id or '-'}"

    def append(
        self,
        db: Session,
        *,
        action: str,
        entity_type: str,
        entity_id: str,
        actor_id: Optional[str] = None,
        old_values: Optional[Dict[str, Any]] = None,
        new_values: Optional[Dict[str, Any]] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        commit: bool = True,
    ) -> Optional[AuditEvent]:
        """Persist one audit entry, or return None if it duplicates a recent one."""
        action = getattr(action, "value", action)
        key = self.dedup_key(action, entity_type, entity_id, actor_id)
        if self._window > 0 and not self._recent.allow(key, 1, self._window):
            logger.debug("Suppressed duplicate audit entry %s", key)
            return None

        event = AuditEvent(
            user_id=actor_id,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            old_values_json=_dump(old_values),
            new_values_json=_dump(new_values),
            ip_address=ip_address,
            user_agent=user_agent[:255] if user_agent else None,
        )
        try:
            db.add(event)
            if commit:
                db.commit()
                db.refresh(event)
            else:
                db.flush()
        except Exception:
            # The entry never landed, so a retry must not be treated as a duplicate.
            self._recent.forget(key)
            raise

        return event


audit_service = AuditService()
