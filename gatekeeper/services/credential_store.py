"""Lookups and writes used by the access decision engine."""

from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from gatekeeper.core.exceptions import DatabaseError
from gatekeeper.models.access import AccessLog
from gatekeeper.models.credential import RFIDKey
from gatekeeper.models.lock import Lock
from gatekeeper.models.permission import UserPermission
from gatekeeper.models.user import User

logger = logging.getLogger(__name__)


class CredentialStore:
    """Thin query layer over a single database session."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def credential_by_card(self, card_id: str) -> Optional[RFIDKey]:
        return (
            self.db.query(RFIDKey)
            .options(joinedload(RFIDKey.user))
            .filter(RFIDKey.card_id == card_id)
            .first()
        )

    def lock_by_id(self, lock_id: str) -> Optional[Lock]:
        return (
            self.db.query(Lock)
            .options(joinedload(Lock.address))
            .filter(Lock.id == lock_id)
            .first()
        )

    def account_by_id(self, user_id: str) -> Optional[User]:
        return self.db.query(User).filter(User.id == user_id).first()

    def grant_for(self, user_id: str, lock_id: str) -> Optional[UserPermission]:
        return (
            self.db.query(UserPermission)
            .filter(UserPermission.user_id == user_id, UserPermission.lock_id == lock_id)
            .first()
        )

    @staticmethod
    def city_for_lock(lock: Lock) -> Optional[str]:
        return lock.address.city_id if lock.address else None

    def add_access_log(
        self,
        *,
        lock: Lock,
        result: str,
        access_type: str,
        timestamp: datetime,
        credential: Optional[RFIDKey] = None,
        device_info: Optional[Dict[str, Any]] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> AccessLog:
        record = AccessLog(
            timestamp=timestamp,
            access_type=access_type,
            result=result,
            lock_id=lock.id,
            user_id=credential.user_id if credential else None,
            rfid_key_id=credential.id if credential else None,
            city_id=self.city_for_lock(lock),
            device_info_json=json.dumps(device_info, default=str) if device_info else None,
            metadata_json=json.dumps(metadata, default=str) if metadata else None,
        )
        try:
            self.db.add(record)
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception("Failed to store access record for lock %s", lock.id)
            raise DatabaseError("Failed to record access attempt")
        self.db.refresh(record)
        return record

    def touch_lock(self, lock: Lock, seen_at: datetime) -> None:
        lock.last_seen = seen_at
        self.db.commit()
