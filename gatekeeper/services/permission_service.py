"""Permission grants and RFID key provisioning, guarded by role rank and city scope."""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.orm import Session, joinedload

from gatekeeper.core.exceptions import ResourceNotFoundError, ValidationError
from gatekeeper.core.rbac import ensure_can_manage
from gatekeeper.core.scope import ActorContext, ensure_in_scope
from gatekeeper.core.security import as_naive_utc, utcnow
from gatekeeper.models.credential import RFIDKey
from gatekeeper.models.lock import Lock
from gatekeeper.models.permission import UserPermission
from gatekeeper.models.user import User
from gatekeeper.schemas.audit import AuditAction
from gatekeeper.schemas.permission import PermissionAssign, RFIDKeyAssign
from gatekeeper.services.audit_service import AuditService, audit_service

logger = logging.getLogger(__name__)


def _permission_values(permission: UserPermission) -> dict:
    return {
        "user_id": permission.user_id,
        "lock_id": permission.lock_id,
        "can_access": permission.can_access,
        "valid_from": permission.valid_from,
        "valid_to": permission.valid_to,
    }


def _key_values(key: RFIDKey) -> dict:
    return {
        "card_id": key.card_id,
        "user_id": key.user_id,
        "is_active": key.is_active,
        "expires_at": key.expires_at,
    }


class PermissionService:
    """Mutations on another account's grants and cards."""

    def __init__(self, auditor: Optional[AuditService] = None) -> None:
        self.auditor = auditor or audit_service

    @staticmethod
    def _managed_user(db: Session, actor: ActorContext, user_id: str) -> User:
        user = db.query(User).filter(User.id == user_id).first()
        if not user:
            raise ResourceNotFoundError("User")
        ensure_can_manage(user.role, actor.role)
        ensure_in_scope(actor, user.city_id)
        return user

    @staticmethod
    def _scoped_lock(db: Session, actor: ActorContext, lock_id: str) -> Lock:
        lock = db.query(Lock).options(joinedload(Lock.address)).filter(Lock.id == lock_id).first()
        if not lock:
            raise ResourceNotFoundError("Lock")
        ensure_in_scope(actor, lock.city_id)
        return lock

    def assign_permission(
        self,
        db: Session,
        actor: ActorContext,
        data: PermissionAssign,
        ip_address: Optional[str] = None,
    ) -> UserPermission:
        """Create or update the single grant for (user, lock)."""
        user = self._managed_user(db, actor, data.user_id)
        lock = self._scoped_lock(db, actor, data.lock_id)

        permission = (
            db.query(UserPermission)
            .filter(UserPermission.user_id == user.id, UserPermission.lock_id == lock.id)
            .first()
        )
        old_values = _permission_values(permission) if permission else None
        if permission:
            permission.can_access = data.can_access
            if data.valid_from is not None:
                permission.valid_from = as_naive_utc(data.valid_from)
            if data.valid_to is not None:
                permission.valid_to = as_naive_utc(data.valid_to)
        else:
            permission = UserPermission(
                user_id=user.id,
                lock_id=lock.id,
                can_access=data.can_access,
                valid_from=as_naive_utc(data.valid_from) or utcnow(),
                valid_to=as_naive_utc(data.valid_to),
            )
            db.add(permission)

        valid_from = as_naive_utc(permission.valid_from)
        valid_to = as_naive_utc(permission.valid_to)
        if valid_to is not None and valid_from is not None and valid_to <= valid_from:
            db.rollback()
            raise ValidationError("valid_to must be after valid_from")

        db.commit()
        db.refresh(permission)

        self.auditor.append(
            db,
            action=AuditAction.PERMISSION_GRANT,
            entity_type="UserPermission",
            entity_id=permission.id,
            actor_id=actor.id,
            old_values=old_values,
            new_values=_permission_values(permission),
            ip_address=ip_address,
        )
        logger.info("Permission %s assigned by %s", permission.id, actor.id)
        return permission

    def revoke_permission(
        self,
        db: Session,
        actor: ActorContext,
        permission_id: str,
        ip_address: Optional[str] = None,
    ) -> None:
        permission = db.query(UserPermission).filter(UserPermission.id == permission_id).first()
        if not permission:
            raise ResourceNotFoundError("Permission")
        self._managed_user(db, actor, permission.user_id)
        self._scoped_lock(db, actor, permission.lock_id)

        old_values = _permission_values(permission)
        db.delete(permission)
        db.commit()

        self.auditor.append(
            db,
            action=AuditAction.PERMISSION_REVOKE,
            entity_type="UserPermission",
            entity_id=permission_id,
            actor_id=actor.id,
            old_values=old_values,
            ip_address=ip_address,
        )
        logger.info("Permission %s revoked by %s", permission_id, actor.id)

    def assign_credential(
        self,
        db: Session,
        actor: ActorContext,
        data: RFIDKeyAssign,
        ip_address: Optional[str] = None,
    ) -> RFIDKey:
        """
        Provision a card, or reassign an existing one.

        Reassignment is the only way a deactivated card becomes active again;
        it also moves the card to its new owner.
        """
        owner = self._managed_user(db, actor, data.user_id)
        card_id = data.card_id.strip()

        key = db.query(RFIDKey).filter(RFIDKey.card_id == card_id).first()
        if key:
            if key.user_id != owner.id:
                # Taking a card away from its holder is a mutation on that holder too
                self._managed_user(db, actor, key.user_id)
            old_values = _key_values(key)
            key.user_id = owner.id
            key.is_active = True
            key.expires_at = as_naive_utc(data.expires_at)
            if data.name is not None:
                key.name = data.name
            action = AuditAction.UPDATE
        else:
            old_values = None
            key = RFIDKey(
                card_id=card_id,
                name=data.name,
                user_id=owner.id,
                is_active=True,
                expires_at=as_naive_utc(data.expires_at),
            )
            db.add(key)
            action = AuditAction.CREATE

        db.commit()
        db.refresh(key)

        self.auditor.append(
            db,
            action=action,
            entity_type="RFIDKey",
            entity_id=key.id,
            actor_id=actor.id,
            old_values=old_values,
            new_values=_key_values(key),
            ip_address=ip_address,
        )
        return key

    def deactivate_credential(
        self,
        db: Session,
        actor: ActorContext,
        key_id: str,
        ip_address: Optional[str] = None,
    ) -> RFIDKey:
        key = db.query(RFIDKey).filter(RFIDKey.id == key_id).first()
        if not key:
            raise ResourceNotFoundError("RFID key")
        self._managed_user(db, actor, key.user_id)

        if key.is_active:
            key.is_active = False
            db.commit()
            db.refresh(key)
            self.auditor.append(
                db,
                action=AuditAction.UPDATE,
                entity_type="RFIDKey",
                entity_id=key.id,
                actor_id=actor.id,
                old_values={"is_active": True},
                new_values={"is_active": False},
                ip_address=ip_address,
            )
        return key


permission_service = PermissionService()
