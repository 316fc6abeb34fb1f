"""Permission grant and RFID key routes"""

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

from gatekeeper.api.deps import client_ip, require_role
from gatekeeper.core.database import get_db
from gatekeeper.core.scope import ActorContext
from gatekeeper.schemas.permission import (
    PermissionAssign,
    PermissionResponse,
    RFIDKeyAssign,
    RFIDKeyResponse,
)
from gatekeeper.schemas.response import APIResponse
from gatekeeper.schemas.user import UserRole
from gatekeeper.services.permission_service import permission_service

router = APIRouter()

# Supervisors and above may manage grants and cards of lower-ranked accounts
manager = require_role(UserRole.SUPERVISOR)


@router.post("/permissions", response_model=PermissionResponse, status_code=status.HTTP_201_CREATED)
def assign_permission(
    data: PermissionAssign,
    request: Request,
    actor: ActorContext = Depends(manager),
    db: Session = Depends(get_db)
):
    """Grant a user access to a lock, or update the existing grant"""
    permission = permission_service.assign_permission(db, actor, data, ip_address=client_ip(request))
    return PermissionResponse.model_validate(permission)


@router.delete("/permissions/{permission_id}", response_model=APIResponse, status_code=status.HTTP_200_OK)
def revoke_permission(
    permission_id: str,
    request: Request,
    actor: ActorContext = Depends(manager),
    db: Session = Depends(get_db)
):
    """Remove a grant"""
    permission_service.revoke_permission(db, actor, permission_id, ip_address=client_ip(request))
    return APIResponse(message="Permission revoked")


@router.post("/rfid-keys", response_model=RFIDKeyResponse, status_code=status.HTTP_200_OK)
def assign_rfid_key(
    data: RFIDKeyAssign,
    request: Request,
    actor: ActorContext = Depends(manager),
    db: Session = Depends(get_db)
):
    """Provision a card or reassign an existing one (which reactivates it)"""
    key = permission_service.assign_credential(db, actor, data, ip_address=client_ip(request))
    return RFIDKeyResponse.model_validate(key)


@router.post("/rfid-keys/{key_id}/deactivate", response_model=RFIDKeyResponse)
def deactivate_rfid_key(
    key_id: str,
    request: Request,
    actor: ActorContext = Depends(manager),
    db: Session = Depends(get_db)
):
    """Revoke a card"""
    key = permission_service.deactivate_credential(db, actor, key_id, ip_address=client_ip(request))
    return RFIDKeyResponse.model_validate(key)
