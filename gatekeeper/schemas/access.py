"""Access attempt schemas"""

from pydantic import BaseModel, Field, field_validator
from typing import Optional, Dict, Any, List
from datetime import datetime
from enum import Enum


class AccessResult(str, Enum):
    """Outcome of one tap event"""
    GRANTED = "GRANTED"
    DENIED_INVALID_CARD = "DENIED_INVALID_CARD"
    DENIED_EXPIRED_CARD = "DENIED_EXPIRED_CARD"
    DENIED_NO_PERMISSION = "DENIED_NO_PERMISSION"
    DENIED_INACTIVE_USER = "DENIED_INACTIVE_USER"
    DENIED_INACTIVE_LOCK = "DENIED_INACTIVE_LOCK"
    DENIED_TIME_RESTRICTION = "DENIED_TIME_RESTRICTION"
    ERROR_DEVICE_OFFLINE = "ERROR_DEVICE_OFFLINE"
    # Kept for stored records; the decision engine never produces it
    ERROR_SYSTEM_FAILURE = "ERROR_SYSTEM_FAILURE"


class AccessType(str, Enum):
    """How the lock was operated"""
    RFID_CARD = "RFID_CARD"
    MANUAL = "MANUAL"
    EMERGENCY = "EMERGENCY"
    MAINTENANCE = "MAINTENANCE"


class TapEvent(BaseModel):
    """A credential presented at a lock"""
    card_id: str = Field(..., min_length=1, max_length=128)
    lock_id: str = Field(..., min_length=1, max_length=64)
    access_type: AccessType = AccessType.RFID_CARD
    device_info: Optional[Dict[str, Any]] = None
    metadata: Optional[Dict[str, Any]] = None

    @field_validator('card_id')
    @classmethod
    def strip_card_id(cls, v):
        """Readers sometimes pad the identifier"""
        v = v.strip()
        if not v:
            raise ValueError('card_id must not be blank')
        return v


class AccessLogResponse(BaseModel):
    """Persisted access record"""
    id: str
    timestamp: datetime
    access_type: AccessType
    result: AccessResult
    lock_id: str
    user_id: Optional[str] = None
    rfid_key_id: Optional[str] = None
    city_id: Optional[str] = None
    device_info: Dict[str, Any] = {}
    metadata: Dict[str, Any] = {}

    @classmethod
    def from_record(cls, record) -> "AccessLogResponse":
        data = record.to_dict()
        return cls(**data)


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int
    has_next: bool
    has_prev: bool


class AccessLogPage(BaseModel):
    """One page of access records"""
    data: List[AccessLogResponse]
    pagination: Pagination
