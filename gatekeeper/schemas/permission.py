"""Permission grant and RFID key schemas"""

from pydantic import BaseModel, Field, model_validator
from typing import Optional
from datetime import datetime


class PermissionAssign(BaseModel):
    """Grant (or update) a user's access to one lock"""
    user_id: str = Field(..., min_length=1)
    lock_id: str = Field(..., min_length=1)
    can_access: bool = True
    valid_from: Optional[datetime] = None
    valid_to: Optional[datetime] = None

    @model_validator(mode='after')
    def check_window(self):
        """A closed window must end after it starts"""
        if self.valid_from and self.valid_to and self.valid_to <= self.valid_from:
            raise ValueError('valid_to must be after valid_from')
        return self


class PermissionResponse(BaseModel):
    id: str
    user_id: str
    lock_id: str
    can_access: bool
    valid_from: datetime
    valid_to: Optional[datetime] = None

    class Config:
        from_attributes = True


class RFIDKeyAssign(BaseModel):
    """Provision a card, or reassign an existing one to a new owner"""
    card_id: str = Field(..., min_length=1, max_length=128)
    user_id: str = Field(..., min_length=1)
    name: Optional[str] = Field(None, max_length=100)
    expires_at: Optional[datetime] = None


class RFIDKeyResponse(BaseModel):
    id: str
    card_id: str
    name: Optional[str] = None
    user_id: str
    is_active: bool
    issued_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None

    class Config:
        from_attributes = True
