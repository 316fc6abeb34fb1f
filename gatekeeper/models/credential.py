"""RFID key (credential) model"""

from sqlalchemy import Column, String, Boolean, DateTime, ForeignKey, Index
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from gatekeeper.core.database import Base
from gatekeeper.models._ids import new_id


class RFIDKey(Base):
    """Physical card mapped to exactly one user"""

    __tablename__ = "rfid_keys"

    id = Column(String(36), primary_key=True, default=new_id)
    card_id = Column(String(128), unique=True, nullable=False, index=True)
    name = Column(String(100), nullable=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    issued_at = Column(DateTime(timezone=True), server_default=func.now())
    expires_at = Column(DateTime(timezone=True), nullable=True)

    user = relationship("User", back_populates="rfid_keys")

    __table_args__ = (
        Index('idx_rfid_keys_user', 'user_id'),
        Index('idx_rfid_keys_active_expiry', 'is_active', 'expires_at'),
    )

    def __repr__(self):
        return f"<RFIDKey(id={self.id}, card_id='{self.card_id}', active={self.is_active})>"
