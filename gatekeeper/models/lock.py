"""Lock model"""

from sqlalchemy import Column, String, Boolean, DateTime, ForeignKey, Index
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from gatekeeper.core.database import Base
from gatekeeper.models._ids import new_id


class Lock(Base):
    """Door, gate or cabinet controlled by a credential reader"""

    __tablename__ = "locks"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(100), nullable=False)
    device_id = Column(String(100), unique=True, nullable=False)
    lock_type = Column(String(20), default="DOOR", nullable=False)
    address_id = Column(String(36), ForeignKey("addresses.id", ondelete="CASCADE"), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    is_online = Column(Boolean, default=True, nullable=False)
    last_seen = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    address = relationship("Address", back_populates="locks")
    permissions = relationship("UserPermission", back_populates="lock", cascade="all, delete-orphan")

    __table_args__ = (
        Index('idx_locks_address', 'address_id'),
    )

    @property
    def city_id(self):
        return self.address.city_id if self.address else None

    def __repr__(self):
        return f"<Lock(id={self.id}, name='{self.name}', active={self.is_active}, online={self.is_online})>"
