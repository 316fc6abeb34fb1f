"""Access log (access record) model"""

import json

from sqlalchemy import Column, String, DateTime, ForeignKey, Text, Index
from sqlalchemy.orm import relationship
from gatekeeper.core.database import Base
from gatekeeper.core.security import utcnow
from gatekeeper.models._ids import new_id


class AccessLog(Base):
    """Immutable outcome of one tap event"""

    __tablename__ = "access_logs"

    id = Column(String(36), primary_key=True, default=new_id)
    timestamp = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    access_type = Column(String(20), nullable=False, default="RFID_CARD")
    result = Column(String(32), nullable=False)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    rfid_key_id = Column(String(36), ForeignKey("rfid_keys.id", ondelete="SET NULL"), nullable=True)
    lock_id = Column(String(36), ForeignKey("locks.id", ondelete="CASCADE"), nullable=False)
    # Denormalized from lock -> address at write time
    city_id = Column(String(36), ForeignKey("cities.id", ondelete="SET NULL"), nullable=True)
    device_info_json = Column(Text, nullable=True)
    metadata_json = Column(Text, nullable=True)

    user = relationship("User")
    rfid_key = relationship("RFIDKey")
    lock = relationship("Lock")

    __table_args__ = (
        Index('idx_access_logs_timestamp', 'timestamp'),
        Index('idx_access_logs_city_timestamp', 'city_id', 'timestamp'),
        Index('idx_access_logs_lock', 'lock_id'),
        Index('idx_access_logs_user', 'user_id'),
        Index('idx_access_logs_result', 'result'),
    )

    def __repr__(self):
        return f"<AccessLog(id={self.id}, lock_id={self.lock_id}, result='{self.result}')>"

    def to_dict(self):
        """Convert to dictionary"""
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "access_type": self.access_type,
            "result": self.result,
            "lock_id": self.lock_id,
            "user_id": self.user_id,
            "rfid_key_id": self.rfid_key_id,
            "city_id": self.city_id,
            "device_info": json.loads(self.device_info_json) if self.device_info_json else {},
            "metadata": json.loads(self.metadata_json) if self.metadata_json else {},
        }
