"""User permission (grant) model"""

from sqlalchemy import Column, String, Boolean, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from gatekeeper.core.database import Base
from gatekeeper.models._ids import new_id


class UserPermission(Base):
    """Time-bounded grant linking one user to one lock"""

    __tablename__ = "user_permissions"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    lock_id = Column(String(36), ForeignKey("locks.id", ondelete="CASCADE"), nullable=False)
    can_access = Column(Boolean, default=True, nullable=False)
    valid_from = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    valid_to = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    user = relationship("User", back_populates="permissions")
    lock = relationship("Lock", back_populates="permissions")

    __table_args__ = (
        UniqueConstraint('user_id', 'lock_id', name='uq_user_permissions_user_lock'),
    )

    def __repr__(self):
        return f"<UserPermission(user_id={self.user_id}, lock_id={self.lock_id}, can_access={self.can_access})>"
