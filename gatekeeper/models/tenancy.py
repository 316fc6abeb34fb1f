"""City (tenant) and address models"""

from sqlalchemy import Column, String, DateTime, ForeignKey, Index
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship

from gatekeeper.core.database import Base
from gatekeeper.models._ids import new_id


class City(Base):
    """Tenant boundary: every lock, and every non-top account, belongs to one city"""

    __tablename__ = "cities"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(100), unique=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    addresses = relationship("Address", back_populates="city", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<City(id={self.id}, name='{self.name}')>"


class Address(Base):
    """Physical location hosting one or more locks"""

    __tablename__ = "addresses"

    id = Column(String(36), primary_key=True, default=new_id)
    label = Column(String(255), nullable=False)
    city_id = Column(String(36), ForeignKey("cities.id", ondelete="CASCADE"), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    city = relationship("City", back_populates="addresses")
    locks = relationship("Lock", back_populates="address")

    __table_args__ = (
        Index("idx_addresses_city", "city_id"),
    )

    def __repr__(self):
        return f"<Address(id={self.id}, city_id={self.city_id})>"
