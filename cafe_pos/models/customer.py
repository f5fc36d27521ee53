"""Customer model."""
from sqlalchemy import Column, String, Text, Numeric, Integer, DateTime, Boolean
from sqlalchemy.sql import func
from cafe_pos.database import Base
import enum


class CustomerTier(str, enum.Enum):
    """Loyalty tier of a customer."""
    REGULAR = 'regular'
    VIP = 'vip'
    DIAMOND = 'diamond'


class Customer(Base):
    """Customer with loyalty state."""

    __tablename__ = 'customer'

    id = Column(String(40), primary_key=True)
    name = Column(String(200), nullable=False)
    phone = Column(String(30), nullable=True)
    email = Column(String(255), nullable=True)
    tier = Column(String(20), nullable=False, default=CustomerTier.REGULAR.value)
    points = Column(Integer, nullable=False, default=0)
    lifetime_spend = Column(Numeric(16, 2), nullable=False, default=0)
    last_purchase_at = Column(String(40), nullable=True)
    invoice_refs = Column(Text, nullable=True)  # comma separated invoice ids
    notes = Column(Text, nullable=True)
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(String(40), nullable=True)

    def __repr__(self):
        return f"<Customer(id={self.id}, name='{self.name}', tier={self.tier})>"
