"""Invoice model (settled order header)."""
from sqlalchemy import Column, String, Numeric, Text
from sqlalchemy.orm import relationship
from cafe_pos.database import Base
import enum


class ServiceMode(str, enum.Enum):
    """Where the order was served."""
    DINE_IN = 'dine_in'
    TAKEAWAY = 'takeaway'


class Invoice(Base):
    """Invoice (settled order). Written once, never updated."""

    __tablename__ = 'invoice'

    id = Column(String(40), primary_key=True)
    table_id = Column(String(40), nullable=False)
    employee = Column(String(200), nullable=False)
    customer = Column(String(200), nullable=False)
    customer_id = Column(String(40), nullable=True)
    issued_at = Column(String(40), nullable=False)
    subtotal = Column(Numeric(14, 2), nullable=False)
    vat = Column(Numeric(14, 2), nullable=False)
    discount = Column(Numeric(14, 2), nullable=False, default=0)
    total = Column(Numeric(14, 2), nullable=False)
    amount_paid = Column(Numeric(14, 2), nullable=False)
    change = Column(Numeric(14, 2), nullable=False, default=0)
    note = Column(Text, nullable=True)
    status = Column(String(20), nullable=False, default='paid')
    service_mode = Column(String(20), nullable=False, default=ServiceMode.DINE_IN.value)
    payment_method = Column(String(30), nullable=False)

    # Idempotency key to prevent duplicate invoices on retried settlements
    idempotency_key = Column(String(64), unique=True, nullable=True, index=True)

    lines = relationship('InvoiceLine', back_populates='invoice', order_by='InvoiceLine.line_index')

    def __repr__(self):
        return f"<Invoice(id={self.id}, table_id={self.table_id}, total={self.total})>"
