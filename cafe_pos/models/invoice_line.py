"""Invoice Line model."""
from sqlalchemy import Column, String, Integer, Numeric, Text, ForeignKey
from sqlalchemy.orm import relationship
from cafe_pos.database import Base


class InvoiceLine(Base):
    """Invoice Line (one settled line item)."""

    __tablename__ = 'invoice_line'

    id = Column(String(40), primary_key=True)
    invoice_id = Column(String(40), ForeignKey('invoice.id'), nullable=False, index=True)
    line_index = Column(Integer, nullable=False)
    product_id = Column(String(40), nullable=False)
    product_name = Column(String(200), nullable=False)
    unit = Column(String(30), nullable=False)
    unit_price = Column(Numeric(14, 2), nullable=False)
    quantity = Column(Integer, nullable=False)
    amount = Column(Numeric(14, 2), nullable=False)
    note = Column(Text, nullable=True)

    invoice = relationship('Invoice', back_populates='lines')

    def __repr__(self):
        return f"<InvoiceLine(id={self.id}, product_id={self.product_id}, quantity={self.quantity})>"
