"""Product model (menu item)."""
from sqlalchemy import Column, String, Numeric, Boolean, DateTime
from sqlalchemy.sql import func
from cafe_pos.database import Base


class Product(Base):
    """Product (menu item sold at the POS)."""

    __tablename__ = 'product'

    id = Column(String(40), primary_key=True)
    name = Column(String(200), nullable=False)
    price = Column(Numeric(14, 2), nullable=False)
    category = Column(String(100), nullable=True)
    unit = Column(String(30), nullable=False, default='item')
    image_url = Column(String(500), nullable=True)
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    def __repr__(self):
        return f"<Product(id={self.id}, name='{self.name}', price={self.price})>"
