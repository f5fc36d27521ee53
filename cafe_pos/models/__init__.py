"""Models package - exports all SQLAlchemy models."""
from cafe_pos.models.product import Product
from cafe_pos.models.dining_table import DiningTable, TableStatus
from cafe_pos.models.customer import Customer, CustomerTier
from cafe_pos.models.invoice import Invoice, ServiceMode
from cafe_pos.models.invoice_line import InvoiceLine

__all__ = [
    'Product', 'DiningTable', 'TableStatus', 'Customer', 'CustomerTier',
    'Invoice', 'ServiceMode', 'InvoiceLine',
]
