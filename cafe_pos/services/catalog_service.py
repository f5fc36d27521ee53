"""Catalog Service - products, tables and customers fetched from the data API."""
import logging
from dataclasses import dataclass, asdict
from decimal import Decimal
from typing import Dict, List, Optional, Any

from cafe_pos.models.customer import CustomerTier
from cafe_pos.models.dining_table import TableStatus
from cafe_pos.services.data_api import DataApi
from cafe_pos.services.table_service import TableInfo

logger = logging.getLogger(__name__)


def _truthy(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ('1', 'true', 'yes', 'active')
    return bool(value)


@dataclass(frozen=True)
class ProductInfo:
    id: str
    name: str
    price: Decimal
    category: str = ''
    unit: str = 'item'
    image_url: str = ''

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> 'ProductInfo':
        return cls(
            id=str(record['id']),
            name=record['name'],
            price=Decimal(str(record.get('price') or 0)),
            category=record.get('category') or '',
            unit=record.get('unit') or 'item',
            image_url=record.get('image_url') or '',
        )

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['price'] = str(self.price)
        return data


@dataclass(frozen=True)
class CustomerInfo:
    """The customer fields the engine reads and writes back."""

    id: str
    name: str
    phone: str = ''
    tier: CustomerTier = CustomerTier.REGULAR
    points: int = 0
    lifetime_spend: Decimal = Decimal('0')
    last_purchase_at: Optional[str] = None
    updated_at: Optional[str] = None
    invoice_refs: str = ''

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> 'CustomerInfo':
        try:
            tier = CustomerTier(record.get('tier') or CustomerTier.REGULAR.value)
        except ValueError:
            logger.warning(f"[CATALOG] Unknown tier {record.get('tier')!r} for customer {record.get('id')}")
            tier = CustomerTier.REGULAR
        return cls(
            id=str(record['id']),
            name=record['name'],
            phone=record.get('phone') or '',
            tier=tier,
            points=int(record.get('points') or 0),
            lifetime_spend=Decimal(str(record.get('lifetime_spend') or 0)),
            last_purchase_at=record.get('last_purchase_at'),
            updated_at=record.get('updated_at'),
            invoice_refs=record.get('invoice_refs') or '',
        )

    def to_payload(self) -> Dict[str, Any]:
        """Fields sent back on a customer update."""
        return {
            'id': self.id,
            'tier': self.tier.value,
            'points': self.points,
            'lifetime_spend': self.lifetime_spend,
            'last_purchase_at': self.last_purchase_at,
            'updated_at': self.updated_at,
            'invoice_refs': self.invoice_refs,
        }

    def to_dict(self) -> Dict[str, Any]:
        data = self.to_payload()
        data.update({'name': self.name, 'phone': self.phone, 'lifetime_spend': str(self.lifetime_spend)})
        return data


def table_from_record(record: Dict[str, Any], takeaway_id: Optional[str] = None) -> TableInfo:
    table_id = str(record['id'])
    return TableInfo(
        id=table_id,
        name=record['name'],
        capacity=int(record.get('capacity') or 0),
        is_takeaway=_truthy(record.get('is_takeaway')) or table_id == takeaway_id,
        status=TableStatus.EMPTY,
    )


class CatalogService:
    """
    Local cache of the catalog, refreshed in bulk.

    Only active records are kept.
    """

    def __init__(self, data_api: DataApi, takeaway_table_id: Optional[str] = None):
        self.data_api = data_api
        self.takeaway_table_id = takeaway_table_id
        self._products: Dict[str, ProductInfo] = {}
        self._customers: Dict[str, CustomerInfo] = {}

    def refresh(self) -> List[TableInfo]:
        """Reload products and customers; returns the fresh table list for the registry."""
        self.fetch_products()
        self.fetch_customers()
        tables = self.fetch_tables()
        logger.info(
            f"[CATALOG] Refreshed {len(self._products)} products, "
            f"{len(self._customers)} customers, {len(tables)} tables"
        )
        return tables

    def fetch_products(self) -> List[ProductInfo]:
        records = self.data_api.getall('products')
        self._products = {
            str(r['id']): ProductInfo.from_record(r) for r in records if _truthy(r.get('active', True))
        }
        return self.products

    def fetch_tables(self) -> List[TableInfo]:
        records = self.data_api.getall('tables')
        return [
            table_from_record(r, self.takeaway_table_id)
            for r in records if _truthy(r.get('active', True))
        ]

    def fetch_customers(self) -> List[CustomerInfo]:
        records = self.data_api.getall('customers')
        self._customers = {
            str(r['id']): CustomerInfo.from_record(r) for r in records if _truthy(r.get('active', True))
        }
        return self.customers

    @property
    def products(self) -> List[ProductInfo]:
        return list(self._products.values())

    @property
    def customers(self) -> List[CustomerInfo]:
        return list(self._customers.values())

    @property
    def categories(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for product in self._products.values():
            key = product.category or 'Other'
            counts[key] = counts.get(key, 0) + 1
        return counts

    def get_product(self, product_id: str) -> Optional[ProductInfo]:
        return self._products.get(str(product_id))

    def get_customer(self, customer_id: str) -> Optional[CustomerInfo]:
        return self._customers.get(str(customer_id))

    def put_customer(self, customer: CustomerInfo) -> None:
        self._customers[customer.id] = customer

    def search(self, term: str = '', category: str = '') -> List[ProductInfo]:
        """Case-insensitive name match, optionally restricted to one category."""
        term = (term or '').strip().lower()[:100]
        results = []
        for product in self._products.values():
            if category and product.category != category:
                continue
            if term and term not in product.name.lower() and term != product.id.lower():
                continue
            results.append(product)
        return sorted(results, key=lambda p: p.name)
