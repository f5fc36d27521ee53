"""Cart Service - working cart of the selected table (in-memory)."""

from dataclasses import dataclass, field, replace, asdict
from decimal import Decimal
from typing import List, Optional, Dict, Any


@dataclass
class LineItem:
    """One product in an order. `price` is the unit price captured at add time."""

    product_id: str
    name: str
    price: Decimal
    quantity: int = 1
    note: str = ''
    unit: str = 'item'
    image: str = ''

    @property
    def amount(self) -> Decimal:
        return self.price * self.quantity

    def copy(self) -> 'LineItem':
        return replace(self)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['price'] = str(self.price)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'LineItem':
        """Rebuild from `to_dict` output. Raises on missing keys or bad values."""
        quantity = int(data['quantity'])
        if quantity < 1:
            raise ValueError(f"Invalid quantity {quantity} for {data['product_id']}")
        return cls(
            product_id=str(data['product_id']),
            name=str(data['name']),
            price=Decimal(str(data['price'])),
            quantity=quantity,
            note=str(data.get('note') or ''),
            unit=str(data.get('unit') or 'item'),
            image=str(data.get('image') or ''),
        )


def copy_items(items) -> List[LineItem]:
    """Deep copy a sequence of line items so two holders never share objects."""
    return [item.copy() for item in items]


def cart_total(items) -> Decimal:
    return sum((item.amount for item in items), Decimal('0'))


class CartStore:
    """
    Working cart for whichever table is currently selected.

    Every mutation is mirrored into the registry entry of the owning table,
    so the parked copy never diverges from the working cart. Without an
    owning table all mutations are no-ops; callers check the selection and
    report NoTableSelectedError themselves.
    """

    def __init__(self, registry):
        self._registry = registry
        self._items: List[LineItem] = []
        self.owner_table_id: Optional[str] = None

    # ------------------------------------------------------------------
    # Read helpers
    # ------------------------------------------------------------------

    @property
    def items(self) -> List[LineItem]:
        return copy_items(self._items)

    @property
    def is_empty(self) -> bool:
        return not self._items

    @property
    def total(self) -> Decimal:
        return cart_total(self._items)

    @property
    def item_count(self) -> int:
        return sum(item.quantity for item in self._items)

    def get(self, product_id: str) -> Optional[LineItem]:
        item = self._find(product_id)
        return item.copy() if item else None

    def contains(self, product_id: str) -> bool:
        return self._find(product_id) is not None

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def add_item(self, product) -> Optional[LineItem]:
        """Add one unit of `product` (anything with id, name, price, unit)."""
        if self.owner_table_id is None:
            return None

        product_id = str(product.id)
        item = self._find(product_id)
        if item:
            item.quantity += 1
        else:
            item = LineItem(
                product_id=product_id,
                name=product.name,
                price=Decimal(str(product.price)),
                quantity=1,
                unit=getattr(product, 'unit', None) or 'item',
                image=getattr(product, 'image_url', None) or '',
            )
            self._items.append(item)

        self._publish()
        return item.copy()

    def remove_item(self, product_id: str) -> None:
        """Remove the line regardless of its quantity."""
        if self.owner_table_id is None:
            return
        self._items = [item for item in self._items if item.product_id != product_id]
        self._publish()

    def adjust_quantity(self, product_id: str, delta: int) -> None:
        """Change quantity by `delta`; a result of 0 or less removes the line."""
        item = self._find(product_id)
        if self.owner_table_id is None or item is None:
            return
        self._apply_quantity(item, item.quantity + int(delta))

    def set_quantity(self, product_id: str, quantity: int) -> None:
        item = self._find(product_id)
        if self.owner_table_id is None or item is None:
            return
        self._apply_quantity(item, int(quantity))

    def set_note(self, product_id: str, note: str) -> None:
        item = self._find(product_id)
        if self.owner_table_id is None or item is None:
            return
        item.note = note or ''
        self._publish()

    def clear(self) -> None:
        self._items = []
        if self.owner_table_id is not None:
            self._publish()

    # ------------------------------------------------------------------
    # Used by the selection controller
    # ------------------------------------------------------------------

    def load(self, table_id: Optional[str], items) -> None:
        """Bind the cart to `table_id` with a copy of `items`, without publishing."""
        self.owner_table_id = table_id
        self._items = copy_items(items)

    def _apply_quantity(self, item: LineItem, quantity: int) -> None:
        if quantity <= 0:
            self._items = [i for i in self._items if i.product_id != item.product_id]
        else:
            item.quantity = quantity
        self._publish()

    def _find(self, product_id: str) -> Optional[LineItem]:
        product_id = str(product_id)
        for item in self._items:
            if item.product_id == product_id:
                return item
        return None

    def _publish(self) -> None:
        self._registry.park(self.owner_table_id, self._items)
