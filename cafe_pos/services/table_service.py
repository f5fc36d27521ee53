"""
Table Service - table registry, table selection and order transfer.

The registry owns table statuses and the parked order of every table.
Only the selection controller (select/transfer/release) and the cart mirror
write to it.
"""
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Iterable

from cafe_pos.exceptions import NotFoundError, TransferRejectedError
from cafe_pos.models.dining_table import TableStatus
from cafe_pos.services.cart_service import CartStore, LineItem, copy_items

logger = logging.getLogger(__name__)


@dataclass
class TableInfo:
    """A table known to the terminal."""

    id: str
    name: str
    capacity: int = 4
    is_takeaway: bool = False
    status: TableStatus = TableStatus.EMPTY

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'name': self.name,
            'capacity': self.capacity,
            'is_takeaway': self.is_takeaway,
            'status': None if self.is_takeaway else self.status.value,
        }


class TableRegistry:
    """Known tables plus the parked order (ActiveOrders map) of each table."""

    def __init__(self, tables: Iterable[TableInfo] = ()):
        self._tables: Dict[str, TableInfo] = {}
        self._orders: Dict[str, List[LineItem]] = {}
        self.load_tables(tables)

    # Tables -------------------------------------------------------------

    def load_tables(self, tables: Iterable[TableInfo]) -> None:
        """Replace the table list, keeping parked orders and re-deriving status."""
        self._tables = {table.id: table for table in tables}
        for table in self._tables.values():
            table.status = TableStatus.OCCUPIED if table.id in self._orders else TableStatus.EMPTY

    def get_table(self, table_id: str) -> Optional[TableInfo]:
        return self._tables.get(table_id)

    @property
    def tables(self) -> List[TableInfo]:
        return list(self._tables.values())

    def is_takeaway(self, table_id: str) -> bool:
        table = self._tables.get(table_id)
        return bool(table and table.is_takeaway)

    def status(self, table_id: str) -> Optional[TableStatus]:
        table = self._tables.get(table_id)
        if table is None or table.is_takeaway:
            return None
        return table.status

    def set_status(self, table_id: str, status: TableStatus) -> None:
        table = self._tables.get(table_id)
        if table is None or table.is_takeaway:
            return
        table.status = status

    def available_tables(self) -> List[TableInfo]:
        """Empty tables plus the takeaway pseudo-table."""
        return [t for t in self._tables.values() if t.is_takeaway or t.status == TableStatus.EMPTY]

    def occupied_tables(self) -> List[TableInfo]:
        return [t for t in self._tables.values() if not t.is_takeaway and t.status == TableStatus.OCCUPIED]

    # Parked orders ------------------------------------------------------

    def parked(self, table_id: str) -> List[LineItem]:
        """Copy of the parked order of `table_id` (empty list if none)."""
        return copy_items(self._orders.get(table_id, []))

    def has_order(self, table_id: str) -> bool:
        return bool(self._orders.get(table_id))

    def park(self, table_id: Optional[str], items) -> None:
        """Store a copy of `items` for `table_id`; an empty order drops the entry."""
        if table_id is None:
            return
        if items:
            self._orders[table_id] = copy_items(items)
            self.set_status(table_id, TableStatus.OCCUPIED)
        else:
            self._orders.pop(table_id, None)

    def discard(self, table_id: str) -> None:
        self._orders.pop(table_id, None)

    def active_orders(self) -> Dict[str, List[LineItem]]:
        return {table_id: copy_items(items) for table_id, items in self._orders.items()}

    def seed(self, orders: Dict[str, List[LineItem]]) -> None:
        """Install restored orders and re-derive every table status."""
        self._orders = {table_id: copy_items(items) for table_id, items in orders.items() if items}
        for table in self._tables.values():
            table.status = TableStatus.OCCUPIED if table.id in self._orders else TableStatus.EMPTY

    def clear(self) -> None:
        self._orders = {}
        for table in self._tables.values():
            table.status = TableStatus.EMPTY


class TableSelectionController:
    """
    Switches the selected table and moves orders between tables.

    Every public operation either completes or raises before touching state.
    """

    def __init__(self, registry: TableRegistry, cart: CartStore):
        self.registry = registry
        self.cart = cart
        self.selected_table_id: Optional[str] = None

    @property
    def selected_table(self) -> Optional[TableInfo]:
        if self.selected_table_id is None:
            return None
        return self.registry.get_table(self.selected_table_id)

    def load_tables(self, tables: Iterable[TableInfo]) -> None:
        """Install a fresh table list; the selected table stays occupied."""
        self.registry.load_tables(tables)
        if self.selected_table_id is not None:
            self.registry.set_status(self.selected_table_id, TableStatus.OCCUPIED)

    def select(self, table_id: str) -> TableInfo:
        table = self.registry.get_table(table_id)
        if table is None:
            raise NotFoundError(f'Table {table_id} not found')

        previous = self.selected_table_id
        if previous is not None and previous != table_id:
            self._leave(previous)

        self.selected_table_id = table_id
        self.cart.load(table_id, self.registry.parked(table_id))

        if not table.is_takeaway and table.status == TableStatus.EMPTY:
            self.registry.set_status(table_id, TableStatus.OCCUPIED)

        logger.debug(f"[TABLES] Selected {table_id} ({len(self.cart.items)} lines)")
        return table

    def deselect(self) -> None:
        if self.selected_table_id is None:
            return
        self._leave(self.selected_table_id)
        self.selected_table_id = None
        self.cart.load(None, [])

    def restore(self, orders: Dict[str, List[LineItem]], selected_table_id: Optional[str]) -> None:
        """Seed parked orders and selection from a recovery snapshot."""
        self.registry.seed(orders)
        self.selected_table_id = selected_table_id
        self.cart.load(selected_table_id, self.registry.parked(selected_table_id) if selected_table_id else [])
        if selected_table_id is not None:
            self.registry.set_status(selected_table_id, TableStatus.OCCUPIED)

    def transfer(self, target_table_id: str) -> TableInfo:
        """Move the selected table's order to an empty table and select it."""
        source_id = self.selected_table_id
        if source_id is None:
            raise TransferRejectedError('No table is selected')
        if self.cart.is_empty:
            raise TransferRejectedError('The selected table has no order to transfer')
        if target_table_id == source_id:
            raise TransferRejectedError('Target table is the table already selected')

        target = self.registry.get_table(target_table_id)
        if target is None:
            raise TransferRejectedError(f'Table {target_table_id} not found')
        if target.is_takeaway:
            raise TransferRejectedError('Orders cannot be transferred to takeaway')
        if self.registry.has_order(target_table_id) or target.status == TableStatus.OCCUPIED:
            raise TransferRejectedError(f'Table {target.name} is occupied')

        items = self.cart.items
        self.registry.park(target_table_id, items)
        self.registry.discard(source_id)
        self.registry.set_status(source_id, TableStatus.EMPTY)
        self.registry.set_status(target_table_id, TableStatus.OCCUPIED)
        self.selected_table_id = target_table_id
        self.cart.load(target_table_id, items)

        logger.info(f"[TABLES] Transferred order {source_id} -> {target_table_id}")
        return target

    def release(self, table_id: str) -> None:
        """Drop a settled table's order and free it."""
        self.registry.discard(table_id)
        self.registry.set_status(table_id, TableStatus.EMPTY)
        if self.selected_table_id == table_id:
            self.selected_table_id = None
            self.cart.load(None, [])

    def clear_all(self) -> None:
        self.registry.clear()
        self.selected_table_id = None
        self.cart.load(None, [])

    def _leave(self, table_id: str) -> None:
        if self.cart.is_empty:
            self.registry.discard(table_id)
            self.registry.set_status(table_id, TableStatus.EMPTY)
        else:
            self.registry.park(table_id, self.cart.items)
