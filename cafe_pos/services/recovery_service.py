"""
Recovery Service - crash-safe snapshot of parked orders and selection.

Snapshot shape (stored under RECOVERY_KEY):
    {"activeOrders": [[table_id, [line_item, ...]], ...], "selectedTableId": ...}

Restoring never raises: a missing, corrupt or ill-formed snapshot is logged,
discarded and the terminal starts empty.
"""
import logging
from typing import Any, Dict, List, Optional, Tuple

from cafe_pos.services.cart_service import LineItem
from cafe_pos.services.storage_service import KeyValueStorage
from cafe_pos.services.table_service import TableSelectionController

logger = logging.getLogger(__name__)


class CorruptSnapshotError(ValueError):
    """The stored snapshot does not have the expected shape."""


def encode_snapshot(controller: TableSelectionController) -> Dict[str, Any]:
    orders = controller.registry.active_orders()
    return {
        'activeOrders': [
            [table_id, [item.to_dict() for item in items]]
            for table_id, items in orders.items()
        ],
        'selectedTableId': controller.selected_table_id,
    }


def decode_snapshot(data: Any) -> Tuple[Dict[str, List[LineItem]], Optional[str]]:
    """
    Parse a stored snapshot.

    Raises:
        CorruptSnapshotError: anything that is not the documented shape.
    """
    if not isinstance(data, dict):
        raise CorruptSnapshotError('Snapshot is not an object')

    entries = data.get('activeOrders', [])
    if not isinstance(entries, list):
        raise CorruptSnapshotError('activeOrders is not a list')

    orders: Dict[str, List[LineItem]] = {}
    for entry in entries:
        if not isinstance(entry, (list, tuple)) or len(entry) != 2 or not isinstance(entry[1], list):
            raise CorruptSnapshotError(f'Bad activeOrders entry: {entry!r}')
        table_id, raw_items = entry
        try:
            items = [LineItem.from_dict(raw) for raw in raw_items]
        except (KeyError, TypeError, ValueError, ArithmeticError) as e:
            raise CorruptSnapshotError(f'Bad line item for table {table_id}: {e}')
        if len({item.product_id for item in items}) != len(items):
            raise CorruptSnapshotError(f'Duplicate products for table {table_id}')
        if items:
            orders[str(table_id)] = items

    selected = data.get('selectedTableId')
    if selected is not None and not isinstance(selected, str):
        raise CorruptSnapshotError('selectedTableId is not a string')
    return orders, selected


class RecoveryStore:
    """Persists and restores the terminal's parked orders through local storage."""

    def __init__(self, storage: KeyValueStorage, key: str = 'posState'):
        self.storage = storage
        self.key = key

    def snapshot(self, controller: TableSelectionController) -> bool:
        saved = self.storage.set(self.key, encode_snapshot(controller))
        if not saved:
            logger.warning("[RECOVERY] Snapshot could not be saved")
        return saved

    def restore(self, controller: TableSelectionController) -> bool:
        """Seed the controller from the stored snapshot. Returns True if anything was restored."""
        data = self.storage.get(self.key)
        if data is None:
            return False

        try:
            orders, selected = decode_snapshot(data)
        except CorruptSnapshotError as e:
            logger.warning(f"[RECOVERY] Discarding corrupt snapshot: {e}")
            self.storage.delete(self.key)
            return False

        if selected is not None and controller.registry.get_table(selected) is None:
            logger.warning(f"[RECOVERY] Selected table {selected} no longer exists, clearing selection")
            selected = None

        controller.restore(orders, selected)
        logger.info(f"[RECOVERY] Restored {len(orders)} open orders (selected: {selected})")
        return True

    def clear(self) -> None:
        self.storage.delete(self.key)
