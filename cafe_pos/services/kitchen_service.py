"""
Kitchen dispatch.

Orders are pushed fire-and-forget either to a remote kitchen display
(KITCHEN_URL) or to the in-process KitchenQueue served by the kitchen
blueprint. A failed push never blocks or fails a sale.
"""
import logging
import threading
import time
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

import requests

from cafe_pos.exceptions import NotFoundError
from cafe_pos.services.metrics_service import pos_kitchen_tickets_total
from cafe_pos.utils.formatters import generate_id

logger = logging.getLogger(__name__)

KITCHEN_STATUSES = ('pending', 'preparing', 'ready', 'served')


def build_kitchen_order(table_id: str, table_name: str, items: Iterable, employee: str,
                        notes: str = '') -> Dict[str, Any]:
    return {
        'id': generate_id('ORD'),
        'tableId': table_id,
        'tableName': table_name,
        'items': [
            {
                'id': item.product_id,
                'name': item.name,
                'quantity': item.quantity,
                'note': item.note,
                'unit': item.unit,
            }
            for item in items
        ],
        'orderTime': datetime.now(timezone.utc).isoformat(),
        'employee': employee,
        'status': 'pending',
        'priority': 'normal',
        'notes': notes,
    }


class KitchenQueue:
    """In-process queue of kitchen tickets. Served tickets expire after `served_ttl` seconds."""

    def __init__(self, served_ttl: int = 60):
        self.served_ttl = served_ttl
        self._orders: List[Dict[str, Any]] = []
        self._served_at: Dict[str, float] = {}
        self._lock = threading.Lock()

    def add(self, order: Dict[str, Any]) -> Dict[str, Any]:
        entry = dict(order)
        entry['createdAt'] = datetime.now(timezone.utc).isoformat()
        entry['status'] = 'pending'
        with self._lock:
            self._orders.append(entry)
        logger.info(f"[KITCHEN] New order queued: {entry.get('id')}")
        return entry

    def active(self) -> List[Dict[str, Any]]:
        """Orders not yet served."""
        with self._lock:
            self._purge()
            return [dict(o) for o in self._orders if o['status'] != 'served']

    def update_status(self, order_id: str, status: str) -> Dict[str, Any]:
        if status not in KITCHEN_STATUSES:
            raise ValueError(f'Invalid kitchen status {status}')
        with self._lock:
            for order in self._orders:
                if order['id'] == order_id:
                    order['status'] = status
                    order['updatedAt'] = datetime.now(timezone.utc).isoformat()
                    if status == 'served':
                        self._served_at[order_id] = time.monotonic()
                    return dict(order)
        raise NotFoundError('Order not found')

    def _purge(self) -> None:
        now = time.monotonic()
        expired = {oid for oid, at in self._served_at.items() if now - at >= self.served_ttl}
        if expired:
            self._orders = [o for o in self._orders if o['id'] not in expired]
            for oid in expired:
                self._served_at.pop(oid, None)


class KitchenDispatcher:
    """Push kitchen tickets to a remote display or the local queue."""

    def __init__(self, url: str = '', timeout: float = 3, queue: Optional[KitchenQueue] = None,
                 session: Optional[requests.Session] = None):
        self.url = url
        self.timeout = timeout
        self.queue = queue if queue is not None else KitchenQueue()
        self.session = session or requests.Session()

    def dispatch(self, order: Dict[str, Any]) -> None:
        """
        Raises:
            requests.RequestException: remote kitchen unreachable or rejected the order.
        """
        if not self.url:
            self.queue.add(order)
            pos_kitchen_tickets_total.labels(target='queue').inc()
            return
        response = self.session.post(self.url, json=order, timeout=self.timeout)
        response.raise_for_status()
        pos_kitchen_tickets_total.labels(target='http').inc()
        logger.info(f"[KITCHEN] Order {order.get('id')} sent to {self.url}")
