"""
Terminal Service - one POS screen: the table registry, working cart,
selection, catalog cache and settlement coordinator wired together.

The terminal is created once per app by init_terminal() and is reached
from request handlers through get_terminal().
"""
import atexit
import logging
import threading
from collections import OrderedDict
from decimal import Decimal
from typing import Any, Dict, Optional, Tuple

from flask import Flask, current_app

from cafe_pos.exceptions import (
    NoTableSelectedError, NotFoundError, EmptyCartError, SettlementInProgressError
)
from cafe_pos.services.cart_service import CartStore, LineItem
from cafe_pos.services.catalog_service import CatalogService, CustomerInfo
from cafe_pos.services.checkout_service import CheckoutBreakdown, preview_checkout
from cafe_pos.services.data_api import DataApi
from cafe_pos.services.kitchen_service import KitchenDispatcher, KitchenQueue, build_kitchen_order
from cafe_pos.services.receipt_service import ReceiptRenderer
from cafe_pos.services.recovery_service import RecoveryStore
from cafe_pos.services.settlement_service import SettlementCoordinator, SettlementResult
from cafe_pos.services.storage_service import KeyValueStorage
from cafe_pos.services.table_service import TableRegistry, TableSelectionController, TableInfo

logger = logging.getLogger(__name__)

MAX_KEPT_RECEIPTS = 20


class PosTerminal:
    """Façade over the order engine for a single terminal."""

    def __init__(
        self,
        data_api: DataApi,
        storage: KeyValueStorage,
        catalog: CatalogService,
        recovery: RecoveryStore,
        kitchen_dispatcher: KitchenDispatcher,
        receipt_renderer: Optional[ReceiptRenderer] = None,
        vat_rate: Decimal = Decimal('0.10'),
        quantum: Decimal = Decimal('1'),
        notify_kitchen: bool = False,
        business_info: Optional[Dict[str, Any]] = None,
        default_payment_method: str = 'cash',
    ):
        self.catalog = catalog
        self.recovery = recovery
        self.kitchen_dispatcher = kitchen_dispatcher
        self.vat_rate = Decimal(str(vat_rate))
        self.quantum = Decimal(str(quantum))
        self.default_payment_method = default_payment_method

        self._lock = threading.RLock()
        self.registry = TableRegistry()
        self.cart = CartStore(self.registry)
        self.controller = TableSelectionController(self.registry, self.cart)
        self.coordinator = SettlementCoordinator(
            data_api,
            self.controller,
            catalog,
            storage,
            receipt_renderer=receipt_renderer,
            kitchen_dispatcher=kitchen_dispatcher,
            vat_rate=self.vat_rate,
            quantum=self.quantum,
            notify_kitchen=notify_kitchen,
            business_info=business_info,
            guard=self._lock,
        )
        self.coordinator.add_listener(self._on_settled)

        self.operator: Optional[str] = None
        self.customer: Optional[CustomerInfo] = None
        self._receipts: 'OrderedDict[str, bytes]' = OrderedDict()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Load the catalog, then restore parked orders from the last snapshot."""
        try:
            self.sync()
        except Exception as e:
            logger.error(f"[TERMINAL] Initial catalog sync failed: {e}")
        with self._lock:
            self.recovery.restore(self.controller)

    def sync(self) -> Dict[str, int]:
        tables = self.catalog.refresh()
        with self._lock:
            self.controller.load_tables(tables)
            if self.customer is not None:
                self.customer = self.catalog.get_customer(self.customer.id)
        return {
            'products': len(self.catalog.products),
            'customers': len(self.catalog.customers),
            'tables': len(tables),
        }

    def snapshot(self) -> bool:
        with self._lock:
            return self.recovery.snapshot(self.controller)

    # ------------------------------------------------------------------
    # Operator / customer / tables
    # ------------------------------------------------------------------

    def set_operator(self, name: Optional[str]) -> None:
        self.operator = (name or '').strip() or None

    def select_customer(self, customer_id: Optional[str]) -> Optional[CustomerInfo]:
        """Attach a customer to the next settlement; None detaches."""
        if not customer_id:
            self.customer = None
            return None
        customer = self.catalog.get_customer(customer_id)
        if customer is None:
            raise NotFoundError(f'Customer {customer_id} not found')
        self.customer = customer
        return customer

    def select_table(self, table_id: str) -> TableInfo:
        with self._lock:
            self._ensure_not_committing()
            return self.controller.select(table_id)

    def deselect_table(self) -> None:
        with self._lock:
            self._ensure_not_committing()
            self.controller.deselect()

    def transfer(self, target_table_id: str) -> TableInfo:
        with self._lock:
            self._ensure_not_committing()
            return self.controller.transfer(target_table_id)

    # ------------------------------------------------------------------
    # Cart
    # ------------------------------------------------------------------

    def add_item(self, product_id: str) -> LineItem:
        with self._lock:
            self._ensure_cart_editable()
            product = self.catalog.get_product(product_id)
            if product is None:
                raise NotFoundError(f'Product {product_id} not found')
            return self.cart.add_item(product)

    def remove_item(self, product_id: str) -> None:
        with self._lock:
            self._ensure_cart_editable()
            self.cart.remove_item(product_id)

    def adjust_quantity(self, product_id: str, delta: int) -> None:
        with self._lock:
            self._ensure_cart_editable()
            self.cart.adjust_quantity(product_id, delta)

    def set_quantity(self, product_id: str, quantity: int) -> None:
        with self._lock:
            self._ensure_cart_editable()
            self.cart.set_quantity(product_id, quantity)

    def set_note(self, product_id: str, note: str) -> None:
        with self._lock:
            self._ensure_cart_editable()
            self.cart.set_note(product_id, note)

    def clear_cart(self) -> None:
        with self._lock:
            self._ensure_cart_editable()
            self.cart.clear()

    # ------------------------------------------------------------------
    # Checkout
    # ------------------------------------------------------------------

    def preview(self, manual_discount: Decimal = Decimal('0')) -> CheckoutBreakdown:
        with self._lock:
            items = self.cart.items
        return preview_checkout(
            items,
            self.customer.tier if self.customer else None,
            manual_discount,
            vat_rate=self.vat_rate,
            quantum=self.quantum,
        )

    def checkout(self, amount_tendered: Optional[Decimal], manual_discount: Decimal = Decimal('0'),
                 payment_method: Optional[str] = None, note: str = '',
                 idempotency_key: Optional[str] = None) -> SettlementResult:
        return self.coordinator.settle(
            self.operator or '',
            customer=self.customer,
            manual_discount=manual_discount,
            amount_tendered=amount_tendered,
            payment_method=payment_method or self.default_payment_method,
            note=note,
            idempotency_key=idempotency_key,
        )

    def receipt(self, invoice_id: str) -> Optional[bytes]:
        return self._receipts.get(invoice_id)

    def send_to_kitchen(self, notes: str = '') -> Tuple[Dict[str, Any], Optional[str]]:
        """Push the working cart to the kitchen. Returns the ticket and a warning if the push failed."""
        with self._lock:
            table = self.controller.selected_table
            if table is None:
                raise NoTableSelectedError()
            if self.cart.is_empty:
                raise EmptyCartError()
            order = build_kitchen_order(table.id, table.name, self.cart.items, self.operator or '', notes)

        try:
            self.kitchen_dispatcher.dispatch(order)
        except Exception as e:
            logger.warning(f"[KITCHEN] Order {order['id']} for {table.id} not delivered: {e}")
            return order, f'Kitchen was not notified: {e}'
        return order, None

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    def state(self) -> Dict[str, Any]:
        with self._lock:
            selected = self.controller.selected_table
            return {
                'operator': self.operator,
                'customer': self.customer.to_dict() if self.customer else None,
                'selected_table': selected.to_dict() if selected else None,
                'cart': {
                    'items': [item.to_dict() for item in self.cart.items],
                    'total': str(self.cart.total),
                    'item_count': self.cart.item_count,
                },
                'tables': [
                    dict(table.to_dict(), has_order=self.registry.has_order(table.id))
                    for table in self.registry.tables
                ],
                'settlement': {
                    'state': self.coordinator.state.value,
                    'committing': self.coordinator.committing,
                },
            }

    def _ensure_not_committing(self) -> None:
        if self.coordinator.committing:
            raise SettlementInProgressError()

    def _ensure_cart_editable(self) -> None:
        self._ensure_not_committing()
        if self.controller.selected_table_id is None:
            raise NoTableSelectedError()

    def _on_settled(self, result: SettlementResult) -> None:
        self.customer = None
        if result.receipt is not None:
            self._receipts[result.invoice_id] = result.receipt
            while len(self._receipts) > MAX_KEPT_RECEIPTS:
                self._receipts.popitem(last=False)
        self.snapshot()


def init_terminal(app: Flask) -> PosTerminal:
    """Build the terminal from app config and restore the last snapshot."""
    from cafe_pos.services.data_api import get_data_api
    from cafe_pos.services.storage_service import get_storage

    with app.app_context():
        data_api = get_data_api()
        storage = get_storage()

    config = app.config
    queue = KitchenQueue(served_ttl=config.get('KITCHEN_SERVED_TTL', 60))
    terminal = PosTerminal(
        data_api,
        storage,
        CatalogService(data_api, takeaway_table_id=config.get('TAKEAWAY_TABLE_ID')),
        RecoveryStore(storage, key=config.get('RECOVERY_KEY', 'posState')),
        KitchenDispatcher(
            url=config.get('KITCHEN_URL', ''),
            timeout=config.get('KITCHEN_TIMEOUT', 3),
            queue=queue,
        ),
        receipt_renderer=ReceiptRenderer(),
        vat_rate=Decimal(str(config.get('VAT_RATE', '0.10'))),
        quantum=Decimal(str(config.get('MONEY_QUANTUM', '1'))),
        notify_kitchen=config.get('KITCHEN_NOTIFY_ON_SETTLEMENT', False),
        business_info={
            'name': config.get('BUSINESS_NAME'),
            'address': config.get('BUSINESS_ADDRESS'),
            'phone': config.get('BUSINESS_PHONE'),
        },
        default_payment_method=config.get('DEFAULT_PAYMENT_METHOD', 'cash'),
    )
    app.extensions['kitchen_queue'] = queue
    app.extensions['terminal'] = terminal

    with app.app_context():
        terminal.start()

    if not app.config.get('TESTING'):
        atexit.register(terminal.snapshot)
    return terminal


def get_terminal() -> PosTerminal:
    terminal = current_app.extensions.get('terminal')
    if terminal is None:
        raise RuntimeError("Terminal not initialized.")
    return terminal


def get_kitchen_queue() -> KitchenQueue:
    return current_app.extensions['kitchen_queue']
