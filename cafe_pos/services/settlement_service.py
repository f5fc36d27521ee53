"""
Settlement Service - turn the selected table's order into a paid invoice.

The remote store offers no multi-row transactions, so a settlement is a
saga: invoice header, then every line in cart order, then the customer's
loyalty update, then local cleanup. After each step a SettlementLog record
is written to local storage under ``settlement:{idempotency_key}``.

Calling ``settle`` again with the key of a failed attempt resumes it: the
header and the lines already written are skipped, so a retry never
duplicates an invoice.
"""
import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from cafe_pos.services.metrics_service import pos_settlements_total, pos_settlement_duration_seconds
from cafe_pos.exceptions import (
    PosError, EmptyCartError, NoEmployeeError, NoTableSelectedError,
    RemoteWriteError, SettlementFailedError, SettlementInProgressError,
    IdempotencyConflictError
)
from cafe_pos.models.invoice import ServiceMode
from cafe_pos.services.cart_service import LineItem
from cafe_pos.services.catalog_service import CatalogService, CustomerInfo
from cafe_pos.services.checkout_service import (
    CheckoutBreakdown, calculate_checkout, DEFAULT_VAT_RATE, DEFAULT_QUANTUM
)
from cafe_pos.services.data_api import DataApi
from cafe_pos.services.kitchen_service import KitchenDispatcher, build_kitchen_order
from cafe_pos.services.loyalty_service import LoyaltyUpdate, apply_purchase
from cafe_pos.services.optimistic import apply_optimistic
from cafe_pos.services.receipt_service import ReceiptRenderer, build_receipt_data
from cafe_pos.services.storage_service import KeyValueStorage
from cafe_pos.services.table_service import TableInfo, TableSelectionController
from cafe_pos.utils.formatters import generate_id, invoice_timestamp

logger = logging.getLogger(__name__)

LOG_KEY_PREFIX = 'settlement:'
WALK_IN_CUSTOMER = 'Walk-in customer'

STEP_INVOICE = 'invoice'
STEP_LINES = 'lines'
STEP_LOYALTY = 'loyalty'
STEP_FINALIZE = 'finalize'

LOG_IN_PROGRESS = 'in_progress'
LOG_FAILED = 'failed'
LOG_COMPLETED = 'completed'


class SettlementState(str, Enum):
    IDLE = 'idle'
    VALIDATING = 'validating'
    PERSISTING = 'persisting'
    UPDATING_LOYALTY = 'updating_loyalty'
    FINALIZING = 'finalizing'
    FAILED = 'failed'


@dataclass
class SettlementResult:
    """Everything a completed settlement produced. Warnings never fail the sale."""

    invoice_id: str
    idempotency_key: str
    table_id: str
    table_name: str
    employee: str
    customer_label: str
    payment_method: str
    note: str
    settled_at: datetime
    items: List[LineItem]
    breakdown: CheckoutBreakdown
    lines_written: int
    loyalty: Optional[LoyaltyUpdate] = None
    warnings: List[str] = field(default_factory=list)
    receipt: Optional[bytes] = None
    resumed: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            'invoice_id': self.invoice_id,
            'idempotency_key': self.idempotency_key,
            'table_id': self.table_id,
            'table_name': self.table_name,
            'employee': self.employee,
            'customer': self.customer_label,
            'payment_method': self.payment_method,
            'note': self.note,
            'settled_at': self.settled_at.isoformat(),
            'items': [item.to_dict() for item in self.items],
            'breakdown': self.breakdown.to_dict(),
            'lines_written': self.lines_written,
            'loyalty': self.loyalty.to_dict() if self.loyalty else None,
            'warnings': list(self.warnings),
            'has_receipt': self.receipt is not None,
            'resumed': self.resumed,
        }


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


def _same_order(table_id: Any, final_total: Any, table: TableInfo, breakdown: CheckoutBreakdown) -> bool:
    """True when a stored table id and total describe the order being settled."""
    if final_total is None or str(table_id) != table.id:
        return False
    try:
        return Decimal(str(final_total)) == breakdown.final_total
    except (InvalidOperation, ValueError):
        return False


class SettlementCoordinator:
    """
    Runs settlements for one terminal.

    `committing` is True from validation until finalizing is done; a second
    settle() meanwhile raises SettlementInProgressError. Pass the lock that
    guards cart edits as `guard` so an edit either lands before validation
    or sees `committing`.
    """

    def __init__(
        self,
        data_api: DataApi,
        controller: TableSelectionController,
        catalog: CatalogService,
        storage: KeyValueStorage,
        receipt_renderer: Optional[ReceiptRenderer] = None,
        kitchen_dispatcher: Optional[KitchenDispatcher] = None,
        vat_rate: Decimal = DEFAULT_VAT_RATE,
        quantum: Decimal = DEFAULT_QUANTUM,
        notify_kitchen: bool = False,
        business_info: Optional[Dict[str, Any]] = None,
        guard: Optional[threading.RLock] = None,
    ):
        self.data_api = data_api
        self.controller = controller
        self.catalog = catalog
        self.storage = storage
        self.receipt_renderer = receipt_renderer
        self.kitchen_dispatcher = kitchen_dispatcher
        self.vat_rate = Decimal(str(vat_rate))
        self.quantum = Decimal(str(quantum))
        self.notify_kitchen = notify_kitchen
        self.business_info = business_info or {}

        self.state = SettlementState.IDLE
        self._committing = False
        self._lock = threading.RLock()
        # Cart edits check `committing` under this lock
        self._guard = guard if guard is not None else threading.RLock()
        self._listeners: List[Callable[[SettlementResult], None]] = []

    @property
    def committing(self) -> bool:
        return self._committing

    def add_listener(self, callback: Callable[[SettlementResult], None]) -> None:
        """Called with the result after a settlement completes."""
        self._listeners.append(callback)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def settle(
        self,
        employee: str,
        customer: Optional[CustomerInfo] = None,
        manual_discount: Decimal = Decimal('0'),
        amount_tendered: Optional[Decimal] = None,
        payment_method: str = 'cash',
        note: str = '',
        idempotency_key: Optional[str] = None,
    ) -> SettlementResult:
        """
        Settle the selected table's order.

        Raises:
            NoTableSelectedError, EmptyCartError, NoEmployeeError: nothing to settle.
            InvalidAmountError, DiscountExceedsTotalError, InsufficientPaymentError:
                checkout validation; raised before any remote write.
            IdempotencyConflictError: key already used for a completed or different order.
            SettlementInProgressError: another settlement is committing.
            SettlementFailedError: the header or a line could not be written.
        """
        with self._guard:
            if self._committing:
                raise SettlementInProgressError()
            self._committing = True
        try:
            with self._lock:
                result = self._run(employee, customer, manual_discount, amount_tendered,
                                   payment_method, note, idempotency_key)
        finally:
            self._committing = False

        for listener in list(self._listeners):
            try:
                listener(result)
            except Exception as e:
                logger.warning(f"[SETTLEMENT] Listener failed for {result.invoice_id}: {e}")
        return result

    def get_log(self, idempotency_key: str) -> Optional[Dict[str, Any]]:
        return self.storage.get(f'{LOG_KEY_PREFIX}{idempotency_key}')

    def pending_settlements(self) -> List[Dict[str, Any]]:
        """Saga logs that never completed, oldest first, for manual reconciliation."""
        pending = []
        for key in self.storage.keys(f'{LOG_KEY_PREFIX}*'):
            log = self.storage.get(key)
            if isinstance(log, dict) and log.get('status') != LOG_COMPLETED:
                pending.append(log)
        return sorted(pending, key=lambda entry: entry.get('updated_at') or '')

    # ------------------------------------------------------------------
    # Saga
    # ------------------------------------------------------------------

    def _run(self, employee, customer, manual_discount, amount_tendered,
             payment_method, note, idempotency_key) -> SettlementResult:
        self.state = SettlementState.VALIDATING
        try:
            table, items, breakdown = self._validate(employee, customer, manual_discount, amount_tendered)
            key = idempotency_key or generate_id('SET')
            log, resumed = self._open_log(key, table, breakdown, len(items),
                                          supplied=idempotency_key is not None)
        except PosError:
            self.state = SettlementState.IDLE
            pos_settlements_total.labels(outcome='rejected').inc()
            raise
        except Exception:
            self.state = SettlementState.FAILED
            raise

        now = datetime.now()
        customer_label = customer.name if customer else WALK_IN_CUSTOMER
        if resumed:
            logger.info(f"[SETTLEMENT] Resuming {key} (invoice {log['invoice_id']}, "
                        f"{len(log['lines_written'])}/{len(items)} lines written)")

        started = time.perf_counter()
        try:
            self.state = SettlementState.PERSISTING
            self._persist_header(log, table, breakdown, employee, customer, customer_label,
                                 payment_method, note, now)
            self._persist_lines(log, items)

            self.state = SettlementState.UPDATING_LOYALTY
            warnings: List[str] = []
            loyalty = None
            if customer is not None and STEP_LOYALTY not in log['steps_completed']:
                loyalty, warning = self._update_loyalty(customer, breakdown.final_total, log['invoice_id'], now)
                if warning:
                    warnings.append(warning)
                self._mark(log, STEP_LOYALTY)

            self.state = SettlementState.FINALIZING
            result = SettlementResult(
                invoice_id=log['invoice_id'],
                idempotency_key=key,
                table_id=table.id,
                table_name=table.name,
                employee=employee,
                customer_label=customer_label,
                payment_method=payment_method,
                note=note or '',
                settled_at=now,
                items=items,
                breakdown=breakdown,
                lines_written=len(log['lines_written']),
                loyalty=loyalty,
                warnings=warnings,
                resumed=resumed,
            )
            self._finalize(result, table)
            log['status'] = LOG_COMPLETED
            log['error'] = None
            self._mark(log, STEP_FINALIZE)
        except SettlementFailedError as e:
            self.state = SettlementState.FAILED
            log['status'] = LOG_FAILED
            log['error'] = e.message
            log['failed_lines'] = e.failed_lines
            self._save_log(log)
            pos_settlements_total.labels(outcome='failed').inc()
            logger.error(f"[SETTLEMENT] ✗ {key} failed at step '{e.step}': {e.message}")
            raise
        except Exception:
            self.state = SettlementState.FAILED
            pos_settlements_total.labels(outcome='failed').inc()
            logger.exception(f"[SETTLEMENT] ✗ {key} failed unexpectedly")
            raise
        finally:
            pos_settlement_duration_seconds.observe(time.perf_counter() - started)

        self.state = SettlementState.IDLE
        pos_settlements_total.labels(outcome='completed').inc()
        logger.info(f"[SETTLEMENT] ✓ Invoice {result.invoice_id} settled for table {table.id} "
                    f"({breakdown.final_total}, {len(result.warnings)} warnings)")
        return result

    def _validate(self, employee, customer, manual_discount, amount_tendered
                  ) -> Tuple[TableInfo, List[LineItem], CheckoutBreakdown]:
        table = self.controller.selected_table
        if table is None:
            raise NoTableSelectedError()
        items = self.controller.cart.items
        if not items:
            raise EmptyCartError()
        if not (employee or '').strip():
            raise NoEmployeeError()

        breakdown = calculate_checkout(
            items,
            customer.tier if customer else None,
            manual_discount,
            amount_tendered,
            vat_rate=self.vat_rate,
            quantum=self.quantum,
        )
        return table, items, breakdown

    def _open_log(self, key: str, table: TableInfo, breakdown: CheckoutBreakdown, line_count: int,
                  supplied: bool) -> Tuple[Dict[str, Any], bool]:
        """Existing saga log for `key` (resume) or a fresh one."""
        log = self.get_log(key) if supplied else None
        if isinstance(log, dict):
            if log.get('status') == LOG_COMPLETED:
                raise IdempotencyConflictError(
                    f'Settlement {key} was already completed', key, log.get('invoice_id'))
            if not _same_order(log.get('table_id'), log.get('final_total'), table, breakdown):
                raise IdempotencyConflictError(
                    f'Settlement {key} belongs to a different order', key, log.get('invoice_id'))
            log.setdefault('steps_completed', [])
            log.setdefault('lines_written', [])
            return log, True

        log = {
            'key': key,
            'invoice_id': generate_id('INV'),
            'table_id': table.id,
            'final_total': breakdown.final_total,
            'steps_completed': [],
            'lines_written': [],
            'failed_lines': [],
            'status': LOG_IN_PROGRESS,
            'error': None,
            'updated_at': _utcnow(),
        }
        resumed = supplied and self._adopt_remote_header(log, table, breakdown, line_count)
        return log, resumed

    def _adopt_remote_header(self, log: Dict[str, Any], table: TableInfo, breakdown: CheckoutBreakdown,
                             line_count: int) -> bool:
        """
        Pick up a header written under this key whose local log was lost.

        Raises:
            IdempotencyConflictError: the header belongs to another table or total.
        """
        key = log['key']
        try:
            headers = self.data_api.find('invoices', idempotency_key=key)
        except Exception as e:
            logger.warning(f"[SETTLEMENT] Could not look up existing invoice for {key}: {e}")
            return False
        if not headers:
            return False

        header = headers[0]
        invoice_id = str(header.get('id'))
        if not _same_order(header.get('table_id'), header.get('total'), table, breakdown):
            raise IdempotencyConflictError(
                f'Settlement {key} belongs to a different order', key, invoice_id)

        try:
            lines = self.data_api.find('invoice_lines', invoice_id=invoice_id)
            written = sorted({int(line['line_index']) for line in lines})
        except Exception as e:
            # Unknown progress: resuming could duplicate lines
            raise IdempotencyConflictError(
                f'Settlement {key} has invoice {invoice_id} with unreadable lines: {e}', key, invoice_id)

        log['invoice_id'] = invoice_id
        log['steps_completed'] = [STEP_INVOICE]
        log['lines_written'] = written
        if len(written) >= line_count:
            # Every line is already stored, so loyalty may have been credited too
            log['steps_completed'] += [STEP_LINES, STEP_LOYALTY]
        logger.info(f"[SETTLEMENT] Found invoice {invoice_id} already written for {key} "
                    f"({len(written)}/{line_count} lines)")
        return True

    def _persist_header(self, log, table: TableInfo, breakdown: CheckoutBreakdown, employee: str,
                        customer: Optional[CustomerInfo], customer_label: str,
                        payment_method: str, note: str, now: datetime) -> None:
        if STEP_INVOICE in log['steps_completed']:
            return

        payload = {
            'id': log['invoice_id'],
            'table_id': table.id,
            'employee': employee,
            'customer': customer_label,
            'customer_id': customer.id if customer else None,
            'issued_at': invoice_timestamp(now),
            'subtotal': breakdown.subtotal,
            'vat': breakdown.vat,
            'discount': breakdown.total_discount,
            'total': breakdown.final_total,
            'amount_paid': breakdown.amount_tendered,
            'change': breakdown.change,
            'note': note or '',
            'status': 'paid',
            'service_mode': (ServiceMode.TAKEAWAY if table.is_takeaway else ServiceMode.DINE_IN).value,
            'payment_method': payment_method,
            'idempotency_key': log['key'],
        }
        try:
            self.data_api.write('invoices', 'create', payload)
        except RemoteWriteError as e:
            raise SettlementFailedError(STEP_INVOICE, e.message, log['key'])
        self._mark(log, STEP_INVOICE)

    def _persist_lines(self, log, items: List[LineItem]) -> None:
        """Write lines one at a time; stop at the first failure, keeping the header."""
        if STEP_LINES in log['steps_completed']:
            return

        invoice_id = log['invoice_id']
        for index, item in enumerate(items):
            if index in log['lines_written']:
                continue
            payload = {
                'id': f'{invoice_id}-{index + 1:03d}',
                'invoice_id': invoice_id,
                'line_index': index,
                'product_id': item.product_id,
                'product_name': item.name,
                'unit': item.unit,
                'unit_price': item.price,
                'quantity': item.quantity,
                'amount': item.amount,
                'note': item.note,
            }
            try:
                self.data_api.write('invoice_lines', 'create', payload)
            except RemoteWriteError as e:
                written = log['lines_written']
                raise SettlementFailedError(
                    STEP_LINES,
                    f'Invoice {invoice_id} saved but line {index + 1} ({item.name}) failed: {e.message}',
                    log['key'],
                    invoice_id=invoice_id,
                    written_lines=len(written),
                    failed_lines=[i for i in range(len(items)) if i not in written],
                )
            log['lines_written'].append(index)
            self._save_log(log)
        self._mark(log, STEP_LINES)

    def _update_loyalty(self, customer: CustomerInfo, final_total: Decimal, invoice_id: str,
                        now: datetime) -> Tuple[Optional[LoyaltyUpdate], Optional[str]]:
        current = self.catalog.get_customer(customer.id) or customer
        updated, summary = apply_purchase(current, final_total, invoice_id, now)

        result = apply_optimistic(
            apply=lambda: self.catalog.put_customer(updated),
            commit=lambda: self.data_api.write('customers', 'update', updated.to_payload()),
            revert=lambda: self.catalog.put_customer(current),
        )
        if not result.ok:
            return None, f'Loyalty update for {customer.name} was not saved: {result.error}'

        if summary.promoted:
            logger.info(f"[SETTLEMENT] Customer {customer.id} promoted "
                        f"{summary.previous_tier.value} -> {summary.tier.value}")
        return summary, None

    def _finalize(self, result: SettlementResult, table: TableInfo) -> None:
        self.controller.release(table.id)

        if self.receipt_renderer is not None:
            try:
                result.receipt = self.receipt_renderer.render(
                    build_receipt_data(result, table.name, self.business_info))
            except Exception as e:
                logger.warning(f"[SETTLEMENT] Receipt for {result.invoice_id} failed: {e}")
                result.warnings.append(f'Receipt could not be rendered: {e}')

        if self.notify_kitchen and self.kitchen_dispatcher is not None:
            try:
                self.kitchen_dispatcher.dispatch(
                    build_kitchen_order(table.id, table.name, result.items, result.employee, result.note))
            except Exception as e:
                logger.warning(f"[SETTLEMENT] Kitchen notification for {result.invoice_id} failed: {e}")
                result.warnings.append(f'Kitchen was not notified: {e}')

    # ------------------------------------------------------------------
    # Log helpers
    # ------------------------------------------------------------------

    def _mark(self, log: Dict[str, Any], step: str) -> None:
        if step not in log['steps_completed']:
            log['steps_completed'].append(step)
        self._save_log(log)

    def _save_log(self, log: Dict[str, Any]) -> None:
        log['updated_at'] = _utcnow()
        if not self.storage.set(f"{LOG_KEY_PREFIX}{log['key']}", log):
            logger.warning(f"[SETTLEMENT] Saga log for {log['key']} could not be saved")
