"""
Unit tests for the settlement saga.
"""
import threading
from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from cafe_pos.exceptions import (
    EmptyCartError, NoEmployeeError, NoTableSelectedError, InsufficientPaymentError,
    SettlementFailedError, SettlementInProgressError, IdempotencyConflictError
)
from cafe_pos.models import CustomerTier, TableStatus
from cafe_pos.services.settlement_service import SettlementState


def remote_writes(api):
    return [(e, o) for e, o, _ in api.calls if o in ('create', 'update', 'delete')]


@pytest.fixture
def table_with_order(terminal):
    """T1 selected holding 2 x 50,000 coffee."""
    terminal.select_table('T1')
    terminal.add_item('CF01')
    terminal.add_item('CF01')
    return terminal


@pytest.fixture
def three_line_order(terminal):
    terminal.select_table('T2')
    for product_id in ('CF01', 'TR01', 'BK01'):
        terminal.add_item(product_id)
    return terminal


class TestSuccessfulSettlement:
    """Happy path: header, lines, cleanup."""

    def test_walk_in_settlement(self, table_with_order, fake_api):
        terminal = table_with_order

        result = terminal.checkout(Decimal('120000'))

        assert result.breakdown.final_total == Decimal('110000')
        assert result.breakdown.change == Decimal('10000')
        assert result.lines_written == 1
        assert result.warnings == []

        invoice = fake_api.records['invoices'][0]
        assert invoice['id'] == result.invoice_id
        assert invoice['total'] == Decimal('110000')
        assert invoice['customer'] == 'Walk-in customer'
        assert invoice['service_mode'] == 'dine_in'
        assert invoice['status'] == 'paid'
        assert invoice['idempotency_key'] == result.idempotency_key

        line = fake_api.records['invoice_lines'][0]
        assert line['invoice_id'] == result.invoice_id
        assert line['quantity'] == 2
        assert line['amount'] == Decimal('100000')

    def test_table_and_cart_cleared(self, table_with_order):
        terminal = table_with_order

        terminal.checkout(Decimal('110000'))

        assert terminal.controller.selected_table_id is None
        assert terminal.cart.is_empty
        assert not terminal.registry.has_order('T1')
        assert terminal.registry.status('T1') == TableStatus.EMPTY
        assert terminal.coordinator.state == SettlementState.IDLE
        assert terminal.coordinator.committing is False

    def test_receipt_rendered_and_kept(self, table_with_order):
        result = table_with_order.checkout(Decimal('110000'))

        assert result.receipt.startswith(b'%PDF')
        assert table_with_order.receipt(result.invoice_id) == result.receipt

    def test_log_completed(self, table_with_order):
        terminal = table_with_order

        result = terminal.checkout(Decimal('110000'), idempotency_key='KEY-1')

        log = terminal.coordinator.get_log('KEY-1')
        assert log['status'] == 'completed'
        assert log['steps_completed'] == ['invoice', 'lines', 'finalize']
        assert log['invoice_id'] == result.invoice_id
        assert terminal.coordinator.pending_settlements() == []

    def test_takeaway_service_mode(self, terminal, fake_api):
        terminal.select_table('TAKEAWAY')
        terminal.add_item('BK01')

        terminal.checkout(Decimal('33000'))

        assert fake_api.records['invoices'][0]['service_mode'] == 'takeaway'
        assert not terminal.registry.has_order('TAKEAWAY')

    def test_lines_written_in_cart_order(self, three_line_order, fake_api):
        three_line_order.checkout(Decimal('200000'))

        lines = fake_api.records['invoice_lines']
        assert [(l['line_index'], l['product_id']) for l in lines] == [(0, 'CF01'), (1, 'TR01'), (2, 'BK01')]


class TestValidation:
    """Nothing is written when validation fails."""

    def test_insufficient_payment_writes_nothing(self, table_with_order, fake_api):
        terminal = table_with_order
        calls_before = len(fake_api.calls)

        with pytest.raises(InsufficientPaymentError):
            terminal.checkout(Decimal('100000'))

        assert len(fake_api.calls) == calls_before
        assert terminal.cart.get('CF01').quantity == 2
        assert terminal.coordinator.state == SettlementState.IDLE

    def test_no_operator(self, table_with_order, fake_api):
        table_with_order.set_operator(None)

        with pytest.raises(NoEmployeeError):
            table_with_order.checkout(Decimal('110000'))
        assert remote_writes(fake_api) == []

    def test_no_table(self, terminal):
        with pytest.raises(NoTableSelectedError):
            terminal.checkout(Decimal('1'))

    def test_empty_cart(self, terminal):
        terminal.select_table('T3')

        with pytest.raises(EmptyCartError):
            terminal.checkout(Decimal('1'))


class TestPartialFailures:
    """Header and line failures are reported per step."""

    def test_header_failure_writes_no_lines(self, table_with_order, fake_api):
        terminal = table_with_order
        fake_api.fail('invoices', 'create', message='quota exceeded')

        with pytest.raises(SettlementFailedError) as exc:
            terminal.checkout(Decimal('110000'))

        assert exc.value.step == 'invoice'
        assert exc.value.status_code == 502
        assert fake_api.writes('invoice_lines') == []
        assert terminal.cart.get('CF01').quantity == 2
        assert terminal.coordinator.state == SettlementState.FAILED
        assert terminal.coordinator.committing is False

        pending = terminal.coordinator.pending_settlements()
        assert len(pending) == 1
        assert pending[0]['status'] == 'failed'
        assert 'quota exceeded' in pending[0]['error']

    def test_header_exception_is_a_failure(self, table_with_order, fake_api):
        fake_api.fail('invoices', 'create', raises=True)

        with pytest.raises(SettlementFailedError):
            table_with_order.checkout(Decimal('110000'))

    def test_line_failure_keeps_header(self, three_line_order, fake_api):
        terminal = three_line_order
        fake_api.fail('invoice_lines', 'create', after=1)

        with pytest.raises(SettlementFailedError) as exc:
            terminal.checkout(Decimal('200000'))

        error = exc.value
        assert error.step == 'lines'
        assert error.written_lines == 1
        assert error.failed_lines == [1, 2]
        assert error.invoice_id == fake_api.records['invoices'][0]['id']
        assert len(fake_api.records['invoice_lines']) == 1
        # order stays on the table for a retry
        assert terminal.controller.selected_table_id == 'T2'
        assert terminal.cart.item_count == 3


class TestIdempotentRetry:
    """Retrying with the same key resumes instead of duplicating."""

    def test_retry_resumes_after_line_failure(self, three_line_order, fake_api):
        terminal = three_line_order
        fake_api.fail('invoice_lines', 'create', after=1)
        with pytest.raises(SettlementFailedError) as exc:
            terminal.checkout(Decimal('200000'))

        result = terminal.checkout(Decimal('200000'), idempotency_key=exc.value.idempotency_key)

        assert result.resumed is True
        assert result.invoice_id == exc.value.invoice_id
        assert len(fake_api.records['invoices']) == 1
        assert sorted(l['line_index'] for l in fake_api.records['invoice_lines']) == [0, 1, 2]
        assert terminal.coordinator.pending_settlements() == []

    def test_retry_after_header_failure(self, table_with_order, fake_api):
        terminal = table_with_order
        fake_api.fail('invoices', 'create')
        with pytest.raises(SettlementFailedError) as exc:
            terminal.checkout(Decimal('110000'), idempotency_key='RETRY-1')

        result = terminal.checkout(Decimal('110000'), idempotency_key='RETRY-1')

        assert exc.value.idempotency_key == 'RETRY-1'
        assert len(fake_api.records['invoices']) == 1
        assert fake_api.records['invoices'][0]['id'] == result.invoice_id

    def test_remote_header_adopted_when_log_lost(self, three_line_order, fake_api, storage):
        terminal = three_line_order
        fake_api.fail('invoice_lines', 'create', after=1)
        with pytest.raises(SettlementFailedError) as exc:
            terminal.checkout(Decimal('200000'), idempotency_key='LOST-1')
        storage.delete('settlement:LOST-1')

        result = terminal.checkout(Decimal('200000'), idempotency_key='LOST-1')

        assert result.invoice_id == exc.value.invoice_id
        assert len(fake_api.records['invoices']) == 1
        assert len(fake_api.records['invoice_lines']) == 3

    def test_key_reused_for_other_table_after_log_lost(self, table_with_order, fake_api, storage):
        terminal = table_with_order
        terminal.checkout(Decimal('110000'), idempotency_key='REUSED-1')
        storage.delete('settlement:REUSED-1')
        terminal.select_table('T2')
        terminal.add_item('TR01')
        terminal.add_item('TR01')

        with pytest.raises(IdempotencyConflictError) as exc:
            terminal.checkout(Decimal('100000'), idempotency_key='REUSED-1')

        assert exc.value.payload['invoice_id'] == fake_api.records['invoices'][0]['id']
        assert len(fake_api.records['invoices']) == 1
        assert [(i.product_id, i.quantity) for i in terminal.cart.items] == [('TR01', 2)]
        assert terminal.registry.has_order('T2')
        assert terminal.coordinator.state == SettlementState.IDLE

    def test_fully_written_invoice_not_credited_twice(self, table_with_order, fake_api, storage):
        terminal = table_with_order
        terminal.select_customer('KH003')
        terminal.checkout(Decimal('90000'), idempotency_key='CRASH-1')
        storage.delete('settlement:CRASH-1')
        terminal.select_table('T1')
        terminal.add_item('CF01')
        terminal.add_item('CF01')
        terminal.select_customer('KH003')

        result = terminal.checkout(Decimal('90000'), idempotency_key='CRASH-1')

        assert result.resumed is True
        assert result.loyalty is None
        assert len(fake_api.records['invoices']) == 1
        assert len(fake_api.records['invoice_lines']) == 1
        assert len(fake_api.writes('customers', 'update')) == 1

    def test_malformed_log_is_a_conflict(self, table_with_order, storage, fake_api):
        terminal = table_with_order
        storage.set('settlement:BROKEN-1', {'key': 'BROKEN-1', 'status': 'failed', 'table_id': 'T1'})

        with pytest.raises(IdempotencyConflictError):
            terminal.checkout(Decimal('110000'), idempotency_key='BROKEN-1')

        assert terminal.coordinator.state == SettlementState.IDLE
        assert terminal.coordinator.committing is False
        assert remote_writes(fake_api) == []

    def test_completed_key_rejected(self, table_with_order):
        terminal = table_with_order
        terminal.checkout(Decimal('110000'), idempotency_key='DONE-1')
        terminal.select_table('T1')
        terminal.add_item('CF01')

        with pytest.raises(IdempotencyConflictError):
            terminal.checkout(Decimal('110000'), idempotency_key='DONE-1')

    def test_key_reused_for_changed_order_rejected(self, three_line_order, fake_api):
        terminal = three_line_order
        fake_api.fail('invoice_lines', 'create', after=1)
        with pytest.raises(SettlementFailedError) as exc:
            terminal.checkout(Decimal('200000'))
        terminal.add_item('CF01')

        with pytest.raises(IdempotencyConflictError):
            terminal.checkout(Decimal('300000'), idempotency_key=exc.value.idempotency_key)
        assert len(fake_api.records['invoices']) == 1


class TestLoyalty:
    """Customer updates after the invoice is written."""

    def test_points_and_promotion(self, table_with_order, fake_api):
        terminal = table_with_order
        terminal.select_customer('KH001')

        result = terminal.checkout(Decimal('110000'))

        assert result.loyalty.points_earned == 110
        assert result.loyalty.tier == CustomerTier.VIP
        remote = next(c for c in fake_api.records['customers'] if c['id'] == 'KH001')
        assert remote['tier'] == 'vip'
        assert remote['points'] == 120
        assert remote['invoice_refs'] == result.invoice_id
        assert terminal.catalog.get_customer('KH001').tier == CustomerTier.VIP
        assert terminal.customer is None

    def test_vip_discount_applied(self, table_with_order, fake_api):
        terminal = table_with_order
        terminal.select_customer('KH002')

        result = terminal.checkout(Decimal('100000'))

        assert result.breakdown.tier_discount == Decimal('10000')
        assert result.breakdown.final_total == Decimal('100000')
        assert fake_api.records['invoices'][0]['customer_id'] == 'KH002'

    def test_loyalty_failure_is_a_warning(self, table_with_order, fake_api):
        terminal = table_with_order
        terminal.select_customer('KH001')
        fake_api.fail('customers', 'update', raises=True)

        result = terminal.checkout(Decimal('110000'))

        assert result.loyalty is None
        assert len(result.warnings) == 1
        assert 'Loyalty' in result.warnings[0]
        # local cache reverted
        assert terminal.catalog.get_customer('KH001').points == 10
        assert terminal.catalog.get_customer('KH001').tier == CustomerTier.REGULAR
        # the sale itself went through
        assert len(fake_api.records['invoices']) == 1
        assert not terminal.registry.has_order('T1')


class TestFinalizeWarnings:
    """Receipt and kitchen problems never fail the sale."""

    def test_receipt_failure(self, table_with_order):
        terminal = table_with_order
        renderer = MagicMock()
        renderer.render.side_effect = RuntimeError('printer font missing')
        terminal.coordinator.receipt_renderer = renderer

        result = terminal.checkout(Decimal('110000'))

        assert result.receipt is None
        assert any('Receipt' in w for w in result.warnings)
        assert not terminal.registry.has_order('T1')

    def test_kitchen_notified_on_settlement(self, table_with_order, kitchen_queue):
        terminal = table_with_order
        terminal.coordinator.notify_kitchen = True

        terminal.checkout(Decimal('110000'))

        orders = kitchen_queue.active()
        assert len(orders) == 1
        assert orders[0]['tableId'] == 'T1'

    def test_kitchen_failure(self, table_with_order):
        terminal = table_with_order
        dispatcher = MagicMock()
        dispatcher.dispatch.side_effect = ConnectionError('kitchen offline')
        terminal.coordinator.kitchen_dispatcher = dispatcher
        terminal.coordinator.notify_kitchen = True

        result = terminal.checkout(Decimal('110000'))

        assert any('Kitchen' in w for w in result.warnings)


class TestCommittingGuard:
    """No second settlement or cart edit while one is committing."""

    def test_reentrant_calls_rejected(self, table_with_order, fake_api, monkeypatch):
        terminal = table_with_order
        original = fake_api.request
        seen = {}

        def request(entity, operation, payload=None):
            if entity == 'invoices' and operation == 'create':
                seen['committing'] = terminal.coordinator.committing
                seen['state'] = terminal.state()['settlement']
                with pytest.raises(SettlementInProgressError):
                    terminal.checkout(Decimal('110000'))
                with pytest.raises(SettlementInProgressError):
                    terminal.add_item('TR01')
                with pytest.raises(SettlementInProgressError):
                    terminal.select_table('T3')
            return original(entity, operation, payload)

        monkeypatch.setattr(fake_api, 'request', request)

        terminal.checkout(Decimal('110000'))

        assert seen['committing'] is True
        assert seen['state'] == {'state': 'persisting', 'committing': True}
        assert len(fake_api.records['invoices']) == 1
        assert terminal.coordinator.committing is False

    def test_cart_edit_during_key_lookup_rejected(self, table_with_order, fake_api, monkeypatch):
        terminal = table_with_order
        original = fake_api.request
        looking_up = threading.Event()
        release = threading.Event()

        def request(entity, operation, payload=None):
            if entity == 'invoices' and operation == 'find':
                looking_up.set()
                release.wait(5)
            return original(entity, operation, payload)

        monkeypatch.setattr(fake_api, 'request', request)
        worker = threading.Thread(
            target=terminal.checkout, args=(Decimal('110000'),), kwargs={'idempotency_key': 'RACE-1'})
        worker.start()
        try:
            assert looking_up.wait(5)
            with pytest.raises(SettlementInProgressError):
                terminal.add_item('TR01')
        finally:
            release.set()
            worker.join(5)

        assert [l['product_id'] for l in fake_api.records['invoice_lines']] == ['CF01']
        assert terminal.cart.items == []
        assert not terminal.registry.has_order('T1')
