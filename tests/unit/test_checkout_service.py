"""
Unit tests for the checkout calculator.
"""
from decimal import Decimal

import pytest

from cafe_pos.exceptions import (
    DiscountExceedsTotalError, InsufficientPaymentError, InvalidAmountError
)
from cafe_pos.models import CustomerTier
from cafe_pos.services.cart_service import LineItem
from cafe_pos.services.checkout_service import calculate_checkout, preview_checkout, tier_rate


@pytest.fixture
def items():
    return [LineItem('CF01', 'Cà phê sữa', Decimal('50000'), quantity=2)]


class TestBreakdown:
    """Subtotal, VAT, discounts and change."""

    def test_walk_in_customer(self, items):
        result = calculate_checkout(items, None, Decimal('0'), Decimal('110000'))

        assert result.subtotal == Decimal('100000')
        assert result.vat == Decimal('10000')
        assert result.tier_discount == Decimal('0')
        assert result.final_total == Decimal('110000')
        assert result.change == Decimal('0')

    def test_vip_discount_on_subtotal_only(self, items):
        result = preview_checkout(items, CustomerTier.VIP, Decimal('0'))

        assert result.tier_discount == Decimal('10000')
        assert result.final_total == Decimal('100000')

    def test_exact_payment_for_vip(self, items):
        result = calculate_checkout(items, 'vip', Decimal('0'), Decimal('100000'))

        assert result.change == Decimal('0')
        assert result.amount_tendered == Decimal('100000')

    def test_short_payment_rejected(self, items):
        with pytest.raises(InsufficientPaymentError) as exc:
            calculate_checkout(items, CustomerTier.VIP, Decimal('0'), Decimal('90000'))

        assert exc.value.payload == {'tendered': '90000', 'required': '100000'}

    def test_diamond_with_manual_discount(self, items):
        result = calculate_checkout(items, CustomerTier.DIAMOND, Decimal('5000'), Decimal('200000'))

        assert result.tier_discount == Decimal('20000')
        assert result.total_discount == Decimal('25000')
        assert result.final_total == Decimal('85000')
        assert result.change == Decimal('115000')

    def test_identity_holds(self):
        items = [
            LineItem('A', 'a', Decimal('33333'), quantity=3),
            LineItem('B', 'b', Decimal('12345'), quantity=1),
        ]
        result = calculate_checkout(items, CustomerTier.VIP, Decimal('777'), Decimal('500000'))

        assert result.final_total == result.subtotal + result.vat - result.total_discount
        assert result.change == result.amount_tendered - result.final_total
        assert result.total_discount == result.manual_discount + result.tier_discount

    def test_amounts_rounded_to_quantum(self):
        items = [LineItem('A', 'a', Decimal('12345'), quantity=1)]
        result = preview_checkout(items, CustomerTier.VIP)

        assert result.vat == Decimal('1235')  # 1234.5 rounds half up
        assert result.tier_discount == Decimal('1235')


class TestValidation:
    """Rejected inputs."""

    def test_discount_larger_than_total(self, items):
        with pytest.raises(DiscountExceedsTotalError):
            preview_checkout(items, None, Decimal('110001'))

    def test_discount_equal_to_total_allowed(self, items):
        result = calculate_checkout(items, None, Decimal('110000'), Decimal('0'))

        assert result.final_total == Decimal('0')

    def test_negative_discount(self, items):
        with pytest.raises(InvalidAmountError):
            preview_checkout(items, None, Decimal('-1'))

    def test_missing_tendered_amount(self, items):
        with pytest.raises(InvalidAmountError):
            calculate_checkout(items, None, Decimal('0'), None)


class TestPurity:
    """The calculator never mutates its input."""

    def test_same_input_same_output(self, items):
        first = calculate_checkout(items, CustomerTier.VIP, Decimal('1000'), Decimal('150000'))
        second = calculate_checkout(items, CustomerTier.VIP, Decimal('1000'), Decimal('150000'))

        assert first == second
        assert items[0].quantity == 2
        assert items[0].price == Decimal('50000')

    def test_preview_agrees_with_checkout(self, items):
        preview = preview_checkout(items, CustomerTier.DIAMOND, Decimal('3000'))
        full = calculate_checkout(items, CustomerTier.DIAMOND, Decimal('3000'), Decimal('1000000'))

        assert preview.final_total == full.final_total
        assert preview.total_discount == full.total_discount

    def test_tier_rates(self):
        assert tier_rate(None) == Decimal('0')
        assert tier_rate('regular') == Decimal('0')
        assert tier_rate(CustomerTier.VIP) == Decimal('0.10')
        assert tier_rate(CustomerTier.DIAMOND) == Decimal('0.20')
