"""
Checkout Service - monetary breakdown of an order.

Pure functions: no I/O, no state. The same breakdown object is threaded
through the invoice, the receipt and the HTTP response.
"""
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Iterable, Dict, Any, Union

from cafe_pos.exceptions import (
    DiscountExceedsTotalError, InsufficientPaymentError, InvalidAmountError
)
from cafe_pos.models.customer import CustomerTier

DEFAULT_VAT_RATE = Decimal('0.10')
DEFAULT_QUANTUM = Decimal('1')

TIER_DISCOUNT_RATES = {
    CustomerTier.REGULAR: Decimal('0'),
    CustomerTier.VIP: Decimal('0.10'),
    CustomerTier.DIAMOND: Decimal('0.20'),
}


def tier_rate(tier: Optional[Union[CustomerTier, str]]) -> Decimal:
    """Discount rate of a loyalty tier; no customer means no discount."""
    if tier is None:
        return Decimal('0')
    return TIER_DISCOUNT_RATES.get(CustomerTier(tier), Decimal('0'))


@dataclass(frozen=True)
class CheckoutBreakdown:
    """Every figure shown on the checkout screen and printed on the receipt."""

    subtotal: Decimal
    vat: Decimal
    manual_discount: Decimal
    tier_discount: Decimal
    total_discount: Decimal
    final_total: Decimal
    amount_tendered: Optional[Decimal] = None
    change: Optional[Decimal] = None
    tier: Optional[CustomerTier] = None

    def to_dict(self) -> Dict[str, Any]:
        def fmt(value):
            return None if value is None else str(value)

        return {
            'subtotal': fmt(self.subtotal),
            'vat': fmt(self.vat),
            'manual_discount': fmt(self.manual_discount),
            'tier_discount': fmt(self.tier_discount),
            'total_discount': fmt(self.total_discount),
            'final_total': fmt(self.final_total),
            'amount_tendered': fmt(self.amount_tendered),
            'change': fmt(self.change),
            'tier': self.tier.value if self.tier else None,
        }


def _money(value: Decimal, quantum: Decimal) -> Decimal:
    return value.quantize(quantum, rounding=ROUND_HALF_UP)


def preview_checkout(
    items: Iterable,
    customer_tier: Optional[Union[CustomerTier, str]] = None,
    manual_discount: Decimal = Decimal('0'),
    vat_rate: Decimal = DEFAULT_VAT_RATE,
    quantum: Decimal = DEFAULT_QUANTUM,
) -> CheckoutBreakdown:
    """
    Subtotal, VAT and discounts without a tendered amount.

    Raises:
        InvalidAmountError: negative manual discount.
        DiscountExceedsTotalError: discounts larger than subtotal + VAT.
    """
    manual_discount = Decimal(str(manual_discount))
    if manual_discount < 0:
        raise InvalidAmountError('Discount cannot be negative')

    tier = CustomerTier(customer_tier) if customer_tier is not None else None
    subtotal = _money(sum((Decimal(str(i.price)) * i.quantity for i in items), Decimal('0')), quantum)
    vat = _money(subtotal * Decimal(str(vat_rate)), quantum)
    # Tier discount applies to the subtotal, never to the VAT
    tier_discount = _money(subtotal * tier_rate(tier), quantum)
    manual_discount = _money(manual_discount, quantum)
    total_discount = manual_discount + tier_discount

    gross = subtotal + vat
    if total_discount > gross:
        raise DiscountExceedsTotalError(total_discount, gross)

    return CheckoutBreakdown(
        subtotal=subtotal,
        vat=vat,
        manual_discount=manual_discount,
        tier_discount=tier_discount,
        total_discount=total_discount,
        final_total=gross - total_discount,
        tier=tier,
    )


def calculate_checkout(
    items: Iterable,
    customer_tier: Optional[Union[CustomerTier, str]],
    manual_discount: Decimal,
    amount_tendered: Decimal,
    vat_rate: Decimal = DEFAULT_VAT_RATE,
    quantum: Decimal = DEFAULT_QUANTUM,
) -> CheckoutBreakdown:
    """
    Full breakdown including change.

    Raises:
        InvalidAmountError, DiscountExceedsTotalError: see preview_checkout.
        InsufficientPaymentError: tendered amount below the final total.
    """
    preview = preview_checkout(items, customer_tier, manual_discount, vat_rate, quantum)

    if amount_tendered is None:
        raise InvalidAmountError('Amount tendered is required')
    amount_tendered = Decimal(str(amount_tendered))
    if amount_tendered < 0:
        raise InvalidAmountError('Amount tendered cannot be negative')
    if amount_tendered < preview.final_total:
        raise InsufficientPaymentError(amount_tendered, preview.final_total)

    return CheckoutBreakdown(
        subtotal=preview.subtotal,
        vat=preview.vat,
        manual_discount=preview.manual_discount,
        tier_discount=preview.tier_discount,
        total_discount=preview.total_discount,
        final_total=preview.final_total,
        amount_tendered=amount_tendered,
        change=amount_tendered - preview.final_total,
        tier=preview.tier,
    )
