"""Loyalty rules: points earned per sale and one-way tier promotion."""
from dataclasses import dataclass, replace
from decimal import Decimal, ROUND_FLOOR
from datetime import datetime
from typing import Optional, Union

from cafe_pos.models.customer import CustomerTier
from cafe_pos.utils.formatters import datetime_vn

POINT_UNIT = Decimal('1000')  # 1 point per 1,000 VND spent

EARN_MULTIPLIERS = {
    CustomerTier.REGULAR: Decimal('1'),
    CustomerTier.VIP: Decimal('1.5'),
    CustomerTier.DIAMOND: Decimal('2'),
}

VIP_THRESHOLD = Decimal('20000000')
DIAMOND_THRESHOLD = Decimal('50000000')


@dataclass(frozen=True)
class LoyaltyUpdate:
    """What a settlement did to a customer's loyalty state."""

    customer_id: str
    points_earned: int
    points_total: int
    lifetime_spend: Decimal
    previous_tier: CustomerTier
    tier: CustomerTier

    @property
    def promoted(self) -> bool:
        return self.tier != self.previous_tier

    def to_dict(self) -> dict:
        return {
            'customer_id': self.customer_id,
            'points_earned': self.points_earned,
            'points_total': self.points_total,
            'lifetime_spend': str(self.lifetime_spend),
            'previous_tier': self.previous_tier.value,
            'tier': self.tier.value,
            'promoted': self.promoted,
        }


def points_for(amount: Decimal, tier: Union[CustomerTier, str]) -> int:
    """floor(floor(amount / 1000) * multiplier); negative amounts earn nothing."""
    amount = Decimal(str(amount))
    if amount <= 0:
        return 0
    base = (amount / POINT_UNIT).to_integral_value(rounding=ROUND_FLOOR)
    multiplier = EARN_MULTIPLIERS.get(CustomerTier(tier), Decimal('1'))
    return int((base * multiplier).to_integral_value(rounding=ROUND_FLOOR))


def promote(tier: Union[CustomerTier, str], lifetime_spend: Decimal) -> CustomerTier:
    """Tier after a purchase. Promotions only, never a demotion."""
    tier = CustomerTier(tier)
    if lifetime_spend >= DIAMOND_THRESHOLD and tier != CustomerTier.DIAMOND:
        return CustomerTier.DIAMOND
    if lifetime_spend >= VIP_THRESHOLD and tier == CustomerTier.REGULAR:
        return CustomerTier.VIP
    return tier


def apply_purchase(customer, final_total: Decimal, invoice_id: str, now: Optional[datetime] = None):
    """
    New customer record after a paid invoice plus a summary of the change.

    `customer` is a CustomerInfo; the original object is left untouched.
    """
    final_total = Decimal(str(final_total))
    previous_tier = CustomerTier(customer.tier)
    earned = points_for(final_total, previous_tier)
    lifetime_spend = Decimal(str(customer.lifetime_spend)) + final_total
    new_tier = promote(previous_tier, lifetime_spend)
    stamp = datetime_vn(now)

    refs = [ref for ref in (customer.invoice_refs or '').split(', ') if ref]
    refs.append(invoice_id)

    updated = replace(
        customer,
        tier=new_tier,
        points=int(customer.points) + earned,
        lifetime_spend=lifetime_spend,
        last_purchase_at=stamp,
        updated_at=stamp,
        invoice_refs=', '.join(refs),
    )
    summary = LoyaltyUpdate(
        customer_id=customer.id,
        points_earned=earned,
        points_total=updated.points,
        lifetime_spend=lifetime_spend,
        previous_tier=previous_tier,
        tier=new_tier,
    )
    return updated, summary
