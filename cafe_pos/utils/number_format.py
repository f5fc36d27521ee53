"""Amount parsing for operator input."""
import re
from decimal import Decimal, InvalidOperation

VN_AMOUNT_PATTERN = re.compile(r"^\d{1,3}(?:\.\d{3})+$")


def parse_amount(value) -> Decimal:
    """
    Parse a non-negative amount typed by an operator.

    Accepts plain numbers (100000, "100000", "1500.5") and
    dot-grouped VND input ("100.000").

    Raises:
        ValueError: if the value is invalid, empty or negative.
    """
    if value is None:
        raise ValueError('Invalid amount')
    if isinstance(value, bool):
        raise ValueError('Invalid amount')
    if isinstance(value, (int, Decimal)):
        amount = Decimal(value)
    elif isinstance(value, float):
        amount = Decimal(str(value))
    else:
        cleaned = str(value).strip().replace(' ', '').replace('₫', '')
        if not cleaned:
            raise ValueError('Invalid amount')
        if VN_AMOUNT_PATTERN.match(cleaned):
            cleaned = cleaned.replace('.', '')
        try:
            amount = Decimal(cleaned)
        except (InvalidOperation, ValueError):
            raise ValueError(f'Invalid amount: {value}')

    if not amount.is_finite():
        raise ValueError(f'Invalid amount: {value}')
    if amount < 0:
        raise ValueError('Amount cannot be negative')
    return amount
