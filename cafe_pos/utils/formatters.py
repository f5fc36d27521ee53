"""
Formatting helpers for receipts and JSON responses.
Vietnamese style: dot as thousands separator, no decimal places for VND.
"""
import random
import time
from decimal import Decimal, InvalidOperation
from datetime import datetime
from typing import Union, Optional


def num_vn(value: Union[int, float, Decimal, str, None]) -> str:
    """
    Format an integer amount with dots as thousands separators.

    Examples:
        num_vn(1500) -> "1.500"
        num_vn(110000) -> "110.000"
        num_vn(None) -> "-"
    """
    if value is None or value == "":
        return "-"
    try:
        num = Decimal(str(value)).quantize(Decimal('1'))
    except (InvalidOperation, ValueError, TypeError):
        return "-"

    sign = '-' if num < 0 else ''
    digits = str(abs(num))
    reversed_digits = digits[::-1]
    groups = [reversed_digits[i:i + 3] for i in range(0, len(reversed_digits), 3)]
    return sign + '.'.join(groups)[::-1]


def money_vn(value: Union[int, float, Decimal, str, None]) -> str:
    """Format a VND amount, e.g. money_vn(110000) -> "110.000 ₫"."""
    formatted = num_vn(value)
    if formatted == "-":
        return formatted
    return f"{formatted} ₫"


def datetime_vn(value: Optional[datetime] = None) -> str:
    """DD/MM/YYYY HH:MM:SS, the format stored on customer records."""
    value = value or datetime.now()
    return value.strftime('%d/%m/%Y %H:%M:%S')


def invoice_timestamp(value: Optional[datetime] = None) -> str:
    """YYYY/MM/DD HH:MM:SS, the format stored on invoices."""
    value = value or datetime.now()
    return value.strftime('%Y/%m/%d %H:%M:%S')


def generate_id(prefix: str) -> str:
    """Prefixed id from the current epoch millis plus a random suffix (INV1718...123)."""
    return f"{prefix}{int(time.time() * 1000)}{random.randint(0, 999):03d}"
