"""Display formatting for invoice amounts.

INR uses Indian digit grouping (last group of 3, then groups of 2: 12,34,567),
USD uses Western grouping (1,234,567). Both quantize HALF_UP to 2 decimals;
this is the only place amounts are rounded.

Examples:
>>> format_indian_number(1234567)
'12,34,567'
>>> format_inr(1234567.5)
'₹12,34,567.50'
>>> format_usd(1234567.5)
'$1,234,567.50'
"""
from __future__ import annotations
from decimal import Decimal, ROUND_HALF_UP
from typing import Union

Number = Union[int, float, Decimal]

__all__ = ["format_indian_number", "format_inr", "format_usd", "format_money", "to_cents"]

_CENT = Decimal('0.01')


def _split_number_str(num_str: str) -> tuple[str, str]:
    if '.' in num_str:
        left, right = num_str.split('.', 1)
    else:
        left, right = num_str, ''
    return left, right


def to_cents(value: Number) -> Decimal:
    """Quantize to 2 decimal places, HALF_UP."""
    return Decimal(str(value)).quantize(_CENT, rounding=ROUND_HALF_UP)


def format_indian_number(value: Number) -> str:
    """Format a number using Indian digit grouping.

    Does not add decimals; use :func:`format_inr` for currency.
    """
    if isinstance(value, Decimal):
        num_str = format(value, 'f')
    else:
        num_str = '{0}'.format(value)
    sign = ''
    if num_str.startswith('-'):
        sign, num_str = '-', num_str[1:]
    left, right = _split_number_str(num_str)
    if len(left) <= 3:
        grouped = left
    else:
        # Last 3 digits stay together; preceding part grouped in 2s
        head = left[:-3]
        tail = left[-3:]
        head_groups: list[str] = []
        while len(head) > 2:
            head_groups.insert(0, head[-2:])
            head = head[:-2]
        if head:
            head_groups.insert(0, head)
        grouped = ','.join(head_groups + [tail])
    return sign + (grouped + ('.' + right if right else ''))


def format_inr(value: Number, symbol: bool = True) -> str:
    """Format a number as INR with Indian digit grouping and two decimals."""
    base = format_indian_number(to_cents(value))
    return ('₹' + base) if symbol else base


def format_usd(value: Number, symbol: bool = True) -> str:
    """Format a number as USD with thousands separators and two decimals."""
    cents = to_cents(value)
    sign = '-' if cents < 0 else ''
    base = '{0:,.2f}'.format(abs(cents))
    return sign + ('$' + base if symbol else base)


def format_money(value: Number, currency: str) -> str:
    if currency == "INR":
        return format_inr(value)
    return format_usd(value)
