"""Money calculator: subtotal, tax and total in USD and INR.

Pure functions over Decimal. Inputs are converted through ``str`` so float
amounts keep their shortest repr (0.1 -> Decimal('0.1')) instead of binary
expansion. No rounding happens here; see utils.money_format for display.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, Mapping, Union

Amount = Union[int, float, str, Decimal]

_ZERO = Decimal("0")
_HUNDRED = Decimal("100")


@dataclass(frozen=True)
class Totals:
    subtotal_usd: Decimal
    subtotal_inr: Decimal
    tax_usd: Decimal
    tax_inr: Decimal
    total_usd: Decimal
    total_inr: Decimal

    def as_dict(self) -> dict:
        return {
            "subtotal_usd": self.subtotal_usd,
            "subtotal_inr": self.subtotal_inr,
            "tax_amount_usd": self.tax_usd,
            "tax_amount_inr": self.tax_inr,
            "total_usd": self.total_usd,
            "total_inr": self.total_inr,
        }


def to_decimal(value: Any) -> Decimal:
    """Coerce a numeric-ish value to Decimal; missing or invalid values become 0."""
    if value is None or isinstance(value, bool):
        return _ZERO
    if isinstance(value, Decimal):
        return value if value.is_finite() else _ZERO
    try:
        result = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return _ZERO
    return result if result.is_finite() else _ZERO


def _item_amount(item: Any) -> Decimal:
    if isinstance(item, Mapping):
        return to_decimal(item.get("amount_usd"))
    return to_decimal(getattr(item, "amount_usd", None))


def item_amount_inr(amount_usd: Amount, exchange_rate: Amount) -> Decimal:
    """INR amount of a single line item at the given rate."""
    return to_decimal(amount_usd) * to_decimal(exchange_rate)


def compute_totals(items: Iterable[Any], tax_rate_percent: Amount, exchange_rate: Amount) -> Totals:
    """Derive both-currency totals from line-item USD amounts.

    ``items`` may hold mappings or objects exposing ``amount_usd``. Negative
    amounts are summed as given; rejecting them is the caller's job.

    Raises:
        ValueError: if exchange_rate <= 0 or tax_rate_percent < 0
    """
    rate = to_decimal(exchange_rate)
    tax_rate = to_decimal(tax_rate_percent)
    if rate <= _ZERO:
        raise ValueError(f"exchange_rate must be positive, got {exchange_rate!r}")
    if tax_rate < _ZERO:
        raise ValueError(f"tax_rate_percent must not be negative, got {tax_rate_percent!r}")

    subtotal_usd = sum((_item_amount(item) for item in items), _ZERO)
    subtotal_inr = subtotal_usd * rate
    tax_usd = subtotal_usd * tax_rate / _HUNDRED
    tax_inr = subtotal_inr * tax_rate / _HUNDRED
    return Totals(
        subtotal_usd=subtotal_usd,
        subtotal_inr=subtotal_inr,
        tax_usd=tax_usd,
        tax_inr=tax_inr,
        total_usd=subtotal_usd + tax_usd,
        total_inr=subtotal_inr + tax_inr,
    )


__all__ = ["Totals", "compute_totals", "item_amount_inr", "to_decimal"]
