"""Simulated USD -> INR exchange-rate source.

There is no live feed: "random" mode jitters around the configured base rate
(82.00 +/- 2.00 by default) and "fixed" mode always returns the base rate.
Rates are rounded to 2 decimals, as a quoted rate would be.
"""
from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from datetime import datetime, UTC
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from invoice_desk.config.settings import Settings, get_settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExchangeRateQuote:
    rate: Decimal
    source: str
    fetched_at: datetime


class ExchangeRateProvider:
    """Hands out a positive USD->INR rate at the moment of the call."""

    def __init__(self, settings: Optional[Settings] = None, rng: Optional[random.Random] = None):
        self.settings = settings or get_settings()
        self._rng = rng or random.Random()
        if self.settings.DEFAULT_EXCHANGE_RATE <= 0:
            raise ValueError("DEFAULT_EXCHANGE_RATE must be positive")

    def quote(self) -> ExchangeRateQuote:
        base = self.settings.DEFAULT_EXCHANGE_RATE
        if self.settings.EXCHANGE_RATE_MODE == "fixed":
            raw, source = base, "fixed"
        else:
            spread = abs(self.settings.EXCHANGE_RATE_SPREAD)
            raw, source = base + self._rng.uniform(-spread, spread), "simulated"
        rate = Decimal(str(raw)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
        if rate <= 0:
            # Spread larger than the base; fall back rather than hand out a non-positive rate
            logger.warning("Simulated rate %s not positive; using base rate %s", rate, base)
            rate, source = Decimal(str(base)), "fixed"
        return ExchangeRateQuote(rate=rate, source=source, fetched_at=datetime.now(UTC))

    def current_rate(self) -> Decimal:
        return self.quote().rate


_provider: Optional[ExchangeRateProvider] = None


def get_exchange_rate_provider() -> ExchangeRateProvider:
    """FastAPI dependency returning the process-wide provider."""
    global _provider
    if _provider is None:
        _provider = ExchangeRateProvider()
    return _provider


__all__ = ["ExchangeRateQuote", "ExchangeRateProvider", "get_exchange_rate_provider"]
