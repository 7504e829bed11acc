"""Application settings module.

Provides centralized configuration using environment variables with sane defaults.
Exchange rate defaults mirror the simulated USD->INR source: 82.0 with a +/-2.0 spread.
"""
from __future__ import annotations

from functools import lru_cache
import os

from pydantic import BaseModel


class Settings(BaseModel):
    # Core invoice domain defaults
    DEFAULT_TAX_RATE: float = 18.0

    # Exchange rate source ("random" simulates a live feed, "fixed" always returns the default)
    DEFAULT_EXCHANGE_RATE: float = 82.0
    EXCHANGE_RATE_MODE: str = "random"
    EXCHANGE_RATE_SPREAD: float = 2.0

    # Upper bound on a single store call before it is reported as a persistence failure
    STORE_TIMEOUT_SECONDS: float = 10.0

    # Auth / security
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30

    # Observability toggles
    ENABLE_TRACING: bool = False

    @classmethod
    def load(cls) -> "Settings":
        """Load settings from environment with type coercion and defaults."""
        def _get_float(name: str, default: float) -> float:
            raw = os.getenv(name)
            if raw is None:
                return default
            try:
                return float(raw)
            except ValueError:
                return default

        def _get_bool(name: str, default: bool) -> bool:
            raw = os.getenv(name)
            if raw is None:
                return default
            return raw.lower() in {"1", "true", "yes", "on"}

        mode = os.getenv("EXCHANGE_RATE_MODE", "random").lower()
        if mode not in {"random", "fixed"}:
            mode = "random"

        return cls(
            DEFAULT_TAX_RATE=_get_float("DEFAULT_TAX_RATE", 18.0),
            DEFAULT_EXCHANGE_RATE=_get_float("DEFAULT_EXCHANGE_RATE", 82.0),
            EXCHANGE_RATE_MODE=mode,
            EXCHANGE_RATE_SPREAD=_get_float("EXCHANGE_RATE_SPREAD", 2.0),
            STORE_TIMEOUT_SECONDS=_get_float("STORE_TIMEOUT_SECONDS", 10.0),
            ACCESS_TOKEN_EXPIRE_MINUTES=int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "30")),
            ENABLE_TRACING=_get_bool("ENABLE_TRACING", False),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached Settings instance (singleton pattern)."""
    return Settings.load()


__all__ = ["Settings", "get_settings"]
