"""Shared API response envelope helpers.

Every successful JSON response is wrapped as::

    {"status": "success", "data": ..., "meta": {...} | None, "timestamp": <epoch>}

Errors use :func:`invoice_desk.utils.errors.error_payload`.
"""
from __future__ import annotations
from typing import Any
import time


def success(data: Any, **meta) -> dict:
    return {"status": "success", "data": data, "meta": meta or None, "timestamp": time.time()}
