"""Centralized error response helpers and domain exception taxonomy.

Services raise DomainError subclasses; routers and the global handlers map them
onto HTTP status codes and the standardized error envelope.
"""
from __future__ import annotations
from fastapi import HTTPException
from typing import Any, Dict
import time

ERROR_CODES = {
    "validation": "VALIDATION_ERROR",
    "not_found": "NOT_FOUND",
    "invoice_not_found": "INVOICE_NOT_FOUND",
    "forbidden": "FORBIDDEN",
    "auth_invalid": "AUTH_INVALID_CREDENTIALS",
    "auth_expired": "AUTH_TOKEN_EXPIRED",
    "user_exists": "USER_EXISTS",
    "db": "DB_ERROR",
    "internal": "INTERNAL_SERVER_ERROR",
}


def error_payload(code: str, message: str, details: Any | None = None, path: str | None = None) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "status": "error",
        "error": {
            "code": code,
            "message": message,
        },
        "timestamp": time.time(),
    }
    if details is not None:
        payload["error"]["details"] = details
    if path:
        payload["path"] = path
    return payload


def raise_http_error(status_code: int, code: str, message: str, details: Any | None = None) -> None:
    """Raise an HTTPException carrying a standardized error code."""
    exc = HTTPException(status_code=status_code, detail=message)
    setattr(exc, "code", code)
    setattr(exc, "details", details)
    raise exc


class DomainError(Exception):
    """Base domain error storing standardized fields."""

    code = ERROR_CODES["internal"]
    status_code = 500

    def __init__(self, message: str, details: Any | None = None):  # noqa: D401
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(DomainError):
    """Raised when input fails business validation; never touches the store."""

    code = ERROR_CODES["validation"]
    status_code = 422

    def __init__(self, field: str, message: str):
        super().__init__(message, details={"field": field})
        self.field = field


class PermissionDenied(DomainError):
    """Authenticated user is not the owner of the requested invoice."""

    code = ERROR_CODES["forbidden"]
    status_code = 403

    def __init__(self, message: str = "You do not have access to this invoice"):
        super().__init__(message)


class InvoiceNotFound(DomainError):
    code = ERROR_CODES["invoice_not_found"]
    status_code = 404

    def __init__(self, invoice_id: Any):
        super().__init__("Invoice not found", details={"invoice_id": str(invoice_id)})
        self.invoice_id = invoice_id


class PersistenceError(DomainError):
    """Store call failed: constraint violation, connectivity problem or timeout."""

    code = ERROR_CODES["db"]
    status_code = 503

    def __init__(self, operation: str, message: str):
        super().__init__(f"{operation} failed: {message}", details={"operation": operation})
        self.operation = operation


__all__ = [
    "ERROR_CODES",
    "error_payload",
    "raise_http_error",
    "DomainError",
    "ValidationError",
    "PermissionDenied",
    "InvoiceNotFound",
    "PersistenceError",
]
