"""Service layer package.

Persistence and business rules live here; no FastAPI/HTTP concerns.
"""

__all__ = [
    "exchange_rate",
    "invoice_store",
    "invoice_workflow",
    "money",
]
