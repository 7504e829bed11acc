"""Models package marker.

Exposes Base and the model classes for simplified imports.
"""
from .database import Base, Currency, Invoice, InvoiceItem, User  # noqa: F401
