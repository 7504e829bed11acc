"""
Database models for the USD/INR invoice desk.
"""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    Boolean, Date, DateTime, Integer, String, Text, Numeric, Uuid,
    ForeignKey, Column, Index, CheckConstraint
)
from sqlalchemy.orm import declarative_base, validates
from sqlalchemy.types import TypeDecorator
from sqlalchemy.sql import func


Base = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ExactNumeric(TypeDecorator):
    """Unscaled NUMERIC that returns exactly the Decimal that was written.

    PostgreSQL NUMERIC without precision is arbitrary precision. SQLite keeps
    NUMERIC as a float, so there the value is stored as its plain decimal text.
    """
    impl = Numeric
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "sqlite":
            return dialect.type_descriptor(String())
        return dialect.type_descriptor(Numeric(asdecimal=True))

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if not isinstance(value, Decimal):
            value = Decimal(str(value))
        if dialect.name == "sqlite":
            return format(value, "f")
        return value

    def process_result_value(self, value, dialect):
        if value is None or isinstance(value, Decimal):
            return value
        return Decimal(str(value))


class Currency(str, Enum):
    """Preferred display currency enumeration."""
    USD = "USD"
    INR = "INR"


class User(Base):
    """User model for authentication and invoice ownership."""
    __tablename__ = 'users'

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    email = Column(String(255), unique=True, nullable=False, index=True)
    name = Column(String(100), nullable=False)
    phone = Column(String(20))
    position = Column(String(100))
    password_hash = Column(String(255), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    last_login = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), default=_utcnow,
                        server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow,
                        server_default=func.now(), onupdate=_utcnow, nullable=False)

    @validates('email')
    def validate_email(self, key, email):
        """Validate email format."""
        import re
        pattern = r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$'
        if not re.match(pattern, email):
            raise ValueError(f"Invalid email format: {email}")
        return email.lower()


class Invoice(Base):
    """Invoice model holding sender/recipient details and dual-currency totals."""
    __tablename__ = 'invoices'

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    # User supplied; not required to be unique
    invoice_number = Column(String(50), nullable=False, index=True)
    invoice_date = Column(Date, nullable=False)

    # Sender
    sender_name = Column(Text, nullable=False)
    sender_address = Column(Text, nullable=False)
    sender_gstin = Column(String(15))

    # Recipient
    recipient_name = Column(Text, nullable=False)
    recipient_address = Column(Text, nullable=False)
    recipient_gstin = Column(String(15))
    recipient_pan = Column(String(10))
    recipient_email = Column(String(255))
    recipient_phone = Column(String(20))
    recipient_website = Column(String(255))

    # Amounts (percentage rate, USD and INR pairs)
    tax_rate = Column(ExactNumeric(), nullable=False)
    subtotal_usd = Column(ExactNumeric(), nullable=False)
    subtotal_inr = Column(ExactNumeric(), nullable=False)
    tax_amount_usd = Column(ExactNumeric(), nullable=False)
    tax_amount_inr = Column(ExactNumeric(), nullable=False)
    total_usd = Column(ExactNumeric(), nullable=False)
    total_inr = Column(ExactNumeric(), nullable=False)
    currency = Column(String(3), nullable=False, default=Currency.USD.value)
    # Frozen at save time
    exchange_rate = Column(ExactNumeric(), nullable=False)

    notes = Column(Text)

    user_id = Column(Uuid(as_uuid=True), ForeignKey('users.id'),
                     nullable=False, index=True)

    created_at = Column(DateTime(timezone=True), default=_utcnow,
                        server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow,
                        server_default=func.now(), onupdate=_utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint("currency IN ('USD', 'INR')",
                        name='check_valid_currency'),
        CheckConstraint('tax_rate >= 0', name='check_tax_rate_positive'),
        CheckConstraint('exchange_rate > 0',
                        name='check_exchange_rate_positive'),
        Index('idx_invoice_user_created', 'user_id', 'created_at'),
    )


class InvoiceItem(Base):
    """Line item owned by exactly one invoice."""
    __tablename__ = 'invoice_items'

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    invoice_id = Column(Uuid(as_uuid=True), ForeignKey(
        'invoices.id', ondelete='CASCADE'), nullable=False, index=True)
    name = Column(Text, nullable=False)
    description = Column(Text)
    amount_usd = Column(ExactNumeric(), nullable=False)
    amount_inr = Column(ExactNumeric(), nullable=False)
    # Entry order on the invoice
    position = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), default=_utcnow,
                        server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow,
                        server_default=func.now(), onupdate=_utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint("length(name) > 0", name='check_item_name_present'),
    )
