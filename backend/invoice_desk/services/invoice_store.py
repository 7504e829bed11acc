"""Invoice record store.

Create/read/update/delete of invoices and their line items over an AsyncSession.

Guarantees:
 - An invoice and its items are written in ONE transaction: they appear together
   or not at all (a failed item insert rolls the invoice back).
 - Items are always inserted with a fresh id and the parent invoice id; an update
   that supplies items deletes all existing items and inserts the new set.
 - Deleting an invoice deletes its items in the same transaction (the FK also
   cascades at the database level).
 - Every call is bounded by STORE_TIMEOUT_SECONDS; timeouts and SQLAlchemy
   errors surface as PersistenceError after rolling the session back.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, UTC
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, TypeVar
from uuid import UUID, uuid4

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from invoice_desk.config.settings import get_settings
from invoice_desk.models.database import Invoice, InvoiceItem
from invoice_desk.utils.errors import InvoiceNotFound, PersistenceError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Columns a patch may touch; identity, ownership and timestamps are store-managed
INVOICE_MUTABLE_FIELDS = frozenset({
    "invoice_number", "invoice_date",
    "sender_name", "sender_address", "sender_gstin",
    "recipient_name", "recipient_address", "recipient_gstin", "recipient_pan",
    "recipient_email", "recipient_phone", "recipient_website",
    "tax_rate", "subtotal_usd", "subtotal_inr", "tax_amount_usd", "tax_amount_inr",
    "total_usd", "total_inr", "currency", "exchange_rate", "notes",
})
ITEM_FIELDS = ("name", "description", "amount_usd", "amount_inr")


@dataclass
class InvoiceWithItems:
    invoice: Invoice
    items: List[InvoiceItem] = field(default_factory=list)


class InvoiceStore:
    def __init__(self, db: AsyncSession, timeout: Optional[float] = None):
        self.db = db
        self.timeout = timeout if timeout is not None else get_settings().STORE_TIMEOUT_SECONDS

    async def _guarded(self, operation: str, work: Callable[[], Awaitable[T]]) -> T:
        try:
            return await asyncio.wait_for(work(), timeout=self.timeout)
        except InvoiceNotFound:
            await self._rollback(operation)
            raise
        except asyncio.TimeoutError as exc:
            await self._rollback(operation)
            logger.error("Store operation %s timed out after %.1fs", operation, self.timeout)
            raise PersistenceError(operation, f"timed out after {self.timeout}s") from exc
        except SQLAlchemyError as exc:
            await self._rollback(operation)
            logger.error("Store operation %s failed: %s", operation, exc)
            raise PersistenceError(operation, str(getattr(exc, "orig", None) or exc)) from exc

    async def _rollback(self, operation: str) -> None:
        try:
            await self.db.rollback()
        except SQLAlchemyError as exc:
            logger.error("Rollback after %s failed: %s", operation, exc)

    @staticmethod
    def _build_items(invoice_id: UUID, items: Sequence[Dict[str, Any]]) -> List[InvoiceItem]:
        now = datetime.now(UTC)
        return [
            InvoiceItem(
                id=uuid4(),
                invoice_id=invoice_id,
                position=index,
                created_at=now,
                updated_at=now,
                **{key: item.get(key) for key in ITEM_FIELDS},
            )
            for index, item in enumerate(items)
        ]

    async def _load_invoice(self, invoice_id: UUID) -> Invoice:
        result = await self.db.execute(
            select(Invoice)
            .where(Invoice.id == invoice_id)
            .execution_options(populate_existing=True)
        )
        invoice = result.scalar_one_or_none()
        if invoice is None:
            raise InvoiceNotFound(invoice_id)
        return invoice

    async def _load_items(self, invoice_id: UUID) -> List[InvoiceItem]:
        result = await self.db.execute(
            select(InvoiceItem)
            .where(InvoiceItem.invoice_id == invoice_id)
            .order_by(InvoiceItem.position, InvoiceItem.created_at)
        )
        return list(result.scalars().all())

    async def create(self, invoice_fields: Dict[str, Any], items: Sequence[Dict[str, Any]]) -> UUID:
        """Insert an invoice and its items atomically; returns the new invoice id."""
        async def work() -> UUID:
            invoice = Invoice(id=uuid4(), **invoice_fields)
            self.db.add(invoice)
            # Parent row first so the item foreign keys resolve
            await self.db.flush()
            self.db.add_all(self._build_items(invoice.id, items))
            await self.db.commit()
            return invoice.id

        invoice_id = await self._guarded("create", work)
        logger.info("Invoice %s stored with %d item(s)", invoice_id, len(items))
        return invoice_id

    async def get_invoice(self, invoice_id: UUID) -> Invoice:
        return await self._guarded("get_invoice", lambda: self._load_invoice(invoice_id))

    async def list_items(self, invoice_id: UUID) -> List[InvoiceItem]:
        return await self._guarded("list_items", lambda: self._load_items(invoice_id))

    async def get_by_id(self, invoice_id: UUID) -> InvoiceWithItems:
        async def work() -> InvoiceWithItems:
            invoice = await self._load_invoice(invoice_id)
            return InvoiceWithItems(invoice=invoice, items=await self._load_items(invoice_id))

        return await self._guarded("get_by_id", work)

    async def list_by_user(self, user_id: UUID) -> List[Invoice]:
        """Invoices owned by user_id, newest created first."""
        async def work() -> List[Invoice]:
            result = await self.db.execute(
                select(Invoice)
                .where(Invoice.user_id == user_id)
                .order_by(Invoice.created_at.desc())
            )
            return list(result.scalars().all())

        return await self._guarded("list_by_user", work)

    async def delete_by_id(self, invoice_id: UUID) -> None:
        async def work() -> None:
            invoice = await self._load_invoice(invoice_id)
            await self.db.execute(delete(InvoiceItem).where(InvoiceItem.invoice_id == invoice_id))
            await self.db.delete(invoice)
            await self.db.commit()

        await self._guarded("delete", work)
        logger.info("Invoice %s deleted with its items", invoice_id)

    async def update(
        self,
        invoice_id: UUID,
        patch: Dict[str, Any],
        items: Optional[Sequence[Dict[str, Any]]] = None,
    ) -> None:
        """Apply a partial invoice update; when items are given, replace the full item set."""
        unknown = set(patch) - INVOICE_MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Fields not updatable: {sorted(unknown)}")

        async def work() -> None:
            invoice = await self._load_invoice(invoice_id)
            for key, value in patch.items():
                setattr(invoice, key, value)
            invoice.updated_at = datetime.now(UTC)
            if items is not None:
                await self.db.execute(delete(InvoiceItem).where(InvoiceItem.invoice_id == invoice_id))
                self.db.add_all(self._build_items(invoice_id, items))
            await self.db.commit()

        await self._guarded("update", work)
        logger.info(
            "Invoice %s updated (fields=%s, items_replaced=%s)",
            invoice_id, sorted(patch), items is not None,
        )


__all__ = ["InvoiceStore", "InvoiceWithItems", "INVOICE_MUTABLE_FIELDS"]
