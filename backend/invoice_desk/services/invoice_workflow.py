"""Invoice workflow: validate -> compute -> persist -> compose.

Orchestrates the money calculator and the invoice store for a single request.
The authenticated caller is always passed in explicitly as an AuthContext; the
workflow holds no process-wide user state.

Rules:
 - Create validation failures raise ValidationError before any store call.
 - Only the owner (invoice.user_id == ctx.user_id) may read, update or delete
   an invoice; anyone else gets PermissionDenied, never the invoice contents.
 - Totals and per-item INR amounts are derived here and never taken from input.
 - An update recomputes totals when items, tax_rate or exchange_rate change;
   an exchange-rate change without new items re-inserts the existing items at
   the new rate.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence
from uuid import UUID

from invoice_desk.config.observability import trace_operation
from invoice_desk.config.settings import Settings, get_settings
from invoice_desk.models.database import Currency, Invoice
from invoice_desk.services.invoice_store import InvoiceStore, InvoiceWithItems
from invoice_desk.services.money import compute_totals, item_amount_inr, to_decimal
from invoice_desk.utils.errors import PermissionDenied, ValidationError

logger = logging.getLogger(__name__)

REQUIRED_TEXT_FIELDS = ("sender_name", "sender_address", "recipient_name", "recipient_address")
OPTIONAL_TEXT_FIELDS = (
    "sender_gstin",
    "recipient_gstin",
    "recipient_pan",
    "recipient_email",
    "recipient_phone",
    "recipient_website",
    "notes",
)
PATCHABLE_FIELDS = frozenset(
    REQUIRED_TEXT_FIELDS + OPTIONAL_TEXT_FIELDS + ("invoice_number", "invoice_date", "tax_rate", "currency")
)


@dataclass(frozen=True)
class AuthContext:
    """Authenticated caller as supplied by the identity layer."""

    user_id: UUID
    email: Optional[str] = None
    name: Optional[str] = None


class WorkflowStage(str, Enum):
    IDLE = "idle"
    VALIDATING = "validating"
    COMPUTING = "computing"
    PERSISTING = "persisting"
    DONE = "done"
    FAILED = "failed"


def default_invoice_number(on: Optional[date] = None) -> str:
    on = on or date.today()
    return f"INV-{on.strftime('%Y%m%d')}-001"


def _clean_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _require_text(field: str, value: Any) -> str:
    text = _clean_text(value)
    if text is None:
        raise ValidationError(field, f"{field} is required")
    return text


def _parse_date(field: str, value: Any) -> date:
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except ValueError as exc:
        raise ValidationError(field, f"{field} must be an ISO date (YYYY-MM-DD)") from exc


def _validate_currency(value: Any) -> str:
    code = str(value or "").strip().upper()
    if code not in {c.value for c in Currency}:
        raise ValidationError("currency", "currency must be USD or INR")
    return code


def _validate_tax_rate(value: Any) -> Decimal:
    try:
        rate = Decimal(str(value).strip())
    except ArithmeticError as exc:
        raise ValidationError("tax_rate", "tax_rate must be a number") from exc
    if not rate.is_finite() or rate < 0:
        raise ValidationError("tax_rate", "tax_rate must be zero or a positive percentage")
    return rate


def _validate_exchange_rate(value: Any) -> Decimal:
    rate = to_decimal(value)
    if rate <= 0:
        raise ValidationError("exchange_rate", "exchange_rate must be positive")
    return rate


def _validate_items(items: Optional[Sequence[Dict[str, Any]]]) -> List[Dict[str, Any]]:
    if not items:
        raise ValidationError("items", "At least one line item is required")
    cleaned: List[Dict[str, Any]] = []
    for index, item in enumerate(items):
        name = _clean_text(item.get("name"))
        if name is None:
            raise ValidationError(f"items[{index}].name", "Item name is required")
        amount_usd = to_decimal(item.get("amount_usd"))
        if amount_usd <= 0:
            raise ValidationError(f"items[{index}].amount_usd", "Item amount must be positive")
        cleaned.append({
            "name": name,
            "description": _clean_text(item.get("description")),
            "amount_usd": amount_usd,
        })
    return cleaned


def _price_items(items: Sequence[Dict[str, Any]], exchange_rate: Decimal) -> List[Dict[str, Any]]:
    return [
        {**item, "amount_inr": item_amount_inr(item["amount_usd"], exchange_rate)}
        for item in items
    ]


class InvoiceWorkflow:
    def __init__(self, store: InvoiceStore, settings: Optional[Settings] = None):
        self.store = store
        self.settings = settings or get_settings()
        self.stage = WorkflowStage.IDLE

    def _advance(self, stage: WorkflowStage, operation: str, invoice_id: Any = None) -> None:
        self.stage = stage
        extra = {"stage": stage.value}
        if invoice_id is not None:
            extra["invoice_id"] = str(invoice_id)
        logger.debug("Invoice workflow %s -> %s", operation, stage.value, extra=extra)

    @staticmethod
    def _ensure_owner(ctx: AuthContext, invoice: Invoice) -> None:
        if invoice.user_id != ctx.user_id:
            logger.warning(
                "User %s denied access to invoice %s", ctx.user_id, invoice.id,
                extra={"user_id": str(ctx.user_id), "invoice_id": str(invoice.id)},
            )
            raise PermissionDenied()

    async def create(self, ctx: AuthContext, payload: Dict[str, Any], exchange_rate: Any) -> InvoiceWithItems:
        """Validate the payload, freeze ``exchange_rate`` onto it and store invoice + items."""
        with trace_operation("invoice_create", user_id=ctx.user_id):
            try:
                self._advance(WorkflowStage.VALIDATING, "create")
                fields: Dict[str, Any] = {
                    name: _require_text(name, payload.get(name)) for name in REQUIRED_TEXT_FIELDS
                }
                items = _validate_items(payload.get("items"))
                raw_tax = payload.get("tax_rate")
                tax_rate = _validate_tax_rate(self.settings.DEFAULT_TAX_RATE if raw_tax is None else raw_tax)
                rate = _validate_exchange_rate(exchange_rate)
                currency = _validate_currency(payload.get("currency") or Currency.USD.value)
                invoice_date = (
                    _parse_date("invoice_date", payload["invoice_date"])
                    if payload.get("invoice_date") else date.today()
                )
                for name in OPTIONAL_TEXT_FIELDS:
                    fields[name] = _clean_text(payload.get(name))
                fields.update(
                    invoice_number=_clean_text(payload.get("invoice_number")) or default_invoice_number(invoice_date),
                    invoice_date=invoice_date,
                    tax_rate=tax_rate,
                    currency=currency,
                    exchange_rate=rate,
                    user_id=ctx.user_id,
                )

                self._advance(WorkflowStage.COMPUTING, "create")
                totals = compute_totals(items, tax_rate, rate)
                fields.update(totals.as_dict())
                rows = _price_items(items, rate)

                self._advance(WorkflowStage.PERSISTING, "create")
                invoice_id = await self.store.create(fields, rows)
                result = await self.store.get_by_id(invoice_id)
            except Exception:
                self._advance(WorkflowStage.FAILED, "create")
                raise
            self._advance(WorkflowStage.DONE, "create", invoice_id)
            logger.info(
                "Invoice %s created by %s (total_usd=%s, rate=%s)", invoice_id, ctx.user_id, totals.total_usd, rate,
                extra={"invoice_id": str(invoice_id), "user_id": str(ctx.user_id)},
            )
            return result

    async def get(self, ctx: AuthContext, invoice_id: UUID) -> InvoiceWithItems:
        with trace_operation("invoice_get", invoice_id=invoice_id, user_id=ctx.user_id):
            invoice = await self.store.get_invoice(invoice_id)
            self._ensure_owner(ctx, invoice)
            items = await self.store.list_items(invoice_id)
            return InvoiceWithItems(invoice=invoice, items=items)

    async def list(self, ctx: AuthContext) -> List[Invoice]:
        """All invoices owned by the caller, newest first; empty when none."""
        with trace_operation("invoice_list", user_id=ctx.user_id):
            return await self.store.list_by_user(ctx.user_id)

    async def delete(self, ctx: AuthContext, invoice_id: UUID) -> None:
        with trace_operation("invoice_delete", invoice_id=invoice_id, user_id=ctx.user_id):
            invoice = await self.store.get_invoice(invoice_id)
            self._ensure_owner(ctx, invoice)
            await self.store.delete_by_id(invoice_id)
            logger.info(
                "Invoice %s deleted by %s", invoice_id, ctx.user_id,
                extra={"invoice_id": str(invoice_id), "user_id": str(ctx.user_id)},
            )

    async def update(
        self,
        ctx: AuthContext,
        invoice_id: UUID,
        patch: Dict[str, Any],
        items: Optional[Sequence[Dict[str, Any]]] = None,
        exchange_rate: Any = None,
    ) -> InvoiceWithItems:
        """Partially update an invoice.

        ``items`` (when not None) replaces the whole item set. ``exchange_rate``
        (when not None) re-freezes a new rate and re-prices every item.
        """
        with trace_operation("invoice_update", invoice_id=invoice_id, user_id=ctx.user_id):
            try:
                self._advance(WorkflowStage.VALIDATING, "update", invoice_id)
                changes = self._validate_patch(patch)
                new_items = _validate_items(items) if items is not None else None
                new_rate = _validate_exchange_rate(exchange_rate) if exchange_rate is not None else None

                invoice = await self.store.get_invoice(invoice_id)
                self._ensure_owner(ctx, invoice)

                self._advance(WorkflowStage.COMPUTING, "update", invoice_id)
                rows = None
                if new_items is not None or new_rate is not None or "tax_rate" in changes:
                    rate = new_rate if new_rate is not None else to_decimal(invoice.exchange_rate)
                    tax_rate = changes.get("tax_rate", to_decimal(invoice.tax_rate))
                    if new_items is None:
                        current = await self.store.list_items(invoice_id)
                        base_items = [
                            {"name": i.name, "description": i.description, "amount_usd": to_decimal(i.amount_usd)}
                            for i in current
                        ]
                    else:
                        base_items = new_items
                    changes.update(compute_totals(base_items, tax_rate, rate).as_dict())
                    changes["exchange_rate"] = rate
                    # A rate change re-prices items, so the full set is re-inserted
                    if new_items is not None or new_rate is not None:
                        rows = _price_items(base_items, rate)

                self._advance(WorkflowStage.PERSISTING, "update", invoice_id)
                await self.store.update(invoice_id, changes, rows)
                result = await self.store.get_by_id(invoice_id)
            except Exception:
                self._advance(WorkflowStage.FAILED, "update", invoice_id)
                raise
            self._advance(WorkflowStage.DONE, "update", invoice_id)
            return result

    def _validate_patch(self, patch: Dict[str, Any]) -> Dict[str, Any]:
        unknown = sorted(set(patch) - PATCHABLE_FIELDS)
        if unknown:
            raise ValidationError(unknown[0], f"{unknown[0]} cannot be updated")
        changes: Dict[str, Any] = {}
        for name, value in patch.items():
            if name in REQUIRED_TEXT_FIELDS or name == "invoice_number":
                changes[name] = _require_text(name, value)
            elif name in OPTIONAL_TEXT_FIELDS:
                changes[name] = _clean_text(value)
            elif name == "invoice_date":
                changes[name] = _parse_date(name, value)
            elif name == "tax_rate":
                if value is None:
                    raise ValidationError(name, "tax_rate cannot be cleared")
                changes[name] = _validate_tax_rate(value)
            elif name == "currency":
                changes[name] = _validate_currency(value)
        return changes


__all__ = [
    "AuthContext",
    "WorkflowStage",
    "InvoiceWorkflow",
    "default_invoice_number",
    "REQUIRED_TEXT_FIELDS",
    "OPTIONAL_TEXT_FIELDS",
]
