"""Invoice router providing CRUD over the invoice workflow.

 - Every route requires a bearer token; the resolved AuthContext is handed to the workflow
 - Domain errors are translated to HTTP here (INVOICE_NOT_FOUND, FORBIDDEN, VALIDATION_ERROR, DB_ERROR)
 - Metrics emission (create/update/delete counters + invoice_operations_total)
"""
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel, ConfigDict
from sqlalchemy.ext.asyncio import AsyncSession

from invoice_desk.config.database import get_async_db_dependency
from invoice_desk.config.observability import (
    invoice_create_counter,
    invoice_update_counter,
    invoice_delete_counter,
    record_invoice_operation,
)
from invoice_desk.models.database import Invoice
from invoice_desk.services.exchange_rate import ExchangeRateProvider, get_exchange_rate_provider
from invoice_desk.services.invoice_store import InvoiceStore, InvoiceWithItems
from invoice_desk.services.invoice_workflow import AuthContext, InvoiceWorkflow
from invoice_desk.utils.api_shapes import success
from invoice_desk.utils.errors import DomainError, raise_http_error
from invoice_desk.utils.money_format import format_money
from .auth import get_auth_context

router = APIRouter()


class InvoiceItemIn(BaseModel):
    model_config = ConfigDict(extra='ignore')

    # Optional here so the workflow reports the exact failing item field
    name: Optional[str] = None
    description: Optional[str] = None
    amount_usd: Optional[Decimal] = None


class InvoiceCreate(BaseModel):
    """Create payload; totals are always derived server side.

    ``exchange_rate`` may be supplied (e.g. the rate the user saw on the form);
    when omitted the current rate from the exchange-rate source is frozen.
    """
    model_config = ConfigDict(extra='ignore')

    invoice_number: Optional[str] = None
    invoice_date: Optional[date] = None
    sender_name: Optional[str] = None
    sender_address: Optional[str] = None
    sender_gstin: Optional[str] = None
    recipient_name: Optional[str] = None
    recipient_address: Optional[str] = None
    recipient_gstin: Optional[str] = None
    recipient_pan: Optional[str] = None
    recipient_email: Optional[str] = None
    recipient_phone: Optional[str] = None
    recipient_website: Optional[str] = None
    tax_rate: Optional[Decimal] = None
    currency: Optional[str] = None
    exchange_rate: Optional[Decimal] = None
    notes: Optional[str] = None
    items: List[InvoiceItemIn] = []


class InvoiceUpdate(BaseModel):
    """Partial update; only fields present in the request body are applied.

    ``items`` replaces the full item set (not merged).
    """
    model_config = ConfigDict(extra='ignore')

    invoice_number: Optional[str] = None
    invoice_date: Optional[date] = None
    sender_name: Optional[str] = None
    sender_address: Optional[str] = None
    sender_gstin: Optional[str] = None
    recipient_name: Optional[str] = None
    recipient_address: Optional[str] = None
    recipient_gstin: Optional[str] = None
    recipient_pan: Optional[str] = None
    recipient_email: Optional[str] = None
    recipient_phone: Optional[str] = None
    recipient_website: Optional[str] = None
    tax_rate: Optional[Decimal] = None
    currency: Optional[str] = None
    exchange_rate: Optional[Decimal] = None
    notes: Optional[str] = None
    items: Optional[List[InvoiceItemIn]] = None


def get_invoice_workflow(db: AsyncSession = Depends(get_async_db_dependency)) -> InvoiceWorkflow:
    return InvoiceWorkflow(InvoiceStore(db))


def _http_error(exc: DomainError) -> None:
    raise_http_error(exc.status_code, exc.code, exc.message, exc.details)


def _num(value: Any) -> Optional[float]:
    return float(value) if value is not None else None


def _display(invoice: Invoice) -> Dict[str, str]:
    currency = invoice.currency
    if currency == "INR":
        amounts = (invoice.subtotal_inr, invoice.tax_amount_inr, invoice.total_inr)
    else:
        amounts = (invoice.subtotal_usd, invoice.tax_amount_usd, invoice.total_usd)
    return {
        "currency": currency,
        "subtotal": format_money(amounts[0], currency),
        "tax": format_money(amounts[1], currency),
        "total": format_money(amounts[2], currency),
    }


def _to_summary(invoice: Invoice) -> dict:
    return {
        "id": str(invoice.id),
        "invoice_number": invoice.invoice_number,
        "invoice_date": invoice.invoice_date.isoformat() if invoice.invoice_date else None,
        "sender_name": invoice.sender_name,
        "sender_address": invoice.sender_address,
        "sender_gstin": invoice.sender_gstin,
        "recipient_name": invoice.recipient_name,
        "recipient_address": invoice.recipient_address,
        "recipient_gstin": invoice.recipient_gstin,
        "recipient_pan": invoice.recipient_pan,
        "recipient_email": invoice.recipient_email,
        "recipient_phone": invoice.recipient_phone,
        "recipient_website": invoice.recipient_website,
        "tax_rate": _num(invoice.tax_rate),
        "subtotal_usd": _num(invoice.subtotal_usd),
        "subtotal_inr": _num(invoice.subtotal_inr),
        "tax_amount_usd": _num(invoice.tax_amount_usd),
        "tax_amount_inr": _num(invoice.tax_amount_inr),
        "total_usd": _num(invoice.total_usd),
        "total_inr": _num(invoice.total_inr),
        "currency": invoice.currency,
        "exchange_rate": _num(invoice.exchange_rate),
        "notes": invoice.notes,
        "user_id": str(invoice.user_id),
        "created_at": invoice.created_at.isoformat() if invoice.created_at else None,
        "updated_at": invoice.updated_at.isoformat() if invoice.updated_at else None,
        "display": _display(invoice),
    }


def _to_detail(result: InvoiceWithItems) -> dict:
    data = _to_summary(result.invoice)
    data["items"] = [
        {
            "id": str(item.id),
            "invoice_id": str(item.invoice_id),
            "name": item.name,
            "description": item.description,
            "amount_usd": _num(item.amount_usd),
            "amount_inr": _num(item.amount_inr),
            "display_amount": format_money(
                item.amount_inr if result.invoice.currency == "INR" else item.amount_usd,
                result.invoice.currency,
            ),
        }
        for item in result.items
    ]
    return data


@router.get('/')
@router.get('')
async def list_invoices(
    ctx: AuthContext = Depends(get_auth_context),
    workflow: InvoiceWorkflow = Depends(get_invoice_workflow),
):
    """Invoices owned by the caller, newest first."""
    try:
        invoices = await workflow.list(ctx)
    except DomainError as exc:
        _http_error(exc)
    return success([_to_summary(inv) for inv in invoices], total=len(invoices))


@router.post('/', status_code=status.HTTP_201_CREATED)
@router.post('', status_code=status.HTTP_201_CREATED)
async def create_invoice(
    payload: InvoiceCreate,
    ctx: AuthContext = Depends(get_auth_context),
    workflow: InvoiceWorkflow = Depends(get_invoice_workflow),
    rates: ExchangeRateProvider = Depends(get_exchange_rate_provider),
):
    data = payload.model_dump(exclude={"exchange_rate"})
    rate = payload.exchange_rate if payload.exchange_rate is not None else rates.current_rate()
    try:
        created = await workflow.create(ctx, data, rate)
    except DomainError as exc:
        _http_error(exc)
    invoice_create_counter.add(1, {"currency": created.invoice.currency})
    record_invoice_operation("create")
    return success(_to_detail(created))


@router.get('/{invoice_id}')
async def get_invoice(
    invoice_id: UUID,
    ctx: AuthContext = Depends(get_auth_context),
    workflow: InvoiceWorkflow = Depends(get_invoice_workflow),
):
    try:
        result = await workflow.get(ctx, invoice_id)
    except DomainError as exc:
        _http_error(exc)
    return success(_to_detail(result))


@router.patch('/{invoice_id}')
async def update_invoice(
    invoice_id: UUID,
    payload: InvoiceUpdate,
    ctx: AuthContext = Depends(get_auth_context),
    workflow: InvoiceWorkflow = Depends(get_invoice_workflow),
):
    patch = payload.model_dump(exclude_unset=True)
    items = patch.pop("items", None)
    exchange_rate = patch.pop("exchange_rate", None)
    try:
        updated = await workflow.update(ctx, invoice_id, patch, items=items, exchange_rate=exchange_rate)
    except DomainError as exc:
        _http_error(exc)
    invoice_update_counter.add(1, {"items_replaced": str(items is not None).lower()})
    record_invoice_operation("update")
    return success(_to_detail(updated))


@router.delete('/{invoice_id}', status_code=status.HTTP_204_NO_CONTENT)
async def delete_invoice(
    invoice_id: UUID,
    ctx: AuthContext = Depends(get_auth_context),
    workflow: InvoiceWorkflow = Depends(get_invoice_workflow),
):
    try:
        await workflow.delete(ctx, invoice_id)
    except DomainError as exc:
        _http_error(exc)
    invoice_delete_counter.add(1, {})
    record_invoice_operation("delete")
    return Response(status_code=status.HTTP_204_NO_CONTENT)
