"""Invoice store against the SQLite test database."""
import asyncio
from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from invoice_desk.models.database import Invoice, InvoiceItem
from invoice_desk.services.invoice_store import InvoiceStore
from invoice_desk.utils.errors import InvoiceNotFound, PersistenceError


def _invoice_fields(user_id, **overrides):
    fields = {
        "invoice_number": "INV-20240105-001",
        "invoice_date": date(2024, 1, 5),
        "sender_name": "Acme Consulting LLC",
        "sender_address": "100 Market St",
        "recipient_name": "Bharat Traders",
        "recipient_address": "12 MG Road",
        "tax_rate": Decimal("18"),
        "subtotal_usd": Decimal("100"),
        "subtotal_inr": Decimal("8200"),
        "tax_amount_usd": Decimal("18"),
        "tax_amount_inr": Decimal("1476"),
        "total_usd": Decimal("118"),
        "total_inr": Decimal("9676"),
        "currency": "USD",
        "exchange_rate": Decimal("82"),
        "user_id": user_id,
    }
    fields.update(overrides)
    return fields


ITEMS = [
    {"name": "Design", "description": None, "amount_usd": Decimal("60"), "amount_inr": Decimal("4920")},
    {"name": "Build", "description": "Phase 1", "amount_usd": Decimal("40"), "amount_inr": Decimal("3280")},
]


async def _count(session, model, **where):
    stmt = select(func.count()).select_from(model)
    for key, value in where.items():
        stmt = stmt.where(getattr(model, key) == value)
    return (await session.execute(stmt)).scalar_one()


@pytest.mark.integration
@pytest.mark.asyncio
async def test_create_then_get_round_trip(db_session, user_a):
    store = InvoiceStore(db_session)
    invoice_id = await store.create(_invoice_fields(user_a.id), ITEMS)

    result = await store.get_by_id(invoice_id)
    assert result.invoice.id == invoice_id
    assert result.invoice.recipient_name == "Bharat Traders"
    assert result.invoice.total_inr == Decimal("9676")
    assert [i.name for i in result.items] == ["Design", "Build"]
    for item in result.items:
        assert item.invoice_id == invoice_id
        assert item.amount_inr == item.amount_usd * result.invoice.exchange_rate
    assert len({i.id for i in result.items}) == 2


@pytest.mark.integration
@pytest.mark.asyncio
async def test_get_missing_invoice_raises_not_found(db_session):
    store = InvoiceStore(db_session)
    with pytest.raises(InvoiceNotFound):
        await store.get_by_id(uuid4())


@pytest.mark.integration
@pytest.mark.asyncio
async def test_list_by_user_newest_first_and_scoped(db_session, user_a, user_b):
    store = InvoiceStore(db_session)
    first = await store.create(_invoice_fields(user_a.id, invoice_number="A-1"), ITEMS[:1])
    await asyncio.sleep(0.01)
    second = await store.create(_invoice_fields(user_a.id, invoice_number="A-2"), ITEMS[:1])
    await store.create(_invoice_fields(user_b.id, invoice_number="B-1"), ITEMS[:1])

    listed = await store.list_by_user(user_a.id)
    assert [inv.id for inv in listed] == [second, first]
    assert await store.list_by_user(uuid4()) == []


@pytest.mark.integration
@pytest.mark.asyncio
async def test_delete_removes_items_and_second_delete_is_not_found(db_session, user_a):
    store = InvoiceStore(db_session)
    invoice_id = await store.create(_invoice_fields(user_a.id), ITEMS)

    await store.delete_by_id(invoice_id)

    assert await store.list_items(invoice_id) == []
    assert await _count(db_session, InvoiceItem, invoice_id=invoice_id) == 0
    with pytest.raises(InvoiceNotFound):
        await store.delete_by_id(invoice_id)


@pytest.mark.integration
@pytest.mark.asyncio
async def test_database_cascade_removes_items(db_session, user_a):
    store = InvoiceStore(db_session)
    invoice_id = await store.create(_invoice_fields(user_a.id), ITEMS)
    # Bypass the store: the foreign key alone must take the items with it
    invoice = (await db_session.execute(select(Invoice).where(Invoice.id == invoice_id))).scalar_one()
    await db_session.execute(Invoice.__table__.delete().where(Invoice.__table__.c.id == invoice.id))
    await db_session.commit()
    assert await _count(db_session, InvoiceItem, invoice_id=invoice_id) == 0


@pytest.mark.integration
@pytest.mark.asyncio
async def test_update_replaces_full_item_set(db_session, user_a):
    store = InvoiceStore(db_session)
    invoice_id = await store.create(_invoice_fields(user_a.id), ITEMS)
    old_ids = {i.id for i in await store.list_items(invoice_id)}

    replacement = [{"name": "Support", "description": None, "amount_usd": Decimal("10"), "amount_inr": Decimal("820")}]
    await store.update(invoice_id, {"notes": "Revised"}, replacement)

    result = await store.get_by_id(invoice_id)
    assert result.invoice.notes == "Revised"
    assert [i.name for i in result.items] == ["Support"]
    assert not old_ids & {i.id for i in result.items}


@pytest.mark.integration
@pytest.mark.asyncio
async def test_update_without_items_keeps_items(db_session, user_a):
    store = InvoiceStore(db_session)
    invoice_id = await store.create(_invoice_fields(user_a.id), ITEMS)
    before = await store.get_by_id(invoice_id)
    created_at, updated_at = before.invoice.created_at, before.invoice.updated_at

    await store.update(invoice_id, {"recipient_name": "New Recipient"})

    result = await store.get_by_id(invoice_id)
    assert result.invoice.recipient_name == "New Recipient"
    assert len(result.items) == 2
    assert result.invoice.created_at == created_at
    assert result.invoice.updated_at >= updated_at


@pytest.mark.integration
@pytest.mark.asyncio
async def test_update_rejects_store_managed_fields(db_session, user_a):
    store = InvoiceStore(db_session)
    invoice_id = await store.create(_invoice_fields(user_a.id), ITEMS)
    with pytest.raises(ValueError):
        await store.update(invoice_id, {"user_id": uuid4()})


@pytest.mark.integration
@pytest.mark.asyncio
async def test_failed_item_insert_rolls_back_invoice(db_session, user_a):
    store = InvoiceStore(db_session)
    bad_items = [{"name": "Ok", "amount_usd": Decimal("1"), "amount_inr": Decimal("82")},
                 {"name": None, "amount_usd": Decimal("1"), "amount_inr": Decimal("82")}]

    with pytest.raises(PersistenceError) as excinfo:
        await store.create(_invoice_fields(user_a.id), bad_items)

    assert excinfo.value.operation == "create"
    assert await _count(db_session, Invoice) == 0
    assert await _count(db_session, InvoiceItem) == 0


@pytest.mark.integration
@pytest.mark.asyncio
async def test_timeout_surfaces_as_persistence_error(db_session, user_a, monkeypatch):
    store = InvoiceStore(db_session, timeout=0.05)

    async def slow_execute(*args, **kwargs):
        await asyncio.sleep(1)

    monkeypatch.setattr(db_session, "execute", slow_execute)
    with pytest.raises(PersistenceError) as excinfo:
        await store.list_by_user(user_a.id)
    assert "timed out" in excinfo.value.message


@pytest.mark.integration
@pytest.mark.asyncio
async def test_driver_error_surfaces_as_persistence_error(db_session, user_a, monkeypatch):
    store = InvoiceStore(db_session)

    async def broken_execute(*args, **kwargs):
        raise OperationalError("SELECT 1", {}, Exception("database is unreachable"))

    monkeypatch.setattr(db_session, "execute", broken_execute)
    with pytest.raises(PersistenceError) as excinfo:
        await store.get_by_id(uuid4())
    assert excinfo.value.code == "DB_ERROR"
    assert "unreachable" in excinfo.value.message
