"""Tests for the SQL invoice ledger."""

import asyncio
from decimal import Decimal

import pytest
from sqlalchemy.exc import IntegrityError

from bkash_sdk.database import (
    Base,
    InvoiceRepository,
    InvoiceTransactionRepository,
    SqlInvoiceLedger,
    create_async_engine,
    get_async_session_factory,
    get_database_url,
)
from bkash_sdk.errors import DuplicateTransaction
from bkash_sdk.reconciliation import (
    AlreadyPaid,
    InvoiceLookup,
    InvoiceNotFound,
    InvoiceStatus,
    StatusReconciler,
    Success,
)

from conftest import make_result


class TestInvoiceRepository:
    """Tests for InvoiceRepository."""

    async def test_create_invoice(self, db_session):
        repo = InvoiceRepository(db_session)

        invoice = await repo.create(total=Decimal("500.00"), invoice_num="2024001")

        assert invoice.id is not None
        assert invoice.status == InvoiceStatus.UNPAID.value
        assert invoice.total == Decimal("500.00")

    async def test_create_with_explicit_id(self, db_session):
        repo = InvoiceRepository(db_session)

        invoice = await repo.create(total=Decimal("500.00"), invoice_id=77)

        assert invoice.id == 77
        record = invoice.to_record()
        assert record.number == "77"
        assert record.total_due == Decimal("500.00")

    async def test_get_by_id_not_found(self, db_session):
        repo = InvoiceRepository(db_session)
        assert await repo.get_by_id(12345) is None

    async def test_get_id_by_number(self, db_session):
        repo = InvoiceRepository(db_session)
        invoice = await repo.create(total=Decimal("10.00"), invoice_num="A-1")

        assert await repo.get_id_by_number("A-1") == invoice.id
        assert await repo.get_id_by_number("missing") is None

    async def test_mark_paid(self, db_session):
        repo = InvoiceRepository(db_session)
        invoice = await repo.create(total=Decimal("10.00"))

        await repo.mark_paid(invoice)

        assert invoice.status == InvoiceStatus.PAID.value
        assert invoice.payment_method == "bkash"
        assert invoice.date_paid is not None

    async def test_list_by_status(self, db_session):
        repo = InvoiceRepository(db_session)
        await repo.create(total=Decimal("10.00"))
        await repo.create(total=Decimal("20.00"), status=InvoiceStatus.PAID.value)

        unpaid = await repo.list_by_status(InvoiceStatus.UNPAID.value)

        assert len(unpaid) == 1
        assert unpaid[0].total == Decimal("10.00")


class TestInvoiceTransactionRepository:
    """Tests for InvoiceTransactionRepository."""

    async def test_create_and_find(self, db_session):
        invoice = await InvoiceRepository(db_session).create(total=Decimal("500.00"))
        repo = InvoiceTransactionRepository(db_session)

        transaction = await repo.create(invoice.id, "BKS123", Decimal("500.00"))

        assert transaction.id is not None
        found = await repo.get_for_invoice("BKS123", invoice.id)
        assert found.id == transaction.id
        assert await repo.get_for_invoice("BKS123", invoice.id + 1) is None
        assert len(await repo.get_by_invoice_id(invoice.id)) == 1

    async def test_unique_invoice_trx_pair(self, db_session):
        invoice = await InvoiceRepository(db_session).create(total=Decimal("500.00"))
        repo = InvoiceTransactionRepository(db_session)
        await repo.create(invoice.id, "BKS123", Decimal("500.00"))

        with pytest.raises(IntegrityError):
            await repo.create(invoice.id, "BKS123", Decimal("500.00"))


class TestSqlInvoiceLedger:
    """Tests for the ledger adapter."""

    async def test_get_invoice_returns_record(self, db_session):
        await InvoiceRepository(db_session).create(total=Decimal("500.00"), invoice_id=77)
        ledger = SqlInvoiceLedger(db_session)

        record = await ledger.get_invoice(77)

        assert record.id == 77
        assert record.status == InvoiceStatus.UNPAID.value
        assert not record.is_paid
        assert await ledger.get_invoice(78) is None

    async def test_record_payment_duplicate(self, db_session):
        await InvoiceRepository(db_session).create(total=Decimal("500.00"), invoice_id=77)
        ledger = SqlInvoiceLedger(db_session)
        await ledger.record_payment(77, "BKS123", Decimal("500.00"), Decimal("0"))

        with pytest.raises(DuplicateTransaction) as exc_info:
            await ledger.record_payment(77, "BKS123", Decimal("500.00"), Decimal("0"))

        assert exc_info.value.invoice_id == 77

    async def test_find_transaction_for_invoice(self, db_session):
        await InvoiceRepository(db_session).create(total=Decimal("500.00"), invoice_id=77)
        ledger = SqlInvoiceLedger(db_session)
        transaction_id = await ledger.record_payment(77, "BKS123", Decimal("500.00"), Decimal("0"))

        assert transaction_id
        assert await ledger.find_transaction_for_invoice("BKS123", 77) is True
        assert await ledger.find_transaction_for_invoice("BKS999", 77) is False

    async def test_mark_paid_unknown_invoice(self, db_session):
        ledger = SqlInvoiceLedger(db_session)

        with pytest.raises(ValueError):
            await ledger.mark_paid(404)


class TestSettlementOnSql:
    """End-to-end settlement through the reconciler and the SQL ledger."""

    async def test_settle_and_redeliver(self, db_session):
        await InvoiceRepository(db_session).create(total=Decimal("500.00"), invoice_id=77)
        await db_session.commit()
        ledger = SqlInvoiceLedger(db_session)
        reconciler = StatusReconciler()
        result = make_result(
            paymentID="TR0001",
            transactionStatus="Completed",
            statusMessage="Successful",
            amount="500.00",
            payerReference="INV77",
            trxID="BKS123",
        )

        first = await reconciler.reconcile(result, InvoiceLookup(ledger), ledger)
        second = await reconciler.reconcile(result, InvoiceLookup(ledger), ledger)

        assert isinstance(first, Success)
        assert first.invoice_id == 77
        assert second == AlreadyPaid(invoice_id=77)

        invoice = await InvoiceRepository(db_session).get_by_id(77)
        assert invoice.status == InvoiceStatus.PAID.value
        transactions = await InvoiceTransactionRepository(db_session).get_by_invoice_id(77)
        assert [t.trx_id for t in transactions] == ["BKS123"]
        assert transactions[0].id == first.transaction_id


class TestDatabaseUrl:
    def test_postgres_url_rewritten(self, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "postgres://user:pw@localhost/billing")
        assert get_database_url() == "postgresql+asyncpg://user:pw@localhost/billing"

    def test_default_url(self, monkeypatch):
        monkeypatch.delenv("DATABASE_URL", raising=False)
        assert get_database_url().startswith("sqlite+aiosqlite://")


def settled_payment(payer_reference="INV77"):
    return make_result(
        paymentID="TR0001",
        transactionStatus="Completed",
        statusMessage="Successful",
        amount="500.00",
        payerReference=payer_reference,
        trxID="BKS123",
    )


class TestConcurrentSettlement:
    """Redelivered callbacks racing on a file-backed SQLite ledger."""

    @pytest.fixture
    async def file_engine(self, tmp_path):
        engine = create_async_engine(database_url=f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}")
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        async with get_async_session_factory(engine)() as session:
            await InvoiceRepository(session).create(total=Decimal("500.00"), invoice_id=77)
            await session.commit()
        yield engine
        await engine.dispose()

    async def test_parallel_redelivery_settles_once(self, file_engine):
        session_factory = get_async_session_factory(file_engine)

        async def deliver():
            async with session_factory() as session:
                ledger = SqlInvoiceLedger(session)
                try:
                    return await StatusReconciler().reconcile(settled_payment(), InvoiceLookup(ledger), ledger)
                except DuplicateTransaction as e:
                    return e

        outcomes = await asyncio.gather(deliver(), deliver())

        successes = [o for o in outcomes if isinstance(o, Success)]
        others = [o for o in outcomes if not isinstance(o, Success)]
        assert len(successes) == 1
        assert len(others) == 1
        assert isinstance(others[0], (AlreadyPaid, DuplicateTransaction))

        async with session_factory() as session:
            invoice = await InvoiceRepository(session).get_by_id(77)
            transactions = await InvoiceTransactionRepository(session).get_by_invoice_id(77)
        assert invoice.status == InvoiceStatus.PAID.value
        assert [t.trx_id for t in transactions] == ["BKS123"]


class TestOversizedReference:
    async def test_reference_beyond_integer_range(self, db_session):
        await InvoiceRepository(db_session).create(total=Decimal("500.00"), invoice_id=77)
        ledger = SqlInvoiceLedger(db_session)

        outcome = await StatusReconciler().reconcile(
            settled_payment("INV99999999999999999999"), InvoiceLookup(ledger), ledger,
        )

        assert outcome == InvoiceNotFound(invoice_number="99999999999999999999")
        assert await InvoiceTransactionRepository(db_session).get_by_invoice_id(77) == []
