"""Shared test fixtures and configuration."""

import os
from collections import Counter
from contextlib import asynccontextmanager
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

import pytest

# Set up test environment variables before importing modules
os.environ.setdefault("API_KEY", "test_api_key_12345")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

from bkash_sdk.config import SANDBOX_BASE_URL
from bkash_sdk.connectors import (
    BkashConnector,
    BkashSimulator,
    Credentials,
    PaymentQueryResult,
)
from bkash_sdk.reconciliation import InvoiceLedger, InvoiceRecord, InvoiceStatus


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingLedger(InvoiceLedger):
    """In-memory ledger that counts every call the reconciler makes."""

    def __init__(self, ignore_mark_paid: bool = False, fail_lookups: bool = False):
        self.invoices: Dict[int, Dict[str, Any]] = {}
        self.transactions: List[Tuple[str, int, Decimal, Decimal]] = []
        self.calls: Counter = Counter()
        self.ignore_mark_paid = ignore_mark_paid
        self.fail_lookups = fail_lookups
        self.settlements = 0

    def add_invoice(self, invoice_id: int, total: str, status: str = InvoiceStatus.UNPAID.value, number: Optional[str] = None):
        self.invoices[invoice_id] = {
            "number": number or str(invoice_id),
            "status": status,
            "total": Decimal(total),
        }

    async def find_invoice_by_number(self, number: str) -> Optional[int]:
        self.calls["find_invoice_by_number"] += 1
        if self.fail_lookups:
            raise RuntimeError("ledger unavailable")
        for invoice_id, invoice in self.invoices.items():
            if invoice["number"] == number:
                return invoice_id
        return None

    async def get_invoice(self, invoice_id: int) -> Optional[InvoiceRecord]:
        self.calls["get_invoice"] += 1
        if self.fail_lookups:
            raise RuntimeError("ledger unavailable")
        invoice = self.invoices.get(invoice_id)
        if invoice is None:
            return None
        return InvoiceRecord(
            id=invoice_id,
            number=invoice["number"],
            status=invoice["status"],
            total_due=invoice["total"],
        )

    async def record_payment(self, invoice_id: int, trx_id: str, amount: Decimal, fee: Decimal) -> str:
        self.calls["record_payment"] += 1
        self.transactions.append((trx_id, invoice_id, amount, fee))
        return f"txn_{len(self.transactions)}"

    async def mark_paid(self, invoice_id: int) -> None:
        self.calls["mark_paid"] += 1
        if not self.ignore_mark_paid:
            self.invoices[invoice_id]["status"] = InvoiceStatus.PAID.value

    async def find_transaction_for_invoice(self, trx_id: str, invoice_id: int) -> bool:
        self.calls["find_transaction_for_invoice"] += 1
        return any(t[0] == trx_id and t[1] == invoice_id for t in self.transactions)

    @asynccontextmanager
    async def settlement(self, invoice_id: int):
        self.settlements += 1
        yield


def make_result(**payload: Any) -> PaymentQueryResult:
    """Build a PaymentQueryResult from provider-style camelCase fields."""
    return PaymentQueryResult.from_payload(payload)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sleeps():
    """Delays requested by the code under test, in order."""
    return []


@pytest.fixture
def fake_sleep(sleeps):
    async def _sleep(seconds: float) -> None:
        sleeps.append(seconds)
    return _sleep


@pytest.fixture
def simulator():
    return BkashSimulator()


@pytest.fixture
def credentials(simulator):
    cfg = simulator.config
    return Credentials.from_raw(cfg.username, cfg.password, cfg.app_key, cfg.app_secret)


@pytest.fixture
async def connector(simulator, credentials, clock, fake_sleep):
    """BkashConnector wired to the simulator with a fake clock and instant sleeps."""
    connector = BkashConnector(
        credentials,
        SANDBOX_BASE_URL,
        transport=simulator.transport(),
        clock=clock,
        sleep=fake_sleep,
    )
    yield connector
    await connector.aclose()


@pytest.fixture
def ledger():
    ledger = RecordingLedger()
    ledger.add_invoice(77, "500.00")
    return ledger


# Database fixtures for ledger integration tests
@pytest.fixture
async def db_engine():
    """Create an in-memory SQLite database for testing."""
    from bkash_sdk.database import Base, create_async_engine

    engine = create_async_engine(
        database_url="sqlite+aiosqlite:///:memory:",
        echo=False
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def db_session(db_engine):
    """Create a database session for testing."""
    from bkash_sdk.database import get_async_session_factory

    session_factory = get_async_session_factory(db_engine)
    async with session_factory() as session:
        yield session
