"""SQL implementation of the invoice ledger interface."""

import logging
from contextlib import asynccontextmanager
from decimal import Decimal
from typing import AsyncIterator, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..errors import DuplicateTransaction
from ..reconciliation.ledger import InvoiceLedger
from ..reconciliation.models import InvoiceRecord
from .models import TransactionGateway
from .repository import InvoiceRepository, InvoiceTransactionRepository

logger = logging.getLogger(__name__)


class SqlInvoiceLedger(InvoiceLedger):
    """
    Invoice ledger backed by the SQLAlchemy models.

    ``settlement`` runs the reconciler's check-then-write block inside a
    savepoint while holding a row lock on the invoice (where the database
    supports FOR UPDATE), then commits. Together with the unique
    (invoice_id, trx_id) constraint this closes the race between the
    duplicate check and the write.
    """

    def __init__(self, session: AsyncSession, gateway: str = TransactionGateway.BKASH.value, commit: bool = True):
        self.session = session
        self.gateway = gateway
        self.commit = commit
        self.invoices = InvoiceRepository(session)
        self.transactions = InvoiceTransactionRepository(session)

    async def find_invoice_by_number(self, number: str) -> Optional[int]:
        return await self.invoices.get_id_by_number(number)

    async def get_invoice(self, invoice_id: int) -> Optional[InvoiceRecord]:
        invoice = await self.invoices.get_by_id(invoice_id)
        return invoice.to_record() if invoice else None

    async def record_payment(self, invoice_id: int, trx_id: str, amount: Decimal, fee: Decimal) -> str:
        try:
            transaction = await self.transactions.create(
                invoice_id=invoice_id,
                trx_id=trx_id,
                amount=amount,
                fees=fee,
                gateway=self.gateway,
            )
        except IntegrityError as e:
            raise DuplicateTransaction(trx_id, invoice_id) from e
        return transaction.id

    async def mark_paid(self, invoice_id: int) -> None:
        invoice = await self.invoices.get_by_id(invoice_id)
        if invoice is None:
            raise ValueError(f"Invoice {invoice_id} not found")
        await self.invoices.mark_paid(invoice, payment_method=self.gateway)

    async def find_transaction_for_invoice(self, trx_id: str, invoice_id: int) -> bool:
        return await self.transactions.get_for_invoice(trx_id, invoice_id) is not None

    @asynccontextmanager
    async def settlement(self, invoice_id: int) -> AsyncIterator[None]:
        async with self.session.begin_nested():
            await self.invoices.get_by_id(invoice_id, for_update=True)
            yield
        if self.commit:
            await self.session.commit()
