"""Repository layer for invoice ledger persistence."""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Optional, List

from sqlalchemy import select, and_
from sqlalchemy.ext.asyncio import AsyncSession

from .models import Invoice, InvoiceTransaction, TransactionGateway
from ..reconciliation.models import InvoiceStatus

logger = logging.getLogger(__name__)


class InvoiceRepository:
    """Repository for Invoice CRUD operations."""

    def __init__(self, session: AsyncSession):
        """Initialize the repository with a database session.

        Args:
            session: AsyncSession instance for database operations.
        """
        self.session = session

    async def create(
        self,
        total: Decimal,
        invoice_num: Optional[str] = None,
        status: str = InvoiceStatus.UNPAID.value,
        invoice_id: Optional[int] = None,
    ) -> Invoice:
        """Create a new invoice.

        Args:
            total: Amount due.
            invoice_num: Optional business invoice number.
            status: Initial invoice status.
            invoice_id: Explicit primary key, for imports from the host system.

        Returns:
            Created Invoice instance.
        """
        invoice = Invoice(total=Decimal(total), invoice_num=invoice_num, status=status)
        if invoice_id is not None:
            invoice.id = invoice_id
        self.session.add(invoice)
        await self.session.flush()

        logger.info(f"Created invoice {invoice.id} with status {status}")
        return invoice

    async def get_by_id(self, invoice_id: int, for_update: bool = False) -> Optional[Invoice]:
        """Get an invoice by ID, always re-reading its row.

        Args:
            invoice_id: Invoice primary key.
            for_update: Lock the row for the rest of the transaction.

        Returns:
            Invoice instance if found, None otherwise.
        """
        stmt = (
            select(Invoice)
            .where(Invoice.id == invoice_id)
            .execution_options(populate_existing=True)
        )
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_id_by_number(self, invoice_num: str) -> Optional[int]:
        result = await self.session.execute(
            select(Invoice.id).where(Invoice.invoice_num == invoice_num)
        )
        return result.scalars().first()

    async def mark_paid(self, invoice: Invoice, payment_method: str = TransactionGateway.BKASH.value) -> Invoice:
        invoice.status = InvoiceStatus.PAID.value
        invoice.payment_method = payment_method
        invoice.date_paid = datetime.utcnow()
        invoice.updated_at = datetime.utcnow()
        await self.session.flush()
        logger.info(f"Marked invoice {invoice.id} as paid")
        return invoice

    async def list_by_status(self, status: str, limit: int = 100, offset: int = 0) -> List[Invoice]:
        result = await self.session.execute(
            select(Invoice)
            .where(Invoice.status == status)
            .order_by(Invoice.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all())


class InvoiceTransactionRepository:
    """Repository for payments recorded against invoices."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        invoice_id: int,
        trx_id: str,
        amount: Decimal,
        fees: Decimal = Decimal("0"),
        gateway: str = TransactionGateway.BKASH.value,
    ) -> InvoiceTransaction:
        """Record a payment.

        Raises:
            sqlalchemy.exc.IntegrityError: If the trxID is already recorded for the invoice.
        """
        transaction = InvoiceTransaction(
            invoice_id=invoice_id,
            trx_id=trx_id,
            amount=Decimal(amount),
            fees=Decimal(fees),
            gateway=gateway,
        )
        self.session.add(transaction)
        await self.session.flush()
        logger.info(f"Recorded transaction {trx_id} for invoice {invoice_id}")
        return transaction

    async def get_for_invoice(self, trx_id: str, invoice_id: int) -> Optional[InvoiceTransaction]:
        result = await self.session.execute(
            select(InvoiceTransaction).where(
                and_(
                    InvoiceTransaction.trx_id == trx_id,
                    InvoiceTransaction.invoice_id == invoice_id,
                )
            )
        )
        return result.scalar_one_or_none()

    async def get_by_invoice_id(self, invoice_id: int) -> List[InvoiceTransaction]:
        result = await self.session.execute(
            select(InvoiceTransaction)
            .where(InvoiceTransaction.invoice_id == invoice_id)
            .order_by(InvoiceTransaction.created_at.desc())
        )
        return list(result.scalars().all())
