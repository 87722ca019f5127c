"""Narrow interface the reconciler needs from the host billing ledger."""

import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from decimal import Decimal
from typing import AsyncIterator, Dict, Optional

from .models import InvoiceRecord

logger = logging.getLogger(__name__)

# invoice ids are 32-bit integer columns; longer numbers can only match by invoice number
MAX_INVOICE_ID = 2**31 - 1


class InvoiceLedger(ABC):
    """
    Host billing system adapter. Implementations translate these calls into
    the billing system's own storage; the reconciler never touches it directly.
    """

    @abstractmethod
    async def find_invoice_by_number(self, number: str) -> Optional[int]:
        """Ledger-wide lookup of an invoice ID by business invoice number."""
        raise NotImplementedError

    @abstractmethod
    async def get_invoice(self, invoice_id: int) -> Optional[InvoiceRecord]:
        raise NotImplementedError

    @abstractmethod
    async def record_payment(self, invoice_id: int, trx_id: str, amount: Decimal, fee: Decimal) -> str:
        """Attach a payment to the invoice and return the ledger transaction ID."""
        raise NotImplementedError

    @abstractmethod
    async def mark_paid(self, invoice_id: int) -> None:
        raise NotImplementedError

    @abstractmethod
    async def find_transaction_for_invoice(self, trx_id: str, invoice_id: int) -> bool:
        raise NotImplementedError

    @asynccontextmanager
    async def settlement(self, invoice_id: int) -> AsyncIterator[None]:
        """
        Scope for the check-then-write settlement sequence.

        The default provides no isolation. Ledgers that can should run the
        block as one transaction holding a lock on the invoice.
        """
        yield


class InvoiceLookup:
    """Resolves invoice numbers to ledger invoice IDs.

    Resolution order: the in-process index, a direct ID check (payer
    references created by this gateway carry the invoice ID), then the
    ledger-wide search by invoice number.
    """

    def __init__(self, ledger: InvoiceLedger, index: Optional[Dict[str, int]] = None):
        self.ledger = ledger
        self._index: Dict[str, int] = dict(index or {})

    async def resolve(self, invoice_number: str) -> Optional[int]:
        if not invoice_number:
            return None

        if invoice_number in self._index:
            return self._index[invoice_number]

        candidate_id = int(invoice_number)
        if candidate_id <= MAX_INVOICE_ID:
            invoice = await self.ledger.get_invoice(candidate_id)
            if invoice is not None:
                self._index[invoice_number] = invoice.id
                return invoice.id

        invoice_id = await self.ledger.find_invoice_by_number(invoice_number)
        if invoice_id is not None:
            self._index[invoice_number] = invoice_id
        else:
            logger.info(f"Invoice number {invoice_number} not found in ledger")
        return invoice_id
