"""
End-to-end callback walkthrough against the bundled bKash simulator.
A payment is created for invoice 77, the payer completes it on the provider
side, and the callback is reconciled into the in-memory ledger below.
"""
import asyncio
from collections import defaultdict
from contextlib import asynccontextmanager
from decimal import Decimal

from bkash_sdk.config import SANDBOX_BASE_URL
from bkash_sdk.connectors import BkashConnector, BkashSimulator, Credentials
from bkash_sdk.reconciliation import InvoiceLedger, InvoiceRecord
from bkash_sdk.services import CallbackService


class DictLedger(InvoiceLedger):
    def __init__(self):
        self.invoices = {77: {"status": "Unpaid", "total": Decimal("500.00")}}
        self.transactions = defaultdict(set)

    async def find_invoice_by_number(self, number):
        return int(number) if int(number) in self.invoices else None

    async def get_invoice(self, invoice_id):
        invoice = self.invoices.get(invoice_id)
        if invoice is None:
            return None
        return InvoiceRecord(id=invoice_id, number=str(invoice_id), status=invoice["status"], total_due=invoice["total"])

    async def record_payment(self, invoice_id, trx_id, amount, fee):
        self.transactions[invoice_id].add(trx_id)
        return f"{invoice_id}-{trx_id}"

    async def mark_paid(self, invoice_id):
        self.invoices[invoice_id]["status"] = "Paid"

    async def find_transaction_for_invoice(self, trx_id, invoice_id):
        return trx_id in self.transactions[invoice_id]

    @asynccontextmanager
    async def settlement(self, invoice_id):
        yield


async def run():
    simulator = BkashSimulator()
    cfg = simulator.config
    credentials = Credentials.from_raw(cfg.username, cfg.password, cfg.app_key, cfg.app_secret)
    ledger = DictLedger()

    async with BkashConnector(credentials, SANDBOX_BASE_URL, transport=simulator.transport()) as connector:
        created = await connector.create_payment("77", Decimal("500"), "http://localhost:8000/callback/bkash?id=77")
        print("Redirect payer to:", created.bkash_url)

        simulator.complete(created.payment_id, trx_id="BKS123")

        service = CallbackService(connector, ledger)
        result = await service.handle(created.payment_id)
        print("Callback result:", result.to_dict())

        again = await service.handle(created.payment_id)
        print("Redelivered callback:", again.kind)


if __name__ == "__main__":
    asyncio.run(run())
