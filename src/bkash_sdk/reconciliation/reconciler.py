"""Turns a provider-reported payment status into one settlement outcome."""

import logging
import re
from decimal import Decimal
from typing import FrozenSet, Optional

from ..connectors.base import PaymentQueryResult
from ..errors import (
    DuplicateTransaction,
    IncompleteCompletedPayment,
    SettlementVerificationFailed,
)
from ..gateway_log import GatewayLogger, NullGatewayLogger
from .ledger import InvoiceLedger, InvoiceLookup
from .models import (
    AlreadyPaid,
    AmountMismatch,
    Cancelled,
    Failed,
    InvoiceNotFound,
    PaymentStatusClass,
    Pending,
    ReconciliationOutcome,
    Success,
    UnknownStatus,
)

logger = logging.getLogger(__name__)

PAYER_REFERENCE_PREFIX = "INV"
AMOUNT_TOLERANCE_RATE = Decimal("0.02")

SUCCESS_MESSAGE = "Successful"
COMPLETED_STATUS = "Completed"
CANCELLED_STATUSES: FrozenSet[str] = frozenset({"Cancelled"})
CANCELLED_MESSAGES: FrozenSet[str] = frozenset({"Cancelled", "Cancel"})
FAILED_STATUSES: FrozenSet[str] = frozenset({"Failed", "Reversed"})
FAILED_MESSAGES: FrozenSet[str] = frozenset({"Failed", "Reversed", "Failure"})
PENDING_STATUSES: FrozenSet[str] = frozenset({"Initiated", "Authorized", "Pending"})
PENDING_MESSAGES: FrozenSet[str] = frozenset({"Initiated", "Authorized", "Pending", "In Progress"})

_NON_DIGITS = re.compile(r"[^0-9]")


def classify_status(result: PaymentQueryResult, accept_completed: bool = False) -> PaymentStatusClass:
    """Classify a provider status. The first matching rule wins:

    1. statusMessage "Successful" (or transactionStatus "Completed" when
       ``accept_completed``, as in the execute flow) -> SUCCESS
    2. Cancelled status or Cancelled/Cancel message -> CANCELLED
    3. Failed/Reversed status or Failed/Reversed/Failure message -> FAILED
    4. Initiated/Authorized/Pending status or message, or "In Progress" -> PENDING
    5. anything else -> UNKNOWN
    """
    status = result.transaction_status
    message = result.status_message

    if message == SUCCESS_MESSAGE or (accept_completed and status == COMPLETED_STATUS):
        return PaymentStatusClass.SUCCESS
    if status in CANCELLED_STATUSES or message in CANCELLED_MESSAGES:
        return PaymentStatusClass.CANCELLED
    if status in FAILED_STATUSES or message in FAILED_MESSAGES:
        return PaymentStatusClass.FAILED
    if status in PENDING_STATUSES or message in PENDING_MESSAGES:
        return PaymentStatusClass.PENDING
    return PaymentStatusClass.UNKNOWN


def extract_invoice_number(payer_reference: Optional[str]) -> Optional[str]:
    """Strip the INV prefix and non-digits; "INV00042" -> "42"."""
    digits = _NON_DIGITS.sub("", (payer_reference or "").replace(PAYER_REFERENCE_PREFIX, ""))
    if not digits:
        return None
    number = digits.lstrip("0")
    return number or None


def amount_tolerance(due: Decimal, rate: Decimal = AMOUNT_TOLERANCE_RATE) -> Decimal:
    """Allowed paid/due difference, always based on the due amount."""
    return due * rate


class StatusReconciler:
    """Reconciliation engine for a single provider payment status.

    The reconciler classifies and returns; it never retries. Non-success
    statuses still resolve the invoice (best effort) so the caller can route
    the payer back to it. Only the success path writes to the ledger, and
    only after the already-paid, amount and duplicate-transaction guards pass.
    """

    def __init__(
        self,
        gateway_log: Optional[GatewayLogger] = None,
        tolerance_rate: Decimal = AMOUNT_TOLERANCE_RATE,
        accept_completed: bool = False,
    ):
        """Initialize the reconciler.

        Args:
            gateway_log: Event log for classified branches.
            tolerance_rate: Fraction of the due amount a payment may differ by.
            accept_completed: Treat transactionStatus "Completed" as success
                even without a "Successful" status message.
        """
        self._log = gateway_log or NullGatewayLogger()
        self.tolerance_rate = tolerance_rate
        self.accept_completed = accept_completed

    async def reconcile(
        self,
        result: PaymentQueryResult,
        lookup: InvoiceLookup,
        ledger: InvoiceLedger,
        accept_completed: Optional[bool] = None,
    ) -> ReconciliationOutcome:
        """Reconcile a provider status against the ledger.

        Args:
            result: Validated provider status.
            lookup: Invoice number resolver.
            ledger: Ledger receiving the settlement writes.
            accept_completed: Overrides the instance setting for this call.

        Raises:
            IncompleteCompletedPayment: Successful payment without a trxID.
            DuplicateTransaction: trxID already recorded for the invoice.
            SettlementVerificationFailed: Invoice did not read back as Paid.
        """
        if accept_completed is None:
            accept_completed = self.accept_completed
        status_class = classify_status(result, accept_completed=accept_completed)
        invoice_number = extract_invoice_number(result.payer_reference)

        if status_class != PaymentStatusClass.SUCCESS:
            invoice_id = await self.resolve_invoice_id(lookup, result.payer_reference)
            return self._non_settlement_outcome(status_class, result, invoice_id)

        self._log.log("Payment verified as successful", result.raw)
        return await self._settle(result, invoice_number, lookup, ledger)

    async def resolve_invoice_id(self, lookup: InvoiceLookup, payer_reference: Optional[str]) -> Optional[int]:
        """Resolve the invoice behind a payer reference, degrading to None on any failure."""
        invoice_number = extract_invoice_number(payer_reference)
        if not invoice_number:
            return None
        try:
            return await lookup.resolve(invoice_number)
        except Exception as e:
            self._log.log("Could not retrieve invoice ID", {
                "invoice_number": invoice_number, "error": str(e),
            })
            logger.warning(f"Invoice lookup for {invoice_number} failed: {e}")
            return None

    def _non_settlement_outcome(
        self,
        status_class: PaymentStatusClass,
        result: PaymentQueryResult,
        invoice_id: Optional[int],
    ) -> ReconciliationOutcome:
        if status_class == PaymentStatusClass.CANCELLED:
            self._log.log("Payment was cancelled by user", result.raw)
            return Cancelled(invoice_id=invoice_id, status_message=result.status_message)

        if status_class == PaymentStatusClass.FAILED:
            self._log.log("Payment failed or reversed", result.raw)
            return Failed(
                reason=f"Payment failed: {result.status_message or result.transaction_status}",
                invoice_id=invoice_id,
            )

        if status_class == PaymentStatusClass.PENDING:
            self._log.log("Payment still pending", result.raw)
            return Pending(invoice_id=invoice_id, status_message=result.status_message)

        self._log.log("Unknown payment status received", {
            "transactionStatus": result.transaction_status,
            "statusMessage": result.status_message,
            "full_response": result.raw,
        })
        logger.error(
            f"Unrecognized bKash status {result.transaction_status!r} / {result.status_message!r}"
        )
        return UnknownStatus(
            transaction_status=result.transaction_status,
            status_message=result.status_message,
            raw=result.raw,
        )

    async def _settle(
        self,
        result: PaymentQueryResult,
        invoice_number: Optional[str],
        lookup: InvoiceLookup,
        ledger: InvoiceLedger,
    ) -> ReconciliationOutcome:
        if not invoice_number:
            self._log.log("Could not determine invoice number from payerReference", {
                "payerReference": result.payer_reference,
            })
            return InvoiceNotFound()

        invoice_id = await lookup.resolve(invoice_number)
        if invoice_id is None:
            self._log.log("Invoice not found", {"invoice_number": invoice_number})
            return InvoiceNotFound(invoice_number=invoice_number)

        if not result.trx_id:
            raise IncompleteCompletedPayment(
                f"Successful payment for invoice {invoice_id} has no transaction ID"
            )

        paid = result.amount if result.amount is not None else Decimal("0")

        async with ledger.settlement(invoice_id):
            invoice = await ledger.get_invoice(invoice_id)
            if invoice is None:
                return InvoiceNotFound(invoice_number=invoice_number)

            if invoice.is_paid:
                self._log.log("Invoice already paid", {
                    "invoice_id": invoice_id, "trx_id": result.trx_id,
                })
                return AlreadyPaid(invoice_id=invoice_id)

            due = invoice.total_due
            tolerance = amount_tolerance(due, self.tolerance_rate)
            if abs(paid - due) > tolerance:
                self._log.log("Amount mismatch", {
                    "paid": str(paid), "due": str(due), "invoice_number": invoice_number,
                })
                return AmountMismatch(paid=paid, due=due, tolerance=tolerance, invoice_id=invoice_id)

            if await ledger.find_transaction_for_invoice(result.trx_id, invoice_id):
                self._log.log("Duplicate transaction", {
                    "invoice_id": invoice_id, "trx_id": result.trx_id,
                })
                raise DuplicateTransaction(result.trx_id, invoice_id)

            transaction_id = await ledger.record_payment(invoice_id, result.trx_id, paid, Decimal("0"))
            await ledger.mark_paid(invoice_id)

        # read back outside the settlement scope so the check sees committed state
        updated = await ledger.get_invoice(invoice_id)
        if updated is None or not updated.is_paid:
            observed = updated.status if updated is not None else None
            self._log.log("Invoice status not updated properly", {
                "invoice_id": invoice_id, "transaction_id": transaction_id, "status": observed,
            })
            raise SettlementVerificationFailed(invoice_id, observed)

        self._log.log("Payment completed successfully", {
            "invoice_id": invoice_id,
            "invoice_number": invoice_number,
            "transaction_id": transaction_id,
            "amount_paid": str(paid),
            "trx_id": result.trx_id,
            "payment_id": result.payment_id,
            "invoice_status": updated.status,
        })
        logger.info(f"Settled invoice {invoice_id} with bKash trxID {result.trx_id}")
        return Success(
            invoice_id=invoice_id,
            trx_id=result.trx_id,
            amount_paid=paid,
            transaction_id=transaction_id,
        )
