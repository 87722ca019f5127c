"""Payment initiation and callback handling built on the connector and reconciler."""

import asyncio
import logging
from decimal import Decimal, ROUND_CEILING
from typing import Optional, Dict, Any

from pydantic import BaseModel

from .config import GatewayConfig
from .connectors.base import GatewayConnector, PaymentCreateResult
from .errors import GatewayError, NotConfigured, ProviderError
from .gateway_log import GatewayLogger, NullGatewayLogger
from .reconciliation import (
    Cancelled,
    Failed,
    InvoiceLedger,
    InvoiceLookup,
    ReconciliationOutcome,
    StatusReconciler,
)

logger = logging.getLogger(__name__)

FAILURE_HINTS = frozenset({"failure", "failed", "error"})
CANCEL_HINTS = frozenset({"cancel", "cancelled"})

CALLBACK_PATH = "/callback/bkash"


class CallbackResult(BaseModel):
    """Terminal result of one callback: an outcome, or a gateway error."""
    payment_id: str
    outcome: Optional[ReconciliationOutcome] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    short_circuited: bool = False

    @property
    def kind(self) -> str:
        return self.outcome.kind if self.outcome is not None else self.error_code

    @property
    def invoice_id(self) -> Optional[int]:
        if self.outcome is None:
            return None
        return getattr(self.outcome, "invoice_id", None)

    def to_dict(self) -> Dict[str, Any]:
        data = self.model_dump(mode="json")
        data["kind"] = self.kind
        return data


class PaymentService:
    """Creates bKash checkout payments for ledger invoices."""

    def __init__(self, connector: GatewayConnector, ledger: InvoiceLedger, config: GatewayConfig):
        self.connector = connector
        self.ledger = ledger
        self.config = config

    def payment_total(self, due: Decimal) -> Decimal:
        """Due amount plus the configured gateway fee, rounded up to whole taka."""
        fee = due * self.config.fee_percent / Decimal(100)
        return (due + fee).to_integral_value(rounding=ROUND_CEILING)

    def callback_url(self, invoice_id: int) -> str:
        return f"{self.config.system_url.rstrip('/')}{CALLBACK_PATH}?id={invoice_id}"

    async def initiate_payment(self, invoice_id: int) -> PaymentCreateResult:
        """Create a provider payment for an unpaid invoice.

        Args:
            invoice_id: Ledger invoice ID.

        Returns:
            PaymentCreateResult carrying the bKash redirect URL.

        Raises:
            NotConfigured: If merchant credentials are missing.
            ValueError: If the invoice does not exist or is already paid.
            ProviderError: If the provider did not return a redirect URL.
        """
        if not self.config.is_configured():
            raise NotConfigured("bKash gateway is not properly configured")

        invoice = await self.ledger.get_invoice(invoice_id)
        if invoice is None:
            raise ValueError(f"Invoice {invoice_id} not found")
        if invoice.is_paid:
            raise ValueError(f"Invoice {invoice_id} is already paid")

        total = self.payment_total(invoice.total_due)
        result = await self.connector.create_payment(
            str(invoice.id), total, self.callback_url(invoice.id)
        )
        if not result.bkash_url:
            raise ProviderError(
                f"Failed to create payment: {result.status_message or 'Unknown error'}",
                status_code=result.status_code,
            )

        logger.info(f"Created bKash payment {result.payment_id} for invoice {invoice.id} ({total} BDT)")
        return result


class CallbackService:
    """
    Drives one provider callback to a terminal result.

    A redirect status hint of failure/failed/error/cancel/cancelled is taken
    as final without settlement: the provider is still queried, but only to
    find the invoice for the redirect. Every other callback is decided by the
    provider's own status through the reconciler. Each terminal result writes
    one audit entry to the gateway log.
    """

    def __init__(
        self,
        connector: GatewayConnector,
        ledger: InvoiceLedger,
        reconciler: Optional[StatusReconciler] = None,
        gateway_log: Optional[GatewayLogger] = None,
        lookup: Optional[InvoiceLookup] = None,
    ):
        self.connector = connector
        self.ledger = ledger
        self._log = gateway_log or NullGatewayLogger()
        self.reconciler = reconciler or StatusReconciler(gateway_log=self._log)
        self.lookup = lookup or InvoiceLookup(ledger)

    async def handle(
        self,
        payment_id: Optional[str],
        status_hint: Optional[str] = None,
        execute: bool = False,
        timeout: Optional[float] = None,
    ) -> CallbackResult:
        """Process a provider callback.

        Args:
            payment_id: Provider payment ID from the callback.
            status_hint: Optional ``status`` query parameter from the redirect.
            execute: Execute the payment before reconciling (tokenized
                checkout flow) instead of only querying its status.
            timeout: Seconds after which the whole unit of work, including
                retry delays, is abandoned.

        Raises:
            ValueError: If no payment ID was supplied.
        """
        if not payment_id:
            self._log.log("Missing payment ID")
            raise ValueError("Missing payment ID")

        self._log.log("Callback received", {
            "paymentID": payment_id, "status": status_hint, "execute": execute,
        })

        if timeout is None:
            return await self._handle(payment_id, status_hint, execute)
        try:
            return await asyncio.wait_for(self._handle(payment_id, status_hint, execute), timeout)
        except asyncio.TimeoutError:
            return self._finish_error(payment_id, "timeout", f"Callback processing exceeded {timeout}s")

    async def _handle(self, payment_id: str, status_hint: Optional[str], execute: bool) -> CallbackResult:
        hint = (status_hint or "").strip().lower()
        if hint:
            self._log.log("URL status parameter received", {"url_status": hint})
        if hint in FAILURE_HINTS or hint in CANCEL_HINTS:
            return await self._short_circuit(payment_id, hint)

        try:
            if execute:
                result = await self.connector.execute_payment(payment_id)
            else:
                result = await self.connector.query_payment(payment_id)
            self._log.log("Payment status verified", result.raw)
            outcome = await self.reconciler.reconcile(
                result, self.lookup, self.ledger, accept_completed=execute or None
            )
        except GatewayError as e:
            return self._finish_error(payment_id, e.code, e.message)
        except Exception as e:
            logger.exception(f"Unexpected error while processing payment {payment_id}")
            return self._finish_error(payment_id, "internal_error", f"Payment processing error: {e}")

        return self._finish(payment_id, outcome)

    async def _short_circuit(self, payment_id: str, hint: str) -> CallbackResult:
        self._log.log("Payment failed according to URL status", {"paymentID": payment_id, "url_status": hint})

        invoice_id = None
        try:
            result = await self.connector.query_payment(payment_id)
            invoice_id = await self.reconciler.resolve_invoice_id(self.lookup, result.payer_reference)
        except GatewayError as e:
            self._log.log("Could not retrieve invoice ID for failed payment", {"error": e.message})

        if hint in CANCEL_HINTS:
            outcome = Cancelled(invoice_id=invoice_id, status_message=hint.capitalize())
        else:
            outcome = Failed(reason=f"Payment failed: {hint.capitalize()}", invoice_id=invoice_id)
        return self._finish(payment_id, outcome, short_circuited=True)

    def _finish(self, payment_id: str, outcome: ReconciliationOutcome, short_circuited: bool = False) -> CallbackResult:
        result = CallbackResult(payment_id=payment_id, outcome=outcome, short_circuited=short_circuited)
        self._audit(result)
        return result

    def _finish_error(self, payment_id: str, code: str, message: str) -> CallbackResult:
        result = CallbackResult(payment_id=payment_id, error_code=code, error_message=message)
        self._audit(result)
        logger.error(f"Callback for payment {payment_id} failed: {code}: {message}")
        return result

    def _audit(self, result: CallbackResult) -> None:
        self._log.log(f"Callback outcome: {result.kind}", result.to_dict())
        logger.info(f"Callback for payment {result.payment_id} resolved as {result.kind}")
