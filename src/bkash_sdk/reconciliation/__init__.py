"""Status reconciliation for bKash payments.

This module turns a provider-reported payment status into exactly one
settlement decision against the billing ledger.

Features:
- Precedence-ordered status classification
- Invoice resolution from the provider's payer reference
- Already-paid and duplicate-transaction guards for redelivered callbacks
- 2% amount tolerance measured against the due amount
- Read-back verification of the settled invoice
"""

from .models import (
    InvoiceStatus,
    PaymentStatusClass,
    InvoiceRecord,
    Success,
    AlreadyPaid,
    Pending,
    Cancelled,
    Failed,
    AmountMismatch,
    InvoiceNotFound,
    UnknownStatus,
    ReconciliationOutcome,
)
from .ledger import InvoiceLedger, InvoiceLookup
from .reconciler import (
    StatusReconciler,
    classify_status,
    extract_invoice_number,
    amount_tolerance,
    AMOUNT_TOLERANCE_RATE,
)

__all__ = [
    # Models
    "InvoiceStatus",
    "PaymentStatusClass",
    "InvoiceRecord",
    "Success",
    "AlreadyPaid",
    "Pending",
    "Cancelled",
    "Failed",
    "AmountMismatch",
    "InvoiceNotFound",
    "UnknownStatus",
    "ReconciliationOutcome",
    # Ledger interface
    "InvoiceLedger",
    "InvoiceLookup",
    # Core Components
    "StatusReconciler",
    "classify_status",
    "extract_invoice_number",
    "amount_tolerance",
    "AMOUNT_TOLERANCE_RATE",
]
