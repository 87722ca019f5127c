# bkash_sdk package
__version__ = "0.1.0"

from .config import GatewayConfig
from .errors import (
    GatewayError,
    TransportError,
    AuthenticationExhausted,
    InvalidCredentials,
    ProviderError,
    MalformedResponse,
    IncompleteCompletedPayment,
    DuplicateTransaction,
    SettlementVerificationFailed,
    NotConfigured,
)
from .gateway_log import GatewayLogger
from .connectors import (
    BkashConnector,
    BkashSimulator,
    Credentials,
    PaymentQueryResult,
    PaymentCreateResult,
    TokenSessionManager,
)
from .services import PaymentService, CallbackService, CallbackResult

# Reconciliation exports
from .reconciliation import (
    StatusReconciler,
    InvoiceLedger,
    InvoiceLookup,
    InvoiceRecord,
    ReconciliationOutcome,
    classify_status,
    extract_invoice_number,
)
