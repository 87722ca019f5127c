"""Error taxonomy for the bKash gateway client and reconciliation engine."""

from typing import Optional


class GatewayError(Exception):
    """Base class for all gateway and settlement failures."""

    code = "gateway_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    @property
    def is_terminal_auth(self) -> bool:
        return False


class TransportError(GatewayError):
    """Network failure or a non-200 HTTP status from the provider."""

    code = "transport_error"

    def __init__(self, message: str, http_code: Optional[int] = None):
        super().__init__(message)
        self.http_code = http_code

    @property
    def is_unauthorized(self) -> bool:
        return self.http_code == 401


class AuthenticationExhausted(GatewayError):
    """Token grant kept failing after every allowed attempt."""

    code = "auth_exhausted"

    @property
    def is_terminal_auth(self) -> bool:
        return True


class InvalidCredentials(GatewayError):
    """Provider explicitly rejected the username/password combination."""

    code = "auth_error"

    @property
    def is_terminal_auth(self) -> bool:
        return True


class ProviderError(GatewayError):
    """Provider answered with a non-success statusCode."""

    code = "provider_error"

    def __init__(self, status_message: str, status_code: Optional[str] = None):
        super().__init__(status_message)
        self.status_message = status_message
        self.status_code = status_code


class MalformedResponse(GatewayError):
    """Response body could not be parsed or lacks required fields."""

    code = "malformed_response"


class IncompleteCompletedPayment(GatewayError):
    """A Completed payment arrived without a provider trxID."""

    code = "incomplete_completed_payment"


class DuplicateTransaction(GatewayError):
    """The provider trxID is already recorded against the invoice."""

    code = "duplicate_transaction"

    def __init__(self, trx_id: str, invoice_id: int):
        super().__init__(f"Transaction {trx_id} already exists for invoice {invoice_id}")
        self.trx_id = trx_id
        self.invoice_id = invoice_id


class SettlementVerificationFailed(GatewayError):
    """Invoice status did not read back as Paid after settlement."""

    code = "settlement_verification_failed"

    def __init__(self, invoice_id: int, observed_status: Optional[str]):
        super().__init__(
            f"Invoice {invoice_id} status update failed (observed {observed_status!r})"
        )
        self.invoice_id = invoice_id
        self.observed_status = observed_status


class NotConfigured(GatewayError):
    """Gateway credentials are missing."""

    code = "not_configured"
