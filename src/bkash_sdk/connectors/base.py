import html
import re
from abc import ABC, abstractmethod
from decimal import Decimal, InvalidOperation
from typing import Optional, Dict, Any
from urllib.parse import unquote

from pydantic import BaseModel, ConfigDict

from ..errors import MalformedResponse

_PERCENT_ENCODED = re.compile(r"%[0-9A-Fa-f]{2}")


def normalize_credential(value: str) -> str:
    """Undo the encoding config UIs sometimes apply to stored credentials.

    Trims whitespace, percent-decodes when the value contains an escape
    sequence, then decodes HTML entities.
    """
    value = (value or "").strip()
    if _PERCENT_ENCODED.search(value):
        value = unquote(value)
    return html.unescape(value)


def parse_amount(value: Any) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise MalformedResponse(f"Invalid amount in provider response: {value!r}")


# Canonical models
class Credentials(BaseModel):
    model_config = ConfigDict(frozen=True)

    username: str
    password: str
    app_key: str
    app_secret: str

    @classmethod
    def from_raw(cls, username: str, password: str, app_key: str, app_secret: str) -> "Credentials":
        return cls(
            username=normalize_credential(username),
            password=normalize_credential(password),
            app_key=(app_key or "").strip(),
            app_secret=(app_secret or "").strip(),
        )

    def __repr__(self) -> str:
        return f"Credentials(username={self.username[:3]!r}..., app_key={self.app_key[:4]!r}...)"


class SessionToken(BaseModel):
    model_config = ConfigDict(frozen=True)

    value: str
    issued_at: float  # clock seconds


class PaymentCreateResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    payment_id: Optional[str] = None
    bkash_url: Optional[str] = None
    status_code: Optional[str] = None
    status_message: Optional[str] = None
    raw: Dict[str, Any] = {}

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "PaymentCreateResult":
        return cls(
            payment_id=payload.get("paymentID"),
            bkash_url=payload.get("bkashURL"),
            status_code=payload.get("statusCode"),
            status_message=payload.get("statusMessage"),
            raw=payload,
        )


class PaymentQueryResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    transaction_status: str
    status_message: str = ""
    trx_id: Optional[str] = None
    amount: Optional[Decimal] = None
    payer_reference: str = ""
    payment_id: Optional[str] = None
    raw: Dict[str, Any] = {}

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "PaymentQueryResult":
        return cls(
            transaction_status=str(payload.get("transactionStatus") or ""),
            status_message=str(payload.get("statusMessage") or ""),
            trx_id=payload.get("trxID") or None,
            amount=parse_amount(payload.get("amount")),
            payer_reference=str(payload.get("payerReference") or ""),
            payment_id=payload.get("paymentID"),
            raw=payload,
        )


class GatewayConnector(ABC):
    """
    Minimal gateway interface. Implementations own their token lifecycle and
    retry policy; callers only see typed results or GatewayError subclasses.
    """

    @abstractmethod
    async def create_payment(self, invoice_number: str, amount: Decimal, callback_url: str) -> PaymentCreateResult:
        raise NotImplementedError

    @abstractmethod
    async def query_payment(self, payment_id: str) -> PaymentQueryResult:
        raise NotImplementedError

    @abstractmethod
    async def execute_payment(self, payment_id: str) -> PaymentQueryResult:
        """
        Execute an authorized payment. Falls back to a status query when the
        execute response does not carry a transaction status.
        """
        raise NotImplementedError

    def health_check(self) -> Dict[str, Any]:
        return {"ok": True}
