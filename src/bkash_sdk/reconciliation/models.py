"""Models for payment status reconciliation."""

import enum
from decimal import Decimal
from typing import Annotated, Optional, Dict, Any, Union, Literal

from pydantic import BaseModel, ConfigDict, Field


class InvoiceStatus(str, enum.Enum):
    """Invoice states as reported by the billing ledger."""
    UNPAID = "Unpaid"
    PAID = "Paid"
    CANCELLED = "Cancelled"
    REFUNDED = "Refunded"


class PaymentStatusClass(str, enum.Enum):
    """Classification of a provider-reported payment status."""
    SUCCESS = "success"
    CANCELLED = "cancelled"
    FAILED = "failed"
    PENDING = "pending"
    UNKNOWN = "unknown"


class InvoiceRecord(BaseModel):
    """The slice of a billing invoice the reconciler reads."""
    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: int = Field(..., description="Ledger invoice ID")
    number: str = Field(..., description="Business invoice number")
    status: str = Field(..., description="Ledger invoice status")
    total_due: Decimal = Field(..., description="Amount due in BDT")

    @property
    def is_paid(self) -> bool:
        return self.status == InvoiceStatus.PAID.value


class _Outcome(BaseModel):
    model_config = ConfigDict(frozen=True)

    @property
    def is_settled(self) -> bool:
        return False

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")


class Success(_Outcome):
    kind: Literal["success"] = "success"
    invoice_id: int
    trx_id: str
    amount_paid: Decimal
    transaction_id: Optional[str] = Field(None, description="Ledger transaction ID")

    @property
    def is_settled(self) -> bool:
        return True


class AlreadyPaid(_Outcome):
    kind: Literal["already_paid"] = "already_paid"
    invoice_id: int

    @property
    def is_settled(self) -> bool:
        return True


class Pending(_Outcome):
    kind: Literal["pending"] = "pending"
    invoice_id: Optional[int] = None
    status_message: str = ""


class Cancelled(_Outcome):
    kind: Literal["cancelled"] = "cancelled"
    invoice_id: Optional[int] = None
    status_message: str = ""


class Failed(_Outcome):
    kind: Literal["failed"] = "failed"
    reason: str
    invoice_id: Optional[int] = None


class AmountMismatch(_Outcome):
    kind: Literal["amount_mismatch"] = "amount_mismatch"
    paid: Decimal
    due: Decimal
    tolerance: Decimal
    invoice_id: Optional[int] = None


class InvoiceNotFound(_Outcome):
    kind: Literal["invoice_not_found"] = "invoice_not_found"
    invoice_number: Optional[str] = None


class UnknownStatus(_Outcome):
    kind: Literal["unknown_status"] = "unknown_status"
    transaction_status: str = ""
    status_message: str = ""
    raw: Dict[str, Any] = Field(default_factory=dict)


ReconciliationOutcome = Annotated[
    Union[
        Success,
        AlreadyPaid,
        Pending,
        Cancelled,
        Failed,
        AmountMismatch,
        InvoiceNotFound,
        UnknownStatus,
    ],
    Field(discriminator="kind"),
]
