"""SQLAlchemy models for the reference invoice ledger."""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional, Dict, Any, List

from sqlalchemy import (
    String,
    Integer,
    DateTime,
    ForeignKey,
    Numeric,
    Index,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, relationship, Mapped, mapped_column
import enum

from ..reconciliation.models import InvoiceRecord, InvoiceStatus


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


class TransactionGateway(str, enum.Enum):
    """Gateways that can record payments against an invoice."""
    BKASH = "bkash"
    MANUAL = "manual"


class Invoice(Base):
    """Billing invoice as stored by the host system."""
    __tablename__ = "invoices"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    invoice_num: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=InvoiceStatus.UNPAID.value)
    total: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    payment_method: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    date_paid: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    transactions: Mapped[List["InvoiceTransaction"]] = relationship(
        "InvoiceTransaction",
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="InvoiceTransaction.created_at.desc()",
    )

    __table_args__ = (
        Index("ix_invoices_status", "status"),
    )

    def to_record(self) -> InvoiceRecord:
        return InvoiceRecord(
            id=self.id,
            number=self.invoice_num or str(self.id),
            status=self.status,
            total_due=Decimal(self.total),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "invoice_num": self.invoice_num,
            "status": self.status,
            "total": str(self.total),
            "payment_method": self.payment_method,
            "date_paid": self.date_paid.isoformat() if self.date_paid else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class InvoiceTransaction(Base):
    """A payment recorded against an invoice."""
    __tablename__ = "invoice_transactions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    invoice_id: Mapped[int] = mapped_column(Integer, ForeignKey("invoices.id"), nullable=False, index=True)
    trx_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    gateway: Mapped[str] = mapped_column(String(50), nullable=False, default=TransactionGateway.BKASH.value)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    fees: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    invoice: Mapped["Invoice"] = relationship("Invoice", back_populates="transactions")

    __table_args__ = (
        UniqueConstraint("invoice_id", "trx_id", name="uq_invoice_transactions_invoice_trx"),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "invoice_id": self.invoice_id,
            "trx_id": self.trx_id,
            "gateway": self.gateway,
            "amount": str(self.amount),
            "fees": str(self.fees),
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
