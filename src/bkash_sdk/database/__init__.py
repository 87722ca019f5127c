"""Reference invoice ledger persistence."""

from .models import (
    Invoice,
    InvoiceTransaction,
    Base,
    TransactionGateway,
)
from .session import (
    get_db,
    get_database_url,
    init_db,
    close_db,
    create_async_engine,
    get_async_session_factory,
)
from .repository import (
    InvoiceRepository,
    InvoiceTransactionRepository,
)
from .ledger import SqlInvoiceLedger

__all__ = [
    # Models
    "Invoice",
    "InvoiceTransaction",
    "Base",
    "TransactionGateway",
    # Session management
    "get_db",
    "get_database_url",
    "init_db",
    "close_db",
    "create_async_engine",
    "get_async_session_factory",
    # Repositories
    "InvoiceRepository",
    "InvoiceTransactionRepository",
    "SqlInvoiceLedger",
]
