"""bKash gateway connectors."""

from .base import (
    GatewayConnector,
    Credentials,
    SessionToken,
    PaymentCreateResult,
    PaymentQueryResult,
    normalize_credential,
    parse_amount,
)
from .token_session import (
    TokenSessionManager,
    TOKEN_TTL,
    MAX_AUTH_RETRIES,
    RETRY_DELAY,
)
from .bkash_connector import BkashConnector
from .simulator_connector import (
    BkashSimulator,
    SimulatorConfig,
    SimulatorScenario,
    SimulatedPayment,
)

__all__ = [
    # Base classes and models
    "GatewayConnector",
    "Credentials",
    "SessionToken",
    "PaymentCreateResult",
    "PaymentQueryResult",
    "normalize_credential",
    "parse_amount",
    # Token lifecycle
    "TokenSessionManager",
    "TOKEN_TTL",
    "MAX_AUTH_RETRIES",
    "RETRY_DELAY",
    # Connectors
    "BkashConnector",
    "BkashSimulator",
    "SimulatorConfig",
    "SimulatorScenario",
    "SimulatedPayment",
]
