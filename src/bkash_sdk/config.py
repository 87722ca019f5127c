"""Gateway configuration loaded from the environment."""

import os
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from .connectors.base import Credentials

SANDBOX_BASE_URL = "https://tokenized.sandbox.bka.sh/v1.2.0-beta/tokenized"
PRODUCTION_BASE_URL = "https://tokenized.pay.bka.sh/v1.2.0-beta/tokenized"

DEFAULT_LOG_FILE = "storage/logs/bkash.log"

_TRUTHY = {"1", "true", "yes", "on"}


def _env_flag(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in _TRUTHY


class GatewayConfig(BaseModel):
    """Merchant credentials and gateway behaviour settings."""
    username: str = ""
    password: str = ""
    app_key: str = ""
    app_secret: str = ""
    sandbox: bool = False
    base_url: Optional[str] = None
    timeout_seconds: float = Field(default=30.0, gt=0, le=60)
    fee_percent: Decimal = Field(default=Decimal("0"), ge=0)
    system_url: str = "http://localhost:8000"
    log_enabled: bool = True
    log_file: str = DEFAULT_LOG_FILE

    @classmethod
    def from_env(cls) -> "GatewayConfig":
        """Build a config from BKASH_* environment variables."""
        return cls(
            username=os.getenv("BKASH_USERNAME", ""),
            password=os.getenv("BKASH_PASSWORD", ""),
            app_key=os.getenv("BKASH_APP_KEY", ""),
            app_secret=os.getenv("BKASH_APP_SECRET", ""),
            sandbox=_env_flag("BKASH_SANDBOX"),
            base_url=os.getenv("BKASH_BASE_URL") or None,
            timeout_seconds=float(os.getenv("BKASH_TIMEOUT", "30")),
            fee_percent=Decimal(os.getenv("BKASH_FEE_PERCENT", "0")),
            system_url=os.getenv("SYSTEM_URL", "http://localhost:8000"),
            log_enabled=_env_flag("BKASH_LOG_ENABLED", default=True),
            log_file=os.getenv("BKASH_LOG_FILE", DEFAULT_LOG_FILE),
        )

    @property
    def resolved_base_url(self) -> str:
        if self.base_url:
            return self.base_url.rstrip("/")
        return SANDBOX_BASE_URL if self.sandbox else PRODUCTION_BASE_URL

    def is_configured(self) -> bool:
        return all(
            value.strip()
            for value in (self.username, self.password, self.app_key, self.app_secret)
        )

    def credentials(self) -> Credentials:
        return Credentials.from_raw(
            username=self.username,
            password=self.password,
            app_key=self.app_key,
            app_secret=self.app_secret,
        )
