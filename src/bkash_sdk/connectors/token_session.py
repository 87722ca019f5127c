"""Access token lifecycle for the bKash tokenized checkout API."""

import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional

from ..errors import AuthenticationExhausted, GatewayError, InvalidCredentials
from ..gateway_log import GatewayLogger, NullGatewayLogger
from .base import SessionToken

logger = logging.getLogger(__name__)

TOKEN_TTL = 3500  # seconds; provider tokens live 60 minutes
MAX_AUTH_RETRIES = 3
RETRY_DELAY = 2  # seconds

GrantCall = Callable[[], Awaitable[str]]
SleepCall = Callable[[float], Awaitable[None]]


class TokenSessionManager:
    """
    Owns a single cached bearer token and refreshes it on expiry.

    Refresh is single-flight: concurrent callers that all observe a stale
    token wait on one lock and re-check freshness before granting, so only
    one grant call reaches the provider.
    """

    def __init__(
        self,
        grant: GrantCall,
        gateway_log: Optional[GatewayLogger] = None,
        clock: Callable[[], float] = time.time,
        sleep: SleepCall = asyncio.sleep,
        ttl: float = TOKEN_TTL,
        max_retries: int = MAX_AUTH_RETRIES,
        retry_delay: float = RETRY_DELAY,
    ):
        """Initialize the manager.

        Args:
            grant: Coroutine performing one token-grant call and returning the token value.
            gateway_log: Event log for authentication attempts.
            clock: Time source in seconds.
            sleep: Awaitable delay used between grant attempts.
            ttl: Token lifetime in seconds.
            max_retries: Grant attempts before giving up.
            retry_delay: Seconds to wait between grant attempts.
        """
        self._grant = grant
        self._log = gateway_log or NullGatewayLogger()
        self._clock = clock
        self._sleep = sleep
        self.ttl = ttl
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self._token: Optional[SessionToken] = None
        self._failures = 0
        self._lock = asyncio.Lock()

    @property
    def failure_count(self) -> int:
        return self._failures

    @property
    def cached_token(self) -> Optional[SessionToken]:
        return self._token

    def _is_fresh(self, token: Optional[SessionToken]) -> bool:
        return token is not None and (self._clock() - token.issued_at) < self.ttl

    async def get_valid_token(self) -> SessionToken:
        """Return the cached token, granting a new one if it is missing or stale."""
        token = self._token
        if self._is_fresh(token):
            return token

        async with self._lock:
            token = self._token
            if self._is_fresh(token):
                return token
            self._token = await self._grant_with_retry()
            return self._token

    def invalidate(self, token: Optional[SessionToken] = None) -> None:
        """Drop the cached token so the next request re-authenticates.

        When ``token`` is given, the cache is only cleared if it still holds
        that token; a token refreshed by a concurrent caller is kept.
        """
        if token is not None and self._token is not token:
            return
        if self._token is not None:
            logger.info("Invalidating cached bKash access token")
        self._token = None

    async def _grant_with_retry(self) -> SessionToken:
        last_error: Optional[GatewayError] = None

        for attempt in range(1, self.max_retries + 1):
            self._failures = attempt - 1
            self._log.log(f"Authentication attempt {attempt}")
            try:
                value = await self._grant()
            except InvalidCredentials as e:
                self._failures = attempt
                self._log.log("Authentication failed", {"error": e.message, "attempt": attempt})
                logger.error("bKash rejected the configured username/password")
                raise
            except GatewayError as e:
                last_error = e
                self._failures = attempt
                self._log.log("Authentication failed", {"error": e.message, "attempt": attempt})
                logger.warning(f"Token grant attempt {attempt}/{self.max_retries} failed: {e.message}")
                if attempt < self.max_retries:
                    await self._sleep(self.retry_delay)
                continue

            issued_at = self._clock()
            self._failures = 0
            self._log.log("Authentication successful", {
                "expires_at": time.strftime("%Y-%m-%d %H:%M:%S", time.localtime(issued_at + self.ttl)),
            })
            return SessionToken(value=value, issued_at=issued_at)

        raise AuthenticationExhausted(
            "Could not authenticate with bKash. Please verify your credentials."
        ) from last_error
