import asyncio
import logging
import time
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx

from ..errors import (
    GatewayError,
    IncompleteCompletedPayment,
    InvalidCredentials,
    MalformedResponse,
    ProviderError,
    TransportError,
)
from ..gateway_log import GatewayLogger, NullGatewayLogger
from .base import Credentials, GatewayConnector, PaymentCreateResult, PaymentQueryResult
from .token_session import RETRY_DELAY, SessionToken, TokenSessionManager

logger = logging.getLogger(__name__)

TOKEN_GRANT_PATH = "/checkout/token/grant"
CREATE_PATH = "/checkout/create"
EXECUTE_PATH = "/checkout/execute"
STATUS_PATH = "/checkout/payment/status"

SUCCESS_STATUS_CODE = "0000"
INVALID_CREDENTIALS_MESSAGE = "Invalid username and password combination"
CRITICAL_ATTEMPTS = 2


class BkashConnector(GatewayConnector):
    """
    bKash tokenized checkout client built on httpx.

    Every call goes through ``_authenticated_request``: fetch a valid token
    from the session manager, POST the JSON body, and translate the HTTP
    result into either a payload dict or a typed GatewayError. Status queries
    and executions are critical and get a second attempt; everything else is
    attempted once. A 401 drops the cached token before the retry.
    """

    def __init__(
        self,
        credentials: Credentials,
        base_url: str,
        gateway_log: Optional[GatewayLogger] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        retry_delay: float = RETRY_DELAY,
    ):
        self.credentials = credentials
        self.base_url = base_url.rstrip("/")
        self._log = gateway_log or NullGatewayLogger()
        self._sleep = sleep
        self.retry_delay = retry_delay
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=timeout, transport=transport)
        self.session = TokenSessionManager(
            self._request_token,
            gateway_log=self._log,
            clock=clock,
            sleep=sleep,
            retry_delay=retry_delay,
        )

    async def __aenter__(self) -> "BkashConnector":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def create_payment(self, invoice_number: str, amount: Decimal, callback_url: str) -> PaymentCreateResult:
        """Create a checkout payment; the response carries the bKash redirect URL."""
        payload = await self._authenticated_request(CREATE_PATH, {
            "mode": "0011",
            "payerReference": f"INV{invoice_number}",
            "callbackURL": callback_url,
            "amount": f"{Decimal(amount):.2f}",
            "currency": "BDT",
            "intent": "sale",
            "merchantInvoiceNumber": str(invoice_number),
        })
        return PaymentCreateResult.from_payload(payload)

    async def query_payment(self, payment_id: str) -> PaymentQueryResult:
        """Fetch the authoritative status of a payment from the provider."""
        if not payment_id:
            raise ValueError("Payment ID is required")
        payload = await self._authenticated_request(
            STATUS_PATH, {"paymentID": payment_id}, critical=True
        )
        return self._validate_status_payload(payment_id, payload)

    async def execute_payment(self, payment_id: str) -> PaymentQueryResult:
        if not payment_id:
            raise ValueError("Payment ID is required")
        try:
            payload = await self._authenticated_request(
                EXECUTE_PATH, {"paymentID": payment_id}, critical=True
            )
        except ProviderError as e:
            # already executed or expired: the status endpoint is authoritative
            self._log.log("Execute rejected, querying status", {
                "paymentID": payment_id, "error": e.message,
            })
            return await self.query_payment(payment_id)

        if not payload.get("transactionStatus"):
            return await self.query_payment(payment_id)
        return self._validate_status_payload(payment_id, payload)

    def _validate_status_payload(self, payment_id: str, payload: Dict[str, Any]) -> PaymentQueryResult:
        status = payload.get("transactionStatus")
        if not status:
            raise MalformedResponse("Invalid response - missing transaction status")

        if status == "Completed" and not payload.get("trxID"):
            raise IncompleteCompletedPayment(
                "Completed payment missing transaction ID - cannot process"
            )

        if not payload.get("trxID"):
            self._log.log("No trxID for non-completed payment", {
                "paymentID": payment_id,
                "status": status,
            })

        return PaymentQueryResult.from_payload(payload)

    async def _authenticated_request(
        self,
        endpoint: str,
        data: Dict[str, Any],
        critical: bool = False,
    ) -> Dict[str, Any]:
        max_attempts = CRITICAL_ATTEMPTS if critical else 1
        last_error: Optional[GatewayError] = None

        for attempt in range(1, max_attempts + 1):
            token: Optional[SessionToken] = None
            try:
                token = await self.session.get_valid_token()
                return await self._api_call(endpoint, data, token=token.value)
            except GatewayError as e:
                last_error = e
                self._log.log(f"Attempt {attempt}/{max_attempts} failed: {e.message}")
                if e.is_terminal_auth:
                    raise
                if isinstance(e, TransportError) and e.is_unauthorized:
                    self.session.invalidate(token)
                if attempt < max_attempts:
                    await self._sleep(self.retry_delay)

        logger.error(f"{endpoint} failed after {max_attempts} attempts: {last_error.message}")
        raise last_error

    async def _request_token(self) -> str:
        self._log.log("Requesting access token", {
            "username": self.credentials.username[:3] + "...",
        })
        result = await self._api_call(
            TOKEN_GRANT_PATH,
            {"app_key": self.credentials.app_key, "app_secret": self.credentials.app_secret},
            extra_headers={
                "username": self.credentials.username,
                "password": self.credentials.password,
            },
        )
        id_token = result.get("id_token")
        if not id_token:
            message = result.get("statusMessage") or result.get("message") or "No access token received"
            raise MalformedResponse(f"Failed to get token from bKash: {message}")
        return id_token

    async def _api_call(
        self,
        endpoint: str,
        data: Dict[str, Any],
        token: Optional[str] = None,
        extra_headers: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        url = self.base_url + endpoint
        protected = endpoint == TOKEN_GRANT_PATH
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "x-app-key": self.credentials.app_key,
        }
        if token:
            headers["Authorization"] = f"Bearer {token}"
        if extra_headers:
            headers.update(extra_headers)

        self._log.log("API Request", {
            "endpoint": endpoint,
            "data": "[protected]" if protected else data,
        })

        try:
            response = await self._client.post(url, json=data, headers=headers)
        except httpx.TimeoutException as e:
            raise TransportError(f"Network error: request to {endpoint} timed out") from e
        except httpx.HTTPError as e:
            raise TransportError(f"Network error: {e}") from e

        try:
            result = response.json()
        except ValueError:
            result = None

        self._log.log("API Response", {
            "http_code": response.status_code,
            "response": "[protected]" if protected else result,
        })

        if protected and isinstance(result, dict) and result.get("msg") == INVALID_CREDENTIALS_MESSAGE:
            raise InvalidCredentials("bKash authentication failed: Invalid credentials")

        if response.status_code == 401:
            raise TransportError("Authentication required (HTTP 401)", http_code=401)

        if response.status_code != 200:
            raise TransportError(
                f"API returned HTTP {response.status_code}", http_code=response.status_code
            )

        if not isinstance(result, dict):
            raise MalformedResponse("Invalid JSON response from bKash")

        status_code = result.get("statusCode")
        if status_code is not None and status_code != SUCCESS_STATUS_CODE:
            raise ProviderError(
                result.get("statusMessage") or "Payment processing failed",
                status_code=status_code,
            )

        return result

    def health_check(self) -> Dict[str, Any]:
        return {
            "ok": True,
            "provider": "bkash",
            "base_url": self.base_url,
            "token_cached": self.session.cached_token is not None,
            "auth_failures": self.session.failure_count,
        }
