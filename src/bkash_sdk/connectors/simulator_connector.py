"""Simulated bKash provider for exercising the client without network calls."""

import json
import logging
import uuid
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Set

import httpx

from .bkash_connector import (
    CREATE_PATH,
    EXECUTE_PATH,
    INVALID_CREDENTIALS_MESSAGE,
    STATUS_PATH,
    SUCCESS_STATUS_CODE,
    TOKEN_GRANT_PATH,
)

logger = logging.getLogger(__name__)


class SimulatorScenario(str, Enum):
    """Predefined provider behaviours."""
    SUCCESS = "success"
    INVALID_CREDENTIALS = "invalid_credentials"
    GRANT_FAILURE = "grant_failure"
    UNAUTHORIZED_ONCE = "unauthorized_once"
    UNAUTHORIZED_ALWAYS = "unauthorized_always"
    SERVER_ERROR = "server_error"
    MALFORMED = "malformed"
    COMPLETED_WITHOUT_TRX = "completed_without_trx"


@dataclass
class SimulatedPayment:
    """In-memory representation of a provider-side payment."""
    payment_id: str
    amount: str
    payer_reference: str
    merchant_invoice_number: str = ""
    transaction_status: str = "Initiated"
    status_message: str = "Successful"
    trx_id: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.utcnow)
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> Dict[str, Any]:
        payload = {
            "paymentID": self.payment_id,
            "amount": self.amount,
            "currency": "BDT",
            "intent": "sale",
            "payerReference": self.payer_reference,
            "merchantInvoiceNumber": self.merchant_invoice_number,
            "transactionStatus": self.transaction_status,
            "statusCode": SUCCESS_STATUS_CODE,
            "statusMessage": self.status_message,
        }
        if self.trx_id is not None:
            payload["trxID"] = self.trx_id
        payload.update(self.extra)
        return payload


@dataclass
class SimulatorConfig:
    """Credentials the simulator accepts and the behaviour it exhibits."""
    username: str = "sandboxTokenizedUser02"
    password: str = "sandboxTokenizedUser02@12345"
    app_key: str = "sim_app_key"
    app_secret: str = "sim_app_secret"
    scenario: SimulatorScenario = SimulatorScenario.SUCCESS


class BkashSimulator:
    """
    Fake bKash tokenized checkout backend served through ``httpx.MockTransport``.

    Features:
    - Token grant with credential checking and revocable tokens
    - Create, execute and status endpoints backed by in-memory payments
    - Scenario switches for auth failures, 401s, 5xx and malformed bodies
    - Per-endpoint call counters for assertions
    """

    def __init__(self, config: Optional[SimulatorConfig] = None):
        self.config = config or SimulatorConfig()
        self.payments: Dict[str, SimulatedPayment] = {}
        self.calls: Counter = Counter()
        self._tokens: Set[str] = set()
        self._unauthorized_served = False
        logger.info("BkashSimulator initialized")

    @property
    def scenario(self) -> SimulatorScenario:
        return self.config.scenario

    @scenario.setter
    def scenario(self, value: SimulatorScenario) -> None:
        self.config.scenario = value
        self._unauthorized_served = False

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def add_payment(
        self,
        payment_id: str,
        amount: str,
        payer_reference: str,
        transaction_status: str = "Initiated",
        status_message: str = "Successful",
        trx_id: Optional[str] = None,
        **extra: Any,
    ) -> SimulatedPayment:
        """Seed a payment as if the provider had already created it."""
        payment = SimulatedPayment(
            payment_id=payment_id,
            amount=amount,
            payer_reference=payer_reference,
            transaction_status=transaction_status,
            status_message=status_message,
            trx_id=trx_id,
            extra=extra,
        )
        self.payments[payment_id] = payment
        return payment

    def complete(self, payment_id: str, trx_id: Optional[str] = None) -> SimulatedPayment:
        payment = self.payments[payment_id]
        payment.transaction_status = "Completed"
        payment.status_message = "Successful"
        payment.trx_id = trx_id or f"SIM{uuid.uuid4().hex[:7].upper()}"
        return payment

    def revoke_tokens(self) -> None:
        """Invalidate every issued token (provider-side expiry)."""
        self._tokens.clear()

    def _json(self, status_code: int, payload: Dict[str, Any]) -> httpx.Response:
        return httpx.Response(status_code, json=payload)

    def handle(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        try:
            body = json.loads(request.content or b"{}")
        except json.JSONDecodeError:
            return self._json(400, {"statusCode": "9999", "statusMessage": "Invalid JSON"})

        if path.endswith(TOKEN_GRANT_PATH):
            self.calls["grant"] += 1
            return self._grant(request, body)

        for endpoint, name in ((CREATE_PATH, "create"), (EXECUTE_PATH, "execute"), (STATUS_PATH, "status")):
            if path.endswith(endpoint):
                self.calls[name] += 1
                rejection = self._check_auth(request)
                if rejection is not None:
                    return rejection
                return getattr(self, f"_{name}")(body)

        return self._json(404, {"statusCode": "9999", "statusMessage": "Not found"})

    def _grant(self, request: httpx.Request, body: Dict[str, Any]) -> httpx.Response:
        if self.scenario == SimulatorScenario.GRANT_FAILURE:
            return self._json(503, {"statusCode": "9999", "statusMessage": "Service unavailable"})

        valid = (
            self.scenario != SimulatorScenario.INVALID_CREDENTIALS
            and request.headers.get("username") == self.config.username
            and request.headers.get("password") == self.config.password
            and body.get("app_key") == self.config.app_key
            and body.get("app_secret") == self.config.app_secret
        )
        if not valid:
            return self._json(200, {"msg": INVALID_CREDENTIALS_MESSAGE})

        token = f"sim_token_{uuid.uuid4().hex[:16]}"
        self._tokens.add(token)
        return self._json(200, {
            "statusCode": SUCCESS_STATUS_CODE,
            "statusMessage": "Successful",
            "id_token": token,
            "token_type": "Bearer",
            "expires_in": 3600,
            "refresh_token": f"sim_refresh_{uuid.uuid4().hex[:16]}",
        })

    def _check_auth(self, request: httpx.Request) -> Optional[httpx.Response]:
        if self.scenario == SimulatorScenario.UNAUTHORIZED_ALWAYS:
            return self._json(401, {"message": "Unauthorized"})
        if self.scenario == SimulatorScenario.UNAUTHORIZED_ONCE and not self._unauthorized_served:
            self._unauthorized_served = True
            return self._json(401, {"message": "Unauthorized"})

        authorization = request.headers.get("authorization", "")
        token = authorization[len("Bearer "):] if authorization.startswith("Bearer ") else ""
        if token not in self._tokens or request.headers.get("x-app-key") != self.config.app_key:
            return self._json(401, {"message": "Unauthorized"})

        if self.scenario == SimulatorScenario.SERVER_ERROR:
            return self._json(500, {"message": "Internal server error"})
        if self.scenario == SimulatorScenario.MALFORMED:
            return httpx.Response(200, content=b"<html>gateway timeout</html>")
        return None

    def _create(self, body: Dict[str, Any]) -> httpx.Response:
        payment_id = f"TR0011{uuid.uuid4().hex[:14].upper()}"
        payment = SimulatedPayment(
            payment_id=payment_id,
            amount=str(body.get("amount", "0")),
            payer_reference=str(body.get("payerReference", "")),
            merchant_invoice_number=str(body.get("merchantInvoiceNumber", "")),
        )
        self.payments[payment_id] = payment
        payload = payment.to_payload()
        payload["bkashURL"] = f"https://sandbox.payment.bkash.com/?paymentId={payment_id}"
        payload["callbackURL"] = body.get("callbackURL")
        return self._json(200, payload)

    def _execute(self, body: Dict[str, Any]) -> httpx.Response:
        payment = self.payments.get(body.get("paymentID", ""))
        if payment is None:
            return self._json(200, {"statusCode": "2056", "statusMessage": "Invalid Payment State"})
        if payment.transaction_status == "Completed":
            return self._json(200, {"statusCode": "2062", "statusMessage": "The payment has already been completed"})
        if self.scenario == SimulatorScenario.COMPLETED_WITHOUT_TRX:
            payment.transaction_status = "Completed"
        else:
            self.complete(payment.payment_id)
        return self._json(200, payment.to_payload())

    def _status(self, body: Dict[str, Any]) -> httpx.Response:
        payment = self.payments.get(body.get("paymentID", ""))
        if payment is None:
            return self._json(200, {"statusCode": "2117", "statusMessage": "Payment not found"})
        payload = payment.to_payload()
        if self.scenario == SimulatorScenario.COMPLETED_WITHOUT_TRX:
            payload["transactionStatus"] = "Completed"
            payload["trxID"] = ""
        return self._json(200, payload)

    def health_check(self) -> Dict[str, Any]:
        return {
            "ok": True,
            "provider": "simulator",
            "payment_count": len(self.payments),
            "scenario": self.scenario.value,
            "calls": dict(self.calls),
        }
