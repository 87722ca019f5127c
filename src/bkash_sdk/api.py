import logging
from contextlib import asynccontextmanager
from typing import Any, Dict

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy.ext.asyncio import AsyncSession

from .auth import CALLBACK_RATE_LIMIT, limiter, verify_api_key
from .config import GatewayConfig
from .connectors.base import GatewayConnector
from .connectors.bkash_connector import BkashConnector
from .database import SqlInvoiceLedger, close_db, get_db, init_db
from .errors import GatewayError, NotConfigured
from .gateway_log import GatewayLogger
from .reconciliation import InvoiceLedger
from .services import CallbackResult, CallbackService, PaymentService

logger = logging.getLogger(__name__)

CALLBACK_TIMEOUT = 90.0  # seconds; covers two attempts plus token grants

OUTCOME_HTTP_STATUS = {
    "success": 200,
    "already_paid": 200,
    "pending": 202,
    "cancelled": 400,
    "failed": 400,
    "amount_mismatch": 409,
    "invoice_not_found": 404,
    "unknown_status": 500,
    "duplicate_transaction": 409,
    "timeout": 504,
}


def build_gateway_log(config: GatewayConfig) -> GatewayLogger:
    return GatewayLogger("bkash", log_file=config.log_file, enabled=config.log_enabled)


@asynccontextmanager
async def lifespan(app: FastAPI):
    config = GatewayConfig.from_env()
    gateway_log = build_gateway_log(config)
    app.state.config = config
    app.state.gateway_log = gateway_log
    app.state.connector = BkashConnector(
        config.credentials(),
        config.resolved_base_url,
        gateway_log=gateway_log,
        timeout=config.timeout_seconds,
    )
    await init_db()
    try:
        yield
    finally:
        await app.state.connector.aclose()
        await close_db()
        gateway_log.close()


app = FastAPI(title="bKash Billing Connector", lifespan=lifespan)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


def get_config(request: Request) -> GatewayConfig:
    return request.app.state.config


def get_gateway_log(request: Request) -> GatewayLogger:
    return request.app.state.gateway_log


def get_connector(request: Request) -> GatewayConnector:
    return request.app.state.connector


def get_ledger(db: AsyncSession = Depends(get_db)) -> InvoiceLedger:
    return SqlInvoiceLedger(db)


def get_callback_service(
    connector: GatewayConnector = Depends(get_connector),
    ledger: InvoiceLedger = Depends(get_ledger),
    gateway_log: GatewayLogger = Depends(get_gateway_log),
) -> CallbackService:
    return CallbackService(connector, ledger, gateway_log=gateway_log)


class CreatePaymentBody(BaseModel):
    invoice_id: int = Field(..., gt=0)


def _callback_response(result: CallbackResult) -> JSONResponse:
    status_code = OUTCOME_HTTP_STATUS.get(result.kind, 500)
    return JSONResponse(status_code=status_code, content=result.to_dict())


async def _callback_params(request: Request) -> Dict[str, Any]:
    params: Dict[str, Any] = {k: v.strip() for k, v in request.query_params.items()}
    if request.method == "POST":
        try:
            body = await request.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            params.update(body)
    return params


@app.api_route("/callback/bkash", methods=["GET", "POST"])
@limiter.limit(CALLBACK_RATE_LIMIT)
async def bkash_callback(
    request: Request,
    service: CallbackService = Depends(get_callback_service),
):
    """Provider redirect/notification endpoint.

    Accepts ``paymentID`` and an optional ``status`` either as query
    parameters or in a JSON body, and answers with the terminal result.
    """
    params = await _callback_params(request)
    payment_id = params.get("paymentID")
    if not payment_id:
        raise HTTPException(status_code=400, detail="Missing payment ID")

    status_hint = params.get("status")
    result = await service.handle(
        str(payment_id),
        status_hint=str(status_hint) if status_hint is not None else None,
        execute=str(params.get("action")) == "execute",
        timeout=CALLBACK_TIMEOUT,
    )
    return _callback_response(result)


@app.post("/payments")
async def create_payment(
    body: CreatePaymentBody,
    connector: GatewayConnector = Depends(get_connector),
    ledger: InvoiceLedger = Depends(get_ledger),
    config: GatewayConfig = Depends(get_config),
    api_key: str = Depends(verify_api_key),
):
    service = PaymentService(connector, ledger, config)
    try:
        result = await service.initiate_payment(body.invoice_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except NotConfigured as e:
        raise HTTPException(status_code=503, detail=e.message)
    except GatewayError as e:
        logger.error(f"Payment creation for invoice {body.invoice_id} failed: {e.message}")
        raise HTTPException(status_code=502, detail={"code": e.code, "message": e.message})

    return {
        "invoice_id": body.invoice_id,
        "payment_id": result.payment_id,
        "bkash_url": result.bkash_url,
        "status_message": result.status_message,
    }


@app.get("/logs")
async def gateway_logs(
    lines: int = Query(default=100, ge=1, le=1000),
    gateway_log: GatewayLogger = Depends(get_gateway_log),
    api_key: str = Depends(verify_api_key),
):
    return {"lines": gateway_log.tail(lines)}


@app.get("/health")
async def health(connector: GatewayConnector = Depends(get_connector)):
    return {"status": "healthy", "gateway": connector.health_check()}
