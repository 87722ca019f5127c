#!/usr/bin/env python3
"""Command-line interface for operating the bKash gateway.

Usage:
    python -m bkash_sdk.cli query TR0011ABC
    python -m bkash_sdk.cli reconcile TR0011ABC --status success
    python -m bkash_sdk.cli create 77
    python -m bkash_sdk.cli logs --lines 50
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import Optional

import httpx

from .config import GatewayConfig
from .connectors.bkash_connector import BkashConnector
from .database import (
    Base,
    SqlInvoiceLedger,
    create_async_engine,
    get_async_session_factory,
    get_database_url,
)
from .errors import GatewayError
from .gateway_log import GatewayLogger
from .services import CallbackService, PaymentService

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_NOT_SETTLED = 1
EXIT_ERROR = 2


def build_connector(
    config: GatewayConfig,
    gateway_log: GatewayLogger,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> BkashConnector:
    return BkashConnector(
        config.credentials(),
        config.resolved_base_url,
        gateway_log=gateway_log,
        timeout=config.timeout_seconds,
        transport=transport,
    )


def _print_json(data) -> None:
    print(json.dumps(data, indent=2, default=str))


async def query_async(payment_id: str, config: GatewayConfig, gateway_log: GatewayLogger) -> int:
    async with build_connector(config, gateway_log) as connector:
        try:
            result = await connector.query_payment(payment_id)
        except GatewayError as e:
            logger.error(f"Query failed ({e.code}): {e.message}")
            return EXIT_ERROR
    _print_json(result.raw)
    return EXIT_OK


async def reconcile_async(
    payment_id: str,
    config: GatewayConfig,
    gateway_log: GatewayLogger,
    status_hint: Optional[str] = None,
    execute: bool = False,
) -> int:
    """Run the callback flow for one payment against the configured ledger.

    Returns:
        0 when the invoice is settled, 1 for any other outcome, 2 on gateway errors.
    """
    engine = create_async_engine(database_url=get_database_url())
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    session_factory = get_async_session_factory(engine)

    try:
        async with build_connector(config, gateway_log) as connector:
            async with session_factory() as session:
                service = CallbackService(connector, SqlInvoiceLedger(session), gateway_log=gateway_log)
                result = await service.handle(payment_id, status_hint=status_hint, execute=execute)
                await session.commit()
    finally:
        await engine.dispose()

    _print_json(result.to_dict())
    if result.outcome is None:
        return EXIT_ERROR
    return EXIT_OK if result.outcome.is_settled else EXIT_NOT_SETTLED


async def create_async(invoice_id: int, config: GatewayConfig, gateway_log: GatewayLogger) -> int:
    engine = create_async_engine(database_url=get_database_url())
    session_factory = get_async_session_factory(engine)
    try:
        async with build_connector(config, gateway_log) as connector:
            async with session_factory() as session:
                service = PaymentService(connector, SqlInvoiceLedger(session), config)
                try:
                    result = await service.initiate_payment(invoice_id)
                except (ValueError, GatewayError) as e:
                    logger.error(str(e))
                    return EXIT_ERROR
    finally:
        await engine.dispose()

    _print_json({"payment_id": result.payment_id, "bkash_url": result.bkash_url})
    return EXIT_OK


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI."""
    parser = argparse.ArgumentParser(
        prog="bkash",
        description="bKash gateway tools: query payments, reconcile callbacks, read the gateway log.",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    query_parser = subparsers.add_parser("query", help="Print the provider status of a payment")
    query_parser.add_argument("payment_id", help="bKash paymentID")

    reconcile_parser = subparsers.add_parser(
        "reconcile",
        help="Reconcile a payment against the invoice ledger",
    )
    reconcile_parser.add_argument("payment_id", help="bKash paymentID")
    reconcile_parser.add_argument(
        "--status",
        help="Redirect status parameter (failure/cancel values short-circuit)",
    )
    reconcile_parser.add_argument(
        "--execute",
        action="store_true",
        help="Execute the payment before reconciling",
    )

    create_cmd_parser = subparsers.add_parser("create", help="Create a checkout payment for an invoice")
    create_cmd_parser.add_argument("invoice_id", type=int, help="Ledger invoice ID")

    logs_parser = subparsers.add_parser("logs", help="Show the tail of the gateway log")
    logs_parser.add_argument("--lines", "-n", type=int, default=100, help="Number of lines (default: 100)")

    return parser


def main(args: Optional[list] = None) -> int:
    """Main entry point for the CLI.

    Args:
        args: Optional list of command-line arguments (for testing).

    Returns:
        Exit code.
    """
    parser = create_parser()
    parsed_args = parser.parse_args(args)

    if not parsed_args.command:
        parser.print_help()
        return EXIT_NOT_SETTLED

    config = GatewayConfig.from_env()
    gateway_log = GatewayLogger("bkash", log_file=config.log_file, enabled=config.log_enabled)

    if parsed_args.command == "logs":
        for line in gateway_log.tail(parsed_args.lines):
            print(line)
        return EXIT_OK

    if not config.is_configured():
        logger.error("bKash credentials are not configured (BKASH_USERNAME, BKASH_PASSWORD, BKASH_APP_KEY, BKASH_APP_SECRET)")
        return EXIT_ERROR

    if parsed_args.command == "query":
        return asyncio.run(query_async(parsed_args.payment_id, config, gateway_log))

    if parsed_args.command == "reconcile":
        return asyncio.run(reconcile_async(
            parsed_args.payment_id,
            config,
            gateway_log,
            status_hint=parsed_args.status,
            execute=parsed_args.execute,
        ))

    if parsed_args.command == "create":
        return asyncio.run(create_async(parsed_args.invoice_id, config, gateway_log))

    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
