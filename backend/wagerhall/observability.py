"""Logfire cloud observability initialization and instrumentation."""

import logging

import logfire

from wagerhall import __version__
from wagerhall.config import Settings

logger = logging.getLogger(__name__)


def initialize_logfire(settings: Settings) -> None:
    """
    Initialize Logfire tracing.

    Call once at startup, before any ledger or roster client is created, so
    their httpx traffic is instrumented:
    - HTTPX clients (Solana RPC, roster export)
    - Python logging (bridged to Logfire)

    Without a token observability is disabled and everything runs normally.
    """
    if not settings.logfire_token:
        logger.warning("Logfire token not set - observability disabled")
        return

    try:
        logfire.configure(
            token=settings.logfire_token,
            service_name="wagerhall",
            service_version=__version__,
            environment="wagers" if settings.wager.enabled else "distribution",
        )

        logfire.instrument_httpx()

        root_logger = logging.getLogger()
        root_logger.addHandler(logfire.LogfireLoggingHandler())

        logger.info("✓ Logfire cloud tracking initialized")

    except Exception as e:
        logger.warning(f"Failed to initialize Logfire: {e}")
