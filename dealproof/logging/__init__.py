"""
Logging Module
==============

Structured logging using structlog with JSON output for production
and colored console output for development.

Usage:
    from dealproof.logging import get_logger, log_context, setup_logging

    # Setup at application start
    setup_logging()

    logger = get_logger(__name__)

    with log_context(game_id="g1"):
        logger.info("proof_generated", relation="cardCommitment")
"""

from dealproof.logging.logger import (
    REDACTED,
    get_logger,
    log_context,
    redact_private_inputs,
    setup_logging,
)

__all__ = [
    "REDACTED",
    "get_logger",
    "log_context",
    "redact_private_inputs",
    "setup_logging",
]
