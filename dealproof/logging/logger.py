"""
Logger Implementation
=====================

structlog configuration for dealproof.

Private witness signals (card values, nonces, seeds, permutations) and raw
ceremony randomness must never reach a log sink. Every event passes through
``redact_private_inputs`` before rendering, whatever the output format.

Version: 0.1.0
"""

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

if TYPE_CHECKING:
    from structlog.stdlib import BoundLogger

REDACTED = "***REDACTED***"

# Private signal names (snake_case and wire form) and contribution components
PRIVATE_KEYS = frozenset(
    {
        "card_value",
        "cardvalue",
        "nonce",
        "card_nonce",
        "cardnonce",
        "deck_seed",
        "deckseed",
        "seed",
        "deck",
        "original_cards",
        "originalcards",
        "shuffled_cards",
        "shuffledcards",
        "permutation",
        "witness",
        "tau",
        "alpha",
        "beta",
        "gamma",
        "delta",
        "relation_specific",
        "relationspecific",
        "randomness",
        "secret",
    }
)


def redact_private_inputs(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Replace private values, including those nested in dicts, with a marker."""

    def redact(values: dict[str, Any]) -> dict[str, Any]:
        cleaned: dict[str, Any] = {}
        for key, value in values.items():
            if key.lower() in PRIVATE_KEYS:
                cleaned[key] = REDACTED
            elif isinstance(value, dict):
                cleaned[key] = redact(value)
            else:
                cleaned[key] = value
        return cleaned

    return redact(event_dict)


def _service_context(service_name: str) -> Processor:
    def add_service(
        logger: WrappedLogger,
        method_name: str,
        event_dict: EventDict,
    ) -> EventDict:
        event_dict.setdefault("service", service_name)
        return event_dict

    return add_service


def setup_logging(
    log_level: str = "INFO",
    json_logs: bool = False,
    service_name: str = "dealproof",
) -> None:
    """
    Route stdlib and structlog output through one handler.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_logs: JSON lines instead of the colored console renderer
        service_name: Value of the ``service`` key on every event
    """
    level = getattr(logging, log_level.upper())

    pre_chain: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        _service_context(service_name),
        redact_private_inputs,
        structlog.processors.StackInfoRenderer(),
    ]

    if json_logs:
        pre_chain.append(structlog.processors.format_exc_info)
        renderer: Processor = structlog.processors.JSONRenderer()
    else:
        pre_chain.append(structlog.dev.set_exc_info)
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=pre_chain,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                renderer,
            ],
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    logging.getLogger("asyncio").setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> "BoundLogger":
    """
    Get a structured logger.

    Example:
        logger = get_logger(__name__)
        logger.info("ceremony_initialized", ceremony_id="c-1", relation="dealVerify")
    """
    return structlog.stdlib.get_logger(name)


@contextmanager
def log_context(**kwargs: Any) -> Iterator[None]:
    """
    Bind context for every event logged inside the block.

    Bindings are restored on exit, so concurrent proofs in other tasks
    never see each other's game or ceremony ids.

    Example:
        with log_context(game_id="g1"):
            logger.info("proof_generated")  # includes game_id
    """
    with structlog.contextvars.bound_contextvars(**kwargs):
        yield
