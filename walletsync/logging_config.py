"""
Structured logging configuration using structlog.

Produces JSON logs by default, human-readable colored logs at DEBUG level.
Every line carries the session identity bound by ``bind_session_context``.
"""

import logging
import sys
from typing import Optional

import structlog

from .config import settings

# Transport loggers that log every request or frame at INFO/DEBUG
NOISY_LOGGERS = ("httpcore", "httpx", "websockets")


def setup_logging(log_level: Optional[str] = None) -> None:
    """Configure structlog on top of the stdlib logging tree.

    Args:
        log_level: Override log level (default: from settings.log_level)
    """
    level = getattr(logging, (log_level or settings.log_level).upper(), logging.INFO)
    is_dev = level == logging.DEBUG

    # merge_contextvars first so wallet/chain_id/generation land on stdlib records too
    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if is_dev:
        # Interactive CLI runs: colored console output
        renderer = structlog.dev.ConsoleRenderer()
    else:
        # Long-running sync: JSON lines
        shared_processors.append(structlog.processors.format_exc_info)
        renderer = structlog.processors.JSONRenderer()

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    # The engine logs through logging.getLogger(__name__); foreign_pre_chain
    # gives those records the same context and timestamps as structlog calls
    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    # Block polling and receipt polling would otherwise flood the output
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def bind_session_context(address: Optional[str], chain_id: Optional[int], generation: int) -> None:
    """Attach the current session identity to every subsequent log line.

    Called on every generation change, so the previous session's identity is
    cleared rather than merged.
    """
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(
        wallet=address,
        chain_id=chain_id,
        generation=generation,
    )
