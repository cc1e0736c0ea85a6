"""
UTXO Organism — Structured Logging

All logging via structlog. Every log entry carries a component: either the
one a service bound explicitly (e.g. "lineage_walker") or one derived from
the logger name ("organism.lineage.walker" -> "lineage.walker").
"""

from __future__ import annotations

import logging
import sys
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from structlog.typing import EventDict, WrappedLogger

    from organism.config import LoggingConfig

_ROOT_LOGGER = "organism"


def add_component(_: WrappedLogger, __: str, event_dict: EventDict) -> EventDict:
    """Default the component field from the logger name when none was bound."""
    if "component" not in event_dict:
        name = str(event_dict.get("logger") or "")
        prefix = f"{_ROOT_LOGGER}."
        event_dict["component"] = name[len(prefix):] if name.startswith(prefix) else (name or _ROOT_LOGGER)
    return event_dict


def setup_logging(config: LoggingConfig, *, network: str | None = None) -> None:
    """
    Configure structured logging for the process.

    When network is given it is bound as context on every entry, so logs
    from main and test ledgers stay distinguishable.
    """
    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        add_component,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    renderer: Any
    if config.format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    structlog.contextvars.clear_contextvars()
    if network:
        structlog.contextvars.bind_contextvars(network=network)

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, config.level.upper(), logging.INFO))

    # Ledger traffic is logged by the client itself
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)
