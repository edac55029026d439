"""structlog setup for the signal engine.

Records go to stdout as JSON lines (console rendering for local runs). Every
logger carries `component`; expiry timers add `trade_id` and `symbol`
through `log_context`.
"""

from __future__ import annotations

import logging
import sys
from contextlib import contextmanager
from typing import Any, Iterator, List

import structlog

# third-party loggers that are only interesting when debugging
_CHATTY = ("websockets", "asyncio", "uvicorn.access")


def _processors(json_output: bool) -> List[Any]:
    chain: List[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    chain.append(structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer(colors=False))
    return chain


def configure_logging(log_level: str = "INFO", *, json_output: bool = True) -> None:
    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level, force=True)
    for name in _CHATTY:
        logging.getLogger(name).setLevel(level if level <= logging.DEBUG else logging.WARNING)

    structlog.configure(
        processors=_processors(json_output),
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(component: str, **kwargs: Any) -> structlog.BoundLogger:
    return structlog.get_logger().bind(component=component, **kwargs)


@contextmanager
def log_context(**fields: Any) -> Iterator[None]:
    """Bind `fields` to every record emitted inside the block (contextvars)."""
    with structlog.contextvars.bound_contextvars(**fields):
        yield
