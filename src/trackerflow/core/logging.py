# src/trackerflow/core/logging.py
"""Structured logging configuration for trackerflow.

Library modules log through ``structlog.get_logger(__name__)`` and never
configure output themselves. The CLI calls configure_logging() once per
invocation and wraps each command in command_context() so every event
carries the command name and the tracker, grid or function it works on.

stdlib records (httpx, httpcore) are routed through the same processor
chain via ProcessorFormatter, and all output goes to stderr so command
results on stdout stay machine-readable.
"""

import logging
import re
import sys
from collections.abc import Iterator, MutableMapping
from contextlib import contextmanager
from typing import Any

import structlog
from structlog.stdlib import ProcessorFormatter

# Third-party loggers that emit per-request connection details at DEBUG.
_NOISY_LOGGERS: tuple[str, ...] = (
    "httpx",
    "httpcore",
    "asyncio",
)

REDACTED = "<redacted>"

# Event keys whose values are credentials: secret values resolved for
# connector auth must never reach a log line
_SECRET_KEY_PATTERN = re.compile(r"(^|_)(secret|token|password|authorization|api_key)$")


def redact_secrets(
    logger: Any,
    method_name: str,
    event_dict: MutableMapping[str, Any],
) -> MutableMapping[str, Any]:
    """Mask values logged under credential-looking keys.

    Keys ending in ``_id`` (e.g. ``secret_ref_id``) name a secret, not its
    value, and are kept.
    """
    for key in list(event_dict):
        if _SECRET_KEY_PATTERN.search(key.lower()):
            event_dict[key] = REDACTED
    return event_dict


def _remove_internal_fields(
    logger: Any,
    method_name: str,
    event_dict: MutableMapping[str, Any],
) -> MutableMapping[str, Any]:
    """Drop ProcessorFormatter bookkeeping (_record, _from_structlog)."""
    event_dict.pop("_record", None)
    event_dict.pop("_from_structlog", None)
    return event_dict


def configure_logging(
    *,
    json_output: bool = False,
    level: str = "INFO",
) -> None:
    """Configure structlog and stdlib logging.

    Args:
        json_output: If True, one JSON object per line. If False, console rendering.
        level: Log level (DEBUG, INFO, WARNING, ERROR).
    """
    log_level = getattr(logging, level.upper())

    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        redact_secrets,
    ]

    if json_output:
        final_processors: list[Any] = [
            _remove_internal_fields,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        final_processors = [
            _remove_internal_fields,
            structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()),
        ]

    structlog.configure(
        processors=[*shared_processors, ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        ProcessorFormatter(
            processors=final_processors,
            foreign_pre_chain=shared_processors,
        )
    )

    root = logging.getLogger()
    root.handlers = []
    root.addHandler(handler)
    root.setLevel(log_level)

    # Never make noisy loggers less restrictive than the configured root level
    noisy_level = max(log_level, logging.WARNING)
    for logger_name in _NOISY_LOGGERS:
        logging.getLogger(logger_name).setLevel(noisy_level)


@contextmanager
def command_context(command: str, **identifiers: Any) -> Iterator[None]:
    """Bind a CLI command and its subject ids to every event logged inside.

    None-valued identifiers are not bound, so optional options such as
    ``grid_id`` only appear when given.
    """
    bound = {key: value for key, value in identifiers.items() if value is not None}
    with structlog.contextvars.bound_contextvars(command=command, **bound):
        yield
