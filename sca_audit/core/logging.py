"""Logging for the CLI — structlog events rendered through stdlib handlers.

Everything goes to stderr: stdout is reserved for ``--json`` results.
"""

from __future__ import annotations

import logging
import logging.config
import os
import sys
from typing import Any

import structlog

LEVEL_ENV = "SCA_AUDIT_LOG_LEVEL"
FORMAT_ENV = "SCA_AUDIT_LOG_FORMAT"

# Third-party loggers that are noisy at INFO (one line per HTTP request).
_QUIET_LOGGERS = ("httpx", "httpcore")


def _pre_chain(log_format: str) -> list[structlog.types.Processor]:
    timestamper = (
        structlog.processors.TimeStamper(fmt="iso", utc=True)
        if log_format == "json"
        else structlog.processors.TimeStamper(fmt="%H:%M:%S")
    )
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        timestamper,
        structlog.processors.format_exc_info,
    ]


def _renderer(log_format: str) -> structlog.types.Processor:
    if log_format == "json":
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())


def _stdlib_config(level: str, pre_chain: list, renderer: structlog.types.Processor) -> dict[str, Any]:
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "sca_audit": {
                "()": structlog.stdlib.ProcessorFormatter,
                "foreign_pre_chain": pre_chain,
                "processors": [
                    structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                    renderer,
                ],
            },
        },
        "handlers": {
            "stderr": {
                "class": "logging.StreamHandler",
                "stream": "ext://sys.stderr",
                "formatter": "sca_audit",
            },
        },
        "root": {"handlers": ["stderr"], "level": "WARNING"},
        "loggers": {
            "sca_audit": {"level": level},
            **{name: {"level": "WARNING"} for name in _QUIET_LOGGERS},
        },
    }


def setup_logging(verbose: bool = False) -> None:
    """Configure structlog and stdlib logging for one CLI run.

    Environment:
        SCA_AUDIT_LOG_LEVEL  — level of the ``sca_audit`` loggers
                               (default: INFO, DEBUG with ``--verbose``)
        SCA_AUDIT_LOG_FORMAT — console | json (default: console)
    """
    level = os.environ.get(LEVEL_ENV) or ("DEBUG" if verbose else "INFO")
    log_format = os.environ.get(FORMAT_ENV, "console").lower()
    pre_chain = _pre_chain(log_format)

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
    logging.config.dictConfig(_stdlib_config(level.upper(), pre_chain, _renderer(log_format)))


def is_debug_enabled(name: str = "sca_audit") -> bool:
    """True when *name* (and so its children) would emit DEBUG records."""
    return logging.getLogger(name).isEnabledFor(logging.DEBUG)
