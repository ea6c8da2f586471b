from __future__ import annotations

import logging
import sys
from collections.abc import Sequence
from pathlib import Path

import structlog
from structlog.processors import CallsiteParameter
from structlog.typing import Processor

from tuberesolve.app.config import AppSettings

LOG_FILE_NAME = "tuberesolve.log"
ROOT_LOGGER_NAME = "tuberesolve"

# Passed via `extra=` on dispatch records; written as top-level JSON keys.
DISPATCH_RECORD_FIELDS = ("operation", "provider", "reason")

BASE_PRE_CHAIN: tuple[Processor, ...] = (
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.add_logger_name,
    structlog.stdlib.add_log_level,
    structlog.processors.TimeStamper(fmt="iso", utc=True, key="timestamp"),
)

FILE_PRE_CHAIN: tuple[Processor, ...] = (
    *BASE_PRE_CHAIN,
    structlog.stdlib.ExtraAdder(allow=DISPATCH_RECORD_FIELDS),
    structlog.processors.CallsiteParameterAdder(
        {CallsiteParameter.MODULE, CallsiteParameter.LINENO, CallsiteParameter.THREAD_NAME}
    ),
)


def configure_application_logging(settings: AppSettings, *, console: bool = True) -> Path:
    """
    Send everything under the ``tuberesolve`` logger to a JSON-lines file.

    The file always records DEBUG and up. With ``console`` set, a human readable
    copy at ``settings.log_level`` goes to stderr, so ``--json`` output on stdout
    stays parseable. Calling this again replaces the handlers from the last call.
    """
    settings.log_dir.mkdir(parents=True, exist_ok=True)
    log_file = settings.log_dir / LOG_FILE_NAME

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handlers: list[logging.Handler] = [
        _handler(
            logging.FileHandler(log_file, encoding="utf-8"),
            logging.DEBUG,
            pre_chain=FILE_PRE_CHAIN,
            processors=(
                structlog.processors.format_exc_info,
                structlog.processors.JSONRenderer(sort_keys=True),
            ),
        )
    ]
    if console:
        handlers.append(
            _handler(
                logging.StreamHandler(sys.stderr),
                _console_level(settings.log_level),
                pre_chain=BASE_PRE_CHAIN,
                processors=(structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()),),
            )
        )

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(logging.DEBUG)
    logger.propagate = False
    for stale in list(logger.handlers):
        logger.removeHandler(stale)
        stale.close()
    for handler in handlers:
        logger.addHandler(handler)

    logger.debug("logging configured console=%s path=%s", console, log_file)
    return log_file


def _handler(
    handler: logging.Handler,
    level: int,
    *,
    pre_chain: Sequence[Processor],
    processors: Sequence[Processor],
) -> logging.Handler:
    handler.setLevel(level)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=pre_chain,
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, *processors],
        )
    )
    return handler


def _console_level(raw_level: str) -> int:
    level = logging.getLevelName(raw_level.strip().upper())
    return level if isinstance(level, int) else logging.INFO
