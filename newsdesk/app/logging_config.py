from __future__ import annotations

import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import TextIO

import structlog
from structlog.typing import EventDict, Processor

from newsdesk.app.config import AppSettings

LOG_FILE_NAME = "newsdesk.log"
TELEMETRY_LOG_FILE_NAME = "newsdesk-telemetry.log"
APP_LOGGER_NAME = "newsdesk"
TELEMETRY_LOGGER_NAME = "newsdesk.telemetry"

# Connection-level loggers of the HTTP stack; capped at WARNING.
_QUIET_LOGGERS: tuple[str, ...] = ("urllib3", "multipart")


@dataclass(frozen=True)
class LoggingPaths:
    log_file: Path
    telemetry_log_file: Path


def configure_application_logging(settings: AppSettings) -> LoggingPaths:
    settings.log_dir.mkdir(parents=True, exist_ok=True)
    paths = LoggingPaths(
        log_file=settings.log_dir / LOG_FILE_NAME,
        telemetry_log_file=settings.log_dir / TELEMETRY_LOG_FILE_NAME,
    )

    _configure_structlog()

    console_handler = logging.StreamHandler(stream=sys.stdout)
    console_handler.setLevel(_resolve_log_level(settings.log_level))
    console_handler.setFormatter(_console_formatter(colors=_is_terminal(sys.stdout)))
    _install_handlers(
        APP_LOGGER_NAME,
        level=logging.DEBUG,
        handlers=[console_handler, _json_file_handler(paths.log_file, level=logging.DEBUG)],
    )
    # Telemetry stays out of the console and the main log file.
    _install_handlers(
        TELEMETRY_LOGGER_NAME,
        level=logging.INFO,
        handlers=[_json_file_handler(paths.telemetry_log_file, level=logging.INFO)],
    )
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger(APP_LOGGER_NAME).info(
        "logging configured console_level=%s path=%s telemetry_path=%s",
        settings.log_level.upper(),
        paths.log_file,
        paths.telemetry_log_file,
    )
    return paths


def _configure_structlog() -> None:
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


def _install_handlers(
    logger_name: str,
    *,
    level: int,
    handlers: list[logging.Handler],
) -> None:
    logger = logging.getLogger(logger_name)
    logger.setLevel(level)
    logger.propagate = False
    # Reconfiguring (tests, reloads) must not stack duplicate handlers.
    for existing in list(logger.handlers):
        logger.removeHandler(existing)
        existing.close()
    for handler in handlers:
        logger.addHandler(handler)


def _json_file_handler(path: Path, *, level: int) -> logging.Handler:
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=_shared_pre_chain(),
            processors=[
                _add_source_location,
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                structlog.processors.StackInfoRenderer(),
                structlog.processors.format_exc_info,
                structlog.processors.JSONRenderer(sort_keys=True),
            ],
        )
    )
    return handler


def _console_formatter(*, colors: bool) -> structlog.stdlib.ProcessorFormatter:
    return structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=_shared_pre_chain(),
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.dev.ConsoleRenderer(colors=colors),
        ],
    )


def _shared_pre_chain() -> list[Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True, key="timestamp"),
    ]


def _add_source_location(
    _logger: logging.Logger,
    _method_name: str,
    event_dict: EventDict,
) -> EventDict:
    record = event_dict.get("_record")
    if isinstance(record, logging.LogRecord):
        event_dict["module"] = record.module
        event_dict["lineno"] = record.lineno
        event_dict["thread_name"] = record.threadName
    return event_dict


def _resolve_log_level(raw_level: str) -> int:
    resolved = logging.getLevelName(raw_level.strip().upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def _is_terminal(stream: TextIO) -> bool:
    isatty = getattr(stream, "isatty", None)
    return bool(callable(isatty) and isatty())
