from __future__ import annotations

import logging
import sys
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import TextIO

import structlog
from structlog.typing import EventDict, Processor

from backend.app.config import AppSettings

ROOT_LOGGER_NAME = "link_shelf"
TELEMETRY_LOGGER_NAME = f"{ROOT_LOGGER_NAME}.telemetry"
LOG_FILE_NAME = "link-shelf.log"
TELEMETRY_LOG_FILE_NAME = "link-shelf-telemetry.log"

_TIMESTAMPER = structlog.processors.TimeStamper(fmt="iso", utc=True, key="timestamp")


@dataclass(frozen=True)
class LoggingPaths:
    log_file: Path
    telemetry_log_file: Path


@dataclass(frozen=True)
class _LoggerRoute:
    name: str
    level: int
    handlers: tuple[logging.Handler, ...]


def configure_application_logging(
    settings: AppSettings,
    *,
    console_stream: TextIO | None = None,
) -> LoggingPaths:
    """Route `link_shelf.*` to stdout plus a JSON file, and telemetry to its own file.

    Safe to call more than once; previously installed handlers are closed first.
    """
    settings.log_dir.mkdir(parents=True, exist_ok=True)
    paths = LoggingPaths(
        log_file=settings.log_dir / LOG_FILE_NAME,
        telemetry_log_file=settings.log_dir / TELEMETRY_LOG_FILE_NAME,
    )
    stream = console_stream if console_stream is not None else sys.stdout

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

    routes = (
        _LoggerRoute(
            name=ROOT_LOGGER_NAME,
            level=logging.DEBUG,
            handlers=(
                _console_handler(stream, level=resolve_log_level(settings.log_level)),
                _json_file_handler(paths.log_file, level=logging.DEBUG),
            ),
        ),
        _LoggerRoute(
            name=TELEMETRY_LOGGER_NAME,
            level=logging.INFO,
            handlers=(_json_file_handler(paths.telemetry_log_file, level=logging.INFO),),
        ),
    )
    for route in routes:
        _install(route)

    logging.getLogger(ROOT_LOGGER_NAME).info(
        "logging configured console_level=%s path=%s telemetry_path=%s",
        logging.getLevelName(resolve_log_level(settings.log_level)),
        paths.log_file,
        paths.telemetry_log_file,
    )
    return paths


def resolve_log_level(raw_level: str) -> int:
    return logging.getLevelNamesMapping().get(raw_level.strip().upper(), logging.INFO)


def _install(route: _LoggerRoute) -> None:
    logger = logging.getLogger(route.name)
    for stale in list(logger.handlers):
        logger.removeHandler(stale)
        stale.close()
    logger.setLevel(route.level)
    # Each route writes only to its own handlers.
    logger.propagate = False
    for handler in route.handlers:
        logger.addHandler(handler)


def _console_handler(stream: TextIO, *, level: int) -> logging.Handler:
    handler = logging.StreamHandler(stream=stream)
    handler.setLevel(level)
    handler.setFormatter(
        _formatter(structlog.dev.ConsoleRenderer(colors=_stream_supports_color(stream)))
    )
    return handler


def _json_file_handler(path: Path, *, level: int) -> logging.Handler:
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(
        _formatter(
            structlog.processors.JSONRenderer(sort_keys=True),
            before=(_add_source_location,),
            after_meta=(structlog.processors.format_exc_info,),
        )
    )
    return handler


def _formatter(
    renderer: Processor,
    *,
    before: Sequence[Processor] = (),
    after_meta: Sequence[Processor] = (),
) -> structlog.stdlib.ProcessorFormatter:
    return structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            _TIMESTAMPER,
        ],
        processors=[
            *before,
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            *after_meta,
            renderer,
        ],
    )


def _add_source_location(
    _logger: logging.Logger,
    _method_name: str,
    event_dict: EventDict,
) -> EventDict:
    record = event_dict.get("_record")
    if not isinstance(record, logging.LogRecord):
        return event_dict
    event_dict.update(
        module=record.module,
        lineno=record.lineno,
        func_name=record.funcName,
        thread_name=record.threadName,
    )
    return event_dict


def _stream_supports_color(stream: object) -> bool:
    isatty = getattr(stream, "isatty", None)
    if not callable(isatty):
        return False
    try:
        return isatty() is True
    except Exception:
        return False
