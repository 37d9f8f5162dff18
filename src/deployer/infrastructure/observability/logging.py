"""Structured logging configuration.

Every entry goes through structlog and ends in ``DeploymentLogSink``, which
writes one JSON line per entry to a date-partitioned primary log, duplicates
ERROR and FATAL entries to an error-only log and mirrors the entry on the
console. Entries below the configured level are dropped by the filtering
bound logger before any processor runs.
"""

from __future__ import annotations

import json
import logging
import sys
import time
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, NoReturn, TextIO

import structlog

from deployer.infrastructure.observability.metrics import OPERATION_DURATION


LEVELS: dict[str, int] = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARN": logging.WARNING,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "FATAL": logging.CRITICAL,
    "CRITICAL": logging.CRITICAL,
}

# structlog method name -> level written to the log
_CANONICAL_LEVELS = {
    "debug": "DEBUG",
    "info": "INFO",
    "warn": "WARN",
    "warning": "WARN",
    "error": "ERROR",
    "exception": "ERROR",
    "critical": "FATAL",
    "fatal": "FATAL",
}

_ERROR_LEVELS = frozenset({"ERROR", "FATAL"})

_CONSOLE_LEVELS = {"WARN": "warning", "FATAL": "critical"}


def parse_level(log_level: str) -> int:
    """Resolve a level name, accepting WARN and FATAL aliases."""
    try:
        return LEVELS[log_level.upper()]
    except KeyError:
        msg = f"Invalid log level: {log_level!r}. Must be one of {sorted(LEVELS)}"
        raise ValueError(msg) from None


def canonical_level(
    _logger: Any, method_name: str, event_dict: structlog.types.EventDict
) -> structlog.types.EventDict:
    """Stamp the entry with DEBUG/INFO/WARN/ERROR/FATAL."""
    event_dict["level"] = _CANONICAL_LEVELS.get(method_name, method_name.upper())
    return event_dict


def log_file_path(log_dir: Path, stream: str, day: datetime | None = None) -> Path:
    """Path of the ``stream`` log for the given day (UTC)."""
    day = day or datetime.now(timezone.utc)
    return log_dir / f"{stream}-{day.strftime('%Y-%m-%d')}.log"


class DeploymentLogSink:
    """structlog logger that fans entries out to files and the console."""

    def __init__(self, log_dir: Path | None = None, console: TextIO | None = None) -> None:
        self._log_dir = log_dir
        self._console = console
        self._renderer = structlog.dev.ConsoleRenderer(
            colors=bool(console is not None and console.isatty()),
        )
        if log_dir is not None:
            log_dir.mkdir(parents=True, exist_ok=True)

    def msg(self, **event_dict: Any) -> None:
        level = event_dict.get("level", "INFO")
        if self._log_dir is not None:
            line = json.dumps(event_dict, default=str)
            self._append(log_file_path(self._log_dir, "deploy"), line)
            if level in _ERROR_LEVELS:
                self._append(log_file_path(self._log_dir, "errors"), line)
        if self._console is not None:
            console_dict = dict(event_dict)
            console_dict["level"] = _CONSOLE_LEVELS.get(level, level.lower())
            self._console.write(self._renderer(None, "", console_dict) + "\n")

    log = debug = info = warn = warning = error = exception = critical = fatal = msg

    def flush(self) -> None:
        if self._console is not None:
            self._console.flush()

    @staticmethod
    def _append(path: Path, line: str) -> None:
        with open(path, "a", encoding="utf-8") as f:
            f.write(line + "\n")


_sink: DeploymentLogSink | None = None


def setup_logging(
    log_level: str = "INFO",
    log_dir: Path | str | None = None,
    console: bool = True,
) -> DeploymentLogSink:
    """Configure structured logging with structlog."""
    numeric_level = parse_level(log_level)

    global _sink
    _sink = DeploymentLogSink(
        log_dir=Path(log_dir) if log_dir is not None else None,
        console=sys.stderr if console else None,
    )
    sink = _sink

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            canonical_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.format_exc_info,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.CallsiteParameterAdder(
                [
                    structlog.processors.CallsiteParameter.FILENAME,
                    structlog.processors.CallsiteParameter.FUNC_NAME,
                    structlog.processors.CallsiteParameter.LINENO,
                ],
            ),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        logger_factory=lambda *_args: sink,
        cache_logger_on_first_use=False,
    )

    # Third-party libraries log through the standard library
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=max(numeric_level, logging.WARNING),
        force=True,
    )
    return sink


def flush_logs() -> None:
    """Flush buffered console output."""
    if _sink is not None:
        _sink.flush()
    sys.stdout.flush()
    sys.stderr.flush()


def log_fatal(
    logger: Any, event: str, exit_code: int = 1, **fields: Any
) -> NoReturn:
    """Log a FATAL entry, flush, and terminate the process."""
    logger.critical(event, exit_code=int(exit_code), **fields)
    flush_logs()
    raise SystemExit(int(exit_code))


def log_performance(operation: str, duration_seconds: float, status: str) -> None:
    """Record how long an operation took."""
    structlog.get_logger("deployer.performance").info(
        "performance",
        operation=operation,
        duration_seconds=round(duration_seconds, 3),
        status=status,
    )
    OPERATION_DURATION.labels(operation=operation, status=status).observe(duration_seconds)


@contextmanager
def track_performance(operation: str) -> Iterator[None]:
    """Time the enclosed block and log it as success or failure."""
    started = time.monotonic()
    status = "failure"
    try:
        yield
        status = "success"
    finally:
        log_performance(operation, time.monotonic() - started, status)
