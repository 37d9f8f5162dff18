"""Audit trail written independently of the configured log level."""

from __future__ import annotations

import getpass
import socket
from pathlib import Path
from typing import Any

import structlog

from deployer.domain.ports.services import AuditLog
from deployer.infrastructure.observability.logging import log_file_path


def default_actor() -> str:
    """``user@host`` of the invoking operator."""
    try:
        user = getpass.getuser()
    except (KeyError, OSError):
        user = "unknown"
    return f"{user}@{socket.gethostname()}"


class _AuditFileWriter:
    """Appends rendered audit lines to the day's audit file."""

    def __init__(self, log_dir: Path | None) -> None:
        self._log_dir = log_dir
        if log_dir is not None:
            log_dir.mkdir(parents=True, exist_ok=True)

    def msg(self, message: str) -> None:
        if self._log_dir is None:
            return
        with open(log_file_path(self._log_dir, "audit"), "a", encoding="utf-8") as f:
            f.write(message + "\n")

    info = msg


class AuditTrail(AuditLog):
    """File-backed audit trail.

    Uses its own structlog pipeline so entries bypass level filtering and
    never reach the primary log streams.
    """

    def __init__(self, log_dir: Path | str | None) -> None:
        self._log_dir = Path(log_dir) if log_dir is not None else None
        self._logger = structlog.wrap_logger(
            _AuditFileWriter(self._log_dir),
            processors=[
                structlog.processors.TimeStamper(fmt="iso", utc=True),
                structlog.processors.JSONRenderer(default=str),
            ],
            wrapper_class=structlog.BoundLogger,
            context_class=dict,
        )

    async def record(
        self, actor: str, action: str, resource: str, result: str, **detail: Any
    ) -> None:
        self._logger.info(
            "audit",
            actor=actor,
            action=action,
            resource=resource,
            result=result,
            **detail,
        )

    @property
    def current_file(self) -> Path | None:
        if self._log_dir is None:
            return None
        return log_file_path(self._log_dir, "audit")
