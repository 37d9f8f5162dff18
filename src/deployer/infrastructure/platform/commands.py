"""Subprocess execution for the build and platform CLIs."""

from __future__ import annotations

import asyncio
from pathlib import Path

import structlog

from deployer.domain.errors import CommandFailedError, ConfigurationError, StepTimeoutError


logger = structlog.get_logger(__name__)


class CommandRunner:
    """Runs an external command with a hard timeout."""

    async def run(
        self,
        *args: str,
        cwd: Path | str | None = None,
        timeout: float | None = None,
    ) -> str:
        """Run ``args`` and return combined stdout/stderr.

        Raises:
            CommandFailedError: non-zero exit status.
            StepTimeoutError: the command outlived ``timeout``; it is killed.
            ConfigurationError: the executable is not installed.
        """
        logger.debug("command_started", command=list(args), cwd=str(cwd) if cwd else None)
        try:
            proc = await asyncio.create_subprocess_exec(
                *args,
                cwd=str(cwd) if cwd else None,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except FileNotFoundError as exc:
            raise ConfigurationError(f"{args[0]} is not installed or not on PATH") from exc

        try:
            stdout, _ = await asyncio.wait_for(proc.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            raise StepTimeoutError(
                f"{' '.join(args)} timed out after {timeout}s"
            ) from None
        finally:
            if proc.returncode is None:
                proc.kill()
                await proc.wait()

        output = stdout.decode("utf-8", errors="replace") if stdout else ""
        if proc.returncode != 0:
            raise CommandFailedError(list(args), proc.returncode or -1, output)

        logger.debug("command_finished", command=args[0], returncode=proc.returncode)
        return output
