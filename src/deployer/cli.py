"""Typer CLI entry points: ``deployer`` and ``deployer-admin``."""

from __future__ import annotations

import asyncio
import signal
from typing import Annotated

import structlog
import typer
from rich.console import Console
from rich.table import Table

from deployer import __version__
from deployer.bootstrap import build_breaker, build_orchestrator
from deployer.config import get_settings, Settings
from deployer.domain.errors import DeploymentError, ErrorKind
from deployer.domain.models.deployment import (
    DeploymentRequest,
    DeploymentRun,
    scope_key_for,
    TargetEnvironment,
)
from deployer.domain.services.circuit_breaker import CircuitBreaker
from deployer.domain.services.deployment_service import DeploymentOrchestrator
from deployer.domain.services.lock_manager import LockManager
from deployer.domain.services.releases import ReleaseLedger
from deployer.infrastructure.observability.logging import flush_logs, setup_logging
from deployer.infrastructure.observability.tracing import setup_tracing
from deployer.infrastructure.persistence.file_store import FileStateStore


logger = structlog.get_logger(__name__)

console = Console()
err_console = Console(stderr=True)

CONTEXT_SETTINGS = {"help_option_names": ["-h", "--help"]}

app = typer.Typer(
    name="deployer",
    help="Deploy a versioned release to an environment with retries, locking and rollback.",
    context_settings=CONTEXT_SETTINGS,
    add_completion=False,
)
admin_app = typer.Typer(
    name="deployer-admin",
    help="Inspect and repair deployer state.",
    context_settings=CONTEXT_SETTINGS,
    add_completion=False,
    no_args_is_help=True,
)


# ---------------------------------------------------------------------------
# Version callback
# ---------------------------------------------------------------------------


def _version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"deployer {__version__}")
        raise typer.Exit


# ---------------------------------------------------------------------------
# deploy
# ---------------------------------------------------------------------------


@app.command()
def deploy(
    environment: Annotated[
        str,
        typer.Argument(help="Target environment: dev, staging or production."),
    ],
    version: Annotated[
        str,
        typer.Argument(help="Release version, e.g. v1.2.3."),
    ],
    debug: Annotated[
        bool,
        typer.Option("--debug", help="Log at DEBUG level."),
    ] = False,
    dry_run: Annotated[
        bool,
        typer.Option("--dry-run", help="Validate and print the planned actions only."),
    ] = False,
    show_version: Annotated[
        bool,
        typer.Option(
            "--version",
            "-v",
            help="Show version and exit.",
            callback=_version_callback,
            is_eager=True,
        ),
    ] = False,
) -> None:
    """Deploy VERSION to ENVIRONMENT."""
    try:
        request = DeploymentRequest.parse(environment, version, dry_run=dry_run, debug=debug)
        settings = get_settings()
    except DeploymentError as exc:
        setup_logging(console=True)
        logger.error("startup_failed", error_kind=exc.kind.name, error=str(exc))
        flush_logs()
        raise typer.Exit(code=exc.kind.exit_code) from exc

    setup_logging(
        log_level="DEBUG" if request.debug else settings.observability.log_level,
        log_dir=settings.observability.log_dir,
    )
    provider = setup_tracing(settings.observability)

    try:
        orchestrator = build_orchestrator(settings)
        run = asyncio.run(_run_until_signalled(orchestrator, request))
    except DeploymentError as exc:
        logger.error("startup_failed", error_kind=exc.kind.name, error=str(exc))
        raise typer.Exit(code=exc.kind.exit_code) from exc
    except asyncio.CancelledError as exc:
        logger.warning("deployment_cancelled")
        raise typer.Exit(code=ErrorKind.GENERIC_FAILURE.exit_code) from exc
    finally:
        if provider is not None:
            provider.shutdown()
        flush_logs()

    if request.dry_run and run.exit_code == 0:
        console.print(f"Dry run of {request.version} on {request.environment.value} passed validation")
    raise typer.Exit(code=run.exit_code)


async def _run_until_signalled(
    orchestrator: DeploymentOrchestrator, request: DeploymentRequest
) -> DeploymentRun:
    """Run the orchestrator, cancelling it on SIGINT or SIGTERM."""
    loop = asyncio.get_running_loop()
    task = asyncio.current_task()
    assert task is not None
    handled = (signal.SIGINT, signal.SIGTERM)
    for signum in handled:
        loop.add_signal_handler(signum, task.cancel)
    try:
        return await orchestrator.run(request)
    finally:
        for signum in handled:
            loop.remove_signal_handler(signum)


# ---------------------------------------------------------------------------
# deployer-admin
# ---------------------------------------------------------------------------


def _admin_settings() -> Settings:
    try:
        return get_settings()
    except DeploymentError as exc:
        err_console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=exc.kind.exit_code) from exc


@admin_app.command()
def status(
    environment: Annotated[
        TargetEnvironment,
        typer.Argument(help="Environment to inspect."),
    ],
) -> None:
    """Show the lock holder, current release and circuit states."""
    settings = _admin_settings()
    store = FileStateStore(settings.state.state_dir)
    locks = LockManager(store)
    breaker = build_breaker(settings, store)

    async def collect() -> tuple:
        lock = await locks.inspect(scope_key_for(environment))
        release = await ReleaseLedger(store).current(environment)
        prefix = CircuitBreaker.key("")
        circuits = [
            await breaker.state(key[len(prefix):])
            for key in await store.list_keys(prefix)
        ]
        return lock, release, circuits

    lock, release, circuits = asyncio.run(collect())

    table = Table(title=f"deployer state: {environment.value}")
    table.add_column("Item")
    table.add_column("Value")
    if lock is None:
        table.add_row("lock", "free")
    else:
        liveness = "live" if locks.is_live(lock) else "stale"
        table.add_row(
            "lock",
            f"pid {lock.owner_pid} on {lock.hostname or '?'} since "
            f"{lock.acquired_at.isoformat()} ({liveness})",
        )
    table.add_row("release", release.version if release else "none recorded")
    for circuit in circuits:
        table.add_row(
            f"circuit {circuit.dependency}",
            f"{circuit.state.value} (failures: {circuit.failure_count})",
        )
    console.print(table)


@admin_app.command()
def reset_breaker(
    name: Annotated[str, typer.Argument(help="Dependency name, e.g. build-registry.")],
) -> None:
    """Force a circuit breaker closed."""
    settings = _admin_settings()
    store = FileStateStore(settings.state.state_dir)
    asyncio.run(build_breaker(settings, store).reset(name))
    console.print(f"Circuit {name} reset to closed")
