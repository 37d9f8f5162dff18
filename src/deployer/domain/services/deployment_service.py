"""Domain service driving a deployment run through its pipeline."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from enum import Enum
from functools import partial
from typing import TypeVar

import structlog

from deployer.config import Settings
from deployer.domain.errors import (
    CircuitOpenError,
    classify,
    ConfigurationError,
    ErrorKind,
    HealthCheckFailedError,
    LockHeldError,
    StepTimeoutError,
)
from deployer.domain.models.deployment import DeploymentRequest, DeploymentRun, RunStatus
from deployer.domain.ports.services import (
    ArtifactBuilder,
    AuditLog,
    DeploymentTarget,
    HealthProbe,
    Monitor,
    PostDeployTask,
)
from deployer.domain.services.circuit_breaker import CircuitBreaker
from deployer.domain.services.lock_manager import LockManager
from deployer.domain.services.releases import ReleaseLedger
from deployer.domain.services.retry import retry, Sleep
from deployer.infrastructure.observability.audit import default_actor
from deployer.infrastructure.observability.logging import log_fatal, track_performance
from deployer.infrastructure.observability.metrics import (
    ACTIVE_RUNS,
    DEPLOYMENT_DURATION,
    DEPLOYMENTS_TOTAL,
)
from deployer.infrastructure.observability.tracing import get_tracer


logger = structlog.get_logger(__name__)

T = TypeVar("T")

BUILD_DEPENDENCY = "build-registry"


class PipelineStep(str, Enum):
    """Units of work the orchestrator dispatches in order."""

    VALIDATE = "validate"
    BUILD = "build"
    DEPLOY = "deploy"
    HEALTH_CHECK = "health_check"
    POST_TASKS = "post_tasks"


FULL_PIPELINE: tuple[PipelineStep, ...] = (
    PipelineStep.VALIDATE,
    PipelineStep.BUILD,
    PipelineStep.DEPLOY,
    PipelineStep.HEALTH_CHECK,
    PipelineStep.POST_TASKS,
)
DRY_RUN_PIPELINE: tuple[PipelineStep, ...] = (PipelineStep.VALIDATE,)

_ALERT_SEVERITY = {
    RunStatus.SUCCEEDED: "INFO",
    RunStatus.ROLLED_BACK: "ERROR",
    RunStatus.FAILED: "ERROR",
}


class DeploymentOrchestrator:
    """Runs one deployment request end to end.

    The scope lock is held for the whole run and released on every exit
    path. Steps run strictly in sequence; build, deploy, health check and
    rollback go through the retry engine with a hard timeout per attempt.
    A failure once the deploy step has begun triggers exactly one rollback.
    Every terminal state is audited, measured and alerted on.
    """

    def __init__(
        self,
        settings: Settings,
        locks: LockManager,
        releases: ReleaseLedger,
        builder: ArtifactBuilder,
        target: DeploymentTarget,
        probe: HealthProbe,
        audit: AuditLog,
        monitor: Monitor,
        breaker: CircuitBreaker | None = None,
        post_tasks: Sequence[PostDeployTask] = (),
        sleep: Sleep = asyncio.sleep,
        actor: str | None = None,
    ) -> None:
        self._deployment = settings.deployment
        self._retry = settings.retry
        self._monitoring_timeout = settings.monitoring.timeout_seconds
        self._locks = locks
        self._releases = releases
        self._builder = builder
        self._target = target
        self._probe = probe
        self._audit = audit
        self._monitor = monitor
        self._breaker = breaker
        self._post_tasks = list(post_tasks)
        self._sleep = sleep
        self._actor = actor or default_actor()
        self._tracer = get_tracer(__name__)
        self._handlers: dict[PipelineStep, Callable[[DeploymentRun], Awaitable[None]]] = {
            PipelineStep.VALIDATE: self._validate,
            PipelineStep.BUILD: self._build,
            PipelineStep.DEPLOY: self._deploy,
            PipelineStep.HEALTH_CHECK: self._health_check,
            PipelineStep.POST_TASKS: self._run_post_tasks,
        }

    async def run(self, request: DeploymentRequest) -> DeploymentRun:
        """Execute the pipeline for ``request`` and return the finished run.

        Raises:
            SystemExit: with code 7 when the rollback itself failed, after
                the lock has been released and the outcome reported.
            asyncio.CancelledError: re-raised after cleanup when the run was
                interrupted.
        """
        run = DeploymentRun(request=request)
        cancelled: asyncio.CancelledError | None = None

        with structlog.contextvars.bound_contextvars(
            run_id=run.id,
            environment=request.environment.value,
            version=request.version,
        ):
            logger.info("deployment_started", dry_run=request.dry_run)
            ACTIVE_RUNS.inc()
            try:
                async with self._locks.hold(request.scope_key):
                    run.lock_acquired()
                    await self._execute(run)
            except LockHeldError as exc:
                run.fail(exc.kind, str(exc))
            except asyncio.CancelledError as exc:
                cancelled = exc
                if not run.is_terminal:
                    run.fail(ErrorKind.GENERIC_FAILURE, "deployment interrupted")
            except Exception as exc:
                # Lock acquire/release could not reach the state store
                logger.error("lock_operation_failed", error=str(exc) or type(exc).__name__)
                if not run.is_terminal:
                    run.fail(classify(exc), str(exc) or type(exc).__name__)
            finally:
                ACTIVE_RUNS.dec()

            await self._conclude(run)

            if run.error_kind == ErrorKind.ROLLBACK_FAILED:
                log_fatal(
                    logger,
                    "rollback_failed",
                    exit_code=ErrorKind.ROLLBACK_FAILED.exit_code,
                    error=run.error_message,
                    previous_version=run.previous_version,
                )
        if cancelled is not None:
            raise cancelled
        return run

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    async def _execute(self, run: DeploymentRun) -> None:
        pipeline = DRY_RUN_PIPELINE if run.request.dry_run else FULL_PIPELINE
        try:
            for step in pipeline:
                await self._run_step(step, run)
        except asyncio.CancelledError:
            logger.warning("deployment_interrupted", step=run.current_step.value)
            await self._handle_failure(run, ErrorKind.GENERIC_FAILURE, "deployment interrupted")
            raise
        except Exception as exc:
            await self._handle_failure(run, classify(exc), str(exc))
            return

        if run.request.dry_run:
            for action in self._target.describe(run.request):
                logger.info("dry_run_action", action=action)
        run.succeed()

    async def _run_step(self, step: PipelineStep, run: DeploymentRun) -> None:
        handler = self._handlers[step]
        logger.info("step_started", step=step.value)
        with self._tracer.start_as_current_span(f"pipeline.{step.value}") as span:
            span.set_attribute("deployment.environment", run.request.environment.value)
            span.set_attribute("deployment.version", run.request.version)
            with track_performance(step.value):
                await handler(run)
        logger.info("step_completed", step=step.value)

    async def _validate(self, run: DeploymentRun) -> None:
        descriptors = self._deployment.descriptor_dir / run.request.environment.value
        if not descriptors.is_dir():
            raise ConfigurationError(f"Deployment descriptors not found: {descriptors}")
        if not any(path.is_file() for path in descriptors.iterdir()):
            raise ConfigurationError(f"Deployment descriptor directory is empty: {descriptors}")
        run.validated()

    async def _build(self, run: DeploymentRun) -> None:
        attempt = partial(
            self._bounded,
            partial(self._builder.build, run.request),
            self._deployment.build_timeout_seconds,
            "build",
        )
        artifact = await retry(
            self._retry.build_policy,
            partial(self._guarded, BUILD_DEPENDENCY, attempt),
            name="build",
            sleep=self._sleep,
            abort_on=(CircuitOpenError,),
        )
        logger.info("artifact_built", reference=artifact.reference)
        run.built(artifact)

    async def _deploy(self, run: DeploymentRun) -> None:
        environment = run.request.environment
        artifact = run.artifact
        if artifact is None:
            raise ConfigurationError("No artifact to deploy")

        current = await self._releases.current(environment)
        run.begin_deploy(current.version if current else None)
        logger.info("deploy_started", previous_version=run.previous_version)

        await retry(
            self._retry.deploy_policy,
            partial(
                self._bounded,
                partial(self._target.apply, environment, artifact),
                self._deployment.deploy_timeout_seconds,
                "deploy",
            ),
            name="deploy",
            sleep=self._sleep,
        )
        run.deployed()

    async def _health_check(self, run: DeploymentRun) -> None:
        environment = run.request.environment

        async def probe() -> None:
            try:
                healthy = await self._bounded(
                    partial(self._probe.check, environment),
                    self._deployment.health_timeout_seconds,
                    "health_check",
                )
            except StepTimeoutError:
                healthy = False
            if not healthy:
                raise HealthCheckFailedError(f"{environment.value} did not report healthy")

        await retry(self._retry.health_policy, probe, name="health_check", sleep=self._sleep)
        run.healthy()

    async def _run_post_tasks(self, run: DeploymentRun) -> None:
        for task in self._post_tasks:
            try:
                await task.run(run)
            except Exception as exc:
                logger.warning("post_task_failed", task=task.name, error=str(exc))
        run.post_tasks_done()

    # ------------------------------------------------------------------
    # Failure handling
    # ------------------------------------------------------------------

    async def _handle_failure(self, run: DeploymentRun, kind: ErrorKind, message: str) -> None:
        logger.error(
            "step_failed",
            step=run.current_step.value,
            error_kind=kind.name,
            error=message,
        )
        if not run.deploy_started:
            run.fail(kind, message)
            return

        run.start_rollback(kind, message)
        try:
            await self._rollback(run)
        except Exception as exc:
            logger.error("rollback_attempt_failed", error=str(exc))
            run.fail_rollback(str(exc))
        else:
            run.complete_rollback()

    async def _rollback(self, run: DeploymentRun) -> None:
        environment = run.request.environment
        logger.warning("rollback_started", previous_version=run.previous_version)
        with self._tracer.start_as_current_span("pipeline.rollback"), track_performance("rollback"):
            await retry(
                self._retry.rollback_policy,
                partial(
                    self._bounded,
                    partial(self._target.rollback, environment, run.previous_version),
                    self._deployment.rollback_timeout_seconds,
                    "rollback",
                ),
                name="rollback",
                sleep=self._sleep,
            )
        logger.info("rollback_completed", previous_version=run.previous_version)

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    async def _conclude(self, run: DeploymentRun) -> None:
        request = run.request
        duration = run.duration_seconds
        fields = {
            "status": run.status.value,
            "step": run.current_step.value,
            "exit_code": run.exit_code,
            "duration_seconds": round(duration, 3),
        }
        if run.status == RunStatus.SUCCEEDED:
            logger.info("deployment_finished", **fields)
        else:
            logger.error(
                "deployment_finished",
                error_kind=run.error_kind.name,
                error=run.error_message,
                **fields,
            )

        await self._audit.record(
            self._actor,
            "dry-run" if request.dry_run else "deploy",
            f"{request.environment.value}:{request.version}",
            run.status.value,
            run_id=run.id,
            exit_code=run.exit_code,
            error=run.error_message or None,
        )

        DEPLOYMENTS_TOTAL.labels(
            status=run.status.value, environment=request.environment.value
        ).inc()
        DEPLOYMENT_DURATION.labels(environment=request.environment.value).observe(duration)

        if run.error_kind == ErrorKind.ROLLBACK_FAILED:
            severity = "FATAL"
        else:
            severity = _ALERT_SEVERITY.get(run.status, "ERROR")
        message = (
            f"{request.version} on {request.environment.value}: {run.status.value}"
            + (f" ({run.error_kind.name}: {run.error_message})" if run.error_message else "")
        )
        tags = {"environment": request.environment.value, "version": request.version}
        deliveries = asyncio.gather(
            self._monitor.send_metric("deployment.duration_seconds", duration, "gauge", tags),
            self._monitor.send_metric(
                "deployment.result",
                1.0 if run.status == RunStatus.SUCCEEDED else 0.0,
                "gauge",
                tags,
            ),
            self._monitor.send_alert(severity, message, component="deployer"),
            return_exceptions=True,
        )
        try:
            await asyncio.wait_for(deliveries, timeout=self._monitoring_timeout)
        except asyncio.TimeoutError:
            logger.debug(
                "monitoring_delivery_timed_out", timeout_seconds=self._monitoring_timeout
            )

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _guarded(self, dependency: str, operation: Callable[[], Awaitable[T]]) -> T:
        if self._breaker is None:
            return await operation()
        return await self._breaker.call(dependency, operation)

    @staticmethod
    async def _bounded(
        operation: Callable[[], Awaitable[T]], timeout_seconds: float, step: str
    ) -> T:
        try:
            return await asyncio.wait_for(operation(), timeout=timeout_seconds)
        except asyncio.TimeoutError as exc:
            raise StepTimeoutError(f"{step} exceeded {timeout_seconds:g}s") from exc
