"""Prometheus metrics configuration."""

from __future__ import annotations

from prometheus_client import (
    Counter,
    Gauge,
    Histogram,
    Info,
)

from deployer import __version__


# Application info
APP_INFO = Info("deployer", "Deployment orchestrator build info")
APP_INFO.info({
    "version": __version__,
    "service": "resilient-deployer",
})

# Run metrics
DEPLOYMENTS_TOTAL = Counter(
    "deployer_deployments_total",
    "Total number of finished deployment runs",
    ["status", "environment"],
)

DEPLOYMENT_DURATION = Histogram(
    "deployer_deployment_duration_seconds",
    "Wall-clock duration of a deployment run",
    ["environment"],
    buckets=[10, 30, 60, 120, 300, 600, 1800],
)

OPERATION_DURATION = Histogram(
    "deployer_operation_duration_seconds",
    "Duration of individual pipeline operations",
    ["operation", "status"],
    buckets=[0.1, 0.5, 1, 5, 10, 30, 60, 120, 300],
)

# Resilience metrics
RETRY_ATTEMPTS = Counter(
    "deployer_retry_attempts_total",
    "Attempts made by the retry engine",
    ["operation", "outcome"],  # outcome: success/failure
)

CIRCUIT_TRANSITIONS = Counter(
    "deployer_circuit_transitions_total",
    "Circuit breaker state transitions",
    ["dependency", "state"],
)

CIRCUIT_REJECTIONS = Counter(
    "deployer_circuit_rejections_total",
    "Calls rejected by an open circuit",
    ["dependency"],
)

LOCK_OPERATIONS = Counter(
    "deployer_lock_operations_total",
    "Total scope lock operations",
    ["operation", "result"],  # operation: acquire/release/reclaim, result: success/failure
)

ACTIVE_RUNS = Gauge(
    "deployer_active_runs",
    "Deployment runs in progress in this process",
)
