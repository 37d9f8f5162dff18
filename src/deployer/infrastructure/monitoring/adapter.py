"""Best-effort delivery of metrics and alerts to external systems.

Nothing in here may fail a deployment: every transport error is caught and
logged at DEBUG. A channel whose endpoint is not configured is skipped.
"""

from __future__ import annotations

import asyncio
import re
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from typing import Any

import httpx
import structlog
from prometheus_client import CollectorRegistry, Counter, Gauge, push_to_gateway

from deployer.config import MonitoringSettings
from deployer.domain.ports.services import Monitor


logger = structlog.get_logger(__name__)

_INVALID_METRIC_CHARS = re.compile(r"[^a-zA-Z0-9_:]")

SEVERITIES = ("INFO", "WARN", "ERROR", "FATAL")


def metric_name(name: str) -> str:
    """Prometheus-safe metric name (``deployment.duration`` -> ``deployment_duration``)."""
    return _INVALID_METRIC_CHARS.sub("_", name)


class MonitoringAdapter(Monitor):
    """Pushgateway metrics, chat webhook alerts and PagerDuty paging."""

    def __init__(
        self,
        settings: MonitoringSettings,
        client: httpx.AsyncClient | None = None,
        pusher: Callable[..., Any] = push_to_gateway,
    ) -> None:
        self._settings = settings
        self._client = client
        self._pusher = pusher

    async def send_metric(
        self,
        name: str,
        value: float,
        metric_type: str = "gauge",
        tags: dict[str, str] | None = None,
    ) -> None:
        gateway = self._settings.metrics_gateway_url
        if not gateway:
            logger.debug("metric_channel_disabled", metric=name)
            return

        labels = tags or {}
        try:
            registry = CollectorRegistry()
            if metric_type == "counter":
                counter = Counter(
                    metric_name(name), f"deployer {name}", list(labels), registry=registry
                )
                (counter.labels(**labels) if labels else counter).inc(value)
            else:
                gauge = Gauge(
                    metric_name(name), f"deployer {name}", list(labels), registry=registry
                )
                (gauge.labels(**labels) if labels else gauge).set(value)

            await asyncio.to_thread(
                self._pusher,
                gateway,
                job=self._settings.metrics_job,
                registry=registry,
                timeout=self._settings.timeout_seconds,
            )
            logger.debug("metric_sent", metric=name, value=value)
        except Exception as e:
            logger.debug("metric_delivery_failed", metric=name, error=str(e))

    async def send_alert(self, severity: str, message: str, component: str) -> None:
        severity = severity.upper()

        if self._settings.slack_webhook_url:
            await self._post(
                "chat",
                self._settings.slack_webhook_url,
                {"text": f"[{severity}] {component}: {message}"},
            )
        else:
            logger.debug("alert_channel_disabled", channel="chat", severity=severity)

        if severity != "FATAL":
            return

        if self._settings.pagerduty_routing_key:
            await self._post(
                "paging",
                self._settings.pagerduty_events_url,
                {
                    "routing_key": self._settings.pagerduty_routing_key,
                    "event_action": "trigger",
                    "payload": {
                        "summary": message[:1024],
                        "source": component,
                        "severity": "critical",
                        "component": component,
                    },
                },
            )
        else:
            logger.debug("alert_channel_disabled", channel="paging", severity=severity)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def _http(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._client is not None:
            yield self._client
            return
        async with httpx.AsyncClient(timeout=self._settings.timeout_seconds) as client:
            yield client

    async def _post(self, channel: str, url: str, payload: dict[str, Any]) -> None:
        try:
            async with self._http() as client:
                response = await client.post(
                    url, json=payload, timeout=self._settings.timeout_seconds
                )
                response.raise_for_status()
            logger.debug("alert_sent", channel=channel)
        except Exception as e:
            logger.debug("alert_delivery_failed", channel=channel, error=str(e))
