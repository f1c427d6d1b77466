"""
Prometheus Metrics for tts-relay.

Metrics Exposed:
    relay_requests_total              - Submissions by outcome (accepted / rejection reason)
    relay_speak_total                 - Completed dispatches by engine used and status
    relay_engine_attempts_total       - Engine attempts by engine and outcome
    relay_engine_failures_total       - Engine failures by engine and error kind
    relay_speak_duration_seconds      - Histogram of dispatch latency (all attempts)
    relay_queue_depth                 - Gauge of pending queue items
    relay_queue_events_total          - Queue lifecycle events (played, failed, skipped, cleared)
    relay_engine_available            - Gauge per engine (1 available, 0 not)

Usage:
    from tts_relay.core.metrics import metrics

    metrics.record_submission("accepted")
    metrics.record_attempt("speechify", "failed", kind="quota")
    metrics.set_queue_depth(4)

    content, content_type = metrics.get_metrics_response()
"""
from __future__ import annotations

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)


class RelayMetrics:
    """
    Metric collection for the relay, on a private CollectorRegistry.

    The global 'metrics' instance is shared across the application; tests
    can create their own instance to read isolated values.
    """

    def __init__(self):
        self._registry = CollectorRegistry()

        self._requests_total = Counter(
            "relay_requests_total",
            "Speech submissions by outcome",
            ["outcome"],
            registry=self._registry,
        )
        self._speak_total = Counter(
            "relay_speak_total",
            "Dispatch results by engine used",
            ["engine", "status"],
            registry=self._registry,
        )
        self._attempts_total = Counter(
            "relay_engine_attempts_total",
            "Engine attempts by outcome",
            ["engine", "outcome"],
            registry=self._registry,
        )
        self._failures_total = Counter(
            "relay_engine_failures_total",
            "Engine failures by error kind",
            ["engine", "kind"],
            registry=self._registry,
        )
        self._speak_duration = Histogram(
            "relay_speak_duration_seconds",
            "Dispatch duration in seconds, including fallbacks",
            buckets=(0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 20.0, 40.0, 80.0),
            registry=self._registry,
        )
        self._queue_depth = Gauge(
            "relay_queue_depth",
            "Pending queue items",
            registry=self._registry,
        )
        self._queue_events = Counter(
            "relay_queue_events_total",
            "Queue lifecycle events",
            ["event"],
            registry=self._registry,
        )
        self._engine_available = Gauge(
            "relay_engine_available",
            "Whether an engine is available (1) or not (0)",
            ["engine"],
            registry=self._registry,
        )

    @property
    def registry(self) -> CollectorRegistry:
        return self._registry

    def record_submission(self, outcome: str) -> None:
        """Record a submission outcome ("accepted" or a rejection reason)."""
        self._requests_total.labels(outcome=outcome).inc()

    def record_speak(self, engine: str, status: str, duration: float) -> None:
        """Record a finished dispatch ("success" or "failed")."""
        self._speak_total.labels(engine=engine, status=status).inc()
        self._speak_duration.observe(duration)

    def record_attempt(self, engine: str, outcome: str, kind: str | None = None) -> None:
        """Record one engine attempt; failures also count by error kind."""
        self._attempts_total.labels(engine=engine, outcome=outcome).inc()
        if kind is not None:
            self._failures_total.labels(engine=engine, kind=kind).inc()

    def set_queue_depth(self, depth: int) -> None:
        self._queue_depth.set(depth)

    def record_queue_event(self, event: str, count: int = 1) -> None:
        if count > 0:
            self._queue_events.labels(event=event).inc(count)

    def set_engine_available(self, engine: str, available: bool) -> None:
        self._engine_available.labels(engine=engine).set(1 if available else 0)

    def get_metrics_response(self) -> tuple[bytes, str]:
        """
        Get metrics in Prometheus text format.

        Returns:
            Tuple of (content_bytes, content_type)
        """
        return generate_latest(self._registry), CONTENT_TYPE_LATEST


# Global singleton metrics instance
metrics = RelayMetrics()
