"""Prometheus metrics for the delivery workers."""

from prometheus_client import CollectorRegistry, Counter, Histogram


class ReminderMetrics:
    """Worker counters and histograms bound to one registry.

    Built at process start and passed to the delivery worker; tests use a
    private ``CollectorRegistry``.
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        self.registry = registry or CollectorRegistry()
        self.jobs_processed = Counter(
            "reminder_jobs_processed_total",
            "Delivery job executions by channel and outcome",
            ["channel", "outcome"],
            registry=self.registry,
        )
        self.jobs_skipped = Counter(
            "reminder_jobs_skipped_total",
            "Delivery jobs skipped by a guard",
            ["channel", "reason"],
            registry=self.registry,
        )
        self.send_latency = Histogram(
            "reminder_send_latency_seconds",
            "Channel adapter send latency",
            ["channel"],
            buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
            registry=self.registry,
        )
        self.retries_exhausted = Counter(
            "reminder_retries_exhausted_total",
            "Plans canceled after the retry budget ran out",
            ["channel"],
            registry=self.registry,
        )

    def observe_send(self, channel: str, outcome: str, seconds: float) -> None:
        self.jobs_processed.labels(channel=channel, outcome=outcome).inc()
        self.send_latency.labels(channel=channel).observe(seconds)

    def observe_skip(self, channel: str, reason: str) -> None:
        self.jobs_processed.labels(channel=channel, outcome="skipped").inc()
        self.jobs_skipped.labels(channel=channel, reason=reason).inc()
