"""Metrics collector for the rotation service and outbox relay."""

import logging
from dataclasses import dataclass

from prometheus_client import Counter, Histogram

logger = logging.getLogger(__name__)

# Prometheus metrics - module level for shared registry
_OUTBOX_PUBLISHED = Counter(
    "coffee_outbox_events_published_total",
    "Total number of outbox events published to the bus",
    ["subject"],
)
_OUTBOX_FAILED = Counter(
    "coffee_outbox_publish_failures_total",
    "Total number of failed outbox publish attempts",
    ["subject"],
)
_OUTBOX_POISONED = Counter(
    "coffee_outbox_events_poisoned_total",
    "Total number of outbox events that exhausted their retries",
    ["subject"],
)
_OUTBOX_SKIPPED_CYCLES = Counter(
    "coffee_outbox_skipped_cycles_total",
    "Total number of dispatch cycles skipped because the bus was down",
)
_OUTBOX_CLEANED_UP = Counter(
    "coffee_outbox_events_cleaned_up_total",
    "Total number of processed outbox events deleted",
)
_ROTATIONS = Counter(
    "coffee_rotation_decisions_total",
    "Total number of next-payer decisions",
    ["operation"],
)
_ROUND_RESETS = Counter(
    "coffee_rotation_round_resets_total",
    "Total number of rotation rounds started over",
)
_DRAIN_DURATION = Histogram(
    "coffee_outbox_drain_duration_seconds",
    "Duration of one outbox dispatch cycle",
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)


@dataclass(slots=True)
class MetricsCollector:
    """Collector for service metrics.

    Counters are exposed through the default Prometheus registry; notable
    events are also logged with structured fields.
    """

    def record_event_published(self, subject: str) -> None:
        """Record a successful outbox publish."""
        _OUTBOX_PUBLISHED.labels(subject=subject).inc()

    def record_publish_failed(
        self, subject: str, event_id: str, retry_count: int, max_retries: int
    ) -> None:
        """Record a failed outbox publish attempt."""
        _OUTBOX_FAILED.labels(subject=subject).inc()
        if retry_count >= max_retries:
            _OUTBOX_POISONED.labels(subject=subject).inc()
            logger.error(
                "Metric: Outbox event exhausted retries",
                extra={
                    "metric_type": "outbox_poisoned",
                    "event_id": event_id,
                    "subject": subject,
                    "retry_count": retry_count,
                },
            )

    def record_cycle_skipped(self) -> None:
        """Record a dispatch cycle skipped for bus unavailability."""
        _OUTBOX_SKIPPED_CYCLES.inc()

    def record_cleanup(self, deleted: int) -> None:
        """Record processed events removed by cleanup."""
        _OUTBOX_CLEANED_UP.inc(deleted)

    def record_drain_duration(self, seconds: float) -> None:
        """Record how long a dispatch cycle took."""
        _DRAIN_DURATION.observe(seconds)

    def record_rotation(
        self, operation: str, group_name: str, round_reset: bool
    ) -> None:
        """Record a next-payer decision."""
        _ROTATIONS.labels(operation=operation).inc()
        if round_reset:
            _ROUND_RESETS.inc()
        logger.info(
            "Metric: Rotation decision",
            extra={
                "metric_type": "rotation",
                "operation": operation,
                "group_name": group_name,
                "round_reset": round_reset,
            },
        )
