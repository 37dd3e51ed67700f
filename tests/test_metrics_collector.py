"""Tests for metrics collector."""

from unittest.mock import patch

import pytest
from prometheus_client import REGISTRY

from coffee_rotation.metrics.collector import MetricsCollector


@pytest.fixture
def metrics_collector():
    """Create a metrics collector instance."""
    return MetricsCollector()


@pytest.fixture
def mock_logger():
    """Mock logger for testing."""
    with patch("coffee_rotation.metrics.collector.logger") as mock:
        yield mock


def _sample(name: str, **labels: str) -> float:
    return REGISTRY.get_sample_value(name, labels) or 0.0


class TestMetricsCollector:
    """Test metrics collector methods."""

    def test_record_event_published(self, metrics_collector) -> None:
        """Published counter grows per subject."""
        before = _sample(
            "coffee_outbox_events_published_total", subject="metrics-test"
        )

        metrics_collector.record_event_published("metrics-test")

        after = _sample("coffee_outbox_events_published_total", subject="metrics-test")
        assert after == before + 1

    def test_record_publish_failed_below_limit(
        self, metrics_collector, mock_logger
    ) -> None:
        """A retryable failure is counted but not reported as poisoned."""
        metrics_collector.record_publish_failed("metrics-test", "evt-1", 1, 5)

        mock_logger.error.assert_not_called()

    def test_record_publish_failed_exhausted(
        self, metrics_collector, mock_logger
    ) -> None:
        """Reaching the retry limit logs the poisoned event."""
        before = _sample(
            "coffee_outbox_events_poisoned_total", subject="metrics-poison"
        )

        metrics_collector.record_publish_failed("metrics-poison", "evt-2", 5, 5)

        mock_logger.error.assert_called_once()
        call_args = mock_logger.error.call_args
        assert call_args[0][0] == "Metric: Outbox event exhausted retries"
        assert call_args[1]["extra"]["metric_type"] == "outbox_poisoned"
        assert call_args[1]["extra"]["event_id"] == "evt-2"
        after = _sample("coffee_outbox_events_poisoned_total", subject="metrics-poison")
        assert after == before + 1

    def test_record_rotation(self, metrics_collector, mock_logger) -> None:
        """Rotation decisions are counted and logged."""
        before = _sample("coffee_rotation_round_resets_total")

        metrics_collector.record_rotation("skip", "office", True)

        call_args = mock_logger.info.call_args
        assert call_args[0][0] == "Metric: Rotation decision"
        assert call_args[1]["extra"]["operation"] == "skip"
        assert call_args[1]["extra"]["round_reset"] is True
        assert _sample("coffee_rotation_round_resets_total") == before + 1

    def test_record_cleanup_and_cycles(self, metrics_collector) -> None:
        """Cleanup and skipped cycle counters accumulate."""
        cleaned = _sample("coffee_outbox_events_cleaned_up_total")
        skipped = _sample("coffee_outbox_skipped_cycles_total")

        metrics_collector.record_cleanup(4)
        metrics_collector.record_cycle_skipped()
        metrics_collector.record_drain_duration(0.02)

        assert _sample("coffee_outbox_events_cleaned_up_total") == cleaned + 4
        assert _sample("coffee_outbox_skipped_cycles_total") == skipped + 1
