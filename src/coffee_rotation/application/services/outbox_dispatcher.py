"""Relay of committed outbox events to the message bus."""

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from coffee_rotation.application.ports import (
    MessagePublisher,
    OutboxRepository,
    TransactionManager,
)
from coffee_rotation.domain.entities import OutboxEvent
from coffee_rotation.infrastructure.db.session import with_optional_tx
from coffee_rotation.metrics.collector import MetricsCollector

logger = logging.getLogger(__name__)

MAX_ERROR_LENGTH = 500
UNKNOWN_ERROR = "Unknown error"


@dataclass(frozen=True)
class DrainResult:
    """Outcome of one dispatch cycle."""

    published: int = 0
    failed: int = 0
    skipped: bool = False


def describe_error(exc: BaseException) -> str:
    """Return the exception message bounded to the last_error column size."""

    message = str(exc) or UNKNOWN_ERROR
    return message[:MAX_ERROR_LENGTH]


@dataclass(slots=True)
class OutboxDispatcher:
    """Publish pending outbox events with at-least-once semantics.

    Each cycle claims a batch inside one transaction, publishes every event
    and records the outcome row by row. A failure of one event never stops
    the rest of the batch; its retry count grows until `max_retries`, after
    which the row stays in the table for inspection and is no longer picked.
    """

    outbox_repo: OutboxRepository
    publisher: MessagePublisher
    transaction_manager: Optional[TransactionManager] = None
    max_retries: int = 5
    batch_size: int = 100
    retention_days: int = 7
    metrics_collector: Optional[MetricsCollector] = None

    async def drain_batch(self) -> DrainResult:
        """Publish one batch of pending events."""

        if not await self.publisher.is_connected():
            logger.warning("Message bus unavailable, skipping outbox dispatch")
            if self.metrics_collector:
                self.metrics_collector.record_cycle_skipped()
            return DrainResult(skipped=True)

        started = time.monotonic()

        async def _run(session: object | None) -> DrainResult:
            events = await self.outbox_repo.get_pending_events(
                self.max_retries, limit=self.batch_size, session=session
            )
            published = failed = 0
            for event in events:
                if await self._dispatch_one(event, session):
                    published += 1
                else:
                    failed += 1
            return DrainResult(published=published, failed=failed)

        result = await with_optional_tx(self.transaction_manager, _run)
        if self.metrics_collector:
            self.metrics_collector.record_drain_duration(time.monotonic() - started)
        if result.published or result.failed:
            logger.info(
                "Outbox batch dispatched",
                extra={"published": result.published, "failed": result.failed},
            )
        return result

    async def _dispatch_one(self, event: OutboxEvent, session: object | None) -> bool:
        try:
            await self.publisher.publish(event.subject, event.payload.encode("utf-8"))
        except Exception as exc:
            retry_count = event.retry_count + 1
            error = describe_error(exc)
            await self.outbox_repo.mark_as_failed(
                event.event_id, error, retry_count, session=session
            )
            logger.warning(
                "Failed to publish outbox event",
                extra={
                    "event_id": str(event.event_id),
                    "subject": event.subject,
                    "retry_count": retry_count,
                    "error": error,
                },
            )
            if self.metrics_collector:
                self.metrics_collector.record_publish_failed(
                    event.subject, str(event.event_id), retry_count, self.max_retries
                )
            return False

        await self.outbox_repo.mark_as_published(
            event.event_id, datetime.now(timezone.utc), session=session
        )
        logger.debug(
            "Outbox event published",
            extra={"event_id": str(event.event_id), "subject": event.subject},
        )
        if self.metrics_collector:
            self.metrics_collector.record_event_published(event.subject)
        return True

    async def cleanup(self, now: Optional[datetime] = None) -> int:
        """Delete processed events older than the retention window."""

        cutoff = (now or datetime.now(timezone.utc)) - timedelta(
            days=self.retention_days
        )

        async def _run(session: object | None) -> int:
            return await self.outbox_repo.delete_processed_before(
                cutoff, session=session
            )

        deleted = await with_optional_tx(self.transaction_manager, _run)
        logger.info(
            "Outbox cleanup finished",
            extra={"deleted": deleted, "cutoff": cutoff.isoformat()},
        )
        if self.metrics_collector:
            self.metrics_collector.record_cleanup(deleted)
        return deleted
