"""Background processor for outbox events."""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from prometheus_client import start_http_server

from coffee_rotation.application.services.outbox_dispatcher import (
    DrainResult,
    OutboxDispatcher,
)
from coffee_rotation.config import load_config
from coffee_rotation.container import Container
from coffee_rotation.logging_setup import configure_logging
from coffee_rotation.startup_logging import log_startup_info

logger = logging.getLogger(__name__)


def seconds_until_next_cleanup(
    now: datetime, hour: int, minute: int, tz_name: str
) -> float:
    """Return seconds from now until the next hour:minute in tz_name.

    The target is a wall-clock time; the difference is taken in UTC so a
    DST change between now and the target is counted.
    """

    now_utc = now.astimezone(timezone.utc)
    target = now.astimezone(ZoneInfo(tz_name)).replace(
        hour=hour, minute=minute, second=0, microsecond=0
    )
    if target.astimezone(timezone.utc) <= now_utc:
        target += timedelta(days=1)
    return (target.astimezone(timezone.utc) - now_utc).total_seconds()


class OutboxProcessor:
    """Background processor for outbox events.

    Runs two loops: frequent dispatch of pending events and a daily cleanup
    of processed ones.
    """

    def __init__(
        self,
        dispatcher: OutboxDispatcher,
        poll_interval: float = 5.0,
        cleanup_hour: int = 0,
        cleanup_minute: int = 0,
        cleanup_timezone: str = "UTC",
    ):
        self.dispatcher = dispatcher
        self.poll_interval = poll_interval
        self.cleanup_hour = cleanup_hour
        self.cleanup_minute = cleanup_minute
        self.cleanup_timezone = cleanup_timezone
        self._running = False
        self._tasks: list[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the background loops."""

        if self._running:
            return

        self._running = True
        self._tasks = [
            asyncio.create_task(self._process_loop(), name="outbox-dispatch"),
            asyncio.create_task(self._cleanup_loop(), name="outbox-cleanup"),
        ]
        logger.info(
            "Outbox processor started",
            extra={"poll_interval": self.poll_interval},
        )

    async def stop(self) -> None:
        """Stop the background loops."""

        if not self._running:
            return

        self._running = False
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks = []
        logger.info("Outbox processor stopped")

    async def _process_loop(self) -> None:
        """Dispatch loop; an error in one cycle never stops the next."""

        while self._running:
            try:
                await self.process_once()
            except Exception:
                logger.exception("Error in outbox processing loop")

            await asyncio.sleep(self.poll_interval)

    async def _cleanup_loop(self) -> None:
        """Daily cleanup loop."""

        while self._running:
            delay = seconds_until_next_cleanup(
                datetime.now(timezone.utc),
                self.cleanup_hour,
                self.cleanup_minute,
                self.cleanup_timezone,
            )
            logger.debug("Next outbox cleanup scheduled", extra={"in_seconds": delay})
            await asyncio.sleep(delay)
            try:
                await self.dispatcher.cleanup()
            except Exception:
                logger.exception("Error in outbox cleanup")

    async def process_once(self) -> DrainResult:
        """Process pending events once (for testing/manual runs)."""

        return await self.dispatcher.drain_batch()


async def run_processor(stop_event: Optional[asyncio.Event] = None) -> None:
    """Run the outbox processor until stop_event is set or the task is cancelled."""

    config = load_config()
    configure_logging(config.log.log_level, config.log.log_format.lower() == "json")
    log_startup_info(logger=logger, service_name="outbox-processor", config=config)

    if not config.db.database_url:
        logger.error("DATABASE_URL is required for outbox processor")
        return

    container = Container(config)
    publisher = container.build_message_publisher()
    if publisher is None:
        logger.error("Kafka is disabled, cannot run outbox processor")
        return

    if config.outbox.metrics_port:
        start_http_server(config.outbox.metrics_port)

    processor = OutboxProcessor(
        dispatcher=container.build_outbox_dispatcher(publisher),
        poll_interval=config.outbox.poll_interval_seconds,
        cleanup_hour=config.outbox.cleanup_hour,
        cleanup_minute=config.outbox.cleanup_minute,
        cleanup_timezone=config.outbox.cleanup_timezone,
    )

    stop_event = stop_event or asyncio.Event()
    try:
        await processor.start()
        await stop_event.wait()
    finally:
        await processor.stop()
        await publisher.stop()
        logger.info("Shutting down outbox processor")


def main() -> None:
    """Entry point."""

    try:
        asyncio.run(run_processor())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
