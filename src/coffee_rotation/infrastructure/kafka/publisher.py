"""Kafka publisher used to relay outbox events."""

import asyncio
import logging
from collections import defaultdict
from typing import Dict, List

from aiokafka import AIOKafkaProducer  # type: ignore[import-untyped]

from coffee_rotation.application.errors import PublishError
from coffee_rotation.application.ports import MessagePublisher

logger = logging.getLogger(__name__)


class KafkaMessagePublisher(MessagePublisher):
    """Publish raw event payloads to Kafka, one topic per subject."""

    def __init__(
        self,
        bootstrap_servers: str,
        send_timeout_seconds: float = 10.0,
        request_timeout_ms: int = 10000,
        client_id: str = "coffee-rotation",
    ) -> None:
        self._bootstrap_servers = bootstrap_servers
        self._send_timeout_seconds = send_timeout_seconds
        self._request_timeout_ms = request_timeout_ms
        self._client_id = client_id
        self._producer = self._build_producer()
        self._started = False
        self._start_lock = asyncio.Lock()

    def _build_producer(self) -> AIOKafkaProducer:
        return AIOKafkaProducer(
            bootstrap_servers=self._bootstrap_servers,
            client_id=self._client_id,
            request_timeout_ms=self._request_timeout_ms,
            acks="all",
        )

    async def _ensure_started(self) -> None:
        """Start the producer once (lazy-init)."""
        if self._started:
            return
        async with self._start_lock:
            if self._started:  # pragma: no cover
                return
            await self._producer.start()
            self._started = True

    async def publish(self, subject: str, payload: bytes) -> None:
        """Publish payload to the subject topic and wait for the ack."""

        try:
            await self._ensure_started()
            await asyncio.wait_for(
                self._producer.send_and_wait(subject, payload),
                timeout=self._send_timeout_seconds,
            )
        except asyncio.TimeoutError as exc:
            raise PublishError(
                f"Timed out after {self._send_timeout_seconds}s publishing to {subject}"
            ) from exc
        except Exception as exc:
            raise PublishError(str(exc) or type(exc).__name__) from exc

    async def is_connected(self) -> bool:
        """Return True when a broker answers a metadata request in time.

        Cached cluster metadata survives broker outages, so every check
        forces a refresh bounded by the send timeout.
        """

        try:
            await self._ensure_started()
        except Exception:
            logger.warning(
                "Kafka is unreachable",
                extra={"bootstrap_servers": self._bootstrap_servers},
                exc_info=True,
            )
            await self._reset_producer()
            return False

        try:
            # shield: the refresh future is shared inside the client
            refreshed = await asyncio.wait_for(
                asyncio.shield(self._producer.client.force_metadata_update()),
                timeout=self._send_timeout_seconds,
            )
        except Exception:
            logger.warning(
                "Kafka metadata refresh failed",
                extra={"bootstrap_servers": self._bootstrap_servers},
                exc_info=True,
            )
            return False
        if not refreshed:
            logger.warning(
                "No Kafka broker answered the metadata request",
                extra={"bootstrap_servers": self._bootstrap_servers},
            )
        return bool(refreshed)

    async def _reset_producer(self) -> None:
        """Drop a producer whose start failed so the next call retries."""

        try:
            await self._producer.stop()
        except Exception:
            logger.debug("Ignoring error while stopping Kafka producer", exc_info=True)
        self._producer = self._build_producer()
        self._started = False

    async def stop(self) -> None:
        """Stop producer (best-effort)."""
        if not self._started:
            return
        try:
            await self._producer.stop()
        finally:
            self._started = False


class InMemoryMessagePublisher(MessagePublisher):
    """Message publisher keeping messages in memory, for tests and local runs."""

    def __init__(self, connected: bool = True) -> None:
        self.connected = connected
        self.messages: Dict[str, List[bytes]] = defaultdict(list)

    async def publish(self, subject: str, payload: bytes) -> None:
        """Store payload under subject."""

        if not self.connected:
            raise PublishError("Message bus is not connected")
        self.messages[subject].append(payload)

    async def is_connected(self) -> bool:
        """Return the configured connectivity flag."""

        return self.connected
