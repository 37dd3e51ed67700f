"""Transactional append of events to the outbox table."""

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel
from pydantic_core import PydanticSerializationError, to_json

from coffee_rotation.application.errors import OutboxSerializationError
from coffee_rotation.application.ports import OutboxRepository, TransactionManager
from coffee_rotation.domain.entities import OutboxEvent
from coffee_rotation.infrastructure.db.session import with_optional_tx

logger = logging.getLogger(__name__)

MAX_SUBJECT_LENGTH = 255
MAX_EVENT_TYPE_LENGTH = 100


def serialize_payload(event: Any) -> str:
    """Serialize an event body to JSON text.

    Pydantic models use their aliases; mappings go through pydantic-core so
    UUIDs, datetimes and decimals are handled; str is taken as already
    serialized JSON and bytes must be UTF-8.
    """

    try:
        if isinstance(event, BaseModel):
            return event.model_dump_json(by_alias=True)
        if isinstance(event, str):
            return event
        if isinstance(event, bytes):
            return event.decode("utf-8")
        if isinstance(event, Mapping):
            return to_json(dict(event)).decode("utf-8")
    except (
        PydanticSerializationError,
        UnicodeDecodeError,
        TypeError,
        ValueError,
    ) as exc:
        raise OutboxSerializationError(
            f"Cannot serialize {type(event).__name__} for the outbox: {exc}"
        ) from exc
    raise OutboxSerializationError(
        f"Unsupported outbox payload type: {type(event).__name__}"
    )


@dataclass(slots=True)
class OutboxWriter:
    """Stage events in the outbox within the caller's transaction.

    `append` performs no network I/O: the row becomes visible, and is later
    relayed by the dispatcher, only if the caller's transaction commits.
    """

    outbox_repo: OutboxRepository
    transaction_manager: Optional[TransactionManager] = None

    async def append(
        self,
        subject: str,
        event: Any,
        *,
        event_type: Optional[str] = None,
        session: object | None = None,
    ) -> UUID:
        """Append event to the outbox and return its id."""

        if not subject or not subject.strip():
            raise ValueError("Outbox subject must not be empty.")
        if len(subject) > MAX_SUBJECT_LENGTH:
            raise ValueError(f"Outbox subject longer than {MAX_SUBJECT_LENGTH}.")

        resolved_type = (event_type or type(event).__name__)[:MAX_EVENT_TYPE_LENGTH]
        try:
            payload = serialize_payload(event)
        except OutboxSerializationError:
            logger.error(
                "Failed to serialize outbox event",
                extra={"subject": subject, "event_type": resolved_type},
            )
            raise

        outbox_event = OutboxEvent(
            event_id=uuid4(),
            subject=subject,
            event_type=resolved_type,
            payload=payload,
            created_at=datetime.now(timezone.utc),
        )
        await self.outbox_repo.save(outbox_event, session=session)
        logger.debug(
            "Saved event to outbox",
            extra={
                "event_id": str(outbox_event.event_id),
                "subject": subject,
                "event_type": resolved_type,
            },
        )
        return outbox_event.event_id

    async def pending_count(self) -> int:
        """Return the number of events still awaiting delivery."""

        async def _count(session: object | None) -> int:
            return await self.outbox_repo.count_pending(session=session)

        return await with_optional_tx(self.transaction_manager, _count)
