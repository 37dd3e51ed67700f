"""Repository and gateway ports for the application layer."""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import (
    AsyncContextManager,
    Iterable,
    List,
    Optional,
    Protocol,
    Sequence,
    TypeVar,
)
from uuid import UUID

from coffee_rotation.domain.entities import (
    Group,
    GroupMembership,
    GroupPaymentRanking,
    OutboxEvent,
    Payment,
    User,
)

T = TypeVar("T")


class UserRepository(ABC):
    """Port for user persistence."""

    @abstractmethod
    async def get_by_id(
        self, user_id: UUID, session: object | None = None
    ) -> Optional[User]:
        """Fetch a user by ID."""

    @abstractmethod
    async def get_by_auth_id(
        self, auth_id: int, session: object | None = None
    ) -> Optional[User]:
        """Fetch a user by the id issued by the auth service."""

    @abstractmethod
    async def get_by_username(
        self, username: str, session: object | None = None
    ) -> Optional[User]:
        """Fetch a user by username."""

    @abstractmethod
    async def save(self, user: User, session: object | None = None) -> None:
        """Persist a user."""


class GroupRepository(ABC):
    """Port for group persistence."""

    @abstractmethod
    async def get_by_id(
        self, group_id: UUID, session: object | None = None
    ) -> Optional[Group]:
        """Fetch a group by ID."""

    @abstractmethod
    async def get_by_name(
        self, name: str, session: object | None = None
    ) -> Optional[Group]:
        """Fetch a group by its unique name."""

    @abstractmethod
    async def save(self, group: Group, session: object | None = None) -> None:
        """Persist a group."""


class MembershipRepository(ABC):
    """Port for group membership persistence."""

    @abstractmethod
    async def list_by_group(
        self, group_id: UUID, session: object | None = None
    ) -> List[GroupMembership]:
        """List memberships of a group ordered by join date."""

    @abstractmethod
    async def list_by_group_for_update(
        self, group_id: UUID, session: object | None = None
    ) -> List[GroupMembership]:
        """List memberships of a group, locking the rows when supported."""

    @abstractmethod
    async def list_by_user(
        self, user_id: UUID, session: object | None = None
    ) -> List[GroupMembership]:
        """List memberships of a user across groups."""

    @abstractmethod
    async def save(
        self, membership: GroupMembership, session: object | None = None
    ) -> None:
        """Persist a membership."""

    async def save_all(
        self,
        memberships: Iterable[GroupMembership],
        session: object | None = None,
    ) -> None:
        """Persist several memberships."""

        for membership in memberships:
            await self.save(membership, session=session)


class PaymentRepository(ABC):
    """Port for payment persistence."""

    @abstractmethod
    async def save(self, payment: Payment, session: object | None = None) -> None:
        """Persist payment."""

    @abstractmethod
    async def ranking_by_group(
        self, group_id: UUID, session: object | None = None
    ) -> List[GroupPaymentRanking]:
        """Aggregate payments per member, most payments first."""

    @abstractmethod
    async def list_latest_by_user(
        self, user_id: UUID, limit: int = 20, session: object | None = None
    ) -> List[Payment]:
        """List the user's payments across groups, newest first."""


class OutboxRepository(ABC):
    """Port for outbox event persistence."""

    @abstractmethod
    async def save(self, event: OutboxEvent, session: object | None = None) -> None:
        """Persist outbox event."""

    @abstractmethod
    async def get_pending_events(
        self,
        max_retries: int,
        limit: int = 100,
        session: object | None = None,
    ) -> List[OutboxEvent]:
        """Claim unprocessed events below the retry limit, oldest first."""

    @abstractmethod
    async def mark_as_published(
        self, event_id: UUID, processed_at: datetime, session: object | None = None
    ) -> None:
        """Mark event as published and clear its last error."""

    @abstractmethod
    async def mark_as_failed(
        self,
        event_id: UUID,
        error: str,
        retry_count: int,
        session: object | None = None,
    ) -> None:
        """Record a failed delivery attempt."""

    @abstractmethod
    async def delete_processed_before(
        self, cutoff: datetime, session: object | None = None
    ) -> int:
        """Delete processed events older than cutoff, return the count."""

    @abstractmethod
    async def count_pending(self, session: object | None = None) -> int:
        """Count events not yet delivered."""

    @abstractmethod
    async def get_by_id(
        self, event_id: UUID, session: object | None = None
    ) -> Optional[OutboxEvent]:
        """Get event by ID."""


class MessagePublisher(ABC):
    """Port for the message bus used by the outbox dispatcher."""

    @abstractmethod
    async def publish(self, subject: str, payload: bytes) -> None:
        """Publish raw payload to subject, raising PublishError on failure."""

    @abstractmethod
    async def is_connected(self) -> bool:
        """Return True when the bus is reachable."""


class RandomSource(Protocol):
    """Source of randomness for rotation tie-breaks.

    `random.Random` and `secrets.SystemRandom` both satisfy it.
    """

    def choice(self, seq: Sequence[T]) -> T:
        """Return a uniformly chosen element of a non-empty sequence."""


class TransactionManager(Protocol):
    """Protocol for transaction handling used by application services.

    Services receive a TransactionManager that provides a session via
    async with tm.transaction() as session. The implementation
    (SessionTransactionManager in infrastructure) commits on success and
    rolls back on exception.
    """

    def transaction(self) -> AsyncContextManager[object]:
        """Return an async context manager yielding a session."""
