"""In-memory repository implementations."""

from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional
from uuid import UUID

from coffee_rotation.application.ports import (
    GroupRepository,
    MembershipRepository,
    OutboxRepository,
    PaymentRepository,
    UserRepository,
)
from coffee_rotation.domain.entities import (
    Group,
    GroupMembership,
    GroupPaymentRanking,
    OutboxEvent,
    Payment,
    User,
)


@dataclass
class InMemoryUserRepository(UserRepository):
    """In-memory implementation of user repository."""

    users: Dict[UUID, User] = field(default_factory=dict)

    async def get_by_id(
        self, user_id: UUID, session: object | None = None
    ) -> Optional[User]:
        """Fetch a user by ID."""

        return self.users.get(user_id)

    async def get_by_auth_id(
        self, auth_id: int, session: object | None = None
    ) -> Optional[User]:
        """Fetch a user by auth service id."""

        return next(
            (user for user in self.users.values() if user.auth_id == auth_id), None
        )

    async def get_by_username(
        self, username: str, session: object | None = None
    ) -> Optional[User]:
        """Fetch a user by username."""

        return next(
            (user for user in self.users.values() if user.username == username),
            None,
        )

    async def save(self, user: User, session: object | None = None) -> None:
        """Persist a user in memory."""

        self.users[user.user_id] = user


@dataclass
class InMemoryGroupRepository(GroupRepository):
    """In-memory implementation of group repository."""

    groups: Dict[UUID, Group] = field(default_factory=dict)

    async def get_by_id(
        self, group_id: UUID, session: object | None = None
    ) -> Optional[Group]:
        """Fetch a group by ID."""

        return self.groups.get(group_id)

    async def get_by_name(
        self, name: str, session: object | None = None
    ) -> Optional[Group]:
        """Fetch a group by name."""

        return next(
            (group for group in self.groups.values() if group.name == name), None
        )

    async def save(self, group: Group, session: object | None = None) -> None:
        """Persist a group in memory."""

        self.groups[group.group_id] = group


@dataclass
class InMemoryMembershipRepository(MembershipRepository):
    """In-memory implementation of membership repository."""

    memberships: Dict[UUID, GroupMembership] = field(default_factory=dict)

    async def list_by_group(
        self, group_id: UUID, session: object | None = None
    ) -> List[GroupMembership]:
        """List memberships of a group."""

        return sorted(
            (item for item in self.memberships.values() if item.group_id == group_id),
            key=lambda item: item.joined_at,
        )

    async def list_by_group_for_update(
        self, group_id: UUID, session: object | None = None
    ) -> List[GroupMembership]:
        """List memberships of a group; nothing to lock in memory."""

        return await self.list_by_group(group_id, session=session)

    async def list_by_user(
        self, user_id: UUID, session: object | None = None
    ) -> List[GroupMembership]:
        """List memberships of a user."""

        return [item for item in self.memberships.values() if item.user_id == user_id]

    async def save(
        self, membership: GroupMembership, session: object | None = None
    ) -> None:
        """Persist a membership in memory."""

        self.memberships[membership.membership_id] = membership


@dataclass
class InMemoryPaymentRepository(PaymentRepository):
    """In-memory implementation of payment repository.

    Aggregations resolve members through the membership and user stores.
    """

    membership_repo: InMemoryMembershipRepository
    user_repo: InMemoryUserRepository
    payments: Dict[UUID, Payment] = field(default_factory=dict)

    async def save(self, payment: Payment, session: object | None = None) -> None:
        """Persist payment in memory."""

        self.payments[payment.payment_id] = payment

    async def ranking_by_group(
        self, group_id: UUID, session: object | None = None
    ) -> List[GroupPaymentRanking]:
        """Aggregate payments per member of a group."""

        totals: Dict[UUID, tuple[int, Decimal]] = {}
        for payment in self.payments.values():
            membership = self.membership_repo.memberships.get(payment.membership_id)
            if membership is None or membership.group_id != group_id:
                continue
            count, amount = totals.get(membership.user_id, (0, Decimal("0")))
            totals[membership.user_id] = (count + 1, amount + payment.amount)

        ranking = []
        for user_id, (count, amount) in totals.items():
            user = self.user_repo.users.get(user_id)
            ranking.append(
                GroupPaymentRanking(
                    user_id=user_id,
                    username=user.username if user else "",
                    payment_count=count,
                    total_amount=amount,
                )
            )
        return sorted(
            ranking,
            key=lambda item: (item.payment_count, item.total_amount),
            reverse=True,
        )

    async def list_latest_by_user(
        self, user_id: UUID, limit: int = 20, session: object | None = None
    ) -> List[Payment]:
        """List the user's payments, newest first."""

        membership_ids = {
            item.membership_id
            for item in self.membership_repo.memberships.values()
            if item.user_id == user_id
        }
        payments = [
            payment
            for payment in self.payments.values()
            if payment.membership_id in membership_ids
        ]
        payments.sort(key=lambda payment: payment.payment_date, reverse=True)
        return payments[:limit]


@dataclass
class InMemoryOutboxRepository(OutboxRepository):
    """In-memory implementation of outbox repository."""

    events: Dict[UUID, OutboxEvent] = field(default_factory=dict)

    async def save(self, event: OutboxEvent, session: object | None = None) -> None:
        """Persist outbox event in memory."""

        self.events[event.event_id] = event

    async def get_pending_events(
        self,
        max_retries: int,
        limit: int = 100,
        session: object | None = None,
    ) -> List[OutboxEvent]:
        """Get pending events below the retry limit, oldest first."""

        pending = [
            event
            for event in self.events.values()
            if event.is_pending and event.retry_count < max_retries
        ]
        pending.sort(key=lambda event: event.created_at)
        return pending[:limit]

    async def mark_as_published(
        self, event_id: UUID, processed_at: datetime, session: object | None = None
    ) -> None:
        """Mark event as published."""

        event = self.events.get(event_id)
        if event:
            self.events[event_id] = replace(
                event, processed_at=processed_at, last_error=None
            )

    async def mark_as_failed(
        self,
        event_id: UUID,
        error: str,
        retry_count: int,
        session: object | None = None,
    ) -> None:
        """Record a failed delivery attempt."""

        event = self.events.get(event_id)
        if event:
            self.events[event_id] = replace(
                event, last_error=error, retry_count=retry_count
            )

    async def delete_processed_before(
        self, cutoff: datetime, session: object | None = None
    ) -> int:
        """Delete processed events older than cutoff."""

        expired = [
            event_id
            for event_id, event in self.events.items()
            if event.processed_at is not None and event.processed_at < cutoff
        ]
        for event_id in expired:
            del self.events[event_id]
        return len(expired)

    async def count_pending(self, session: object | None = None) -> int:
        """Count events not yet delivered."""

        return sum(1 for event in self.events.values() if event.is_pending)

    async def get_by_id(
        self, event_id: UUID, session: object | None = None
    ) -> Optional[OutboxEvent]:
        """Get event by ID."""

        return self.events.get(event_id)
