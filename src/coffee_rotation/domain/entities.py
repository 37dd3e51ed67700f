"""Domain entities for the coffee rotation service."""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from coffee_rotation.domain.enums import MembershipStatus


@dataclass(frozen=True)
class User:
    """Coffee user, linked to the auth service account by auth_id."""

    user_id: UUID
    auth_id: int
    username: str
    email: str


@dataclass(frozen=True)
class Group:
    """Group of users sharing a coffee rotation."""

    group_id: UUID
    name: str
    created_at: datetime
    description: Optional[str] = None


@dataclass(frozen=True)
class GroupMembership:
    """One user's participation in one group.

    Users and groups are referenced by id only.
    """

    membership_id: UUID
    group_id: UUID
    user_id: UUID
    status: MembershipStatus
    my_turn: bool
    joined_at: datetime
    is_admin: bool = False


@dataclass(frozen=True)
class Payment:
    """Payment made by a member for the group."""

    payment_id: UUID
    membership_id: UUID
    amount: Decimal
    description: Optional[str]
    payment_date: datetime


@dataclass(frozen=True)
class OutboxEvent:
    """Outbox event entity for reliable event publishing."""

    event_id: UUID
    subject: str
    event_type: str
    payload: str
    created_at: datetime
    processed_at: Optional[datetime] = None
    retry_count: int = 0
    last_error: Optional[str] = None

    @property
    def is_pending(self) -> bool:
        """Return True while the event still awaits delivery."""

        return self.processed_at is None


@dataclass(frozen=True)
class RotationDecision:
    """Outcome of a next-payer decision.

    `memberships` is the complete updated roster; `next_payer` is the member
    now holding the turn.
    """

    memberships: tuple[GroupMembership, ...]
    next_payer: GroupMembership
    round_reset: bool = False


@dataclass(frozen=True)
class GroupPaymentRanking:
    """Aggregated payments of one member within a group."""

    user_id: UUID
    username: str
    payment_count: int
    total_amount: Decimal
