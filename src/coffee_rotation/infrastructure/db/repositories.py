"""SQLAlchemy repository implementations."""

from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional
from uuid import UUID

from sqlalchemy import Select, delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

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
from coffee_rotation.infrastructure.db.models import (
    GroupMembershipModel,
    GroupModel,
    OutboxEventModel,
    PaymentModel,
    UserModel,
)


def _require_session(session: AsyncSession | None) -> AsyncSession:
    """Ensure an AsyncSession is provided.

    Ports keep `session: object | None` to support in-memory repositories in
    unit tests. SQLAlchemy repositories always operate with an explicit
    session provided by a transaction boundary and never commit themselves.
    """

    if session is None:
        raise RuntimeError(
            "Database session is required. Use a transaction boundary and pass "
            "the session explicitly (e.g., via SessionTransactionManager)."
        )
    return session


def _get_async_session(session: object | None) -> AsyncSession:
    """Return a session-like object or raise with a clear error."""

    if session is None:
        return _require_session(None)
    return session  # type: ignore[return-value]


def locked_roster_statement(group_id: UUID) -> Select:
    """Select a group's memberships in join order, locking the rows."""

    return (
        select(GroupMembershipModel)
        .where(GroupMembershipModel.group_id == group_id)
        .order_by(GroupMembershipModel.joined_at)
        .with_for_update()
    )


def pending_events_claim_statement(max_retries: int, limit: int) -> Select:
    """Select deliverable outbox rows oldest first, skipping locked ones."""

    return (
        select(OutboxEventModel)
        .where(
            OutboxEventModel.processed_at.is_(None),
            OutboxEventModel.retry_count < max_retries,
        )
        .order_by(OutboxEventModel.created_at)
        .limit(limit)
        .with_for_update(skip_locked=True)
    )


@dataclass(slots=True)
class SqlAlchemyUserRepository(UserRepository):
    """SQLAlchemy-backed user repository."""

    session_factory: async_sessionmaker[AsyncSession]

    async def get_by_id(
        self, user_id: UUID, session: object | None = None
    ) -> Optional[User]:
        """Fetch a user by ID."""

        db_session = _get_async_session(session)
        exec_result = await db_session.execute(
            select(UserModel).where(UserModel.user_id == user_id)
        )
        result = exec_result.scalar_one_or_none()
        return _to_user_entity(result) if result else None

    async def get_by_auth_id(
        self, auth_id: int, session: object | None = None
    ) -> Optional[User]:
        """Fetch a user by auth service id."""

        db_session = _get_async_session(session)
        exec_result = await db_session.execute(
            select(UserModel).where(UserModel.auth_id == auth_id)
        )
        result = exec_result.scalar_one_or_none()
        return _to_user_entity(result) if result else None

    async def get_by_username(
        self, username: str, session: object | None = None
    ) -> Optional[User]:
        """Fetch a user by username."""

        db_session = _get_async_session(session)
        exec_result = await db_session.execute(
            select(UserModel).where(UserModel.username == username)
        )
        result = exec_result.scalar_one_or_none()
        return _to_user_entity(result) if result else None

    async def save(self, user: User, session: object | None = None) -> None:
        """Persist a user."""

        db_session = _get_async_session(session)
        await db_session.merge(_to_user_model(user))


@dataclass(slots=True)
class SqlAlchemyGroupRepository(GroupRepository):
    """SQLAlchemy-backed group repository."""

    session_factory: async_sessionmaker[AsyncSession]

    async def get_by_id(
        self, group_id: UUID, session: object | None = None
    ) -> Optional[Group]:
        """Fetch a group by ID."""

        db_session = _get_async_session(session)
        exec_result = await db_session.execute(
            select(GroupModel).where(GroupModel.group_id == group_id)
        )
        result = exec_result.scalar_one_or_none()
        return _to_group_entity(result) if result else None

    async def get_by_name(
        self, name: str, session: object | None = None
    ) -> Optional[Group]:
        """Fetch a group by name."""

        db_session = _get_async_session(session)
        exec_result = await db_session.execute(
            select(GroupModel).where(GroupModel.name == name)
        )
        result = exec_result.scalar_one_or_none()
        return _to_group_entity(result) if result else None

    async def save(self, group: Group, session: object | None = None) -> None:
        """Persist a group."""

        db_session = _get_async_session(session)
        await db_session.merge(_to_group_model(group))


@dataclass(slots=True)
class SqlAlchemyMembershipRepository(MembershipRepository):
    """SQLAlchemy-backed group membership repository."""

    session_factory: async_sessionmaker[AsyncSession]

    async def list_by_group(
        self, group_id: UUID, session: object | None = None
    ) -> List[GroupMembership]:
        """List memberships of a group."""

        db_session = _get_async_session(session)
        exec_result = await db_session.execute(
            select(GroupMembershipModel)
            .where(GroupMembershipModel.group_id == group_id)
            .order_by(GroupMembershipModel.joined_at)
        )
        return [_to_membership_entity(item) for item in exec_result.scalars()]

    async def list_by_group_for_update(
        self, group_id: UUID, session: object | None = None
    ) -> List[GroupMembership]:
        """List memberships of a group with row locks.

        Concurrent rotations on the same group queue up here until the
        holder's transaction ends.
        """

        db_session = _get_async_session(session)
        exec_result = await db_session.execute(locked_roster_statement(group_id))
        return [_to_membership_entity(item) for item in exec_result.scalars()]

    async def list_by_user(
        self, user_id: UUID, session: object | None = None
    ) -> List[GroupMembership]:
        """List memberships of a user."""

        db_session = _get_async_session(session)
        exec_result = await db_session.execute(
            select(GroupMembershipModel).where(GroupMembershipModel.user_id == user_id)
        )
        return [_to_membership_entity(item) for item in exec_result.scalars()]

    async def save(
        self, membership: GroupMembership, session: object | None = None
    ) -> None:
        """Persist a membership."""

        db_session = _get_async_session(session)
        await db_session.merge(_to_membership_model(membership))


@dataclass(slots=True)
class SqlAlchemyPaymentRepository(PaymentRepository):
    """SQLAlchemy-backed payment repository."""

    session_factory: async_sessionmaker[AsyncSession]

    async def save(self, payment: Payment, session: object | None = None) -> None:
        """Persist payment."""

        db_session = _get_async_session(session)
        await db_session.merge(_to_payment_model(payment))

    async def ranking_by_group(
        self, group_id: UUID, session: object | None = None
    ) -> List[GroupPaymentRanking]:
        """Aggregate payments per member of a group."""

        payment_count = func.count(PaymentModel.payment_id).label("payment_count")
        total_amount = func.sum(PaymentModel.amount).label("total_amount")
        db_session = _get_async_session(session)
        exec_result = await db_session.execute(
            select(UserModel.user_id, UserModel.username, payment_count, total_amount)
            .join(
                GroupMembershipModel,
                GroupMembershipModel.membership_id == PaymentModel.membership_id,
            )
            .join(UserModel, UserModel.user_id == GroupMembershipModel.user_id)
            .where(GroupMembershipModel.group_id == group_id)
            .group_by(UserModel.user_id, UserModel.username)
            .order_by(payment_count.desc(), total_amount.desc())
        )
        return [
            GroupPaymentRanking(
                user_id=row.user_id,
                username=row.username,
                payment_count=int(row.payment_count),
                total_amount=row.total_amount,
            )
            for row in exec_result
        ]

    async def list_latest_by_user(
        self, user_id: UUID, limit: int = 20, session: object | None = None
    ) -> List[Payment]:
        """List the user's payments, newest first."""

        db_session = _get_async_session(session)
        exec_result = await db_session.execute(
            select(PaymentModel)
            .join(
                GroupMembershipModel,
                GroupMembershipModel.membership_id == PaymentModel.membership_id,
            )
            .where(GroupMembershipModel.user_id == user_id)
            .order_by(PaymentModel.payment_date.desc())
            .limit(limit)
        )
        return [_to_payment_entity(item) for item in exec_result.scalars()]


class SqlAlchemyOutboxRepository(OutboxRepository):
    """SQLAlchemy implementation of the outbox event store."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    async def save(self, event: OutboxEvent, session: object | None = None) -> None:
        """Stage outbox event in the caller's transaction."""

        db_session = _get_async_session(session)
        db_session.add(_to_outbox_event_model(event))

    async def get_pending_events(
        self,
        max_retries: int,
        limit: int = 100,
        session: object | None = None,
    ) -> List[OutboxEvent]:
        """Claim pending events below the retry limit, oldest first.

        Rows locked by another dispatcher are skipped rather than waited on.
        """

        db_session = _get_async_session(session)
        result = await db_session.execute(
            pending_events_claim_statement(max_retries, limit)
        )
        return [_to_outbox_event_entity(model) for model in result.scalars().all()]

    async def mark_as_published(
        self, event_id: UUID, processed_at: datetime, session: object | None = None
    ) -> None:
        """Mark event as published."""

        db_session = _get_async_session(session)
        await db_session.execute(
            update(OutboxEventModel)
            .where(OutboxEventModel.event_id == event_id)
            .values(processed_at=processed_at, last_error=None)
        )

    async def mark_as_failed(
        self,
        event_id: UUID,
        error: str,
        retry_count: int,
        session: object | None = None,
    ) -> None:
        """Record a failed delivery attempt."""

        db_session = _get_async_session(session)
        await db_session.execute(
            update(OutboxEventModel)
            .where(OutboxEventModel.event_id == event_id)
            .values(last_error=error, retry_count=retry_count)
        )

    async def delete_processed_before(
        self, cutoff: datetime, session: object | None = None
    ) -> int:
        """Delete processed events older than cutoff."""

        db_session = _get_async_session(session)
        result = await db_session.execute(
            delete(OutboxEventModel)
            .where(
                OutboxEventModel.processed_at.is_not(None),
                OutboxEventModel.processed_at < cutoff,
            )
            .execution_options(synchronize_session=False)
        )
        return int(result.rowcount or 0)

    async def count_pending(self, session: object | None = None) -> int:
        """Count events not yet delivered."""

        db_session = _get_async_session(session)
        result = await db_session.execute(
            select(func.count())
            .select_from(OutboxEventModel)
            .where(OutboxEventModel.processed_at.is_(None))
        )
        return int(result.scalar_one())

    async def get_by_id(
        self, event_id: UUID, session: object | None = None
    ) -> Optional[OutboxEvent]:
        """Get event by ID."""

        db_session = _get_async_session(session)
        exec_result = await db_session.execute(
            select(OutboxEventModel).where(OutboxEventModel.event_id == event_id)
        )
        model = exec_result.scalar_one_or_none()
        return _to_outbox_event_entity(model) if model else None


def _to_user_entity(model: UserModel) -> User:
    """Map user ORM model to domain entity."""

    return User(
        user_id=model.user_id,
        auth_id=model.auth_id,
        username=model.username,
        email=model.email,
    )


def _to_user_model(user: User) -> UserModel:
    """Map domain user entity to ORM model."""

    return UserModel(
        user_id=user.user_id,
        auth_id=user.auth_id,
        username=user.username,
        email=user.email,
    )


def _to_group_entity(model: GroupModel) -> Group:
    """Map group ORM model to domain entity."""

    return Group(
        group_id=model.group_id,
        name=model.name,
        description=model.description,
        created_at=model.created_at,
    )


def _to_group_model(group: Group) -> GroupModel:
    """Map domain group entity to ORM model."""

    return GroupModel(
        group_id=group.group_id,
        name=group.name,
        description=group.description,
        created_at=group.created_at,
    )


def _to_membership_entity(model: GroupMembershipModel) -> GroupMembership:
    """Map membership ORM model to domain entity."""

    return GroupMembership(
        membership_id=model.membership_id,
        group_id=model.group_id,
        user_id=model.user_id,
        status=model.status,
        my_turn=model.my_turn,
        joined_at=model.joined_at,
        is_admin=model.is_admin,
    )


def _to_membership_model(membership: GroupMembership) -> GroupMembershipModel:
    """Map domain membership entity to ORM model."""

    return GroupMembershipModel(
        membership_id=membership.membership_id,
        group_id=membership.group_id,
        user_id=membership.user_id,
        status=membership.status,
        my_turn=membership.my_turn,
        is_admin=membership.is_admin,
        joined_at=membership.joined_at,
    )


def _to_payment_entity(model: PaymentModel) -> Payment:
    """Map payment ORM model to domain entity."""

    return Payment(
        payment_id=model.payment_id,
        membership_id=model.membership_id,
        amount=model.amount,
        description=model.description,
        payment_date=model.payment_date,
    )


def _to_payment_model(payment: Payment) -> PaymentModel:
    """Map domain payment entity to ORM model."""

    return PaymentModel(
        payment_id=payment.payment_id,
        membership_id=payment.membership_id,
        amount=payment.amount,
        description=payment.description,
        payment_date=payment.payment_date,
    )


def _to_outbox_event_entity(model: OutboxEventModel) -> OutboxEvent:
    """Map outbox event ORM model to entity."""

    return OutboxEvent(
        event_id=model.event_id,
        subject=model.subject,
        event_type=model.event_type,
        payload=model.payload,
        created_at=model.created_at,
        processed_at=model.processed_at,
        retry_count=model.retry_count,
        last_error=model.last_error,
    )


def _to_outbox_event_model(event: OutboxEvent) -> OutboxEventModel:
    """Map outbox event entity to ORM model."""

    return OutboxEventModel(
        event_id=event.event_id,
        subject=event.subject,
        event_type=event.event_type,
        payload=event.payload,
        created_at=event.created_at,
        processed_at=event.processed_at,
        retry_count=event.retry_count,
        last_error=event.last_error,
    )
