"""End-to-end tests of rotation plus outbox on a SQLite database."""

import json
from datetime import timedelta
from decimal import Decimal
from uuid import uuid4

import pytest

from coffee_rotation.application.services.outbox_dispatcher import OutboxDispatcher
from coffee_rotation.application.services.outbox_writer import OutboxWriter
from coffee_rotation.application.services.payment_rotation_service import (
    PaymentRotationService,
)
from coffee_rotation.application.services.rotation_engine import RotationEngine
from coffee_rotation.domain.entities import Group, GroupMembership, User
from coffee_rotation.domain.enums import MembershipStatus
from coffee_rotation.infrastructure.db.repositories import (
    SqlAlchemyGroupRepository,
    SqlAlchemyMembershipRepository,
    SqlAlchemyOutboxRepository,
    SqlAlchemyPaymentRepository,
    SqlAlchemyUserRepository,
)
from coffee_rotation.infrastructure.kafka.publisher import InMemoryMessagePublisher

from tests.helpers import FirstChoice
from tests.helpers.factories import BASE_TIME


@pytest.fixture
def sql_repos(session_factory) -> dict:
    return {
        "user_repo": SqlAlchemyUserRepository(session_factory=session_factory),
        "group_repo": SqlAlchemyGroupRepository(session_factory=session_factory),
        "membership_repo": SqlAlchemyMembershipRepository(
            session_factory=session_factory
        ),
        "payment_repo": SqlAlchemyPaymentRepository(session_factory=session_factory),
        "outbox_repo": SqlAlchemyOutboxRepository(session_factory),
    }


@pytest.fixture
def service(sql_repos, sql_tm) -> PaymentRotationService:
    return PaymentRotationService(
        user_repo=sql_repos["user_repo"],
        group_repo=sql_repos["group_repo"],
        membership_repo=sql_repos["membership_repo"],
        payment_repo=sql_repos["payment_repo"],
        outbox_writer=OutboxWriter(outbox_repo=sql_repos["outbox_repo"]),
        rotation_engine=RotationEngine(rng=FirstChoice()),
        transaction_manager=sql_tm,
    )


async def _seed_office(sql_repos, sql_tm) -> dict[str, User]:
    group = Group(group_id=uuid4(), name="office", created_at=BASE_TIME)
    users = {}
    async with sql_tm.transaction() as session:
        await sql_repos["group_repo"].save(group, session=session)
        for index, name in enumerate("ABC"):
            user = User(
                user_id=uuid4(),
                auth_id=index + 1,
                username=name,
                email=f"{name.lower()}@example.com",
            )
            await sql_repos["user_repo"].save(user, session=session)
            await sql_repos["membership_repo"].save(
                GroupMembership(
                    membership_id=uuid4(),
                    group_id=group.group_id,
                    user_id=user.user_id,
                    status=MembershipStatus.NOT_PAID,
                    my_turn=False,
                    joined_at=BASE_TIME + timedelta(minutes=index),
                ),
                session=session,
            )
            users[name] = user
    return users


async def _snapshot(sql_repos, sql_tm) -> dict:
    async with sql_tm.transaction() as session:
        group = await sql_repos["group_repo"].get_by_name("office", session=session)
        roster = await sql_repos["membership_repo"].list_by_group(
            group.group_id, session=session
        )
        pending = await sql_repos["outbox_repo"].get_pending_events(
            5, session=session
        )
        payments = await sql_repos["payment_repo"].ranking_by_group(
            group.group_id, session=session
        )
    return {
        "roster": [(m.status, m.my_turn) for m in roster],
        "pending": pending,
        "payments": payments,
    }


@pytest.mark.asyncio
async def test_payment_commits_state_and_event_together(
    service, sql_repos, sql_tm
) -> None:
    """A committed payment leaves the new roster and one pending event."""

    users = await _seed_office(sql_repos, sql_tm)

    await service.register_payment(
        users["A"].auth_id, "office", Decimal("2.50"), "espresso"
    )

    snapshot = await _snapshot(sql_repos, sql_tm)
    assert snapshot["roster"] == [
        (MembershipStatus.PAID, False),
        (MembershipStatus.NOT_PAID, True),
        (MembershipStatus.NOT_PAID, False),
    ]
    [event] = snapshot["pending"]
    assert event.subject == "next-payment"
    payload = json.loads(event.payload)
    assert payload["lastPayerUsername"] == "A"
    assert payload["nextUsername"] == "B"
    assert payload["amount"] == 2.5


@pytest.mark.asyncio
async def test_failure_after_append_rolls_back_everything(
    service, sql_repos, sql_tm, monkeypatch: pytest.MonkeyPatch
) -> None:
    """An error after the outbox append leaves neither the event nor the mutation."""

    users = await _seed_office(sql_repos, sql_tm)
    original_append = OutboxWriter.append

    async def failing_append(self, *args, **kwargs):  # type: ignore[no-untyped-def]
        await original_append(self, *args, **kwargs)
        raise RuntimeError("crash before commit")

    monkeypatch.setattr(OutboxWriter, "append", failing_append)

    with pytest.raises(RuntimeError, match="crash before commit"):
        await service.register_payment(users["A"].auth_id, "office", Decimal("1"))

    snapshot = await _snapshot(sql_repos, sql_tm)
    assert snapshot["pending"] == []
    assert snapshot["payments"] == []
    assert snapshot["roster"] == [(MembershipStatus.NOT_PAID, False)] * 3


@pytest.mark.asyncio
async def test_events_survive_outage_and_are_delivered_once(
    service, sql_repos, sql_tm
) -> None:
    """Events staged while the bus is down are published after recovery."""

    users = await _seed_office(sql_repos, sql_tm)
    publisher = InMemoryMessagePublisher(connected=False)
    dispatcher = OutboxDispatcher(
        outbox_repo=sql_repos["outbox_repo"],
        publisher=publisher,
        transaction_manager=sql_tm,
    )

    await service.register_payment(users["A"].auth_id, "office", Decimal("1"))
    await service.skip_payment(users["B"].auth_id, "office")
    assert (await dispatcher.drain_batch()).skipped is True

    publisher.connected = True
    first = await dispatcher.drain_batch()
    second = await dispatcher.drain_batch()

    assert (first.published, second.published) == (2, 0)
    assert len(publisher.messages["next-payment"]) == 1
    assert len(publisher.messages["skip-payment"]) == 1
    assert (await _snapshot(sql_repos, sql_tm))["pending"] == []
    assert await OutboxWriter(
        outbox_repo=sql_repos["outbox_repo"], transaction_manager=sql_tm
    ).pending_count() == 0
