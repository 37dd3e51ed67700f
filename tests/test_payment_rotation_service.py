"""Tests for the payment rotation service."""

import json
import random
from dataclasses import replace
from datetime import timedelta
from decimal import Decimal
from unittest.mock import Mock
from uuid import uuid4

import pytest

from coffee_rotation.application.errors import (
    GroupNotFoundError,
    MembershipNotFoundError,
    NoContentError,
    UserNotFoundError,
)
from coffee_rotation.domain.entities import User
from coffee_rotation.domain.enums import MembershipStatus

from tests.helpers import (
    build_rotation_service,
    create_in_memory_repositories,
    seed_group,
)
from tests.helpers.factories import BASE_TIME


async def _statuses(repos, group) -> dict[str, tuple[MembershipStatus, bool]]:
    result = {}
    for membership in await repos.membership_repo.list_by_group(group.group_id):
        user = await repos.user_repo.get_by_id(membership.user_id)
        result[user.username] = (membership.status, membership.my_turn)
    return result


def _outbox_payloads(repos, subject: str) -> list[dict]:
    return [
        json.loads(event.payload)
        for event in repos.outbox_repo.events.values()
        if event.subject == subject
    ]


@pytest.mark.asyncio
async def test_register_payment_in_office(fake_tm) -> None:
    """A pays in a fresh group: A is PAID, B or C gets the turn, one event."""

    repos = create_in_memory_repositories()
    group, users = await seed_group(repos)
    service = build_rotation_service(repos, fake_tm, rng=random.Random(5))

    summary = await service.register_payment(
        users["A"].auth_id, "office", Decimal("2.50"), "espresso"
    )

    statuses = await _statuses(repos, group)
    assert statuses["A"] == (MembershipStatus.PAID, False)
    holders = [name for name, (_, turn) in statuses.items() if turn]
    assert len(holders) == 1 and holders[0] in {"B", "C"}
    assert summary.next_username == holders[0]
    assert summary.amount == Decimal("2.50")
    assert summary.group_name == "office"

    assert len(repos.outbox_repo.events) == 1
    [payload] = _outbox_payloads(repos, "next-payment")
    assert payload["lastPayerUsername"] == "A"
    assert payload["amount"] == 2.5
    assert payload["nextUsername"] == holders[0]
    assert payload["groupName"] == "office"
    assert payload["lastPaymentId"] == str(summary.payment_id)

    assert len(repos.payment_repo.payments) == 1
    assert fake_tm.opened == 1


@pytest.mark.asyncio
async def test_skip_when_everyone_paid_starts_new_round(fake_tm) -> None:
    """Skip with all members PAID resets the round and emits a skip event."""

    repos = create_in_memory_repositories()
    group, users = await seed_group(
        repos, statuses={name: MembershipStatus.PAID for name in "ABC"}
    )
    service = build_rotation_service(repos, fake_tm, rng=random.Random(2))

    summary = await service.skip_payment(users["A"].auth_id, "office")

    statuses = await _statuses(repos, group)
    assert {status for status, _ in statuses.values()} == {MembershipStatus.NOT_PAID}
    holders = [name for name, (_, turn) in statuses.items() if turn]
    assert holders == [summary.next_username]
    assert summary.next_username in {"B", "C"}

    [payload] = _outbox_payloads(repos, "skip-payment")
    assert payload == {
        "nextUserId": str(summary.next_user_id),
        "nextUsername": summary.next_username,
        "nextEmail": f"{summary.next_username.lower()}@example.com",
    }
    assert _outbox_payloads(repos, "next-payment") == []


@pytest.mark.asyncio
async def test_skip_resets_an_earlier_skipper() -> None:
    """A previous skip lasts one decision; the fresh one stays."""

    repos = create_in_memory_repositories()
    group, users = await seed_group(
        repos,
        members=("A", "B", "C", "D"),
        statuses={"B": MembershipStatus.SKIPPED, "C": MembershipStatus.PAID},
    )
    service = build_rotation_service(repos)

    await service.skip_payment(users["A"].auth_id, "office")

    statuses = await _statuses(repos, group)
    assert statuses["A"][0] == MembershipStatus.SKIPPED
    assert statuses["B"][0] == MembershipStatus.NOT_PAID
    assert statuses["C"][0] == MembershipStatus.PAID


@pytest.mark.asyncio
async def test_pay_for_marks_turn_holder_and_actor_paid(fake_tm) -> None:
    """Paying for the turn holder settles both and hands the turn on."""

    repos = create_in_memory_repositories()
    group, users = await seed_group(
        repos, members=("A", "B", "C", "D"), turn="B"
    )
    service = build_rotation_service(repos, fake_tm, rng=random.Random(9))

    summary = await service.pay_for(users["A"].auth_id, "office", Decimal("5"), None)

    statuses = await _statuses(repos, group)
    assert statuses["A"] == (MembershipStatus.PAID, False)
    assert statuses["B"] == (MembershipStatus.PAID, False)
    holders = [name for name, (_, turn) in statuses.items() if turn]
    assert len(holders) == 1 and holders[0] in {"C", "D"}

    [payment] = repos.payment_repo.payments.values()
    actor_membership = next(
        m
        for m in repos.membership_repo.memberships.values()
        if m.user_id == users["A"].user_id
    )
    assert payment.membership_id == actor_membership.membership_id
    assert summary.username == "A"

    [payload] = _outbox_payloads(repos, "next-payment")
    assert payload["lastPayerUsername"] == "A"
    assert len(repos.outbox_repo.events) == 1


@pytest.mark.asyncio
async def test_pay_for_without_turn_holder_fails() -> None:
    """pay_for needs someone holding the turn."""

    repos = create_in_memory_repositories()
    _, users = await seed_group(repos)
    service = build_rotation_service(repos)

    with pytest.raises(MembershipNotFoundError):
        await service.pay_for(users["A"].auth_id, "office", Decimal("1"), None)

    assert repos.outbox_repo.events == {}
    assert repos.payment_repo.payments == {}


@pytest.mark.asyncio
async def test_unknown_user_group_and_membership() -> None:
    """Lookup failures raise typed errors and write nothing."""

    repos = create_in_memory_repositories()
    _, users = await seed_group(repos)
    outsider = User(
        user_id=uuid4(), auth_id=999, username="Z", email="z@example.com"
    )
    await repos.user_repo.save(outsider)
    service = build_rotation_service(repos)

    with pytest.raises(UserNotFoundError):
        await service.register_payment(12345, "office", Decimal("1"))
    with pytest.raises(GroupNotFoundError):
        await service.skip_payment(users["A"].auth_id, "kitchen")
    with pytest.raises(MembershipNotFoundError):
        await service.register_payment(outsider.auth_id, "office", Decimal("1"))

    assert repos.outbox_repo.events == {}


@pytest.mark.asyncio
async def test_sequence_keeps_single_turn_holder() -> None:
    """Any sequence of operations leaves exactly one member with the turn."""

    repos = create_in_memory_repositories()
    group, users = await seed_group(repos, members=("A", "B", "C", "D"))
    service = build_rotation_service(repos, rng=random.Random(42))
    rng = random.Random(7)

    for _ in range(30):
        actor = users[rng.choice("ABCD")]
        if rng.random() < 0.3:
            await service.skip_payment(actor.auth_id, "office")
        else:
            await service.register_payment(actor.auth_id, "office", Decimal("1.20"))
        statuses = await _statuses(repos, group)
        assert sum(1 for _, turn in statuses.values() if turn) == 1
        skipped = [s for s, _ in statuses.values() if s == MembershipStatus.SKIPPED]
        assert len(skipped) <= 1

    assert len(repos.outbox_repo.events) == 30


@pytest.mark.asyncio
async def test_rotation_metrics_recorded() -> None:
    """Each decision is reported to the metrics collector."""

    repos = create_in_memory_repositories()
    _, users = await seed_group(
        repos, statuses={name: MembershipStatus.PAID for name in "BC"}
    )
    service = build_rotation_service(repos)
    service.metrics_collector = Mock()

    await service.register_payment(users["A"].auth_id, "office", Decimal("1"))

    service.metrics_collector.record_rotation.assert_called_once_with(
        "payment", "office", True
    )


@pytest.mark.asyncio
async def test_ranking_orders_by_payment_count() -> None:
    """Members with more payments rank first."""

    repos = create_in_memory_repositories()
    _, users = await seed_group(repos)
    service = build_rotation_service(repos)
    await service.register_payment(users["B"].auth_id, "office", Decimal("1.00"))
    await service.register_payment(users["B"].auth_id, "office", Decimal("2.00"))
    await service.register_payment(users["C"].auth_id, "office", Decimal("4.00"))

    ranking = await service.get_group_payment_ranking(users["A"].auth_id, "office")

    assert [(r.username, r.payment_count, r.total_amount) for r in ranking] == [
        ("B", 2, Decimal("3.00")),
        ("C", 1, Decimal("4.00")),
    ]


@pytest.mark.asyncio
async def test_ranking_without_payments_is_no_content() -> None:
    """An empty ranking is reported as NoContentError."""

    repos = create_in_memory_repositories()
    _, users = await seed_group(repos)

    with pytest.raises(NoContentError):
        await build_rotation_service(repos).get_group_payment_ranking(
            users["A"].auth_id, "office"
        )


@pytest.mark.asyncio
async def test_latest_payments_newest_first() -> None:
    """Payment history spans groups and lists the newest payment first."""

    repos = create_in_memory_repositories()
    _, users = await seed_group(repos)
    await seed_group(repos, group_name="lab", members=("X",))
    lab_user = await repos.user_repo.get_by_username("X")
    service = build_rotation_service(repos)

    first = await service.register_payment(users["A"].auth_id, "office", Decimal("1"))
    second = await service.register_payment(users["A"].auth_id, "office", Decimal("2"))
    await service.register_payment(lab_user.auth_id, "lab", Decimal("3"))
    payments = repos.payment_repo.payments
    for offset, summary in enumerate((first, second)):
        payments[summary.payment_id] = replace(
            payments[summary.payment_id],
            payment_date=BASE_TIME + timedelta(hours=offset),
        )

    history = await service.get_latest_payments("A")

    assert [p.payment_id for p in history] == [second.payment_id, first.payment_id]
    assert all(p.group_name == "office" for p in history)
    assert len(await service.get_latest_payments("A", limit=1)) == 1
    with pytest.raises(UserNotFoundError):
        await service.get_latest_payments("nobody")


@pytest.mark.asyncio
async def test_current_turn() -> None:
    """The current turn holder is reported, or None before any decision."""

    repos = create_in_memory_repositories()
    _, users = await seed_group(repos)
    service = build_rotation_service(repos)

    assert await service.get_current_turn("office") is None

    summary = await service.register_payment(users["A"].auth_id, "office", 1)
    current = await service.get_current_turn("office")

    assert current is not None
    assert current.user_id == (await repos.user_repo.get_by_username(
        summary.next_username
    )).user_id
