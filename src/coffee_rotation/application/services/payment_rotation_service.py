"""Service for coffee payments and the group's payer rotation."""

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional, Sequence
from uuid import UUID, uuid4

from coffee_rotation.application.errors import (
    GroupNotFoundError,
    MembershipNotFoundError,
    NoContentError,
    UserNotFoundError,
)
from coffee_rotation.application.ports import (
    GroupRepository,
    MembershipRepository,
    PaymentRepository,
    TransactionManager,
    UserRepository,
)
from coffee_rotation.application.services.outbox_writer import OutboxWriter
from coffee_rotation.application.services.rotation_engine import RotationEngine
from coffee_rotation.domain.entities import (
    Group,
    GroupMembership,
    GroupPaymentRanking,
    Payment,
    RotationDecision,
    User,
)
from coffee_rotation.domain.enums import MembershipStatus, RotationOperation
from coffee_rotation.domain.events import NextPaymentEvent, SkipPaymentEvent
from coffee_rotation.infrastructure.db.session import with_optional_tx
from coffee_rotation.metrics.collector import MetricsCollector

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PaymentSummary:
    """Payment as reported back to the caller."""

    payment_id: UUID
    user_id: UUID
    username: str
    group_id: UUID
    group_name: str
    amount: Decimal
    description: Optional[str]
    payment_date: datetime
    next_username: Optional[str] = None


@dataclass(frozen=True)
class SkipSummary:
    """Result of a skipped turn."""

    user_id: UUID
    username: str
    group_name: str
    next_user_id: UUID
    next_username: str


@dataclass(slots=True)
class PaymentRotationService:
    """Register payments and skips, and hand the turn to the next payer.

    Every write operation runs in one transaction: the group's memberships
    are locked, the acting member is updated, the rotation engine picks the
    next payer, and the resulting event is staged in the outbox. Either all
    of it commits or none of it does.
    """

    user_repo: UserRepository
    group_repo: GroupRepository
    membership_repo: MembershipRepository
    payment_repo: PaymentRepository
    outbox_writer: OutboxWriter
    rotation_engine: RotationEngine = field(default_factory=RotationEngine)
    next_payment_subject: str = "next-payment"
    skip_payment_subject: str = "skip-payment"
    metrics_collector: Optional[MetricsCollector] = None
    transaction_manager: TransactionManager | None = None

    async def register_payment(
        self,
        auth_id: int,
        group_name: str,
        amount: Decimal,
        description: Optional[str] = None,
    ) -> PaymentSummary:
        """Record the user's payment and choose who pays next."""

        async def _run(session: object | None) -> PaymentSummary:
            user, group, roster = await self._load_for_rotation(
                auth_id, group_name, session
            )
            actor = _find_membership(roster, user.user_id, group_name)
            roster = _with_status(roster, actor, MembershipStatus.PAID)
            payment = await self._save_payment(actor, amount, description, session)

            roster = list(self.rotation_engine.reset_skipped(roster))
            decision = self.rotation_engine.determine_next_payer(
                roster, exclude_user_ids={user.user_id}
            )
            next_user = await self._commit_decision(
                decision, group, RotationOperation.PAYMENT, session
            )
            await self.outbox_writer.append(
                self.next_payment_subject,
                _next_payment_event(payment, user, next_user, group),
                session=session,
            )
            logger.info(
                "Payment registered",
                extra={
                    "payment_id": str(payment.payment_id),
                    "group_name": group.name,
                    "payer": user.username,
                    "next_payer": next_user.username,
                },
            )
            return _to_summary(payment, user, group, next_user.username)

        return await with_optional_tx(self.transaction_manager, _run)

    async def pay_for(
        self,
        auth_id: int,
        group_name: str,
        amount: Decimal,
        description: Optional[str] = None,
    ) -> PaymentSummary:
        """Pay on behalf of the member whose turn it currently is.

        The turn holder is marked as paid and the acting user too, so neither
        is picked again this round. The payment row belongs to the acting
        user and the emitted event describes them as the last payer.
        """

        async def _run(session: object | None) -> PaymentSummary:
            user, group, roster = await self._load_for_rotation(
                auth_id, group_name, session
            )
            actor = _find_membership(roster, user.user_id, group_name)
            beneficiary = next((m for m in roster if m.my_turn), None)
            if beneficiary is None:
                raise MembershipNotFoundError(
                    f"Nobody holds the turn in group {group_name}."
                )

            roster = _with_status(roster, actor, MembershipStatus.PAID)
            roster = _with_status(roster, beneficiary, MembershipStatus.PAID)
            payment = await self._save_payment(actor, amount, description, session)

            roster = list(self.rotation_engine.reset_skipped(roster))
            decision = self.rotation_engine.determine_next_payer(
                roster, exclude_user_ids={user.user_id, beneficiary.user_id}
            )
            next_user = await self._commit_decision(
                decision, group, RotationOperation.PAY_FOR, session
            )
            await self.outbox_writer.append(
                self.next_payment_subject,
                _next_payment_event(payment, user, next_user, group),
                session=session,
            )
            logger.info(
                "Payment registered on behalf of turn holder",
                extra={
                    "payment_id": str(payment.payment_id),
                    "group_name": group.name,
                    "payer": user.username,
                    "beneficiary_user_id": str(beneficiary.user_id),
                    "next_payer": next_user.username,
                },
            )
            return _to_summary(payment, user, group, next_user.username)

        return await with_optional_tx(self.transaction_manager, _run)

    async def skip_payment(self, auth_id: int, group_name: str) -> SkipSummary:
        """Skip the user's turn for this decision and choose who pays next."""

        async def _run(session: object | None) -> SkipSummary:
            user, group, roster = await self._load_for_rotation(
                auth_id, group_name, session
            )
            actor = _find_membership(roster, user.user_id, group_name)
            roster = _with_status(roster, actor, MembershipStatus.SKIPPED)

            roster = list(
                self.rotation_engine.reset_skipped(roster, keep_user_id=user.user_id)
            )
            decision = self.rotation_engine.determine_next_payer(
                roster, exclude_user_ids={user.user_id}
            )
            next_user = await self._commit_decision(
                decision, group, RotationOperation.SKIP, session
            )
            await self.outbox_writer.append(
                self.skip_payment_subject,
                SkipPaymentEvent(
                    next_user_id=next_user.user_id,
                    next_username=next_user.username,
                    next_email=next_user.email,
                ),
                session=session,
            )
            logger.info(
                "Payment skipped",
                extra={
                    "group_name": group.name,
                    "skipper": user.username,
                    "next_payer": next_user.username,
                },
            )
            return SkipSummary(
                user_id=user.user_id,
                username=user.username,
                group_name=group.name,
                next_user_id=next_user.user_id,
                next_username=next_user.username,
            )

        return await with_optional_tx(self.transaction_manager, _run)

    async def get_group_payment_ranking(
        self, auth_id: int, group_name: str
    ) -> List[GroupPaymentRanking]:
        """Return payment counts and totals per member of the group."""

        async def _run(session: object | None) -> List[GroupPaymentRanking]:
            await self._get_user(auth_id, session)
            group = await self._get_group(group_name, session)
            ranking = await self.payment_repo.ranking_by_group(
                group.group_id, session=session
            )
            if not ranking:
                raise NoContentError(f"No payments in group {group_name}.")
            return ranking

        return await with_optional_tx(self.transaction_manager, _run)

    async def get_latest_payments(
        self, username: str, limit: int = 20
    ) -> List[PaymentSummary]:
        """Return the user's most recent payments across groups."""

        async def _run(session: object | None) -> List[PaymentSummary]:
            user = await self.user_repo.get_by_username(username, session=session)
            if user is None:
                raise UserNotFoundError(f"User not found: {username}")
            memberships = {
                m.membership_id: m
                for m in await self.membership_repo.list_by_user(
                    user.user_id, session=session
                )
            }
            payments = await self.payment_repo.list_latest_by_user(
                user.user_id, limit=limit, session=session
            )
            groups: Dict[UUID, Group] = {}
            summaries = []
            for payment in payments:
                group_id = memberships[payment.membership_id].group_id
                if group_id not in groups:
                    group = await self.group_repo.get_by_id(group_id, session=session)
                    if group is None:
                        raise GroupNotFoundError(f"Group not found: {group_id}")
                    groups[group_id] = group
                summaries.append(_to_summary(payment, user, groups[group_id]))
            return summaries

        return await with_optional_tx(self.transaction_manager, _run)

    async def get_current_turn(self, group_name: str) -> Optional[GroupMembership]:
        """Return the membership holding the turn, if any."""

        async def _run(session: object | None) -> Optional[GroupMembership]:
            group = await self._get_group(group_name, session)
            roster = await self.membership_repo.list_by_group(
                group.group_id, session=session
            )
            return next((m for m in roster if m.my_turn), None)

        return await with_optional_tx(self.transaction_manager, _run)

    async def _get_user(self, auth_id: int, session: object | None) -> User:
        user = await self.user_repo.get_by_auth_id(auth_id, session=session)
        if user is None:
            raise UserNotFoundError(f"User not found: {auth_id}")
        return user

    async def _get_group(self, group_name: str, session: object | None) -> Group:
        group = await self.group_repo.get_by_name(group_name, session=session)
        if group is None:
            raise GroupNotFoundError(f"Group not found: {group_name}")
        return group

    async def _load_for_rotation(
        self, auth_id: int, group_name: str, session: object | None
    ) -> tuple[User, Group, List[GroupMembership]]:
        """Resolve actor and group, then lock the group's memberships."""

        user = await self._get_user(auth_id, session)
        group = await self._get_group(group_name, session)
        roster = await self.membership_repo.list_by_group_for_update(
            group.group_id, session=session
        )
        return user, group, roster

    async def _save_payment(
        self,
        membership: GroupMembership,
        amount: Decimal,
        description: Optional[str],
        session: object | None,
    ) -> Payment:
        payment = Payment(
            payment_id=uuid4(),
            membership_id=membership.membership_id,
            amount=Decimal(str(amount)),
            description=description,
            payment_date=datetime.now(timezone.utc),
        )
        await self.payment_repo.save(payment, session=session)
        return payment

    async def _commit_decision(
        self,
        decision: RotationDecision,
        group: Group,
        operation: RotationOperation,
        session: object | None,
    ) -> User:
        """Persist the updated roster and return the next payer's user."""

        await self.membership_repo.save_all(decision.memberships, session=session)
        next_user = await self.user_repo.get_by_id(
            decision.next_payer.user_id, session=session
        )
        if next_user is None:
            raise UserNotFoundError(
                f"User not found: {decision.next_payer.user_id}"
            )
        if self.metrics_collector:
            self.metrics_collector.record_rotation(
                operation.value, group.name, decision.round_reset
            )
        return next_user


def _find_membership(
    roster: Sequence[GroupMembership], user_id: UUID, group_name: str
) -> GroupMembership:
    membership = next((m for m in roster if m.user_id == user_id), None)
    if membership is None:
        raise MembershipNotFoundError(
            f"User {user_id} is not a member of group {group_name}."
        )
    return membership


def _with_status(
    roster: Sequence[GroupMembership],
    target: GroupMembership,
    status: MembershipStatus,
) -> List[GroupMembership]:
    """Return roster with target's status set and its turn cleared."""

    return [
        replace(m, status=status, my_turn=False)
        if m.membership_id == target.membership_id
        else m
        for m in roster
    ]


def _next_payment_event(
    payment: Payment, payer: User, next_user: User, group: Group
) -> NextPaymentEvent:
    return NextPaymentEvent(
        last_payment_id=payment.payment_id,
        last_payer_username=payer.username,
        last_payer_email=payer.email,
        next_user_id=next_user.user_id,
        next_username=next_user.username,
        next_email=next_user.email,
        last_payment_date=payment.payment_date,
        amount=payment.amount,
        group_name=group.name,
    )


def _to_summary(
    payment: Payment,
    user: User,
    group: Group,
    next_username: Optional[str] = None,
) -> PaymentSummary:
    return PaymentSummary(
        payment_id=payment.payment_id,
        user_id=user.user_id,
        username=user.username,
        group_id=group.group_id,
        group_name=group.name,
        amount=payment.amount,
        description=payment.description,
        payment_date=payment.payment_date,
        next_username=next_username,
    )
