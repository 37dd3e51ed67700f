"""Next-payer selection for a group's coffee rotation."""

import logging
import secrets
from collections.abc import Collection, Iterable
from dataclasses import dataclass, field, replace
from typing import Optional
from uuid import UUID

from coffee_rotation.application.errors import ActiveMemberNotInGroupError
from coffee_rotation.application.ports import RandomSource
from coffee_rotation.domain.entities import GroupMembership, RotationDecision
from coffee_rotation.domain.enums import MembershipStatus

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class RotationEngine:
    """Pure rotation rules over a group's roster.

    The engine never touches storage: it receives memberships and returns the
    updated roster. Ties are broken uniformly at random so no member is
    favoured by join order; inject a seeded `random.Random` for reproducible
    tests.
    """

    rng: RandomSource = field(default_factory=secrets.SystemRandom)

    def reset_skipped(
        self,
        memberships: Iterable[GroupMembership],
        keep_user_id: Optional[UUID] = None,
    ) -> tuple[GroupMembership, ...]:
        """Return the roster with one previously skipped member set to NOT_PAID.

        A skip only lasts one decision. `keep_user_id` is the member skipping
        right now, whose fresh skip must survive this reset.
        """

        roster = list(memberships)
        for index, membership in enumerate(roster):
            if membership.status != MembershipStatus.SKIPPED:
                continue
            if membership.user_id == keep_user_id:
                continue
            roster[index] = replace(membership, status=MembershipStatus.NOT_PAID)
            logger.debug(
                "Skipped member reset to NOT_PAID",
                extra={
                    "group_id": str(membership.group_id),
                    "user_id": str(membership.user_id),
                },
            )
            break
        return tuple(roster)

    def determine_next_payer(
        self,
        memberships: Iterable[GroupMembership],
        exclude_user_ids: Collection[UUID] = (),
    ) -> RotationDecision:
        """Choose who pays next and move the turn flag to them.

        NOT_PAID members are preferred. When nobody is left in the round, all
        statuses go back to NOT_PAID and the pick is made among everyone
        except `exclude_user_ids` (unless that would leave nobody).
        """

        roster = list(memberships)
        if not roster:
            raise ActiveMemberNotInGroupError("No active members found in group.")

        group_id = roster[0].group_id
        candidates = [m for m in roster if m.status == MembershipStatus.NOT_PAID]
        round_reset = not candidates

        if round_reset:
            roster = [replace(m, status=MembershipStatus.NOT_PAID) for m in roster]
            candidates = [m for m in roster if m.user_id not in exclude_user_ids]
            if not candidates:
                candidates = roster
            logger.info(
                "Everyone paid or skipped, starting a new round",
                extra={"group_id": str(group_id), "members": len(roster)},
            )

        chosen = self.rng.choice(candidates)
        updated = tuple(
            replace(m, my_turn=m.membership_id == chosen.membership_id)
            for m in roster
        )
        next_payer = next(
            m for m in updated if m.membership_id == chosen.membership_id
        )
        return RotationDecision(
            memberships=updated, next_payer=next_payer, round_reset=round_reset
        )
