"""Domain enums for the coffee rotation service."""

from enum import StrEnum


class MembershipStatus(StrEnum):
    """Payment state of a member within the current round."""

    NOT_PAID = "NOT_PAID"
    PAID = "PAID"
    SKIPPED = "SKIPPED"


class RotationOperation(StrEnum):
    """Business operation that triggered a rotation decision."""

    PAYMENT = "payment"
    PAY_FOR = "pay_for"
    SKIP = "skip"
