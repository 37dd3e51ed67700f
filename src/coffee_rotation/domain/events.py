"""Wire contracts for events published by the rotation service.

Payloads are serialized with camelCase keys; downstream consumers (the mail
service) rely on these names.
"""

from datetime import datetime
from decimal import Decimal
from typing import Annotated
from uuid import UUID

from pydantic import BaseModel, ConfigDict, PlainSerializer
from pydantic.alias_generators import to_camel

# Consumers expect a JSON number for amounts.
JsonDecimal = Annotated[
    Decimal, PlainSerializer(float, return_type=float, when_used="json")
]


class _EventModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )


class NextPaymentEvent(_EventModel):
    """Emitted after a payment: who paid last and who pays next."""

    last_payment_id: UUID
    last_payer_username: str
    last_payer_email: str
    next_user_id: UUID
    next_username: str
    next_email: str
    last_payment_date: datetime
    amount: JsonDecimal
    group_name: str


class SkipPaymentEvent(_EventModel):
    """Emitted after a member skips their turn."""

    next_user_id: UUID
    next_username: str
    next_email: str
