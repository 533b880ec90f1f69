"""
Sign Rules

Which entity a transaction moves, and in which direction.

    type          target                 delta
    expense       account                -amount
    expense       card                   +amount   (more debt)
    income        account                +amount
    income        card                   -amount   (refund lowers debt)
    card_payment  card (required)        -amount, floored at zero
    card_payment  source account (opt.)  -amount

The floor on the card payment depends on the card's balance at the moment
of application, so it cannot be planned here. A planned card-payment
delta is marked floored and the store applies the floor atomically.
"""

from decimal import Decimal
from typing import Union

from pydantic import BaseModel, ConfigDict

from pocketledger.models.ledger import (
    AccountRef,
    BalanceDelta,
    CardRef,
    EntityKind,
    EntityRef,
    Transaction,
    TransactionIntent,
    TransactionType,
)


_SIGNS = {
    (TransactionType.EXPENSE, EntityKind.ACCOUNT): -1,
    (TransactionType.EXPENSE, EntityKind.CARD): 1,
    (TransactionType.INCOME, EntityKind.ACCOUNT): 1,
    (TransactionType.INCOME, EntityKind.CARD): -1,
    (TransactionType.CARD_PAYMENT, EntityKind.CARD): -1,
    (TransactionType.CARD_PAYMENT, EntityKind.ACCOUNT): -1,
}


class PlannedDelta(BaseModel):
    """A delta to apply. amount is signed."""
    model_config = ConfigDict(frozen=True)

    entity: EntityRef
    amount: Decimal
    floored: bool = False


def sign_for(transaction_type: TransactionType, kind: EntityKind) -> int:
    return _SIGNS[(transaction_type, kind)]


def plan_deltas(intent: TransactionIntent) -> list[PlannedDelta]:
    """
    Deltas for one application of an intent, card first.

    Income/expense without an owning entity plans nothing.
    """
    planned: list[PlannedDelta] = []

    if intent.card_id is not None:
        planned.append(PlannedDelta(
            entity=CardRef(id=intent.card_id),
            amount=intent.amount * sign_for(intent.type, EntityKind.CARD),
            floored=intent.type == TransactionType.CARD_PAYMENT,
        ))

    if intent.account_id is not None:
        planned.append(PlannedDelta(
            entity=AccountRef(id=intent.account_id),
            amount=intent.amount * sign_for(intent.type, EntityKind.ACCOUNT),
        ))

    return planned


def derive_deltas(transaction: Union[Transaction, TransactionIntent]) -> list[BalanceDelta]:
    """
    Reconstruct deltas for a transaction stored without any.

    Only used for records written before deltas were recorded. The card
    payment floor cannot be recovered, so the full amount is assumed.
    """
    return [
        BalanceDelta(entity=planned.entity, amount=planned.amount)
        for planned in plan_deltas(transaction)
    ]


def inverse(delta: BalanceDelta) -> BalanceDelta:
    """The delta that cancels another one on the same entity."""
    return BalanceDelta(entity=delta.entity, amount=-delta.amount)
