"""
PaymentIntent model - a request to pay one participant's share.

Invariants:
- amount is a snapshot of the share at creation; later share edits don't touch it
- deeplink is rendered once and never rewritten
- status only moves forward: created -> pending -> confirmed | failed
- completed_at is set only on confirmed
- is_open mirrors status in {created, pending}; a partial unique index on
  (participant_id, is_open=true) keeps one open intent per participant
- settled turns true once a confirmation has reached the participant (PAID),
  the bill and subscribers; a confirmed, unsettled intent is resumed by the
  next reconciliation
"""

from enum import Enum
from typing import Optional

from app.models.base import MongoModel, Money, UTCDateTime
from app.models.bill import Currency


class PaymentStatus(str, Enum):
    CREATED = "created"
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


OPEN_STATUSES = (PaymentStatus.CREATED, PaymentStatus.PENDING)
TERMINAL_STATUSES = (PaymentStatus.CONFIRMED, PaymentStatus.FAILED)

# Providers whose transfers the reconciler can see on chain by memo + value.
# USDT rides TON as a jetton and confirms through the webhook instead.
CHAIN_RECONCILED_PROVIDERS = (Currency.TON,)


class PaymentIntent(MongoModel):
    bill_id: str
    participant_id: str
    provider: Currency
    amount: Money
    deeplink: str
    external_id: str
    status: PaymentStatus = PaymentStatus.CREATED
    is_open: bool = True
    completed_at: Optional[UTCDateTime] = None
    transaction_hash: Optional[str] = None
    settled: bool = False
