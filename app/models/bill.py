"""
Bill model - a shared expense and the people splitting it.

Design principles:
- Participants are embedded in the bill document, so creating a bill with its
  full participant set is a single atomic insert
- total_amount and currency never change after creation
- All amounts are Decimals (stored as Decimal128), never floats
"""

from decimal import Decimal
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from app.models.base import MongoModel, Money, UTCDateTime, _utcnow, new_id


class Currency(str, Enum):
    USDT = "USDT"
    TON = "TON"


class SplitMode(str, Enum):
    EQUAL = "equal"
    CUSTOM = "custom"


class BillStatus(str, Enum):
    OPEN = "open"
    CLOSED = "closed"


class ParticipantPaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"


# Embedded documents don't need MongoModel (no separate collection)
class Participant(BaseModel):
    id: str = Field(default_factory=new_id)
    bill_id: str

    # Identity: either resolved (user_id) or still just Telegram details / a name
    user_id: Optional[str] = None
    telegram_user_id: Optional[str] = None
    telegram_username: Optional[str] = None
    name: str

    share_amount: Money
    payment_status: ParticipantPaymentStatus = ParticipantPaymentStatus.PENDING
    is_payer: bool = False
    payment_id: Optional[str] = None
    joined_at: UTCDateTime = Field(default_factory=_utcnow)

    @property
    def is_resolved(self) -> bool:
        return self.user_id is not None

    @property
    def owes(self) -> bool:
        """Payer is excluded from unpaid checks."""
        return not self.is_payer and self.payment_status != ParticipantPaymentStatus.PAID


class Bill(MongoModel):
    title: str
    total_amount: Money
    currency: Currency
    split_mode: SplitMode
    status: BillStatus = BillStatus.OPEN
    creator_id: str
    participants: List[Participant] = []
    is_deleted: bool = False

    def get_participant(self, participant_id: str) -> Optional[Participant]:
        for participant in self.participants:
            if participant.id == participant_id:
                return participant
        return None

    def unpaid_participants(self) -> List[Participant]:
        return [p for p in self.participants if p.owes]

    def is_settled(self) -> bool:
        return not self.unpaid_participants()

    def shares_total(self) -> Decimal:
        return sum((p.share_amount for p in self.participants), Decimal("0"))
