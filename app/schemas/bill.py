from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import Field

from app.models.bill import Bill, BillStatus, Currency, Participant, ParticipantPaymentStatus, SplitMode
from app.schemas.common import CamelModel


class ParticipantCreate(CamelModel):
    name: str = Field(..., min_length=1, max_length=100)
    telegram_user_id: Optional[str] = None
    telegram_username: Optional[str] = None
    share_amount: Optional[Decimal] = None  # ignored for equal splits
    is_payer: bool = False


class BillCreate(CamelModel):
    title: str = Field(..., min_length=1, max_length=200)
    total_amount: Decimal
    currency: Currency
    split_mode: SplitMode
    participants: List[ParticipantCreate]
    creator_wallet_address: Optional[str] = None


class BillCreateResponse(CamelModel):
    id: str
    share_url: str


class ParticipantResponse(CamelModel):
    id: str
    name: str
    user_id: Optional[str] = None
    telegram_username: Optional[str] = None
    share_amount: Decimal
    payment_status: ParticipantPaymentStatus
    is_payer: bool
    payment_id: Optional[str] = None

    @classmethod
    def from_participant(cls, participant: Participant) -> "ParticipantResponse":
        return cls.model_validate(participant, from_attributes=True)


class BillSummary(CamelModel):
    total_paid: Decimal
    total_pending: Decimal
    paid_count: int
    total_count: int


class BillDetailsResponse(CamelModel):
    id: str
    title: str
    currency: Currency
    total_amount: Decimal
    split_mode: SplitMode
    status: BillStatus
    creator_id: str
    created_at: datetime
    updated_at: datetime
    participants: List[ParticipantResponse]
    summary: BillSummary

    @classmethod
    def from_bill(cls, bill: Bill) -> "BillDetailsResponse":
        paid = [p for p in bill.participants if p.payment_status == ParticipantPaymentStatus.PAID]
        pending = [p for p in bill.participants if p.owes]
        return cls(
            id=bill.id,
            title=bill.title,
            currency=bill.currency,
            total_amount=bill.total_amount,
            split_mode=bill.split_mode,
            status=bill.status,
            creator_id=bill.creator_id,
            created_at=bill.created_at,
            updated_at=bill.updated_at,
            participants=[ParticipantResponse.from_participant(p) for p in bill.participants],
            summary=BillSummary(
                total_paid=sum((p.share_amount for p in paid), Decimal("0")),
                total_pending=sum((p.share_amount for p in pending), Decimal("0")),
                paid_count=len(paid),
                total_count=len(bill.participants),
            ),
        )
