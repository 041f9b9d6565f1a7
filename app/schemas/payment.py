from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from app.models.bill import Bill, Currency, Participant, ParticipantPaymentStatus
from app.models.payment import PaymentIntent, PaymentStatus
from app.schemas.bill import ParticipantResponse
from app.schemas.common import CamelModel


class PaymentIntentRequest(CamelModel):
    bill_id: str
    participant_id: Optional[str] = None


class PaymentIntentResponse(CamelModel):
    payment_id: str
    provider: Currency
    deeplink: str
    expires_at: datetime


class PaymentCheckResponse(CamelModel):
    confirmed: bool
    status: PaymentStatus


class PaymentResponse(CamelModel):
    id: str
    bill_id: str
    participant_id: str
    provider: Currency
    amount: Decimal
    deeplink: str
    external_id: str
    status: PaymentStatus
    created_at: datetime
    completed_at: Optional[datetime] = None
    transaction_hash: Optional[str] = None

    @classmethod
    def from_intent(cls, intent: PaymentIntent) -> "PaymentResponse":
        return cls.model_validate(intent, from_attributes=True)


class PaymentBillSummary(CamelModel):
    id: str
    title: str
    currency: Currency
    total_amount: Decimal
    creator_id: str


class PaymentDetailsResponse(CamelModel):
    payment: PaymentResponse
    participant: Optional[ParticipantResponse] = None
    bill: PaymentBillSummary

    @classmethod
    def build(
        cls, intent: PaymentIntent, bill: Bill, participant: Optional[Participant]
    ) -> "PaymentDetailsResponse":
        return cls(
            payment=PaymentResponse.from_intent(intent),
            participant=ParticipantResponse.from_participant(participant) if participant else None,
            bill=PaymentBillSummary(
                id=bill.id,
                title=bill.title,
                currency=bill.currency,
                total_amount=bill.total_amount,
                creator_id=bill.creator_id,
            ),
        )


class PaymentWebhookRequest(CamelModel):
    external_id: str
    status: str


class PaymentWebhookResponse(CamelModel):
    success: bool
    message: str
    changed: bool
    status: PaymentStatus


class OpenPaymentResponse(CamelModel):
    id: str
    bill_id: str
    participant_id: str
    provider: Currency
    amount: Decimal
    status: PaymentStatus
    created_at: datetime


class CleanupResponse(CamelModel):
    success: bool
    message: str
    deleted_payments: List[OpenPaymentResponse]


class ForceDeleteResponse(CamelModel):
    success: bool
    message: str
    deleted_payment: OpenPaymentResponse
    participant_status: ParticipantPaymentStatus = ParticipantPaymentStatus.PENDING
