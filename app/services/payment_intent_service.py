import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Tuple

from app.core.config import settings
from app.core.errors import AccessDeniedError, ConfigurationError, ConflictError, NotFoundError
from app.models.bill import Bill, Participant, ParticipantPaymentStatus
from app.models.payment import PaymentIntent, PaymentStatus
from app.models.user import User
from app.repositories.bill_repo import BillRepository
from app.repositories.payment_repo import PaymentRepository
from app.repositories.user_repo import UserRepository
from app.services.access import can_view_payment, find_participant_for, participant_matches
from app.utils.payment_links import build_payment_deeplink
from app.utils.ton_address import InvalidAddressError

logger = logging.getLogger(__name__)


def generate_external_id() -> str:
    return f"ext_{uuid.uuid4().hex}"


@dataclass
class IssuedIntent:
    intent: PaymentIntent
    expires_at: datetime


class PaymentIntentService:
    """Issues payment requests for participants' shares."""

    def __init__(
        self,
        bills: BillRepository,
        payments: PaymentRepository,
        users: UserRepository,
        ttl_minutes: int = settings.PAYMENT_INTENT_TTL_MINUTES,
        jetton_master: str = settings.USDT_JETTON_MASTER,
    ):
        self.bills = bills
        self.payments = payments
        self.users = users
        self.ttl = timedelta(minutes=ttl_minutes)
        self.jetton_master = jetton_master

    async def create_intent(
        self, bill_id: str, user: User, participant_id: Optional[str] = None
    ) -> IssuedIntent:
        """
        Create a payment intent for the caller's share of a bill.

        Checks, in order:
        1. bill exists
        2. participant belongs to the bill and is the caller
        3. share not already paid
        4. no open intent for this participant
        5. bill creator has a receiving wallet
        """
        bill = await self.bills.get(bill_id)
        if bill is None:
            raise NotFoundError("Bill not found", code="bill_not_found")

        participant = self._resolve_participant(bill, user, participant_id)

        if participant.payment_status == ParticipantPaymentStatus.PAID:
            raise ConflictError("Payment already completed", code="already_paid")
        if participant.payment_id:
            # confirmed on chain but the participant update has not landed yet
            current = await self.payments.get(participant.payment_id)
            if current is not None and current.status == PaymentStatus.CONFIRMED:
                raise ConflictError("Payment already completed", code="already_paid")

        existing = await self.payments.find_open_for_participant(participant.id)
        if existing is not None:
            raise ConflictError("Payment already in progress", code="payment_in_progress")

        address = await self.users.get_receiving_address(bill.creator_id)
        if not address:
            raise ConfigurationError(
                "The bill creator has not configured a wallet to receive payments",
                code="creator_wallet_missing",
            )

        try:
            deeplink = build_payment_deeplink(
                bill.currency,
                address,
                participant.share_amount,
                bill.id,
                jetton_master=self.jetton_master,
            )
        except InvalidAddressError as e:
            raise ConfigurationError(
                "The bill creator's wallet address is invalid",
                code="creator_wallet_invalid",
            ) from e

        intent = PaymentIntent(
            bill_id=bill.id,
            participant_id=participant.id,
            provider=bill.currency,
            amount=participant.share_amount,
            deeplink=deeplink,
            external_id=generate_external_id(),
            status=PaymentStatus.CREATED,
        )
        await self.payments.insert(intent)

        fields = {
            "payment_id": intent.id,
            "payment_status": ParticipantPaymentStatus.PENDING,
        }
        if not participant.is_resolved:
            fields["user_id"] = user.id
        await self.bills.update_participant(bill.id, participant.id, fields)

        logger.info(
            "Created payment %s for participant %s of bill %s (%s %s)",
            intent.id, participant.id, bill.id, intent.amount, intent.provider.value
        )
        return IssuedIntent(intent=intent, expires_at=intent.created_at + self.ttl)

    async def get_intent_details(
        self, intent_id: str, user: User
    ) -> Tuple[PaymentIntent, Bill, Optional[Participant]]:
        intent = await self.payments.get(intent_id)
        if intent is None:
            raise NotFoundError("Payment not found", code="payment_not_found")

        bill = await self.bills.get(intent.bill_id)
        if bill is None:
            raise NotFoundError("Bill not found", code="bill_not_found")

        participant = bill.get_participant(intent.participant_id)
        if not can_view_payment(bill, participant, user):
            raise AccessDeniedError("Access to this payment is denied")
        return intent, bill, participant

    @staticmethod
    def _resolve_participant(
        bill: Bill, user: User, participant_id: Optional[str]
    ) -> Participant:
        if participant_id is not None:
            participant = bill.get_participant(participant_id)
            if participant is None or not participant_matches(participant, user):
                participant = None
        else:
            participant = find_participant_for(bill, user)

        if participant is None:
            raise NotFoundError("Participant not found", code="participant_not_found")
        return participant

