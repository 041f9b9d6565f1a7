import logging
from decimal import Decimal
from typing import List

from app.core.config import settings
from app.core.errors import AccessDeniedError, ConflictError, InvalidInputError, NotFoundError
from app.models.bill import Bill, BillStatus, Participant, ParticipantPaymentStatus, SplitMode
from app.models.user import User
from app.repositories.bill_repo import BillRepository
from app.repositories.payment_repo import PaymentRepository
from app.repositories.user_repo import UserRepository
from app.schemas.bill import BillCreate, ParticipantCreate
from app.services.access import can_view_bill
from app.utils.split_calculator import compute_equal_shares, validate_custom_split
from app.utils.ton_address import is_valid_ton_address, normalize_ton_address

logger = logging.getLogger(__name__)


def share_url(bill_id: str) -> str:
    return f"{settings.FRONTEND_URL}?startapp=bill_{bill_id}"


class BillService:
    def __init__(self, bills: BillRepository, payments: PaymentRepository, users: UserRepository):
        self.bills = bills
        self.payments = payments
        self.users = users

    async def create_bill(self, bill_in: BillCreate, creator: User) -> Bill:
        """
        Create a bill with its whole participant set in one insert.

        EQUAL splits are computed here (every share rounded up); CUSTOM shares
        must cover the total to within 0.01.
        """
        if bill_in.total_amount <= 0:
            raise InvalidInputError("Bill total must be positive", code="invalid_total")
        if not bill_in.participants:
            raise InvalidInputError("Bill must have at least one participant", code="no_participants")
        if sum(1 for p in bill_in.participants if p.is_payer) > 1:
            raise InvalidInputError("Only one participant can be the payer", code="multiple_payers")

        shares = self._compute_shares(bill_in)

        if bill_in.creator_wallet_address:
            if not is_valid_ton_address(bill_in.creator_wallet_address):
                raise InvalidInputError("Invalid TON wallet address", code="invalid_address")
            await self.users.update_wallet(
                creator.id, normalize_ton_address(bill_in.creator_wallet_address)
            )

        bill = Bill(
            title=bill_in.title,
            total_amount=bill_in.total_amount,
            currency=bill_in.currency,
            split_mode=bill_in.split_mode,
            creator_id=creator.id,
        )
        bill.participants = [
            Participant(
                bill_id=bill.id,
                user_id=await self._resolve_user_id(p, creator),
                telegram_user_id=p.telegram_user_id,
                telegram_username=p.telegram_username.lstrip("@") if p.telegram_username else None,
                name=p.name,
                share_amount=share,
                is_payer=p.is_payer,
            )
            for p, share in zip(bill_in.participants, shares)
        ]

        await self.bills.create(bill)
        logger.info(
            "Created bill %s (%s %s, %d participants)",
            bill.id, bill.total_amount, bill.currency.value, len(bill.participants)
        )
        return bill

    async def get_bill(self, bill_id: str, user: User) -> Bill:
        bill = await self.bills.get(bill_id)
        if bill is None:
            raise NotFoundError("Bill not found", code="bill_not_found")
        if not can_view_bill(bill, user):
            raise AccessDeniedError("Access to this bill is denied")
        return bill

    async def close_bill(self, bill_id: str, user: User) -> Bill:
        bill = await self._get_owned(bill_id, user, "close")
        if bill.status == BillStatus.CLOSED:
            raise ConflictError("Bill is already closed", code="bill_closed")
        if not bill.is_settled():
            raise ConflictError("Cannot close bill with unpaid participants", code="unpaid_participants")

        await self.bills.set_status(bill.id, BillStatus.CLOSED, expected=BillStatus.OPEN)
        bill.status = BillStatus.CLOSED
        return bill

    async def delete_bill(self, bill_id: str, user: User) -> None:
        """Only allowed before any payment has started."""
        bill = await self._get_owned(bill_id, user, "delete")
        paid = any(p.payment_status == ParticipantPaymentStatus.PAID for p in bill.participants)
        if paid or await self.payments.exists_for_bill(bill.id):
            raise ConflictError(
                "Cannot delete a bill once payments have started", code="payments_started"
            )
        await self.bills.soft_delete(bill.id)

    async def _get_owned(self, bill_id: str, user: User, action: str) -> Bill:
        bill = await self.bills.get(bill_id)
        if bill is None:
            raise NotFoundError("Bill not found", code="bill_not_found")
        if bill.creator_id != user.id:
            raise AccessDeniedError(f"Only bill creator can {action} the bill")
        return bill

    @staticmethod
    def _compute_shares(bill_in: BillCreate) -> List[Decimal]:
        if bill_in.split_mode == SplitMode.EQUAL:
            return compute_equal_shares(bill_in.total_amount, len(bill_in.participants))

        shares = [p.share_amount for p in bill_in.participants]
        if any(share is None for share in shares):
            raise InvalidInputError(
                "Custom split requires a share amount for every participant",
                code="missing_share",
            )
        validate_custom_split(bill_in.total_amount, shares)
        return shares

    async def _resolve_user_id(self, participant: ParticipantCreate, creator: User) -> str | None:
        if participant.telegram_user_id is None:
            return None
        if participant.telegram_user_id == creator.telegram_user_id:
            return creator.id
        user = await self.users.get_user_by_telegram_id(participant.telegram_user_id)
        return user.id if user else None
