import logging
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from app.core.config import settings
from app.core.errors import ConflictError, NotFoundError
from app.models.bill import ParticipantPaymentStatus
from app.models.payment import PaymentIntent
from app.repositories.bill_repo import BillRepository
from app.repositories.payment_repo import PaymentRepository

logger = logging.getLogger(__name__)


class PaymentCleanupService:
    """Administrative sweep of intents that never resolved."""

    def __init__(
        self,
        bills: BillRepository,
        payments: PaymentRepository,
        stale_after_hours: int = settings.STALE_INTENT_HOURS,
    ):
        self.bills = bills
        self.payments = payments
        self.stale_after = timedelta(hours=stale_after_hours)

    async def list_open(self) -> List[PaymentIntent]:
        return await self.payments.list_open()

    async def list_stale(self, now: Optional[datetime] = None) -> List[PaymentIntent]:
        """Open intents older than the stale threshold; terminal ones never qualify."""
        now = now or datetime.now(timezone.utc)
        return await self.payments.list_open(created_before=now - self.stale_after)

    async def sweep(self, now: Optional[datetime] = None) -> List[PaymentIntent]:
        stale = await self.list_stale(now)
        logger.info("Found %d stale payments", len(stale))

        deleted = []
        for intent in stale:
            # still open? the reconciler may have confirmed it meanwhile
            if not await self.payments.delete_open(intent.id):
                continue
            await self._reset_participant(intent)
            deleted.append(intent)

        logger.info("Deleted %d stale payments", len(deleted))
        return deleted

    async def force_delete(self, intent_id: str) -> PaymentIntent:
        intent = await self.payments.get(intent_id)
        if intent is None:
            raise NotFoundError("Payment not found", code="payment_not_found")
        if intent.status.is_terminal or not await self.payments.delete_open(intent.id):
            raise ConflictError("Only open payments can be deleted", code="payment_not_open")

        await self._reset_participant(intent)
        logger.info("Deleted payment %s for participant %s", intent.id, intent.participant_id)
        return intent

    async def _reset_participant(self, intent: PaymentIntent):
        await self.bills.update_participant(
            intent.bill_id, intent.participant_id,
            {"payment_status": ParticipantPaymentStatus.PENDING, "payment_id": None}
        )
