"""
Chain reconciler - confirms payment intents against observed transfers.

Per intent:
- created/pending --(matching transfer, amount within 0.001)--> confirmed
- created/pending --(indexer error or timeout)--> unchanged, retried next sweep
- confirmed/failed are terminal; reconciling them again does nothing

Matching takes the latest transfer to the creator's wallet whose memo carries
"bill_<billId>". Two participants of one bill owing the same amount can't be
told apart by amount, so each payer's memo is all that separates them.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Awaitable, Callable, Iterable, List, Optional

from app.core.config import settings
from app.core.errors import InvalidInputError, NotFoundError
from app.models.bill import BillStatus, Currency, ParticipantPaymentStatus
from app.models.payment import (
    CHAIN_RECONCILED_PROVIDERS,
    OPEN_STATUSES,
    PaymentIntent,
    PaymentStatus,
)
from app.repositories.bill_repo import BillRepository
from app.repositories.payment_repo import PaymentRepository
from app.repositories.user_repo import UserRepository
from app.services.chain_indexer import ChainIndexer, ChainTransfer, IndexerError
from app.services.notifier import IntentConfirmed, IntentFailed, SettlementNotifier
from app.utils.payment_links import bill_token, from_base_units
from app.utils.ton_address import format_address_for_display, same_address

logger = logging.getLogger(__name__)

MATCH_TOLERANCE = Decimal("0.001")

WEBHOOK_STATUSES = {
    "pending": PaymentStatus.PENDING,
    "confirmed": PaymentStatus.CONFIRMED,
    "failed": PaymentStatus.FAILED,
}


def select_matching_transfers(
    transfers: Iterable[ChainTransfer], bill_id: str, receiving_address: str
) -> List[ChainTransfer]:
    """Incoming transfers to the receiving address that mention bill_<billId>."""
    token = bill_token(bill_id)
    return [
        t for t in transfers
        if t.memo and token in t.memo and same_address(t.destination, receiving_address)
    ]


def latest_transfer(transfers: List[ChainTransfer]) -> Optional[ChainTransfer]:
    """Most recent by chain time; ties broken by hash so the pick is stable."""
    if not transfers:
        return None
    return max(transfers, key=lambda t: (t.timestamp, t.hash))


def amount_matches(received: Decimal, expected: Decimal) -> bool:
    return abs(received - expected) <= MATCH_TOLERANCE


@dataclass
class WebhookResult:
    intent: PaymentIntent
    changed: bool


class ChainReconciler:
    def __init__(
        self,
        bills: BillRepository,
        payments: PaymentRepository,
        users: UserRepository,
        indexer: ChainIndexer,
        notifier: SettlementNotifier,
        transfer_limit: int = settings.RECONCILE_TRANSFER_LIMIT,
        query_timeout: float = settings.TON_API_TIMEOUT_SECONDS,
        delay_seconds: float = settings.RECONCILE_DELAY_SECONDS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.bills = bills
        self.payments = payments
        self.users = users
        self.indexer = indexer
        self.notifier = notifier
        self.transfer_limit = transfer_limit
        self.query_timeout = query_timeout
        self.delay_seconds = delay_seconds
        self.sleep = sleep

    async def reconcile_one(self, intent_id: str) -> bool:
        """
        Try to confirm one intent from chain data.

        Returns True only when this call confirmed it. Indexer trouble means
        "not confirmed yet", never an error and never a failed payment. A
        confirmed intent whose follow-up writes were interrupted is finished
        here instead.
        """
        intent = await self.payments.get(intent_id)
        if intent is None:
            return False
        if intent.status == PaymentStatus.CONFIRMED and not intent.settled:
            await self._resume_confirmation(intent)
            return False
        if intent.status.is_terminal:
            return False
        if intent.provider not in CHAIN_RECONCILED_PROVIDERS:
            return False

        bill = await self.bills.get(intent.bill_id)
        if bill is None:
            logger.warning("Payment %s refers to missing bill %s", intent.id, intent.bill_id)
            return False

        address = await self.users.get_receiving_address(bill.creator_id)
        if not address:
            logger.warning("No creator wallet address found for bill %s", bill.id)
            return False

        try:
            transfers = await asyncio.wait_for(
                self.indexer.list_recent_transfers(address, self.transfer_limit),
                timeout=self.query_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("Timed out fetching transfers for payment %s", intent.id)
            return False
        except IndexerError as e:
            logger.warning(
                "Could not fetch transfers to %s for payment %s: %s",
                format_address_for_display(address), intent.id, e
            )
            return False
        except Exception:
            logger.exception("Unexpected error fetching transfers for payment %s", intent.id)
            return False

        transfer = latest_transfer(select_matching_transfers(transfers, bill.id, address))
        if transfer is None:
            return False

        received = from_base_units(transfer.value, Currency.TON)
        if not amount_matches(received, intent.amount):
            logger.info(
                "Transfer %s for bill %s carries %s, payment %s expects %s",
                transfer.hash, bill.id, received, intent.id, intent.amount
            )
            return False

        completed_at = datetime.fromtimestamp(transfer.timestamp, tz=timezone.utc)
        confirmed = await self._confirm(intent, completed_at, transfer.hash)
        if confirmed:
            logger.info("Payment %s confirmed with transaction %s", intent.id, transfer.hash)
        return confirmed

    async def reconcile_all_pending(self) -> int:
        """
        Sweep every open chain-backed intent once, sequentially.

        One intent blowing up doesn't stop the rest. Returns how many were
        confirmed by this sweep.
        """
        for unsettled in await self.payments.list_unsettled():
            await self._resume_confirmation(unsettled)

        intents = await self.payments.list_open(providers=CHAIN_RECONCILED_PROVIDERS)
        logger.info("Checking %d pending payments...", len(intents))

        confirmed = 0
        for index, intent in enumerate(intents):
            if index:
                await self.sleep(self.delay_seconds)
            try:
                if await self.reconcile_one(intent.id):
                    confirmed += 1
            except Exception:
                logger.exception("Error checking payment %s", intent.id)
        return confirmed

    async def apply_provider_status(
        self, provider: str, external_id: str, status: str
    ) -> WebhookResult:
        """
        Push-based counterpart of reconcile_one for providers with callbacks.

        Follows the same state machine; replays and late callbacks for a
        terminal intent are no-ops.
        """
        try:
            currency = Currency(provider)
        except ValueError as e:
            raise InvalidInputError("Invalid provider", code="invalid_provider") from e
        target = WEBHOOK_STATUSES.get(status)
        if target is None:
            raise InvalidInputError("Invalid status", code="invalid_status")

        intent = await self.payments.get_by_external_id(external_id, currency.value)
        if intent is None:
            raise NotFoundError("Payment not found", code="payment_not_found")

        if intent.status == PaymentStatus.CONFIRMED and not intent.settled:
            await self._resume_confirmation(intent)
        if intent.status.is_terminal or intent.status == target:
            return WebhookResult(intent=intent, changed=False)

        if target == PaymentStatus.CONFIRMED:
            changed = await self._confirm(intent, datetime.now(timezone.utc))
        elif target == PaymentStatus.FAILED:
            changed = await self._fail(intent)
        else:
            changed = await self.payments.transition(
                intent.id, PaymentStatus.PENDING, from_statuses=(PaymentStatus.CREATED,)
            ) is not None

        current = await self.payments.get(intent.id) or intent
        return WebhookResult(intent=current, changed=changed)

    async def _confirm(
        self, intent: PaymentIntent, completed_at: datetime, transaction_hash: Optional[str] = None
    ) -> bool:
        updated = await self.payments.transition(
            intent.id,
            PaymentStatus.CONFIRMED,
            from_statuses=OPEN_STATUSES,
            completed_at=completed_at,
            transaction_hash=transaction_hash,
        )
        if updated is None:
            # someone else got there first
            return False

        try:
            await self._apply_confirmation(updated)
        except Exception:
            logger.exception(
                "Payment %s confirmed but not yet applied to its participant, will resume",
                intent.id
            )
        return True

    async def _apply_confirmation(self, intent: PaymentIntent, notify: bool = True):
        """Participant PAID, bill auto-close, then the event. Safe to repeat."""
        await self.bills.update_participant(
            intent.bill_id, intent.participant_id,
            {"payment_status": ParticipantPaymentStatus.PAID}
        )
        try:
            await self._close_if_settled(intent.bill_id)
        except Exception:
            logger.exception("Could not close bill %s after payment %s", intent.bill_id, intent.id)

        if notify:
            await self.notifier.notify(IntentConfirmed(
                intent_id=intent.id,
                bill_id=intent.bill_id,
                participant_id=intent.participant_id,
                transaction_hash=intent.transaction_hash,
            ))
        await self.payments.mark_settled(intent.id)

    async def _resume_confirmation(self, intent: PaymentIntent):
        """Finish a confirmation whose follow-up writes were interrupted."""
        try:
            bill = await self.bills.get(intent.bill_id)
            participant = bill.get_participant(intent.participant_id) if bill else None
            # PAID means the event already went out and only the settled flag was lost
            already_paid = (
                participant is not None
                and participant.payment_status == ParticipantPaymentStatus.PAID
            )
            await self._apply_confirmation(intent, notify=not already_paid)
        except Exception:
            logger.exception("Could not resume confirmation of payment %s", intent.id)
            return
        logger.info("Resumed confirmation of payment %s", intent.id)

    async def _fail(self, intent: PaymentIntent) -> bool:
        updated = await self.payments.transition(
            intent.id, PaymentStatus.FAILED, from_statuses=OPEN_STATUSES
        )
        if updated is None:
            return False

        await self.bills.update_participant(
            intent.bill_id, intent.participant_id,
            {"payment_status": ParticipantPaymentStatus.FAILED, "payment_id": None}
        )
        await self.notifier.notify(IntentFailed(
            intent_id=intent.id,
            bill_id=intent.bill_id,
            participant_id=intent.participant_id,
        ))
        return True

    async def _close_if_settled(self, bill_id: str):
        bill = await self.bills.get(bill_id)
        if bill is not None and bill.status == BillStatus.OPEN and bill.is_settled():
            if await self.bills.set_status(bill_id, BillStatus.CLOSED, expected=BillStatus.OPEN):
                logger.info("Bill %s fully paid, closed", bill_id)
