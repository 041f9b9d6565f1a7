import logging
from typing import Iterable, Literal, Protocol, Union

from pydantic import BaseModel

from app.models.payment import PaymentStatus

logger = logging.getLogger(__name__)


class IntentConfirmed(BaseModel):
    kind: Literal["intent_confirmed"] = "intent_confirmed"
    intent_id: str
    bill_id: str
    participant_id: str
    status: PaymentStatus = PaymentStatus.CONFIRMED
    transaction_hash: str | None = None


class IntentFailed(BaseModel):
    kind: Literal["intent_failed"] = "intent_failed"
    intent_id: str
    bill_id: str
    participant_id: str
    status: PaymentStatus = PaymentStatus.FAILED


SettlementEvent = Union[IntentConfirmed, IntentFailed]


class Publisher(Protocol):
    async def publish(self, bill_id: str, message: dict) -> None:
        ...


def to_message(event: SettlementEvent) -> dict:
    return {
        "type": "payment.updated",
        "data": {
            "paymentId": event.intent_id,
            "billId": event.bill_id,
            "participantId": event.participant_id,
            "status": event.status.value,
        },
    }


class SettlementNotifier:
    """
    Fire-and-forget fan-out of settlement events.

    Called only after the state change is persisted. A failing publisher is
    logged and skipped; it never propagates back into reconciliation.
    """

    def __init__(self, publishers: Iterable[Publisher] = ()):
        self.publishers = list(publishers)

    async def notify(self, event: SettlementEvent):
        message = to_message(event)
        for publisher in self.publishers:
            try:
                await publisher.publish(event.bill_id, message)
            except Exception:
                logger.exception(
                    "Failed to publish %s for payment %s", event.kind, event.intent_id
                )
