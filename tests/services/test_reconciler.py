import asyncio
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from app.core.errors import InvalidInputError, NotFoundError
from app.models.bill import BillStatus, Currency, ParticipantPaymentStatus
from app.models.payment import PaymentStatus
from app.services.chain_indexer import ChainTransfer
from app.services.reconciler import amount_matches, latest_transfer, select_matching_transfers
from fakes import CREATOR_WALLET, FailingPublisher, make_bill, unavailable_indexer_error

RAW_WALLET = "0:" + "0" * 64
PAID_AT = 1_700_000_000


def pay(indexer, bill_id, nano, tx_hash="tx1", timestamp=PAID_AT, memo=None):
    return indexer.add_transfer(
        CREATOR_WALLET,
        hash=tx_hash,
        source="0:" + "1" * 64,
        value=nano,
        memo=memo or f"Split Bill Payment - bill_{bill_id}",
        timestamp=timestamp,
    )


def test_amount_tolerance_is_inclusive():
    assert amount_matches(Decimal("12.499"), Decimal("12.5"))
    assert amount_matches(Decimal("12.501"), Decimal("12.5"))
    assert not amount_matches(Decimal("12.49"), Decimal("12.5"))


def test_latest_transfer_breaks_ties_by_hash():
    a = ChainTransfer(hash="aaa", value=1, timestamp=10)
    b = ChainTransfer(hash="bbb", value=1, timestamp=10)
    c = ChainTransfer(hash="ccc", value=1, timestamp=5)
    assert latest_transfer([a, c, b]) is b
    assert latest_transfer([]) is None


def test_select_matching_transfers_filters_memo_and_destination():
    good = ChainTransfer(hash="1", value=1, timestamp=1, destination=RAW_WALLET, memo="x bill_b1")
    other_bill = ChainTransfer(hash="2", value=1, timestamp=1, destination=RAW_WALLET, memo="bill_b2")
    no_memo = ChainTransfer(hash="3", value=1, timestamp=1, destination=RAW_WALLET)
    elsewhere = ChainTransfer(hash="4", value=1, timestamp=1, destination="0:" + "f" * 64, memo="bill_b1")

    result = select_matching_transfers([good, other_bill, no_memo, elsewhere], "b1", CREATOR_WALLET)

    assert result == [good]


@pytest.mark.asyncio
async def test_confirms_on_matching_transfer(
    reconciler, intent_service, payment_repo, bill_repo, indexer, publisher, bill, alice
):
    issued = await intent_service.create_intent(bill.id, alice)
    pay(indexer, bill.id, 50_000_000_000)

    assert await reconciler.reconcile_one(issued.intent.id) is True

    intent = await payment_repo.get(issued.intent.id)
    assert intent.status == PaymentStatus.CONFIRMED
    assert intent.is_open is False
    assert intent.transaction_hash == "tx1"
    assert intent.completed_at == datetime.fromtimestamp(PAID_AT, tz=timezone.utc)

    stored = await bill_repo.get(bill.id)
    assert stored.get_participant(intent.participant_id).payment_status == ParticipantPaymentStatus.PAID
    assert stored.status == BillStatus.OPEN

    assert publisher.messages == [(bill.id, {
        "type": "payment.updated",
        "data": {
            "paymentId": intent.id,
            "billId": bill.id,
            "participantId": intent.participant_id,
            "status": "confirmed",
        },
    })]


@pytest.mark.asyncio
async def test_accepts_amount_within_tolerance(reconciler, intent_service, bill_repo, indexer, creator, alice, bob):
    bill = make_bill(creator, ("Alice", alice, True), ("Bob", bob, True), total="25")
    await bill_repo.create(bill)
    issued = await intent_service.create_intent(bill.id, alice)
    pay(indexer, bill.id, 12_499_000_000)

    assert await reconciler.reconcile_one(issued.intent.id) is True


@pytest.mark.asyncio
async def test_rejects_amount_outside_tolerance(
    reconciler, intent_service, payment_repo, bill_repo, indexer, creator, alice, bob
):
    bill = make_bill(creator, ("Alice", alice, True), ("Bob", bob, True), total="25")
    await bill_repo.create(bill)
    issued = await intent_service.create_intent(bill.id, alice)
    pay(indexer, bill.id, 12_490_000_000)

    assert await reconciler.reconcile_one(issued.intent.id) is False
    assert (await payment_repo.get(issued.intent.id)).status == PaymentStatus.CREATED


@pytest.mark.asyncio
async def test_reconcile_is_idempotent(reconciler, intent_service, payment_repo, indexer, publisher, bill, alice):
    issued = await intent_service.create_intent(bill.id, alice)
    pay(indexer, bill.id, 50_000_000_000)

    assert await reconciler.reconcile_one(issued.intent.id) is True
    first = await payment_repo.get(issued.intent.id)

    pay(indexer, bill.id, 50_000_000_000, tx_hash="tx2", timestamp=PAID_AT + 60)
    assert await reconciler.reconcile_one(issued.intent.id) is False

    second = await payment_repo.get(issued.intent.id)
    assert second.completed_at == first.completed_at
    assert second.transaction_hash == "tx1"
    assert len(publisher.messages) == 1


@pytest.mark.asyncio
async def test_latest_matching_transfer_wins(reconciler, intent_service, payment_repo, indexer, bill, alice):
    issued = await intent_service.create_intent(bill.id, alice)
    pay(indexer, bill.id, 50_000_000_000, tx_hash="late", timestamp=PAID_AT + 10)
    pay(indexer, bill.id, 1_000_000_000, tx_hash="early", timestamp=PAID_AT)

    assert await reconciler.reconcile_one(issued.intent.id) is True
    assert (await payment_repo.get(issued.intent.id)).transaction_hash == "late"


@pytest.mark.asyncio
async def test_ignores_transfers_for_other_bills(reconciler, intent_service, indexer, bill, alice):
    issued = await intent_service.create_intent(bill.id, alice)
    pay(indexer, "someotherbill", 50_000_000_000)

    assert await reconciler.reconcile_one(issued.intent.id) is False


@pytest.mark.asyncio
async def test_indexer_error_leaves_intent_open(reconciler, intent_service, payment_repo, indexer, bill, alice):
    issued = await intent_service.create_intent(bill.id, alice)
    pay(indexer, bill.id, 50_000_000_000)
    indexer.error = unavailable_indexer_error()

    assert await reconciler.reconcile_one(issued.intent.id) is False

    intent = await payment_repo.get(issued.intent.id)
    assert intent.status == PaymentStatus.CREATED
    assert intent.completed_at is None


@pytest.mark.asyncio
async def test_indexer_timeout_leaves_intent_open(reconciler, intent_service, payment_repo, indexer, bill, alice):
    issued = await intent_service.create_intent(bill.id, alice)
    pay(indexer, bill.id, 50_000_000_000)
    indexer.delay = 5

    assert await reconciler.reconcile_one(issued.intent.id) is False
    assert (await payment_repo.get(issued.intent.id)).status == PaymentStatus.CREATED


@pytest.mark.asyncio
async def test_skips_missing_wallet(reconciler, intent_service, user_repo, indexer, bill, creator, alice):
    issued = await intent_service.create_intent(bill.id, alice)
    await user_repo.update_wallet(creator.id, None)

    assert await reconciler.reconcile_one(issued.intent.id) is False
    assert indexer.calls == []


@pytest.mark.asyncio
async def test_usdt_is_not_chain_reconciled(reconciler, intent_service, bill_repo, indexer, creator, alice):
    bill = make_bill(creator, ("Alice", alice, True), total="3", currency=Currency.USDT)
    await bill_repo.create(bill)
    issued = await intent_service.create_intent(bill.id, alice)

    assert await reconciler.reconcile_one(issued.intent.id) is False
    assert indexer.calls == []


@pytest.mark.asyncio
async def test_unknown_intent(reconciler):
    assert await reconciler.reconcile_one("missing") is False


@pytest.mark.asyncio
async def test_batch_continues_past_failures(
    reconciler, intent_service, payment_repo, bill_repo, indexer, creator, alice, bob
):
    first = make_bill(creator, ("Alice", alice, True), total="10")
    second = make_bill(creator, ("Bob", bob, True), total="20")
    await bill_repo.create(first)
    await bill_repo.create(second)
    a = await intent_service.create_intent(first.id, alice)
    b = await intent_service.create_intent(second.id, bob)
    pay(indexer, second.id, 20_000_000_000)

    original = reconciler.reconcile_one

    async def flaky(intent_id):
        if intent_id == a.intent.id:
            raise RuntimeError("boom")
        return await original(intent_id)

    reconciler.reconcile_one = flaky

    assert await reconciler.reconcile_all_pending() == 1
    assert (await payment_repo.get(b.intent.id)).status == PaymentStatus.CONFIRMED
    assert (await payment_repo.get(a.intent.id)).status == PaymentStatus.CREATED


@pytest.mark.asyncio
async def test_batch_sleeps_between_intents(intent_service, bill_repo, payment_repo, user_repo, indexer, notifier, creator, alice, bob):
    from app.services.reconciler import ChainReconciler

    sleeps = []

    async def record_sleep(seconds):
        sleeps.append(seconds)

    reconciler = ChainReconciler(
        bill_repo, payment_repo, user_repo, indexer, notifier,
        delay_seconds=1.0, sleep=record_sleep
    )
    bill = make_bill(creator, ("Alice", alice, True), ("Bob", bob, False))
    await bill_repo.create(bill)
    await intent_service.create_intent(bill.id, alice)
    await intent_service.create_intent(bill.id, bob)

    assert await reconciler.reconcile_all_pending() == 0
    assert sleeps == [1.0]


@pytest.mark.asyncio
async def test_publisher_failure_does_not_undo_confirmation(
    bill_repo, payment_repo, user_repo, indexer, intent_service, bill, alice
):
    from app.services.notifier import SettlementNotifier
    from app.services.reconciler import ChainReconciler

    reconciler = ChainReconciler(
        bill_repo, payment_repo, user_repo, indexer, SettlementNotifier([FailingPublisher()])
    )
    issued = await intent_service.create_intent(bill.id, alice)
    pay(indexer, bill.id, 50_000_000_000)

    assert await reconciler.reconcile_one(issued.intent.id) is True
    assert (await payment_repo.get(issued.intent.id)).status == PaymentStatus.CONFIRMED


@pytest.mark.asyncio
async def test_full_settlement_closes_bill(
    reconciler, intent_service, payment_repo, bill_repo, indexer, publisher, bill, alice, bob
):
    a = await intent_service.create_intent(bill.id, alice)
    b = await intent_service.create_intent(bill.id, bob)
    assert a.intent.amount == b.intent.amount == Decimal("50")

    pay(indexer, bill.id, 50_000_000_000, tx_hash="alice-tx")
    assert await reconciler.reconcile_one(a.intent.id) is True
    assert (await bill_repo.get(bill.id)).status == BillStatus.OPEN

    pay(indexer, bill.id, 50_000_000_000, tx_hash="bob-tx", timestamp=PAID_AT + 30)
    assert await reconciler.reconcile_one(b.intent.id) is True

    stored = await bill_repo.get(bill.id)
    assert all(p.payment_status == ParticipantPaymentStatus.PAID for p in stored.participants)
    assert stored.status == BillStatus.CLOSED
    assert (await payment_repo.get(b.intent.id)).transaction_hash == "bob-tx"
    assert len(publisher.messages) == 2


@pytest.mark.asyncio
async def test_webhook_confirms_usdt(reconciler, intent_service, payment_repo, bill_repo, publisher, creator, alice):
    bill = make_bill(creator, ("Alice", alice, True), total="3", currency=Currency.USDT)
    await bill_repo.create(bill)
    issued = await intent_service.create_intent(bill.id, alice)

    result = await reconciler.apply_provider_status("USDT", issued.intent.external_id, "confirmed")

    assert result.changed is True
    assert result.intent.status == PaymentStatus.CONFIRMED
    assert result.intent.completed_at is not None
    assert (await bill_repo.get(bill.id)).status == BillStatus.CLOSED
    assert len(publisher.messages) == 1

    replay = await reconciler.apply_provider_status("USDT", issued.intent.external_id, "failed")
    assert replay.changed is False
    assert replay.intent.status == PaymentStatus.CONFIRMED
    assert len(publisher.messages) == 1


@pytest.mark.asyncio
async def test_webhook_pending_then_failed(reconciler, intent_service, bill_repo, publisher, bill, alice):
    issued = await intent_service.create_intent(bill.id, alice)
    external_id = issued.intent.external_id

    pending = await reconciler.apply_provider_status("TON", external_id, "pending")
    assert pending.changed is True
    assert pending.intent.status == PaymentStatus.PENDING

    again = await reconciler.apply_provider_status("TON", external_id, "pending")
    assert again.changed is False

    failed = await reconciler.apply_provider_status("TON", external_id, "failed")
    assert failed.changed is True
    assert failed.intent.status == PaymentStatus.FAILED
    assert failed.intent.completed_at is None

    participant = (await bill_repo.get(bill.id)).get_participant(issued.intent.participant_id)
    assert participant.payment_status == ParticipantPaymentStatus.FAILED
    assert participant.payment_id is None
    assert publisher.messages[-1][1]["data"]["status"] == "failed"


@pytest.mark.asyncio
async def test_failed_participant_can_retry(reconciler, intent_service, bill, alice):
    issued = await intent_service.create_intent(bill.id, alice)
    await reconciler.apply_provider_status("TON", issued.intent.external_id, "failed")

    retry = await intent_service.create_intent(bill.id, alice)

    assert retry.intent.id != issued.intent.id


@pytest.mark.asyncio
async def test_webhook_rejects_bad_input(reconciler, intent_service, bill, alice):
    issued = await intent_service.create_intent(bill.id, alice)

    with pytest.raises(InvalidInputError) as exc:
        await reconciler.apply_provider_status("BTC", issued.intent.external_id, "confirmed")
    assert exc.value.code == "invalid_provider"

    with pytest.raises(InvalidInputError) as exc:
        await reconciler.apply_provider_status("TON", issued.intent.external_id, "created")
    assert exc.value.code == "invalid_status"

    with pytest.raises(NotFoundError):
        await reconciler.apply_provider_status("TON", "ext_unknown", "confirmed")

    with pytest.raises(NotFoundError):
        await reconciler.apply_provider_status("USDT", issued.intent.external_id, "confirmed")


@pytest.mark.asyncio
async def test_concurrent_reconciles_confirm_once(reconciler, intent_service, indexer, publisher, bill, alice):
    issued = await intent_service.create_intent(bill.id, alice)
    pay(indexer, bill.id, 50_000_000_000)

    results = await asyncio.gather(
        reconciler.reconcile_one(issued.intent.id),
        reconciler.reconcile_one(issued.intent.id),
    )

    assert sorted(results) == [False, True]
    assert len(publisher.messages) == 1


def tonapi_reconciler(bill_repo, payment_repo, user_repo, notifier, body):
    import httpx

    from app.services.chain_indexer import TonApiIndexer
    from app.services.reconciler import ChainReconciler

    client = httpx.AsyncClient(
        base_url="https://tonapi.test/v2",
        transport=httpx.MockTransport(lambda request: httpx.Response(200, json=body)),
    )
    return ChainReconciler(bill_repo, payment_repo, user_repo, TonApiIndexer(client=client), notifier)


@pytest.mark.asyncio
@pytest.mark.parametrize("body", [
    [],
    {"transactions": {"hash": "h1"}},
    {"transactions": ["garbage", 42]},
    {"transactions": [{"hash": "h1", "utime": 1, "in_msg": "not-a-message"}]},
    {"transactions": [{"hash": "h1", "utime": 1, "in_msg": {
        "value": 50000000000, "destination": "0:abc", "decoded_body": ["bill"],
    }}]},
])
async def test_odd_indexer_bodies_leave_intent_open(
    bill_repo, payment_repo, user_repo, notifier, intent_service, bill, alice, body
):
    reconciler = tonapi_reconciler(bill_repo, payment_repo, user_repo, notifier, body)
    issued = await intent_service.create_intent(bill.id, alice)

    assert await reconciler.reconcile_one(issued.intent.id) is False
    assert (await payment_repo.get(issued.intent.id)).status == PaymentStatus.CREATED


@pytest.mark.asyncio
async def test_unexpected_indexer_exception_leaves_intent_open(
    reconciler, intent_service, payment_repo, indexer, bill, alice
):
    issued = await intent_service.create_intent(bill.id, alice)
    indexer.error = ConnectionError("reset by peer")

    assert await reconciler.reconcile_one(issued.intent.id) is False
    assert await reconciler.reconcile_all_pending() == 0
    assert (await payment_repo.get(issued.intent.id)).status == PaymentStatus.CREATED


@pytest.mark.asyncio
async def test_interrupted_confirmation_is_resumed(
    reconciler, intent_service, payment_repo, bill_repo, indexer, publisher, bill, alice
):
    from app.core.errors import ConflictError

    issued = await intent_service.create_intent(bill.id, alice)
    pay(indexer, bill.id, 50_000_000_000)

    original = bill_repo.update_participant
    failures = []

    async def update_once_broken(bill_id, participant_id, fields):
        if not failures:
            failures.append(participant_id)
            raise ConnectionError("mongo went away")
        return await original(bill_id, participant_id, fields)

    bill_repo.update_participant = update_once_broken

    assert await reconciler.reconcile_one(issued.intent.id) is True

    intent = await payment_repo.get(issued.intent.id)
    assert intent.status == PaymentStatus.CONFIRMED
    assert intent.settled is False
    stored = await bill_repo.get(bill.id)
    assert stored.get_participant(intent.participant_id).payment_status != ParticipantPaymentStatus.PAID
    assert publisher.messages == []

    with pytest.raises(ConflictError) as exc:
        await intent_service.create_intent(bill.id, alice)
    assert exc.value.code == "already_paid"

    assert await reconciler.reconcile_all_pending() == 0

    assert (await payment_repo.get(issued.intent.id)).settled is True
    stored = await bill_repo.get(bill.id)
    assert stored.get_participant(intent.participant_id).payment_status == ParticipantPaymentStatus.PAID
    assert len(publisher.messages) == 1
    assert publisher.messages[0][1]["data"]["status"] == "confirmed"

    assert await reconciler.reconcile_one(issued.intent.id) is False
    await reconciler.reconcile_all_pending()
    assert len(publisher.messages) == 1


@pytest.mark.asyncio
async def test_resume_after_lost_settled_flag_does_not_notify_twice(
    reconciler, intent_service, payment_repo, indexer, publisher, bill, alice
):
    issued = await intent_service.create_intent(bill.id, alice)
    pay(indexer, bill.id, 50_000_000_000)

    original = payment_repo.mark_settled
    calls = []

    async def mark_once_broken(intent_id):
        calls.append(intent_id)
        if len(calls) == 1:
            raise ConnectionError("mongo went away")
        return await original(intent_id)

    payment_repo.mark_settled = mark_once_broken

    assert await reconciler.reconcile_one(issued.intent.id) is True
    assert (await payment_repo.get(issued.intent.id)).settled is False
    assert len(publisher.messages) == 1

    result = await reconciler.apply_provider_status("TON", issued.intent.external_id, "confirmed")

    assert result.changed is False
    assert (await payment_repo.get(issued.intent.id)).settled is True
    assert len(publisher.messages) == 1


@pytest.mark.asyncio
async def test_bill_close_failure_still_settles_payment(
    reconciler, intent_service, payment_repo, bill_repo, indexer, publisher, creator, alice
):
    bill = make_bill(creator, ("Alice", alice, True), total="10")
    await bill_repo.create(bill)
    issued = await intent_service.create_intent(bill.id, alice)
    pay(indexer, bill.id, 10_000_000_000)

    async def broken_set_status(bill_id, status, expected=None):
        raise ConnectionError("mongo went away")

    bill_repo.set_status = broken_set_status

    assert await reconciler.reconcile_one(issued.intent.id) is True
    assert (await payment_repo.get(issued.intent.id)).settled is True
    assert len(publisher.messages) == 1
    assert (await bill_repo.get(bill.id)).status == BillStatus.OPEN
