import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport

from app.api import deps
from app.core.auth import get_current_user
from app.main import app
from app.models.user import User
from app.services.bill_service import BillService
from app.services.cleanup_service import PaymentCleanupService
from app.services.notifier import SettlementNotifier
from app.services.payment_intent_service import PaymentIntentService
from app.services.reconciler import ChainReconciler
from fakes import (
    CREATOR_WALLET,
    FakeIndexer,
    InMemoryBillRepository,
    InMemoryPaymentRepository,
    InMemoryUserRepository,
    RecordingPublisher,
    make_bill,
)


async def no_sleep(seconds):
    return None


@pytest.fixture
def creator():
    return User(
        id="u_creator",
        telegram_user_id="1000",
        username="creator",
        first_name="Carol",
        ton_wallet_address=CREATOR_WALLET,
    )


@pytest.fixture
def alice():
    return User(id="u_alice", telegram_user_id="2000", username="alice", first_name="Alice")


@pytest.fixture
def bob():
    return User(id="u_bob", telegram_user_id="3000", username="Bob_TG", first_name="Bob")


@pytest.fixture
def admin():
    return User(id="u_admin", telegram_user_id="9000", username="ops", is_admin=True)


@pytest.fixture
def bill_repo():
    return InMemoryBillRepository()


@pytest.fixture
def payment_repo():
    return InMemoryPaymentRepository()


@pytest.fixture
def user_repo(creator, alice, bob, admin):
    return InMemoryUserRepository([creator, alice, bob, admin])


@pytest.fixture
def indexer():
    return FakeIndexer()


@pytest.fixture
def publisher():
    return RecordingPublisher()


@pytest.fixture
def notifier(publisher):
    return SettlementNotifier([publisher])


@pytest.fixture
def intent_service(bill_repo, payment_repo, user_repo):
    return PaymentIntentService(bill_repo, payment_repo, user_repo)


@pytest.fixture
def reconciler(bill_repo, payment_repo, user_repo, indexer, notifier):
    return ChainReconciler(
        bill_repo, payment_repo, user_repo, indexer, notifier,
        query_timeout=0.5, sleep=no_sleep
    )


@pytest.fixture
def cleanup_service(bill_repo, payment_repo):
    return PaymentCleanupService(bill_repo, payment_repo)


@pytest.fixture
def bill_service(bill_repo, payment_repo, user_repo):
    return BillService(bill_repo, payment_repo, user_repo)


@pytest_asyncio.fixture
async def bill(bill_repo, creator, alice, bob):
    """TON bill for 100 split between Alice (resolved) and Bob (Telegram id only)."""
    bill = make_bill(creator, ("Alice", alice, True), ("Bob", bob, False))
    await bill_repo.create(bill)
    return bill


class CurrentUser:
    user = None


@pytest.fixture
def current_user(creator):
    """Who the API client is authenticated as; tests may swap .user."""
    current = CurrentUser()
    current.user = creator
    return current


@pytest_asyncio.fixture
async def client(bill_repo, payment_repo, user_repo, indexer, notifier, current_user):
    """API client wired to the in-memory repositories."""

    app.dependency_overrides[deps.get_bill_repo] = lambda: bill_repo
    app.dependency_overrides[deps.get_payment_repo] = lambda: payment_repo
    app.dependency_overrides[deps.get_user_repo] = lambda: user_repo
    app.dependency_overrides[deps.get_indexer] = lambda: indexer
    app.dependency_overrides[deps.get_notifier] = lambda: notifier
    app.dependency_overrides[get_current_user] = lambda: current_user.user

    try:
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
            yield ac
    finally:
        app.dependency_overrides.clear()
