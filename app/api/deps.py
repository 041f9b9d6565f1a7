from fastapi import Depends, Request
from motor.motor_asyncio import AsyncIOMotorDatabase

from app.db.mongo import get_db
from app.repositories.bill_repo import BillRepository
from app.repositories.payment_repo import PaymentRepository
from app.repositories.user_repo import UserRepository
from app.services.bill_service import BillService
from app.services.chain_indexer import ChainIndexer
from app.services.cleanup_service import PaymentCleanupService
from app.services.notifier import SettlementNotifier
from app.services.payment_intent_service import PaymentIntentService
from app.services.reconciler import ChainReconciler


def get_bill_repo(db: AsyncIOMotorDatabase = Depends(get_db)) -> BillRepository:
    return BillRepository(db)


def get_payment_repo(db: AsyncIOMotorDatabase = Depends(get_db)) -> PaymentRepository:
    return PaymentRepository(db)


def get_user_repo(db: AsyncIOMotorDatabase = Depends(get_db)) -> UserRepository:
    return UserRepository(db)


def get_indexer(request: Request) -> ChainIndexer:
    return request.app.state.indexer


def get_notifier(request: Request) -> SettlementNotifier:
    return request.app.state.notifier


def get_bill_service(
    bills: BillRepository = Depends(get_bill_repo),
    payments: PaymentRepository = Depends(get_payment_repo),
    users: UserRepository = Depends(get_user_repo),
) -> BillService:
    return BillService(bills, payments, users)


def get_payment_intent_service(
    bills: BillRepository = Depends(get_bill_repo),
    payments: PaymentRepository = Depends(get_payment_repo),
    users: UserRepository = Depends(get_user_repo),
) -> PaymentIntentService:
    return PaymentIntentService(bills, payments, users)


def get_reconciler(
    bills: BillRepository = Depends(get_bill_repo),
    payments: PaymentRepository = Depends(get_payment_repo),
    users: UserRepository = Depends(get_user_repo),
    indexer: ChainIndexer = Depends(get_indexer),
    notifier: SettlementNotifier = Depends(get_notifier),
) -> ChainReconciler:
    return ChainReconciler(bills, payments, users, indexer, notifier)


def get_cleanup_service(
    bills: BillRepository = Depends(get_bill_repo),
    payments: PaymentRepository = Depends(get_payment_repo),
) -> PaymentCleanupService:
    return PaymentCleanupService(bills, payments)
