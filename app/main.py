import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from app.core.config import settings
from app.core.errors import SettlementError
from app.core.logging import configure_logging, shutdown_logging
from app.db.mongo import connect_to_mongo, disconnect_from_mongo, mongodb
from app.api.v1.api import api_router
from app.api.v1.endpoints import ws
from app.realtime.hub import hub
from app.repositories.bill_repo import BillRepository
from app.repositories.payment_repo import PaymentRepository
from app.repositories.user_repo import UserRepository
from app.services.chain_indexer import TonApiIndexer
from app.services.notifier import SettlementNotifier
from app.services.payment_monitor import PaymentMonitor
from app.services.reconciler import ChainReconciler

logger = logging.getLogger(__name__)


async def start_payment_monitor(app: FastAPI):
    app.state.indexer = TonApiIndexer()
    if not settings.RECONCILE_ENABLED:
        logger.info("Payment monitoring disabled")
        return
    db = mongodb.db
    reconciler = ChainReconciler(
        BillRepository(db),
        PaymentRepository(db),
        UserRepository(db),
        app.state.indexer,
        app.state.notifier,
    )
    app.state.monitor = PaymentMonitor(reconciler)
    app.state.monitor.start()


async def stop_payment_monitor(app: FastAPI):
    if app.state.monitor is not None:
        await app.state.monitor.stop()
    if app.state.indexer is not None:
        await app.state.indexer.close()


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(
        level=settings.LOG_LEVEL,
        log_file=settings.LOG_FILE,
        is_prod=settings.is_prod,
        secrets=[settings.TON_API_KEY],
    )
    await connect_to_mongo()
    await start_payment_monitor(app)
    yield
    await stop_payment_monitor(app)
    await disconnect_from_mongo()
    shutdown_logging()


app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.PROJECT_VERSION,
    description=settings.DESCRIPTION,
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.state.indexer = None
app.state.notifier = SettlementNotifier([hub])
app.state.monitor = None


@app.exception_handler(SettlementError)
async def settlement_error_handler(request: Request, exc: SettlementError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.message, "code": exc.code}
    )


@app.get("/")
async def root():
    return {"message": "Welcome to Split Bill API"}


@app.get("/health")
async def health():
    monitor = app.state.monitor
    return {"status": "ok", "paymentMonitor": bool(monitor and monitor.is_running)}


app.include_router(api_router, prefix=settings.API_V1_STR)
app.include_router(ws.router)
