import asyncio
import logging
from typing import Optional

from app.core.config import settings
from app.services.reconciler import ChainReconciler

logger = logging.getLogger(__name__)


class PaymentMonitor:
    """
    Background loop that sweeps open payments on a fixed interval.

    Sweeps are idempotent per intent, so running one while a manual check is
    in flight is harmless.
    """

    def __init__(
        self,
        reconciler: ChainReconciler,
        interval_seconds: float = settings.RECONCILE_INTERVAL_SECONDS,
    ):
        self.reconciler = reconciler
        self.interval_seconds = interval_seconds
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self):
        if self.is_running:
            logger.info("Payment monitoring is already running")
            return
        logger.info("Starting payment monitoring every %ss", self.interval_seconds)
        self._task = asyncio.create_task(self._run(), name="payment-monitor")

    async def stop(self):
        if not self.is_running:
            logger.info("Payment monitoring is not running")
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Payment monitoring stopped")

    async def run_once(self) -> int:
        try:
            return await self.reconciler.reconcile_all_pending()
        except Exception:
            logger.exception("Error in payment monitoring")
            return 0

    async def check_payment(self, intent_id: str) -> bool:
        """Manual check of one payment outside the schedule."""
        return await self.reconciler.reconcile_one(intent_id)

    async def _run(self):
        while True:
            await self.run_once()
            await asyncio.sleep(self.interval_seconds)
