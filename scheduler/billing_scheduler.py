import asyncio
import logging
from typing import Optional, Callable, Awaitable

from db.config import SessionLocal
from panel.api_client import get_panel_client
from services.audit_service import AuditService
from services.billing_service import BillingService, SweepReport

from .config import scheduler_config

logger = logging.getLogger(__name__)


async def run_billing_sweep() -> SweepReport:
    session = SessionLocal()
    try:
        service = BillingService(
            session,
            panel_client=get_panel_client(),
            audit_service=AuditService(),
            sweep_concurrency=scheduler_config.sweep_concurrency
        )
        return await service.process_billing()
    finally:
        session.close()


class BillingScheduler:
    """Runs the billing sweep on a fixed interval.

    The first sweep runs as soon as the scheduler starts so that hours which
    expired while the process was down are settled right away.
    """

    def __init__(
        self,
        sweep: Callable[[], Awaitable[SweepReport]] = run_billing_sweep,
        interval_seconds: float = 3600,
        run_on_start: bool = True,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        self.sweep = sweep
        self.interval_seconds = interval_seconds
        self.run_on_start = run_on_start
        self._sleep = sleep
        self._task: Optional[asyncio.Task] = None
        self._running = False
        self.runs = 0
        self.last_report: Optional[SweepReport] = None

    @property
    def running(self) -> bool:
        return self._running

    async def start(self):
        if self._task is not None:
            await self.stop()

        logger.info(f"Starting billing scheduler ({self.interval_seconds:.0f}s interval)")
        self._running = True
        self._task = asyncio.create_task(self._loop())

    async def stop(self):
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
            logger.info("Billing scheduler stopped")

    async def wait(self):
        if self._task:
            await self._task

    async def _loop(self):
        if self.run_on_start:
            await self._run_once()

        while self._running:
            await self._sleep(self.interval_seconds)
            if not self._running:
                break
            await self._run_once()

    async def _run_once(self):
        try:
            self.last_report = await self.sweep()
        except Exception:
            logger.exception("Billing sweep failed")
        finally:
            self.runs += 1


def create_scheduler() -> BillingScheduler:
    return BillingScheduler(
        sweep=run_billing_sweep,
        interval_seconds=scheduler_config.interval_seconds,
        run_on_start=scheduler_config.run_on_start
    )
