import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional, Callable, Tuple, TypeVar

from sqlalchemy.orm import Session

from panel.api_client import PterodactylClient, get_panel_client
from services.audit_service import AuditService
from services.exceptions import (
    BillingError,
    BillingConfigError,
    InsufficientBalanceError,
    PanelError,
    ServerNotFoundError,
    ServerStateError,
    UserNotFoundError,
)
from services.ledger_service import LedgerService, ServerSnapshot, utcnow
from services.rate_service import BillingRates, hourly_charge
from services.settings_service import SettingsService

logger = logging.getLogger(__name__)

BILLING_PERIOD = timedelta(hours=1)

T = TypeVar("T")


class ChargeFailure(str, Enum):
    INSUFFICIENT_FUNDS = "insufficient_funds"
    USER_NOT_FOUND = "user_not_found"
    SERVER_NOT_FOUND = "server_not_found"
    MISCONFIGURED = "misconfigured"


@dataclass
class ChargeResult:
    success: bool
    next_billing_at: Optional[datetime] = None
    amount: int = 0
    error: Optional[str] = None
    reason: Optional[ChargeFailure] = None
    required: Optional[int] = None
    available: Optional[int] = None

    def to_exception(self) -> BillingError:
        if self.reason == ChargeFailure.INSUFFICIENT_FUNDS:
            return InsufficientBalanceError(self.error, self.required, self.available)
        if self.reason == ChargeFailure.USER_NOT_FOUND:
            return UserNotFoundError()
        if self.reason == ChargeFailure.SERVER_NOT_FOUND:
            return ServerNotFoundError()
        if self.reason == ChargeFailure.MISCONFIGURED:
            return BillingConfigError(self.error)
        return BillingError(self.error or "Failed to charge for server", status_code=402)


class SweepOutcome(str, Enum):
    CHARGED = "charged"
    PAUSED = "paused"
    FAILED = "failed"


@dataclass
class SweepReport:
    candidates: int = 0
    charged: int = 0
    paused: int = 0
    failed: int = 0
    skipped: bool = False
    coins_charged: int = 0

    def record(self, outcome: SweepOutcome, amount: int = 0):
        if outcome == SweepOutcome.CHARGED:
            self.charged += 1
            self.coins_charged += amount
        elif outcome == SweepOutcome.PAUSED:
            self.paused += 1
        else:
            self.failed += 1

    def to_dict(self) -> dict:
        return {
            "candidates": self.candidates,
            "charged": self.charged,
            "paused": self.paused,
            "failed": self.failed,
            "skipped": self.skipped,
            "coins_charged": self.coins_charged
        }


class BillingService:
    """Prepaid hourly billing and the running/paused state machine.

    A server runs only while its owner has paid for the current hour. The
    sweep renews or pauses servers whose hour has run out; pause and unpause
    are also available on request. Local ``paused`` is only ever written
    after the panel has confirmed the suspension.
    """

    def __init__(
        self,
        mysql_session: Session,
        panel_client: Optional[PterodactylClient] = None,
        audit_service: Optional[AuditService] = None,
        sweep_concurrency: int = 1,
        now_fn: Callable[[], datetime] = utcnow
    ):
        self.mysql_session = mysql_session
        self.panel_client = panel_client or get_panel_client()
        self.audit_service = audit_service or AuditService()
        self.ledger = LedgerService(mysql_session)
        self.settings_service = SettingsService(mysql_session)
        self.sweep_concurrency = max(1, sweep_concurrency)
        self.now_fn = now_fn
        self._db_lock: Optional[asyncio.Lock] = None

    def _insufficient(self, required: int, available: int) -> ChargeResult:
        return ChargeResult(
            success=False,
            error=f"Insufficient balance: need {required} coins, have {available}",
            reason=ChargeFailure.INSUFFICIENT_FUNDS,
            required=required,
            available=available
        )

    def charge_upfront_for_server(
        self,
        user_id: str,
        server_id: str,
        ram: int,
        cpu: int,
        disk: int,
        databases: int = 0,
        allocations: int = 0,
        backups: int = 0,
        now: Optional[datetime] = None
    ) -> ChargeResult:
        now = now or self.now_fn()
        next_billing_at = now + BILLING_PERIOD

        server = self.ledger.get_server(server_id)
        if not server:
            return ChargeResult(success=False, error="Server not found", reason=ChargeFailure.SERVER_NOT_FOUND)
        server_name = server.name

        rates = self.settings_service.get_billing_rates()
        if not rates.billing_enabled:
            self.ledger.extend_billing_window(server_id, next_billing_at)
            return ChargeResult(success=True, next_billing_at=next_billing_at)

        try:
            cost = hourly_charge(ram, cpu, disk, rates)
        except BillingConfigError as e:
            logger.error(f"Cannot charge for server {server_id}: {e.message}")
            return ChargeResult(
                success=False,
                error="Billing is not configured correctly",
                reason=ChargeFailure.MISCONFIGURED
            )

        balance = self.ledger.get_balance(user_id)
        if balance is None:
            return ChargeResult(success=False, error="User not found", reason=ChargeFailure.USER_NOT_FOUND)

        if balance < cost:
            return self._insufficient(cost, balance)

        logger.debug(
            f"Charging server {server_id}: {ram}MB RAM, {cpu}% CPU, {disk}MB disk "
            f"({databases} databases, {allocations} allocations, {backups} backups not billed hourly)"
        )

        try:
            charged = self.ledger.charge_and_extend(
                user_id,
                server_id,
                cost,
                now,
                next_billing_at,
                f'Upfront billing for server "{server_name}" (1h)'
            )
        except ServerNotFoundError:
            return ChargeResult(success=False, error="Server not found", reason=ChargeFailure.SERVER_NOT_FOUND)

        if not charged:
            return self._insufficient(cost, self.ledger.get_balance(user_id) or 0)

        logger.info(f"Charged {cost} coins upfront from user {user_id} for server {server_name}")
        return ChargeResult(success=True, next_billing_at=next_billing_at, amount=cost)

    async def run_db(self, fn: Callable[..., T], *args, **kwargs) -> T:
        """Run a blocking ledger call on a worker thread.

        Calls are serialised because they share ``mysql_session``; every
        ledger write commits or rolls back inside a single call.
        """
        if self._db_lock is None:
            self._db_lock = asyncio.Lock()
        async with self._db_lock:
            return await asyncio.to_thread(fn, *args, **kwargs)

    async def record_audit(
        self,
        action: str,
        details: dict,
        user_id: Optional[str] = None,
        ip_address: Optional[str] = None
    ):
        return await asyncio.to_thread(
            self.audit_service.record, action, details, user_id=user_id, ip_address=ip_address
        )

    async def process_billing(self, now: Optional[datetime] = None) -> SweepReport:
        now = now or self.now_fn()
        report = SweepReport()

        rates = await self.run_db(self.settings_service.get_billing_rates)
        if not rates.billing_enabled:
            logger.info("Billing is disabled")
            return report

        try:
            rates.validate()
        except BillingConfigError as e:
            logger.error(f"Skipping billing sweep: {e.message}")
            report.skipped = True
            return report

        candidates = await self.run_db(self.ledger.find_servers_due_for_billing, now)
        report.candidates = len(candidates)
        logger.info(f"Processing {len(candidates)} servers due for billing")

        semaphore = asyncio.Semaphore(self.sweep_concurrency)

        async def bill_with_limit(server: ServerSnapshot):
            async with semaphore:
                return await self._bill_server(server, rates, now)

        results = await asyncio.gather(
            *[bill_with_limit(server) for server in candidates],
            return_exceptions=True
        )

        for server, result in zip(candidates, results):
            if isinstance(result, Exception):
                logger.error(f"Billing exception for server {server.id}: {result}")
                report.record(SweepOutcome.FAILED)
            else:
                report.record(*result)

        logger.info(
            f"Billing complete - Charged: {report.charged}, Paused: {report.paused}, "
            f"Failed: {report.failed}, Coins: {report.coins_charged}"
        )
        return report

    def _renew_server(
        self,
        server: ServerSnapshot,
        rates: BillingRates,
        now: datetime
    ) -> Tuple[Optional[SweepOutcome], int, int]:
        """Charge the next hour if the owner can pay.

        Returns the outcome (None when the server has to be paused), the
        hourly cost and the owner's balance.
        """
        cost = hourly_charge(server.ram, server.cpu, server.disk, rates)

        balance = self.ledger.get_balance(server.user_id)
        if balance is None:
            logger.error(f"Owner {server.user_id} of server {server.id} not found")
            return SweepOutcome.FAILED, cost, 0

        if balance >= cost:
            charged = self.ledger.charge_and_extend(
                server.user_id,
                server.id,
                cost,
                now,
                now + BILLING_PERIOD,
                f'Hourly billing for server "{server.name}" (1h)'
            )
            if charged:
                logger.info(f"Charged {cost} coins from user {server.user_id} for server {server.name}")
                return SweepOutcome.CHARGED, cost, balance - cost
            balance = self.ledger.get_balance(server.user_id) or 0

        return None, cost, balance

    async def _bill_server(
        self,
        server: ServerSnapshot,
        rates: BillingRates,
        now: datetime
    ) -> Tuple[SweepOutcome, int]:
        try:
            outcome, cost, balance = await self.run_db(self._renew_server, server, rates, now)
            if outcome == SweepOutcome.CHARGED:
                return outcome, cost
            if outcome == SweepOutcome.FAILED:
                return outcome, 0

            return await self._auto_pause(server, cost, balance, now)

        except Exception:
            logger.exception(f"Error processing server {server.id}")
            await self.run_db(self.mysql_session.rollback)
            return SweepOutcome.FAILED, 0

    async def _auto_pause(
        self,
        server: ServerSnapshot,
        required: int,
        available: int,
        now: datetime
    ) -> Tuple[SweepOutcome, int]:
        logger.info(
            f"User {server.user_id} cannot afford {required} coins for server {server.name} "
            f"(balance {available}), suspending"
        )

        response = await self.panel_client.suspend_server(server.pterodactyl_id)
        if not response.ok:
            logger.error(
                f"Failed to suspend server {server.pterodactyl_id} on panel: {response.error}. "
                "Leaving it running until the next sweep"
            )
            return SweepOutcome.FAILED, 0

        await self.run_db(self.ledger.mark_paused, server.id, now)
        await self.record_audit(
            "SERVER_AUTO_PAUSED",
            {
                "serverId": server.id,
                "name": server.name,
                "reason": "insufficient_balance",
                "required": required,
                "available": available
            },
            user_id=server.user_id
        )
        return SweepOutcome.PAUSED, 0

    def _get_owned_server(self, server_id: str, user_id: Optional[str]) -> ServerSnapshot:
        server = self.ledger.get_server_snapshot(server_id, user_id)
        if not server:
            raise ServerNotFoundError()
        return server

    async def pause_server(
        self,
        server_id: str,
        user_id: Optional[str] = None,
        ip_address: Optional[str] = None
    ) -> dict:
        server = await self.run_db(self._get_owned_server, server_id, user_id)
        if server.paused:
            raise ServerStateError("Server is already paused")

        response = await self.panel_client.suspend_server(server.pterodactyl_id)
        if not response.ok:
            logger.error(f"Failed to suspend server {server.pterodactyl_id} on panel: {response.error}")
            raise PanelError("Failed to pause server")

        # No refund for the unused part of the current hour.
        await self.run_db(self.ledger.mark_paused, server_id, self.now_fn())
        await self.record_audit(
            "SERVER_PAUSED",
            {"serverId": server_id, "name": server.name},
            user_id=user_id or server.user_id,
            ip_address=ip_address
        )
        logger.info(f"Server {server.name} paused")
        return {"success": True, "message": "Server paused successfully"}

    async def unpause_server(
        self,
        server_id: str,
        user_id: Optional[str] = None,
        ip_address: Optional[str] = None
    ) -> dict:
        server = await self.run_db(self._get_owned_server, server_id, user_id)
        if not server.paused:
            raise ServerStateError("Server is not paused")

        actor_id = user_id or server.user_id

        charge = await self.run_db(
            self.charge_upfront_for_server,
            server.user_id,
            server_id,
            server.ram,
            server.cpu,
            server.disk,
            server.databases,
            server.allocations,
            server.backups
        )
        if not charge.success:
            raise charge.to_exception()

        response = await self.panel_client.unsuspend_server(server.pterodactyl_id)
        if not response.ok:
            logger.error(
                f"Failed to unsuspend server {server.pterodactyl_id} on panel: {response.error}. "
                f"Refunding {charge.amount} coins"
            )
            await self.run_db(
                self.ledger.refund_charge,
                server.user_id,
                server_id,
                charge.amount,
                f'Refund for server "{server.name}": unpause failed',
                last_billed_at=server.last_billed_at
            )
            await self.record_audit(
                "SERVER_UNPAUSE_FAILED",
                {"serverId": server_id, "name": server.name, "refunded": charge.amount, "error": response.error},
                user_id=actor_id,
                ip_address=ip_address
            )
            raise PanelError("Failed to unpause server")

        try:
            await self.run_db(self.ledger.mark_running, server_id)
        except Exception:
            # Paid and running on the panel, still paused locally; the sweep
            # skips it until an operator clears the flag.
            logger.exception(
                f"Server {server.pterodactyl_id} was unsuspended but {server_id} is still marked paused"
            )
            await self.record_audit(
                "SERVER_STATE_MISMATCH",
                {
                    "serverId": server_id,
                    "name": server.name,
                    "charged": charge.amount,
                    "panel": "running",
                    "local": "paused"
                },
                user_id=actor_id,
                ip_address=ip_address
            )
            raise BillingError("Server was resumed but its state could not be saved", status_code=500)

        await self.record_audit(
            "SERVER_UNPAUSED",
            {"serverId": server_id, "name": server.name, "charged": charge.amount},
            user_id=actor_id,
            ip_address=ip_address
        )
        logger.info(f"Server {server.name} unpaused, next billing at {charge.next_billing_at}")
        return {
            "success": True,
            "message": "Server unpaused successfully",
            "next_billing_at": charge.next_billing_at
        }
