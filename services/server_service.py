import logging
from typing import Optional, List
import uuid

from sqlalchemy import func
from sqlalchemy.orm import Session

from models.mysql_models import User, Server
from models.schemas import ServerCreateRequest, ServerUpdateRequest
from panel.api_client import PterodactylClient, get_panel_client
from services.audit_service import AuditService
from services.billing_service import BillingService
from services.exceptions import (
    BillingConfigError,
    PanelError,
    QuotaExceededError,
    ServerNotFoundError,
    UserNotFoundError,
)
from services.ledger_service import ServerSnapshot
from services.rate_service import hourly_charge
from services.settings_service import SettingsService

logger = logging.getLogger(__name__)


class ServerService:
    def __init__(
        self,
        mysql_session: Session,
        panel_client: Optional[PterodactylClient] = None,
        audit_service: Optional[AuditService] = None
    ):
        self.mysql_session = mysql_session
        self.panel_client = panel_client or get_panel_client()
        self.audit_service = audit_service or AuditService()
        self.billing_service = BillingService(
            mysql_session,
            panel_client=self.panel_client,
            audit_service=self.audit_service
        )
        self.settings_service = SettingsService(mysql_session)

    def _get_user(self, user_id: str) -> User:
        user = self.mysql_session.query(User).filter(User.id == user_id).first()
        if not user:
            raise UserNotFoundError()
        return user

    def _check_slots(
        self,
        user: User,
        databases: int,
        backups: int,
        allocations: int,
        exclude_server_id: Optional[str] = None
    ):
        query = self.mysql_session.query(
            func.coalesce(func.sum(Server.databases), 0),
            func.coalesce(func.sum(Server.backups), 0),
            func.coalesce(func.sum(Server.allocations), 0)
        ).filter(Server.user_id == user.id)
        if exclude_server_id is not None:
            query = query.filter(Server.id != exclude_server_id)
        used_databases, used_backups, used_allocations = (int(v) for v in query.one())

        # RAM, CPU and disk are billed hourly and have no slot limit.
        if used_databases + databases > user.databases:
            raise QuotaExceededError("Insufficient database slots")
        if used_backups + backups > user.backups:
            raise QuotaExceededError("Insufficient backup slots")
        if used_allocations + allocations > user.allocations:
            raise QuotaExceededError("Insufficient allocation slots")

    def _prepare_create(self, request: ServerCreateRequest) -> int:
        user = self._get_user(request.user_id)
        if not user.pterodactyl_id:
            raise QuotaExceededError("You must link your Pterodactyl account first")

        server_count = self.mysql_session.query(func.count(Server.id)).filter(
            Server.user_id == user.id
        ).scalar() or 0
        if server_count >= user.server_limit:
            raise QuotaExceededError("Server limit reached")

        self._check_slots(user, request.databases, request.backups, request.allocations)
        panel_user_id = user.pterodactyl_id
        self.mysql_session.rollback()
        return panel_user_id

    def _insert_server(self, request: ServerCreateRequest, attributes: dict) -> str:
        server = Server(
            id=str(uuid.uuid4()),
            pterodactyl_id=attributes["id"],
            pterodactyl_uuid=attributes.get("uuid") or attributes.get("identifier"),
            name=request.name,
            user_id=request.user_id,
            ram=request.ram,
            cpu=request.cpu,
            disk=request.disk,
            databases=request.databases,
            backups=request.backups,
            allocations=request.allocations,
            paused=False
        )
        try:
            self.mysql_session.add(server)
            self.mysql_session.commit()
        except Exception:
            self.mysql_session.rollback()
            raise
        return server.id

    def _delete_local_server(self, server_id: str):
        try:
            self.mysql_session.query(Server).filter(Server.id == server_id).delete(synchronize_session=False)
            self.mysql_session.commit()
        except Exception:
            self.mysql_session.rollback()
            raise

    async def create_server(self, request: ServerCreateRequest, ip_address: Optional[str] = None) -> dict:
        run_db = self.billing_service.run_db
        panel_user_id = await run_db(self._prepare_create, request)

        response = await self.panel_client.create_server(
            name=request.name,
            user_id=panel_user_id,
            egg_id=request.egg_id,
            nest_id=request.nest_id,
            location_id=request.location_id,
            ram=request.ram,
            cpu=request.cpu,
            disk=request.disk,
            databases=request.databases,
            backups=request.backups,
            allocations=request.allocations,
            docker_image=request.docker_image,
            startup=request.startup,
            environment=request.environment
        )
        if not response.ok or not response.data:
            logger.error(f"Failed to create server {request.name} on panel: {response.error}")
            raise PanelError("Failed to create server in panel")

        attributes = response.data.get("attributes", {})
        pterodactyl_id = attributes["id"]

        try:
            server_id = await run_db(self._insert_server, request, attributes)
        except Exception:
            logger.exception(f"Failed to store server {request.name}, removing it from the panel")
            await self._delete_panel_server(pterodactyl_id)
            raise

        try:
            charge = await run_db(
                self.billing_service.charge_upfront_for_server,
                request.user_id,
                server_id,
                request.ram,
                request.cpu,
                request.disk,
                request.databases,
                request.allocations,
                request.backups
            )
        except Exception:
            logger.exception(f"First-hour charge for server {server_id} failed")
            await self._rollback_created_server(server_id, pterodactyl_id)
            raise

        if not charge.success:
            await self._rollback_created_server(server_id, pterodactyl_id)
            raise charge.to_exception()

        await self.billing_service.record_audit(
            "SERVER_CREATED",
            {"serverId": server_id, "name": request.name, "charged": charge.amount},
            user_id=request.user_id,
            ip_address=ip_address
        )
        logger.info(f"Created server {request.name} for user {request.user_id}")
        return await run_db(self.get_server, server_id)

    async def _delete_panel_server(self, pterodactyl_id: int):
        response = await self.panel_client.delete_server(pterodactyl_id)
        if not response.ok:
            logger.error(f"Failed to delete panel server {pterodactyl_id}: {response.error}")

    async def _rollback_created_server(self, server_id: str, pterodactyl_id: int):
        # Best effort: a failure here is left for an operator to clean up.
        await self._delete_panel_server(pterodactyl_id)

        try:
            await self.billing_service.run_db(self._delete_local_server, server_id)
        except Exception:
            logger.exception(f"Failed to delete server {server_id} after billing failure")

    def _prepare_update(self, server_id: str, request: ServerUpdateRequest) -> ServerSnapshot:
        server = self.billing_service.ledger.get_server_snapshot(server_id, request.user_id)
        if not server:
            raise ServerNotFoundError()

        user = self._get_user(request.user_id)
        self._check_slots(
            user,
            request.databases,
            request.backups,
            request.allocations,
            exclude_server_id=server_id
        )
        self.mysql_session.rollback()
        return server

    async def update_server(
        self,
        server_id: str,
        request: ServerUpdateRequest,
        ip_address: Optional[str] = None
    ) -> dict:
        run_db = self.billing_service.run_db
        server = await run_db(self._prepare_update, server_id, request)

        response = await self.panel_client.update_server_build(
            server.pterodactyl_id,
            ram=request.ram,
            cpu=request.cpu,
            disk=request.disk,
            databases=request.databases,
            backups=request.backups,
            allocations=request.allocations
        )
        if not response.ok:
            logger.error(f"Failed to update server {server.pterodactyl_id} on panel: {response.error}")
            raise PanelError("Failed to update server in panel")

        await run_db(
            self.billing_service.ledger.resize_server,
            server_id,
            request.ram,
            request.cpu,
            request.disk,
            request.databases,
            request.backups,
            request.allocations
        )

        await self.billing_service.record_audit(
            "SERVER_UPDATED",
            {
                "serverId": server_id,
                "name": server.name,
                "changes": {
                    "ram": request.ram - server.ram,
                    "cpu": request.cpu - server.cpu,
                    "disk": request.disk - server.disk,
                    "databases": request.databases - server.databases,
                    "backups": request.backups - server.backups,
                    "allocations": request.allocations - server.allocations
                }
            },
            user_id=request.user_id,
            ip_address=ip_address
        )
        logger.info(f"Resized server {server.name} to {request.ram}MB RAM, {request.cpu}% CPU, {request.disk}MB disk")
        return await run_db(self.get_server, server_id)

    async def delete_server(self, server_id: str, user_id: Optional[str] = None, ip_address: Optional[str] = None) -> dict:
        run_db = self.billing_service.run_db
        server = await run_db(self.billing_service.ledger.get_server_snapshot, server_id, user_id)
        if not server:
            raise ServerNotFoundError()

        response = await self.panel_client.delete_server(server.pterodactyl_id)
        if not response.ok and response.status_code != 404:
            # Local deletion goes ahead; the panel copy is left for cleanup.
            logger.error(f"Failed to delete server {server.pterodactyl_id} from panel: {response.error}")

        await run_db(self._delete_local_server, server_id)

        await self.billing_service.record_audit(
            "SERVER_DELETED",
            {"serverId": server_id, "name": server.name},
            user_id=user_id or server.user_id,
            ip_address=ip_address
        )
        return {"success": True}

    def get_server(self, server_id: str, user_id: Optional[str] = None) -> dict:
        server = self.billing_service.ledger.get_server(server_id, user_id)
        if not server:
            raise ServerNotFoundError()
        return self._server_to_dict(server)

    def list_user_servers(self, user_id: str) -> dict:
        servers = self.mysql_session.query(Server).filter(
            Server.user_id == user_id
        ).order_by(Server.created_at.desc()).all()

        rates = self.settings_service.get_billing_rates()
        billing_enabled = rates.billing_enabled

        results: List[dict] = []
        for server in servers:
            item = self._server_to_dict(server)
            if billing_enabled:
                try:
                    item["hourly_cost"] = hourly_charge(server.ram, server.cpu, server.disk, rates)
                except BillingConfigError as e:
                    logger.error(f"Cannot price server {server.id}: {e.message}")
                    item["hourly_cost"] = None
            else:
                item["hourly_cost"] = 0
            results.append(item)

        return {"servers": results, "billing_enabled": billing_enabled}

    def _server_to_dict(self, server: Server) -> dict:
        return {
            "id": server.id,
            "pterodactyl_id": server.pterodactyl_id,
            "name": server.name,
            "user_id": server.user_id,
            "ram": server.ram,
            "cpu": server.cpu,
            "disk": server.disk,
            "databases": server.databases,
            "backups": server.backups,
            "allocations": server.allocations,
            "paused": server.paused,
            "suspended_at": server.suspended_at,
            "last_billed_at": server.last_billed_at,
            "next_billing_at": server.next_billing_at
        }
