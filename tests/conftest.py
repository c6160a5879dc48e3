"""Shared fixtures for the billing tests.

The ledger runs on an in-memory SQLite database, the panel is replaced by
``FakePanel`` and the MongoDB audit collection by a ``MagicMock``.
"""
import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["RUN_BILLING_SCHEDULER"] = "false"

import uuid
from datetime import datetime, timedelta
from unittest.mock import MagicMock

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from models.mysql_models import Base, Settings, User, Server
from panel.api_client import APIResponse, APIResult
from services.audit_service import AuditService
from services.billing_service import BillingService


NOW = datetime(2025, 6, 1, 12, 0, 0)

test_engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool
)
TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


class FakePanel:
    """Records panel calls; operations named in ``fail`` return a 500."""

    def __init__(self):
        self.calls = []
        self.fail = set()
        self.raise_for = set()
        self.next_id = 100
        self.builds = []

    def _respond(self, operation: str, server_id=None, data=None) -> APIResponse:
        self.calls.append((operation, server_id))
        if server_id in self.raise_for:
            raise RuntimeError(f"panel exploded on {operation} {server_id}")
        if operation in self.fail:
            return APIResponse(result=APIResult.ERROR, status_code=500, error="panel unavailable")
        return APIResponse(result=APIResult.SUCCESS, status_code=204 if data is None else 201, data=data)

    def called(self, operation: str) -> list:
        return [server_id for op, server_id in self.calls if op == operation]

    async def create_server(self, **kwargs) -> APIResponse:
        self.next_id += 1
        return self._respond(
            "create",
            self.next_id,
            data={"object": "server", "attributes": {"id": self.next_id, "uuid": f"uuid-{self.next_id}"}}
        )

    async def update_server_build(self, server_id, **kwargs):
        self.builds.append((server_id, kwargs))
        return self._respond("update", server_id)

    async def delete_server(self, server_id):
        return self._respond("delete", server_id)

    async def suspend_server(self, server_id):
        return self._respond("suspend", server_id)

    async def unsuspend_server(self, server_id):
        return self._respond("unsuspend", server_id)

    async def health_check(self):
        return "health" not in self.fail


@pytest.fixture
def db_session():
    Base.metadata.create_all(bind=test_engine)
    session = TestSessionLocal()
    yield session
    session.close()
    Base.metadata.drop_all(bind=test_engine)


@pytest.fixture
def panel():
    return FakePanel()


@pytest.fixture
def audit_collection():
    return MagicMock()


@pytest.fixture
def audit_service(audit_collection):
    return AuditService(collection=audit_collection)


@pytest.fixture
def billing_service(db_session, panel, audit_service):
    return BillingService(db_session, panel_client=panel, audit_service=audit_service, now_fn=lambda: NOW)


def configure_billing(session, enabled=True, ram_rate=1024, cpu_rate=100, disk_rate=5120):
    settings = session.query(Settings).filter(Settings.id == "main").first()
    if not settings:
        settings = Settings(id="main")
        session.add(settings)
    settings.billing_enabled = enabled
    settings.billing_ram_rate = ram_rate
    settings.billing_cpu_rate = cpu_rate
    settings.billing_disk_rate = disk_rate
    settings.billing_grace_period = 24
    session.commit()
    return settings


def make_user(session, coins=0, pterodactyl_id=7, server_limit=5, databases=2, backups=2, allocations=2):
    user = User(
        id=str(uuid.uuid4()),
        username=f"user_{uuid.uuid4().hex[:8]}",
        email="player@example.com",
        pterodactyl_id=pterodactyl_id,
        coins=coins,
        server_limit=server_limit,
        databases=databases,
        backups=backups,
        allocations=allocations
    )
    session.add(user)
    session.commit()
    return user.id


def make_server(
    session,
    user_id,
    ram=2048,
    cpu=100,
    disk=10240,
    paused=False,
    next_billing_at=NOW - timedelta(minutes=1),
    pterodactyl_id=42,
    last_billed_at=None
):
    server = Server(
        id=str(uuid.uuid4()),
        pterodactyl_id=pterodactyl_id,
        name=f"survival-{pterodactyl_id}",
        user_id=user_id,
        ram=ram,
        cpu=cpu,
        disk=disk,
        databases=1,
        backups=1,
        allocations=1,
        paused=paused,
        suspended_at=NOW - timedelta(hours=3) if paused else None,
        last_billed_at=last_billed_at,
        next_billing_at=None if paused else next_billing_at
    )
    session.add(server)
    session.commit()
    return server.id


def load(session, model, key):
    session.expire_all()
    return session.get(model, key)


def audit_actions(audit_collection) -> list:
    return [call.args[0]["action"] for call in audit_collection.insert_one.call_args_list]
