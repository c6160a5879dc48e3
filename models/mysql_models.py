from sqlalchemy import Column, String, Integer, Float, DateTime, Boolean, ForeignKey, Index
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func

Base = declarative_base()


class Settings(Base):
    __tablename__ = "settings"

    id = Column(String(36), primary_key=True, default="main")
    billing_enabled = Column(Boolean, nullable=False, default=False)
    billing_ram_rate = Column(Float, nullable=False, default=1024)
    billing_cpu_rate = Column(Float, nullable=False, default=100)
    billing_disk_rate = Column(Float, nullable=False, default=5120)
    billing_grace_period = Column(Integer, nullable=False, default=24)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


class User(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True)
    username = Column(String(64), unique=True, nullable=False, index=True)
    email = Column(String(255), nullable=True)
    pterodactyl_id = Column(Integer, nullable=True)
    coins = Column(Integer, nullable=False, default=0)
    server_limit = Column(Integer, nullable=False, default=1)
    databases = Column(Integer, nullable=False, default=1)
    backups = Column(Integer, nullable=False, default=1)
    allocations = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, server_default=func.now())


class Server(Base):
    __tablename__ = "servers"
    __table_args__ = (
        Index("ix_servers_billing_due", "paused", "next_billing_at"),
    )

    id = Column(String(36), primary_key=True)
    pterodactyl_id = Column(Integer, nullable=False)
    pterodactyl_uuid = Column(String(64), nullable=True)
    name = Column(String(191), nullable=False)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    ram = Column(Integer, nullable=False, default=0)
    cpu = Column(Integer, nullable=False, default=0)
    disk = Column(Integer, nullable=False, default=0)
    databases = Column(Integer, nullable=False, default=0)
    backups = Column(Integer, nullable=False, default=0)
    allocations = Column(Integer, nullable=False, default=0)
    paused = Column(Boolean, nullable=False, default=False)
    suspended_at = Column(DateTime, nullable=True)
    last_billed_at = Column(DateTime, nullable=True)
    next_billing_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, server_default=func.now())


class Transaction(Base):
    __tablename__ = "transactions"

    id = Column(String(36), primary_key=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    type = Column(String(20), nullable=False)
    amount = Column(Integer, nullable=False)
    description = Column(String(255), nullable=False)
    created_at = Column(DateTime, server_default=func.now())
