from typing import Dict, List, Optional
from pydantic import BaseModel, Field
from datetime import datetime
from enum import Enum


class TransactionType(str, Enum):
    BILLING = "BILLING"
    PURCHASE = "PURCHASE"
    EARN = "EARN"
    COUPON = "COUPON"
    AFK = "AFK"


class UserCreateRequest(BaseModel):
    username: str = Field(..., min_length=1, max_length=64)
    email: Optional[str] = None
    pterodactyl_id: Optional[int] = None
    coins: int = Field(0, ge=0)
    server_limit: int = Field(1, ge=0)
    databases: int = Field(1, ge=0)
    backups: int = Field(1, ge=0)
    allocations: int = Field(1, ge=0)


class UserResponse(BaseModel):
    id: str
    username: str
    email: Optional[str] = None
    pterodactyl_id: Optional[int] = None
    coins: int
    server_limit: int
    databases: int
    backups: int
    allocations: int


class CreditRequest(BaseModel):
    amount: int = Field(..., gt=0)
    type: TransactionType = TransactionType.PURCHASE
    description: str


class TransactionResponse(BaseModel):
    id: str
    type: str
    amount: int
    description: str
    created_at: Optional[datetime] = None


class TransactionHistoryResponse(BaseModel):
    user_id: str
    transactions: List[TransactionResponse]


class ServerCreateRequest(BaseModel):
    user_id: str
    name: str = Field(..., min_length=1, max_length=191)
    egg_id: int
    nest_id: int
    location_id: int
    docker_image: str
    startup: str
    environment: Dict[str, str] = {}
    ram: int = Field(..., ge=0)
    cpu: int = Field(..., ge=0)
    disk: int = Field(..., ge=0)
    databases: int = Field(0, ge=0)
    backups: int = Field(0, ge=0)
    allocations: int = Field(1, ge=0)


class ServerUpdateRequest(BaseModel):
    user_id: str
    ram: int = Field(..., ge=0)
    cpu: int = Field(..., ge=0)
    disk: int = Field(..., ge=0)
    databases: int = Field(..., ge=0)
    backups: int = Field(..., ge=0)
    allocations: int = Field(..., ge=0)


class ServerActionRequest(BaseModel):
    user_id: str


class ServerResponse(BaseModel):
    id: str
    pterodactyl_id: int
    name: str
    user_id: str
    ram: int
    cpu: int
    disk: int
    databases: int
    backups: int
    allocations: int
    paused: bool
    suspended_at: Optional[datetime] = None
    last_billed_at: Optional[datetime] = None
    next_billing_at: Optional[datetime] = None
    hourly_cost: Optional[int] = None


class BillingSettingsUpdateRequest(BaseModel):
    billing_enabled: Optional[bool] = None
    billing_ram_rate: Optional[float] = Field(None, gt=0)
    billing_cpu_rate: Optional[float] = Field(None, gt=0)
    billing_disk_rate: Optional[float] = Field(None, gt=0)
    billing_grace_period: Optional[int] = Field(None, ge=0)


class BillingSettingsResponse(BaseModel):
    billing_enabled: bool
    billing_ram_rate: float
    billing_cpu_rate: float
    billing_disk_rate: float
    billing_grace_period: int


class CostQuoteRequest(BaseModel):
    ram: int = Field(..., ge=0)
    cpu: int = Field(..., ge=0)
    disk: int = Field(..., ge=0)


class CostQuoteResponse(BaseModel):
    billing_enabled: bool
    hourly_cost: str
    hourly_charge: int


class SweepReportResponse(BaseModel):
    candidates: int
    charged: int
    paused: int
    failed: int
    skipped: bool
    coins_charged: int


class AuditEntryResponse(BaseModel):
    audit_id: str
    user_id: Optional[str] = None
    action: str
    details: Dict = {}
    ip_address: Optional[str] = None
    created_at: datetime
