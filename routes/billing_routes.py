from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from db.config import get_mysql_session
from models.schemas import (
    BillingSettingsUpdateRequest,
    BillingSettingsResponse,
    CostQuoteRequest,
    CostQuoteResponse,
    SweepReportResponse,
)
from panel.api_client import PterodactylClient, get_panel_client
from services.audit_service import AuditService, get_audit_service
from services.billing_service import BillingService
from services.exceptions import BillingError
from services.rate_service import calculate_hourly_cost, hourly_charge, format_cost
from services.settings_service import SettingsService

router = APIRouter(prefix="/billing", tags=["Billing"])


def get_settings_service(session: Session = Depends(get_mysql_session)) -> SettingsService:
    return SettingsService(session)


def get_billing_service(
    session: Session = Depends(get_mysql_session),
    panel_client: PterodactylClient = Depends(get_panel_client),
    audit_service: AuditService = Depends(get_audit_service)
) -> BillingService:
    return BillingService(session, panel_client=panel_client, audit_service=audit_service)


@router.get(
    "/settings",
    response_model=BillingSettingsResponse,
    summary="Get billing settings"
)
def get_billing_settings(
    service: SettingsService = Depends(get_settings_service)
):
    return service.settings_to_dict(service.get_settings())


@router.put(
    "/settings",
    response_model=BillingSettingsResponse,
    summary="Update billing settings",
    description="Updates hourly rates and the global billing switch"
)
def update_billing_settings(
    request: BillingSettingsUpdateRequest,
    service: SettingsService = Depends(get_settings_service),
    audit_service: AuditService = Depends(get_audit_service)
):
    try:
        result = service.update_billing_settings(**request.model_dump())
    except BillingError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)

    audit_service.record("BILLING_SETTINGS_UPDATED", request.model_dump(exclude_none=True))
    return result


@router.post(
    "/quote",
    response_model=CostQuoteResponse,
    summary="Quote hourly cost",
    description="Computes the hourly cost of a resource allocation at current rates"
)
def quote_hourly_cost(
    request: CostQuoteRequest,
    service: SettingsService = Depends(get_settings_service)
):
    rates = service.get_billing_rates()
    try:
        cost = calculate_hourly_cost(request.ram, request.cpu, request.disk, rates)
        charge = hourly_charge(request.ram, request.cpu, request.disk, rates)
    except BillingError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

    return {
        "billing_enabled": rates.billing_enabled,
        "hourly_cost": format_cost(cost),
        "hourly_charge": charge
    }


@router.post(
    "/sweep",
    response_model=SweepReportResponse,
    summary="Run billing sweep",
    description="Runs one billing sweep immediately"
)
async def run_sweep(
    service: BillingService = Depends(get_billing_service)
):
    report = await service.process_billing()
    return report.to_dict()
