from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from db.config import get_mysql_session
from models.schemas import ServerCreateRequest, ServerUpdateRequest, ServerActionRequest, ServerResponse
from panel.api_client import PterodactylClient, get_panel_client
from services.audit_service import AuditService, get_audit_service
from services.billing_service import BillingService
from services.exceptions import BillingError
from services.server_service import ServerService

router = APIRouter(prefix="/servers", tags=["Servers"])


def get_server_service(
    session: Session = Depends(get_mysql_session),
    panel_client: PterodactylClient = Depends(get_panel_client),
    audit_service: AuditService = Depends(get_audit_service)
) -> ServerService:
    return ServerService(session, panel_client=panel_client, audit_service=audit_service)


def get_billing_service(
    session: Session = Depends(get_mysql_session),
    panel_client: PterodactylClient = Depends(get_panel_client),
    audit_service: AuditService = Depends(get_audit_service)
) -> BillingService:
    return BillingService(session, panel_client=panel_client, audit_service=audit_service)


def _client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


@router.get(
    "/user/{user_id}",
    response_model=dict,
    summary="List user servers",
    description="Lists a user's servers with their hourly cost when billing is enabled"
)
def list_user_servers(
    user_id: str,
    service: ServerService = Depends(get_server_service)
):
    return service.list_user_servers(user_id)


@router.get(
    "/{server_id}",
    response_model=ServerResponse,
    summary="Get server"
)
def get_server(
    server_id: str,
    service: ServerService = Depends(get_server_service)
):
    try:
        return service.get_server(server_id)
    except BillingError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post(
    "/",
    response_model=ServerResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create server",
    description="Creates the server on the panel and charges its first hour"
)
async def create_server(
    body: ServerCreateRequest,
    request: Request,
    service: ServerService = Depends(get_server_service)
):
    try:
        return await service.create_server(body, ip_address=_client_ip(request))
    except BillingError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.patch(
    "/{server_id}",
    response_model=ServerResponse,
    summary="Resize server",
    description="Changes the server's resources; the next renewal bills the new size"
)
async def update_server(
    server_id: str,
    body: ServerUpdateRequest,
    request: Request,
    service: ServerService = Depends(get_server_service)
):
    try:
        return await service.update_server(server_id, body, ip_address=_client_ip(request))
    except BillingError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.delete(
    "/{server_id}",
    response_model=dict,
    summary="Delete server"
)
async def delete_server(
    server_id: str,
    user_id: str,
    request: Request,
    service: ServerService = Depends(get_server_service)
):
    try:
        return await service.delete_server(server_id, user_id=user_id, ip_address=_client_ip(request))
    except BillingError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post(
    "/{server_id}/pause",
    response_model=dict,
    summary="Pause server",
    description="Suspends the server on the panel and stops billing"
)
async def pause_server(
    server_id: str,
    body: ServerActionRequest,
    request: Request,
    service: BillingService = Depends(get_billing_service)
):
    try:
        return await service.pause_server(server_id, user_id=body.user_id, ip_address=_client_ip(request))
    except BillingError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post(
    "/{server_id}/unpause",
    response_model=dict,
    summary="Unpause server",
    description="Charges the next hour upfront and unsuspends the server"
)
async def unpause_server(
    server_id: str,
    body: ServerActionRequest,
    request: Request,
    service: BillingService = Depends(get_billing_service)
):
    try:
        return await service.unpause_server(server_id, user_id=body.user_id, ip_address=_client_ip(request))
    except BillingError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
