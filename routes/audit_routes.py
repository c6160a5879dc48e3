from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from models.schemas import AuditEntryResponse
from services.audit_service import AuditService, get_audit_service

router = APIRouter(prefix="/audit-logs", tags=["Audit"])


@router.get(
    "/",
    response_model=List[AuditEntryResponse],
    summary="List audit log entries",
    description="Most recent first, optionally filtered by user or action"
)
def list_audit_logs(
    user_id: Optional[str] = Query(None),
    action: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    service: AuditService = Depends(get_audit_service)
):
    return service.list_entries(user_id=user_id, action=action, limit=limit)
