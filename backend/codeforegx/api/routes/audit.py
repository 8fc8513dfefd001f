import math
import uuid
from datetime import datetime
from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import Response

from codeforegx.api.audit import client_ip
from codeforegx.api.deps import SessionDep, get_current_active_superuser
from codeforegx.core.config import settings
from codeforegx.crud import delete_audit_logs_before
from codeforegx.models import (
    AuditAction,
    AuditCleanupResult,
    AuditLog,
    AuditLogPublic,
    AuditLogsPublic,
    AuditStatistics,
    User,
)
from codeforegx.services.audit import (
    build_filters,
    compute_statistics,
    export_csv,
    query_logs,
    record_event,
)

router = APIRouter(dependencies=[Depends(get_current_active_superuser)])

AdminUser = Annotated[User, Depends(get_current_active_superuser)]


def log_filters(
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    action: AuditAction | None = None,
    user_id: uuid.UUID | None = None,
    entity_type: str | None = None,
    entity_id: str | None = None,
) -> list[Any]:
    return build_filters(
        start_date=start_date,
        end_date=end_date,
        action=action,
        user_id=user_id,
        entity_type=entity_type,
        entity_id=entity_id,
    )


FiltersDep = Annotated[list[Any], Depends(log_filters)]


@router.get("/logs", response_model=AuditLogsPublic)
def read_audit_logs(
    session: SessionDep,
    filters: FiltersDep,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=500),
) -> Any:
    logs, total = query_logs(session, filters, page=page, limit=limit)
    return AuditLogsPublic(
        logs=logs,
        total=total,
        page=page,
        total_pages=math.ceil(total / limit),
    )


@router.get("/statistics", response_model=AuditStatistics)
def read_audit_statistics(session: SessionDep, filters: FiltersDep) -> Any:
    return compute_statistics(session, filters)


@router.get("/export")
def export_audit_logs(
    request: Request,
    session: SessionDep,
    current_user: AdminUser,
    filters: FiltersDep,
) -> Response:
    logs, _ = query_logs(session, filters, page=1, limit=100_000)
    record_event(
        session,
        action=AuditAction.export,
        user_id=current_user.id,
        entity_type="audit",
        ip_address=client_ip(request),
        user_agent=request.headers.get("user-agent"),
        details={"rows": len(logs)},
    )
    return Response(
        content=export_csv(logs),
        media_type="text/csv",
        headers={"Content-Disposition": "attachment; filename=audit-logs.csv"},
    )


@router.post("/cleanup", response_model=AuditCleanupResult)
def cleanup_audit_logs(
    session: SessionDep,
    days: int = Query(default=settings.AUDIT_RETENTION_DAYS, ge=1),
) -> Any:
    """
    Delete audit entries older than `days`.
    """
    deleted, cutoff = delete_audit_logs_before(session=session, days=days)
    return AuditCleanupResult(deleted=deleted, cutoff=cutoff)


@router.get("/logs/{log_id}", response_model=AuditLogPublic)
def read_audit_log(log_id: uuid.UUID, session: SessionDep) -> Any:
    log = session.get(AuditLog, log_id)
    if not log:
        raise HTTPException(status_code=404, detail="Audit log not found")
    return log
