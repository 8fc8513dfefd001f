import csv
import io
import json
import logging
import uuid
from collections import Counter
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import func
from sqlmodel import Session, col, select

from codeforegx.crud import create_audit_log
from codeforegx.models import (
    ActionCount,
    AuditAction,
    AuditLog,
    AuditLogCreate,
    AuditStatistics,
    DateCount,
    HourCount,
)

logger = logging.getLogger(__name__)

SENSITIVE_KEYS = {"password", "new_password", "current_password", "hashed_password", "token", "access_token"}

METHOD_ACTIONS = {
    "POST": AuditAction.create,
    "PUT": AuditAction.update,
    "PATCH": AuditAction.update,
    "DELETE": AuditAction.delete,
}

CSV_HEADERS = [
    "Timestamp",
    "Action",
    "User ID",
    "Entity Type",
    "Entity ID",
    "IP Address",
    "Changes",
    "Metadata",
    "Error",
]


def action_for_method(method: str) -> AuditAction | None:
    return METHOD_ACTIONS.get(method.upper())


def extract_entity(path: str, api_prefix: str) -> tuple[str | None, str | None]:
    """Split `/api/v1/<type>/<id>/...` into (type, id)."""
    if not path.startswith(api_prefix):
        return None, None
    parts = [part for part in path[len(api_prefix):].split("/") if part]
    entity_type = parts[0] if parts else None
    entity_id = parts[1] if len(parts) > 1 else None
    return entity_type, entity_id


def redact(value: Any) -> Any:
    if isinstance(value, dict):
        return {
            key: "[REDACTED]" if key in SENSITIVE_KEYS else redact(item)
            for key, item in value.items()
        }
    if isinstance(value, list):
        return [redact(item) for item in value]
    return value


def record_event(
    session: Session,
    *,
    action: AuditAction,
    user_id: uuid.UUID | None = None,
    entity_type: str | None = None,
    entity_id: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
    changes: dict[str, Any] | None = None,
    details: dict[str, Any] | None = None,
    error: str | None = None,
) -> AuditLog | None:
    """Write an audit entry. Failures are logged and rolled back, never raised."""
    try:
        return create_audit_log(
            session=session,
            audit_in=AuditLogCreate(
                action=action,
                user_id=user_id,
                entity_type=entity_type,
                entity_id=entity_id,
                ip_address=ip_address,
                user_agent=(user_agent or "")[:500] or None,
                changes=redact(changes or {}),
                details=details or {},
                error=error,
            ),
        )
    except Exception as e:
        logger.error("Failed to create audit log for %s %s: %s", action.value, entity_type, e)
        session.rollback()
        return None


def build_filters(
    *,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    action: AuditAction | None = None,
    user_id: uuid.UUID | None = None,
    entity_type: str | None = None,
    entity_id: str | None = None,
) -> list[Any]:
    filters: list[Any] = []
    if start_date:
        filters.append(col(AuditLog.timestamp) >= start_date)
    if end_date:
        filters.append(col(AuditLog.timestamp) <= end_date)
    if action:
        filters.append(AuditLog.action == action)
    if user_id:
        filters.append(AuditLog.user_id == user_id)
    if entity_type:
        filters.append(AuditLog.entity_type == entity_type)
    if entity_id:
        filters.append(AuditLog.entity_id == entity_id)
    return filters


def query_logs(session: Session, filters: list[Any], *, page: int, limit: int) -> tuple[list[AuditLog], int]:
    total = session.exec(select(func.count()).select_from(AuditLog).where(*filters)).one()
    statement = (
        select(AuditLog)
        .where(*filters)
        .order_by(col(AuditLog.timestamp).desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    return list(session.exec(statement).all()), total


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes even for timezone-aware columns
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value.astimezone(timezone.utc)


def compute_statistics(session: Session, filters: list[Any]) -> AuditStatistics:
    total = session.exec(select(func.count()).select_from(AuditLog).where(*filters)).one()
    users = session.exec(
        select(func.count(func.distinct(AuditLog.user_id))).where(*filters)
    ).one()
    entities = session.exec(
        select(func.count(func.distinct(AuditLog.entity_type))).where(*filters)
    ).one()
    action_rows = session.exec(
        select(AuditLog.action, func.count()).where(*filters).group_by(AuditLog.action)
    ).all()

    timestamps = [_as_utc(ts) for ts in session.exec(select(AuditLog.timestamp).where(*filters)).all()]
    hourly = Counter(ts.hour for ts in timestamps)
    daily = Counter(ts.strftime("%Y-%m-%d") for ts in timestamps)

    return AuditStatistics(
        total_logs=total,
        users=users,
        entities=entities,
        actions=[
            ActionCount(action=action.value if isinstance(action, AuditAction) else str(action), count=count)
            for action, count in action_rows
        ],
        hourly_distribution=[HourCount(hour=hour, count=hourly[hour]) for hour in sorted(hourly)],
        daily_distribution=[DateCount(date=day, count=daily[day]) for day in sorted(daily)],
    )


def export_csv(logs: list[AuditLog]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(CSV_HEADERS)
    for log in logs:
        writer.writerow(
            [
                _as_utc(log.timestamp).isoformat(),
                log.action.value if isinstance(log.action, AuditAction) else log.action,
                str(log.user_id) if log.user_id else "anonymous",
                log.entity_type or "",
                log.entity_id or "",
                log.ip_address or "",
                json.dumps(log.changes or {}),
                json.dumps(log.details or {}),
                log.error or "",
            ]
        )
    return buffer.getvalue()
