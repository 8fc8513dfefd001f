from datetime import timedelta
from typing import Any

from fastapi import APIRouter
from sqlmodel import Session, col, func, select

from codeforegx.api.deps import CurrentUser, SessionDep
from codeforegx.core.cache import get_cache
from codeforegx.models import (
    AuditLog,
    ChatSession,
    DashboardSummary,
    EmbeddingRecord,
    Prompt,
    Template,
    User,
    get_datetime_utc,
)

router = APIRouter()

SUMMARY_CACHE_KEY = "dashboard:summary"


def _count(session: Session, model: type, *filters: Any) -> int:
    return session.exec(select(func.count()).select_from(model).where(*filters)).one()


def build_summary(session: Session) -> DashboardSummary:
    since = get_datetime_utc() - timedelta(hours=24)
    return DashboardSummary(
        templates=_count(session, Template),
        prompts=session.exec(select(func.count(func.distinct(Prompt.name)))).one(),
        users=_count(session, User),
        chat_sessions=_count(session, ChatSession),
        embeddings=_count(session, EmbeddingRecord),
        audit_events_24h=_count(session, AuditLog, col(AuditLog.timestamp) >= since),
    )


@router.get("/summary", response_model=DashboardSummary)
def read_dashboard_summary(session: SessionDep, current_user: CurrentUser) -> Any:
    """
    Headline counts for the dashboard, cached briefly in Redis.
    """
    return get_cache().get_or_set(SUMMARY_CACHE_KEY, lambda: build_summary(session), ttl_seconds=60)
