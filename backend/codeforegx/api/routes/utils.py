import logging

from fastapi import APIRouter
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from codeforegx.api.deps import SessionDep
from codeforegx.core.cache import get_cache

router = APIRouter(prefix="/utils", tags=["utils"])
logger = logging.getLogger(__name__)


@router.get("/health-check/")
def health_check(session: SessionDep) -> dict[str, str]:
    """Liveness plus a quick probe of the database and cache."""
    try:
        session.execute(text("SELECT 1"))
        database = "ok"
    except SQLAlchemyError as e:
        logger.warning("Health check database probe failed: %s", e)
        database = "unavailable"
    return {
        "status": "ok" if database == "ok" else "degraded",
        "database": database,
        "cache": "ok" if get_cache().ping() else "unavailable",
    }
