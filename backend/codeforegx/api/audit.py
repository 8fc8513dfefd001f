import json
import logging
import time
import uuid

import jwt
from fastapi import Request
from jwt.exceptions import InvalidTokenError
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response

from codeforegx.api.deps import session_for
from codeforegx.core import security
from codeforegx.core.config import settings
from codeforegx.services.audit import action_for_method, extract_entity, record_event

logger = logging.getLogger(__name__)

MAX_AUDITED_BODY_BYTES = 16_384

SKIPPED_PREFIXES = (
    f"{settings.API_V1_STR}/audit",
    f"{settings.API_V1_STR}/login",
    f"{settings.API_V1_STR}/logout",
)


def client_ip(request: Request) -> str | None:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


def user_id_from_request(request: Request) -> uuid.UUID | None:
    authorization = request.headers.get("Authorization", "")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        return None
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[security.ALGORITHM])
        return uuid.UUID(str(payload.get("sub")))
    except (InvalidTokenError, ValueError):
        return None


def _decode_body(raw: bytes) -> object:
    if not raw:
        return None
    if len(raw) > MAX_AUDITED_BODY_BYTES:
        return {"truncated": True, "size": len(raw)}
    try:
        return json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError):
        return {"raw": raw[:256].decode("utf-8", errors="replace")}


class AuditLogMiddleware(BaseHTTPMiddleware):
    """Records mutating API requests (create/update/delete) in the audit log."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        path = request.url.path
        action = action_for_method(request.method)
        if (
            action is None
            or not path.startswith(settings.API_V1_STR)
            or path.startswith(SKIPPED_PREFIXES)
        ):
            return await call_next(request)

        body = _decode_body(await request.body())
        started = time.perf_counter()
        error: str | None = None
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        except Exception as e:
            error = str(e)
            raise
        finally:
            self._write_entry(request, action, body, status_code, started, error)

    def _write_entry(self, request, action, body, status_code, started, error) -> None:
        entity_type, entity_id = extract_entity(request.url.path, settings.API_V1_STR)
        duration_ms = round((time.perf_counter() - started) * 1000, 2)
        if error is None and status_code >= 400:
            error = f"HTTP {status_code}"

        with session_for(request.app) as session:
            record_event(
                session,
                action=action,
                user_id=user_id_from_request(request),
                entity_type=entity_type,
                entity_id=entity_id,
                ip_address=client_ip(request),
                user_agent=request.headers.get("user-agent"),
                changes={
                    "request": {
                        "method": request.method,
                        "url": str(request.url.path),
                        "query": dict(request.query_params),
                        "body": body,
                    },
                    "response": {"status": status_code},
                    "response_time_ms": duration_ms,
                },
                error=error,
            )
