from fastapi import APIRouter, Depends

from codeforegx.api.rate_limit import api_limiter
from codeforegx.api.routes import (
    audit,
    chat,
    dashboard,
    embeddings,
    login,
    prompts,
    templates,
    users,
    utils,
)

api_router = APIRouter(dependencies=[Depends(api_limiter)])
api_router.include_router(login.router, tags=["login"])
api_router.include_router(users.router, prefix="/users", tags=["users"])
api_router.include_router(utils.router, tags=["utils"])
api_router.include_router(templates.router, prefix="/templates", tags=["templates"])
api_router.include_router(prompts.router, prefix="/prompts", tags=["prompts"])
api_router.include_router(embeddings.router, prefix="/embeddings", tags=["embeddings"])
api_router.include_router(audit.router, prefix="/audit", tags=["audit"])
api_router.include_router(chat.router, prefix="/chat", tags=["chat"])
api_router.include_router(dashboard.router, prefix="/dashboard", tags=["dashboard"])
