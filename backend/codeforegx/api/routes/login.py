from datetime import timedelta
from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.security import OAuth2PasswordRequestForm

from codeforegx import crud
from codeforegx.api.audit import client_ip
from codeforegx.api.deps import CurrentUser, SessionDep
from codeforegx.api.rate_limit import auth_limiter
from codeforegx.core import security
from codeforegx.core.config import settings
from codeforegx.models import AuditAction, Message, Token, UserPublic
from codeforegx.services.audit import record_event

router = APIRouter(tags=["login"])


@router.post("/login/access-token", dependencies=[Depends(auth_limiter)])
def login_access_token(
    request: Request,
    session: SessionDep,
    form_data: Annotated[OAuth2PasswordRequestForm, Depends()],
) -> Token:
    """
    OAuth2 compatible token login, get an access token for future requests
    """
    user = crud.authenticate(
        session=session, email=form_data.username, password=form_data.password
    )
    if not user:
        record_event(
            session,
            action=AuditAction.login,
            entity_type="users",
            ip_address=client_ip(request),
            user_agent=request.headers.get("user-agent"),
            details={"email": form_data.username},
            error="Incorrect email or password",
        )
        raise HTTPException(status_code=400, detail="Incorrect email or password")
    elif not user.is_active:
        raise HTTPException(status_code=400, detail="Inactive user")

    record_event(
        session,
        action=AuditAction.login,
        user_id=user.id,
        entity_type="users",
        entity_id=str(user.id),
        ip_address=client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )
    access_token_expires = timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    return Token(
        access_token=security.create_access_token(
            user.id, expires_delta=access_token_expires
        )
    )


@router.post("/login/test-token", response_model=UserPublic)
def test_token(current_user: CurrentUser) -> Any:
    """
    Test access token
    """
    return current_user


@router.post("/logout")
def logout(request: Request, session: SessionDep, current_user: CurrentUser) -> Message:
    """
    Record a logout. Tokens are stateless; the client discards its copy.
    """
    record_event(
        session,
        action=AuditAction.logout,
        user_id=current_user.id,
        entity_type="users",
        entity_id=str(current_user.id),
        ip_address=client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )
    return Message(message="Logged out")
