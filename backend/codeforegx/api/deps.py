import uuid
from collections.abc import Generator, Iterator
from contextlib import contextmanager
from typing import Annotated

import jwt
from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from jwt.exceptions import InvalidTokenError
from pydantic import ValidationError
from sqlmodel import Session

from codeforegx.core import security
from codeforegx.core.config import settings
from codeforegx.core.db import engine
from codeforegx.models import TokenPayload, User, UserRole
from codeforegx.validation import validate_parameters

reusable_oauth2 = OAuth2PasswordBearer(
    tokenUrl=f"{settings.API_V1_STR}/login/access-token"
)


def get_db() -> Generator[Session, None, None]:
    with Session(engine) as session:
        yield session


@contextmanager
def session_for(app: FastAPI) -> Iterator[Session]:
    """Session for work outside a route's dependency scope; honours overrides of `get_db`."""
    provider = app.dependency_overrides.get(get_db, get_db)
    session_gen = provider()
    try:
        yield next(session_gen)
    finally:
        session_gen.close()


SessionDep = Annotated[Session, Depends(get_db)]
TokenDep = Annotated[str, Depends(reusable_oauth2)]


def get_current_user(session: SessionDep, token: TokenDep) -> User:
    try:
        payload = jwt.decode(
            token, settings.SECRET_KEY, algorithms=[security.ALGORITHM]
        )
        token_data = TokenPayload(**payload)
        user_id = uuid.UUID(token_data.sub or "")
    except (InvalidTokenError, ValidationError, ValueError):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Could not validate credentials",
        )
    user = session.get(User, user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    if not user.is_active:
        raise HTTPException(status_code=400, detail="Inactive user")
    return user


CurrentUser = Annotated[User, Depends(get_current_user)]


def get_current_active_superuser(current_user: CurrentUser) -> User:
    if not current_user.is_admin:
        raise HTTPException(
            status_code=403, detail="The user doesn't have enough privileges"
        )
    return current_user


def require_roles(*roles: UserRole):
    """Dependency factory allowing admins plus the listed roles."""

    def checker(current_user: CurrentUser) -> User:
        if current_user.is_admin or current_user.role in roles:
            return current_user
        raise HTTPException(status_code=403, detail="Not enough permissions")

    return checker


async def validate_parameters_in_body(request: Request) -> None:
    """Reject bodies whose `parameters` list is malformed before the handler runs."""
    try:
        body = await request.json()
    except ValueError:
        return
    if not isinstance(body, dict):
        return
    parameters = body.get("parameters")
    # empty scalars ("", 0, false) count as absent; empty lists and objects are still checked
    if parameters is None or (not parameters and not isinstance(parameters, list | dict)):
        return
    validate_parameters(parameters)
