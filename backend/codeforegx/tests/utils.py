from datetime import timedelta

from sqlmodel import Session

from codeforegx import crud
from codeforegx.core.security import create_access_token
from codeforegx.models import User, UserCreate, UserRole


def make_user(db: Session, email: str, role: UserRole = UserRole.user) -> User:
    user = crud.get_user_by_email(session=db, email=email)
    if user:
        return user
    return crud.create_user(
        session=db,
        user_create=UserCreate(email=email, password="s3cret-pass", role=role),
    )


def auth_headers(user: User) -> dict[str, str]:
    token = create_access_token(user.id, expires_delta=timedelta(minutes=30))
    return {"Authorization": f"Bearer {token}"}
