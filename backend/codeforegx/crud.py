import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import func
from sqlmodel import Session, col, delete, select

from codeforegx.core.security import get_password_hash, verify_password
from codeforegx.models import (
    AuditLog,
    AuditLogCreate,
    ChatMessage,
    ChatRole,
    ChatSession,
    ChatSessionCreate,
    Prompt,
    PromptCreate,
    Template,
    TemplateCreate,
    TemplateStatus,
    TemplateVersion,
    User,
    UserCreate,
    UserUpdate,
    get_datetime_utc,
)


def create_user(*, session: Session, user_create: UserCreate) -> User:
    db_obj = User.model_validate(
        user_create, update={"hashed_password": get_password_hash(user_create.password)}
    )
    session.add(db_obj)
    session.commit()
    session.refresh(db_obj)
    return db_obj


def update_user(*, session: Session, db_user: User, user_in: UserUpdate) -> Any:
    user_data = user_in.model_dump(exclude_unset=True)
    extra_data = {}
    if "password" in user_data:
        password = user_data["password"]
        hashed_password = get_password_hash(password)
        extra_data["hashed_password"] = hashed_password
    db_user.sqlmodel_update(user_data, update=extra_data)
    session.add(db_user)
    session.commit()
    session.refresh(db_user)
    return db_user


def get_user_by_email(*, session: Session, email: str) -> User | None:
    statement = select(User).where(User.email == email)
    session_user = session.exec(statement).first()
    return session_user


# Dummy hash to use for timing attack prevention when user is not found
# This is an Argon2 hash of a random password, used to ensure constant-time comparison
DUMMY_HASH = "$argon2id$v=19$m=65536,t=3,p=4$MjQyZWE1MzBjYjJlZTI0Yw$YTU4NGM5ZTZmYjE2NzZlZjY0ZWY3ZGRkY2U2OWFjNjk"


def authenticate(*, session: Session, email: str, password: str) -> User | None:
    db_user = get_user_by_email(session=session, email=email)
    if not db_user:
        # Keep response time similar whether or not the email exists
        verify_password(password, DUMMY_HASH)
        return None
    verified, updated_password_hash = verify_password(password, db_user.hashed_password)
    if not verified:
        return None
    if updated_password_hash:
        db_user.hashed_password = updated_password_hash
        session.add(db_user)
        session.commit()
        session.refresh(db_user)
    return db_user


# Templates

def get_template_by_key(*, session: Session, template_key: str) -> Template | None:
    statement = select(Template).where(Template.template_key == template_key)
    return session.exec(statement).first()


def add_template_version(
    *,
    session: Session,
    template: Template,
    version: str,
    changes: str,
    author_id: uuid.UUID,
    branch: str = "main",
    status: TemplateStatus | None = None,
    parent_version: str | None = None,
) -> TemplateVersion:
    """Snapshot the template's current content as a version entry (no commit)."""
    entry = TemplateVersion(
        template_id=template.id,
        version=version,
        changes=changes,
        content=template.content,
        parameters=list(template.parameters or []),
        dependencies=list(template.dependencies or []),
        branch=branch,
        parent_version=parent_version,
        status=status or template.status,
        author_id=author_id,
    )
    session.add(entry)
    return entry


def create_template(*, session: Session, template_in: TemplateCreate, author_id: uuid.UUID) -> Template:
    db_template = Template.model_validate(template_in, update={"author_id": author_id})
    session.add(db_template)
    session.flush()
    add_template_version(
        session=session,
        template=db_template,
        version=db_template.version,
        changes="Initial version",
        author_id=author_id,
        status=TemplateStatus.published,
    )
    session.commit()
    session.refresh(db_template)
    return db_template


def list_template_versions(*, session: Session, template_id: uuid.UUID) -> list[TemplateVersion]:
    statement = (
        select(TemplateVersion)
        .where(TemplateVersion.template_id == template_id)
        .order_by(col(TemplateVersion.created_at).desc())
    )
    return list(session.exec(statement).all())


def get_template_version(*, session: Session, template_id: uuid.UUID, version: str) -> TemplateVersion | None:
    statement = (
        select(TemplateVersion)
        .where(TemplateVersion.template_id == template_id, TemplateVersion.version == version)
        .order_by(col(TemplateVersion.created_at).desc())
    )
    return session.exec(statement).first()


# Prompts

def get_latest_prompt_version(*, session: Session, name: str) -> int:
    statement = select(func.max(Prompt.version)).where(Prompt.name == name)
    return session.exec(statement).one() or 0


def create_prompt(*, session: Session, prompt_in: PromptCreate, user_id: uuid.UUID | None) -> Prompt:
    next_version = get_latest_prompt_version(session=session, name=prompt_in.name) + 1
    db_prompt = Prompt.model_validate(
        prompt_in,
        update={"version": next_version, "created_by": user_id, "updated_by": user_id},
    )
    session.add(db_prompt)
    session.commit()
    session.refresh(db_prompt)
    return db_prompt


def get_prompt(*, session: Session, name: str, version: int | None = None) -> Prompt | None:
    """Return a specific version, else the latest active version, else the latest version."""
    if version is not None:
        statement = select(Prompt).where(Prompt.name == name, Prompt.version == version)
        return session.exec(statement).first()

    latest_active = session.exec(
        select(Prompt)
        .where(Prompt.name == name, Prompt.is_active == True)  # noqa: E712
        .order_by(col(Prompt.version).desc())
    ).first()
    if latest_active:
        return latest_active
    return session.exec(
        select(Prompt).where(Prompt.name == name).order_by(col(Prompt.version).desc())
    ).first()


def create_prompt_revision(
    *, session: Session, prompt: Prompt, update_data: dict[str, Any], user_id: uuid.UUID | None
) -> Prompt:
    next_version = get_latest_prompt_version(session=session, name=prompt.name) + 1
    data = prompt.model_dump(exclude={"id", "version", "created_at", "updated_at", "updated_by"})
    data.update(update_data)
    revision = Prompt.model_validate(data, update={"version": next_version, "updated_by": user_id})
    session.add(revision)
    session.commit()
    session.refresh(revision)
    return revision


# Audit logs

def create_audit_log(*, session: Session, audit_in: AuditLogCreate) -> AuditLog:
    db_log = AuditLog.model_validate(audit_in)
    session.add(db_log)
    session.commit()
    session.refresh(db_log)
    return db_log


def delete_audit_logs_before(*, session: Session, days: int) -> tuple[int, datetime]:
    cutoff = datetime.now(timezone.utc) - timedelta(days=days)
    statement = delete(AuditLog).where(col(AuditLog.timestamp) < cutoff)
    result = session.execute(statement)
    session.commit()
    return result.rowcount or 0, cutoff


# Chat

def create_chat_session(*, session: Session, session_in: ChatSessionCreate, owner_id: uuid.UUID) -> ChatSession:
    db_session = ChatSession.model_validate(session_in, update={"owner_id": owner_id})
    session.add(db_session)
    session.commit()
    session.refresh(db_session)
    return db_session


def add_chat_message(
    *,
    session: Session,
    chat_session: ChatSession,
    role: ChatRole,
    content: str,
    code: str | None = None,
    language: str | None = None,
    details: dict[str, Any] | None = None,
) -> ChatMessage:
    message = ChatMessage(
        session_id=chat_session.id,
        role=role,
        content=content,
        code=code,
        language=language,
        details=details or {},
    )
    chat_session.updated_at = get_datetime_utc()
    session.add(message)
    session.add(chat_session)
    session.commit()
    session.refresh(message)
    return message


def get_recent_chat_messages(*, session: Session, session_id: uuid.UUID, limit: int) -> list[ChatMessage]:
    statement = (
        select(ChatMessage)
        .where(ChatMessage.session_id == session_id)
        .order_by(col(ChatMessage.created_at).desc())
        .limit(limit)
    )
    return list(reversed(session.exec(statement).all()))
