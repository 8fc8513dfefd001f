import re
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import EmailStr, field_validator
from sqlalchemy import DateTime, JSON, UniqueConstraint
from sqlmodel import Field, Relationship, SQLModel


def get_datetime_utc() -> datetime:
    return datetime.now(timezone.utc)


SEMVER_PATTERN = re.compile(r"^\d+\.\d+\.\d+$")


class UserRole(str, Enum):
    admin = "admin"
    developer = "developer"
    user = "user"


class TemplateStatus(str, Enum):
    draft = "draft"
    review = "review"
    published = "published"
    archived = "archived"


TEMPLATE_CATEGORIES = (
    "strategy",
    "indicator",
    "utility",
    "test",
    "other",
    "blueprint",
    "code-generation",
    "quickfix",
    "document-fingerprinting",
    "ai-integration",
    "project-init",
    "development-workflow",
    "testing-deployment",
)


class PromptCategory(str, Enum):
    blueprint = "blueprint"
    component_generation = "component_generation"
    tech_support = "tech_support"
    code_analysis = "code_analysis"
    system = "system"
    chat = "chat"


class AuditAction(str, Enum):
    create = "create"
    update = "update"
    delete = "delete"
    login = "login"
    logout = "logout"
    view = "view"
    export = "export"


class ChatRole(str, Enum):
    user = "user"
    assistant = "assistant"


# Shared properties
class UserBase(SQLModel):
    email: EmailStr = Field(unique=True, index=True, max_length=255)
    is_active: bool = True
    is_superuser: bool = False
    full_name: str | None = Field(default=None, max_length=255)
    role: UserRole = UserRole.user


# Properties to receive via API on creation
class UserCreate(UserBase):
    password: str = Field(min_length=8, max_length=128)


class UserRegister(SQLModel):
    email: EmailStr = Field(max_length=255)
    password: str = Field(min_length=8, max_length=128)
    full_name: str | None = Field(default=None, max_length=255)


# Properties to receive via API on update, all are optional
class UserUpdate(UserBase):
    email: EmailStr | None = Field(default=None, max_length=255)  # type: ignore
    password: str | None = Field(default=None, min_length=8, max_length=128)
    role: UserRole | None = None  # type: ignore


class UserUpdateMe(SQLModel):
    full_name: str | None = Field(default=None, max_length=255)
    email: EmailStr | None = Field(default=None, max_length=255)


class UpdatePassword(SQLModel):
    current_password: str = Field(min_length=8, max_length=128)
    new_password: str = Field(min_length=8, max_length=128)


# Database model, database table inferred from class name
class User(UserBase, table=True):
    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    hashed_password: str
    created_at: datetime | None = Field(
        default_factory=get_datetime_utc,
        sa_type=DateTime(timezone=True),  # type: ignore
    )
    templates: list["Template"] = Relationship(back_populates="author", cascade_delete=True)
    chat_sessions: list["ChatSession"] = Relationship(back_populates="owner", cascade_delete=True)

    @property
    def is_admin(self) -> bool:
        return self.is_superuser or self.role == UserRole.admin


# Properties to return via API, id is always required
class UserPublic(UserBase):
    id: uuid.UUID
    created_at: datetime | None = None


class UsersPublic(SQLModel):
    data: list[UserPublic]
    count: int


# Generic message
class Message(SQLModel):
    message: str


# JSON payload containing access token
class Token(SQLModel):
    access_token: str
    token_type: str = "bearer"


# Contents of JWT token
class TokenPayload(SQLModel):
    sub: str | None = None


# Code templates

class TemplateBase(SQLModel):
    template_key: str = Field(min_length=1, max_length=255, index=True)
    name: str = Field(min_length=1, max_length=255)
    description: str = Field(min_length=1)
    version: str = Field(default="1.0.0", max_length=50)
    category: list[str] = Field(default_factory=list, sa_type=JSON)
    roles: list[str] = Field(default_factory=list, sa_type=JSON)
    content: str = Field(min_length=1)
    parameters: list[dict[str, Any]] = Field(default_factory=list, sa_type=JSON)
    dependencies: list[str] = Field(default_factory=list, sa_type=JSON)
    is_public: bool = False
    status: TemplateStatus = TemplateStatus.draft
    details: dict[str, Any] = Field(default_factory=dict, sa_type=JSON)


def _check_semver(value: str) -> str:
    if not SEMVER_PATTERN.match(value):
        raise ValueError("Version must be in semantic format (e.g., 1.0.0)")
    return value


def _check_categories(value: list[str]) -> list[str]:
    if not value:
        raise ValueError("At least one category is required")
    unknown = [item for item in value if item not in TEMPLATE_CATEGORIES]
    if unknown:
        raise ValueError(f"Unknown categories: {', '.join(unknown)}")
    return value


def _check_roles(value: list[str]) -> list[str]:
    if not value:
        raise ValueError("At least one role is required")
    allowed = {role.value for role in UserRole}
    unknown = [item for item in value if item not in allowed]
    if unknown:
        raise ValueError(f"Unknown roles: {', '.join(unknown)}")
    return value


class TemplateCreate(TemplateBase):
    @field_validator("version")
    @classmethod
    def version_is_semver(cls, value: str) -> str:
        return _check_semver(value)

    @field_validator("category")
    @classmethod
    def categories_are_known(cls, value: list[str]) -> list[str]:
        return _check_categories(value)

    @field_validator("roles")
    @classmethod
    def roles_are_known(cls, value: list[str]) -> list[str]:
        return _check_roles(value)


class TemplateUpdate(SQLModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None
    version: str | None = None
    category: list[str] | None = None
    roles: list[str] | None = None
    content: str | None = None
    parameters: list[dict[str, Any]] | None = None
    dependencies: list[str] | None = None
    is_public: bool | None = None
    status: TemplateStatus | None = None
    details: dict[str, Any] | None = None
    changes: str | None = None
    branch: str | None = None

    @field_validator("version")
    @classmethod
    def version_is_semver(cls, value: str | None) -> str | None:
        return _check_semver(value) if value is not None else value

    @field_validator("category")
    @classmethod
    def categories_are_known(cls, value: list[str] | None) -> list[str] | None:
        return _check_categories(value) if value is not None else value

    @field_validator("roles")
    @classmethod
    def roles_are_known(cls, value: list[str] | None) -> list[str] | None:
        return _check_roles(value) if value is not None else value


class Template(TemplateBase, table=True):
    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    template_key: str = Field(min_length=1, max_length=255, index=True, unique=True)
    performance_metrics: dict[str, Any] = Field(default_factory=dict, sa_type=JSON)
    created_at: datetime | None = Field(
        default_factory=get_datetime_utc,
        sa_type=DateTime(timezone=True),  # type: ignore
    )
    updated_at: datetime | None = Field(
        default_factory=get_datetime_utc,
        sa_type=DateTime(timezone=True),  # type: ignore
    )
    author_id: uuid.UUID = Field(
        foreign_key="user.id", nullable=False, ondelete="CASCADE"
    )
    author: User | None = Relationship(back_populates="templates")
    versions: list["TemplateVersion"] = Relationship(back_populates="template", cascade_delete=True)


class TemplatePublic(TemplateBase):
    id: uuid.UUID
    author_id: uuid.UUID
    performance_metrics: dict[str, Any] = {}
    created_at: datetime | None = None
    updated_at: datetime | None = None


class TemplatesPublic(SQLModel):
    data: list[TemplatePublic]
    total: int
    pages: int
    current_page: int


class TemplateVersion(SQLModel, table=True):
    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    template_id: uuid.UUID = Field(
        foreign_key="template.id", nullable=False, ondelete="CASCADE", index=True
    )
    version: str = Field(max_length=50)
    changes: str
    content: str
    parameters: list[dict[str, Any]] = Field(default_factory=list, sa_type=JSON)
    dependencies: list[str] = Field(default_factory=list, sa_type=JSON)
    branch: str = Field(default="main", max_length=100)
    parent_version: str | None = Field(default=None, max_length=50)
    status: TemplateStatus = TemplateStatus.draft
    author_id: uuid.UUID | None = Field(default=None, foreign_key="user.id", ondelete="SET NULL")
    created_at: datetime | None = Field(
        default_factory=get_datetime_utc,
        sa_type=DateTime(timezone=True),  # type: ignore
    )
    template: Template | None = Relationship(back_populates="versions")


class TemplateVersionPublic(SQLModel):
    id: uuid.UUID
    template_id: uuid.UUID
    version: str
    changes: str
    branch: str
    parent_version: str | None = None
    status: TemplateStatus
    author_id: uuid.UUID | None = None
    created_at: datetime | None = None


class TemplateMetricsUpdate(SQLModel):
    success_rate: float | None = Field(default=None, ge=0, le=1)
    token_efficiency: float | None = Field(default=None, ge=0)
    avg_response_time: float | None = Field(default=None, ge=0)
    user_satisfaction: float | None = Field(default=None, ge=0, le=1)


class TemplateRestore(SQLModel):
    version: str


class TemplateGenerateRequest(SQLModel):
    values: dict[str, Any] = Field(default_factory=dict)


class TemplateGenerateResult(SQLModel):
    template_id: uuid.UUID
    version: str
    code: str


# Prompts

class PromptBase(SQLModel):
    name: str = Field(min_length=1, max_length=255, index=True)
    description: str = ""
    category: PromptCategory = PromptCategory.component_generation
    content: str = Field(min_length=1)
    is_active: bool = True
    tags: list[str] = Field(default_factory=list, sa_type=JSON)
    details: dict[str, Any] = Field(default_factory=dict, sa_type=JSON)


class PromptCreate(PromptBase):
    pass


class PromptUpdate(SQLModel):
    description: str | None = None
    category: PromptCategory | None = None
    content: str | None = Field(default=None, min_length=1)
    is_active: bool | None = None
    tags: list[str] | None = None
    details: dict[str, Any] | None = None


class Prompt(PromptBase, table=True):
    __table_args__ = (UniqueConstraint("name", "version"),)

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    version: int = Field(default=1, ge=1)
    created_by: uuid.UUID | None = Field(default=None, foreign_key="user.id", ondelete="SET NULL")
    updated_by: uuid.UUID | None = Field(default=None, foreign_key="user.id", ondelete="SET NULL")
    created_at: datetime | None = Field(
        default_factory=get_datetime_utc,
        sa_type=DateTime(timezone=True),  # type: ignore
    )
    updated_at: datetime | None = Field(
        default_factory=get_datetime_utc,
        sa_type=DateTime(timezone=True),  # type: ignore
    )


class PromptPublic(PromptBase):
    id: uuid.UUID
    version: int
    created_by: uuid.UUID | None = None
    updated_by: uuid.UUID | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class PromptVersionSummary(SQLModel):
    version: int
    is_active: bool
    created_at: datetime | None = None
    updated_at: datetime | None = None


class PromptTestRequest(SQLModel):
    variables: dict[str, Any] = Field(default_factory=dict)


class PromptTestResult(SQLModel):
    original: str
    processed: str
    variables: list[str]
    missing: list[str]


# Comparisons

class DiffStats(SQLModel):
    added: int
    removed: int
    unchanged: int


class VersionComparison(SQLModel):
    old_version: str
    new_version: str
    old_date: datetime | None = None
    new_date: datetime | None = None
    diff: str
    unified: str
    stats: DiffStats


# Audit logs

class AuditLogBase(SQLModel):
    action: AuditAction
    user_id: uuid.UUID | None = Field(default=None, index=True)
    entity_type: str | None = Field(default=None, max_length=100, index=True)
    entity_id: str | None = Field(default=None, max_length=255, index=True)
    ip_address: str | None = Field(default=None, max_length=100)
    user_agent: str | None = Field(default=None, max_length=500)
    changes: dict[str, Any] = Field(default_factory=dict, sa_type=JSON)
    details: dict[str, Any] = Field(default_factory=dict, sa_type=JSON)
    error: str | None = None


class AuditLogCreate(AuditLogBase):
    pass


class AuditLog(AuditLogBase, table=True):
    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    timestamp: datetime = Field(
        default_factory=get_datetime_utc,
        sa_type=DateTime(timezone=True),  # type: ignore
        index=True,
    )


class AuditLogPublic(AuditLogBase):
    id: uuid.UUID
    timestamp: datetime


class AuditLogsPublic(SQLModel):
    logs: list[AuditLogPublic]
    total: int
    page: int
    total_pages: int


class ActionCount(SQLModel):
    action: str
    count: int


class HourCount(SQLModel):
    hour: int
    count: int


class DateCount(SQLModel):
    date: str
    count: int


class AuditStatistics(SQLModel):
    total_logs: int
    users: int
    entities: int
    actions: list[ActionCount]
    hourly_distribution: list[HourCount]
    daily_distribution: list[DateCount]


class AuditCleanupResult(SQLModel):
    deleted: int
    cutoff: datetime


# Chat

class ChatSessionBase(SQLModel):
    title: str = Field(default="New conversation", max_length=255)


class ChatSessionCreate(ChatSessionBase):
    pass


class ChatSession(ChatSessionBase, table=True):
    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    owner_id: uuid.UUID = Field(
        foreign_key="user.id", nullable=False, ondelete="CASCADE"
    )
    created_at: datetime | None = Field(
        default_factory=get_datetime_utc,
        sa_type=DateTime(timezone=True),  # type: ignore
    )
    updated_at: datetime | None = Field(
        default_factory=get_datetime_utc,
        sa_type=DateTime(timezone=True),  # type: ignore
    )
    owner: User | None = Relationship(back_populates="chat_sessions")
    messages: list["ChatMessage"] = Relationship(back_populates="session", cascade_delete=True)


class ChatSessionPublic(ChatSessionBase):
    id: uuid.UUID
    owner_id: uuid.UUID
    created_at: datetime | None = None
    updated_at: datetime | None = None


class ChatMessageBase(SQLModel):
    role: ChatRole
    content: str
    code: str | None = None
    language: str | None = Field(default=None, max_length=50)
    details: dict[str, Any] = Field(default_factory=dict, sa_type=JSON)


class ChatMessage(ChatMessageBase, table=True):
    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    session_id: uuid.UUID = Field(
        foreign_key="chatsession.id", nullable=False, ondelete="CASCADE", index=True
    )
    created_at: datetime | None = Field(
        default_factory=get_datetime_utc,
        sa_type=DateTime(timezone=True),  # type: ignore
    )
    session: ChatSession | None = Relationship(back_populates="messages")


class ChatMessagePublic(ChatMessageBase):
    id: uuid.UUID
    session_id: uuid.UUID
    created_at: datetime | None = None


class ChatMessageRequest(SQLModel):
    content: str = Field(min_length=1, max_length=10000)


class ChatExchange(SQLModel):
    user_message: ChatMessagePublic
    assistant_message: ChatMessagePublic


class ChatSessionWithMessages(ChatSessionPublic):
    messages: list[ChatMessagePublic]


# Embeddings

class EmbeddingRecord(SQLModel, table=True):
    id: str = Field(primary_key=True, max_length=300)
    prompt_id: str = Field(max_length=255, index=True)
    version: int
    model_version: str = Field(max_length=255, index=True)
    dimension: int
    details: dict[str, Any] = Field(default_factory=dict, sa_type=JSON)
    created_at: datetime | None = Field(
        default_factory=get_datetime_utc,
        sa_type=DateTime(timezone=True),  # type: ignore
    )


class EmbeddingPublic(SQLModel):
    id: str
    prompt_id: str
    version: int
    model_version: str
    dimension: int
    details: dict[str, Any] = {}
    created_at: datetime | None = None


class EmbeddingCreate(SQLModel):
    vector: list[float] | None = None
    text: str | None = None
    model_version: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)


class SimilarityQuery(SQLModel):
    vector: list[float] | None = None
    text: str | None = None
    model_version: str | None = None
    threshold: float | None = Field(default=None, ge=-1, le=1)
    limit: int = Field(default=10, ge=1, le=100)
    exclude_prompt_id: str | None = None


class SimilarEmbedding(SQLModel):
    id: str
    prompt_id: str
    version: int
    model_version: str | None = None
    similarity: float
    details: dict[str, Any] = {}


class ProjectedPoint(SQLModel):
    id: str
    prompt_id: str
    version: int
    model_version: str
    x: float
    y: float


class EmbeddingProjection(SQLModel):
    points: list[ProjectedPoint]
    explained_variance: list[float]


# Dashboard

class DashboardSummary(SQLModel):
    templates: int
    prompts: int
    users: int
    chat_sessions: int
    embeddings: int
    audit_events_24h: int
