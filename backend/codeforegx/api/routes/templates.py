import logging
import math
import uuid
from collections.abc import Callable
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlmodel import Session, col, or_, select

from codeforegx.api.deps import (
    CurrentUser,
    SessionDep,
    require_roles,
    validate_parameters_in_body,
)
from codeforegx.core.cache import get_cache
from codeforegx.crud import (
    add_template_version,
    create_template,
    get_template_by_key,
    get_template_version,
    list_template_versions,
)
from codeforegx.models import (
    Message,
    Template,
    TemplateCreate,
    TemplateGenerateRequest,
    TemplateGenerateResult,
    TemplateMetricsUpdate,
    TemplatePublic,
    TemplateRestore,
    TemplatesPublic,
    TemplateStatus,
    TemplateUpdate,
    TemplateVersionPublic,
    User,
    UserRole,
    VersionComparison,
    get_datetime_utc,
)
from codeforegx.services.diff import compare_text
from codeforegx.validation import (
    render_template,
    resolve_dependencies,
    validate_dependencies,
    validate_parameter_values,
)

router = APIRouter()
logger = logging.getLogger(__name__)

VERSIONED_FIELDS = ("content", "parameters", "dependencies")
METRIC_FIELDS = ("success_rate", "token_efficiency", "avg_response_time", "user_satisfaction")

can_author_templates = require_roles(UserRole.developer)


def bump_patch(version: str) -> str:
    major, minor, patch = (int(part) for part in version.split("."))
    return f"{major}.{minor}.{patch + 1}"


def _get_template(session: Session, id: uuid.UUID) -> Template:
    template = session.get(Template, id)
    if not template:
        raise HTTPException(status_code=404, detail="Template not found")
    return template


def _ensure_can_view(template: Template, user: User) -> None:
    if not template.is_public and template.author_id != user.id and not user.is_admin:
        raise HTTPException(status_code=403, detail="Not authorized to access this template")


def _ensure_can_edit(template: Template, user: User) -> None:
    if template.author_id != user.id and not user.is_admin:
        raise HTTPException(status_code=403, detail="Not authorized to update this template")


def _dependency_lookup(session: Session) -> Callable[[str], list[str] | None]:
    def lookup(key: str) -> list[str] | None:
        template = get_template_by_key(session=session, template_key=key)
        return list(template.dependencies or []) if template else None

    return lookup


def _next_version(session: Session, template: Template) -> str:
    version = bump_patch(template.version)
    while get_template_version(session=session, template_id=template.id, version=version):
        version = bump_patch(version)
    return version


@router.post(
    "/",
    response_model=TemplatePublic,
    status_code=201,
    dependencies=[Depends(can_author_templates), Depends(validate_parameters_in_body)],
)
def create_new_template(
    *,
    session: SessionDep,
    current_user: User = Depends(can_author_templates),
    template_in: TemplateCreate,
) -> Any:
    if get_template_by_key(session=session, template_key=template_in.template_key):
        raise HTTPException(status_code=400, detail="Template with this ID already exists")
    validate_dependencies(template_in.template_key, template_in.dependencies, _dependency_lookup(session))

    template = create_template(session=session, template_in=template_in, author_id=current_user.id)
    get_cache().invalidate("dashboard:summary")
    logger.info("Template created: %s by user %s", template.template_key, current_user.id)
    return template


@router.get("/", response_model=TemplatesPublic)
def read_templates(
    session: SessionDep,
    current_user: CurrentUser,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    category: str | None = None,
    role: str | None = None,
    status: TemplateStatus | None = None,
    author: uuid.UUID | None = None,
    search: str | None = None,
) -> Any:
    statement = select(Template)
    if status:
        statement = statement.where(Template.status == status)
    if author:
        statement = statement.where(Template.author_id == author)
    if search:
        pattern = f"%{search}%"
        statement = statement.where(
            or_(
                col(Template.name).ilike(pattern),
                col(Template.description).ilike(pattern),
                col(Template.template_key).ilike(pattern),
            )
        )
    if not current_user.is_admin:
        statement = statement.where(
            or_(Template.is_public == True, Template.author_id == current_user.id)  # noqa: E712
        )
    statement = statement.order_by(col(Template.created_at).desc())

    # category and role are JSON lists, filtered here to stay portable across SQL backends
    templates = [
        template
        for template in session.exec(statement).all()
        if (not category or category in (template.category or []))
        and (not role or role in (template.roles or []))
    ]
    total = len(templates)
    start = (page - 1) * limit
    return TemplatesPublic(
        data=templates[start:start + limit],
        total=total,
        pages=math.ceil(total / limit),
        current_page=page,
    )


@router.get("/{id}", response_model=TemplatePublic)
def read_template(
    id: uuid.UUID,
    session: SessionDep,
    current_user: CurrentUser,
) -> Any:
    template = _get_template(session, id)
    _ensure_can_view(template, current_user)
    return template


@router.put(
    "/{id}",
    response_model=TemplatePublic,
    dependencies=[Depends(can_author_templates), Depends(validate_parameters_in_body)],
)
def update_template(
    *,
    id: uuid.UUID,
    session: SessionDep,
    current_user: User = Depends(can_author_templates),
    template_in: TemplateUpdate,
) -> Any:
    template = _get_template(session, id)
    _ensure_can_edit(template, current_user)

    update_data = template_in.model_dump(exclude_unset=True, exclude={"changes", "branch"})
    if "dependencies" in update_data:
        validate_dependencies(
            template.template_key, update_data["dependencies"] or [], _dependency_lookup(session)
        )

    parent_version = template.version
    requested_version = update_data.pop("version", None)
    if requested_version == parent_version:
        requested_version = None
    if requested_version and get_template_version(
        session=session, template_id=template.id, version=requested_version
    ):
        raise HTTPException(status_code=400, detail=f"Version {requested_version} already exists")

    # an explicit new version is recorded in history even without content changes
    versioned_change = requested_version is not None or any(
        field in update_data and update_data[field] != getattr(template, field)
        for field in VERSIONED_FIELDS
    )
    if versioned_change:
        update_data["version"] = requested_version or _next_version(session, template)

    template.sqlmodel_update(update_data)
    template.updated_at = get_datetime_utc()
    if versioned_change:
        add_template_version(
            session=session,
            template=template,
            version=template.version,
            changes=template_in.changes or "Updated template",
            author_id=current_user.id,
            branch=template_in.branch or "main",
            parent_version=parent_version,
        )
    session.add(template)
    session.commit()
    session.refresh(template)
    logger.info("Template updated: %s by user %s", template.template_key, current_user.id)
    return template


@router.delete("/{id}")
def delete_template(
    id: uuid.UUID,
    session: SessionDep,
    current_user: User = Depends(can_author_templates),
) -> Message:
    template = _get_template(session, id)
    _ensure_can_edit(template, current_user)
    session.delete(template)
    session.commit()
    get_cache().invalidate("dashboard:summary")
    logger.info("Template deleted: %s by user %s", template.template_key, current_user.id)
    return Message(message="Template deleted successfully")


@router.get("/{id}/versions", response_model=list[TemplateVersionPublic])
def read_template_versions(
    id: uuid.UUID,
    session: SessionDep,
    current_user: CurrentUser,
) -> Any:
    template = _get_template(session, id)
    _ensure_can_view(template, current_user)
    return list_template_versions(session=session, template_id=template.id)


@router.get("/{id}/dependencies", response_model=list[TemplatePublic])
def read_template_dependencies(
    id: uuid.UUID,
    session: SessionDep,
    current_user: CurrentUser,
) -> Any:
    """
    Transitive dependencies of a template, nearest first.
    """
    template = _get_template(session, id)
    _ensure_can_view(template, current_user)
    keys = resolve_dependencies(
        template.template_key, list(template.dependencies or []), _dependency_lookup(session)
    )
    return [get_template_by_key(session=session, template_key=key) for key in keys]


@router.get("/{id}/compare", response_model=VersionComparison)
def compare_template_versions(
    id: uuid.UUID,
    version1: str,
    version2: str,
    session: SessionDep,
    current_user: CurrentUser,
) -> Any:
    template = _get_template(session, id)
    _ensure_can_view(template, current_user)

    old = get_template_version(session=session, template_id=template.id, version=version1)
    new = get_template_version(session=session, template_id=template.id, version=version2)
    if not old or not new:
        raise HTTPException(status_code=404, detail="One or both versions not found")

    diff = compare_text(old.content, new.content, old_label=f"v{version1}", new_label=f"v{version2}")
    return VersionComparison(
        old_version=version1,
        new_version=version2,
        old_date=old.created_at,
        new_date=new.created_at,
        diff=diff.html,
        unified=diff.unified,
        stats=diff.stats,
    )


@router.post("/{id}/restore", response_model=TemplatePublic)
def restore_template_version(
    *,
    id: uuid.UUID,
    session: SessionDep,
    current_user: User = Depends(can_author_templates),
    restore_in: TemplateRestore,
) -> Any:
    template = _get_template(session, id)
    _ensure_can_edit(template, current_user)

    entry = get_template_version(session=session, template_id=template.id, version=restore_in.version)
    if not entry:
        raise HTTPException(status_code=404, detail="Version not found")

    parent_version = template.version
    template.content = entry.content
    template.parameters = list(entry.parameters or [])
    template.dependencies = list(entry.dependencies or [])
    template.version = _next_version(session, template)
    template.updated_at = get_datetime_utc()
    add_template_version(
        session=session,
        template=template,
        version=template.version,
        changes=f"Restored from version {entry.version}",
        author_id=current_user.id,
        parent_version=parent_version,
    )
    session.add(template)
    session.commit()
    session.refresh(template)
    logger.info("Template %s restored to %s by user %s", template.template_key, entry.version, current_user.id)
    return template


@router.put("/{id}/metrics")
def update_template_metrics(
    *,
    id: uuid.UUID,
    session: SessionDep,
    current_user: User = Depends(can_author_templates),
    metrics_in: TemplateMetricsUpdate,
) -> dict[str, Any]:
    template = _get_template(session, id)
    _ensure_can_edit(template, current_user)

    current = dict(template.performance_metrics or {})
    updates = metrics_in.model_dump(exclude_none=True)
    metrics = {field: updates.get(field, current.get(field, 0)) for field in METRIC_FIELDS}
    metrics["last_updated"] = get_datetime_utc().isoformat()

    # reassign so the JSON column is flagged dirty
    template.performance_metrics = metrics
    session.add(template)
    session.commit()
    return metrics


@router.post("/{id}/generate", response_model=TemplateGenerateResult)
def generate_template_code(
    *,
    id: uuid.UUID,
    session: SessionDep,
    current_user: CurrentUser,
    generate_in: TemplateGenerateRequest,
) -> Any:
    template = _get_template(session, id)
    _ensure_can_view(template, current_user)

    errors = validate_parameter_values(template.parameters or [], generate_in.values)
    if errors:
        raise HTTPException(status_code=400, detail={"message": "Invalid parameter values", "errors": errors})

    return TemplateGenerateResult(
        template_id=template.id,
        version=template.version,
        code=render_template(template.content, template.parameters or [], generate_in.values),
    )
