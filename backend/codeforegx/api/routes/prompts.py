import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from sqlmodel import Session, and_, col, func, select

from codeforegx import crud
from codeforegx.api.deps import CurrentUser, SessionDep, require_roles
from codeforegx.core.cache import get_cache
from codeforegx.models import (
    Message,
    Prompt,
    PromptCategory,
    PromptCreate,
    PromptPublic,
    PromptTestRequest,
    PromptTestResult,
    PromptUpdate,
    PromptVersionSummary,
    User,
    UserRole,
    VersionComparison,
)
from codeforegx.services.diff import compare_text
from codeforegx.services.prompts import dry_run_prompt, extract_variables

router = APIRouter()
logger = logging.getLogger(__name__)

can_edit_prompts = require_roles(UserRole.developer)


def _get_prompt_or_404(session: Session, name: str, version: int | None = None) -> Prompt:
    prompt = crud.get_prompt(session=session, name=name, version=version)
    if not prompt:
        raise HTTPException(status_code=404, detail="Prompt not found")
    return prompt


@router.get("/", response_model=list[PromptPublic])
def read_prompts(
    session: SessionDep,
    current_user: CurrentUser,
    category: PromptCategory | None = None,
    active: bool | None = None,
    all_versions: bool = False,
) -> Any:
    """
    List prompts, latest version of each name unless `all_versions` is set.
    """
    statement = select(Prompt)
    if not all_versions:
        latest = (
            select(Prompt.name, func.max(Prompt.version).label("version"))
            .group_by(Prompt.name)
            .subquery()
        )
        statement = statement.join(
            latest, and_(Prompt.name == latest.c.name, Prompt.version == latest.c.version)
        )
    if category:
        statement = statement.where(Prompt.category == category)
    if active is not None:
        statement = statement.where(Prompt.is_active == active)
    statement = statement.order_by(col(Prompt.name), col(Prompt.version).desc())
    return session.exec(statement).all()


@router.post("/", response_model=PromptPublic, status_code=201)
def create_prompt(
    *,
    session: SessionDep,
    current_user: User = Depends(can_edit_prompts),
    prompt_in: PromptCreate,
) -> Any:
    prompt = crud.create_prompt(session=session, prompt_in=prompt_in, user_id=current_user.id)
    get_cache().invalidate("dashboard:summary")
    logger.info("Prompt %s v%s created by user %s", prompt.name, prompt.version, current_user.id)
    return prompt


@router.get("/{name}", response_model=PromptPublic)
def read_prompt(name: str, session: SessionDep, current_user: CurrentUser) -> Any:
    """
    Latest active version of a prompt, falling back to the latest version.
    """
    return _get_prompt_or_404(session, name)


@router.get("/{name}/versions", response_model=list[PromptVersionSummary])
def read_prompt_versions(name: str, session: SessionDep, current_user: CurrentUser) -> Any:
    versions = session.exec(
        select(Prompt).where(Prompt.name == name).order_by(col(Prompt.version).desc())
    ).all()
    if not versions:
        raise HTTPException(status_code=404, detail="Prompt not found")
    return versions


@router.get("/{name}/variables")
def read_prompt_variables(name: str, session: SessionDep, current_user: CurrentUser) -> dict[str, list[str]]:
    prompt = _get_prompt_or_404(session, name)
    return {"variables": extract_variables(prompt.content)}


@router.post("/{name}/test", response_model=PromptTestResult)
def test_prompt_variables(
    *,
    name: str,
    session: SessionDep,
    current_user: CurrentUser,
    test_in: PromptTestRequest,
) -> Any:
    """
    Render the prompt with the supplied variables without storing anything.
    """
    prompt = _get_prompt_or_404(session, name)
    return dry_run_prompt(prompt.content, test_in.variables)


@router.get("/{name}/compare/{old_version}/{new_version}", response_model=VersionComparison)
def compare_prompt_versions(
    name: str,
    old_version: int,
    new_version: int,
    session: SessionDep,
    current_user: CurrentUser,
) -> Any:
    old = crud.get_prompt(session=session, name=name, version=old_version)
    new = crud.get_prompt(session=session, name=name, version=new_version)
    if not old or not new:
        raise HTTPException(status_code=404, detail="One or both versions not found")

    diff = compare_text(old.content, new.content, old_label=f"v{old_version}", new_label=f"v{new_version}")
    return VersionComparison(
        old_version=str(old.version),
        new_version=str(new.version),
        old_date=old.updated_at,
        new_date=new.updated_at,
        diff=diff.html,
        unified=diff.unified,
        stats=diff.stats,
    )


@router.get("/{name}/{version}", response_model=PromptPublic)
def read_prompt_version(name: str, version: int, session: SessionDep, current_user: CurrentUser) -> Any:
    return _get_prompt_or_404(session, name, version)


@router.put("/{name}/{version}", response_model=PromptPublic)
def update_prompt(
    *,
    name: str,
    version: int,
    session: SessionDep,
    current_user: User = Depends(can_edit_prompts),
    prompt_in: PromptUpdate,
) -> Any:
    """
    Save changes to a prompt version as a new version; the old row is kept.
    """
    prompt = _get_prompt_or_404(session, name, version)
    revision = crud.create_prompt_revision(
        session=session,
        prompt=prompt,
        update_data=prompt_in.model_dump(exclude_unset=True, exclude_none=True),
        user_id=current_user.id,
    )
    logger.info("Prompt %s v%s revised to v%s by user %s", name, version, revision.version, current_user.id)
    return revision


@router.delete("/{name}/{version}")
def delete_prompt(
    name: str,
    version: int,
    session: SessionDep,
    current_user: User = Depends(can_edit_prompts),
) -> Message:
    prompt = _get_prompt_or_404(session, name, version)
    session.delete(prompt)
    session.commit()
    get_cache().invalidate("dashboard:summary")
    logger.info("Prompt %s v%s deleted by user %s", name, version, current_user.id)
    return Message(message="Prompt version deleted successfully")
