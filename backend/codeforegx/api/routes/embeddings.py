import logging
from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import Response
from sqlmodel import Session, col, func, select

from codeforegx.api.deps import CurrentUser, SessionDep, require_roles
from codeforegx.core.cache import get_cache
from codeforegx.core.config import settings
from codeforegx.models import (
    EmbeddingCreate,
    EmbeddingProjection,
    EmbeddingPublic,
    EmbeddingRecord,
    Message,
    ProjectedPoint,
    SimilarEmbedding,
    SimilarityQuery,
    User,
    UserRole,
)
from codeforegx.services.embeddings import (
    EmbeddingDimensionError,
    EmbeddingStore,
    export_csv,
    get_embedding_store,
    project_2d,
)

router = APIRouter()
logger = logging.getLogger(__name__)

StoreDep = Annotated[EmbeddingStore, Depends(get_embedding_store)]
can_manage_embeddings = require_roles(UserRole.developer)


def _resolve_vector(store: EmbeddingStore, vector: list[float] | None, text: str | None) -> list[float]:
    if vector:
        return vector
    if text and text.strip():
        try:
            return store.embed_text(text)
        except Exception as e:
            logger.error("Embedding text failed: %s", e)
            raise HTTPException(status_code=503, detail="Embedding model unavailable")
    raise HTTPException(status_code=400, detail="Either vector or text is required")


def _latest_record(session: Session, prompt_id: str) -> EmbeddingRecord | None:
    return session.exec(
        select(EmbeddingRecord)
        .where(EmbeddingRecord.prompt_id == prompt_id)
        .order_by(col(EmbeddingRecord.version).desc())
    ).first()


@router.get("/", response_model=list[EmbeddingPublic])
def read_embeddings(
    session: SessionDep,
    current_user: CurrentUser,
    model_version: str | None = None,
    skip: int = 0,
    limit: int = Query(default=100, ge=1, le=1000),
) -> Any:
    statement = select(EmbeddingRecord)
    if model_version:
        statement = statement.where(EmbeddingRecord.model_version == model_version)
    statement = statement.order_by(col(EmbeddingRecord.created_at).desc()).offset(skip).limit(limit)
    return session.exec(statement).all()


@router.get("/models", response_model=list[str])
def read_embedding_models(session: SessionDep, current_user: CurrentUser) -> Any:
    """
    Distinct embedding model versions in use.
    """

    def load() -> list[str]:
        rows = session.exec(
            select(EmbeddingRecord.model_version).distinct().order_by(col(EmbeddingRecord.model_version))
        ).all()
        return list(rows)

    return get_cache().get_or_set("embeddings:models", load)


@router.get("/export")
def export_embeddings(
    session: SessionDep,
    current_user: CurrentUser,
    model_version: str | None = None,
) -> Response:
    statement = select(EmbeddingRecord).order_by(col(EmbeddingRecord.created_at).desc())
    if model_version:
        statement = statement.where(EmbeddingRecord.model_version == model_version)
    rows = [
        record.model_dump() | {"created_at": record.created_at.isoformat() if record.created_at else ""}
        for record in session.exec(statement).all()
    ]
    return Response(
        content=export_csv(rows),
        media_type="text/csv",
        headers={"Content-Disposition": "attachment; filename=embeddings.csv"},
    )


@router.get("/projection", response_model=EmbeddingProjection)
def read_embedding_projection(
    session: SessionDep,
    current_user: CurrentUser,
    store: StoreDep,
    model_version: str | None = None,
    limit: int = Query(default=500, ge=1, le=5000),
) -> Any:
    """
    2-D PCA coordinates of stored vectors for the scatter view.
    """
    statement = select(EmbeddingRecord)
    if model_version:
        statement = statement.where(EmbeddingRecord.model_version == model_version)
    records = session.exec(statement.order_by(col(EmbeddingRecord.created_at).desc()).limit(limit)).all()

    ids_by_model: dict[str, list[str]] = {}
    for record in records:
        ids_by_model.setdefault(record.model_version, []).append(record.id)

    vectors: dict[str, list[float]] = {}
    try:
        for model, ids in ids_by_model.items():
            vectors.update(store.get_vectors(ids, model))
    except Exception:
        raise HTTPException(status_code=503, detail="Vector store unavailable")

    records = [record for record in records if record.id in vectors]
    if len({len(vectors[record.id]) for record in records}) > 1:
        raise HTTPException(
            status_code=400, detail="Embeddings have mixed dimensions; filter by model_version"
        )
    coords, explained = project_2d([vectors[record.id] for record in records])
    return EmbeddingProjection(
        points=[
            ProjectedPoint(
                id=record.id,
                prompt_id=record.prompt_id,
                version=record.version,
                model_version=record.model_version,
                x=x,
                y=y,
            )
            for record, (x, y) in zip(records, coords)
        ],
        explained_variance=explained,
    )


@router.post("/similar", response_model=list[SimilarEmbedding])
def find_similar_embeddings(
    *,
    current_user: CurrentUser,
    store: StoreDep,
    query_in: SimilarityQuery,
) -> Any:
    vector = _resolve_vector(store, query_in.vector, query_in.text)
    threshold = settings.SIMILARITY_THRESHOLD if query_in.threshold is None else query_in.threshold
    try:
        return store.find_similar(
            vector,
            model_version=query_in.model_version or settings.EMBEDDING_MODEL_DEFAULT,
            limit=query_in.limit,
            min_similarity=threshold,
            exclude_prompt_id=query_in.exclude_prompt_id,
        )
    except EmbeddingDimensionError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception:
        raise HTTPException(status_code=503, detail="Vector store unavailable")


@router.get("/prompt/{prompt_id}", response_model=EmbeddingPublic)
def read_prompt_embedding(prompt_id: str, session: SessionDep, current_user: CurrentUser) -> Any:
    record = _latest_record(session, prompt_id)
    if not record:
        raise HTTPException(status_code=404, detail="Embedding not found")
    return record


@router.get("/prompt/{prompt_id}/versions", response_model=list[EmbeddingPublic])
def read_prompt_embedding_versions(prompt_id: str, session: SessionDep, current_user: CurrentUser) -> Any:
    return session.exec(
        select(EmbeddingRecord)
        .where(EmbeddingRecord.prompt_id == prompt_id)
        .order_by(col(EmbeddingRecord.version).desc())
    ).all()


@router.post("/prompt/{prompt_id}", response_model=EmbeddingPublic, status_code=201)
def create_prompt_embedding(
    *,
    prompt_id: str,
    session: SessionDep,
    store: StoreDep,
    current_user: User = Depends(can_manage_embeddings),
    embedding_in: EmbeddingCreate,
) -> Any:
    """
    Store a new embedding version for a prompt.
    """
    vector = _resolve_vector(store, embedding_in.vector, embedding_in.text)
    model_version = embedding_in.model_version or settings.EMBEDDING_MODEL_DEFAULT

    known_dimension = session.exec(
        select(EmbeddingRecord.dimension).where(EmbeddingRecord.model_version == model_version)
    ).first()
    if known_dimension is not None and known_dimension != len(vector):
        raise HTTPException(
            status_code=400,
            detail=f"Vector dimension {len(vector)} does not match {known_dimension} for model {model_version}",
        )

    latest_version = session.exec(
        select(func.max(EmbeddingRecord.version)).where(EmbeddingRecord.prompt_id == prompt_id)
    ).one()
    version = (latest_version or 0) + 1

    try:
        record_id = store.add_prompt_embedding(
            prompt_id, version, vector, model_version, details=embedding_in.details
        )
    except EmbeddingDimensionError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception:
        raise HTTPException(status_code=503, detail="Vector store unavailable")

    record = EmbeddingRecord(
        id=record_id,
        prompt_id=prompt_id,
        version=version,
        model_version=model_version,
        dimension=len(vector),
        details=embedding_in.details,
    )
    session.add(record)
    session.commit()
    session.refresh(record)
    get_cache().invalidate("embeddings:models", "dashboard:summary")
    return record


@router.delete("/prompt/{prompt_id}")
def delete_prompt_embeddings(
    prompt_id: str,
    session: SessionDep,
    store: StoreDep,
    current_user: User = Depends(can_manage_embeddings),
) -> Message:
    records = session.exec(select(EmbeddingRecord).where(EmbeddingRecord.prompt_id == prompt_id)).all()
    if not records:
        raise HTTPException(status_code=404, detail="Embedding not found")
    try:
        store.delete_prompt(prompt_id, sorted({record.model_version for record in records}))
    except Exception:
        raise HTTPException(status_code=503, detail="Vector store unavailable")
    for record in records:
        session.delete(record)
    session.commit()
    get_cache().invalidate("embeddings:models", "dashboard:summary")
    logger.info("Deleted %s embeddings for prompt %s", len(records), prompt_id)
    return Message(message="Embeddings deleted successfully")
