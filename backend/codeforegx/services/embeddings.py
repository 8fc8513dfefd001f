import csv
import hashlib
import io
import json
import logging
import re
from datetime import datetime, timezone
from typing import Any

import chromadb
import numpy as np
from chromadb.config import Settings
from chromadb.utils import embedding_functions

from codeforegx.core.config import settings

logger = logging.getLogger(__name__)


def _metadata_filter(**conditions: Any) -> dict[str, Any]:
    items = [{key: value} for key, value in conditions.items() if value is not None]
    if not items:
        return {}
    if len(items) == 1:
        return items[0]
    return {"$and": items}


def embedding_id(prompt_id: str, version: int) -> str:
    return f"{prompt_id}_{version}"


def _first_row(results: dict[str, Any], key: str) -> list[Any]:
    rows = results.get(key)
    if not isinstance(rows, list) or not rows:
        return []
    first = rows[0]
    return list(first) if first is not None else []


def _decode_details(metadata: dict[str, Any]) -> dict[str, Any]:
    raw = metadata.get("details")
    if not raw:
        return {}
    try:
        decoded = json.loads(raw)
    except (TypeError, json.JSONDecodeError):
        return {}
    return decoded if isinstance(decoded, dict) else {}


def project_2d(vectors: list[list[float]]) -> tuple[list[tuple[float, float]], list[float]]:
    """Project vectors onto their first two principal components.

    Returns the coordinates and the fraction of variance each component explains.
    """
    if not vectors:
        return [], []
    matrix = np.asarray(vectors, dtype=float)
    if matrix.shape[0] == 1:
        return [(0.0, 0.0)], [0.0, 0.0]

    centered = matrix - matrix.mean(axis=0)
    _, singular_values, components = np.linalg.svd(centered, full_matrices=False)
    k = min(2, components.shape[0])
    coords = centered @ components[:k].T
    if k < 2:
        coords = np.hstack([coords, np.zeros((coords.shape[0], 2 - k))])

    variance = singular_values**2
    total = float(variance.sum())
    explained = [float(v / total) if total else 0.0 for v in variance[:2]]
    explained += [0.0] * (2 - len(explained))
    return [(float(x), float(y)) for x, y in coords], explained


class EmbeddingDimensionError(ValueError):
    """Raised when a vector does not match the dimension already stored for its model."""


def collection_name_for(base_name: str, model_version: str) -> str:
    """Chroma collection name for one embedding model.

    Chroma fixes a collection's dimension at the first insert, so each model gets its own.
    """
    slug = re.sub(r"[^A-Za-z0-9._-]+", "-", model_version)
    slug = re.sub(r"\.{2,}", ".", slug).strip("._-")
    name = f"{base_name}__{slug}" if slug else base_name
    if slug != model_version or len(name) > 63:
        digest = hashlib.sha1(model_version.encode("utf-8")).hexdigest()[:8]
        name = f"{name[:54]}-{digest}"
    return name


class EmbeddingStore:
    """Stores prompt embeddings in ChromaDB and answers cosine similarity queries."""

    def __init__(self, persist_directory: str | None = None, collection_name: str | None = None):
        self.persist_directory = persist_directory or settings.CHROMA_PERSIST_DIR
        self.embedding_function = embedding_functions.DefaultEmbeddingFunction()

        self.client = chromadb.PersistentClient(
            path=self.persist_directory,
            settings=Settings(allow_reset=True, anonymized_telemetry=False)
        )

        self.collection_name = collection_name or settings.CHROMA_COLLECTION
        self._collections: dict[str, Any] = {}

    def collection_for(self, model_version: str):
        if model_version not in self._collections:
            self._collections[model_version] = self.client.get_or_create_collection(
                name=collection_name_for(self.collection_name, model_version),
                embedding_function=self.embedding_function,
                metadata={"hnsw:space": "cosine", "model_version": model_version},
            )
        return self._collections[model_version]

    def stored_dimension(self, model_version: str) -> int | None:
        """Dimension of the vectors already stored for a model, None while it is empty."""
        results = self.collection_for(model_version).get(limit=1, include=["embeddings"])
        embeddings = results.get("embeddings")
        if embeddings is None or len(embeddings) == 0:
            return None
        return len(embeddings[0])

    def _check_dimension(self, model_version: str, vector: list[float]) -> None:
        dimension = self.stored_dimension(model_version)
        if dimension is not None and dimension != len(vector):
            raise EmbeddingDimensionError(
                f"Vector dimension {len(vector)} does not match {dimension} for model {model_version}"
            )

    def embed_text(self, text: str) -> list[float]:
        """Embed free text with the collection's embedding function."""
        vectors = self.embedding_function([text])
        return [float(x) for x in vectors[0]]

    def add_prompt_embedding(
        self,
        prompt_id: str,
        version: int,
        vector: list[float],
        model_version: str,
        details: dict[str, Any] | None = None,
    ) -> str:
        """Store one embedding version for a prompt and return its id."""
        self._check_dimension(model_version, vector)
        record_id = embedding_id(prompt_id, version)
        metadata = {
            "prompt_id": str(prompt_id),
            "version": int(version),
            "model_version": model_version,
            "details": json.dumps(details or {}),
            "created_at": datetime.now(timezone.utc).isoformat(),
        }
        try:
            self.collection_for(model_version).add(
                ids=[record_id],
                embeddings=[vector],
                metadatas=[metadata],
            )
            logger.info("Stored embedding %s (model=%s, dim=%s)", record_id, model_version, len(vector))
        except Exception as e:
            logger.error(f"Error adding embedding {record_id} to ChromaDB: {e}")
            raise
        return record_id

    def find_similar(
        self,
        vector: list[float],
        *,
        model_version: str,
        limit: int = 10,
        min_similarity: float = 0.7,
        exclude_prompt_id: str | None = None,
    ) -> list[dict[str, Any]]:
        """Nearest neighbours by cosine similarity within one model, best first, at or above `min_similarity`."""
        self._check_dimension(model_version, vector)
        collection = self.collection_for(model_version)
        count = collection.count()
        if count == 0:
            return []

        where = {"prompt_id": {"$ne": str(exclude_prompt_id)}} if exclude_prompt_id else None
        query_kwargs: dict[str, Any] = {
            "query_embeddings": [vector],
            "n_results": min(limit, count),
            "include": ["metadatas", "distances"],
        }
        if where:
            query_kwargs["where"] = where

        try:
            results = collection.query(**query_kwargs)
        except Exception as e:
            logger.error(f"Error querying similar embeddings: {e}")
            raise

        ids = _first_row(results, "ids")
        metadatas = _first_row(results, "metadatas")
        distances = _first_row(results, "distances")

        matches: list[dict[str, Any]] = []
        for idx, record_id in enumerate(ids):
            metadata = metadatas[idx] if idx < len(metadatas) and isinstance(metadatas[idx], dict) else {}
            distance = float(distances[idx]) if idx < len(distances) else 1.0
            similarity = 1.0 - distance
            if similarity < min_similarity:
                continue
            matches.append(
                {
                    "id": record_id,
                    "prompt_id": metadata.get("prompt_id", ""),
                    "version": int(metadata.get("version", 0)),
                    "model_version": model_version,
                    "similarity": round(similarity, 6),
                    "details": _decode_details(metadata),
                }
            )
        matches.sort(key=lambda match: match["similarity"], reverse=True)
        return matches

    def get_vectors(self, ids: list[str], model_version: str) -> dict[str, list[float]]:
        if not ids:
            return {}
        try:
            results = self.collection_for(model_version).get(ids=ids, include=["embeddings"])
        except Exception as e:
            logger.error(f"Error fetching embeddings from ChromaDB: {e}")
            raise
        found_ids = results.get("ids") or []
        embeddings = results.get("embeddings")
        if embeddings is None:
            embeddings = []
        return {record_id: [float(x) for x in embeddings[i]] for i, record_id in enumerate(found_ids) if i < len(embeddings)}

    def delete_prompt(self, prompt_id: str, model_versions: list[str]):
        """Delete every embedding version of a prompt from the given models' collections."""
        for model_version in model_versions:
            try:
                self.collection_for(model_version).delete(where=_metadata_filter(prompt_id=str(prompt_id)))
            except Exception as e:
                logger.error(f"Error deleting embeddings for prompt {prompt_id}: {e}")
                raise


def export_csv(rows: list[dict[str, Any]]) -> str:
    headers = ["id", "prompt_id", "version", "model_version", "metadata", "created_at"]
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(headers)
    for row in rows:
        writer.writerow(
            [
                row.get("id"),
                row.get("prompt_id"),
                row.get("version"),
                row.get("model_version"),
                json.dumps(row.get("details") or {}),
                row.get("created_at") or "",
            ]
        )
    return buffer.getvalue()


_embedding_store_instance = None

def get_embedding_store() -> EmbeddingStore:
    """Lazily initializes the embedding store to prevent module load freezing."""
    global _embedding_store_instance
    if _embedding_store_instance is None:
        _embedding_store_instance = EmbeddingStore()
    return _embedding_store_instance
