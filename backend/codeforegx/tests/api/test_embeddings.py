import csv
import io

from codeforegx.core.config import settings
from codeforegx.services.embeddings import EmbeddingDimensionError

EMBEDDINGS = f"{settings.API_V1_STR}/embeddings"


def _store_returns_ids(embedding_store):
    embedding_store.add_prompt_embedding.side_effect = (
        lambda prompt_id, version, vector, model_version, details=None: f"{prompt_id}_{version}"
    )


def test_create_embedding_versions(client, developer_headers, embedding_store):
    _store_returns_ids(embedding_store)

    first = client.post(f"{EMBEDDINGS}/prompt/rsi", headers=developer_headers, json={"vector": [0.1, 0.2, 0.3]})
    second = client.post(f"{EMBEDDINGS}/prompt/rsi", headers=developer_headers, json={"vector": [0.3, 0.2, 0.1]})

    assert first.status_code == 201, first.text
    assert first.json()["id"] == "rsi_1"
    assert second.json()["id"] == "rsi_2"
    assert second.json()["model_version"] == settings.EMBEDDING_MODEL_DEFAULT
    assert second.json()["dimension"] == 3

    latest = client.get(f"{EMBEDDINGS}/prompt/rsi", headers=developer_headers).json()
    assert latest["version"] == 2
    versions = client.get(f"{EMBEDDINGS}/prompt/rsi/versions", headers=developer_headers).json()
    assert [v["version"] for v in versions] == [2, 1]


def test_create_from_text_uses_embedding_function(client, developer_headers, embedding_store):
    _store_returns_ids(embedding_store)
    embedding_store.embed_text.return_value = [0.5, 0.5]

    response = client.post(f"{EMBEDDINGS}/prompt/grid", headers=developer_headers, json={"text": "grid bot", "model_version": "mini"})

    assert response.status_code == 201
    embedding_store.embed_text.assert_called_once_with("grid bot")
    assert embedding_store.add_prompt_embedding.call_args.args[2] == [0.5, 0.5]


def test_create_requires_vector_or_text(client, developer_headers):
    response = client.post(f"{EMBEDDINGS}/prompt/rsi", headers=developer_headers, json={})
    assert response.status_code == 400
    assert response.json()["detail"] == "Either vector or text is required"


def test_dimension_must_match_model(client, developer_headers, embedding_store):
    _store_returns_ids(embedding_store)
    client.post(f"{EMBEDDINGS}/prompt/a", headers=developer_headers, json={"vector": [1, 0], "model_version": "m"})

    response = client.post(f"{EMBEDDINGS}/prompt/b", headers=developer_headers, json={"vector": [1, 0, 0], "model_version": "m"})

    assert response.status_code == 400


def test_similar_uses_default_threshold(client, user_headers, embedding_store):
    embedding_store.find_similar.return_value = [
        {"id": "a_1", "prompt_id": "a", "version": 1, "similarity": 0.93, "details": {}},
    ]

    response = client.post(f"{EMBEDDINGS}/similar", headers=user_headers, json={"vector": [1, 0], "exclude_prompt_id": "b"})

    assert response.status_code == 200
    assert response.json()[0]["similarity"] == 0.93
    kwargs = embedding_store.find_similar.call_args.kwargs
    assert kwargs["min_similarity"] == settings.SIMILARITY_THRESHOLD
    assert kwargs["limit"] == 10
    assert kwargs["exclude_prompt_id"] == "b"
    assert kwargs["model_version"] == settings.EMBEDDING_MODEL_DEFAULT


def test_similar_reports_store_outage(client, user_headers, embedding_store):
    embedding_store.find_similar.side_effect = RuntimeError("connection refused")

    response = client.post(f"{EMBEDDINGS}/similar", headers=user_headers, json={"vector": [1, 0], "threshold": 0.5})

    assert response.status_code == 503


def test_models_export_and_projection(client, developer_headers, embedding_store):
    _store_returns_ids(embedding_store)
    for prompt_id, vector in (("a", [1.0, 0.0]), ("b", [0.0, 1.0]), ("c", [1.0, 1.0])):
        client.post(f"{EMBEDDINGS}/prompt/{prompt_id}", headers=developer_headers, json={"vector": vector, "model_version": "m"})

    assert client.get(f"{EMBEDDINGS}/models", headers=developer_headers).json() == ["m"]

    export = client.get(f"{EMBEDDINGS}/export", headers=developer_headers)
    assert export.headers["content-type"].startswith("text/csv")
    rows = list(csv.reader(io.StringIO(export.text)))
    assert rows[0] == ["id", "prompt_id", "version", "model_version", "metadata", "created_at"]
    assert len(rows) == 4

    embedding_store.get_vectors.return_value = {"a_1": [1.0, 0.0], "b_1": [0.0, 1.0], "c_1": [1.0, 1.0]}
    projection = client.get(f"{EMBEDDINGS}/projection", headers=developer_headers).json()
    assert {p["id"] for p in projection["points"]} == {"a_1", "b_1", "c_1"}
    assert len(projection["explained_variance"]) == 2


def test_delete_prompt_embeddings(client, developer_headers, embedding_store):
    _store_returns_ids(embedding_store)
    client.post(f"{EMBEDDINGS}/prompt/rsi", headers=developer_headers, json={"vector": [1, 0]})

    response = client.delete(f"{EMBEDDINGS}/prompt/rsi", headers=developer_headers)

    assert response.status_code == 200
    embedding_store.delete_prompt.assert_called_once_with("rsi", [settings.EMBEDDING_MODEL_DEFAULT])
    assert client.get(f"{EMBEDDINGS}/prompt/rsi", headers=developer_headers).status_code == 404
    assert client.delete(f"{EMBEDDINGS}/prompt/rsi", headers=developer_headers).status_code == 404


def test_models_keep_their_own_dimensions(client, developer_headers, embedding_store):
    _store_returns_ids(embedding_store)

    small = client.post(f"{EMBEDDINGS}/prompt/a", headers=developer_headers, json={"vector": [1, 0], "model_version": "small"})
    large = client.post(f"{EMBEDDINGS}/prompt/b", headers=developer_headers, json={"vector": [1, 0, 0, 0], "model_version": "large"})

    assert small.status_code == 201
    assert large.status_code == 201
    assert client.get(f"{EMBEDDINGS}/models", headers=developer_headers).json() == ["large", "small"]
    listed = client.get(f"{EMBEDDINGS}/", headers=developer_headers, params={"model_version": "large"}).json()
    assert [e["id"] for e in listed] == ["b_1"]

    embedding_store.get_vectors.side_effect = lambda ids, model: (
        {"a_1": [1.0, 0.0]} if model == "small" else {"b_1": [1.0, 0.0, 0.0, 0.0]}
    )
    mixed = client.get(f"{EMBEDDINGS}/projection", headers=developer_headers)
    assert mixed.status_code == 400
    single = client.get(f"{EMBEDDINGS}/projection", headers=developer_headers, params={"model_version": "small"})
    assert single.status_code == 200
    embedding_store.get_vectors.assert_called_with(["a_1"], "small")


def test_store_dimension_errors_are_client_errors(client, developer_headers, user_headers, embedding_store):
    embedding_store.add_prompt_embedding.side_effect = EmbeddingDimensionError("Vector dimension 2 does not match 3 for model m")
    created = client.post(f"{EMBEDDINGS}/prompt/a", headers=developer_headers, json={"vector": [1, 0], "model_version": "m"})
    assert created.status_code == 400
    assert created.json()["detail"] == "Vector dimension 2 does not match 3 for model m"

    embedding_store.find_similar.side_effect = EmbeddingDimensionError("Vector dimension 2 does not match 3 for model m")
    similar = client.post(f"{EMBEDDINGS}/similar", headers=user_headers, json={"vector": [1, 0], "model_version": "m"})
    assert similar.status_code == 400
