from collections.abc import Generator
from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from codeforegx import crud
from codeforegx.api.deps import get_db
from codeforegx.api.routes.chat import get_assistant_agent
from codeforegx.core import cache
from codeforegx.core.config import settings
from codeforegx.core.db import init_db
from codeforegx.main import app
from codeforegx.models import User, UserRole
from codeforegx.services.embeddings import EmbeddingStore, get_embedding_store
from codeforegx.tests.utils import auth_headers, make_user


@pytest.fixture(autouse=True)
def quiet_infrastructure():
    # No Redis and no rate limiting in unit tests
    with patch.object(cache, "_cache_instance", cache.NullCache()):
        with patch("codeforegx.api.rate_limit.settings.RATE_LIMIT_ENABLED", False):
            yield


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)


@pytest.fixture
def db(engine) -> Generator[Session, None, None]:
    with Session(engine) as session:
        init_db(session)
        yield session


@pytest.fixture
def embedding_store() -> MagicMock:
    return MagicMock(spec=EmbeddingStore)


@pytest.fixture
def assistant_agent() -> MagicMock:
    return MagicMock()


@pytest.fixture
def client(engine, db, embedding_store, assistant_agent) -> Generator[TestClient, None, None]:
    def get_db_override():
        with Session(engine) as session:
            yield session

    app.dependency_overrides[get_db] = get_db_override
    app.dependency_overrides[get_embedding_store] = lambda: embedding_store
    app.dependency_overrides[get_assistant_agent] = lambda: assistant_agent
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def superuser(db) -> User:
    return crud.get_user_by_email(session=db, email=settings.FIRST_SUPERUSER)


@pytest.fixture
def developer(db) -> User:
    return make_user(db, "dev@codeforegx.dev", UserRole.developer)


@pytest.fixture
def normal_user(db) -> User:
    return make_user(db, "trader@codeforegx.dev", UserRole.user)


@pytest.fixture
def superuser_headers(superuser) -> dict[str, str]:
    return auth_headers(superuser)


@pytest.fixture
def developer_headers(developer) -> dict[str, str]:
    return auth_headers(developer)


@pytest.fixture
def user_headers(normal_user) -> dict[str, str]:
    return auth_headers(normal_user)
