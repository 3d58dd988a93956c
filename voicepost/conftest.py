# voicepost/conftest.py
import os
import shutil
import tempfile
import pytest

# Throwaway SQLite database unless a real TEST_DATABASE_URL is supplied
_TMP_DIR = tempfile.mkdtemp(prefix="voicepost-tests-")
os.environ.setdefault("TEST_DATABASE_URL", f"sqlite:///{os.path.join(_TMP_DIR, 'test.db')}")
os.environ.setdefault("SKIP_ENV_VALIDATION", "1")
os.environ.setdefault("ENV", "test")

from voicepost.features.posts.webhooks import WebhookError  # noqa: E402
from voicepost.tests.mocks import FakeGateway, FakeGenerationClient, FakePublishClient  # noqa: E402


@pytest.fixture(scope="session", autouse=True)
def create_tables():
    """Create all tables once per session on the test database."""
    from voicepost.core.database import create_all_tables, drop_all_tables, init_engine

    init_engine(os.environ["TEST_DATABASE_URL"])
    create_all_tables()
    yield
    drop_all_tables()
    shutil.rmtree(_TMP_DIR, ignore_errors=True)


@pytest.fixture(scope="function", autouse=True)
def reset_db():
    """Empty every table before each test."""
    from voicepost.core.database import get_engine, metadata

    engine = get_engine()
    with engine.begin() as conn:
        for table in reversed(metadata.sorted_tables):
            conn.execute(table.delete())
    yield


@pytest.fixture
def db():
    from voicepost.core.database import get_session_factory

    session = get_session_factory()()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def fake_gateway():
    return FakeGateway()


@pytest.fixture
def publish_client():
    return FakePublishClient()


@pytest.fixture
def failing_publish_client():
    return FakePublishClient(error=WebhookError("Webhook returned 500", status_code=500))


@pytest.fixture
def client(fake_gateway, publish_client):
    """TestClient with fake outbound clients injected."""
    from fastapi.testclient import TestClient

    from voicepost.api.deps import (
        get_generation_client,
        get_payment_gateway,
        get_payment_gateway_factory,
        get_publish_client,
    )
    from voicepost.main import app

    generation_client = FakeGenerationClient()
    app.dependency_overrides[get_payment_gateway] = lambda: fake_gateway
    app.dependency_overrides[get_payment_gateway_factory] = lambda: (lambda: fake_gateway)
    app.dependency_overrides[get_publish_client] = lambda: publish_client
    app.dependency_overrides[get_generation_client] = lambda: generation_client
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
