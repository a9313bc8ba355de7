import os

# One shared in-memory database for the whole run; set before skillforge is imported.
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("SEED_CATALOG_ON_STARTUP", "0")

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from skillforge.main import app  # noqa: E402
from skillforge.assessment.routes import require_profile_source  # noqa: E402
from skillforge.assessment.scorer import ProfileSnapshot  # noqa: E402
from skillforge.assessment.source import ProfileSource  # noqa: E402
from skillforge.catalog.seed import load_catalog, seed_catalog  # noqa: E402
from skillforge.core.config import get_config  # noqa: E402
from skillforge.core.errors import ExternalServiceError  # noqa: E402
from skillforge.db.base import Base, SessionLocal, engine  # noqa: E402
from skillforge.players.service import create_user  # noqa: E402


class FakeProfileSource(ProfileSource):
    """Serves queued snapshots (or raises queued errors) in order."""

    def __init__(self):
        self.responses = []
        self.calls = 0

    def queue(self, *responses):
        self.responses.extend(responses)

    def fetch_profile_snapshot(self, user_id: int) -> ProfileSnapshot:
        self.calls += 1
        if not self.responses:
            raise ExternalServiceError("no snapshot queued", retryable=False)
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


@pytest.fixture(autouse=True)
def fresh_schema():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        seed_catalog(db, load_catalog())
    finally:
        db.close()
    yield


@pytest.fixture
def config():
    return get_config()


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def make_user(db, config):
    def _make(username="ada"):
        return create_user(db, username, config)
    return _make


@pytest.fixture
def profile_source():
    return FakeProfileSource()


@pytest.fixture
def client(profile_source):
    app.dependency_overrides[require_profile_source] = lambda: profile_source
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
