import os
import tempfile
import uuid

# Settings are read at import time, so the environment must be in place
# before anything under app/ is imported.
_DB_PATH = os.path.join(tempfile.gettempdir(), f"listing_reel_test_{uuid.uuid4().hex}.db")
os.environ["DATABASE_URL"] = f"sqlite:///{_DB_PATH}"
os.environ["REDIS_HOST"] = ""
os.environ["PIPELINE_MODE"] = "inline"
os.environ["RENDER_ENGINE"] = "simulated"
os.environ["RENDER_DELAY_SECONDS"] = "0"
os.environ["ASSET_PROBE_ENABLED"] = "false"
os.environ["ASSET_MIRROR_ENABLED"] = "false"
os.environ["SSE_KEEPALIVE_SECONDS"] = "0.1"
os.environ["JWT_SECRET_KEY"] = "test-secret"
os.environ["INTERNAL_API_KEY"] = "test-internal-key"

import pytest
from fastapi.testclient import TestClient

from app.core.auth import create_access_token
from app.core.database import Base, SessionLocal, engine, init_db
from app.core.notifications import bus
from app.main import app
from app.models.project import Project
from app.models.trial import Trial


@pytest.fixture(autouse=True)
def reset_state():
    Base.metadata.drop_all(bind=engine)
    init_db()
    for subscription in bus.subscriptions():
        bus.unsubscribe(subscription.name)
    yield
    for subscription in bus.subscriptions():
        bus.unsubscribe(subscription.name)


def pytest_sessionfinish(session, exitstatus):
    engine.dispose()
    if os.path.exists(_DB_PATH):
        os.remove(_DB_PATH)


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client():
    return TestClient(app)


def auth_headers(user_id: str = "user-1", role: str = "user") -> dict:
    return {"Authorization": f"Bearer {create_access_token(user_id, role=role)}"}


def internal_headers() -> dict:
    return {"Authorization": "Bearer test-internal-key"}


@pytest.fixture
def make_project(db):
    def _make(user_id: str = "user-1", status: str = "queued", title: str = "Maple Street Home") -> Project:
        project = Project(user_id=user_id, title=title, status=status)
        db.add(project)
        db.commit()
        return project
    return _make


@pytest.fixture
def make_trial(db):
    def _make(user_id: str = "user-1", clips: int = 3) -> Trial:
        trial = Trial(user_id=user_id, free_clips_remaining=clips)
        db.add(trial)
        db.commit()
        return trial
    return _make


LISTING = {
    "title": "Stunning Modern Downtown Condo",
    "description": "Two bedrooms with city views.",
    "images": [
        "https://cdn.example.com/photos/1.jpg",
        "https://cdn.example.com/photos/2.jpg",
        "https://cdn.example.com/photos/3.jpg",
    ],
    "price": "$850,000",
    "address": "123 Main Street, Downtown District",
}

CONFIG = {"aspect": "9x16", "theme": "clean"}
