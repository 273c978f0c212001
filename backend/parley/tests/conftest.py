"""
Pytest fixtures shared across all test modules.
Uses an in-memory SQLite database with StaticPool so all connections
share a single in-memory DB, so no real Postgres is required for tests.
"""

import os
import tempfile

# Set env vars BEFORE any parley module is imported
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["SECRET_KEY"] = "test-secret-key-min-32-chars-long!!"
os.environ["ALGORITHM"] = "HS256"
os.environ["REDIS_URL"] = ""
os.environ["SCHEDULER_POLL_SECONDS"] = "0"
os.environ.setdefault("UPLOAD_DIR", tempfile.mkdtemp(prefix="parley-uploads-"))

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Import parley modules AFTER env vars are set
from parley.core.errors import UploadFailed  # noqa: E402
from parley.core.security import create_access_token  # noqa: E402
from parley.database import Base, get_db  # noqa: E402
from parley.main import app  # noqa: E402
from parley.models.user import User  # noqa: E402
from parley.services.notifier import get_notifier  # noqa: E402
from parley.storage import get_object_store  # noqa: E402

# Single shared in-memory SQLite engine; StaticPool ensures all
# connections share the same DB instance.
engine = create_engine(
    "sqlite:///:memory:",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class RecordingNotifier:
    """Collects pushes instead of delivering them."""

    def __init__(self) -> None:
        self.sent: list[tuple[int, str, dict]] = []

    def send_to_user(self, user_id: int, event: str, payload: dict) -> None:
        self.sent.append((user_id, event, payload))

    def events_for(self, user_id: int, event: str | None = None) -> list[dict]:
        return [p for uid, ev, p in self.sent if uid == user_id and (event is None or ev == event)]


class InMemoryObjectStore:
    def __init__(self) -> None:
        self.uploads: list[dict] = []
        self.fail = False

    def upload(self, content: bytes, content_type: str, folder: str, filename: str | None = None) -> dict:
        if self.fail:
            raise UploadFailed(f"Could not store {filename or 'upload'}")
        n = len(self.uploads) + 1
        descriptor = {
            "id": f"obj{n}",
            "url": f"/uploads/{folder}/obj{n}",
            "kind": content_type.split("/", 1)[0],
            "size": len(content),
            "content_type": content_type,
            "original_filename": filename or "upload",
        }
        self.uploads.append(descriptor)
        return descriptor


@pytest.fixture(autouse=True)
def setup_db():
    """Create tables before each test, drop after."""
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def db():
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def notifier():
    return RecordingNotifier()


@pytest.fixture()
def store():
    return InMemoryObjectStore()


@pytest.fixture()
def client(db, notifier, store):
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_notifier] = lambda: notifier
    app.dependency_overrides[get_object_store] = lambda: store
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture()
def make_user(db):
    """Factory: make_user("ana") -> User with display name "Ana"."""

    def _make(username: str, display_name: str | None = None) -> User:
        user = User(
            username=username,
            display_name=display_name if display_name is not None else username.capitalize(),
            email=f"{username}@example.com",
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def auth_headers(user: User) -> dict:
    token = create_access_token({"user_id": user.id})
    return {"Authorization": f"Bearer {token}"}
