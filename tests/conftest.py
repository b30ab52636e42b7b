import os
import tempfile
from collections.abc import Generator

os.environ["ENVIRONMENT"] = "development"
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "test-signing-secret-with-enough-length-0123456789")
os.environ.setdefault("BCRYPT_ROUNDS", "4")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

import app.db.base  # noqa: F401
from app.db.base_class import Base
from app.db.session import get_db
from app.main import app
from app.models.user import User
from app.services.user_service import UserService

PASSWORD = "StrongPass1!"


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    db_file = tempfile.NamedTemporaryFile(suffix=".db", delete=False)
    db_file.close()

    engine = create_engine(
        f"sqlite:///{db_file.name}",
        connect_args={"check_same_thread": False},
    )
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()
        os.unlink(db_file.name)


@pytest.fixture(autouse=True)
def outbox(monkeypatch) -> list:
    """Capture queued emails instead of handing them to Celery."""
    sent = []

    def fake_welcome(to_email, name):
        sent.append({"kind": "welcome", "to": to_email, "name": name})

    def fake_reset(to_email, token):
        sent.append({"kind": "password_reset", "to": to_email, "token": token})

    monkeypatch.setattr("app.services.auth_service.queue_welcome_email", fake_welcome)
    monkeypatch.setattr("app.services.auth_service.queue_password_reset_email", fake_reset)
    return sent


@pytest.fixture()
def client(db_session: Session) -> Generator[TestClient, None, None]:
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.state.request_gate.reset()
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
    app.state.request_gate.reset()


@pytest.fixture()
def user(db_session: Session) -> User:
    return UserService.create_user(
        db_session,
        email="jane@example.com",
        password=PASSWORD,
        name="Jane Doe",
    )

