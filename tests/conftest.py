import sys
import time
from pathlib import Path

import jwt
import pytest


BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))


TEST_JWT_SECRET = "test-secret-0123456789-abcdefghijklmnop"


def make_token(user_id: str, role: str, *, email: str = "", ttl_seconds: int = 3600) -> str:
    now = int(time.time())
    payload = {
        "sub": user_id,
        "email": email or f"{user_id.lower()}@example.com",
        "role": role,
        "iat": now,
        "exp": now + ttl_seconds,
    }
    return jwt.encode(payload, TEST_JWT_SECRET, algorithm="HS256")


@pytest.fixture()
def app_client(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    db_path = tmp_path / "test.db"

    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{db_path.as_posix()}")
    monkeypatch.setenv("JWT_SECRET", TEST_JWT_SECRET)
    monkeypatch.setenv("LOG_LEVEL", "WARNING")

    # Prevent accidental pollution from any existing env config.
    monkeypatch.setenv("APP_ENV", "test")
    monkeypatch.delenv("ALLOWED_ORIGINS", raising=False)
    monkeypatch.delenv("NOTIFY_WEBHOOK_URL", raising=False)
    monkeypatch.delenv("RETRY_COOLDOWN_DAYS", raising=False)
    monkeypatch.delenv("SEED_INTERVIEW_QUESTIONS", raising=False)

    from app import create_app

    app = create_app()
    app.testing = True

    with app.test_client() as client:
        yield app, client


@pytest.fixture()
def db_session(tmp_path: Path):
    """Bare session on a fresh SQLite file with the default question bank."""
    from actions.interview import seed_default_questions
    from db import SessionLocal, init_engine
    from models import Base

    engine = init_engine(f"sqlite:///{(tmp_path / 'unit.db').as_posix()}")
    Base.metadata.create_all(bind=engine)

    db = SessionLocal()
    seed_default_questions(db)
    db.commit()
    try:
        yield db
    finally:
        db.close()
        engine.dispose()
