"""Shared fixtures.

JWT_SECRET must be present before app.config is imported, so it is set at
module import time here, before any test module pulls in the app.
"""

import asyncio
import os
import sqlite3
import time

import jwt
import pytest

os.environ.setdefault("JWT_SECRET", "test-secret-for-gifted-tutor-suite-0123456789")

from app.config import settings  # noqa: E402
from app.db.database import SCHEMA_PATH  # noqa: E402

FAMILY_ID = "fam-1"
OTHER_FAMILY_ID = "fam-2"
USER_ID = "user-1"
OTHER_USER_ID = "user-2"
STUDENT_ID = "stu-1"
OTHER_STUDENT_ID = "stu-2"


def make_token(user_id: str = USER_ID, email: str = "parent@example.com", **claims) -> str:
    payload = {
        "sub": user_id,
        "email": email,
        "aud": settings.jwt_audience,
        "exp": int(time.time()) + 3600,
    }
    payload.update(claims)
    return jwt.encode(payload, settings.jwt_secret, algorithm="HS256")


def seed(db_path: str) -> None:
    """Two families, each with one parent and one student."""
    conn = sqlite3.connect(db_path)
    conn.executescript(SCHEMA_PATH.read_text())
    conn.executemany(
        "INSERT INTO families (id, name) VALUES (?, ?)",
        [(FAMILY_ID, "Lovelace"), (OTHER_FAMILY_ID, "Babbage")],
    )
    conn.executemany(
        "INSERT INTO users (id, email, family_id, role) VALUES (?, ?, ?, 'parent')",
        [
            (USER_ID, "parent@example.com", FAMILY_ID),
            (OTHER_USER_ID, "other@example.com", OTHER_FAMILY_ID),
        ],
    )
    conn.executemany(
        """INSERT INTO students (id, family_id, user_id, name, grade, subjects)
           VALUES (?, ?, ?, ?, ?, ?)""",
        [
            (STUDENT_ID, FAMILY_ID, USER_ID, "Ada", "5", '["math", "science"]'),
            (OTHER_STUDENT_ID, OTHER_FAMILY_ID, OTHER_USER_ID, "Charles", "7", None),
        ],
    )
    conn.commit()
    conn.close()


@pytest.fixture
def db_path(tmp_path, monkeypatch):
    path = str(tmp_path / "test.db")
    seed(path)
    monkeypatch.setattr(settings, "database_path", path)
    monkeypatch.setattr(settings, "database_url", "")
    return path


@pytest.fixture
def run_db(db_path):
    """Run ``fn(db)`` against the seeded database on a fresh event loop."""
    import aiosqlite

    def runner(fn):
        async def main():
            async with aiosqlite.connect(db_path) as db:
                db.row_factory = aiosqlite.Row
                return await fn(db)

        return asyncio.run(main())

    return runner


@pytest.fixture
def client(db_path):
    from fastapi.testclient import TestClient
    from app.server import app

    # Not used as a context manager: the lifespan (Alembic upgrade) is skipped
    return TestClient(app)


@pytest.fixture
def auth_headers():
    return {"Authorization": f"Bearer {make_token()}"}


@pytest.fixture
def ai_configured(monkeypatch):
    monkeypatch.setattr(settings, "anthropic_api_key", "test-anthropic-key")
    monkeypatch.setattr(settings, "model_name", "claude-sonnet-4-20250514")
    monkeypatch.setattr(settings, "curriculum_model", "claude-sonnet-4-20250514")
    monkeypatch.setattr(settings, "tutor_model", "claude-sonnet-4-20250514")


@pytest.fixture
def ai_unconfigured(monkeypatch):
    monkeypatch.setattr(settings, "anthropic_api_key", "")
    monkeypatch.setattr(settings, "api_key", "")
