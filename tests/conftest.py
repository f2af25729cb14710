from __future__ import annotations

import os
import sys
from collections.abc import Iterator
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
BACKEND = ROOT / "backend"
if str(BACKEND) not in sys.path:
    sys.path.insert(0, str(BACKEND))

os.environ.setdefault("REGISTRAR_DATABASE_URL", "sqlite://")
os.environ.setdefault("REGISTRAR_LOG_LEVEL", "WARNING")

from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import func, select  # noqa: E402
from sqlalchemy.orm import Session  # noqa: E402

from registrar import catalog  # noqa: E402
from registrar.db import Base, Completion, SessionLocal, User, engine  # noqa: E402
from registrar.enrollment import ClassLockRegistry  # noqa: E402
from registrar.main import app  # noqa: E402
from registrar.roles import actor_for  # noqa: E402
from registrar.security import hash_password, issue_token  # noqa: E402

PASSWORD = "pw"
PASSWORD_HASH = hash_password(PASSWORD)


class Factory:
    """Small builders for users and courses used across the test modules."""

    def __init__(self, db: Session):
        self.db = db

    def user(self, role: str = "student", id: str | None = None, name: str | None = None, completed: dict | None = None) -> User:
        ident = id or f"{role[0].upper()}{self.db.scalar(select(func.count(User.id))) + 1}"
        user = User(id=ident, username=f"{ident.lower()}@uni.test", password=PASSWORD_HASH, name=name or ident, role=role)
        self.db.add(user)
        self.db.flush()
        for position, (code, grade) in enumerate((completed or {}).items()):
            self.db.add(Completion(user_id=user.id, course_code=code, course_name=code, grade=grade, position=position))
        self.db.commit()
        return user

    def actor(self, user: User):
        return actor_for(user)

    def course(
        self,
        code: str = "CS101",
        status: str = "open",
        prerequisites: tuple[str, ...] = (),
        classes: list[dict] | None = None,
        category: str = "Programming",
        name: str | None = None,
    ):
        if classes is None:
            classes = [{"classId": "C1", "capacity": 1, "instructor": "Dr. Smith", "schedule": "Mon/Wed 10:00-11:15"}]
        return catalog.create_course(
            self.db,
            {
                "code": code,
                "name": name or f"Course {code}",
                "category": category,
                "description": f"About {code}",
                "prerequisites": list(prerequisites),
                "status": status,
                "classes": classes,
            },
        )

    def token(self, user: User) -> dict:
        return {"session_token": issue_token(user.id)}


@pytest.fixture
def db() -> Iterator[Session]:
    Base.metadata.drop_all(engine)
    Base.metadata.create_all(engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def make(db: Session) -> Factory:
    return Factory(db)


@pytest.fixture
def locks() -> ClassLockRegistry:
    return ClassLockRegistry()


@pytest.fixture
def client(db: Session) -> TestClient:
    app.state.class_locks = ClassLockRegistry()
    return TestClient(app)
