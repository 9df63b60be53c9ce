from __future__ import annotations

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from school_portal.app import create_app
from school_portal.config import Settings
from school_portal.models import FamilyLink, Student, User
from school_portal.security import hash_password


@pytest.fixture
def settings() -> Settings:
    return Settings(
        database_url="sqlite://",
        jwt_secret="test-secret",
        jwt_exp_minutes=60,
        smtp_host="smtp.example.org",
        smtp_port=465,
        smtp_username="",
        smtp_password="",
        mail_sender_name="Scuola",
        mail_default_subject="Comunicazione scuola",
        admin_username="admin",
        admin_password="admin-pass-123",
        cors_origins=("http://testserver",),
    )


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    yield eng
    eng.dispose()


@pytest.fixture
def app(settings, engine):
    return create_app(settings, engine)


@pytest.fixture
def client(app):
    # Entering the client runs the lifespan: tables are created and admin seeded.
    with TestClient(app) as c:
        yield c


@pytest.fixture
def db(app, client):
    session = app.state.session_factory()
    yield session
    session.close()


@pytest.fixture
def make_user(db):
    def _make(username: str, role: str, name: str = "", password: str = "password-123") -> User:
        user = User(username=username, password_hash=hash_password(password), role=role, name=name or username)
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make


@pytest.fixture
def make_student(db):
    def _make(first: str, last: str, class_name: str = "1A", parent_email: str | None = None) -> Student:
        student = Student(first_name=first, last_name=last, class_name=class_name, parent_email=parent_email)
        db.add(student)
        db.commit()
        db.refresh(student)
        return student

    return _make


@pytest.fixture
def link(db):
    def _link(user: User, student: Student, relation: str = "mother") -> FamilyLink:
        row = FamilyLink(user_id=user.id, student_id=student.id, relation=relation)
        db.add(row)
        db.commit()
        db.refresh(row)
        return row

    return _link


@pytest.fixture
def auth_headers(app):
    def _headers(user: User) -> dict[str, str]:
        token = app.state.token_verifier.create_access_token(str(user.id), user.role, user.name)
        return {"Authorization": f"Bearer {token}"}

    return _headers
