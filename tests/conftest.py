import os

os.environ["TUITION_BCRYPT_ROUNDS"] = "4"
os.environ["TUITION_JWT_SECRET"] = "test-secret-key-for-the-suite-only"
os.environ["TUITION_DATABASE_URL"] = "sqlite://"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from backend.backend import app
from backend.tuition_module.database import Base, enable_sqlite_foreign_keys, get_db_session
from backend.tuition_module.models import Center, Student, User, UserRole
from backend.tuition_module.records import seed_feature_toggles
from backend.tuition_module.security import create_access_token, hash_password


@pytest.fixture
def db_engine():
    engine = create_engine(
        "sqlite://",
        future=True,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_sqlite_foreign_keys(engine)
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(bind=db_engine, autoflush=False, autocommit=False, future=True)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    seed_feature_toggles(session)
    yield session
    session.close()


@pytest.fixture
def client(session_factory, db):
    def override_get_db_session():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db_session] = override_get_db_session
    yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()


@pytest.fixture
def make_center(db):
    def factory(name="North Tuition Center"):
        center = Center(center_name=name, address="Main road", contact_number="9800000000")
        db.add(center)
        db.commit()
        db.refresh(center)
        return center

    return factory


@pytest.fixture
def make_student(db):
    def factory(center, name="Asha", grade="5", contact_number="9812345678"):
        student = Student(
            name=name,
            grade=grade,
            school_name="Sunrise School",
            parent_name=f"{name}'s parent",
            contact_number=contact_number,
            center_id=center.id,
        )
        db.add(student)
        db.commit()
        db.refresh(student)
        return student

    return factory


@pytest.fixture
def make_user(db):
    def factory(username, password="Password@123", role=UserRole.CENTER, center=None, student=None, is_active=True):
        user = User(
            username=username,
            password_hash=hash_password(password),
            role=role,
            center_id=center.id if center else None,
            student_id=student.id if student else None,
            is_active=is_active,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return factory


@pytest.fixture
def auth_headers():
    def factory(user):
        token = create_access_token(subject=str(user.id), role=user.role.value, center_id=user.center_id)
        return {"Authorization": f"Bearer {token}"}

    return factory


@pytest.fixture
def north(make_center):
    return make_center("North Tuition Center")


@pytest.fixture
def south(make_center):
    return make_center("South Tuition Center")


@pytest.fixture
def admin(make_user):
    return make_user("admin", password="Admin@12345", role=UserRole.ADMIN)


@pytest.fixture
def north_user(make_user, north):
    return make_user("north_center", password="North@12345", role=UserRole.CENTER, center=north)


@pytest.fixture
def south_user(make_user, south):
    return make_user("south_center", password="South@12345", role=UserRole.CENTER, center=south)
