import hashlib

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from backend.tuition_module.models import FeatureToggle, User, UserRole
from backend.tuition_module.security import wrap_legacy_digest


def _login(client, username, password):
    return client.post("/functions/auth-login", json={"username": username, "password": password})


def test_login_returns_identity_and_token(client, north_user):
    response = _login(client, "north_center", "North@12345")

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["token_type"] == "bearer"
    assert body["expires_in"] > 0
    assert body["user"] == {
        "id": north_user.id,
        "username": "north_center",
        "role": "center",
        "center_id": north_user.center_id,
        "center_name": "North Tuition Center",
        "student_id": None,
    }
    assert "password_hash" not in response.text

    students = client.get(
        "/api/v1/students",
        headers={"Authorization": f"Bearer {body['access_token']}"},
    )
    assert students.status_code == 200


def test_login_sets_last_login(client, db, north_user):
    assert north_user.last_login is None

    _login(client, "north_center", "North@12345")

    db.expire_all()
    assert db.get(User, north_user.id).last_login is not None


def test_login_survives_failed_last_login_write(client, db, north_user, monkeypatch):
    def failing_commit(self):
        raise OperationalError("UPDATE users", {}, Exception("database is locked"))

    monkeypatch.setattr(Session, "commit", failing_commit)
    response = _login(client, "north_center", "North@12345")
    monkeypatch.undo()

    assert response.status_code == 200
    assert response.json()["access_token"]
    db.expire_all()
    assert db.get(User, north_user.id).last_login is None


@pytest.mark.parametrize(
    "username,password",
    [
        ("nobody", "North@12345"),
        ("north_center", "wrong-password"),
        ("inactive_center", "Inactive@123"),
        ("NORTH_CENTER", "North@12345"),
    ],
)
def test_failed_logins_are_indistinguishable(client, make_user, north, north_user, username, password):
    make_user("inactive_center", password="Inactive@123", center=north, is_active=False)

    response = _login(client, username, password)

    assert response.status_code == 401
    assert response.json() == {"success": False, "error": "Invalid credentials"}


@pytest.mark.parametrize(
    "payload",
    [{}, {"username": "north_center"}, {"password": "North@12345"}, {"username": "", "password": ""}],
)
def test_login_requires_both_fields(client, payload):
    response = client.post("/functions/auth-login", json=payload)

    assert response.status_code == 400
    assert response.json() == {"success": False, "error": "Username and password are required"}


def test_login_without_body_is_a_validation_error(client):
    response = client.post("/functions/auth-login")

    assert response.status_code == 400
    assert response.json()["success"] is False


def test_legacy_hash_is_upgraded_on_login(client, db, north):
    digest = hashlib.sha256("Legacy@123".encode("utf-8")).hexdigest()
    user = User(
        username="legacy_center",
        password_hash=wrap_legacy_digest(digest),
        role=UserRole.CENTER,
        center_id=north.id,
    )
    db.add(user)
    db.commit()

    response = _login(client, "legacy_center", "Legacy@123")

    assert response.status_code == 200
    db.expire_all()
    upgraded = db.get(User, user.id).password_hash
    assert upgraded.startswith("$2")
    assert _login(client, "legacy_center", "Legacy@123").status_code == 200


def test_bare_sha256_hash_is_not_accepted(client, db, north):
    db.add(
        User(
            username="unmigrated",
            password_hash=hashlib.sha256("Legacy@123".encode("utf-8")).hexdigest(),
            role=UserRole.CENTER,
            center_id=north.id,
        )
    )
    db.commit()

    assert _login(client, "unmigrated", "Legacy@123").status_code == 401


def test_parent_login_follows_feature_toggle(client, db, north, make_student, make_user):
    student = make_student(north)
    make_user("asha_parent", password="Parent@123", role=UserRole.PARENT, center=north, student=student)

    allowed = _login(client, "asha_parent", "Parent@123")
    assert allowed.status_code == 200
    assert allowed.json()["user"]["student_id"] == student.id

    toggle = db.query(FeatureToggle).filter_by(feature_name="parent_login").one()
    toggle.enabled = False
    db.commit()

    blocked = _login(client, "asha_parent", "Parent@123")
    assert blocked.status_code == 401
    assert blocked.json() == {"success": False, "error": "Invalid credentials"}


def test_function_preflight_and_method_guard(client):
    preflight = client.options("/functions/auth-login")
    assert preflight.status_code == 200
    assert preflight.content == b""

    wrong_method = client.get("/functions/auth-login")
    assert wrong_method.status_code == 405
    assert wrong_method.json()["success"] is False


def test_tampered_or_missing_token_is_rejected(client, north_user):
    token = _login(client, "north_center", "North@12345").json()["access_token"]

    tampered = client.get("/api/v1/students", headers={"Authorization": f"Bearer {token[:-2]}xx"})
    missing = client.get("/api/v1/students")

    assert tampered.status_code == 401
    assert tampered.json()["success"] is False
    assert missing.status_code == 401


def test_deactivated_user_token_stops_working(client, db, north_user, auth_headers):
    headers = auth_headers(north_user)
    north_user.is_active = False
    db.commit()

    response = client.get("/api/v1/students", headers=headers)

    assert response.status_code == 401


def test_long_legacy_password_logs_in_and_keeps_envelope(client, db, north):
    password = "x" * 80
    digest = hashlib.sha256(password.encode("utf-8")).hexdigest()
    user = User(
        username="long_legacy",
        password_hash=wrap_legacy_digest(digest),
        role=UserRole.CENTER,
        center_id=north.id,
    )
    db.add(user)
    db.commit()
    original_hash = user.password_hash

    response = _login(client, "long_legacy", password)

    assert response.status_code == 200
    db.expire_all()
    stored = db.get(User, user.id)
    assert stored.password_hash == original_hash
    assert stored.last_login is not None
    assert _login(client, "long_legacy", password).status_code == 200
