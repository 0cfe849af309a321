from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from backend.backend import app
from backend.tuition_module.database import get_db_session
from backend.tuition_module.models import User
from backend.tuition_module.security import verify_password


def _login(client, username, password):
    return client.post("/functions/auth-login", json={"username": username, "password": password})


def _change(client, headers, current, new, **extra):
    body = {"currentPassword": current, "newPassword": new, **extra}
    return client.post("/functions/change-password", json=body, headers=headers)


@pytest.mark.parametrize(
    "body,error",
    [
        ({"currentPassword": "North@12345"}, "Current password and new password are required"),
        ({"newPassword": "Brand@New123"}, "Current password and new password are required"),
        ({"currentPassword": "North@12345", "newPassword": "short"}, "New password must be at least 8 characters long"),
    ],
)
def test_validation_happens_before_any_store_access(client, body, error):
    session = MagicMock()
    app.dependency_overrides[get_db_session] = lambda: session

    response = client.post("/functions/change-password", json=body)

    assert response.status_code == 400
    assert response.json() == {"success": False, "error": error}
    assert session.mock_calls == []


def test_rotation_switches_the_accepted_password(client, north_user, auth_headers):
    response = _change(client, auth_headers(north_user), "North@12345", "Brand@New123")

    assert response.status_code == 200
    assert response.json() == {"success": True, "message": "Password changed successfully"}
    assert _login(client, "north_center", "Brand@New123").status_code == 200
    assert _login(client, "north_center", "North@12345").status_code == 401


def test_rotation_stores_a_fresh_bcrypt_hash(client, db, north_user, auth_headers):
    old_hash = north_user.password_hash

    _change(client, auth_headers(north_user), "North@12345", "Brand@New123")

    db.expire_all()
    user = db.get(User, north_user.id)
    assert user.password_hash != old_hash
    assert user.password_hash.startswith("$2")
    assert verify_password("Brand@New123", user.password_hash)
    assert user.password_changed_at is not None


def test_tokens_issued_before_rotation_are_revoked(client, north_user):
    old_token = _login(client, "north_center", "North@12345").json()["access_token"]
    old_headers = {"Authorization": f"Bearer {old_token}"}

    assert _change(client, old_headers, "North@12345", "Brand@New123").status_code == 200

    assert client.get("/api/v1/students", headers=old_headers).status_code == 401
    new_token = _login(client, "north_center", "Brand@New123").json()["access_token"]
    assert client.get("/api/v1/students", headers={"Authorization": f"Bearer {new_token}"}).status_code == 200


def test_wrong_current_password(client, north_user, auth_headers):
    response = _change(client, auth_headers(north_user), "Not-my-password", "Brand@New123")

    assert response.status_code == 401
    assert response.json() == {"success": False, "error": "Current password is incorrect"}


def test_missing_token_is_unauthorized(client, north_user):
    response = _change(client, {}, "North@12345", "Brand@New123")

    assert response.status_code == 401
    assert response.json()["success"] is False


def test_body_user_id_must_match_token(client, north_user, south_user, auth_headers):
    response = _change(client, auth_headers(north_user), "North@12345", "Brand@New123", userId=south_user.id)

    assert response.status_code == 403
    assert _login(client, "south_center", "South@12345").status_code == 200


def test_matching_body_user_id_is_accepted(client, north_user, auth_headers):
    response = _change(client, auth_headers(north_user), "North@12345", "Brand@New123", userId=str(north_user.id))

    assert response.status_code == 200


def test_deleted_user_gets_generic_error(client, db, north_user, auth_headers):
    headers = auth_headers(north_user)
    db.delete(north_user)
    db.commit()

    response = _change(client, headers, "North@12345", "Brand@New123")

    assert response.status_code == 401
    assert response.json() == {"success": False, "error": "Invalid credentials"}


def test_store_failure_is_reported_once(client, north_user, auth_headers, monkeypatch):
    headers = auth_headers(north_user)
    calls = []

    def failing_commit(self):
        calls.append(self)
        raise OperationalError("UPDATE users", {}, Exception("database is locked"))

    monkeypatch.setattr(Session, "commit", failing_commit)
    response = _change(client, headers, "North@12345", "Brand@New123")
    monkeypatch.undo()

    assert response.status_code == 500
    assert response.json() == {"success": False, "error": "Failed to update password"}
    assert len(calls) == 1
    assert _login(client, "north_center", "North@12345").status_code == 200
