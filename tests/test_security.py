import hashlib
from datetime import datetime, timedelta, timezone

import pytest

from backend.tuition_module import security
from backend.tuition_module.security import AuthError


def _sha256(password):
    return hashlib.sha256(password.encode("utf-8")).hexdigest()


def test_hash_and_verify_password():
    password_hash = security.hash_password("Secret@123")

    assert password_hash.startswith("$2")
    assert security.verify_password("Secret@123", password_hash)
    assert not security.verify_password("secret@123", password_hash)


def test_each_hash_gets_a_fresh_salt():
    assert security.hash_password("Secret@123") != security.hash_password("Secret@123")


def test_bare_digest_and_plain_text_never_verify():
    assert not security.verify_password("Secret@123", _sha256("Secret@123"))
    assert not security.verify_password("Secret@123", "Secret@123")


def test_legacy_envelope_verifies_and_needs_rehash():
    digest = _sha256("Secret@123")
    assert security.is_legacy_digest(digest)

    wrapped = security.wrap_legacy_digest(digest)

    assert wrapped.startswith(security.LEGACY_PREFIX)
    assert security.verify_password("Secret@123", wrapped)
    assert not security.verify_password("Wrong@123", wrapped)
    assert security.needs_rehash(wrapped)
    assert not security.needs_rehash(security.hash_password("Secret@123"))


def test_access_token_round_trip():
    token = security.create_access_token(subject="12", role="center", center_id=3)

    payload = security.decode_access_token(token)

    assert payload["sub"] == "12"
    assert payload["role"] == "center"
    assert payload["center_id"] == 3
    assert payload["exp"] > payload["iat"]


def test_tampered_token_is_rejected():
    token = security.create_access_token(subject="12", role="center")
    header, payload, signature = token.split(".")
    tampered = ".".join([header, payload, signature[::-1]])

    with pytest.raises(AuthError, match="Invalid token"):
        security.decode_access_token(tampered)


def test_expired_token_is_rejected():
    issued = datetime.now(timezone.utc) - timedelta(hours=2)
    token = security.create_access_token(subject="12", role="center", expires_minutes=5, issued_at=issued)

    with pytest.raises(AuthError, match="Token expired"):
        security.decode_access_token(token)
