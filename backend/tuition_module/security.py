import hashlib
import re
from datetime import datetime, timedelta, timezone
from typing import Any

import bcrypt
import jwt

from .config import settings


LEGACY_PREFIX = "legacy-sha256$"
LEGACY_DIGEST_PATTERN = re.compile(r"^[0-9a-f]{64}$")

# Verified against on the unknown-user path so both failure paths cost one bcrypt check.
_DUMMY_HASH = bcrypt.hashpw(b"unknown-user-placeholder", bcrypt.gensalt(rounds=settings.bcrypt_rounds)).decode("utf-8")


class AuthError(Exception):
    pass


def hash_password(password: str) -> str:
    salt = bcrypt.gensalt(rounds=settings.bcrypt_rounds)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def _sha256_hex(password: str) -> str:
    return hashlib.sha256(password.encode("utf-8")).hexdigest()


def verify_password(password: str, password_hash: str) -> bool:
    try:
        if password_hash.startswith(LEGACY_PREFIX):
            wrapped = password_hash[len(LEGACY_PREFIX):]
            return bcrypt.checkpw(_sha256_hex(password).encode("utf-8"), wrapped.encode("utf-8"))
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # Bare digests and plain text are not bcrypt hashes and never verify.
        return False


def burn_password_check(password: str) -> None:
    bcrypt.checkpw(password.encode("utf-8")[:72], _DUMMY_HASH.encode("utf-8"))


def needs_rehash(password_hash: str) -> bool:
    if password_hash.startswith(LEGACY_PREFIX):
        return True
    try:
        rounds = int(password_hash.split("$")[2])
    except (IndexError, ValueError):
        return True
    return rounds < settings.bcrypt_rounds


def is_legacy_digest(password_hash: str) -> bool:
    return bool(LEGACY_DIGEST_PATTERN.match(password_hash or ""))


def wrap_legacy_digest(digest: str) -> str:
    salt = bcrypt.gensalt(rounds=settings.bcrypt_rounds)
    return LEGACY_PREFIX + bcrypt.hashpw(digest.encode("utf-8"), salt).decode("utf-8")


def create_access_token(
    subject: str,
    role: str,
    center_id: int | None = None,
    expires_minutes: int | None = None,
    issued_at: datetime | None = None,
) -> str:
    exp_minutes = expires_minutes or settings.jwt_exp_minutes
    now = issued_at or datetime.now(timezone.utc)
    payload: dict[str, Any] = {
        "sub": subject,
        "role": role,
        "center_id": center_id,
        "iat": now.timestamp(),
        "exp": int((now + timedelta(minutes=exp_minutes)).timestamp()),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> dict[str, Any]:
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
        if "sub" not in payload or "role" not in payload:
            raise AuthError("Invalid token payload")
        return payload
    except jwt.ExpiredSignatureError as exc:
        raise AuthError("Token expired") from exc
    except jwt.InvalidTokenError as exc:
        raise AuthError("Invalid token") from exc
