from collections.abc import Callable
from datetime import timezone
from typing import Any

from fastapi import Depends, Header, HTTPException, Query, status
from sqlalchemy.orm import Session

from .database import get_db_session
from .models import User, UserRole
from .policy import Identity, TenantScope
from .records import is_feature_enabled
from .security import AuthError, decode_access_token


def _parse_token(auth_header: str | None) -> str:
    if not auth_header:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing Authorization header")
    parts = auth_header.split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid auth scheme")
    return parts[1].strip()


def decode_bearer(auth_header: str | None) -> dict[str, Any]:
    token = _parse_token(auth_header)
    try:
        payload = decode_access_token(token)
    except AuthError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)) from exc
    try:
        payload["sub"] = int(payload["sub"])
    except (TypeError, ValueError) as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token") from exc
    return payload


def is_token_revoked(user: User, payload: dict[str, Any]) -> bool:
    if user.password_changed_at is None:
        return False
    changed_at = user.password_changed_at.replace(tzinfo=timezone.utc).timestamp()
    return float(payload.get("iat") or 0) < changed_at


def get_current_identity(
    authorization: str | None = Header(default=None, alias="Authorization"),
    db: Session = Depends(get_db_session),
) -> Identity:
    payload = decode_bearer(authorization)
    user = db.get(User, payload["sub"])
    if not user or not user.is_active:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid user")
    if is_token_revoked(user, payload):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token revoked")
    return Identity.from_user(user)


def require_roles(*allowed_roles: UserRole) -> Callable:
    def dependency(identity: Identity = Depends(get_current_identity)) -> Identity:
        if identity.role not in allowed_roles:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient role privileges")
        return identity

    return dependency


def require_feature(feature_name: str) -> Callable:
    def dependency(
        identity: Identity = Depends(get_current_identity),
        db: Session = Depends(get_db_session),
    ) -> Identity:
        if not identity.is_admin and not is_feature_enabled(db, feature_name):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="This module is disabled")
        return identity

    return dependency


def get_tenant_scope(
    center_id: int | None = Query(default=None),
    identity: Identity = Depends(get_current_identity),
) -> TenantScope:
    return TenantScope(identity, center_id=center_id)
