import logging
from datetime import datetime
from typing import Any

from fastapi import HTTPException, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from .config import settings
from .middleware import decode_bearer, is_token_revoked
from .models import Center, User, UserRole
from .policy import Identity, TenantScope
from .records import is_feature_enabled, require_center
from .security import (
    burn_password_check,
    create_access_token,
    hash_password,
    is_legacy_digest,
    needs_rehash,
    verify_password,
    wrap_legacy_digest,
)


logger = logging.getLogger(__name__)

BCRYPT_MAX_BYTES = 72


def _invalid_credentials() -> HTTPException:
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")


def _check_new_password(password: str, message: str) -> None:
    if len(password) < settings.min_password_length:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=message)
    if len(password.encode("utf-8")) > BCRYPT_MAX_BYTES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Password must be at most {BCRYPT_MAX_BYTES} bytes long",
        )


def _record_login(db: Session, user: User, password: str) -> None:
    # Login succeeds even when this write fails.
    try:
        user.last_login = datetime.utcnow()
        # Passwords past the bcrypt byte limit keep the legacy envelope.
        if needs_rehash(user.password_hash) and len(password.encode("utf-8")) <= BCRYPT_MAX_BYTES:
            user.password_hash = hash_password(password)
            logger.info(f"Upgraded password hash for user {user.id}")
        db.commit()
    except (SQLAlchemyError, ValueError) as exc:
        db.rollback()
        logger.error(f"Failed to record login for user {user.id}: {exc}")


def login(db: Session, *, username: str | None, password: str | None) -> dict[str, Any]:
    if not username or not password:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Username and password are required")

    logger.info(f"Login attempt for user: {username}")
    user = db.query(User).filter(User.username == username).first()
    if user is None:
        burn_password_check(password)
        logger.warning(f"Login failed for user: {username} - User not found")
        raise _invalid_credentials()

    password_ok = verify_password(password, user.password_hash)
    if not user.is_active:
        logger.warning(f"Login failed for user: {username} - Account inactive")
        raise _invalid_credentials()
    if not password_ok:
        logger.warning(f"Login failed for user: {username} - Invalid password")
        raise _invalid_credentials()
    if user.role == UserRole.PARENT and not is_feature_enabled(db, "parent_login"):
        logger.warning(f"Login failed for user: {username} - Parent login disabled")
        raise _invalid_credentials()

    identity = Identity.from_user(user)
    _record_login(db, user, password)
    token = create_access_token(subject=str(identity.user_id), role=identity.role.value, center_id=identity.center_id)
    logger.info(f"Login successful for user: {username}")
    return {
        "success": True,
        "user": identity.as_dict(),
        "access_token": token,
        "token_type": "bearer",
        "expires_in": settings.jwt_exp_minutes * 60,
    }


def change_password(
    db: Session,
    *,
    authorization: str | None,
    current_password: str | None,
    new_password: str | None,
    user_id: Any = None,
) -> dict[str, Any]:
    if not current_password or not new_password:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Current password and new password are required",
        )
    _check_new_password(
        new_password,
        f"New password must be at least {settings.min_password_length} characters long",
    )

    payload = decode_bearer(authorization)
    if user_id is not None and str(user_id) != str(payload["sub"]):
        logger.warning(f"Password change for user {user_id} rejected: token belongs to {payload['sub']}")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="You can only change your own password")

    user = db.get(User, payload["sub"])
    if user is None or not user.is_active:
        logger.warning(f"Password change failed: user {payload['sub']} not found or inactive")
        raise _invalid_credentials()
    if is_token_revoked(user, payload):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token revoked")
    if not verify_password(current_password, user.password_hash):
        logger.warning(f"Password change failed for user {user.id} - Current password incorrect")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Current password is incorrect")

    try:
        user.password_hash = hash_password(new_password)
        user.password_changed_at = datetime.utcnow()
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error(f"Failed to update password for user {user.id}: {exc}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to update password",
        ) from exc

    logger.info(f"Password changed for user {user.id}")
    return {"success": True, "message": "Password changed successfully"}


def init_admin(db: Session) -> dict[str, Any]:
    username = settings.init_admin_username
    existing = db.query(User).filter(User.username == username).first()
    if existing and existing.role == UserRole.ADMIN:
        return {"success": True, "message": "Admin already exists"}
    if existing:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Username already exists")
    if not settings.init_admin_password:
        logger.error("INIT_ADMIN_PASSWORD is not configured; admin not created")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Admin password is not configured",
        )

    admin = User(
        username=username,
        password_hash=hash_password(settings.init_admin_password),
        role=UserRole.ADMIN,
        center_id=None,
        is_active=True,
    )
    db.add(admin)
    db.commit()
    db.refresh(admin)
    logger.info(f"Admin user '{username}' created")
    return {"success": True, "message": "Admin user created", "admin": {"id": admin.id, "username": admin.username}}


def create_parent_account(
    db: Session,
    scope: TenantScope,
    *,
    username: str | None,
    password: str | None,
    student_id: int | None,
) -> dict[str, Any]:
    if not username or not password or student_id is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="All fields are required")
    _check_new_password(password, f"Password must be at least {settings.min_password_length} characters long")
    scope.require_writer()

    if db.query(User).filter(User.username == username).first():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Username already exists")
    student = scope.students(db).filter_by(id=student_id).first()
    if not student:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Student not found or access denied")

    parent = User(
        username=username,
        password_hash=hash_password(password),
        role=UserRole.PARENT,
        center_id=student.center_id,
        student_id=student.id,
        is_active=True,
    )
    db.add(parent)
    db.commit()
    db.refresh(parent)
    logger.info(f"Parent user created for student {student.id}")
    return {
        "success": True,
        "message": "Parent account created successfully",
        "user": {"id": parent.id, "username": parent.username, "role": parent.role.value},
    }


def create_center_with_login(
    db: Session,
    *,
    center_name: str,
    address: str | None,
    contact_number: str | None,
    username: str,
    password: str,
) -> Center:
    _check_new_password(password, f"Password must be at least {settings.min_password_length} characters long")
    if db.query(User).filter(User.username == username).first():
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Username already exists")

    center = Center(center_name=center_name.strip(), address=address, contact_number=contact_number)
    db.add(center)
    db.flush()
    db.add(
        User(
            username=username,
            password_hash=hash_password(password),
            role=UserRole.CENTER,
            center_id=center.id,
            is_active=True,
        )
    )
    db.commit()
    db.refresh(center)
    logger.info(f"Center '{center.center_name}' created with login '{username}'")
    return center


def list_centers(db: Session) -> list[Center]:
    return db.query(Center).options(selectinload(Center.users)).order_by(Center.center_name).all()


def update_center(db: Session, center_id: int, changes: dict[str, Any]) -> Center:
    center = require_center(db, center_id)
    for name, value in changes.items():
        setattr(center, name, value)
    db.commit()
    db.refresh(center)
    return center


def set_user_active(db: Session, actor: Identity, user_id: int, is_active: bool) -> User:
    user = db.get(User, user_id)
    if not user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    if user.id == actor.user_id and not is_active:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="You cannot deactivate your own account")
    user.is_active = is_active
    db.commit()
    db.refresh(user)
    logger.info(f"User {user.id} {'activated' if is_active else 'deactivated'} by {actor.username}")
    return user


def migrate_legacy_credentials(db: Session) -> int:
    """Wrap bare SHA-256 digests so they verify through bcrypt.

    Returns the number of migrated users. Wrapped hashes are replaced by a
    plain bcrypt hash the next time their owner logs in.
    """
    migrated = 0
    for user in db.query(User).all():
        if not is_legacy_digest(user.password_hash):
            continue
        user.password_hash = wrap_legacy_digest(user.password_hash)
        migrated += 1
    db.commit()
    if migrated:
        logger.info(f"Wrapped {migrated} legacy password hashes")
    return migrated
