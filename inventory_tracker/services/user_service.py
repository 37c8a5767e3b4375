from __future__ import annotations

import hashlib
import re
import secrets
import time
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from models.inventory_models import USER_ROLES, Asset, AssetTransaction, MaintenanceRecord, User


DEFAULT_ROLE = "USER"
MIN_PASSWORD_LENGTH = 8
LOCAL_ADMIN_EMAIL = "admin@local"
EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

# Roles allowed to change inventory data; VIEWER is read-only.
WRITE_ROLES = {"ADMIN", "MANAGER", "USER"}
MANAGE_ROLES = {"ADMIN", "MANAGER"}


def _normalize_role(raw_role: str | None) -> str:
    role = (raw_role or "").strip().upper()
    if role in USER_ROLES:
        return role
    raise ValueError("Invalid role")


def _password_hash(password: str, salt: str) -> str:
    raw = hashlib.pbkdf2_hmac(
        "sha256",
        (password or "").encode("utf-8"),
        salt.encode("utf-8"),
        120000,
    )
    return raw.hex()


def _set_password(user: User, password: str) -> None:
    trimmed = str(password).strip()
    if len(trimmed) < MIN_PASSWORD_LENGTH:
        raise ValueError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters.")
    user.PasswordSalt = secrets.token_hex(16)
    user.PasswordHash = _password_hash(trimmed, user.PasswordSalt)
    user.PasswordUpdatedAt = int(time.time())


def serialize_user(user: User) -> dict[str, Any]:
    return {
        "userID": user.UserID,
        "email": user.Email,
        "name": user.Name,
        "role": user.Role,
        "departmentID": user.DepartmentID,
        "isActive": bool(user.IsActive),
        "hasPassword": bool(user.PasswordHash),
        "createdAt": user.CreatedAt,
    }


def get_user_by_email(db: Session, email: str) -> User | None:
    normalized = (email or "").strip().lower()
    if not normalized:
        return None
    return db.execute(select(User).where(func.lower(User.Email) == normalized)).scalars().first()


def list_users(db: Session, role: str | None = None, active: bool | None = None) -> list[User]:
    stmt = select(User)
    if role:
        stmt = stmt.where(User.Role == role.strip().upper())
    if active is not None:
        stmt = stmt.where(User.IsActive == active)
    return list(db.execute(stmt.order_by(User.Name, User.UserID)).scalars().all())


def create_user(
    db: Session,
    *,
    email: str,
    name: str,
    password: str,
    role: str | None = None,
    department_id: int | None = None,
    is_active: bool = True,
) -> User:
    normalized_email = (email or "").strip().lower()
    if not normalized_email or not (name or "").strip() or not password:
        raise ValueError("Name, email, password, and role are required")
    if not EMAIL_PATTERN.match(normalized_email):
        raise ValueError("Invalid email format")
    if get_user_by_email(db, normalized_email):
        raise ValueError("User with this email already exists")

    user = User(
        Email=normalized_email,
        Name=name.strip(),
        Role=_normalize_role(role or DEFAULT_ROLE),
        DepartmentID=department_id,
        IsActive=is_active,
    )
    _set_password(user, password)
    db.add(user)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise ValueError("User with this email already exists") from exc
    db.refresh(user)
    return user


def update_user(
    db: Session,
    user_id: int,
    *,
    name: str | None = None,
    email: str | None = None,
    role: str | None = None,
    department_id: int | None = None,
    is_active: bool | None = None,
    password: str | None = None,
) -> User:
    user = db.get(User, user_id)
    if not user:
        raise LookupError("User not found")

    if email is not None:
        normalized_email = email.strip().lower()
        if not EMAIL_PATTERN.match(normalized_email):
            raise ValueError("Invalid email format")
        other = get_user_by_email(db, normalized_email)
        if other and other.UserID != user.UserID:
            raise ValueError("Email already in use")
        user.Email = normalized_email
    if name is not None and name.strip():
        user.Name = name.strip()
    if role is not None:
        user.Role = _normalize_role(role)
    if department_id is not None:
        user.DepartmentID = department_id
    if is_active is not None:
        user.IsActive = is_active
    if password is not None and str(password).strip():
        _set_password(user, password)

    db.commit()
    db.refresh(user)
    return user


def delete_user(db: Session, user_id: int) -> str:
    """Remove a user, or deactivate them when they own history.

    Returns ``"deleted"`` or ``"deactivated"``.
    """
    user = db.get(User, user_id)
    if not user:
        raise LookupError("User not found")

    active_checkouts = db.execute(
        select(func.count(AssetTransaction.TransactionID))
        .where(AssetTransaction.UserID == user_id)
        .where(AssetTransaction.Type == "CHECK_OUT")
        .where(AssetTransaction.Status.in_(("ACTIVE", "OVERDUE")))
    ).scalar() or 0
    if active_checkouts:
        raise ValueError("Cannot delete user with active checked-out items. Transfer items first.")

    if user.Role == "ADMIN" and user.IsActive:
        admins = db.execute(
            select(func.count(User.UserID)).where(User.Role == "ADMIN").where(User.IsActive == True)
        ).scalar() or 0
        if admins <= 1:
            raise ValueError("Cannot delete the last active admin user")

    history = sum(
        db.execute(stmt).scalar() or 0
        for stmt in (
            select(func.count(AssetTransaction.TransactionID)).where(AssetTransaction.UserID == user_id),
            select(func.count(Asset.AssetID)).where(Asset.CreatedByID == user_id),
            select(func.count(MaintenanceRecord.MaintenanceID)).where(MaintenanceRecord.CreatedByID == user_id),
        )
    )
    if history:
        user.IsActive = False
        db.commit()
        return "deactivated"

    db.delete(user)
    db.commit()
    return "deleted"


def verify_password(db: Session, email: str, password: str) -> User | None:
    candidate = (password or "").strip()
    if not candidate:
        return None
    user = get_user_by_email(db, email)
    if not user or not user.IsActive or not user.PasswordHash or not user.PasswordSalt:
        return None
    if not secrets.compare_digest(_password_hash(candidate, str(user.PasswordSalt)), str(user.PasswordHash)):
        return None
    return user


def ensure_local_admin_user(db: Session) -> User:
    """Return the row backing the environment-configured admin login."""
    user = get_user_by_email(db, LOCAL_ADMIN_EMAIL)
    if user:
        if user.Role != "ADMIN" or not user.IsActive:
            user.Role = "ADMIN"
            user.IsActive = True
            db.commit()
        return user
    user = User(Email=LOCAL_ADMIN_EMAIL, Name="Administrator", Role="ADMIN", IsActive=True)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user
