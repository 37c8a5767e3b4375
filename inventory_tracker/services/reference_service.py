from __future__ import annotations

import re
import string
from datetime import datetime
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from models.inventory_models import (
    Asset,
    Client,
    CustomCategory,
    Department,
    Location,
    Preset,
    PresetCategory,
    PresetDepartment,
    User,
)
from services.asset_number_service import SYSTEM_CATEGORY_CODES, normalize_client_code


# Reference entity -> (model, primary key column, payload field -> column).
REFERENCE_ENTITIES: dict[str, tuple[type, str, dict[str, str]]] = {
    "client": (
        Client,
        "ClientID",
        {
            "name": "Name",
            "code": "Code",
            "description": "Description",
            "contact": "Contact",
            "email": "Email",
            "phone": "Phone",
            "address": "Address",
            "isActive": "IsActive",
        },
    ),
    "location": (
        Location,
        "LocationID",
        {
            "name": "Name",
            "building": "Building",
            "floor": "Floor",
            "room": "Room",
            "description": "Description",
            "capacity": "Capacity",
            "isActive": "IsActive",
        },
    ),
    "department": (
        Department,
        "DepartmentID",
        {"name": "Name", "description": "Description", "manager": "Manager", "isActive": "IsActive"},
    ),
    "presetCategory": (
        PresetCategory,
        "PresetCategoryID",
        {"name": "Name", "description": "Description", "isActive": "IsActive"},
    ),
    "presetDepartment": (
        PresetDepartment,
        "PresetDepartmentID",
        {"name": "Name", "description": "Description", "isActive": "IsActive"},
    ),
}

_LABELS = {
    "client": "Client",
    "location": "Location",
    "department": "Department",
    "presetCategory": "Preset category",
    "presetDepartment": "Preset department",
}


def _usage_count(db: Session, entity: str, row: Any) -> int:
    if entity == "client":
        stmt = select(func.count(Asset.AssetID)).where(Asset.ClientID == row.ClientID)
    elif entity == "location":
        stmt = select(func.count(Asset.AssetID)).where(Asset.LocationID == row.LocationID)
    elif entity == "department":
        stmt = select(func.count(User.UserID)).where(User.DepartmentID == row.DepartmentID)
    elif entity == "presetCategory":
        stmt = select(func.count(Preset.PresetID)).where(Preset.Category == row.Name)
    else:
        stmt = select(func.count(Preset.PresetID)).where(Preset.Department == row.Name)
    return int(db.execute(stmt).scalar() or 0)


def serialize_reference(entity: str, row: Any, usage: int | None = None) -> dict[str, Any]:
    _, pk, fields = REFERENCE_ENTITIES[entity]
    payload: dict[str, Any] = {"id": getattr(row, pk)}
    for field, column in fields.items():
        value = getattr(row, column)
        payload[field] = bool(value) if column == "IsActive" else value
    payload["createdAt"] = getattr(row, "CreatedAt", None)
    if usage is not None:
        payload["usageCount"] = usage
    return payload


def _apply_fields(entity: str, row: Any, data: dict[str, Any]) -> None:
    _, _, fields = REFERENCE_ENTITIES[entity]
    for field, column in fields.items():
        if field not in data:
            continue
        value = data[field]
        if column == "IsActive":
            if value is not None:
                row.IsActive = bool(value)
            continue
        if isinstance(value, str):
            value = value.strip() or None
        if column == "Code":
            value = normalize_client_code(value)
        setattr(row, column, value)
    if not getattr(row, "Name", None):
        raise ValueError("Name is required")
    if entity == "client" and not row.Code:
        raise ValueError("Client code is required")


def list_references(db: Session, entity: str, include_inactive: bool = False, search: str | None = None) -> list[dict]:
    model, _, _ = REFERENCE_ENTITIES[entity]
    stmt = select(model)
    if not include_inactive:
        stmt = stmt.where(model.IsActive == True)
    if search:
        stmt = stmt.where(model.Name.ilike(f"%{search.strip()}%"))
    rows = db.execute(stmt.order_by(model.Name)).scalars().all()
    return [serialize_reference(entity, row, _usage_count(db, entity, row)) for row in rows]


def get_reference(db: Session, entity: str, row_id: int) -> Any:
    model, _, _ = REFERENCE_ENTITIES[entity]
    row = db.get(model, row_id)
    if not row:
        raise LookupError(f"{_LABELS[entity]} not found")
    return row


def create_reference(db: Session, entity: str, data: dict[str, Any]) -> Any:
    model, _, _ = REFERENCE_ENTITIES[entity]
    row = model()
    row.IsActive = True
    _apply_fields(entity, row, data)
    if hasattr(row, "UpdatedAt"):
        row.UpdatedAt = datetime.now()
    db.add(row)
    _commit_unique(db, entity)
    db.refresh(row)
    return row


def update_reference(db: Session, entity: str, row_id: int, data: dict[str, Any]) -> Any:
    row = get_reference(db, entity, row_id)
    _apply_fields(entity, row, data)
    if hasattr(row, "UpdatedAt"):
        row.UpdatedAt = datetime.now()
    _commit_unique(db, entity)
    db.refresh(row)
    return row


def delete_reference(db: Session, entity: str, row_id: int) -> tuple[str, Any]:
    """Delete a reference row, or deactivate it while anything still uses it."""
    row = get_reference(db, entity, row_id)
    if _usage_count(db, entity, row):
        row.IsActive = False
        db.commit()
        return "deactivated", row
    db.delete(row)
    db.commit()
    return "deleted", row


def _commit_unique(db: Session, entity: str) -> None:
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        if entity == "client":
            raise ValueError("Client name or code already exists") from exc
        raise ValueError(f"{_LABELS[entity]} name already exists") from exc


def category_key(name: str) -> str:
    return re.sub(r"[^A-Z0-9]+", "_", (name or "").strip().upper()).strip("_")


def _code_candidates(name: str):
    letters = [ch for ch in (name or "").upper() if ch in string.ascii_uppercase]
    base = "".join(letters[:3]).ljust(3, "X")
    yield base
    for ch in letters[3:]:
        yield base[:2] + ch
    for ch in string.ascii_uppercase:
        yield base[:2] + ch


def generate_category_code(db: Session, name: str) -> str:
    taken = set(SYSTEM_CATEGORY_CODES.values())
    taken.update(code for code in db.execute(select(CustomCategory.Code)).scalars().all() if code)
    for candidate in _code_candidates(name):
        if candidate not in taken:
            return candidate
    raise ValueError("Could not derive a unique category code")


def serialize_category(category: CustomCategory, asset_count: int | None = None) -> dict[str, Any]:
    payload = {
        "id": category.CategoryID,
        "key": category.CategoryKey,
        "name": category.Name,
        "code": category.Code,
        "description": category.Description,
        "isActive": bool(category.IsActive),
        "isSystem": False,
    }
    if asset_count is not None:
        payload["assetCount"] = asset_count
    return payload


def list_categories(db: Session) -> list[dict[str, Any]]:
    counts = dict(db.execute(select(Asset.Category, func.count(Asset.AssetID)).group_by(Asset.Category)).all())
    output = [
        {
            "id": None,
            "key": key,
            "name": key.replace("_", " ").title(),
            "code": code,
            "description": None,
            "isActive": True,
            "isSystem": True,
            "assetCount": int(counts.get(key, 0)),
        }
        for key, code in SYSTEM_CATEGORY_CODES.items()
    ]
    customs = db.execute(
        select(CustomCategory).where(CustomCategory.IsActive == True).order_by(CustomCategory.Name)
    ).scalars().all()
    output.extend(serialize_category(row, int(counts.get(row.CategoryKey, 0))) for row in customs)
    return output


def create_category(db: Session, name: str, description: str | None, created_by_id: int | None) -> CustomCategory:
    clean_name = (name or "").strip()
    if not clean_name:
        raise ValueError("Name is required")
    key = category_key(clean_name)
    if key in SYSTEM_CATEGORY_CODES:
        raise ValueError("Category name conflicts with system category")
    existing = db.execute(
        select(CustomCategory).where(
            (func.lower(CustomCategory.Name) == clean_name.lower()) | (CustomCategory.CategoryKey == key)
        )
    ).scalars().first()
    if existing:
        raise ValueError("Category name already exists")

    category = CustomCategory(
        CategoryKey=key,
        Name=clean_name,
        Code=generate_category_code(db, clean_name),
        Description=(description or "").strip() or None,
        IsActive=True,
        CreatedByID=created_by_id,
    )
    db.add(category)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise ValueError("Category name already exists") from exc
    db.refresh(category)
    return category


def update_category(db: Session, category_id: int, name: str | None, description: str | None) -> CustomCategory:
    category = db.get(CustomCategory, category_id)
    if not category:
        raise LookupError("Category not found")
    if name is not None:
        clean_name = name.strip()
        if not clean_name:
            raise ValueError("Name is required")
        category.Name = clean_name
    if description is not None:
        category.Description = description.strip() or None
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise ValueError("Category name already exists") from exc
    db.refresh(category)
    return category


def delete_category(db: Session, category_id: int) -> str:
    category = db.get(CustomCategory, category_id)
    if not category:
        raise LookupError("Category not found")
    in_use = db.execute(
        select(func.count(Asset.AssetID)).where(Asset.Category == category.CategoryKey)
    ).scalar() or 0
    if in_use:
        category.IsActive = False
        db.commit()
        return "deactivated"
    db.delete(category)
    db.commit()
    return "deleted"
