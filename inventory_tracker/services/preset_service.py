from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session, selectinload

from models.inventory_models import (
    Asset,
    Preset,
    PresetCheckout,
    PresetCheckoutItem,
    PresetItem,
    PresetItemSubstitution,
)
from services.preset_checkout_service import PresetNotFoundError, load_preset


OPEN_CHECKOUT_STATUSES = ("IN_PROGRESS", "PARTIAL")


def _asset_brief(asset: Asset | None) -> dict | None:
    if asset is None:
        return None
    return {
        "id": asset.AssetID,
        "name": asset.Name,
        "description": asset.Description,
        "status": asset.Status,
        "assetNumber": asset.AssetNumber,
        "category": asset.Category,
    }


def serialize_preset(preset: Preset, include_items: bool = True, checkout_count: int | None = None) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "id": preset.PresetID,
        "name": preset.Name,
        "description": preset.Description,
        "category": preset.Category,
        "department": preset.Department,
        "priority": preset.Priority or 0,
        "isActive": bool(preset.IsActive),
        "isTemplate": bool(preset.IsTemplate),
        "notes": preset.Notes,
        "createdById": preset.CreatedByID,
        "createdAt": preset.CreatedAt,
        "updatedAt": preset.UpdatedAt,
        "itemCount": len(preset.Items),
    }
    if checkout_count is not None:
        payload["checkoutCount"] = checkout_count
    if include_items:
        payload["items"] = [
            {
                "id": item.PresetItemID,
                "assetId": item.AssetID,
                "asset": _asset_brief(item.Asset),
                "category": item.Category,
                "name": item.Name,
                "quantity": item.Quantity or 1,
                "isRequired": bool(item.IsRequired),
                "priority": item.Priority or 0,
                "notes": item.Notes,
                "substitutions": [
                    {
                        "id": sub.SubstitutionID,
                        "substituteAssetId": sub.SubstituteAssetID,
                        "substituteAsset": _asset_brief(sub.SubstituteAsset),
                        "preference": sub.Preference or 0,
                        "notes": sub.Notes,
                    }
                    for sub in item.Substitutions
                ],
            }
            for item in preset.Items
        ]
    return payload


def _checkout_counts(db: Session, preset_ids: list[int]) -> dict[int, int]:
    if not preset_ids:
        return {}
    rows = db.execute(
        select(PresetCheckout.PresetID, func.count(PresetCheckout.PresetCheckoutID))
        .where(PresetCheckout.PresetID.in_(preset_ids))
        .group_by(PresetCheckout.PresetID)
    ).all()
    return {preset_id: int(count) for preset_id, count in rows}


def list_presets(
    db: Session,
    *,
    search: str | None = None,
    category: str | None = None,
    is_active: bool | None = None,
    page: int = 1,
    limit: int = 10,
) -> dict[str, Any]:
    filters = []
    if search:
        pattern = f"%{search.strip()}%"
        filters.append(or_(Preset.Name.ilike(pattern), Preset.Description.ilike(pattern)))
    if category:
        filters.append(Preset.Category.ilike(f"%{category.strip()}%"))
    if is_active is not None:
        filters.append(Preset.IsActive == is_active)

    page = max(page, 1)
    limit = min(max(limit, 1), 100)
    total = db.execute(select(func.count(Preset.PresetID)).where(*filters)).scalar() or 0
    presets = db.execute(
        select(Preset)
        .options(selectinload(Preset.Items).selectinload(PresetItem.Asset))
        .where(*filters)
        .order_by(Preset.CreatedAt.desc(), Preset.Name)
        .offset((page - 1) * limit)
        .limit(limit)
    ).scalars().all()
    counts = _checkout_counts(db, [preset.PresetID for preset in presets])
    return {
        "presets": [
            serialize_preset(preset, include_items=True, checkout_count=counts.get(preset.PresetID, 0))
            for preset in presets
        ],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": int(total),
            "pages": (int(total) + limit - 1) // limit,
        },
    }


def _require_asset(db: Session, asset_id: Any) -> int:
    asset = db.get(Asset, int(asset_id))
    if not asset:
        raise ValueError(f"Invalid asset reference: {asset_id}")
    return asset.AssetID


def _build_items(db: Session, items: list[dict[str, Any]]) -> list[PresetItem]:
    built = []
    for index, raw in enumerate(items):
        name = (raw.get("name") or "").strip()
        if not name:
            raise ValueError("Every preset item needs a name")
        item = PresetItem(
            AssetID=_require_asset(db, raw["assetId"]) if raw.get("assetId") else None,
            Category=(raw.get("category") or "").strip().upper() or None,
            Name=name,
            Quantity=int(raw.get("quantity") or 1),
            IsRequired=raw.get("isRequired") is not False,
            Priority=int(raw["priority"]) if raw.get("priority") is not None else index,
            Notes=raw.get("notes"),
        )
        seen: set[int] = set()
        for position, sub in enumerate(raw.get("substitutions") or []):
            substitute_id = _require_asset(db, sub.get("assetId") or sub.get("substituteAssetId"))
            if substitute_id in seen or substitute_id == item.AssetID:
                raise ValueError(f"Duplicate substitute for item {name}")
            seen.add(substitute_id)
            item.Substitutions.append(
                PresetItemSubstitution(
                    SubstituteAssetID=substitute_id,
                    Preference=int(sub["preference"]) if sub.get("preference") is not None else position,
                    Notes=sub.get("notes"),
                )
            )
        built.append(item)
    return built


def _apply_header(preset: Preset, data: dict[str, Any]) -> None:
    for field, column in (
        ("name", "Name"),
        ("description", "Description"),
        ("category", "Category"),
        ("department", "Department"),
        ("notes", "Notes"),
    ):
        if field in data:
            value = data[field]
            setattr(preset, column, (value.strip() or None) if isinstance(value, str) else value)
    if data.get("priority") is not None:
        preset.Priority = int(data["priority"])
    if data.get("isTemplate") is not None:
        preset.IsTemplate = bool(data["isTemplate"])
    if data.get("isActive") is not None:
        preset.IsActive = bool(data["isActive"])
    if not preset.Name:
        raise ValueError("Name is required")


def create_preset(db: Session, data: dict[str, Any], user_id: int | None) -> Preset:
    items = data.get("items")
    if not (data.get("name") or "").strip() or not isinstance(items, list):
        raise ValueError("Name and items are required")
    now = datetime.now()
    preset = Preset(IsActive=True, IsTemplate=False, Priority=0, CreatedByID=user_id, CreatedAt=now, UpdatedAt=now)
    _apply_header(preset, data)
    preset.Items.extend(_build_items(db, items))
    db.add(preset)
    db.commit()
    return load_preset(db, preset.PresetID)


def _open_checkouts(db: Session, preset_id: int) -> int:
    return int(
        db.execute(
            select(func.count(PresetCheckout.PresetCheckoutID))
            .where(PresetCheckout.PresetID == preset_id)
            .where(PresetCheckout.Status.in_(OPEN_CHECKOUT_STATUSES))
        ).scalar()
        or 0
    )


def _checkout_history(db: Session, preset_id: int) -> int:
    return int(
        db.execute(
            select(func.count(PresetCheckoutItem.PresetCheckoutItemID))
            .join(PresetItem, PresetItem.PresetItemID == PresetCheckoutItem.PresetItemID)
            .where(PresetItem.PresetID == preset_id)
        ).scalar()
        or 0
    )


def can_edit_preset(preset: Preset, user_id: int | None, role: str) -> bool:
    return role in ("ADMIN", "MANAGER") or (user_id is not None and preset.CreatedByID == user_id)


def can_delete_preset(preset: Preset, user_id: int | None, role: str) -> bool:
    return role == "ADMIN" or (user_id is not None and preset.CreatedByID == user_id)


def update_preset(db: Session, preset_id: int, data: dict[str, Any]) -> Preset:
    preset = load_preset(db, preset_id)
    _apply_header(preset, data)
    if isinstance(data.get("items"), list):
        if _open_checkouts(db, preset_id):
            raise ValueError("Cannot replace items while the preset has open checkouts.")
        if _checkout_history(db, preset_id):
            # Past checkout items reference these rows.
            raise ValueError("Cannot replace items of a preset that has been checked out. Create a new preset instead.")
        preset.Items.clear()
        db.flush()
        preset.Items.extend(_build_items(db, data["items"]))
    preset.UpdatedAt = datetime.now()
    db.commit()
    db.expire(preset)
    return load_preset(db, preset_id)


def delete_preset(db: Session, preset_id: int) -> str:
    """Delete a preset, or deactivate it when checkouts reference it."""
    preset = db.get(Preset, preset_id)
    if not preset:
        raise PresetNotFoundError("Preset not found")
    open_count = _open_checkouts(db, preset_id)
    if open_count:
        raise ValueError(f"Cannot delete preset. It has {open_count} active checkout(s).")
    has_checkouts = db.execute(
        select(PresetCheckout.PresetCheckoutID).where(PresetCheckout.PresetID == preset_id)
    ).first()
    if has_checkouts is not None:
        preset.IsActive = False
        preset.UpdatedAt = datetime.now()
        db.commit()
        return "deactivated"
    db.delete(preset)
    db.commit()
    return "deleted"
