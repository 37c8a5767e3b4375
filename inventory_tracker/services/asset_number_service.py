from __future__ import annotations

import logging
import re
from datetime import datetime
from typing import Optional

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from models.inventory_models import Asset, Client, CustomCategory


LOGGER = logging.getLogger("inventory_tracker.assets")

ASSET_NUMBER_PATTERN = re.compile(r"^[A-Z0-9]{2,10}-[A-Z]{3}-\d{4}$")
CLIENT_CODE_PATTERN = re.compile(r"^[A-Z0-9]{2,10}$")
MAX_SEQUENCE = 9999
MAX_ALLOCATION_STEPS = 50

SYSTEM_CATEGORY_CODES = {
    "CAMERA": "CAM",
    "LENS": "LEN",
    "LIGHTING": "LIT",
    "AUDIO": "AUD",
    "COMPUTER": "COM",
    "STORAGE": "STO",
    "ACCESSORY": "ACC",
    "FURNITURE": "FUR",
    "SOFTWARE": "SOF",
    "INFORMATION_TECHNOLOGY": "ITE",
    "HEADSET": "HED",
    "OTHER": "OTH",
}


class AssetNumberError(Exception):
    pass


class InvalidCategoryError(AssetNumberError):
    pass


class InvalidClientCodeError(AssetNumberError):
    pass


class AssetNumberExhaustedError(AssetNumberError):
    """No free sequence number was found for a client/category prefix."""


class AssetNumberConflictError(AssetNumberError):
    """The insert kept colliding on the unique asset number index."""


def is_valid_asset_number(value: str | None) -> bool:
    if not value:
        return False
    return bool(ASSET_NUMBER_PATTERN.match(value))


def normalize_client_code(client_code: str | None) -> str:
    code = (client_code or "").strip().upper()
    if not CLIENT_CODE_PATTERN.match(code):
        raise InvalidClientCodeError("Client code must be 2-10 alphanumeric characters (letters and/or numbers).")
    return code


def resolve_type_code(db: Session, category: str | None) -> str:
    key = (category or "").strip().upper()
    if not key:
        raise InvalidCategoryError("Category is required.")
    if key in SYSTEM_CATEGORY_CODES:
        return SYSTEM_CATEGORY_CODES[key]
    custom = db.execute(
        select(CustomCategory).where(CustomCategory.CategoryKey == key)
    ).scalars().first()
    if not custom or not custom.Code:
        raise InvalidCategoryError(f"Category {key} has no asset type code.")
    return custom.Code


def _parse_seq(asset_number: str, prefix: str) -> Optional[int]:
    if not asset_number or not asset_number.startswith(prefix):
        return None
    tail = asset_number[len(prefix):]
    if len(tail) != 4 or not tail.isdigit():
        return None
    return int(tail)


def _format(prefix: str, seq: int) -> str:
    return f"{prefix}{seq:04d}"


def _number_taken(db: Session, asset_number: str, exclude_asset_id: int | None) -> bool:
    stmt = select(Asset.AssetID).where(Asset.AssetNumber == asset_number)
    if exclude_asset_id is not None:
        stmt = stmt.where(Asset.AssetID != exclude_asset_id)
    return db.execute(stmt).first() is not None


def _next_free_sequence(db: Session, prefix: str, start: int, exclude_asset_id: int | None) -> int:
    seq = start
    for _ in range(MAX_ALLOCATION_STEPS):
        if seq > MAX_SEQUENCE:
            break
        if not _number_taken(db, _format(prefix, seq), exclude_asset_id):
            return seq
        seq += 1
    raise AssetNumberExhaustedError(f"No free asset number available for prefix {prefix}")


def allocate_asset_number(
    db: Session,
    client_code: str,
    category: str,
    exclude_asset_id: int | None = None,
) -> str:
    """Return the next free ``CLIENT-CAT-NNNN`` number for a client and category.

    The highest existing sequence under the prefix is incremented. If that
    number belongs to another asset (rows written by hand or by a repair
    run), the search steps forward a bounded number of times.
    """
    code = normalize_client_code(client_code)
    prefix = f"{code}-{resolve_type_code(db, category)}-"

    stmt = select(Asset.AssetNumber).where(Asset.AssetNumber.startswith(prefix))
    if exclude_asset_id is not None:
        stmt = stmt.where(Asset.AssetID != exclude_asset_id)
    existing = db.execute(stmt).scalars().all()

    max_seq = 0
    for number in existing:
        seq = _parse_seq(number, prefix)
        if seq and seq > max_seq:
            max_seq = seq

    return _format(prefix, _next_free_sequence(db, prefix, max_seq + 1, exclude_asset_id))


def create_asset_with_number(
    db: Session,
    asset: Asset,
    client_code: str,
    category: str,
    attempts: int = 3,
) -> Asset:
    """Allocate a number and insert the asset in the same commit.

    Allocation is not locked, so a concurrent insert can take the same
    number first. The unique index rejects the loser, which re-allocates.
    """
    for attempt in range(1, max(attempts, 1) + 1):
        asset.AssetNumber = allocate_asset_number(db, client_code, category)
        db.add(asset)
        try:
            db.commit()
        except IntegrityError as exc:
            db.rollback()
            LOGGER.warning(
                "Asset number collision number=%s attempt=%s/%s",
                asset.AssetNumber,
                attempt,
                attempts,
            )
            if attempt >= attempts:
                raise AssetNumberConflictError(
                    f"Could not reserve an asset number after {attempts} attempts."
                ) from exc
            continue
        db.refresh(asset)
        return asset
    raise AssetNumberConflictError("Could not reserve an asset number.")


def _missing_number_filter():
    return or_(Asset.AssetNumber.is_(None), Asset.AssetNumber == "")


def count_missing_asset_numbers(db: Session) -> dict:
    total = db.execute(select(func.count(Asset.AssetID)).where(_missing_number_filter())).scalar() or 0
    rows = db.execute(
        select(Asset.Category, func.count(Asset.AssetID))
        .where(_missing_number_filter())
        .group_by(Asset.Category)
        .order_by(Asset.Category)
    ).all()
    return {
        "totalWithoutNumbers": int(total),
        "breakdown": [{"category": category, "count": int(count)} for category, count in rows],
    }


def assign_missing_asset_numbers(db: Session, user_id: int | None = None) -> dict:
    assets = db.execute(
        select(Asset)
        .where(_missing_number_filter())
        .order_by(Asset.Category, Asset.CreatedAt, Asset.AssetID)
    ).scalars().all()

    if not assets:
        return {"message": "No assets found without asset numbers", "updated": 0, "total": 0}

    updated = 0
    errors: list[str] = []
    for asset in assets:
        client = db.get(Client, asset.ClientID) if asset.ClientID else None
        if not client:
            errors.append(f"{asset.Name}: asset has no client")
            continue
        try:
            asset.AssetNumber = allocate_asset_number(db, client.Code, asset.Category, exclude_asset_id=asset.AssetID)
            asset.LastModifiedByID = user_id
            asset.UpdatedAt = datetime.now()
            db.commit()
        except (AssetNumberError, IntegrityError) as exc:
            db.rollback()
            LOGGER.warning("Asset number assignment failed asset_id=%s error=%s", asset.AssetID, exc)
            errors.append(f"{asset.Name}: {exc}")
            continue
        updated += 1
        LOGGER.info("Assigned %s to asset_id=%s", asset.AssetNumber, asset.AssetID)

    payload = {
        "message": f"Successfully assigned asset numbers to {updated} assets",
        "updated": updated,
        "total": len(assets),
    }
    if errors:
        payload["errors"] = errors
    return payload


def repair_asset_number(db: Session, asset: Asset) -> str:
    """Rebuild a malformed asset number from the asset's client and category.

    A parseable old sequence is kept; otherwise a new one is allocated. If
    the rebuilt number belongs to a different asset, the sequence moves
    forward to the next free slot.
    """
    client = db.get(Client, asset.ClientID) if asset.ClientID else None
    client_code = normalize_client_code(client.Code if client else "UNKN")
    prefix = f"{client_code}-{resolve_type_code(db, asset.Category)}-"

    parts = (asset.AssetNumber or "").split("-")
    seq: int | None = None
    if len(parts) >= 3 and parts[-1].isdigit() and len(parts[-1]) <= 4:
        seq = int(parts[-1]) or None

    if seq is None:
        return allocate_asset_number(db, client_code, asset.Category, exclude_asset_id=asset.AssetID)
    return _format(prefix, _next_free_sequence(db, prefix, seq, asset.AssetID))
