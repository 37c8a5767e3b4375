from __future__ import annotations

import csv
import io
import logging
import re
from datetime import date, datetime, timedelta
from typing import Any

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from models.inventory_models import (
    ASSET_CONDITIONS,
    ASSET_STATUSES,
    Asset,
    AssetTransaction,
    Client,
    Location,
    MaintenanceRecord,
    PresetItem,
    PresetItemSubstitution,
)
from services.asset_number_service import (
    AssetNumberConflictError,
    AssetNumberError,
    InvalidCategoryError,
    allocate_asset_number,
    create_asset_with_number,
    is_valid_asset_number,
    resolve_type_code,
)


LOGGER = logging.getLogger("inventory_tracker.assets")

IMPORTABLE_STATUSES = ("AVAILABLE", "IN_MAINTENANCE", "RETIRED", "MISSING", "RESERVED")
BULK_SETTABLE_STATUSES = IMPORTABLE_STATUSES

# Payload field -> Asset column for fields copied without extra rules.
ASSET_FIELDS = {
    "name": "Name",
    "description": "Description",
    "serialNumber": "SerialNumber",
    "barcode": "Barcode",
    "manufacturer": "Manufacturer",
    "model": "Model",
    "purchaseDate": "PurchaseDate",
    "purchasePrice": "PurchasePrice",
    "currentValue": "CurrentValue",
    "notes": "Notes",
    "imageUrl": "ImageUrl",
    "locationId": "LocationID",
}


def _amount(value) -> float | None:
    return float(value) if value is not None else None


def serialize_asset(asset: Asset, transaction_count: int | None = None) -> dict[str, Any]:
    payload = {
        "id": asset.AssetID,
        "name": asset.Name,
        "description": asset.Description,
        "category": asset.Category,
        "assetNumber": asset.AssetNumber,
        "serialNumber": asset.SerialNumber,
        "barcode": asset.Barcode,
        "status": asset.Status,
        "condition": asset.Condition,
        "clientId": asset.ClientID,
        "locationId": asset.LocationID,
        "manufacturer": asset.Manufacturer,
        "model": asset.Model,
        "purchaseDate": asset.PurchaseDate,
        "purchasePrice": _amount(asset.PurchasePrice),
        "currentValue": _amount(asset.CurrentValue),
        "notes": asset.Notes,
        "imageUrl": asset.ImageUrl,
        "isActive": bool(asset.IsActive),
        "createdById": asset.CreatedByID,
        "lastModifiedById": asset.LastModifiedByID,
        "createdAt": asset.CreatedAt,
        "updatedAt": asset.UpdatedAt,
    }
    if asset.Client is not None:
        payload["client"] = {"name": asset.Client.Name, "code": asset.Client.Code, "isActive": bool(asset.Client.IsActive)}
    if asset.Location is not None:
        payload["location"] = {"id": asset.Location.LocationID, "name": asset.Location.Name}
    if transaction_count is not None:
        payload["transactionCount"] = transaction_count
    return payload


def _transaction_counts(db: Session, asset_ids: list[int]) -> dict[int, int]:
    if not asset_ids:
        return {}
    rows = db.execute(
        select(AssetTransaction.AssetID, func.count(AssetTransaction.TransactionID))
        .where(AssetTransaction.AssetID.in_(asset_ids))
        .group_by(AssetTransaction.AssetID)
    ).all()
    return {asset_id: int(count) for asset_id, count in rows}


def list_assets(
    db: Session,
    *,
    search: str | None = None,
    category: str | None = None,
    status: str | None = None,
    condition: str | None = None,
    client_id: int | None = None,
    location_id: int | None = None,
    manufacturer: str | None = None,
    min_price: float | None = None,
    max_price: float | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
    page: int = 1,
    limit: int = 10,
) -> dict[str, Any]:
    filters = []
    if search:
        pattern = f"%{search.strip()}%"
        filters.append(
            or_(
                Asset.Name.ilike(pattern),
                Asset.Description.ilike(pattern),
                Asset.AssetNumber.ilike(pattern),
                Asset.SerialNumber.ilike(pattern),
                Asset.Barcode.ilike(pattern),
                Asset.Manufacturer.ilike(pattern),
                Asset.Model.ilike(pattern),
            )
        )
    if category:
        filters.append(Asset.Category == category.strip().upper())
    if status:
        filters.append(Asset.Status == status)
    if condition:
        filters.append(Asset.Condition == condition)
    if client_id:
        filters.append(Asset.ClientID == client_id)
    if location_id:
        filters.append(Asset.LocationID == location_id)
    if manufacturer:
        filters.append(Asset.Manufacturer.ilike(f"%{manufacturer.strip()}%"))
    if min_price is not None:
        filters.append(Asset.PurchasePrice >= min_price)
    if max_price is not None:
        filters.append(Asset.PurchasePrice <= max_price)
    if start_date:
        filters.append(Asset.PurchaseDate >= start_date)
    if end_date:
        filters.append(Asset.PurchaseDate <= end_date)

    page = max(page, 1)
    limit = min(max(limit, 1), 200)
    total = db.execute(select(func.count(Asset.AssetID)).where(*filters)).scalar() or 0
    assets = db.execute(
        select(Asset)
        .options(selectinload(Asset.Client), selectinload(Asset.Location))
        .where(*filters)
        .order_by(Asset.CreatedAt.desc(), Asset.AssetID.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    ).scalars().all()
    counts = _transaction_counts(db, [asset.AssetID for asset in assets])
    return {
        "assets": [serialize_asset(asset, counts.get(asset.AssetID, 0)) for asset in assets],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": int(total),
            "pages": (int(total) + limit - 1) // limit,
        },
    }


def search_assets(db: Session, query: str, limit: int = 10) -> list[dict[str, Any]]:
    """Scanner lookup: exact code matches or a name fragment."""
    term = (query or "").strip()
    if not term:
        raise ValueError("Search query is required")
    conditions = [
        Asset.AssetNumber == term.upper(),
        Asset.Barcode == term,
        Asset.SerialNumber == term,
        Asset.Name.ilike(f"%{term}%"),
    ]
    if term.isdigit():
        conditions.append(Asset.AssetID == int(term))
    assets = db.execute(
        select(Asset)
        .options(selectinload(Asset.Client), selectinload(Asset.Location))
        .where(or_(*conditions))
        .order_by(Asset.Name, Asset.AssetID)
        .limit(limit)
    ).scalars().all()
    counts = _transaction_counts(db, [asset.AssetID for asset in assets])
    return [serialize_asset(asset, counts.get(asset.AssetID, 0)) for asset in assets]


def get_asset(db: Session, asset_id: int) -> Asset:
    asset = db.get(Asset, asset_id)
    if not asset:
        raise LookupError("Asset not found")
    return asset


def _ensure_unique(db: Session, column, value: Any, label: str, exclude_asset_id: int | None = None) -> None:
    if value in (None, ""):
        return
    stmt = select(Asset.AssetID).where(column == value)
    if exclude_asset_id is not None:
        stmt = stmt.where(Asset.AssetID != exclude_asset_id)
    if db.execute(stmt).first() is not None:
        raise ValueError(f"Asset with this {label} already exists")


def _apply_asset_fields(db: Session, asset: Asset, data: dict[str, Any]) -> None:
    for field, column in ASSET_FIELDS.items():
        if field not in data:
            continue
        value = data[field]
        if isinstance(value, str):
            value = value.strip() or None
        setattr(asset, column, value)
    if "status" in data and data["status"]:
        if data["status"] not in ASSET_STATUSES:
            raise ValueError(f"Invalid asset status: {data['status']}")
        asset.Status = data["status"]
    if "condition" in data and data["condition"]:
        if data["condition"] not in ASSET_CONDITIONS:
            raise ValueError(f"Invalid asset condition: {data['condition']}")
        asset.Condition = data["condition"]
    if asset.LocationID is not None and not db.get(Location, asset.LocationID):
        raise ValueError("Invalid location selected")


def _load_client(db: Session, client_id: Any) -> Client:
    client = db.get(Client, int(client_id)) if client_id else None
    if not client:
        raise ValueError("Invalid client selected")
    return client


def create_asset(db: Session, data: dict[str, Any], user_id: int | None) -> Asset:
    name = (data.get("name") or "").strip()
    category = (data.get("category") or "").strip().upper()
    if not name or not category or not data.get("clientId"):
        raise ValueError("Name, category, and client are required")
    client = _load_client(db, data["clientId"])
    resolve_type_code(db, category)

    _ensure_unique(db, Asset.SerialNumber, data.get("serialNumber"), "serial number")
    _ensure_unique(db, Asset.Barcode, data.get("barcode"), "barcode")

    now = datetime.now()
    asset = Asset(
        Category=category,
        ClientID=client.ClientID,
        Status="AVAILABLE",
        Condition="GOOD",
        IsActive=True,
        CreatedByID=user_id,
        LastModifiedByID=user_id,
        CreatedAt=now,
        UpdatedAt=now,
    )
    _apply_asset_fields(db, asset, data)

    requested_number = (data.get("assetNumber") or "").strip().upper()
    if not requested_number:
        return create_asset_with_number(db, asset, client.Code, category)

    if not is_valid_asset_number(requested_number):
        raise ValueError("Asset number must look like CLIENT-CAT-0001")
    _ensure_unique(db, Asset.AssetNumber, requested_number, "asset number")
    asset.AssetNumber = requested_number
    db.add(asset)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise AssetNumberConflictError("Asset with this asset number already exists") from exc
    db.refresh(asset)
    return asset


def update_asset(db: Session, asset_id: int, data: dict[str, Any], user_id: int | None) -> Asset:
    """Partial update; a client or category change re-numbers the asset
    unless an explicit asset number is supplied."""
    asset = get_asset(db, asset_id)

    if "serialNumber" in data:
        _ensure_unique(db, Asset.SerialNumber, data.get("serialNumber"), "serial number", asset.AssetID)
    if "barcode" in data:
        _ensure_unique(db, Asset.Barcode, data.get("barcode"), "barcode", asset.AssetID)

    renumber = False
    if data.get("clientId") and int(data["clientId"]) != asset.ClientID:
        asset.ClientID = _load_client(db, data["clientId"]).ClientID
        renumber = True
    if data.get("category") and data["category"].strip().upper() != asset.Category:
        asset.Category = data["category"].strip().upper()
        resolve_type_code(db, asset.Category)
        renumber = True

    _apply_asset_fields(db, asset, data)
    if "name" in data and not asset.Name:
        raise ValueError("Name is required")

    requested_number = (data.get("assetNumber") or "").strip().upper()
    if requested_number and requested_number != asset.AssetNumber:
        if not is_valid_asset_number(requested_number):
            raise ValueError("Asset number must look like CLIENT-CAT-0001")
        _ensure_unique(db, Asset.AssetNumber, requested_number, "asset number", asset.AssetID)
        asset.AssetNumber = requested_number
    elif renumber or not asset.AssetNumber:
        client = db.get(Client, asset.ClientID) if asset.ClientID else None
        if client:
            asset.AssetNumber = allocate_asset_number(db, client.Code, asset.Category, exclude_asset_id=asset.AssetID)

    asset.LastModifiedByID = user_id
    asset.UpdatedAt = datetime.now()
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise AssetNumberConflictError("Asset number, serial number or barcode already in use") from exc
    db.refresh(asset)
    return asset


def delete_asset(db: Session, asset_id: int, user_id: int | None) -> str:
    """Delete an asset, or retire and deactivate it when it has history."""
    asset = get_asset(db, asset_id)
    active = db.execute(
        select(func.count(AssetTransaction.TransactionID))
        .where(AssetTransaction.AssetID == asset_id)
        .where(AssetTransaction.Status.in_(("ACTIVE", "OVERDUE")))
    ).scalar() or 0
    if active:
        raise ValueError("Cannot delete asset with active transactions")

    history = sum(
        db.execute(stmt).scalar() or 0
        for stmt in (
            select(func.count(AssetTransaction.TransactionID)).where(AssetTransaction.AssetID == asset_id),
            select(func.count(MaintenanceRecord.MaintenanceID)).where(MaintenanceRecord.AssetID == asset_id),
            select(func.count(PresetItem.PresetItemID)).where(PresetItem.AssetID == asset_id),
            select(func.count(PresetItemSubstitution.SubstitutionID)).where(
                PresetItemSubstitution.SubstituteAssetID == asset_id
            ),
        )
    )
    if history:
        asset.Status = "RETIRED"
        asset.IsActive = False
        asset.LastModifiedByID = user_id
        asset.UpdatedAt = datetime.now()
        db.commit()
        return "retired"

    db.delete(asset)
    db.commit()
    return "deleted"


MAX_IMPORT_ROWS = 500
MAX_BULK_ASSETS = 200

# Normalised spreadsheet header -> asset field.
IMPORT_HEADER_VARIATIONS = {
    "name": ("name", "assetname", "itemname", "title", "asset", "item"),
    "description": ("description", "desc", "details", "info"),
    "category": ("category", "type", "class", "group", "cat"),
    "client": ("client", "clientcode", "owner"),
    "manufacturer": ("manufacturer", "make", "brand", "mfg", "maker"),
    "model": ("model", "modelno", "modelnumber", "version"),
    "serialNumber": ("serialnumber", "serial", "sn", "serialno", "serialnum"),
    "barcode": ("barcode", "code", "itemid"),
    "location": ("location", "room", "place", "site"),
    "purchaseDate": ("purchasedate", "dateofpurchase", "bought", "acquired"),
    "purchasePrice": ("purchaseprice", "price", "cost", "amount"),
    "currentValue": ("currentvalue", "presentvalue", "worth", "marketvalue", "value"),
    "condition": ("condition", "quality"),
    "status": ("status", "availability", "state"),
    "notes": ("notes", "comments", "remarks", "memo", "note"),
}


def _normalize_header(header: Any) -> str:
    return re.sub(r"[^a-z0-9]", "", str(header or "").lower())


def _map_import_row(row: dict[str, Any]) -> dict[str, Any]:
    by_header = {_normalize_header(key): value for key, value in row.items()}
    mapped: dict[str, Any] = {}
    for field, variations in IMPORT_HEADER_VARIATIONS.items():
        for variation in variations:
            value = by_header.get(variation)
            if value is not None and str(value).strip() != "":
                mapped[field] = value.strip() if isinstance(value, str) else value
                break
    return mapped


def _import_amount(value: Any) -> float | None:
    if value is None:
        return None
    try:
        return float(str(value).replace(",", "").replace("$", ""))
    except ValueError:
        return None


def _import_date(value: Any) -> date | None:
    if value is None:
        return None
    if isinstance(value, (int, float)):
        # Spreadsheet serial day numbers.
        return date(1899, 12, 30) + timedelta(days=int(value))
    text = str(value).strip()
    try:
        return datetime.fromisoformat(text).date()
    except ValueError:
        return None


def _import_choice(value: Any, choices: tuple[str, ...], default: str) -> str:
    normalized = re.sub(r"\s+", "_", str(value or "").strip().upper())
    return normalized if normalized in choices else default


def parse_import_csv(text: str) -> list[dict[str, Any]]:
    return list(csv.DictReader(io.StringIO(text)))


def import_assets(db: Session, rows: list[dict[str, Any]], client_id: int | None, user_id: int | None) -> dict[str, Any]:
    """Create assets from spreadsheet-like rows, one unit of work per row.

    Headers are matched loosely (``Asset Name``, ``serial no`` ...). Unknown
    categories fall back to OTHER, unknown statuses and conditions to their
    defaults. A row may name its client by code; otherwise ``client_id`` is used.
    Rows that fail are reported and skipped.
    """
    if not rows:
        raise ValueError("Import needs a header row and at least one data row")
    if len(rows) > MAX_IMPORT_ROWS:
        raise ValueError(f"Maximum {MAX_IMPORT_ROWS} rows allowed per import")
    if not any(_normalize_header(key) in IMPORT_HEADER_VARIATIONS["name"] for key in rows[0]):
        raise ValueError('Missing required column: "name"')
    default_client = _load_client(db, client_id) if client_id else None

    results: dict[str, Any] = {"total": len(rows), "successful": 0, "failed": 0, "errors": [], "assets": []}
    for index, raw in enumerate(rows):
        row_number = index + 2
        data = _map_import_row(raw)
        try:
            name = str(data.get("name") or "").strip()
            if not name:
                raise ValueError("Asset name is required")
            if db.execute(select(Asset.AssetID).where(Asset.Name == name)).first() is not None:
                raise ValueError(f'Asset with name "{name}" already exists')

            client = default_client
            if data.get("client"):
                code = str(data["client"]).strip().upper()
                client = db.execute(select(Client).where(Client.Code == code)).scalars().first()
                if client is None:
                    raise ValueError(f"Unknown client code {code}")
            if client is None:
                raise ValueError("Client is required")

            category = str(data.get("category") or "OTHER").strip().upper()
            try:
                resolve_type_code(db, category)
            except InvalidCategoryError:
                category = "OTHER"

            location_id = None
            if data.get("location"):
                location = db.execute(
                    select(Location).where(func.lower(Location.Name) == str(data["location"]).lower())
                ).scalars().first()
                location_id = location.LocationID if location else None

            _ensure_unique(db, Asset.SerialNumber, data.get("serialNumber"), "serial number")
            _ensure_unique(db, Asset.Barcode, data.get("barcode"), "barcode")

            now = datetime.now()
            asset = Asset(
                Name=name,
                Description=data.get("description"),
                Category=category,
                ClientID=client.ClientID,
                LocationID=location_id,
                Manufacturer=data.get("manufacturer"),
                Model=data.get("model"),
                SerialNumber=data.get("serialNumber"),
                Barcode=data.get("barcode"),
                PurchaseDate=_import_date(data.get("purchaseDate")),
                PurchasePrice=_import_amount(data.get("purchasePrice")),
                CurrentValue=_import_amount(data.get("currentValue")),
                Condition=_import_choice(data.get("condition"), ASSET_CONDITIONS, "GOOD"),
                Status=_import_choice(data.get("status"), IMPORTABLE_STATUSES, "AVAILABLE"),
                Notes=data.get("notes"),
                IsActive=True,
                CreatedByID=user_id,
                LastModifiedByID=user_id,
                CreatedAt=now,
                UpdatedAt=now,
            )
            create_asset_with_number(db, asset, client.Code, category)
        except (ValueError, AssetNumberError) as exc:
            db.rollback()
            LOGGER.warning("Import row %s failed: %s", row_number, exc)
            results["failed"] += 1
            results["errors"].append(f"Row {row_number}: {exc}")
            continue
        results["successful"] += 1
        results["assets"].append({"row": row_number, "id": asset.AssetID, "assetNumber": asset.AssetNumber})
    LOGGER.info("Imported assets successful=%s failed=%s", results["successful"], results["failed"])
    return results


def _load_assets_for_bulk(db: Session, asset_ids: list[int]) -> list[Asset]:
    if not asset_ids:
        raise ValueError("Asset IDs are required")
    if len(asset_ids) > MAX_BULK_ASSETS:
        raise ValueError(f"Maximum {MAX_BULK_ASSETS} assets allowed per bulk action")
    unique_ids = list(dict.fromkeys(int(asset_id) for asset_id in asset_ids))
    assets = db.execute(select(Asset).where(Asset.AssetID.in_(unique_ids))).scalars().all()
    if len(assets) != len(unique_ids):
        raise LookupError("Some assets not found")
    return assets


def _assets_with_open_checkouts(db: Session, asset_ids: list[int]) -> list[str]:
    return list(
        db.execute(
            select(Asset.Name)
            .join(AssetTransaction, AssetTransaction.AssetID == Asset.AssetID)
            .where(Asset.AssetID.in_(asset_ids))
            .where(AssetTransaction.Type == "CHECK_OUT")
            .where(AssetTransaction.Status.in_(("ACTIVE", "OVERDUE")))
            .distinct()
        ).scalars().all()
    )


def bulk_change_status(db: Session, asset_ids: list[int], status: str | None, user_id: int | None) -> dict[str, Any]:
    """Set one status on many assets. Check-outs go through transactions instead."""
    if status not in BULK_SETTABLE_STATUSES:
        raise ValueError("Valid status is required")
    assets = _load_assets_for_bulk(db, asset_ids)
    busy = _assets_with_open_checkouts(db, [asset.AssetID for asset in assets])
    if busy:
        raise ValueError(f"Assets with active transactions must be checked in first: {', '.join(sorted(busy))}")
    now = datetime.now()
    for asset in assets:
        asset.Status = status
        asset.LastModifiedByID = user_id
        asset.UpdatedAt = now
    db.commit()
    LOGGER.info("Bulk status change status=%s count=%s", status, len(assets))
    return {
        "success": True,
        "message": f"Updated {len(assets)} assets to {status}",
        "affectedCount": len(assets),
    }


def bulk_delete_assets(db: Session, asset_ids: list[int], user_id: int | None) -> dict[str, Any]:
    """Delete many assets; those with history are retired like single deletes."""
    assets = _load_assets_for_bulk(db, asset_ids)
    busy = _assets_with_open_checkouts(db, [asset.AssetID for asset in assets])
    if busy:
        raise ValueError(f"Cannot delete assets with active transactions: {', '.join(sorted(busy))}")
    outcomes = {"deleted": 0, "retired": 0}
    for asset_id in [asset.AssetID for asset in assets]:
        outcomes[delete_asset(db, asset_id, user_id)] += 1
    return {
        "success": True,
        "message": f"Deleted {outcomes['deleted']} assets, retired {outcomes['retired']}",
        "affectedCount": len(assets),
        **outcomes,
    }


EXPORT_COLUMNS = (
    "Asset Number", "Name", "Description", "Category", "Status", "Condition", "Client",
    "Manufacturer", "Model", "Serial Number", "Barcode", "Location", "Purchase Date",
    "Purchase Price", "Current Value", "Created Date", "Transaction Count", "Notes",
)


def export_assets_csv(db: Session, asset_ids: list[int] | None = None, **filters: Any) -> str:
    """Render assets as CSV, either an explicit id list or a filtered listing."""
    stmt = select(Asset).options(selectinload(Asset.Client), selectinload(Asset.Location))
    if asset_ids:
        stmt = stmt.where(Asset.AssetID.in_(asset_ids))
    else:
        if filters.get("category"):
            stmt = stmt.where(Asset.Category == filters["category"].strip().upper())
        if filters.get("status"):
            stmt = stmt.where(Asset.Status == filters["status"])
        if filters.get("client_id"):
            stmt = stmt.where(Asset.ClientID == filters["client_id"])
    assets = db.execute(stmt.order_by(Asset.AssetNumber, Asset.AssetID)).scalars().all()
    counts = _transaction_counts(db, [asset.AssetID for asset in assets])

    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(EXPORT_COLUMNS)
    for asset in assets:
        writer.writerow(
            [
                asset.AssetNumber or "",
                asset.Name,
                asset.Description or "",
                asset.Category,
                asset.Status,
                asset.Condition or "",
                asset.Client.Code if asset.Client else "",
                asset.Manufacturer or "",
                asset.Model or "",
                asset.SerialNumber or "",
                asset.Barcode or "",
                asset.Location.Name if asset.Location else "",
                asset.PurchaseDate.isoformat() if asset.PurchaseDate else "",
                _amount(asset.PurchasePrice) if asset.PurchasePrice is not None else "",
                _amount(asset.CurrentValue) if asset.CurrentValue is not None else "",
                asset.CreatedAt.date().isoformat() if asset.CreatedAt else "",
                counts.get(asset.AssetID, 0),
                asset.Notes or "",
            ]
        )
    return buffer.getvalue()
