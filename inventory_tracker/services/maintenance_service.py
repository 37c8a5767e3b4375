from __future__ import annotations

from datetime import date, datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from models.inventory_models import (
    Asset,
    MAINTENANCE_PRIORITIES,
    MAINTENANCE_STATUSES,
    MAINTENANCE_TYPES,
    MaintenanceRecord,
)


def _money(value: Any) -> float:
    if value is None:
        return 0.0
    return float(value)


def serialize_maintenance(record: MaintenanceRecord) -> dict:
    payload = {
        "maintenanceID": record.MaintenanceID,
        "assetID": record.AssetID,
        "type": record.Type,
        "status": record.Status,
        "priority": record.Priority,
        "description": record.Description,
        "scheduledDate": record.ScheduledDate,
        "performedDate": record.PerformedDate,
        "estimatedCost": _money(record.Cost) if record.Cost is not None else None,
        "actualCost": _money(record.ActualCost) if record.ActualCost is not None else None,
        "performedByID": record.PerformedByID,
        "createdByID": record.CreatedByID,
        "notes": record.Notes,
        "completionNotes": record.CompletionNotes,
        "createdAt": record.CreatedAt,
        "updatedAt": record.UpdatedAt,
    }
    if record.Asset is not None:
        payload["asset"] = {
            "id": record.Asset.AssetID,
            "name": record.Asset.Name,
            "assetNumber": record.Asset.AssetNumber,
            "serialNumber": record.Asset.SerialNumber,
            "status": record.Asset.Status,
        }
    return payload


def create_maintenance(db: Session, data: dict[str, Any], created_by_id: int | None) -> MaintenanceRecord:
    asset_id = data.get("assetId")
    record_type = str(data.get("type") or "").strip().upper()
    description = str(data.get("description") or "").strip()
    if not asset_id or not record_type or not description:
        raise ValueError("Asset ID, type, and description are required")
    if record_type not in MAINTENANCE_TYPES:
        raise ValueError(f"Invalid maintenance type: {record_type}")
    priority = str(data.get("priority") or "MEDIUM").strip().upper()
    if priority not in MAINTENANCE_PRIORITIES:
        raise ValueError(f"Invalid maintenance priority: {priority}")

    asset = db.get(Asset, int(asset_id))
    if not asset:
        raise LookupError("Asset not found")

    now = datetime.now()
    record = MaintenanceRecord(
        AssetID=asset.AssetID,
        Type=record_type,
        Status="SCHEDULED",
        Priority=priority,
        Description=description,
        ScheduledDate=data.get("scheduledDate"),
        Cost=data.get("estimatedCost") or None,
        Notes=data.get("notes"),
        CreatedByID=created_by_id,
        CreatedAt=now,
        UpdatedAt=now,
    )
    db.add(record)
    db.commit()
    db.refresh(record)
    return record


def update_maintenance(db: Session, record_id: int, changes: dict[str, Any]) -> MaintenanceRecord:
    """Apply a partial update and move the asset status along with it.

    Completing work on an asset in maintenance makes it available again;
    scheduling or starting work on an available asset puts it in
    maintenance. Both rows are written in one commit.
    """
    record = db.get(MaintenanceRecord, record_id)
    if not record:
        raise LookupError("Maintenance record not found")

    status = changes.get("status")
    if status is not None:
        status = str(status).strip().upper()
        if status not in MAINTENANCE_STATUSES:
            raise ValueError(f"Invalid maintenance status: {status}")
        record.Status = status
    if changes.get("priority"):
        priority = str(changes["priority"]).strip().upper()
        if priority not in MAINTENANCE_PRIORITIES:
            raise ValueError(f"Invalid maintenance priority: {priority}")
        record.Priority = priority
    if changes.get("performedDate"):
        record.PerformedDate = changes["performedDate"]
    if "actualCost" in changes:
        record.ActualCost = changes["actualCost"]
    if changes.get("performedById"):
        record.PerformedByID = changes["performedById"]
    if "notes" in changes:
        record.Notes = changes["notes"]
    if "completionNotes" in changes:
        record.CompletionNotes = changes["completionNotes"]

    if status == "COMPLETED" and not record.PerformedDate:
        record.PerformedDate = date.today()

    now = datetime.now()
    record.UpdatedAt = now
    asset = db.get(Asset, record.AssetID)
    if asset is not None:
        if status == "COMPLETED" and asset.Status == "IN_MAINTENANCE":
            asset.Status = "AVAILABLE"
            asset.UpdatedAt = now
        elif status in ("SCHEDULED", "IN_PROGRESS") and asset.Status == "AVAILABLE":
            asset.Status = "IN_MAINTENANCE"
            asset.UpdatedAt = now

    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise
    db.refresh(record)
    return record


def get_maintenance(db: Session, record_id: int) -> MaintenanceRecord:
    record = db.get(MaintenanceRecord, record_id)
    if not record:
        raise LookupError("Maintenance record not found")
    return record


def delete_maintenance(db: Session, record_id: int) -> None:
    record = db.get(MaintenanceRecord, record_id)
    if not record:
        raise LookupError("Maintenance record not found")
    db.delete(record)
    db.commit()


def list_maintenance(
    db: Session,
    *,
    status: str | None = None,
    asset_id: int | None = None,
    record_type: str | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
) -> list[MaintenanceRecord]:
    stmt = select(MaintenanceRecord).options(selectinload(MaintenanceRecord.Asset))
    if status:
        stmt = stmt.where(MaintenanceRecord.Status == status)
    if asset_id:
        stmt = stmt.where(MaintenanceRecord.AssetID == asset_id)
    if record_type:
        stmt = stmt.where(MaintenanceRecord.Type == record_type)
    if start_date:
        stmt = stmt.where(MaintenanceRecord.ScheduledDate >= start_date)
    if end_date:
        stmt = stmt.where(MaintenanceRecord.ScheduledDate <= end_date)
    stmt = stmt.order_by(MaintenanceRecord.ScheduledDate.desc(), MaintenanceRecord.MaintenanceID.desc())
    return list(db.execute(stmt).scalars().all())


def maintenance_report(db: Session, **filters: Any) -> dict:
    records = list_maintenance(db, **filters)
    today = date.today()
    estimated = sum(_money(record.Cost) for record in records)
    actual = sum(_money(record.ActualCost) for record in records)
    return {
        "maintenanceRecords": [serialize_maintenance(record) for record in records],
        "summary": {
            "total": len(records),
            "scheduled": sum(1 for record in records if record.Status == "SCHEDULED"),
            "inProgress": sum(1 for record in records if record.Status == "IN_PROGRESS"),
            "completed": sum(1 for record in records if record.Status == "COMPLETED"),
            "overdue": sum(
                1
                for record in records
                if record.Status == "SCHEDULED" and record.ScheduledDate and record.ScheduledDate < today
            ),
            "totalEstimatedCost": round(estimated, 2),
            "totalActualCost": round(actual, 2),
            "costVariance": round(actual - estimated, 2),
        },
    }
