from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from models.inventory_models import Asset, AssetTransaction, User


LOGGER = logging.getLogger("inventory_tracker.transactions")

MAX_BULK_ITEMS = 50
OPEN_CHECKOUT_STATUSES = ("ACTIVE", "OVERDUE")


class TransactionError(ValueError):
    pass


class AssetNotFoundError(LookupError):
    pass


def _status_label(status: str | None) -> str:
    return (status or "unknown").lower().replace("_", " ")


def _open_checkout(db: Session, asset_id: int) -> AssetTransaction | None:
    return db.execute(
        select(AssetTransaction)
        .where(AssetTransaction.AssetID == asset_id)
        .where(AssetTransaction.Type == "CHECK_OUT")
        .where(AssetTransaction.Status.in_(OPEN_CHECKOUT_STATUSES))
        .order_by(AssetTransaction.CheckOutDate.desc(), AssetTransaction.TransactionID.desc())
    ).scalars().first()


def _load_asset(db: Session, asset_id: int) -> Asset:
    asset = db.get(Asset, asset_id)
    if not asset:
        raise AssetNotFoundError(f"Asset not found: {asset_id}")
    return asset


def serialize_transaction(row: AssetTransaction) -> dict:
    payload = {
        "transactionID": row.TransactionID,
        "assetID": row.AssetID,
        "userID": row.UserID,
        "type": row.Type,
        "status": row.Status,
        "checkOutDate": row.CheckOutDate,
        "expectedReturnDate": row.ExpectedReturnDate,
        "actualReturnDate": row.ActualReturnDate,
        "notes": row.Notes,
        "presetCheckoutID": row.PresetCheckoutID,
        "createdAt": row.CreatedAt,
    }
    if row.Asset is not None:
        payload["asset"] = {
            "id": row.Asset.AssetID,
            "name": row.Asset.Name,
            "assetNumber": row.Asset.AssetNumber,
            "serialNumber": row.Asset.SerialNumber,
            "category": row.Asset.Category,
            "status": row.Asset.Status,
        }
    if row.User is not None:
        payload["user"] = {"name": row.User.Name, "email": row.User.Email}
    return payload


def _stage_check_out(
    db: Session,
    asset: Asset,
    user_id: int,
    actor_id: int | None,
    expected_return_date: datetime | None,
    notes: str | None,
) -> AssetTransaction:
    if asset.Status != "AVAILABLE":
        raise TransactionError(
            f'Asset "{asset.Name}" is {_status_label(asset.Status)} and cannot be checked out'
        )
    if _open_checkout(db, asset.AssetID):
        raise TransactionError("Asset is already checked out")

    now = datetime.now()
    row = AssetTransaction(
        AssetID=asset.AssetID,
        UserID=user_id,
        Type="CHECK_OUT",
        Status="ACTIVE",
        CheckOutDate=now,
        ExpectedReturnDate=expected_return_date,
        Notes=notes,
        CreatedAt=now,
        UpdatedAt=now,
    )
    db.add(row)
    asset.Status = "CHECKED_OUT"
    asset.LastModifiedByID = actor_id or user_id
    asset.UpdatedAt = now
    return row


def _stage_check_in(db: Session, asset: Asset, user_id: int, notes: str | None) -> AssetTransaction:
    open_row = _open_checkout(db, asset.AssetID)
    if not open_row:
        raise TransactionError(f'No active check-out found for asset "{asset.Name}"')

    now = datetime.now()
    open_row.Status = "COMPLETED"
    open_row.ActualReturnDate = now
    open_row.UpdatedAt = now
    if notes:
        open_row.Notes = f"{open_row.Notes}\n\nReturn notes: {notes}" if open_row.Notes else f"Return notes: {notes}"

    row = AssetTransaction(
        AssetID=asset.AssetID,
        UserID=user_id,
        Type="CHECK_IN",
        Status="COMPLETED",
        CheckOutDate=open_row.CheckOutDate,
        ActualReturnDate=now,
        Notes=notes,
        PresetCheckoutID=open_row.PresetCheckoutID,
        CreatedAt=now,
        UpdatedAt=now,
    )
    db.add(row)
    asset.Status = "AVAILABLE"
    asset.LastModifiedByID = user_id
    asset.UpdatedAt = now
    return row


def _commit_or_raise(db: Session, action: str, asset_id: int) -> None:
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        LOGGER.exception("%s failed asset_id=%s", action, asset_id)
        raise TransactionError(f"Failed to record {action.lower().replace('_', '-')}") from exc


def check_out_asset(
    db: Session,
    asset_id: int,
    user_id: int,
    expected_return_date: datetime | None = None,
    notes: str | None = None,
    actor_id: int | None = None,
) -> AssetTransaction:
    asset = _load_asset(db, asset_id)
    row = _stage_check_out(db, asset, user_id, actor_id, expected_return_date, notes)
    _commit_or_raise(db, "CHECK_OUT", asset_id)
    db.refresh(row)
    LOGGER.info("Checked out asset_id=%s user_id=%s", asset_id, user_id)
    return row


def check_in_asset(db: Session, asset_id: int, user_id: int, notes: str | None = None) -> AssetTransaction:
    asset = _load_asset(db, asset_id)
    row = _stage_check_in(db, asset, user_id, notes)
    _commit_or_raise(db, "CHECK_IN", asset_id)
    db.refresh(row)
    LOGGER.info("Checked in asset_id=%s user_id=%s", asset_id, user_id)
    return row


def run_bulk_transactions(db: Session, action: str, items: list[dict[str, Any]], user_id: int) -> dict:
    """Apply one action to many assets, each in its own unit of work.

    A failing item is rolled back on its own and reported; earlier and later
    items are unaffected.
    """
    if action not in ("CHECK_OUT", "CHECK_IN"):
        raise TransactionError("Invalid request data")
    if not items:
        raise TransactionError("Invalid request data")
    if len(items) > MAX_BULK_ITEMS:
        raise TransactionError(f"Maximum {MAX_BULK_ITEMS} items allowed per batch")

    results: list[dict[str, Any]] = []
    errors: list[str] = []
    processed = 0
    for item in items:
        asset_id = item.get("assetId")
        try:
            asset = _load_asset(db, int(asset_id))
            if action == "CHECK_OUT":
                row = _stage_check_out(
                    db,
                    asset,
                    int(item.get("assignedUserId") or user_id),
                    user_id,
                    item.get("expectedReturnDate"),
                    item.get("notes"),
                )
            else:
                if asset.Status != "CHECKED_OUT":
                    raise TransactionError(
                        f'Asset "{asset.Name}" is {_status_label(asset.Status)} and cannot be checked in'
                    )
                row = _stage_check_in(db, asset, user_id, item.get("notes"))
            db.commit()
        except (AssetNotFoundError, TransactionError, TypeError, ValueError, SQLAlchemyError) as exc:
            db.rollback()
            LOGGER.warning("Bulk %s failed asset_id=%s error=%s", action, asset_id, exc)
            errors.append(f"{asset_id}: {exc}")
            results.append({"assetId": asset_id, "action": action, "status": "error", "error": str(exc)})
            continue
        processed += 1
        results.append(
            {"assetId": asset_id, "transactionId": row.TransactionID, "action": action, "status": "success"}
        )

    return {
        "processed": processed,
        "total": len(items),
        "errors": errors,
        "results": results,
        "success": processed > 0,
    }


def mark_overdue_transactions(db: Session, now: datetime | None = None) -> int:
    current = now or datetime.now()
    rows = db.execute(
        select(AssetTransaction)
        .where(AssetTransaction.Type == "CHECK_OUT")
        .where(AssetTransaction.Status == "ACTIVE")
        .where(AssetTransaction.ExpectedReturnDate.is_not(None))
        .where(AssetTransaction.ExpectedReturnDate < current)
    ).scalars().all()
    for row in rows:
        row.Status = "OVERDUE"
        row.UpdatedAt = current
    if rows:
        db.commit()
        LOGGER.info("Marked %s transactions overdue", len(rows))
    return len(rows)


def _open_checkouts_for_user(db: Session, user_id: int) -> list[AssetTransaction]:
    return db.execute(
        select(AssetTransaction)
        .options(selectinload(AssetTransaction.Asset))
        .where(AssetTransaction.UserID == user_id)
        .where(AssetTransaction.Type == "CHECK_OUT")
        .where(AssetTransaction.Status.in_(OPEN_CHECKOUT_STATUSES))
        .order_by(AssetTransaction.CreatedAt.desc(), AssetTransaction.TransactionID.desc())
    ).scalars().all()


def list_user_checkouts(db: Session, user_id: int) -> dict:
    if not db.get(User, user_id):
        raise LookupError("User not found")
    rows = _open_checkouts_for_user(db, user_id)
    return {"activeTransactions": [serialize_transaction(row) for row in rows], "count": len(rows)}


def transfer_checkouts(db: Session, from_user_id: int, to_user_id: int | None) -> dict:
    """Hand every open check-out of one user over to another active user."""
    if not to_user_id:
        raise TransactionError("Target user ID is required")
    from_user = db.get(User, from_user_id)
    if not from_user:
        raise LookupError("Source user not found")
    to_user = db.get(User, to_user_id)
    if not to_user:
        raise LookupError("Target user not found")
    if from_user.UserID == to_user.UserID:
        raise TransactionError("Source and target user are the same")
    if not to_user.IsActive:
        raise TransactionError("Cannot transfer to inactive user")

    rows = _open_checkouts_for_user(db, from_user_id)
    if not rows:
        raise TransactionError("No active transactions to transfer")

    now = datetime.now()
    marker = f"[Transferred from {from_user.Name or from_user.Email} on {now.date().isoformat()}]"
    for row in rows:
        row.UserID = to_user.UserID
        row.Notes = f"{row.Notes} {marker}" if row.Notes else marker
        row.UpdatedAt = now
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        LOGGER.exception("Transfer failed from_user=%s to_user=%s", from_user_id, to_user_id)
        raise TransactionError("Failed to transfer transactions") from exc
    LOGGER.info("Transferred %s checkouts from_user=%s to_user=%s", len(rows), from_user_id, to_user_id)
    return {
        "message": f"Successfully transferred {len(rows)} checked-out items",
        "transferredCount": len(rows),
        "fromUser": {"id": from_user.UserID, "name": from_user.Name, "email": from_user.Email},
        "toUser": {"id": to_user.UserID, "name": to_user.Name, "email": to_user.Email},
        "transferredAssets": [
            {"id": row.Asset.AssetID, "name": row.Asset.Name, "serialNumber": row.Asset.SerialNumber}
            for row in rows
        ],
    }


def list_transactions(
    db: Session,
    *,
    asset_id: int | None = None,
    status: str | None = None,
    kind: str | None = None,
    page: int = 1,
    limit: int = 20,
) -> dict[str, Any]:
    filters = []
    if asset_id:
        filters.append(AssetTransaction.AssetID == asset_id)
    if status:
        filters.append(AssetTransaction.Status == status)
    if kind:
        filters.append(AssetTransaction.Type == kind)

    page = max(page, 1)
    limit = min(max(limit, 1), 200)
    total = db.execute(select(func.count(AssetTransaction.TransactionID)).where(*filters)).scalar() or 0
    rows = db.execute(
        select(AssetTransaction)
        .options(selectinload(AssetTransaction.Asset), selectinload(AssetTransaction.User))
        .where(*filters)
        .order_by(AssetTransaction.CreatedAt.desc(), AssetTransaction.TransactionID.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    ).scalars().all()
    return {
        "transactions": [serialize_transaction(row) for row in rows],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": int(total),
            "pages": (int(total) + limit - 1) // limit,
        },
    }
