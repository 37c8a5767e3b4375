from __future__ import annotations

from datetime import date, datetime, time, timedelta

from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from models.inventory_models import Asset, AssetTransaction, Client, MaintenanceRecord, User
from services.transaction_service import serialize_transaction


def _label(value: str | None) -> str:
    return (value or "").lower().replace("_", " ")


def _amount(value) -> float:
    return float(value) if value is not None else 0.0


def _day_bounds(start: date | None, end: date | None) -> tuple[datetime | None, datetime | None]:
    start_at = datetime.combine(start, time.min) if start else None
    end_at = datetime.combine(end, time.max) if end else None
    return start_at, end_at


def dashboard_stats(db: Session) -> dict:
    by_status = dict(
        db.execute(select(Asset.Status, func.count(Asset.AssetID)).group_by(Asset.Status)).all()
    )
    by_transaction_status = dict(
        db.execute(
            select(AssetTransaction.Status, func.count(AssetTransaction.TransactionID))
            .where(AssetTransaction.Status.in_(("ACTIVE", "OVERDUE")))
            .group_by(AssetTransaction.Status)
        ).all()
    )
    return {
        "totalAssets": int(sum(by_status.values())),
        "availableAssets": int(by_status.get("AVAILABLE", 0)),
        "checkedOutAssets": int(by_status.get("CHECKED_OUT", 0)),
        "maintenanceAssets": int(by_status.get("IN_MAINTENANCE", 0)),
        "activeTransactions": int(by_transaction_status.get("ACTIVE", 0)),
        "overdueTransactions": int(by_transaction_status.get("OVERDUE", 0)),
    }


def analytics_report(db: Session, start_date: date | None = None, end_date: date | None = None) -> dict:
    now = datetime.now()
    start_at, end_at = _day_bounds(start_date, end_date)
    start_at = start_at or now - timedelta(days=30)
    end_at = end_at or now
    in_range = (AssetTransaction.CreatedAt >= start_at, AssetTransaction.CreatedAt <= end_at)

    total_assets = db.execute(select(func.count(Asset.AssetID))).scalar() or 0
    by_category = db.execute(
        select(
            Asset.Category,
            func.count(Asset.AssetID),
            func.sum(Asset.CurrentValue),
            func.sum(Asset.PurchasePrice),
        )
        .group_by(Asset.Category)
        .order_by(Asset.Category)
    ).all()
    by_status = db.execute(
        select(Asset.Status, func.count(Asset.AssetID)).group_by(Asset.Status).order_by(Asset.Status)
    ).all()
    by_condition = db.execute(
        select(Asset.Condition, func.count(Asset.AssetID)).group_by(Asset.Condition).order_by(Asset.Condition)
    ).all()
    current_total, purchase_total = db.execute(
        select(func.sum(Asset.CurrentValue), func.sum(Asset.PurchasePrice))
    ).one()
    recent_transactions = db.execute(
        select(func.count(AssetTransaction.TransactionID)).where(*in_range)
    ).scalar() or 0
    maintenance_by_status = db.execute(
        select(MaintenanceRecord.Status, func.count(MaintenanceRecord.MaintenanceID), func.sum(MaintenanceRecord.Cost))
        .group_by(MaintenanceRecord.Status)
        .order_by(MaintenanceRecord.Status)
    ).all()
    by_type = db.execute(
        select(AssetTransaction.Type, func.count(AssetTransaction.TransactionID))
        .where(*in_range)
        .group_by(AssetTransaction.Type)
        .order_by(AssetTransaction.Type)
    ).all()
    top_users = db.execute(
        select(User.UserID, User.Name, User.Email, func.count(AssetTransaction.TransactionID).label("total"))
        .join(User, User.UserID == AssetTransaction.UserID)
        .where(*in_range)
        .group_by(User.UserID, User.Name, User.Email)
        .order_by(func.count(AssetTransaction.TransactionID).desc(), User.UserID)
        .limit(5)
    ).all()

    trends = []
    for offset in range(6, -1, -1):
        day = (now - timedelta(days=offset)).date()
        day_start, day_end = _day_bounds(day, day)
        count = db.execute(
            select(func.count(AssetTransaction.TransactionID))
            .where(AssetTransaction.CreatedAt >= day_start)
            .where(AssetTransaction.CreatedAt <= day_end)
        ).scalar() or 0
        trends.append({"date": day.isoformat(), "transactions": int(count)})

    status_counts = {status: int(count) for status, count in by_status}
    utilization = (100 * status_counts.get("CHECKED_OUT", 0) / total_assets) if total_assets else 0.0
    maintenance_cost = sum(_amount(cost) for _, _, cost in maintenance_by_status)
    cost_per_asset = maintenance_cost / total_assets if total_assets else 0.0

    return {
        "overview": {
            "totalAssets": int(total_assets),
            "totalValue": _amount(current_total),
            "totalPurchaseValue": _amount(purchase_total),
            "recentTransactions": int(recent_transactions),
            "utilizationRate": round(utilization, 2),
            "maintenanceCostPerAsset": round(cost_per_asset, 2),
        },
        "assets": {
            "byCategory": [
                {"category": category, "count": int(count), "label": _label(category)}
                for category, count, _, _ in by_category
            ],
            "byStatus": [
                {"status": status, "count": count, "label": _label(status)} for status, count in status_counts.items()
            ],
            "byCondition": [
                {"condition": condition, "count": int(count), "label": _label(condition)}
                for condition, count in by_condition
            ],
        },
        "financial": {
            "categoryValues": [
                {
                    "category": category,
                    "currentValue": _amount(current),
                    "purchaseValue": _amount(purchase),
                    "count": int(count),
                    "label": _label(category),
                }
                for category, count, current, purchase in by_category
            ],
            "totalCurrentValue": _amount(current_total),
            "totalPurchaseValue": _amount(purchase_total),
            "depreciation": round(_amount(purchase_total) - _amount(current_total), 2),
        },
        "maintenance": {
            "byStatus": [
                {"status": status, "count": int(count), "cost": _amount(cost), "label": _label(status)}
                for status, count, cost in maintenance_by_status
            ],
            "totalCost": round(maintenance_cost, 2),
            "averageCostPerAsset": round(cost_per_asset, 2),
        },
        "activity": {
            "transactions": [
                {"type": kind, "count": int(count), "label": _label(kind)} for kind, count in by_type
            ],
            "topUsers": [
                {"userId": user_id, "transactionCount": int(total), "userName": name or "Unknown User", "userEmail": email}
                for user_id, name, email, total in top_users
            ],
            "trends": trends,
        },
    }


def client_report(db: Session, client_id: int | None = None) -> dict:
    stmt = select(Client).options(selectinload(Client.Assets)).where(Client.IsActive == True)
    if client_id:
        stmt = stmt.where(Client.ClientID == client_id)
    clients = db.execute(stmt.order_by(Client.Name)).scalars().all()

    status_breakdown = {"available": 0, "checkedOut": 0, "inMaintenance": 0, "retired": 0}
    status_keys = {
        "AVAILABLE": "available",
        "CHECKED_OUT": "checkedOut",
        "IN_MAINTENANCE": "inMaintenance",
        "RETIRED": "retired",
    }
    rows = []
    for client in clients:
        assets = sorted(client.Assets, key=lambda asset: (asset.Category or "", asset.Name or ""))
        categories: dict[str, int] = {}
        statuses: dict[str, int] = {}
        for asset in assets:
            categories[asset.Category] = categories.get(asset.Category, 0) + 1
            statuses[asset.Status] = statuses.get(asset.Status, 0) + 1
            key = status_keys.get(asset.Status)
            if key:
                status_breakdown[key] += 1
        rows.append(
            {
                "clientID": client.ClientID,
                "name": client.Name,
                "code": client.Code,
                "assets": [
                    {
                        "id": asset.AssetID,
                        "name": asset.Name,
                        "assetNumber": asset.AssetNumber,
                        "category": asset.Category,
                        "status": asset.Status,
                        "condition": asset.Condition,
                        "currentValue": _amount(asset.CurrentValue),
                        "purchasePrice": _amount(asset.PurchasePrice),
                    }
                    for asset in assets
                ],
                "stats": {
                    "totalAssets": len(assets),
                    "totalValue": round(sum(_amount(asset.CurrentValue) for asset in assets), 2),
                    "totalPurchaseValue": round(sum(_amount(asset.PurchasePrice) for asset in assets), 2),
                    "categoryBreakdown": categories,
                    "statusBreakdown": statuses,
                },
            }
        )

    return {
        "clients": rows,
        "summary": {
            "totalClients": len(rows),
            "totalAssets": sum(row["stats"]["totalAssets"] for row in rows),
            "totalValue": round(sum(row["stats"]["totalValue"] for row in rows), 2),
            "totalPurchaseValue": round(sum(row["stats"]["totalPurchaseValue"] for row in rows), 2),
            "statusBreakdown": status_breakdown,
        },
    }


def transaction_report(
    db: Session,
    start_date: date | None = None,
    end_date: date | None = None,
    kind: str | None = None,
    status: str | None = None,
) -> dict:
    start_at, end_at = _day_bounds(start_date, end_date)
    stmt = select(AssetTransaction).options(
        selectinload(AssetTransaction.Asset),
        selectinload(AssetTransaction.User),
    )
    if start_at:
        stmt = stmt.where(AssetTransaction.CreatedAt >= start_at)
    if end_at:
        stmt = stmt.where(AssetTransaction.CreatedAt <= end_at)
    if kind:
        stmt = stmt.where(AssetTransaction.Type == kind)
    if status:
        stmt = stmt.where(AssetTransaction.Status == status)
    rows = db.execute(
        stmt.order_by(AssetTransaction.CreatedAt.desc(), AssetTransaction.TransactionID.desc())
    ).scalars().all()

    return {
        "transactions": [serialize_transaction(row) for row in rows],
        "summary": {
            "total": len(rows),
            "checkOuts": sum(1 for row in rows if row.Type == "CHECK_OUT"),
            "checkIns": sum(1 for row in rows if row.Type == "CHECK_IN"),
            "active": sum(1 for row in rows if row.Status == "ACTIVE"),
            "completed": sum(1 for row in rows if row.Status == "COMPLETED"),
        },
    }
