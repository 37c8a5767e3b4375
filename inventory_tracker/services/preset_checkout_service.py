from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Hashable, Iterable, Sequence

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from models.inventory_models import (
    Asset,
    AssetTransaction,
    Preset,
    PresetCheckout,
    PresetCheckoutItem,
    PresetItem,
    PresetItemSubstitution,
)


LOGGER = logging.getLogger("inventory_tracker.presets")

READY_TO_PROCESS_PERCENT = 80
DETECT_MATCH_PERCENT = 30
DETECT_REQUIRED_MATCH_PERCENT = 80
MATCHED_STATUSES = {"ASSIGNED", "SUBSTITUTED"}


class PresetNotFoundError(LookupError):
    pass


class PresetCheckoutNotFoundError(LookupError):
    pass


class CheckoutAbortedError(RuntimeError):
    pass


@dataclass
class KitLine:
    item_id: Hashable
    asset_id: Hashable | None
    is_required: bool
    substitute_ids: Sequence[Hashable] = ()


@dataclass
class LineOutcome:
    item_id: Hashable
    status: str
    asset_id: Hashable | None = None
    is_substitute: bool = False


@dataclass
class ReconcileResult:
    lines: list[LineOutcome] = field(default_factory=list)
    completion_percent: int = 0
    missing_required_items: int = 0

    @property
    def ready_to_process(self) -> bool:
        return self.completion_percent >= READY_TO_PROCESS_PERCENT

    @property
    def matched_count(self) -> int:
        return sum(1 for line in self.lines if line.status in MATCHED_STATUSES)


def completion_percent(matched: int, total: int) -> int:
    if total <= 0:
        return 0
    # Rounds halves up, so 1 of 8 is 13 rather than 12.
    return (200 * matched + total) // (2 * total)


def reconcile_lines(lines: Iterable[KitLine], scanned_ids: Iterable[Hashable]) -> ReconcileResult:
    """Match scanned assets against kit lines in the order given.

    A pinned asset wins over substitutes. Each scanned asset satisfies at
    most one line: once claimed, later lines cannot use it.
    """
    scanned = set(scanned_ids)
    claimed: set[Hashable] = set()
    result = ReconcileResult()

    for line in lines:
        if line.asset_id is not None and line.asset_id in scanned and line.asset_id not in claimed:
            claimed.add(line.asset_id)
            result.lines.append(LineOutcome(item_id=line.item_id, status="ASSIGNED", asset_id=line.asset_id))
            continue

        substitute = next(
            (sub_id for sub_id in line.substitute_ids if sub_id in scanned and sub_id not in claimed),
            None,
        )
        if substitute is not None:
            claimed.add(substitute)
            result.lines.append(
                LineOutcome(item_id=line.item_id, status="SUBSTITUTED", asset_id=substitute, is_substitute=True)
            )
            continue

        if line.is_required:
            result.missing_required_items += 1
            result.lines.append(LineOutcome(item_id=line.item_id, status="UNAVAILABLE"))
        else:
            result.lines.append(LineOutcome(item_id=line.item_id, status="SKIPPED"))

    result.completion_percent = completion_percent(result.matched_count, len(result.lines))
    return result


def kit_lines_for_preset(preset: Preset) -> list[KitLine]:
    return [
        KitLine(
            item_id=item.PresetItemID,
            asset_id=item.AssetID,
            is_required=bool(item.IsRequired),
            substitute_ids=[sub.SubstituteAssetID for sub in item.Substitutions],
        )
        for item in preset.Items
    ]


def load_preset(db: Session, preset_id: int) -> Preset:
    stmt = (
        select(Preset)
        .options(
            selectinload(Preset.Items).selectinload(PresetItem.Asset),
            selectinload(Preset.Items)
            .selectinload(PresetItem.Substitutions)
            .selectinload(PresetItemSubstitution.SubstituteAsset),
        )
        .where(Preset.PresetID == preset_id)
    )
    preset = db.execute(stmt).scalars().first()
    if not preset:
        raise PresetNotFoundError("Preset not found")
    return preset


def _serialize_substitute(asset: Asset) -> dict:
    return {
        "id": asset.AssetID,
        "name": asset.Name,
        "description": asset.Description,
        "status": asset.Status,
        "assetNumber": asset.AssetNumber,
    }


def available_substitutions(preset: Preset, result: ReconcileResult) -> list[dict]:
    unassigned = {line.item_id for line in result.lines if line.status not in MATCHED_STATUSES}
    output = []
    for item in preset.Items:
        if item.PresetItemID not in unassigned:
            continue
        substitutes = [
            _serialize_substitute(sub.SubstituteAsset)
            for sub in item.Substitutions
            if sub.SubstituteAsset is not None and sub.SubstituteAsset.Status == "AVAILABLE"
        ]
        if substitutes:
            output.append({"itemId": item.PresetItemID, "itemName": item.Name, "substitutes": substitutes})
    return output


def serialize_checkout(checkout: PresetCheckout) -> dict:
    return {
        "presetCheckoutID": checkout.PresetCheckoutID,
        "presetID": checkout.PresetID,
        "userID": checkout.UserID,
        "status": checkout.Status,
        "checkoutDate": checkout.CheckoutDate,
        "expectedReturnDate": checkout.ExpectedReturnDate,
        "actualReturnDate": checkout.ActualReturnDate,
        "completionPercent": checkout.CompletionPercent,
        "notes": checkout.Notes,
        "items": [
            {
                "presetCheckoutItemID": item.PresetCheckoutItemID,
                "presetItemID": item.PresetItemID,
                "assetID": item.AssetID,
                "status": item.Status,
                "isSubstitute": bool(item.IsSubstitute),
                "notes": item.Notes,
            }
            for item in checkout.Items
        ],
    }


def reconcile_preset_checkout(
    db: Session,
    preset_id: int,
    scanned_asset_ids: Iterable[int],
    user_id: int | None,
    expected_return_date: datetime | None = None,
) -> dict:
    preset = load_preset(db, preset_id)
    result = reconcile_lines(kit_lines_for_preset(preset), scanned_asset_ids)

    checkout = PresetCheckout(
        PresetID=preset.PresetID,
        UserID=user_id,
        Status="IN_PROGRESS",
        CheckoutDate=datetime.now(),
        ExpectedReturnDate=expected_return_date,
        CompletionPercent=result.completion_percent,
        Notes="Auto-generated from cart scanning",
    )
    for line in result.lines:
        checkout.Items.append(
            PresetCheckoutItem(
                PresetItemID=line.item_id,
                AssetID=line.asset_id,
                Status=line.status,
                IsSubstitute=line.is_substitute,
                Notes="Used substitute asset" if line.is_substitute else None,
            )
        )

    try:
        db.add(checkout)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        LOGGER.exception("Preset checkout write failed preset_id=%s", preset_id)
        raise CheckoutAbortedError("Failed to record preset checkout") from exc

    LOGGER.info(
        "Preset checkout recorded preset_id=%s checkout_id=%s completion=%s",
        preset_id,
        checkout.PresetCheckoutID,
        result.completion_percent,
    )
    return {
        "presetCheckout": serialize_checkout(checkout),
        "recommendations": {
            "readyToProcess": result.ready_to_process,
            "missingRequiredItems": result.missing_required_items,
            "availableSubstitutions": available_substitutions(preset, result),
        },
    }


def detect_presets(db: Session, asset_ids: Sequence[int]) -> list[dict]:
    if not asset_ids:
        return []
    presets = db.execute(
        select(Preset)
        .options(
            selectinload(Preset.Items)
            .selectinload(PresetItem.Substitutions)
            .selectinload(PresetItemSubstitution.SubstituteAsset)
        )
        .where(Preset.IsActive == True)
        .order_by(Preset.Priority.desc(), Preset.Name)
    ).scalars().all()

    matches = []
    for preset in presets:
        result = reconcile_lines(kit_lines_for_preset(preset), asset_ids)
        items_by_id = {item.PresetItemID: item for item in preset.Items}
        required = [line for line in result.lines if items_by_id[line.item_id].IsRequired]
        matched_required = [line for line in required if line.status in MATCHED_STATUSES]
        required_percent = (100 * len(matched_required) / len(required)) if required else 0

        if result.completion_percent < DETECT_MATCH_PERCENT and not (
            required and required_percent >= DETECT_REQUIRED_MATCH_PERCENT
        ):
            continue

        missing = [
            {
                "id": items_by_id[line.item_id].PresetItemID,
                "name": items_by_id[line.item_id].Name,
                "quantity": items_by_id[line.item_id].Quantity,
                "isRequired": bool(items_by_id[line.item_id].IsRequired),
            }
            for line in result.lines
            if line.status not in MATCHED_STATUSES
        ]
        matches.append(
            {
                "preset": {
                    "id": preset.PresetID,
                    "name": preset.Name,
                    "description": preset.Description,
                    "category": preset.Category,
                    "priority": preset.Priority or 0,
                    "itemCount": len(preset.Items),
                },
                "matchedItems": result.matched_count,
                "totalItems": len(result.lines),
                "matchPercentage": result.completion_percent,
                "missingItems": missing,
                "availableSubstitutions": available_substitutions(preset, result),
            }
        )

    matches.sort(key=lambda match: (-match["matchPercentage"], -match["preset"]["priority"]))
    return matches


def list_substitution_options(db: Session, preset_id: int) -> dict:
    preset = load_preset(db, preset_id)
    options = []
    for item in preset.Items:
        substitutes = [
            dict(_serialize_substitute(sub.SubstituteAsset), preference=sub.Preference or 0)
            for sub in item.Substitutions
            if sub.SubstituteAsset is not None and sub.SubstituteAsset.Status == "AVAILABLE"
        ]
        if not substitutes:
            continue
        options.append(
            {
                "itemId": item.PresetItemID,
                "itemName": item.Name,
                "originalAsset": _serialize_substitute(item.Asset) if item.Asset else None,
                "substitutes": substitutes,
            }
        )
    return {
        "presetId": preset.PresetID,
        "presetName": preset.Name,
        "substitutionOptions": options,
        "summary": {
            "totalItems": len(preset.Items),
            "itemsWithSubstitutions": len(options),
            "totalAvailableSubstitutes": sum(len(option["substitutes"]) for option in options),
        },
    }


def validate_substitutions(db: Session, preset_id: int, requested: dict[int, int | None]) -> dict:
    preset = load_preset(db, preset_id)
    items_by_id = {item.PresetItemID: item for item in preset.Items}

    validated = []
    for item_id, substitute_id in requested.items():
        item = items_by_id.get(item_id)
        if not item or not substitute_id:
            continue
        declared = next((sub for sub in item.Substitutions if sub.SubstituteAssetID == substitute_id), None)
        if not declared or not declared.SubstituteAsset or declared.SubstituteAsset.Status != "AVAILABLE":
            continue
        validated.append(
            {
                "itemId": item_id,
                "itemName": item.Name,
                "originalAssetId": item.AssetID,
                "substituteAssetId": substitute_id,
                "substituteAsset": _serialize_substitute(declared.SubstituteAsset),
            }
        )

    return {
        "presetId": preset.PresetID,
        "presetName": preset.Name,
        "substitutions": validated,
        "summary": {
            "totalRequested": len(requested),
            "validSubstitutions": len(validated),
            "readyToApply": len(validated) > 0,
        },
    }


def load_checkout(db: Session, checkout_id: int) -> PresetCheckout:
    stmt = (
        select(PresetCheckout)
        .options(
            selectinload(PresetCheckout.Items).selectinload(PresetCheckoutItem.Asset),
            selectinload(PresetCheckout.Items).selectinload(PresetCheckoutItem.PresetItem),
        )
        .where(PresetCheckout.PresetCheckoutID == checkout_id)
    )
    checkout = db.execute(stmt).scalars().first()
    if not checkout:
        raise PresetCheckoutNotFoundError("Preset checkout not found")
    return checkout


def process_preset_checkout(db: Session, checkout_id: int, user_id: int) -> dict:
    """Check out every assigned asset of a reconciled kit in one commit."""
    checkout = load_checkout(db, checkout_id)
    if checkout.Status != "IN_PROGRESS":
        raise ValueError(f"Preset checkout is {checkout.Status} and cannot be processed.")

    now = datetime.now()
    checked_out = 0
    skipped: list[dict[str, Any]] = []
    for item in checkout.Items:
        if item.Status not in MATCHED_STATUSES or item.Asset is None:
            continue
        asset = item.Asset
        if asset.Status != "AVAILABLE":
            skipped.append({"assetID": asset.AssetID, "reason": f"Asset is {asset.Status}"})
            continue
        db.add(
            AssetTransaction(
                AssetID=asset.AssetID,
                UserID=user_id,
                Type="CHECK_OUT",
                Status="ACTIVE",
                CheckOutDate=now,
                ExpectedReturnDate=checkout.ExpectedReturnDate,
                Notes=f"Preset checkout #{checkout.PresetCheckoutID}",
                PresetCheckoutID=checkout.PresetCheckoutID,
                CreatedAt=now,
                UpdatedAt=now,
            )
        )
        asset.Status = "CHECKED_OUT"
        asset.LastModifiedByID = user_id
        asset.UpdatedAt = now
        item.Status = "CHECKED_OUT"
        checked_out += 1

    missing_required = any(
        item.Status == "UNAVAILABLE" and item.PresetItem is not None and item.PresetItem.IsRequired
        for item in checkout.Items
    )
    checkout.Status = "PARTIAL" if skipped or missing_required else "COMPLETED"

    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        LOGGER.exception("Preset checkout processing failed checkout_id=%s", checkout_id)
        raise CheckoutAbortedError("Failed to process preset checkout") from exc

    return {"presetCheckout": serialize_checkout(checkout), "checkedOut": checked_out, "skipped": skipped}


def return_preset_checkout(db: Session, checkout_id: int, user_id: int) -> dict:
    checkout = load_checkout(db, checkout_id)
    if checkout.Status not in {"COMPLETED", "PARTIAL"}:
        raise ValueError(f"Preset checkout is {checkout.Status} and cannot be returned.")

    now = datetime.now()
    open_rows = db.execute(
        select(AssetTransaction)
        .where(AssetTransaction.PresetCheckoutID == checkout.PresetCheckoutID)
        .where(AssetTransaction.Type == "CHECK_OUT")
        .where(AssetTransaction.Status.in_(("ACTIVE", "OVERDUE")))
    ).scalars().all()

    returned = 0
    for row in open_rows:
        row.Status = "COMPLETED"
        row.ActualReturnDate = now
        row.UpdatedAt = now
        asset = db.get(Asset, row.AssetID)
        if asset and asset.Status == "CHECKED_OUT":
            asset.Status = "AVAILABLE"
            asset.LastModifiedByID = user_id
            asset.UpdatedAt = now
        db.add(
            AssetTransaction(
                AssetID=row.AssetID,
                UserID=user_id,
                Type="CHECK_IN",
                Status="COMPLETED",
                CheckOutDate=row.CheckOutDate,
                ActualReturnDate=now,
                PresetCheckoutID=checkout.PresetCheckoutID,
                CreatedAt=now,
                UpdatedAt=now,
            )
        )
        returned += 1

    checkout.Status = "RETURNED"
    checkout.ActualReturnDate = now

    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        LOGGER.exception("Preset checkout return failed checkout_id=%s", checkout_id)
        raise CheckoutAbortedError("Failed to return preset checkout") from exc

    return {"presetCheckout": serialize_checkout(checkout), "returned": returned}
