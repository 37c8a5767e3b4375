import sys
import unittest
from pathlib import Path

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

TESTS_DIR = Path(__file__).resolve().parent
if str(TESTS_DIR) not in sys.path:
    sys.path.insert(0, str(TESTS_DIR))

from shared import add_client, add_user, make_session_factory

from models.inventory_models import (
    Asset,
    AssetTransaction,
    Preset,
    PresetCheckout,
    PresetCheckoutItem,
    PresetItem,
    PresetItemSubstitution,
)
from services.preset_checkout_service import (
    CheckoutAbortedError,
    KitLine,
    PresetNotFoundError,
    completion_percent,
    detect_presets,
    process_preset_checkout,
    reconcile_lines,
    reconcile_preset_checkout,
    return_preset_checkout,
)
from services.preset_service import delete_preset, update_preset


class ReconcileLinesTests(unittest.TestCase):
    def test_empty_kit_is_zero_percent(self):
        result = reconcile_lines([], [1, 2, 3])
        self.assertEqual(result.completion_percent, 0)
        self.assertEqual(result.lines, [])
        self.assertFalse(result.ready_to_process)

    def test_all_pinned_assets_scanned(self):
        lines = [KitLine(1, 10, True), KitLine(2, 20, True)]
        result = reconcile_lines(lines, [10, 20, 99])
        self.assertEqual([line.status for line in result.lines], ["ASSIGNED", "ASSIGNED"])
        self.assertEqual(result.completion_percent, 100)
        self.assertEqual(result.missing_required_items, 0)
        self.assertTrue(result.ready_to_process)

    def test_substitute_used_when_pinned_asset_missing(self):
        result = reconcile_lines([KitLine(1, 10, True, [11, 12])], [12])
        line = result.lines[0]
        self.assertEqual(line.status, "SUBSTITUTED")
        self.assertEqual(line.asset_id, 12)
        self.assertTrue(line.is_substitute)

    def test_pinned_asset_wins_over_substitute(self):
        result = reconcile_lines([KitLine(1, 10, True, [11])], [11, 10])
        self.assertEqual(result.lines[0].status, "ASSIGNED")
        self.assertEqual(result.lines[0].asset_id, 10)
        self.assertFalse(result.lines[0].is_substitute)

    def test_substitute_preference_order(self):
        result = reconcile_lines([KitLine(1, 10, True, [12, 11])], [11, 12])
        self.assertEqual(result.lines[0].asset_id, 12)

    def test_unmatched_required_and_optional_lines(self):
        lines = [KitLine(1, 10, True), KitLine(2, 20, False), KitLine(3, None, True)]
        result = reconcile_lines(lines, [])
        self.assertEqual([line.status for line in result.lines], ["UNAVAILABLE", "SKIPPED", "UNAVAILABLE"])
        self.assertEqual(result.missing_required_items, 2)
        self.assertTrue(all(line.asset_id is None for line in result.lines))

    def test_half_of_kit_scanned(self):
        result = reconcile_lines([KitLine(1, 10, True), KitLine(2, 20, True)], [10])
        self.assertEqual(result.completion_percent, 50)
        self.assertEqual(result.missing_required_items, 1)
        self.assertFalse(result.ready_to_process)

    def test_one_scanned_asset_fills_only_one_line(self):
        lines = [KitLine(1, None, True, [50]), KitLine(2, None, True, [50])]
        result = reconcile_lines(lines, [50])
        self.assertEqual([line.status for line in result.lines], ["SUBSTITUTED", "UNAVAILABLE"])
        self.assertEqual(result.matched_count, 1)

    def test_pinned_asset_already_claimed_by_earlier_substitute(self):
        lines = [KitLine(1, 10, True, [20]), KitLine(2, 20, True)]
        result = reconcile_lines(lines, [20])
        self.assertEqual(result.lines[0].status, "SUBSTITUTED")
        self.assertEqual(result.lines[1].status, "UNAVAILABLE")

    def test_completion_rounds_half_up(self):
        self.assertEqual(completion_percent(0, 0), 0)
        self.assertEqual(completion_percent(1, 8), 13)
        self.assertEqual(completion_percent(1, 3), 33)
        self.assertEqual(completion_percent(2, 3), 67)
        self.assertEqual(completion_percent(4, 5), 80)

    def test_ready_threshold(self):
        lines = [KitLine(index, index, True) for index in range(1, 6)]
        self.assertTrue(reconcile_lines(lines, [1, 2, 3, 4]).ready_to_process)
        self.assertFalse(reconcile_lines(lines, [1, 2, 3]).ready_to_process)


class PresetCheckoutFlowTests(unittest.TestCase):
    def setUp(self):
        self.session_factory = make_session_factory()
        self.db = self.session_factory()
        client = add_client(self.db)
        self.user = add_user(self.db)
        self.assets = {}
        for index, name in enumerate(("camera", "spare", "tripod", "cable"), start=1):
            asset = Asset(Name=name, Category="CAMERA", ClientID=client.ClientID, AssetNumber=f"ACME-CAM-{index:04d}", Status="AVAILABLE")
            self.db.add(asset)
            self.assets[name] = asset
        self.db.commit()

        camera_item = PresetItem(Name="Camera", AssetID=self.assets["camera"].AssetID, IsRequired=True, Priority=0)
        camera_item.Substitutions.append(PresetItemSubstitution(SubstituteAssetID=self.assets["spare"].AssetID, Preference=0))
        self.preset = Preset(Name="Interview kit", IsActive=True, Priority=1)
        self.preset.Items.extend(
            [
                camera_item,
                PresetItem(Name="Tripod", AssetID=self.assets["tripod"].AssetID, IsRequired=True, Priority=1),
                PresetItem(Name="Cable", AssetID=self.assets["cable"].AssetID, IsRequired=False, Priority=2),
            ]
        )
        self.db.add(self.preset)
        self.db.commit()

    def tearDown(self):
        self.db.close()

    def _checkout_count(self):
        with self.session_factory() as db:
            return db.execute(select(func.count(PresetCheckout.PresetCheckoutID))).scalar()

    def _checkout_item_count(self):
        with self.session_factory() as db:
            return db.execute(select(func.count(PresetCheckoutItem.PresetCheckoutItemID))).scalar()

    def test_reconcile_records_checkout_and_recommendations(self):
        result = reconcile_preset_checkout(
            self.db,
            self.preset.PresetID,
            [self.assets["spare"].AssetID, self.assets["cable"].AssetID],
            self.user.UserID,
        )
        checkout = result["presetCheckout"]
        self.assertEqual(checkout["status"], "IN_PROGRESS")
        self.assertEqual(checkout["completionPercent"], 67)
        self.assertEqual([item["status"] for item in checkout["items"]], ["SUBSTITUTED", "UNAVAILABLE", "ASSIGNED"])
        self.assertTrue(checkout["items"][0]["isSubstitute"])
        self.assertEqual(result["recommendations"]["missingRequiredItems"], 1)
        self.assertFalse(result["recommendations"]["readyToProcess"])
        self.assertEqual(self._checkout_count(), 1)

    def test_unknown_preset(self):
        with self.assertRaises(PresetNotFoundError):
            reconcile_preset_checkout(self.db, 9999, [], self.user.UserID)
        self.assertEqual(self._checkout_count(), 0)

    def test_failed_write_leaves_nothing_behind(self):
        original_commit = self.db.commit

        def failing_commit():
            raise SQLAlchemyError("disk full")

        self.db.commit = failing_commit
        try:
            with self.assertRaises(CheckoutAbortedError):
                reconcile_preset_checkout(self.db, self.preset.PresetID, [self.assets["camera"].AssetID], self.user.UserID)
        finally:
            self.db.commit = original_commit
        self.assertEqual(self._checkout_count(), 0)
        with self.session_factory() as db:
            self.assertEqual(db.execute(select(func.count()).select_from(AssetTransaction)).scalar(), 0)

    def test_process_then_return(self):
        scanned = [asset.AssetID for asset in self.assets.values()]
        created = reconcile_preset_checkout(self.db, self.preset.PresetID, scanned, self.user.UserID)
        self.assertTrue(created["recommendations"]["readyToProcess"])
        checkout_id = created["presetCheckout"]["presetCheckoutID"]

        processed = process_preset_checkout(self.db, checkout_id, self.user.UserID)
        self.assertEqual(processed["checkedOut"], 3)
        self.assertEqual(processed["presetCheckout"]["status"], "COMPLETED")
        with self.session_factory() as db:
            statuses = db.execute(select(Asset.Name, Asset.Status)).all()
        self.assertEqual(dict(statuses)["camera"], "CHECKED_OUT")
        self.assertEqual(dict(statuses)["spare"], "AVAILABLE")

        with self.assertRaises(ValueError):
            process_preset_checkout(self.db, checkout_id, self.user.UserID)

        returned = return_preset_checkout(self.db, checkout_id, self.user.UserID)
        self.assertEqual(returned["returned"], 3)
        self.assertEqual(returned["presetCheckout"]["status"], "RETURNED")
        with self.session_factory() as db:
            self.assertEqual(
                set(db.execute(select(Asset.Status)).scalars().all()),
                {"AVAILABLE"},
            )
            check_ins = db.execute(
                select(func.count(AssetTransaction.TransactionID)).where(AssetTransaction.Type == "CHECK_IN")
            ).scalar()
        self.assertEqual(check_ins, 3)

    def test_process_with_missing_required_item_is_partial(self):
        created = reconcile_preset_checkout(self.db, self.preset.PresetID, [self.assets["camera"].AssetID], self.user.UserID)
        processed = process_preset_checkout(self.db, created["presetCheckout"]["presetCheckoutID"], self.user.UserID)
        self.assertEqual(processed["checkedOut"], 1)
        self.assertEqual(processed["presetCheckout"]["status"], "PARTIAL")

    def test_returned_checkout_keeps_its_items_when_preset_changes(self):
        scanned = [asset.AssetID for asset in self.assets.values()]
        created = reconcile_preset_checkout(self.db, self.preset.PresetID, scanned, self.user.UserID)
        checkout_id = created["presetCheckout"]["presetCheckoutID"]
        process_preset_checkout(self.db, checkout_id, self.user.UserID)
        return_preset_checkout(self.db, checkout_id, self.user.UserID)
        self.assertEqual(self._checkout_item_count(), 3)

        with self.assertRaises(ValueError):
            update_preset(
                self.db,
                self.preset.PresetID,
                {"items": [{"name": "Camera", "assetId": self.assets["camera"].AssetID}]},
            )
        self.db.rollback()
        self.assertEqual(self._checkout_item_count(), 3)

        self.assertEqual(delete_preset(self.db, self.preset.PresetID), "deactivated")
        self.assertEqual(self._checkout_item_count(), 3)
        with self.session_factory() as db:
            checkout = db.get(PresetCheckout, checkout_id)
            self.assertEqual(checkout.Status, "RETURNED")
            self.assertEqual(len(checkout.Items), 3)
            self.assertFalse(db.get(Preset, self.preset.PresetID).IsActive)

    def test_items_can_be_replaced_before_any_checkout(self):
        updated = update_preset(
            self.db,
            self.preset.PresetID,
            {"items": [{"name": "Tripod", "assetId": self.assets["tripod"].AssetID}]},
        )
        self.assertEqual([item.Name for item in updated.Items], ["Tripod"])
        self.assertEqual(delete_preset(self.db, self.preset.PresetID), "deleted")
        with self.session_factory() as db:
            self.assertIsNone(db.get(Preset, self.preset.PresetID))

    def test_detect_ranks_matching_presets(self):
        matches = detect_presets(self.db, [self.assets["camera"].AssetID, self.assets["tripod"].AssetID])
        self.assertEqual(len(matches), 1)
        self.assertEqual(matches[0]["preset"]["id"], self.preset.PresetID)
        self.assertEqual(matches[0]["matchPercentage"], 67)
        self.assertEqual([item["name"] for item in matches[0]["missingItems"]], ["Cable"])

    def test_detect_ignores_weak_matches(self):
        self.assertEqual(detect_presets(self.db, [9999]), [])


if __name__ == "__main__":
    unittest.main()
