import sys
import unittest
from pathlib import Path

from sqlalchemy import func, select

TESTS_DIR = Path(__file__).resolve().parent
if str(TESTS_DIR) not in sys.path:
    sys.path.insert(0, str(TESTS_DIR))

from shared import add_client, make_session_factory

from models.inventory_models import Asset, CustomCategory
from services import asset_number_service
from services.asset_number_service import (
    SYSTEM_CATEGORY_CODES,
    AssetNumberConflictError,
    AssetNumberExhaustedError,
    InvalidCategoryError,
    InvalidClientCodeError,
    allocate_asset_number,
    assign_missing_asset_numbers,
    create_asset_with_number,
    is_valid_asset_number,
    repair_asset_number,
)


class AssetNumberTests(unittest.TestCase):
    def setUp(self):
        self.db = make_session_factory()()
        self.client = add_client(self.db)

    def tearDown(self):
        self.db.close()

    def _asset(self, number=None, category="CAMERA", name="Camera body"):
        asset = Asset(Name=name, Category=category, ClientID=self.client.ClientID, AssetNumber=number)
        self.db.add(asset)
        self.db.commit()
        return asset

    def test_first_number_for_prefix(self):
        number = allocate_asset_number(self.db, "acme", "camera")
        self.assertEqual(number, "ACME-CAM-0001")
        self.assertTrue(is_valid_asset_number(number))

    def test_numbers_are_sequential_per_prefix(self):
        first = create_asset_with_number(self.db, Asset(Name="A", Category="CAMERA", ClientID=self.client.ClientID), "ACME", "CAMERA")
        second = create_asset_with_number(self.db, Asset(Name="B", Category="CAMERA", ClientID=self.client.ClientID), "ACME", "CAMERA")
        lens = create_asset_with_number(self.db, Asset(Name="C", Category="LENS", ClientID=self.client.ClientID), "ACME", "LENS")
        self.assertEqual(first.AssetNumber, "ACME-CAM-0001")
        self.assertEqual(second.AssetNumber, "ACME-CAM-0002")
        self.assertEqual(lens.AssetNumber, "ACME-LEN-0001")

    def test_allocation_skips_past_highest_sequence(self):
        self._asset("ACME-CAM-0007")
        self._asset("ACME-CAM-0002", name="Older")
        self.assertEqual(allocate_asset_number(self.db, "ACME", "CAMERA"), "ACME-CAM-0008")

    def test_custom_category_uses_its_code(self):
        self.db.add(CustomCategory(CategoryKey="DRONE", Name="Drone", Code="DRN", IsActive=True))
        self.db.commit()
        self.assertEqual(allocate_asset_number(self.db, "ACME", "drone"), "ACME-DRN-0001")

    def test_unknown_category_is_rejected(self):
        with self.assertRaises(InvalidCategoryError):
            allocate_asset_number(self.db, "ACME", "SPACESHIP")
        with self.assertRaises(InvalidCategoryError):
            allocate_asset_number(self.db, "ACME", "")

    def test_invalid_client_code_is_rejected(self):
        for code in ("A", "TOO-LONG", "ABCDEFGHIJK", ""):
            with self.subTest(code=code):
                with self.assertRaises(InvalidClientCodeError):
                    allocate_asset_number(self.db, code, "CAMERA")

    def test_exhausted_prefix_raises(self):
        self._asset("ACME-CAM-9999")
        with self.assertRaises(AssetNumberExhaustedError):
            allocate_asset_number(self.db, "ACME", "CAMERA")

    def test_search_limit_raises_when_every_slot_is_taken(self):
        original_limit = asset_number_service.MAX_ALLOCATION_STEPS
        original_taken = asset_number_service._number_taken
        asset_number_service.MAX_ALLOCATION_STEPS = 3
        asset_number_service._number_taken = lambda db, number, exclude: True
        try:
            with self.assertRaises(AssetNumberExhaustedError):
                allocate_asset_number(self.db, "ACME", "CAMERA")
        finally:
            asset_number_service.MAX_ALLOCATION_STEPS = original_limit
            asset_number_service._number_taken = original_taken

    def test_every_system_category_yields_a_valid_number(self):
        for category, code in SYSTEM_CATEGORY_CODES.items():
            with self.subTest(category=category):
                number = allocate_asset_number(self.db, "ACME", category)
                self.assertEqual(number, f"ACME-{code}-0001")
                self.assertTrue(is_valid_asset_number(number))

    def _patch_allocation(self, taken_calls):
        """Hand out an already used number for the first ``taken_calls`` calls."""
        calls = []
        real_allocate = asset_number_service.allocate_asset_number

        def allocate(db, client_code, category, exclude_asset_id=None):
            calls.append(category)
            if len(calls) <= taken_calls:
                return "ACME-CAM-0001"
            return real_allocate(db, client_code, category, exclude_asset_id)

        asset_number_service.allocate_asset_number = allocate
        self.addCleanup(setattr, asset_number_service, "allocate_asset_number", real_allocate)
        return calls

    def test_insert_collision_retries_with_next_number(self):
        self._asset("ACME-CAM-0001", name="Existing")
        calls = self._patch_allocation(taken_calls=1)
        asset = create_asset_with_number(
            self.db, Asset(Name="Late", Category="CAMERA", ClientID=self.client.ClientID), "ACME", "CAMERA"
        )
        self.assertEqual(asset.AssetNumber, "ACME-CAM-0002")
        self.assertEqual(len(calls), 2)

    def test_insert_collision_gives_up_after_attempts(self):
        self._asset("ACME-CAM-0001", name="Existing")
        calls = self._patch_allocation(taken_calls=10)
        with self.assertRaises(AssetNumberConflictError):
            create_asset_with_number(
                self.db,
                Asset(Name="Late", Category="CAMERA", ClientID=self.client.ClientID),
                "ACME",
                "CAMERA",
                attempts=3,
            )
        self.assertEqual(len(calls), 3)
        self.assertEqual(self.db.execute(select(func.count(Asset.AssetID))).scalar(), 1)

    def test_pattern(self):
        self.assertTrue(is_valid_asset_number("AB-CAM-0001"))
        self.assertTrue(is_valid_asset_number("CLIENT2024-OTH-9999"))
        self.assertFalse(is_valid_asset_number("ACME-CAM-001"))
        self.assertFalse(is_valid_asset_number("acme-cam-0001"))
        self.assertFalse(is_valid_asset_number("ACME-CA-0001"))
        self.assertFalse(is_valid_asset_number(None))

    def test_assign_missing_numbers(self):
        self._asset(None, name="One")
        self._asset("", name="Two")
        result = assign_missing_asset_numbers(self.db)
        self.assertEqual(result["updated"], 2)
        numbers = sorted(self.db.execute(select(Asset.AssetNumber)).scalars().all())
        self.assertEqual(numbers, ["ACME-CAM-0001", "ACME-CAM-0002"])

    def test_repair_keeps_sequence_and_moves_past_conflicts(self):
        self._asset("ACME-CAM-0004", name="Owner")
        broken = self._asset("acme-cam-4", name="Broken")
        self.assertEqual(repair_asset_number(self.db, broken), "ACME-CAM-0005")

        unparseable = self._asset("legacy", name="Legacy")
        self.assertEqual(repair_asset_number(self.db, unparseable), "ACME-CAM-0005")


if __name__ == "__main__":
    unittest.main()
