import sys
import unittest
from pathlib import Path

from fastapi.testclient import TestClient
from sqlalchemy import select

TESTS_DIR = Path(__file__).resolve().parent
if str(TESTS_DIR) not in sys.path:
    sys.path.insert(0, str(TESTS_DIR))

from shared import make_session_factory, override_db

import InventoryApp as app_module
from models.inventory_models import AuditLog
from services import asset_number_service


class InventoryApiTests(unittest.TestCase):
    def setUp(self):
        self.session_factory = make_session_factory()
        app_module.app.dependency_overrides[app_module.get_inventory_db] = override_db(self.session_factory)
        app_module._AUTH_ATTEMPTS_BY_ACCOUNT.clear()
        app_module._AUTH_LOCKOUT_UNTIL_BY_ACCOUNT.clear()
        self.client = TestClient(app_module.app)
        login = self.client.post("/api/auth/login", json={"username": "admin", "password": "admin-test-pin"})
        self.assertEqual(login.status_code, 200)
        self.admin_id = login.json()["user"]["userID"]
        client = self.client.post("/api/clients", json={"name": "Acme Studios", "code": "acme"})
        self.assertEqual(client.status_code, 201)
        self.client_id = client.json()["id"]

    def tearDown(self):
        app_module.app.dependency_overrides.clear()

    def _create_asset(self, name, category="CAMERA"):
        response = self.client.post("/api/assets", json={"name": name, "category": category, "clientId": self.client_id})
        self.assertEqual(response.status_code, 201, response.text)
        return response.json()

    def test_client_code_is_validated(self):
        response = self.client.post("/api/clients", json={"name": "Bad Code", "code": "X"})
        self.assertEqual(response.status_code, 400)
        duplicate = self.client.post("/api/clients", json={"name": "Other", "code": "ACME"})
        self.assertEqual(duplicate.status_code, 400)

    def test_assets_get_sequential_numbers(self):
        first = self._create_asset("Camera A")
        second = self._create_asset("Camera B")
        audio = self._create_asset("Mic", category="audio")
        self.assertEqual(first["assetNumber"], "ACME-CAM-0001")
        self.assertEqual(second["assetNumber"], "ACME-CAM-0002")
        self.assertEqual(audio["assetNumber"], "ACME-AUD-0001")

        preview = self.client.get("/api/asset-numbers/next", params={"category": "CAMERA", "clientId": self.client_id})
        self.assertEqual(preview.json()["assetNumber"], "ACME-CAM-0003")

    def test_asset_with_unknown_category_is_rejected(self):
        response = self.client.post("/api/assets", json={"name": "Thing", "category": "SPACESHIP", "clientId": self.client_id})
        self.assertEqual(response.status_code, 400)

    def test_explicit_asset_number_conflict(self):
        self._create_asset("Camera A")
        response = self.client.post(
            "/api/assets",
            json={"name": "Camera B", "category": "CAMERA", "clientId": self.client_id, "assetNumber": "ACME-CAM-0001"},
        )
        self.assertEqual(response.status_code, 400)

    def test_custom_category_numbering(self):
        category = self.client.post("/api/categories", json={"name": "Drone"})
        self.assertEqual(category.status_code, 201)
        self.assertEqual(category.json()["code"], "DRO")
        asset = self._create_asset("Quad", category="DRONE")
        self.assertEqual(asset["assetNumber"], "ACME-DRO-0001")

    def test_referenced_client_is_deactivated_not_deleted(self):
        self._create_asset("Camera A")
        response = self.client.delete(f"/api/clients/{self.client_id}")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["result"], "deactivated")
        self.assertEqual(self.client.get("/api/clients").json(), [])
        self.assertEqual(len(self.client.get("/api/clients", params={"includeInactive": True}).json()), 1)

        unused = self.client.post("/api/clients", json={"name": "Unused", "code": "UNUSED"}).json()
        deleted = self.client.delete(f"/api/clients/{unused['id']}")
        self.assertEqual(deleted.json()["result"], "deleted")
        self.assertEqual(self.client.get(f"/api/clients/{unused['id']}").status_code, 404)

    def test_check_out_and_in(self):
        asset = self._create_asset("Camera A")
        checkout = self.client.post("/api/transactions", json={"assetId": asset["id"], "type": "CHECK_OUT"})
        self.assertEqual(checkout.status_code, 201)
        self.assertEqual(checkout.json()["status"], "ACTIVE")

        again = self.client.post("/api/transactions", json={"assetId": asset["id"], "type": "CHECK_OUT"})
        self.assertEqual(again.status_code, 400)

        blocked = self.client.delete(f"/api/assets/{asset['id']}")
        self.assertEqual(blocked.status_code, 400)

        checkin = self.client.post("/api/transactions", json={"assetId": asset["id"], "type": "CHECK_IN", "notes": "ok"})
        self.assertEqual(checkin.status_code, 201)
        self.assertEqual(self.client.get(f"/api/assets/{asset['id']}").json()["status"], "AVAILABLE")

        missing = self.client.post("/api/transactions", json={"assetId": 9999, "type": "CHECK_OUT"})
        self.assertEqual(missing.status_code, 404)

        retired = self.client.delete(f"/api/assets/{asset['id']}")
        self.assertEqual(retired.json()["result"], "retired")

    def test_bulk_check_out_reports_per_item(self):
        first = self._create_asset("Camera A")
        second = self._create_asset("Camera B")
        response = self.client.post(
            "/api/transactions/bulk",
            json={"action": "CHECK_OUT", "items": [{"assetId": first["id"]}, {"assetId": 9999}, {"assetId": second["id"]}]},
        )
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["processed"], 2)
        self.assertEqual(body["total"], 3)
        self.assertEqual([row["status"] for row in body["results"]], ["success", "error", "success"])

        empty = self.client.post("/api/transactions/bulk", json={"action": "CHECK_OUT", "items": []})
        self.assertEqual(empty.status_code, 400)

    def test_maintenance_moves_asset_status(self):
        asset = self._create_asset("Camera A")
        created = self.client.post(
            "/api/maintenance",
            json={"assetId": asset["id"], "type": "corrective", "description": "Sensor dust"},
        )
        self.assertEqual(created.status_code, 201)
        record_id = created.json()["maintenanceID"]

        started = self.client.put(f"/api/maintenance/{record_id}", json={"status": "IN_PROGRESS"})
        self.assertEqual(started.status_code, 200)
        self.assertEqual(self.client.get(f"/api/assets/{asset['id']}").json()["status"], "IN_MAINTENANCE")

        done = self.client.put(f"/api/maintenance/{record_id}", json={"status": "COMPLETED", "actualCost": 40})
        self.assertEqual(done.status_code, 200)
        self.assertIsNotNone(done.json()["performedDate"])
        self.assertEqual(self.client.get(f"/api/assets/{asset['id']}").json()["status"], "AVAILABLE")

        bad = self.client.post("/api/maintenance", json={"assetId": asset["id"], "type": "PAINTING", "description": "x"})
        self.assertEqual(bad.status_code, 400)

    def test_preset_complete_process_and_return(self):
        camera = self._create_asset("Camera A")
        spare = self._create_asset("Camera B")
        tripod = self._create_asset("Tripod", category="ACCESSORY")
        preset = self.client.post(
            "/api/presets",
            json={
                "name": "Interview kit",
                "items": [
                    {"name": "Camera", "assetId": camera["id"], "substitutions": [{"assetId": spare["id"]}]},
                    {"name": "Tripod", "assetId": tripod["id"]},
                ],
            },
        )
        self.assertEqual(preset.status_code, 201, preset.text)
        preset_id = preset.json()["id"]

        complete = self.client.post(f"/api/presets/{preset_id}/complete", json={"scannedAssetIds": [spare["id"], tripod["id"]]})
        self.assertEqual(complete.status_code, 201)
        body = complete.json()
        self.assertEqual(body["presetCheckout"]["completionPercent"], 100)
        self.assertTrue(body["recommendations"]["readyToProcess"])
        checkout_id = body["presetCheckout"]["presetCheckoutID"]
        with self.session_factory() as db:
            audit = db.execute(
                select(AuditLog).where(AuditLog.EntityType == "PresetCheckout").where(AuditLog.EntityID == checkout_id)
            ).scalars().all()
        self.assertEqual([row.Action for row in audit], ["Created"])

        blocked = self.client.delete(f"/api/presets/{preset_id}")
        self.assertEqual(blocked.status_code, 400)

        processed = self.client.post(f"/api/preset-checkouts/{checkout_id}/process")
        self.assertEqual(processed.status_code, 200)
        self.assertEqual(processed.json()["checkedOut"], 2)
        self.assertEqual(self.client.get(f"/api/assets/{spare['id']}").json()["status"], "CHECKED_OUT")

        returned = self.client.post(f"/api/preset-checkouts/{checkout_id}/return")
        self.assertEqual(returned.status_code, 200)
        self.assertEqual(returned.json()["presetCheckout"]["status"], "RETURNED")

        deleted = self.client.delete(f"/api/presets/{preset_id}")
        self.assertEqual(deleted.status_code, 200)
        self.assertEqual(deleted.json()["result"], "deactivated")
        history = self.client.get(f"/api/preset-checkouts/{checkout_id}")
        self.assertEqual(history.status_code, 200)
        self.assertEqual(len(history.json()["items"]), 2)

    def test_asset_number_can_be_set_on_update(self):
        first = self._create_asset("Camera A")
        second = self._create_asset("Camera B")

        malformed = self.client.put(f"/api/assets/{second['id']}", json={"assetNumber": "acme-cam-7"})
        self.assertEqual(malformed.status_code, 400)
        taken = self.client.put(f"/api/assets/{second['id']}", json={"assetNumber": first["assetNumber"]})
        self.assertEqual(taken.status_code, 400)

        moved = self.client.put(f"/api/assets/{second['id']}", json={"assetNumber": "acme-cam-0042"})
        self.assertEqual(moved.status_code, 200)
        self.assertEqual(moved.json()["assetNumber"], "ACME-CAM-0042")
        self.assertEqual(self._create_asset("Camera C")["assetNumber"], "ACME-CAM-0043")

    def test_asset_number_collisions_return_conflict(self):
        self._create_asset("Camera A")
        original_allocate = asset_number_service.allocate_asset_number
        asset_number_service.allocate_asset_number = lambda db, code, category, exclude_asset_id=None: "ACME-CAM-0001"
        try:
            response = self.client.post("/api/assets", json={"name": "Camera B", "category": "CAMERA", "clientId": self.client_id})
        finally:
            asset_number_service.allocate_asset_number = original_allocate
        self.assertEqual(response.status_code, 409)

    def test_import_assets_from_rows_and_csv(self):
        response = self.client.post(
            "/api/assets/import",
            json={
                "clientId": self.client_id,
                "rows": [
                    {"Asset Name": "Boom Mic", "Type": "audio", "Serial No": "SN-1", "Price": "$1,200.50", "Status": "in maintenance"},
                    {"Asset Name": "", "Type": "audio"},
                    {"Asset Name": "Mystery Box", "Type": "spaceship", "Purchase Date": "2024-03-01"},
                    {"Asset Name": "Boom Mic"},
                ],
            },
        )
        self.assertEqual(response.status_code, 200, response.text)
        body = response.json()
        self.assertEqual((body["total"], body["successful"], body["failed"]), (4, 2, 2))
        self.assertTrue(body["errors"][0].startswith("Row 3:"))
        self.assertEqual([row["assetNumber"] for row in body["assets"]], ["ACME-AUD-0001", "ACME-OTH-0001"])

        mic = self.client.get(f"/api/assets/{body['assets'][0]['id']}").json()
        self.assertEqual(mic["status"], "IN_MAINTENANCE")
        self.assertEqual(mic["purchasePrice"], 1200.5)
        self.assertEqual(mic["serialNumber"], "SN-1")

        from_csv = self.client.post("/api/assets/import", json={"csv": "name,client,category\nLED Panel,ACME,lighting\n"})
        self.assertEqual(from_csv.status_code, 200)
        self.assertEqual(from_csv.json()["assets"][0]["assetNumber"], "ACME-LIT-0001")

        no_name = self.client.post("/api/assets/import", json={"clientId": self.client_id, "rows": [{"serial": "X"}]})
        self.assertEqual(no_name.status_code, 400)

        exported = self.client.get("/api/assets/export", params={"category": "audio"})
        self.assertEqual(exported.status_code, 200)
        self.assertTrue(exported.headers["content-type"].startswith("text/csv"))
        lines = exported.text.splitlines()
        self.assertTrue(lines[0].startswith("Asset Number,Name,"))
        self.assertEqual(len(lines), 2)
        self.assertTrue(lines[1].startswith("ACME-AUD-0001,Boom Mic,"))

    def test_bulk_status_change_and_delete(self):
        first = self._create_asset("Camera A")
        second = self._create_asset("Camera B")
        busy = self._create_asset("Camera C")
        self.client.post("/api/transactions", json={"assetId": busy["id"], "type": "CHECK_OUT"})

        changed = self.client.post(
            "/api/assets/bulk",
            json={"action": "changeStatus", "assetIds": [first["id"], second["id"]], "status": "MISSING"},
        )
        self.assertEqual(changed.status_code, 200)
        self.assertEqual(changed.json()["affectedCount"], 2)
        self.assertEqual(self.client.get(f"/api/assets/{second['id']}").json()["status"], "MISSING")

        checked_out = self.client.post(
            "/api/assets/bulk", json={"action": "changeStatus", "assetIds": [first["id"]], "status": "CHECKED_OUT"}
        )
        self.assertEqual(checked_out.status_code, 400)
        with_busy = self.client.post(
            "/api/assets/bulk", json={"action": "changeStatus", "assetIds": [first["id"], busy["id"]], "status": "AVAILABLE"}
        )
        self.assertEqual(with_busy.status_code, 400)
        unknown = self.client.post("/api/assets/bulk", json={"action": "delete", "assetIds": [first["id"], 9999]})
        self.assertEqual(unknown.status_code, 404)

        removed = self.client.post("/api/assets/bulk", json={"action": "delete", "assetIds": [first["id"], second["id"]]})
        self.assertEqual(removed.status_code, 200)
        self.assertEqual(removed.json()["deleted"], 2)
        self.assertEqual(self.client.get(f"/api/assets/{first['id']}").status_code, 404)

    def test_transfer_checkouts_between_users(self):
        crew = self.client.post(
            "/api/admin/users",
            json={"email": "crew@example.com", "name": "Crew", "password": "long-enough", "role": "USER"},
        ).json()
        first = self._create_asset("Camera A")
        second = self._create_asset("Camera B")
        for asset in (first, second):
            self.client.post("/api/transactions", json={"assetId": asset["id"], "type": "CHECK_OUT", "notes": "shoot"})

        pending = self.client.get(f"/api/admin/users/{self.admin_id}/transfer")
        self.assertEqual(pending.json()["count"], 2)

        moved = self.client.post(f"/api/admin/users/{self.admin_id}/transfer", json={"toUserId": crew["userID"]})
        self.assertEqual(moved.status_code, 200, moved.text)
        self.assertEqual(moved.json()["transferredCount"], 2)
        crew_rows = self.client.get(f"/api/admin/users/{crew['userID']}/transfer").json()["activeTransactions"]
        self.assertEqual(len(crew_rows), 2)
        self.assertIn("[Transferred from", crew_rows[0]["notes"])

        nothing_left = self.client.post(f"/api/admin/users/{self.admin_id}/transfer", json={"toUserId": crew["userID"]})
        self.assertEqual(nothing_left.status_code, 400)
        missing_target = self.client.post(f"/api/admin/users/{crew['userID']}/transfer", json={"toUserId": 9999})
        self.assertEqual(missing_target.status_code, 404)

    def test_complete_unknown_preset(self):
        response = self.client.post("/api/presets/9999/complete", json={"scannedAssetIds": []})
        self.assertEqual(response.status_code, 404)

    def test_dashboard_stats(self):
        self._create_asset("Camera A")
        response = self.client.get("/api/dashboard/stats")
        self.assertEqual(response.status_code, 200)


if __name__ == "__main__":
    unittest.main()
