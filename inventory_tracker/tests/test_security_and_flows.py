import sys
import unittest
from pathlib import Path

from fastapi.testclient import TestClient

TESTS_DIR = Path(__file__).resolve().parent
if str(TESTS_DIR) not in sys.path:
    sys.path.insert(0, str(TESTS_DIR))

from shared import make_session_factory, override_db

import InventoryApp as app_module
from services.user_service import create_user


class SecurityAndFlowTests(unittest.TestCase):
    def setUp(self):
        self.session_factory = make_session_factory()
        app_module.app.dependency_overrides[app_module.get_inventory_db] = override_db(self.session_factory)
        app_module._AUTH_ATTEMPTS_BY_IP.clear()
        app_module._AUTH_ATTEMPTS_BY_ACCOUNT.clear()
        app_module._AUTH_LOCKOUT_UNTIL_BY_ACCOUNT.clear()
        self.client = TestClient(app_module.app)

    def tearDown(self):
        app_module.app.dependency_overrides.clear()

    def _add_user(self, email, role, password="correct-horse"):
        with self.session_factory() as db:
            create_user(db, email=email, name="Test User", password=password, role=role)

    def test_login_logout_revokes_session_token(self):
        login = self.client.post(
            "/api/auth/login",
            json={"username": "admin", "password": "admin-test-pin"},
        )
        self.assertEqual(login.status_code, 200)
        token = login.json()["sessionToken"]
        headers = {"X-Session-Token": token}

        me_before = self.client.get("/api/auth/me", headers=headers)
        self.assertEqual(me_before.status_code, 200)

        logout = self.client.post("/api/auth/logout", headers=headers)
        self.assertEqual(logout.status_code, 200)

        me_after = self.client.get("/api/auth/me", headers=headers)
        self.assertEqual(me_after.status_code, 401)

    def test_login_persists_with_cookie_session(self):
        login = self.client.post(
            "/api/auth/login",
            json={"username": "admin", "password": "admin-test-pin"},
        )
        self.assertEqual(login.status_code, 200)

        me = self.client.get("/api/auth/me")
        self.assertEqual(me.status_code, 200)
        user = me.json().get("user") or {}
        self.assertEqual(user.get("role"), "ADMIN")
        self.assertTrue(user.get("isLocalAdmin"))
        set_cookie = login.headers.get("set-cookie", "")
        self.assertIn("inventory_tracker_session=", set_cookie)

    def test_requests_without_session_are_rejected(self):
        for path in ("/api/assets", "/api/presets", "/api/transactions", "/api/dashboard/stats"):
            with self.subTest(path=path):
                self.assertEqual(self.client.get(path).status_code, 401)

    def test_wrong_admin_password_is_rejected(self):
        response = self.client.post("/api/auth/login", json={"username": "admin", "password": "nope"})
        self.assertEqual(response.status_code, 401)

    def test_unknown_login_fields_are_rejected(self):
        response = self.client.post("/api/auth/login", json={"username": "admin", "pin": "1234"})
        self.assertEqual(response.status_code, 400)

    def test_email_login_for_stored_user(self):
        self._add_user("manager@example.com", "MANAGER")
        login = self.client.post(
            "/api/auth/login",
            json={"email": "Manager@Example.com", "password": "correct-horse"},
        )
        self.assertEqual(login.status_code, 200)
        self.assertEqual(login.json()["user"]["role"], "MANAGER")
        self.assertFalse(login.json()["user"]["isLocalAdmin"])

        wrong = TestClient(app_module.app).post(
            "/api/auth/login",
            json={"email": "manager@example.com", "password": "wrong-horse"},
        )
        self.assertEqual(wrong.status_code, 401)

    def test_viewer_cannot_write(self):
        self._add_user("viewer@example.com", "VIEWER")
        login = self.client.post(
            "/api/auth/login",
            json={"email": "viewer@example.com", "password": "correct-horse"},
        )
        self.assertEqual(login.status_code, 200)

        self.assertEqual(self.client.get("/api/assets").status_code, 200)
        create = self.client.post("/api/assets", json={"name": "Camera", "category": "CAMERA", "clientId": 1})
        self.assertEqual(create.status_code, 403)
        checkout = self.client.post("/api/transactions", json={"assetId": 1, "type": "CHECK_OUT"})
        self.assertEqual(checkout.status_code, 403)

    def test_admin_routes_require_admin_role(self):
        self._add_user("crew@example.com", "USER")
        self.client.post("/api/auth/login", json={"email": "crew@example.com", "password": "correct-horse"})
        self.assertEqual(self.client.get("/api/admin/users").status_code, 403)
        self.assertEqual(self.client.post("/api/admin/asset-numbers").status_code, 403)

    def test_repeated_failures_lock_the_account(self):
        original_limit = app_module.AUTH_MAX_ATTEMPTS_PER_ACCOUNT
        app_module.AUTH_MAX_ATTEMPTS_PER_ACCOUNT = 3
        try:
            for _ in range(3):
                response = self.client.post("/api/auth/login", json={"username": "admin", "password": "bad"})
                self.assertEqual(response.status_code, 401)
            locked = self.client.post("/api/auth/login", json={"username": "admin", "password": "admin-test-pin"})
            self.assertEqual(locked.status_code, 429)
            self.assertIn("retry-after", {key.lower() for key in locked.headers.keys()})
        finally:
            app_module.AUTH_MAX_ATTEMPTS_PER_ACCOUNT = original_limit

    def test_admin_can_manage_users(self):
        self.client.post("/api/auth/login", json={"username": "admin", "password": "admin-test-pin"})
        created = self.client.post(
            "/api/admin/users",
            json={"email": "new@example.com", "name": "New Person", "password": "long-enough", "role": "viewer"},
        )
        self.assertEqual(created.status_code, 201)
        self.assertEqual(created.json()["role"], "VIEWER")

        duplicate = self.client.post(
            "/api/admin/users",
            json={"email": "new@example.com", "name": "Again", "password": "long-enough"},
        )
        self.assertEqual(duplicate.status_code, 400)

        short = self.client.post(
            "/api/admin/users",
            json={"email": "short@example.com", "name": "Short", "password": "abc"},
        )
        self.assertEqual(short.status_code, 400)

        removed = self.client.delete(f"/api/admin/users/{created.json()['userID']}")
        self.assertEqual(removed.status_code, 200)
        self.assertEqual(removed.json()["result"], "deleted")


if __name__ == "__main__":
    unittest.main()
