from __future__ import annotations

import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from fastapi.testclient import TestClient

from brokerdesk import main
from brokerdesk.persistence import init_db, list_audit_events


class ApiTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.db = Path(self._tmp.name) / "api.db"
        init_db(self.db)
        self._patch = patch.object(main, "DB_PATH", self.db)
        self._patch.start()
        self.admin = TestClient(main.app)
        response = self.admin.post(
            "/api/v1/auth/signup",
            json={"email": "admin@example.com", "password": "secret-pass", "full_name": "Admin"},
        )
        self.assertEqual(response.status_code, 200)

    def tearDown(self) -> None:
        self._patch.stop()
        self._tmp.cleanup()

    def test_health_and_session(self) -> None:
        self.assertEqual(self.admin.get("/health").json()["ok"], True)
        me = self.admin.get("/api/v1/auth/me").json()["user"]
        self.assertEqual(me["role"], "acceso_total")
        self.assertEqual(me["role_label"], "Acceso Total")

        self.admin.post("/api/v1/auth/logout")
        self.assertEqual(self.admin.get("/api/v1/auth/me").status_code, 401)
        login = self.admin.post("/api/v1/auth/login", json={"email": "admin@example.com", "password": "secret-pass"})
        self.assertEqual(login.status_code, 200)
        bad = self.admin.post("/api/v1/auth/login", json={"email": "admin@example.com", "password": "nope-nope"})
        self.assertEqual(bad.status_code, 401)
        self.assertFalse(bad.json()["ok"])

    def test_roles_are_enforced(self) -> None:
        anonymous = TestClient(main.app)
        self.assertEqual(anonymous.get("/api/v1/clients").status_code, 401)

        staff = TestClient(main.app)
        staff.post("/api/v1/auth/signup", json={"email": "staff@example.com", "password": "secret-pass"})
        self.assertEqual(staff.get("/api/v1/clients").status_code, 403)

        users = self.admin.get("/api/v1/users").json()["rows"]
        staff_id = next(u["id"] for u in users if u["email"] == "staff@example.com")
        self.admin.put(f"/api/v1/users/{staff_id}/role", json={"role": "revision"})

        self.assertEqual(staff.get("/api/v1/clients").status_code, 200)
        created = staff.post(
            "/api/v1/clients",
            json={"identification_number": "V-1", "first_name": "María", "last_name": "González"},
        )
        self.assertEqual(created.status_code, 403)
        self.assertEqual(staff.get("/api/v1/finances/accounts").status_code, 403)
        self.assertEqual(staff.get("/api/v1/users").status_code, 403)

    def test_client_policy_and_collection_flow(self) -> None:
        missing = self.admin.post("/api/v1/clients", json={"first_name": "María"})
        self.assertEqual(missing.status_code, 400)
        self.assertIn("errors", missing.json())

        client = self.admin.post(
            "/api/v1/clients",
            json={"identification_number": "V-1", "first_name": "María", "last_name": "González"},
        ).json()["client"]
        insurer = self.admin.post("/api/v1/catalog/insurers", json={"name": "Seguros Caracas"}).json()["item"]
        policy = self.admin.post(
            "/api/v1/policies",
            json={
                "client_id": client["id"],
                "insurer_id": insurer["id"],
                "policy_number": "POL-1",
                "start_date": "2024-01-01",
                "end_date": "2025-01-01",
                "premium": 100,
                "status": "vigente",
                "premium_payment_date": "2024-01-31",
                "beneficiaries": [{"first_name": "Luis", "last_name": "González", "percentage": 100}],
            },
        ).json()["policy"]
        self.assertEqual(len(policy["beneficiaries"]), 1)

        self.assertEqual(self.admin.get("/api/v1/clients").json()["count"], 1)
        self.assertEqual(self.admin.get("/api/v1/clients/missing").status_code, 404)

        self.assertEqual(self.admin.post("/api/v1/collections/sync").json()["created"], 1)
        collection = self.admin.get("/api/v1/collections").json()["rows"][0]
        paid = self.admin.post(f"/api/v1/collections/{collection['id']}/pay").json()
        self.assertEqual(paid["next_collection"]["due_date"], "2024-02-29")
        self.assertEqual(self.admin.post(f"/api/v1/collections/{collection['id']}/pay").status_code, 400)

        audit = list_audit_events(self.db, module="cobranzas")
        self.assertEqual(audit[0]["user_email"], "admin@example.com")

        notice = self.admin.get(f"/api/v1/collections/{paid['next_collection']['id']}/notice.pdf")
        self.assertEqual(notice.headers["content-type"], "application/pdf")
        self.assertTrue(notice.content.startswith(b"%PDF"))

        export = self.admin.get("/api/v1/clients/export.xlsx")
        self.assertEqual(export.headers["content-type"], main.XLSX_MEDIA_TYPE)
        self.assertIn("clientes.xlsx", export.headers["content-disposition"])

        dashboard = self.admin.get("/api/v1/dashboard").json()
        self.assertEqual(dashboard["clientes"]["total"], 1)


if __name__ == "__main__":
    unittest.main()
