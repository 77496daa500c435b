from __future__ import annotations

import tempfile
import unittest
from pathlib import Path

from brokerdesk.catalog import save_catalog_item
from brokerdesk.clients import (
    add_beneficiary,
    create_client,
    create_policy,
    delete_client,
    get_client,
    get_policy,
    list_clients,
    list_policies,
    update_beneficiary,
    update_client,
    update_policy,
)
from brokerdesk.errors import NotFoundError, ValidationError
from brokerdesk.persistence import init_db


def _client(db: Path, number: str = "V-12345678", first: str = "María", last: str = "González") -> dict:
    return create_client(
        db,
        {"identification_number": number, "first_name": first, "last_name": last, "email": "maria@example.com"},
    )


class ClientTests(unittest.TestCase):
    def test_create_and_search_clients(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            db = Path(tmp) / "demo.db"
            init_db(db)
            maria = _client(db)
            _client(db, "V-87654321", "José", "Pérez")
            self.assertEqual(maria["identification_type"], "cedula")
            self.assertEqual(maria["policies"], [])

            found = list_clients(db, search="gonz")
            self.assertEqual([c["id"] for c in found], [maria["id"]])
            self.assertEqual(found[0]["policy_count"], 0)
            self.assertEqual(len(list_clients(db, search="8765")), 1)

    def test_duplicate_identification_ignores_formatting(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            db = Path(tmp) / "demo.db"
            init_db(db)
            _client(db, "V-12.345.678")
            with self.assertRaises(ValidationError):
                _client(db, "v12345678")

    def test_same_number_under_another_identification_type(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            db = Path(tmp) / "demo.db"
            init_db(db)
            cedula = create_client(db, {"identification_number": "123", "first_name": "Ana", "last_name": "Ruiz"})
            passport = create_client(
                db,
                {"identification_type": "pasaporte", "identification_number": "123", "first_name": "Ana", "last_name": "Ruiz"},
            )
            self.assertNotEqual(cedula["id"], passport["id"])
            self.assertEqual(len(list_clients(db)), 2)

            with self.assertRaises(ValidationError):
                update_client(db, passport["id"], {"identification_type": "cedula"})
            renamed = update_client(db, passport["id"], {"identification_number": "123-A"})
            self.assertEqual(renamed["identification_number"], "123-A")

    def test_required_fields_and_update(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            db = Path(tmp) / "demo.db"
            init_db(db)
            with self.assertRaises(ValidationError) as ctx:
                create_client(db, {"identification_number": "", "first_name": "A"})
            fields = {e["field"] for e in ctx.exception.errors}
            self.assertEqual(fields, {"identification_number", "last_name"})

            client = _client(db)
            updated = update_client(db, client["id"], {"phone": "0212-5550000"})
            self.assertEqual(updated["phone"], "0212-5550000")
            self.assertEqual(updated["first_name"], "María")
            with self.assertRaises(ValidationError):
                update_client(db, client["id"], {"first_name": "  "})
            with self.assertRaises(NotFoundError):
                update_client(db, "missing", {"phone": "1"})


class PolicyTests(unittest.TestCase):
    def test_policy_with_advisors_and_installment(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            db = Path(tmp) / "demo.db"
            init_db(db)
            client = _client(db)
            insurer = save_catalog_item(db, "insurers", {"name": "Seguros Caracas"})
            ana = save_catalog_item(db, "advisors", {"full_name": "Ana"})
            luis = save_catalog_item(db, "advisors", {"full_name": "Luis"})

            policy = create_policy(
                db,
                {
                    "client_id": client["id"],
                    "insurer_id": insurer["id"],
                    "policy_number": "POL-1",
                    "start_date": "2024-01-01",
                    "end_date": "2025-01-01",
                    "premium": 1200,
                    "payment_frequency": "trimestral",
                    "primary_advisor_id": ana["id"],
                    "secondary_advisor_id": luis["id"],
                },
            )
            self.assertEqual(policy["status"], "en_tramite")
            self.assertEqual(policy["installment_amount"], 300)
            self.assertEqual(policy["installment_label"], "4 cuotas anuales")
            self.assertEqual(policy["primary_advisor_name"], "Ana")
            self.assertEqual(policy["secondary_advisor_name"], "Luis")
            self.assertEqual(policy["insurer_name"], "Seguros Caracas")
            self.assertEqual(policy["client_first_name"], "María")

            updated = update_policy(db, policy["id"], {"status": "vigente", "secondary_advisor_id": None})
            self.assertEqual(updated["status"], "vigente")
            self.assertIsNone(updated["secondary_advisor_id"])
            self.assertEqual(len(list_policies(db, status="vigente")), 1)
            self.assertEqual(len(list_policies(db, search="pol-1")), 1)
            self.assertEqual(get_client(db, client["id"])["policies"][0]["id"], policy["id"])

    def test_policy_validation(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            db = Path(tmp) / "demo.db"
            init_db(db)
            client = _client(db)
            base = {"client_id": client["id"], "start_date": "2024-01-01", "end_date": "2025-01-01"}
            with self.assertRaises(ValidationError):
                create_policy(db, {**base, "end_date": "2023-01-01"})
            with self.assertRaises(ValidationError):
                create_policy(db, {**base, "payment_frequency": "diaria"})
            with self.assertRaises(ValidationError):
                create_policy(db, {**base, "premium": -5})
            with self.assertRaises(ValidationError):
                create_policy(db, {"client_id": client["id"]})

    def test_deleting_client_cascades(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            db = Path(tmp) / "demo.db"
            init_db(db)
            client = _client(db)
            policy = create_policy(db, {"client_id": client["id"], "start_date": "2024-01-01", "end_date": "2025-01-01"})
            self.assertTrue(delete_client(db, client["id"]))
            with self.assertRaises(NotFoundError):
                get_policy(db, policy["id"])


class BeneficiaryTests(unittest.TestCase):
    def test_percentages_cannot_exceed_hundred(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            db = Path(tmp) / "demo.db"
            init_db(db)
            client = _client(db)
            policy = create_policy(
                db,
                {
                    "client_id": client["id"],
                    "start_date": "2024-01-01",
                    "end_date": "2025-01-01",
                    "beneficiaries": [{"first_name": "Luis", "last_name": "González", "relationship": "hijo", "percentage": 60}],
                },
            )
            self.assertEqual(len(policy["beneficiaries"]), 1)
            second = add_beneficiary(db, policy["id"], {"first_name": "Ana", "last_name": "González", "percentage": 40})
            self.assertEqual(second["relationship"], "otro")

            with self.assertRaises(ValidationError):
                add_beneficiary(db, policy["id"], {"first_name": "Eva", "last_name": "González", "percentage": 1})
            with self.assertRaises(ValidationError):
                update_beneficiary(db, second["id"], {"percentage": 41})
            self.assertEqual(update_beneficiary(db, second["id"], {"percentage": 30})["percentage"], 30)
            with self.assertRaises(ValidationError):
                add_beneficiary(db, policy["id"], {"first_name": "Eva", "last_name": "G", "relationship": "primo"})
            with self.assertRaises(NotFoundError):
                add_beneficiary(db, "missing", {"first_name": "Eva", "last_name": "G"})


if __name__ == "__main__":
    unittest.main()
