from __future__ import annotations

import tempfile
import unittest
from datetime import date
from pathlib import Path

from brokerdesk.clients import create_client, create_policy
from brokerdesk.errors import NotFoundError, ValidationError
from brokerdesk.persistence import get_conn, init_db
from brokerdesk.premium_collections import (
    collection_history,
    collection_stats,
    get_collection,
    list_collections,
    mark_advisor_contact,
    mark_paid,
    revert_to_pending,
    sync_collections,
)

TODAY = date(2024, 3, 15)


def _policy(db: Path, number: str = "POL-1", payment_date: str = "2024-03-01", frequency: str = "mensual") -> dict:
    client = create_client(
        db, {"identification_number": f"V-{number}", "first_name": "María", "last_name": f"González {number}"}
    )
    return create_policy(
        db,
        {
            "client_id": client["id"],
            "policy_number": number,
            "start_date": "2024-01-01",
            "end_date": "2025-01-01",
            "premium": 120,
            "payment_frequency": frequency,
            "status": "vigente",
            "premium_payment_date": payment_date,
        },
    )


class SyncTests(unittest.TestCase):
    def test_sync_opens_one_collection_per_policy(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            db = Path(tmp) / "demo.db"
            init_db(db)
            self.assertEqual(sync_collections(db)["created"], 0)

            _policy(db, "POL-1", "2024-03-01")
            _policy(db, "POL-2", "2024-04-10")
            first = sync_collections(db)
            self.assertEqual(first["created"], 2)
            self.assertEqual(sync_collections(db), {"created": 0, "message": "Todas las cobranzas están al día."})

            rows = list_collections(db, today=TODAY)
            self.assertEqual([r["policy_number"] for r in rows], ["POL-1", "POL-2"])
            self.assertEqual(rows[0]["days_overdue"], 14)
            self.assertEqual(rows[1]["days_overdue"], -26)
            self.assertEqual(rows[0]["client_name"], "María González POL-1")

            overdue = list_collections(db, days_overdue_min=1, today=TODAY)
            self.assertEqual([r["policy_number"] for r in overdue], ["POL-1"])
            self.assertEqual(len(list_collections(db, search="pol-2", today=TODAY)), 1)
            self.assertEqual(len(list_collections(db, due_from="2024-04-01", today=TODAY)), 1)

    def test_stats_split_overdue_and_upcoming(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            db = Path(tmp) / "demo.db"
            init_db(db)
            _policy(db, "POL-1", "2024-03-01")
            _policy(db, "POL-2", "2024-04-10")
            sync_collections(db)
            stats = collection_stats(db, today=TODAY)
            self.assertEqual(stats["total_pending"], 2)
            self.assertEqual(stats["total_amount"], 240)
            self.assertEqual(stats["overdue"], 1)
            self.assertEqual(stats["upcoming_amount"], 120)
            self.assertEqual(stats["contact_advisor"], 0)


class PaymentTests(unittest.TestCase):
    def test_mark_paid_opens_exactly_one_successor(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            db = Path(tmp) / "demo.db"
            init_db(db)
            policy = _policy(db, "POL-1", "2024-01-31", "mensual")
            sync_collections(db)
            current = list_collections(db, today=TODAY)[0]

            result = mark_paid(db, current["id"], user="staff@example.com")
            self.assertEqual(result["collection"]["status"], "cobrada")
            self.assertEqual(result["collection"]["paid_by"], "staff@example.com")
            self.assertEqual(result["collection"]["days_overdue"], 0)
            self.assertEqual(result["next_collection"]["due_date"], "2024-02-29")
            self.assertEqual(result["next_collection"]["status"], "pendiente")

            with self.assertRaises(ValidationError):
                mark_paid(db, current["id"])
            self.assertEqual(len(list_collections(db, status="pendiente", today=TODAY)), 1)

            with get_conn(db) as conn:
                row = conn.execute("SELECT premium_payment_date FROM policies WHERE id = ?", (policy["id"],)).fetchone()
            self.assertEqual(row["premium_payment_date"], "2024-02-29")
            # The policy now points at the open successor, so sync has nothing to add.
            self.assertEqual(sync_collections(db)["created"], 0)

            history = collection_history(db, current["id"])
            self.assertEqual([h["action"] for h in history], ["pago"])

    def test_quarterly_successor(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            db = Path(tmp) / "demo.db"
            init_db(db)
            _policy(db, "POL-1", "2024-01-15", "trimestral")
            sync_collections(db)
            current = list_collections(db, today=TODAY)[0]
            self.assertEqual(mark_paid(db, current["id"])["next_collection"]["due_date"], "2024-04-15")


class AdvisorContactTests(unittest.TestCase):
    def test_contact_and_revert(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            db = Path(tmp) / "demo.db"
            init_db(db)
            _policy(db)
            sync_collections(db)
            current = list_collections(db, today=TODAY)[0]

            with self.assertRaises(ValidationError):
                mark_advisor_contact(db, current["id"], "")
            contacted = mark_advisor_contact(db, current["id"], "2024-03-20", "Paga el viernes")
            self.assertEqual(contacted["status"], "contacto_asesor")
            self.assertEqual(contacted["promised_date"], "2024-03-20")
            self.assertEqual(collection_stats(db, today=TODAY)["contact_advisor"], 1)

            reverted = revert_to_pending(db, current["id"])
            self.assertEqual(reverted["status"], "pendiente")
            self.assertIsNone(reverted["promised_date"])

            history = collection_history(db, current["id"])
            self.assertEqual([h["action"] for h in history], ["contacto_asesor", "revertir"])
            self.assertIn("2024-03-20", history[0]["notes"])

            mark_paid(db, current["id"])
            with self.assertRaises(ValidationError):
                revert_to_pending(db, current["id"])
            with self.assertRaises(NotFoundError):
                get_collection(db, "missing")


if __name__ == "__main__":
    unittest.main()
