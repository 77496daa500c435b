from __future__ import annotations

import tempfile
import unittest
from datetime import date
from pathlib import Path

from brokerdesk.catalog import save_catalog_item, upsert_broker_settings
from brokerdesk.clients import create_client, create_policy
from brokerdesk.consumptions import create_consumption
from brokerdesk.errors import NotFoundError, ValidationError
from brokerdesk.persistence import init_db, list_audit_events
from brokerdesk.renewals import (
    delete_renewal_config,
    get_renewal_config,
    process_scheduled_renewals,
    renewal_email,
    renewal_notice_data,
    renewal_policies,
    renewal_stats,
    update_renewal_status,
    upsert_renewal_config,
)

TODAY = date(2024, 3, 15)


class FakeSender:
    def __init__(self, result: bool = True, error: Exception | None = None) -> None:
        self.result = result
        self.error = error
        self.sent: list[tuple[str, str, str]] = []

    def __call__(self, to: str, subject: str, text: str | None = None, **kwargs: object) -> bool:
        if self.error is not None:
            raise self.error
        self.sent.append((to, subject, text or ""))
        return self.result


def _policy(db: Path, number: str, end_date: str, email: str | None = "maria@example.com", premium: float = 1000) -> dict:
    client = create_client(
        db,
        {"identification_number": f"V-{number}", "first_name": "María", "last_name": "González", "email": email},
    )
    return create_policy(
        db,
        {
            "client_id": client["id"],
            "policy_number": number,
            "start_date": "2023-04-10",
            "end_date": end_date,
            "premium": premium,
            "status": "vigente",
        },
    )


class RenewalConfigTests(unittest.TestCase):
    def test_window_and_config_variance(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            db = Path(tmp) / "demo.db"
            init_db(db)
            soon = _policy(db, "POL-1", "2024-04-10")
            _policy(db, "POL-2", "2024-03-20")
            _policy(db, "POL-3", "2024-06-30")

            items = renewal_policies(db, today=TODAY)
            self.assertEqual([i["policy_number"] for i in items], ["POL-2", "POL-1"])
            self.assertEqual(items[1]["days_until_renewal"], 26)
            self.assertIsNone(items[1]["config_id"])

            config = upsert_renewal_config(db, soon["id"], soon["end_date"], new_amount=1100)
            self.assertEqual(config["status"], "programada")
            self.assertEqual(config["current_amount"], 1000)
            self.assertEqual(config["difference"], 100)
            self.assertEqual(config["percentage"], 10)
            self.assertEqual(config["badge"], "aumento")
            self.assertEqual(config["scheduled_send_date"], "2024-03-11")

            # Saving again replaces the config for the same renewal date.
            again = upsert_renewal_config(db, soon["id"], soon["end_date"], new_amount=900)
            self.assertEqual(again["id"], config["id"])
            self.assertEqual(again["badge"], "disminucion")

            self.assertEqual([i["policy_number"] for i in renewal_policies(db, status="sin_config", today=TODAY)], ["POL-2"])
            self.assertEqual(len(renewal_policies(db, status="programada", today=TODAY)), 1)

            stats = renewal_stats(db, today=TODAY)
            self.assertEqual(stats["total"], 2)
            self.assertEqual(stats["this_week"], 1)
            self.assertEqual(stats["without_config"], 1)
            self.assertEqual(stats["by_status"], {"programada": 1})

    def test_config_without_amount_is_pending(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            db = Path(tmp) / "demo.db"
            init_db(db)
            policy = _policy(db, "POL-1", "2024-04-10")
            config = upsert_renewal_config(db, policy["id"], "2024-04-10", scheduled_send_date="2024-03-20")
            self.assertEqual(config["status"], "pendiente")
            self.assertEqual(config["badge"], "sin_cambio")
            self.assertEqual(config["scheduled_send_date"], "2024-03-20")

            self.assertEqual(update_renewal_status(db, config["id"], "cancelada")["status"], "cancelada")
            with self.assertRaises(ValidationError):
                update_renewal_status(db, config["id"], "archivada")
            with self.assertRaises(ValidationError):
                upsert_renewal_config(db, policy["id"], "2024-04-10", new_amount=-1)
            with self.assertRaises(NotFoundError):
                upsert_renewal_config(db, "missing", "2024-04-10")

            self.assertTrue(delete_renewal_config(db, config["id"]))
            with self.assertRaises(NotFoundError):
                get_renewal_config(db, config["id"])


class ProcessTests(unittest.TestCase):
    def test_sends_due_notices_and_audits(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            db = Path(tmp) / "demo.db"
            init_db(db)
            upsert_broker_settings(db, {"name": "Corretaje Demo", "email": "info@demo.com"})
            policy = _policy(db, "POL-1", "2024-04-10")
            later = _policy(db, "POL-2", "2024-05-10")
            config = upsert_renewal_config(db, policy["id"], policy["end_date"], new_amount=1100)
            upsert_renewal_config(db, later["id"], later["end_date"], new_amount=1100)

            sender = FakeSender()
            result = process_scheduled_renewals(db, today=date(2024, 3, 11), sender=sender)
            self.assertEqual(result, {"processed": 1, "sent": 1, "errors": []})
            to, subject, body = sender.sent[0]
            self.assertEqual(to, "maria@example.com")
            self.assertEqual(subject, "Aviso de Renovación - Póliza POL-1")
            self.assertIn("+10.00%", body)
            self.assertIn("Corretaje Demo", body)

            sent = get_renewal_config(db, config["id"])
            self.assertEqual(sent["status"], "enviada")
            self.assertEqual(sent["email_sent"], 1)
            audit = list_audit_events(db, module="renovaciones")
            self.assertEqual(audit[0]["details"]["policy_number"], "POL-1")

            # Already sent notices are not picked up again.
            self.assertEqual(process_scheduled_renewals(db, today=date(2024, 3, 11), sender=sender)["processed"], 0)

    def test_missing_email_and_sender_failures(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            db = Path(tmp) / "demo.db"
            init_db(db)
            no_email = _policy(db, "POL-1", "2024-04-10", email=None)
            unconfigured = _policy(db, "POL-2", "2024-04-10")
            no_email_config = upsert_renewal_config(db, no_email["id"], "2024-04-10", new_amount=1000)
            pending_config = upsert_renewal_config(db, unconfigured["id"], "2024-04-10", new_amount=1000)

            result = process_scheduled_renewals(db, today=date(2024, 3, 11), sender=FakeSender(result=False))
            self.assertEqual(result["sent"], 0)
            self.assertEqual(len(result["errors"]), 2)
            self.assertEqual(get_renewal_config(db, no_email_config["id"])["status"], "error")
            self.assertEqual(get_renewal_config(db, pending_config["id"])["status"], "programada")

            result = process_scheduled_renewals(
                db, today=date(2024, 3, 11), sender=FakeSender(error=RuntimeError("smtp down"))
            )
            self.assertEqual(result["errors"], ["Póliza POL-2: smtp down"])
            failed = get_renewal_config(db, pending_config["id"])
            self.assertEqual(failed["status"], "error")
            self.assertEqual(failed["notes"], "Error: smtp down")


class NoticeTests(unittest.TestCase):
    def test_notice_data_includes_period_consumptions(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            db = Path(tmp) / "demo.db"
            init_db(db)
            policy = _policy(db, "POL-1", "2024-04-10")
            consult = save_catalog_item(db, "usage_types", {"name": "Consulta"})
            base = {"policy_id": policy["id"], "usage_type_id": consult["id"], "description": "Consulta general"}
            create_consumption(db, {**base, "usage_date": "2023-06-01", "amount_usd": 50})
            create_consumption(db, {**base, "usage_date": "2023-08-01", "amount_usd": 70, "amount_bs": 100})
            create_consumption(db, {**base, "usage_date": "2022-01-01", "amount_usd": 999})

            notice = renewal_notice_data(db, policy["id"])
            self.assertIsNone(notice["config"])
            self.assertEqual(notice["new_amount"], 1000)
            self.assertEqual(notice["badge"], "sin_cambio")
            self.assertEqual(notice["consumption_summary"]["count"], 2)
            self.assertEqual(notice["consumption_summary"]["total_usd"], 120)

            upsert_renewal_config(db, policy["id"], "2024-04-10", new_amount=1250)
            notice = renewal_notice_data(db, policy["id"])
            self.assertEqual(notice["percentage"], 25)
            self.assertEqual(notice["difference"], 250)

    def test_email_text_uses_fallbacks(self) -> None:
        config = {
            "policy_number": None,
            "current_amount": 100,
            "new_amount": 90,
            "percentage": -10,
            "first_name": "Ana",
            "last_name": "Pérez",
            "renewal_date": "2024-04-10",
            "insurer_name": None,
            "product_name": None,
        }
        subject, body = renewal_email(config, {"name": "Corretaje"})
        self.assertEqual(subject, "Aviso de Renovación - Póliza")
        self.assertIn("Aseguradora: N/A", body)
        self.assertIn("-10.00%", body)
        self.assertIn("$90.00", body)


if __name__ == "__main__":
    unittest.main()
