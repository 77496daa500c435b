from __future__ import annotations

import sqlite3
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from brokerdesk import commissions
from brokerdesk.catalog import save_catalog_item
from brokerdesk.commissions import (
    breakdown_rows,
    commission_breakdown,
    commission_template,
    create_batch,
    delete_batches,
    get_batch,
    import_commission_rows,
    list_batches,
    list_rules,
    save_assignments,
    save_entries,
    suggested_rate,
    update_batch_status,
    update_entry,
    upsert_rule,
    verify_batch,
)
from brokerdesk.errors import NotFoundError, ValidationError
from brokerdesk.persistence import init_db
from brokerdesk.spreadsheets import read_table


def _setup(db: Path) -> tuple[dict, dict, dict]:
    init_db(db)
    insurer = save_catalog_item(db, "insurers", {"name": "Seguros Caracas"})
    ana = save_catalog_item(db, "advisors", {"full_name": "Ana Rodríguez"})
    luis = save_catalog_item(db, "advisors", {"full_name": "Luis Pérez"})
    return insurer, ana, luis


class BatchTests(unittest.TestCase):
    def test_entries_totals_and_verification(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            db = Path(tmp) / "demo.db"
            insurer, _, _ = _setup(db)
            batch = create_batch(db, insurer["id"], "2024-03-01")
            self.assertEqual(batch["status"], "pendiente")
            self.assertEqual(batch["insurer_name"], "Seguros Caracas")

            batch = save_entries(
                db,
                batch["id"],
                [
                    {"client_name": "María González", "premium": 1000, "commission_rate": 10},
                    {"client_name": "José Pérez", "premium": 2000, "commission_rate": 10, "commission_amount": 150},
                ],
            )
            self.assertEqual(batch["total_premium"], 3000)
            self.assertEqual(batch["total_commission"], 250)
            self.assertEqual(batch["entries"][0]["commission_amount"], 100)

            result = verify_batch(db, batch["id"])
            self.assertEqual(result, {"batch_id": batch["id"], "verified": 2, "discrepancies": 1})
            batch = get_batch(db, batch["id"])
            self.assertEqual(batch["status"], "verificado")
            flagged = [e for e in batch["entries"] if e["has_discrepancy"]]
            self.assertEqual(len(flagged), 1)
            self.assertIn("Esperado: $200.00", flagged[0]["discrepancy_notes"])

            listed = list_batches(db, status="verificado")
            self.assertEqual(listed[0]["entry_count"], 2)
            self.assertEqual(listed[0]["discrepancy_count"], 1)

    def test_entry_requires_client_name(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            db = Path(tmp) / "demo.db"
            insurer, _, _ = _setup(db)
            batch = create_batch(db, insurer["id"], "2024-03-01")
            with self.assertRaises(ValidationError):
                save_entries(db, batch["id"], [{"client_name": " ", "premium": 10, "commission_rate": 1}])
            with self.assertRaises(NotFoundError):
                save_entries(db, "missing", [])

    def test_assigned_status_needs_verified_and_full_assignment(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            db = Path(tmp) / "demo.db"
            insurer, ana, _ = _setup(db)
            batch = create_batch(db, insurer["id"], "2024-03-01")
            batch = save_entries(db, batch["id"], [{"client_name": "María", "premium": 1000, "commission_rate": 10}])
            with self.assertRaises(ValidationError):
                update_batch_status(db, batch["id"], "asignado")
            verify_batch(db, batch["id"])
            with self.assertRaises(ValidationError):
                update_batch_status(db, batch["id"], "asignado")
            save_assignments(db, batch["entries"][0]["id"], [{"advisor_id": ana["id"], "percentage": 50}])
            self.assertEqual(update_batch_status(db, batch["id"], "asignado")["status"], "asignado")

            with self.assertRaises(ValidationError):
                update_batch_status(db, batch["id"], "verificado")
            with self.assertRaises(ValidationError):
                verify_batch(db, batch["id"])
            self.assertEqual(update_batch_status(db, batch["id"], "pendiente")["status"], "pendiente")
            with self.assertRaises(ValidationError):
                update_batch_status(db, batch["id"], "asignado")

            self.assertEqual(delete_batches(db, [batch["id"]]), 1)
            self.assertEqual(list_batches(db), [])

    def test_verified_status_runs_verification(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            db = Path(tmp) / "demo.db"
            insurer, _, _ = _setup(db)
            batch = create_batch(db, insurer["id"], "2024-03-01")
            batch = save_entries(
                db,
                batch["id"],
                [{"client_name": "María", "premium": 1000, "commission_rate": 10, "commission_amount": 90}],
            )
            batch = update_batch_status(db, batch["id"], "verificado")
            self.assertEqual(batch["status"], "verificado")
            self.assertEqual(batch["entries"][0]["has_discrepancy"], 1)
            self.assertEqual(batch["entries"][0]["is_verified"], 1)
            self.assertEqual(update_batch_status(db, batch["id"], "verificado")["status"], "verificado")
            with self.assertRaises(ValidationError):
                update_batch_status(db, batch["id"], "cerrado")

            self.assertEqual(delete_batches(db, [batch["id"]]), 1)
            self.assertEqual(list_batches(db), [])


class AssignmentTests(unittest.TestCase):
    def test_split_amounts_margin_and_inline_edit(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            db = Path(tmp) / "demo.db"
            insurer, ana, luis = _setup(db)
            batch = create_batch(db, insurer["id"], "2024-03-01")
            batch = save_entries(db, batch["id"], [{"client_name": "María", "premium": 1000, "commission_rate": 20}])
            entry_id = batch["entries"][0]["id"]

            result = save_assignments(
                db,
                entry_id,
                [
                    {"advisor_id": ana["id"], "percentage": 40},
                    {"advisor_id": luis["id"], "percentage": 25},
                    {"advisor_id": luis["id"], "percentage": 0},
                ],
            )
            amounts = {a["advisor_name"]: a["amount"] for a in result["assignments"]}
            self.assertEqual(amounts, {"Ana Rodríguez": 80, "Luis Pérez": 50})
            self.assertEqual(result["agency_margin"], 35)

            entry = update_entry(db, entry_id, commission_rate=10)
            self.assertEqual(entry["commission_amount"], 100)
            self.assertEqual({a["advisor_name"]: a["amount"] for a in entry["assignments"]}["Ana Rodríguez"], 40)
            self.assertEqual(get_batch(db, batch["id"])["total_commission"], 100)

            entry = update_entry(db, entry_id, commission_amount_value=90)
            self.assertEqual(entry["commission_amount"], 90)
            self.assertEqual(entry["commission_rate"], 10)

    def test_split_over_hundred_or_repeated_advisor_rejected(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            db = Path(tmp) / "demo.db"
            insurer, ana, luis = _setup(db)
            batch = create_batch(db, insurer["id"], "2024-03-01")
            batch = save_entries(db, batch["id"], [{"client_name": "María", "premium": 1000, "commission_rate": 20}])
            entry_id = batch["entries"][0]["id"]
            with self.assertRaises(ValidationError):
                save_assignments(
                    db,
                    entry_id,
                    [{"advisor_id": ana["id"], "percentage": 70}, {"advisor_id": luis["id"], "percentage": 40}],
                )
            with self.assertRaises(ValidationError):
                save_assignments(
                    db,
                    entry_id,
                    [{"advisor_id": ana["id"], "percentage": 20}, {"advisor_id": ana["id"], "percentage": 20}],
                )


class RuleAndBreakdownTests(unittest.TestCase):
    def test_rules_fall_back_to_general(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            db = Path(tmp) / "demo.db"
            insurer, ana, _ = _setup(db)
            upsert_rule(db, ana["id"], insurer["id"], 40)
            upsert_rule(db, ana["id"], insurer["id"], 45)
            upsert_rule(db, ana["id"], insurer["id"], 60, plan_type="Salud")
            self.assertEqual(len(list_rules(db, ana["id"])), 2)
            self.assertEqual(suggested_rate(db, ana["id"], insurer["id"]), 45)
            self.assertEqual(suggested_rate(db, ana["id"], insurer["id"], "Salud"), 60)
            self.assertEqual(suggested_rate(db, ana["id"], insurer["id"], "Vida"), 45)
            with self.assertRaises(ValidationError):
                upsert_rule(db, ana["id"], insurer["id"], 120)

    def test_breakdown_groups_by_advisor(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            db = Path(tmp) / "demo.db"
            insurer, ana, luis = _setup(db)
            march = create_batch(db, insurer["id"], "2024-03-01")
            march = save_entries(
                db,
                march["id"],
                [
                    {"client_name": "María", "policy_number": "POL-1", "premium": 1000, "commission_rate": 10},
                    {"client_name": "José", "policy_number": "POL-2", "premium": 500, "commission_rate": 10},
                ],
            )
            april = create_batch(db, insurer["id"], "2024-04-01")
            april = save_entries(db, april["id"], [{"client_name": "Eva", "premium": 2000, "commission_rate": 10}])
            save_assignments(db, march["entries"][0]["id"], [{"advisor_id": ana["id"], "percentage": 50}])
            save_assignments(db, march["entries"][1]["id"], [{"advisor_id": ana["id"], "percentage": 50}])
            save_assignments(db, april["entries"][0]["id"], [{"advisor_id": luis["id"], "percentage": 30}])

            everything = commission_breakdown(db)
            self.assertEqual([a["advisor_name"] for a in everything], ["Ana Rodríguez", "Luis Pérez"])
            self.assertEqual(everything[0]["total"], 75)
            self.assertEqual(len(everything[0]["items"]), 2)
            self.assertEqual(everything[1]["total"], 60)

            march_only = commission_breakdown(db, date_to="2024-03-31")
            self.assertEqual([a["advisor_name"] for a in march_only], ["Ana Rodríguez"])
            self.assertEqual(commission_breakdown(db, advisor_id=luis["id"])[0]["items"][0]["client_name"], "Eva")

            rows = breakdown_rows(everything)
            self.assertEqual(rows[2], ["Total Ana Rodríguez", None, None, None, None, None, None, None, None, 75])


class BulkImportTests(unittest.TestCase):
    def test_bulk_rows_create_batches_and_rule_based_assignments(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            db = Path(tmp) / "demo.db"
            insurer, ana, luis = _setup(db)
            upsert_rule(db, ana["id"], insurer["id"], 40)
            rows = [
                {"Aseguradora": "Seguros Caracas", "Moneda": "USD", "Póliza": "POL-1", "Cliente": "María",
                 "Asesor": "Ana Rodríguez", "Prima": 1000, "% Comisión": 10},
                {"Aseguradora": "seguros caracas", "Moneda": "usd", "Póliza": "POL-2", "Cliente": "José",
                 "Asesor": "Luis Pérez", "Prima": 500, "% Comisión": 10, "Monto Comisión": 45},
                {"Aseguradora": "Seguros Caracas", "Moneda": "BS", "Cliente": "Eva", "Prima": 800, "% Comisión": 5},
                {"Aseguradora": "Seguros Caraca", "Cliente": "Pedro", "Prima": 100, "% Comisión": 5},
                {"Aseguradora": "Seguros Caracas", "Cliente": "", "Prima": 100, "% Comisión": 5},
            ]
            result = import_commission_rows(db, rows, batch_date="2024-05-01")
            self.assertEqual(result["batches_created"], 2)
            self.assertEqual(result["assignments_created"], 1)
            self.assertEqual(result["skipped"], [{"insurer_name": "Seguros Caraca", "suggestion": "Seguros Caracas"}])

            usd = next(get_batch(db, b) for b in result["batch_ids"] if get_batch(db, b)["currency"] == "USD")
            self.assertEqual(usd["batch_date"], "2024-05-01")
            self.assertEqual(usd["total_commission"], 145)
            maria = next(e for e in usd["entries"] if e["client_name"] == "María")
            self.assertEqual(maria["assignments"][0]["amount"], 40)
            jose = next(e for e in usd["entries"] if e["client_name"] == "José")
            self.assertEqual(jose["assignments"], [])

    def test_failed_bulk_load_leaves_no_batches(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            db = Path(tmp) / "demo.db"
            _setup(db)
            rows = [
                {"Aseguradora": "Seguros Caracas", "Moneda": "USD", "Cliente": "María", "Prima": 1000, "% Comisión": 10},
                {"Aseguradora": "Seguros Caracas", "Moneda": "BS", "Cliente": "Eva", "Prima": 800, "% Comisión": 5},
            ]
            with patch.object(commissions, "recalculate_batch_totals", side_effect=sqlite3.OperationalError("disk I/O error")):
                with self.assertRaises(sqlite3.OperationalError):
                    import_commission_rows(db, rows, batch_date="2024-05-01")
            self.assertEqual(list_batches(db), [])

    def test_template_lists_catalogs(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            db = Path(tmp) / "demo.db"
            _setup(db)
            headers, rows = read_table("plantilla.xlsx", commission_template(db))
            self.assertEqual(headers[0], "Aseguradora")
            self.assertEqual(rows[0]["Aseguradora"], "Seguros Caracas")
            self.assertEqual(rows[0]["Asesor"], "Ana Rodríguez")


if __name__ == "__main__":
    unittest.main()
