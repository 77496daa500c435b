from __future__ import annotations

import tempfile
import unittest
from pathlib import Path

from brokerdesk.catalog import save_catalog_item
from brokerdesk.errors import NotFoundError, ValidationError
from brokerdesk.finances import (
    account_balances,
    balance_sheet,
    create_invoice,
    create_journal_entry,
    delete_account,
    delete_income,
    delete_journal_entry,
    general_ledger,
    income_statement,
    latest_exchange_rate,
    list_cost_centers,
    list_exchange_rates,
    list_expenses,
    list_income,
    list_journal_entries,
    list_payables,
    list_receivables,
    monthly_cash_summary,
    record_exchange_rate,
    save_account,
    save_cost_center,
    save_expense,
    save_income,
    save_receivable,
    set_entry_status,
    set_expense_paid,
    set_invoice_status,
    set_receivable_collected,
    trial_balance,
    update_journal_entry,
    validate_journal_lines,
)
from brokerdesk.persistence import init_db


def _accounts(db: Path) -> dict[str, dict]:
    assets = save_account(db, {"code": "1", "name": "Activos", "account_class": "activos", "nature": "deudora"})
    return {
        "assets": assets,
        "bank": save_account(
            db,
            {"code": "1.1", "name": "Banco", "account_class": "activos", "nature": "deudora", "level": 2, "parent_id": assets["id"]},
        ),
        "capital": save_account(db, {"code": "3", "name": "Capital", "account_class": "patrimonio", "nature": "acreedora"}),
        "income": save_account(db, {"code": "4", "name": "Comisiones", "account_class": "ingresos", "nature": "acreedora"}),
        "expenses": save_account(db, {"code": "6", "name": "Oficina", "account_class": "gastos", "nature": "deudora"}),
    }


def _pair(debit_account: dict, credit_account: dict, amount: float) -> list[dict]:
    return [
        {"account_id": debit_account["id"], "debit_usd": amount},
        {"account_id": credit_account["id"], "credit_usd": amount},
    ]


def _book(db: Path) -> dict[str, dict]:
    acc = _accounts(db)
    create_journal_entry(db, "2024-01-05", "Aporte de capital", _pair(acc["bank"], acc["capital"], 1000), 36.5, "publicado")
    create_journal_entry(db, "2024-02-10", "Comisión cobrada", _pair(acc["bank"], acc["income"], 300), 36.5, "publicado")
    create_journal_entry(db, "2024-02-20", "Papelería", _pair(acc["expenses"], acc["bank"], 100), 36.5, "publicado")
    create_journal_entry(db, "2024-02-25", "Borrador", _pair(acc["bank"], acc["income"], 50), 36.5)
    return acc


class AccountTests(unittest.TestCase):
    def test_account_and_cost_center_validation(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            db = Path(tmp) / "demo.db"
            init_db(db)
            acc = _accounts(db)
            with self.assertRaises(ValidationError):
                save_account(db, {"code": "1.1", "name": "Otro", "account_class": "activos", "nature": "deudora"})
            with self.assertRaises(ValidationError):
                save_account(db, {"code": "9", "name": "X", "account_class": "otros", "nature": "deudora"})
            with self.assertRaises(ValidationError):
                save_account(db, {**acc["bank"], "parent_id": acc["bank"]["id"]}, acc["bank"]["id"])
            with self.assertRaises(NotFoundError):
                save_account(db, {"code": "99", "name": "X", "account_class": "activos", "nature": "deudora"}, "missing")

            center = save_cost_center(db, {"code": "CC-1", "name": "Ventas"})
            self.assertEqual(center["center_type"], "operativo")
            save_cost_center(db, {"code": "CC-2", "name": "Soporte", "center_type": "soporte", "is_active": False})
            self.assertEqual([c["code"] for c in list_cost_centers(db, active_only=True)], ["CC-1"])
            with self.assertRaises(ValidationError):
                save_cost_center(db, {"code": "CC-1", "name": "Duplicado"})

    def test_account_with_movements_cannot_be_deleted(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            db = Path(tmp) / "demo.db"
            init_db(db)
            acc = _book(db)
            with self.assertRaises(ValidationError):
                delete_account(db, acc["bank"]["id"])
            spare = save_account(db, {"code": "5", "name": "Costos", "account_class": "costos", "nature": "deudora"})
            self.assertTrue(delete_account(db, spare["id"]))


class ExchangeRateTests(unittest.TestCase):
    def test_rates_upsert_per_day_and_source(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            db = Path(tmp) / "demo.db"
            init_db(db)
            record_exchange_rate(db, 36.1, "2024-03-01")
            record_exchange_rate(db, 36.4, "2024-03-01")
            record_exchange_rate(db, 36.9, "2024-03-02", source="Paralelo")
            self.assertEqual(len(list_exchange_rates(db, "usd")), 2)
            self.assertEqual(latest_exchange_rate(db)["rate"], 36.9)
            self.assertEqual(latest_exchange_rate(db, source="BCV")["rate"], 36.4)
            self.assertIsNone(latest_exchange_rate(db, "EUR"))
            with self.assertRaises(ValidationError):
                record_exchange_rate(db, 0)


class JournalTests(unittest.TestCase):
    def test_line_validation(self) -> None:
        with self.assertRaises(ValidationError):
            validate_journal_lines([{"account_id": "a", "debit_usd": 10}])
        with self.assertRaises(ValidationError):
            validate_journal_lines([{"account_id": "a", "debit_usd": 10}, {"account_id": "b", "credit_usd": 9}])
        with self.assertRaises(ValidationError):
            validate_journal_lines(
                [{"account_id": "a", "debit_usd": 10, "credit_usd": 10}, {"account_id": "b", "credit_usd": 0}]
            )
        with self.assertRaises(ValidationError) as ctx:
            validate_journal_lines([{"debit_usd": 10}, {"account_id": "b", "credit_usd": 10}])
        self.assertEqual(ctx.exception.errors[0]["field"], "lines[1].account_id")
        self.assertEqual(
            validate_journal_lines(
                [{"account_id": "a", "debit_usd": 10}, {"account_id": "b", "credit_usd": 4}, {"account_id": "c", "credit_usd": 6}]
            ),
            (10, 10),
        )

    def test_entry_numbering_conversion_and_closing(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            db = Path(tmp) / "demo.db"
            init_db(db)
            acc = _accounts(db)
            first = create_journal_entry(db, "2024-01-05", "Aporte", _pair(acc["bank"], acc["capital"], 1000), 36.5)
            second = create_journal_entry(db, "2024-01-06", "Aporte 2", _pair(acc["bank"], acc["capital"], 10), 36.5)
            self.assertEqual(first["entry_number"], "AS-000001")
            self.assertEqual(second["entry_number"], "AS-000002")
            self.assertEqual(first["status"], "borrador")
            self.assertEqual(first["lines"][0]["debit_ves"], 36500)
            self.assertEqual(first["lines"][0]["account_code"], "1.1")

            updated = update_journal_entry(db, first["id"], exchange_rate=40)
            self.assertEqual(updated["lines"][1]["credit_ves"], 40000)
            self.assertEqual(updated["total_debit_usd"], 1000)

            with self.assertRaises(ValidationError):
                create_journal_entry(db, "2024-01-07", "X", _pair(acc["bank"], acc["capital"], 1), 36.5, "cerrado")
            with self.assertRaises(ValidationError):
                create_journal_entry(db, "2024-01-07", "X", _pair(acc["bank"], acc["capital"], 1), 0)

            set_entry_status(db, first["id"], "cerrado")
            with self.assertRaises(ValidationError):
                update_journal_entry(db, first["id"], description="Cambio")
            with self.assertRaises(ValidationError):
                set_entry_status(db, first["id"], "borrador")
            with self.assertRaises(ValidationError):
                delete_journal_entry(db, first["id"])
            self.assertTrue(delete_journal_entry(db, second["id"]))
            self.assertEqual([e["entry_number"] for e in list_journal_entries(db)], ["AS-000001"])


class ReportTests(unittest.TestCase):
    def test_reports_use_only_posted_entries(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            db = Path(tmp) / "demo.db"
            init_db(db)
            acc = _book(db)

            trial = trial_balance(db)
            self.assertEqual([r["code"] for r in trial["rows"]], ["1.1", "3", "4", "6"])
            self.assertEqual(trial["total_debit"], 1400)
            self.assertEqual(trial["total_credit"], 1400)
            self.assertTrue(trial["balanced"])
            bank = trial["rows"][0]
            self.assertEqual((bank["debit_balance"], bank["credit_balance"]), (1200, 0))

            income = income_statement(db, "2024-02-01", "2024-02-29")
            self.assertEqual(income["total_income"], 300)
            self.assertEqual(income["total_expenses"], 100)
            self.assertEqual(income["net_income"], 200)

            sheet = balance_sheet(db, "2024-02-29")
            self.assertEqual(sheet["total_assets"], 1200)
            self.assertEqual(sheet["total_equity"], 1000)
            self.assertEqual(sheet["period_result"], 200)
            self.assertTrue(sheet["balanced"])

            rolled = {a["code"]: a for a in account_balances(db)}
            self.assertEqual(rolled["1"]["balance"], 1200)
            self.assertEqual(rolled["1"]["own_balance"], 0)

            ledger = general_ledger(db, acc["bank"]["id"], date_from="2024-02-01")
            self.assertEqual(ledger["opening_balance"], 1000)
            self.assertEqual([m["balance"] for m in ledger["movements"]], [1300, 1200])
            self.assertEqual(ledger["closing_balance"], 1200)

    def test_trial_balance_columns_follow_account_nature(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            db = Path(tmp) / "demo.db"
            init_db(db)
            acc = _accounts(db)
            adjustments = save_account(
                db, {"code": "8", "name": "Diferencial cambiario", "account_class": "ajustes", "nature": "variable"}
            )
            create_journal_entry(db, "2024-01-05", "Reintegro", _pair(acc["bank"], acc["expenses"], 500), 36.5, "publicado")
            create_journal_entry(db, "2024-01-06", "Ajuste", _pair(acc["bank"], adjustments, 200), 36.5, "publicado")

            rows = {r["code"]: r for r in trial_balance(db)["rows"]}
            self.assertEqual((rows["1.1"]["debit_balance"], rows["1.1"]["credit_balance"]), (700, 0))
            self.assertEqual((rows["6"]["debit_balance"], rows["6"]["credit_balance"]), (-500, 0))
            self.assertEqual((rows["8"]["debit_balance"], rows["8"]["credit_balance"]), (0, 200))


class InvoiceTests(unittest.TestCase):
    def test_invoice_withholding_and_status(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            db = Path(tmp) / "demo.db"
            init_db(db)
            invoice = create_invoice(db, "F-001", "2024-03-01", 10000)
            self.assertEqual(invoice["islr_amount"], 100)
            self.assertEqual(invoice["tax_units"], 500)
            self.assertEqual(invoice["net_amount"], 9900)
            self.assertEqual(invoice["status"], "pendiente")
            with self.assertRaises(ValidationError):
                create_invoice(db, "F-001", "2024-03-02", 50)
            with self.assertRaises(ValidationError):
                create_invoice(db, "F-002", "2024-03-02", 0)

            collected = set_invoice_status(db, invoice["id"], "cobrada")
            self.assertIsNotNone(collected["collected_at"])
            with self.assertRaises(NotFoundError):
                set_invoice_status(db, "missing", "anulada")

    def test_invoice_opens_and_settles_a_receivable(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            db = Path(tmp) / "demo.db"
            init_db(db)
            paid = create_invoice(db, "F-010", "2024-03-01", 1000)
            voided = create_invoice(db, "F-011", "2024-03-02", 500)
            pending = list_receivables(db, pending_only=True)
            self.assertEqual(len(pending), 2)
            by_invoice = {r["invoice_number"]: r for r in pending}
            self.assertEqual(by_invoice["F-010"]["amount_usd"], 990)
            self.assertEqual(by_invoice["F-010"]["source"], "factura")

            set_invoice_status(db, paid["id"], "cobrada")
            set_invoice_status(db, voided["id"], "anulada")
            receivables = list_receivables(db)
            self.assertEqual(len(receivables), 1)
            self.assertEqual(receivables[0]["is_collected"], 1)
            self.assertIsNotNone(receivables[0]["collected_at"])


class CashMovementTests(unittest.TestCase):
    def test_income_and_expenses_by_month(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            db = Path(tmp) / "demo.db"
            init_db(db)
            bank = save_catalog_item(db, "banks", {"name": "Banco de Venezuela"})
            income = save_income(
                db,
                {"income_date": "2024-03-05", "description": "Comisión marzo", "amount_usd": 200, "exchange_rate": 36.5, "bank_id": bank["id"]},
                user="admin@example.com",
            )
            self.assertEqual(income["month"], "2024-03")
            self.assertEqual(income["amount_ves"], 7300)
            self.assertEqual(income["created_by"], "admin@example.com")
            save_income(db, {"income_date": "2024-04-01", "description": "Abril", "amount_ves": 1000})
            self.assertEqual(list_income(db, "2024-03")[0]["bank_name"], "Banco de Venezuela")

            updated = save_income(db, {"amount_usd": 100}, income["id"])
            self.assertEqual(updated["amount_ves"], 3650)
            self.assertEqual(updated["description"], "Comisión marzo")

            rent = save_expense(db, {"expense_date": "2024-03-10", "description": "Alquiler", "amount_usd": 60, "beneficiary": "Inmobiliaria"})
            save_expense(db, {"expense_date": "2024-02-10", "description": "Luz", "amount_usd": 15})
            self.assertEqual([e["description"] for e in list_payables(db)], ["Luz", "Alquiler"])
            paid = set_expense_paid(db, rent["id"])
            self.assertEqual(paid["is_paid"], 1)
            self.assertIsNotNone(paid["paid_at"])
            self.assertEqual(len(list_expenses(db, unpaid_only=True)), 1)

            summary = monthly_cash_summary(db, "2024-03")
            self.assertEqual((summary["income_usd"], summary["expenses_usd"], summary["net_usd"]), (100, 60, 40))

            self.assertTrue(delete_income(db, income["id"]))
            self.assertEqual(list_income(db, "2024-03"), [])

    def test_movement_validation(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            db = Path(tmp) / "demo.db"
            init_db(db)
            with self.assertRaises(ValidationError):
                save_income(db, {"income_date": "2024-03-05", "description": "Sin monto"})
            with self.assertRaises(ValidationError):
                save_income(db, {"income_date": "2024-03-05", "description": "Negativo", "amount_usd": -1})
            with self.assertRaises(ValidationError) as ctx:
                save_expense(db, {"expense_date": "05/03/2024", "description": "X", "amount_usd": 1})
            self.assertEqual(ctx.exception.errors[0]["field"], "expense_date")
            with self.assertRaises(ValidationError):
                save_expense(db, {"description": "Sin fecha", "amount_usd": 1})
            with self.assertRaises(NotFoundError):
                save_income(db, {"amount_usd": 1}, "missing")
            with self.assertRaises(NotFoundError):
                set_expense_paid(db, "missing")

            manual = save_receivable(db, {"description": "Reembolso aseguradora", "amount_usd": 80, "due_date": "2024-04-30"})
            self.assertEqual(manual["source"], "manual")
            self.assertEqual(set_receivable_collected(db, manual["id"])["is_collected"], 1)
            self.assertEqual(set_receivable_collected(db, manual["id"], False)["collected_at"], None)


if __name__ == "__main__":
    unittest.main()
