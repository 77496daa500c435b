from __future__ import annotations

import unittest
from datetime import date

from brokerdesk.calculations import (
    agency_margin,
    assignment_amount,
    calculate_installment,
    commission_amount,
    days_overdue,
    format_currency,
    format_percentage,
    has_commission_discrepancy,
    installment_label,
    invoice_net,
    islr_withholding,
    next_payment_date,
    premium_variance,
    tax_units,
    variance_badge,
)
from brokerdesk.errors import ValidationError, user_friendly_error


class InstallmentTests(unittest.TestCase):
    def test_installment_divides_by_payments_per_year(self) -> None:
        self.assertEqual(calculate_installment(1200, "mensual"), 100)
        self.assertEqual(calculate_installment(1200, "trimestral"), 300)
        self.assertEqual(calculate_installment(1000, "mensual_10_cuotas"), 100)
        self.assertEqual(calculate_installment(1200, "unico"), 1200)

    def test_installment_missing_or_non_positive_premium(self) -> None:
        self.assertIsNone(calculate_installment(None, "mensual"))
        self.assertIsNone(calculate_installment("", "mensual"))
        self.assertIsNone(calculate_installment(0, "anual"))
        self.assertIsNone(calculate_installment("abc", "anual"))

    def test_installment_label(self) -> None:
        self.assertEqual(installment_label("anual"), "1 pago anual")
        self.assertEqual(installment_label("semestral"), "2 cuotas anuales")
        self.assertEqual(installment_label(None), "1 pago anual")


class CommissionMathTests(unittest.TestCase):
    def test_commission_amount_and_discrepancy(self) -> None:
        self.assertEqual(commission_amount(1500, 12.5), 187.5)
        self.assertFalse(has_commission_discrepancy(1500, 12.5, 187.5))
        self.assertTrue(has_commission_discrepancy(1500, 12.5, 180))

    def test_assignment_and_agency_margin(self) -> None:
        self.assertEqual(assignment_amount(200, 40), 80)
        self.assertEqual(agency_margin([40, 25]), 35)


class VarianceTests(unittest.TestCase):
    def test_increase(self) -> None:
        difference, percentage = premium_variance(1000, 1100)
        self.assertEqual(difference, 100)
        self.assertEqual(percentage, 10)
        self.assertEqual(variance_badge(percentage), "aumento")
        self.assertEqual(format_percentage(percentage), "+10.00%")

    def test_decrease_and_no_change(self) -> None:
        self.assertEqual(premium_variance(1000, 900), (-100, -10))
        self.assertEqual(variance_badge(-10), "disminucion")
        self.assertEqual(variance_badge(0), "sin_cambio")
        self.assertEqual(format_percentage(-10), "-10.00%")

    def test_zero_current_premium_gives_zero_percentage(self) -> None:
        self.assertEqual(premium_variance(0, 500), (500, 0))
        self.assertEqual(premium_variance(None, 500), (500, 0))


class DateTests(unittest.TestCase):
    def test_next_payment_date_clamps_month_end(self) -> None:
        self.assertEqual(next_payment_date("2024-01-31", "mensual"), date(2024, 2, 29))
        self.assertEqual(next_payment_date(date(2024, 3, 15), "trimestral"), date(2024, 6, 15))
        self.assertEqual(next_payment_date("2024-03-15", "anual"), date(2025, 3, 15))
        self.assertEqual(next_payment_date("2024-03-15", "bimensual"), date(2024, 5, 15))

    def test_days_overdue(self) -> None:
        today = date(2024, 5, 10)
        self.assertEqual(days_overdue("2024-05-01", "pendiente", today), 9)
        self.assertEqual(days_overdue("2024-05-20", "pendiente", today), -10)
        self.assertEqual(days_overdue("2024-05-01", "cobrada", today), 0)


class TaxAndFormatTests(unittest.TestCase):
    def test_invoice_withholding(self) -> None:
        self.assertEqual(islr_withholding(10000), 100)
        self.assertEqual(tax_units(100), 500)
        self.assertEqual(invoice_net(10000), 9900)

    def test_format_currency(self) -> None:
        self.assertEqual(format_currency(1234.5), "$1,234.50")
        self.assertEqual(format_currency(None), "$0.00")


class ErrorTests(unittest.TestCase):
    def test_friendly_messages(self) -> None:
        self.assertIn("ya existe", user_friendly_error("UNIQUE constraint failed: clients.identification_number"))
        self.assertIn("registros relacionados", user_friendly_error("FOREIGN KEY constraint failed"))
        self.assertIn("inesperado", user_friendly_error(None))
        self.assertIn("Ocurrió un error", user_friendly_error("something odd"))

    def test_validation_error_payload(self) -> None:
        exc = ValidationError.field("premium", "La prima no puede ser negativa")
        self.assertEqual(exc.status_code, 400)
        self.assertEqual(user_friendly_error(exc), "La prima no puede ser negativa")
        payload = exc.to_dict()
        self.assertFalse(payload["ok"])
        self.assertEqual(payload["errors"][0]["field"], "premium")


if __name__ == "__main__":
    unittest.main()
