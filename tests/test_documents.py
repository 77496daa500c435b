from __future__ import annotations

import tempfile
import unittest
from datetime import date
from pathlib import Path

from brokerdesk.catalog import save_catalog_item, upsert_broker_settings
from brokerdesk.clients import create_client, create_policy
from brokerdesk.consumptions import create_consumption
from brokerdesk.documents import (
    commission_breakdown_html,
    format_date_long,
    format_date_short,
    premium_notice_html,
    renewal_notice_html,
)
from brokerdesk.pdf_templates import (
    render_commission_breakdown_pdf,
    render_premium_notice_pdf,
    render_renewal_notice_pdf,
)
from brokerdesk.persistence import init_db
from brokerdesk.renewals import renewal_notice_data, upsert_renewal_config

TODAY = date(2024, 3, 15)
BROKER = {"name": "Corretaje Demo", "email": "info@demo.com", "phone": "0212-5550000"}

BREAKDOWN = [
    {
        "advisor_id": "a-1",
        "advisor_name": "Ana Rodríguez",
        "total": 75.0,
        "items": [
            {
                "policy_number": "POL-1",
                "client_name": "María <González>",
                "insurer_name": "Seguros Caracas",
                "premium": 1000,
                "commission_rate": 10,
                "commission_amount": 100,
                "percentage": 75,
                "amount": 75,
            }
        ],
    }
]

COLLECTION = {
    "client_name": "María González",
    "policy_number": "POL-1",
    "insurer_name": "Seguros Caracas",
    "payment_frequency": "mensual",
    "due_date": "2024-03-01",
    "amount_due": 120,
    "days_overdue": 14,
}


def _notice(db: Path) -> dict:
    init_db(db)
    upsert_broker_settings(db, BROKER)
    client = create_client(db, {"identification_number": "V-1", "first_name": "María", "last_name": "González"})
    policy = create_policy(
        db,
        {
            "client_id": client["id"],
            "policy_number": "POL-1",
            "start_date": "2023-04-10",
            "end_date": "2024-04-10",
            "premium": 1000,
            "payment_frequency": "trimestral",
            "status": "vigente",
        },
    )
    consult = save_catalog_item(db, "usage_types", {"name": "Consulta"})
    create_consumption(
        db,
        {
            "policy_id": policy["id"],
            "usage_type_id": consult["id"],
            "usage_date": "2023-06-01",
            "description": "Consulta general",
            "beneficiary_name": "Luis",
            "amount_usd": 50,
        },
    )
    upsert_renewal_config(db, policy["id"], "2024-04-10", new_amount=1100)
    return renewal_notice_data(db, policy["id"])


class DateFormatTests(unittest.TestCase):
    def test_spanish_dates(self) -> None:
        self.assertEqual(format_date_long("2024-04-10"), "10 de abril de 2024")
        self.assertEqual(format_date_long(date(2024, 12, 1)), "1 de diciembre de 2024")
        self.assertEqual(format_date_long(None), "")
        self.assertEqual(format_date_short("2024-04-10T12:00:00"), "10/04/2024")
        self.assertEqual(format_date_short(None), "-")


class HtmlDocumentTests(unittest.TestCase):
    def test_renewal_notice_page(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            notice = _notice(Path(tmp) / "demo.db")
            page = renewal_notice_html(notice, today=TODAY)
            self.assertTrue(page.startswith("<!DOCTYPE html>"))
            self.assertIn("Aviso de Renovación - POL-1", page)
            self.assertIn("15 de marzo de 2024", page)
            self.assertIn("10 de abril de 2024", page)
            self.assertIn("+10.00%", page)
            self.assertIn("$1,100.00", page)
            self.assertIn("Consulta general", page)
            self.assertIn("4 cuotas anuales", page)
            self.assertIn("Corretaje Demo", page)

    def test_breakdown_escapes_and_totals(self) -> None:
        page = commission_breakdown_html(BREAKDOWN, BROKER, period="Marzo 2024", today=TODAY)
        self.assertIn("María &lt;González&gt;", page)
        self.assertIn("Total general: $75.00", page)
        self.assertIn("Marzo 2024", page)
        empty = commission_breakdown_html([], BROKER, today=TODAY)
        self.assertIn("No hay comisiones asignadas", empty)

    def test_premium_notice_warns_when_overdue(self) -> None:
        page = premium_notice_html(COLLECTION, BROKER, today=TODAY)
        self.assertIn("14 días de atraso", page)
        self.assertIn("$120.00", page)
        self.assertIn("Mensual", page)
        on_time = premium_notice_html({**COLLECTION, "days_overdue": -3}, BROKER, today=TODAY)
        self.assertNotIn("días de atraso", on_time)


class PdfDocumentTests(unittest.TestCase):
    def test_pdfs_render(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            notice = _notice(Path(tmp) / "demo.db")
            for content in (
                render_renewal_notice_pdf(notice, today=TODAY),
                render_commission_breakdown_pdf(BREAKDOWN, BROKER, "Marzo 2024", today=TODAY),
                render_commission_breakdown_pdf([], BROKER, today=TODAY),
                render_premium_notice_pdf(COLLECTION, BROKER, today=TODAY),
            ):
                self.assertTrue(content.startswith(b"%PDF"))

    def test_long_breakdown_spans_pages(self) -> None:
        item = BREAKDOWN[0]["items"][0]
        long_breakdown = [{**BREAKDOWN[0], "items": [item] * 120}]
        content = render_commission_breakdown_pdf(long_breakdown, BROKER, today=TODAY)
        pages = content.count(b"/Type /Page") - content.count(b"/Type /Pages")
        self.assertGreater(pages, 1)


if __name__ == "__main__":
    unittest.main()
