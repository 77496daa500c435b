from __future__ import annotations

import tempfile
import unittest
from datetime import date
from pathlib import Path

from brokerdesk.birthdays import (
    birthday_email_html,
    birthday_history,
    birthday_status,
    birthdays_for_month,
    record_birthday_send,
    target_month,
)
from brokerdesk.clients import create_client
from brokerdesk.errors import NotFoundError, NotificationError, ValidationError
from brokerdesk.persistence import init_db

TODAY = date(2024, 3, 15)


def _client(db: Path, number: str, first: str, birth_date: str, email: str | None = None) -> dict:
    return create_client(
        db,
        {
            "identification_number": number,
            "first_name": first,
            "last_name": "González",
            "birth_date": birth_date,
            "email": email,
        },
    )


class MonthTests(unittest.TestCase):
    def test_target_month_wraps_years(self) -> None:
        self.assertEqual(target_month("previous", date(2024, 1, 31)), (2023, 12))
        self.assertEqual(target_month("next", date(2024, 12, 31)), (2025, 1))
        self.assertEqual(target_month("current", TODAY), (2024, 3))
        with self.assertRaises(ValidationError):
            target_month("last", TODAY)

    def test_status_windows(self) -> None:
        self.assertEqual(birthday_status(date(2024, 3, 15), False, TODAY), "hoy")
        self.assertEqual(birthday_status(date(2024, 3, 14), False, TODAY), "pasado")
        self.assertEqual(birthday_status(date(2024, 3, 17), False, TODAY), "pendiente")
        self.assertEqual(birthday_status(date(2024, 3, 18), False, TODAY), "proximo")
        self.assertEqual(birthday_status(date(2024, 3, 14), True, TODAY), "enviado")


class BirthdayListTests(unittest.TestCase):
    def test_month_listing_and_greeting_log(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            db = Path(tmp) / "demo.db"
            init_db(db)
            maria = _client(db, "V-1", "María", "1990-03-15", "maria@example.com")
            _client(db, "V-2", "José", "1985-03-17")
            _client(db, "V-3", "Eva", "1992-03-02")
            _client(db, "V-4", "Luis", "1980-04-01")

            month = birthdays_for_month(db, today=TODAY)
            self.assertEqual([b["full_name"] for b in month["birthdays"]], ["Eva González", "María González", "José González"])
            self.assertEqual([b["status"] for b in month["birthdays"]], ["pasado", "hoy", "pendiente"])
            self.assertEqual(month["stats"]["today"], 1)

            sent: list[tuple] = []

            def sender(to: str, subject: str, html: str | None = None, **kwargs: object) -> bool:
                sent.append((to, subject, html))
                return True

            record = record_birthday_send(db, maria["id"], ["email", "whatsapp"], year=2024, user="a@b.com", sender=sender)
            self.assertEqual(record["status_email"], "enviado")
            self.assertEqual(record["status_whatsapp"], "pendiente")
            self.assertEqual(sent[0][0], "maria@example.com")
            self.assertIn("María González", sent[0][2])

            with self.assertRaises(ValidationError):
                record_birthday_send(db, maria["id"], ["email"], year=2024, sender=sender)

            month = birthdays_for_month(db, today=TODAY)
            self.assertEqual(month["birthdays"][1]["status"], "enviado")
            self.assertEqual(month["birthdays"][1]["channels"], ["email", "whatsapp"])
            self.assertEqual(month["stats"], {"total": 3, "sent": 1, "pending": 1, "today": 0, "passed": 1})

            next_month = birthdays_for_month(db, "next", today=TODAY)
            self.assertEqual([b["full_name"] for b in next_month["birthdays"]], ["Luis González"])
            self.assertEqual(next_month["birthdays"][0]["status"], "proximo")

            self.assertEqual([h["send_year"] for h in birthday_history(db, maria["id"])], [2024])

    def test_channels_and_delivery_failures(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            db = Path(tmp) / "demo.db"
            init_db(db)
            maria = _client(db, "V-1", "María", "1990-03-15", "maria@example.com")
            jose = _client(db, "V-2", "José", "1985-03-17")

            with self.assertRaises(ValidationError):
                record_birthday_send(db, maria["id"], [])
            with self.assertRaises(ValidationError):
                record_birthday_send(db, maria["id"], ["sms"])
            with self.assertRaises(NotFoundError):
                record_birthday_send(db, "missing", ["whatsapp"])

            def failing(*args: object, **kwargs: object) -> bool:
                raise NotificationError("rejected")

            failed = record_birthday_send(db, maria["id"], ["email"], year=2024, sender=failing)
            self.assertEqual(failed["status_email"], "error")
            self.assertIsNone(failed["status_whatsapp"])

            no_email = record_birthday_send(db, jose["id"], ["email"], year=2024, sender=failing)
            self.assertEqual(no_email["status_email"], "pendiente")

    def test_leap_day_birthday_in_common_year(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            db = Path(tmp) / "demo.db"
            init_db(db)
            _client(db, "V-1", "Eva", "2000-02-29")
            month = birthdays_for_month(db, today=date(2023, 2, 28))
            self.assertEqual(month["birthdays"][0]["status"], "hoy")

    def test_email_html_escapes_names(self) -> None:
        body = birthday_email_html("<Ana>", "Corretaje & Cía")
        self.assertIn("&lt;Ana&gt;", body)
        self.assertIn("Corretaje &amp; Cía", body)
        self.assertIn("Estimado/a cliente", birthday_email_html(None, "X"))


if __name__ == "__main__":
    unittest.main()
