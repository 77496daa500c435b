from __future__ import annotations

import tempfile
import unittest
from pathlib import Path

from brokerdesk.clients import create_client
from brokerdesk.errors import NotFoundError, ValidationError
from brokerdesk.partnerships import (
    CODE_ALPHABET,
    CODE_LENGTH,
    CODE_PREFIX,
    apply_discount,
    create_discount_code,
    delete_partner,
    expire_codes,
    generate_code,
    get_partner,
    list_discount_codes,
    list_partners,
    redeem_code,
    save_partner,
    save_service,
    update_code_status,
)
from brokerdesk.persistence import init_db


def _service(db: Path, **overrides: object) -> dict:
    partner = save_partner(db, {"name": "Clínica Central", "category": "salud"})
    return save_service(
        db, {"partner_id": partner["id"], "name": "Chequeo anual", "discount_value": 20, **overrides}
    )


class DiscountMathTests(unittest.TestCase):
    def test_percentage_and_fixed_discounts(self) -> None:
        self.assertEqual(
            apply_discount({"discount_type": "porcentaje", "discount_value": 20}, 150),
            {"amount": 150, "discount": 30, "final_amount": 120},
        )
        self.assertEqual(apply_discount({"discount_type": "monto_fijo", "discount_value": 50}, 30)["final_amount"], 0)

    def test_generated_codes_use_the_safe_alphabet(self) -> None:
        code = generate_code()
        self.assertTrue(code.startswith(CODE_PREFIX))
        body = code[len(CODE_PREFIX):]
        self.assertEqual(len(body), CODE_LENGTH)
        self.assertTrue(set(body) <= set(CODE_ALPHABET))


class PartnerTests(unittest.TestCase):
    def test_partner_and_service_validation(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            db = Path(tmp) / "demo.db"
            init_db(db)
            service = _service(db)
            self.assertEqual(service["discount_type"], "porcentaje")
            self.assertEqual(service["partner_name"], "Clínica Central")

            partner = get_partner(db, service["partner_id"])
            self.assertEqual([s["name"] for s in partner["services"]], ["Chequeo anual"])
            renamed = save_partner(db, {"phone": "0212"}, partner["id"])
            self.assertEqual(renamed["name"], "Clínica Central")

            with self.assertRaises(ValidationError):
                save_partner(db, {"name": ""})
            with self.assertRaises(ValidationError):
                save_service(db, {"name": "Sin aliado"})
            with self.assertRaises(ValidationError):
                save_service(db, {"partner_id": partner["id"], "name": "X", "discount_value": 120})
            with self.assertRaises(ValidationError):
                save_service(db, {"partner_id": partner["id"], "name": "X", "discount_type": "regalo"})

            self.assertTrue(delete_partner(db, partner["id"]))
            self.assertEqual(list_partners(db), [])


class DiscountCodeTests(unittest.TestCase):
    def test_code_lifecycle(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            db = Path(tmp) / "demo.db"
            init_db(db)
            service = _service(db)
            client = create_client(db, {"identification_number": "V-1", "first_name": "María", "last_name": "González"})

            code = create_discount_code(db, service["id"], client["id"])
            self.assertEqual(code["status"], "generado")
            self.assertEqual(code["partner_id"], service["partner_id"])
            self.assertEqual(code["client_name"], "María González")

            self.assertEqual(update_code_status(db, code["id"], "enviado")["status"], "enviado")
            redeemed = redeem_code(db, code["code"].lower())
            self.assertEqual(redeemed["status"], "utilizado")
            self.assertEqual(redeemed["current_uses"], 1)
            with self.assertRaises(ValidationError):
                redeem_code(db, code["code"])
            with self.assertRaises(ValidationError):
                update_code_status(db, code["id"], "enviado")
            with self.assertRaises(NotFoundError):
                redeem_code(db, "KVR-NOPE")

            self.assertEqual(len(list_discount_codes(db, client_id=client["id"])), 1)
            with self.assertRaises(ValidationError):
                create_discount_code(db, service["id"], max_uses=0)
            with self.assertRaises(NotFoundError):
                create_discount_code(db, "missing")

    def test_expired_codes(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            db = Path(tmp) / "demo.db"
            init_db(db)
            service = _service(db)
            stale = create_discount_code(db, service["id"], expires_at="2000-01-01")
            fresh = create_discount_code(db, service["id"], expires_at="2999-01-01", max_uses=2)

            with self.assertRaises(ValidationError):
                redeem_code(db, stale["code"])
            self.assertEqual([c["id"] for c in list_discount_codes(db, status="expirado")], [stale["id"]])

            redeem_code(db, fresh["code"])
            self.assertEqual(redeem_code(db, fresh["code"])["current_uses"], 2)

            other = create_discount_code(db, service["id"], expires_at="2000-01-01")
            self.assertEqual(expire_codes(db), 1)
            self.assertEqual(update_code_status(db, other["id"], "expirado")["status"], "expirado")


if __name__ == "__main__":
    unittest.main()
