from __future__ import annotations

import tempfile
import unittest
from pathlib import Path

from brokerdesk.catalog import save_catalog_item
from brokerdesk.client_import import (
    auto_map_client_columns,
    client_import_template,
    export_clients_workbook,
    import_client_rows,
    missing_required_fields,
    required_fields_mapped,
    validate_client_import,
)
from brokerdesk.clients import add_beneficiary, create_client, create_policy, list_policies
from brokerdesk.errors import ValidationError
from brokerdesk.persistence import init_db
from brokerdesk.spreadsheets import read_table

HEADERS = [
    "Número Póliza",
    "Aseguradora",
    "Fecha Inicio",
    "Fecha Fin",
    "Prima",
    "Frecuencia Pago",
    "Asesor Principal",
    "Cédula Tomador",
    "Nombres Tomador",
    "Apellidos Tomador",
    "Email Tomador",
    "Nombre Ben. 1",
    "Apellido Ben. 1",
    "Parentesco 1",
    "% Ben. 1",
]


def _row(**overrides: object) -> dict:
    row = {
        "Número Póliza": "POL-1",
        "Aseguradora": "Mercantil",
        "Fecha Inicio": "01/02/2024",
        "Fecha Fin": "2025-02-01",
        "Prima": "1200",
        "Frecuencia Pago": "Trimestral",
        "Asesor Principal": "Ana",
        "Cédula Tomador": "V-12345678",
        "Nombres Tomador": "María",
        "Apellidos Tomador": "González",
        "Email Tomador": "maria@example.com",
        "Nombre Ben. 1": "Luis",
        "Apellido Ben. 1": "González",
        "Parentesco 1": "Hijo",
        "% Ben. 1": 50,
    }
    row.update(overrides)
    return row


class AutoMapTests(unittest.TestCase):
    def test_headers_map_to_fields(self) -> None:
        mappings = {m["excel_column"]: m for m in auto_map_client_columns(HEADERS)}
        self.assertEqual(mappings["Número Póliza"]["db_field"], "policy_number")
        self.assertEqual(mappings["Fecha Fin"]["db_field"], "end_date")
        self.assertEqual(mappings["Cédula Tomador"]["db_field"], "client_identification_number")
        self.assertEqual(mappings["Asesor Principal"]["db_field"], "primary_advisor_name")
        self.assertEqual(mappings["Parentesco 1"]["db_field"], "beneficiary_relationship")
        self.assertEqual(mappings["% Ben. 1"]["db_field"], "beneficiary_percentage")
        self.assertEqual(mappings["% Ben. 1"]["beneficiary_index"], 1)
        self.assertIsNone(mappings["Prima"]["beneficiary_index"])

    def test_required_fields(self) -> None:
        mappings = auto_map_client_columns(HEADERS)
        self.assertTrue(required_fields_mapped(mappings))
        partial = [m for m in mappings if m["db_field"] != "end_date"]
        self.assertFalse(required_fields_mapped(partial))
        self.assertEqual(missing_required_fields(partial), ["end_date"])


class ValidationTests(unittest.TestCase):
    def test_groups_rows_by_policy_and_resolves_names(self) -> None:
        mappings = auto_map_client_columns(HEADERS)
        rows = [
            _row(),
            _row(**{"Nombre Ben. 1": "Eva", "% Ben. 1": 30}),
            _row(**{"Número Póliza": "POL-2", "Cédula Tomador": None, "Email Tomador": "bad-email"}),
        ]
        validated = validate_client_import(
            rows,
            mappings,
            existing_clients=[{"id": "c-1", "identification_number": "v12345678"}],
            existing_policies=[],
            insurers=[{"id": "i-1", "name": "Mercantil Seguros"}],
            products=[],
            advisors=[{"id": "a-1", "full_name": "Ana Rodríguez", "is_active": 1}],
        )
        self.assertEqual(len(validated), 2)
        first, second = validated
        self.assertTrue(first["is_valid"])
        self.assertEqual(first["existing_client_id"], "c-1")
        self.assertFalse(first["is_new_client"])
        self.assertEqual(first["resolved_insurer_id"], "i-1")
        self.assertEqual(first["resolved_primary_advisor_id"], "a-1")
        self.assertEqual(first["policy_data"]["start_date"], "2024-02-01")
        self.assertEqual(first["policy_data"]["payment_frequency"], "trimestral")
        self.assertEqual([b["first_name"] for b in first["beneficiaries"]], ["Luis", "Eva"])
        self.assertEqual(first["beneficiaries"][0]["relationship"], "hijo")

        self.assertFalse(second["is_valid"])
        fields = {e["field"] for e in second["errors"]}
        self.assertEqual(fields, {"client_identification_number", "client_email"})

    def test_beneficiary_percentages_over_hundred(self) -> None:
        mappings = auto_map_client_columns(HEADERS)
        rows = [_row(), _row(**{"Nombre Ben. 1": "Eva", "% Ben. 1": 60})]
        validated = validate_client_import(rows, mappings, [], [], [], [])
        self.assertFalse(validated[0]["is_valid"])
        self.assertEqual(validated[0]["errors"][0]["field"], "beneficiary_percentage")


class ImportTests(unittest.TestCase):
    def test_import_creates_then_updates(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            db = Path(tmp) / "demo.db"
            init_db(db)
            save_catalog_item(db, "insurers", {"name": "Mercantil Seguros"})
            mappings = auto_map_client_columns(HEADERS)

            result = import_client_rows(db, [_row()], mappings)
            self.assertEqual(result["clients_created"], 1)
            self.assertEqual(result["policies_created"], 1)
            self.assertEqual(result["beneficiaries"], 1)
            self.assertEqual(result["errors"], [])

            again = import_client_rows(db, [_row(**{"Prima": 1500, "Cédula Tomador": "V12345678"})], mappings)
            self.assertEqual(again["clients_updated"], 1)
            self.assertEqual(again["policies_updated"], 1)

            policies = list_policies(db, with_beneficiaries=True)
            self.assertEqual(len(policies), 1)
            self.assertEqual(policies[0]["premium"], 1500)
            self.assertEqual(policies[0]["insurer_name"], "Mercantil Seguros")
            self.assertEqual(policies[0]["beneficiaries"][0]["percentage"], 50)

    def test_missing_required_columns_rejected(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            db = Path(tmp) / "demo.db"
            init_db(db)
            mappings = [m for m in auto_map_client_columns(HEADERS) if m["db_field"] != "start_date"]
            with self.assertRaises(ValidationError) as ctx:
                import_client_rows(db, [_row()], mappings)
            self.assertEqual(ctx.exception.errors[0]["field"], "start_date")

    def test_exported_workbook_imports_into_empty_database(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            source = Path(tmp) / "source.db"
            target = Path(tmp) / "target.db"
            init_db(source)
            init_db(target)
            client = create_client(
                source, {"identification_number": "V-1", "first_name": "María", "last_name": "González"}
            )
            policy = create_policy(
                source,
                {
                    "client_id": client["id"],
                    "policy_number": "POL-9",
                    "start_date": "2024-01-01",
                    "end_date": "2025-01-01",
                    "premium": 900,
                },
            )
            add_beneficiary(source, policy["id"], {"first_name": "Luis", "last_name": "G", "percentage": 75})

            headers, rows = read_table("clientes.xlsx", export_clients_workbook(source))
            self.assertIn("% Ben. 1", headers)
            result = import_client_rows(target, rows, auto_map_client_columns(headers))
            self.assertEqual(result["policies_created"], 1)

            imported = list_policies(target, with_beneficiaries=True)[0]
            self.assertEqual(imported["policy_number"], "POL-9")
            self.assertEqual(imported["client_identification_number"], "V-1")
            self.assertEqual(imported["beneficiaries"][0]["percentage"], 75)

    def test_template_has_every_beneficiary_slot(self) -> None:
        headers, rows = read_table("plantilla.xlsx", client_import_template())
        self.assertIn("% Ben. 7", headers)
        self.assertEqual(len(rows), 1)
        self.assertTrue(required_fields_mapped(auto_map_client_columns(headers)))


if __name__ == "__main__":
    unittest.main()
