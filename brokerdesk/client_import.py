"""Unified client/policy/beneficiary spreadsheet import and export.

One spreadsheet row describes a policy, its holder (tomador) and up to seven
beneficiaries laid out in numbered column groups. Several rows may share a
policy number; their beneficiaries are merged into that policy.
"""

from __future__ import annotations

import logging
import re
import sqlite3
from pathlib import Path
from typing import Any

from brokerdesk.clients import (
    find_client_by_identification,
    insert_client,
    insert_policy,
    replace_beneficiaries,
    update_client_row,
    update_policy_row,
)
from brokerdesk.errors import ValidationError
from brokerdesk.matching import normalize, normalize_identification, resolve_by_name
from brokerdesk.persistence import get_conn
from brokerdesk.spreadsheets import build_workbook, cell_str, parse_amount, parse_date

logger = logging.getLogger(__name__)

MAX_BENEFICIARIES = 7
REQUIRED_FIELDS = (
    "policy_number",
    "start_date",
    "end_date",
    "client_identification_number",
    "client_first_name",
    "client_last_name",
)
EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

IDENTIFICATION_TYPE_MAP = {
    "cedula": "cedula",
    "cédula": "cedula",
    "ci": "cedula",
    "pasaporte": "pasaporte",
    "passport": "pasaporte",
    "rif": "rif",
    "ruc": "ruc",
    "otro": "otro",
    "other": "otro",
}
POLICY_STATUS_MAP = {
    "vigente": "vigente",
    "activa": "vigente",
    "active": "vigente",
    "pendiente": "pendiente",
    "pending": "pendiente",
    "cancelada": "cancelada",
    "cancelled": "cancelada",
    "vencida": "vencida",
    "expired": "vencida",
    "en tramite": "en_tramite",
    "en trámite": "en_tramite",
    "en_tramite": "en_tramite",
    "tramite": "en_tramite",
}
PAYMENT_FREQUENCY_MAP = {
    "mensual": "mensual",
    "monthly": "mensual",
    "mensual 10 cuotas": "mensual_10_cuotas",
    "mensual_10_cuotas": "mensual_10_cuotas",
    "10 cuotas": "mensual_10_cuotas",
    "mensual 12 cuotas": "mensual_12_cuotas",
    "mensual_12_cuotas": "mensual_12_cuotas",
    "12 cuotas": "mensual_12_cuotas",
    "bimensual": "bimensual",
    "bimonthly": "bimensual",
    "trimestral": "trimestral",
    "quarterly": "trimestral",
    "semestral": "semestral",
    "semiannual": "semestral",
    "anual": "anual",
    "annual": "anual",
    "yearly": "anual",
    "unico": "unico",
    "único": "unico",
}
RELATIONSHIP_MAP = {
    "conyuge": "conyuge",
    "cónyuge": "conyuge",
    "esposo": "conyuge",
    "esposa": "conyuge",
    "spouse": "conyuge",
    "hijo": "hijo",
    "hija": "hijo",
    "child": "hijo",
    "padre": "padre",
    "father": "padre",
    "madre": "madre",
    "mother": "madre",
    "hermano": "hermano",
    "hermana": "hermano",
    "tomador": "tomador_titular",
    "titular": "tomador_titular",
    "tomador_titular": "tomador_titular",
    "tomador y titular": "tomador_titular",
    "otro": "otro",
    "other": "otro",
}

POLICY_COLUMNS = [
    ("policy_number", "Número Póliza"),
    ("insurer_name", "Aseguradora"),
    ("product_name", "Producto"),
    ("start_date", "Fecha Inicio"),
    ("end_date", "Fecha Fin"),
    ("premium", "Prima"),
    ("coverage_amount", "Suma Asegurada"),
    ("deductible", "Deducible"),
    ("status", "Estado"),
    ("payment_frequency", "Frecuencia Pago"),
    ("premium_payment_date", "Fecha Pago Prima"),
    ("primary_advisor_name", "Asesor Principal"),
    ("secondary_advisor_name", "Asesor Secundario"),
    ("policy_notes", "Notas Póliza"),
]
CLIENT_COLUMNS = [
    ("client_identification_type", "Tipo ID Tomador"),
    ("client_identification_number", "Cédula Tomador"),
    ("client_first_name", "Nombres Tomador"),
    ("client_last_name", "Apellidos Tomador"),
    ("client_email", "Email Tomador"),
    ("client_phone", "Teléfono Tomador"),
    ("client_mobile", "Móvil Tomador"),
    ("client_address", "Dirección Tomador"),
    ("client_city", "Ciudad Tomador"),
    ("client_province", "Estado Tomador"),
    ("client_birth_date", "F. Nacimiento Tomador"),
    ("client_occupation", "Ocupación Tomador"),
    ("client_workplace", "Trabajo Tomador"),
]
BENEFICIARY_COLUMNS = [
    ("beneficiary_first_name", "Nombre Ben. {i}"),
    ("beneficiary_last_name", "Apellido Ben. {i}"),
    ("beneficiary_relationship", "Parentesco {i}"),
    ("beneficiary_identification_type", "Tipo ID Ben. {i}"),
    ("beneficiary_identification_number", "Cédula Ben. {i}"),
    ("beneficiary_birth_date", "F.Nac Ben. {i}"),
    ("beneficiary_phone", "Tel Ben. {i}"),
    ("beneficiary_email", "Email Ben. {i}"),
    ("beneficiary_percentage", "% Ben. {i}"),
]

_BEN_INDEX = re.compile(r"beneficiario\s*(\d+)|ben\.?\s*(\d+)")
_TRAILING_NUMBER = re.compile(r"(\d+)$")


def _has(h: str, *words: str) -> bool:
    return any(w in h for w in words)


def _policy_field(h: str) -> str | None:
    if _has(h, "poliza", "póliza") and (_has(h, "numero", "número") or h in {"poliza", "póliza"}):
        return "policy_number"
    if "aseguradora" in h or h == "insurer":
        return "insurer_name"
    if "producto" in h and not _has(h, "tomador", "beneficiario"):
        return "product_name"
    if "tomador" in h:
        return None
    if "inicio" in h or h == "start":
        return "start_date"
    if _has(h, "fin", "renovacion", "renovación", "vencimiento"):
        return "end_date"
    if h in {"estado", "status"}:
        return "status"
    if (_has(h, "prima") or h == "premium") and "pago" not in h:
        return "premium"
    if "frecuencia" in h or h == "frequency":
        return "payment_frequency"
    if _has(h, "suma", "cobertura", "coverage"):
        return "coverage_amount"
    if "deducible" in h or h == "deductible":
        return "deductible"
    if ("fecha" in h and "pago" in h) or _has(h, "pago prima", "proximo pago", "próximo pago"):
        return "premium_payment_date"
    if "nota" in h and _has(h, "poliza", "póliza"):
        return "policy_notes"
    if "asesor" in h:
        if _has(h, "secundario", "2"):
            return "secondary_advisor_name"
        return "primary_advisor_name"
    return None


def _client_field(h: str) -> str | None:
    if "tipo" in h and "id" in h:
        return "client_identification_type"
    if _has(h, "cedula", "cédula", "identificacion", "identificación"):
        return "client_identification_number"
    if "nombre" in h and "apellido" not in h:
        return "client_first_name"
    if "apellido" in h:
        return "client_last_name"
    if _has(h, "email", "correo"):
        return "client_email"
    if _has(h, "movil", "móvil", "celular"):
        return "client_mobile"
    if _has(h, "telefono", "teléfono"):
        return "client_phone"
    if _has(h, "direccion", "dirección"):
        return "client_address"
    if "ciudad" in h:
        return "client_city"
    if _has(h, "estado", "provincia"):
        return "client_province"
    if "nacimiento" in h:
        return "client_birth_date"
    if _has(h, "ocupacion", "ocupación"):
        return "client_occupation"
    if _has(h, "trabajo", "empresa"):
        return "client_workplace"
    return None


def _beneficiary_field(h: str) -> str | None:
    if "%" in h or "porcentaje" in h:
        return "beneficiary_percentage"
    if "nombre" in h and "apellido" not in h:
        return "beneficiary_first_name"
    if "apellido" in h:
        return "beneficiary_last_name"
    if "tipo" in h and "id" in h:
        return "beneficiary_identification_type"
    if _has(h, "cedula", "cédula", "identificacion"):
        return "beneficiary_identification_number"
    if _has(h, "parentesco", "relacion", "relación"):
        return "beneficiary_relationship"
    if _has(h, "nacimiento", "f.nac", "fnac"):
        return "beneficiary_birth_date"
    if _has(h, "telefono", "teléfono", "tel ", "tel."):
        return "beneficiary_phone"
    if _has(h, "email", "correo", "mail"):
        return "beneficiary_email"
    return None


def auto_map_client_columns(headers: list[str]) -> list[dict[str, Any]]:
    mappings = []
    for header in headers:
        h = normalize(header)
        field: str | None = None
        index: int | None = None

        ben = _BEN_INDEX.search(h)
        if ben or _has(h, "beneficiario", "parentesco", "% ben"):
            trailing = _TRAILING_NUMBER.search(h)
            if ben:
                index = int(ben.group(1) or ben.group(2))
            elif trailing:
                index = int(trailing.group(1))
            index = min(index or 1, MAX_BENEFICIARIES)
            field = _beneficiary_field(h)
        elif _has(h, "tomador", "cliente"):
            field = _client_field(h)
        else:
            field = _policy_field(h)
            if field is None and _has(h, "cedula", "cédula"):
                field = "client_identification_number"
            elif field is None and h in {"nombres", "nombre"}:
                field = "client_first_name"
            elif field is None and h in {"apellidos", "apellido"}:
                field = "client_last_name"

        mappings.append(
            {
                "excel_column": str(header or ""),
                "db_field": field,
                "beneficiary_index": index if field and field.startswith("beneficiary_") else None,
            }
        )
    return mappings


def required_fields_mapped(mappings: list[dict[str, Any]]) -> bool:
    mapped = {m["db_field"] for m in mappings if m.get("db_field")}
    return all(field in mapped for field in REQUIRED_FIELDS)


def missing_required_fields(mappings: list[dict[str, Any]]) -> list[str]:
    mapped = {m["db_field"] for m in mappings if m.get("db_field")}
    return [field for field in REQUIRED_FIELDS if field not in mapped]


def _column_for(mappings: list[dict[str, Any]], field: str) -> str | None:
    for m in mappings:
        if m.get("db_field") == field and m.get("beneficiary_index") is None:
            return m["excel_column"]
    return None


def _extract(row: dict[str, Any], mappings: list[dict[str, Any]], field: str) -> str | None:
    return cell_str(row, _column_for(mappings, field))


def _mapped(value: str | None, table: dict[str, str], default: str) -> str:
    return table.get(normalize(value), default) if value else default


def _client_data(row: dict[str, Any], mappings: list[dict[str, Any]]) -> dict[str, Any]:
    def get(field: str) -> str | None:
        return _extract(row, mappings, f"client_{field}")

    return {
        "identification_type": _mapped(get("identification_type"), IDENTIFICATION_TYPE_MAP, "cedula"),
        "identification_number": get("identification_number") or "",
        "first_name": get("first_name") or "",
        "last_name": get("last_name") or "",
        "email": get("email"),
        "phone": get("phone"),
        "mobile": get("mobile"),
        "address": get("address"),
        "city": get("city"),
        "province": get("province"),
        "birth_date": parse_date(row.get(_column_for(mappings, "client_birth_date") or "")),
        "occupation": get("occupation"),
        "workplace": get("workplace"),
    }


def _policy_data(row: dict[str, Any], mappings: list[dict[str, Any]]) -> dict[str, Any]:
    def raw(field: str) -> Any:
        column = _column_for(mappings, field)
        return row.get(column) if column else None

    return {
        "policy_number": _extract(row, mappings, "policy_number") or "",
        "insurer_name": _extract(row, mappings, "insurer_name"),
        "product_name": _extract(row, mappings, "product_name"),
        "start_date": parse_date(raw("start_date")) or "",
        "end_date": parse_date(raw("end_date")) or "",
        "status": _mapped(_extract(row, mappings, "status"), POLICY_STATUS_MAP, "en_tramite"),
        "premium": parse_amount(raw("premium")),
        "payment_frequency": _mapped(
            _extract(row, mappings, "payment_frequency"), PAYMENT_FREQUENCY_MAP, "mensual"
        ),
        "coverage_amount": parse_amount(raw("coverage_amount")),
        "deductible": parse_amount(raw("deductible")),
        "premium_payment_date": parse_date(raw("premium_payment_date")),
        "notes": _extract(row, mappings, "policy_notes"),
        "primary_advisor_name": _extract(row, mappings, "primary_advisor_name"),
        "secondary_advisor_name": _extract(row, mappings, "secondary_advisor_name"),
    }


def _beneficiaries(row: dict[str, Any], mappings: list[dict[str, Any]]) -> list[dict[str, Any]]:
    groups: dict[int, dict[str, str]] = {}
    for m in mappings:
        index = m.get("beneficiary_index")
        if index is not None and (m.get("db_field") or "").startswith("beneficiary_"):
            groups.setdefault(index, {})[m["db_field"]] = m["excel_column"]

    result = []
    for index in sorted(groups):
        columns = groups[index]

        def get(field: str) -> Any:
            column = columns.get(f"beneficiary_{field}")
            return row.get(column) if column else None

        first_name = cell_str(row, columns.get("beneficiary_first_name"))
        last_name = cell_str(row, columns.get("beneficiary_last_name"))
        if not first_name and not last_name:
            continue
        result.append(
            {
                "first_name": first_name or "",
                "last_name": last_name or "",
                "identification_type": _mapped(
                    cell_str(row, columns.get("beneficiary_identification_type")), IDENTIFICATION_TYPE_MAP, "cedula"
                ),
                "identification_number": cell_str(row, columns.get("beneficiary_identification_number")),
                "relationship": _mapped(
                    cell_str(row, columns.get("beneficiary_relationship")), RELATIONSHIP_MAP, "otro"
                ),
                "birth_date": parse_date(get("birth_date")),
                "phone": cell_str(row, columns.get("beneficiary_phone")),
                "email": cell_str(row, columns.get("beneficiary_email")),
                "percentage": parse_amount(get("percentage")),
            }
        )
    return result


def validate_client_import(
    rows: list[dict[str, Any]],
    mappings: list[dict[str, Any]],
    existing_clients: list[dict[str, Any]],
    existing_policies: list[dict[str, Any]],
    insurers: list[dict[str, Any]],
    products: list[dict[str, Any]],
    advisors: list[dict[str, Any]] | None = None,
) -> list[dict[str, Any]]:
    """Group rows by policy number and validate each group as one import unit."""
    grouped: dict[str, list[dict[str, Any]]] = {}
    for row in rows:
        policy_number = _extract(row, mappings, "policy_number")
        if policy_number:
            grouped.setdefault(normalize(policy_number), []).append(row)

    active_advisors = [a for a in (advisors or []) if a.get("is_active", 1)]
    validated = []
    for policy_key, group in grouped.items():
        first = group[0]
        client = _client_data(first, mappings)
        policy = _policy_data(first, mappings)
        beneficiaries = [b for row in group for b in _beneficiaries(row, mappings)]
        errors: list[dict[str, str]] = []

        wanted_id = normalize_identification(client["identification_number"])
        existing_client = next(
            (
                c
                for c in existing_clients
                if wanted_id
                and (c.get("identification_type") or "cedula") == client["identification_type"]
                and normalize_identification(c["identification_number"]) == wanted_id
            ),
            None,
        )
        existing_policy = next(
            (p for p in existing_policies if normalize(p.get("policy_number")) == policy_key),
            None,
        )

        insurer = resolve_by_name(policy["insurer_name"], insurers)
        product = None
        if insurer and policy["product_name"]:
            product = resolve_by_name(
                policy["product_name"], [p for p in products if p.get("insurer_id") == insurer["id"]]
            )
        primary = resolve_by_name(policy["primary_advisor_name"], active_advisors, key="full_name")
        secondary = resolve_by_name(policy["secondary_advisor_name"], active_advisors, key="full_name")

        if not client["identification_number"]:
            errors.append({"field": "client_identification_number", "message": "Cédula del tomador requerida"})
        if not client["first_name"]:
            errors.append({"field": "client_first_name", "message": "Nombres del tomador requerido"})
        if not client["last_name"]:
            errors.append({"field": "client_last_name", "message": "Apellidos del tomador requerido"})
        if not policy["start_date"]:
            errors.append({"field": "start_date", "message": "Fecha de inicio requerida"})
        if not policy["end_date"]:
            errors.append({"field": "end_date", "message": "Fecha de renovación requerida"})
        if client["email"] and not EMAIL_RE.match(client["email"]):
            errors.append({"field": "client_email", "message": "Formato de correo del tomador inválido"})
        for idx, ben in enumerate(beneficiaries, start=1):
            if ben["email"] and not EMAIL_RE.match(ben["email"]):
                errors.append({"field": f"beneficiary_{idx}_email", "message": f"Correo del beneficiario {idx} inválido"})
        total_pct = sum(b["percentage"] or 0 for b in beneficiaries)
        if total_pct > 100.0001:
            errors.append({"field": "beneficiary_percentage", "message": "La suma de porcentajes de beneficiarios supera el 100%"})

        validated.append(
            {
                "policy_number": policy["policy_number"],
                "client_data": client,
                "policy_data": policy,
                "beneficiaries": beneficiaries,
                "existing_client_id": existing_client["id"] if existing_client else None,
                "existing_policy_id": existing_policy["id"] if existing_policy else None,
                "resolved_insurer_id": insurer["id"] if insurer else None,
                "resolved_product_id": product["id"] if product else None,
                "resolved_primary_advisor_id": primary["id"] if primary else None,
                "resolved_secondary_advisor_id": secondary["id"] if secondary else None,
                "errors": errors,
                "is_valid": not errors,
                "is_update": existing_policy is not None,
                "is_new_client": existing_client is None,
            }
        )
    return validated


def load_import_context(db_path: Path) -> dict[str, list[dict[str, Any]]]:
    with get_conn(db_path) as conn:
        return {
            "existing_clients": [
                dict(r) for r in conn.execute("SELECT id, identification_type, identification_number FROM clients")
            ],
            "existing_policies": [dict(r) for r in conn.execute("SELECT id, policy_number FROM policies")],
            "insurers": [dict(r) for r in conn.execute("SELECT id, name FROM insurers WHERE is_active = 1")],
            "products": [dict(r) for r in conn.execute("SELECT id, name, insurer_id FROM products WHERE is_active = 1")],
            "advisors": [dict(r) for r in conn.execute("SELECT id, full_name, is_active FROM advisors")],
        }


def _policy_values(item: dict[str, Any], client_id: str) -> dict[str, Any]:
    policy = item["policy_data"]
    values = {
        "client_id": client_id,
        "policy_number": policy["policy_number"],
        "start_date": policy["start_date"],
        "end_date": policy["end_date"],
        "status": policy["status"],
        "payment_frequency": policy["payment_frequency"],
        "premium": policy["premium"],
        "coverage_amount": policy["coverage_amount"],
        "deductible": policy["deductible"],
        "premium_payment_date": policy["premium_payment_date"],
        "notes": policy["notes"],
        "insurer_id": item["resolved_insurer_id"],
        "product_id": item["resolved_product_id"],
    }
    if item["resolved_primary_advisor_id"] or item["resolved_secondary_advisor_id"]:
        values["primary_advisor_id"] = item["resolved_primary_advisor_id"]
        values["secondary_advisor_id"] = item["resolved_secondary_advisor_id"]
    return values


def _apply_one(conn: sqlite3.Connection, item: dict[str, Any], counts: dict[str, Any]) -> None:
    client_data = item["client_data"]
    client = find_client_by_identification(
        conn, client_data["identification_type"], client_data["identification_number"]
    )
    if client is None:
        client_id = insert_client(conn, client_data)
        counts["clients_created"] += 1
    else:
        client_id = client["id"]
        update_client_row(conn, client_id, {k: v for k, v in client_data.items() if v not in (None, "")})
        counts["clients_updated"] += 1

    existing = conn.execute(
        "SELECT id FROM policies WHERE lower(trim(policy_number)) = ?",
        (normalize(item["policy_number"]),),
    ).fetchone()
    values = _policy_values(item, client_id)
    if existing is None:
        policy_id = insert_policy(conn, values)
        counts["policies_created"] += 1
    else:
        policy_id = existing["id"]
        update_policy_row(conn, policy_id, values)
        counts["policies_updated"] += 1

    if item["beneficiaries"]:
        counts["beneficiaries"] += replace_beneficiaries(conn, policy_id, item["beneficiaries"])


def apply_client_import(db_path: Path, validated: list[dict[str, Any]]) -> dict[str, Any]:
    """Write the valid groups. Each policy is its own savepoint so one failure skips only that policy."""
    counts: dict[str, Any] = {
        "clients_created": 0,
        "clients_updated": 0,
        "policies_created": 0,
        "policies_updated": 0,
        "beneficiaries": 0,
        "skipped": 0,
        "errors": [],
    }
    with get_conn(db_path) as conn:
        for item in validated:
            if not item["is_valid"]:
                counts["skipped"] += 1
                continue
            conn.execute("SAVEPOINT import_policy")
            try:
                _apply_one(conn, item, counts)
            except (ValidationError, sqlite3.IntegrityError) as exc:
                conn.execute("ROLLBACK TO import_policy")
                counts["errors"].append({"policy_number": item["policy_number"], "message": str(exc)})
                logger.warning("Import of policy %s failed: %s", item["policy_number"], exc)
            finally:
                conn.execute("RELEASE import_policy")
    logger.info(
        "Client import: %s policies created, %s updated, %s failed",
        counts["policies_created"],
        counts["policies_updated"],
        len(counts["errors"]),
    )
    return counts


def import_client_rows(db_path: Path, rows: list[dict[str, Any]], mappings: list[dict[str, Any]]) -> dict[str, Any]:
    missing = missing_required_fields(mappings)
    if missing:
        raise ValidationError(
            "Faltan columnas requeridas",
            [{"field": field, "message": "Columna requerida sin asignar"} for field in missing],
        )
    validated = validate_client_import(rows, mappings, **load_import_context(db_path))
    result = apply_client_import(db_path, validated)
    result["invalid"] = [
        {"policy_number": v["policy_number"], "errors": v["errors"]} for v in validated if not v["is_valid"]
    ]
    return result


# ---------------------------------------------------------------------------
# Export / template
# ---------------------------------------------------------------------------

def _headers(beneficiary_slots: int) -> list[str]:
    headers = [label for _, label in POLICY_COLUMNS] + [label for _, label in CLIENT_COLUMNS]
    for i in range(1, beneficiary_slots + 1):
        headers.extend(label.format(i=i) for _, label in BENEFICIARY_COLUMNS)
    return headers


def export_client_rows(db_path: Path) -> tuple[list[str], list[list[Any]]]:
    with get_conn(db_path) as conn:
        policies = conn.execute(
            """
            SELECT p.*, i.name AS insurer_name, pr.name AS product_name,
                   c.identification_type AS c_identification_type,
                   c.identification_number AS c_identification_number,
                   c.first_name AS c_first_name, c.last_name AS c_last_name,
                   c.email AS c_email, c.phone AS c_phone, c.mobile AS c_mobile,
                   c.address AS c_address, c.city AS c_city, c.province AS c_province,
                   c.birth_date AS c_birth_date, c.occupation AS c_occupation,
                   c.workplace AS c_workplace,
                   (SELECT a.full_name FROM policy_advisors pa JOIN advisors a ON a.id = pa.advisor_id
                     WHERE pa.policy_id = p.id AND pa.advisor_role = 'principal') AS primary_advisor_name,
                   (SELECT a.full_name FROM policy_advisors pa JOIN advisors a ON a.id = pa.advisor_id
                     WHERE pa.policy_id = p.id AND pa.advisor_role = 'secundario') AS secondary_advisor_name
            FROM policies p
            JOIN clients c ON c.id = p.client_id
            LEFT JOIN insurers i ON i.id = p.insurer_id
            LEFT JOIN products pr ON pr.id = p.product_id
            ORDER BY c.last_name, c.first_name, p.policy_number
            """
        ).fetchall()
        beneficiaries: dict[str, list[dict[str, Any]]] = {}
        for row in conn.execute("SELECT * FROM beneficiaries ORDER BY created_at, rowid"):
            beneficiaries.setdefault(row["policy_id"], []).append(dict(row))

    slots = min(max([len(v) for v in beneficiaries.values()] + [1]), MAX_BENEFICIARIES)
    out_rows = []
    for p in policies:
        row: list[Any] = [
            p["policy_number"],
            p["insurer_name"],
            p["product_name"],
            p["start_date"],
            p["end_date"],
            p["premium"],
            p["coverage_amount"],
            p["deductible"],
            p["status"],
            p["payment_frequency"],
            p["premium_payment_date"],
            p["primary_advisor_name"],
            p["secondary_advisor_name"],
            p["notes"],
        ]
        row.extend(p[f"c_{field.removeprefix('client_')}"] for field, _ in CLIENT_COLUMNS)
        bens = beneficiaries.get(p["id"], [])[:slots]
        for ben in bens:
            row.extend(ben[field.removeprefix("beneficiary_")] for field, _ in BENEFICIARY_COLUMNS)
        row.extend([None] * (len(BENEFICIARY_COLUMNS) * (slots - len(bens))))
        out_rows.append(row)
    return _headers(slots), out_rows


def export_clients_workbook(db_path: Path) -> bytes:
    headers, rows = export_client_rows(db_path)
    return build_workbook([("Clientes", headers, rows)])


def client_import_template() -> bytes:
    headers = _headers(MAX_BENEFICIARIES)
    blank_bens = [None] * (len(BENEFICIARY_COLUMNS) * (MAX_BENEFICIARIES - 1))
    example = [
        "POL-2024-001", "Mercantil Seguros", "Salud Global", "2024-01-01", "2025-01-01",
        1500, 50000, 500, "vigente", "mensual", "2024-02-01", "María Estaba", None, "Cliente corporativo",
        "cedula", "V-12345678", "Juan", "Pérez", "juan@email.com", "0212-1234567", "0412-1234567",
        "Av. Principal, Edificio 123", "Caracas", "Distrito Capital", "1985-06-15", "Gerente", "Empresa ABC",
        "María", "Pérez", "conyuge", "cedula", "V-87654321", "1985-05-15", "0414-1111111", "maria@email.com", 100,
        *blank_bens,
    ]
    return build_workbook([("Importación", headers, [example])])
