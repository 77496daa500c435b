"""Policy consumptions (claims usage) and their spreadsheet import."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from brokerdesk.errors import NotFoundError, ValidationError
from brokerdesk.matching import names_match, normalize
from brokerdesk.persistence import get_conn, new_id, utc_now
from brokerdesk.spreadsheets import build_workbook, cell_str, parse_amount, parse_date

logger = logging.getLogger(__name__)

CONSUMPTION_FIELDS = [
    {"value": "policy_number", "label": "Número de Póliza", "required": True},
    {"value": "usage_type", "label": "Tipo de Uso", "required": True},
    {"value": "usage_date", "label": "Fecha de Uso", "required": True},
    {"value": "description", "label": "Descripción", "required": True},
    {"value": "beneficiary_name", "label": "Nombre Beneficiario", "required": False},
    {"value": "amount_bs", "label": "Monto Bs", "required": False},
    {"value": "amount_usd", "label": "Monto USD", "required": False},
]
REQUIRED_FIELDS = tuple(f["value"] for f in CONSUMPTION_FIELDS if f["required"])
TEMPLATE_HEADERS = ["Número Póliza", "Tipo de Uso", "Fecha", "Descripción", "Beneficiario", "Monto USD", "Monto Bs"]

CONSUMPTION_SELECT = """
    SELECT pc.*, p.policy_number, ut.name AS usage_type_name,
           c.first_name || ' ' || c.last_name AS client_name
    FROM policy_consumptions pc
    JOIN policies p ON p.id = pc.policy_id
    JOIN clients c ON c.id = p.client_id
    JOIN usage_types ut ON ut.id = pc.usage_type_id
"""


def _has(h: str, *words: str) -> bool:
    return any(w in h for w in words)


def auto_map_consumption_columns(headers: list[str]) -> list[dict[str, Any]]:
    mappings = []
    for header in headers:
        h = normalize(header)
        field = None
        money = _has(h, "monto", "amount", "valor")
        if _has(h, "poliza", "póliza") and (_has(h, "numero", "número") or h in {"poliza", "póliza"}):
            field = "policy_number"
        elif ("tipo" in h and _has(h, "uso", "consumo")) or h in {"tipo", "type"}:
            field = "usage_type"
        elif ("fecha" in h and _has(h, "uso", "consumo")) or h in {"fecha", "date"}:
            field = "usage_date"
        elif _has(h, "descripcion", "descripción") or h in {"detalle", "concepto"}:
            field = "description"
        elif _has(h, "beneficiario", "paciente", "asegurado"):
            field = "beneficiary_name"
        elif (money and _has(h, "bs", "bolivar", "bolívar")) or h in {"bs", "bolivares", "bolívares"}:
            field = "amount_bs"
        elif (money and _has(h, "usd", "dolar", "dólar", "$")) or h in {"usd", "dolares", "dólares"}:
            field = "amount_usd"
        mappings.append({"excel_column": str(header or ""), "db_field": field})
    return mappings


def consumption_required_mapped(mappings: list[dict[str, Any]]) -> bool:
    mapped = {m.get("db_field") for m in mappings}
    return all(field in mapped for field in REQUIRED_FIELDS)


def _column(mappings: list[dict[str, Any]], field: str) -> str | None:
    return next((m["excel_column"] for m in mappings if m.get("db_field") == field), None)


def validate_consumption_import(
    rows: list[dict[str, Any]],
    mappings: list[dict[str, Any]],
    policies: list[dict[str, Any]],
    usage_types: list[dict[str, Any]],
) -> list[dict[str, Any]]:
    """Validate each row on its own. An unmapped required column fails every row."""
    columns = {f["value"]: _column(mappings, f["value"]) for f in CONSUMPTION_FIELDS}
    by_number = {normalize(p.get("policy_number")): p for p in policies if p.get("policy_number")}

    validated = []
    for index, row in enumerate(rows, start=1):
        errors: list[dict[str, str]] = []
        policy_number = cell_str(row, columns["policy_number"])
        usage_type_name = cell_str(row, columns["usage_type"])
        usage_date = parse_date(row.get(columns["usage_date"])) if columns["usage_date"] else None
        description = cell_str(row, columns["description"])
        amount_bs = parse_amount(row.get(columns["amount_bs"])) if columns["amount_bs"] else None
        amount_usd = parse_amount(row.get(columns["amount_usd"])) if columns["amount_usd"] else None

        policy = by_number.get(normalize(policy_number)) if policy_number else None
        usage_type = (
            next((t for t in usage_types if names_match(t["name"], usage_type_name)), None)
            if usage_type_name
            else None
        )

        if not policy_number:
            errors.append({"field": "policy_number", "message": "Número de póliza requerido"})
        elif policy is None:
            errors.append({"field": "policy_number", "message": f'Póliza "{policy_number}" no encontrada'})
        if not usage_type_name:
            errors.append({"field": "usage_type", "message": "Tipo de uso requerido"})
        elif usage_type is None:
            errors.append({"field": "usage_type", "message": f'Tipo "{usage_type_name}" no encontrado'})
        if not usage_date:
            errors.append({"field": "usage_date", "message": "Fecha de uso requerida o inválida"})
        if not description:
            errors.append({"field": "description", "message": "Descripción requerida"})
        if amount_bs is None and amount_usd is None:
            errors.append({"field": "amount", "message": "Se requiere al menos un monto (Bs o USD)"})

        validated.append(
            {
                "row_index": index,
                "data": {
                    "policy_id": policy["id"] if policy else None,
                    "policy_number": policy_number or "",
                    "beneficiary_name": cell_str(row, columns["beneficiary_name"]),
                    "usage_type_id": usage_type["id"] if usage_type else None,
                    "usage_type_name": usage_type_name or "",
                    "usage_date": usage_date or "",
                    "description": description or "",
                    "amount_bs": amount_bs,
                    "amount_usd": amount_usd,
                },
                "errors": errors,
                "is_valid": not errors,
            }
        )
    return validated


def apply_consumption_import(db_path: Path, validated: list[dict[str, Any]], user: str | None = None) -> dict[str, int]:
    valid = [v["data"] for v in validated if v["is_valid"]]
    with get_conn(db_path) as conn:
        for data in valid:
            _insert(conn, data, user)
    logger.info("Imported %s consumptions (%s rows rejected)", len(valid), len(validated) - len(valid))
    return {"success": len(valid), "errors": len(validated) - len(valid)}


def import_consumption_rows(
    db_path: Path,
    rows: list[dict[str, Any]],
    mappings: list[dict[str, Any]],
    user: str | None = None,
) -> dict[str, Any]:
    with get_conn(db_path) as conn:
        policies = [dict(r) for r in conn.execute("SELECT id, policy_number FROM policies")]
        usage_types = [dict(r) for r in conn.execute("SELECT id, name FROM usage_types WHERE is_active = 1")]
    validated = validate_consumption_import(rows, mappings, policies, usage_types)
    result: dict[str, Any] = dict(apply_consumption_import(db_path, validated, user))
    result["invalid_rows"] = [
        {"row_index": v["row_index"], "errors": v["errors"]} for v in validated if not v["is_valid"]
    ]
    return result


def consumption_template(db_path: Path) -> bytes:
    with get_conn(db_path) as conn:
        names = [r["name"] for r in conn.execute("SELECT name FROM usage_types WHERE is_active = 1 ORDER BY name")]
    first = names[0] if names else "Consulta"
    second = names[1] if len(names) > 1 else first
    examples = [
        ["POL-001", first, "15/01/2025", "Consulta médica general", "Juan Pérez", 50.00, None],
        ["POL-001", second, "20/01/2025", "Atención de urgencia", "María López", 150.00, None],
    ]
    return build_workbook(
        [
            ("Consumos", TEMPLATE_HEADERS, examples),
            ("Tipos de Uso", ["Tipo de Uso"], [[n] for n in names]),
        ]
    )


# ---------------------------------------------------------------------------
# CRUD
# ---------------------------------------------------------------------------

def _validate(data: dict[str, Any]) -> None:
    errors = []
    for field, message in (
        ("policy_id", "La póliza es requerida"),
        ("usage_type_id", "El tipo de uso es requerido"),
        ("usage_date", "Fecha de uso requerida o inválida"),
        ("description", "Descripción requerida"),
    ):
        if not data.get(field):
            errors.append({"field": field, "message": message})
    if data.get("amount_bs") is None and data.get("amount_usd") is None:
        errors.append({"field": "amount", "message": "Se requiere al menos un monto (Bs o USD)"})
    if errors:
        raise ValidationError(errors[0]["message"], errors)


def _insert(conn: Any, data: dict[str, Any], user: str | None) -> str:
    _validate(data)
    consumption_id = new_id()
    now = utc_now()
    conn.execute(
        """
        INSERT INTO policy_consumptions(
            id, policy_id, beneficiary_name, usage_type_id, usage_date, description,
            amount_bs, amount_usd, created_by, created_at, updated_at
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            consumption_id,
            data["policy_id"],
            data.get("beneficiary_name"),
            data["usage_type_id"],
            data["usage_date"],
            data["description"],
            data.get("amount_bs"),
            data.get("amount_usd"),
            user,
            now,
            now,
        ),
    )
    return consumption_id


def create_consumption(db_path: Path, data: dict[str, Any], user: str | None = None) -> dict[str, Any]:
    with get_conn(db_path) as conn:
        consumption_id = _insert(conn, data, user)
    return get_consumption(db_path, consumption_id)


def get_consumption(db_path: Path, consumption_id: str) -> dict[str, Any]:
    with get_conn(db_path) as conn:
        row = conn.execute(f"{CONSUMPTION_SELECT} WHERE pc.id = ? AND pc.deleted = 0", (consumption_id,)).fetchone()
    if row is None:
        raise NotFoundError("Consumo no encontrado")
    return dict(row)


def update_consumption(db_path: Path, consumption_id: str, data: dict[str, Any]) -> dict[str, Any]:
    current = get_consumption(db_path, consumption_id)
    fields = ("beneficiary_name", "usage_type_id", "usage_date", "description", "amount_bs", "amount_usd")
    merged = {**{k: current[k] for k in fields + ("policy_id",)}, **{k: data[k] for k in fields if k in data}}
    _validate(merged)
    with get_conn(db_path) as conn:
        conn.execute(
            f"""
            UPDATE policy_consumptions
            SET {', '.join(f'{k} = ?' for k in fields)}, updated_at = ?
            WHERE id = ?
            """,
            (*(merged[k] for k in fields), utc_now(), consumption_id),
        )
    return get_consumption(db_path, consumption_id)


def delete_consumption(db_path: Path, consumption_id: str, user: str | None = None) -> bool:
    now = utc_now()
    with get_conn(db_path) as conn:
        cur = conn.execute(
            """
            UPDATE policy_consumptions
            SET deleted = 1, deleted_at = ?, deleted_by = ?, updated_at = ?
            WHERE id = ? AND deleted = 0
            """,
            (now, user, now, consumption_id),
        )
        return cur.rowcount > 0


def list_consumptions(
    db_path: Path,
    policy_id: str | None = None,
    beneficiary_name: str | None = None,
    usage_type_id: str | None = None,
    date_from: str | None = None,
    date_to: str | None = None,
    search: str | None = None,
) -> list[dict[str, Any]]:
    clauses = ["pc.deleted = 0"]
    params: list[Any] = []
    for clause, value in (
        ("pc.policy_id = ?", policy_id),
        ("pc.usage_type_id = ?", usage_type_id),
        ("pc.usage_date >= ?", date_from),
        ("pc.usage_date <= ?", date_to),
    ):
        if value:
            clauses.append(clause)
            params.append(value)
    if beneficiary_name:
        clauses.append("lower(coalesce(pc.beneficiary_name, '')) LIKE ?")
        params.append(f"%{beneficiary_name.strip().lower()}%")
    if search:
        like = f"%{search.strip().lower()}%"
        clauses.append(
            "(lower(pc.description) LIKE ? OR lower(coalesce(p.policy_number, '')) LIKE ? "
            "OR lower(c.first_name || ' ' || c.last_name) LIKE ?)"
        )
        params.extend([like, like, like])
    with get_conn(db_path) as conn:
        rows = conn.execute(
            f"{CONSUMPTION_SELECT} WHERE {' AND '.join(clauses)} ORDER BY pc.usage_date DESC, pc.created_at DESC",
            params,
        ).fetchall()
        return [dict(row) for row in rows]


def consumption_summary(consumptions: list[dict[str, Any]]) -> dict[str, Any]:
    by_type: dict[str, dict[str, Any]] = {}
    total_bs = total_usd = 0.0
    for item in consumptions:
        bs = float(item.get("amount_bs") or 0)
        usd = float(item.get("amount_usd") or 0)
        total_bs += bs
        total_usd += usd
        bucket = by_type.setdefault(
            item["usage_type_name"], {"usage_type": item["usage_type_name"], "count": 0, "total_bs": 0.0, "total_usd": 0.0}
        )
        bucket["count"] += 1
        bucket["total_bs"] = round(bucket["total_bs"] + bs, 2)
        bucket["total_usd"] = round(bucket["total_usd"] + usd, 2)
    return {
        "total_bs": round(total_bs, 2),
        "total_usd": round(total_usd, 2),
        "count": len(consumptions),
        "by_type": sorted(by_type.values(), key=lambda b: b["usage_type"]),
    }
