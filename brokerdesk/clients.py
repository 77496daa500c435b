from __future__ import annotations

import logging
import sqlite3
from pathlib import Path
from typing import Any

from brokerdesk.calculations import calculate_installment, installment_label
from brokerdesk.errors import NotFoundError, ValidationError
from brokerdesk.matching import normalize_identification
from brokerdesk.persistence import get_conn, new_id, utc_now

logger = logging.getLogger(__name__)

POLICY_STATUSES = ("vigente", "pendiente", "cancelada", "vencida", "en_tramite")
PAYMENT_FREQUENCIES = (
    "mensual",
    "trimestral",
    "semestral",
    "anual",
    "unico",
    "mensual_10_cuotas",
    "mensual_12_cuotas",
    "bimensual",
)
IDENTIFICATION_TYPES = ("cedula", "pasaporte", "ruc", "otro", "rif")
RELATIONSHIPS = ("conyuge", "hijo", "padre", "madre", "hermano", "otro", "tomador_titular")

CLIENT_FIELDS = (
    "identification_type",
    "identification_number",
    "first_name",
    "last_name",
    "email",
    "phone",
    "mobile",
    "address",
    "city",
    "province",
    "birth_date",
    "occupation",
    "workplace",
    "notes",
)
POLICY_FIELDS = (
    "client_id",
    "insurer_id",
    "product_id",
    "policy_number",
    "start_date",
    "end_date",
    "status",
    "premium",
    "payment_frequency",
    "coverage_amount",
    "deductible",
    "premium_payment_date",
    "notes",
)
BENEFICIARY_FIELDS = (
    "first_name",
    "last_name",
    "identification_type",
    "identification_number",
    "relationship",
    "birth_date",
    "phone",
    "email",
    "percentage",
)

POLICY_SELECT = """
    SELECT p.*,
           c.first_name AS client_first_name,
           c.last_name AS client_last_name,
           c.identification_number AS client_identification_number,
           c.email AS client_email,
           i.name AS insurer_name,
           pr.name AS product_name
    FROM policies p
    JOIN clients c ON c.id = p.client_id
    LEFT JOIN insurers i ON i.id = p.insurer_id
    LEFT JOIN products pr ON pr.id = p.product_id
"""


def _pick(data: dict[str, Any], fields: tuple[str, ...]) -> dict[str, Any]:
    return {k: data[k] for k in fields if k in data}


def _check_choice(field: str, value: Any, choices: tuple[str, ...]) -> None:
    if value is not None and value not in choices:
        raise ValidationError.field(field, f"Valor inválido para {field}: {value}")


# ---------------------------------------------------------------------------
# Clients
# ---------------------------------------------------------------------------

def _validate_client(values: dict[str, Any], partial: bool = False) -> None:
    errors = []
    for field, message in (
        ("identification_number", "La identificación es requerida"),
        ("first_name", "Los nombres son requeridos"),
        ("last_name", "Los apellidos son requeridos"),
    ):
        if (not partial or field in values) and not str(values.get(field) or "").strip():
            errors.append({"field": field, "message": message})
    if errors:
        raise ValidationError(errors[0]["message"], errors)
    _check_choice("identification_type", values.get("identification_type"), IDENTIFICATION_TYPES)


def find_client_by_identification(
    conn: sqlite3.Connection,
    identification_type: str | None,
    identification_number: str,
    exclude_id: str | None = None,
) -> dict[str, Any] | None:
    """Look up a client by (type, number); numbers compare without punctuation."""
    wanted = normalize_identification(identification_number)
    if not wanted:
        return None
    rows = conn.execute(
        "SELECT * FROM clients WHERE identification_type = ? AND id != ?",
        (identification_type or "cedula", exclude_id or ""),
    ).fetchall()
    for row in rows:
        if normalize_identification(row["identification_number"]) == wanted:
            return dict(row)
    return None


def insert_client(conn: sqlite3.Connection, data: dict[str, Any]) -> str:
    values = _pick(data, CLIENT_FIELDS)
    values.setdefault("identification_type", "cedula")
    _validate_client(values)
    existing = find_client_by_identification(conn, values["identification_type"], values["identification_number"])
    if existing is not None:
        raise ValidationError.field(
            "identification_number", "Este registro ya existe. Por favor verifica los datos ingresados."
        )
    client_id = new_id()
    now = utc_now()
    values.update({"id": client_id, "created_at": now, "updated_at": now})
    conn.execute(
        f"INSERT INTO clients({', '.join(values)}) VALUES ({', '.join('?' for _ in values)})",
        tuple(values.values()),
    )
    return client_id


def update_client_row(conn: sqlite3.Connection, client_id: str, data: dict[str, Any]) -> None:
    values = _pick(data, CLIENT_FIELDS)
    _validate_client(values, partial=True)
    if not values:
        return
    if "identification_type" in values or "identification_number" in values:
        current = conn.execute(
            "SELECT identification_type, identification_number FROM clients WHERE id = ?", (client_id,)
        ).fetchone()
        if current is None:
            raise NotFoundError("Cliente no encontrado")
        duplicate = find_client_by_identification(
            conn,
            values.get("identification_type", current["identification_type"]),
            values.get("identification_number", current["identification_number"]),
            exclude_id=client_id,
        )
        if duplicate is not None:
            raise ValidationError.field(
                "identification_number", "Este registro ya existe. Por favor verifica los datos ingresados."
            )
    values["updated_at"] = utc_now()
    cur = conn.execute(
        f"UPDATE clients SET {', '.join(f'{k} = ?' for k in values)} WHERE id = ?",
        (*values.values(), client_id),
    )
    if cur.rowcount == 0:
        raise NotFoundError("Cliente no encontrado")


def create_client(db_path: Path, data: dict[str, Any]) -> dict[str, Any]:
    with get_conn(db_path) as conn:
        client_id = insert_client(conn, data)
    logger.info("Created client %s", client_id)
    return get_client(db_path, client_id)


def update_client(db_path: Path, client_id: str, data: dict[str, Any]) -> dict[str, Any]:
    with get_conn(db_path) as conn:
        update_client_row(conn, client_id, data)
    return get_client(db_path, client_id)


def delete_client(db_path: Path, client_id: str) -> bool:
    with get_conn(db_path) as conn:
        cur = conn.execute("DELETE FROM clients WHERE id = ?", (client_id,))
        return cur.rowcount > 0


def list_clients(db_path: Path, search: str | None = None, limit: int = 500) -> list[dict[str, Any]]:
    params: list[Any] = []
    where = ""
    if search:
        like = f"%{search.strip().lower()}%"
        where = """
            WHERE lower(c.first_name || ' ' || c.last_name) LIKE ?
               OR lower(c.identification_number) LIKE ?
               OR lower(coalesce(c.email, '')) LIKE ?
        """
        params.extend([like, like, like])
    with get_conn(db_path) as conn:
        rows = conn.execute(
            f"""
            SELECT c.*, COUNT(p.id) AS policy_count
            FROM clients c
            LEFT JOIN policies p ON p.client_id = c.id
            {where}
            GROUP BY c.id
            ORDER BY c.last_name, c.first_name
            LIMIT ?
            """,
            (*params, limit),
        ).fetchall()
        return [dict(row) for row in rows]


def get_client(db_path: Path, client_id: str) -> dict[str, Any]:
    with get_conn(db_path) as conn:
        row = conn.execute("SELECT * FROM clients WHERE id = ?", (client_id,)).fetchone()
    if row is None:
        raise NotFoundError("Cliente no encontrado")
    client = dict(row)
    client["policies"] = list_policies(db_path, client_id=client_id, with_beneficiaries=True)
    return client


# ---------------------------------------------------------------------------
# Policies
# ---------------------------------------------------------------------------

def _validate_policy(values: dict[str, Any], partial: bool = False) -> None:
    errors = []
    for field, message in (
        ("client_id", "El cliente es requerido"),
        ("start_date", "Fecha de inicio requerida"),
        ("end_date", "Fecha de renovación requerida"),
    ):
        if (not partial or field in values) and not values.get(field):
            errors.append({"field": field, "message": message})
    if errors:
        raise ValidationError(errors[0]["message"], errors)
    _check_choice("status", values.get("status"), POLICY_STATUSES)
    _check_choice("payment_frequency", values.get("payment_frequency"), PAYMENT_FREQUENCIES)
    if values.get("start_date") and values.get("end_date") and values["end_date"] < values["start_date"]:
        raise ValidationError.field("end_date", "La fecha de renovación debe ser posterior a la de inicio")
    premium = values.get("premium")
    if premium is not None and float(premium) < 0:
        raise ValidationError.field("premium", "La prima no puede ser negativa")


ADVISOR_ROLES = (("primary_advisor_id", "principal"), ("secondary_advisor_id", "secundario"))


def set_policy_advisors(conn: sqlite3.Connection, policy_id: str, data: dict[str, Any]) -> None:
    """Replace only the advisor roles present in data; a None id clears that role."""
    for key, role in ADVISOR_ROLES:
        if key not in data:
            continue
        conn.execute("DELETE FROM policy_advisors WHERE policy_id = ? AND advisor_role = ?", (policy_id, role))
        advisor_id = data[key]
        if advisor_id:
            conn.execute(
                "INSERT INTO policy_advisors(policy_id, advisor_id, advisor_role) VALUES (?, ?, ?)",
                (policy_id, advisor_id, role),
            )


def insert_policy(conn: sqlite3.Connection, data: dict[str, Any]) -> str:
    values = _pick(data, POLICY_FIELDS)
    values.setdefault("status", "en_tramite")
    values.setdefault("payment_frequency", "mensual")
    _validate_policy(values)
    policy_id = new_id()
    now = utc_now()
    values.update({"id": policy_id, "created_at": now, "updated_at": now})
    conn.execute(
        f"INSERT INTO policies({', '.join(values)}) VALUES ({', '.join('?' for _ in values)})",
        tuple(values.values()),
    )
    set_policy_advisors(conn, policy_id, data)
    if data.get("beneficiaries"):
        replace_beneficiaries(conn, policy_id, data["beneficiaries"])
    return policy_id


def update_policy_row(conn: sqlite3.Connection, policy_id: str, data: dict[str, Any]) -> None:
    values = _pick(data, POLICY_FIELDS)
    _validate_policy(values, partial=True)
    if values:
        values["updated_at"] = utc_now()
        cur = conn.execute(
            f"UPDATE policies SET {', '.join(f'{k} = ?' for k in values)} WHERE id = ?",
            (*values.values(), policy_id),
        )
        if cur.rowcount == 0:
            raise NotFoundError("Póliza no encontrada")
    set_policy_advisors(conn, policy_id, data)
    if data.get("beneficiaries") is not None:
        replace_beneficiaries(conn, policy_id, data["beneficiaries"])


def create_policy(db_path: Path, data: dict[str, Any]) -> dict[str, Any]:
    with get_conn(db_path) as conn:
        policy_id = insert_policy(conn, data)
    logger.info("Created policy %s for client %s", policy_id, data.get("client_id"))
    return get_policy(db_path, policy_id)


def update_policy(db_path: Path, policy_id: str, data: dict[str, Any]) -> dict[str, Any]:
    with get_conn(db_path) as conn:
        update_policy_row(conn, policy_id, data)
    return get_policy(db_path, policy_id)


def delete_policy(db_path: Path, policy_id: str) -> bool:
    with get_conn(db_path) as conn:
        cur = conn.execute("DELETE FROM policies WHERE id = ?", (policy_id,))
        return cur.rowcount > 0


def _decorate_policy(conn: sqlite3.Connection, policy: dict[str, Any], with_beneficiaries: bool) -> dict[str, Any]:
    policy["installment_amount"] = calculate_installment(policy.get("premium"), policy.get("payment_frequency"))
    policy["installment_label"] = installment_label(policy.get("payment_frequency"))
    advisors = conn.execute(
        """
        SELECT pa.advisor_role, a.id, a.full_name
        FROM policy_advisors pa
        JOIN advisors a ON a.id = pa.advisor_id
        WHERE pa.policy_id = ?
        """,
        (policy["id"],),
    ).fetchall()
    by_role = {row["advisor_role"]: row for row in advisors}
    for role, prefix in (("principal", "primary"), ("secundario", "secondary")):
        row = by_role.get(role)
        policy[f"{prefix}_advisor_id"] = row["id"] if row else None
        policy[f"{prefix}_advisor_name"] = row["full_name"] if row else None
    if with_beneficiaries:
        policy["beneficiaries"] = _beneficiaries(conn, policy["id"])
    return policy


def get_policy(db_path: Path, policy_id: str) -> dict[str, Any]:
    with get_conn(db_path) as conn:
        row = conn.execute(f"{POLICY_SELECT} WHERE p.id = ?", (policy_id,)).fetchone()
        if row is None:
            raise NotFoundError("Póliza no encontrada")
        return _decorate_policy(conn, dict(row), with_beneficiaries=True)


def list_policies(
    db_path: Path,
    client_id: str | None = None,
    status: str | None = None,
    search: str | None = None,
    with_beneficiaries: bool = False,
    limit: int = 1000,
) -> list[dict[str, Any]]:
    clauses: list[str] = []
    params: list[Any] = []
    if client_id:
        clauses.append("p.client_id = ?")
        params.append(client_id)
    if status:
        clauses.append("p.status = ?")
        params.append(status)
    if search:
        like = f"%{search.strip().lower()}%"
        clauses.append(
            "(lower(coalesce(p.policy_number, '')) LIKE ? OR lower(c.first_name || ' ' || c.last_name) LIKE ?)"
        )
        params.extend([like, like])
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
    with get_conn(db_path) as conn:
        rows = conn.execute(
            f"{POLICY_SELECT} {where} ORDER BY p.end_date, p.policy_number LIMIT ?",
            (*params, limit),
        ).fetchall()
        return [_decorate_policy(conn, dict(row), with_beneficiaries) for row in rows]


# ---------------------------------------------------------------------------
# Beneficiaries
# ---------------------------------------------------------------------------

def _beneficiaries(conn: sqlite3.Connection, policy_id: str) -> list[dict[str, Any]]:
    rows = conn.execute(
        "SELECT * FROM beneficiaries WHERE policy_id = ? ORDER BY created_at, rowid",
        (policy_id,),
    ).fetchall()
    return [dict(row) for row in rows]


def _check_percentage_total(
    conn: sqlite3.Connection,
    policy_id: str,
    percentage: float | None,
    exclude_id: str | None = None,
) -> None:
    if percentage is None:
        return
    if float(percentage) < 0:
        raise ValidationError.field("percentage", "El porcentaje no puede ser negativo")
    row = conn.execute(
        "SELECT COALESCE(SUM(percentage), 0) AS total FROM beneficiaries WHERE policy_id = ? AND id != ?",
        (policy_id, exclude_id or ""),
    ).fetchone()
    if float(row["total"]) + float(percentage) > 100.0001:
        raise ValidationError.field("percentage", "La suma de porcentajes de beneficiarios supera el 100%")


def _validate_beneficiary(values: dict[str, Any], partial: bool = False) -> None:
    for field, message in (("first_name", "Nombre del beneficiario requerido"), ("last_name", "Apellido del beneficiario requerido")):
        if (not partial or field in values) and not str(values.get(field) or "").strip():
            raise ValidationError.field(field, message)
    _check_choice("relationship", values.get("relationship"), RELATIONSHIPS)
    _check_choice("identification_type", values.get("identification_type"), IDENTIFICATION_TYPES)


def insert_beneficiary(conn: sqlite3.Connection, policy_id: str, data: dict[str, Any]) -> str:
    values = _pick(data, BENEFICIARY_FIELDS)
    values.setdefault("identification_type", "cedula")
    values.setdefault("relationship", "otro")
    _validate_beneficiary(values)
    _check_percentage_total(conn, policy_id, values.get("percentage"))
    beneficiary_id = new_id()
    values.update({"id": beneficiary_id, "policy_id": policy_id, "created_at": utc_now()})
    conn.execute(
        f"INSERT INTO beneficiaries({', '.join(values)}) VALUES ({', '.join('?' for _ in values)})",
        tuple(values.values()),
    )
    return beneficiary_id


def replace_beneficiaries(conn: sqlite3.Connection, policy_id: str, beneficiaries: list[dict[str, Any]]) -> int:
    conn.execute("DELETE FROM beneficiaries WHERE policy_id = ?", (policy_id,))
    for data in beneficiaries:
        insert_beneficiary(conn, policy_id, data)
    return len(beneficiaries)


def add_beneficiary(db_path: Path, policy_id: str, data: dict[str, Any]) -> dict[str, Any]:
    with get_conn(db_path) as conn:
        if conn.execute("SELECT 1 FROM policies WHERE id = ?", (policy_id,)).fetchone() is None:
            raise NotFoundError("Póliza no encontrada")
        beneficiary_id = insert_beneficiary(conn, policy_id, data)
        row = conn.execute("SELECT * FROM beneficiaries WHERE id = ?", (beneficiary_id,)).fetchone()
        return dict(row)


def update_beneficiary(db_path: Path, beneficiary_id: str, data: dict[str, Any]) -> dict[str, Any]:
    values = _pick(data, BENEFICIARY_FIELDS)
    _validate_beneficiary(values, partial=True)
    with get_conn(db_path) as conn:
        current = conn.execute("SELECT * FROM beneficiaries WHERE id = ?", (beneficiary_id,)).fetchone()
        if current is None:
            raise NotFoundError("Beneficiario no encontrado")
        if "percentage" in values:
            _check_percentage_total(conn, current["policy_id"], values["percentage"], exclude_id=beneficiary_id)
        if values:
            conn.execute(
                f"UPDATE beneficiaries SET {', '.join(f'{k} = ?' for k in values)} WHERE id = ?",
                (*values.values(), beneficiary_id),
            )
        row = conn.execute("SELECT * FROM beneficiaries WHERE id = ?", (beneficiary_id,)).fetchone()
        return dict(row)


def delete_beneficiary(db_path: Path, beneficiary_id: str) -> bool:
    with get_conn(db_path) as conn:
        cur = conn.execute("DELETE FROM beneficiaries WHERE id = ?", (beneficiary_id,))
        return cur.rowcount > 0


def list_beneficiaries(db_path: Path, policy_id: str) -> list[dict[str, Any]]:
    with get_conn(db_path) as conn:
        return _beneficiaries(conn, policy_id)
