"""Reference data: advisors, insurers, products, usage types, banks and broker settings."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from brokerdesk.config import BROKER_NAME
from brokerdesk.errors import NotFoundError, ValidationError
from brokerdesk.persistence import get_conn, new_id, utc_now

logger = logging.getLogger(__name__)

CATALOG_COLUMNS = {
    "advisors": ("full_name", "email", "phone", "commission_rate", "is_active"),
    "insurers": ("name", "short_name", "rif", "email", "phone", "is_active"),
    "products": ("insurer_id", "name", "category", "description", "is_active"),
    "usage_types": ("name", "description", "is_active"),
    "banks": ("name", "account_number", "currency", "is_active"),
}
REQUIRED_NAME = {
    "advisors": "full_name",
    "insurers": "name",
    "products": "name",
    "usage_types": "name",
    "banks": "name",
}
ORDER_BY = {
    "advisors": "full_name",
    "insurers": "name",
    "products": "name",
    "usage_types": "name",
    "banks": "name",
}


def _check_table(table: str) -> tuple[str, ...]:
    if table not in CATALOG_COLUMNS:
        raise NotFoundError(f"Catálogo desconocido: {table}")
    return CATALOG_COLUMNS[table]


def list_catalog(
    db_path: Path,
    table: str,
    active_only: bool = False,
    insurer_id: str | None = None,
) -> list[dict[str, Any]]:
    _check_table(table)
    clauses: list[str] = []
    params: list[Any] = []
    if active_only:
        clauses.append("is_active = 1")
    if insurer_id and table == "products":
        clauses.append("insurer_id = ?")
        params.append(insurer_id)
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
    with get_conn(db_path) as conn:
        rows = conn.execute(
            f"SELECT * FROM {table} {where} ORDER BY {ORDER_BY[table]}",
            params,
        ).fetchall()
        return [dict(row) for row in rows]


def get_catalog_item(db_path: Path, table: str, item_id: str) -> dict[str, Any]:
    _check_table(table)
    with get_conn(db_path) as conn:
        row = conn.execute(f"SELECT * FROM {table} WHERE id = ?", (item_id,)).fetchone()
    if row is None:
        raise NotFoundError("Registro no encontrado")
    return dict(row)


def save_catalog_item(
    db_path: Path,
    table: str,
    data: dict[str, Any],
    item_id: str | None = None,
) -> dict[str, Any]:
    """Insert (no id) or update (id given) a reference row, ignoring unknown keys."""
    columns = _check_table(table)
    values = {k: data[k] for k in columns if k in data}
    if "is_active" in values:
        values["is_active"] = 1 if values["is_active"] else 0

    name_field = REQUIRED_NAME[table]
    if item_id is None or name_field in values:
        name = str(values.get(name_field) or "").strip()
        if not name:
            raise ValidationError.field(name_field, "El nombre es requerido")
        values[name_field] = name

    with get_conn(db_path) as conn:
        if item_id is None:
            item_id = new_id()
            values["id"] = item_id
            values["created_at"] = utc_now()
            names = ", ".join(values)
            marks = ", ".join("?" for _ in values)
            conn.execute(f"INSERT INTO {table}({names}) VALUES ({marks})", tuple(values.values()))
            logger.info("Created %s %s", table, item_id)
        elif values:
            assignments = ", ".join(f"{k} = ?" for k in values)
            cur = conn.execute(
                f"UPDATE {table} SET {assignments} WHERE id = ?",
                (*values.values(), item_id),
            )
            if cur.rowcount == 0:
                raise NotFoundError("Registro no encontrado")
    return get_catalog_item(db_path, table, item_id)


def delete_catalog_item(db_path: Path, table: str, item_id: str) -> bool:
    _check_table(table)
    with get_conn(db_path) as conn:
        cur = conn.execute(f"DELETE FROM {table} WHERE id = ?", (item_id,))
        return cur.rowcount > 0


def get_broker_settings(db_path: Path) -> dict[str, Any]:
    with get_conn(db_path) as conn:
        row = conn.execute("SELECT * FROM broker_settings WHERE id = 1").fetchone()
    if row is None:
        return {
            "name": BROKER_NAME,
            "identification": None,
            "email": None,
            "phone": None,
            "address": None,
            "logo_url": None,
        }
    return dict(row)


def upsert_broker_settings(db_path: Path, data: dict[str, Any]) -> dict[str, Any]:
    name = str(data.get("name") or "").strip()
    if not name:
        raise ValidationError.field("name", "El nombre del corredor es requerido")
    with get_conn(db_path) as conn:
        conn.execute(
            """
            INSERT INTO broker_settings(id, name, identification, email, phone, address, logo_url, updated_at)
            VALUES (1, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                name=excluded.name,
                identification=excluded.identification,
                email=excluded.email,
                phone=excluded.phone,
                address=excluded.address,
                logo_url=excluded.logo_url,
                updated_at=excluded.updated_at
            """,
            (
                name,
                data.get("identification"),
                data.get("email"),
                data.get("phone"),
                data.get("address"),
                data.get("logo_url"),
                utc_now(),
            ),
        )
    return get_broker_settings(db_path)
