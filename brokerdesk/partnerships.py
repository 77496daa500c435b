"""Partner discount program: partners, their services and single-client discount codes."""

from __future__ import annotations

import logging
import secrets
import sqlite3
from pathlib import Path
from typing import Any

from brokerdesk.errors import NotFoundError, ValidationError
from brokerdesk.persistence import get_conn, new_id, utc_now

logger = logging.getLogger(__name__)

CODE_PREFIX = "KVR-"
CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
CODE_LENGTH = 8
DISCOUNT_TYPES = ("porcentaje", "monto_fijo")
CODE_STATUSES = ("generado", "enviado", "utilizado", "expirado")

PARTNER_FIELDS = ("name", "category", "contact_name", "email", "phone", "is_active")
SERVICE_FIELDS = ("name", "description", "discount_type", "discount_value", "is_active")

CODE_SELECT = """
    SELECT dc.*, s.name AS service_name, s.discount_type, s.discount_value,
           pa.name AS partner_name,
           c.first_name || ' ' || c.last_name AS client_name, c.email AS client_email
    FROM discount_codes dc
    JOIN partners pa ON pa.id = dc.partner_id
    LEFT JOIN partner_services s ON s.id = dc.service_id
    LEFT JOIN clients c ON c.id = dc.client_id
"""


def generate_code() -> str:
    return CODE_PREFIX + "".join(secrets.choice(CODE_ALPHABET) for _ in range(CODE_LENGTH))


def apply_discount(service: dict[str, Any], amount: float) -> dict[str, float]:
    """Price after a service's discount. Fixed discounts never go below zero."""
    amount = float(amount)
    value = float(service.get("discount_value") or 0)
    if service.get("discount_type") == "monto_fijo":
        discount = min(value, amount)
    else:
        discount = amount * value / 100
    discount = round(discount, 2)
    return {"amount": round(amount, 2), "discount": discount, "final_amount": round(amount - discount, 2)}


# ---------------------------------------------------------------------------
# Partners and services
# ---------------------------------------------------------------------------

def _save(conn: sqlite3.Connection, table: str, values: dict[str, Any], row_id: str | None) -> str:
    if "is_active" in values:
        values["is_active"] = 1 if values["is_active"] else 0
    if row_id is None:
        row_id = new_id()
        values.update({"id": row_id, "created_at": utc_now()})
        conn.execute(
            f"INSERT INTO {table}({', '.join(values)}) VALUES ({', '.join('?' for _ in values)})",
            tuple(values.values()),
        )
    elif values:
        cur = conn.execute(
            f"UPDATE {table} SET {', '.join(f'{k} = ?' for k in values)} WHERE id = ?",
            (*values.values(), row_id),
        )
        if cur.rowcount == 0:
            raise NotFoundError("Registro no encontrado")
    return row_id


def save_partner(db_path: Path, data: dict[str, Any], partner_id: str | None = None) -> dict[str, Any]:
    values = {k: data[k] for k in PARTNER_FIELDS if k in data}
    if (partner_id is None or "name" in values) and not str(values.get("name") or "").strip():
        raise ValidationError.field("name", "El nombre del aliado es requerido")
    with get_conn(db_path) as conn:
        partner_id = _save(conn, "partners", values, partner_id)
    return get_partner(db_path, partner_id)


def get_partner(db_path: Path, partner_id: str) -> dict[str, Any]:
    with get_conn(db_path) as conn:
        row = conn.execute("SELECT * FROM partners WHERE id = ?", (partner_id,)).fetchone()
        if row is None:
            raise NotFoundError("Aliado no encontrado")
        partner = dict(row)
        partner["services"] = [
            dict(s)
            for s in conn.execute("SELECT * FROM partner_services WHERE partner_id = ? ORDER BY name", (partner_id,))
        ]
    return partner


def list_partners(db_path: Path) -> list[dict[str, Any]]:
    with get_conn(db_path) as conn:
        ids = [row["id"] for row in conn.execute("SELECT id FROM partners ORDER BY name")]
    return [get_partner(db_path, partner_id) for partner_id in ids]


def delete_partner(db_path: Path, partner_id: str) -> bool:
    with get_conn(db_path) as conn:
        cur = conn.execute("DELETE FROM partners WHERE id = ?", (partner_id,))
        return cur.rowcount > 0


def save_service(
    db_path: Path,
    data: dict[str, Any],
    service_id: str | None = None,
) -> dict[str, Any]:
    values = {k: data[k] for k in SERVICE_FIELDS if k in data}
    if service_id is None:
        if not data.get("partner_id"):
            raise ValidationError.field("partner_id", "El aliado es requerido")
        values["partner_id"] = data["partner_id"]
        values.setdefault("discount_type", "porcentaje")
    if (service_id is None or "name" in values) and not str(values.get("name") or "").strip():
        raise ValidationError.field("name", "El nombre del servicio es requerido")
    if "discount_type" in values and values["discount_type"] not in DISCOUNT_TYPES:
        raise ValidationError.field("discount_type", "Tipo de descuento inválido")
    if "discount_value" in values:
        value = float(values["discount_value"] or 0)
        if value < 0 or (values.get("discount_type") == "porcentaje" and value > 100):
            raise ValidationError.field("discount_value", "El valor del descuento no es válido")
        values["discount_value"] = value
    with get_conn(db_path) as conn:
        service_id = _save(conn, "partner_services", values, service_id)
        row = conn.execute(
            "SELECT s.*, p.name AS partner_name FROM partner_services s JOIN partners p ON p.id = s.partner_id WHERE s.id = ?",
            (service_id,),
        ).fetchone()
        return dict(row)


def delete_service(db_path: Path, service_id: str) -> bool:
    with get_conn(db_path) as conn:
        cur = conn.execute("DELETE FROM partner_services WHERE id = ?", (service_id,))
        return cur.rowcount > 0


# ---------------------------------------------------------------------------
# Discount codes
# ---------------------------------------------------------------------------

def _code(conn: sqlite3.Connection, code_id: str) -> dict[str, Any]:
    row = conn.execute(f"{CODE_SELECT} WHERE dc.id = ?", (code_id,)).fetchone()
    if row is None:
        raise NotFoundError("Código no encontrado")
    return dict(row)


def create_discount_code(
    db_path: Path,
    service_id: str,
    client_id: str | None = None,
    max_uses: int = 1,
    expires_at: str | None = None,
) -> dict[str, Any]:
    if int(max_uses or 0) < 1:
        raise ValidationError.field("max_uses", "El número de usos debe ser al menos 1")
    with get_conn(db_path) as conn:
        service = conn.execute("SELECT id, partner_id FROM partner_services WHERE id = ?", (service_id,)).fetchone()
        if service is None:
            raise NotFoundError("Servicio no encontrado")
        code = generate_code()
        while conn.execute("SELECT 1 FROM discount_codes WHERE code = ?", (code,)).fetchone():
            code = generate_code()
        code_id = new_id()
        conn.execute(
            """
            INSERT INTO discount_codes(id, code, partner_id, service_id, client_id, status, max_uses, expires_at, created_at)
            VALUES (?, ?, ?, ?, ?, 'generado', ?, ?, ?)
            """,
            (code_id, code, service["partner_id"], service_id, client_id, int(max_uses), expires_at, utc_now()),
        )
        item = _code(conn, code_id)
    logger.info("Discount code %s generated for service %s", code, service_id)
    return item


def list_discount_codes(db_path: Path, status: str | None = None, client_id: str | None = None) -> list[dict[str, Any]]:
    clauses: list[str] = []
    params: list[Any] = []
    if status:
        clauses.append("dc.status = ?")
        params.append(status)
    if client_id:
        clauses.append("dc.client_id = ?")
        params.append(client_id)
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
    with get_conn(db_path) as conn:
        rows = conn.execute(f"{CODE_SELECT} {where} ORDER BY dc.created_at DESC", params).fetchall()
        return [dict(row) for row in rows]


def _expired(code: dict[str, Any], now: str) -> bool:
    expires_at = code["expires_at"]
    if not expires_at:
        return False
    # Date-only expiries last the whole day.
    return expires_at < now[: len(expires_at)] if len(expires_at) == 10 else expires_at < now


def mark_code_sent(db_path: Path, code_id: str) -> dict[str, Any]:
    with get_conn(db_path) as conn:
        code = _code(conn, code_id)
        if code["status"] in ("utilizado", "expirado"):
            raise ValidationError.field("status", f"El código está {code['status']}")
        conn.execute(
            "UPDATE discount_codes SET status = 'enviado', sent_at = ? WHERE id = ?",
            (utc_now(), code_id),
        )
        return _code(conn, code_id)


def redeem_code(db_path: Path, code_value: str) -> dict[str, Any]:
    """Register one use of a code. Expired or exhausted codes are rejected."""
    now = utc_now()
    with get_conn(db_path) as conn:
        row = conn.execute("SELECT id FROM discount_codes WHERE code = ?", (code_value.strip().upper(),)).fetchone()
        if row is None:
            raise NotFoundError("Código no encontrado")
        code = _code(conn, row["id"])
        if code["status"] == "expirado" or _expired(code, now):
            if code["status"] != "expirado":
                conn.execute("UPDATE discount_codes SET status = 'expirado' WHERE id = ?", (code["id"],))
                conn.commit()
            raise ValidationError.field("code", "El código ha expirado")
        if code["current_uses"] >= code["max_uses"]:
            raise ValidationError.field("code", "El código ya alcanzó su número máximo de usos")
        conn.execute(
            "UPDATE discount_codes SET status = 'utilizado', used_at = ?, current_uses = current_uses + 1 WHERE id = ?",
            (now, code["id"]),
        )
        item = _code(conn, code["id"])
    logger.info("Discount code %s redeemed (%s/%s)", item["code"], item["current_uses"], item["max_uses"])
    return item


def update_code_status(db_path: Path, code_id: str, status: str) -> dict[str, Any]:
    if status not in CODE_STATUSES:
        raise ValidationError.field("status", f"Estado inválido: {status}")
    if status == "enviado":
        return mark_code_sent(db_path, code_id)
    if status == "utilizado":
        with get_conn(db_path) as conn:
            code = _code(conn, code_id)["code"]
        return redeem_code(db_path, code)
    with get_conn(db_path) as conn:
        _code(conn, code_id)
        conn.execute("UPDATE discount_codes SET status = ? WHERE id = ?", (status, code_id))
        return _code(conn, code_id)


def expire_codes(db_path: Path) -> int:
    now = utc_now()
    with get_conn(db_path) as conn:
        rows = conn.execute(
            "SELECT id, expires_at FROM discount_codes WHERE status IN ('generado', 'enviado') AND expires_at IS NOT NULL"
        ).fetchall()
        expired = [row["id"] for row in rows if _expired(dict(row), now)]
        conn.executemany("UPDATE discount_codes SET status = 'expirado' WHERE id = ?", [(i,) for i in expired])
    if expired:
        logger.info("Expired %s discount codes", len(expired))
    return len(expired)
