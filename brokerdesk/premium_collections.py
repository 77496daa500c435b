"""Premium collections: one row per installment due, advanced on payment."""

from __future__ import annotations

import logging
import sqlite3
from datetime import date
from pathlib import Path
from typing import Any

from brokerdesk.calculations import days_overdue, next_payment_date
from brokerdesk.errors import NotFoundError, ValidationError
from brokerdesk.persistence import get_conn, new_id, utc_now

logger = logging.getLogger(__name__)

COLLECTION_STATUSES = ("pendiente", "contacto_asesor", "cobrada")

COLLECTION_SELECT = """
    SELECT col.*,
           c.first_name || ' ' || c.last_name AS client_name,
           c.email AS client_email,
           c.phone AS client_phone,
           c.mobile AS client_mobile,
           p.policy_number,
           p.premium,
           i.name AS insurer_name
    FROM collections col
    JOIN clients c ON c.id = col.client_id
    JOIN policies p ON p.id = col.policy_id
    LEFT JOIN insurers i ON i.id = p.insurer_id
"""


def _with_overdue(row: sqlite3.Row, today: date) -> dict[str, Any]:
    item = dict(row)
    item["days_overdue"] = days_overdue(item["due_date"], item["status"], today)
    return item


def get_collection(db_path: Path, collection_id: str, today: date | None = None) -> dict[str, Any]:
    with get_conn(db_path) as conn:
        row = conn.execute(f"{COLLECTION_SELECT} WHERE col.id = ?", (collection_id,)).fetchone()
    if row is None:
        raise NotFoundError("Cobranza no encontrada")
    return _with_overdue(row, today or date.today())


def list_collections(
    db_path: Path,
    status: str | None = None,
    search: str | None = None,
    days_overdue_min: int | None = None,
    days_overdue_max: int | None = None,
    due_from: str | None = None,
    due_to: str | None = None,
    today: date | None = None,
) -> list[dict[str, Any]]:
    today = today or date.today()
    clauses: list[str] = []
    params: list[Any] = []
    if status:
        clauses.append("col.status = ?")
        params.append(status)
    if search:
        like = f"%{search.strip().lower()}%"
        clauses.append("(lower(c.first_name || ' ' || c.last_name) LIKE ? OR lower(coalesce(p.policy_number, '')) LIKE ?)")
        params.extend([like, like])
    if due_from:
        clauses.append("col.due_date >= ?")
        params.append(due_from)
    if due_to:
        clauses.append("col.due_date <= ?")
        params.append(due_to)
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
    with get_conn(db_path) as conn:
        rows = conn.execute(f"{COLLECTION_SELECT} {where} ORDER BY col.due_date, client_name", params).fetchall()

    items = [_with_overdue(row, today) for row in rows]
    if days_overdue_min is not None:
        items = [i for i in items if i["days_overdue"] >= days_overdue_min]
    if days_overdue_max is not None:
        items = [i for i in items if i["days_overdue"] <= days_overdue_max]
    return items


def collection_stats(db_path: Path, today: date | None = None) -> dict[str, Any]:
    today_str = (today or date.today()).isoformat()
    with get_conn(db_path) as conn:
        rows = conn.execute(
            "SELECT status, amount_due, due_date FROM collections WHERE status != 'cobrada'"
        ).fetchall()
    stats: dict[str, Any] = {
        "total_pending": 0,
        "total_amount": 0.0,
        "overdue": 0,
        "overdue_amount": 0.0,
        "upcoming": 0,
        "upcoming_amount": 0.0,
        "contact_advisor": 0,
    }
    for row in rows:
        amount = float(row["amount_due"] or 0)
        stats["total_pending"] += 1
        stats["total_amount"] += amount
        if row["status"] == "contacto_asesor":
            stats["contact_advisor"] += 1
        if row["due_date"] < today_str:
            stats["overdue"] += 1
            stats["overdue_amount"] += amount
        else:
            stats["upcoming"] += 1
            stats["upcoming_amount"] += amount
    for key in ("total_amount", "overdue_amount", "upcoming_amount"):
        stats[key] = round(stats[key], 2)
    return stats


def _history(
    conn: sqlite3.Connection,
    collection_id: str,
    action: str,
    previous_status: str,
    new_status: str,
    notes: str,
    user: str | None,
) -> None:
    conn.execute(
        """
        INSERT INTO collection_history(id, collection_id, action, previous_status, new_status, notes, created_by, created_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (new_id(), collection_id, action, previous_status, new_status, notes, user, utc_now()),
    )


def _current(conn: sqlite3.Connection, collection_id: str) -> sqlite3.Row:
    row = conn.execute("SELECT * FROM collections WHERE id = ?", (collection_id,)).fetchone()
    if row is None:
        raise NotFoundError("Cobranza no encontrada")
    return row


def insert_collection(
    conn: sqlite3.Connection,
    policy_id: str,
    client_id: str,
    due_date: str,
    amount_due: float,
    payment_frequency: str,
) -> str:
    collection_id = new_id()
    now = utc_now()
    conn.execute(
        """
        INSERT INTO collections(id, policy_id, client_id, amount_due, due_date, payment_frequency, status, created_at, updated_at)
        VALUES (?, ?, ?, ?, ?, ?, 'pendiente', ?, ?)
        """,
        (collection_id, policy_id, client_id, amount_due, due_date, payment_frequency, now, now),
    )
    return collection_id


def mark_paid(db_path: Path, collection_id: str, user: str | None = None) -> dict[str, Any]:
    """Close a collection and open exactly one successor at the next due date."""
    with get_conn(db_path) as conn:
        current = _current(conn, collection_id)
        if current["status"] == "cobrada":
            raise ValidationError.field("status", "Esta cobranza ya fue registrada como cobrada")
        now = utc_now()
        conn.execute(
            "UPDATE collections SET status = 'cobrada', paid_at = ?, paid_by = ?, updated_at = ? WHERE id = ?",
            (now, user, now, collection_id),
        )
        _history(conn, collection_id, "pago", current["status"], "cobrada", "Marcado como cobrada", user)

        next_due = next_payment_date(current["due_date"], current["payment_frequency"]).isoformat()
        conn.execute(
            "UPDATE policies SET premium_payment_date = ?, updated_at = ? WHERE id = ?",
            (next_due, now, current["policy_id"]),
        )
        successor_id = insert_collection(
            conn,
            current["policy_id"],
            current["client_id"],
            next_due,
            current["amount_due"],
            current["payment_frequency"],
        )
    logger.info("Collection %s marked paid, next due %s", collection_id, next_due)
    return {"collection": get_collection(db_path, collection_id), "next_collection": get_collection(db_path, successor_id)}


def mark_advisor_contact(
    db_path: Path,
    collection_id: str,
    promised_date: str,
    notes: str | None = None,
    user: str | None = None,
) -> dict[str, Any]:
    if not promised_date:
        raise ValidationError.field("promised_date", "La fecha prometida es requerida")
    with get_conn(db_path) as conn:
        current = _current(conn, collection_id)
        if current["status"] == "cobrada":
            raise ValidationError.field("status", "La cobranza ya fue cobrada")
        now = utc_now()
        conn.execute(
            """
            UPDATE collections
            SET status = 'contacto_asesor', promised_date = ?, advisor_notes = ?,
                advisor_contacted_at = ?, updated_at = ?
            WHERE id = ?
            """,
            (promised_date, notes, now, now, collection_id),
        )
        _history(
            conn,
            collection_id,
            "contacto_asesor",
            current["status"],
            "contacto_asesor",
            f"Fecha prometida: {promised_date}. {notes or ''}".strip(),
            user,
        )
    return get_collection(db_path, collection_id)


def revert_to_pending(db_path: Path, collection_id: str, user: str | None = None) -> dict[str, Any]:
    with get_conn(db_path) as conn:
        current = _current(conn, collection_id)
        if current["status"] == "cobrada":
            raise ValidationError.field("status", "Una cobranza cobrada no puede revertirse")
        conn.execute(
            """
            UPDATE collections
            SET status = 'pendiente', promised_date = NULL, advisor_notes = NULL,
                advisor_contacted_at = NULL, updated_at = ?
            WHERE id = ?
            """,
            (utc_now(), collection_id),
        )
        _history(conn, collection_id, "revertir", current["status"], "pendiente", "Revertido a pendiente", user)
    return get_collection(db_path, collection_id)


def collection_history(db_path: Path, collection_id: str) -> list[dict[str, Any]]:
    with get_conn(db_path) as conn:
        rows = conn.execute(
            "SELECT * FROM collection_history WHERE collection_id = ? ORDER BY created_at, rowid",
            (collection_id,),
        ).fetchall()
        return [dict(row) for row in rows]


def sync_collections(db_path: Path) -> dict[str, Any]:
    """Open a pending collection for every in-force policy whose next payment has none."""
    with get_conn(db_path) as conn:
        policies = conn.execute(
            """
            SELECT id, client_id, premium, payment_frequency, premium_payment_date
            FROM policies
            WHERE status = 'vigente' AND premium_payment_date IS NOT NULL
            """
        ).fetchall()
        if not policies:
            return {"created": 0, "message": "No hay pólizas vigentes con fecha de pago."}

        open_keys = {
            (row["policy_id"], row["due_date"])
            for row in conn.execute("SELECT policy_id, due_date FROM collections WHERE status != 'cobrada'")
        }
        created = 0
        for policy in policies:
            if (policy["id"], policy["premium_payment_date"]) in open_keys:
                continue
            insert_collection(
                conn,
                policy["id"],
                policy["client_id"],
                policy["premium_payment_date"],
                float(policy["premium"] or 0),
                policy["payment_frequency"] or "mensual",
            )
            created += 1

    if created == 0:
        return {"created": 0, "message": "Todas las cobranzas están al día."}
    logger.info("Synced collections: %s created", created)
    return {"created": created, "message": f"Se crearon {created} cobranzas."}
