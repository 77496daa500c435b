"""Sales CRM: opportunities moving through a fixed pipeline of stages."""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path
from typing import Any

from brokerdesk.calculations import commission_amount
from brokerdesk.errors import NotFoundError, ValidationError
from brokerdesk.persistence import get_conn, new_id, today_iso, utc_now

logger = logging.getLogger(__name__)

STAGE_LABELS = {
    "lead_identificado": "Lead identificado",
    "contacto_inicial": "Contacto inicial",
    "analisis_necesidades": "Análisis de necesidades",
    "cotizacion_enviada": "Cotización enviada",
    "seguimiento": "Seguimiento",
    "negociacion": "Negociación",
    "documentacion": "Documentación",
    "emision": "Emisión",
    "ganado": "Ganado",
    "perdido": "Perdido",
    "postergado": "Postergado",
}
STAGES = tuple(STAGE_LABELS)
CLOSED_STAGES = ("ganado", "perdido")

OPPORTUNITY_FIELDS = (
    "client_name",
    "contact_email",
    "contact_phone",
    "client_id",
    "advisor_id",
    "expected_close_date",
    "notes",
)
PRODUCT_FIELDS = ("insurer_id", "product_id", "annual_premium", "commission_rate", "payment_frequency", "notes")


def stage_label(stage: str) -> str:
    return STAGE_LABELS.get(stage, stage)


def _opportunity(conn: sqlite3.Connection, opportunity_id: str) -> dict[str, Any]:
    row = conn.execute(
        """
        SELECT o.*, a.full_name AS advisor_name
        FROM sales_opportunities o
        LEFT JOIN advisors a ON a.id = o.advisor_id
        WHERE o.id = ?
        """,
        (opportunity_id,),
    ).fetchone()
    if row is None:
        raise NotFoundError("Oportunidad no encontrada")
    item = dict(row)
    item["stage_label"] = stage_label(item["stage"])
    item["products"] = [
        dict(p)
        for p in conn.execute(
            """
            SELECT sp.*, i.name AS insurer_name, pr.name AS product_name
            FROM sales_opportunity_products sp
            LEFT JOIN insurers i ON i.id = sp.insurer_id
            LEFT JOIN products pr ON pr.id = sp.product_id
            WHERE sp.opportunity_id = ?
            ORDER BY sp.created_at, sp.rowid
            """,
            (opportunity_id,),
        )
    ]
    for product in item["products"]:
        product["expected_commission"] = commission_amount(product["annual_premium"], product["commission_rate"])
    item["total_investment"] = round(
        float(
            conn.execute(
                "SELECT COALESCE(SUM(amount), 0) FROM sales_investments WHERE opportunity_id = ?",
                (opportunity_id,),
            ).fetchone()[0]
        ),
        2,
    )
    return item


def get_opportunity(db_path: Path, opportunity_id: str) -> dict[str, Any]:
    with get_conn(db_path) as conn:
        return _opportunity(conn, opportunity_id)


def _log_activity(
    conn: sqlite3.Connection,
    opportunity_id: str,
    action: str,
    notes: str | None,
    user: str | None,
    from_stage: str | None = None,
    to_stage: str | None = None,
) -> None:
    conn.execute(
        """
        INSERT INTO sales_activity_log(id, opportunity_id, action, from_stage, to_stage, notes, changed_by, created_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (new_id(), opportunity_id, action, from_stage, to_stage, notes, user, utc_now()),
    )


def create_opportunity(db_path: Path, data: dict[str, Any], user: str | None = None) -> dict[str, Any]:
    client_name = str(data.get("client_name") or "").strip()
    if not client_name:
        raise ValidationError.field("client_name", "El nombre del prospecto es requerido")
    stage = data.get("stage") or "lead_identificado"
    if stage not in STAGES:
        raise ValidationError.field("stage", f"Etapa inválida: {stage}")
    values = {k: data.get(k) for k in OPPORTUNITY_FIELDS}
    values["client_name"] = client_name
    opportunity_id = new_id()
    now = utc_now()
    with get_conn(db_path) as conn:
        conn.execute(
            f"""
            INSERT INTO sales_opportunities(id, stage, created_at, updated_at, {', '.join(values)})
            VALUES (?, ?, ?, ?, {', '.join('?' for _ in values)})
            """,
            (opportunity_id, stage, now, now, *values.values()),
        )
        _log_activity(conn, opportunity_id, "creada", "Oportunidad creada", user, to_stage=stage)
        for product in data.get("products") or []:
            _insert_product(conn, opportunity_id, product)
        item = _opportunity(conn, opportunity_id)
    logger.info("Opportunity %s created for %s", opportunity_id, client_name)
    return item


def update_opportunity(db_path: Path, opportunity_id: str, data: dict[str, Any]) -> dict[str, Any]:
    values = {k: data[k] for k in OPPORTUNITY_FIELDS if k in data}
    if "client_name" in values and not str(values["client_name"] or "").strip():
        raise ValidationError.field("client_name", "El nombre del prospecto es requerido")
    with get_conn(db_path) as conn:
        _opportunity(conn, opportunity_id)
        if values:
            conn.execute(
                f"UPDATE sales_opportunities SET {', '.join(f'{k} = ?' for k in values)}, updated_at = ? WHERE id = ?",
                (*values.values(), utc_now(), opportunity_id),
            )
        return _opportunity(conn, opportunity_id)


def change_stage(
    db_path: Path,
    opportunity_id: str,
    stage: str,
    notes: str | None = None,
    lost_reason: str | None = None,
    user: str | None = None,
) -> dict[str, Any]:
    if stage not in STAGES:
        raise ValidationError.field("stage", f"Etapa inválida: {stage}")
    if stage == "perdido" and not (lost_reason or "").strip():
        raise ValidationError.field("lost_reason", "Indica el motivo de pérdida")
    with get_conn(db_path) as conn:
        current = _opportunity(conn, opportunity_id)
        if current["stage"] == stage:
            return current
        conn.execute(
            "UPDATE sales_opportunities SET stage = ?, lost_reason = ?, updated_at = ? WHERE id = ?",
            (stage, lost_reason if stage == "perdido" else None, utc_now(), opportunity_id),
        )
        _log_activity(conn, opportunity_id, "etapa", notes, user, current["stage"], stage)
        item = _opportunity(conn, opportunity_id)
    logger.info("Opportunity %s moved %s -> %s", opportunity_id, current["stage"], stage)
    return item


def activity_log(db_path: Path, opportunity_id: str, action: str | None = None) -> list[dict[str, Any]]:
    """Oldest first. Stage moves, notes and investments all land here."""
    sql = "SELECT * FROM sales_activity_log WHERE opportunity_id = ?"
    params: list[Any] = [opportunity_id]
    if action:
        sql += " AND action = ?"
        params.append(action)
    with get_conn(db_path) as conn:
        rows = conn.execute(f"{sql} ORDER BY created_at, rowid", params).fetchall()
    history = []
    for row in rows:
        item = dict(row)
        item["from_label"] = stage_label(item["from_stage"]) if item["from_stage"] else None
        item["to_label"] = stage_label(item["to_stage"]) if item["to_stage"] else None
        history.append(item)
    return history


def stage_history(db_path: Path, opportunity_id: str) -> list[dict[str, Any]]:
    return [
        item for item in activity_log(db_path, opportunity_id) if item["action"] in ("creada", "etapa")
    ]


def delete_opportunity(db_path: Path, opportunity_id: str) -> bool:
    with get_conn(db_path) as conn:
        cur = conn.execute("DELETE FROM sales_opportunities WHERE id = ?", (opportunity_id,))
        return cur.rowcount > 0


def list_opportunities(
    db_path: Path,
    stage: str | None = None,
    advisor_id: str | None = None,
    search: str | None = None,
) -> list[dict[str, Any]]:
    clauses: list[str] = []
    params: list[Any] = []
    if stage:
        clauses.append("stage = ?")
        params.append(stage)
    if advisor_id:
        clauses.append("advisor_id = ?")
        params.append(advisor_id)
    if search:
        like = f"%{search.strip().lower()}%"
        clauses.append("(lower(client_name) LIKE ? OR lower(coalesce(contact_email, '')) LIKE ?)")
        params.extend([like, like])
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
    with get_conn(db_path) as conn:
        ids = [r["id"] for r in conn.execute(f"SELECT id FROM sales_opportunities {where} ORDER BY updated_at DESC", params)]
        return [_opportunity(conn, opportunity_id) for opportunity_id in ids]


# ---------------------------------------------------------------------------
# Quoted products
# ---------------------------------------------------------------------------

def _insert_product(conn: sqlite3.Connection, opportunity_id: str, data: dict[str, Any]) -> str:
    premium = float(data.get("annual_premium") or 0)
    rate = float(data.get("commission_rate") or 0)
    if premium < 0 or rate < 0:
        raise ValidationError.field("annual_premium", "La prima y la comisión no pueden ser negativas")
    product_id = new_id()
    conn.execute(
        """
        INSERT INTO sales_opportunity_products(
            id, opportunity_id, insurer_id, product_id, annual_premium, commission_rate,
            payment_frequency, is_selected, notes, created_at
        ) VALUES (?, ?, ?, ?, ?, ?, ?, 0, ?, ?)
        """,
        (
            product_id,
            opportunity_id,
            data.get("insurer_id"),
            data.get("product_id"),
            premium,
            rate,
            data.get("payment_frequency") or "anual",
            data.get("notes"),
            utc_now(),
        ),
    )
    return product_id


def add_product(db_path: Path, opportunity_id: str, data: dict[str, Any]) -> dict[str, Any]:
    with get_conn(db_path) as conn:
        _opportunity(conn, opportunity_id)
        _insert_product(conn, opportunity_id, data)
        return _opportunity(conn, opportunity_id)


def remove_product(db_path: Path, product_row_id: str) -> bool:
    with get_conn(db_path) as conn:
        cur = conn.execute("DELETE FROM sales_opportunity_products WHERE id = ?", (product_row_id,))
        return cur.rowcount > 0


def toggle_selected_product(db_path: Path, product_row_id: str) -> dict[str, Any]:
    """Select one quoted product (deselecting its siblings), or deselect it if already chosen."""
    with get_conn(db_path) as conn:
        row = conn.execute(
            "SELECT opportunity_id, is_selected FROM sales_opportunity_products WHERE id = ?",
            (product_row_id,),
        ).fetchone()
        if row is None:
            raise NotFoundError("Producto cotizado no encontrado")
        conn.execute(
            "UPDATE sales_opportunity_products SET is_selected = 0 WHERE opportunity_id = ?",
            (row["opportunity_id"],),
        )
        if not row["is_selected"]:
            conn.execute("UPDATE sales_opportunity_products SET is_selected = 1 WHERE id = ?", (product_row_id,))
        return _opportunity(conn, row["opportunity_id"])


def pipeline_summary(db_path: Path) -> list[dict[str, Any]]:
    """Per stage: count, selected premium and the expected commission of selected products."""
    with get_conn(db_path) as conn:
        rows = conn.execute(
            """
            SELECT o.stage,
                   COUNT(DISTINCT o.id) AS count,
                   COALESCE(SUM(sp.annual_premium), 0) AS premium,
                   COALESCE(SUM(sp.annual_premium * sp.commission_rate / 100.0), 0) AS commission
            FROM sales_opportunities o
            LEFT JOIN sales_opportunity_products sp ON sp.opportunity_id = o.id AND sp.is_selected = 1
            GROUP BY o.stage
            """
        ).fetchall()
    by_stage = {row["stage"]: row for row in rows}
    summary = []
    for stage in STAGES:
        row = by_stage.get(stage)
        summary.append(
            {
                "stage": stage,
                "label": stage_label(stage),
                "count": row["count"] if row else 0,
                "premium": round(float(row["premium"]), 2) if row else 0.0,
                "expected_commission": round(float(row["commission"]), 2) if row else 0.0,
            }
        )
    return summary


# ---------------------------------------------------------------------------
# Notes and investments
# ---------------------------------------------------------------------------

def add_note(db_path: Path, opportunity_id: str, content: str, user: str | None = None) -> dict[str, Any]:
    text = (content or "").strip()
    if not text:
        raise ValidationError.field("content", "La nota no puede estar vacía")
    note_id = new_id()
    with get_conn(db_path) as conn:
        _opportunity(conn, opportunity_id)
        conn.execute(
            "INSERT INTO sales_notes(id, opportunity_id, content, created_by, created_at) VALUES (?, ?, ?, ?, ?)",
            (note_id, opportunity_id, text, user, utc_now()),
        )
        _log_activity(conn, opportunity_id, "nota", text, user)
        return dict(conn.execute("SELECT * FROM sales_notes WHERE id = ?", (note_id,)).fetchone())


def list_notes(db_path: Path, opportunity_id: str) -> list[dict[str, Any]]:
    with get_conn(db_path) as conn:
        rows = conn.execute(
            "SELECT * FROM sales_notes WHERE opportunity_id = ? ORDER BY created_at DESC, rowid DESC",
            (opportunity_id,),
        ).fetchall()
        return [dict(row) for row in rows]


def delete_note(db_path: Path, note_id: str) -> bool:
    with get_conn(db_path) as conn:
        cur = conn.execute("DELETE FROM sales_notes WHERE id = ?", (note_id,))
        return cur.rowcount > 0


def add_investment(
    db_path: Path,
    opportunity_id: str,
    description: str,
    amount: float,
    investment_date: str | None = None,
    user: str | None = None,
) -> dict[str, Any]:
    """Money spent chasing an opportunity (gifts, travel, events)."""
    text = (description or "").strip()
    if not text:
        raise ValidationError.field("description", "La descripción es requerida")
    if amount is None or float(amount) <= 0:
        raise ValidationError.field("amount", "El monto debe ser mayor a cero")
    investment_id = new_id()
    spent = round(float(amount), 2)
    with get_conn(db_path) as conn:
        _opportunity(conn, opportunity_id)
        conn.execute(
            """
            INSERT INTO sales_investments(id, opportunity_id, description, amount, investment_date, created_by, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (investment_id, opportunity_id, text, spent, investment_date or today_iso(), user, utc_now()),
        )
        _log_activity(conn, opportunity_id, "inversion", f"{text}: {spent:.2f}", user)
        return dict(conn.execute("SELECT * FROM sales_investments WHERE id = ?", (investment_id,)).fetchone())


def list_investments(db_path: Path, opportunity_id: str) -> list[dict[str, Any]]:
    with get_conn(db_path) as conn:
        rows = conn.execute(
            "SELECT * FROM sales_investments WHERE opportunity_id = ? ORDER BY investment_date DESC, rowid DESC",
            (opportunity_id,),
        ).fetchall()
        return [dict(row) for row in rows]


def delete_investment(db_path: Path, investment_id: str) -> bool:
    with get_conn(db_path) as conn:
        cur = conn.execute("DELETE FROM sales_investments WHERE id = ?", (investment_id,))
        return cur.rowcount > 0
