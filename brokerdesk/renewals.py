"""Renewal configs: proposed premiums, scheduled notices and their delivery."""

from __future__ import annotations

import logging
import sqlite3
from datetime import date, timedelta
from pathlib import Path
from typing import Any, Callable

from brokerdesk.calculations import format_currency, format_percentage, premium_variance, variance_badge
from brokerdesk.catalog import get_broker_settings
from brokerdesk.clients import get_policy
from brokerdesk.config import RENEWAL_NOTICE_LEAD_DAYS, RENEWAL_WINDOW_DAYS
from brokerdesk.consumptions import consumption_summary, list_consumptions
from brokerdesk.errors import NotFoundError, ValidationError
from brokerdesk.notifications import send_email
from brokerdesk.persistence import get_conn, log_audit_event, new_id, utc_now

logger = logging.getLogger(__name__)

RENEWAL_STATUSES = ("pendiente", "programada", "enviada", "error", "cancelada")

Sender = Callable[..., bool]


def _iso(value: date | str) -> str:
    return value.isoformat() if isinstance(value, date) else str(value)[:10]


def renewal_policies(
    db_path: Path,
    days_ahead: int = RENEWAL_WINDOW_DAYS,
    status: str | None = None,
    search: str | None = None,
    today: date | None = None,
) -> list[dict[str, Any]]:
    """In-force policies ending within the window, each with its renewal config (or None)."""
    today = today or date.today()
    horizon = today + timedelta(days=days_ahead)
    clauses = ["p.status = 'vigente'", "p.end_date >= ?", "p.end_date <= ?"]
    params: list[Any] = [today.isoformat(), horizon.isoformat()]
    if search:
        like = f"%{search.strip().lower()}%"
        clauses.append(
            "(lower(coalesce(p.policy_number, '')) LIKE ? OR lower(c.first_name || ' ' || c.last_name) LIKE ?)"
        )
        params.extend([like, like])
    with get_conn(db_path) as conn:
        rows = conn.execute(
            f"""
            SELECT p.id, p.policy_number, p.start_date, p.end_date, p.premium, p.payment_frequency,
                   c.id AS client_id, c.first_name, c.last_name, c.email AS client_email,
                   i.name AS insurer_name, pr.name AS product_name,
                   rc.id AS config_id, rc.new_amount, rc.difference, rc.percentage,
                   rc.status AS config_status, rc.scheduled_send_date, rc.email_sent, rc.email_sent_at
            FROM policies p
            JOIN clients c ON c.id = p.client_id
            LEFT JOIN insurers i ON i.id = p.insurer_id
            LEFT JOIN products pr ON pr.id = p.product_id
            LEFT JOIN renewal_configs rc ON rc.policy_id = p.id AND rc.renewal_date = p.end_date
            WHERE {' AND '.join(clauses)}
            ORDER BY p.end_date, c.last_name
            """,
            params,
        ).fetchall()

    items = []
    for row in rows:
        item = dict(row)
        item["days_until_renewal"] = (date.fromisoformat(item["end_date"][:10]) - today).days
        if item["percentage"] is not None:
            item["badge"] = variance_badge(item["percentage"])
        items.append(item)

    if status == "sin_config":
        return [i for i in items if i["config_id"] is None]
    if status:
        return [i for i in items if i["config_status"] == status]
    return items


def renewal_stats(db_path: Path, today: date | None = None) -> dict[str, Any]:
    today = today or date.today()
    items = renewal_policies(db_path, RENEWAL_WINDOW_DAYS, today=today)
    by_status: dict[str, int] = {}
    for item in items:
        if item["config_status"]:
            by_status[item["config_status"]] = by_status.get(item["config_status"], 0) + 1
    return {
        "total": len(items),
        "this_week": sum(1 for i in items if i["days_until_renewal"] <= 7),
        "total_premium": round(sum(float(i["premium"] or 0) for i in items), 2),
        "without_config": sum(1 for i in items if i["config_id"] is None),
        "by_status": by_status,
    }


def _config(conn: sqlite3.Connection, config_id: str) -> dict[str, Any]:
    row = conn.execute("SELECT * FROM renewal_configs WHERE id = ?", (config_id,)).fetchone()
    if row is None:
        raise NotFoundError("Configuración de renovación no encontrada")
    item = dict(row)
    item["badge"] = variance_badge(item["percentage"] or 0)
    return item


def get_renewal_config(db_path: Path, config_id: str) -> dict[str, Any]:
    with get_conn(db_path) as conn:
        return _config(conn, config_id)


def upsert_renewal_config(
    db_path: Path,
    policy_id: str,
    renewal_date: date | str,
    current_amount: float | None = None,
    new_amount: float | None = None,
    status: str | None = None,
    scheduled_send_date: date | str | None = None,
    notes: str | None = None,
) -> dict[str, Any]:
    """Create or replace the config for (policy, renewal_date) with its premium variance."""
    if status and status not in RENEWAL_STATUSES:
        raise ValidationError.field("status", f"Estado inválido: {status}")
    if new_amount is not None and float(new_amount) < 0:
        raise ValidationError.field("new_amount", "La nueva prima no puede ser negativa")
    renewal = _iso(renewal_date)

    with get_conn(db_path) as conn:
        policy = conn.execute("SELECT id, premium FROM policies WHERE id = ?", (policy_id,)).fetchone()
        if policy is None:
            raise NotFoundError("Póliza no encontrada")
        current = float(current_amount if current_amount is not None else policy["premium"] or 0)
        difference = percentage = None
        if new_amount is not None:
            difference, percentage = premium_variance(current, new_amount)

        send_date = (
            _iso(scheduled_send_date)
            if scheduled_send_date
            else (date.fromisoformat(renewal) - timedelta(days=RENEWAL_NOTICE_LEAD_DAYS)).isoformat()
        )
        if not status:
            status = "programada" if new_amount is not None else "pendiente"

        now = utc_now()
        conn.execute(
            """
            INSERT INTO renewal_configs(
                id, policy_id, renewal_date, current_amount, new_amount, difference, percentage,
                status, scheduled_send_date, notes, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(policy_id, renewal_date) DO UPDATE SET
                current_amount=excluded.current_amount,
                new_amount=excluded.new_amount,
                difference=excluded.difference,
                percentage=excluded.percentage,
                status=excluded.status,
                scheduled_send_date=excluded.scheduled_send_date,
                notes=excluded.notes,
                updated_at=excluded.updated_at
            """,
            (
                new_id(),
                policy_id,
                renewal,
                current,
                new_amount,
                difference,
                percentage,
                status,
                send_date,
                notes,
                now,
                now,
            ),
        )
        row = conn.execute(
            "SELECT id FROM renewal_configs WHERE policy_id = ? AND renewal_date = ?",
            (policy_id, renewal),
        ).fetchone()
        config = _config(conn, row["id"])
    logger.info("Renewal config %s saved for policy %s (%s)", config["id"], policy_id, status)
    return config


def update_renewal_status(db_path: Path, config_id: str, status: str, notes: str | None = None) -> dict[str, Any]:
    if status not in RENEWAL_STATUSES:
        raise ValidationError.field("status", f"Estado inválido: {status}")
    with get_conn(db_path) as conn:
        _config(conn, config_id)
        conn.execute(
            "UPDATE renewal_configs SET status = ?, notes = coalesce(?, notes), updated_at = ? WHERE id = ?",
            (status, notes, utc_now(), config_id),
        )
        return _config(conn, config_id)


def delete_renewal_config(db_path: Path, config_id: str) -> bool:
    with get_conn(db_path) as conn:
        cur = conn.execute("DELETE FROM renewal_configs WHERE id = ?", (config_id,))
        return cur.rowcount > 0


# ---------------------------------------------------------------------------
# Notice e-mail
# ---------------------------------------------------------------------------

def renewal_email(config: dict[str, Any], broker: dict[str, Any]) -> tuple[str, str]:
    """Subject and plain-text body of the renewal notice e-mail."""
    subject = f"Aviso de Renovación - Póliza {config['policy_number'] or ''}".strip()
    current = float(config["current_amount"] or 0)
    new = float(config["new_amount"] or 0)
    percentage = float(config["percentage"] or 0)
    signature = "\n".join(v for v in (broker.get("name"), broker.get("email"), broker.get("phone")) if v)
    body = (
        f"Estimado/a {config['first_name']} {config['last_name']},\n\n"
        "Esperamos que se encuentre muy bien.\n\n"
        f"Le enviamos el aviso de renovación de su póliza {config['policy_number'] or ''}, "
        f"la cual vence el {config['renewal_date']}.\n\n"
        "RESUMEN DE RENOVACIÓN:\n"
        f"• Aseguradora: {config['insurer_name'] or 'N/A'}\n"
        f"• Producto: {config['product_name'] or 'N/A'}\n"
        f"• Prima actual: {format_currency(current)}\n"
        f"• Prima nuevo período: {format_currency(new)}\n"
        f"• Variación: {format_percentage(percentage)}\n\n"
        "Si tiene alguna consulta o requiere asistencia, estamos a su disposición.\n\n"
        "Atentamente,\n"
        f"{signature}\n"
        "---\n"
        "Este es un mensaje automático generado por el sistema."
    )
    return subject, body


def _set_status(conn: sqlite3.Connection, config_id: str, status: str, notes: str | None) -> None:
    conn.execute(
        "UPDATE renewal_configs SET status = ?, notes = ?, updated_at = ? WHERE id = ?",
        (status, notes, utc_now(), config_id),
    )


def process_scheduled_renewals(
    db_path: Path,
    today: date | None = None,
    sender: Sender = send_email,
) -> dict[str, Any]:
    """E-mail every scheduled, unsent renewal notice whose send date is today."""
    today_str = (today or date.today()).isoformat()
    broker = get_broker_settings(db_path)
    with get_conn(db_path) as conn:
        configs = [
            dict(row)
            for row in conn.execute(
                """
                SELECT rc.*, p.policy_number, c.first_name, c.last_name, c.email,
                       i.name AS insurer_name, pr.name AS product_name
                FROM renewal_configs rc
                JOIN policies p ON p.id = rc.policy_id
                JOIN clients c ON c.id = p.client_id
                LEFT JOIN insurers i ON i.id = p.insurer_id
                LEFT JOIN products pr ON pr.id = p.product_id
                WHERE rc.status = 'programada' AND rc.email_sent = 0 AND rc.scheduled_send_date = ?
                """,
                (today_str,),
            )
        ]

    result: dict[str, Any] = {"processed": len(configs), "sent": 0, "errors": []}
    for config in configs:
        label = config["policy_number"] or config["id"]
        if not config["email"]:
            with get_conn(db_path) as conn:
                _set_status(conn, config["id"], "error", "No se encontró email del cliente")
            result["errors"].append(f"Póliza {label}: No se encontró email del cliente")
            continue

        subject, body = renewal_email(config, broker)
        try:
            delivered = sender(config["email"], subject, text=body)
        except Exception as exc:
            logger.exception("Renewal notice for %s failed", label)
            with get_conn(db_path) as conn:
                _set_status(conn, config["id"], "error", f"Error: {exc}")
            result["errors"].append(f"Póliza {label}: {exc}")
            continue
        if not delivered:
            result["errors"].append(f"Póliza {label}: envío de correo no configurado")
            continue

        now = utc_now()
        with get_conn(db_path) as conn:
            conn.execute(
                """
                UPDATE renewal_configs
                SET status = 'enviada', email_sent = 1, email_sent_at = ?, updated_at = ?
                WHERE id = ?
                """,
                (now, now, config["id"]),
            )
        log_audit_event(
            db_path,
            "renovaciones",
            "renewal_sent",
            "renewal_configs",
            config["id"],
            {
                "policy_number": config["policy_number"],
                "client_email": config["email"],
                "new_amount": config["new_amount"],
                "percentage": config["percentage"],
            },
        )
        result["sent"] += 1

    logger.info("Processed %s renewal notices: %s sent, %s errors", result["processed"], result["sent"], len(result["errors"]))
    return result


# ---------------------------------------------------------------------------
# Notice document data
# ---------------------------------------------------------------------------

def renewal_notice_data(db_path: Path, policy_id: str, renewal_date: str | None = None) -> dict[str, Any]:
    """Everything the renewal notice page needs: policy, premiums and period consumptions."""
    policy = get_policy(db_path, policy_id)
    renewal = renewal_date or policy["end_date"]
    with get_conn(db_path) as conn:
        row = conn.execute(
            "SELECT id FROM renewal_configs WHERE policy_id = ? AND renewal_date = ?",
            (policy_id, renewal),
        ).fetchone()
        config = _config(conn, row["id"]) if row else None

    current = float(config["current_amount"] if config else policy["premium"] or 0)
    new = config["new_amount"] if config and config["new_amount"] is not None else current
    difference, percentage = premium_variance(current, new)
    consumptions = list_consumptions(
        db_path, policy_id=policy_id, date_from=policy["start_date"], date_to=policy["end_date"]
    )
    return {
        "broker": get_broker_settings(db_path),
        "policy": policy,
        "config": config,
        "renewal_date": renewal,
        "current_amount": current,
        "new_amount": float(new),
        "difference": difference,
        "percentage": percentage,
        "badge": variance_badge(percentage),
        "consumptions": consumptions,
        "consumption_summary": consumption_summary(consumptions),
    }
