"""Client birthdays per month and the yearly greeting log."""

from __future__ import annotations

import html
import json
import logging
from datetime import date, timedelta
from pathlib import Path
from typing import Any, Callable

from brokerdesk.catalog import get_broker_settings
from brokerdesk.errors import NotFoundError, NotificationError, ValidationError
from brokerdesk.notifications import send_email
from brokerdesk.persistence import get_conn, new_id, utc_now

logger = logging.getLogger(__name__)

MONTH_FILTERS = ("previous", "current", "next")
CHANNELS = ("email", "whatsapp")
UPCOMING_DAYS = 3


def target_month(month_filter: str, today: date) -> tuple[int, int]:
    """(year, month) selected by a previous/current/next filter."""
    if month_filter not in MONTH_FILTERS:
        raise ValidationError.field("month", f"Filtro de mes inválido: {month_filter}")
    first = today.replace(day=1)
    if month_filter == "previous":
        first = (first - timedelta(days=1)).replace(day=1)
    elif month_filter == "next":
        first = (first + timedelta(days=32)).replace(day=1)
    return first.year, first.month


def _birthday_in(year: int, month: int, day: int) -> date:
    try:
        return date(year, month, day)
    except ValueError:
        # 29 Feb outside leap years
        return date(year, month, day - 1)


def birthday_status(birthday: date, sent: bool, today: date) -> str:
    if sent:
        return "enviado"
    if birthday == today:
        return "hoy"
    if birthday < today:
        return "pasado"
    if birthday < today + timedelta(days=UPCOMING_DAYS):
        return "pendiente"
    return "proximo"


def birthdays_for_month(
    db_path: Path,
    month_filter: str = "current",
    today: date | None = None,
) -> dict[str, Any]:
    today = today or date.today()
    year, month = target_month(month_filter, today)
    with get_conn(db_path) as conn:
        clients = conn.execute(
            """
            SELECT c.id, c.first_name, c.last_name, c.birth_date, c.email, c.phone, c.mobile,
                   (SELECT a.full_name
                    FROM policies p
                    JOIN policy_advisors pa ON pa.policy_id = p.id AND pa.advisor_role = 'principal'
                    JOIN advisors a ON a.id = pa.advisor_id
                    WHERE p.client_id = c.id
                    LIMIT 1) AS advisor_name
            FROM clients c
            WHERE c.birth_date IS NOT NULL AND CAST(substr(c.birth_date, 6, 2) AS INTEGER) = ?
            """,
            (month,),
        ).fetchall()
        sends = {
            row["client_id"]: dict(row)
            for row in conn.execute("SELECT * FROM birthday_sends WHERE send_year = ?", (year,))
        }

    birthdays = []
    for client in clients:
        day = int(client["birth_date"][8:10])
        send = sends.get(client["id"])
        birthday = _birthday_in(year, month, day)
        birthdays.append(
            {
                "client_id": client["id"],
                "full_name": f"{client['first_name']} {client['last_name']}",
                "birth_date": client["birth_date"],
                "birth_day": day,
                "birth_month": month,
                "email": client["email"],
                "phone": client["phone"],
                "mobile": client["mobile"],
                "advisor_name": client["advisor_name"],
                "status": birthday_status(birthday, send is not None, today),
                "send_id": send["id"] if send else None,
                "sent_at": send["created_at"] if send else None,
                "channels": json.loads(send["channels"]) if send else [],
                "status_email": send["status_email"] if send else None,
                "status_whatsapp": send["status_whatsapp"] if send else None,
            }
        )
    birthdays.sort(key=lambda b: (b["birth_day"], b["full_name"]))

    stats = {
        "total": len(birthdays),
        "sent": sum(1 for b in birthdays if b["status"] == "enviado"),
        "pending": sum(1 for b in birthdays if b["status"] in ("pendiente", "hoy", "proximo")),
        "today": sum(1 for b in birthdays if b["status"] == "hoy"),
        "passed": sum(1 for b in birthdays if b["status"] == "pasado"),
    }
    return {"year": year, "month": month, "birthdays": birthdays, "stats": stats}


def birthday_email_html(client_name: str | None, broker_name: str) -> str:
    name = html.escape(client_name or "Estimado/a cliente")
    return f"""
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto; padding: 20px;">
  <div style="text-align: center; padding: 30px; background: #5b4fc4; border-radius: 12px; color: white;">
    <h1 style="font-size: 28px; margin: 0;">¡Feliz Cumpleaños!</h1>
    <p style="font-size: 18px; margin-top: 10px;">{name}</p>
  </div>
  <div style="padding: 20px; text-align: center;">
    <p style="font-size: 16px; color: #333; line-height: 1.6;">
      En este día tan especial, queremos enviarle nuestros más sinceros deseos de felicidad, salud y prosperidad.
    </p>
    <p style="font-size: 16px; color: #333; line-height: 1.6;">
      ¡Que este nuevo año de vida esté lleno de grandes momentos!
    </p>
    <p style="font-size: 14px; color: #666; margin-top: 30px;">
      Con cariño,<br/><strong>{html.escape(broker_name)}</strong>
    </p>
  </div>
</div>
"""


def record_birthday_send(
    db_path: Path,
    client_id: str,
    channels: list[str],
    year: int | None = None,
    message: str | None = None,
    user: str | None = None,
    sender: Callable[..., bool] = send_email,
) -> dict[str, Any]:
    """Log this year's greeting for a client, e-mailing it first when that channel is chosen."""
    if not channels or any(channel not in CHANNELS for channel in channels):
        raise ValidationError.field("channels", "Selecciona al menos un canal válido")
    year = year or date.today().year
    with get_conn(db_path) as conn:
        client = conn.execute(
            "SELECT id, first_name, last_name, email FROM clients WHERE id = ?", (client_id,)
        ).fetchone()
        if client is None:
            raise NotFoundError("Cliente no encontrado")
        if conn.execute(
            "SELECT 1 FROM birthday_sends WHERE client_id = ? AND send_year = ?", (client_id, year)
        ).fetchone():
            raise ValidationError.field("client_id", "Ya se registró el saludo de cumpleaños de este año")

    status_email = None
    if "email" in channels:
        status_email = "pendiente"
        if client["email"]:
            full_name = f"{client['first_name']} {client['last_name']}"
            try:
                delivered = sender(
                    client["email"],
                    f"¡Feliz Cumpleaños {full_name}!",
                    html=birthday_email_html(full_name, get_broker_settings(db_path)["name"]),
                )
                status_email = "enviado" if delivered else "pendiente"
            except NotificationError:
                logger.warning("Birthday e-mail to client %s failed", client_id)
                status_email = "error"

    send_id = new_id()
    with get_conn(db_path) as conn:
        conn.execute(
            """
            INSERT INTO birthday_sends(id, client_id, send_year, channels, status_email, status_whatsapp, message, sent_by, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                send_id,
                client_id,
                year,
                json.dumps(channels),
                status_email,
                "pendiente" if "whatsapp" in channels else None,
                message,
                user,
                utc_now(),
            ),
        )
        row = conn.execute("SELECT * FROM birthday_sends WHERE id = ?", (send_id,)).fetchone()
    item = dict(row)
    item["channels"] = channels
    return item


def birthday_history(db_path: Path, client_id: str) -> list[dict[str, Any]]:
    with get_conn(db_path) as conn:
        rows = conn.execute(
            "SELECT * FROM birthday_sends WHERE client_id = ? ORDER BY send_year DESC", (client_id,)
        ).fetchall()
    history = []
    for row in rows:
        item = dict(row)
        item["channels"] = json.loads(item["channels"])
        history.append(item)
    return history
