from __future__ import annotations

from datetime import date, timedelta
from pathlib import Path
from typing import Any

from brokerdesk.persistence import get_conn
from brokerdesk.premium_collections import collection_stats
from brokerdesk.sales import CLOSED_STAGES


def dashboard_stats(db_path: Path, today: date | None = None) -> dict[str, Any]:
    today = today or date.today()
    month_start = today.replace(day=1).isoformat()
    week = (today + timedelta(days=7)).isoformat()
    horizon = (today + timedelta(days=30)).isoformat()
    with get_conn(db_path) as conn:
        total_clients = conn.execute("SELECT COUNT(*) FROM clients").fetchone()[0]
        new_clients = conn.execute(
            "SELECT COUNT(*) FROM clients WHERE created_at >= ?", (month_start,)
        ).fetchone()[0]
        renewals = conn.execute(
            """
            SELECT premium, end_date FROM policies
            WHERE status = 'vigente' AND end_date >= ? AND end_date <= ?
            """,
            (today.isoformat(), horizon),
        ).fetchall()
        open_opportunities = conn.execute(
            f"SELECT COUNT(*) FROM sales_opportunities WHERE stage NOT IN ({', '.join('?' for _ in CLOSED_STAGES)})",
            CLOSED_STAGES,
        ).fetchone()[0]
    collections = collection_stats(db_path, today)
    return {
        "clientes": {"total": total_clients, "this_month": new_clients},
        "renovaciones": {
            "count": len(renewals),
            "amount": round(sum(float(r["premium"] or 0) for r in renewals), 2),
            "this_week": sum(1 for r in renewals if r["end_date"] <= week),
        },
        "cobranzas": {
            "pending": collections["total_pending"],
            "pending_amount": collections["total_amount"],
            "overdue": collections["overdue"],
        },
        "ventas": {"open_opportunities": open_opportunities},
    }
