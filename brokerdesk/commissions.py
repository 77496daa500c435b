from __future__ import annotations

import logging
import sqlite3
from datetime import date
from pathlib import Path
from typing import Any

from brokerdesk.calculations import (
    agency_margin,
    assignment_amount,
    commission_amount,
    has_commission_discrepancy,
)
from brokerdesk.errors import NotFoundError, ValidationError
from brokerdesk.matching import closest_name, normalize, resolve_exact
from brokerdesk.persistence import get_conn, new_id, utc_now
from brokerdesk.spreadsheets import build_workbook, cell_str, parse_amount

logger = logging.getLogger(__name__)

BATCH_STATUSES = ("pendiente", "verificado", "asignado")
CURRENCIES = ("USD", "BS")
IMPORT_HEADERS = [
    "Aseguradora",
    "Moneda",
    "Póliza",
    "Cliente",
    "Asesor",
    "Plan",
    "Prima",
    "% Comisión",
    "Monto Comisión",
]
BREAKDOWN_HEADERS = [
    "Asesor",
    "Fecha Lote",
    "Aseguradora",
    "Póliza",
    "Cliente",
    "Prima",
    "% Comisión",
    "Comisión Total",
    "% Asesor",
    "Monto Asesor",
]


# ---------------------------------------------------------------------------
# Batches
# ---------------------------------------------------------------------------

def create_batch(
    db_path: Path,
    insurer_id: str,
    batch_date: str,
    currency: str = "USD",
    notes: str | None = None,
) -> dict[str, Any]:
    if not insurer_id:
        raise ValidationError.field("insurer_id", "La aseguradora es requerida")
    if not batch_date:
        raise ValidationError.field("batch_date", "La fecha del lote es requerida")
    with get_conn(db_path) as conn:
        batch_id = _insert_batch(conn, insurer_id, batch_date, currency, notes)
    logger.info("Created commission batch %s", batch_id)
    return get_batch(db_path, batch_id)


def _insert_batch(
    conn: sqlite3.Connection,
    insurer_id: str,
    batch_date: str,
    currency: str,
    notes: str | None,
) -> str:
    batch_id = new_id()
    now = utc_now()
    conn.execute(
        """
        INSERT INTO commission_batches(id, insurer_id, batch_date, currency, status, notes, created_at, updated_at)
        VALUES (?, ?, ?, ?, 'pendiente', ?, ?, ?)
        """,
        (batch_id, insurer_id, batch_date, currency, notes, now, now),
    )
    return batch_id


def list_batches(db_path: Path, status: str | None = None, insurer_id: str | None = None) -> list[dict[str, Any]]:
    clauses: list[str] = []
    params: list[Any] = []
    if status:
        clauses.append("b.status = ?")
        params.append(status)
    if insurer_id:
        clauses.append("b.insurer_id = ?")
        params.append(insurer_id)
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
    with get_conn(db_path) as conn:
        rows = conn.execute(
            f"""
            SELECT b.*, i.name AS insurer_name, COUNT(e.id) AS entry_count,
                   SUM(CASE WHEN e.has_discrepancy = 1 THEN 1 ELSE 0 END) AS discrepancy_count
            FROM commission_batches b
            JOIN insurers i ON i.id = b.insurer_id
            LEFT JOIN commission_entries e ON e.batch_id = b.id
            {where}
            GROUP BY b.id
            ORDER BY b.batch_date DESC, b.created_at DESC
            """,
            params,
        ).fetchall()
        return [dict(row) for row in rows]


def _entries(conn: sqlite3.Connection, batch_id: str) -> list[dict[str, Any]]:
    entries = [
        dict(row)
        for row in conn.execute(
            "SELECT * FROM commission_entries WHERE batch_id = ? ORDER BY created_at, rowid",
            (batch_id,),
        )
    ]
    for entry in entries:
        assignments = [
            dict(row)
            for row in conn.execute(
                """
                SELECT ca.*, a.full_name AS advisor_name
                FROM commission_assignments ca
                JOIN advisors a ON a.id = ca.advisor_id
                WHERE ca.entry_id = ?
                ORDER BY a.full_name
                """,
                (entry["id"],),
            )
        ]
        entry["assignments"] = assignments
        entry["agency_margin"] = agency_margin(a["percentage"] for a in assignments)
    return entries


def get_batch(db_path: Path, batch_id: str) -> dict[str, Any]:
    with get_conn(db_path) as conn:
        row = conn.execute(
            """
            SELECT b.*, i.name AS insurer_name
            FROM commission_batches b
            JOIN insurers i ON i.id = b.insurer_id
            WHERE b.id = ?
            """,
            (batch_id,),
        ).fetchone()
        if row is None:
            raise NotFoundError("Lote no encontrado")
        batch = dict(row)
        batch["entries"] = _entries(conn, batch_id)
    return batch


def delete_batches(db_path: Path, batch_ids: list[str]) -> int:
    if not batch_ids:
        return 0
    with get_conn(db_path) as conn:
        cur = conn.execute(
            f"DELETE FROM commission_batches WHERE id IN ({', '.join('?' for _ in batch_ids)})",
            batch_ids,
        )
        return cur.rowcount


def update_batch_status(db_path: Path, batch_id: str, status: str) -> dict[str, Any]:
    """Move a batch along pendiente -> verificado -> asignado; any batch may go back to pendiente."""
    if status not in BATCH_STATUSES:
        raise ValidationError.field("status", f"Estado inválido: {status}")
    with get_conn(db_path) as conn:
        row = conn.execute("SELECT status FROM commission_batches WHERE id = ?", (batch_id,)).fetchone()
    if row is None:
        raise NotFoundError("Lote no encontrado")
    current = row["status"]
    if status == current:
        return get_batch(db_path, batch_id)
    if status == "verificado":
        if current != "pendiente":
            raise ValidationError.field("status", "Solo un lote pendiente puede verificarse")
        verify_batch(db_path, batch_id)
        return get_batch(db_path, batch_id)

    with get_conn(db_path) as conn:
        if status == "asignado":
            if current != "verificado":
                raise ValidationError.field("status", "El lote debe estar verificado antes de asignarse")
            unassigned = conn.execute(
                """
                SELECT COUNT(*) AS n FROM commission_entries e
                WHERE e.batch_id = ?
                  AND NOT EXISTS (SELECT 1 FROM commission_assignments a WHERE a.entry_id = e.id)
                """,
                (batch_id,),
            ).fetchone()["n"]
            if unassigned:
                raise ValidationError.field("status", f"Hay {unassigned} pólizas sin asesor asignado")
        conn.execute(
            "UPDATE commission_batches SET status = ?, updated_at = ? WHERE id = ?",
            (status, utc_now(), batch_id),
        )
    logger.info("Batch %s moved from %s to %s", batch_id, current, status)
    return get_batch(db_path, batch_id)


def recalculate_batch_totals(conn: sqlite3.Connection, batch_id: str) -> None:
    totals = conn.execute(
        """
        SELECT COALESCE(SUM(premium), 0) AS premium, COALESCE(SUM(commission_amount), 0) AS commission
        FROM commission_entries
        WHERE batch_id = ?
        """,
        (batch_id,),
    ).fetchone()
    conn.execute(
        "UPDATE commission_batches SET total_premium = ?, total_commission = ?, updated_at = ? WHERE id = ?",
        (round(totals["premium"], 2), round(totals["commission"], 2), utc_now(), batch_id),
    )


# ---------------------------------------------------------------------------
# Entries
# ---------------------------------------------------------------------------

def _insert_entry(conn: sqlite3.Connection, batch_id: str, data: dict[str, Any]) -> str:
    client_name = str(data.get("client_name") or "").strip()
    if not client_name:
        raise ValidationError.field("client_name", "El nombre del cliente es requerido")
    premium = float(data.get("premium") or 0)
    rate = float(data.get("commission_rate") or 0)
    amount = data.get("commission_amount")
    amount = commission_amount(premium, rate) if amount in (None, "") else round(float(amount), 2)

    policy_id = data.get("policy_id")
    if not policy_id and data.get("policy_number"):
        match = conn.execute(
            "SELECT id FROM policies WHERE lower(trim(policy_number)) = ?",
            (normalize(data["policy_number"]),),
        ).fetchone()
        policy_id = match["id"] if match else None

    entry_id = new_id()
    conn.execute(
        """
        INSERT INTO commission_entries(
            id, batch_id, policy_id, policy_number, client_name, plan_type,
            premium, commission_rate, commission_amount, created_at
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            entry_id,
            batch_id,
            policy_id,
            data.get("policy_number"),
            client_name,
            data.get("plan_type"),
            premium,
            rate,
            amount,
            utc_now(),
        ),
    )
    return entry_id


def save_entries(db_path: Path, batch_id: str, entries: list[dict[str, Any]]) -> dict[str, Any]:
    with get_conn(db_path) as conn:
        if conn.execute("SELECT 1 FROM commission_batches WHERE id = ?", (batch_id,)).fetchone() is None:
            raise NotFoundError("Lote no encontrado")
        for data in entries:
            _insert_entry(conn, batch_id, data)
        recalculate_batch_totals(conn, batch_id)
    logger.info("Saved %s entries to batch %s", len(entries), batch_id)
    return get_batch(db_path, batch_id)


def delete_entries(db_path: Path, entry_ids: list[str]) -> int:
    if not entry_ids:
        return 0
    marks = ", ".join("?" for _ in entry_ids)
    with get_conn(db_path) as conn:
        batch_ids = [
            row["batch_id"]
            for row in conn.execute(
                f"SELECT DISTINCT batch_id FROM commission_entries WHERE id IN ({marks})", entry_ids
            )
        ]
        cur = conn.execute(f"DELETE FROM commission_entries WHERE id IN ({marks})", entry_ids)
        for batch_id in batch_ids:
            recalculate_batch_totals(conn, batch_id)
        return cur.rowcount


def update_entry(
    db_path: Path,
    entry_id: str,
    premium: float | None = None,
    commission_rate: float | None = None,
    commission_amount_value: float | None = None,
) -> dict[str, Any]:
    """Inline edit of one entry.

    A new premium or rate recomputes the commission unless an explicit amount is
    also given. The resulting amount flows into every advisor assignment and the
    batch totals.
    """
    with get_conn(db_path) as conn:
        row = conn.execute("SELECT * FROM commission_entries WHERE id = ?", (entry_id,)).fetchone()
        if row is None:
            raise NotFoundError("Registro de comisión no encontrado")
        new_premium = float(row["premium"] if premium is None else premium)
        new_rate = float(row["commission_rate"] if commission_rate is None else commission_rate)
        if commission_amount_value is not None:
            new_amount = round(float(commission_amount_value), 2)
        elif premium is not None or commission_rate is not None:
            new_amount = commission_amount(new_premium, new_rate)
        else:
            new_amount = float(row["commission_amount"])

        conn.execute(
            """
            UPDATE commission_entries
            SET premium = ?, commission_rate = ?, commission_amount = ?
            WHERE id = ?
            """,
            (new_premium, new_rate, new_amount, entry_id),
        )
        for assignment in conn.execute(
            "SELECT id, percentage FROM commission_assignments WHERE entry_id = ?", (entry_id,)
        ).fetchall():
            conn.execute(
                "UPDATE commission_assignments SET amount = ? WHERE id = ?",
                (assignment_amount(new_amount, assignment["percentage"]), assignment["id"]),
            )
        recalculate_batch_totals(conn, row["batch_id"])
        batch_id = row["batch_id"]
    batch = get_batch(db_path, batch_id)
    return next(e for e in batch["entries"] if e["id"] == entry_id)


def verify_batch(db_path: Path, batch_id: str) -> dict[str, Any]:
    discrepancies = 0
    with get_conn(db_path) as conn:
        batch = conn.execute("SELECT status FROM commission_batches WHERE id = ?", (batch_id,)).fetchone()
        if batch is None:
            raise NotFoundError("Lote no encontrado")
        if batch["status"] == "asignado":
            raise ValidationError.field("status", "Un lote asignado debe volver a pendiente antes de verificarse")
        entries = conn.execute(
            "SELECT id, premium, commission_rate, commission_amount FROM commission_entries WHERE batch_id = ?",
            (batch_id,),
        ).fetchall()
        for entry in entries:
            expected = entry["premium"] * entry["commission_rate"] / 100
            mismatch = has_commission_discrepancy(entry["premium"], entry["commission_rate"], entry["commission_amount"])
            note = f"Esperado: ${expected:.2f}, Recibido: ${entry['commission_amount']:.2f}" if mismatch else None
            discrepancies += int(mismatch)
            conn.execute(
                """
                UPDATE commission_entries
                SET has_discrepancy = ?, discrepancy_notes = ?, is_verified = 1
                WHERE id = ?
                """,
                (int(mismatch), note, entry["id"]),
            )
        conn.execute(
            "UPDATE commission_batches SET status = 'verificado', updated_at = ? WHERE id = ?",
            (utc_now(), batch_id),
        )
    logger.info("Verified batch %s: %s entries, %s discrepancies", batch_id, len(entries), discrepancies)
    return {"batch_id": batch_id, "verified": len(entries), "discrepancies": discrepancies}


# ---------------------------------------------------------------------------
# Assignments
# ---------------------------------------------------------------------------

def save_assignments(db_path: Path, entry_id: str, splits: list[dict[str, Any]]) -> dict[str, Any]:
    """Replace the advisor split of an entry. Zero-percentage rows are dropped."""
    kept = [s for s in splits if s.get("advisor_id") and float(s.get("percentage") or 0) > 0]
    total = sum(float(s["percentage"]) for s in kept)
    if total > 100.0001:
        raise ValidationError.field("percentage", "La suma de porcentajes de asesores no puede superar el 100%")
    advisor_ids = [s["advisor_id"] for s in kept]
    if len(set(advisor_ids)) != len(advisor_ids):
        raise ValidationError.field("advisor_id", "Un asesor no puede repetirse en la misma póliza")

    with get_conn(db_path) as conn:
        entry = conn.execute("SELECT commission_amount FROM commission_entries WHERE id = ?", (entry_id,)).fetchone()
        if entry is None:
            raise NotFoundError("Registro de comisión no encontrado")
        conn.execute("DELETE FROM commission_assignments WHERE entry_id = ?", (entry_id,))
        for split in kept:
            pct = float(split["percentage"])
            conn.execute(
                """
                INSERT INTO commission_assignments(id, entry_id, advisor_id, percentage, amount, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (new_id(), entry_id, split["advisor_id"], pct, assignment_amount(entry["commission_amount"], pct), utc_now()),
            )
        rows = conn.execute(
            """
            SELECT ca.*, a.full_name AS advisor_name
            FROM commission_assignments ca JOIN advisors a ON a.id = ca.advisor_id
            WHERE ca.entry_id = ?
            ORDER BY a.full_name
            """,
            (entry_id,),
        ).fetchall()
    return {
        "entry_id": entry_id,
        "assignments": [dict(row) for row in rows],
        "agency_margin": agency_margin(s["percentage"] for s in kept),
    }


def delete_assignments(db_path: Path, assignment_ids: list[str]) -> int:
    if not assignment_ids:
        return 0
    with get_conn(db_path) as conn:
        cur = conn.execute(
            f"DELETE FROM commission_assignments WHERE id IN ({', '.join('?' for _ in assignment_ids)})",
            assignment_ids,
        )
        return cur.rowcount


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------

def upsert_rule(
    db_path: Path,
    advisor_id: str,
    insurer_id: str,
    commission_percentage: float,
    plan_type: str | None = None,
) -> dict[str, Any]:
    if not 0 <= float(commission_percentage) <= 100:
        raise ValidationError.field("commission_percentage", "El porcentaje debe estar entre 0 y 100")
    plan = (plan_type or "").strip() or "general"
    with get_conn(db_path) as conn:
        conn.execute(
            """
            INSERT INTO commission_rules(id, advisor_id, insurer_id, plan_type, commission_percentage, updated_at)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(advisor_id, insurer_id, plan_type) DO UPDATE SET
                commission_percentage=excluded.commission_percentage,
                updated_at=excluded.updated_at
            """,
            (new_id(), advisor_id, insurer_id, plan, float(commission_percentage), utc_now()),
        )
        row = conn.execute(
            "SELECT * FROM commission_rules WHERE advisor_id = ? AND insurer_id = ? AND plan_type = ?",
            (advisor_id, insurer_id, plan),
        ).fetchone()
        return dict(row)


def list_rules(db_path: Path, advisor_id: str | None = None) -> list[dict[str, Any]]:
    where = "WHERE r.advisor_id = ?" if advisor_id else ""
    with get_conn(db_path) as conn:
        rows = conn.execute(
            f"""
            SELECT r.*, a.full_name AS advisor_name, i.name AS insurer_name
            FROM commission_rules r
            JOIN advisors a ON a.id = r.advisor_id
            JOIN insurers i ON i.id = r.insurer_id
            {where}
            ORDER BY a.full_name, i.name, r.plan_type
            """,
            (advisor_id,) if advisor_id else (),
        ).fetchall()
        return [dict(row) for row in rows]


def delete_rule(db_path: Path, rule_id: str) -> bool:
    with get_conn(db_path) as conn:
        cur = conn.execute("DELETE FROM commission_rules WHERE id = ?", (rule_id,))
        return cur.rowcount > 0


def suggested_rate(db_path: Path, advisor_id: str, insurer_id: str, plan_type: str | None = None) -> float | None:
    """Advisor percentage for a plan, falling back to the insurer-wide 'general' rule."""
    plan = (plan_type or "").strip() or "general"
    with get_conn(db_path) as conn:
        rows = conn.execute(
            """
            SELECT plan_type, commission_percentage FROM commission_rules
            WHERE advisor_id = ? AND insurer_id = ? AND plan_type IN (?, 'general')
            """,
            (advisor_id, insurer_id, plan),
        ).fetchall()
    by_plan = {row["plan_type"]: row["commission_percentage"] for row in rows}
    return by_plan.get(plan, by_plan.get("general"))


# ---------------------------------------------------------------------------
# Breakdown and exports
# ---------------------------------------------------------------------------

def commission_breakdown(
    db_path: Path,
    batch_id: str | None = None,
    advisor_id: str | None = None,
    date_from: str | None = None,
    date_to: str | None = None,
) -> list[dict[str, Any]]:
    clauses: list[str] = []
    params: list[Any] = []
    for clause, value in (
        ("b.id = ?", batch_id),
        ("ca.advisor_id = ?", advisor_id),
        ("b.batch_date >= ?", date_from),
        ("b.batch_date <= ?", date_to),
    ):
        if value:
            clauses.append(clause)
            params.append(value)
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
    with get_conn(db_path) as conn:
        rows = conn.execute(
            f"""
            SELECT a.id AS advisor_id, a.full_name AS advisor_name,
                   b.batch_date, b.currency, i.name AS insurer_name,
                   e.policy_number, e.client_name, e.premium, e.commission_rate,
                   e.commission_amount, ca.percentage, ca.amount
            FROM commission_assignments ca
            JOIN commission_entries e ON e.id = ca.entry_id
            JOIN commission_batches b ON b.id = e.batch_id
            JOIN insurers i ON i.id = b.insurer_id
            JOIN advisors a ON a.id = ca.advisor_id
            {where}
            ORDER BY a.full_name, b.batch_date, e.client_name
            """,
            params,
        ).fetchall()

    grouped: dict[str, dict[str, Any]] = {}
    for row in rows:
        advisor = grouped.setdefault(
            row["advisor_id"],
            {"advisor_id": row["advisor_id"], "advisor_name": row["advisor_name"], "items": [], "total": 0.0},
        )
        advisor["items"].append(dict(row))
        advisor["total"] = round(advisor["total"] + row["amount"], 2)
    return list(grouped.values())


def breakdown_rows(breakdown: list[dict[str, Any]]) -> list[list[Any]]:
    rows = []
    for advisor in breakdown:
        for item in advisor["items"]:
            rows.append(
                [
                    advisor["advisor_name"],
                    item["batch_date"],
                    item["insurer_name"],
                    item["policy_number"],
                    item["client_name"],
                    item["premium"],
                    item["commission_rate"],
                    item["commission_amount"],
                    item["percentage"],
                    item["amount"],
                ]
            )
        rows.append([f"Total {advisor['advisor_name']}", None, None, None, None, None, None, None, None, advisor["total"]])
    return rows


def breakdown_workbook(breakdown: list[dict[str, Any]]) -> bytes:
    return build_workbook([("Desglose", BREAKDOWN_HEADERS, breakdown_rows(breakdown))])


# ---------------------------------------------------------------------------
# Bulk Excel load
# ---------------------------------------------------------------------------

def _first(row: dict[str, Any], *names: str) -> Any:
    lowered = {normalize(k): v for k, v in row.items()}
    for name in names:
        value = lowered.get(normalize(name))
        if value not in (None, ""):
            return value
    return None


def parse_bulk_rows(
    rows: list[dict[str, Any]],
    insurers: list[dict[str, Any]],
    advisors: list[dict[str, Any]],
) -> list[dict[str, Any]]:
    """Group spreadsheet rows into one pending batch per (insurer, currency)."""
    groups: dict[tuple[str, str], dict[str, Any]] = {}
    for row in rows:
        insurer_name = str(_first(row, "Aseguradora") or "").strip()
        currency = str(_first(row, "Moneda") or "USD").strip().upper()
        key = (normalize(insurer_name), currency)
        if key not in groups:
            insurer = resolve_exact(insurer_name, insurers)
            groups[key] = {
                "insurer_name": insurer_name,
                "insurer_id": insurer["id"] if insurer else None,
                "suggestion": None if insurer else closest_name(insurer_name, insurers),
                "currency": currency,
                "entries": [],
            }
        premium = parse_amount(_first(row, "Prima")) or 0.0
        rate = parse_amount(_first(row, "% Comisión", "% Comision", "commission_rate")) or 0.0
        amount = parse_amount(_first(row, "Monto Comisión", "Monto Comision"))
        advisor_name = str(_first(row, "Asesor") or "").strip()
        advisor = resolve_exact(advisor_name, advisors, key="full_name")
        groups[key]["entries"].append(
            {
                "policy_number": cell_str(row, next((k for k in row if normalize(k) in {"póliza", "poliza"}), None)),
                "client_name": str(_first(row, "Cliente") or "").strip(),
                "advisor_name": advisor_name,
                "advisor_id": advisor["id"] if advisor else None,
                "plan_type": str(_first(row, "Plan") or "").strip() or None,
                "premium": premium,
                "commission_rate": rate,
                "commission_amount": amount if amount else commission_amount(premium, rate),
            }
        )
    return [g for g in groups.values() if g["entries"]]


def import_commission_rows(
    db_path: Path,
    rows: list[dict[str, Any]],
    batch_date: str | None = None,
) -> dict[str, Any]:
    with get_conn(db_path) as conn:
        insurers = [dict(r) for r in conn.execute("SELECT id, name FROM insurers")]
        advisors = [dict(r) for r in conn.execute("SELECT id, full_name FROM advisors WHERE is_active = 1")]
    parsed = parse_bulk_rows(rows, insurers, advisors)
    batch_date = batch_date or date.today().isoformat()

    created: list[str] = []
    skipped: list[dict[str, Any]] = []
    assigned = 0
    # One transaction: a failing row leaves no half-filled batch behind.
    with get_conn(db_path) as conn:
        for group in parsed:
            if not group["insurer_id"]:
                skipped.append({"insurer_name": group["insurer_name"], "suggestion": group["suggestion"]})
                logger.warning("Skipping bulk batch for unknown insurer %r", group["insurer_name"])
                continue
            valid = [e for e in group["entries"] if e["client_name"] and e["premium"] > 0]
            if not valid:
                continue
            batch_id = _insert_batch(
                conn,
                group["insurer_id"],
                batch_date,
                group["currency"],
                f"Carga masiva - {len(valid)} pólizas",
            )
            for entry in valid:
                entry_id = _insert_entry(conn, batch_id, entry)
                if not entry["advisor_id"]:
                    continue
                # The advisor's configured share applies when a rule exists.
                rule = conn.execute(
                    """
                    SELECT commission_percentage FROM commission_rules
                    WHERE advisor_id = ? AND insurer_id = ? AND plan_type IN (?, 'general')
                    ORDER BY CASE WHEN plan_type = 'general' THEN 1 ELSE 0 END
                    LIMIT 1
                    """,
                    (entry["advisor_id"], group["insurer_id"], entry["plan_type"] or "general"),
                ).fetchone()
                if rule is not None and rule["commission_percentage"] > 0:
                    pct = rule["commission_percentage"]
                    amount = round(float(entry["commission_amount"]), 2)
                    conn.execute(
                        """
                        INSERT INTO commission_assignments(id, entry_id, advisor_id, percentage, amount, created_at)
                        VALUES (?, ?, ?, ?, ?, ?)
                        """,
                        (new_id(), entry_id, entry["advisor_id"], pct, assignment_amount(amount, pct), utc_now()),
                    )
                    assigned += 1
            recalculate_batch_totals(conn, batch_id)
            created.append(batch_id)
    logger.info("Bulk commission load: %s batches created, %s skipped", len(created), len(skipped))
    return {"batches_created": len(created), "batch_ids": created, "skipped": skipped, "assignments_created": assigned}


def commission_template(db_path: Path) -> bytes:
    with get_conn(db_path) as conn:
        insurers = [row["name"] for row in conn.execute("SELECT name FROM insurers WHERE is_active = 1 ORDER BY name")]
        advisors = [
            row["full_name"]
            for row in conn.execute("SELECT full_name FROM advisors WHERE is_active = 1 ORDER BY full_name")
        ]
    example = [
        insurers[0] if insurers else "Nombre Aseguradora",
        "USD",
        "POL-001",
        "Juan Pérez",
        advisors[0] if advisors else "Nombre Asesor",
        "general",
        1200,
        10,
        120,
    ]
    return build_workbook(
        [
            ("Comisiones", IMPORT_HEADERS, [example]),
            ("Aseguradoras", ["Aseguradora"], [[name] for name in insurers]),
            ("Asesores", ["Asesor"], [[name] for name in advisors]),
            ("Monedas", ["Moneda"], [[c] for c in CURRENCIES]),
        ]
    )
