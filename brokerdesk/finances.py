"""Double-entry bookkeeping: chart of accounts, journal entries and derived reports."""

from __future__ import annotations

import logging
import sqlite3
from collections import defaultdict
from datetime import date, timedelta
from pathlib import Path
from typing import Any

from brokerdesk.calculations import invoice_net, islr_withholding, tax_units
from brokerdesk.errors import NotFoundError, ValidationError
from brokerdesk.persistence import get_conn, new_id, today_iso, utc_now

logger = logging.getLogger(__name__)

ACCOUNT_CLASSES = ("activos", "pasivos", "patrimonio", "ingresos", "costos", "gastos", "ajustes")
NATURES = ("deudora", "acreedora", "variable")
CENTER_TYPES = ("operativo", "comercial", "administrativo", "soporte")
ENTRY_STATUSES = ("borrador", "publicado", "cerrado")
POSTED_STATUSES = ("publicado", "cerrado")
INVOICE_STATUSES = ("pendiente", "cobrada", "anulada")
BALANCE_TOLERANCE = 0.01


def _require(data: dict[str, Any], field: str, message: str) -> Any:
    value = data.get(field)
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError.field(field, message)
    return value.strip() if isinstance(value, str) else value


def _choice(field: str, value: Any, choices: tuple[str, ...]) -> None:
    if value not in choices:
        raise ValidationError.field(field, f"Valor inválido para {field}: {value}")


# ---------------------------------------------------------------------------
# Chart of accounts
# ---------------------------------------------------------------------------

def list_accounts(
    db_path: Path,
    account_class: str | None = None,
    active_only: bool = False,
) -> list[dict[str, Any]]:
    clauses: list[str] = []
    params: list[Any] = []
    if account_class:
        clauses.append("account_class = ?")
        params.append(account_class)
    if active_only:
        clauses.append("is_active = 1")
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
    with get_conn(db_path) as conn:
        rows = conn.execute(f"SELECT * FROM chart_of_accounts {where} ORDER BY code", params).fetchall()
        return [dict(row) for row in rows]


def get_account(db_path: Path, account_id: str) -> dict[str, Any]:
    with get_conn(db_path) as conn:
        row = conn.execute("SELECT * FROM chart_of_accounts WHERE id = ?", (account_id,)).fetchone()
    if row is None:
        raise NotFoundError("Cuenta no encontrada")
    return dict(row)


def save_account(db_path: Path, data: dict[str, Any], account_id: str | None = None) -> dict[str, Any]:
    code = str(_require(data, "code", "El código es requerido"))
    name = _require(data, "name", "El nombre es requerido")
    account_class = data.get("account_class")
    nature = data.get("nature")
    _choice("account_class", account_class, ACCOUNT_CLASSES)
    _choice("nature", nature, NATURES)
    parent_id = data.get("parent_id") or None
    if parent_id and parent_id == account_id:
        raise ValidationError.field("parent_id", "Una cuenta no puede ser su propia cuenta padre")

    values = (
        code,
        name,
        account_class,
        nature,
        int(data.get("level") or 1),
        parent_id,
        data.get("description"),
        1 if data.get("is_active", True) else 0,
    )
    with get_conn(db_path) as conn:
        clash = conn.execute(
            "SELECT id FROM chart_of_accounts WHERE code = ? AND id != ?",
            (code, account_id or ""),
        ).fetchone()
        if clash:
            raise ValidationError.field("code", f"Ya existe una cuenta con el código {code}")
        if account_id is None:
            account_id = new_id()
            conn.execute(
                """
                INSERT INTO chart_of_accounts(code, name, account_class, nature, level, parent_id, description, is_active, id, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (*values, account_id, utc_now()),
            )
        else:
            cur = conn.execute(
                """
                UPDATE chart_of_accounts
                SET code = ?, name = ?, account_class = ?, nature = ?, level = ?, parent_id = ?, description = ?, is_active = ?
                WHERE id = ?
                """,
                (*values, account_id),
            )
            if cur.rowcount == 0:
                raise NotFoundError("Cuenta no encontrada")
    return get_account(db_path, account_id)


def delete_account(db_path: Path, account_id: str) -> bool:
    with get_conn(db_path) as conn:
        used = conn.execute(
            "SELECT 1 FROM journal_entry_lines WHERE account_id = ? LIMIT 1", (account_id,)
        ).fetchone()
        if used:
            raise ValidationError("La cuenta tiene movimientos registrados y no puede eliminarse")
        cur = conn.execute("DELETE FROM chart_of_accounts WHERE id = ?", (account_id,))
        return cur.rowcount > 0


# ---------------------------------------------------------------------------
# Cost centers
# ---------------------------------------------------------------------------

def list_cost_centers(db_path: Path, active_only: bool = False) -> list[dict[str, Any]]:
    where = "WHERE is_active = 1" if active_only else ""
    with get_conn(db_path) as conn:
        rows = conn.execute(f"SELECT * FROM cost_centers {where} ORDER BY code").fetchall()
        return [dict(row) for row in rows]


def save_cost_center(db_path: Path, data: dict[str, Any], center_id: str | None = None) -> dict[str, Any]:
    code = str(_require(data, "code", "El código es requerido"))
    name = _require(data, "name", "El nombre es requerido")
    center_type = data.get("center_type") or "operativo"
    _choice("center_type", center_type, CENTER_TYPES)
    active = 1 if data.get("is_active", True) else 0
    with get_conn(db_path) as conn:
        clash = conn.execute(
            "SELECT id FROM cost_centers WHERE code = ? AND id != ?", (code, center_id or "")
        ).fetchone()
        if clash:
            raise ValidationError.field("code", f"Ya existe un centro de costo con el código {code}")
        if center_id is None:
            center_id = new_id()
            conn.execute(
                "INSERT INTO cost_centers(id, code, name, center_type, is_active, created_at) VALUES (?, ?, ?, ?, ?, ?)",
                (center_id, code, name, center_type, active, utc_now()),
            )
        elif conn.execute(
            "UPDATE cost_centers SET code = ?, name = ?, center_type = ?, is_active = ? WHERE id = ?",
            (code, name, center_type, active, center_id),
        ).rowcount == 0:
            raise NotFoundError("Centro de costo no encontrado")
        row = conn.execute("SELECT * FROM cost_centers WHERE id = ?", (center_id,)).fetchone()
        return dict(row)


def delete_cost_center(db_path: Path, center_id: str) -> bool:
    with get_conn(db_path) as conn:
        cur = conn.execute("DELETE FROM cost_centers WHERE id = ?", (center_id,))
        return cur.rowcount > 0


# ---------------------------------------------------------------------------
# Exchange rates
# ---------------------------------------------------------------------------

def record_exchange_rate(
    db_path: Path,
    rate: float,
    rate_date: str | None = None,
    currency: str = "USD",
    source: str = "BCV",
) -> dict[str, Any]:
    if rate is None or float(rate) <= 0:
        raise ValidationError.field("rate", "La tasa debe ser mayor a cero")
    rate_date = rate_date or today_iso()
    with get_conn(db_path) as conn:
        conn.execute(
            """
            INSERT INTO exchange_rates(id, rate_date, currency, source, rate, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(rate_date, currency, source) DO UPDATE SET rate=excluded.rate
            """,
            (new_id(), rate_date, currency.upper(), source, float(rate), utc_now()),
        )
        row = conn.execute(
            "SELECT * FROM exchange_rates WHERE rate_date = ? AND currency = ? AND source = ?",
            (rate_date, currency.upper(), source),
        ).fetchone()
        return dict(row)


def list_exchange_rates(db_path: Path, currency: str | None = None, limit: int = 90) -> list[dict[str, Any]]:
    where = "WHERE currency = ?" if currency else ""
    params: tuple[Any, ...] = (currency.upper(), limit) if currency else (limit,)
    with get_conn(db_path) as conn:
        rows = conn.execute(
            f"SELECT * FROM exchange_rates {where} ORDER BY rate_date DESC, source LIMIT ?",
            params,
        ).fetchall()
        return [dict(row) for row in rows]


def latest_exchange_rate(db_path: Path, currency: str = "USD", source: str | None = None) -> dict[str, Any] | None:
    sql = "SELECT * FROM exchange_rates WHERE currency = ?"
    params: list[Any] = [currency.upper()]
    if source:
        sql += " AND source = ?"
        params.append(source)
    with get_conn(db_path) as conn:
        row = conn.execute(f"{sql} ORDER BY rate_date DESC, created_at DESC LIMIT 1", params).fetchone()
    return dict(row) if row else None


# ---------------------------------------------------------------------------
# Journal entries
# ---------------------------------------------------------------------------

def validate_journal_lines(lines: list[dict[str, Any]]) -> tuple[float, float]:
    """Check an entry's lines and return (total_debit, total_credit) in USD."""
    if len(lines) < 2:
        raise ValidationError.field("lines", "El asiento debe tener al menos 2 líneas")
    total_debit = total_credit = 0.0
    errors = []
    for index, line in enumerate(lines, start=1):
        debit = float(line.get("debit_usd") or 0)
        credit = float(line.get("credit_usd") or 0)
        if not line.get("account_id"):
            errors.append({"field": f"lines[{index}].account_id", "message": f"Línea {index}: la cuenta es requerida"})
        if debit < 0 or credit < 0:
            errors.append({"field": f"lines[{index}]", "message": f"Línea {index}: los montos no pueden ser negativos"})
        elif debit > 0 and credit > 0:
            errors.append({"field": f"lines[{index}]", "message": f"Línea {index}: no puede tener débito y crédito"})
        elif debit == 0 and credit == 0:
            errors.append({"field": f"lines[{index}]", "message": f"Línea {index}: debe tener un monto"})
        total_debit += debit
        total_credit += credit
    if errors:
        raise ValidationError(errors[0]["message"], errors)
    if abs(total_debit - total_credit) >= BALANCE_TOLERANCE:
        raise ValidationError.field(
            "lines",
            f"El asiento no está cuadrado: débitos {total_debit:.2f} vs créditos {total_credit:.2f}",
        )
    return round(total_debit, 2), round(total_credit, 2)


def _next_entry_number(conn: sqlite3.Connection) -> str:
    row = conn.execute(
        "SELECT entry_number FROM journal_entries WHERE entry_number LIKE 'AS-%' ORDER BY entry_number DESC LIMIT 1"
    ).fetchone()
    last = int(row["entry_number"][3:]) if row and row["entry_number"][3:].isdigit() else 0
    return f"AS-{last + 1:06d}"


def _write_lines(conn: sqlite3.Connection, entry_id: str, lines: list[dict[str, Any]], rate: float) -> None:
    conn.execute("DELETE FROM journal_entry_lines WHERE entry_id = ?", (entry_id,))
    for order, line in enumerate(lines):
        debit = round(float(line.get("debit_usd") or 0), 2)
        credit = round(float(line.get("credit_usd") or 0), 2)
        conn.execute(
            """
            INSERT INTO journal_entry_lines(
                id, entry_id, account_id, cost_center_id, description, transaction_type, applies_igtf,
                debit_usd, credit_usd, debit_ves, credit_ves, line_order
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                new_id(),
                entry_id,
                line["account_id"],
                line.get("cost_center_id") or None,
                line.get("description"),
                line.get("transaction_type"),
                1 if line.get("applies_igtf") else 0,
                debit,
                credit,
                round(debit * rate, 2),
                round(credit * rate, 2),
                order,
            ),
        )


def _entry_row(conn: sqlite3.Connection, entry_id: str) -> sqlite3.Row:
    row = conn.execute("SELECT * FROM journal_entries WHERE id = ?", (entry_id,)).fetchone()
    if row is None:
        raise NotFoundError("Asiento no encontrado")
    return row


def get_journal_entry(db_path: Path, entry_id: str) -> dict[str, Any]:
    with get_conn(db_path) as conn:
        entry = dict(_entry_row(conn, entry_id))
        entry["lines"] = [
            dict(row)
            for row in conn.execute(
                """
                SELECT l.*, a.code AS account_code, a.name AS account_name, cc.name AS cost_center_name
                FROM journal_entry_lines l
                JOIN chart_of_accounts a ON a.id = l.account_id
                LEFT JOIN cost_centers cc ON cc.id = l.cost_center_id
                WHERE l.entry_id = ?
                ORDER BY l.line_order
                """,
                (entry_id,),
            )
        ]
    return entry


def create_journal_entry(
    db_path: Path,
    entry_date: str,
    description: str,
    lines: list[dict[str, Any]],
    exchange_rate: float,
    status: str = "borrador",
    user: str | None = None,
) -> dict[str, Any]:
    if not description or not description.strip():
        raise ValidationError.field("description", "La descripción es requerida")
    if not entry_date:
        raise ValidationError.field("entry_date", "La fecha es requerida")
    if exchange_rate is None or float(exchange_rate) <= 0:
        raise ValidationError.field("exchange_rate", "La tasa de cambio debe ser mayor a cero")
    if status not in ("borrador", "publicado"):
        raise ValidationError.field("status", "Un asiento nuevo solo puede ser borrador o publicado")
    total_debit, total_credit = validate_journal_lines(lines)
    rate = float(exchange_rate)

    entry_id = new_id()
    now = utc_now()
    with get_conn(db_path) as conn:
        entry_number = _next_entry_number(conn)
        conn.execute(
            """
            INSERT INTO journal_entries(
                id, entry_number, entry_date, description, status, exchange_rate,
                total_debit_usd, total_credit_usd, created_by, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (entry_id, entry_number, entry_date, description.strip(), status, rate, total_debit, total_credit, user, now, now),
        )
        _write_lines(conn, entry_id, lines, rate)
    logger.info("Journal entry %s created (%s)", entry_number, status)
    return get_journal_entry(db_path, entry_id)


def update_journal_entry(
    db_path: Path,
    entry_id: str,
    entry_date: str | None = None,
    description: str | None = None,
    lines: list[dict[str, Any]] | None = None,
    exchange_rate: float | None = None,
) -> dict[str, Any]:
    with get_conn(db_path) as conn:
        current = _entry_row(conn, entry_id)
        if current["status"] == "cerrado":
            raise ValidationError("Un asiento cerrado no puede modificarse")
        rate = float(exchange_rate if exchange_rate is not None else current["exchange_rate"])
        if rate <= 0:
            raise ValidationError.field("exchange_rate", "La tasa de cambio debe ser mayor a cero")
        if lines is None:
            lines = [
                dict(row)
                for row in conn.execute(
                    "SELECT * FROM journal_entry_lines WHERE entry_id = ? ORDER BY line_order", (entry_id,)
                )
            ]
        total_debit, total_credit = validate_journal_lines(lines)
        conn.execute(
            """
            UPDATE journal_entries
            SET entry_date = ?, description = ?, exchange_rate = ?, total_debit_usd = ?, total_credit_usd = ?, updated_at = ?
            WHERE id = ?
            """,
            (
                entry_date or current["entry_date"],
                (description or current["description"]).strip(),
                rate,
                total_debit,
                total_credit,
                utc_now(),
                entry_id,
            ),
        )
        _write_lines(conn, entry_id, lines, rate)
    return get_journal_entry(db_path, entry_id)


def set_entry_status(db_path: Path, entry_id: str, status: str) -> dict[str, Any]:
    _choice("status", status, ENTRY_STATUSES)
    with get_conn(db_path) as conn:
        current = _entry_row(conn, entry_id)
        if current["status"] == "cerrado" and status != "cerrado":
            raise ValidationError("Un asiento cerrado no puede modificarse")
        conn.execute(
            "UPDATE journal_entries SET status = ?, updated_at = ? WHERE id = ?",
            (status, utc_now(), entry_id),
        )
    logger.info("Journal entry %s -> %s", entry_id, status)
    return get_journal_entry(db_path, entry_id)


def delete_journal_entry(db_path: Path, entry_id: str) -> bool:
    with get_conn(db_path) as conn:
        current = _entry_row(conn, entry_id)
        if current["status"] == "cerrado":
            raise ValidationError("Un asiento cerrado no puede eliminarse")
        cur = conn.execute("DELETE FROM journal_entries WHERE id = ?", (entry_id,))
        return cur.rowcount > 0


def list_journal_entries(
    db_path: Path,
    date_from: str | None = None,
    date_to: str | None = None,
    status: str | None = None,
) -> list[dict[str, Any]]:
    clauses: list[str] = []
    params: list[Any] = []
    for clause, value in (("entry_date >= ?", date_from), ("entry_date <= ?", date_to), ("status = ?", status)):
        if value:
            clauses.append(clause)
            params.append(value)
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
    with get_conn(db_path) as conn:
        rows = conn.execute(
            f"SELECT * FROM journal_entries {where} ORDER BY entry_date DESC, entry_number DESC", params
        ).fetchall()
        return [dict(row) for row in rows]


# ---------------------------------------------------------------------------
# Balances and reports
# ---------------------------------------------------------------------------

def _signed_balance(nature: str, debit: float, credit: float) -> float:
    return round(credit - debit if nature == "acreedora" else debit - credit, 2)


def _posted_movements(
    conn: sqlite3.Connection,
    date_from: str | None,
    date_to: str | None,
) -> dict[str, tuple[float, float]]:
    clauses = [f"e.status IN ({', '.join('?' for _ in POSTED_STATUSES)})"]
    params: list[Any] = list(POSTED_STATUSES)
    if date_from:
        clauses.append("e.entry_date >= ?")
        params.append(date_from)
    if date_to:
        clauses.append("e.entry_date <= ?")
        params.append(date_to)
    rows = conn.execute(
        f"""
        SELECT l.account_id, SUM(l.debit_usd) AS debit, SUM(l.credit_usd) AS credit
        FROM journal_entry_lines l
        JOIN journal_entries e ON e.id = l.entry_id
        WHERE {' AND '.join(clauses)}
        GROUP BY l.account_id
        """,
        params,
    ).fetchall()
    return {row["account_id"]: (float(row["debit"] or 0), float(row["credit"] or 0)) for row in rows}


def account_balances(
    db_path: Path,
    date_from: str | None = None,
    date_to: str | None = None,
) -> list[dict[str, Any]]:
    """Every account with its own movements and a balance rolled up from its children."""
    with get_conn(db_path) as conn:
        accounts = [dict(row) for row in conn.execute("SELECT * FROM chart_of_accounts ORDER BY code")]
        movements = _posted_movements(conn, date_from, date_to)

    children: dict[str, list[str]] = defaultdict(list)
    for account in accounts:
        if account["parent_id"]:
            children[account["parent_id"]].append(account["id"])

    totals: dict[str, tuple[float, float]] = {}

    def rolled(account_id: str) -> tuple[float, float]:
        if account_id not in totals:
            debit, credit = movements.get(account_id, (0.0, 0.0))
            for child_id in children.get(account_id, []):
                child_debit, child_credit = rolled(child_id)
                debit += child_debit
                credit += child_credit
            totals[account_id] = (debit, credit)
        return totals[account_id]

    result = []
    for account in accounts:
        own_debit, own_credit = movements.get(account["id"], (0.0, 0.0))
        debit, credit = rolled(account["id"])
        account.update(
            {
                "own_debit": round(own_debit, 2),
                "own_credit": round(own_credit, 2),
                "debit": round(debit, 2),
                "credit": round(credit, 2),
                "balance": _signed_balance(account["nature"], debit, credit),
                "own_balance": _signed_balance(account["nature"], own_debit, own_credit),
            }
        )
        result.append(account)
    return result


def _class_total(balances: list[dict[str, Any]], account_class: str) -> float:
    return round(sum(a["own_balance"] for a in balances if a["account_class"] == account_class), 2)


def trial_balance(db_path: Path, date_from: str | None = None, date_to: str | None = None) -> dict[str, Any]:
    rows = []
    for account in account_balances(db_path, date_from, date_to):
        if not account["own_debit"] and not account["own_credit"]:
            continue
        # The account's nature picks the column; a balance running against it shows negative.
        balance = account["own_balance"]
        if account["nature"] == "variable":
            debit_side = balance >= 0
            balance = abs(balance)
        else:
            debit_side = account["nature"] == "deudora"
        rows.append(
            {
                "account_id": account["id"],
                "code": account["code"],
                "name": account["name"],
                "nature": account["nature"],
                "debit": account["own_debit"],
                "credit": account["own_credit"],
                "debit_balance": balance if debit_side else 0.0,
                "credit_balance": 0.0 if debit_side else balance,
            }
        )
    total_debit = round(sum(r["debit"] for r in rows), 2)
    total_credit = round(sum(r["credit"] for r in rows), 2)
    return {
        "rows": rows,
        "total_debit": total_debit,
        "total_credit": total_credit,
        "total_debit_balance": round(sum(r["debit_balance"] for r in rows), 2),
        "total_credit_balance": round(sum(r["credit_balance"] for r in rows), 2),
        "balanced": abs(total_debit - total_credit) < BALANCE_TOLERANCE,
    }


def _section(balances: list[dict[str, Any]], account_class: str) -> list[dict[str, Any]]:
    return [
        {"code": a["code"], "name": a["name"], "amount": a["own_balance"]}
        for a in balances
        if a["account_class"] == account_class and a["own_balance"]
    ]


def income_statement(db_path: Path, date_from: str | None = None, date_to: str | None = None) -> dict[str, Any]:
    balances = account_balances(db_path, date_from, date_to)
    income = _class_total(balances, "ingresos")
    costs = _class_total(balances, "costos")
    expenses = _class_total(balances, "gastos")
    gross = round(income - costs, 2)
    return {
        "income": _section(balances, "ingresos"),
        "costs": _section(balances, "costos"),
        "expenses": _section(balances, "gastos"),
        "total_income": income,
        "total_costs": costs,
        "total_expenses": expenses,
        "gross_profit": gross,
        "net_income": round(gross - expenses, 2),
    }


def balance_sheet(db_path: Path, as_of: str | None = None) -> dict[str, Any]:
    balances = account_balances(db_path, None, as_of)
    assets = _class_total(balances, "activos")
    liabilities = _class_total(balances, "pasivos")
    equity = _class_total(balances, "patrimonio")
    period_result = round(
        _class_total(balances, "ingresos") - _class_total(balances, "costos") - _class_total(balances, "gastos"), 2
    )
    liabilities_and_equity = round(liabilities + equity + period_result, 2)
    return {
        "as_of": as_of or today_iso(),
        "assets": _section(balances, "activos"),
        "liabilities": _section(balances, "pasivos"),
        "equity": _section(balances, "patrimonio"),
        "total_assets": assets,
        "total_liabilities": liabilities,
        "total_equity": equity,
        "period_result": period_result,
        "total_liabilities_and_equity": liabilities_and_equity,
        "balanced": abs(assets - liabilities_and_equity) < BALANCE_TOLERANCE,
    }


def general_ledger(
    db_path: Path,
    account_id: str,
    date_from: str | None = None,
    date_to: str | None = None,
) -> dict[str, Any]:
    account = get_account(db_path, account_id)
    with get_conn(db_path) as conn:
        opening_debit, opening_credit = (
            _posted_movements(conn, None, _day_before(date_from)).get(account_id, (0.0, 0.0)) if date_from else (0.0, 0.0)
        )
        clauses = ["l.account_id = ?", f"e.status IN ({', '.join('?' for _ in POSTED_STATUSES)})"]
        params: list[Any] = [account_id, *POSTED_STATUSES]
        if date_from:
            clauses.append("e.entry_date >= ?")
            params.append(date_from)
        if date_to:
            clauses.append("e.entry_date <= ?")
            params.append(date_to)
        rows = conn.execute(
            f"""
            SELECT e.entry_number, e.entry_date, e.description AS entry_description,
                   l.description, l.debit_usd, l.credit_usd, l.debit_ves, l.credit_ves
            FROM journal_entry_lines l
            JOIN journal_entries e ON e.id = l.entry_id
            WHERE {' AND '.join(clauses)}
            ORDER BY e.entry_date, e.entry_number, l.line_order
            """,
            params,
        ).fetchall()

    running = _signed_balance(account["nature"], opening_debit, opening_credit)
    opening = running
    movements = []
    for row in rows:
        item = dict(row)
        running = round(running + _signed_balance(account["nature"], item["debit_usd"], item["credit_usd"]), 2)
        item["balance"] = running
        movements.append(item)
    return {"account": account, "opening_balance": opening, "movements": movements, "closing_balance": running}


def _day_before(iso_date: str) -> str:
    return (date.fromisoformat(iso_date[:10]) - timedelta(days=1)).isoformat()


# ---------------------------------------------------------------------------
# Invoices
# ---------------------------------------------------------------------------

def create_invoice(
    db_path: Path,
    invoice_number: str,
    invoice_date: str,
    total_amount: float,
    insurer_id: str | None = None,
    description: str | None = None,
) -> dict[str, Any]:
    if not invoice_number or not str(invoice_number).strip():
        raise ValidationError.field("invoice_number", "El número de factura es requerido")
    if total_amount is None or float(total_amount) <= 0:
        raise ValidationError.field("total_amount", "El monto debe ser mayor a cero")
    total = round(float(total_amount), 2)
    islr = islr_withholding(total)
    invoice_id = new_id()
    with get_conn(db_path) as conn:
        if conn.execute("SELECT 1 FROM finance_invoices WHERE invoice_number = ?", (invoice_number,)).fetchone():
            raise ValidationError.field("invoice_number", f"La factura {invoice_number} ya existe")
        conn.execute(
            """
            INSERT INTO finance_invoices(
                id, invoice_number, invoice_date, insurer_id, description,
                total_amount, islr_amount, tax_units, net_amount, status, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, 'pendiente', ?)
            """,
            (
                invoice_id,
                str(invoice_number).strip(),
                invoice_date or today_iso(),
                insurer_id,
                description,
                total,
                islr,
                tax_units(islr),
                invoice_net(total),
                utc_now(),
            ),
        )
        now = utc_now()
        conn.execute(
            """
            INSERT INTO finance_receivables(
                id, source, invoice_id, description, amount_usd, created_at, updated_at
            ) VALUES (?, 'factura', ?, ?, ?, ?, ?)
            """,
            (new_id(), invoice_id, f"Factura {str(invoice_number).strip()}", invoice_net(total), now, now),
        )
    return get_invoice(db_path, invoice_id)


def get_invoice(db_path: Path, invoice_id: str) -> dict[str, Any]:
    with get_conn(db_path) as conn:
        row = conn.execute(
            """
            SELECT f.*, i.name AS insurer_name
            FROM finance_invoices f LEFT JOIN insurers i ON i.id = f.insurer_id
            WHERE f.id = ?
            """,
            (invoice_id,),
        ).fetchone()
    if row is None:
        raise NotFoundError("Factura no encontrada")
    return dict(row)


def list_invoices(db_path: Path, status: str | None = None) -> list[dict[str, Any]]:
    where = "WHERE f.status = ?" if status else ""
    with get_conn(db_path) as conn:
        rows = conn.execute(
            f"""
            SELECT f.*, i.name AS insurer_name
            FROM finance_invoices f LEFT JOIN insurers i ON i.id = f.insurer_id
            {where}
            ORDER BY f.invoice_date DESC, f.invoice_number DESC
            """,
            (status,) if status else (),
        ).fetchall()
        return [dict(row) for row in rows]


def set_invoice_status(db_path: Path, invoice_id: str, status: str) -> dict[str, Any]:
    _choice("status", status, INVOICE_STATUSES)
    collected_at = utc_now() if status == "cobrada" else None
    with get_conn(db_path) as conn:
        cur = conn.execute(
            "UPDATE finance_invoices SET status = ?, collected_at = ? WHERE id = ?",
            (status, collected_at, invoice_id),
        )
        if cur.rowcount == 0:
            raise NotFoundError("Factura no encontrada")
        if status == "anulada":
            conn.execute("DELETE FROM finance_receivables WHERE invoice_id = ? AND is_collected = 0", (invoice_id,))
        else:
            _mark_receivable(conn, "invoice_id", invoice_id, status == "cobrada")
    return get_invoice(db_path, invoice_id)


def delete_invoice(db_path: Path, invoice_id: str) -> bool:
    with get_conn(db_path) as conn:
        cur = conn.execute("DELETE FROM finance_invoices WHERE id = ?", (invoice_id,))
        return cur.rowcount > 0


# ---------------------------------------------------------------------------
# Cash movements: income, expenses and receivables
# ---------------------------------------------------------------------------

INCOME_FIELDS = ("income_date", "description", "amount_usd", "amount_ves", "exchange_rate", "bank_id", "notes")
EXPENSE_FIELDS = ("expense_date", "description", "amount_usd", "amount_ves", "exchange_rate", "beneficiary", "notes")
RECEIVABLE_FIELDS = ("description", "amount_usd", "amount_ves", "due_date", "notes")


def _month_of(field: str, value: Any) -> str:
    try:
        return date.fromisoformat(str(value)[:10]).strftime("%Y-%m")
    except ValueError as exc:
        raise ValidationError.field(field, "Fecha inválida, usa AAAA-MM-DD") from exc


def _amounts(values: dict[str, Any]) -> None:
    """Fill amount_ves from the rate when only dollars were given; reject negatives."""
    usd = float(values.get("amount_usd") or 0)
    ves = float(values.get("amount_ves") or 0)
    rate = values.get("exchange_rate")
    if usd < 0 or ves < 0:
        raise ValidationError.field("amount_usd", "Los montos no pueden ser negativos")
    if usd == 0 and ves == 0:
        raise ValidationError.field("amount_usd", "Indica un monto en USD o Bs")
    if rate is not None and float(rate) <= 0:
        raise ValidationError.field("exchange_rate", "La tasa de cambio debe ser mayor a cero")
    if not ves and rate:
        ves = usd * float(rate)
    values["amount_usd"] = round(usd, 2)
    values["amount_ves"] = round(ves, 2)


def _save_movement(
    db_path: Path,
    table: str,
    date_field: str | None,
    fields: tuple[str, ...],
    data: dict[str, Any],
    row_id: str | None,
    user: str | None,
) -> dict[str, Any]:
    with get_conn(db_path) as conn:
        current: dict[str, Any] = {}
        if row_id:
            row = conn.execute(f"SELECT * FROM {table} WHERE id = ?", (row_id,)).fetchone()
            if row is None:
                raise NotFoundError("Movimiento no encontrado")
            current = dict(row)
        values = {k: data.get(k, current.get(k)) for k in fields}
        if current and "amount_ves" not in data and ("amount_usd" in data or "exchange_rate" in data):
            values["amount_ves"] = None
        values["description"] = _require(values, "description", "La descripción es requerida")
        _amounts(values)
        if date_field:
            values[date_field] = _require(values, date_field, "La fecha es requerida")
            values["month"] = _month_of(date_field, values[date_field])
        now = utc_now()
        if row_id:
            conn.execute(
                f"UPDATE {table} SET {', '.join(f'{k} = ?' for k in values)}, updated_at = ? WHERE id = ?",
                (*values.values(), now, row_id),
            )
        else:
            row_id = new_id()
            conn.execute(
                f"""
                INSERT INTO {table}(id, created_by, created_at, updated_at, {', '.join(values)})
                VALUES (?, ?, ?, ?, {', '.join('?' for _ in values)})
                """,
                (row_id, user, now, now, *values.values()),
            )
        return dict(conn.execute(f"SELECT * FROM {table} WHERE id = ?", (row_id,)).fetchone())


def save_income(
    db_path: Path, data: dict[str, Any], income_id: str | None = None, user: str | None = None
) -> dict[str, Any]:
    return _save_movement(db_path, "finance_income", "income_date", INCOME_FIELDS, data, income_id, user)


def list_income(db_path: Path, month: str | None = None) -> list[dict[str, Any]]:
    where = "WHERE f.month = ?" if month else ""
    with get_conn(db_path) as conn:
        rows = conn.execute(
            f"""
            SELECT f.*, b.name AS bank_name
            FROM finance_income f LEFT JOIN banks b ON b.id = f.bank_id
            {where}
            ORDER BY f.income_date DESC, f.rowid DESC
            """,
            (month,) if month else (),
        ).fetchall()
        return [dict(row) for row in rows]


def delete_income(db_path: Path, income_id: str) -> bool:
    with get_conn(db_path) as conn:
        cur = conn.execute("DELETE FROM finance_income WHERE id = ?", (income_id,))
        return cur.rowcount > 0


def save_expense(
    db_path: Path, data: dict[str, Any], expense_id: str | None = None, user: str | None = None
) -> dict[str, Any]:
    return _save_movement(db_path, "finance_expenses", "expense_date", EXPENSE_FIELDS, data, expense_id, user)


def list_expenses(db_path: Path, month: str | None = None, unpaid_only: bool = False) -> list[dict[str, Any]]:
    clauses: list[str] = []
    params: list[Any] = []
    if month:
        clauses.append("month = ?")
        params.append(month)
    if unpaid_only:
        clauses.append("is_paid = 0")
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
    with get_conn(db_path) as conn:
        rows = conn.execute(
            f"SELECT * FROM finance_expenses {where} ORDER BY expense_date DESC, rowid DESC", params
        ).fetchall()
        return [dict(row) for row in rows]


def list_payables(db_path: Path) -> list[dict[str, Any]]:
    """Unpaid expenses, oldest first."""
    return sorted(list_expenses(db_path, unpaid_only=True), key=lambda e: e["expense_date"])


def set_expense_paid(db_path: Path, expense_id: str, is_paid: bool = True) -> dict[str, Any]:
    with get_conn(db_path) as conn:
        cur = conn.execute(
            "UPDATE finance_expenses SET is_paid = ?, paid_at = ?, updated_at = ? WHERE id = ?",
            (1 if is_paid else 0, utc_now() if is_paid else None, utc_now(), expense_id),
        )
        if cur.rowcount == 0:
            raise NotFoundError("Egreso no encontrado")
        return dict(conn.execute("SELECT * FROM finance_expenses WHERE id = ?", (expense_id,)).fetchone())


def delete_expense(db_path: Path, expense_id: str) -> bool:
    with get_conn(db_path) as conn:
        cur = conn.execute("DELETE FROM finance_expenses WHERE id = ?", (expense_id,))
        return cur.rowcount > 0


def monthly_cash_summary(db_path: Path, month: str) -> dict[str, Any]:
    """Income against expenses for one YYYY-MM, in both currencies."""
    with get_conn(db_path) as conn:
        income = conn.execute(
            "SELECT COALESCE(SUM(amount_usd), 0), COALESCE(SUM(amount_ves), 0) FROM finance_income WHERE month = ?",
            (month,),
        ).fetchone()
        expenses = conn.execute(
            "SELECT COALESCE(SUM(amount_usd), 0), COALESCE(SUM(amount_ves), 0) FROM finance_expenses WHERE month = ?",
            (month,),
        ).fetchone()
    return {
        "month": month,
        "income_usd": round(float(income[0]), 2),
        "income_ves": round(float(income[1]), 2),
        "expenses_usd": round(float(expenses[0]), 2),
        "expenses_ves": round(float(expenses[1]), 2),
        "net_usd": round(float(income[0]) - float(expenses[0]), 2),
        "net_ves": round(float(income[1]) - float(expenses[1]), 2),
    }


def save_receivable(
    db_path: Path, data: dict[str, Any], receivable_id: str | None = None, user: str | None = None
) -> dict[str, Any]:
    return _save_movement(db_path, "finance_receivables", None, RECEIVABLE_FIELDS, data, receivable_id, user)


def list_receivables(db_path: Path, pending_only: bool = False) -> list[dict[str, Any]]:
    where = "WHERE r.is_collected = 0" if pending_only else ""
    with get_conn(db_path) as conn:
        rows = conn.execute(
            f"""
            SELECT r.*, f.invoice_number
            FROM finance_receivables r LEFT JOIN finance_invoices f ON f.id = r.invoice_id
            {where}
            ORDER BY r.created_at DESC, r.rowid DESC
            """
        ).fetchall()
        return [dict(row) for row in rows]


def _mark_receivable(conn: sqlite3.Connection, where: str, key: str, collected: bool) -> int:
    now = utc_now()
    cur = conn.execute(
        f"UPDATE finance_receivables SET is_collected = ?, collected_at = ?, updated_at = ? WHERE {where} = ?",
        (1 if collected else 0, now if collected else None, now, key),
    )
    return cur.rowcount


def set_receivable_collected(db_path: Path, receivable_id: str, collected: bool = True) -> dict[str, Any]:
    with get_conn(db_path) as conn:
        if not _mark_receivable(conn, "id", receivable_id, collected):
            raise NotFoundError("Cuenta por cobrar no encontrada")
        return dict(conn.execute("SELECT * FROM finance_receivables WHERE id = ?", (receivable_id,)).fetchone())


def delete_receivable(db_path: Path, receivable_id: str) -> bool:
    with get_conn(db_path) as conn:
        cur = conn.execute("DELETE FROM finance_receivables WHERE id = ?", (receivable_id,))
        return cur.rowcount > 0
