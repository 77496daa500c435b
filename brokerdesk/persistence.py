from __future__ import annotations

import json
import logging
import sqlite3
import uuid
from datetime import UTC, date, datetime
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


def utc_now() -> str:
    return datetime.now(UTC).replace(microsecond=0).isoformat()


def today_iso(today: date | None = None) -> str:
    return (today or date.today()).isoformat()


def new_id() -> str:
    return uuid.uuid4().hex


def get_conn(db_path: Path) -> sqlite3.Connection:
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


def init_db(db_path: Path) -> None:
    with get_conn(db_path) as conn:
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS users (
                id TEXT PRIMARY KEY,
                email TEXT NOT NULL UNIQUE,
                full_name TEXT,
                password_salt TEXT,
                password_hash TEXT,
                auth_provider TEXT NOT NULL DEFAULT 'email',
                role TEXT,
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS auth_sessions (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                session_hash TEXT NOT NULL UNIQUE,
                expires_at TEXT NOT NULL,
                created_at TEXT NOT NULL,
                last_seen_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS oauth_states (
                state TEXT PRIMARY KEY,
                expires_at TEXT NOT NULL,
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS broker_settings (
                id INTEGER PRIMARY KEY CHECK (id = 1),
                name TEXT NOT NULL,
                identification TEXT,
                email TEXT,
                phone TEXT,
                address TEXT,
                logo_url TEXT,
                updated_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS advisors (
                id TEXT PRIMARY KEY,
                full_name TEXT NOT NULL,
                email TEXT,
                phone TEXT,
                commission_rate REAL,
                is_active INTEGER NOT NULL DEFAULT 1,
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS insurers (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL UNIQUE,
                short_name TEXT,
                rif TEXT,
                email TEXT,
                phone TEXT,
                is_active INTEGER NOT NULL DEFAULT 1,
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS products (
                id TEXT PRIMARY KEY,
                insurer_id TEXT REFERENCES insurers(id) ON DELETE CASCADE,
                name TEXT NOT NULL,
                category TEXT,
                description TEXT,
                is_active INTEGER NOT NULL DEFAULT 1,
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS usage_types (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL UNIQUE,
                description TEXT,
                is_active INTEGER NOT NULL DEFAULT 1,
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS banks (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                account_number TEXT,
                currency TEXT NOT NULL DEFAULT 'USD',
                is_active INTEGER NOT NULL DEFAULT 1,
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS clients (
                id TEXT PRIMARY KEY,
                identification_type TEXT NOT NULL DEFAULT 'cedula',
                identification_number TEXT NOT NULL,
                first_name TEXT NOT NULL,
                last_name TEXT NOT NULL,
                email TEXT,
                phone TEXT,
                mobile TEXT,
                address TEXT,
                city TEXT,
                province TEXT,
                birth_date TEXT,
                occupation TEXT,
                workplace TEXT,
                notes TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                UNIQUE (identification_type, identification_number)
            );

            CREATE TABLE IF NOT EXISTS policies (
                id TEXT PRIMARY KEY,
                client_id TEXT NOT NULL REFERENCES clients(id) ON DELETE CASCADE,
                insurer_id TEXT REFERENCES insurers(id),
                product_id TEXT REFERENCES products(id),
                policy_number TEXT,
                start_date TEXT NOT NULL,
                end_date TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'en_tramite',
                premium REAL,
                payment_frequency TEXT NOT NULL DEFAULT 'mensual',
                coverage_amount REAL,
                deductible REAL,
                premium_payment_date TEXT,
                notes TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS policy_advisors (
                policy_id TEXT NOT NULL REFERENCES policies(id) ON DELETE CASCADE,
                advisor_id TEXT NOT NULL REFERENCES advisors(id) ON DELETE CASCADE,
                advisor_role TEXT NOT NULL,
                PRIMARY KEY (policy_id, advisor_role)
            );

            CREATE TABLE IF NOT EXISTS beneficiaries (
                id TEXT PRIMARY KEY,
                policy_id TEXT NOT NULL REFERENCES policies(id) ON DELETE CASCADE,
                first_name TEXT NOT NULL,
                last_name TEXT NOT NULL,
                identification_type TEXT NOT NULL DEFAULT 'cedula',
                identification_number TEXT,
                relationship TEXT NOT NULL DEFAULT 'otro',
                birth_date TEXT,
                phone TEXT,
                email TEXT,
                percentage REAL,
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS collections (
                id TEXT PRIMARY KEY,
                policy_id TEXT NOT NULL REFERENCES policies(id) ON DELETE CASCADE,
                client_id TEXT NOT NULL REFERENCES clients(id) ON DELETE CASCADE,
                amount_due REAL NOT NULL DEFAULT 0,
                due_date TEXT NOT NULL,
                payment_frequency TEXT NOT NULL DEFAULT 'mensual',
                status TEXT NOT NULL DEFAULT 'pendiente',
                promised_date TEXT,
                advisor_notes TEXT,
                advisor_contacted_at TEXT,
                paid_at TEXT,
                paid_by TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS collection_history (
                id TEXT PRIMARY KEY,
                collection_id TEXT NOT NULL REFERENCES collections(id) ON DELETE CASCADE,
                action TEXT NOT NULL,
                previous_status TEXT,
                new_status TEXT,
                notes TEXT,
                created_by TEXT,
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS renewal_configs (
                id TEXT PRIMARY KEY,
                policy_id TEXT NOT NULL REFERENCES policies(id) ON DELETE CASCADE,
                renewal_date TEXT NOT NULL,
                current_amount REAL NOT NULL DEFAULT 0,
                new_amount REAL,
                difference REAL,
                percentage REAL,
                status TEXT NOT NULL DEFAULT 'pendiente',
                scheduled_send_date TEXT,
                email_sent INTEGER NOT NULL DEFAULT 0,
                email_sent_at TEXT,
                notes TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                UNIQUE (policy_id, renewal_date)
            );

            CREATE TABLE IF NOT EXISTS policy_consumptions (
                id TEXT PRIMARY KEY,
                policy_id TEXT NOT NULL REFERENCES policies(id) ON DELETE CASCADE,
                beneficiary_name TEXT,
                usage_type_id TEXT NOT NULL REFERENCES usage_types(id),
                usage_date TEXT NOT NULL,
                description TEXT NOT NULL,
                amount_bs REAL,
                amount_usd REAL,
                deleted INTEGER NOT NULL DEFAULT 0,
                deleted_at TEXT,
                deleted_by TEXT,
                created_by TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS commission_batches (
                id TEXT PRIMARY KEY,
                insurer_id TEXT NOT NULL REFERENCES insurers(id),
                batch_date TEXT NOT NULL,
                currency TEXT NOT NULL DEFAULT 'USD',
                status TEXT NOT NULL DEFAULT 'pendiente',
                total_premium REAL NOT NULL DEFAULT 0,
                total_commission REAL NOT NULL DEFAULT 0,
                notes TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS commission_entries (
                id TEXT PRIMARY KEY,
                batch_id TEXT NOT NULL REFERENCES commission_batches(id) ON DELETE CASCADE,
                policy_id TEXT REFERENCES policies(id) ON DELETE SET NULL,
                policy_number TEXT,
                client_name TEXT NOT NULL,
                plan_type TEXT,
                premium REAL NOT NULL DEFAULT 0,
                commission_rate REAL NOT NULL DEFAULT 0,
                commission_amount REAL NOT NULL DEFAULT 0,
                has_discrepancy INTEGER NOT NULL DEFAULT 0,
                discrepancy_notes TEXT,
                is_verified INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS commission_assignments (
                id TEXT PRIMARY KEY,
                entry_id TEXT NOT NULL REFERENCES commission_entries(id) ON DELETE CASCADE,
                advisor_id TEXT NOT NULL REFERENCES advisors(id),
                percentage REAL NOT NULL,
                amount REAL NOT NULL,
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS commission_rules (
                id TEXT PRIMARY KEY,
                advisor_id TEXT NOT NULL REFERENCES advisors(id) ON DELETE CASCADE,
                insurer_id TEXT NOT NULL REFERENCES insurers(id) ON DELETE CASCADE,
                plan_type TEXT NOT NULL DEFAULT 'general',
                commission_percentage REAL NOT NULL,
                updated_at TEXT NOT NULL,
                UNIQUE (advisor_id, insurer_id, plan_type)
            );

            CREATE TABLE IF NOT EXISTS chart_of_accounts (
                id TEXT PRIMARY KEY,
                code TEXT NOT NULL UNIQUE,
                name TEXT NOT NULL,
                account_class TEXT NOT NULL,
                nature TEXT NOT NULL,
                level INTEGER NOT NULL DEFAULT 1,
                parent_id TEXT REFERENCES chart_of_accounts(id),
                description TEXT,
                is_active INTEGER NOT NULL DEFAULT 1,
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS cost_centers (
                id TEXT PRIMARY KEY,
                code TEXT NOT NULL UNIQUE,
                name TEXT NOT NULL,
                center_type TEXT NOT NULL DEFAULT 'operativo',
                is_active INTEGER NOT NULL DEFAULT 1,
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS exchange_rates (
                id TEXT PRIMARY KEY,
                rate_date TEXT NOT NULL,
                currency TEXT NOT NULL,
                source TEXT NOT NULL,
                rate REAL NOT NULL,
                created_at TEXT NOT NULL,
                UNIQUE (rate_date, currency, source)
            );

            CREATE TABLE IF NOT EXISTS journal_entries (
                id TEXT PRIMARY KEY,
                entry_number TEXT NOT NULL UNIQUE,
                entry_date TEXT NOT NULL,
                description TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'borrador',
                exchange_rate REAL NOT NULL DEFAULT 1,
                total_debit_usd REAL NOT NULL DEFAULT 0,
                total_credit_usd REAL NOT NULL DEFAULT 0,
                created_by TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS journal_entry_lines (
                id TEXT PRIMARY KEY,
                entry_id TEXT NOT NULL REFERENCES journal_entries(id) ON DELETE CASCADE,
                account_id TEXT NOT NULL REFERENCES chart_of_accounts(id),
                cost_center_id TEXT REFERENCES cost_centers(id),
                description TEXT,
                transaction_type TEXT,
                applies_igtf INTEGER NOT NULL DEFAULT 0,
                debit_usd REAL NOT NULL DEFAULT 0,
                credit_usd REAL NOT NULL DEFAULT 0,
                debit_ves REAL NOT NULL DEFAULT 0,
                credit_ves REAL NOT NULL DEFAULT 0,
                line_order INTEGER NOT NULL DEFAULT 0
            );

            CREATE TABLE IF NOT EXISTS finance_invoices (
                id TEXT PRIMARY KEY,
                invoice_number TEXT NOT NULL UNIQUE,
                invoice_date TEXT NOT NULL,
                insurer_id TEXT REFERENCES insurers(id),
                description TEXT,
                total_amount REAL NOT NULL,
                islr_amount REAL NOT NULL,
                tax_units REAL NOT NULL,
                net_amount REAL NOT NULL,
                status TEXT NOT NULL DEFAULT 'pendiente',
                collected_at TEXT,
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS finance_income (
                id TEXT PRIMARY KEY,
                income_date TEXT NOT NULL,
                month TEXT NOT NULL,
                description TEXT NOT NULL,
                amount_usd REAL NOT NULL DEFAULT 0,
                amount_ves REAL NOT NULL DEFAULT 0,
                exchange_rate REAL,
                bank_id TEXT REFERENCES banks(id) ON DELETE SET NULL,
                notes TEXT,
                created_by TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS finance_expenses (
                id TEXT PRIMARY KEY,
                expense_date TEXT NOT NULL,
                month TEXT NOT NULL,
                description TEXT NOT NULL,
                amount_usd REAL NOT NULL DEFAULT 0,
                amount_ves REAL NOT NULL DEFAULT 0,
                exchange_rate REAL,
                is_paid INTEGER NOT NULL DEFAULT 0,
                paid_at TEXT,
                beneficiary TEXT,
                notes TEXT,
                created_by TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS finance_receivables (
                id TEXT PRIMARY KEY,
                source TEXT NOT NULL DEFAULT 'manual',
                invoice_id TEXT REFERENCES finance_invoices(id) ON DELETE CASCADE,
                description TEXT NOT NULL,
                amount_usd REAL NOT NULL DEFAULT 0,
                amount_ves REAL NOT NULL DEFAULT 0,
                due_date TEXT,
                is_collected INTEGER NOT NULL DEFAULT 0,
                collected_at TEXT,
                notes TEXT,
                created_by TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS sales_opportunities (
                id TEXT PRIMARY KEY,
                client_name TEXT NOT NULL,
                contact_email TEXT,
                contact_phone TEXT,
                client_id TEXT REFERENCES clients(id) ON DELETE SET NULL,
                advisor_id TEXT REFERENCES advisors(id) ON DELETE SET NULL,
                stage TEXT NOT NULL DEFAULT 'lead_identificado',
                expected_close_date TEXT,
                lost_reason TEXT,
                notes TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS sales_opportunity_products (
                id TEXT PRIMARY KEY,
                opportunity_id TEXT NOT NULL REFERENCES sales_opportunities(id) ON DELETE CASCADE,
                insurer_id TEXT REFERENCES insurers(id),
                product_id TEXT REFERENCES products(id),
                annual_premium REAL NOT NULL DEFAULT 0,
                commission_rate REAL NOT NULL DEFAULT 0,
                payment_frequency TEXT NOT NULL DEFAULT 'anual',
                is_selected INTEGER NOT NULL DEFAULT 0,
                notes TEXT,
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS sales_activity_log (
                id TEXT PRIMARY KEY,
                opportunity_id TEXT NOT NULL REFERENCES sales_opportunities(id) ON DELETE CASCADE,
                action TEXT NOT NULL,
                from_stage TEXT,
                to_stage TEXT,
                notes TEXT,
                changed_by TEXT,
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS sales_notes (
                id TEXT PRIMARY KEY,
                opportunity_id TEXT NOT NULL REFERENCES sales_opportunities(id) ON DELETE CASCADE,
                content TEXT NOT NULL,
                created_by TEXT,
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS sales_investments (
                id TEXT PRIMARY KEY,
                opportunity_id TEXT NOT NULL REFERENCES sales_opportunities(id) ON DELETE CASCADE,
                description TEXT NOT NULL,
                amount REAL NOT NULL,
                investment_date TEXT NOT NULL,
                created_by TEXT,
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS partners (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                category TEXT,
                contact_name TEXT,
                email TEXT,
                phone TEXT,
                is_active INTEGER NOT NULL DEFAULT 1,
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS partner_services (
                id TEXT PRIMARY KEY,
                partner_id TEXT NOT NULL REFERENCES partners(id) ON DELETE CASCADE,
                name TEXT NOT NULL,
                description TEXT,
                discount_type TEXT NOT NULL DEFAULT 'porcentaje',
                discount_value REAL NOT NULL DEFAULT 0,
                is_active INTEGER NOT NULL DEFAULT 1,
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS discount_codes (
                id TEXT PRIMARY KEY,
                code TEXT NOT NULL UNIQUE,
                partner_id TEXT NOT NULL REFERENCES partners(id) ON DELETE CASCADE,
                service_id TEXT REFERENCES partner_services(id) ON DELETE SET NULL,
                client_id TEXT REFERENCES clients(id) ON DELETE SET NULL,
                status TEXT NOT NULL DEFAULT 'generado',
                max_uses INTEGER NOT NULL DEFAULT 1,
                current_uses INTEGER NOT NULL DEFAULT 0,
                expires_at TEXT,
                sent_at TEXT,
                used_at TEXT,
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS birthday_sends (
                id TEXT PRIMARY KEY,
                client_id TEXT NOT NULL REFERENCES clients(id) ON DELETE CASCADE,
                send_year INTEGER NOT NULL,
                channels TEXT NOT NULL,
                status_email TEXT,
                status_whatsapp TEXT,
                message TEXT,
                sent_by TEXT,
                created_at TEXT NOT NULL,
                UNIQUE (client_id, send_year)
            );

            CREATE TABLE IF NOT EXISTS audit_logs (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                module TEXT NOT NULL,
                action TEXT NOT NULL,
                record_type TEXT,
                record_id TEXT,
                details TEXT,
                user_email TEXT,
                created_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_policies_client ON policies(client_id);
            CREATE INDEX IF NOT EXISTS idx_collections_due ON collections(status, due_date);
            CREATE INDEX IF NOT EXISTS idx_consumptions_policy ON policy_consumptions(policy_id, deleted);
            CREATE INDEX IF NOT EXISTS idx_audit_module ON audit_logs(module, created_at);
            """
        )
    logger.debug("Schema ready at %s", db_path)


def log_audit_event(
    db_path: Path,
    module: str,
    action: str,
    record_type: str | None = None,
    record_id: str | None = None,
    details: dict[str, Any] | None = None,
    user_email: str | None = None,
) -> None:
    with get_conn(db_path) as conn:
        conn.execute(
            """
            INSERT INTO audit_logs(module, action, record_type, record_id, details, user_email, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                module,
                action,
                record_type,
                record_id,
                json.dumps(details, ensure_ascii=False) if details is not None else None,
                user_email,
                utc_now(),
            ),
        )


def list_audit_events(
    db_path: Path,
    module: str | None = None,
    record_id: str | None = None,
    limit: int = 200,
) -> list[dict[str, Any]]:
    clauses: list[str] = []
    params: list[Any] = []
    if module:
        clauses.append("module = ?")
        params.append(module)
    if record_id:
        clauses.append("record_id = ?")
        params.append(record_id)
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
    with get_conn(db_path) as conn:
        rows = conn.execute(
            f"""
            SELECT id, module, action, record_type, record_id, details, user_email, created_at
            FROM audit_logs
            {where}
            ORDER BY id DESC
            LIMIT ?
            """,
            (*params, limit),
        ).fetchall()
    events = []
    for row in rows:
        event = dict(row)
        event["details"] = json.loads(event["details"]) if event["details"] else None
        events.append(event)
    return events
