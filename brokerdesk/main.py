from __future__ import annotations

import json
import logging
import sqlite3
from datetime import date
from typing import Any

from fastapi import Depends, FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import BaseModel
from starlette.responses import Response

from brokerdesk import (
    auth,
    birthdays,
    catalog,
    client_import,
    clients,
    commissions,
    config,
    consumptions,
    dashboard,
    documents,
    finances,
    partnerships,
    pdf_templates,
    premium_collections,
    renewals,
    sales,
)
from brokerdesk.errors import BrokerDeskError, user_friendly_error
from brokerdesk.persistence import init_db, list_audit_events, log_audit_event
from brokerdesk.spreadsheets import read_table

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

DB_PATH = config.DB_PATH
XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

app = FastAPI(title="Broker Desk", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(BrokerDeskError)
def handle_app_error(request: Request, exc: BrokerDeskError) -> JSONResponse:
    return JSONResponse(exc.to_dict(), status_code=exc.status_code)


@app.exception_handler(sqlite3.Error)
def handle_database_error(request: Request, exc: sqlite3.Error) -> JSONResponse:
    if isinstance(exc, sqlite3.IntegrityError):
        logger.warning("Integrity error on %s: %s", request.url.path, exc)
        return JSONResponse({"ok": False, "error": user_friendly_error(exc)}, status_code=400)
    logger.exception("Database error on %s", request.url.path)
    return JSONResponse({"ok": False, "error": user_friendly_error(exc)}, status_code=500)


@app.on_event("startup")
def on_startup() -> None:
    init_db(DB_PATH)


# ---------------------------------------------------------------------------
# Session and role dependencies
# ---------------------------------------------------------------------------

def current_user(request: Request) -> dict[str, Any] | None:
    return auth.get_session_user(DB_PATH, request.cookies.get(config.SESSION_COOKIE_NAME))


def require_reader(user: dict[str, Any] | None = Depends(current_user)) -> dict[str, Any]:
    return auth.require_role(user, set(auth.ROLE_LABELS))


def require_writer(user: dict[str, Any] | None = Depends(current_user)) -> dict[str, Any]:
    return auth.require_role(user, auth.WRITE_ROLES)


def require_restricted(user: dict[str, Any] | None = Depends(current_user)) -> dict[str, Any]:
    return auth.require_role(user, auth.RESTRICTED_MODULE_ROLES)


def require_admin(user: dict[str, Any] | None = Depends(current_user)) -> dict[str, Any]:
    return auth.require_role(user, auth.ADMIN_ROLES)


def _set_session_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        config.SESSION_COOKIE_NAME,
        token,
        max_age=config.SESSION_DURATION_HOURS * 3600,
        httponly=True,
        secure=config.SESSION_COOKIE_SECURE,
        samesite="lax",
    )


def _download(content: bytes | str, filename: str, media_type: str) -> Response:
    return Response(
        content=content,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


def _read_upload(file: UploadFile) -> tuple[list[str], list[dict[str, Any]]]:
    return read_table(file.filename or "", file.file.read())


def _mappings(raw: str | None) -> list[dict[str, Any]] | None:
    if not raw:
        return None
    try:
        mappings = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise HTTPException(status_code=400, detail="mappings must be a JSON list") from exc
    if not isinstance(mappings, list):
        raise HTTPException(status_code=400, detail="mappings must be a JSON list")
    return mappings


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------

class SignUpRequest(BaseModel):
    email: str
    password: str
    full_name: str | None = None


class SignInRequest(BaseModel):
    email: str
    password: str


class RoleRequest(BaseModel):
    role: str | None = None


class BrokerSettingsRequest(BaseModel):
    name: str
    identification: str | None = None
    email: str | None = None
    phone: str | None = None
    address: str | None = None
    logo_url: str | None = None


class ClientRequest(BaseModel):
    identification_type: str | None = None
    identification_number: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None
    phone: str | None = None
    mobile: str | None = None
    address: str | None = None
    city: str | None = None
    province: str | None = None
    birth_date: str | None = None
    occupation: str | None = None
    workplace: str | None = None
    notes: str | None = None


class BeneficiaryRequest(BaseModel):
    first_name: str | None = None
    last_name: str | None = None
    identification_type: str | None = None
    identification_number: str | None = None
    relationship: str | None = None
    birth_date: str | None = None
    phone: str | None = None
    email: str | None = None
    percentage: float | None = None


class PolicyRequest(BaseModel):
    client_id: str | None = None
    insurer_id: str | None = None
    product_id: str | None = None
    policy_number: str | None = None
    start_date: str | None = None
    end_date: str | None = None
    status: str | None = None
    premium: float | None = None
    payment_frequency: str | None = None
    coverage_amount: float | None = None
    deductible: float | None = None
    premium_payment_date: str | None = None
    notes: str | None = None
    primary_advisor_id: str | None = None
    secondary_advisor_id: str | None = None
    beneficiaries: list[BeneficiaryRequest] | None = None


class IdsRequest(BaseModel):
    ids: list[str]


class BatchRequest(BaseModel):
    insurer_id: str
    batch_date: str
    currency: str = "USD"
    notes: str | None = None


class StatusRequest(BaseModel):
    status: str
    notes: str | None = None


class EntryRequest(BaseModel):
    policy_number: str | None = None
    client_name: str
    plan_type: str | None = None
    premium: float
    commission_rate: float
    commission_amount: float | None = None


class EntriesRequest(BaseModel):
    entries: list[EntryRequest]


class EntryUpdateRequest(BaseModel):
    premium: float | None = None
    commission_rate: float | None = None
    commission_amount: float | None = None


class SplitRequest(BaseModel):
    advisor_id: str
    percentage: float


class AssignmentsRequest(BaseModel):
    splits: list[SplitRequest]


class RuleRequest(BaseModel):
    advisor_id: str
    insurer_id: str
    commission_percentage: float
    plan_type: str | None = None


class AdvisorContactRequest(BaseModel):
    promised_date: str
    notes: str | None = None


class RenewalConfigRequest(BaseModel):
    policy_id: str
    renewal_date: str
    current_amount: float | None = None
    new_amount: float | None = None
    status: str | None = None
    scheduled_send_date: str | None = None
    notes: str | None = None


class ConsumptionRequest(BaseModel):
    policy_id: str | None = None
    beneficiary_name: str | None = None
    usage_type_id: str | None = None
    usage_date: str | None = None
    description: str | None = None
    amount_bs: float | None = None
    amount_usd: float | None = None


class AccountRequest(BaseModel):
    code: str
    name: str
    account_class: str
    nature: str
    level: int = 1
    parent_id: str | None = None
    description: str | None = None
    is_active: bool = True


class CostCenterRequest(BaseModel):
    code: str
    name: str
    center_type: str = "operativo"
    is_active: bool = True


class ExchangeRateRequest(BaseModel):
    rate: float
    rate_date: str | None = None
    currency: str = "USD"
    source: str = "BCV"


class JournalLineRequest(BaseModel):
    account_id: str
    cost_center_id: str | None = None
    description: str | None = None
    transaction_type: str | None = None
    applies_igtf: bool = False
    debit_usd: float = 0.0
    credit_usd: float = 0.0


class JournalEntryRequest(BaseModel):
    entry_date: str
    description: str
    exchange_rate: float
    status: str = "borrador"
    lines: list[JournalLineRequest]


class JournalEntryUpdateRequest(BaseModel):
    entry_date: str | None = None
    description: str | None = None
    exchange_rate: float | None = None
    lines: list[JournalLineRequest] | None = None


class InvoiceRequest(BaseModel):
    invoice_number: str
    invoice_date: str
    total_amount: float
    insurer_id: str | None = None
    description: str | None = None


class CashMovementRequest(BaseModel):
    income_date: str | None = None
    expense_date: str | None = None
    description: str | None = None
    amount_usd: float | None = None
    amount_ves: float | None = None
    exchange_rate: float | None = None
    bank_id: str | None = None
    beneficiary: str | None = None
    due_date: str | None = None
    notes: str | None = None


class FlagRequest(BaseModel):
    value: bool = True


class OpportunityProductRequest(BaseModel):
    insurer_id: str | None = None
    product_id: str | None = None
    annual_premium: float = 0.0
    commission_rate: float = 0.0
    payment_frequency: str = "anual"
    notes: str | None = None


class OpportunityRequest(BaseModel):
    client_name: str | None = None
    contact_email: str | None = None
    contact_phone: str | None = None
    client_id: str | None = None
    advisor_id: str | None = None
    stage: str | None = None
    expected_close_date: str | None = None
    notes: str | None = None
    products: list[OpportunityProductRequest] | None = None


class StageRequest(BaseModel):
    stage: str
    notes: str | None = None
    lost_reason: str | None = None


class SalesNoteRequest(BaseModel):
    content: str


class SalesInvestmentRequest(BaseModel):
    description: str
    amount: float
    investment_date: str | None = None


class PartnerRequest(BaseModel):
    name: str | None = None
    category: str | None = None
    contact_name: str | None = None
    email: str | None = None
    phone: str | None = None
    is_active: bool | None = None


class ServiceRequest(BaseModel):
    partner_id: str | None = None
    name: str | None = None
    description: str | None = None
    discount_type: str | None = None
    discount_value: float | None = None
    is_active: bool | None = None


class DiscountCodeRequest(BaseModel):
    service_id: str
    client_id: str | None = None
    max_uses: int = 1
    expires_at: str | None = None


class RedeemRequest(BaseModel):
    code: str


class BirthdaySendRequest(BaseModel):
    client_id: str
    channels: list[str]
    year: int | None = None
    message: str | None = None


# ---------------------------------------------------------------------------
# Health and auth
# ---------------------------------------------------------------------------

@app.get("/health")
def health() -> JSONResponse:
    return JSONResponse({"ok": True, "service": "brokerdesk"})


@app.get("/api/v1/health")
def api_health() -> JSONResponse:
    return JSONResponse({"ok": True})


@app.post("/api/v1/auth/signup")
def api_signup(payload: SignUpRequest) -> JSONResponse:
    user = auth.register_user(DB_PATH, payload.email, payload.password, payload.full_name)
    response = JSONResponse({"ok": True, "user": user})
    _set_session_cookie(response, auth.create_session(DB_PATH, user["id"]))
    return response


@app.post("/api/v1/auth/login")
def api_login(payload: SignInRequest) -> JSONResponse:
    user = auth.authenticate(DB_PATH, payload.email, payload.password)
    response = JSONResponse({"ok": True, "user": user})
    _set_session_cookie(response, auth.create_session(DB_PATH, user["id"]))
    return response


@app.post("/api/v1/auth/logout")
def api_logout(request: Request) -> JSONResponse:
    auth.revoke_session(DB_PATH, request.cookies.get(config.SESSION_COOKIE_NAME))
    response = JSONResponse({"ok": True})
    response.delete_cookie(config.SESSION_COOKIE_NAME)
    return response


@app.get("/api/v1/auth/me")
def api_me(user: dict[str, Any] | None = Depends(current_user)) -> JSONResponse:
    if user is None:
        raise HTTPException(status_code=401, detail="not signed in")
    user["role_label"] = auth.ROLE_LABELS.get(user["role"] or "", "Sin rol")
    return JSONResponse({"ok": True, "user": user})


@app.get("/api/v1/auth/google/start")
def api_google_start() -> JSONResponse:
    return JSONResponse({"ok": True, "url": auth.google_authorize_url(DB_PATH)})


@app.get("/api/v1/auth/google/callback")
def api_google_callback(code: str, state: str | None = None) -> RedirectResponse:
    user = auth.complete_google_sign_in(DB_PATH, code, state)
    response = RedirectResponse(url=f"{config.FRONTEND_BASE_URL}/", status_code=302)
    _set_session_cookie(response, auth.create_session(DB_PATH, user["id"]))
    return response


@app.get("/api/v1/users")
def api_users(user: dict[str, Any] = Depends(require_admin)) -> JSONResponse:
    rows = auth.list_users(DB_PATH)
    return JSONResponse({"rows": rows, "count": len(rows)})


@app.put("/api/v1/users/{user_id}/role")
def api_user_role(user_id: str, payload: RoleRequest, user: dict[str, Any] = Depends(require_admin)) -> JSONResponse:
    row = auth.set_user_role(DB_PATH, user_id, payload.role)
    log_audit_event(DB_PATH, "usuarios", "role_changed", "users", user_id, {"role": payload.role}, user["email"])
    return JSONResponse({"ok": True, "user": row})


@app.get("/api/v1/audit")
def api_audit(
    module: str | None = None,
    record_id: str | None = None,
    limit: int = 200,
    user: dict[str, Any] = Depends(require_restricted),
) -> JSONResponse:
    rows = list_audit_events(DB_PATH, module=module, record_id=record_id, limit=limit)
    return JSONResponse({"rows": rows, "count": len(rows)})


# ---------------------------------------------------------------------------
# Settings and catalogs
# ---------------------------------------------------------------------------

@app.get("/api/v1/settings/broker")
def api_broker_settings(user: dict[str, Any] = Depends(require_reader)) -> JSONResponse:
    return JSONResponse(catalog.get_broker_settings(DB_PATH))


@app.put("/api/v1/settings/broker")
def api_broker_settings_update(payload: BrokerSettingsRequest, user: dict[str, Any] = Depends(require_admin)) -> JSONResponse:
    return JSONResponse({"ok": True, "settings": catalog.upsert_broker_settings(DB_PATH, payload.model_dump())})


@app.get("/api/v1/catalog/{table}")
def api_catalog(
    table: str,
    active_only: bool = False,
    insurer_id: str | None = None,
    user: dict[str, Any] = Depends(require_reader),
) -> JSONResponse:
    rows = catalog.list_catalog(DB_PATH, table, active_only=active_only, insurer_id=insurer_id)
    return JSONResponse({"rows": rows, "count": len(rows)})


@app.post("/api/v1/catalog/{table}")
def api_catalog_create(table: str, payload: dict[str, Any], user: dict[str, Any] = Depends(require_writer)) -> JSONResponse:
    return JSONResponse({"ok": True, "item": catalog.save_catalog_item(DB_PATH, table, payload)})


@app.put("/api/v1/catalog/{table}/{item_id}")
def api_catalog_update(
    table: str,
    item_id: str,
    payload: dict[str, Any],
    user: dict[str, Any] = Depends(require_writer),
) -> JSONResponse:
    return JSONResponse({"ok": True, "item": catalog.save_catalog_item(DB_PATH, table, payload, item_id)})


@app.delete("/api/v1/catalog/{table}/{item_id}")
def api_catalog_delete(table: str, item_id: str, user: dict[str, Any] = Depends(require_writer)) -> JSONResponse:
    if not catalog.delete_catalog_item(DB_PATH, table, item_id):
        raise HTTPException(status_code=404, detail="item not found")
    return JSONResponse({"ok": True})


# ---------------------------------------------------------------------------
# Clients, policies, beneficiaries
# ---------------------------------------------------------------------------

@app.get("/api/v1/clients")
def api_clients(search: str | None = None, limit: int = 500, user: dict[str, Any] = Depends(require_reader)) -> JSONResponse:
    rows = clients.list_clients(DB_PATH, search=search, limit=limit)
    return JSONResponse({"rows": rows, "count": len(rows)})


@app.post("/api/v1/clients")
def api_client_create(payload: ClientRequest, user: dict[str, Any] = Depends(require_writer)) -> JSONResponse:
    return JSONResponse({"ok": True, "client": clients.create_client(DB_PATH, payload.model_dump(exclude_unset=True))})


@app.get("/api/v1/clients/export.xlsx")
def api_clients_export(user: dict[str, Any] = Depends(require_reader)) -> Response:
    log_audit_event(DB_PATH, "clientes", "export", user_email=user["email"])
    return _download(client_import.export_clients_workbook(DB_PATH), "clientes.xlsx", XLSX_MEDIA_TYPE)


@app.get("/api/v1/clients/import/template.xlsx")
def api_clients_template(user: dict[str, Any] = Depends(require_reader)) -> Response:
    return _download(client_import.client_import_template(), "plantilla_clientes.xlsx", XLSX_MEDIA_TYPE)


@app.post("/api/v1/clients/import/preview")
def api_clients_import_preview(
    file: UploadFile = File(...),
    mappings: str | None = Form(None),
    user: dict[str, Any] = Depends(require_writer),
) -> JSONResponse:
    headers, rows = _read_upload(file)
    column_map = _mappings(mappings) or client_import.auto_map_client_columns(headers)
    validated = client_import.validate_client_import(rows, column_map, **client_import.load_import_context(DB_PATH))
    return JSONResponse(
        {
            "headers": headers,
            "mappings": column_map,
            "missing_required": client_import.missing_required_fields(column_map),
            "rows": validated,
            "valid": sum(1 for v in validated if v["is_valid"]),
            "invalid": sum(1 for v in validated if not v["is_valid"]),
        }
    )


@app.post("/api/v1/clients/import")
def api_clients_import(
    file: UploadFile = File(...),
    mappings: str | None = Form(None),
    user: dict[str, Any] = Depends(require_writer),
) -> JSONResponse:
    headers, rows = _read_upload(file)
    column_map = _mappings(mappings) or client_import.auto_map_client_columns(headers)
    if not client_import.required_fields_mapped(column_map):
        raise HTTPException(
            status_code=400,
            detail=f"missing required columns: {', '.join(client_import.missing_required_fields(column_map))}",
        )
    result = client_import.import_client_rows(DB_PATH, rows, column_map)
    log_audit_event(DB_PATH, "clientes", "import", details={k: v for k, v in result.items() if k != "errors"}, user_email=user["email"])
    return JSONResponse({"ok": True, **result})


@app.get("/api/v1/clients/{client_id}")
def api_client(client_id: str, user: dict[str, Any] = Depends(require_reader)) -> JSONResponse:
    return JSONResponse(clients.get_client(DB_PATH, client_id))


@app.put("/api/v1/clients/{client_id}")
def api_client_update(client_id: str, payload: ClientRequest, user: dict[str, Any] = Depends(require_writer)) -> JSONResponse:
    return JSONResponse({"ok": True, "client": clients.update_client(DB_PATH, client_id, payload.model_dump(exclude_unset=True))})


@app.delete("/api/v1/clients/{client_id}")
def api_client_delete(client_id: str, user: dict[str, Any] = Depends(require_writer)) -> JSONResponse:
    if not clients.delete_client(DB_PATH, client_id):
        raise HTTPException(status_code=404, detail="client not found")
    log_audit_event(DB_PATH, "clientes", "delete", "clients", client_id, user_email=user["email"])
    return JSONResponse({"ok": True})


@app.get("/api/v1/policies")
def api_policies(
    client_id: str | None = None,
    status: str | None = None,
    search: str | None = None,
    limit: int = 1000,
    user: dict[str, Any] = Depends(require_reader),
) -> JSONResponse:
    rows = clients.list_policies(DB_PATH, client_id=client_id, status=status, search=search, limit=limit)
    return JSONResponse({"rows": rows, "count": len(rows)})


@app.post("/api/v1/policies")
def api_policy_create(payload: PolicyRequest, user: dict[str, Any] = Depends(require_writer)) -> JSONResponse:
    return JSONResponse({"ok": True, "policy": clients.create_policy(DB_PATH, payload.model_dump(exclude_unset=True))})


@app.get("/api/v1/policies/{policy_id}")
def api_policy(policy_id: str, user: dict[str, Any] = Depends(require_reader)) -> JSONResponse:
    return JSONResponse(clients.get_policy(DB_PATH, policy_id))


@app.put("/api/v1/policies/{policy_id}")
def api_policy_update(policy_id: str, payload: PolicyRequest, user: dict[str, Any] = Depends(require_writer)) -> JSONResponse:
    return JSONResponse({"ok": True, "policy": clients.update_policy(DB_PATH, policy_id, payload.model_dump(exclude_unset=True))})


@app.delete("/api/v1/policies/{policy_id}")
def api_policy_delete(policy_id: str, user: dict[str, Any] = Depends(require_writer)) -> JSONResponse:
    if not clients.delete_policy(DB_PATH, policy_id):
        raise HTTPException(status_code=404, detail="policy not found")
    return JSONResponse({"ok": True})


@app.get("/api/v1/policies/{policy_id}/beneficiaries")
def api_beneficiaries(policy_id: str, user: dict[str, Any] = Depends(require_reader)) -> JSONResponse:
    rows = clients.list_beneficiaries(DB_PATH, policy_id)
    return JSONResponse({"rows": rows, "count": len(rows)})


@app.post("/api/v1/policies/{policy_id}/beneficiaries")
def api_beneficiary_create(
    policy_id: str,
    payload: BeneficiaryRequest,
    user: dict[str, Any] = Depends(require_writer),
) -> JSONResponse:
    return JSONResponse({"ok": True, "beneficiary": clients.add_beneficiary(DB_PATH, policy_id, payload.model_dump(exclude_unset=True))})


@app.put("/api/v1/beneficiaries/{beneficiary_id}")
def api_beneficiary_update(
    beneficiary_id: str,
    payload: BeneficiaryRequest,
    user: dict[str, Any] = Depends(require_writer),
) -> JSONResponse:
    row = clients.update_beneficiary(DB_PATH, beneficiary_id, payload.model_dump(exclude_unset=True))
    return JSONResponse({"ok": True, "beneficiary": row})


@app.delete("/api/v1/beneficiaries/{beneficiary_id}")
def api_beneficiary_delete(beneficiary_id: str, user: dict[str, Any] = Depends(require_writer)) -> JSONResponse:
    if not clients.delete_beneficiary(DB_PATH, beneficiary_id):
        raise HTTPException(status_code=404, detail="beneficiary not found")
    return JSONResponse({"ok": True})


# ---------------------------------------------------------------------------
# Commissions
# ---------------------------------------------------------------------------

@app.get("/api/v1/commissions/batches")
def api_batches(
    status: str | None = None,
    insurer_id: str | None = None,
    user: dict[str, Any] = Depends(require_restricted),
) -> JSONResponse:
    rows = commissions.list_batches(DB_PATH, status=status, insurer_id=insurer_id)
    return JSONResponse({"rows": rows, "count": len(rows)})


@app.post("/api/v1/commissions/batches")
def api_batch_create(payload: BatchRequest, user: dict[str, Any] = Depends(require_restricted)) -> JSONResponse:
    batch = commissions.create_batch(DB_PATH, payload.insurer_id, payload.batch_date, payload.currency, payload.notes)
    return JSONResponse({"ok": True, "batch": batch})


@app.post("/api/v1/commissions/batches/delete")
def api_batches_delete(payload: IdsRequest, user: dict[str, Any] = Depends(require_restricted)) -> JSONResponse:
    deleted = commissions.delete_batches(DB_PATH, payload.ids)
    log_audit_event(DB_PATH, "comisiones", "batches_deleted", "commission_batches", None, {"ids": payload.ids}, user["email"])
    return JSONResponse({"ok": True, "deleted": deleted})


@app.get("/api/v1/commissions/batches/{batch_id}")
def api_batch(batch_id: str, user: dict[str, Any] = Depends(require_restricted)) -> JSONResponse:
    return JSONResponse(commissions.get_batch(DB_PATH, batch_id))


@app.put("/api/v1/commissions/batches/{batch_id}/status")
def api_batch_status(batch_id: str, payload: StatusRequest, user: dict[str, Any] = Depends(require_restricted)) -> JSONResponse:
    return JSONResponse({"ok": True, "batch": commissions.update_batch_status(DB_PATH, batch_id, payload.status)})


@app.post("/api/v1/commissions/batches/{batch_id}/entries")
def api_entries_save(batch_id: str, payload: EntriesRequest, user: dict[str, Any] = Depends(require_restricted)) -> JSONResponse:
    result = commissions.save_entries(DB_PATH, batch_id, [e.model_dump() for e in payload.entries])
    return JSONResponse({"ok": True, **result})


@app.post("/api/v1/commissions/batches/{batch_id}/verify")
def api_batch_verify(batch_id: str, user: dict[str, Any] = Depends(require_restricted)) -> JSONResponse:
    result = commissions.verify_batch(DB_PATH, batch_id)
    log_audit_event(DB_PATH, "comisiones", "batch_verified", "commission_batches", batch_id, result, user["email"])
    return JSONResponse({"ok": True, **result})


@app.post("/api/v1/commissions/entries/delete")
def api_entries_delete(payload: IdsRequest, user: dict[str, Any] = Depends(require_restricted)) -> JSONResponse:
    return JSONResponse({"ok": True, "deleted": commissions.delete_entries(DB_PATH, payload.ids)})


@app.patch("/api/v1/commissions/entries/{entry_id}")
def api_entry_update(entry_id: str, payload: EntryUpdateRequest, user: dict[str, Any] = Depends(require_restricted)) -> JSONResponse:
    entry = commissions.update_entry(
        DB_PATH,
        entry_id,
        premium=payload.premium,
        commission_rate=payload.commission_rate,
        commission_amount_value=payload.commission_amount,
    )
    return JSONResponse({"ok": True, "entry": entry})


@app.put("/api/v1/commissions/entries/{entry_id}/assignments")
def api_assignments_save(entry_id: str, payload: AssignmentsRequest, user: dict[str, Any] = Depends(require_restricted)) -> JSONResponse:
    result = commissions.save_assignments(DB_PATH, entry_id, [s.model_dump() for s in payload.splits])
    return JSONResponse({"ok": True, **result})


@app.post("/api/v1/commissions/assignments/delete")
def api_assignments_delete(payload: IdsRequest, user: dict[str, Any] = Depends(require_restricted)) -> JSONResponse:
    return JSONResponse({"ok": True, "deleted": commissions.delete_assignments(DB_PATH, payload.ids)})


@app.get("/api/v1/commissions/rules")
def api_rules(advisor_id: str | None = None, user: dict[str, Any] = Depends(require_restricted)) -> JSONResponse:
    rows = commissions.list_rules(DB_PATH, advisor_id=advisor_id)
    return JSONResponse({"rows": rows, "count": len(rows)})


@app.put("/api/v1/commissions/rules")
def api_rule_upsert(payload: RuleRequest, user: dict[str, Any] = Depends(require_restricted)) -> JSONResponse:
    rule = commissions.upsert_rule(
        DB_PATH, payload.advisor_id, payload.insurer_id, payload.commission_percentage, payload.plan_type
    )
    return JSONResponse({"ok": True, "rule": rule})


@app.get("/api/v1/commissions/rules/suggested")
def api_rule_suggested(
    advisor_id: str,
    insurer_id: str,
    plan_type: str | None = None,
    user: dict[str, Any] = Depends(require_restricted),
) -> JSONResponse:
    return JSONResponse({"rate": commissions.suggested_rate(DB_PATH, advisor_id, insurer_id, plan_type)})


@app.delete("/api/v1/commissions/rules/{rule_id}")
def api_rule_delete(rule_id: str, user: dict[str, Any] = Depends(require_restricted)) -> JSONResponse:
    if not commissions.delete_rule(DB_PATH, rule_id):
        raise HTTPException(status_code=404, detail="rule not found")
    return JSONResponse({"ok": True})


def _breakdown(
    batch_id: str | None,
    advisor_id: str | None,
    date_from: str | None,
    date_to: str | None,
) -> list[dict[str, Any]]:
    return commissions.commission_breakdown(
        DB_PATH, batch_id=batch_id, advisor_id=advisor_id, date_from=date_from, date_to=date_to
    )


def _period(date_from: str | None, date_to: str | None) -> str | None:
    if not date_from and not date_to:
        return None
    return f"{documents.format_date_short(date_from)} - {documents.format_date_short(date_to)}"


@app.get("/api/v1/commissions/breakdown")
def api_breakdown(
    batch_id: str | None = None,
    advisor_id: str | None = None,
    date_from: str | None = None,
    date_to: str | None = None,
    user: dict[str, Any] = Depends(require_restricted),
) -> JSONResponse:
    rows = _breakdown(batch_id, advisor_id, date_from, date_to)
    return JSONResponse({"rows": rows, "count": len(rows), "total": round(sum(r["total"] for r in rows), 2)})


@app.get("/api/v1/commissions/breakdown.xlsx")
def api_breakdown_xlsx(
    batch_id: str | None = None,
    advisor_id: str | None = None,
    date_from: str | None = None,
    date_to: str | None = None,
    user: dict[str, Any] = Depends(require_restricted),
) -> Response:
    content = commissions.breakdown_workbook(_breakdown(batch_id, advisor_id, date_from, date_to))
    return _download(content, "desglose_comisiones.xlsx", XLSX_MEDIA_TYPE)


@app.get("/api/v1/commissions/breakdown.html")
def api_breakdown_html(
    batch_id: str | None = None,
    advisor_id: str | None = None,
    date_from: str | None = None,
    date_to: str | None = None,
    user: dict[str, Any] = Depends(require_restricted),
) -> Response:
    page = documents.commission_breakdown_html(
        _breakdown(batch_id, advisor_id, date_from, date_to),
        catalog.get_broker_settings(DB_PATH),
        _period(date_from, date_to),
    )
    return _download(page, "desglose_comisiones.html", "text/html; charset=utf-8")


@app.get("/api/v1/commissions/breakdown.pdf")
def api_breakdown_pdf(
    batch_id: str | None = None,
    advisor_id: str | None = None,
    date_from: str | None = None,
    date_to: str | None = None,
    user: dict[str, Any] = Depends(require_restricted),
) -> Response:
    content = pdf_templates.render_commission_breakdown_pdf(
        _breakdown(batch_id, advisor_id, date_from, date_to),
        catalog.get_broker_settings(DB_PATH),
        _period(date_from, date_to),
    )
    return _download(content, "desglose_comisiones.pdf", "application/pdf")


@app.post("/api/v1/commissions/import")
def api_commissions_import(
    file: UploadFile = File(...),
    batch_date: str | None = Form(None),
    user: dict[str, Any] = Depends(require_restricted),
) -> JSONResponse:
    _, rows = _read_upload(file)
    result = commissions.import_commission_rows(DB_PATH, rows, batch_date=batch_date)
    log_audit_event(DB_PATH, "comisiones", "bulk_import", details=result, user_email=user["email"])
    return JSONResponse({"ok": True, **result})


@app.get("/api/v1/commissions/template.xlsx")
def api_commissions_template(user: dict[str, Any] = Depends(require_restricted)) -> Response:
    return _download(commissions.commission_template(DB_PATH), "plantilla_comisiones.xlsx", XLSX_MEDIA_TYPE)


# ---------------------------------------------------------------------------
# Collections
# ---------------------------------------------------------------------------

@app.get("/api/v1/collections")
def api_collections(
    status: str | None = None,
    search: str | None = None,
    days_overdue_min: int | None = None,
    days_overdue_max: int | None = None,
    due_from: str | None = None,
    due_to: str | None = None,
    user: dict[str, Any] = Depends(require_reader),
) -> JSONResponse:
    rows = premium_collections.list_collections(
        DB_PATH,
        status=status,
        search=search,
        days_overdue_min=days_overdue_min,
        days_overdue_max=days_overdue_max,
        due_from=due_from,
        due_to=due_to,
    )
    return JSONResponse({"rows": rows, "count": len(rows)})


@app.get("/api/v1/collections/stats")
def api_collection_stats(user: dict[str, Any] = Depends(require_reader)) -> JSONResponse:
    return JSONResponse(premium_collections.collection_stats(DB_PATH))


@app.post("/api/v1/collections/sync")
def api_collections_sync(user: dict[str, Any] = Depends(require_writer)) -> JSONResponse:
    return JSONResponse({"ok": True, **premium_collections.sync_collections(DB_PATH)})


@app.get("/api/v1/collections/{collection_id}")
def api_collection(collection_id: str, user: dict[str, Any] = Depends(require_reader)) -> JSONResponse:
    return JSONResponse(premium_collections.get_collection(DB_PATH, collection_id))


@app.post("/api/v1/collections/{collection_id}/pay")
def api_collection_pay(collection_id: str, user: dict[str, Any] = Depends(require_writer)) -> JSONResponse:
    result = premium_collections.mark_paid(DB_PATH, collection_id, user["email"])
    log_audit_event(
        DB_PATH,
        "cobranzas",
        "marked_paid",
        "collections",
        collection_id,
        {"next_collection_id": result["next_collection"]["id"], "next_due": result["next_collection"]["due_date"]},
        user["email"],
    )
    return JSONResponse({"ok": True, **result})


@app.post("/api/v1/collections/{collection_id}/advisor-contact")
def api_collection_contact(
    collection_id: str,
    payload: AdvisorContactRequest,
    user: dict[str, Any] = Depends(require_writer),
) -> JSONResponse:
    row = premium_collections.mark_advisor_contact(DB_PATH, collection_id, payload.promised_date, payload.notes, user["email"])
    return JSONResponse({"ok": True, "collection": row})


@app.post("/api/v1/collections/{collection_id}/revert")
def api_collection_revert(collection_id: str, user: dict[str, Any] = Depends(require_writer)) -> JSONResponse:
    return JSONResponse({"ok": True, "collection": premium_collections.revert_to_pending(DB_PATH, collection_id, user["email"])})


@app.get("/api/v1/collections/{collection_id}/history")
def api_collection_history(collection_id: str, user: dict[str, Any] = Depends(require_reader)) -> JSONResponse:
    rows = premium_collections.collection_history(DB_PATH, collection_id)
    return JSONResponse({"rows": rows, "count": len(rows)})


@app.get("/api/v1/collections/{collection_id}/notice.html")
def api_collection_notice_html(collection_id: str, user: dict[str, Any] = Depends(require_reader)) -> Response:
    collection = premium_collections.get_collection(DB_PATH, collection_id)
    page = documents.premium_notice_html(collection, catalog.get_broker_settings(DB_PATH))
    return _download(page, f"aviso_cobro_{collection['policy_number'] or collection_id}.html", "text/html; charset=utf-8")


@app.get("/api/v1/collections/{collection_id}/notice.pdf")
def api_collection_notice_pdf(collection_id: str, user: dict[str, Any] = Depends(require_reader)) -> Response:
    collection = premium_collections.get_collection(DB_PATH, collection_id)
    content = pdf_templates.render_premium_notice_pdf(collection, catalog.get_broker_settings(DB_PATH))
    return _download(content, f"aviso_cobro_{collection['policy_number'] or collection_id}.pdf", "application/pdf")


# ---------------------------------------------------------------------------
# Renewals
# ---------------------------------------------------------------------------

@app.get("/api/v1/renewals")
def api_renewals(
    days_ahead: int = config.RENEWAL_WINDOW_DAYS,
    status: str | None = None,
    search: str | None = None,
    user: dict[str, Any] = Depends(require_reader),
) -> JSONResponse:
    rows = renewals.renewal_policies(DB_PATH, days_ahead=days_ahead, status=status, search=search)
    return JSONResponse({"rows": rows, "count": len(rows)})


@app.get("/api/v1/renewals/stats")
def api_renewal_stats(user: dict[str, Any] = Depends(require_reader)) -> JSONResponse:
    return JSONResponse(renewals.renewal_stats(DB_PATH))


@app.put("/api/v1/renewals/config")
def api_renewal_config(payload: RenewalConfigRequest, user: dict[str, Any] = Depends(require_writer)) -> JSONResponse:
    config_row = renewals.upsert_renewal_config(DB_PATH, **payload.model_dump())
    log_audit_event(
        DB_PATH,
        "renovaciones",
        "config_saved",
        "renewal_configs",
        config_row["id"],
        {"new_amount": config_row["new_amount"], "percentage": config_row["percentage"]},
        user["email"],
    )
    return JSONResponse({"ok": True, "config": config_row})


@app.put("/api/v1/renewals/config/{config_id}/status")
def api_renewal_status(config_id: str, payload: StatusRequest, user: dict[str, Any] = Depends(require_writer)) -> JSONResponse:
    return JSONResponse({"ok": True, "config": renewals.update_renewal_status(DB_PATH, config_id, payload.status, payload.notes)})


@app.delete("/api/v1/renewals/config/{config_id}")
def api_renewal_delete(config_id: str, user: dict[str, Any] = Depends(require_writer)) -> JSONResponse:
    if not renewals.delete_renewal_config(DB_PATH, config_id):
        raise HTTPException(status_code=404, detail="renewal config not found")
    return JSONResponse({"ok": True})


@app.post("/api/v1/renewals/process")
def api_renewals_process(user: dict[str, Any] = Depends(require_restricted)) -> JSONResponse:
    return JSONResponse({"ok": True, **renewals.process_scheduled_renewals(DB_PATH)})


@app.get("/api/v1/renewals/{policy_id}/notice")
def api_renewal_notice(policy_id: str, renewal_date: str | None = None, user: dict[str, Any] = Depends(require_reader)) -> JSONResponse:
    return JSONResponse(renewals.renewal_notice_data(DB_PATH, policy_id, renewal_date))


@app.get("/api/v1/renewals/{policy_id}/notice.html")
def api_renewal_notice_html(policy_id: str, renewal_date: str | None = None, user: dict[str, Any] = Depends(require_reader)) -> Response:
    notice = renewals.renewal_notice_data(DB_PATH, policy_id, renewal_date)
    filename = f"renovacion_{notice['policy']['policy_number'] or policy_id}.html"
    return _download(documents.renewal_notice_html(notice), filename, "text/html; charset=utf-8")


@app.get("/api/v1/renewals/{policy_id}/notice.pdf")
def api_renewal_notice_pdf(policy_id: str, renewal_date: str | None = None, user: dict[str, Any] = Depends(require_reader)) -> Response:
    notice = renewals.renewal_notice_data(DB_PATH, policy_id, renewal_date)
    filename = f"renovacion_{notice['policy']['policy_number'] or policy_id}.pdf"
    return _download(pdf_templates.render_renewal_notice_pdf(notice), filename, "application/pdf")


# ---------------------------------------------------------------------------
# Consumptions
# ---------------------------------------------------------------------------

@app.get("/api/v1/consumptions")
def api_consumptions(
    policy_id: str | None = None,
    beneficiary_name: str | None = None,
    usage_type_id: str | None = None,
    date_from: str | None = None,
    date_to: str | None = None,
    search: str | None = None,
    user: dict[str, Any] = Depends(require_reader),
) -> JSONResponse:
    rows = consumptions.list_consumptions(
        DB_PATH,
        policy_id=policy_id,
        beneficiary_name=beneficiary_name,
        usage_type_id=usage_type_id,
        date_from=date_from,
        date_to=date_to,
        search=search,
    )
    return JSONResponse({"rows": rows, "count": len(rows), "summary": consumptions.consumption_summary(rows)})


@app.post("/api/v1/consumptions")
def api_consumption_create(payload: ConsumptionRequest, user: dict[str, Any] = Depends(require_writer)) -> JSONResponse:
    row = consumptions.create_consumption(DB_PATH, payload.model_dump(), user["email"])
    return JSONResponse({"ok": True, "consumption": row})


@app.get("/api/v1/consumptions/template.xlsx")
def api_consumption_template(user: dict[str, Any] = Depends(require_reader)) -> Response:
    return _download(consumptions.consumption_template(DB_PATH), "plantilla_consumos.xlsx", XLSX_MEDIA_TYPE)


@app.post("/api/v1/consumptions/import/preview")
def api_consumption_import_preview(
    file: UploadFile = File(...),
    mappings: str | None = Form(None),
    user: dict[str, Any] = Depends(require_writer),
) -> JSONResponse:
    headers, rows = _read_upload(file)
    column_map = _mappings(mappings) or consumptions.auto_map_consumption_columns(headers)
    policies = clients.list_policies(DB_PATH, limit=100000)
    usage_types = catalog.list_catalog(DB_PATH, "usage_types", active_only=True)
    validated = consumptions.validate_consumption_import(rows, column_map, policies, usage_types)
    return JSONResponse(
        {
            "headers": headers,
            "mappings": column_map,
            "required_mapped": consumptions.consumption_required_mapped(column_map),
            "rows": validated,
            "valid": sum(1 for v in validated if v["is_valid"]),
            "invalid": sum(1 for v in validated if not v["is_valid"]),
        }
    )


@app.post("/api/v1/consumptions/import")
def api_consumption_import(
    file: UploadFile = File(...),
    mappings: str | None = Form(None),
    user: dict[str, Any] = Depends(require_writer),
) -> JSONResponse:
    headers, rows = _read_upload(file)
    column_map = _mappings(mappings) or consumptions.auto_map_consumption_columns(headers)
    result = consumptions.import_consumption_rows(DB_PATH, rows, column_map, user["email"])
    log_audit_event(
        DB_PATH, "consumos", "import", details={"success": result["success"], "errors": result["errors"]}, user_email=user["email"]
    )
    return JSONResponse({"ok": True, **result})


@app.put("/api/v1/consumptions/{consumption_id}")
def api_consumption_update(
    consumption_id: str,
    payload: ConsumptionRequest,
    user: dict[str, Any] = Depends(require_writer),
) -> JSONResponse:
    row = consumptions.update_consumption(DB_PATH, consumption_id, payload.model_dump(exclude_unset=True))
    return JSONResponse({"ok": True, "consumption": row})


@app.delete("/api/v1/consumptions/{consumption_id}")
def api_consumption_delete(consumption_id: str, user: dict[str, Any] = Depends(require_writer)) -> JSONResponse:
    if not consumptions.delete_consumption(DB_PATH, consumption_id, user["email"]):
        raise HTTPException(status_code=404, detail="consumption not found")
    return JSONResponse({"ok": True})


# ---------------------------------------------------------------------------
# Finances
# ---------------------------------------------------------------------------

@app.get("/api/v1/finances/accounts")
def api_accounts(
    account_class: str | None = None,
    active_only: bool = False,
    user: dict[str, Any] = Depends(require_restricted),
) -> JSONResponse:
    rows = finances.list_accounts(DB_PATH, account_class=account_class, active_only=active_only)
    return JSONResponse({"rows": rows, "count": len(rows)})


@app.post("/api/v1/finances/accounts")
def api_account_create(payload: AccountRequest, user: dict[str, Any] = Depends(require_restricted)) -> JSONResponse:
    return JSONResponse({"ok": True, "account": finances.save_account(DB_PATH, payload.model_dump())})


@app.put("/api/v1/finances/accounts/{account_id}")
def api_account_update(account_id: str, payload: AccountRequest, user: dict[str, Any] = Depends(require_restricted)) -> JSONResponse:
    return JSONResponse({"ok": True, "account": finances.save_account(DB_PATH, payload.model_dump(), account_id)})


@app.delete("/api/v1/finances/accounts/{account_id}")
def api_account_delete(account_id: str, user: dict[str, Any] = Depends(require_restricted)) -> JSONResponse:
    if not finances.delete_account(DB_PATH, account_id):
        raise HTTPException(status_code=404, detail="account not found")
    return JSONResponse({"ok": True})


@app.get("/api/v1/finances/cost-centers")
def api_cost_centers(active_only: bool = False, user: dict[str, Any] = Depends(require_restricted)) -> JSONResponse:
    rows = finances.list_cost_centers(DB_PATH, active_only=active_only)
    return JSONResponse({"rows": rows, "count": len(rows)})


@app.post("/api/v1/finances/cost-centers")
def api_cost_center_create(payload: CostCenterRequest, user: dict[str, Any] = Depends(require_restricted)) -> JSONResponse:
    return JSONResponse({"ok": True, "cost_center": finances.save_cost_center(DB_PATH, payload.model_dump())})


@app.put("/api/v1/finances/cost-centers/{center_id}")
def api_cost_center_update(center_id: str, payload: CostCenterRequest, user: dict[str, Any] = Depends(require_restricted)) -> JSONResponse:
    return JSONResponse({"ok": True, "cost_center": finances.save_cost_center(DB_PATH, payload.model_dump(), center_id)})


@app.delete("/api/v1/finances/cost-centers/{center_id}")
def api_cost_center_delete(center_id: str, user: dict[str, Any] = Depends(require_restricted)) -> JSONResponse:
    if not finances.delete_cost_center(DB_PATH, center_id):
        raise HTTPException(status_code=404, detail="cost center not found")
    return JSONResponse({"ok": True})


@app.get("/api/v1/finances/exchange-rates")
def api_exchange_rates(currency: str | None = None, limit: int = 90, user: dict[str, Any] = Depends(require_restricted)) -> JSONResponse:
    rows = finances.list_exchange_rates(DB_PATH, currency=currency, limit=limit)
    return JSONResponse({"rows": rows, "count": len(rows)})


@app.get("/api/v1/finances/exchange-rates/latest")
def api_exchange_rate_latest(
    currency: str = "USD",
    source: str | None = None,
    user: dict[str, Any] = Depends(require_restricted),
) -> JSONResponse:
    return JSONResponse({"rate": finances.latest_exchange_rate(DB_PATH, currency=currency, source=source)})


@app.post("/api/v1/finances/exchange-rates")
def api_exchange_rate_record(payload: ExchangeRateRequest, user: dict[str, Any] = Depends(require_restricted)) -> JSONResponse:
    return JSONResponse({"ok": True, "rate": finances.record_exchange_rate(DB_PATH, **payload.model_dump())})


@app.get("/api/v1/finances/journal-entries")
def api_journal_entries(
    date_from: str | None = None,
    date_to: str | None = None,
    status: str | None = None,
    user: dict[str, Any] = Depends(require_restricted),
) -> JSONResponse:
    rows = finances.list_journal_entries(DB_PATH, date_from=date_from, date_to=date_to, status=status)
    return JSONResponse({"rows": rows, "count": len(rows)})


@app.post("/api/v1/finances/journal-entries")
def api_journal_entry_create(payload: JournalEntryRequest, user: dict[str, Any] = Depends(require_restricted)) -> JSONResponse:
    entry = finances.create_journal_entry(
        DB_PATH,
        payload.entry_date,
        payload.description,
        [line.model_dump() for line in payload.lines],
        payload.exchange_rate,
        payload.status,
        user["email"],
    )
    log_audit_event(DB_PATH, "finanzas", "entry_created", "journal_entries", entry["id"], {"entry_number": entry["entry_number"]}, user["email"])
    return JSONResponse({"ok": True, "entry": entry})


@app.get("/api/v1/finances/journal-entries/{entry_id}")
def api_journal_entry(entry_id: str, user: dict[str, Any] = Depends(require_restricted)) -> JSONResponse:
    return JSONResponse(finances.get_journal_entry(DB_PATH, entry_id))


@app.put("/api/v1/finances/journal-entries/{entry_id}")
def api_journal_entry_update(
    entry_id: str,
    payload: JournalEntryUpdateRequest,
    user: dict[str, Any] = Depends(require_restricted),
) -> JSONResponse:
    entry = finances.update_journal_entry(
        DB_PATH,
        entry_id,
        entry_date=payload.entry_date,
        description=payload.description,
        lines=[line.model_dump() for line in payload.lines] if payload.lines is not None else None,
        exchange_rate=payload.exchange_rate,
    )
    return JSONResponse({"ok": True, "entry": entry})


@app.put("/api/v1/finances/journal-entries/{entry_id}/status")
def api_journal_entry_status(entry_id: str, payload: StatusRequest, user: dict[str, Any] = Depends(require_restricted)) -> JSONResponse:
    entry = finances.set_entry_status(DB_PATH, entry_id, payload.status)
    log_audit_event(DB_PATH, "finanzas", "entry_status", "journal_entries", entry_id, {"status": payload.status}, user["email"])
    return JSONResponse({"ok": True, "entry": entry})


@app.delete("/api/v1/finances/journal-entries/{entry_id}")
def api_journal_entry_delete(entry_id: str, user: dict[str, Any] = Depends(require_restricted)) -> JSONResponse:
    finances.delete_journal_entry(DB_PATH, entry_id)
    return JSONResponse({"ok": True})


@app.get("/api/v1/finances/reports/trial-balance")
def api_trial_balance(date_from: str | None = None, date_to: str | None = None, user: dict[str, Any] = Depends(require_restricted)) -> JSONResponse:
    return JSONResponse(finances.trial_balance(DB_PATH, date_from, date_to))


@app.get("/api/v1/finances/reports/income-statement")
def api_income_statement(date_from: str | None = None, date_to: str | None = None, user: dict[str, Any] = Depends(require_restricted)) -> JSONResponse:
    return JSONResponse(finances.income_statement(DB_PATH, date_from, date_to))


@app.get("/api/v1/finances/reports/balance-sheet")
def api_balance_sheet(as_of: str | None = None, user: dict[str, Any] = Depends(require_restricted)) -> JSONResponse:
    return JSONResponse(finances.balance_sheet(DB_PATH, as_of))


@app.get("/api/v1/finances/reports/ledger/{account_id}")
def api_general_ledger(
    account_id: str,
    date_from: str | None = None,
    date_to: str | None = None,
    user: dict[str, Any] = Depends(require_restricted),
) -> JSONResponse:
    return JSONResponse(finances.general_ledger(DB_PATH, account_id, date_from, date_to))


@app.get("/api/v1/finances/invoices")
def api_invoices(status: str | None = None, user: dict[str, Any] = Depends(require_restricted)) -> JSONResponse:
    rows = finances.list_invoices(DB_PATH, status=status)
    return JSONResponse({"rows": rows, "count": len(rows)})


@app.post("/api/v1/finances/invoices")
def api_invoice_create(payload: InvoiceRequest, user: dict[str, Any] = Depends(require_restricted)) -> JSONResponse:
    return JSONResponse({"ok": True, "invoice": finances.create_invoice(DB_PATH, **payload.model_dump())})


@app.put("/api/v1/finances/invoices/{invoice_id}/status")
def api_invoice_status(invoice_id: str, payload: StatusRequest, user: dict[str, Any] = Depends(require_restricted)) -> JSONResponse:
    return JSONResponse({"ok": True, "invoice": finances.set_invoice_status(DB_PATH, invoice_id, payload.status)})


@app.delete("/api/v1/finances/invoices/{invoice_id}")
def api_invoice_delete(invoice_id: str, user: dict[str, Any] = Depends(require_restricted)) -> JSONResponse:
    if not finances.delete_invoice(DB_PATH, invoice_id):
        raise HTTPException(status_code=404, detail="invoice not found")
    return JSONResponse({"ok": True})


@app.get("/api/v1/finances/income")
def api_income(month: str | None = None, user: dict[str, Any] = Depends(require_restricted)) -> JSONResponse:
    rows = finances.list_income(DB_PATH, month=month)
    return JSONResponse({"rows": rows, "count": len(rows)})


@app.post("/api/v1/finances/income")
def api_income_create(payload: CashMovementRequest, user: dict[str, Any] = Depends(require_restricted)) -> JSONResponse:
    row = finances.save_income(DB_PATH, payload.model_dump(exclude_unset=True), user=user["email"])
    return JSONResponse({"ok": True, "income": row})


@app.put("/api/v1/finances/income/{income_id}")
def api_income_update(income_id: str, payload: CashMovementRequest, user: dict[str, Any] = Depends(require_restricted)) -> JSONResponse:
    row = finances.save_income(DB_PATH, payload.model_dump(exclude_unset=True), income_id)
    return JSONResponse({"ok": True, "income": row})


@app.delete("/api/v1/finances/income/{income_id}")
def api_income_delete(income_id: str, user: dict[str, Any] = Depends(require_restricted)) -> JSONResponse:
    if not finances.delete_income(DB_PATH, income_id):
        raise HTTPException(status_code=404, detail="income not found")
    return JSONResponse({"ok": True})


@app.get("/api/v1/finances/expenses")
def api_expenses(
    month: str | None = None,
    unpaid_only: bool = False,
    user: dict[str, Any] = Depends(require_restricted),
) -> JSONResponse:
    rows = finances.list_expenses(DB_PATH, month=month, unpaid_only=unpaid_only)
    return JSONResponse({"rows": rows, "count": len(rows)})


@app.post("/api/v1/finances/expenses")
def api_expense_create(payload: CashMovementRequest, user: dict[str, Any] = Depends(require_restricted)) -> JSONResponse:
    row = finances.save_expense(DB_PATH, payload.model_dump(exclude_unset=True), user=user["email"])
    return JSONResponse({"ok": True, "expense": row})


@app.put("/api/v1/finances/expenses/{expense_id}")
def api_expense_update(expense_id: str, payload: CashMovementRequest, user: dict[str, Any] = Depends(require_restricted)) -> JSONResponse:
    row = finances.save_expense(DB_PATH, payload.model_dump(exclude_unset=True), expense_id)
    return JSONResponse({"ok": True, "expense": row})


@app.put("/api/v1/finances/expenses/{expense_id}/paid")
def api_expense_paid(expense_id: str, payload: FlagRequest, user: dict[str, Any] = Depends(require_restricted)) -> JSONResponse:
    return JSONResponse({"ok": True, "expense": finances.set_expense_paid(DB_PATH, expense_id, payload.value)})


@app.delete("/api/v1/finances/expenses/{expense_id}")
def api_expense_delete(expense_id: str, user: dict[str, Any] = Depends(require_restricted)) -> JSONResponse:
    if not finances.delete_expense(DB_PATH, expense_id):
        raise HTTPException(status_code=404, detail="expense not found")
    return JSONResponse({"ok": True})


@app.get("/api/v1/finances/payables")
def api_payables(user: dict[str, Any] = Depends(require_restricted)) -> JSONResponse:
    rows = finances.list_payables(DB_PATH)
    return JSONResponse({"rows": rows, "count": len(rows)})


@app.get("/api/v1/finances/cash-summary/{month}")
def api_cash_summary(month: str, user: dict[str, Any] = Depends(require_restricted)) -> JSONResponse:
    return JSONResponse(finances.monthly_cash_summary(DB_PATH, month))


@app.get("/api/v1/finances/receivables")
def api_receivables(pending_only: bool = False, user: dict[str, Any] = Depends(require_restricted)) -> JSONResponse:
    rows = finances.list_receivables(DB_PATH, pending_only=pending_only)
    return JSONResponse({"rows": rows, "count": len(rows)})


@app.post("/api/v1/finances/receivables")
def api_receivable_create(payload: CashMovementRequest, user: dict[str, Any] = Depends(require_restricted)) -> JSONResponse:
    row = finances.save_receivable(DB_PATH, payload.model_dump(exclude_unset=True), user=user["email"])
    return JSONResponse({"ok": True, "receivable": row})


@app.put("/api/v1/finances/receivables/{receivable_id}")
def api_receivable_update(receivable_id: str, payload: CashMovementRequest, user: dict[str, Any] = Depends(require_restricted)) -> JSONResponse:
    row = finances.save_receivable(DB_PATH, payload.model_dump(exclude_unset=True), receivable_id)
    return JSONResponse({"ok": True, "receivable": row})


@app.put("/api/v1/finances/receivables/{receivable_id}/collected")
def api_receivable_collected(receivable_id: str, payload: FlagRequest, user: dict[str, Any] = Depends(require_restricted)) -> JSONResponse:
    row = finances.set_receivable_collected(DB_PATH, receivable_id, payload.value)
    return JSONResponse({"ok": True, "receivable": row})


@app.delete("/api/v1/finances/receivables/{receivable_id}")
def api_receivable_delete(receivable_id: str, user: dict[str, Any] = Depends(require_restricted)) -> JSONResponse:
    if not finances.delete_receivable(DB_PATH, receivable_id):
        raise HTTPException(status_code=404, detail="receivable not found")
    return JSONResponse({"ok": True})


# ---------------------------------------------------------------------------
# Sales
# ---------------------------------------------------------------------------

@app.get("/api/v1/sales/opportunities")
def api_opportunities(
    stage: str | None = None,
    advisor_id: str | None = None,
    search: str | None = None,
    user: dict[str, Any] = Depends(require_reader),
) -> JSONResponse:
    rows = sales.list_opportunities(DB_PATH, stage=stage, advisor_id=advisor_id, search=search)
    return JSONResponse({"rows": rows, "count": len(rows)})


@app.get("/api/v1/sales/pipeline")
def api_pipeline(user: dict[str, Any] = Depends(require_reader)) -> JSONResponse:
    return JSONResponse({"stages": sales.pipeline_summary(DB_PATH)})


@app.post("/api/v1/sales/opportunities")
def api_opportunity_create(payload: OpportunityRequest, user: dict[str, Any] = Depends(require_writer)) -> JSONResponse:
    row = sales.create_opportunity(DB_PATH, payload.model_dump(exclude_unset=True), user["email"])
    return JSONResponse({"ok": True, "opportunity": row})


@app.get("/api/v1/sales/opportunities/{opportunity_id}")
def api_opportunity(opportunity_id: str, user: dict[str, Any] = Depends(require_reader)) -> JSONResponse:
    return JSONResponse(sales.get_opportunity(DB_PATH, opportunity_id))


@app.put("/api/v1/sales/opportunities/{opportunity_id}")
def api_opportunity_update(
    opportunity_id: str,
    payload: OpportunityRequest,
    user: dict[str, Any] = Depends(require_writer),
) -> JSONResponse:
    row = sales.update_opportunity(DB_PATH, opportunity_id, payload.model_dump(exclude_unset=True))
    return JSONResponse({"ok": True, "opportunity": row})


@app.delete("/api/v1/sales/opportunities/{opportunity_id}")
def api_opportunity_delete(opportunity_id: str, user: dict[str, Any] = Depends(require_writer)) -> JSONResponse:
    if not sales.delete_opportunity(DB_PATH, opportunity_id):
        raise HTTPException(status_code=404, detail="opportunity not found")
    return JSONResponse({"ok": True})


@app.put("/api/v1/sales/opportunities/{opportunity_id}/stage")
def api_opportunity_stage(
    opportunity_id: str,
    payload: StageRequest,
    user: dict[str, Any] = Depends(require_writer),
) -> JSONResponse:
    row = sales.change_stage(DB_PATH, opportunity_id, payload.stage, payload.notes, payload.lost_reason, user["email"])
    return JSONResponse({"ok": True, "opportunity": row})


@app.get("/api/v1/sales/opportunities/{opportunity_id}/history")
def api_opportunity_history(opportunity_id: str, user: dict[str, Any] = Depends(require_reader)) -> JSONResponse:
    rows = sales.stage_history(DB_PATH, opportunity_id)
    return JSONResponse({"rows": rows, "count": len(rows)})


@app.post("/api/v1/sales/opportunities/{opportunity_id}/products")
def api_opportunity_product_add(
    opportunity_id: str,
    payload: OpportunityProductRequest,
    user: dict[str, Any] = Depends(require_writer),
) -> JSONResponse:
    return JSONResponse({"ok": True, "opportunity": sales.add_product(DB_PATH, opportunity_id, payload.model_dump())})


@app.post("/api/v1/sales/products/{product_row_id}/toggle")
def api_opportunity_product_toggle(product_row_id: str, user: dict[str, Any] = Depends(require_writer)) -> JSONResponse:
    return JSONResponse({"ok": True, "opportunity": sales.toggle_selected_product(DB_PATH, product_row_id)})


@app.delete("/api/v1/sales/products/{product_row_id}")
def api_opportunity_product_remove(product_row_id: str, user: dict[str, Any] = Depends(require_writer)) -> JSONResponse:
    if not sales.remove_product(DB_PATH, product_row_id):
        raise HTTPException(status_code=404, detail="product not found")
    return JSONResponse({"ok": True})


@app.get("/api/v1/sales/opportunities/{opportunity_id}/activity")
def api_opportunity_activity(
    opportunity_id: str,
    action: str | None = None,
    user: dict[str, Any] = Depends(require_reader),
) -> JSONResponse:
    rows = sales.activity_log(DB_PATH, opportunity_id, action)
    return JSONResponse({"rows": rows, "count": len(rows)})


@app.get("/api/v1/sales/opportunities/{opportunity_id}/notes")
def api_opportunity_notes(opportunity_id: str, user: dict[str, Any] = Depends(require_reader)) -> JSONResponse:
    rows = sales.list_notes(DB_PATH, opportunity_id)
    return JSONResponse({"rows": rows, "count": len(rows)})


@app.post("/api/v1/sales/opportunities/{opportunity_id}/notes")
def api_opportunity_note_add(
    opportunity_id: str,
    payload: SalesNoteRequest,
    user: dict[str, Any] = Depends(require_writer),
) -> JSONResponse:
    return JSONResponse({"ok": True, "note": sales.add_note(DB_PATH, opportunity_id, payload.content, user["email"])})


@app.delete("/api/v1/sales/notes/{note_id}")
def api_opportunity_note_delete(note_id: str, user: dict[str, Any] = Depends(require_writer)) -> JSONResponse:
    if not sales.delete_note(DB_PATH, note_id):
        raise HTTPException(status_code=404, detail="note not found")
    return JSONResponse({"ok": True})


@app.get("/api/v1/sales/opportunities/{opportunity_id}/investments")
def api_opportunity_investments(opportunity_id: str, user: dict[str, Any] = Depends(require_reader)) -> JSONResponse:
    rows = sales.list_investments(DB_PATH, opportunity_id)
    return JSONResponse({"rows": rows, "count": len(rows)})


@app.post("/api/v1/sales/opportunities/{opportunity_id}/investments")
def api_opportunity_investment_add(
    opportunity_id: str,
    payload: SalesInvestmentRequest,
    user: dict[str, Any] = Depends(require_writer),
) -> JSONResponse:
    row = sales.add_investment(DB_PATH, opportunity_id, user=user["email"], **payload.model_dump())
    return JSONResponse({"ok": True, "investment": row})


@app.delete("/api/v1/sales/investments/{investment_id}")
def api_opportunity_investment_delete(investment_id: str, user: dict[str, Any] = Depends(require_writer)) -> JSONResponse:
    if not sales.delete_investment(DB_PATH, investment_id):
        raise HTTPException(status_code=404, detail="investment not found")
    return JSONResponse({"ok": True})


# ---------------------------------------------------------------------------
# Partnerships
# ---------------------------------------------------------------------------

@app.get("/api/v1/partners")
def api_partners(user: dict[str, Any] = Depends(require_reader)) -> JSONResponse:
    rows = partnerships.list_partners(DB_PATH)
    return JSONResponse({"rows": rows, "count": len(rows)})


@app.post("/api/v1/partners")
def api_partner_create(payload: PartnerRequest, user: dict[str, Any] = Depends(require_writer)) -> JSONResponse:
    return JSONResponse({"ok": True, "partner": partnerships.save_partner(DB_PATH, payload.model_dump(exclude_unset=True))})


@app.put("/api/v1/partners/{partner_id}")
def api_partner_update(partner_id: str, payload: PartnerRequest, user: dict[str, Any] = Depends(require_writer)) -> JSONResponse:
    row = partnerships.save_partner(DB_PATH, payload.model_dump(exclude_unset=True), partner_id)
    return JSONResponse({"ok": True, "partner": row})


@app.delete("/api/v1/partners/{partner_id}")
def api_partner_delete(partner_id: str, user: dict[str, Any] = Depends(require_writer)) -> JSONResponse:
    if not partnerships.delete_partner(DB_PATH, partner_id):
        raise HTTPException(status_code=404, detail="partner not found")
    return JSONResponse({"ok": True})


@app.post("/api/v1/partners/services")
def api_service_create(payload: ServiceRequest, user: dict[str, Any] = Depends(require_writer)) -> JSONResponse:
    return JSONResponse({"ok": True, "service": partnerships.save_service(DB_PATH, payload.model_dump(exclude_unset=True))})


@app.put("/api/v1/partners/services/{service_id}")
def api_service_update(service_id: str, payload: ServiceRequest, user: dict[str, Any] = Depends(require_writer)) -> JSONResponse:
    row = partnerships.save_service(DB_PATH, payload.model_dump(exclude_unset=True), service_id)
    return JSONResponse({"ok": True, "service": row})


@app.delete("/api/v1/partners/services/{service_id}")
def api_service_delete(service_id: str, user: dict[str, Any] = Depends(require_writer)) -> JSONResponse:
    if not partnerships.delete_service(DB_PATH, service_id):
        raise HTTPException(status_code=404, detail="service not found")
    return JSONResponse({"ok": True})


@app.get("/api/v1/discount-codes")
def api_discount_codes(
    status: str | None = None,
    client_id: str | None = None,
    user: dict[str, Any] = Depends(require_reader),
) -> JSONResponse:
    rows = partnerships.list_discount_codes(DB_PATH, status=status, client_id=client_id)
    return JSONResponse({"rows": rows, "count": len(rows)})


@app.post("/api/v1/discount-codes")
def api_discount_code_create(payload: DiscountCodeRequest, user: dict[str, Any] = Depends(require_writer)) -> JSONResponse:
    row = partnerships.create_discount_code(DB_PATH, **payload.model_dump())
    return JSONResponse({"ok": True, "code": row})


@app.post("/api/v1/discount-codes/redeem")
def api_discount_code_redeem(payload: RedeemRequest, user: dict[str, Any] = Depends(require_writer)) -> JSONResponse:
    return JSONResponse({"ok": True, "code": partnerships.redeem_code(DB_PATH, payload.code)})


@app.put("/api/v1/discount-codes/{code_id}/status")
def api_discount_code_status(code_id: str, payload: StatusRequest, user: dict[str, Any] = Depends(require_writer)) -> JSONResponse:
    return JSONResponse({"ok": True, "code": partnerships.update_code_status(DB_PATH, code_id, payload.status)})


# ---------------------------------------------------------------------------
# Birthdays and dashboard
# ---------------------------------------------------------------------------

@app.get("/api/v1/birthdays")
def api_birthdays(month: str = "current", user: dict[str, Any] = Depends(require_reader)) -> JSONResponse:
    return JSONResponse(birthdays.birthdays_for_month(DB_PATH, month))


@app.post("/api/v1/birthdays/send")
def api_birthday_send(payload: BirthdaySendRequest, user: dict[str, Any] = Depends(require_writer)) -> JSONResponse:
    row = birthdays.record_birthday_send(
        DB_PATH, payload.client_id, payload.channels, payload.year, payload.message, user["email"]
    )
    return JSONResponse({"ok": True, "send": row})


@app.get("/api/v1/birthdays/{client_id}/history")
def api_birthday_history(client_id: str, user: dict[str, Any] = Depends(require_reader)) -> JSONResponse:
    rows = birthdays.birthday_history(DB_PATH, client_id)
    return JSONResponse({"rows": rows, "count": len(rows)})


@app.get("/api/v1/dashboard")
def api_dashboard(user: dict[str, Any] = Depends(require_reader)) -> JSONResponse:
    return JSONResponse({"generated_on": date.today().isoformat(), **dashboard.dashboard_stats(DB_PATH)})
