from __future__ import annotations

import hashlib
import json
import logging
import secrets
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any
from urllib import error as urlerror
from urllib import parse as urlparse
from urllib import request as urlrequest

from brokerdesk.config import (
    GOOGLE_AUTHORIZE_URL,
    GOOGLE_CLIENT_ID,
    GOOGLE_CLIENT_SECRET,
    GOOGLE_REDIRECT_URI,
    GOOGLE_TOKEN_URL,
    GOOGLE_USERINFO_URL,
    OAUTH_STATE_MINUTES,
    PASSWORD_MIN_LENGTH,
    SESSION_DURATION_HOURS,
)
from brokerdesk.errors import (
    AuthenticationError,
    NotFoundError,
    NotificationError,
    PermissionDeniedError,
    ValidationError,
)
from brokerdesk.persistence import get_conn, new_id, utc_now

logger = logging.getLogger(__name__)

ROLE_LABELS = {
    "acceso_total": "Acceso Total",
    "revision_edicion_1": "Revisión y Edición 1",
    "revision_edicion_2": "Revisión y Edición 2",
    "revision": "Solo Lectura",
}
WRITE_ROLES = {"acceso_total", "revision_edicion_1", "revision_edicion_2"}
# Finance, commissions, audit logs and renewal processing.
RESTRICTED_MODULE_ROLES = {"acceso_total", "revision_edicion_1"}
ADMIN_ROLES = {"acceso_total"}

USER_COLUMNS = "id, email, full_name, auth_provider, role, created_at"


def sha256_hex(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def hash_password(password: str, salt: str) -> str:
    return hashlib.pbkdf2_hmac(
        "sha256",
        password.encode("utf-8"),
        salt.encode("utf-8"),
        120000,
    ).hex()


def create_password_credentials(password: str) -> tuple[str, str]:
    salt = secrets.token_hex(16)
    return salt, hash_password(password, salt)


def verify_password(password: str, salt: str | None, expected_hash: str | None) -> bool:
    if not password or not salt or not expected_hash:
        return False
    return secrets.compare_digest(hash_password(password, salt), expected_hash)


def normalize_email(email: str | None) -> str:
    value = (email or "").strip().lower()
    if not value or "@" not in value:
        raise ValidationError.field("email", "Ingresa un correo electrónico válido")
    return value


def _future_iso(**delta: float) -> str:
    return (datetime.now(UTC) + timedelta(**delta)).replace(microsecond=0).isoformat()


def _insert_user(
    conn: Any,
    email: str,
    full_name: str | None,
    auth_provider: str,
    salt: str | None = None,
    password_hash: str | None = None,
) -> str:
    # First-time setup: the very first account administers the rest.
    has_users = conn.execute("SELECT 1 FROM users LIMIT 1").fetchone() is not None
    role = None if has_users else "acceso_total"
    user_id = new_id()
    conn.execute(
        """
        INSERT INTO users(id, email, full_name, password_salt, password_hash, auth_provider, role, created_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (user_id, email, full_name, salt, password_hash, auth_provider, role, utc_now()),
    )
    logger.info("Registered user %s (%s) with role %s", email, auth_provider, role)
    return user_id


def get_user(db_path: Path, user_id: str) -> dict[str, Any]:
    with get_conn(db_path) as conn:
        row = conn.execute(f"SELECT {USER_COLUMNS} FROM users WHERE id = ?", (user_id,)).fetchone()
    if row is None:
        raise NotFoundError("Usuario no encontrado")
    return dict(row)


def register_user(db_path: Path, email: str, password: str, full_name: str | None = None) -> dict[str, Any]:
    email = normalize_email(email)
    if len((password or "").strip()) < PASSWORD_MIN_LENGTH:
        raise ValidationError.field(
            "password", f"La contraseña debe tener al menos {PASSWORD_MIN_LENGTH} caracteres"
        )
    salt, password_hash = create_password_credentials(password)
    with get_conn(db_path) as conn:
        if conn.execute("SELECT 1 FROM users WHERE email = ?", (email,)).fetchone():
            raise ValidationError.field("email", "Ya existe una cuenta con este correo electrónico.")
        user_id = _insert_user(conn, email, full_name, "email", salt, password_hash)
    return get_user(db_path, user_id)


def authenticate(db_path: Path, email: str, password: str) -> dict[str, Any]:
    email = normalize_email(email)
    with get_conn(db_path) as conn:
        row = conn.execute("SELECT * FROM users WHERE email = ?", (email,)).fetchone()
    if row is None or not verify_password(password, row["password_salt"], row["password_hash"]):
        logger.warning("Failed sign-in for %s", email)
        raise AuthenticationError("Credenciales incorrectas. Por favor verifica tu correo y contraseña.")
    return {k: row[k] for k in ("id", "email", "full_name", "auth_provider", "role", "created_at")}


def create_session(db_path: Path, user_id: str) -> str:
    token = secrets.token_urlsafe(32)
    now = utc_now()
    with get_conn(db_path) as conn:
        conn.execute(
            """
            INSERT INTO auth_sessions(id, user_id, session_hash, expires_at, created_at, last_seen_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (new_id(), user_id, sha256_hex(token), _future_iso(hours=SESSION_DURATION_HOURS), now, now),
        )
    return token


def get_session_user(db_path: Path, token: str | None) -> dict[str, Any] | None:
    if not token:
        return None
    session_hash = sha256_hex(token)
    now = utc_now()
    with get_conn(db_path) as conn:
        row = conn.execute(
            """
            SELECT u.id, u.email, u.full_name, u.auth_provider, u.role, u.created_at
            FROM auth_sessions s
            JOIN users u ON u.id = s.user_id
            WHERE s.session_hash = ? AND s.expires_at > ?
            """,
            (session_hash, now),
        ).fetchone()
        if row is None:
            return None
        conn.execute("UPDATE auth_sessions SET last_seen_at = ? WHERE session_hash = ?", (now, session_hash))
    return dict(row)


def revoke_session(db_path: Path, token: str | None) -> None:
    if not token:
        return
    with get_conn(db_path) as conn:
        conn.execute("DELETE FROM auth_sessions WHERE session_hash = ?", (sha256_hex(token),))


def list_users(db_path: Path) -> list[dict[str, Any]]:
    with get_conn(db_path) as conn:
        rows = conn.execute(f"SELECT {USER_COLUMNS} FROM users ORDER BY created_at, email").fetchall()
    users = [dict(row) for row in rows]
    for user in users:
        user["role_label"] = ROLE_LABELS.get(user["role"] or "", "Sin rol")
    return users


def set_user_role(db_path: Path, user_id: str, role: str | None) -> dict[str, Any]:
    if role is not None and role not in ROLE_LABELS:
        raise ValidationError.field("role", f"Rol inválido: {role}")
    with get_conn(db_path) as conn:
        cur = conn.execute("UPDATE users SET role = ? WHERE id = ?", (role, user_id))
        if cur.rowcount == 0:
            raise NotFoundError("Usuario no encontrado")
        if role is None:
            conn.execute("DELETE FROM auth_sessions WHERE user_id = ?", (user_id,))
    return get_user(db_path, user_id)


def require_role(user: dict[str, Any] | None, allowed_roles: set[str]) -> dict[str, Any]:
    if user is None:
        raise AuthenticationError("Tu sesión ha expirado. Por favor inicia sesión nuevamente.")
    if (user.get("role") or "") not in allowed_roles:
        raise PermissionDeniedError("No tienes permisos para realizar esta acción.")
    return user


# ---------------------------------------------------------------------------
# Google OAuth
# ---------------------------------------------------------------------------

def google_authorize_url(db_path: Path) -> str:
    if not GOOGLE_CLIENT_ID or not GOOGLE_CLIENT_SECRET:
        raise ValidationError("El inicio de sesión con Google no está configurado.")
    state = secrets.token_urlsafe(24)
    with get_conn(db_path) as conn:
        conn.execute(
            "INSERT INTO oauth_states(state, expires_at, created_at) VALUES (?, ?, ?)",
            (state, _future_iso(minutes=OAUTH_STATE_MINUTES), utc_now()),
        )
    query = urlparse.urlencode(
        {
            "client_id": GOOGLE_CLIENT_ID,
            "redirect_uri": GOOGLE_REDIRECT_URI,
            "response_type": "code",
            "scope": "openid email profile",
            "state": state,
            "prompt": "select_account",
        }
    )
    return f"{GOOGLE_AUTHORIZE_URL}?{query}"


def consume_oauth_state(db_path: Path, state: str | None) -> None:
    with get_conn(db_path) as conn:
        row = conn.execute(
            "SELECT state FROM oauth_states WHERE state = ? AND expires_at > ?",
            (state or "", utc_now()),
        ).fetchone()
        conn.execute("DELETE FROM oauth_states WHERE state = ? OR expires_at <= ?", (state or "", utc_now()))
    if row is None:
        raise AuthenticationError("La solicitud de inicio de sesión expiró. Intenta nuevamente.")


def _google_request(req: urlrequest.Request) -> dict[str, Any]:
    try:
        with urlrequest.urlopen(req, timeout=20) as resp:
            parsed = json.loads(resp.read().decode("utf-8") or "{}")
    except urlerror.HTTPError as exc:
        logger.warning("Google OAuth error %s: %s", exc.code, exc.reason)
        raise NotificationError(f"Error de Google OAuth ({exc.code})") from exc
    except (urlerror.URLError, TimeoutError, json.JSONDecodeError) as exc:
        raise NotificationError("Error de conexión. Por favor verifica tu conexión a internet.") from exc
    if not isinstance(parsed, dict):
        raise NotificationError("Respuesta inválida de Google OAuth")
    return parsed


def exchange_google_code(code: str) -> dict[str, Any]:
    body = urlparse.urlencode(
        {
            "code": code,
            "client_id": GOOGLE_CLIENT_ID,
            "client_secret": GOOGLE_CLIENT_SECRET,
            "redirect_uri": GOOGLE_REDIRECT_URI,
            "grant_type": "authorization_code",
        }
    ).encode("utf-8")
    token = _google_request(
        urlrequest.Request(
            GOOGLE_TOKEN_URL,
            data=body,
            headers={"Content-Type": "application/x-www-form-urlencoded"},
            method="POST",
        )
    )
    access_token = token.get("access_token")
    if not access_token:
        raise NotificationError("Google OAuth no devolvió un token de acceso")
    return _google_request(
        urlrequest.Request(GOOGLE_USERINFO_URL, headers={"Authorization": f"Bearer {access_token}"})
    )


def sign_in_oauth_user(db_path: Path, email: str, full_name: str | None, provider: str = "google") -> dict[str, Any]:
    email = normalize_email(email)
    with get_conn(db_path) as conn:
        row = conn.execute("SELECT id FROM users WHERE email = ?", (email,)).fetchone()
        user_id = row["id"] if row else _insert_user(conn, email, full_name, provider)
    return get_user(db_path, user_id)


def complete_google_sign_in(db_path: Path, code: str, state: str | None) -> dict[str, Any]:
    consume_oauth_state(db_path, state)
    profile = exchange_google_code(code)
    if not profile.get("email") or profile.get("email_verified") is False:
        raise AuthenticationError("La cuenta de Google no tiene un correo verificado")
    return sign_in_oauth_user(db_path, profile["email"], profile.get("name"))
