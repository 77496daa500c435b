from __future__ import annotations

import os
from pathlib import Path


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    return float(raw) if raw else default


BASE_DIR = Path(__file__).resolve().parent.parent
DB_PATH = Path(os.getenv("DB_PATH", str(BASE_DIR / "data/brokerdesk.db"))).expanduser()
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").strip().upper()

FRONTEND_BASE_URL = os.getenv("FRONTEND_BASE_URL", "http://localhost:5173").rstrip("/")
ALLOWED_ORIGINS = sorted(
    {FRONTEND_BASE_URL}
    | {o.strip().rstrip("/") for o in os.getenv("ALLOWED_ORIGINS", "").split(",") if o.strip()}
)

SESSION_COOKIE_NAME = "bd_session"
SESSION_COOKIE_SECURE = _env_bool("SESSION_COOKIE_SECURE")
SESSION_DURATION_HOURS = int(os.getenv("SESSION_DURATION_HOURS", str(24 * 7)))
OAUTH_STATE_MINUTES = 15
PASSWORD_MIN_LENGTH = int(os.getenv("PASSWORD_MIN_LENGTH", "8"))

RESEND_API_URL = "https://api.resend.com/emails"
RESEND_API_KEY = os.getenv("RESEND_API_KEY", "").strip()
RESEND_FROM_EMAIL = os.getenv("RESEND_FROM_EMAIL", "").strip()

GOOGLE_CLIENT_ID = os.getenv("GOOGLE_CLIENT_ID", "").strip()
GOOGLE_CLIENT_SECRET = os.getenv("GOOGLE_CLIENT_SECRET", "").strip()
GOOGLE_REDIRECT_URI = os.getenv(
    "GOOGLE_REDIRECT_URI", "http://localhost:8000/api/v1/auth/google/callback"
).strip()
GOOGLE_AUTHORIZE_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_USERINFO_URL = "https://openidconnect.googleapis.com/v1/userinfo"

BROKER_NAME = os.getenv("BROKER_NAME", "Corretaje de Seguros").strip()
RENEWAL_NOTICE_LEAD_DAYS = int(os.getenv("RENEWAL_NOTICE_LEAD_DAYS", "30"))
RENEWAL_WINDOW_DAYS = 30
ISLR_RATE_PCT = _env_float("ISLR_RATE_PCT", 1.0)
TAX_UNIT_FACTOR = _env_float("TAX_UNIT_FACTOR", 5.0)
