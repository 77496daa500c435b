"""Error kinds raised by the service layer and their Spanish user-facing text."""

from __future__ import annotations

from typing import Any


class BrokerDeskError(Exception):
    status_code = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, Any]:
        return {"ok": False, "error": self.message}


class ValidationError(BrokerDeskError):
    """Bad user input or a broken business rule. Carries per-field messages."""

    def __init__(self, message: str, errors: list[dict[str, str]] | None = None) -> None:
        super().__init__(message)
        self.errors = errors or []

    @classmethod
    def field(cls, field: str, message: str) -> ValidationError:
        return cls(message, [{"field": field, "message": message}])

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        if self.errors:
            payload["errors"] = self.errors
        return payload


class NotFoundError(BrokerDeskError):
    status_code = 404


class AuthenticationError(BrokerDeskError):
    status_code = 401


class PermissionDeniedError(BrokerDeskError):
    status_code = 403


class NotificationError(BrokerDeskError):
    status_code = 502


GENERIC_MESSAGE = "Ocurrió un error. Por favor intenta nuevamente o contacta al soporte."
UNEXPECTED_MESSAGE = "Ocurrió un error inesperado. Por favor intenta nuevamente."

# Ordered: first matching fragment wins.
_FRIENDLY_MESSAGES: list[tuple[tuple[str, ...], str]] = [
    (
        ("unique constraint", "duplicate key", "23505", "already exists"),
        "Este registro ya existe. Por favor verifica los datos ingresados.",
    ),
    (
        ("foreign key", "23503"),
        "No se puede completar la operación debido a registros relacionados.",
    ),
    (
        ("not null constraint", "null value", "23502"),
        "Faltan datos requeridos. Por favor completa todos los campos obligatorios.",
    ),
    (
        ("check constraint", "23514"),
        "Los datos ingresados no cumplen con las validaciones requeridas.",
    ),
    (
        ("permission denied", "row-level security", "insufficient permissions"),
        "No tienes permisos para realizar esta acción.",
    ),
    (
        ("jwt expired", "token expired", "session expired", "invalid token"),
        "Tu sesión ha expirado. Por favor inicia sesión nuevamente.",
    ),
    (
        ("invalid login credentials", "invalid email or password"),
        "Credenciales incorrectas. Por favor verifica tu correo y contraseña.",
    ),
    (
        ("user already registered",),
        "Ya existe una cuenta con este correo electrónico.",
    ),
    (
        ("password should be", "password must be"),
        "La contraseña no cumple con los requisitos de seguridad.",
    ),
    (
        ("rate limit", "too many requests"),
        "Demasiados intentos. Por favor espera un momento e intenta nuevamente.",
    ),
    (
        ("network", "failed to fetch", "connection refused", "timed out"),
        "Error de conexión. Por favor verifica tu conexión a internet.",
    ),
    (
        ("file size", "payload too large"),
        "El archivo es demasiado grande. Por favor selecciona un archivo más pequeño.",
    ),
]


def user_friendly_error(exc: BaseException | str | None) -> str:
    """Translate a backend/auth error into the message shown to users."""
    if exc is None:
        return UNEXPECTED_MESSAGE
    if isinstance(exc, BrokerDeskError):
        return exc.message
    text = str(exc).lower()
    for fragments, message in _FRIENDLY_MESSAGES:
        if any(fragment in text for fragment in fragments):
            return message
    return GENERIC_MESSAGE
