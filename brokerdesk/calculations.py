from __future__ import annotations

from datetime import date
from typing import Any, Iterable

from dateutil.relativedelta import relativedelta

from brokerdesk.config import ISLR_RATE_PCT, TAX_UNIT_FACTOR

INSTALLMENTS_PER_YEAR = {
    "anual": 1,
    "semestral": 2,
    "trimestral": 4,
    "bimensual": 6,
    "mensual_10_cuotas": 10,
    "mensual_12_cuotas": 12,
    "mensual": 12,
}

MONTHS_BETWEEN_PAYMENTS = {
    "mensual": 1,
    "mensual_10_cuotas": 1,
    "mensual_12_cuotas": 1,
    "bimensual": 2,
    "trimestral": 3,
    "semestral": 6,
    "anual": 12,
}

FREQUENCY_LABELS = {
    "mensual": "Mensual",
    "mensual_10_cuotas": "Mensual (10 cuotas)",
    "mensual_12_cuotas": "Mensual (12 cuotas)",
    "bimensual": "Bimensual",
    "trimestral": "Trimestral",
    "semestral": "Semestral",
    "anual": "Anual",
    "unico": "Pago único",
}


def _to_float(value: Any) -> float | None:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def installment_divisor(frequency: str | None) -> int:
    return INSTALLMENTS_PER_YEAR.get(frequency or "", 1)


def calculate_installment(annual_premium: Any, frequency: str | None) -> float | None:
    premium = _to_float(annual_premium)
    if premium is None or premium <= 0:
        return None
    return premium / installment_divisor(frequency)


def installment_label(frequency: str | None) -> str:
    divisor = installment_divisor(frequency)
    return "1 pago anual" if divisor == 1 else f"{divisor} cuotas anuales"


def commission_amount(premium: float, rate: float) -> float:
    return round(float(premium) * float(rate) / 100, 2)


def has_commission_discrepancy(premium: float, rate: float, amount: float) -> bool:
    return abs(float(premium) * float(rate) / 100 - float(amount)) > 0.01


def assignment_amount(commission: float, percentage: float) -> float:
    return round(float(commission) * float(percentage) / 100, 2)


def agency_margin(percentages: Iterable[float]) -> float:
    return round(100 - sum(float(p) for p in percentages), 2)


def premium_variance(current_amount: float | None, new_amount: float | None) -> tuple[float, float]:
    """Return (difference, percentage) of a renewal premium against the current one.

    The percentage is 0 when the current premium is missing or not positive.
    """
    current = float(current_amount or 0)
    new = float(new_amount or 0)
    difference = new - current
    percentage = (difference / current) * 100 if current > 0 else 0.0
    return round(difference, 2), round(percentage, 2)


def variance_badge(percentage: float) -> str:
    if percentage > 0:
        return "aumento"
    if percentage < 0:
        return "disminucion"
    return "sin_cambio"


def format_percentage(percentage: float) -> str:
    sign = "+" if percentage > 0 else ""
    return f"{sign}{percentage:.2f}%"


def islr_withholding(total: float) -> float:
    return round(float(total) * ISLR_RATE_PCT / 100, 2)


def tax_units(islr_amount: float) -> float:
    return round(float(islr_amount) * TAX_UNIT_FACTOR, 2)


def invoice_net(total: float) -> float:
    return round(float(total) - islr_withholding(total), 2)


def next_payment_date(due_date: date | str, frequency: str | None) -> date:
    if isinstance(due_date, str):
        due_date = date.fromisoformat(due_date[:10])
    return due_date + relativedelta(months=MONTHS_BETWEEN_PAYMENTS.get(frequency or "", 1))


def days_overdue(due_date: date | str, status: str, today: date | None = None) -> int:
    if status == "cobrada":
        return 0
    if isinstance(due_date, str):
        due_date = date.fromisoformat(due_date[:10])
    return ((today or date.today()) - due_date).days


def format_currency(amount: float | None, symbol: str = "$") -> str:
    return f"{symbol}{float(amount or 0):,.2f}"
