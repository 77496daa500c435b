"""Printable letter-size HTML pages: renewal notice, commission breakdown, premium notice.

Each page is self-contained (inline CSS) so it can be opened in a print window
or downloaded as an .html file.
"""

from __future__ import annotations

from datetime import date
from html import escape
from typing import Any

from brokerdesk.calculations import FREQUENCY_LABELS, format_currency, format_percentage, installment_label

MONTHS_ES = (
    "enero", "febrero", "marzo", "abril", "mayo", "junio",
    "julio", "agosto", "septiembre", "octubre", "noviembre", "diciembre",
)

COLORS = {
    "primary": "#182746",
    "accent": "#27abe3",
    "secondary": "#40588c",
    "text": "#2d3748",
    "muted": "#64748b",
    "light": "#f8fafc",
    "border": "#e2e8f0",
    "increase": "#ef4444",
    "decrease": "#22c55e",
}

BASE_CSS = f"""
* {{ box-sizing: border-box; margin: 0; padding: 0; }}
@page {{ size: letter; margin: 15mm; }}
body {{ font-family: Helvetica, Arial, sans-serif; font-size: 11px; color: {COLORS['text']}; }}
.container {{ max-width: 7.5in; margin: 0 auto; padding: 16px; }}
.header {{ display: flex; justify-content: space-between; align-items: center;
           border-bottom: 3px solid {COLORS['accent']}; padding-bottom: 10px; margin-bottom: 16px; }}
.broker {{ font-size: 15px; font-weight: bold; color: {COLORS['primary']}; }}
.broker-meta {{ color: {COLORS['muted']}; font-size: 10px; }}
.title {{ font-size: 16px; font-weight: bold; color: {COLORS['primary']}; text-align: right; }}
.date-line {{ text-align: right; color: {COLORS['muted']}; margin-bottom: 12px; }}
.section-header {{ background: {COLORS['secondary']}; color: white; padding: 5px 8px;
                   font-weight: bold; margin: 14px 0 6px; }}
table {{ width: 100%; border-collapse: collapse; }}
th {{ background: {COLORS['light']}; color: {COLORS['primary']}; text-align: left; padding: 5px 6px;
      border-bottom: 1px solid {COLORS['border']}; }}
td {{ padding: 4px 6px; border-bottom: 1px solid {COLORS['border']}; }}
tr.alt-row td {{ background: {COLORS['light']}; }}
.text-right {{ text-align: right; }}
.text-center {{ text-align: center; }}
.total-row td {{ font-weight: bold; border-top: 2px solid {COLORS['primary']}; }}
.comparison {{ display: flex; gap: 8px; }}
.comparison-box {{ flex: 1; border: 1px solid {COLORS['border']}; padding: 8px; text-align: center; }}
.comparison-label {{ color: {COLORS['muted']}; font-size: 9px; text-transform: uppercase; }}
.comparison-value {{ font-size: 15px; font-weight: bold; color: {COLORS['primary']}; }}
.footer {{ margin-top: 24px; border-top: 1px solid {COLORS['border']}; padding-top: 8px;
           color: {COLORS['muted']}; font-size: 9px; text-align: center; }}
"""


def format_date_long(value: str | date | None) -> str:
    if not value:
        return ""
    day = value if isinstance(value, date) else date.fromisoformat(str(value)[:10])
    return f"{day.day} de {MONTHS_ES[day.month - 1]} de {day.year}"


def format_date_short(value: str | None) -> str:
    if not value:
        return "-"
    day = date.fromisoformat(str(value)[:10])
    return day.strftime("%d/%m/%Y")


def _e(value: Any, default: str = "-") -> str:
    return escape(str(value)) if value not in (None, "") else default


def _page(title: str, broker: dict[str, Any], body: str, today: date | None = None) -> str:
    meta = " | ".join(escape(v) for v in (broker.get("identification"), broker.get("address")) if v)
    contact = " | ".join(escape(v) for v in (broker.get("email"), broker.get("phone")) if v)
    logo = f'<img src="{escape(broker["logo_url"])}" alt="Logo" style="max-height:48px" />' if broker.get("logo_url") else ""
    return f"""<!DOCTYPE html>
<html lang="es">
<head>
<meta charset="UTF-8">
<title>{escape(title)}</title>
<style>{BASE_CSS}</style>
</head>
<body>
<div class="container">
  <div class="header">
    <div>{logo}<div class="broker">{_e(broker.get('name'), '')}</div><div class="broker-meta">{meta}</div></div>
    <div class="title">{escape(title)}</div>
  </div>
  <div class="date-line">{format_date_long(today or date.today())}</div>
  {body}
  <div class="footer">{_e(broker.get('name'), '')}{' | ' + contact if contact else ''}</div>
</div>
</body>
</html>
"""


def _rows(rows: list[str]) -> str:
    return "".join(
        row.replace("<tr>", '<tr class="alt-row">', 1) if idx % 2 else row for idx, row in enumerate(rows)
    )


# ---------------------------------------------------------------------------
# Renewal notice
# ---------------------------------------------------------------------------

def renewal_notice_html(notice: dict[str, Any], today: date | None = None) -> str:
    policy = notice["policy"]
    client = f"{policy.get('client_first_name') or ''} {policy.get('client_last_name') or ''}".strip() or "Cliente"
    frequency = FREQUENCY_LABELS.get(policy.get("payment_frequency") or "", policy.get("payment_frequency") or "N/A")
    color = {"aumento": COLORS["increase"], "disminucion": COLORS["decrease"]}.get(notice["badge"], COLORS["muted"])

    data_rows = _rows(
        [
            f'<tr><td>{label}</td><td><strong>{value}</strong></td></tr>'
            for label, value in (
                ("Número de póliza", _e(policy.get("policy_number"), "Sin número")),
                ("Aseguradora", _e(policy.get("insurer_name"), "Sin aseguradora")),
                ("Producto", _e(policy.get("product_name"), "Sin producto")),
                ("Vigencia", f"{format_date_short(policy.get('start_date'))} - {format_date_short(policy.get('end_date'))}"),
                ("Frecuencia de pago", f"{escape(frequency)} ({installment_label(policy.get('payment_frequency'))})"),
                ("Fecha de renovación", format_date_long(notice["renewal_date"])),
            )
        ]
    )

    consumption_rows = _rows(
        [
            "<tr>"
            f"<td>{format_date_short(c['usage_date'])}</td>"
            f"<td>{_e(c.get('beneficiary_name'))}</td>"
            f"<td>{_e(c.get('usage_type_name'))}</td>"
            f"<td>{_e(c.get('description'))}</td>"
            f'<td class="text-right">{format_currency(c["amount_usd"]) if c.get("amount_usd") else "-"}</td>'
            "</tr>"
            for c in notice["consumptions"]
        ]
    ) or '<tr><td colspan="5" class="text-center">No se registraron consumos en el período</td></tr>'

    summary = notice["consumption_summary"]
    type_rows = _rows(
        [
            f'<tr><td>{_e(t["usage_type"])}</td><td class="text-center">{t["count"]}</td>'
            f'<td class="text-right">{format_currency(t["total_usd"])}</td></tr>'
            for t in summary["by_type"]
        ]
    )

    body = f"""
  <p style="margin-bottom:10px">Estimado/a <strong>{escape(client)}</strong>,</p>
  <p style="margin-bottom:10px">Le informamos que su póliza está próxima a renovarse. A continuación encontrará el
  resumen de las condiciones para el nuevo período.</p>
  <div class="section-header">DATOS DE LA PÓLIZA</div>
  <table>{data_rows}</table>
  <div class="section-header">COMPARACIÓN DE PRIMAS</div>
  <div class="comparison">
    <div class="comparison-box"><div class="comparison-label">Prima actual</div>
      <div class="comparison-value">{format_currency(notice['current_amount'])}</div></div>
    <div class="comparison-box"><div class="comparison-label">Prima nuevo período</div>
      <div class="comparison-value">{format_currency(notice['new_amount'])}</div></div>
    <div class="comparison-box"><div class="comparison-label">Variación</div>
      <div class="comparison-value" style="color:{color}">{format_percentage(notice['percentage'])}</div>
      <div class="comparison-label">{format_currency(notice['difference'])}</div></div>
  </div>
  <div class="section-header">CONSUMOS DEL PERÍODO</div>
  <table>
    <tr><th>Fecha</th><th>Beneficiario</th><th>Tipo</th><th>Descripción</th><th class="text-right">Monto USD</th></tr>
    {consumption_rows}
  </table>
  <div class="section-header">RESUMEN POR TIPO DE USO</div>
  <table>
    <tr><th>Tipo</th><th class="text-center">Cantidad</th><th class="text-right">Total USD</th></tr>
    {type_rows}
    <tr class="total-row"><td>Total</td><td class="text-center">{summary['count']}</td>
      <td class="text-right">{format_currency(summary['total_usd'])}</td></tr>
  </table>
  <p style="margin-top:14px">Si tiene alguna consulta o requiere asistencia, estamos a su disposición.</p>
"""
    return _page(f"Aviso de Renovación - {policy.get('policy_number') or ''}".strip(" -"), notice["broker"], body, today)


# ---------------------------------------------------------------------------
# Commission breakdown
# ---------------------------------------------------------------------------

def commission_breakdown_html(
    breakdown: list[dict[str, Any]],
    broker: dict[str, Any],
    period: str | None = None,
    today: date | None = None,
) -> str:
    sections = []
    for advisor in breakdown:
        rows = _rows(
            [
                "<tr>"
                f"<td>{_e(item.get('policy_number'))}</td>"
                f"<td>{_e(item.get('client_name'))}</td>"
                f"<td>{_e(item.get('insurer_name'))}</td>"
                f'<td class="text-right">{format_currency(item["premium"])}</td>'
                f'<td class="text-right">{float(item["commission_rate"]):.2f}%</td>'
                f'<td class="text-right">{format_currency(item["commission_amount"])}</td>'
                f'<td class="text-right">{float(item["percentage"]):.2f}%</td>'
                f'<td class="text-right">{format_currency(item["amount"])}</td>'
                "</tr>"
                for item in advisor["items"]
            ]
        )
        sections.append(
            f"""
  <div class="section-header">{escape(advisor['advisor_name'])}</div>
  <table>
    <tr><th>Póliza</th><th>Cliente</th><th>Aseguradora</th><th class="text-right">Prima</th>
        <th class="text-right">% Com.</th><th class="text-right">Comisión</th>
        <th class="text-right">% Asesor</th><th class="text-right">Monto Asesor</th></tr>
    {rows}
    <tr class="total-row"><td colspan="7">Total</td><td class="text-right">{format_currency(advisor['total'])}</td></tr>
  </table>"""
        )
    grand_total = round(sum(a["total"] for a in breakdown), 2)
    body = (
        (f'<p style="margin-bottom:8px">Período: <strong>{escape(period)}</strong></p>' if period else "")
        + ("".join(sections) or '<p>No hay comisiones asignadas para los filtros seleccionados.</p>')
        + f'<p style="margin-top:14px;text-align:right"><strong>Total general: {format_currency(grand_total)}</strong></p>'
    )
    return _page("Desglose de Comisiones", broker, body, today)


# ---------------------------------------------------------------------------
# Premium notice
# ---------------------------------------------------------------------------

def premium_notice_html(collection: dict[str, Any], broker: dict[str, Any], today: date | None = None) -> str:
    frequency = FREQUENCY_LABELS.get(collection.get("payment_frequency") or "", collection.get("payment_frequency"))
    rows = _rows(
        [
            f"<tr><td>{label}</td><td><strong>{value}</strong></td></tr>"
            for label, value in (
                ("Póliza", _e(collection.get("policy_number"))),
                ("Aseguradora", _e(collection.get("insurer_name"))),
                ("Frecuencia de pago", _e(frequency)),
                ("Fecha de vencimiento", format_date_long(collection["due_date"])),
                ("Monto a pagar", format_currency(collection["amount_due"])),
            )
        ]
    )
    overdue = collection.get("days_overdue") or 0
    warning = (
        f'<p style="margin-top:10px;color:{COLORS["increase"]}"><strong>Esta cuota presenta {overdue} días de atraso.</strong></p>'
        if overdue > 0
        else ""
    )
    body = f"""
  <p style="margin-bottom:10px">Estimado/a <strong>{_e(collection.get('client_name'), 'Cliente')}</strong>,</p>
  <p style="margin-bottom:10px">Le recordamos que tiene una cuota de prima pendiente de pago.</p>
  <div class="section-header">DETALLE DEL AVISO</div>
  <table>{rows}</table>
  {warning}
  <p style="margin-top:14px">Para mantener la vigencia de su cobertura, le agradecemos realizar el pago antes de la fecha indicada.</p>
"""
    return _page("Aviso de Cobro de Prima", broker, body, today)
