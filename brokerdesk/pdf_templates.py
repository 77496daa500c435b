"""reportlab renderings of the printable documents.

- Renewal notice: policy data, premium comparison, period consumptions
- Commission breakdown: one table per advisor with totals
- Premium notice: single collection reminder
"""

from __future__ import annotations

import io
from datetime import date
from typing import Any

from reportlab.lib import colors
from reportlab.lib.pagesizes import letter
from reportlab.pdfgen import canvas

from brokerdesk.calculations import FREQUENCY_LABELS, format_currency, format_percentage
from brokerdesk.documents import COLORS, format_date_long, format_date_short

PRIMARY = colors.HexColor(COLORS["primary"])
ACCENT = colors.HexColor(COLORS["accent"])
SECONDARY = colors.HexColor(COLORS["secondary"])
LIGHT = colors.HexColor("#e8edf2")
MUTED = colors.HexColor(COLORS["muted"])

W, H = letter
BOTTOM = 60


class _Doc:
    """Canvas with a running y position, header bar and page breaks."""

    def __init__(self, title: str, broker: dict[str, Any], today: date | None = None) -> None:
        self.buffer = io.BytesIO()
        self.c = canvas.Canvas(self.buffer, pagesize=letter)
        self.title = title
        self.broker = broker
        self.today = today or date.today()
        self.page = 1
        self.y = 0.0
        self.header()

    def header(self) -> None:
        c = self.c
        c.setFillColor(PRIMARY)
        c.rect(0, H - 70, W, 70, fill=True, stroke=False)
        c.setFillColor(colors.white)
        c.setFont("Helvetica-Bold", 15)
        c.drawString(40, H - 35, (self.broker.get("name") or "")[:60])
        c.setFont("Helvetica", 9)
        c.drawString(40, H - 52, self.title)
        c.drawRightString(W - 40, H - 35, f"Página {self.page}")
        c.setStrokeColor(ACCENT)
        c.setLineWidth(2)
        c.line(0, H - 70, W, H - 70)
        self.y = H - 92
        c.setFillColor(colors.black)
        c.setFont("Helvetica", 8)
        c.drawRightString(W - 40, self.y, format_date_long(self.today))
        self.y -= 18

    def ensure(self, needed: float = 14) -> None:
        if self.y - needed < BOTTOM:
            self.c.showPage()
            self.page += 1
            self.header()

    def text(self, value: str, size: float = 9, bold: bool = False, indent: float = 40) -> None:
        self.ensure()
        self.c.setFillColor(colors.black)
        self.c.setFont("Helvetica-Bold" if bold else "Helvetica", size)
        self.c.drawString(indent, self.y, value)
        self.y -= size + 5

    def section(self, title: str) -> None:
        self.ensure(30)
        self.y -= 4
        self.c.setFillColor(SECONDARY)
        self.c.rect(30, self.y - 4, W - 60, 16, fill=True, stroke=False)
        self.c.setFillColor(colors.white)
        self.c.setFont("Helvetica-Bold", 8.5)
        self.c.drawString(36, self.y, title)
        self.y -= 20

    def table(
        self,
        columns: list[tuple[str, float, str]],
        rows: list[list[str]],
        total: list[str] | None = None,
    ) -> None:
        """columns are (header, x, align) with align 'l' or 'r'; x is the right edge for 'r'."""

        def draw_header() -> None:
            self.c.setFillColor(LIGHT)
            self.c.rect(30, self.y - 4, W - 60, 14, fill=True, stroke=False)
            self.c.setFillColor(PRIMARY)
            self.c.setFont("Helvetica-Bold", 7.5)
            for (label, x, align) in columns:
                (self.c.drawRightString if align == "r" else self.c.drawString)(x, self.y, label)
            self.y -= 15

        self.ensure(30)
        draw_header()
        self.c.setFont("Helvetica", 7.5)
        for row in rows:
            if self.y < BOTTOM:
                self.c.showPage()
                self.page += 1
                self.header()
                draw_header()
            self.c.setFillColor(colors.black)
            self.c.setFont("Helvetica", 7.5)
            for (_, x, align), value in zip(columns, row):
                (self.c.drawRightString if align == "r" else self.c.drawString)(x, self.y, value)
            self.y -= 12
        if total:
            self.ensure(20)
            self.y -= 3
            self.c.setStrokeColor(PRIMARY)
            self.c.setLineWidth(0.8)
            self.c.line(30, self.y + 12, W - 30, self.y + 12)
            self.c.setFont("Helvetica-Bold", 8)
            for (_, x, align), value in zip(columns, total):
                if value:
                    (self.c.drawRightString if align == "r" else self.c.drawString)(x, self.y, value)
            self.y -= 16

    def footer_note(self, value: str) -> None:
        self.ensure(20)
        self.y -= 8
        self.c.setFont("Helvetica", 7)
        self.c.setFillColor(MUTED)
        self.c.drawString(40, self.y, value)
        self.y -= 12

    def finish(self) -> bytes:
        self.c.save()
        return self.buffer.getvalue()


def _contact(broker: dict[str, Any]) -> str:
    return "  |  ".join(v for v in (broker.get("name"), broker.get("email"), broker.get("phone")) if v)


# ---------------------------------------------------------------------------
# Renewal notice
# ---------------------------------------------------------------------------

def render_renewal_notice_pdf(notice: dict[str, Any], today: date | None = None) -> bytes:
    policy = notice["policy"]
    doc = _Doc(f"Aviso de Renovación  |  Póliza {policy.get('policy_number') or 'Sin número'}", notice["broker"], today)
    client = f"{policy.get('client_first_name') or ''} {policy.get('client_last_name') or ''}".strip() or "Cliente"
    doc.text(f"Estimado/a {client},", bold=True)
    doc.text("Le informamos que su póliza está próxima a renovarse. Estas son las condiciones del nuevo período.")

    doc.section("DATOS DE LA PÓLIZA")
    frequency = FREQUENCY_LABELS.get(policy.get("payment_frequency") or "", policy.get("payment_frequency") or "N/A")
    for label, value in (
        ("Número de póliza", policy.get("policy_number") or "Sin número"),
        ("Aseguradora", policy.get("insurer_name") or "Sin aseguradora"),
        ("Producto", policy.get("product_name") or "Sin producto"),
        ("Vigencia", f"{format_date_short(policy.get('start_date'))} - {format_date_short(policy.get('end_date'))}"),
        ("Frecuencia de pago", frequency),
        ("Fecha de renovación", format_date_long(notice["renewal_date"])),
    ):
        doc.ensure()
        doc.c.setFont("Helvetica", 8.5)
        doc.c.setFillColor(MUTED)
        doc.c.drawString(40, doc.y, label)
        doc.c.setFillColor(colors.black)
        doc.c.setFont("Helvetica-Bold", 8.5)
        doc.c.drawString(200, doc.y, str(value)[:60])
        doc.y -= 13

    doc.section("COMPARACIÓN DE PRIMAS")
    variation = {"aumento": colors.HexColor(COLORS["increase"]), "disminucion": colors.HexColor(COLORS["decrease"])}
    doc.ensure(40)
    box_w = (W - 80) / 3
    for idx, (label, value) in enumerate(
        (
            ("PRIMA ACTUAL", format_currency(notice["current_amount"])),
            ("PRIMA NUEVO PERÍODO", format_currency(notice["new_amount"])),
            ("VARIACIÓN", f"{format_percentage(notice['percentage'])} ({format_currency(notice['difference'])})"),
        )
    ):
        x = 40 + idx * box_w
        doc.c.setStrokeColor(LIGHT)
        doc.c.rect(x, doc.y - 22, box_w - 8, 34, fill=False, stroke=True)
        doc.c.setFillColor(MUTED)
        doc.c.setFont("Helvetica", 7)
        doc.c.drawCentredString(x + (box_w - 8) / 2, doc.y, label)
        doc.c.setFillColor(variation.get(notice["badge"], PRIMARY) if idx == 2 else PRIMARY)
        doc.c.setFont("Helvetica-Bold", 10.5)
        doc.c.drawCentredString(x + (box_w - 8) / 2, doc.y - 15, value)
    doc.y -= 40

    doc.section("CONSUMOS DEL PERÍODO")
    columns = [("Fecha", 40, "l"), ("Beneficiario", 100, "l"), ("Tipo", 220, "l"), ("Descripción", 320, "l"), ("Monto USD", W - 40, "r")]
    summary = notice["consumption_summary"]
    doc.table(
        columns,
        [
            [
                format_date_short(c["usage_date"]),
                (c.get("beneficiary_name") or "-")[:22],
                (c.get("usage_type_name") or "-")[:18],
                (c.get("description") or "-")[:40],
                format_currency(c["amount_usd"]) if c.get("amount_usd") else "-",
            ]
            for c in notice["consumptions"]
        ],
        total=["TOTAL", "", "", f"{summary['count']} consumos", format_currency(summary["total_usd"])],
    )

    if summary["by_type"]:
        doc.section("RESUMEN POR TIPO DE USO")
        doc.table(
            [("Tipo", 40, "l"), ("Cantidad", 330, "r"), ("Total USD", W - 40, "r")],
            [[t["usage_type"][:40], str(t["count"]), format_currency(t["total_usd"])] for t in summary["by_type"]],
        )

    doc.footer_note(_contact(notice["broker"]))
    return doc.finish()


# ---------------------------------------------------------------------------
# Commission breakdown
# ---------------------------------------------------------------------------

def render_commission_breakdown_pdf(
    breakdown: list[dict[str, Any]],
    broker: dict[str, Any],
    period: str | None = None,
    today: date | None = None,
) -> bytes:
    doc = _Doc("Desglose de Comisiones" + (f"  |  {period}" if period else ""), broker, today)
    columns = [
        ("Póliza", 35, "l"),
        ("Cliente", 100, "l"),
        ("Aseguradora", 210, "l"),
        ("Prima", 345, "r"),
        ("% Com.", 390, "r"),
        ("Comisión", 450, "r"),
        ("% Asesor", 500, "r"),
        ("Monto", W - 35, "r"),
    ]
    if not breakdown:
        doc.text("No hay comisiones asignadas para los filtros seleccionados.")
    for advisor in breakdown:
        doc.section(advisor["advisor_name"])
        doc.table(
            columns,
            [
                [
                    (item.get("policy_number") or "-")[:14],
                    (item.get("client_name") or "-")[:22],
                    (item.get("insurer_name") or "-")[:22],
                    format_currency(item["premium"]),
                    f"{float(item['commission_rate']):.2f}%",
                    format_currency(item["commission_amount"]),
                    f"{float(item['percentage']):.2f}%",
                    format_currency(item["amount"]),
                ]
                for item in advisor["items"]
            ],
            total=["", "TOTAL", "", "", "", "", "", format_currency(advisor["total"])],
        )
    grand_total = round(sum(a["total"] for a in breakdown), 2)
    doc.text(f"Total general: {format_currency(grand_total)}", size=10, bold=True)
    return doc.finish()


# ---------------------------------------------------------------------------
# Premium notice
# ---------------------------------------------------------------------------

def render_premium_notice_pdf(collection: dict[str, Any], broker: dict[str, Any], today: date | None = None) -> bytes:
    doc = _Doc("Aviso de Cobro de Prima", broker, today)
    doc.text(f"Estimado/a {collection.get('client_name') or 'Cliente'},", bold=True)
    doc.text("Le recordamos que tiene una cuota de prima pendiente de pago.")
    doc.section("DETALLE DEL AVISO")
    frequency = FREQUENCY_LABELS.get(collection.get("payment_frequency") or "", collection.get("payment_frequency") or "-")
    doc.table(
        [("Concepto", 40, "l"), ("Detalle", W - 40, "r")],
        [
            ["Póliza", collection.get("policy_number") or "-"],
            ["Aseguradora", collection.get("insurer_name") or "-"],
            ["Frecuencia de pago", frequency],
            ["Fecha de vencimiento", format_date_long(collection["due_date"])],
        ],
        total=["MONTO A PAGAR", format_currency(collection["amount_due"])],
    )
    overdue = collection.get("days_overdue") or 0
    if overdue > 0:
        doc.text(f"Esta cuota presenta {overdue} días de atraso.", bold=True)
    doc.footer_note(_contact(broker))
    return doc.finish()
