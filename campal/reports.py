"""
Report builders for the CAMPAL Registration Application

Registration reports (general, per district, per church) and the check-in
report are assembled here as plain data first, then rendered to PDF with
reportlab or to Excel with pandas. QR code images for check-in tickets
are rendered with qrcode.
"""

import re
from dataclasses import dataclass, field
from datetime import date, datetime
from functools import partial
from io import BytesIO
from typing import Dict, List, Optional, Union
from xml.sax.saxutils import escape
from zoneinfo import ZoneInfo

import pandas as pd
import qrcode
from reportlab.lib import colors
from reportlab.lib.enums import TA_CENTER
from reportlab.lib.pagesizes import A4, portrait
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import cm
from reportlab.pdfgen import canvas
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from .exceptions import DataValidationException
from .models import Church, District, PaymentStatus, Registration, ReportType

EVENT_TITLE = "CAMPAL 2025 - IPITINGA"
FILE_PREFIX = "campal-2025"
CHECKIN_TITLE = "Relatório de Check-in - CAMPAL 2025"
CHECKIN_EXCEL_FILENAME = "checkin-report.xlsx"
CHECKIN_PDF_FILENAME = "checkin-report.pdf"
EXCEL_MIMETYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

PRIMARY = colors.Color(197 / 255, 71 / 255, 52 / 255)
ACCENT = colors.Color(52 / 255, 71 / 255, 197 / 255)
ROW_ALT = colors.Color(249 / 255, 250 / 255, 251 / 255)

REGISTRATION_HEADERS = ["Nome", "Idade", "Distrito", "Igreja", "Status", "Método", "Data"]
DISTRICT_STATS_HEADERS = ["Distrito", "Total", "Pagos", "Pendentes"]
CHECKIN_HEADERS = ["Nome", "Idade", "Distrito", "Igreja", "Status", "Data Check-in"]


# ---------------------------------------------------------------- formatting

def _to_datetime(value: Union[str, datetime, None]) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


def format_date_br(value: Union[str, date, datetime, None]) -> str:
    """DD/MM/AAAA, or an empty string when there is no date"""
    if value is None or value == "":
        return ""
    if isinstance(value, str):
        value = _to_datetime(value)
    return value.strftime("%d/%m/%Y")


def format_datetime_br(value: Union[str, datetime, None], timezone_name: str = "America/Sao_Paulo") -> str:
    """DD/MM/AAAA HH:MM:SS in Brazil time, or '-' when missing"""
    moment = _to_datetime(value)
    if moment is None:
        return "-"
    if moment.tzinfo is not None:
        moment = moment.astimezone(ZoneInfo(timezone_name))
    return moment.strftime("%d/%m/%Y %H:%M:%S")


def slugify_name(name: str) -> str:
    """Lower-case the name and join its words with dashes"""
    return re.sub(r"\s+", "-", (name or "").strip()).lower()


# ------------------------------------------------------ registration report

@dataclass
class RegistrationReport:
    """Everything needed to render one registration PDF"""
    report_type: ReportType
    title: str
    subtitle: str
    rows: List[List[str]]
    total: int
    paid: int
    pending: int
    generated_at: datetime
    filename: str
    district_stats: List[List[str]] = field(default_factory=list)


def build_registration_report(registrations: List[Registration],
                              report_type: Union[ReportType, str] = ReportType.GENERAL,
                              selected_id: Optional[str] = None,
                              districts: Optional[List[District]] = None,
                              churches: Optional[List[Church]] = None,
                              generated_at: Optional[datetime] = None) -> RegistrationReport:
    """
    Select and summarize the registrations for a report

    Args:
        registrations: Registrations already narrowed by the page filters
        report_type: general, district or church
        selected_id: District or church ID for the scoped reports
        districts: All districts, for names and per-district stats
        churches: All churches, for names
        generated_at: Report timestamp, defaults to now

    Raises:
        DataValidationException: If a scoped report has no selection
    """
    report_type = ReportType(report_type)
    districts = districts or []
    churches = churches or []
    generated_at = generated_at or datetime.now(ZoneInfo("America/Sao_Paulo"))
    district_names = {d.id: d.name for d in districts}
    date_string = generated_at.strftime("%Y-%m-%d")

    selected = registrations
    subtitle = "Relatório Geral de Inscrições"
    filename = f"{FILE_PREFIX}-relatorio-geral-{date_string}.pdf"

    if report_type is ReportType.DISTRICT:
        if not selected_id:
            raise DataValidationException("selected_id", "Selecione um distrito")
        if selected_id not in district_names:
            raise DataValidationException("selected_id", "Distrito não encontrado")
        selected = [r for r in registrations if r.district_id == selected_id]
        district_name = district_names[selected_id]
        subtitle = f"Relatório do Distrito: {district_name}"
        filename = f"{FILE_PREFIX}-distrito-{slugify_name(district_name)}-{date_string}.pdf"

    elif report_type is ReportType.CHURCH:
        if not selected_id:
            raise DataValidationException("selected_id", "Selecione uma igreja")
        church = next((c for c in churches if c.id == selected_id), None)
        if church is None:
            raise DataValidationException("selected_id", "Igreja não encontrada")
        selected = [r for r in registrations if r.church_id == selected_id]
        district_name = district_names.get(church.district_id, "")
        subtitle = f"Relatório da Igreja: {church.name} ({district_name})"
        filename = f"{FILE_PREFIX}-igreja-{slugify_name(church.name)}-{date_string}.pdf"

    rows = [
        [
            r.full_name,
            str(r.age),
            r.district_name,
            r.church_name,
            r.payment_status.label,
            r.payment_method.value.upper() if r.payment_method else "",
            format_date_br(r.registration_date),
        ]
        for r in selected
    ]
    paid = sum(1 for r in selected if r.payment_status is PaymentStatus.PAID)

    district_stats = []
    if report_type is ReportType.GENERAL:
        for district in districts:
            in_district = [r for r in selected if r.district_id == district.id]
            if not in_district:
                continue
            district_paid = sum(1 for r in in_district if r.payment_status is PaymentStatus.PAID)
            district_stats.append([
                district.name,
                str(len(in_district)),
                str(district_paid),
                str(len(in_district) - district_paid),
            ])

    return RegistrationReport(
        report_type=report_type,
        title=EVENT_TITLE,
        subtitle=subtitle,
        rows=rows,
        total=len(selected),
        paid=paid,
        pending=len(selected) - paid,
        generated_at=generated_at,
        filename=filename,
        district_stats=district_stats,
    )


# -------------------------------------------------------------- PDF helpers

class NumberedCanvas(canvas.Canvas):
    """Canvas that writes 'Página i de n' once the page count is known"""

    def __init__(self, *args, footer_text: str = "", **kwargs):
        super().__init__(*args, **kwargs)
        self._saved_page_states = []
        self._footer_text = footer_text

    def showPage(self):
        self._saved_page_states.append(dict(self.__dict__))
        self._startPage()

    def save(self):
        page_count = len(self._saved_page_states)
        for state in self._saved_page_states:
            self.__dict__.update(state)
            self._draw_footer(page_count)
            super().showPage()
        super().save()

    def _draw_footer(self, page_count: int):
        width, _ = self._pagesize
        self.setFont("Helvetica", 8)
        self.setFillColor(colors.Color(128 / 255, 128 / 255, 128 / 255))
        text = f"Página {self._pageNumber} de {page_count}"
        if self._footer_text:
            text = f"{text} - {self._footer_text}"
        self.drawCentredString(width / 2, 1 * cm, text)


def _styles() -> Dict[str, ParagraphStyle]:
    styles = getSampleStyleSheet()
    return {
        "banner_title": ParagraphStyle("banner_title", parent=styles["h1"], alignment=TA_CENTER,
                                       fontSize=20, leading=24, textColor=colors.white, spaceAfter=0),
        "banner_subtitle": ParagraphStyle("banner_subtitle", parent=styles["Normal"], alignment=TA_CENTER,
                                          fontSize=13, leading=16, textColor=colors.white,
                                          fontName="Helvetica-Bold"),
        "title": ParagraphStyle("title", parent=styles["h1"], fontSize=18, spaceAfter=8),
        "heading": ParagraphStyle("heading", parent=styles["h2"], fontSize=12, spaceBefore=10,
                                  spaceAfter=4, fontName="Helvetica-Bold", textColor=PRIMARY),
        "normal": styles["Normal"],
        "empty": ParagraphStyle("empty", parent=styles["Normal"], alignment=TA_CENTER, fontSize=14,
                                leading=18, spaceBefore=40),
        "cell": ParagraphStyle("cell", parent=styles["Normal"], fontSize=8, leading=10),
    }


def _table(headers: List[str], rows: List[List[str]], col_widths: List[float],
           header_color, cell_style: ParagraphStyle, striped: bool = True) -> Table:
    data = [headers] + [[Paragraph(escape(str(value)), cell_style) for value in row] for row in rows]
    table = Table(data, colWidths=col_widths, repeatRows=1)
    style = [
        ("BACKGROUND", (0, 0), (-1, 0), header_color),
        ("TEXTCOLOR", (0, 0), (-1, 0), colors.white),
        ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
        ("FONTSIZE", (0, 0), (-1, 0), 9),
        ("GRID", (0, 0), (-1, -1), 0.25, colors.lightgrey),
        ("VALIGN", (0, 0), (-1, -1), "MIDDLE"),
    ]
    if striped:
        style.append(("ROWBACKGROUNDS", (0, 1), (-1, -1), [colors.white, ROW_ALT]))
    table.setStyle(TableStyle(style))
    return table


def _generated_label(moment: datetime) -> str:
    return f"Gerado em {moment.strftime('%d/%m/%Y %H:%M:%S')}"


def _new_document(buf: BytesIO) -> SimpleDocTemplate:
    return SimpleDocTemplate(buf, pagesize=portrait(A4), leftMargin=1.5 * cm, rightMargin=1.5 * cm,
                             topMargin=1.5 * cm, bottomMargin=2 * cm)


def render_registration_pdf(report: RegistrationReport) -> bytes:
    """Render a registration report to PDF bytes"""
    buf = BytesIO()
    doc = _new_document(buf)
    styles = _styles()
    width = doc.width

    banner = Table(
        [[Paragraph(escape(report.title), styles["banner_title"])],
         [Paragraph(escape(report.subtitle), styles["banner_subtitle"])]],
        colWidths=[width],
    )
    banner.setStyle(TableStyle([
        ("BACKGROUND", (0, 0), (-1, -1), PRIMARY),
        ("TOPPADDING", (0, 0), (-1, -1), 8),
        ("BOTTOMPADDING", (0, 0), (-1, -1), 8),
        ("LINEBELOW", (0, -1), (-1, -1), 2, ACCENT),
    ]))

    story = [banner, Spacer(1, 0.4 * cm)]
    story.append(Paragraph("RESUMO", styles["heading"]))
    for line in (
        f"Total de Inscrições: {report.total}",
        f"Pagamentos Confirmados: {report.paid}",
        f"Pagamentos Pendentes: {report.pending}",
        f"Data do Relatório: {report.generated_at.strftime('%d/%m/%Y')}",
    ):
        story.append(Paragraph(line, styles["normal"]))
    story.append(Spacer(1, 0.4 * cm))

    if report.rows:
        col_widths = [c * cm for c in (4.6, 1.2, 2.8, 4.2, 1.7, 1.7, 1.8)]
        story.append(_table(REGISTRATION_HEADERS, report.rows, col_widths, PRIMARY, styles["cell"]))
        if report.district_stats:
            story.append(Spacer(1, 0.6 * cm))
            stats_widths = [c * cm for c in (7.5, 3.5, 3.5, 3.5)]
            story.append(_table(DISTRICT_STATS_HEADERS, report.district_stats, stats_widths, ACCENT,
                                styles["cell"], striped=False))
    else:
        story.append(Paragraph("Nenhuma inscrição encontrada para os filtros selecionados.", styles["empty"]))

    doc.build(story, canvasmaker=partial(NumberedCanvas, footer_text=_generated_label(report.generated_at)))
    return buf.getvalue()


# ------------------------------------------------------------ check-in report

def build_checkin_rows(registrations: List[Registration],
                       timezone_name: str = "America/Sao_Paulo") -> List[Dict]:
    """Flatten registrations into the check-in report rows"""
    return [
        {
            "full_name": r.full_name,
            "age": r.age,
            "district_name": r.district_name,
            "church_name": r.church_name,
            "checkin_status": "Presente" if r.checkin_status else "Ausente",
            "checkin_datetime": format_datetime_br(r.checkin_datetime, timezone_name),
        }
        for r in registrations
    ]


def checkin_dataframe(rows: List[Dict]) -> pd.DataFrame:
    frame = pd.DataFrame(rows, columns=["full_name", "age", "district_name", "church_name",
                                        "checkin_status", "checkin_datetime"])
    frame.columns = CHECKIN_HEADERS
    return frame


def render_checkin_excel(rows: List[Dict]) -> bytes:
    """Render the check-in rows to an .xlsx workbook with a 'Check-ins' sheet"""
    buf = BytesIO()
    with pd.ExcelWriter(buf, engine="openpyxl") as writer:
        checkin_dataframe(rows).to_excel(writer, sheet_name="Check-ins", index=False)
    return buf.getvalue()


def render_checkin_pdf(rows: List[Dict], stats: Dict, generated_at: Optional[datetime] = None) -> bytes:
    """
    Render the check-in report to PDF bytes

    Args:
        rows: Output of build_checkin_rows
        stats: Mapping with total, present and absent counts
        generated_at: Footer timestamp, defaults to now
    """
    generated_at = generated_at or datetime.now(ZoneInfo("America/Sao_Paulo"))
    buf = BytesIO()
    doc = _new_document(buf)
    styles = _styles()

    story = [Paragraph(CHECKIN_TITLE, styles["title"])]
    story.append(Paragraph(f"Total de Inscritos: {stats.get('total', 0)}", styles["normal"]))
    story.append(Paragraph(f"Presentes: {stats.get('present', 0)}", styles["normal"]))
    story.append(Paragraph(f"Ausentes: {stats.get('absent', 0)}", styles["normal"]))
    story.append(Spacer(1, 0.4 * cm))

    table_rows = [
        [row["full_name"], str(row["age"]), row["district_name"], row["church_name"],
         row["checkin_status"], row["checkin_datetime"]]
        for row in rows
    ]
    col_widths = [c * cm for c in (4.8, 1.2, 3.0, 4.4, 1.8, 2.8)]
    story.append(_table(CHECKIN_HEADERS, table_rows, col_widths, PRIMARY, styles["cell"]))

    doc.build(story, canvasmaker=partial(NumberedCanvas, footer_text=_generated_label(generated_at)))
    return buf.getvalue()


# ------------------------------------------------------------------- QR codes

def render_qr_png(token: str, box_size: int = 8, border: int = 4) -> bytes:
    """PNG bytes of a QR code encoding the check-in token"""
    qr = qrcode.QRCode(version=None, box_size=box_size, border=border)
    qr.add_data(token)
    qr.make(fit=True)
    image = qr.make_image(fill_color="black", back_color="white")
    buf = BytesIO()
    image.save(buf, format="PNG")
    return buf.getvalue()
