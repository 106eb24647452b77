"""
Downloadable PDF report for a completed verification.
"""
from datetime import datetime, timezone
from io import BytesIO
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.enums import TA_CENTER
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from .models import VerificationRecord

FEEDBACK_SECTIONS = (
    ("overall", "Summary"),
    ("face", "Face Match Feedback"),
    ("age", "Age Estimation Feedback"),
)


def _fmt(value) -> str:
    if value is None:
        return "-"
    if isinstance(value, bool):
        return "PASSED" if value else "FAILED"
    if isinstance(value, datetime):
        return value.strftime("%Y-%m-%d %H:%M:%S UTC")
    return str(value)


def _percent(value) -> str:
    return "-" if value is None else f"{value}%"


def build_report_pdf(record: VerificationRecord) -> BytesIO:
    """Render the verification record as a PDF and return it as a rewound buffer."""
    buffer = BytesIO()
    doc = SimpleDocTemplate(buffer, pagesize=A4, title=f"Verification {record.id}")
    styles = getSampleStyleSheet()
    title_style = ParagraphStyle(
        "ReportTitle",
        parent=styles["Heading1"],
        fontSize=22,
        textColor=colors.HexColor("#1e40af"),
        spaceAfter=24,
        alignment=TA_CENTER,
    )
    heading_style = ParagraphStyle(
        "ReportHeading",
        parent=styles["Heading2"],
        fontSize=14,
        textColor=colors.HexColor("#1e40af"),
        spaceAfter=10,
    )

    story = [
        Paragraph("IDENTITY VERIFICATION REPORT", title_style),
        Paragraph(f"Verification <b>#{record.id}</b> - status <b>{record.status.value}</b>", styles["Normal"]),
        Spacer(1, 0.25 * inch),
        Paragraph("Results", heading_style),
    ]

    details = [
        ["Identity verified:", _fmt(record.identity_verified)],
        ["Age verified:", _fmt(record.age_verified)],
        ["Face match score:", _percent(record.face_match_score)],
        ["Face match confidence:", _percent(record.face_confidence)],
        ["Estimated age (selfie):", _fmt(record.detected_age)],
        ["Age estimate confidence:", _percent(record.age_confidence)],
        ["Name (document):", _fmt(record.extracted_name)],
        ["Date of birth (document):", _fmt(record.extracted_dob)],
        ["Age (document):", _fmt(record.extracted_age)],
        ["OCR language:", _fmt(record.ocr_language)],
        ["OCR confidence:", _percent(record.ocr_confidence)],
        ["Started:", _fmt(record.created_at)],
        ["Completed:", _fmt(record.completed_at)],
    ]
    details_table = Table(details, colWidths=[2.3 * inch, 3.7 * inch])
    details_table.setStyle(TableStyle([
        ("BACKGROUND", (0, 0), (0, -1), colors.HexColor("#f3f4f6")),
        ("TEXTCOLOR", (0, 0), (-1, -1), colors.black),
        ("ALIGN", (0, 0), (-1, -1), "LEFT"),
        ("FONTNAME", (0, 0), (0, -1), "Helvetica-Bold"),
        ("FONTSIZE", (0, 0), (-1, -1), 10),
        ("GRID", (0, 0), (-1, -1), 1, colors.grey),
        ("VALIGN", (0, 0), (-1, -1), "MIDDLE"),
    ]))
    story.append(details_table)
    story.append(Spacer(1, 0.25 * inch))

    feedback = record.quality_feedback or {}
    for key, heading in FEEDBACK_SECTIONS:
        lines = feedback.get(key) or []
        if not lines:
            continue
        story.append(Paragraph(heading, heading_style))
        for line in lines:
            story.append(Paragraph(f"&bull; {escape(line)}", styles["Normal"]))
        story.append(Spacer(1, 0.15 * inch))

    generated = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")
    story.append(Paragraph(
        f"<i>Generated on {generated}</i><br/>"
        f"<i>Scores are heuristic estimates and are not a biometric identification.</i>",
        styles["Normal"],
    ))

    doc.build(story)
    buffer.seek(0)
    return buffer
