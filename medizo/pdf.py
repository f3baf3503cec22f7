"""
Prescription PDF rendering.

Builds an A4 prescription with reportlab's platypus layout engine. Content
flows across pages; each page carries the verification footer.
"""

from __future__ import annotations

import io
import logging
from datetime import date, datetime, timezone
from typing import Callable, Iterable, Optional
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.enums import TA_CENTER, TA_RIGHT
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.utils import ImageReader
from reportlab.platypus import (
    Image,
    KeepTogether,
    Paragraph,
    SimpleDocTemplate,
    Spacer,
    Table,
    TableStyle,
)

from medizo.qr import qr_png_bytes

logger = logging.getLogger(__name__)

PRIMARY = colors.HexColor("#006666")
SECTION = colors.HexColor("#004D4D")
LIGHT_BG = colors.HexColor("#F0F0F0")
WARN = colors.HexColor("#CC0000")
TEXT = colors.HexColor("#333333")
TABLE_HEADER = colors.HexColor("#D9EDED")
BORDER = colors.HexColor("#BBBBBB")

PAGE_WIDTH, PAGE_HEIGHT = A4
MARGIN = 40
CONTENT_WIDTH = PAGE_WIDTH - 2 * MARGIN
FOOTER_HEIGHT = 60
QR_SIZE = 80

FOOTER_NOTICE = "This is a digitally generated prescription by www.medizo.life"
FOOTER_VERIFICATION = "For verification, scan the QR code to get the Prescription ID"

ImageLoader = Callable[[str], Optional[bytes]]


def _parse_timestamp(value: Optional[str]) -> datetime:
    if value:
        try:
            return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            pass
    return datetime.now(timezone.utc)


def prescription_number(prescription: dict) -> str:
    created = _parse_timestamp(prescription.get("createdAt"))
    suffix = str(prescription.get("id", ""))[-5:].rjust(5, "0")
    return f"RX-{created:%Y-%m-%d}-{suffix}"


def patient_code(patient: dict) -> str:
    return f"PT-{str(patient['id'])[-6:]}" if patient.get("id") else ""


def patient_age(date_of_birth: Optional[str], today: Optional[date] = None) -> Optional[int]:
    if not date_of_birth:
        return None
    try:
        born = date.fromisoformat(str(date_of_birth)[:10])
    except ValueError:
        return None
    today = today or date.today()
    return today.year - born.year - ((today.month, today.day) < (born.month, born.day))


def normalize_allergies(value) -> list[str]:
    if not value:
        return []
    if isinstance(value, str):
        return [a.strip() for a in value.split(",") if a.strip()]
    if isinstance(value, dict):
        items: list[str] = []
        for group in value.values():
            if isinstance(group, list):
                items.extend(str(a) for a in group if a)
        return items
    return [str(a) for a in value if a]


def normalize_investigations(prescription: dict) -> list[dict]:
    raw = prescription.get("investigations") or []
    if isinstance(raw, str):
        items = [{"testName": s.strip()} for s in raw.split(",") if s.strip()]
    else:
        items = [{"testName": i} if isinstance(i, str) else dict(i) for i in raw]
    names = {i.get("testName") for i in items}
    for test in prescription.get("testsRequired") or []:
        if test not in names:
            items.append({"testName": test})
            names.add(test)
    return [i for i in items if i.get("testName")]


def _styles() -> dict[str, ParagraphStyle]:
    base = getSampleStyleSheet()
    body = ParagraphStyle(
        "Body", parent=base["Normal"], fontSize=9.5, leading=12.5, textColor=TEXT
    )
    bold = "Helvetica-Bold"
    return {
        "body": body,
        "small": ParagraphStyle("Small", parent=body, fontSize=8.5, leading=11),
        "bullet": ParagraphStyle("Bullet", parent=body, leftIndent=12, bulletIndent=4),
        "warn": ParagraphStyle(
            "Warn", parent=body, leftIndent=12, bulletIndent=4, textColor=WARN
        ),
        "doctor": ParagraphStyle(
            "Doctor", parent=body, fontName=bold, fontSize=16, leading=20, textColor=PRIMARY
        ),
        "clinic": ParagraphStyle(
            "Clinic",
            parent=body,
            fontName=bold,
            fontSize=12,
            alignment=TA_RIGHT,
            textColor=PRIMARY,
        ),
        "section": ParagraphStyle(
            "Section", parent=body, fontName=bold, fontSize=10, textColor=colors.white
        ),
        "cell": ParagraphStyle("Cell", parent=body, fontSize=9, leading=11),
        "cell_head": ParagraphStyle(
            "CellHead", parent=body, fontName=bold, fontSize=9, leading=11
        ),
        "center": ParagraphStyle("Center", parent=body, alignment=TA_CENTER),
    }


def _p(text, style: ParagraphStyle) -> Paragraph:
    return Paragraph(escape(str(text)), style)


def _labelled(label: str, value, style: ParagraphStyle) -> Paragraph:
    return Paragraph(f"<b>{escape(label)}</b> {escape(str(value))}", style)


def _joined(values) -> str:
    return ", ".join(map(str, values))


def _title_bar(title: str, styles: dict) -> Table:
    bar = Table([[Paragraph(escape(title), styles["section"])]], colWidths=[CONTENT_WIDTH])
    bar.setStyle(
        TableStyle(
            [
                ("BACKGROUND", (0, 0), (-1, -1), SECTION),
                ("LEFTPADDING", (0, 0), (-1, -1), 8),
                ("TOPPADDING", (0, 0), (-1, -1), 4),
                ("BOTTOMPADDING", (0, 0), (-1, -1), 4),
            ]
        )
    )
    return bar


def _bullets(items: Iterable, style: ParagraphStyle, symbol: str = "•") -> list[Paragraph]:
    return [Paragraph(escape(str(item)), style, bulletText=symbol) for item in items if item]


def _section(title: str, body: list, styles: dict) -> list:
    if not body:
        return []
    # Keep the title with the first lines of its body.
    head = KeepTogether([_title_bar(title, styles), Spacer(1, 4), *body[:2]])
    return [head, *body[2:], Spacer(1, 8)]


def _image_flowable(
    data: Optional[bytes], max_width: float, max_height: float
) -> Optional[Image]:
    if not data:
        return None
    try:
        width, height = ImageReader(io.BytesIO(data)).getSize()
    except Exception as e:
        logger.warning("Skipping unreadable image in prescription PDF: %s", e)
        return None
    scale = min(max_width / width, max_height / height, 1.0)
    return Image(io.BytesIO(data), width=width * scale, height=height * scale)


def _load(loader: Optional[ImageLoader], url: Optional[str]) -> Optional[bytes]:
    if not loader or not url:
        return None
    try:
        return loader(url)
    except Exception as e:
        logger.warning("Could not load image %s for PDF: %s", url, e)
        return None


def _doctor_name(doctor: dict) -> str:
    return f"Dr. {doctor.get('firstName', '')} {doctor.get('lastName', '')}".strip()


def _doctor_header(doctor: dict, styles: dict, logo: Optional[bytes]) -> Table:
    lines = [_p(_doctor_name(doctor), styles["doctor"])]
    if doctor.get("specialization"):
        lines.append(_p(doctor["specialization"], styles["body"]))
    reg_no = doctor.get("registrationNumber") or doctor.get("licenseNumber")
    if reg_no:
        lines.append(_p(f"Reg. No: {reg_no}", styles["small"]))
    phone = doctor.get("contactNumber") or doctor.get("phone")
    contacts = [
        f"Phone: {phone}" if phone else "",
        f"Email: {doctor['email']}" if doctor.get("email") else "",
        f"Web: {doctor['website']}" if doctor.get("website") else "",
    ]
    contacts = [c for c in contacts if c]
    if contacts:
        lines.append(_p("    ".join(contacts), styles["small"]))
    address = doctor.get("clinicAddress") or doctor.get("address")
    if address:
        lines.append(_p(f"Address: {address}", styles["small"]))

    right: list = []
    logo_image = _image_flowable(logo, 120, 60)
    if logo_image is not None:
        right.append(logo_image)
    if doctor.get("clinicName"):
        right.append(_p(doctor["clinicName"], styles["clinic"]))

    header = Table(
        [[lines, right or ""]], colWidths=[CONTENT_WIDTH * 0.6, CONTENT_WIDTH * 0.4]
    )
    header.setStyle(
        TableStyle(
            [
                ("VALIGN", (0, 0), (-1, -1), "TOP"),
                ("ALIGN", (1, 0), (1, 0), "RIGHT"),
                ("LINEBELOW", (0, 0), (-1, 0), 2, PRIMARY),
                ("BOTTOMPADDING", (0, 0), (-1, -1), 8),
            ]
        )
    )
    return header


def _rx_block(prescription: dict, created: datetime, styles: dict) -> Table:
    number = escape(prescription_number(prescription))
    info = [
        Paragraph(
            f"<b>Prescription ID:</b> <font name='Courier'>{number}</font>", styles["body"]
        ),
        _labelled("Date & Time:", f"{created:%d %B %Y}, {created:%I:%M %p}", styles["body"]),
    ]
    qr_png = qr_png_bytes(str(prescription.get("id", "")))
    qr = Image(io.BytesIO(qr_png), width=QR_SIZE, height=QR_SIZE)
    block = Table([[info, qr]], colWidths=[CONTENT_WIDTH - QR_SIZE - 10, QR_SIZE + 10])
    block.setStyle(
        TableStyle([("VALIGN", (0, 0), (-1, -1), "TOP"), ("ALIGN", (1, 0), (1, 0), "RIGHT")])
    )
    return block


def _patient_section(patient: dict, styles: dict) -> list:
    name_parts = (patient.get("firstName"), patient.get("middleName"), patient.get("lastName"))
    name = " ".join(part for part in name_parts if part)
    age = patient_age(patient.get("dateOfBirth"))
    gender = str(patient.get("gender") or "").capitalize()
    age_text = f"{age} Years" if age is not None else ""
    age_gender = " / ".join(x for x in (age_text, gender) if x)
    phone = patient.get("contactNumber") or patient.get("phone") or ""
    rows = [
        ("Name:", name, "Patient ID:", patient_code(patient)),
        ("Age / Gender:", age_gender, "Phone:", phone),
        ("Email:", patient.get("email") or "", "Blood Type:", patient.get("bloodType") or ""),
    ]
    cell = styles["cell"]
    cells = [[_labelled(a, b, cell), _labelled(c, d, cell)] for a, b, c, d in rows]
    if patient.get("address"):
        cells.append([_labelled("Address:", patient["address"], cell), ""])
    allergies = normalize_allergies(patient.get("allergies"))
    if allergies:
        text = escape(", ".join(allergies))
        cells.append(
            [Paragraph(f"<font color='#CC0000'><b>Allergies:</b> {text}</font>", cell), ""]
        )
    table = Table(cells, colWidths=[CONTENT_WIDTH / 2, CONTENT_WIDTH / 2])
    table.setStyle(
        TableStyle(
            [("BOX", (0, 0), (-1, -1), 1.5, SECTION), ("VALIGN", (0, 0), (-1, -1), "TOP")]
        )
    )
    return _section("PATIENT INFORMATION", [table], styles)


def _vitals_section(vitals: dict, styles: dict) -> list:
    labels = [
        ("bloodPressure", "BP", "mmHg"),
        ("pulse", "Pulse", "bpm"),
        ("temperature", "Temp", "°F"),
        ("spo2", "SpO2", "%"),
        ("respiratoryRate", "Resp. Rate", "/min"),
        ("bmi", "BMI", ""),
        ("painScale", "Pain", "/10"),
    ]
    present = [
        (label, f"{vitals[key]} {unit}".strip()) for key, label, unit in labels if vitals.get(key)
    ]
    if not present:
        return []
    header = [_p(label, styles["cell_head"]) for label, _ in present]
    values = [_p(value, styles["cell"]) for _, value in present]
    width = CONTENT_WIDTH / len(present)
    table = Table([header, values], colWidths=[width] * len(present))
    table.setStyle(
        TableStyle(
            [
                ("BACKGROUND", (0, 0), (-1, 0), TABLE_HEADER),
                ("GRID", (0, 0), (-1, -1), 0.5, BORDER),
                ("ALIGN", (0, 0), (-1, -1), "CENTER"),
            ]
        )
    )
    return _section("VITAL SIGNS (Recorded at consultation)", [table], styles)


def _medications_table(medications: list, styles: dict) -> Optional[Table]:
    headings = ("No.", "Medicine Name", "Dosage", "Duration", "Instructions")
    rows = [[_p(h, styles["cell_head"]) for h in headings]]
    for index, med in enumerate(medications, start=1):
        if isinstance(med, str):
            med = {"name": med}
        name = escape(med.get("name") or "")
        if med.get("type"):
            name += f"<br/><font size='8' color='#666666'>({escape(med['type'])})</font>"
        instructions = "; ".join(
            str(x) for x in (med.get("instructions"), med.get("timing"), med.get("frequency")) if x
        )
        rows.append(
            [
                _p(index, styles["cell"]),
                Paragraph(name, styles["cell"]),
                _p(med.get("dosage") or "-", styles["cell"]),
                _p(med.get("duration") or "-", styles["cell"]),
                _p(instructions or "-", styles["cell"]),
            ]
        )
    if len(rows) == 1:
        return None
    widths = [0.07, 0.3, 0.17, 0.16, 0.3]
    table = Table(rows, colWidths=[CONTENT_WIDTH * w for w in widths], repeatRows=1)
    table.setStyle(
        TableStyle(
            [
                ("BACKGROUND", (0, 0), (-1, 0), TABLE_HEADER),
                ("GRID", (0, 0), (-1, -1), 0.5, BORDER),
                ("VALIGN", (0, 0), (-1, -1), "TOP"),
                ("ROWBACKGROUNDS", (0, 1), (-1, -1), [colors.white, LIGHT_BG]),
            ]
        )
    )
    return table


def _investigation_lines(investigations: list[dict], notes: str, styles: dict) -> list:
    body: list = []
    for index, inv in enumerate(investigations, start=1):
        body.append(Paragraph(f"<b>{index}.</b> {escape(inv['testName'])}", styles["body"]))
        if inv.get("reason"):
            body.append(_p(inv["reason"], styles["small"]))
        details = [str(inv[k]) for k in ("priority", "fasting") if inv.get(k)]
        if details:
            body.append(_p(" | ".join(details), styles["small"]))
    if notes:
        body.append(_labelled("Note:", notes, styles["body"]))
    return body


def _signature_block(
    doctor: dict, created: datetime, styles: dict, signature: Optional[bytes]
) -> KeepTogether:
    parts: list = [Spacer(1, 12), Paragraph("<b>Prescribed by:</b>", styles["body"])]
    signature_image = _image_flowable(signature, 150, 60)
    if signature_image is not None:
        signature_image.hAlign = "LEFT"
        parts.append(signature_image)
    else:
        parts.append(Spacer(1, 30))
    parts.append(Paragraph(f"<b>{escape(_doctor_name(doctor))}</b>", styles["body"]))
    if doctor.get("specialization"):
        parts.append(_p(doctor["specialization"], styles["small"]))
    reg_no = doctor.get("registrationNumber") or doctor.get("licenseNumber")
    if reg_no:
        parts.append(_p(f"Reg. No: {reg_no}", styles["small"]))
    parts.append(_p(f"Date: {created:%d %B %Y}", styles["small"]))
    return KeepTogether(parts)


def _footer_painter(emergency_line: str):
    center = PAGE_WIDTH / 2

    def paint(canvas, doc):
        canvas.saveState()
        canvas.setStrokeColor(PRIMARY)
        canvas.setLineWidth(1)
        canvas.line(MARGIN, FOOTER_HEIGHT, PAGE_WIDTH - MARGIN, FOOTER_HEIGHT)
        canvas.setFillColor(TEXT)
        canvas.setFont("Helvetica", 8)
        canvas.drawCentredString(center, FOOTER_HEIGHT - 12, FOOTER_NOTICE)
        canvas.drawCentredString(center, FOOTER_HEIGHT - 24, FOOTER_VERIFICATION)
        if emergency_line:
            canvas.setFillColor(WARN)
            canvas.setFont("Helvetica-Bold", 8)
            canvas.drawCentredString(
                center, FOOTER_HEIGHT - 36, f"24x7 Emergency Helpline: {emergency_line}"
            )
        canvas.setFillColor(TEXT)
        canvas.setFont("Helvetica", 7)
        canvas.drawRightString(PAGE_WIDTH - MARGIN, FOOTER_HEIGHT - 48, f"Page {doc.page}")
        canvas.restoreState()

    return paint


def render_prescription_pdf(
    prescription: dict,
    patient: dict,
    doctor: dict,
    load_image: Optional[ImageLoader] = None,
) -> bytes:
    """Render ``prescription`` to PDF bytes."""
    styles = _styles()
    body = styles["body"]
    created = _parse_timestamp(prescription.get("createdAt"))
    story: list = [
        _doctor_header(doctor, styles, _load(load_image, doctor.get("clinicLogo"))),
        Spacer(1, 8),
        _rx_block(prescription, created, styles),
        Spacer(1, 8),
    ]
    story += _patient_section(patient, styles)
    story += _vitals_section(prescription.get("vitalSigns") or {}, styles)

    history: list = []
    chronic = patient.get("chronicConditions") or []
    if chronic:
        history.append(_labelled("Chronic Conditions:", _joined(chronic), body))
    if prescription.get("currentMedications"):
        current = _joined(prescription["currentMedications"])
        history.append(_labelled("Current Medications:", current, body))
    if prescription.get("pastSurgicalHistory"):
        surgical = _joined(prescription["pastSurgicalHistory"])
        history.append(_labelled("Past Surgical History:", surgical, body))
    story += _section("MEDICAL HISTORY", history, styles)

    clinical: list = []
    if prescription.get("presentingComplaints"):
        clinical.append(Paragraph("<b>Presenting Complaints:</b>", body))
        clinical += _bullets(prescription["presentingComplaints"], styles["bullet"])
    if prescription.get("clinicalFindings"):
        clinical.append(Paragraph("<b>Clinical Findings:</b>", body))
        clinical += _bullets(prescription["clinicalFindings"], styles["bullet"])
    diagnoses = prescription.get("provisionalDiagnosis") or []
    if not diagnoses and prescription.get("diagnosis"):
        diagnoses = [prescription["diagnosis"]]
    if diagnoses:
        clinical.append(_labelled("Provisional Diagnosis:", _joined(diagnoses), body))
    story += _section("CHIEF COMPLAINTS & CLINICAL NOTES", clinical, styles)

    medications = list(prescription.get("medications") or [])
    if not medications and prescription.get("medication"):
        medications = [
            {
                "name": prescription["medication"],
                "dosage": prescription.get("dosage"),
                "duration": prescription.get("duration"),
                "instructions": prescription.get("instructions") or prescription.get("frequency"),
            }
        ]
    meds_body: list = []
    meds_table = _medications_table(medications, styles)
    if meds_table is not None:
        meds_body.append(meds_table)
    if prescription.get("medicationNotes"):
        meds_body.append(Spacer(1, 4))
        meds_body += _bullets(prescription["medicationNotes"], styles["bullet"])
    story += _section("PRESCRIBED MEDICATIONS", meds_body, styles)

    investigations = _investigation_lines(
        normalize_investigations(prescription),
        prescription.get("investigationNotes") or "",
        styles,
    )
    story += _section("INVESTIGATIONS REQUIRED", investigations, styles)

    lifestyle: list = []
    if prescription.get("dietModifications"):
        lifestyle.append(Paragraph("<b>Diet Modifications:</b>", body))
        lifestyle += _bullets(prescription["dietModifications"], styles["bullet"])
    if prescription.get("lifestyleChanges"):
        lifestyle.append(Paragraph("<b>Lifestyle Changes:</b>", body))
        lifestyle += _bullets(prescription["lifestyleChanges"], styles["bullet"])
    if prescription.get("warningSigns"):
        lifestyle.append(
            Paragraph(
                "<font color='#CC0000'><b>Warning Signs - seek immediate care if:</b></font>",
                body,
            )
        )
        lifestyle += _bullets(prescription["warningSigns"], styles["warn"], symbol="!")
    story += _section("DIETARY & LIFESTYLE RECOMMENDATIONS", lifestyle, styles)

    follow_up = prescription.get("followUpInfo") or {}
    follow_up_date = follow_up.get("appointmentDate") or prescription.get("followUpDate") or ""
    follow: list = []
    if follow_up_date:
        appointment = " at ".join(
            x for x in (follow_up_date, follow_up.get("appointmentTime")) if x
        )
        follow.append(_labelled("Next Appointment:", appointment, body))
    if follow_up.get("purpose"):
        follow.append(_labelled("Purpose:", follow_up["purpose"], body))
    if follow_up.get("bringItems"):
        follow.append(Paragraph("<b>Bring to follow-up:</b>", body))
        follow += _bullets(follow_up["bringItems"], styles["bullet"])
    doctor_phone = doctor.get("contactNumber") or doctor.get("phone")
    if follow and doctor_phone:
        follow.append(_labelled("For Appointments:", f"Call {doctor_phone}", body))
    story += _section("FOLLOW-UP INFORMATION", follow, styles)

    if prescription.get("notes"):
        story += [_labelled("Additional Notes:", prescription["notes"], body), Spacer(1, 6)]

    signature = _load(load_image, doctor.get("signature"))
    story.append(_signature_block(doctor, created, styles, signature))

    buf = io.BytesIO()
    doc = SimpleDocTemplate(
        buf,
        pagesize=A4,
        leftMargin=MARGIN,
        rightMargin=MARGIN,
        topMargin=MARGIN,
        bottomMargin=FOOTER_HEIGHT + 10,
        title=f"Prescription {prescription_number(prescription)}",
        author=_doctor_name(doctor),
    )
    painter = _footer_painter(prescription.get("emergencyHelpline") or "")
    doc.build(story, onFirstPage=painter, onLaterPages=painter)
    return buf.getvalue()
