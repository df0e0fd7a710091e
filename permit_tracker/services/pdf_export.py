"""
Single-permit PDF record (reportlab canvas).

Sections, top to bottom: header, permit info, checklist answers for
sections A-D, hazards and PPE, signatures, renewal table, closure. Every
page carries a diagonal ACTIVE / CLOSED watermark when the permit is in
one of those states.

Checklist answers are printed by section and item number (``A_Q3``); the
question wording belongs to the form front end.
"""

import io
import logging
import re

from reportlab.lib.colors import Color
from reportlab.lib.pagesizes import A4
from reportlab.pdfbase import pdfmetrics
from reportlab.pdfgen import canvas

from permit_tracker.utils.helpers import format_display

logger = logging.getLogger(__name__)

PAGE_WIDTH, PAGE_HEIGHT = A4
MARGIN = 30
CONTENT_WIDTH = PAGE_WIDTH - 2 * MARGIN
TOP_Y = PAGE_HEIGHT - 110
BOTTOM_Y = 60

CHECKLIST_SECTIONS = ("A", "B", "C", "D")
_QUESTION_KEY = re.compile(r"^([A-D])_Q(\d+)$")

WATERMARKS = {
    "Active": Color(0, 0.6, 0, alpha=0.12),
    "Closed": Color(0.8, 0, 0, alpha=0.12),
}


def _wrap(text: str, font_name: str, font_size: float, max_width: float) -> list[str]:
    """Wrap text into lines that fit max_width using reportlab string metrics."""
    lines: list[str] = []
    for para in (text or "").replace("\r", "").split("\n"):
        words = para.split()
        if not words:
            lines.append("")
            continue
        cur = words[0]
        for w in words[1:]:
            candidate = f"{cur} {w}"
            if pdfmetrics.stringWidth(candidate, font_name, font_size) <= max_width:
                cur = candidate
            else:
                lines.append(cur)
                cur = w
        lines.append(cur)
    return lines


def format_signature(signature) -> str:
    if not signature:
        return "-"
    if isinstance(signature, dict):
        return f"{signature.get('name', '-')} ({format_display(signature.get('timestamp'))})"
    return str(signature)


def checklist_answers(document: dict) -> dict[str, list[tuple[int, str, str]]]:
    """Group ``<S>_Q<n>`` answers by section, ordered by item number."""
    sections: dict[str, list[tuple[int, str, str]]] = {s: [] for s in CHECKLIST_SECTIONS}
    for key, value in document.items():
        match = _QUESTION_KEY.match(key)
        if not match:
            continue
        section, number = match.group(1), int(match.group(2))
        detail = document.get(f"{key}_Detail") or ""
        sections[section].append((number, str(value or "NA"), str(detail)))
    for items in sections.values():
        items.sort()
    return sections


def selected_flags(document: dict, prefix: str) -> list[str]:
    """Keys like ``H_H2S`` / ``P_Helmet`` whose value is ``Y``, prefix stripped."""
    flags = []
    for key, value in document.items():
        if key.startswith(prefix) and not key.endswith("_Detail") and value == "Y":
            name = key[len(prefix):]
            if name == "Others" and document.get(f"{key}_Detail"):
                name = f"Others: {document[f'{key}_Detail']}"
            flags.append(name)
    return sorted(flags)


class _PermitPdf:
    """Cursor-based writer over a reportlab canvas."""

    def __init__(self, snap: dict):
        self.snap = snap
        self.buf = io.BytesIO()
        self.c = canvas.Canvas(self.buf, pagesize=A4)
        permit_id = (snap.get("identity") or {}).get("permit_id", "")
        self.c.setTitle(f"Work Permit {permit_id}")
        self.y = TOP_Y
        self.page = 0
        self._start_page()

    # ── Page furniture ───────────────────────────────────────────────

    def _start_page(self) -> None:
        self.page += 1
        self._watermark()
        c = self.c
        identity = self.snap.get("identity") or {}
        c.setFillColorRGB(0, 0, 0)
        c.setFont("Helvetica-Bold", 14)
        c.drawString(MARGIN, PAGE_HEIGHT - 50, "WORK PERMIT")
        c.setFont("Helvetica", 9)
        c.drawString(MARGIN, PAGE_HEIGHT - 66, f"Permit No: {identity.get('permit_id', '-')}")
        c.drawRightString(PAGE_WIDTH - MARGIN, PAGE_HEIGHT - 66,
                          f"Status: {self.snap.get('status', '-')}")
        c.line(MARGIN, PAGE_HEIGHT - 76, PAGE_WIDTH - MARGIN, PAGE_HEIGHT - 76)
        c.setFont("Helvetica", 7)
        c.drawRightString(PAGE_WIDTH - MARGIN, 30, f"Page {self.page}")
        self.y = TOP_Y

    def _watermark(self) -> None:
        status = self.snap.get("status")
        color = WATERMARKS.get(status)
        if color is None:
            return
        c = self.c
        c.saveState()
        c.setFillColor(color)
        c.setFont("Helvetica-Bold", 90)
        c.translate(PAGE_WIDTH / 2, PAGE_HEIGHT / 2)
        c.rotate(45)
        c.drawCentredString(0, 0, status.upper())
        c.restoreState()

    def _ensure(self, height: float) -> None:
        if self.y - height < BOTTOM_Y:
            self.c.showPage()
            self._start_page()

    # ── Primitives ───────────────────────────────────────────────────

    def heading(self, text: str) -> None:
        self._ensure(30)
        self.y -= 8
        self.c.setFont("Helvetica-Bold", 10)
        self.c.drawString(MARGIN, self.y, text)
        self.y -= 14

    def paragraph(self, text: str, *, font_size: float = 9, indent: float = 0) -> None:
        lines = _wrap(text, "Helvetica", font_size, CONTENT_WIDTH - indent)
        for line in lines:
            self._ensure(font_size + 3)
            self.c.setFont("Helvetica", font_size)
            self.c.drawString(MARGIN + indent, self.y, line)
            self.y -= font_size + 3

    def table(self, headers: list[str], widths: list[float], rows: list[list[str]]) -> None:
        font_size = 8
        line_h = font_size + 2

        def draw_row(cells: list[str], bold: bool = False) -> None:
            font = "Helvetica-Bold" if bold else "Helvetica"
            wrapped = [_wrap(str(cell), font, font_size, w - 6) for cell, w in zip(cells, widths)]
            height = max(len(lines) for lines in wrapped) * line_h + 6
            self._ensure(height)
            x = MARGIN
            for lines, w in zip(wrapped, widths):
                self.c.rect(x, self.y - height, w, height)
                self.c.setFont(font, font_size)
                ty = self.y - font_size - 2
                for line in lines:
                    self.c.drawString(x + 3, ty, line)
                    ty -= line_h
                x += w
            self.y -= height

        draw_row(headers, bold=True)
        for row in rows:
            draw_row(row)
        self.y -= 6

    # ── Sections ─────────────────────────────────────────────────────

    def info(self) -> None:
        doc = self.snap.get("document") or {}
        window = self.snap.get("window") or {}
        identity = self.snap.get("identity") or {}
        self.heading("PERMIT INFORMATION")
        rows = [
            ["Validity", f"{format_display(window.get('from'))} - {format_display(window.get('to'))}"],
            ["Work Type", identity.get("work_type") or doc.get("WorkType") or "-"],
            ["Issued To", f"{doc.get('IssuedToDept') or '-'} ({doc.get('Vendor') or '-'})"],
            ["Location", doc.get("ExactLocation") or "-"],
            ["Description", doc.get("Desc") or "-"],
            ["Site Person", doc.get("RequesterName") or "-"],
            ["Security", doc.get("SecurityGuard") or "-"],
            ["Emergency", doc.get("EmergencyContact") or "-"],
            ["Fire Station", doc.get("FireStation") or "-"],
        ]
        self.table(["Field", "Value"], [120, CONTENT_WIDTH - 120], rows)

    def checklists(self) -> None:
        doc = self.snap.get("document") or {}
        for section, items in checklist_answers(doc).items():
            if not items:
                continue
            self.heading(f"SECTION {section}")
            rows = [[f"{section}{number}", answer, detail] for number, answer, detail in items]
            self.table(["Item", "Status", "Remarks"], [60, 80, CONTENT_WIDTH - 140], rows)

    def hazards(self) -> None:
        doc = self.snap.get("document") or {}
        self.heading("HAZARDS & PRECAUTIONS")
        self.paragraph(f"Hazards: {', '.join(selected_flags(doc, 'H_')) or '-'}")
        self.paragraph(f"PPE: {', '.join(selected_flags(doc, 'P_')) or '-'}")

    def signatures(self) -> None:
        doc = self.snap.get("document") or {}
        self.heading("SIGNATURES")
        width = CONTENT_WIDTH / 3
        self.table(
            ["Requester", "Reviewer", "Approver"],
            [width, width, width],
            [[doc.get("RequesterName") or "-",
              format_signature(doc.get("Reviewer_Sig")),
              format_signature(doc.get("Approver_Sig"))]],
        )

    def renewals(self) -> None:
        renewals = self.snap.get("renewals") or []
        self.heading("CLEARANCE RENEWAL")
        if not renewals:
            self.paragraph("No renewals.")
            return
        rows = []
        for renewal in renewals:
            window = renewal.get("window") or {}
            readings = renewal.get("readings") or {}
            sigs = renewal.get("actor_signatures") or {}
            rows.append([
                format_display(window.get("from")),
                format_display(window.get("to")),
                f"{readings.get('hc') or '-'}/{readings.get('toxic') or '-'}/{readings.get('oxygen') or '-'}",
                renewal.get("precautions") or "-",
                format_signature(sigs.get("requester")),
                format_signature(sigs.get("reviewer")),
                format_signature(sigs.get("approver")),
                renewal.get("status", "-"),
            ])
        self.table(
            ["From", "To", "HC/Tox/O2", "Precautions", "Req", "Rev", "App", "Status"],
            [62, 62, 60, 80, 68, 68, 68, CONTENT_WIDTH - 468],
            rows,
        )

    def closure(self) -> None:
        doc = self.snap.get("document") or {}
        if not doc.get("Closure_Receiver_Sig"):
            return
        self.heading("CLOSURE OF WORK PERMIT")
        rows = [
            ["Receiver", format_signature(doc.get("Closure_Receiver_Sig")),
             doc.get("Closure_Requestor_Remarks") or "-"],
            ["Reviewer", format_signature(doc.get("Closure_Reviewer_Sig")),
             doc.get("Closure_Reviewer_Remarks") or "-"],
            ["Issuer", format_signature(doc.get("Closure_Issuer_Sig")),
             doc.get("Closure_Approver_Remarks") or doc.get("Closure_Issuer_Remarks") or "-"],
        ]
        self.table(["Stage", "Signed", "Remarks"], [70, 170, CONTENT_WIDTH - 240], rows)
        self.paragraph(f"Site restored: {doc.get('Site_Restored_Check') or '-'}")

    def render(self) -> bytes:
        self.info()
        self.checklists()
        self.hazards()
        self.signatures()
        self.renewals()
        self.closure()
        self.c.save()
        return self.buf.getvalue()


def render_permit_pdf(snap: dict) -> bytes:
    """Render one permit snapshot to PDF bytes."""
    pdf = _PermitPdf(snap).render()
    logger.debug("Rendered PDF for %s (%d bytes)",
                 (snap.get("identity") or {}).get("permit_id"), len(pdf),
                 extra={"permit_id": (snap.get("identity") or {}).get("permit_id")})
    return pdf
