"""
Permit register export — Excel and CSV.

Both adapters consume ``permit_service.snapshot()`` projections and never
touch the database or mutate their input.

    export_permits_xlsx(snapshots) -> bytes   "Permits Summary" + "Renewals"
    export_permits_csv(snapshots)  -> str
"""

import csv
import io
import logging
from datetime import datetime, timezone

from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter

from permit_tracker.utils.helpers import format_display

logger = logging.getLogger(__name__)

HEADER_FILL = PatternFill(start_color="ED7D31", end_color="ED7D31", fill_type="solid")
HEADER_FONT = Font(color="FFFFFF", bold=True, size=12)
THIN_BORDER = Border(
    left=Side(style="thin"),
    right=Side(style="thin"),
    top=Side(style="thin"),
    bottom=Side(style="thin"),
)
STATUS_FILLS = {
    "Active": PatternFill(start_color="C6EFCE", end_color="C6EFCE", fill_type="solid"),
    "Rejected": PatternFill(start_color="FFC7CE", end_color="FFC7CE", fill_type="solid"),
    "Closed": PatternFill(start_color="D9D9D9", end_color="D9D9D9", fill_type="solid"),
}

SUMMARY_HEADERS = [
    "Permit ID", "Status", "Work Type", "Requester", "Location", "Vendor",
    "Valid From", "Valid To",
]
RENEWAL_HEADERS = [
    "Permit ID", "#", "Status", "From", "To", "HC", "Toxic", "Oxygen",
    "Precautions", "Requested By", "Reviewed By", "Approved By", "Rejection Reason",
]


def _apply_header_style(ws, row: int, col_count: int) -> None:
    """Apply header styling to an Excel row (1-indexed)."""
    for col in range(1, col_count + 1):
        cell = ws.cell(row=row, column=col)
        cell.fill = HEADER_FILL
        cell.font = HEADER_FONT
        cell.border = THIN_BORDER
        cell.alignment = Alignment(horizontal="center", vertical="center", wrap_text=True)


def _auto_width(ws) -> None:
    """Auto-size column widths based on content (capped at 60 chars)."""
    for col in ws.columns:
        max_len = 0
        col_letter = get_column_letter(col[0].column)
        for cell in col:
            if cell.value:
                max_len = max(max_len, min(len(str(cell.value)), 60))
        ws.column_dimensions[col_letter].width = max(max_len + 4, 12)


def _signer(signature: dict | None) -> str:
    if not signature:
        return ""
    return signature.get("name") or ""


def summary_row(snap: dict) -> list:
    doc = snap.get("document") or {}
    identity = snap.get("identity") or {}
    window = snap.get("window") or {}
    return [
        identity.get("permit_id"),
        snap.get("status"),
        identity.get("work_type") or doc.get("WorkType"),
        doc.get("RequesterName"),
        doc.get("ExactLocation"),
        doc.get("Vendor"),
        format_display(window.get("from")),
        format_display(window.get("to")),
    ]


def renewal_rows(snap: dict) -> list[list]:
    permit_id = (snap.get("identity") or {}).get("permit_id")
    rows = []
    for index, renewal in enumerate(snap.get("renewals") or [], 1):
        readings = renewal.get("readings") or {}
        window = renewal.get("window") or {}
        sigs = renewal.get("actor_signatures") or {}
        rejection = renewal.get("rejection") or {}
        rows.append([
            permit_id,
            index,
            renewal.get("status"),
            format_display(window.get("from")),
            format_display(window.get("to")),
            readings.get("hc"),
            readings.get("toxic"),
            readings.get("oxygen"),
            renewal.get("precautions"),
            _signer(sigs.get("requester")),
            _signer(sigs.get("reviewer")),
            _signer(sigs.get("approver")),
            rejection.get("reason"),
        ])
    return rows


def export_permits_xlsx(snapshots: list[dict]) -> bytes:
    """
    Build the permit register workbook.

    Sheets:
        1. Permits Summary — one row per permit.
        2. Renewals        — one row per renewal, all permits.

    Returns:
        bytes: Raw .xlsx file content ready to stream to the client.
    """
    wb = Workbook()

    # ── Sheet 1: Permits Summary ──────────────────────────────────────
    ws = wb.active
    ws.title = "Permits Summary"
    ws.append(SUMMARY_HEADERS)
    _apply_header_style(ws, 1, len(SUMMARY_HEADERS))
    for row_idx, snap in enumerate(snapshots, 2):
        ws.append(summary_row(snap))
        for col in range(1, len(SUMMARY_HEADERS) + 1):
            ws.cell(row=row_idx, column=col).border = THIN_BORDER
        fill = STATUS_FILLS.get(snap.get("status"))
        if fill is not None:
            ws.cell(row=row_idx, column=2).fill = fill
    ws.freeze_panes = "A2"
    _auto_width(ws)

    # ── Sheet 2: Renewals ─────────────────────────────────────────────
    ws_r = wb.create_sheet("Renewals")
    ws_r.append(RENEWAL_HEADERS)
    _apply_header_style(ws_r, 1, len(RENEWAL_HEADERS))
    for snap in snapshots:
        for row in renewal_rows(snap):
            ws_r.append(row)
    ws_r.freeze_panes = "A2"
    _auto_width(ws_r)

    generated = wb.create_sheet("Info")
    generated["A1"] = "Generated"
    generated["B1"] = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M UTC")
    generated["A2"] = "Permits"
    generated["B2"] = len(snapshots)

    buf = io.BytesIO()
    wb.save(buf)
    logger.debug("Exported %d permit(s) to xlsx", len(snapshots))
    return buf.getvalue()


def export_permits_csv(snapshots: list[dict]) -> str:
    """Flat CSV of the permit register (summary columns plus renewal count).

    Returns:
        str: CSV content as a UTF-8 string.
    """
    buf = io.StringIO()
    writer = csv.writer(buf)
    writer.writerow(SUMMARY_HEADERS + ["Renewals"])
    for snap in snapshots:
        row = [("" if v is None else str(v).replace("\n", " ")) for v in summary_row(snap)]
        writer.writerow(row + [len(snap.get("renewals") or [])])
    return buf.getvalue()
