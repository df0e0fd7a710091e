"""
Permit register and single-permit export endpoints.

    GET /api/v1/permits/export
        format: excel | csv (default: excel)
    GET /api/v1/permits/<permit_id>/export/pdf

Content is generated in memory; no temp files.
"""

import logging
from datetime import datetime, timezone

from flask import Blueprint, Response, request

from permit_tracker.blueprints import register_workflow_error_handlers
from permit_tracker.services.export_service import export_permits_csv, export_permits_xlsx
from permit_tracker.services.pdf_export import render_permit_pdf
from permit_tracker.services.permit_service import all_snapshots, get_snapshot
from permit_tracker.utils.errors import E, api_error

logger = logging.getLogger(__name__)

export_bp = Blueprint("export", __name__, url_prefix="/api/v1")
register_workflow_error_handlers(export_bp)

XLSX_MIMETYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


@export_bp.route("/permits/export", methods=["GET"])
def export_register():
    """Export every permit as an Excel workbook or CSV file."""
    fmt = request.args.get("format", "excel").lower()
    if fmt not in ("excel", "csv"):
        return api_error(E.VALIDATION_INVALID, "Unsupported format. Supported values: excel, csv.",
                         details={"format": fmt})

    snapshots = all_snapshots()
    date_str = datetime.now(timezone.utc).strftime("%Y%m%d")

    if fmt == "csv":
        logger.info("Permit register CSV export (%d permits)", len(snapshots))
        return Response(
            export_permits_csv(snapshots),
            mimetype="text/csv",
            headers={"Content-Disposition": f'attachment; filename="permits_{date_str}.csv"'},
        )

    logger.info("Permit register Excel export (%d permits)", len(snapshots))
    return Response(
        export_permits_xlsx(snapshots),
        mimetype=XLSX_MIMETYPE,
        headers={"Content-Disposition": f'attachment; filename="permits_{date_str}.xlsx"'},
    )


@export_bp.route("/permits/<permit_id>/export/pdf", methods=["GET"])
def export_pdf(permit_id):
    pdf = render_permit_pdf(get_snapshot(permit_id))
    return Response(
        pdf,
        mimetype="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{permit_id}.pdf"'},
    )
