"""
App Submission Portal
Export Service.

    build_form_archive      per-client ZIP: form_data.txt + every uploaded image
    export_clients_xlsx     styled workbook with one row per client
"""

import io
import logging
import zipfile
from datetime import datetime, timezone

from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter
from werkzeug.utils import secure_filename

from portal.core.exceptions import GatewayError
from portal.models.client import Client
from portal.services.progress import TOTAL_WEIGHT, count_filled_fields

logger = logging.getLogger(__name__)

STATUS_FILLS = {
    "completed": PatternFill(start_color="27AE60", end_color="27AE60", fill_type="solid"),
    "in_progress": PatternFill(start_color="F39C12", end_color="F39C12", fill_type="solid"),
    "not_started": PatternFill(start_color="E74C3C", end_color="E74C3C", fill_type="solid"),
}
WHITE_FONT = Font(color="FFFFFF", bold=True)
HEADER_FILL = PatternFill(start_color="354A5F", end_color="354A5F", fill_type="solid")
HEADER_FONT = Font(color="FFFFFF", bold=True, size=11)
THIN_BORDER = Border(
    left=Side(style="thin"),
    right=Side(style="thin"),
    top=Side(style="thin"),
    bottom=Side(style="thin"),
)

_RULE = "=" * 60


def _value(text) -> str:
    text = (text or "").strip()
    return text if text else "(not provided)"


def _owner(kind: str | None) -> str:
    return "Tilary" if kind == "tilary" else "Client"


def build_form_summary_text(client: Client) -> str:
    """Plain-text dump of everything the client submitted."""
    form = client.form
    lines = [
        _RULE,
        f"APP SUBMISSION — {client.name}",
        f"Generated: {datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M UTC')}",
        _RULE,
        "",
        "CLIENT",
        f"  Name:          {client.name}",
        f"  Email:         {client.email}",
        f"  Access code:   {client.access_code}",
        f"  Status:        {client.status}",
        "",
        "APP CONFIGURATION",
        f"  Driver app name:     {_value(form.driver_app_name)}",
        f"  Passenger app name:  {_value(form.passenger_app_name)}",
        f"  Support email:       {_value(form.support_email)}",
        "",
        "PLAY STORE — DRIVER",
        f"  Short description:  {_value(form.playstore_driver_short_description)}",
        "  Long description:",
        f"{_value(form.playstore_driver_long_description)}",
        "",
        "PLAY STORE — PASSENGER",
        f"  Short description:  {_value(form.playstore_passenger_short_description)}",
        "  Long description:",
        f"{_value(form.playstore_passenger_long_description)}",
        "",
        "APP STORE — DRIVER",
        f"{_value(form.appstore_driver_description)}",
        "",
        "APP STORE — PASSENGER",
        f"{_value(form.appstore_passenger_description)}",
        "",
        "TERMS — DRIVER",
        f"{_value(form.driver_terms)}",
        "",
        "TERMS — PASSENGER",
        f"{_value(form.passenger_terms)}",
        "",
        "TERMS — COMPANY",
        f"{_value(form.company_terms)}",
        "",
        "PUBLISHING",
        f"  Play Store account:  {_owner(form.play_store_owner)}",
    ]
    if form.play_store_owner == "client":
        lines += [
            f"    Owner name:   {_value(form.playstore_owner_name)}",
            f"    Owner email:  {_value(form.playstore_owner_email)}",
        ]
    lines.append(f"  App Store account:   {_owner(form.app_store_owner)}")
    if form.app_store_owner == "client":
        lines += [
            f"    Owner name:   {_value(form.appstore_owner_name)}",
            f"    Owner email:  {_value(form.appstore_owner_email)}",
        ]

    lines += ["", "IMAGES", f"  Source:  {form.image_source}"]
    if form.image_source == "tilary":
        lines.append("  Note: the default Tilary asset pack will be used.")
    elif form.images_uploaded:
        lines.append(f"  Note: all required images uploaded ({len(form.images)} files, see images/).")
    else:
        lines.append(f"  Note: required images are still missing ({len(form.images)} files uploaded).")

    lines += [
        "",
        "PROGRESS",
        f"  Completion:      {form.progress_percentage}% ({form.status})",
        f"  Fields filled:   {count_filled_fields(form)}/{TOTAL_WEIGHT - 1}",
        f"  Review status:   {form.review_status}",
        f"  Project status:  {form.project_status}",
        "",
    ]
    return "\n".join(lines)


def archive_filename(client: Client) -> str:
    # ASCII only; names with nothing left fall back to the client id
    stem = secure_filename(client.name or "") or f"client_{client.id}"
    return f"{stem}_form.zip"


def build_form_archive(client: Client, storage) -> tuple[str, io.BytesIO, dict]:
    """
    Package a client's form summary and images into a ZIP.

    An image that cannot be fetched is logged and left out.

    Returns:
        (filename, buffer, {"images_included": int, "images_skipped": int})
    """
    buf = io.BytesIO()
    included = 0
    skipped = 0
    with zipfile.ZipFile(buf, "w", zipfile.ZIP_DEFLATED) as zf:
        zf.writestr("form_data.txt", build_form_summary_text(client))
        for img in client.form.images:
            try:
                data = storage.download(img.storage_path)
            except GatewayError as exc:
                skipped += 1
                logger.warning("Export %s: skipping image %s: %s", client.id, img.storage_path, exc)
                continue
            zf.writestr(f"images/{img.app_type}/{img.store_type}/{img.image_type}/{img.file_name}", data)
            included += 1
    buf.seek(0)
    logger.info("Export %s: %d images included, %d skipped", client.id, included, skipped)
    return archive_filename(client), buf, {"images_included": included, "images_skipped": skipped}


def export_clients_xlsx(clients: list[Client]) -> io.BytesIO:
    """
    One-sheet overview of every client and the state of its form.
    Returns a BytesIO buffer ready for Flask send_file.
    """
    wb = Workbook()
    ws = wb.active
    ws.title = "Clients"

    ws.merge_cells("A1:I1")
    ws["A1"] = "Client Submissions Overview"
    ws["A1"].font = Font(size=16, bold=True)
    ws["A2"] = f"Generated: {datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M UTC')}"
    ws["A2"].font = Font(size=10, italic=True, color="666666")

    row = 4
    headers = ["Client", "Email", "Access Code", "Status", "Progress", "Form Status",
               "Review", "Project Status", "Last Activity"]
    for col, header in enumerate(headers, 1):
        cell = ws.cell(row=row, column=col, value=header)
        cell.fill = HEADER_FILL
        cell.font = HEADER_FONT
        cell.border = THIN_BORDER

    for client in clients:
        row += 1
        form = client.form
        values = [
            client.name,
            client.email,
            client.access_code,
            client.status,
            f"{form.progress_percentage}%" if form else "",
            form.status if form else "",
            form.review_status if form else "",
            form.project_status if form else "",
            form.last_activity_date.strftime("%Y-%m-%d %H:%M") if form and form.last_activity_date else "",
        ]
        for col, value in enumerate(values, 1):
            ws.cell(row=row, column=col, value=value).border = THIN_BORDER
        if form:
            status_cell = ws.cell(row=row, column=6)
            status_cell.fill = STATUS_FILLS.get(form.status, PatternFill())
            status_cell.font = WHITE_FONT
            status_cell.alignment = Alignment(horizontal="center")

    for col, width in enumerate([28, 32, 14, 10, 10, 14, 12, 24, 18], 1):
        ws.column_dimensions[get_column_letter(col)].width = width

    output = io.BytesIO()
    wb.save(output)
    output.seek(0)
    return output
