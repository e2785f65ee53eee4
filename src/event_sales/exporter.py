"""Flatten sales into tabular rows and hand them to file writers.

Two row shapes are produced. Wide rows, used for the spreadsheet, spread
line items over a fixed number of product/units column pairs and gather the
overflow into one "Additional Products" column. Narrow rows, used for the
printable PDF, join every line item into a single "Products" column.

Writers never create an empty file: with no rows they raise
:class:`NothingToExportError`, which presentation layers report as a
"nothing to export" notice.
"""

from __future__ import annotations

import html
from dataclasses import dataclass
from datetime import UTC, datetime
from io import BytesIO
from pathlib import Path
from typing import Any, Dict, List, Mapping, Sequence

import openpyxl
from openpyxl.styles import Font
from xhtml2pdf import pisa

from . import data_manager, log
from .aggregation import Dashboard
from .constants import (
    DASHBOARD_PDF_FILENAME,
    DEFAULT_MAX_PRODUCT_COLUMNS,
    EMPTY_CELL,
    SALES_PDF_FILENAME,
    SALES_SPREADSHEET_FILENAME,
)
from .data_manager import Sale


ExportRow = Dict[str, Any]

ADDITIONAL_PRODUCTS_COLUMN = "Additional Products"
PRODUCTS_COLUMN = "Products"
NOTE_COLUMN = "Note"


class NothingToExportError(ValueError):
    """Raised when an export is requested for an empty row set."""


class ExportError(RuntimeError):
    """Raised when a writer fails to render its output."""


@dataclass(frozen=True)
class ReportSection:
    """Titled table rendered as one block of a PDF report."""

    title: str
    rows: Sequence[Mapping[str, Any]]


def format_date(value: str) -> str:
    """Render an ISO date as ``DD/MM/YYYY``; unparseable input is returned as is."""

    if not value:
        return EMPTY_CELL
    try:
        return datetime.fromisoformat(value).strftime("%d/%m/%Y")
    except ValueError:
        return value


def format_timestamp(value: str) -> str:
    """Render an ISO timestamp as UTC ``DD/MM/YYYY HH:MM:SS``."""

    try:
        moment = datetime.fromisoformat(value)
    except ValueError:
        return value or EMPTY_CELL
    if moment.tzinfo is not None:
        moment = moment.astimezone(UTC)
    return moment.strftime("%d/%m/%Y %H:%M:%S")


def format_phone(area_code: str, number: str) -> str:
    if not area_code and not number:
        return EMPTY_CELL
    return f"({area_code}) {number}".strip()


def format_line_items(items: Sequence[data_manager.LineItem], separator: str) -> str:
    return separator.join(f"{item.product_name} ({item.units})" for item in items)


def _customer_columns(sale: Sale) -> ExportRow:
    return {
        "ID": sale.sale_id,
        "Created At": format_timestamp(sale.created_at),
        "User": sale.user_name,
        "Event": sale.event_name,
        "Event Date": format_date(sale.event_date),
        "Customer Code": sale.customer_code or EMPTY_CELL,
        "First Name": sale.first_name,
        "Last Name": sale.last_name,
        "CPF": sale.cpf,
        "Email": sale.email,
        "Phone": format_phone(sale.area_code, sale.phone_number),
        "Address": f"{sale.street}, {sale.street_number}",
        "Complement": sale.complement or EMPTY_CELL,
        "Neighborhood": sale.neighborhood,
        "City": sale.city,
        "State": sale.state,
        "Postal Code": sale.postal_code,
        "Payment Method": sale.payment_method,
        "Total Amount": sale.total_amount,
    }


def to_wide_rows(sales: Sequence[Sale], max_product_columns: int = DEFAULT_MAX_PRODUCT_COLUMNS) -> List[ExportRow]:
    """Flatten sales into one row each with positional product columns.

    Args:
        sales (Sequence[Sale]): Sales in the order they should be exported.
        max_product_columns (int): Number of ``Product N``/``Units N`` pairs.
            Line items beyond that are joined as ``"name (units); ..."`` in
            the additional products column.

    Returns:
        list[ExportRow]: Rows sharing the same keys in the same order.

    Raises:
        ValueError: If ``max_product_columns`` is smaller than 1.
    """

    if max_product_columns < 1:
        raise ValueError("max_product_columns must be at least 1")

    rows: List[ExportRow] = []
    for sale in sales:
        row = _customer_columns(sale)
        items = sale.line_items
        for slot in range(max_product_columns):
            item = items[slot] if slot < len(items) else None
            row[f"Product {slot + 1}"] = item.product_name if item else ""
            row[f"Units {slot + 1}"] = item.units if item else ""
        row[ADDITIONAL_PRODUCTS_COLUMN] = format_line_items(items[max_product_columns:], "; ")
        row[NOTE_COLUMN] = sale.note or EMPTY_CELL
        rows.append(row)
    return rows


def to_narrow_rows(sales: Sequence[Sale]) -> List[ExportRow]:
    """Flatten sales into one row each with a single joined products column."""

    rows: List[ExportRow] = []
    for sale in sales:
        row = _customer_columns(sale)
        row[PRODUCTS_COLUMN] = format_line_items(sale.line_items, ", ")
        row[NOTE_COLUMN] = sale.note or EMPTY_CELL
        rows.append(row)
    return rows


def write_spreadsheet(rows: Sequence[Mapping[str, Any]], destination: Path, *, sheet_title: str = "Sales") -> Path:
    """Write ``rows`` to a single-sheet workbook with a bold header row.

    Column order follows the keys of the first row; columns are at least 20
    characters wide.

    Raises:
        NothingToExportError: If ``rows`` is empty. No file is created.
    """

    if not rows:
        raise NothingToExportError("There is no data to export with the current filters.")

    headers = list(rows[0].keys())
    workbook = openpyxl.Workbook()
    sheet = workbook.active
    sheet.title = sheet_title
    sheet.append(headers)
    for cell in sheet[1]:
        cell.font = Font(bold=True)
    for row in rows:
        sheet.append([row.get(header) for header in headers])
    for index, header in enumerate(headers, start=1):
        sheet.column_dimensions[openpyxl.utils.get_column_letter(index)].width = max(len(header), 20)

    data_manager.save_workbook(workbook, destination)
    log.info("Exported %d rows to spreadsheet '%s'", len(rows), destination)
    return destination


def _cell_text(value: Any) -> str:
    return "" if value is None else str(value)


def render_report_html(sections: Sequence[ReportSection], title: str, *, generated_at: datetime) -> str:
    """Render report sections as the HTML document fed to the PDF engine."""

    parts = [
        "<html><head><meta charset='utf-8'><style>",
        "@page { size: a4 landscape; margin: 1cm; }",
        "body { font-family: Helvetica; font-size: 8pt; }",
        "h1 { font-size: 16pt; text-align: center; }",
        "h2 { font-size: 12pt; margin-top: 12pt; }",
        "th { background-color: #0891b2; color: #ffffff; padding: 3px; }",
        "td { border-bottom: 1px solid #cccccc; padding: 3px; }",
        "</style></head><body>",
        f"<h1>{html.escape(title)}</h1>",
        f"<p>Generated on {generated_at.strftime('%d/%m/%Y')}</p>",
    ]
    for section in sections:
        if not section.rows:
            continue
        headers = list(section.rows[0].keys())
        parts.append(f"<h2>{html.escape(section.title)}</h2><table><thead><tr>")
        parts.extend(f"<th>{html.escape(header)}</th>" for header in headers)
        parts.append("</tr></thead><tbody>")
        for row in section.rows:
            parts.append("<tr>")
            parts.extend(f"<td>{html.escape(_cell_text(row.get(header)))}</td>" for header in headers)
            parts.append("</tr>")
        parts.append("</tbody></table>")
    parts.append("</body></html>")
    return "".join(parts)


def write_pdf(sections: Sequence[ReportSection], destination: Path, *, title: str) -> Path:
    """Render ``sections`` as tables into a PDF file.

    The document is rendered in memory first, so a failed render leaves no
    file behind.

    Raises:
        NothingToExportError: If every section is empty.
        ExportError: If the PDF engine reports an error.
    """

    if not any(section.rows for section in sections):
        raise NothingToExportError("There is no data to export with the current filters.")

    document = render_report_html(sections, title, generated_at=datetime.now(UTC))
    buffer = BytesIO()
    status = pisa.CreatePDF(document, dest=buffer, encoding="utf-8")
    if status.err:
        log.error("PDF rendering failed for '%s' (%s errors)", destination, status.err)
        raise ExportError(f"Could not render PDF '{Path(destination).name}'")

    destination = Path(destination).expanduser().resolve()
    destination.parent.mkdir(parents=True, exist_ok=True)
    destination.write_bytes(buffer.getvalue())
    log.info("Exported %d report sections to PDF '%s'", len(sections), destination)
    return destination


def export_sales_spreadsheet(
    sales: Sequence[Sale],
    output_dir: Path,
    *,
    max_product_columns: int = DEFAULT_MAX_PRODUCT_COLUMNS,
) -> Path:
    """Export the given (already filtered) sales as wide spreadsheet rows."""

    rows = to_wide_rows(sales, max_product_columns)
    return write_spreadsheet(rows, Path(output_dir) / SALES_SPREADSHEET_FILENAME)


def export_sales_pdf(sales: Sequence[Sale], output_dir: Path) -> Path:
    """Export the given (already filtered) sales as a printable PDF list."""

    section = ReportSection(title="Sales", rows=to_narrow_rows(sales))
    return write_pdf([section], Path(output_dir) / SALES_PDF_FILENAME, title="Sales Records")


def dashboard_sections(dashboard: Dashboard) -> List[ReportSection]:
    """Lay out dashboard figures as report tables."""

    indicators = [
        {"Indicator": "Total sales recorded", "Value": dashboard.total_sales},
        {"Indicator": "Total units sold", "Value": dashboard.total_units},
        {"Indicator": "Average units per sale", "Value": dashboard.average_units},
        {"Indicator": "Best-selling product", "Value": dashboard.top_product or EMPTY_CELL},
    ]
    products = [{"Product": name, "Units Sold": units} for name, units in dashboard.units_by_product.items()]
    users = [
        {"User": name, "Sales": summary.sale_count, "Units Sold": summary.total_units}
        for name, summary in dashboard.summary_by_user.items()
    ]
    events = [
        {"Event": name, "Sales": count, "Units Sold": dashboard.units_by_event.get(name, 0)}
        for name, count in dashboard.count_by_event.items()
    ]
    return [
        ReportSection("Key Indicators", indicators),
        ReportSection("Units Sold per Product", products),
        ReportSection("Performance per User", users),
        ReportSection("Sales per Event", events),
    ]


def export_dashboard_pdf(dashboard: Dashboard, output_dir: Path) -> Path:
    """Export the dashboard summary as a PDF report.

    Raises:
        NothingToExportError: If the dashboard covers no sales.
    """

    if dashboard.total_sales == 0:
        raise NothingToExportError("There are no sales to summarize.")
    return write_pdf(
        dashboard_sections(dashboard),
        Path(output_dir) / DASHBOARD_PDF_FILENAME,
        title="Sales Dashboard Report",
    )
