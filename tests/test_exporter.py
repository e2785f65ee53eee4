"""Unit tests for export row shaping and the file writers."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import Mock

import openpyxl
import pytest

from event_sales import exporter
from event_sales.aggregation import build_dashboard
from event_sales.constants import DASHBOARD_PDF_FILENAME, SALES_PDF_FILENAME, SALES_SPREADSHEET_FILENAME
from event_sales.data_manager import LineItem


@pytest.fixture
def three_item_sale(make_sale):
    return make_sale(
        sale_id="s1",
        created_at="2025-03-10T15:04:05+00:00",
        line_items=(
            LineItem("T-Shirt", 2, Decimal("50.00")),
            LineItem("Mug", 1, Decimal("25.50")),
            LineItem("Cap", 3, Decimal("30.00")),
        ),
    )


@pytest.fixture
def fake_pisa(monkeypatch):
    """Replace the PDF engine with a stub writing a marker payload."""

    def create_pdf(source, dest, encoding):
        dest.write(b"%PDF-stub")
        return SimpleNamespace(err=0)

    stub = Mock(CreatePDF=Mock(side_effect=create_pdf))
    monkeypatch.setattr(exporter, "pisa", stub)
    return stub


# ---------------------------------------------------------------------------
# Row shaping
# ---------------------------------------------------------------------------


def test_wide_rows_fill_product_slots_and_overflow(three_item_sale):
    """Items beyond the slot count should be joined in one column."""

    [row] = exporter.to_wide_rows([three_item_sale], max_product_columns=2)

    assert row["Product 1"] == "T-Shirt"
    assert row["Units 1"] == 2
    assert row["Product 2"] == "Mug"
    assert row["Units 2"] == 1
    assert "Product 3" not in row
    assert row[exporter.ADDITIONAL_PRODUCTS_COLUMN] == "Cap (3)"


def test_wide_rows_leave_unused_slots_blank(make_sale):
    """Sales with fewer items keep every slot column, empty."""

    [row] = exporter.to_wide_rows([make_sale()], max_product_columns=3)

    assert row["Product 1"] == "T-Shirt"
    assert row["Product 3"] == ""
    assert row[exporter.ADDITIONAL_PRODUCTS_COLUMN] == ""


def test_wide_rows_overflow_uses_semicolons(three_item_sale):
    """Several overflow items are separated by semicolons."""

    [row] = exporter.to_wide_rows([three_item_sale], max_product_columns=1)
    assert row[exporter.ADDITIONAL_PRODUCTS_COLUMN] == "Mug (1); Cap (3)"


def test_wide_rows_reject_zero_columns(three_item_sale):
    """At least one product column pair is required."""

    with pytest.raises(ValueError):
        exporter.to_wide_rows([three_item_sale], max_product_columns=0)


def test_narrow_rows_join_all_products_with_commas(three_item_sale):
    """The print layout lists every item in one column."""

    [row] = exporter.to_narrow_rows([three_item_sale])
    assert row[exporter.PRODUCTS_COLUMN] == "T-Shirt (2), Mug (1), Cap (3)"


def test_rows_default_code_note_and_complement_to_dash(make_sale):
    """Absent optional values are exported as "-"."""

    [row] = exporter.to_narrow_rows([make_sale()])
    assert row["Customer Code"] == "-"
    assert row[exporter.NOTE_COLUMN] == "-"
    assert row["Complement"] == "-"


def test_rows_format_dates_phone_and_address(three_item_sale):
    """Customer columns should be presentation-ready."""

    [row] = exporter.to_narrow_rows([three_item_sale])

    assert row["Created At"] == "10/03/2025 15:04:05"
    assert row["Event Date"] == "10/03/2025"
    assert row["Phone"] == "(11) 99999-0000"
    assert row["Address"] == "Rua A, 100"
    assert row["Total Amount"] == Decimal("215.50")


def test_wide_and_narrow_rows_share_customer_columns(three_item_sale):
    """Both shapes start with the same fixed columns and end with the note."""

    wide = list(exporter.to_wide_rows([three_item_sale])[0])
    narrow = list(exporter.to_narrow_rows([three_item_sale])[0])

    assert wide[: wide.index("Product 1")] == narrow[: narrow.index(exporter.PRODUCTS_COLUMN)]
    assert wide[-1] == narrow[-1] == exporter.NOTE_COLUMN


# ---------------------------------------------------------------------------
# Writers
# ---------------------------------------------------------------------------


def test_write_spreadsheet_writes_bold_header_and_rows(tmp_path, three_item_sale):
    """Spreadsheet export should contain a header row and one row per sale."""

    rows = exporter.to_wide_rows([three_item_sale])
    destination = exporter.write_spreadsheet(rows, tmp_path / "out.xlsx")

    sheet = openpyxl.load_workbook(destination).active
    header = [cell.value for cell in sheet[1]]
    assert header == list(rows[0])
    assert all(cell.font.bold for cell in sheet[1])
    assert sheet.max_row == 2
    assert sheet.cell(row=2, column=1).value == "s1"


def test_write_spreadsheet_with_no_rows_creates_no_file(tmp_path):
    """Zero rows should signal "nothing to export" and leave no file."""

    destination = tmp_path / "empty.xlsx"
    with pytest.raises(exporter.NothingToExportError):
        exporter.write_spreadsheet([], destination)
    assert not destination.exists()


def test_write_pdf_uses_engine_output(tmp_path, fake_pisa, three_item_sale):
    """The rendered buffer should be written to the destination."""

    section = exporter.ReportSection("Sales", exporter.to_narrow_rows([three_item_sale]))
    destination = exporter.write_pdf([section], tmp_path / "out.pdf", title="Sales Records")

    assert destination.read_bytes() == b"%PDF-stub"
    html = fake_pisa.CreatePDF.call_args.args[0]
    assert "<h1>Sales Records</h1>" in html
    assert "T-Shirt (2), Mug (1), Cap (3)" in html


def test_write_pdf_failure_leaves_no_file(tmp_path, monkeypatch, three_item_sale):
    """Engine errors should raise ExportError without writing anything."""

    monkeypatch.setattr(exporter, "pisa", Mock(CreatePDF=Mock(return_value=SimpleNamespace(err=1))))
    section = exporter.ReportSection("Sales", exporter.to_narrow_rows([three_item_sale]))
    destination = tmp_path / "broken.pdf"

    with pytest.raises(exporter.ExportError):
        exporter.write_pdf([section], destination, title="Sales")
    assert not destination.exists()


def test_write_pdf_with_only_empty_sections_creates_no_file(tmp_path, fake_pisa):
    """Sections without rows count as nothing to export."""

    destination = tmp_path / "empty.pdf"
    with pytest.raises(exporter.NothingToExportError):
        exporter.write_pdf([exporter.ReportSection("Sales", [])], destination, title="Sales")
    assert not destination.exists()
    fake_pisa.CreatePDF.assert_not_called()


def test_render_report_html_escapes_values():
    """User text must not be interpreted as markup."""

    section = exporter.ReportSection("Notes", [{"Note": "<b>VIP</b> & co"}])
    html = exporter.render_report_html([section], "Report", generated_at=datetime(2025, 3, 10))

    assert "&lt;b&gt;VIP&lt;/b&gt; &amp; co" in html
    assert "Generated on 10/03/2025" in html


def test_real_pdf_engine_produces_a_pdf(tmp_path, three_item_sale):
    """The real engine should render a readable PDF."""

    destination = exporter.export_sales_pdf([three_item_sale], tmp_path)
    assert destination.name == SALES_PDF_FILENAME
    assert destination.read_bytes().startswith(b"%PDF")


# ---------------------------------------------------------------------------
# Export entry points
# ---------------------------------------------------------------------------


def test_export_sales_spreadsheet_uses_fixed_name(tmp_path, three_item_sale):
    """The spreadsheet lands in the output folder under its fixed name."""

    destination = exporter.export_sales_spreadsheet([three_item_sale], tmp_path / "exports", max_product_columns=2)

    assert destination.name == SALES_SPREADSHEET_FILENAME
    sheet = openpyxl.load_workbook(destination).active
    assert "Units 2" in [cell.value for cell in sheet[1]]
    assert "Product 3" not in [cell.value for cell in sheet[1]]


def test_export_of_zero_sales_writes_nothing(tmp_path, fake_pisa):
    """Both sales exports refuse an empty selection."""

    with pytest.raises(exporter.NothingToExportError):
        exporter.export_sales_spreadsheet([], tmp_path)
    with pytest.raises(exporter.NothingToExportError):
        exporter.export_sales_pdf([], tmp_path)
    assert list(tmp_path.iterdir()) == []


def test_export_dashboard_pdf_contains_every_section(tmp_path, fake_pisa, three_item_sale):
    """The dashboard report includes indicators and the three rankings."""

    destination = exporter.export_dashboard_pdf(build_dashboard([three_item_sale]), tmp_path)

    assert destination.name == DASHBOARD_PDF_FILENAME
    html = fake_pisa.CreatePDF.call_args.args[0]
    for title in ("Key Indicators", "Units Sold per Product", "Performance per User", "Sales per Event"):
        assert title in html


def test_export_dashboard_pdf_without_sales_is_nothing_to_export(tmp_path, fake_pisa):
    """An empty dashboard produces no report."""

    with pytest.raises(exporter.NothingToExportError):
        exporter.export_dashboard_pdf(build_dashboard([]), tmp_path)
    assert list(tmp_path.iterdir()) == []
