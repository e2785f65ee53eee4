"""Unit tests documenting the expected behavior of the storage layer."""

from __future__ import annotations

import configparser
from decimal import Decimal
from pathlib import Path

import openpyxl
import pytest
from openpyxl.workbook import Workbook as OpenpyxlWorkbook

from event_sales import constants, data_manager


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


def test_find_config_file_respects_explicit_path(config_file: Path):
    """Supplying an explicit path should be treated as the winning answer."""

    assert data_manager.find_config_file(config_file) == config_file


def test_find_config_file_discovers_in_parent_directories(tmp_path, monkeypatch):
    """Auto-discovery should walk up from the working directory."""

    config_file = tmp_path / "config.ini"
    config_file.write_text("[System]\nDataFile=event_sales.xlsx")
    nested = tmp_path / "a" / "b"
    nested.mkdir(parents=True)
    monkeypatch.chdir(nested)

    assert data_manager.find_config_file() == config_file


def test_find_config_file_raises_when_missing(tmp_path, monkeypatch):
    """Absent configuration should surface a clear FileNotFoundError."""

    monkeypatch.chdir(tmp_path)
    with pytest.raises(FileNotFoundError):
        data_manager.find_config_file()


def test_read_config_loads_sections(config_file: Path):
    """read_config should return a populated ConfigParser."""

    parser = data_manager.read_config(config_file)
    assert parser.get("System", "StoreName") == "Test Store"
    assert parser.get("Export", "MaxProductColumns") == "3"


def test_read_config_missing_file_raises(tmp_path):
    """Missing files should propagate a FileNotFoundError."""

    with pytest.raises(FileNotFoundError):
        data_manager.read_config(tmp_path / "not_there.ini")


def test_parse_settings_resolves_relative_paths(config_factory):
    """Relative DataFile and OutputDir entries should be anchored to the config location."""

    bundle = config_factory(make_relative=True)
    parser = data_manager.read_config(bundle.config_path)
    settings = data_manager.parse_settings(parser, base_path=bundle.config_path.parent)

    assert settings.data_file == (bundle.config_path.parent / bundle.workbook_path.name).resolve()
    assert settings.export_dir == (bundle.config_path.parent / "exports").resolve()
    assert settings.max_product_columns == 3
    assert settings.timeout == 5.0


def test_parse_settings_blank_api_url_means_local_only(config_file: Path):
    """A blank ApiBaseUrl should leave the remote client disabled."""

    settings = data_manager.parse_settings(data_manager.read_config(config_file))
    assert settings.api_base_url is None
    assert settings.postal_code_url == constants.DEFAULT_POSTAL_CODE_URL


def test_parse_settings_optional_sections_fall_back_to_defaults(tmp_path):
    """Only the System section is mandatory."""

    parser = configparser.ConfigParser()
    parser.read_string("[System]\nDataFile=data.xlsx\nStoreName=S\nSchemaVersion=1.0.0\n")
    settings = data_manager.parse_settings(parser, base_path=tmp_path)

    assert settings.export_dir == (tmp_path / "exports").resolve()
    assert settings.max_product_columns == constants.DEFAULT_MAX_PRODUCT_COLUMNS
    assert settings.timeout == constants.DEFAULT_TIMEOUT_SECONDS
    assert settings.log_dir is None


def test_parse_settings_anchors_log_dir(config_factory):
    bundle = config_factory(log_dir="logs")
    settings = data_manager.parse_settings(data_manager.read_config(bundle.config_path), base_path=bundle.directory)
    assert settings.log_dir == (bundle.directory / "logs").resolve()


def test_parse_settings_requires_expected_sections(tmp_path):
    """Missing keys should result in a descriptive KeyError."""

    parser = configparser.ConfigParser()
    parser.read_string("[Other]\nvalue=1")
    with pytest.raises(KeyError):
        data_manager.parse_settings(parser, base_path=tmp_path)


def test_parse_settings_rejects_invalid_product_columns(tmp_path):
    """MaxProductColumns below one should be refused."""

    parser = configparser.ConfigParser()
    parser.read_string(
        "[System]\nDataFile=d.xlsx\nStoreName=S\nSchemaVersion=1.0.0\n[Export]\nMaxProductColumns=0\n"
    )
    with pytest.raises(ValueError):
        data_manager.parse_settings(parser, base_path=tmp_path)


# ---------------------------------------------------------------------------
# Workbook lifecycle
# ---------------------------------------------------------------------------


def test_open_workbook_returns_openpyxl_instance(storage_workbook_path):
    """open_workbook should hand back a loaded Workbook object."""

    assert isinstance(data_manager.open_workbook(storage_workbook_path), OpenpyxlWorkbook)


def test_open_workbook_missing_file_raises(tmp_path):
    """Missing workbook files should yield FileNotFoundError."""

    with pytest.raises(FileNotFoundError):
        data_manager.open_workbook(tmp_path / "missing.xlsx")


def test_create_empty_workbook_has_every_sheet_with_bold_headers():
    """Every storage sheet should exist with its header row in bold."""

    workbook = data_manager.create_empty_workbook()
    assert workbook.sheetnames == list(data_manager.SHEET_COLUMNS)
    for sheet_name, columns in data_manager.SHEET_COLUMNS.items():
        header = [cell.value for cell in workbook[sheet_name][1]]
        assert header == list(columns)
        assert all(cell.font.bold for cell in workbook[sheet_name][1])


def test_save_workbook_creates_parent_directories(tmp_path):
    """save_workbook should create missing parent folders."""

    destination = tmp_path / "nested" / "copy.xlsx"
    data_manager.save_workbook(data_manager.create_empty_workbook(), destination)
    assert destination.exists()


# ---------------------------------------------------------------------------
# Collection snapshots
# ---------------------------------------------------------------------------


def test_load_collections_missing_file_yields_empty_snapshot(tmp_path):
    """An absent workbook should start the store with empty collections."""

    assert data_manager.load_collections(tmp_path / "missing.xlsx") == data_manager.StoreSnapshot()


def test_load_collections_corrupt_file_yields_empty_snapshot(tmp_path):
    """An unparseable workbook should degrade to empty collections."""

    corrupt = tmp_path / "corrupt.xlsx"
    corrupt.write_bytes(b"this is not a zip archive")
    assert data_manager.load_collections(corrupt) == data_manager.StoreSnapshot()


def test_load_collections_reads_seeded_payment_methods(storage_workbook_path):
    """A freshly created workbook should expose the default payment methods."""

    snapshot = data_manager.load_collections(storage_workbook_path)
    assert [row.name for row in snapshot.payment_methods] == list(constants.DEFAULT_PAYMENT_METHODS)
    assert snapshot.sales == []


def test_load_collections_missing_sheet_only_empties_that_slot(tmp_path):
    """A missing sheet should not discard the other collections."""

    workbook = data_manager.create_empty_workbook()
    workbook[constants.SheetName.USERS.value].append(["Ana"])
    workbook.remove(workbook[constants.SheetName.PRODUCTS.value])
    path = tmp_path / "partial.xlsx"
    data_manager.save_workbook(workbook, path)

    snapshot = data_manager.load_collections(path)
    assert snapshot.users == [data_manager.UserRow("Ana")]
    assert snapshot.products == []


def test_load_collections_unparseable_sheet_only_empties_that_slot(tmp_path):
    """Rows that cannot be converted should empty only their own slot."""

    workbook = data_manager.create_empty_workbook()
    workbook[constants.SheetName.PRODUCTS.value].append(["Mug", "12.00", "discontinued"])
    workbook[constants.SheetName.EVENTS.value].append(["Expo", "2025-03-10"])
    path = tmp_path / "bad_products.xlsx"
    data_manager.save_workbook(workbook, path)

    snapshot = data_manager.load_collections(path)
    assert snapshot.products == []
    assert snapshot.events == [data_manager.EventRow("Expo", "2025-03-10")]


def test_save_and_load_collections_round_trip(tmp_path, make_sale, catalog):
    """Rewriting and reloading should reproduce every collection."""

    sale = make_sale(
        complement="Apt 12",
        note="Gift wrap",
        customer_code="C-42",
        line_items=(
            data_manager.LineItem("T-Shirt", 2, Decimal("50.00")),
            data_manager.LineItem("Mug", 1, Decimal("25.50")),
        ),
    )
    snapshot = data_manager.StoreSnapshot(
        users=[data_manager.UserRow("Ana")],
        events=[data_manager.EventRow("Expo", "2025-03-10")],
        payment_methods=[data_manager.PaymentMethodRow("Pix")],
        products=list(catalog),
        sales=[sale],
    )
    path = tmp_path / "round_trip.xlsx"

    data_manager.save_collections(snapshot, path)
    reloaded = data_manager.load_collections(path)

    assert reloaded == snapshot
    assert reloaded.sales[0].line_items[1] == data_manager.LineItem("Mug", 1, Decimal("25.50"))


def test_save_collections_keeps_line_items_on_their_own_sheet(tmp_path, make_sale):
    """Line items should be stored keyed by sale id in insertion order."""

    sale = make_sale(
        sale_id="abc",
        line_items=(
            data_manager.LineItem("Mug", 3, Decimal("25.50")),
            data_manager.LineItem("T-Shirt", 1, Decimal("50.00")),
        ),
    )
    path = tmp_path / "items.xlsx"
    data_manager.save_collections(data_manager.StoreSnapshot(sales=[sale]), path)

    workbook = openpyxl.load_workbook(path)
    rows = list(workbook[constants.SheetName.SALE_ITEMS.value].iter_rows(min_row=2, values_only=True))
    assert [(row[0], row[1], row[2]) for row in rows] == [("abc", "Mug", 3), ("abc", "T-Shirt", 1)]


# ---------------------------------------------------------------------------
# Row conversion
# ---------------------------------------------------------------------------


def test_serialize_product_preserves_order():
    """serialize_product should follow the Products column ordering."""

    record = data_manager.ProductRow("Mug", Decimal("25.50"), constants.ProductStatus.UNAVAILABLE)
    assert data_manager.serialize_product(record) == ["Mug", Decimal("25.50"), "unavailable"]


def test_deserialize_product_defaults_blank_status_to_available():
    """A product row without status should be treated as available."""

    record = data_manager.deserialize_product(["Mug", 25.5, None])
    assert record.status is constants.ProductStatus.AVAILABLE
    assert record.price == Decimal("25.5")


def test_deserialize_event_normalizes_excel_dates():
    """Excel date cells should come back as ISO date strings."""

    from datetime import datetime

    record = data_manager.deserialize_event(["Expo", datetime(2025, 3, 10)])
    assert record.date == "2025-03-10"


def test_deserialize_sale_turns_blank_optionals_into_none(make_sale):
    """Blank complement, note and customer code cells should read as None."""

    raw = data_manager.serialize_sale(make_sale(sale_id="s1"))
    raw[13] = ""
    raw[20] = ""
    record = data_manager.deserialize_sale(raw, {"s1": [data_manager.LineItem("Mug", 1, Decimal("1"))]})

    assert record.complement is None
    assert record.note is None
    assert record.customer_code is None
    assert record.line_items == (data_manager.LineItem("Mug", 1, Decimal("1")),)


def test_sale_dict_round_trip(make_sale):
    """sale_to_dict output should rebuild an equal Sale."""

    sale = make_sale(note="Paid in two parts")
    payload = data_manager.sale_to_dict(sale)

    assert payload["total_amount"] == "100.00"
    assert payload["line_items"][0] == {"product_name": "T-Shirt", "units": 2, "unit_price": "50.00"}
    assert data_manager.sale_from_dict(payload) == sale


def test_line_item_subtotal_and_sale_total_units(make_sale):
    """Derived properties should multiply and sum as expected."""

    sale = make_sale(
        line_items=(
            data_manager.LineItem("Mug", 3, Decimal("25.50")),
            data_manager.LineItem("T-Shirt", 1, Decimal("50.00")),
        )
    )
    assert sale.line_items[0].subtotal == Decimal("76.50")
    assert sale.total_units == 4
