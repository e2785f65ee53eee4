"""Storage layer for Event Sales.

This module provides low-level helpers that read from and write to the
storage workbook (``event_sales.xlsx`` by default). Business logic belongs
elsewhere.

The public API is designed around three responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Workbook lifecycle: opening, building, and persisting the Excel file.
3. Collection snapshots: loading every named slot at startup and rewriting
   all of them in full after a mutation.
"""


from __future__ import annotations

import configparser
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence
from zipfile import BadZipFile

import openpyxl
from openpyxl.styles import Font
from openpyxl.utils.exceptions import InvalidFileException
from openpyxl.workbook import Workbook

from . import log
from .constants import (
    DEFAULT_MAX_PRODUCT_COLUMNS,
    DEFAULT_POSTAL_CODE_URL,
    DEFAULT_TIMEOUT_SECONDS,
    ProductStatus,
    SheetName,
)


CONFIG_FILE_NAME = "config.ini"

SHEET_COLUMNS: Mapping[str, Sequence[str]] = {
    SheetName.USERS.value: ["Name"],
    SheetName.EVENTS.value: ["Name", "Date"],
    SheetName.PAYMENT_METHODS.value: ["Name"],
    SheetName.PRODUCTS.value: ["Name", "Price", "Status"],
    SheetName.SALES.value: [
        "SaleID",
        "CreatedAt",
        "UserName",
        "EventName",
        "EventDate",
        "FirstName",
        "LastName",
        "CPF",
        "Email",
        "AreaCode",
        "PhoneNumber",
        "Street",
        "StreetNumber",
        "Complement",
        "Neighborhood",
        "City",
        "State",
        "PostalCode",
        "PaymentMethod",
        "TotalAmount",
        "Note",
        "CustomerCode",
    ],
    SheetName.SALE_ITEMS.value: ["SaleID", "ProductName", "Units", "UnitPrice"],
}


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    store_name: str
    schema_version: str
    api_base_url: Optional[str] = None
    postal_code_url: str = DEFAULT_POSTAL_CODE_URL
    timeout: float = DEFAULT_TIMEOUT_SECONDS
    export_dir: Path = Path("exports")
    max_product_columns: int = DEFAULT_MAX_PRODUCT_COLUMNS
    log_dir: Optional[Path] = None


@dataclass(frozen=True)
class UserRow:
    """In-memory view of a row from the ``Users`` sheet."""

    name: str


@dataclass(frozen=True)
class EventRow:
    """In-memory view of a row from the ``Events`` sheet."""

    name: str
    date: str


@dataclass(frozen=True)
class PaymentMethodRow:
    """In-memory view of a row from the ``PaymentMethods`` sheet."""

    name: str


@dataclass(frozen=True)
class ProductRow:
    """In-memory view of a row from the ``Products`` sheet."""

    name: str
    price: Decimal
    status: ProductStatus = ProductStatus.AVAILABLE

    @property
    def is_available(self) -> bool:
        return self.status is ProductStatus.AVAILABLE


@dataclass(frozen=True)
class LineItem:
    """One product entry within a sale, priced at the moment of sale."""

    product_name: str
    units: int
    unit_price: Decimal

    @property
    def subtotal(self) -> Decimal:
        return self.unit_price * self.units


@dataclass(frozen=True)
class Sale:
    """Immutable, fully populated sale record as persisted in the workbook."""

    sale_id: str
    created_at: str
    user_name: str
    event_name: str
    event_date: str
    first_name: str
    last_name: str
    cpf: str
    email: str
    area_code: str
    phone_number: str
    street: str
    street_number: str
    complement: Optional[str]
    neighborhood: str
    city: str
    state: str
    postal_code: str
    payment_method: str
    total_amount: Decimal
    note: Optional[str]
    line_items: tuple[LineItem, ...]
    customer_code: Optional[str] = None

    @property
    def total_units(self) -> int:
        return sum(item.units for item in self.line_items)


@dataclass
class StoreSnapshot:
    """All collections held by the entity store, in storage order."""

    users: List[UserRow] = field(default_factory=list)
    events: List[EventRow] = field(default_factory=list)
    payment_methods: List[PaymentMethodRow] = field(default_factory=list)
    products: List[ProductRow] = field(default_factory=list)
    sales: List[Sale] = field(default_factory=list)


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls how the storage layer behaves.

    If the caller provides ``explicit_path`` the value is returned immediately
    without any verification. Otherwise the function walks up from the current
    working directory toward the filesystem root looking for a file named
    ``CONFIG_FILE_NAME``; the first match that exists on disk wins.

    Args:
        explicit_path (Path | None): Optional path to use instead of performing
            the upward search.

    Returns:
        Path: The path provided by the caller or the discovered configuration
            file.

    Raises:
        FileNotFoundError: If the search exhausts all parent directories without
            finding ``CONFIG_FILE_NAME``.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for p in (current, *current.parents):
        candidate = p / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(
        f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` and return a populated ``ConfigParser`` instance.

    Args:
        config_path (Path): Path to the configuration file, relative or
            absolute. ``~`` is expanded.

    Returns:
        configparser.ConfigParser: Initialized parser containing the raw
            configuration data. Validation of required entries happens in
            :func:`parse_settings`.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist after expansion and
            resolution.
    """

    config_path = config_path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path, encoding="utf-8")
    return parser


def _anchor_path(raw: str, base_path: Optional[Path]) -> Path:
    path = Path(raw).expanduser()
    if not path.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        path = (base_path / path).resolve()
    return path


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    ``[System]`` entries are mandatory. ``[Remote]`` and ``[Export]`` are
    optional and fall back to local-only mode and the default export layout.
    ``[System] LogDir`` is optional; when blank the package keeps logging
    next to the project. Relative ``DataFile``, ``OutputDir`` and ``LogDir``
    entries are expanded against
    ``base_path`` (or the current working directory when omitted).

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Directory used as the anchor for relative
            paths.

    Returns:
        ConfigSettings: Immutable settings container.

    Raises:
        KeyError: If one of the required sections or options is missing.
        ValueError: If ``Timeout`` or ``MaxProductColumns`` is not a positive
            number.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        store_name = parser.get("System", "StoreName")
        schema_version = parser.get("System", "SchemaVersion")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    api_base_url = parser.get("Remote", "ApiBaseUrl", fallback="").strip() or None
    postal_code_url = parser.get("Remote", "PostalCodeUrl", fallback=DEFAULT_POSTAL_CODE_URL)
    timeout = parser.getfloat("Remote", "Timeout", fallback=DEFAULT_TIMEOUT_SECONDS)
    export_dir_raw = parser.get("Export", "OutputDir", fallback="exports")
    max_product_columns = parser.getint("Export", "MaxProductColumns", fallback=DEFAULT_MAX_PRODUCT_COLUMNS)
    log_dir_raw = parser.get("System", "LogDir", fallback="").strip()

    if timeout <= 0:
        raise ValueError(f"Timeout must be positive, got {timeout}")
    if max_product_columns < 1:
        raise ValueError(f"MaxProductColumns must be at least 1, got {max_product_columns}")

    return ConfigSettings(
        data_file=_anchor_path(data_file_raw, base_path),
        store_name=store_name,
        schema_version=schema_version,
        api_base_url=api_base_url,
        postal_code_url=postal_code_url,
        timeout=timeout,
        export_dir=_anchor_path(export_dir_raw, base_path),
        max_product_columns=max_product_columns,
        log_dir=_anchor_path(log_dir_raw, base_path) if log_dir_raw else None,
    )


def open_workbook(data_file: Path) -> Workbook:
    """Open the storage workbook and return a live ``openpyxl`` workbook.

    Args:
        data_file (Path): Filesystem path to the storage workbook.

    Returns:
        Workbook: ``openpyxl`` workbook instance backed by the provided file.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist after expansion and
            resolution.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    return openpyxl.load_workbook(data_file)


def save_workbook(workbook: Workbook, destination: Path) -> None:
    """Persist the workbook to disk at an explicitly provided destination.

    Parent directories are created on demand.

    Args:
        workbook (Workbook): Workbook instance to persist.
        destination (Path): Filesystem path that should receive the serialized
            workbook.
    """

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(dest)


def create_empty_workbook(sheet_columns: Mapping[str, Sequence[str]] = SHEET_COLUMNS) -> Workbook:
    """Build a workbook holding every storage sheet with a bold header row.

    Args:
        sheet_columns (Mapping[str, Sequence[str]]): Sheet titles mapped to
            their header cells, in order.

    Returns:
        Workbook: In-memory workbook with no data rows.
    """

    workbook = openpyxl.Workbook()
    # Remove the default sheet openpyxl generates so we can create ours.
    if workbook.active and workbook.active.title == "Sheet":
        workbook.remove(workbook.active)

    bold_font = Font(bold=True)
    for sheet_name, columns in sheet_columns.items():
        worksheet = workbook.create_sheet(title=sheet_name)
        for column_index, column_name in enumerate(columns, start=1):
            cell = worksheet.cell(row=1, column=column_index)
            cell.value = column_name
            cell.font = bold_font
    return workbook


def iter_raw_rows(workbook: Workbook, sheet_name: str) -> Iterable[tuple]:
    """Yield the non-empty data rows of ``sheet_name`` below the header."""

    sheet = workbook[sheet_name]
    for raw in sheet.iter_rows(min_row=2, values_only=True):
        # skip fully empty rows
        if any(cell is not None for cell in raw):
            yield raw


def _read_slot(workbook: Workbook, sheet_name: str, converter: Callable[[Sequence[object]], Any]) -> List[Any]:
    """Deserialize one sheet, degrading to an empty slot when it is unusable."""

    if sheet_name not in workbook.sheetnames:
        log.warning("Storage sheet '%s' is missing; starting with an empty collection", sheet_name)
        return []
    try:
        return [converter(raw) for raw in iter_raw_rows(workbook, sheet_name)]
    except (TypeError, ValueError, ArithmeticError, IndexError) as exc:
        log.warning("Storage sheet '%s' is unreadable (%s); starting with an empty collection", sheet_name, exc)
        return []


def load_collections(data_file: Path) -> StoreSnapshot:
    """Read every named slot from the storage workbook.

    This runs once at startup. A missing or corrupt workbook yields an empty
    snapshot; a missing or unparseable sheet yields an empty collection for
    that slot only, leaving the other slots intact. Sales and their line
    items form a single slot.

    Args:
        data_file (Path): Location of the storage workbook.

    Returns:
        StoreSnapshot: Collections in the order they appear in the workbook.
    """

    try:
        workbook = open_workbook(data_file)
    except FileNotFoundError:
        log.info("No storage workbook at '%s'; starting with empty collections", data_file)
        return StoreSnapshot()
    except (InvalidFileException, BadZipFile, OSError, KeyError) as exc:
        log.warning("Storage workbook '%s' could not be parsed: %s", data_file, exc)
        return StoreSnapshot()

    items = _read_slot(workbook, SheetName.SALE_ITEMS.value, deserialize_line_item)
    items_by_sale: Dict[str, List[LineItem]] = {}
    for sale_id, item in items:
        items_by_sale.setdefault(sale_id, []).append(item)

    snapshot = StoreSnapshot(
        users=_read_slot(workbook, SheetName.USERS.value, deserialize_user),
        events=_read_slot(workbook, SheetName.EVENTS.value, deserialize_event),
        payment_methods=_read_slot(workbook, SheetName.PAYMENT_METHODS.value, deserialize_payment_method),
        products=_read_slot(workbook, SheetName.PRODUCTS.value, deserialize_product),
        sales=_read_slot(
            workbook,
            SheetName.SALES.value,
            lambda raw: deserialize_sale(raw, items_by_sale),
        ),
    )
    log.info(
        "Loaded storage '%s': %d users, %d events, %d payment methods, %d products, %d sales",
        data_file,
        len(snapshot.users),
        len(snapshot.events),
        len(snapshot.payment_methods),
        len(snapshot.products),
        len(snapshot.sales),
    )
    return snapshot


def save_collections(snapshot: StoreSnapshot, destination: Path) -> None:
    """Rewrite every storage sheet in full from ``snapshot``.

    Args:
        snapshot (StoreSnapshot): Collections to persist.
        destination (Path): Workbook path to overwrite.
    """

    workbook = create_empty_workbook()
    for record in snapshot.users:
        workbook[SheetName.USERS.value].append(serialize_user(record))
    for record in snapshot.events:
        workbook[SheetName.EVENTS.value].append(serialize_event(record))
    for record in snapshot.payment_methods:
        workbook[SheetName.PAYMENT_METHODS.value].append(serialize_payment_method(record))
    for record in snapshot.products:
        workbook[SheetName.PRODUCTS.value].append(serialize_product(record))
    for sale in snapshot.sales:
        workbook[SheetName.SALES.value].append(serialize_sale(sale))
        for item in sale.line_items:
            workbook[SheetName.SALE_ITEMS.value].append(serialize_line_item(sale.sale_id, item))
    save_workbook(workbook, destination)
    log.debug("Rewrote storage workbook '%s'", destination)


def serialize_user(record: UserRow) -> list[object]:
    return [record.name]


def serialize_event(record: EventRow) -> list[object]:
    return [record.name, record.date]


def serialize_payment_method(record: PaymentMethodRow) -> list[object]:
    return [record.name]


def serialize_product(record: ProductRow) -> list[object]:
    """Convert a product dataclass into ``[Name, Price, Status]``."""

    return [record.name, record.price, record.status.value]


def serialize_line_item(sale_id: str, record: LineItem) -> list[object]:
    """Convert a line item into ``[SaleID, ProductName, Units, UnitPrice]``."""

    return [sale_id, record.product_name, record.units, record.unit_price]


def serialize_sale(record: Sale) -> list[object]:
    """Convert a sale dataclass into the ``Sales`` sheet column ordering.

    Line items are stored separately on the ``SaleItems`` sheet.

    Args:
        record (Sale): Sale to transform.

    Returns:
        list[object]: Values ordered to match ``SHEET_COLUMNS["Sales"]``.
    """

    return [
        record.sale_id,
        record.created_at,
        record.user_name,
        record.event_name,
        record.event_date,
        record.first_name,
        record.last_name,
        record.cpf,
        record.email,
        record.area_code,
        record.phone_number,
        record.street,
        record.street_number,
        record.complement,
        record.neighborhood,
        record.city,
        record.state,
        record.postal_code,
        record.payment_method,
        record.total_amount,
        record.note,
        record.customer_code,
    ]


def _text(value: object) -> str:
    return "" if value is None else str(value)


def _optional_text(value: object) -> Optional[str]:
    return None if value is None or value == "" else str(value)


def _date_text(value: object) -> str:
    """Normalize event dates, which Excel may have turned into datetimes."""

    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return _text(value)


def _decimal(value: object) -> Decimal:
    return Decimal(str(value)) if value is not None else Decimal("0.00")


def deserialize_user(raw_row: Sequence[object]) -> UserRow:
    return UserRow(name=_text(raw_row[0]))


def deserialize_event(raw_row: Sequence[object]) -> EventRow:
    return EventRow(name=_text(raw_row[0]), date=_date_text(raw_row[1]))


def deserialize_payment_method(raw_row: Sequence[object]) -> PaymentMethodRow:
    return PaymentMethodRow(name=_text(raw_row[0]))


def deserialize_product(raw_row: Sequence[object]) -> ProductRow:
    """Convert a raw worksheet row into a strongly typed product record.

    Raises:
        ValueError: If the status cell holds an unknown availability state.
    """

    name, price_raw, status_raw = raw_row[0], raw_row[1], raw_row[2]
    status = ProductStatus(status_raw) if status_raw is not None else ProductStatus.AVAILABLE
    return ProductRow(name=_text(name), price=_decimal(price_raw), status=status)


def deserialize_line_item(raw_row: Sequence[object]) -> tuple[str, LineItem]:
    """Convert a ``SaleItems`` row into ``(sale_id, LineItem)``."""

    sale_id, product_name, units_raw, unit_price_raw = raw_row[:4]
    return _text(sale_id), LineItem(
        product_name=_text(product_name),
        units=int(units_raw),
        unit_price=_decimal(unit_price_raw),
    )


def deserialize_sale(raw_row: Sequence[object], items_by_sale: Mapping[str, Sequence[LineItem]]) -> Sale:
    """Convert a raw ``Sales`` row into a :class:`Sale`.

    Args:
        raw_row (Sequence[object]): Raw cell values in worksheet order.
        items_by_sale (Mapping[str, Sequence[LineItem]]): Line items grouped
            by sale identifier, in storage order.

    Returns:
        Sale: Record with text columns normalized to ``str`` and optional
            columns left as ``None`` when blank.
    """

    values = list(raw_row) + [None] * (len(SHEET_COLUMNS[SheetName.SALES.value]) - len(raw_row))
    sale_id = _text(values[0])
    return Sale(
        sale_id=sale_id,
        created_at=_text(values[1]),
        user_name=_text(values[2]),
        event_name=_text(values[3]),
        event_date=_date_text(values[4]),
        first_name=_text(values[5]),
        last_name=_text(values[6]),
        cpf=_text(values[7]),
        email=_text(values[8]),
        area_code=_text(values[9]),
        phone_number=_text(values[10]),
        street=_text(values[11]),
        street_number=_text(values[12]),
        complement=_optional_text(values[13]),
        neighborhood=_text(values[14]),
        city=_text(values[15]),
        state=_text(values[16]),
        postal_code=_text(values[17]),
        payment_method=_text(values[18]),
        total_amount=_decimal(values[19]),
        note=_optional_text(values[20]),
        line_items=tuple(items_by_sale.get(sale_id, ())),
        customer_code=_optional_text(values[21]),
    )


_SALE_TEXT_FIELDS = (
    "sale_id",
    "created_at",
    "user_name",
    "event_name",
    "event_date",
    "first_name",
    "last_name",
    "cpf",
    "email",
    "area_code",
    "phone_number",
    "street",
    "street_number",
    "neighborhood",
    "city",
    "state",
    "postal_code",
    "payment_method",
)
_SALE_OPTIONAL_FIELDS = ("complement", "note", "customer_code")


def sale_to_dict(sale: Sale) -> Dict[str, Any]:
    """Render a sale as a JSON-compatible mapping (decimals become strings)."""

    payload: Dict[str, Any] = {name: getattr(sale, name) for name in _SALE_TEXT_FIELDS + _SALE_OPTIONAL_FIELDS}
    payload["total_amount"] = str(sale.total_amount)
    payload["line_items"] = [
        {"product_name": item.product_name, "units": item.units, "unit_price": str(item.unit_price)}
        for item in sale.line_items
    ]
    return payload


def sale_from_dict(payload: Mapping[str, Any]) -> Sale:
    """Rebuild a :class:`Sale` from :func:`sale_to_dict` output.

    Raises:
        KeyError: If a mandatory field is absent from ``payload``.
    """

    values: Dict[str, Any] = {name: _text(payload[name]) for name in _SALE_TEXT_FIELDS}
    values.update({name: _optional_text(payload.get(name)) for name in _SALE_OPTIONAL_FIELDS})
    values["total_amount"] = _decimal(payload.get("total_amount"))
    values["line_items"] = tuple(
        LineItem(
            product_name=_text(item["product_name"]),
            units=int(item["units"]),
            unit_price=_decimal(item.get("unit_price")),
        )
        for item in payload.get("line_items") or ()
    )
    return Sale(**values)
