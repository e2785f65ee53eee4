"""Enumerations and fixed values shared across Event Sales modules.

Centralises domain constants so that the storage layer, the entity store,
the reporting helpers, and the presentation layers rely on a single source
of truth for sheet names, statuses, and export file names.
"""

from __future__ import annotations

from enum import Enum


# Central schema version expected by all layers when validating workbooks.
EXPECTED_SCHEMA_VERSION = "1.0.0"

DEFAULT_MAX_PRODUCT_COLUMNS = 5
DEFAULT_POSTAL_CODE_URL = "https://viacep.com.br/ws/{cep}/json/"
DEFAULT_TIMEOUT_SECONDS = 10.0

SALES_SPREADSHEET_FILENAME = "Sales_Filtered.xlsx"
SALES_PDF_FILENAME = "Sales_Filtered.pdf"
DASHBOARD_PDF_FILENAME = "Sales_Dashboard_Report.pdf"

# Placeholder written into export cells whose optional value is absent.
EMPTY_CELL = "-"

DEFAULT_PAYMENT_METHODS = ("Cash", "Credit Card", "Debit Card", "Pix")


class EntityKind(str, Enum):
    """Enumerate the collections held by the entity store."""

    USER = "user"
    EVENT = "event"
    PAYMENT_METHOD = "payment_method"
    PRODUCT = "product"
    SALE = "sale"


class ProductStatus(str, Enum):
    """Enumerate catalog availability states for products."""

    AVAILABLE = "available"
    UNAVAILABLE = "unavailable"


class SheetName(str, Enum):
    """Enumerate the workbook sheet names managed by the storage layer."""

    USERS = "Users"
    EVENTS = "Events"
    PAYMENT_METHODS = "PaymentMethods"
    PRODUCTS = "Products"
    SALES = "Sales"
    SALE_ITEMS = "SaleItems"


class View(str, Enum):
    """Enumerate the screens the view controller navigates between."""

    SETUP = "setup"
    ENTRY = "entry"
    DASHBOARD = "dashboard"


class NotificationKind(str, Enum):
    """Enumerate the severities of user-facing notifications."""

    SUCCESS = "success"
    ERROR = "error"
    INFO = "info"


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "DEFAULT_MAX_PRODUCT_COLUMNS",
    "DEFAULT_POSTAL_CODE_URL",
    "DEFAULT_TIMEOUT_SECONDS",
    "SALES_SPREADSHEET_FILENAME",
    "SALES_PDF_FILENAME",
    "DASHBOARD_PDF_FILENAME",
    "EMPTY_CELL",
    "DEFAULT_PAYMENT_METHODS",
    "EntityKind",
    "ProductStatus",
    "SheetName",
    "View",
    "NotificationKind",
]
