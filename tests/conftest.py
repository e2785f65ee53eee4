"""Shared pytest fixtures and utilities for Event Sales tests."""

from __future__ import annotations

import argparse
import sys
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from pathlib import Path
from types import ModuleType
from typing import Callable, Iterator
from unittest.mock import Mock

import pytest

# Ensure source packages are importable without installation.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"

if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from event_sales import cli, composer, constants, data_manager  # noqa: E402
from event_sales.setup_excel import create_storage_workbook  # noqa: E402
from event_sales.store import EntityStore  # noqa: E402

DEFAULT_SCHEMA_VERSION = constants.EXPECTED_SCHEMA_VERSION
_CONFIG_TEMPLATE = (
    "[System]\n"
    "DataFile = {data_file}\n"
    "StoreName = {store_name}\n"
    "SchemaVersion = {schema_version}\n"
    "LogDir = {log_dir}\n\n"
    "[Remote]\n"
    "ApiBaseUrl = {api_base_url}\n"
    "Timeout = 5\n\n"
    "[Export]\n"
    "OutputDir = {export_dir}\n"
    "MaxProductColumns = 3\n"
)


@dataclass(frozen=True)
class ConfigBundle:
    """Container bundling together config metadata for tests."""

    directory: Path
    config_path: Path
    workbook_path: Path
    export_dir: Path
    schema_version: str
    store_name: str


@pytest.fixture(scope="session", autouse=True)
def _restore_sys_path() -> Iterator[None]:
    """Ensure sys.path modifications are undone after the test session."""

    original = sys.path.copy()
    try:
        yield
    finally:
        sys.path[:] = original


@pytest.fixture
def workbook_factory(tmp_path: Path) -> Callable[..., Path]:
    """Factory that creates an initialized storage workbook in a temp folder."""

    def _create_workbook(*, subdir: str | None = None, filename: str = "event_sales.xlsx") -> Path:
        base_dir = tmp_path if subdir is None else tmp_path / subdir
        base_dir.mkdir(parents=True, exist_ok=True)
        return create_storage_workbook(base_dir / filename, overwrite=True)

    return _create_workbook


@pytest.fixture
def storage_workbook_path(workbook_factory: Callable[..., Path]) -> Path:
    """Return a fresh storage workbook ready for use in a test."""

    return workbook_factory(subdir=f"workbook_{uuid.uuid4().hex}")


@pytest.fixture
def config_factory(tmp_path: Path, workbook_factory: Callable[..., Path]) -> Callable[..., ConfigBundle]:
    """Provide a callable that creates config/workbook bundles on demand."""

    def _create_config(
        *,
        make_relative: bool = False,
        store_name: str = "Test Store",
        schema_version: str = DEFAULT_SCHEMA_VERSION,
        api_base_url: str = "",
        log_dir: str = "",
    ) -> ConfigBundle:
        bundle_name = f"bundle_{uuid.uuid4().hex}"
        bundle_dir = tmp_path / bundle_name
        bundle_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = workbook_factory(subdir=bundle_name)
        export_dir = bundle_dir / "exports"
        data_file_entry = workbook_path.name if make_relative else str(workbook_path)
        export_dir_entry = "exports" if make_relative else str(export_dir)
        config_path = bundle_dir / "config.ini"
        config_path.write_text(
            _CONFIG_TEMPLATE.format(
                data_file=data_file_entry,
                store_name=store_name,
                schema_version=schema_version,
                api_base_url=api_base_url,
                export_dir=export_dir_entry,
                log_dir=log_dir,
            )
        )
        return ConfigBundle(
            directory=bundle_dir,
            config_path=config_path,
            workbook_path=workbook_path,
            export_dir=export_dir,
            schema_version=schema_version,
            store_name=store_name,
        )

    return _create_config


@pytest.fixture
def config_bundle(config_factory: Callable[..., ConfigBundle]) -> ConfigBundle:
    return config_factory()


@pytest.fixture
def config_file(config_bundle: ConfigBundle) -> Path:
    """Convenience fixture returning only the config path."""

    return config_bundle.config_path


@pytest.fixture
def runtime_context(config_file: Path) -> cli.RuntimeContext:
    """Load the runtime context for tests through the public API."""

    return cli.load_runtime_context(config_file)


@pytest.fixture
def settings(tmp_path: Path) -> data_manager.ConfigSettings:
    """Provide default configuration settings in local-only mode."""

    return data_manager.ConfigSettings(
        data_file=tmp_path / "event_sales.xlsx",
        store_name="Test Store",
        schema_version=constants.EXPECTED_SCHEMA_VERSION,
        export_dir=tmp_path / "exports",
    )


# ---------------------------------------------------------------------------
# Domain fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def catalog() -> list[data_manager.ProductRow]:
    """Three products, one of them unavailable."""

    return [
        data_manager.ProductRow("T-Shirt", Decimal("50.00")),
        data_manager.ProductRow("Mug", Decimal("25.50")),
        data_manager.ProductRow("Poster", Decimal("10.00"), constants.ProductStatus.UNAVAILABLE),
    ]


@pytest.fixture
def payment_methods() -> list[data_manager.PaymentMethodRow]:
    return [data_manager.PaymentMethodRow(name) for name in constants.DEFAULT_PAYMENT_METHODS]


@pytest.fixture
def sale_context() -> composer.SaleContext:
    return composer.SaleContext(user_name="Ana", event_name="Expo", event_date="2025-03-10")


@pytest.fixture
def make_sale() -> Callable[..., data_manager.Sale]:
    """Factory building complete sales with overridable fields."""

    counter = {"value": 0}

    def _make_sale(**overrides: object) -> data_manager.Sale:
        counter["value"] += 1
        items = overrides.pop("line_items", (data_manager.LineItem("T-Shirt", 2, Decimal("50.00")),))
        values = {
            "sale_id": f"sale-{counter['value']}",
            "created_at": f"2025-03-10T12:00:{counter['value']:02d}+00:00",
            "user_name": "Ana",
            "event_name": "Expo",
            "event_date": "2025-03-10",
            "first_name": "Maria",
            "last_name": "Silva",
            "cpf": "123.456.789-00",
            "email": "maria@example.com",
            "area_code": "11",
            "phone_number": "99999-0000",
            "street": "Rua A",
            "street_number": "100",
            "complement": None,
            "neighborhood": "Centro",
            "city": "Sao Paulo",
            "state": "SP",
            "postal_code": "01001-000",
            "payment_method": "Pix",
            "note": None,
            "customer_code": None,
        }
        values.update(overrides)
        values["line_items"] = tuple(items)
        if "total_amount" not in values:
            values["total_amount"] = sum((item.subtotal for item in values["line_items"]), Decimal("0"))
        return data_manager.Sale(**values)

    return _make_sale


@pytest.fixture
def persist_hook() -> Mock:
    return Mock(name="persist")


@pytest.fixture
def memory_store(
    persist_hook: Mock,
    catalog: list[data_manager.ProductRow],
    payment_methods: list[data_manager.PaymentMethodRow],
) -> EntityStore:
    """Entity store seeded with the catalog and a mock persistence hook."""

    snapshot = data_manager.StoreSnapshot(
        users=[data_manager.UserRow("Ana")],
        events=[data_manager.EventRow("Expo", "2025-03-10")],
        payment_methods=list(payment_methods),
        products=list(catalog),
    )
    return EntityStore(snapshot, persist_hook)


# ---------------------------------------------------------------------------
# CLI layer fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_parser() -> argparse.ArgumentParser:
    """Return a fresh CLI parser instance for tests."""

    return argparse.ArgumentParser(prog="event-sales", description="Event Sales CLI")


@pytest.fixture
def subparsers_action(
    cli_parser: argparse.ArgumentParser,
) -> argparse._SubParsersAction[argparse.ArgumentParser]:
    """Return the subparser action used to register commands."""

    return cli_parser.add_subparsers(dest="command")


@pytest.fixture
def command_spec_iterable() -> list[cli.CommandSpec]:
    """Provide a list of command specs for indexing tests."""

    def _make_spec(name: str) -> cli.CommandSpec:
        return cli.CommandSpec(
            name,
            f"{name} help",
            lambda subparsers: subparsers.add_parser(name),
            lambda *_: 0,
        )

    return [_make_spec("alpha"), _make_spec("beta"), _make_spec("gamma")]


@pytest.fixture
def set_fixed_datetime(monkeypatch: pytest.MonkeyPatch) -> Callable[..., datetime]:
    """Patch ``<module>.datetime`` (composer by default) to a predetermined moment."""

    def _apply(moment: datetime, module: ModuleType = composer) -> datetime:
        class _FixedDateTime(datetime):
            @classmethod
            def now(cls, tz=None):
                assert tz is UTC
                return moment

        monkeypatch.setattr(module, "datetime", _FixedDateTime)
        return moment

    return _apply
