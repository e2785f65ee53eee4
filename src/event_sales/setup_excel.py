"""Utility for initializing the Event Sales storage workbook.

The module doubles as a script (``event-sales-setup``) and as a library used
by tests or other tooling, so the workbook bootstrap logic stays the same
regardless of the execution path.
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Iterable, Sequence

from . import data_manager
from .constants import DEFAULT_PAYMENT_METHODS, SheetName


def create_storage_workbook(
    destination: Path,
    *,
    payment_methods: Iterable[str] = DEFAULT_PAYMENT_METHODS,
    overwrite: bool = False,
) -> Path:
    """Create an empty storage workbook at ``destination``.

    Every storage sheet gets its bold header row; the payment-method sheet is
    seeded with ``payment_methods``. When ``overwrite`` is ``False`` (the
    default) an existing file is left alone and ``FileExistsError`` is raised.
    """

    destination = Path(destination).expanduser().resolve()
    if destination.exists() and not overwrite:
        raise FileExistsError(f"Refusing to overwrite existing storage workbook: {destination}")

    workbook = data_manager.create_empty_workbook()
    sheet = workbook[SheetName.PAYMENT_METHODS.value]
    for name in payment_methods:
        sheet.append(data_manager.serialize_payment_method(data_manager.PaymentMethodRow(name)))

    data_manager.save_workbook(workbook, destination)
    return destination


def load_settings(config_path: Path) -> data_manager.ConfigSettings:
    """Read ``config.ini`` with relative paths anchored at its directory."""

    config_path = Path(config_path).expanduser().resolve()
    parser = data_manager.read_config(config_path)
    return data_manager.parse_settings(parser, base_path=config_path.parent)


def run_from_config(config_path: Path, *, overwrite: bool = False) -> Path:
    """Create the workbook named by ``[System] DataFile`` in ``config_path``."""

    settings = load_settings(config_path)
    return create_storage_workbook(settings.data_file, overwrite=overwrite)


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments for the setup script."""

    parser = argparse.ArgumentParser(description="Initialize the Event Sales storage workbook")
    parser.add_argument(
        "--config",
        default=data_manager.CONFIG_FILE_NAME,
        help="Path to configuration file (default: config.ini)",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Overwrite the target workbook if it already exists.",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for the setup script."""

    args = parse_args(argv)
    config_path = Path(args.config).expanduser().resolve()

    print("--- Event Sales Setup ---")
    print(f"Using configuration: {config_path}")

    try:
        output_path = run_from_config(config_path, overwrite=args.force)
    except (FileNotFoundError, KeyError, ValueError) as exc:
        print(f"\n[ERROR] {exc}")
        return 1
    except FileExistsError as exc:
        print(f"\n[ERROR] {exc}")
        print("Run with --force to overwrite the existing file if appropriate.")
        return 1
    except OSError as exc:
        print(f"\n[ERROR] Unable to write workbook: {exc}")
        return 1

    print(f"\n[SUCCESS] Created storage workbook at '{output_path}'.")
    return 0


if __name__ == "__main__":  # pragma: no cover - exercised via manual runs
    sys.exit(main())
