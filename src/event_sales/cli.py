"""Command-line entry points for the Event Sales toolkit.

All orchestration in this module is limited to argparse wiring and
translating command-line arguments into calls on the
:class:`~event_sales.controller.ViewController`. Keeping the CLI thin lets
tests, scripts, or any other front end reuse the same parser configuration.
"""

from __future__ import annotations

import argparse
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Mapping, MutableMapping, Optional, Sequence, Tuple

from . import configure_log_file, data_manager, log
from .aggregation import Dashboard
from .composer import ValidationError
from .constants import EXPECTED_SCHEMA_VERSION, NotificationKind, ProductStatus
from .controller import ViewController
from .store import EntityStore, open_store


@dataclass(frozen=True)
class RuntimeContext:
    """Configuration, store, and controller shared by every command."""

    settings: data_manager.ConfigSettings
    store: EntityStore
    controller: ViewController


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Callable[[RuntimeContext, argparse.Namespace], int]


# Draft attribute names paired with their command-line destinations.
CUSTOMER_ARGUMENTS: Tuple[Tuple[str, str], ...] = (
    ("first_name", "--first-name"),
    ("last_name", "--last-name"),
    ("cpf", "--cpf"),
    ("email", "--email"),
    ("area_code", "--area-code"),
    ("phone_number", "--phone"),
    ("street", "--street"),
    ("street_number", "--street-number"),
    ("complement", "--complement"),
    ("neighborhood", "--neighborhood"),
    ("city", "--city"),
    ("state", "--state"),
    ("postal_code", "--postal-code"),
    ("payment_method", "--payment-method"),
    ("note", "--note"),
    ("customer_code", "--customer-code"),
)


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="event-sales",
        description="Command-line tools for recording and reporting event sales.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (searched upwards from the working directory by default).",
    )
    return parser


def configure_subcommands(
    parser: argparse.ArgumentParser,
) -> Mapping[str, CommandSpec]:
    """Wire all CLI sub-commands onto the supplied parser."""
    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    write_specs = register_write_commands(subparsers)
    read_specs = register_read_commands(subparsers)
    return build_command_table([*write_specs.values(), *read_specs.values()])


def register_write_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare mutating CLI commands such as catalog entries and sales."""
    specs = {
        "add-user": register_add_user_command(subparsers),
        "add-event": register_add_event_command(subparsers),
        "add-payment-method": register_add_payment_method_command(subparsers),
        "add-product": register_add_product_command(subparsers),
        "remove-product": register_remove_product_command(subparsers),
        "sale": register_sale_command(subparsers),
        "edit-sale": register_edit_sale_command(subparsers),
        "delete-sale": register_delete_sale_command(subparsers),
        "delete-event": register_delete_event_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare read-only CLI commands such as listings and exports."""
    specs = {
        "list": register_list_command(subparsers),
        "dashboard": register_dashboard_command(subparsers),
        "export": register_export_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def _add_customer_arguments(parser: argparse.ArgumentParser) -> None:
    for dest, flag in CUSTOMER_ARGUMENTS:
        parser.add_argument(flag, dest=dest, default=None)
    parser.add_argument(
        "--item",
        dest="items",
        action="append",
        default=[],
        metavar="PRODUCT=UNITS",
        help="Line item; repeat for several products.",
    )
    parser.add_argument(
        "--lookup-address",
        action="store_true",
        help="Fill street, neighborhood, city and state from --postal-code.",
    )


def _add_filter_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--search", default="", help="Match first name, last name, CPF, or event.")
    parser.add_argument("--event", default="", help="Only sales of this exact event.")
    parser.add_argument("--user", default="", help="Only sales recorded by this exact user.")


def register_add_user_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-user``."""
    name = "add-user"
    help_text = "Register a user; existing names are left untouched."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--name", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_user)


def register_add_event_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-event``."""
    name = "add-event"
    help_text = "Register an event; existing names are left untouched."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--name", required=True)
        parser.add_argument("--date", required=True, help="Event date as YYYY-MM-DD.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_event)


def register_add_payment_method_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-payment-method``."""
    name = "add-payment-method"
    help_text = "Register a payment method."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--name", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_payment_method)


def register_add_product_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-product``."""
    name = "add-product"
    help_text = "Add a product to the catalog, or update one with --original-name."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--name", required=True)
        parser.add_argument("--price", required=True)
        parser.add_argument("--unavailable", action="store_true", help="Hide the product from new sales.")
        parser.add_argument("--original-name", default=None, help="Name of the product being updated.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_product)


def register_remove_product_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``remove-product``."""
    name = "remove-product"
    help_text = "Remove a product from the catalog."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--name", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_remove_product)


def register_sale_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``sale``."""
    name = "sale"
    help_text = "Record a sale for the given user and event."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--user", required=True)
        parser.add_argument("--event", required=True)
        parser.add_argument("--event-date", default="", help="Required when the event is new.")
        parser.add_argument(
            "--lookup-customer",
            action="store_true",
            help="Prefill customer details from an earlier sale with the same --cpf.",
        )
        _add_customer_arguments(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_sale)


def register_edit_sale_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``edit-sale``."""
    name = "edit-sale"
    help_text = "Edit a recorded sale; --item replaces all line items."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--sale-id", required=True)
        parser.add_argument("--remove-item", dest="remove_items", action="append", default=[], metavar="PRODUCT")
        parser.add_argument("--user", default="", help="Attribute the edited sale to this user; requires --event.")
        parser.add_argument("--event", default="", help="Attribute the edited sale to this event; requires --user.")
        parser.add_argument("--event-date", default="", help="Required when the event is new.")
        _add_customer_arguments(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_edit_sale)


def register_delete_sale_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``delete-sale``."""
    name = "delete-sale"
    help_text = "Delete a recorded sale."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--sale-id", required=True)
        parser.add_argument("--yes", action="store_true", help="Confirm the deletion without prompting.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_delete_sale)


def register_delete_event_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``delete-event``."""
    name = "delete-event"
    help_text = "Delete an event together with all of its sales."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--name", required=True)
        parser.add_argument("--yes", action="store_true", help="Confirm the deletion without prompting.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_delete_event)


def register_list_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``list``."""
    name = "list"
    help_text = "Display recorded sales, newest first."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        _add_filter_arguments(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_list)


def register_dashboard_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``dashboard``."""
    name = "dashboard"
    help_text = "Display sales totals and rankings."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--event", default="", help="Restrict the dashboard to one event.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_dashboard)


def register_export_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``export``."""
    name = "export"
    help_text = "Export the filtered sales or the dashboard to a file."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--format", choices=["xlsx", "pdf", "dashboard"], default="xlsx")
        _add_filter_arguments(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_export)


def ensure_schema_version(settings: data_manager.ConfigSettings) -> None:
    """Refuse to work with a configuration written for another schema.

    Raises:
        RuntimeError: If ``SchemaVersion`` differs from ``EXPECTED_SCHEMA_VERSION``.
    """
    if settings.schema_version != EXPECTED_SCHEMA_VERSION:
        raise RuntimeError(
            f"Configuration schema version {settings.schema_version} does not match "
            f"expected version {EXPECTED_SCHEMA_VERSION}"
        )


def load_runtime_context(config_path: Optional[Path] = None) -> RuntimeContext:
    """Resolve configuration, open the store, and build the controller.

    Raises:
        FileNotFoundError: If ``config.ini`` or the storage workbook is missing.
        KeyError: When mandatory configuration options are missing.
        RuntimeError: On a schema version mismatch.
    """
    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    ensure_schema_version(settings)
    if settings.log_dir is not None:
        configure_log_file(settings.log_dir)
    if not settings.data_file.exists():
        raise FileNotFoundError(
            f"Storage workbook not found at {settings.data_file}; create it with event-sales-setup"
        )
    store = open_store(settings)
    controller = ViewController.from_settings(store, settings)
    log.info("Loaded runtime context for workbook '%s'", settings.data_file)
    return RuntimeContext(settings=settings, store=store, controller=controller)


def dispatch_command(
    context: RuntimeContext,
    args: argparse.Namespace,
    command_table: Mapping[str, CommandSpec],
) -> int:
    """Dispatch the parsed arguments to the configured executor."""
    if not hasattr(args, "command") or args.command is None:
        raise KeyError("No command specified")
    spec = command_table.get(args.command)
    if spec is None:
        raise KeyError(f"Unknown command: {args.command}")
    return spec.execute(context, args)


def build_command_table(
    specs: Iterable[CommandSpec],
) -> MutableMapping[str, CommandSpec]:
    """Build an index of command specifications keyed by command name."""
    table: Dict[str, CommandSpec] = {}
    for spec in specs:
        if spec.name in table:
            raise ValueError(f"Duplicate command name: {spec.name}")
        table[spec.name] = spec
    return table


def parse_item(raw: str) -> Tuple[str, int]:
    """Split a ``PRODUCT=UNITS`` argument.

    Raises:
        ValidationError: If the value is malformed or units is not an integer.
    """
    product_name, separator, units = raw.rpartition("=")
    if not separator or not product_name.strip():
        raise ValidationError(f"Invalid item '{raw}'; expected PRODUCT=UNITS.", ["units"])
    try:
        return product_name.strip(), int(units)
    except ValueError as error:
        raise ValidationError(f"Units must be a whole number in '{raw}'.", ["units"]) from error


def translate_customer_fields(args: argparse.Namespace) -> Dict[str, str]:
    """Collect the customer/sale options that were actually given."""
    return {
        dest: getattr(args, dest)
        for dest, _flag in CUSTOMER_ARGUMENTS
        if getattr(args, dest, None) is not None
    }


def confirm_from_args(args: argparse.Namespace) -> Callable[[str], bool]:
    """Return a confirmation callback honouring ``--yes`` or an interactive prompt."""

    def confirm(prompt: str) -> bool:
        if getattr(args, "yes", False):
            return True
        if not sys.stdin.isatty():
            return False
        return input(f"{prompt} [y/N] ").strip().lower() in {"y", "yes"}

    return confirm


def report_notifications(controller: ViewController) -> int:
    """Print pending notifications; exit code 1 when any of them is an error."""
    exit_code = 0
    for notification in controller.drain_notifications():
        print(f"[{notification.kind.value.upper()}] {notification.text}")
        if notification.kind is NotificationKind.ERROR:
            exit_code = 1
    return exit_code


def _apply_form(controller: ViewController, args: argparse.Namespace) -> None:
    draft = controller.draft
    for dest, value in translate_customer_fields(args).items():
        setattr(draft, dest, value)
    if args.lookup_address:
        controller.lookup_postal_code(draft.postal_code)
    for raw in args.items:
        product_name, units = parse_item(raw)
        controller.add_item(product_name, units)


def run_add_user(context: RuntimeContext, args: argparse.Namespace) -> int:
    """Register a user."""
    context.controller.create_user(args.name)
    return report_notifications(context.controller)


def run_add_event(context: RuntimeContext, args: argparse.Namespace) -> int:
    """Register an event."""
    context.controller.create_event(args.name, args.date)
    return report_notifications(context.controller)


def run_add_payment_method(context: RuntimeContext, args: argparse.Namespace) -> int:
    """Register a payment method."""
    context.controller.create_payment_method(args.name)
    return report_notifications(context.controller)


def run_add_product(context: RuntimeContext, args: argparse.Namespace) -> int:
    """Create or update a catalog product."""
    status = ProductStatus.UNAVAILABLE if args.unavailable else ProductStatus.AVAILABLE
    context.controller.save_product(args.name, args.price, status, original_name=args.original_name)
    return report_notifications(context.controller)


def run_remove_product(context: RuntimeContext, args: argparse.Namespace) -> int:
    """Remove a catalog product."""
    context.controller.remove_product(args.name)
    return report_notifications(context.controller)


def run_sale(context: RuntimeContext, args: argparse.Namespace) -> int:
    """Compose and record a new sale."""
    controller = context.controller
    controller.complete_setup(args.user, args.event, args.event_date)
    if args.lookup_customer and args.cpf:
        controller.lookup_customer(args.cpf)
    _apply_form(controller, args)
    sale_id = controller.draft.sale_id
    if controller.submit_sale() is not None:
        print(f"Sale ID: {sale_id}")
    return report_notifications(controller)


def run_edit_sale(context: RuntimeContext, args: argparse.Namespace) -> int:
    """Apply changes to a recorded sale, keeping its id and creation time."""
    controller = context.controller
    # without a session the sale keeps the user and event it was recorded under
    if args.user or args.event:
        controller.complete_setup(args.user, args.event, args.event_date)
    draft = controller.begin_edit(args.sale_id)
    if args.items:
        draft.line_items = []
    for product_name in args.remove_items:
        controller.remove_item(product_name)
    _apply_form(controller, args)
    controller.submit_sale()
    return report_notifications(controller)


def run_delete_sale(context: RuntimeContext, args: argparse.Namespace) -> int:
    """Delete a sale once confirmed."""
    context.controller.delete_sale(args.sale_id, confirm_from_args(args))
    return report_notifications(context.controller)


def run_delete_event(context: RuntimeContext, args: argparse.Namespace) -> int:
    """Delete an event and its sales once confirmed."""
    context.controller.delete_event(args.name, confirm_from_args(args))
    return report_notifications(context.controller)


def format_sale_line(sale: data_manager.Sale) -> str:
    items = ", ".join(f"{item.product_name} ({item.units})" for item in sale.line_items)
    return (
        f"{sale.sale_id} | {sale.created_at} | {sale.event_name} | {sale.user_name} | "
        f"{sale.first_name} {sale.last_name} | {sale.cpf or '-'} | {sale.payment_method} | "
        f"{sale.total_amount:.2f} | {items}"
    )


def run_list(context: RuntimeContext, args: argparse.Namespace) -> int:
    """Print the filtered sales list."""
    controller = context.controller
    controller.set_criteria(args.search, args.event, args.user)
    sales = controller.visible_sales()
    if not sales:
        print("No sales match the current filters.")
        return 0
    for sale in sales:
        print(format_sale_line(sale))
    print(f"{len(sales)} sale(s).")
    return 0


def format_dashboard(dashboard: Dashboard) -> List[str]:
    lines = [
        f"Total sales: {dashboard.total_sales}",
        f"Total units: {dashboard.total_units}",
        f"Average units per sale: {dashboard.average_units}",
        f"Top product: {dashboard.top_product or '-'}",
        "Top products:",
    ]
    lines.extend(f"  {name}: {units}" for name, units in dashboard.top_products(5))
    lines.append("Sales per event:")
    lines.extend(f"  {name}: {count}" for name, count in dashboard.count_by_event.items())
    lines.append("Per user:")
    lines.extend(
        f"  {name}: {summary.total_units} units in {summary.sale_count} sale(s)"
        for name, summary in dashboard.summary_by_user.items()
    )
    return lines


def run_dashboard(context: RuntimeContext, args: argparse.Namespace) -> int:
    """Print dashboard totals and rankings."""
    for line in format_dashboard(context.controller.dashboard(args.event)):
        print(line)
    return 0


def run_export(context: RuntimeContext, args: argparse.Namespace) -> int:
    """Write the requested export file."""
    controller = context.controller
    controller.set_criteria(args.search, args.event, args.user)
    if args.format == "xlsx":
        controller.export_spreadsheet()
    elif args.format == "pdf":
        controller.export_sales_pdf()
    else:
        controller.export_dashboard_pdf(args.event)
    return report_notifications(controller)


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    if isinstance(error, (ValidationError, LookupError)):
        log.warning("%s", error)
        return 2
    if isinstance(error, FileNotFoundError):
        log.error("%s", error)
        return 3
    log.error("%s", error)
    return 1


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    try:
        context = load_runtime_context(getattr(args, "config", None))
        return dispatch_command(context, args, command_table)
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)
