"""Presentation-agnostic controller wiring user actions to the core modules.

The controller owns the navigation state (current view, session context,
draft under edit, list filters) and a queue of notifications. Rule
violations from the composer propagate as
:class:`~event_sales.composer.ValidationError` so the caller can show them
next to the offending input; transport, persistence and export failures are
turned into notifications instead.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Callable, List, Optional

import requests

from . import composer, data_manager, exporter, filtering, log, remote
from .aggregation import Dashboard, build_dashboard
from .composer import SaleContext, SaleDraft, ValidationError
from .constants import (
    DEFAULT_MAX_PRODUCT_COLUMNS,
    DEFAULT_POSTAL_CODE_URL,
    DEFAULT_TIMEOUT_SECONDS,
    EntityKind,
    NotificationKind,
    ProductStatus,
    View,
)
from .filtering import FilterCriteria
from .store import EntityStore, PersistenceError
from .sync import Notification, SyncCoordinator, SyncResult


ConfirmCallback = Callable[[str], bool]


class ViewController:
    """Session state and action handlers shared by every front end.

    Args:
        store (EntityStore): Injected entity store.
        sync (SyncCoordinator | None): Remote write coordinator; defaults to
            local-only mode.
        export_dir (Path): Directory receiving exported files.
        max_product_columns (int): Product column pairs in spreadsheet exports.
        postal_code_url (str): Postal-code lookup URL template.
        session (requests.Session | None): Session used for postal-code lookups.
        timeout (float): Lookup timeout in seconds.
    """

    def __init__(
        self,
        store: EntityStore,
        *,
        sync: Optional[SyncCoordinator] = None,
        export_dir: Path = Path("exports"),
        max_product_columns: int = DEFAULT_MAX_PRODUCT_COLUMNS,
        postal_code_url: str = DEFAULT_POSTAL_CODE_URL,
        session: Optional[requests.Session] = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self.store = store
        self.sync = sync or SyncCoordinator()
        self.export_dir = Path(export_dir)
        self.max_product_columns = max_product_columns
        self.postal_code_url = postal_code_url
        self.session = session
        self.timeout = timeout

        self.view = View.SETUP
        self.context: Optional[SaleContext] = None
        self.draft: Optional[SaleDraft] = None
        self.editing_sale_id: Optional[str] = None
        self.criteria = FilterCriteria()
        self.notifications: List[Notification] = []

    @classmethod
    def from_settings(cls, store: EntityStore, settings: data_manager.ConfigSettings) -> "ViewController":
        """Build a controller using the remote and export options of ``settings``."""

        session = requests.Session()
        client = None
        if settings.api_base_url:
            client = remote.ApiClient(settings.api_base_url, session=session, timeout=settings.timeout)
        return cls(
            store,
            sync=SyncCoordinator(client),
            export_dir=settings.export_dir,
            max_product_columns=settings.max_product_columns,
            postal_code_url=settings.postal_code_url,
            session=session,
            timeout=settings.timeout,
        )

    # ------------------------------------------------------------------
    # Notifications and navigation
    # ------------------------------------------------------------------
    def notify(self, kind: NotificationKind, text: str) -> Notification:
        notification = Notification(NotificationKind(kind), text)
        self.notifications.append(notification)
        return notification

    def drain_notifications(self) -> List[Notification]:
        """Return pending notifications, oldest first, and clear the queue."""

        pending, self.notifications = self.notifications, []
        return pending

    @property
    def is_editing(self) -> bool:
        return self.editing_sale_id is not None

    def navigate(self, view: View) -> View:
        """Switch views; entry and dashboard require a completed setup."""

        view = View(view)
        if view is not View.SETUP and self.context is None:
            self.notify(NotificationKind.INFO, "Choose a user and an event first.")
            self.view = View.SETUP
        else:
            self.view = view
        return self.view

    def _sync(
        self,
        action: str,
        local: Callable[[], object],
        remote_call: Optional[Callable[[remote.ApiClient], object]] = None,
    ) -> Optional[SyncResult]:
        try:
            result = self.sync.run(action, local, remote_call)
        except PersistenceError as exc:
            self.notify(NotificationKind.ERROR, str(exc))
            return None
        self.notifications.append(result.notification)
        return result

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------
    def complete_setup(self, user_name: str, event_name: str, event_date: str = "") -> SaleContext:
        """Register (or reuse) the session user and event and open the entry view.

        An existing event keeps its stored name and date; a new event
        requires ``event_date``.

        Raises:
            ValidationError: If the user name, event name or a new event's
                date is missing.
        """

        user_name = (user_name or "").strip()
        event_name = (event_name or "").strip()
        missing = [name for name, value in (("user_name", user_name), ("event_name", event_name)) if not value]
        existing_event = self.store.find(EntityKind.EVENT, event_name) if event_name else None
        if existing_event is None and not (event_date or "").strip():
            missing.append("event_date")
        if missing:
            raise ValidationError("Fill in the user, the event and its date to start.", missing)

        existing_user = self.store.find(EntityKind.USER, user_name)
        if existing_user is None:
            self.create_user(user_name)
        else:
            user_name = existing_user.name

        if existing_event is None:
            event = data_manager.EventRow(event_name, event_date.strip())
            self.create_event(event.name, event.date)
        else:
            event = existing_event

        self.context = SaleContext(user_name=user_name, event_name=event.name, event_date=event.date)
        self.view = View.ENTRY
        self.begin_new_sale()
        log.info("Session started for user '%s' at event '%s'", user_name, event.name)
        return self.context

    # ------------------------------------------------------------------
    # Sale entry
    # ------------------------------------------------------------------
    def _require_context(self) -> SaleContext:
        if self.context is None:
            raise RuntimeError("Complete the setup before recording sales")
        return self.context

    def _require_draft(self) -> SaleDraft:
        if self.draft is None:
            return self.begin_new_sale()
        return self.draft

    def begin_new_sale(self) -> SaleDraft:
        self.editing_sale_id = None
        self.draft = composer.start_new(self._require_context())
        return self.draft

    def begin_edit(self, sale_id: str) -> SaleDraft:
        """Load a stored sale into the form for editing.

        Raises:
            KeyError: If no sale has ``sale_id``.
        """

        sale = self.store.get_sale(sale_id)
        if sale is None:
            raise KeyError(f"Sale not found: {sale_id}")
        self.draft = composer.load_for_edit(sale)
        self.editing_sale_id = sale.sale_id
        self.view = View.ENTRY
        return self.draft

    def cancel_edit(self) -> Optional[SaleDraft]:
        return self._reset_draft()

    def _reset_draft(self) -> Optional[SaleDraft]:
        # edits can be made without a session; there is nothing to reopen then
        if self.context is None:
            self.draft = None
            self.editing_sale_id = None
            return None
        return self.begin_new_sale()

    def add_item(self, product_name: str, units: int) -> data_manager.LineItem:
        return composer.add_line_item(
            self._require_draft(), product_name, units, self.store.list(EntityKind.PRODUCT)
        )

    def remove_item(self, product_name: str) -> None:
        composer.remove_line_item(self._require_draft(), product_name)

    def submit_sale(self) -> Optional[SyncResult]:
        """Validate, store and sync the current draft, then open a fresh one.

        Raises:
            ValidationError: If the draft cannot be saved; nothing is stored.
        """

        draft = self._require_draft()
        editing = self.is_editing
        previous_created_at = None
        if editing:
            original = self.store.get_sale(self.editing_sale_id)
            if original is None:
                raise KeyError(f"Sale not found: {self.editing_sale_id}")
            previous_created_at = original.created_at

        sale = composer.finalize(
            draft,
            editing,
            previous_created_at,
            payment_methods=self.store.list(EntityKind.PAYMENT_METHOD),
            context=self.context,
        )
        result = self._sync(
            "Sale updated" if editing else "Sale saved",
            lambda: self.store.save_sale(sale),
            lambda client: client.update_sale(sale) if editing else client.create_sale(sale),
        )
        self._reset_draft()
        return result

    def delete_sale(self, sale_id: str, confirm: ConfirmCallback) -> Optional[SyncResult]:
        """Delete a sale after ``confirm`` approves; returns ``None`` when cancelled."""

        sale = self.store.get_sale(sale_id)
        if sale is None:
            self.notify(NotificationKind.ERROR, f"Sale {sale_id} was not found.")
            return None
        if not confirm(f"Delete the sale of {sale.first_name} {sale.last_name}? This cannot be undone."):
            self.notify(NotificationKind.INFO, "Deletion cancelled.")
            return None

        result = self._sync(
            "Sale deleted",
            lambda: self.store.remove(EntityKind.SALE, sale_id),
            lambda client: client.delete_sale(sale_id),
        )
        if self.editing_sale_id == sale_id:
            self._reset_draft()
        return result

    def delete_event(self, name: str, confirm: ConfirmCallback) -> Optional[SyncResult]:
        """Delete an event and all its sales after ``confirm`` approves."""

        event = self.store.find(EntityKind.EVENT, name)
        if event is None:
            self.notify(NotificationKind.ERROR, f"Event '{name}' was not found.")
            return None
        if not confirm(f"Delete event '{event.name}' and every sale recorded under it?"):
            self.notify(NotificationKind.INFO, "Deletion cancelled.")
            return None

        result = self._sync(
            f"Event '{event.name}' deleted",
            lambda: self.store.remove_cascade(EntityKind.EVENT, event.name),
            lambda client: client.delete_event(event.name),
        )
        if self.context is not None and self.context.event_name == event.name:
            self.context = None
            self.draft = None
            self.editing_sale_id = None
            self.view = View.SETUP
        return result

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------
    def lookup_customer(self, cpf: str) -> bool:
        """Prefill the draft with a known customer's details.

        Recorded sales are searched first, then the server when one is
        configured. Editing drafts are never overwritten.

        Returns:
            bool: ``True`` when customer fields were applied.
        """

        draft = self._require_draft()
        if self.is_editing or not cpf:
            return False
        draft.cpf = cpf

        previous = composer.find_customer(self.store.list(EntityKind.SALE), cpf)
        if previous is not None:
            composer.apply_customer(draft, previous)
            self.notify(NotificationKind.INFO, "Customer found; details filled in.")
            return True

        if self.sync.client is None:
            return False
        try:
            customer = self.sync.client.fetch_customer(cpf)
        except remote.LookupNotFound:
            self.notify(NotificationKind.INFO, "New customer; fill in the details.")
            return False
        except remote.TransportError as exc:
            self.notify(NotificationKind.ERROR, f"Customer lookup failed: {exc}")
            return False
        composer.apply_customer(draft, customer)
        self.notify(NotificationKind.INFO, "Customer found; details filled in.")
        return True

    def lookup_postal_code(self, cep: str) -> bool:
        """Fill the draft address from a postal code.

        Raises:
            ValidationError: If the postal code is incomplete.
        """

        draft = self._require_draft()
        try:
            address = remote.lookup_postal_code(cep, self.postal_code_url, self.session, self.timeout)
        except remote.LookupNotFound:
            self.notify(NotificationKind.INFO, "Postal code not found.")
            return False
        except remote.TransportError as exc:
            self.notify(NotificationKind.ERROR, str(exc))
            return False
        draft.postal_code = cep
        composer.apply_address(draft, address)
        return True

    # ------------------------------------------------------------------
    # Catalog
    # ------------------------------------------------------------------
    def create_user(self, name: str) -> Optional[SyncResult]:
        """Register a user; an existing name is reported and left untouched."""

        name = (name or "").strip()
        if not name:
            raise ValidationError("User name is required.", ["name"])
        if self.store.find(EntityKind.USER, name) is not None:
            self.notify(NotificationKind.INFO, f"User '{name}' already exists.")
            return None
        return self._sync(
            f"User '{name}' created",
            lambda: self.store.add(EntityKind.USER, data_manager.UserRow(name)),
            lambda client: client.create_user(name),
        )

    def create_event(self, name: str, date: str) -> Optional[SyncResult]:
        """Register an event; an existing name is reported and left untouched."""

        name = (name or "").strip()
        date = (date or "").strip()
        missing = [field for field, value in (("name", name), ("date", date)) if not value]
        if missing:
            raise ValidationError("An event needs a name and a date.", missing)
        if self.store.find(EntityKind.EVENT, name) is not None:
            self.notify(NotificationKind.INFO, f"Event '{name}' already exists.")
            return None
        event = data_manager.EventRow(name, date)
        return self._sync(
            f"Event '{name}' created",
            lambda: self.store.add(EntityKind.EVENT, event),
            lambda client: client.create_event(event.name, event.date),
        )

    def create_payment_method(self, name: str) -> Optional[SyncResult]:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Payment method name is required.", ["name"])
        if self.store.find(EntityKind.PAYMENT_METHOD, name) is not None:
            self.notify(NotificationKind.INFO, f"Payment method '{name}' already exists.")
            return None
        return self._sync(
            f"Payment method '{name}' saved",
            lambda: self.store.add(EntityKind.PAYMENT_METHOD, data_manager.PaymentMethodRow(name)),
            lambda client: client.create_payment_method(name),
        )

    def save_product(
        self,
        name: str,
        price: object,
        status: ProductStatus = ProductStatus.AVAILABLE,
        original_name: Optional[str] = None,
    ) -> Optional[SyncResult]:
        """Create a product, or rename/reprice the one named ``original_name``.

        Creating a product whose name is already taken is reported and
        leaves the stored product untouched.

        Raises:
            ValidationError: If the name is blank or the price is not a
                non-negative number.
            KeyError: If ``original_name`` is given but unknown.
        """

        name = (name or "").strip()
        problems = [] if name else ["name"]
        try:
            amount = Decimal(str(price))
        except InvalidOperation:
            amount = None
        if amount is None or not amount.is_finite() or amount < 0:
            problems.append("price")
        if problems:
            raise ValidationError("A product needs a name and a non-negative price.", problems)

        if not original_name and self.store.find(EntityKind.PRODUCT, name) is not None:
            self.notify(NotificationKind.INFO, f"Product '{name}' already exists.")
            return None

        product = data_manager.ProductRow(name, amount, ProductStatus(status))
        if original_name:
            local = lambda: self.store.update_product(original_name, product)  # noqa: E731
        else:
            local = lambda: self.store.add(EntityKind.PRODUCT, product)  # noqa: E731
        return self._sync(
            f"Product '{name}' saved",
            local,
            lambda client: client.save_product(product, original_name),
        )

    def remove_product(self, name: str) -> Optional[SyncResult]:
        product = self.store.find(EntityKind.PRODUCT, name)
        if product is None:
            self.notify(NotificationKind.ERROR, f"Product '{name}' was not found.")
            return None
        return self._sync(
            f"Product '{product.name}' removed",
            lambda: self.store.remove(EntityKind.PRODUCT, product.name),
            lambda client: client.delete_product(product.name),
        )

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------
    def set_criteria(self, search_text: str = "", event_name: str = "", user_name: str = "") -> FilterCriteria:
        self.criteria = FilterCriteria(search_text.strip(), event_name, user_name)
        return self.criteria

    def visible_sales(self) -> List[data_manager.Sale]:
        return filtering.filter_sales(self.store.list(EntityKind.SALE), self.criteria)

    def dashboard(self, event_name: str = "") -> Dashboard:
        """Dashboard over all sales, or only those of ``event_name``."""

        sales = self.store.list(EntityKind.SALE)
        if event_name:
            sales = [sale for sale in sales if sale.event_name == event_name]
        return build_dashboard(sales)

    def _export(self, label: str, action: Callable[[], Path]) -> Optional[Path]:
        try:
            path = action()
        except exporter.NothingToExportError:
            self.notify(NotificationKind.INFO, "Nothing to export.")
            return None
        except (exporter.ExportError, OSError) as exc:
            self.notify(NotificationKind.ERROR, f"{label} export failed: {exc}")
            return None
        self.notify(NotificationKind.SUCCESS, f"{label} exported to {path}.")
        return path

    def export_spreadsheet(self) -> Optional[Path]:
        sales = self.visible_sales()
        return self._export(
            "Spreadsheet",
            lambda: exporter.export_sales_spreadsheet(
                sales, self.export_dir, max_product_columns=self.max_product_columns
            ),
        )

    def export_sales_pdf(self) -> Optional[Path]:
        sales = self.visible_sales()
        return self._export("PDF", lambda: exporter.export_sales_pdf(sales, self.export_dir))

    def export_dashboard_pdf(self, event_name: str = "") -> Optional[Path]:
        summary = self.dashboard(event_name)
        return self._export("Dashboard", lambda: exporter.export_dashboard_pdf(summary, self.export_dir))
