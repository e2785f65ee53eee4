"""Injectable entity store holding every collection the application edits.

The store is the single owner of users, events, payment methods, products,
and sales. Every mutation updates the in-memory collections first and then
calls the persistence hook with a snapshot of the full state. A failing hook
does not roll the change back: the store raises :class:`PersistenceError`
after the in-memory state already reflects the mutation, so offline work is
never lost from the running session.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Callable, Dict, List, Optional, Union

from . import data_manager, log
from .constants import EntityKind


class PersistenceError(OSError):
    """Raised when the persistence hook fails after an in-memory mutation."""


NamedRecord = Union[
    data_manager.UserRow,
    data_manager.EventRow,
    data_manager.PaymentMethodRow,
    data_manager.ProductRow,
]
Record = Union[NamedRecord, data_manager.Sale]
PersistHook = Callable[[data_manager.StoreSnapshot], None]

_SNAPSHOT_FIELDS: Dict[EntityKind, str] = {
    EntityKind.USER: "users",
    EntityKind.EVENT: "events",
    EntityKind.PAYMENT_METHOD: "payment_methods",
    EntityKind.PRODUCT: "products",
    EntityKind.SALE: "sales",
}


def normalize_name(name: str) -> str:
    """Return the comparison key used for duplicate-name suppression."""

    return name.strip().casefold()


class EntityStore:
    """In-memory collections with a persistence hook called after each mutation."""

    def __init__(
        self,
        snapshot: Optional[data_manager.StoreSnapshot] = None,
        persist: Optional[PersistHook] = None,
    ) -> None:
        snapshot = snapshot or data_manager.StoreSnapshot()
        self._collections: Dict[EntityKind, List[Record]] = {
            kind: list(getattr(snapshot, attr)) for kind, attr in _SNAPSHOT_FIELDS.items()
        }
        self._persist = persist

    def snapshot(self) -> data_manager.StoreSnapshot:
        """Return a detached copy of every collection."""

        return data_manager.StoreSnapshot(
            **{attr: list(self._collections[kind]) for kind, attr in _SNAPSHOT_FIELDS.items()}
        )

    def list(self, kind: EntityKind) -> List[Record]:
        """Return every record of ``kind`` in storage order (unsorted)."""

        return list(self._collections[EntityKind(kind)])

    def find(self, kind: EntityKind, name: str) -> Optional[NamedRecord]:
        """Resolve a named record by case-insensitive trimmed name."""

        kind = EntityKind(kind)
        if kind is EntityKind.SALE:
            raise ValueError("Sales are looked up by id; use get_sale()")
        key = normalize_name(name)
        for record in self._collections[kind]:
            if normalize_name(record.name) == key:
                return record
        return None

    def get_sale(self, sale_id: str) -> Optional[data_manager.Sale]:
        for sale in self._collections[EntityKind.SALE]:
            if sale.sale_id == sale_id:
                return sale
        return None

    def add(self, kind: EntityKind, record: NamedRecord) -> bool:
        """Append ``record`` unless a record with the same name already exists.

        Names are compared case-insensitively after trimming and are stored
        trimmed. A duplicate is silently ignored (idempotent create) and only
        leaves a warning in the log.

        Args:
            kind (EntityKind): Named collection to append to.
            record (NamedRecord): Record carrying a ``name`` attribute.

        Returns:
            bool: ``True`` when the record was appended, ``False`` for a
                duplicate.

        Raises:
            ValueError: If ``kind`` is ``SALE`` or the name is blank.
            PersistenceError: If the record was appended but could not be
                written to durable storage.
        """

        kind = EntityKind(kind)
        if kind is EntityKind.SALE:
            raise ValueError("Sales are stored with save_sale()")
        name = record.name.strip()
        if not name:
            raise ValueError(f"Cannot add a {kind.value} with an empty name")
        if self.find(kind, name) is not None:
            log.warning("Ignoring duplicate %s '%s'", kind.value, name)
            return False

        self._collections[kind].append(replace(record, name=name))
        log.info("Added %s '%s'", kind.value, name)
        self._flush()
        return True

    def save_sale(self, sale: data_manager.Sale) -> bool:
        """Insert a new sale or replace the stored sale with the same id.

        Returns:
            bool: ``True`` when an existing sale was replaced, ``False`` when
                the sale was inserted.
        """

        sales = self._collections[EntityKind.SALE]
        for index, existing in enumerate(sales):
            if existing.sale_id == sale.sale_id:
                sales[index] = sale
                log.info("Replaced sale '%s'", sale.sale_id)
                self._flush()
                return True

        sales.insert(0, sale)
        log.info("Stored new sale '%s' (%d line items)", sale.sale_id, len(sale.line_items))
        self._flush()
        return False

    def update_product(self, original_name: str, product: data_manager.ProductRow) -> None:
        """Replace the product currently named ``original_name``.

        Raises:
            KeyError: If no product has ``original_name``.
            ValueError: If the new name collides with another product.
        """

        products = self._collections[EntityKind.PRODUCT]
        original_key = normalize_name(original_name)
        new_key = normalize_name(product.name)
        index = next(
            (i for i, row in enumerate(products) if normalize_name(row.name) == original_key),
            None,
        )
        if index is None:
            raise KeyError(f"Product not found: {original_name}")
        if new_key != original_key and self.find(EntityKind.PRODUCT, product.name) is not None:
            raise ValueError(f"Another product is already named '{product.name.strip()}'")

        products[index] = replace(product, name=product.name.strip())
        log.info("Updated product '%s'", original_name)
        self._flush()

    def remove(self, kind: EntityKind, key: str) -> bool:
        """Remove a record by primary key (name, or id for sales).

        Removing an event this way leaves its sales untouched; use
        :meth:`remove_cascade` to drop them together.

        Returns:
            bool: ``True`` when a record was removed.
        """

        kind = EntityKind(kind)
        records = self._collections[kind]
        if kind is EntityKind.SALE:
            kept = [sale for sale in records if sale.sale_id != key]
        else:
            target = normalize_name(key)
            kept = [record for record in records if normalize_name(record.name) != target]

        if len(kept) == len(records):
            log.warning("Nothing to remove for %s '%s'", kind.value, key)
            return False

        self._collections[kind] = kept
        log.info("Removed %s '%s'", kind.value, key)
        self._flush()
        return True

    def remove_cascade(self, kind: EntityKind, name: str) -> int:
        """Remove an event and every sale recorded under it as one operation.

        Both collections are recomputed first and swapped in together, then
        persisted with a single hook call, so no intermediate state is ever
        written.

        Args:
            kind (EntityKind): Must be ``EntityKind.EVENT``.
            name (str): Event name; sales match on exact ``event_name``.

        Returns:
            int: Number of sales removed along with the event.

        Raises:
            ValueError: If ``kind`` is not ``EVENT``.
        """

        if EntityKind(kind) is not EntityKind.EVENT:
            raise ValueError("Cascade removal is only defined for events")

        target = normalize_name(name)
        events = [event for event in self._collections[EntityKind.EVENT] if normalize_name(event.name) != target]
        sales = [sale for sale in self._collections[EntityKind.SALE] if sale.event_name != name]
        removed_sales = len(self._collections[EntityKind.SALE]) - len(sales)

        self._collections[EntityKind.EVENT] = events
        self._collections[EntityKind.SALE] = sales
        log.info("Removed event '%s' and %d associated sales", name, removed_sales)
        self._flush()
        return removed_sales

    def _flush(self) -> None:
        if self._persist is None:
            return
        try:
            self._persist(self.snapshot())
        except OSError as exc:
            log.error("Failed to persist store: %s", exc)
            raise PersistenceError(f"Changes kept in memory but not saved: {exc}") from exc


def open_store(settings: data_manager.ConfigSettings) -> EntityStore:
    """Load the durable collections and bind persistence to the same workbook."""

    snapshot = data_manager.load_collections(settings.data_file)

    def persist(current: data_manager.StoreSnapshot) -> None:
        data_manager.save_collections(current, settings.data_file)

    return EntityStore(snapshot, persist)
