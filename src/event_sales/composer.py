"""Sale composition rules.

A :class:`SaleDraft` is the mutable working copy behind the sale form. It is
only turned into an immutable :class:`~event_sales.data_manager.Sale` by
:func:`finalize`, which validates the draft and freezes its line items. The
draft keeps ``total_amount`` in step with its line items: every helper that
touches line items recomputes the total before returning.
"""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass, field, fields
from datetime import UTC, datetime
from decimal import Decimal
from typing import Iterable, List, Mapping, Optional, Sequence

from . import log
from .data_manager import LineItem, PaymentMethodRow, ProductRow, Sale


CPF_PATTERN = re.compile(r"^\d{3}\.\d{3}\.\d{3}-\d{2}$")
AREA_CODE_PATTERN = re.compile(r"^\d{2}$")

REQUIRED_TEXT_FIELDS = (
    "first_name",
    "last_name",
    "cpf",
    "email",
    "area_code",
    "phone_number",
    "postal_code",
    "street",
    "street_number",
    "neighborhood",
    "city",
    "state",
)

CUSTOMER_FIELDS = (
    "first_name",
    "last_name",
    "email",
    "area_code",
    "phone_number",
    "street",
    "street_number",
    "complement",
    "neighborhood",
    "city",
    "state",
    "postal_code",
)

ADDRESS_FIELDS = ("street", "neighborhood", "city", "state")


class ValidationError(ValueError):
    """Raised when user input fails a format or completeness rule.

    Attributes:
        fields (tuple[str, ...]): Names of the draft fields that failed.
    """

    def __init__(self, message: str, fields: Sequence[str] = ()) -> None:
        super().__init__(message)
        self.fields = tuple(fields)


@dataclass(frozen=True)
class SaleContext:
    """Session attribution copied onto every sale at save time."""

    user_name: str
    event_name: str
    event_date: str


@dataclass
class SaleDraft:
    """Mutable, possibly incomplete sale being composed or edited."""

    sale_id: str
    created_at: str
    user_name: str = ""
    event_name: str = ""
    event_date: str = ""
    first_name: str = ""
    last_name: str = ""
    cpf: str = ""
    email: str = ""
    area_code: str = ""
    phone_number: str = ""
    street: str = ""
    street_number: str = ""
    complement: Optional[str] = None
    neighborhood: str = ""
    city: str = ""
    state: str = ""
    postal_code: str = ""
    payment_method: str = ""
    total_amount: Decimal = Decimal("0")
    note: Optional[str] = None
    line_items: List[LineItem] = field(default_factory=list)
    customer_code: Optional[str] = None


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


def generate_sale_id() -> str:
    """Return a client-generated unique token for a new sale."""

    return uuid.uuid4().hex


def start_new(context: SaleContext, *, now: Optional[datetime] = None) -> SaleDraft:
    """Open a fresh draft attributed to the current session.

    Args:
        context (SaleContext): Current user and event.
        now (datetime | None): Creation moment; defaults to the current UTC
            time.

    Returns:
        SaleDraft: Draft with a new id, no line items and a zero total.
    """

    created_at = now.isoformat() if now is not None else _now_iso()
    return SaleDraft(
        sale_id=generate_sale_id(),
        created_at=created_at,
        user_name=context.user_name,
        event_name=context.event_name,
        event_date=context.event_date,
    )


def load_for_edit(sale: Sale) -> SaleDraft:
    """Return a mutable working copy of a persisted sale.

    The copy is shallow: line items are immutable values, so sharing them is
    safe, but the list holding them is new.
    """

    values = {item.name: getattr(sale, item.name) for item in fields(SaleDraft)}
    values["line_items"] = list(sale.line_items)
    return SaleDraft(**values)


def recompute_total(draft: SaleDraft) -> Decimal:
    """Set ``draft.total_amount`` to the sum of units times unit price."""

    draft.total_amount = sum((item.subtotal for item in draft.line_items), Decimal("0"))
    log.debug("Recomputed total for draft '%s': %s", draft.sale_id, draft.total_amount)
    return draft.total_amount


def _find_product(catalog: Iterable[ProductRow], product_name: str) -> Optional[ProductRow]:
    for product in catalog:
        if product.name == product_name:
            return product
    return None


def add_line_item(draft: SaleDraft, product_name: str, units: int, catalog: Iterable[ProductRow]) -> LineItem:
    """Add ``units`` of a catalog product to the draft.

    A product already present in the draft has its units summed instead of
    producing a second line; the unit price captured first is kept. New lines
    take the product's current catalog price.

    Args:
        draft (SaleDraft): Draft to mutate.
        product_name (str): Catalog product name.
        units (int): Positive number of units to add.
        catalog (Iterable[ProductRow]): Known products.

    Returns:
        LineItem: The merged or appended line item.

    Raises:
        ValidationError: If the name is empty, ``units`` is not a positive
            integer, or the product is unknown or unavailable.
    """

    if not product_name or not product_name.strip():
        raise ValidationError("Select a product before adding it.", ["product_name"])
    if isinstance(units, bool) or not isinstance(units, int) or units <= 0:
        raise ValidationError("Units must be a positive whole number.", ["units"])

    for index, item in enumerate(draft.line_items):
        if item.product_name == product_name:
            merged = LineItem(product_name, item.units + units, item.unit_price)
            draft.line_items[index] = merged
            recompute_total(draft)
            return merged

    product = _find_product(catalog, product_name)
    if product is None:
        raise ValidationError(f"Unknown product: {product_name}", ["product_name"])
    if not product.is_available:
        raise ValidationError(f"Product '{product_name}' is not available for sale.", ["product_name"])

    item = LineItem(product_name=product.name, units=units, unit_price=product.price)
    draft.line_items.append(item)
    recompute_total(draft)
    return item


def remove_line_item(draft: SaleDraft, product_name: str) -> None:
    """Drop the line item for ``product_name``; absent products are ignored."""

    draft.line_items = [item for item in draft.line_items if item.product_name != product_name]
    recompute_total(draft)


def validate_for_save(
    draft: SaleDraft,
    payment_methods: Optional[Iterable[PaymentMethodRow]] = None,
) -> None:
    """Check that a draft may be persisted.

    Every rule is evaluated before raising, so the error lists all offending
    fields at once.

    Args:
        draft (SaleDraft): Draft to check.
        payment_methods (Iterable[PaymentMethodRow] | None): Known payment
            methods. When given, the draft's method must be one of them.

    Raises:
        ValidationError: Naming every violated field.
    """

    problems: List[str] = []
    messages: List[str] = []

    for name in REQUIRED_TEXT_FIELDS:
        if not getattr(draft, name).strip():
            problems.append(name)
            messages.append(f"{name.replace('_', ' ')} is required")
    if draft.cpf.strip() and not CPF_PATTERN.match(draft.cpf):
        problems.append("cpf")
        messages.append("CPF must be formatted as XXX.XXX.XXX-XX")
    if draft.area_code.strip() and not AREA_CODE_PATTERN.match(draft.area_code):
        problems.append("area_code")
        messages.append("area code must have exactly 2 digits")
    if not draft.line_items:
        problems.append("line_items")
        messages.append("add at least one product")

    method = draft.payment_method.strip()
    if not method:
        problems.append("payment_method")
        messages.append("select a payment method")
    elif payment_methods is not None:
        known = {row.name for row in payment_methods}
        if method not in known:
            problems.append("payment_method")
            messages.append(f"unknown payment method '{method}'")

    if problems:
        log.warning("Draft '%s' failed validation: %s", draft.sale_id, ", ".join(problems))
        message = "; ".join(messages)
        raise ValidationError(message[0].upper() + message[1:] + ".", problems)


def finalize(
    draft: SaleDraft,
    is_editing: bool,
    previous_created_at: Optional[str] = None,
    *,
    payment_methods: Optional[Iterable[PaymentMethodRow]] = None,
    context: Optional[SaleContext] = None,
    now: Optional[datetime] = None,
) -> Sale:
    """Validate the draft and freeze it into the sale to persist.

    The user and event attribution comes from ``context`` when one is
    given, for new and edited sales alike. Without a context the draft's
    own attribution is kept.

    Args:
        draft (SaleDraft): Completed draft.
        is_editing (bool): ``True`` when the draft replaces an existing sale.
        previous_created_at (str | None): Creation time of the sale being
            edited; required when ``is_editing``.
        payment_methods (Iterable[PaymentMethodRow] | None): Known payment
            methods forwarded to :func:`validate_for_save`.
        context (SaleContext | None): Current session attribution.
        now (datetime | None): Stamp for new sales; defaults to current UTC.

    Returns:
        Sale: Immutable record whose total matches its line items.

    Raises:
        ValidationError: If the draft fails :func:`validate_for_save`.
        ValueError: If editing without the original creation time.
    """

    validate_for_save(draft, payment_methods)
    if is_editing:
        if not previous_created_at:
            raise ValueError("Editing a sale requires its original created_at")
        created_at = previous_created_at
    else:
        created_at = now.isoformat() if now is not None else _now_iso()

    if context is not None:
        draft.user_name = context.user_name
        draft.event_name = context.event_name
        draft.event_date = context.event_date

    recompute_total(draft)
    return Sale(
        sale_id=draft.sale_id,
        created_at=created_at,
        user_name=draft.user_name,
        event_name=draft.event_name,
        event_date=draft.event_date,
        first_name=draft.first_name.strip(),
        last_name=draft.last_name.strip(),
        cpf=draft.cpf,
        email=draft.email.strip(),
        area_code=draft.area_code,
        phone_number=draft.phone_number.strip(),
        street=draft.street.strip(),
        street_number=draft.street_number.strip(),
        complement=(draft.complement or "").strip() or None,
        neighborhood=draft.neighborhood.strip(),
        city=draft.city.strip(),
        state=draft.state.strip(),
        postal_code=draft.postal_code.strip(),
        payment_method=draft.payment_method.strip(),
        total_amount=draft.total_amount,
        note=(draft.note or "").strip() or None,
        line_items=tuple(draft.line_items),
        customer_code=draft.customer_code,
    )


def find_customer(sales: Iterable[Sale], cpf: str) -> Optional[Sale]:
    """Return the most recent sale recorded for ``cpf``, if any."""

    if not cpf:
        return None
    matches = [sale for sale in sales if sale.cpf == cpf]
    if not matches:
        return None
    return max(matches, key=lambda sale: sale.created_at)


def apply_customer(draft: SaleDraft, customer: Sale | Mapping[str, object]) -> None:
    """Copy customer contact and address fields onto the draft.

    ``customer`` is either a previous sale or a mapping returned by the
    remote customer lookup; absent mapping keys leave the draft untouched.
    """

    for name in CUSTOMER_FIELDS:
        if isinstance(customer, Mapping):
            if name not in customer:
                continue
            value = customer[name]
        else:
            value = getattr(customer, name)
        if name == "complement":
            setattr(draft, name, None if value in (None, "") else str(value))
        else:
            setattr(draft, name, "" if value is None else str(value))


def apply_address(draft: SaleDraft, address: Mapping[str, str]) -> None:
    """Fill street, neighborhood, city, and state from a postal-code lookup."""

    for name in ADDRESS_FIELDS:
        setattr(draft, name, address.get(name, "") or "")
