"""Sales list filtering.

Pure functions deriving the visible subset of sales and the choices offered
by the list filters. Nothing here mutates its input.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Iterable, List, Sequence

from . import log
from .data_manager import EventRow, Sale, UserRow


@dataclass(frozen=True)
class FilterCriteria:
    """Active list filters; empty strings disable a criterion."""

    search_text: str = ""
    event_name: str = ""
    user_name: str = ""

    @property
    def is_empty(self) -> bool:
        return not (self.search_text or self.event_name or self.user_name)


def _created_at_key(sale: Sale) -> datetime:
    """Parse ``created_at`` for ordering; unparseable stamps sort last."""

    try:
        moment = datetime.fromisoformat(sale.created_at)
    except ValueError:
        return datetime.min.replace(tzinfo=UTC)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=UTC)
    return moment


def matches_search(sale: Sale, search_text: str) -> bool:
    """Case-insensitive substring match over name, CPF, and event."""

    needle = search_text.casefold()
    haystacks = (sale.first_name, sale.last_name, sale.cpf, sale.event_name)
    return any(needle in value.casefold() for value in haystacks)


def filter_sales(sales: Sequence[Sale], criteria: FilterCriteria) -> List[Sale]:
    """Return the sales satisfying every active criterion, newest first.

    ``event_name`` and ``user_name`` require exact equality; ``search_text``
    is matched by :func:`matches_search`. The sort is stable, so sales with
    the same ``created_at`` keep their relative input order.

    Args:
        sales (Sequence[Sale]): Full sale collection.
        criteria (FilterCriteria): Filters to apply.

    Returns:
        list[Sale]: New list, sorted by ``created_at`` descending.
    """

    selected = [
        sale
        for sale in sales
        if (not criteria.event_name or sale.event_name == criteria.event_name)
        and (not criteria.user_name or sale.user_name == criteria.user_name)
        and (not criteria.search_text or matches_search(sale, criteria.search_text))
    ]
    # sorted() keeps equal keys in input order even with reverse=True
    result = sorted(selected, key=_created_at_key, reverse=True)
    log.debug("Filtered %d of %d sales with %s", len(result), len(sales), criteria)
    return result


def event_options(sales: Iterable[Sale], events: Iterable[EventRow] = ()) -> List[str]:
    """Alphabetical event names known from the catalog or recorded sales."""

    names = {event.name for event in events if event.name}
    names.update(sale.event_name for sale in sales if sale.event_name)
    return sorted(names, key=str.casefold)


def user_options(sales: Iterable[Sale], users: Iterable[UserRow] = ()) -> List[str]:
    """Alphabetical user names known from the catalog or recorded sales."""

    names = {user.name for user in users if user.name}
    names.update(sale.user_name for sale in sales if sale.user_name)
    return sorted(names, key=str.casefold)
