"""HTTP collaborators: the sales API server and the postal-code service.

Both are consumed through :mod:`requests`. Every failure on the wire, a
non-2xx status or a connection problem, surfaces as :class:`TransportError`
carrying the server's short message; lookups that simply find nothing raise
:class:`LookupNotFound` instead.
"""

from __future__ import annotations

import re
from decimal import Decimal
from typing import Any, Dict, Mapping, Optional
from urllib.parse import quote

import requests

from . import data_manager, log
from .composer import ValidationError
from .constants import DEFAULT_POSTAL_CODE_URL, DEFAULT_TIMEOUT_SECONDS, ProductStatus


class TransportError(RuntimeError):
    """Raised when a remote call fails on the network or returns non-2xx.

    Attributes:
        status_code (int | None): HTTP status, ``None`` for connection errors.
    """

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class LookupNotFound(LookupError):
    """Raised when a customer or postal-code lookup has no match."""


def _error_message(response: requests.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, Mapping) and body.get("error"):
        return str(body["error"])
    return f"Server responded with HTTP {response.status_code}"


def _segment(value: str) -> str:
    return quote(value, safe="")


def product_to_dict(product: data_manager.ProductRow) -> Dict[str, Any]:
    return {"name": product.name, "price": str(product.price), "status": product.status.value}


def product_from_dict(payload: Mapping[str, Any]) -> data_manager.ProductRow:
    return data_manager.ProductRow(
        name=str(payload["name"]),
        price=Decimal(str(payload.get("price") or "0")),
        status=ProductStatus(payload.get("status") or ProductStatus.AVAILABLE.value),
    )


class ApiClient:
    """Thin JSON client for the sales API.

    Args:
        base_url (str): API root, e.g. ``https://example.com/api``.
        session (requests.Session | None): Session to send requests with;
            a new one is created when omitted.
        timeout (float): Per-request timeout in seconds.
    """

    def __init__(
        self,
        base_url: str,
        session: Optional[requests.Session] = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout

    def _request(self, method: str, path: str, payload: Optional[Mapping[str, Any]] = None) -> Any:
        url = f"{self.base_url}/{path.lstrip('/')}"
        try:
            response = self.session.request(method, url, json=payload, timeout=self.timeout)
        except requests.RequestException as exc:
            log.error("%s %s failed: %s", method, url, exc)
            raise TransportError(f"Could not reach the server: {exc}") from exc

        if response.status_code == 404 and method == "GET":
            raise LookupNotFound(_error_message(response))
        if not 200 <= response.status_code < 300:
            message = _error_message(response)
            log.error("%s %s returned %s: %s", method, url, response.status_code, message)
            raise TransportError(message, response.status_code)

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return None

    def fetch_customer(self, cpf: str) -> Dict[str, Any]:
        """Return the stored customer fields for ``cpf``.

        Raises:
            LookupNotFound: If the server knows no customer with that CPF.
            TransportError: On any other failure.
        """

        body = self._request("GET", f"customers/{_segment(cpf)}")
        return dict(body or {})

    def fetch_bootstrap(self) -> data_manager.StoreSnapshot:
        """Fetch users, events, payment methods, products and sales in one call."""

        body = self._request("GET", "data") or {}
        snapshot = data_manager.StoreSnapshot(
            users=[data_manager.UserRow(str(row["name"])) for row in body.get("users", [])],
            events=[data_manager.EventRow(str(row["name"]), str(row.get("date") or "")) for row in body.get("events", [])],
            payment_methods=[
                data_manager.PaymentMethodRow(str(row["name"])) for row in body.get("payment_methods", [])
            ],
            products=[product_from_dict(row) for row in body.get("products", [])],
            sales=[data_manager.sale_from_dict(row) for row in body.get("sales", [])],
        )
        log.info("Fetched bootstrap data: %d sales, %d products", len(snapshot.sales), len(snapshot.products))
        return snapshot

    def create_user(self, name: str) -> None:
        self._request("POST", "users", {"name": name})

    def create_event(self, name: str, date: str) -> None:
        self._request("POST", "events", {"name": name, "date": date})

    def create_payment_method(self, name: str) -> None:
        self._request("POST", "payment-methods", {"name": name})

    def save_product(self, product: data_manager.ProductRow, original_name: Optional[str] = None) -> None:
        """Create ``product``, or update the product currently named ``original_name``."""

        if original_name:
            self._request("PUT", f"products/{_segment(original_name)}", product_to_dict(product))
        else:
            self._request("POST", "products", product_to_dict(product))

    def delete_product(self, name: str) -> None:
        self._request("DELETE", f"products/{_segment(name)}")

    def create_sale(self, sale: data_manager.Sale) -> None:
        self._request("POST", "sales", data_manager.sale_to_dict(sale))

    def update_sale(self, sale: data_manager.Sale) -> None:
        self._request("PUT", f"sales/{_segment(sale.sale_id)}", data_manager.sale_to_dict(sale))

    def delete_sale(self, sale_id: str) -> None:
        self._request("DELETE", f"sales/{_segment(sale_id)}")

    def delete_event(self, name: str) -> None:
        """Delete an event; the server removes its sales in the same transaction."""

        self._request("DELETE", f"events/{_segment(name)}")


def lookup_postal_code(
    cep: str,
    url_template: str = DEFAULT_POSTAL_CODE_URL,
    session: Optional[requests.Session] = None,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
) -> Dict[str, str]:
    """Resolve a Brazilian postal code (CEP) into address fields.

    Args:
        cep (str): Postal code; punctuation is ignored.
        url_template (str): URL with a ``{cep}`` placeholder.
        session (requests.Session | None): Session to use; defaults to the
            module-level :func:`requests.get`.
        timeout (float): Request timeout in seconds.

    Returns:
        dict[str, str]: ``street``, ``neighborhood``, ``city`` and ``state``.

    Raises:
        ValidationError: If the code has fewer than 8 digits.
        LookupNotFound: If the service reports an unknown code.
        TransportError: On network failure or a non-2xx response.
    """

    digits = re.sub(r"\D", "", cep or "")
    if len(digits) != 8:
        raise ValidationError("Postal code is incomplete; it must have 8 digits.", ["postal_code"])

    url = url_template.format(cep=digits)
    getter = session.get if session is not None else requests.get
    try:
        response = getter(url, timeout=timeout)
        response.raise_for_status()
        body = response.json()
    except requests.RequestException as exc:
        log.error("Postal code lookup for %s failed: %s", digits, exc)
        raise TransportError("Could not fetch the address for this postal code.") from exc
    except ValueError as exc:
        raise TransportError("Postal code service returned an unreadable response.") from exc

    if not isinstance(body, Mapping) or body.get("erro"):
        log.warning("Postal code %s not found", digits)
        raise LookupNotFound(f"Postal code {digits} not found.")

    return {
        "street": str(body.get("logradouro") or ""),
        "neighborhood": str(body.get("bairro") or ""),
        "city": str(body.get("localidade") or ""),
        "state": str(body.get("uf") or ""),
    }
