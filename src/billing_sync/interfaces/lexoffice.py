"""Lexoffice (Lexware) public API client.

All traffic to the accounting platform goes through :class:`LexofficeClient`. The
platform allows two requests per second, so every client instance owns a
:class:`RateLimiter` that spaces outbound calls at least ``min_interval`` seconds
apart. Calls never raise for HTTP or transport problems; they return an
:class:`ApiResult` holding either the parsed payload or an :class:`ApiFailure`.
"""
from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable, Generic, Optional, TypeVar

import httpx
import structlog

from ..errors import LexofficeApiError

logger = structlog.get_logger(__name__)

DEFAULT_BASE_URL = "https://api.lexware.io"
MIN_REQUEST_INTERVAL = 0.5
# Status reported when a 2xx response lacks the id of the created resource.
MISSING_ID_STATUS = 502

T = TypeVar("T")


class RateLimiter:
    """Block callers until ``min_interval`` seconds passed since the last request."""

    def __init__(
        self,
        min_interval: float = MIN_REQUEST_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.min_interval = min_interval
        self._clock = clock
        self._sleep = sleep
        self._last_request: Optional[float] = None

    def wait(self) -> float:
        """Wait for the next slot and return the number of seconds slept."""

        waited = 0.0
        if self._last_request is not None:
            elapsed = self._clock() - self._last_request
            waited = max(0.0, self.min_interval - elapsed)
            if waited > 0:
                self._sleep(waited)
        self._last_request = self._clock()
        return waited


@dataclass(frozen=True)
class ApiFailure:
    status: int
    message: str
    details: Any = None

    def to_exception(self) -> LexofficeApiError:
        return LexofficeApiError(self.status, self.message, self.details)


@dataclass(frozen=True)
class ApiResult(Generic[T]):
    value: Optional[T] = None
    failure: Optional[ApiFailure] = None

    @property
    def ok(self) -> bool:
        return self.failure is None

    def unwrap(self) -> T:
        """Return the payload or raise :class:`LexofficeApiError`."""

        if self.failure is not None:
            raise self.failure.to_exception()
        return self.value  # type: ignore[return-value]

    @classmethod
    def success(cls, value: T) -> "ApiResult[T]":
        return cls(value=value)

    @classmethod
    def error(cls, status: int, message: str, details: Any = None) -> "ApiResult[T]":
        return cls(failure=ApiFailure(status=status, message=message, details=details))


class LexofficeClient:
    """Synchronous, rate limited client for the Lexoffice REST API."""

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 30.0,
        min_interval: float = MIN_REQUEST_INTERVAL,
        rate_limiter: Optional[RateLimiter] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        if not api_key:
            raise ValueError("Lexoffice API key is required")
        self.base_url = base_url.rstrip("/")
        self._rate_limiter = rate_limiter or RateLimiter(min_interval)
        self._http = httpx.Client(
            base_url=self.base_url,
            timeout=httpx.Timeout(timeout),
            transport=transport,
            headers={"Authorization": f"Bearer {api_key}"},
        )

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> "LexofficeClient":
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[dict[str, Any]] = None,
        json: Optional[dict[str, Any]] = None,
        binary: bool = False,
    ) -> ApiResult[Any]:
        self._rate_limiter.wait()
        accept = "application/pdf" if binary else "application/json"
        try:
            response = self._http.request(
                method,
                path,
                params=params,
                json=json,
                headers={"Accept": accept},
            )
        except httpx.RequestError as exc:
            logger.error("lexoffice_request_failed", method=method, endpoint=path, error=str(exc))
            return ApiResult.error(0, f"Request failed: {exc}")

        if response.is_error:
            details = _error_body(response)
            message = None
            if isinstance(details, dict):
                message = details.get("message")
            message = message or f"Lexoffice API error: {response.status_code}"
            logger.error(
                "lexoffice_api_error",
                method=method,
                endpoint=path,
                status=response.status_code,
                error=details,
            )
            return ApiResult.error(response.status_code, message, details)

        if binary:
            return ApiResult.success(response.content)
        if response.status_code == 204 or not response.content:
            return ApiResult.success({})
        try:
            return ApiResult.success(response.json())
        except ValueError:
            return ApiResult.error(
                response.status_code,
                "Lexoffice returned a malformed JSON body",
                {"raw": response.text[:500]},
            )

    # === Contacts ===

    def create_contact(self, payload: dict[str, Any]) -> ApiResult[dict[str, Any]]:
        return self._request("POST", "/v1/contacts", json=payload)

    def get_contact(self, contact_id: str) -> ApiResult[dict[str, Any]]:
        return self._request("GET", f"/v1/contacts/{contact_id}")

    def search_contacts(
        self,
        *,
        email: Optional[str] = None,
        name: Optional[str] = None,
        number: Optional[int] = None,
        customer: Optional[bool] = None,
        vendor: Optional[bool] = None,
    ) -> ApiResult[dict[str, Any]]:
        params: dict[str, Any] = {}
        if email:
            params["email"] = email
        if name:
            params["name"] = name
        if number:
            params["number"] = str(number)
        if customer is not None:
            params["customer"] = str(customer).lower()
        if vendor is not None:
            params["vendor"] = str(vendor).lower()
        return self._request("GET", "/v1/contacts", params=params or None)

    # === Invoices ===

    def create_invoice(self, payload: dict[str, Any], finalize: bool = False) -> ApiResult[dict[str, Any]]:
        params = {"finalize": "true"} if finalize else None
        return self._request("POST", "/v1/invoices", params=params, json=payload)

    def get_invoice(self, invoice_id: str) -> ApiResult[dict[str, Any]]:
        return self._request("GET", f"/v1/invoices/{invoice_id}")

    def get_invoice_pdf(self, invoice_id: str) -> ApiResult[bytes]:
        return self._request("GET", f"/v1/invoices/{invoice_id}/document", binary=True)

    # === Quotations ===

    def create_quotation(self, payload: dict[str, Any], finalize: bool = False) -> ApiResult[dict[str, Any]]:
        params = {"finalize": "true"} if finalize else None
        return self._request("POST", "/v1/quotations", params=params, json=payload)

    def get_quotation(self, quotation_id: str) -> ApiResult[dict[str, Any]]:
        return self._request("GET", f"/v1/quotations/{quotation_id}")

    def get_quotation_pdf(self, quotation_id: str) -> ApiResult[bytes]:
        return self._request("GET", f"/v1/quotations/{quotation_id}/document", binary=True)

    # === Recurring templates (read only) ===

    def list_recurring_templates(self) -> ApiResult[dict[str, Any]]:
        return self._request("GET", "/v1/recurring-templates")

    def get_recurring_template(self, template_id: str) -> ApiResult[dict[str, Any]]:
        return self._request("GET", f"/v1/recurring-templates/{template_id}")

    def test_connection(self) -> bool:
        """Probe the API with the cheapest authenticated call available."""

        result = self._request("GET", "/v1/contacts", params={"page": 0, "size": 1})
        if not result.ok:
            logger.warning("lexoffice_connection_test_failed", status=result.failure.status)
        return result.ok


def _error_body(response: httpx.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return {"raw": response.text[:500]}
