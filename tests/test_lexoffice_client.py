from __future__ import annotations

import httpx
import pytest

from billing_sync.errors import LexofficeApiError
from billing_sync.interfaces.lexoffice import LexofficeClient, RateLimiter


def test_returns_parsed_payload_and_sends_bearer_token(api, lexoffice):
    api.json("GET", "/v1/invoices/abc", {"id": "abc", "voucherStatus": "open"})

    result = lexoffice.get_invoice("abc")

    assert result.ok
    assert result.value["voucherStatus"] == "open"
    request = api.requests[0]
    assert request.headers["Authorization"] == "Bearer test-key"
    assert request.headers["Accept"] == "application/json"


def test_create_invoice_finalize_adds_query_flag(api, lexoffice):
    api.json("POST", "/v1/invoices", {"id": "new-invoice"})

    lexoffice.create_invoice({"lineItems": []}, finalize=True)
    lexoffice.create_invoice({"lineItems": []})

    first, second = api.calls("POST", "/v1/invoices")
    assert first.url.params["finalize"] == "true"
    assert "finalize" not in second.url.params


def test_error_status_becomes_structured_failure(api, lexoffice):
    api.json("GET", "/v1/quotations/q1", {"message": "Not found", "status": 404}, status=404)

    result = lexoffice.get_quotation("q1")

    assert not result.ok
    assert result.failure.status == 404
    assert result.failure.message == "Not found"
    assert result.failure.details == {"message": "Not found", "status": 404}
    with pytest.raises(LexofficeApiError) as excinfo:
        result.unwrap()
    assert excinfo.value.status == 404


def test_error_without_json_body_uses_generic_message(api, lexoffice):
    api.on("GET", "/v1/contacts/c1", lambda request: httpx.Response(502, text="Bad Gateway"))

    result = lexoffice.get_contact("c1")

    assert result.failure.status == 502
    assert result.failure.message == "Lexoffice API error: 502"
    assert result.failure.details == {"raw": "Bad Gateway"}


def test_no_content_yields_empty_success(api, lexoffice):
    api.on("POST", "/v1/contacts", lambda request: httpx.Response(204))

    result = lexoffice.create_contact({"version": 0})

    assert result.ok
    assert result.value == {}


def test_pdf_download_returns_raw_bytes(api, lexoffice):
    api.on(
        "GET",
        "/v1/invoices/abc/document",
        lambda request: httpx.Response(200, content=b"%PDF-1.7", headers={"Content-Type": "application/pdf"}),
    )

    result = lexoffice.get_invoice_pdf("abc")

    assert result.value == b"%PDF-1.7"
    assert api.requests[0].headers["Accept"] == "application/pdf"


def test_transport_error_becomes_failure_with_status_zero(fake_clock):
    def broken(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    client = LexofficeClient(
        "test-key",
        rate_limiter=RateLimiter(0.5, clock=fake_clock, sleep=fake_clock.sleep),
        transport=httpx.MockTransport(broken),
    )
    with client:
        result = client.list_recurring_templates()

    assert result.failure.status == 0
    assert result.failure.message.startswith("Request failed")


def test_consecutive_requests_are_spaced_by_min_interval(api, lexoffice, fake_clock):
    api.json("GET", "/v1/invoices/abc", {"id": "abc"})

    for _ in range(3):
        lexoffice.get_invoice("abc")

    assert fake_clock.sleeps == [0.5, 0.5]


def test_rate_limiter_does_not_sleep_when_interval_already_elapsed(fake_clock):
    limiter = RateLimiter(0.5, clock=fake_clock, sleep=fake_clock.sleep)

    assert limiter.wait() == 0.0
    fake_clock.now += 0.2
    assert limiter.wait() == pytest.approx(0.3)
    fake_clock.now += 2
    assert limiter.wait() == 0.0
    assert fake_clock.sleeps == [pytest.approx(0.3)]


def test_search_contacts_and_connection_probe(api, lexoffice):
    api.json("GET", "/v1/contacts", {"content": []})

    lexoffice.search_contacts(email="kunde@example.de", customer=True)
    assert lexoffice.test_connection()

    search, probe = api.calls("GET", "/v1/contacts")
    assert search.url.params["email"] == "kunde@example.de"
    assert search.url.params["customer"] == "true"
    assert probe.url.params["size"] == "1"


def test_missing_api_key_is_rejected():
    with pytest.raises(ValueError):
        LexofficeClient("")
