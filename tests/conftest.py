from __future__ import annotations

import json
from datetime import date
from decimal import Decimal
from typing import Any, Callable, Optional

import httpx
import pytest

from billing_sync.config import get_settings
from billing_sync.db import get_session, init_db, reset_engine
from billing_sync.interfaces.lexoffice import LexofficeClient, RateLimiter
from billing_sync.models import (
    ContactMapping,
    IntervalType,
    Organization,
    OrganizationMember,
    Profile,
    Project,
    RecurringInvoice,
)
from billing_sync.services.platform import JobConfig, PlatformConfig

CRON_SECRET = "test-cron-secret"

Handler = Callable[[httpx.Request], httpx.Response]


@pytest.fixture(autouse=True)
def database(tmp_path, monkeypatch):
    monkeypatch.setenv("BILLING_SYNC_DATABASE_URL", f"sqlite:///{tmp_path}/test.db")
    monkeypatch.setenv("BILLING_SYNC_CRON_SECRET", CRON_SECRET)
    get_settings.cache_clear()  # type: ignore[attr-defined]
    reset_engine()
    init_db()
    yield
    reset_engine()
    get_settings.cache_clear()  # type: ignore[attr-defined]


@pytest.fixture
def job_config() -> JobConfig:
    return JobConfig(
        platform=PlatformConfig(enabled=True, api_key="test-key", min_interval=0.0),
        timezone="Europe/Berlin",
        app_base_url="https://portal.example.de",
    )


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class RecordingApi:
    """Routes requests to per-path handlers and remembers every call."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.routes: dict[tuple[str, str], Handler] = {}

    def on(self, method: str, path: str, handler: Handler) -> None:
        self.routes[(method, path)] = handler

    def json(self, method: str, path: str, payload: Any, status: int = 200) -> None:
        self.on(method, path, lambda request: httpx.Response(status, json=payload))

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        handler = self.routes.get((request.method, request.url.path))
        if handler is None:
            return httpx.Response(404, json={"message": f"no route for {request.url.path}"})
        return handler(request)

    def calls(self, method: str, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path == path]

    def body(self, request: httpx.Request) -> dict[str, Any]:
        return json.loads(request.content)


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def api() -> RecordingApi:
    return RecordingApi()


@pytest.fixture
def lexoffice(api, fake_clock):
    client = LexofficeClient(
        "test-key",
        base_url="https://api.lexware.test",
        rate_limiter=RateLimiter(0.5, clock=fake_clock, sleep=fake_clock.sleep),
        transport=httpx.MockTransport(api),
    )
    yield client
    client.close()


def create_project(
    *,
    with_contact: bool = True,
    client_email: str = "kunde@example.de",
    member_emails: tuple[str, ...] = (),
) -> int:
    with get_session() as session:
        client = Profile(email=client_email, first_name="Erika", last_name="Mustermann")
        organization = Organization(name="Muster GmbH", city="Berlin", country="Deutschland")
        session.add(client)
        session.add(organization)
        session.flush()
        for email in member_emails:
            member = Profile(email=email, full_name=email.split("@")[0])
            session.add(member)
            session.flush()
            session.add(OrganizationMember(organization_id=organization.id, profile_id=member.id))
        project = Project(name="Website Relaunch", client_id=client.id, organization_id=organization.id)
        session.add(project)
        session.flush()
        if with_contact:
            session.add(ContactMapping(profile_id=client.id, external_contact_id=f"contact-{client.id}"))
        return project.id


def create_schedule(
    project_id: Optional[int],
    *,
    next_invoice_date: date,
    interval_type: IntervalType = IntervalType.MONTHLY,
    interval_value: int = 1,
    net_amount: Decimal = Decimal("100.00"),
    tax_rate: Optional[int] = 19,
    line_items: Optional[list[dict[str, Any]]] = None,
    end_date: Optional[date] = None,
    auto_send: bool = False,
    send_notification: bool = False,
    title: str = "Hosting",
) -> int:
    with get_session() as session:
        schedule = RecurringInvoice(
            project_id=project_id,
            title=title,
            net_amount=net_amount,
            tax_rate=tax_rate,
            line_items=json.dumps(line_items) if line_items is not None else None,
            interval_type=interval_type,
            interval_value=interval_value,
            start_date=next_invoice_date,
            next_invoice_date=next_invoice_date,
            end_date=end_date,
            auto_send=auto_send,
            send_notification=send_notification,
        )
        session.add(schedule)
        session.flush()
        return schedule.id
