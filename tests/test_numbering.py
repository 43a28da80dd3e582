from __future__ import annotations

from datetime import date

import pendulum

from billing_sync.db import get_session
from billing_sync.models import EntityType, Invoice, Quotation, SyncAction, SyncOutcome
from billing_sync.services import sync_log
from billing_sync.services.numbering import format_number, next_invoice_number, next_quotation_number

from conftest import create_project


def test_invoice_numbers_increase_within_a_year():
    with get_session() as session:
        numbers = [next_invoice_number(session, "RE", date(2024, 5, 1)) for _ in range(3)]

    assert numbers == ["RE-2024-0001", "RE-2024-0002", "RE-2024-0003"]


def test_each_year_and_voucher_type_has_its_own_counter():
    with get_session() as session:
        first_2024 = next_invoice_number(session, "RE", date(2024, 12, 31))
        first_2025 = next_invoice_number(session, "RE", date(2025, 1, 1))
        quotation = next_quotation_number(session, "AN", date(2025, 1, 1))

    assert first_2024 == "RE-2024-0001"
    assert first_2025 == "RE-2025-0001"
    assert quotation == "AN-2025-0001"


def test_counter_is_seeded_from_existing_invoices():
    project_id = create_project(with_contact=False)
    with get_session() as session:
        for number in ("RE-2024-0001", "RE-2024-0002"):
            session.add(Invoice(project_id=project_id, invoice_number=number, title="Alt", issue_date=date(2024, 2, 1)))

    with get_session() as session:
        assert next_invoice_number(session, "RE", date(2024, 3, 1)) == "RE-2024-0003"


def test_counter_survives_across_sessions():
    with get_session() as session:
        next_invoice_number(session, "RE", date(2024, 1, 1))
    with get_session() as session:
        assert next_invoice_number(session, "RE", date(2024, 1, 2)) == "RE-2024-0002"


def test_format_number_pads_to_four_digits():
    assert format_number("RE", 2024, 7) == "RE-2024-0007"
    assert format_number("RE", 2024, 12345) == "RE-2024-12345"


def test_sync_log_is_appended_in_order():
    with get_session() as session:
        sync_log.record(session, EntityType.INVOICE, 7, SyncAction.CREATE, SyncOutcome.FAILED, error_message="boom")
        sync_log.record(
            session,
            EntityType.INVOICE,
            7,
            SyncAction.CREATE,
            SyncOutcome.SUCCESS,
            external_id="ext-7",
            request_data={"amount": 1},
        )

    with get_session() as session:
        history = sync_log.fetch_history(session, EntityType.INVOICE, 7)

    assert [entry.status for entry in history] == [SyncOutcome.FAILED, SyncOutcome.SUCCESS]
    assert history[0].error_message == "boom"
    assert history[1].request_data == '{"amount": 1}'


def test_quotation_counter_is_seeded_from_existing_quotations():
    project_id = create_project(with_contact=False)
    with get_session() as session:
        session.add(
            Quotation(
                project_id=project_id,
                quotation_number="AN-2025-0001",
                title="Alt",
                created_at=pendulum.datetime(2025, 3, 1, tz="UTC"),
            )
        )
        session.add(
            Quotation(
                project_id=project_id,
                quotation_number="AN-2024-0009",
                title="Vorjahr",
                created_at=pendulum.datetime(2024, 12, 31, 23, tz="UTC"),
            )
        )

    with get_session() as session:
        assert next_quotation_number(session, "AN", date(2025, 4, 1)) == "AN-2025-0002"
