from __future__ import annotations

import json
from datetime import date
from typing import Optional

from billing_sync.db import get_session
from billing_sync.models import (
    EntityType,
    Invoice,
    InvoiceStatus,
    Quotation,
    QuotationStatus,
    SyncAction,
    SyncOutcome,
)
from billing_sync.services import sync_log
from billing_sync.services.platform import JobConfig
from billing_sync.services.reconciliation import reconcile_statuses

from conftest import create_project


def _invoice(project_id: int, number: int, status: InvoiceStatus, external_id: Optional[str]) -> int:
    with get_session() as session:
        invoice = Invoice(
            project_id=project_id,
            invoice_number=f"RE-2024-{number:04d}",
            title="Hosting",
            issue_date=date(2024, 1, 15),
            status=status,
            external_id=external_id,
        )
        session.add(invoice)
        session.flush()
        return invoice.id


def _quotation(project_id: int, number: int, status: QuotationStatus, external_id: Optional[str]) -> int:
    with get_session() as session:
        quotation = Quotation(
            project_id=project_id,
            quotation_number=f"AN-2024-{number:04d}",
            title="Relaunch",
            status=status,
            external_id=external_id,
        )
        session.add(quotation)
        session.flush()
        return quotation.id


def _load(model, entity_id):
    with get_session() as session:
        return session.get(model, entity_id)


def _history(entity_type: EntityType, entity_id: int):
    with get_session() as session:
        return sync_log.fetch_history(session, entity_type, entity_id)


def test_sent_invoice_paid_on_platform_becomes_paid(job_config, lexoffice, api):
    invoice_id = _invoice(create_project(), 1, InvoiceStatus.SENT, "lex-1")
    api.json("GET", "/v1/invoices/lex-1", {"id": "lex-1", "voucherStatus": "paid"})

    summary = reconcile_statuses(job_config, client=lexoffice)

    assert (summary.invoices_synced, summary.invoices_changed) == (1, 1)
    assert summary.message == "Sync finished: 1 invoices, 0 quotations updated"
    invoice = _load(Invoice, invoice_id)
    assert invoice.status == InvoiceStatus.PAID
    assert invoice.external_status == "paid"
    assert invoice.paid_at is not None
    assert invoice.synced_at is not None

    (entry,) = _history(EntityType.INVOICE, invoice_id)
    assert entry.action == SyncAction.STATUS_SYNC
    assert entry.status == SyncOutcome.SUCCESS
    assert json.loads(entry.response_data) == {
        "old_status": "sent",
        "new_status": "paid",
        "lexoffice_status": "paid",
    }


def test_unchanged_status_only_refreshes_sync_time(job_config, lexoffice, api):
    invoice_id = _invoice(create_project(), 1, InvoiceStatus.SENT, "lex-1")
    api.json("GET", "/v1/invoices/lex-1", {"id": "lex-1", "voucherStatus": "open"})

    summary = reconcile_statuses(job_config, client=lexoffice)

    assert (summary.invoices_synced, summary.invoices_changed) == (1, 0)
    invoice = _load(Invoice, invoice_id)
    assert invoice.status == InvoiceStatus.SENT
    assert invoice.external_status is None
    assert invoice.synced_at is not None
    (entry,) = _history(EntityType.INVOICE, invoice_id)
    assert entry.action == SyncAction.STATUS_CHECK


def test_platform_cannot_move_an_invoice_backwards(job_config, lexoffice, api):
    overdue_id = _invoice(create_project(), 1, InvoiceStatus.OVERDUE, "lex-1")
    sent_id = _invoice(create_project(), 2, InvoiceStatus.SENT, "lex-2")
    api.json("GET", "/v1/invoices/lex-1", {"voucherStatus": "open"})
    api.json("GET", "/v1/invoices/lex-2", {"voucherStatus": "somethingnew"})

    summary = reconcile_statuses(job_config, client=lexoffice)

    assert summary.invoices_changed == 0
    assert _load(Invoice, overdue_id).status == InvoiceStatus.OVERDUE
    assert _load(Invoice, sent_id).status == InvoiceStatus.SENT


def test_terminal_and_unsynced_invoices_are_not_polled(job_config, lexoffice, api):
    project_id = create_project()
    _invoice(project_id, 1, InvoiceStatus.PAID, "lex-1")
    _invoice(project_id, 2, InvoiceStatus.CANCELLED, "lex-2")
    _invoice(project_id, 3, InvoiceStatus.SENT, None)

    summary = reconcile_statuses(job_config, client=lexoffice)

    assert summary.invoices_synced == 0
    assert api.requests == []


def test_fetch_failure_is_logged_and_does_not_abort_the_run(job_config, lexoffice, api):
    project_id = create_project()
    broken_id = _invoice(project_id, 1, InvoiceStatus.SENT, "lex-missing")
    healthy_id = _invoice(project_id, 2, InvoiceStatus.SENT, "lex-2")
    api.json("GET", "/v1/invoices/lex-missing", {"message": "Resource not found"}, status=404)
    api.json("GET", "/v1/invoices/lex-2", {"voucherStatus": "voided"})

    summary = reconcile_statuses(job_config, client=lexoffice)

    broken, healthy = summary.invoices
    assert (broken.id, broken.status_changed, broken.error) == (broken_id, False, "Resource not found")
    assert (healthy.id, healthy.status_changed, healthy.new_status) == (healthy_id, True, "cancelled")
    assert _load(Invoice, broken_id).status == InvoiceStatus.SENT
    (entry,) = _history(EntityType.INVOICE, broken_id)
    assert (entry.action, entry.status, entry.error_message) == (
        SyncAction.STATUS_SYNC,
        SyncOutcome.FAILED,
        "Resource not found",
    )


def test_quotation_decisions_are_stamped(job_config, lexoffice, api):
    project_id = create_project()
    accepted_id = _quotation(project_id, 1, QuotationStatus.SENT, "q-1")
    rejected_id = _quotation(project_id, 2, QuotationStatus.SENT, "q-2")
    api.json("GET", "/v1/quotations/q-1", {"voucherStatus": "accepted"})
    api.json("GET", "/v1/quotations/q-2", {"voucherStatus": "rejected"})

    summary = reconcile_statuses(job_config, client=lexoffice)

    assert (summary.quotations_synced, summary.quotations_changed) == (2, 2)
    accepted = _load(Quotation, accepted_id)
    rejected = _load(Quotation, rejected_id)
    assert accepted.status == QuotationStatus.ACCEPTED
    assert accepted.accepted_at is not None
    assert accepted.rejected_at is None
    assert rejected.status == QuotationStatus.REJECTED
    assert rejected.rejected_at is not None


def test_disabled_platform_does_no_work(lexoffice, api):
    _invoice(create_project(), 1, InvoiceStatus.SENT, "lex-1")

    summary = reconcile_statuses(JobConfig(), client=lexoffice)

    assert summary.enabled is False
    assert summary.message == "Lexoffice integration is not enabled"
    assert summary.invoices_synced == 0
    assert api.requests == []
