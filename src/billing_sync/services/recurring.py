"""Invoice generation from recurring billing schedules.

The generator is meant to be triggered once a day. Every due schedule is handled
on its own: the invoice, its history row and the advanced ``next_invoice_date`` are
committed in one transaction, so a schedule is either fully processed for the
current cycle or left untouched for the next run. Pushing to Lexoffice and queueing
notifications happen afterwards and can only downgrade the outcome, never undo the
invoice.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Optional

import pendulum
import pydantic
import structlog
from pydantic import TypeAdapter
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import select

from ..db import get_session
from ..errors import PersistenceError, ValidationError
from ..interfaces.lexoffice import LexofficeClient
from ..models import (
    EntityType,
    IntervalType,
    Invoice,
    InvoiceLine,
    InvoiceStatus,
    Project,
    RecurringInvoice,
    RecurringInvoiceHistory,
    SyncAction,
    SyncOutcome,
    utcnow,
)
from ..schemas import LineItem
from . import sync_log
from .contacts import resolve_contact_id
from .mapping import compute_totals
from .notifications import (
    MessageQueue,
    RecipientResolver,
    format_currency,
    format_date,
    project_recipients,
    queue_email,
    render_invoice_created,
)
from .numbering import next_invoice_number
from .platform import JobConfig, build_client
from .vouchers import push_invoice

logger = structlog.get_logger(__name__)

DEFAULT_TAX_RATE = 19
_LINE_ITEMS = TypeAdapter(list[LineItem])


class OutcomeStatus(str, Enum):
    GENERATED = "generated"
    PARTIAL = "partial"
    DEACTIVATED = "deactivated"
    FAILED = "failed"


@dataclass(frozen=True)
class ScheduleOutcome:
    recurring_id: int
    status: OutcomeStatus
    invoice_id: Optional[int] = None
    invoice_number: Optional[str] = None
    external_id: Optional[str] = None
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.status in (OutcomeStatus.GENERATED, OutcomeStatus.DEACTIVATED)


@dataclass(frozen=True)
class GenerationSummary:
    outcomes: tuple[ScheduleOutcome, ...] = ()

    @property
    def processed(self) -> int:
        return len(self.outcomes)

    @property
    def success_count(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.success)

    @property
    def partial_count(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.status == OutcomeStatus.PARTIAL)

    @property
    def fail_count(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.status == OutcomeStatus.FAILED)

    @property
    def invoices_created(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.invoice_id is not None)

    @property
    def message(self) -> str:
        if not self.outcomes:
            return "No recurring invoices due"
        message = f"{self.invoices_created} invoices generated, {self.fail_count} failed"
        if self.partial_count:
            message += f", {self.partial_count} not synced"
        return message


@dataclass(frozen=True)
class _CreatedInvoice:
    recurring_id: int
    invoice_id: int
    invoice_number: str
    project_id: int
    title: str
    total_amount: Decimal
    currency: str
    due_date: date
    auto_send: bool
    send_notification: bool


def add_interval(current: date, interval_type: IntervalType, interval_value: int) -> date:
    """Advance ``current`` by one billing cycle, clamping to the end of shorter months."""

    if interval_value < 1:
        raise ValidationError("interval_value must be a positive integer")
    start = pendulum.date(current.year, current.month, current.day)
    if interval_type == IntervalType.MONTHLY:
        advanced = start.add(months=interval_value)
    elif interval_type == IntervalType.QUARTERLY:
        advanced = start.add(months=3 * interval_value)
    elif interval_type == IntervalType.YEARLY:
        advanced = start.add(years=interval_value)
    else:
        raise ValidationError(f"Unknown interval type {interval_type!r}")
    return date(advanced.year, advanced.month, advanced.day)


def schedule_line_items(schedule: RecurringInvoice) -> list[LineItem]:
    """Structured lines of the schedule, or one line built from the flat amount."""

    if schedule.line_items:
        try:
            items = _LINE_ITEMS.validate_json(schedule.line_items)
        except pydantic.ValidationError as exc:
            raise ValidationError(f"Invalid line items on schedule {schedule.id}") from exc
        if items:
            return items
    tax_rate = DEFAULT_TAX_RATE if schedule.tax_rate is None else schedule.tax_rate
    if tax_rate not in (0, 7, 19):
        raise ValidationError(f"Unsupported tax rate {tax_rate}")
    return [
        LineItem(
            name=schedule.title,
            description=schedule.description,
            quantity=Decimal("1"),
            unit_price=schedule.net_amount,
            tax_rate=tax_rate,
        )
    ]


def local_today(timezone: str) -> date:
    now = pendulum.now(timezone)
    return date(now.year, now.month, now.day)


def generate_recurring_invoices(
    config: JobConfig,
    *,
    client: Optional[LexofficeClient] = None,
    recipients: RecipientResolver = project_recipients,
    enqueue: MessageQueue = queue_email,
    today: Optional[date] = None,
    now: Optional[datetime] = None,
) -> GenerationSummary:
    """Generate one invoice for every active schedule due on or before ``today``."""

    today = today or local_today(config.timezone)
    now = now or utcnow()
    owns_client = client is None
    if client is None:
        client = build_client(config.platform)

    with get_session() as session:
        due_ids = list(
            session.exec(
                select(RecurringInvoice.id)
                .where(
                    RecurringInvoice.is_active == True,  # noqa: E712
                    RecurringInvoice.next_invoice_date <= today,
                )
                .order_by(RecurringInvoice.next_invoice_date, RecurringInvoice.id)
            ).all()
        )
    logger.info("recurring_generation_started", due=len(due_ids), today=today.isoformat())

    outcomes: list[ScheduleOutcome] = []
    try:
        for recurring_id in due_ids:
            outcomes.append(
                _process_schedule(
                    recurring_id,
                    config,
                    client=client,
                    recipients=recipients,
                    enqueue=enqueue,
                    today=today,
                    now=now,
                )
            )
    finally:
        if owns_client and client is not None:
            client.close()

    summary = GenerationSummary(outcomes=tuple(outcomes))
    logger.info(
        "recurring_generation_finished",
        processed=summary.processed,
        success=summary.success_count,
        partial=summary.partial_count,
        failed=summary.fail_count,
    )
    return summary


def _process_schedule(
    recurring_id: int,
    config: JobConfig,
    *,
    client: Optional[LexofficeClient],
    recipients: RecipientResolver,
    enqueue: MessageQueue,
    today: date,
    now: datetime,
) -> ScheduleOutcome:
    log = logger.bind(recurring_id=recurring_id)
    try:
        created = _create_invoice(recurring_id, config, today=today, now=now)
    except ValidationError as exc:
        log.warning("recurring_schedule_skipped", reason=str(exc))
        return ScheduleOutcome(recurring_id, OutcomeStatus.FAILED, error=str(exc))
    except (SQLAlchemyError, PersistenceError) as exc:
        log.exception("recurring_schedule_persistence_failed")
        return ScheduleOutcome(recurring_id, OutcomeStatus.FAILED, error=f"Could not store invoice: {exc}")
    except Exception as exc:
        log.exception("recurring_schedule_failed")
        return ScheduleOutcome(recurring_id, OutcomeStatus.FAILED, error=str(exc) or exc.__class__.__name__)

    if created is None:
        log.info("recurring_schedule_deactivated")
        return ScheduleOutcome(
            recurring_id,
            OutcomeStatus.DEACTIVATED,
            error="End date reached, deactivated; no invoice generated",
        )

    status = OutcomeStatus.GENERATED
    external_id: Optional[str] = None
    error: Optional[str] = None
    if created.auto_send and config.platform.active and client is not None:
        external_id, error = _sync_invoice(created, config, client, now)
        if error is not None:
            status = OutcomeStatus.PARTIAL

    if created.send_notification:
        try:
            _notify(created, config, recipients, enqueue)
        except Exception:
            log.exception("recurring_notification_failed")

    return ScheduleOutcome(
        recurring_id,
        status,
        invoice_id=created.invoice_id,
        invoice_number=created.invoice_number,
        external_id=external_id,
        error=error,
    )


def _create_invoice(
    recurring_id: int,
    config: JobConfig,
    *,
    today: date,
    now: datetime,
) -> Optional[_CreatedInvoice]:
    """Create the invoice for one due schedule; ``None`` means it was deactivated."""

    with get_session() as session:
        schedule = session.get(RecurringInvoice, recurring_id)
        if schedule is None or not schedule.is_active or schedule.next_invoice_date > today:
            raise ValidationError("Schedule is no longer due")

        if schedule.end_date is not None and schedule.end_date < today:
            schedule.is_active = False
            schedule.touch()
            session.add(schedule)
            return None

        project = session.get(Project, schedule.project_id) if schedule.project_id is not None else None
        if project is None:
            raise ValidationError("Schedule has no project")

        items = schedule_line_items(schedule)
        totals = compute_totals(items)
        invoice = Invoice(
            project_id=project.id,
            invoice_number=next_invoice_number(session, config.invoice_number_prefix, today),
            title=schedule.title,
            description=schedule.description,
            net_amount=totals.net,
            tax_amount=totals.tax,
            total_amount=totals.total,
            currency=schedule.currency,
            status=InvoiceStatus.DRAFT,
            issue_date=today,
            due_date=today + timedelta(days=config.invoice_due_days),
            created_by=schedule.created_by,
        )
        session.add(invoice)
        session.flush()
        for position, item in enumerate(items):
            session.add(InvoiceLine(invoice_id=invoice.id, position=position, **item.model_dump()))
        session.add(
            RecurringInvoiceHistory(
                recurring_invoice_id=schedule.id,
                invoice_id=invoice.id,
                generated_at=now,
            )
        )

        previous_date = schedule.next_invoice_date
        schedule.next_invoice_date = add_interval(previous_date, schedule.interval_type, schedule.interval_value)
        schedule.invoices_generated = (schedule.invoices_generated or 0) + 1
        schedule.last_generated_at = now
        schedule.touch()
        session.add(schedule)
        logger.info(
            "recurring_invoice_created",
            recurring_id=recurring_id,
            invoice_id=invoice.id,
            invoice_number=invoice.invoice_number,
            next_invoice_date=schedule.next_invoice_date.isoformat(),
        )
        return _CreatedInvoice(
            recurring_id=recurring_id,
            invoice_id=invoice.id,
            invoice_number=invoice.invoice_number,
            project_id=project.id,
            title=schedule.title,
            total_amount=totals.total,
            currency=schedule.currency,
            due_date=invoice.due_date,
            auto_send=schedule.auto_send,
            send_notification=schedule.send_notification,
        )


def _sync_invoice(
    created: _CreatedInvoice,
    config: JobConfig,
    client: LexofficeClient,
    now: datetime,
) -> tuple[Optional[str], Optional[str]]:
    """Push the new invoice; returns ``(external_id, error)``."""

    try:
        with get_session() as session:
            invoice = session.get(Invoice, created.invoice_id)
            contact_id = resolve_contact_id(session, invoice.project)
            if contact_id is None:
                logger.warning("recurring_invoice_without_contact", invoice_id=created.invoice_id)
                return None, "No Lexoffice contact mapping for project"
            result = push_invoice(
                session,
                client,
                invoice,
                contact_id,
                timezone=config.timezone,
                finalize=True,
                action=SyncAction.CREATE_FROM_RECURRING,
                now=now,
            )
            if not result.ok:
                return None, result.failure.message
            return invoice.external_id, None
    except Exception as exc:
        logger.exception("recurring_invoice_sync_failed", invoice_id=created.invoice_id)
        error = f"Sync failed: {exc}"
        try:
            with get_session() as session:
                sync_log.record(
                    session,
                    EntityType.INVOICE,
                    created.invoice_id,
                    SyncAction.CREATE_FROM_RECURRING,
                    SyncOutcome.FAILED,
                    error_message=error,
                )
        except Exception:
            logger.exception("sync_log_write_failed", invoice_id=created.invoice_id)
        return None, error


def _notify(
    created: _CreatedInvoice,
    config: JobConfig,
    recipients: RecipientResolver,
    enqueue: MessageQueue,
) -> None:
    log = logger.bind(recurring_id=created.recurring_id, invoice_id=created.invoice_id)
    try:
        with get_session() as session:
            project = session.get(Project, created.project_id)
            project_name = project.name if project is not None else "Projekt"
            targets = recipients(session, created.project_id)
    except Exception:
        log.exception("recurring_notification_recipients_failed")
        return

    dashboard_url = f"{config.app_base_url}/dashboard/invoices/{created.invoice_id}"
    for recipient in targets:
        try:
            message = render_invoice_created(
                recipient_name=recipient.name,
                project_name=project_name,
                invoice_number=created.invoice_number,
                invoice_title=created.title,
                total_amount=format_currency(created.total_amount, created.currency),
                due_date=format_date(created.due_date),
                dashboard_url=dashboard_url,
            )
            with get_session() as session:
                enqueue(
                    session,
                    recipient,
                    message,
                    type="invoice",
                    metadata={
                        "project_id": created.project_id,
                        "invoice_id": created.invoice_id,
                        "recurring_invoice_id": created.recurring_id,
                    },
                )
        except Exception as exc:
            log.warning("recurring_notification_failed", recipient=recipient.email, error=str(exc))
