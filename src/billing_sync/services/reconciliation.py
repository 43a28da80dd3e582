"""Status reconciliation between local vouchers and Lexoffice.

Lexoffice is authoritative for the state of vouchers pushed to it. The job polls every
open invoice and quotation that carries an external id and moves the local status
forward when the platform reports progress. Each entity is handled in its own
transaction, so one failing voucher never blocks the rest of the run.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Optional, Union

import structlog
from sqlmodel import col, select

from ..db import get_session
from ..interfaces.lexoffice import ApiResult, LexofficeClient
from ..models import (
    EntityType,
    Invoice,
    InvoiceStatus,
    Quotation,
    QuotationStatus,
    SyncAction,
    SyncOutcome,
    utcnow,
)
from . import sync_log
from .lifecycle import (
    OPEN_INVOICE_STATUSES,
    OPEN_QUOTATION_STATUSES,
    can_transition_invoice,
    can_transition_quotation,
)
from .mapping import invoice_status_from_voucher, quotation_status_from_voucher
from .platform import JobConfig, build_client

logger = structlog.get_logger(__name__)

Voucher = Union[Invoice, Quotation]


@dataclass(frozen=True)
class EntitySyncResult:
    id: int
    status_changed: bool
    old_status: Optional[str] = None
    new_status: Optional[str] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class ReconciliationSummary:
    invoices: tuple[EntitySyncResult, ...] = ()
    quotations: tuple[EntitySyncResult, ...] = ()
    enabled: bool = True

    @property
    def invoices_synced(self) -> int:
        return len(self.invoices)

    @property
    def invoices_changed(self) -> int:
        return sum(1 for result in self.invoices if result.status_changed)

    @property
    def quotations_synced(self) -> int:
        return len(self.quotations)

    @property
    def quotations_changed(self) -> int:
        return sum(1 for result in self.quotations if result.status_changed)

    @property
    def message(self) -> str:
        if not self.enabled:
            return "Lexoffice integration is not enabled"
        return (
            f"Sync finished: {self.invoices_changed} invoices, "
            f"{self.quotations_changed} quotations updated"
        )


@dataclass(frozen=True)
class _VoucherKind:
    model: type
    entity_type: EntityType
    open_statuses: tuple[Enum, ...]
    fetch: Callable[[LexofficeClient, str], ApiResult[dict[str, Any]]]
    from_voucher: Callable[[Optional[str]], Enum]
    can_transition: Callable[[Any, Any], bool]
    stamp: Callable[[Any, Enum, datetime], None]


def _stamp_invoice(invoice: Invoice, status: InvoiceStatus, now: datetime) -> None:
    if status == InvoiceStatus.PAID and invoice.paid_at is None:
        invoice.paid_at = now


def _stamp_quotation(quotation: Quotation, status: QuotationStatus, now: datetime) -> None:
    if status == QuotationStatus.ACCEPTED:
        quotation.accepted_at = now
    elif status == QuotationStatus.REJECTED:
        quotation.rejected_at = now
    elif status == QuotationStatus.SENT and quotation.sent_at is None:
        quotation.sent_at = now


INVOICES = _VoucherKind(
    model=Invoice,
    entity_type=EntityType.INVOICE,
    open_statuses=OPEN_INVOICE_STATUSES,
    fetch=lambda client, external_id: client.get_invoice(external_id),
    from_voucher=invoice_status_from_voucher,
    can_transition=can_transition_invoice,
    stamp=_stamp_invoice,
)

QUOTATIONS = _VoucherKind(
    model=Quotation,
    entity_type=EntityType.QUOTATION,
    open_statuses=OPEN_QUOTATION_STATUSES,
    fetch=lambda client, external_id: client.get_quotation(external_id),
    from_voucher=quotation_status_from_voucher,
    can_transition=can_transition_quotation,
    stamp=_stamp_quotation,
)


def reconcile_statuses(
    config: JobConfig,
    *,
    client: Optional[LexofficeClient] = None,
    now: Optional[datetime] = None,
) -> ReconciliationSummary:
    """Pull the voucher status of every open, synced invoice and quotation."""

    if not config.platform.active:
        logger.info("reconciliation_skipped", reason="platform disabled")
        return ReconciliationSummary(enabled=False)

    now = now or utcnow()
    owns_client = client is None
    if client is None:
        client = build_client(config.platform)
    try:
        invoices = _reconcile_kind(INVOICES, client, now)
        quotations = _reconcile_kind(QUOTATIONS, client, now)
    finally:
        if owns_client and client is not None:
            client.close()

    summary = ReconciliationSummary(invoices=invoices, quotations=quotations)
    logger.info(
        "reconciliation_finished",
        invoices_synced=summary.invoices_synced,
        invoices_changed=summary.invoices_changed,
        quotations_synced=summary.quotations_synced,
        quotations_changed=summary.quotations_changed,
    )
    return summary


def _reconcile_kind(
    kind: _VoucherKind,
    client: LexofficeClient,
    now: datetime,
) -> tuple[EntitySyncResult, ...]:
    model = kind.model
    with get_session() as session:
        ids = list(
            session.exec(
                select(model.id)
                .where(
                    col(model.external_id).is_not(None),
                    col(model.status).in_(kind.open_statuses),
                )
                .order_by(model.id)
            ).all()
        )
    return tuple(_reconcile_one(kind, entity_id, client, now) for entity_id in ids)


def _reconcile_one(
    kind: _VoucherKind,
    entity_id: int,
    client: LexofficeClient,
    now: datetime,
) -> EntitySyncResult:
    log = logger.bind(entity_type=kind.entity_type.value, entity_id=entity_id)
    external_id: Optional[str] = None
    try:
        with get_session() as session:
            entity: Voucher = session.get(kind.model, entity_id)
            external_id = entity.external_id
            return _apply_voucher_status(session, kind, entity, client, now, log)
    except Exception as exc:
        log.exception("reconciliation_entity_failed")
        message = str(exc) or exc.__class__.__name__
        _record_failure(kind, entity_id, external_id, message)
        return EntitySyncResult(id=entity_id, status_changed=False, error=message)


def _apply_voucher_status(session, kind, entity, client, now, log) -> EntitySyncResult:
    old_status = entity.status
    result = kind.fetch(client, entity.external_id)
    if not result.ok:
        log.warning("voucher_fetch_failed", status=result.failure.status, error=result.failure.message)
        sync_log.record(
            session,
            kind.entity_type,
            entity.id,
            SyncAction.STATUS_SYNC,
            SyncOutcome.FAILED,
            external_id=entity.external_id,
            error_message=result.failure.message,
            response_data=result.failure.details,
        )
        return EntitySyncResult(
            id=entity.id,
            status_changed=False,
            old_status=old_status.value,
            error=result.failure.message,
        )

    voucher_status = (result.value or {}).get("voucherStatus") or "draft"
    new_status = kind.from_voucher(voucher_status)
    if new_status != old_status and kind.can_transition(old_status, new_status):
        entity.status = new_status
        entity.external_status = voucher_status
        entity.synced_at = now
        kind.stamp(entity, new_status, now)
        entity.touch()
        session.add(entity)
        sync_log.record(
            session,
            kind.entity_type,
            entity.id,
            SyncAction.STATUS_SYNC,
            SyncOutcome.SUCCESS,
            external_id=entity.external_id,
            response_data={
                "old_status": old_status.value,
                "new_status": new_status.value,
                "lexoffice_status": voucher_status,
            },
        )
        log.info("voucher_status_changed", old_status=old_status.value, new_status=new_status.value)
        return EntitySyncResult(
            id=entity.id,
            status_changed=True,
            old_status=old_status.value,
            new_status=new_status.value,
        )

    entity.synced_at = now
    session.add(entity)
    sync_log.record(
        session,
        kind.entity_type,
        entity.id,
        SyncAction.STATUS_CHECK,
        SyncOutcome.SUCCESS,
        external_id=entity.external_id,
        response_data={"status": old_status.value, "lexoffice_status": voucher_status},
    )
    return EntitySyncResult(
        id=entity.id,
        status_changed=False,
        old_status=old_status.value,
        new_status=old_status.value,
    )


def _record_failure(kind: _VoucherKind, entity_id: int, external_id: Optional[str], message: str) -> None:
    try:
        with get_session() as session:
            sync_log.record(
                session,
                kind.entity_type,
                entity_id,
                SyncAction.STATUS_SYNC,
                SyncOutcome.FAILED,
                external_id=external_id,
                error_message=message,
            )
    except Exception:
        logger.exception("sync_log_write_failed", entity_type=kind.entity_type.value, entity_id=entity_id)
