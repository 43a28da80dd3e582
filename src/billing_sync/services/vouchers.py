"""Pushing local invoices and quotations to Lexoffice."""
from __future__ import annotations

from datetime import date, datetime
from typing import Any, Optional

import structlog
from sqlmodel import Session

from ..errors import ValidationError
from ..interfaces.lexoffice import MISSING_ID_STATUS, ApiResult, LexofficeClient
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
from ..schemas import LineItem
from . import sync_log
from .contacts import resolve_contact_id
from .mapping import map_invoice, map_quotation

logger = structlog.get_logger(__name__)


def _line_items(lines: list[Any]) -> list[LineItem]:
    ordered = sorted(lines, key=lambda line: line.position)
    return [LineItem.model_validate(line) for line in ordered]


def _require_id(result: ApiResult[dict[str, Any]]) -> ApiResult[dict[str, Any]]:
    # Without the voucher id the entity could never be reconciled later.
    if result.ok and not (result.value or {}).get("id"):
        return ApiResult.error(
            MISSING_ID_STATUS,
            "Lexoffice response did not contain a voucher id",
            result.value,
        )
    return result


def push_invoice(
    session: Session,
    client: LexofficeClient,
    invoice: Invoice,
    contact_id: str,
    *,
    timezone: str,
    finalize: bool = True,
    action: SyncAction = SyncAction.CREATE,
    now: Optional[datetime] = None,
) -> ApiResult[dict[str, Any]]:
    """Create ``invoice`` on Lexoffice; on success mark it sent when finalized.

    The outcome is always written to the sync log. A failure leaves the invoice in
    its previous state.
    """

    payload = map_invoice(invoice, _line_items(invoice.lines), contact_id, timezone=timezone)
    result = _require_id(client.create_invoice(payload, finalize=finalize))
    if not result.ok:
        sync_log.record(
            session,
            EntityType.INVOICE,
            invoice.id,
            action,
            SyncOutcome.FAILED,
            error_message=result.failure.message,
            request_data=payload,
            response_data=result.failure.details,
        )
        logger.warning(
            "invoice_push_failed",
            invoice_id=invoice.id,
            status=result.failure.status,
            error=result.failure.message,
        )
        return result

    response = result.value
    invoice.external_id = str(response["id"])
    invoice.external_status = "open" if finalize else "draft"
    invoice.synced_at = now or utcnow()
    if finalize and invoice.status == InvoiceStatus.DRAFT:
        invoice.status = InvoiceStatus.SENT
    invoice.touch()
    session.add(invoice)
    sync_log.record(
        session,
        EntityType.INVOICE,
        invoice.id,
        action,
        SyncOutcome.SUCCESS,
        external_id=invoice.external_id,
        request_data=payload,
        response_data=response,
    )
    logger.info("invoice_pushed", invoice_id=invoice.id, external_id=invoice.external_id, finalized=finalize)
    return result


def push_quotation(
    session: Session,
    client: LexofficeClient,
    quotation_id: int,
    *,
    timezone: str,
    today: date,
    finalize: bool = True,
    now: Optional[datetime] = None,
) -> ApiResult[dict[str, Any]]:
    """Send a draft quotation to Lexoffice and mark it sent locally."""

    quotation = session.get(Quotation, quotation_id)
    if quotation is None:
        raise ValidationError(f"Quotation {quotation_id} not found")
    if quotation.status != QuotationStatus.DRAFT:
        raise ValidationError("Only draft quotations can be sent")
    contact_id = resolve_contact_id(session, quotation.project)
    if contact_id is None:
        raise ValidationError("No Lexoffice contact is linked to this project")

    result: ApiResult[dict[str, Any]] = ApiResult.success({"id": quotation.external_id})
    if not quotation.external_id:
        payload = map_quotation(
            quotation,
            _line_items(quotation.lines),
            contact_id,
            voucher_day=today,
            timezone=timezone,
        )
        result = _require_id(client.create_quotation(payload, finalize=finalize))
        if not result.ok:
            sync_log.record(
                session,
                EntityType.QUOTATION,
                quotation.id,
                SyncAction.SEND,
                SyncOutcome.FAILED,
                error_message=result.failure.message,
                request_data=payload,
                response_data=result.failure.details,
            )
            return result
        response = result.value
        quotation.external_id = str(response["id"])
        sync_log.record(
            session,
            EntityType.QUOTATION,
            quotation.id,
            SyncAction.FINALIZE if finalize else SyncAction.CREATE,
            SyncOutcome.SUCCESS,
            external_id=quotation.external_id,
            request_data=payload,
            response_data=response,
        )

    stamp = now or utcnow()
    quotation.status = QuotationStatus.SENT
    quotation.sent_at = stamp
    quotation.external_status = "open" if finalize else "draft"
    quotation.synced_at = stamp
    quotation.touch()
    session.add(quotation)
    return result
