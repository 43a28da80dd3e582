"""Scheduler entry points for the recurring invoice and status sync jobs."""
from __future__ import annotations

from fastapi import APIRouter, Depends

from ..config import Settings, get_settings
from ..db import get_session
from ..schemas import (
    EntitySyncResultRead,
    GenerationResponse,
    ReconciliationResponse,
    ReconciliationResults,
    ScheduleResult,
)
from ..security import require_cron_secret
from ..services.platform import JobConfig, load_job_config
from ..services.reconciliation import EntitySyncResult, reconcile_statuses
from ..services.recurring import generate_recurring_invoices

router = APIRouter(prefix="/api/cron", tags=["cron"], dependencies=[Depends(require_cron_secret)])


def _job_config(settings: Settings) -> JobConfig:
    with get_session() as session:
        return load_job_config(session, settings)


def _entity_result(result: EntitySyncResult) -> EntitySyncResultRead:
    return EntitySyncResultRead(
        id=result.id,
        status_changed=result.status_changed,
        old_status=result.old_status,
        new_status=result.new_status,
        error=result.error,
    )


@router.get("/generate-recurring-invoices", response_model=GenerationResponse)
def generate_recurring(settings: Settings = Depends(get_settings)) -> GenerationResponse:
    summary = generate_recurring_invoices(_job_config(settings))
    return GenerationResponse(
        message=summary.message,
        processed=summary.processed,
        success_count=summary.success_count,
        fail_count=summary.fail_count,
        partial_count=summary.partial_count,
        results=[
            ScheduleResult(
                recurring_id=outcome.recurring_id,
                status=outcome.status.value,
                success=outcome.success,
                invoice_id=outcome.invoice_id,
                invoice_number=outcome.invoice_number,
                external_id=outcome.external_id,
                error=outcome.error,
            )
            for outcome in summary.outcomes
        ],
    )


@router.get("/sync-lexoffice", response_model=ReconciliationResponse)
def sync_lexoffice(settings: Settings = Depends(get_settings)) -> ReconciliationResponse:
    summary = reconcile_statuses(_job_config(settings))
    return ReconciliationResponse(
        message=summary.message,
        invoices_synced=summary.invoices_synced,
        invoices_changed=summary.invoices_changed,
        quotations_synced=summary.quotations_synced,
        quotations_changed=summary.quotations_changed,
        results=ReconciliationResults(
            invoices=[_entity_result(result) for result in summary.invoices],
            quotations=[_entity_result(result) for result in summary.quotations],
        ),
    )
