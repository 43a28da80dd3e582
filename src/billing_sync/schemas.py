"""Pydantic schemas used by the API and the mapper."""
from __future__ import annotations

from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

TaxRate = Literal[0, 7, 19]


class LineItem(BaseModel):
    """Billing line as stored on schedules and copied onto vouchers."""

    model_config = ConfigDict(from_attributes=True)

    name: str = Field(min_length=1)
    description: Optional[str] = None
    quantity: Decimal = Field(default=Decimal("1"), gt=0)
    unit_name: str = "Stück"
    unit_price: Decimal
    tax_rate: TaxRate = 19


class ScheduleResult(BaseModel):
    recurring_id: int
    status: Literal["generated", "partial", "deactivated", "failed"]
    success: bool
    invoice_id: Optional[int] = None
    invoice_number: Optional[str] = None
    external_id: Optional[str] = None
    error: Optional[str] = None


class GenerationResponse(BaseModel):
    message: str
    processed: int
    success_count: int
    fail_count: int
    partial_count: int = 0
    results: list[ScheduleResult] = Field(default_factory=list)


class EntitySyncResultRead(BaseModel):
    id: int
    status_changed: bool
    old_status: Optional[str] = None
    new_status: Optional[str] = None
    error: Optional[str] = None


class ReconciliationResults(BaseModel):
    invoices: list[EntitySyncResultRead] = Field(default_factory=list)
    quotations: list[EntitySyncResultRead] = Field(default_factory=list)


class ReconciliationResponse(BaseModel):
    message: str
    invoices_synced: int
    invoices_changed: int
    quotations_synced: int
    quotations_changed: int
    results: ReconciliationResults = Field(default_factory=ReconciliationResults)
