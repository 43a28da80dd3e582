"""Status state machines for invoices and quotations."""
from __future__ import annotations

from ..models import InvoiceStatus, QuotationStatus

INVOICE_TRANSITIONS: dict[InvoiceStatus, frozenset[InvoiceStatus]] = {
    InvoiceStatus.DRAFT: frozenset(
        {InvoiceStatus.SENT, InvoiceStatus.PAID, InvoiceStatus.OVERDUE, InvoiceStatus.CANCELLED}
    ),
    InvoiceStatus.SENT: frozenset({InvoiceStatus.PAID, InvoiceStatus.OVERDUE, InvoiceStatus.CANCELLED}),
    InvoiceStatus.OVERDUE: frozenset({InvoiceStatus.PAID, InvoiceStatus.CANCELLED}),
    InvoiceStatus.PAID: frozenset(),
    InvoiceStatus.CANCELLED: frozenset(),
}

QUOTATION_TRANSITIONS: dict[QuotationStatus, frozenset[QuotationStatus]] = {
    QuotationStatus.DRAFT: frozenset(
        {QuotationStatus.SENT, QuotationStatus.ACCEPTED, QuotationStatus.REJECTED, QuotationStatus.EXPIRED}
    ),
    QuotationStatus.SENT: frozenset(
        {QuotationStatus.ACCEPTED, QuotationStatus.REJECTED, QuotationStatus.EXPIRED}
    ),
    QuotationStatus.ACCEPTED: frozenset(),
    QuotationStatus.REJECTED: frozenset(),
    QuotationStatus.EXPIRED: frozenset(),
}

OPEN_INVOICE_STATUSES = tuple(status for status, targets in INVOICE_TRANSITIONS.items() if targets)
OPEN_QUOTATION_STATUSES = tuple(status for status, targets in QUOTATION_TRANSITIONS.items() if targets)


def can_transition_invoice(current: InvoiceStatus, target: InvoiceStatus) -> bool:
    # Forward moves only; draft may jump ahead because the platform is authoritative.
    return target in INVOICE_TRANSITIONS[current]


def can_transition_quotation(current: QuotationStatus, target: QuotationStatus) -> bool:
    return target in QUOTATION_TRANSITIONS[current]
