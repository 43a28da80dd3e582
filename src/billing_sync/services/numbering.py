"""Gap-free, per-year voucher number allocation."""
from __future__ import annotations

from datetime import date

import pendulum
from sqlalchemy import func, update
from sqlmodel import Session, select

from ..errors import PersistenceError
from ..models import Invoice, NumberSequence, Quotation, utcnow

MAX_ATTEMPTS = 5


def format_number(prefix: str, year: int, number: int) -> str:
    return f"{prefix}-{year}-{number:04d}"


def _issued_in_year(session: Session, sequence_type: str, year: int) -> int:
    if sequence_type == "invoice":
        statement = select(func.count()).select_from(Invoice).where(
            Invoice.issue_date >= date(year, 1, 1),
            Invoice.issue_date < date(year + 1, 1, 1),
        )
    else:
        statement = select(func.count()).select_from(Quotation).where(
            Quotation.created_at >= pendulum.datetime(year, 1, 1, tz="UTC"),
            Quotation.created_at < pendulum.datetime(year + 1, 1, 1, tz="UTC"),
        )
    return int(session.exec(statement).one())


def allocate_number(session: Session, sequence_type: str, prefix: str, year: int) -> str:
    """Reserve the next number of ``year`` with a compare-and-swap on the counter row.

    A missing counter is seeded with the number of vouchers already issued that
    year, so data created before the counter existed keeps its numbering.
    """

    for _ in range(MAX_ATTEMPTS):
        sequence = session.exec(
            select(NumberSequence)
            .where(NumberSequence.sequence_type == sequence_type, NumberSequence.year == year)
            .execution_options(populate_existing=True)
        ).one_or_none()
        if sequence is None:
            sequence = NumberSequence(
                sequence_type=sequence_type,
                year=year,
                prefix=prefix,
                last_number=_issued_in_year(session, sequence_type, year),
            )
            session.add(sequence)
            session.flush()
        current = sequence.last_number
        result = session.connection().execute(
            update(NumberSequence)
            .where(NumberSequence.id == sequence.id, NumberSequence.last_number == current)
            .values(last_number=current + 1, updated_at=utcnow())
        )
        if result.rowcount == 1:
            return format_number(prefix, year, current + 1)
    raise PersistenceError(f"Could not allocate a {sequence_type} number for {year}")


def next_invoice_number(session: Session, prefix: str, issue_date: date) -> str:
    return allocate_number(session, "invoice", prefix, issue_date.year)


def next_quotation_number(session: Session, prefix: str, created_on: date) -> str:
    return allocate_number(session, "quotation", prefix, created_on.year)
