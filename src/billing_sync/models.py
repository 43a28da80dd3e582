"""Database models for billing and accounting synchronisation."""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

import pendulum
from sqlalchemy import UniqueConstraint
from sqlmodel import Field, Relationship, SQLModel


def utcnow() -> datetime:
    return pendulum.now("UTC")


class TimestampMixin(SQLModel):
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def touch(self) -> None:
        self.updated_at = utcnow()


class InvoiceStatus(str, Enum):
    DRAFT = "draft"
    SENT = "sent"
    PAID = "paid"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"


class QuotationStatus(str, Enum):
    DRAFT = "draft"
    SENT = "sent"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    EXPIRED = "expired"


class IntervalType(str, Enum):
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"


class EntityType(str, Enum):
    CONTACT = "contact"
    INVOICE = "invoice"
    QUOTATION = "quotation"


class SyncAction(str, Enum):
    CREATE = "create"
    CREATE_FROM_RECURRING = "create_from_recurring"
    FINALIZE = "finalize"
    SEND = "send"
    STATUS_SYNC = "status_sync"
    STATUS_CHECK = "status_check"


class SyncOutcome(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"


class Profile(TimestampMixin, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    email: Optional[str] = Field(default=None, index=True)
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    full_name: Optional[str] = None
    company: Optional[str] = None
    phone: Optional[str] = None
    mobile: Optional[str] = None
    street: Optional[str] = None
    postal_code: Optional[str] = None
    city: Optional[str] = None
    country: Optional[str] = None
    company_street: Optional[str] = None
    company_postal_code: Optional[str] = None
    company_city: Optional[str] = None
    company_country: Optional[str] = None


class Organization(TimestampMixin, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    street: Optional[str] = None
    postal_code: Optional[str] = None
    city: Optional[str] = None
    country: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None

    members: list["OrganizationMember"] = Relationship(back_populates="organization")


class OrganizationMember(TimestampMixin, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    organization_id: int = Field(foreign_key="organization.id")
    profile_id: int = Field(foreign_key="profile.id")

    organization: Organization = Relationship(back_populates="members")
    profile: Profile = Relationship()

    __table_args__ = (UniqueConstraint("organization_id", "profile_id", name="organization_member_unique"),)


class Project(TimestampMixin, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    client_id: Optional[int] = Field(default=None, foreign_key="profile.id")
    organization_id: Optional[int] = Field(default=None, foreign_key="organization.id")


class LineItemBase(SQLModel):
    name: str
    description: Optional[str] = None
    quantity: Decimal = Field(default=Decimal("1"), max_digits=12, decimal_places=3)
    unit_name: str = Field(default="Stück")
    unit_price: Decimal = Field(max_digits=12, decimal_places=2)
    tax_rate: int = Field(default=19, description="Percent, one of 0, 7, 19")


class RecurringInvoice(TimestampMixin, table=True):
    """Operator-defined template describing when and what to invoice."""

    id: Optional[int] = Field(default=None, primary_key=True)
    project_id: Optional[int] = Field(default=None, foreign_key="project.id")
    title: str
    description: Optional[str] = None
    line_items: Optional[str] = Field(default=None, description="JSON encoded line items")
    net_amount: Decimal = Field(default=Decimal("0"), max_digits=12, decimal_places=2)
    tax_rate: Optional[int] = None
    currency: str = Field(default="EUR")
    interval_type: IntervalType = Field(default=IntervalType.MONTHLY)
    interval_value: int = Field(default=1, ge=1)
    start_date: date
    next_invoice_date: date = Field(index=True)
    end_date: Optional[date] = None
    is_active: bool = Field(default=True, index=True)
    auto_send: bool = False
    send_notification: bool = False
    invoices_generated: int = Field(default=0)
    last_generated_at: Optional[datetime] = None
    created_by: Optional[int] = Field(default=None, foreign_key="profile.id")

    project: Optional[Project] = Relationship()


class RecurringInvoiceHistory(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    recurring_invoice_id: int = Field(foreign_key="recurringinvoice.id", index=True)
    invoice_id: int = Field(foreign_key="invoice.id")
    generated_at: datetime = Field(default_factory=utcnow)


class Invoice(TimestampMixin, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    project_id: int = Field(foreign_key="project.id")
    invoice_number: str = Field(unique=True)
    title: str
    description: Optional[str] = None
    net_amount: Decimal = Field(default=Decimal("0"), max_digits=12, decimal_places=2)
    tax_amount: Decimal = Field(default=Decimal("0"), max_digits=12, decimal_places=2)
    total_amount: Decimal = Field(default=Decimal("0"), max_digits=12, decimal_places=2)
    currency: str = Field(default="EUR")
    status: InvoiceStatus = Field(default=InvoiceStatus.DRAFT, index=True)
    issue_date: date
    due_date: Optional[date] = None
    paid_at: Optional[datetime] = None
    external_id: Optional[str] = Field(default=None, index=True)
    external_status: Optional[str] = None
    synced_at: Optional[datetime] = None
    created_by: Optional[int] = Field(default=None, foreign_key="profile.id")

    lines: list["InvoiceLine"] = Relationship(back_populates="invoice")
    project: Optional[Project] = Relationship()


class InvoiceLine(LineItemBase, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    invoice_id: int = Field(foreign_key="invoice.id")
    position: int = Field(default=0)

    invoice: Invoice = Relationship(back_populates="lines")


class Quotation(TimestampMixin, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    project_id: int = Field(foreign_key="project.id")
    quotation_number: str = Field(unique=True)
    title: str
    description: Optional[str] = None
    net_amount: Decimal = Field(default=Decimal("0"), max_digits=12, decimal_places=2)
    tax_amount: Decimal = Field(default=Decimal("0"), max_digits=12, decimal_places=2)
    total_amount: Decimal = Field(default=Decimal("0"), max_digits=12, decimal_places=2)
    currency: str = Field(default="EUR")
    status: QuotationStatus = Field(default=QuotationStatus.DRAFT, index=True)
    valid_until: Optional[date] = None
    sent_at: Optional[datetime] = None
    accepted_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    external_id: Optional[str] = Field(default=None, index=True)
    external_status: Optional[str] = None
    synced_at: Optional[datetime] = None
    created_by: Optional[int] = Field(default=None, foreign_key="profile.id")

    lines: list["QuotationLine"] = Relationship(back_populates="quotation")
    project: Optional[Project] = Relationship()


class QuotationLine(LineItemBase, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    quotation_id: int = Field(foreign_key="quotation.id")
    position: int = Field(default=0)

    quotation: Quotation = Relationship(back_populates="lines")


class ContactMapping(TimestampMixin, table=True):
    """Local party (profile or organization) linked to a Lexoffice contact."""

    id: Optional[int] = Field(default=None, primary_key=True)
    profile_id: Optional[int] = Field(default=None, foreign_key="profile.id", index=True)
    organization_id: Optional[int] = Field(default=None, foreign_key="organization.id", index=True)
    external_contact_id: str


class SyncLogEntry(SQLModel, table=True):
    """Append-only audit row for every attempted external operation."""

    id: Optional[int] = Field(default=None, primary_key=True)
    entity_type: EntityType = Field(index=True)
    entity_id: str = Field(index=True)
    external_id: Optional[str] = None
    action: SyncAction
    status: SyncOutcome
    error_message: Optional[str] = None
    request_data: Optional[str] = None
    response_data: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


class NumberSequence(TimestampMixin, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    sequence_type: str = Field(default="invoice")
    year: int
    prefix: str
    last_number: int = Field(default=0)

    __table_args__ = (UniqueConstraint("sequence_type", "year", name="number_sequence_unique"),)


class SystemSetting(SQLModel, table=True):
    key: str = Field(primary_key=True)
    value: str = Field(description="JSON encoded setting value")
    updated_at: datetime = Field(default_factory=utcnow)


class EmailQueueItem(TimestampMixin, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    recipient_email: str
    recipient_name: Optional[str] = None
    subject: str
    content_html: str
    content_text: Optional[str] = None
    type: str = Field(default="notification")
    metadata_json: str = Field(default="{}")
    status: str = Field(default="pending", index=True)
    attempts: int = Field(default=0)
    max_attempts: int = Field(default=3)
