"""Translation between local billing records and the Lexoffice wire format.

Everything in here is pure: no database access, no network, no clock reads other
than what callers pass in.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Iterable, Optional, Union

import pendulum

from ..models import Invoice, InvoiceStatus, Organization, Profile, Quotation, QuotationStatus
from ..schemas import LineItem

CENT = Decimal("0.01")

COUNTRY_CODES = {
    "deutschland": "DE",
    "germany": "DE",
    "de": "DE",
    "oesterreich": "AT",
    "österreich": "AT",
    "austria": "AT",
    "at": "AT",
    "schweiz": "CH",
    "switzerland": "CH",
    "ch": "CH",
}

INVOICE_STATUS_FROM_VOUCHER = {
    "draft": InvoiceStatus.DRAFT,
    "open": InvoiceStatus.SENT,
    "paid": InvoiceStatus.PAID,
    "paidoff": InvoiceStatus.PAID,
    "voided": InvoiceStatus.CANCELLED,
}

INVOICE_STATUS_TO_VOUCHER = {
    InvoiceStatus.DRAFT: "draft",
    InvoiceStatus.SENT: "open",
    InvoiceStatus.PAID: "paidoff",
    InvoiceStatus.CANCELLED: "voided",
    # Lexoffice has no overdue state, an overdue invoice is still open there.
    InvoiceStatus.OVERDUE: "open",
}

QUOTATION_STATUS_FROM_VOUCHER = {
    "draft": QuotationStatus.DRAFT,
    "open": QuotationStatus.SENT,
    "accepted": QuotationStatus.ACCEPTED,
    "rejected": QuotationStatus.REJECTED,
}

QUOTATION_STATUS_TO_VOUCHER = {
    QuotationStatus.DRAFT: "draft",
    QuotationStatus.SENT: "open",
    QuotationStatus.ACCEPTED: "accepted",
    QuotationStatus.REJECTED: "rejected",
    QuotationStatus.EXPIRED: "open",
}


@dataclass(frozen=True)
class Totals:
    net: Decimal
    tax: Decimal
    total: Decimal


def _round(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def compute_totals(items: Iterable[LineItem]) -> Totals:
    """Sum line nets and taxes, rounding to cents only once at the end."""

    net = Decimal("0")
    tax = Decimal("0")
    for item in items:
        line_net = Decimal(item.quantity) * Decimal(item.unit_price)
        net += line_net
        tax += line_net * Decimal(item.tax_rate) / Decimal(100)
    return Totals(net=_round(net), tax=_round(tax), total=_round(net + tax))


def country_code(country: Optional[str]) -> str:
    if not country:
        return "DE"
    return COUNTRY_CODES.get(country.strip().lower(), "DE")


# === Contacts ===


@dataclass(frozen=True)
class BillingAddress:
    street: Optional[str] = None
    zip: Optional[str] = None
    city: Optional[str] = None
    country_code: str = "DE"

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"countryCode": self.country_code}
        if self.street:
            payload["street"] = self.street
        if self.zip:
            payload["zip"] = self.zip
        if self.city:
            payload["city"] = self.city
        return payload


@dataclass(frozen=True)
class ContactChannels:
    email: Optional[str] = None
    phone: Optional[str] = None
    mobile: Optional[str] = None

    def apply(self, payload: dict[str, Any]) -> None:
        if self.email:
            payload["emailAddresses"] = {"business": [self.email]}
        if self.phone:
            payload["phoneNumbers"] = {"business": [self.phone]}
        elif self.mobile:
            payload["phoneNumbers"] = {"mobile": [self.mobile]}


@dataclass(frozen=True)
class PersonContact:
    """Private customer."""

    last_name: str
    first_name: Optional[str] = None
    address: Optional[BillingAddress] = None
    channels: ContactChannels = field(default_factory=ContactChannels)

    kind = "person"

    def to_payload(self) -> dict[str, Any]:
        person: dict[str, Any] = {"lastName": self.last_name}
        if self.first_name:
            person["firstName"] = self.first_name
        payload: dict[str, Any] = {"version": 0, "roles": {"customer": {}}, "person": person}
        if self.address is not None:
            payload["addresses"] = {"billing": [self.address.to_payload()]}
        self.channels.apply(payload)
        return payload


@dataclass(frozen=True)
class CompanyContact:
    """Business customer, optionally with a primary contact person."""

    name: str
    contact_person: Optional[PersonContact] = None
    address: Optional[BillingAddress] = None
    channels: ContactChannels = field(default_factory=ContactChannels)

    kind = "company"

    def to_payload(self) -> dict[str, Any]:
        persons: list[dict[str, Any]] = []
        if self.contact_person is not None:
            person: dict[str, Any] = {"lastName": self.contact_person.last_name, "primary": True}
            if self.contact_person.first_name:
                person["firstName"] = self.contact_person.first_name
            if self.channels.email:
                person["emailAddress"] = self.channels.email
            phone = self.channels.phone or self.channels.mobile
            if phone:
                person["phoneNumber"] = phone
            persons.append(person)
        payload: dict[str, Any] = {
            "version": 0,
            "roles": {"customer": {}},
            "company": {"name": self.name, "contactPersons": persons},
        }
        address = self.address or BillingAddress()
        payload["addresses"] = {"billing": [address.to_payload()]}
        self.channels.apply(payload)
        return payload


Contact = Union[PersonContact, CompanyContact]


def _person_name(profile: Profile) -> PersonContact:
    return PersonContact(
        first_name=profile.first_name or None,
        last_name=profile.last_name or profile.full_name or "Unbekannt",
    )


def contact_for_profile(profile: Profile) -> Contact:
    channels = ContactChannels(email=profile.email, phone=profile.phone, mobile=profile.mobile)
    if profile.company:
        address = None
        if profile.company_street:
            address = BillingAddress(
                street=profile.company_street,
                zip=profile.company_postal_code,
                city=profile.company_city,
                country_code=country_code(profile.company_country),
            )
        return CompanyContact(
            name=profile.company,
            contact_person=_person_name(profile),
            address=address,
            channels=channels,
        )
    address = None
    if profile.street:
        address = BillingAddress(
            street=profile.street,
            zip=profile.postal_code,
            city=profile.city,
            country_code=country_code(profile.country),
        )
    person = _person_name(profile)
    return PersonContact(
        first_name=person.first_name,
        last_name=person.last_name,
        address=address,
        channels=channels,
    )


def contact_for_organization(organization: Organization) -> CompanyContact:
    return CompanyContact(
        name=organization.name,
        address=BillingAddress(
            street=organization.street,
            zip=organization.postal_code,
            city=organization.city,
            country_code=country_code(organization.country),
        ),
        channels=ContactChannels(email=organization.email, phone=organization.phone),
    )


# === Vouchers ===


def voucher_date(value: date, timezone: str) -> str:
    """Render a calendar date the way Lexoffice expects voucher dates."""

    moment = pendulum.datetime(value.year, value.month, value.day, tz=timezone)
    return moment.format("YYYY-MM-DDTHH:mm:ss.SSSZ")


def map_line_item(item: LineItem, currency: str = "EUR") -> dict[str, Any]:
    payload: dict[str, Any] = {
        "type": "custom",
        "name": item.name,
        "quantity": float(item.quantity),
        "unitName": item.unit_name,
        "unitPrice": {
            "currency": currency,
            "netAmount": float(item.unit_price),
            "taxRatePercentage": item.tax_rate,
        },
    }
    if item.description:
        payload["description"] = item.description
    return payload


def _tax_conditions(items: list[LineItem]) -> dict[str, str]:
    vat_free = all(item.tax_rate == 0 for item in items)
    return {"taxType": "vatfree" if vat_free else "net"}


def map_invoice(
    invoice: Invoice,
    items: list[LineItem],
    contact_id: str,
    *,
    timezone: str = "Europe/Berlin",
    payment_term_days: Optional[int] = None,
    introduction: Optional[str] = None,
    remark: Optional[str] = None,
) -> dict[str, Any]:
    voucher = voucher_date(invoice.issue_date, timezone)
    payload: dict[str, Any] = {
        "voucherDate": voucher,
        "address": {"contactId": contact_id},
        "lineItems": [map_line_item(item, invoice.currency) for item in items],
        "totalPrice": {"currency": invoice.currency},
        "taxConditions": _tax_conditions(items),
        "shippingConditions": {"shippingDate": voucher, "shippingType": "service"},
    }
    if payment_term_days is None and invoice.due_date is not None:
        payment_term_days = abs((invoice.due_date - invoice.issue_date).days)
    if payment_term_days is not None:
        payload["paymentConditions"] = {"paymentTermDuration": payment_term_days}
    if invoice.title:
        payload["title"] = invoice.title
    if introduction or invoice.description:
        payload["introduction"] = introduction or invoice.description
    if remark:
        payload["remark"] = remark
    return payload


def map_quotation(
    quotation: Quotation,
    items: list[LineItem],
    contact_id: str,
    *,
    voucher_day: date,
    timezone: str = "Europe/Berlin",
    remark: Optional[str] = None,
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "voucherDate": voucher_date(voucher_day, timezone),
        "address": {"contactId": contact_id},
        "lineItems": [map_line_item(item, quotation.currency) for item in items],
        "totalPrice": {"currency": quotation.currency},
        "taxConditions": _tax_conditions(items),
    }
    if quotation.valid_until is not None:
        payload["expirationDate"] = voucher_date(quotation.valid_until, timezone)
    if quotation.title:
        payload["title"] = quotation.title
    if quotation.description:
        payload["introduction"] = quotation.description
    if remark:
        payload["remark"] = remark
    return payload


# === Status vocabularies ===


def invoice_status_from_voucher(voucher_status: Optional[str]) -> InvoiceStatus:
    return INVOICE_STATUS_FROM_VOUCHER.get((voucher_status or "").lower(), InvoiceStatus.DRAFT)


def invoice_status_to_voucher(status: InvoiceStatus) -> str:
    return INVOICE_STATUS_TO_VOUCHER.get(status, "draft")


def quotation_status_from_voucher(voucher_status: Optional[str]) -> QuotationStatus:
    return QUOTATION_STATUS_FROM_VOUCHER.get((voucher_status or "").lower(), QuotationStatus.DRAFT)


def quotation_status_to_voucher(status: QuotationStatus) -> str:
    return QUOTATION_STATUS_TO_VOUCHER.get(status, "draft")
