"""Registry of local parties linked to Lexoffice contacts."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import structlog
from sqlmodel import Session, col, select

from ..errors import LexofficeApiError, ValidationError
from ..interfaces.lexoffice import MISSING_ID_STATUS, LexofficeClient
from ..models import (
    ContactMapping,
    EntityType,
    Organization,
    Profile,
    Project,
    SyncAction,
    SyncOutcome,
)
from . import sync_log
from .mapping import contact_for_organization, contact_for_profile

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ContactLink:
    mapping: ContactMapping
    created: bool


def find_mapping(
    session: Session,
    *,
    profile_id: Optional[int] = None,
    organization_id: Optional[int] = None,
) -> Optional[ContactMapping]:
    statement = select(ContactMapping)
    if profile_id is not None:
        statement = statement.where(ContactMapping.profile_id == profile_id)
    elif organization_id is not None:
        statement = statement.where(ContactMapping.organization_id == organization_id)
    else:
        return None
    return session.exec(statement.order_by(col(ContactMapping.id).desc())).first()


def resolve_contact_id(session: Session, project: Optional[Project]) -> Optional[str]:
    """Return the Lexoffice contact of the project's client, else of its organization."""

    if project is None:
        return None
    if project.client_id is not None:
        mapping = find_mapping(session, profile_id=project.client_id)
        if mapping is not None:
            return mapping.external_contact_id
    if project.organization_id is not None:
        mapping = find_mapping(session, organization_id=project.organization_id)
        if mapping is not None:
            return mapping.external_contact_id
    return None


def link_contact(
    session: Session,
    client: LexofficeClient,
    *,
    profile_id: Optional[int] = None,
    organization_id: Optional[int] = None,
    force: bool = False,
) -> ContactLink:
    """Create the Lexoffice contact for a profile or organization and remember it.

    An existing mapping is returned untouched unless ``force`` is set, in which case
    it is repointed at the newly created contact. Platform errors are logged to the
    sync log and raised as ``LexofficeApiError``.
    """

    if (profile_id is None) == (organization_id is None):
        raise ValidationError("Exactly one of profile_id or organization_id is required")

    existing = find_mapping(session, profile_id=profile_id, organization_id=organization_id)
    if existing is not None and not force:
        return ContactLink(mapping=existing, created=False)

    if profile_id is not None:
        profile = session.get(Profile, profile_id)
        if profile is None:
            raise ValidationError(f"Profile {profile_id} not found")
        contact = contact_for_profile(profile)
        entity_id = profile_id
    else:
        organization = session.get(Organization, organization_id)
        if organization is None:
            raise ValidationError(f"Organization {organization_id} not found")
        contact = contact_for_organization(organization)
        entity_id = organization_id

    payload = contact.to_payload()
    result = client.create_contact(payload)
    if not result.ok:
        sync_log.record(
            session,
            EntityType.CONTACT,
            entity_id,
            SyncAction.CREATE,
            SyncOutcome.FAILED,
            error_message=result.failure.message,
            request_data=payload,
        )
        session.commit()
        raise result.failure.to_exception()

    response = result.value or {}
    if not response.get("id"):
        message = "Lexoffice response did not contain a contact id"
        sync_log.record(
            session,
            EntityType.CONTACT,
            entity_id,
            SyncAction.CREATE,
            SyncOutcome.FAILED,
            error_message=message,
            request_data=payload,
            response_data=response,
        )
        session.commit()
        raise LexofficeApiError(MISSING_ID_STATUS, message, response)

    # One mapping per party; a forced relink replaces the stored contact.
    mapping = existing or ContactMapping(profile_id=profile_id, organization_id=organization_id)
    mapping.external_contact_id = str(response["id"])
    mapping.touch()
    session.add(mapping)
    session.flush()
    sync_log.record(
        session,
        EntityType.CONTACT,
        entity_id,
        SyncAction.CREATE,
        SyncOutcome.SUCCESS,
        external_id=mapping.external_contact_id,
        request_data=payload,
        response_data=response,
    )
    logger.info("contact_linked", kind=contact.kind, entity_id=entity_id, contact_id=mapping.external_contact_id)
    return ContactLink(mapping=mapping, created=True)
