"""
Contact Reconciliation Engine

Classifies an incoming (email, phoneNumber) submission against the stored
contacts and applies the smallest set of writes that keeps every identity
cluster flat with exactly one primary:

1. nothing matches: the submission becomes a new primary
2. matches reach several clusters: the oldest primary survives and the
   others are demoted under it
3. the submission carries an email or phone number not seen in the matched
   rows: it is stored as a new secondary of the survivor

The survivor is derived fresh from the rows read inside the current
transaction on every call.
"""

from typing import List, Optional, Sequence, Tuple

import structlog

from contact_store import Clock, ContactStore
from db_models import Cluster, Contact, ContactResponse
from db_setup import ContactUnitOfWork, run_in_transaction
from exceptions import InternalConsistencyViolation, InvalidRequest

logger = structlog.get_logger()


def normalize_identifier(value: Optional[str]) -> Optional[str]:
    """Blank identifiers count as missing."""
    if value is None or not value.strip():
        return None
    return value


def cluster_ids(matches: Sequence[Contact]) -> List[int]:
    """Distinct primary ids reached by the matches, following one hop."""
    ids = []
    for contact in matches:
        if contact.cluster_id is None:
            raise InternalConsistencyViolation(
                "Secondary contact without a linked primary",
                {"contact_id": contact.id},
            )
        if contact.cluster_id not in ids:
            ids.append(contact.cluster_id)
    return ids


def pick_survivor(primaries: Sequence[Contact]) -> Tuple[Contact, List[Contact]]:
    """Oldest primary by (createdAt, id) and the ones it absorbs."""
    ordered = sorted(primaries, key=lambda c: c.sort_key)
    return ordered[0], ordered[1:]


def has_new_information(matches: Sequence[Contact], email: Optional[str], phone_number: Optional[str]) -> bool:
    known_emails = {c.email for c in matches}
    known_phones = {c.phoneNumber for c in matches}
    return (email is not None and email not in known_emails) or (
        phone_number is not None and phone_number not in known_phones
    )


def _resolve_primaries(store: ContactStore, matches: Sequence[Contact]) -> List[Contact]:
    ids = cluster_ids(matches)
    roots = store.get_contacts(ids)

    found = {c.id for c in roots}
    missing = [i for i in ids if i not in found]
    not_primary = [c.id for c in roots if not c.is_primary]
    if missing or not_primary:
        raise InternalConsistencyViolation(
            "Matched contacts link to rows that are not primary",
            {
                "matched_ids": [c.id for c in matches],
                "missing_ids": missing,
                "secondary_ids": not_primary,
            },
        )
    return roots


def reconcile(store: ContactStore, email: Optional[str], phone_number: Optional[str]) -> int:
    """Apply one submission and return the id of its cluster's primary."""
    matches = store.find_matching(email, phone_number)

    if not matches:
        contact_id = store.insert_primary(email, phone_number)
        logger.info("Created primary contact", contact_id=contact_id)
        return contact_id

    survivor, absorbed = pick_survivor(_resolve_primaries(store, matches))

    for primary in absorbed:
        moved = store.demote_to_secondary(primary.id, survivor.id)
        logger.info(
            "Merged contact clusters",
            primary_id=survivor.id,
            demoted_id=primary.id,
            relinked_secondaries=moved,
        )

    if has_new_information(matches, email, phone_number):
        contact_id = store.insert_secondary(email, phone_number, survivor.id)
        logger.info("Created secondary contact", contact_id=contact_id, primary_id=survivor.id)

    return survivor.id


def consolidate(cluster: Cluster) -> ContactResponse:
    return ContactResponse(
        primaryContactId=cluster.primary.id,
        emails=cluster.emails,
        phoneNumbers=cluster.phone_numbers,
        secondaryContactIds=cluster.secondary_ids,
    )


def identify(
    email: Optional[str],
    phone_number: Optional[str],
    *,
    database_path: Optional[str] = None,
    clock: Optional[Clock] = None,
) -> ContactResponse:
    """Reconcile a submission and return the consolidated contact.

    The writes and the read-back share one transaction, so the returned view
    always reflects exactly what was committed.
    """
    email = normalize_identifier(email)
    phone_number = normalize_identifier(phone_number)
    if email is None and phone_number is None:
        raise InvalidRequest("Either email or phoneNumber must be provided")

    def work(uow: ContactUnitOfWork) -> ContactResponse:
        primary_id = reconcile(uow.contacts, email, phone_number)
        return consolidate(uow.contacts.cluster_of(primary_id))

    return run_in_transaction(work, database_path, clock=clock)
