"""
Identity resolution over the Contact table.

A request flows Matcher -> Classifier -> (create | merge) -> Responder.
Every function takes the storage collaborator explicitly; nothing here
holds state between requests.
"""

import logging
from enum import Enum
from typing import Iterable, List

from db_models import ContactRecord, ContactResponse, IdentifyRequest, LinkPrecedence
from db_setup import ContactStore

logger = logging.getLogger(__name__)


class EmptyIdentityError(ValueError):
    """Raised when a payload carries neither an email nor a phone number."""


class Action(str, Enum):
    NO_OP = "no_op"
    CREATE_PRIMARY = "create_primary"
    CREATE_SECONDARY = "create_secondary"
    MERGE = "merge"


def seniority(contact: ContactRecord):
    return (contact.createdAt, contact.id)


# Matcher

def find_cluster(store: ContactStore, payload: IdentifyRequest) -> List[ContactRecord]:
    """Direct matches for the payload, expanded to the whole cluster when
    only one identifying field was supplied."""
    contacts = store.find_matching(payload.email, payload.phoneNumber)
    supplied = [value for value in (payload.email, payload.phoneNumber) if value]

    if len(supplied) == 1 and contacts:
        top = contacts[0]
        linked = store.find_linked(top.primary_id, include_id=top.linkedId)
        seen = {c.id for c in contacts}
        contacts.extend(c for c in linked if c.id not in seen)
        if top.linkedId is not None:
            # stable, so seniority order within each precedence survives
            contacts.sort(key=lambda c: c.linkPrecedence.rank)

    logger.debug("Matched %d contact(s) for email=%s phone=%s",
                 len(contacts), payload.email, payload.phoneNumber)
    return contacts


def load_cluster(store: ContactStore, primary_id: int) -> List[ContactRecord]:
    """The primary followed by its secondaries, oldest first."""
    primary = store.get(primary_id)
    members = store.find_linked(primary_id)
    return ([primary] if primary else []) + members


def expand_clusters(store: ContactStore, contacts: Iterable[ContactRecord]) -> List[ContactRecord]:
    """Union of the full clusters of every given contact, deduplicated by id."""
    result = []
    seen = set()
    for primary_id in dict.fromkeys(c.primary_id for c in contacts):
        for member in load_cluster(store, primary_id):
            if member.id not in seen:
                seen.add(member.id)
                result.append(member)
    return result


# Classifier

def classify(payload: IdentifyRequest, cluster: List[ContactRecord]) -> Action:
    if not cluster:
        return Action.CREATE_PRIMARY

    if any(c.email == payload.email and c.phoneNumber == payload.phoneNumber for c in cluster):
        return Action.NO_OP

    email_known = any(c.email == payload.email for c in cluster)
    phone_known = any(c.phoneNumber == payload.phoneNumber for c in cluster)
    if not (email_known and phone_known):
        return Action.CREATE_SECONDARY

    # email sits on one record and phone on another: two clusters, one person
    return Action.MERGE


# Merger

def merge_cluster(store: ContactStore, cluster: List[ContactRecord]) -> List[ContactRecord]:
    """Make the most senior contact the primary and link everyone else to it.

    Rows that already have the right role are not written, so merging an
    already consistent cluster is a no-op. A storage error stops the merge
    where it is; rows updated before it stay updated.
    """
    ordered = sorted(cluster, key=seniority)
    winner = ordered[0]

    if not winner.is_primary:
        store.update_link(winner.id, None, LinkPrecedence.PRIMARY)
        winner = winner.model_copy(update={"linkedId": None, "linkPrecedence": LinkPrecedence.PRIMARY})
        logger.info("Promoted contact %d to primary", winner.id)

    merged = [winner]
    for contact in ordered[1:]:
        if contact.linkPrecedence is LinkPrecedence.SECONDARY and contact.linkedId == winner.id:
            merged.append(contact)
            continue
        store.update_link(contact.id, winner.id, LinkPrecedence.SECONDARY)
        merged.append(contact.model_copy(
            update={"linkedId": winner.id, "linkPrecedence": LinkPrecedence.SECONDARY}
        ))
        logger.info("Linked contact %d as secondary of %d", contact.id, winner.id)

    return merged


# Responder

def consolidate(cluster: List[ContactRecord]) -> ContactResponse:
    """Fold a cluster, in its given order, into the caller-facing view."""
    response = ContactResponse()
    if not cluster:
        return response

    if len(cluster) == 1:
        contact = cluster[0]
        response.primaryContactId = contact.id
        response.emails = [contact.email] if contact.email else []
        response.phoneNumbers = [contact.phoneNumber] if contact.phoneNumber else []
        return response

    for contact in cluster:
        if response.primaryContactId is None and contact.is_primary:
            response.primaryContactId = contact.id
        if contact.email and contact.email not in response.emails:
            response.emails.append(contact.email)
        if contact.phoneNumber and contact.phoneNumber not in response.phoneNumbers:
            response.phoneNumbers.append(contact.phoneNumber)
        if not contact.is_primary:
            response.secondaryContactIds.append(contact.id)

    if response.primaryContactId is None:
        response.primaryContactId = cluster[0].id
    return response


# Pipeline

def identify(store: ContactStore, payload: IdentifyRequest, serialize_writes: bool = True) -> ContactResponse:
    """Resolve a payload to its consolidated contact, creating or merging
    records as needed."""
    if not payload.email and not payload.phoneNumber:
        raise EmptyIdentityError("Either email or phoneNumber must be provided")

    if not payload.email or not payload.phoneNumber:
        return consolidate(find_cluster(store, payload))

    if serialize_writes:
        with store.transaction():
            return _resolve(store, payload)
    return _resolve(store, payload)


def _resolve(store: ContactStore, payload: IdentifyRequest) -> ContactResponse:
    cluster = find_cluster(store, payload)
    action = classify(payload, cluster)

    if action is Action.CREATE_PRIMARY:
        primary_id = store.insert_contact(payload.email, payload.phoneNumber)
        logger.info("Created primary contact %d", primary_id)

    elif action is Action.CREATE_SECONDARY:
        primary_id = cluster[0].primary_id
        new_id = store.insert_contact(
            payload.email, payload.phoneNumber,
            linked_id=primary_id, precedence=LinkPrecedence.SECONDARY,
        )
        logger.info("Created secondary contact %d linked to %d", new_id, primary_id)

    elif action is Action.MERGE:
        merged = merge_cluster(store, expand_clusters(store, cluster))
        primary_id = merged[0].id

    else:
        exact = next(c for c in cluster
                     if c.email == payload.email and c.phoneNumber == payload.phoneNumber)
        primary_id = exact.primary_id

    return consolidate(load_cluster(store, primary_id))
