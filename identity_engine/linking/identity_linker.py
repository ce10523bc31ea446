"""Identity Linking Engine.

Links each identify call to the identity cluster of its fingerprint.  The
first observation of a fingerprint becomes the cluster's primary contact;
every later observation is appended as a secondary linked to it.  Matching
is exact equality on the provider-issued fingerprint only: email and phone
values are carried, never compared.

Concurrent first calls for the same fingerprint are arbitrated by the
store's unique index on primary fingerprints.  The loser of that race gets
``PrimaryRaceLost`` and is linked to the winner as a secondary, so exactly
one primary exists per fingerprint no matter how many instances run.
"""

from __future__ import annotations

import logging

from identity_engine.common.errors import (
    ContactNotFound,
    FingerprintUnavailable,
    PrimaryRaceLost,
    StoreError,
    ValidationError,
)
from identity_engine.common.metrics import identify_requests_total, primary_race_recoveries_total
from identity_engine.linking.ports import ContactStore, FingerprintProvider
from identity_engine.linking.request_validator import validate_identify_request
from identity_engine.linking.response_assembler import assemble_view
from identity_engine.storage.models.contact import Contact, ContactView, IdentifyRequest

logger = logging.getLogger(__name__)


class IdentityLinker:
    """Resolves an identify call to a cluster view, creating contacts as needed.

    Holds no cluster state between calls; every call rebuilds what it needs
    from the store.
    """

    def __init__(self, store: ContactStore, provider: FingerprintProvider) -> None:
        self._store = store
        self._provider = provider

    # ── public entry point ───────────────────────────────────────────
    async def identify(
        self, request: IdentifyRequest, request_id: str | None = None
    ) -> ContactView:
        """Validate *request*, resolve its fingerprint, and link it."""
        try:
            signals = validate_identify_request(request, request_id)
            fingerprint = await self._provider.resolve(signals)
            return await self.link(fingerprint, signals.email, signals.phone_number)
        except ValidationError:
            identify_requests_total.labels(outcome="validation_failed").inc()
            raise
        except FingerprintUnavailable:
            identify_requests_total.labels(outcome="fingerprint_unavailable").inc()
            raise
        except StoreError:
            identify_requests_total.labels(outcome="store_error").inc()
            raise

    async def link(
        self, fingerprint: str, email: str | None, phone_number: str | None
    ) -> ContactView:
        """Attach one observation to the cluster of *fingerprint*."""
        primary = await self._store.find_one_by_fingerprint(fingerprint)
        if primary is None:
            try:
                created = await self._store.insert_primary(
                    Contact.new_primary(fingerprint, email, phone_number)
                )
            except PrimaryRaceLost:
                primary_race_recoveries_total.inc()
                logger.info("Primary race lost for fingerprint %s, linking as secondary", fingerprint)
                primary = await self._store.find_one_by_fingerprint(fingerprint)
                if primary is None:
                    raise StoreError(
                        f"Primary for fingerprint {fingerprint} reported but not found"
                    ) from None
            else:
                identify_requests_total.labels(outcome="primary_created").inc()
                return assemble_view(created)

        return await self._link_secondary(primary, email, phone_number)

    async def cluster(self, contact_id: str) -> ContactView:
        """Read-only merged view of the cluster containing *contact_id*."""
        return await read_cluster(self._store, contact_id)

    # ── secondary ────────────────────────────────────────────────────
    async def _link_secondary(
        self, primary: Contact, email: str | None, phone_number: str | None
    ) -> ContactView:
        created = await self._store.insert_secondary(
            Contact.new_secondary(primary, email, phone_number)
        )
        secondaries = await self._store.find_secondaries_by_primary(primary.id)
        identify_requests_total.labels(outcome="secondary_created").inc()
        logger.debug(
            "Linked %s to primary %s (%d secondaries)", created.id, primary.id, len(secondaries)
        )
        return assemble_view(primary, secondaries, new_secondary=created)


async def read_cluster(store: ContactStore, contact_id: str) -> ContactView:
    """Merged view of the cluster containing *contact_id*, from the store alone.

    A secondary id is followed to its primary.  Nothing is written, so
    repeated calls on an unchanged cluster return identical views.
    """
    contact = await store.get_contact(contact_id)
    if contact is None:
        raise ContactNotFound(f"Contact {contact_id} not found")
    if not contact.is_primary:
        primary = await store.get_contact(contact.linked_id or "")
        if primary is None or not primary.is_primary:
            raise StoreError(f"Contact {contact_id} links to a missing primary")
        contact = primary
    secondaries = await store.find_secondaries_by_primary(contact.id)
    return assemble_view(contact, secondaries)
