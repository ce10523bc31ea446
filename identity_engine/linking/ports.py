"""Collaborator contracts consumed by the identity linker.

The linker only talks to the contact store and the fingerprint provider
through these protocols, so tests can substitute deterministic fakes and
deployments can swap implementations without touching the linking logic.
"""

from __future__ import annotations

from typing import Protocol

from identity_engine.storage.models.contact import Contact, IdentitySignals


class ContactStore(Protocol):
    """Persistence for contact records.

    Implementations must enforce uniqueness of ``fingerprint`` among primary
    contacts and report a violation from ``insert_primary`` as
    ``PrimaryRaceLost``.  Any other failure is reported as ``StoreError``.
    """

    async def find_one_by_fingerprint(self, fingerprint: str) -> Contact | None: ...

    async def find_secondaries_by_primary(self, primary_id: str) -> list[Contact]: ...

    async def insert_primary(self, contact: Contact) -> Contact: ...

    async def insert_secondary(self, contact: Contact) -> Contact: ...

    async def get_contact(self, contact_id: str) -> Contact | None: ...

    async def ping(self) -> bool: ...


class FingerprintProvider(Protocol):
    """Turns request-time signals into a stable, provider-issued visitor id.

    Raises ``FingerprintUnavailable`` when no usable identifier is produced.
    """

    async def resolve(self, signals: IdentitySignals) -> str: ...
