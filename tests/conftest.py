"""Shared test doubles for the contact store and fingerprint provider."""

from __future__ import annotations

import asyncio

import pytest

from identity_engine.common.errors import FingerprintUnavailable, PrimaryRaceLost, StoreError
from identity_engine.storage.models.contact import Contact, IdentitySignals


class InMemoryContactStore:
    """ContactStore double that enforces one primary per fingerprint.

    Every operation yields to the event loop before touching state, so
    concurrent callers interleave the same way they would against a real
    database.  The primary uniqueness check and the insert happen without an
    intervening await, mirroring a unique index.
    """

    def __init__(self) -> None:
        self.contacts: dict[str, Contact] = {}
        self.writes: list[str] = []
        self.failing: set[str] = set()

    async def _enter(self, operation: str) -> None:
        await asyncio.sleep(0)
        if operation in self.failing:
            raise StoreError(f"Contact store unavailable during {operation}")

    async def find_one_by_fingerprint(self, fingerprint: str) -> Contact | None:
        await self._enter("find_one_by_fingerprint")
        for contact in self.contacts.values():
            if contact.fingerprint == fingerprint and contact.is_primary:
                return contact
        return None

    async def find_secondaries_by_primary(self, primary_id: str) -> list[Contact]:
        await self._enter("find_secondaries_by_primary")
        return [
            c for c in self.contacts.values() if not c.is_primary and c.linked_id == primary_id
        ]

    async def insert_primary(self, contact: Contact) -> Contact:
        await self._enter("insert_primary")
        if any(c.is_primary and c.fingerprint == contact.fingerprint for c in self.contacts.values()):
            raise PrimaryRaceLost(contact.fingerprint)
        self.contacts[contact.id] = contact
        self.writes.append(contact.id)
        return contact

    async def insert_secondary(self, contact: Contact) -> Contact:
        await self._enter("insert_secondary")
        self.contacts[contact.id] = contact
        self.writes.append(contact.id)
        return contact

    async def get_contact(self, contact_id: str) -> Contact | None:
        await self._enter("get_contact")
        return self.contacts.get(contact_id)

    async def ping(self) -> bool:
        return "ping" not in self.failing

    def primaries(self, fingerprint: str) -> list[Contact]:
        return [c for c in self.contacts.values() if c.is_primary and c.fingerprint == fingerprint]


class StaticFingerprintProvider:
    """Returns the agent request id as the visitor id, or a fixed override."""

    def __init__(self, visitor_id: str | None = None) -> None:
        self.visitor_id = visitor_id
        self.calls: list[IdentitySignals] = []

    async def resolve(self, signals: IdentitySignals) -> str:
        self.calls.append(signals)
        await asyncio.sleep(0)
        fingerprint = self.visitor_id or signals.request_id
        if not fingerprint:
            raise FingerprintUnavailable("No fingerprint request id supplied")
        return fingerprint


@pytest.fixture
def store() -> InMemoryContactStore:
    return InMemoryContactStore()


@pytest.fixture
def provider() -> StaticFingerprintProvider:
    return StaticFingerprintProvider()
