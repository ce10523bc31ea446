"""Async MongoDB persistence for contact records.

Uses motor's async MongoDB driver with connection pooling and client-side
operation timeouts.  One primary per fingerprint is enforced by a partial
unique index rather than by any read-then-write check in the application,
so several service instances can share the same collection safely.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorCollection
from pymongo import ASCENDING
from pymongo.errors import DuplicateKeyError, PyMongoError

from identity_engine.common.config import ServiceConfig
from identity_engine.common.errors import PrimaryRaceLost, StoreError
from identity_engine.common.metrics import store_operation_seconds
from identity_engine.storage.models.contact import Contact, LinkPrecedence

logger = logging.getLogger(__name__)

PRIMARY_FINGERPRINT_INDEX = "uniq_primary_fingerprint"


class MongoContactStore:
    """Append-only contact collection in MongoDB."""

    def __init__(
        self,
        connection_uri: str,
        database: str = "contacts",
        collection: str = "contacts",
        max_pool_size: int = 50,
        timeout_ms: int = 5000,
    ) -> None:
        self._client: AsyncIOMotorClient = AsyncIOMotorClient(
            connection_uri,
            maxPoolSize=max_pool_size,
            serverSelectionTimeoutMS=timeout_ms,
            timeoutMS=timeout_ms,
            tz_aware=True,
        )
        self._db = self._client[database]
        self._col: AsyncIOMotorCollection = self._db[collection]

    @classmethod
    def from_config(cls, config: ServiceConfig) -> MongoContactStore:
        return cls(
            config.mongo_url,
            database=config.db_name,
            collection=config.collection_name,
            max_pool_size=config.mongo_max_pool_size,
            timeout_ms=config.mongo_timeout_ms,
        )

    @contextmanager
    def _store_call(self, operation: str) -> Iterator[None]:
        """Time one store round-trip and translate driver errors to ``StoreError``."""
        with store_operation_seconds.labels(operation=operation).time():
            try:
                yield
            except PyMongoError as exc:
                logger.error("Contact store %s failed: %s", operation, exc)
                raise StoreError(f"Contact store unavailable during {operation}") from exc

    # ── reads ─────────────────────────────────────────────────────────

    async def find_one_by_fingerprint(self, fingerprint: str) -> Contact | None:
        """Return the primary contact for *fingerprint*, if one exists."""
        with self._store_call("find_one_by_fingerprint"):
            doc = await self._col.find_one(
                {"fingerprint": fingerprint, "linkPrecedence": LinkPrecedence.PRIMARY.value}
            )
        if doc is None:
            return None
        return Contact.model_validate(doc)

    async def find_secondaries_by_primary(self, primary_id: str) -> list[Contact]:
        """Return every secondary linked to *primary_id*, oldest first."""
        results: list[Contact] = []
        with self._store_call("find_secondaries_by_primary"):
            cursor = self._col.find(
                {"linkedId": primary_id, "linkPrecedence": LinkPrecedence.SECONDARY.value}
            ).sort([("createdAt", ASCENDING), ("_id", ASCENDING)])
            async for doc in cursor:
                results.append(Contact.model_validate(doc))
        return results

    async def get_contact(self, contact_id: str) -> Contact | None:
        """Fetch a single contact by id."""
        with self._store_call("get_contact"):
            doc = await self._col.find_one({"_id": contact_id})
        if doc is None:
            return None
        return Contact.model_validate(doc)

    # ── writes ────────────────────────────────────────────────────────

    async def insert_primary(self, contact: Contact) -> Contact:
        """Insert a primary contact, conditional on the fingerprint being unclaimed.

        The partial unique index on ``fingerprint`` (primaries only) turns a
        concurrent second insert into a ``DuplicateKeyError``, which is
        reported as ``PrimaryRaceLost`` so the caller can link to the winner.
        """
        with self._store_call("insert_primary"):
            try:
                await self._col.insert_one(contact.to_document())
            except DuplicateKeyError as exc:
                if not _is_primary_fingerprint_conflict(exc):
                    raise
                raise PrimaryRaceLost(contact.fingerprint) from exc
        logger.info("Created primary contact %s", contact.id)
        return contact

    async def insert_secondary(self, contact: Contact) -> Contact:
        with self._store_call("insert_secondary"):
            await self._col.insert_one(contact.to_document())
        logger.info("Created secondary contact %s -> %s", contact.id, contact.linked_id)
        return contact

    # ── lifecycle ─────────────────────────────────────────────────────

    async def ensure_indexes(self) -> None:
        """Create the uniqueness constraint and lookup indexes.

        ``uniq_primary_fingerprint`` is a required part of the schema: without
        it concurrent first requests for a fingerprint create two primaries.
        """
        with self._store_call("ensure_indexes"):
            await self._col.create_index(
                [("fingerprint", ASCENDING)],
                name=PRIMARY_FINGERPRINT_INDEX,
                unique=True,
                partialFilterExpression={"linkPrecedence": LinkPrecedence.PRIMARY.value},
            )
            await self._col.create_index(
                [("linkedId", ASCENDING), ("createdAt", ASCENDING), ("_id", ASCENDING)]
            )
        logger.info("MongoDB indexes ensured on collection %s", self._col.name)

    async def ping(self) -> bool:
        try:
            await self._client.admin.command("ping")
        except PyMongoError as exc:
            logger.warning("Contact store ping failed: %s", exc)
            return False
        return True

    def close(self) -> None:
        self._client.close()
        logger.info("MongoDB connection closed")


def _is_primary_fingerprint_conflict(exc: DuplicateKeyError) -> bool:
    # Older servers omit keyPattern; the index name is always in errmsg.
    details = exc.details or {}
    if "fingerprint" in (details.get("keyPattern") or {}):
        return True
    errmsg = details.get("errmsg") or str(exc)
    return PRIMARY_FINGERPRINT_INDEX in errmsg
