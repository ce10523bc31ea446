"""Unit tests for the MongoDB contact store, with the motor collection mocked."""

from __future__ import annotations

from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
from pymongo.errors import DuplicateKeyError, ServerSelectionTimeoutError

from identity_engine.common.errors import PrimaryRaceLost, StoreError
from identity_engine.storage.models.contact import Contact
from identity_engine.storage.mongodb_contact_store import (
    PRIMARY_FINGERPRINT_INDEX,
    MongoContactStore,
)


class _Cursor:
    def __init__(self, docs: list[dict[str, Any]]) -> None:
        self._docs = docs

    def sort(self, *_args: Any, **_kwargs: Any) -> _Cursor:
        return self

    def __aiter__(self) -> _Cursor:
        self._iter = iter(self._docs)
        return self

    async def __anext__(self) -> dict[str, Any]:
        try:
            return next(self._iter)
        except StopIteration:
            raise StopAsyncIteration from None


@pytest.fixture
def collection() -> MagicMock:
    col = MagicMock()
    col.name = "contacts"
    col.find_one = AsyncMock(return_value=None)
    col.insert_one = AsyncMock()
    col.create_index = AsyncMock()
    return col


@pytest.fixture
def mongo_store(collection: MagicMock) -> MongoContactStore:
    store = MongoContactStore("mongodb://localhost:27017", timeout_ms=100)
    store._col = collection
    return store


class TestReads:
    @pytest.mark.asyncio
    async def test_find_by_fingerprint_only_matches_primaries(
        self, mongo_store: MongoContactStore, collection: MagicMock
    ) -> None:
        primary = Contact.new_primary("F", "a@x.com", None)
        collection.find_one.return_value = primary.to_document()

        found = await mongo_store.find_one_by_fingerprint("F")

        assert found == primary
        collection.find_one.assert_awaited_once_with(
            {"fingerprint": "F", "linkPrecedence": "primary"}
        )

    @pytest.mark.asyncio
    async def test_find_by_fingerprint_returns_none_when_absent(
        self, mongo_store: MongoContactStore
    ) -> None:
        assert await mongo_store.find_one_by_fingerprint("F") is None

    @pytest.mark.asyncio
    async def test_secondaries_are_returned_in_cursor_order(
        self, mongo_store: MongoContactStore, collection: MagicMock
    ) -> None:
        primary = Contact.new_primary("F", "a@x.com", None)
        s1 = Contact.new_secondary(primary, None, "111")
        s2 = Contact.new_secondary(primary, None, "222")
        collection.find.return_value = _Cursor([s1.to_document(), s2.to_document()])

        found = await mongo_store.find_secondaries_by_primary(primary.id)

        assert [c.id for c in found] == [s1.id, s2.id]
        collection.find.assert_called_once_with(
            {"linkedId": primary.id, "linkPrecedence": "secondary"}
        )

    @pytest.mark.asyncio
    async def test_driver_errors_become_store_errors(
        self, mongo_store: MongoContactStore, collection: MagicMock
    ) -> None:
        collection.find_one.side_effect = ServerSelectionTimeoutError("no servers")

        with pytest.raises(StoreError):
            await mongo_store.get_contact("c-1")


class TestWrites:
    @pytest.mark.asyncio
    async def test_insert_primary_writes_document(
        self, mongo_store: MongoContactStore, collection: MagicMock
    ) -> None:
        primary = Contact.new_primary("F", "a@x.com", None)

        assert await mongo_store.insert_primary(primary) is primary

        doc = collection.insert_one.await_args.args[0]
        assert doc["_id"] == primary.id
        assert doc["linkPrecedence"] == "primary"

    @pytest.mark.asyncio
    async def test_duplicate_fingerprint_is_race_lost(
        self, mongo_store: MongoContactStore, collection: MagicMock
    ) -> None:
        collection.insert_one.side_effect = DuplicateKeyError(
            "E11000 duplicate key error", 11000, {"keyPattern": {"fingerprint": 1}}
        )

        with pytest.raises(PrimaryRaceLost) as excinfo:
            await mongo_store.insert_primary(Contact.new_primary("F", "a@x.com", None))

        assert excinfo.value.fingerprint == "F"

    @pytest.mark.asyncio
    async def test_duplicate_on_fingerprint_index_without_key_pattern_is_race_lost(
        self, mongo_store: MongoContactStore, collection: MagicMock
    ) -> None:
        errmsg = (
            "E11000 duplicate key error collection: contacts.contacts "
            f"index: {PRIMARY_FINGERPRINT_INDEX} dup key: {{ fingerprint: \"F\" }}"
        )
        collection.insert_one.side_effect = DuplicateKeyError(errmsg, 11000, {"errmsg": errmsg})

        with pytest.raises(PrimaryRaceLost):
            await mongo_store.insert_primary(Contact.new_primary("F", "a@x.com", None))

    @pytest.mark.asyncio
    async def test_duplicate_id_is_store_error(
        self, mongo_store: MongoContactStore, collection: MagicMock
    ) -> None:
        collection.insert_one.side_effect = DuplicateKeyError(
            "E11000 duplicate key error", 11000, {"keyPattern": {"_id": 1}}
        )

        with pytest.raises(StoreError):
            await mongo_store.insert_primary(Contact.new_primary("F", "a@x.com", None))

    @pytest.mark.asyncio
    async def test_insert_secondary_writes_link(
        self, mongo_store: MongoContactStore, collection: MagicMock
    ) -> None:
        primary = Contact.new_primary("F", "a@x.com", None)
        secondary = Contact.new_secondary(primary, None, "555")

        await mongo_store.insert_secondary(secondary)

        doc = collection.insert_one.await_args.args[0]
        assert doc["linkedId"] == primary.id
        assert doc["linkPrecedence"] == "secondary"


class TestIndexes:
    @pytest.mark.asyncio
    async def test_primary_fingerprint_index_is_partial_and_unique(
        self, mongo_store: MongoContactStore, collection: MagicMock
    ) -> None:
        await mongo_store.ensure_indexes()

        first = collection.create_index.await_args_list[0]
        assert first.kwargs["name"] == PRIMARY_FINGERPRINT_INDEX
        assert first.kwargs["unique"] is True
        assert first.kwargs["partialFilterExpression"] == {"linkPrecedence": "primary"}
