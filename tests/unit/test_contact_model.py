"""Unit tests for contact records and wire models."""

from __future__ import annotations

from datetime import datetime

import pytest
from pydantic import ValidationError

from identity_engine.storage.models.contact import (
    Contact,
    ContactView,
    IdentifyRequest,
    LinkPrecedence,
)


class TestLinkage:
    def test_secondary_links_to_primary(self) -> None:
        primary = Contact.new_primary("F", "a@x.com", None)
        secondary = Contact.new_secondary(primary, None, "555")

        assert secondary.link_precedence is LinkPrecedence.SECONDARY
        assert secondary.linked_id == primary.id
        assert secondary.fingerprint == "F"
        assert secondary.id != primary.id

    def test_secondary_of_secondary_is_refused(self) -> None:
        primary = Contact.new_primary("F", "a@x.com", None)
        secondary = Contact.new_secondary(primary, None, "555")

        with pytest.raises(ValueError, match="not a primary"):
            Contact.new_secondary(secondary, "b@x.com", None)

    def test_primary_with_linked_id_is_invalid(self) -> None:
        with pytest.raises(ValidationError):
            Contact(fingerprint="F", link_precedence="primary", linked_id="other")

    def test_secondary_without_linked_id_is_invalid(self) -> None:
        with pytest.raises(ValidationError):
            Contact(fingerprint="F", link_precedence="secondary")


class TestDocumentLayout:
    def test_to_document_uses_stored_field_names(self) -> None:
        primary = Contact.new_primary("F", "a@x.com", "555")

        doc = primary.to_document()

        assert doc["_id"] == primary.id
        assert doc["phoneNumber"] == "555"
        assert doc["linkPrecedence"] == "primary"
        assert doc["linkedId"] is None
        assert doc["createdAt"] == doc["updatedAt"]

    def test_naive_datetimes_from_store_become_utc(self) -> None:
        contact = Contact.model_validate(
            {
                "_id": "c-1",
                "fingerprint": "F",
                "email": None,
                "phoneNumber": "555",
                "linkPrecedence": "primary",
                "linkedId": None,
                "createdAt": datetime(2024, 1, 1, 12, 0),
                "updatedAt": datetime(2024, 1, 1, 12, 0),
            }
        )

        assert contact.id == "c-1"
        assert contact.created_at.tzinfo is not None


class TestWireModels:
    def test_identify_request_accepts_camel_case(self) -> None:
        request = IdentifyRequest.model_validate({"email": "a@x.com", "phoneNumber": "555"})

        assert request.phone_number == "555"

    def test_identify_request_ignores_unknown_fields(self) -> None:
        request = IdentifyRequest.model_validate({"email": "a@x.com", "name": "Max"})

        assert request.email == "a@x.com"

    def test_contact_view_serialises_camel_case(self) -> None:
        view = ContactView(primary_contact_id="p", emails=["a@x.com"])

        assert view.model_dump(by_alias=True) == {
            "primaryContactId": "p",
            "emails": ["a@x.com"],
            "phoneNumbers": [],
            "secondaryContactIds": [],
        }
