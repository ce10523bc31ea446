"""Contact records and merged identity views.

Defines the Pydantic v2 models shared by the linker, the MongoDB store, and
the HTTP layer.  A ``Contact`` is stored once and never updated: the first
observation of a fingerprint becomes the cluster's *primary*, and every later
observation is appended as a *secondary* pointing at it.  Field aliases match
the camelCase document layout and wire format.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class LinkPrecedence(StrEnum):
    """Role of a contact within its identity cluster."""

    PRIMARY = "primary"
    SECONDARY = "secondary"


# ---------------------------------------------------------------------------
# Stored entity
# ---------------------------------------------------------------------------


class Contact(BaseModel):
    """A single observation of an identity, as persisted in the contact store.

    ``linked_id`` is set if and only if the contact is a secondary, and then
    references the cluster's primary.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), alias="_id")
    fingerprint: str = Field(..., min_length=1)
    email: str | None = None
    phone_number: str | None = None
    link_precedence: LinkPrecedence
    linked_id: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @field_validator("created_at", "updated_at", mode="before")
    @classmethod
    def _ensure_utc(cls, v: Any) -> datetime:
        """Coerce naive datetimes to UTC."""
        if isinstance(v, datetime) and v.tzinfo is None:
            return v.replace(tzinfo=UTC)
        return v  # type: ignore[return-value]

    @model_validator(mode="after")
    def _check_linkage(self) -> Contact:
        if self.link_precedence is LinkPrecedence.PRIMARY and self.linked_id is not None:
            raise ValueError("a primary contact cannot carry a linkedId")
        if self.link_precedence is LinkPrecedence.SECONDARY and not self.linked_id:
            raise ValueError("a secondary contact requires a linkedId")
        return self

    @property
    def is_primary(self) -> bool:
        return self.link_precedence is LinkPrecedence.PRIMARY

    @classmethod
    def new_primary(
        cls, fingerprint: str, email: str | None, phone_number: str | None
    ) -> Contact:
        now = datetime.now(UTC)
        return cls(
            fingerprint=fingerprint,
            email=email,
            phone_number=phone_number,
            link_precedence=LinkPrecedence.PRIMARY,
            created_at=now,
            updated_at=now,
        )

    @classmethod
    def new_secondary(
        cls, primary: Contact, email: str | None, phone_number: str | None
    ) -> Contact:
        """Build a secondary observation linked to *primary*.

        Secondaries only ever point at a primary, so clusters are one level
        deep.
        """
        if not primary.is_primary:
            raise ValueError(f"contact {primary.id} is not a primary")
        now = datetime.now(UTC)
        return cls(
            fingerprint=primary.fingerprint,
            email=email,
            phone_number=phone_number,
            link_precedence=LinkPrecedence.SECONDARY,
            linked_id=primary.id,
            created_at=now,
            updated_at=now,
        )

    def to_document(self) -> dict[str, Any]:
        """Serialise to the MongoDB document layout (``_id``, camelCase keys)."""
        doc = self.model_dump(by_alias=True)
        doc["linkPrecedence"] = self.link_precedence.value
        return doc


# ---------------------------------------------------------------------------
# Wire models
# ---------------------------------------------------------------------------


class IdentifyRequest(BaseModel):
    """Body of ``POST /identify``.  Both fields optional at the schema level."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    email: str | None = None
    phone_number: str | None = None


class IdentitySignals(BaseModel):
    """Request-time signals handed to the fingerprint provider."""

    model_config = ConfigDict(frozen=True)

    email: str | None = None
    phone_number: str | None = None
    request_id: str | None = None


class ContactView(BaseModel):
    """Merged view of one identity cluster."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    primary_contact_id: str
    emails: list[str] = Field(default_factory=list)
    phone_numbers: list[str] = Field(default_factory=list)
    secondary_contact_ids: list[str] = Field(default_factory=list)


class IdentifyResponse(BaseModel):
    contact: ContactView
