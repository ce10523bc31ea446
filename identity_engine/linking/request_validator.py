"""Gatekeeping for identify requests before any provider or store call."""

from __future__ import annotations

from identity_engine.common.errors import ValidationError
from identity_engine.storage.models.contact import IdentifyRequest, IdentitySignals


def _present(value: str | None) -> str | None:
    return value if value else None


def validate_identify_request(
    request: IdentifyRequest, request_id: str | None = None
) -> IdentitySignals:
    """Require at least one of email or phone number.

    Empty strings count as absent.  Values are otherwise accepted as opaque
    strings; no email or phone format checks are made.
    """
    email = _present(request.email)
    phone_number = _present(request.phone_number)
    if email is None and phone_number is None:
        raise ValidationError("at least one identifying field required")
    return IdentitySignals(email=email, phone_number=phone_number, request_id=request_id)
