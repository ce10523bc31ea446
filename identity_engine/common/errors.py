"""Exception taxonomy for the identity linking service.

Every error raised across the service boundary derives from
``IdentityEngineError`` and carries the HTTP status the transport layer
renders it with.  ``PrimaryRaceLost`` is internal: the linker absorbs it
and it never reaches a caller.
"""

from __future__ import annotations


class IdentityEngineError(Exception):
    """Base class for all identity service errors."""

    http_status: int = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(IdentityEngineError):
    """The identify request carries no usable identifying field."""

    http_status = 400


class ContactNotFound(IdentityEngineError):
    """No contact exists with the requested id."""

    http_status = 404


class FingerprintUnavailable(IdentityEngineError):
    """The fingerprint provider failed or returned no visitor identifier."""

    http_status = 503


class StoreError(IdentityEngineError):
    """The contact store could not complete a read or write."""

    http_status = 503


class PrimaryRaceLost(IdentityEngineError):
    """A concurrent request already inserted the primary for this fingerprint."""

    def __init__(self, fingerprint: str) -> None:
        super().__init__(f"Primary contact already exists for fingerprint {fingerprint}")
        self.fingerprint = fingerprint
