"""Builds the merged ``ContactView`` for a resolved identity cluster.

Ordering is part of the response contract: the primary's values come first,
then the secondary created by the current call (if any), then previously
stored secondaries in store order.  Duplicate values are preserved because
every observation is its own record; missing values are dropped rather than
emitted as empty strings.
"""

from __future__ import annotations

from collections.abc import Sequence

from identity_engine.storage.models.contact import Contact, ContactView


def assemble_view(
    primary: Contact,
    secondaries: Sequence[Contact] = (),
    new_secondary: Contact | None = None,
) -> ContactView:
    ordered = [primary]
    if new_secondary is not None:
        ordered.append(new_secondary)
    ordered.extend(s for s in secondaries if new_secondary is None or s.id != new_secondary.id)

    linked = ordered[1:]
    return ContactView(
        primary_contact_id=primary.id,
        emails=[c.email for c in ordered if c.email],
        phone_numbers=[c.phone_number for c in ordered if c.phone_number],
        secondary_contact_ids=[c.id for c in linked],
    )
