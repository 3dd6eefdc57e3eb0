"""Translate MailerLite subscriber payloads into side records."""

from __future__ import annotations

from subsync.domain.model import (
    EMAIL_FIELD,
    GROUPS_FIELD,
    RESERVED_SECONDARY_FIELDS,
    STATUS_FIELD,
    normalize_email,
)
from subsync.domain.ports import RemoteRecord

from .schema import SubscriberPayload


def parse_subscriber(payload: SubscriberPayload | dict[str, object]) -> RemoteRecord:
    """Flatten a subscriber into ``RemoteRecord`` fields.

    Custom fields keep their MailerLite keys. The subscription ``status`` and the
    sorted group names are exposed read-only; neither is ever written through
    ``fields``.
    """

    subscriber = (
        payload
        if isinstance(payload, SubscriberPayload)
        else SubscriberPayload.model_validate(payload)
    )
    email = normalize_email(subscriber.email)
    fields: dict[str, object] = dict(subscriber.fields)
    fields[EMAIL_FIELD] = email
    if subscriber.status is not None:
        fields[STATUS_FIELD] = subscriber.status
    if subscriber.groups is not None:
        fields[GROUPS_FIELD] = sorted(group.name for group in subscriber.groups)
    return RemoteRecord(id=subscriber.id, email=email, fields=fields)


def build_fields_payload(fields: dict[str, object]) -> dict[str, object]:
    """Drop keys MailerLite owns (email, status, groups) from an outgoing ``fields`` object."""

    return {
        key: value
        for key, value in fields.items()
        if key != EMAIL_FIELD and key not in RESERVED_SECONDARY_FIELDS
    }
