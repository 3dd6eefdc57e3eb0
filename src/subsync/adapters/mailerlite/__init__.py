"""Public interface for the MailerLite adapter."""

from __future__ import annotations

from .client import MailerLiteService
from .schema import SubscriberListResponse, SubscriberPayload, SubscriberResponse
from .translator import build_fields_payload, parse_subscriber

__all__ = [
    "MailerLiteService",
    "SubscriberListResponse",
    "SubscriberPayload",
    "SubscriberResponse",
    "build_fields_payload",
    "parse_subscriber",
]
