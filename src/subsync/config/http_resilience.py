"""Retry and rate-limit settings for outbound HTTP clients."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field

import httpx

_IDEMPOTENT_AND_UPSERT_METHODS = frozenset({"GET", "HEAD", "OPTIONS", "POST", "PUT"})


@dataclass(slots=True, frozen=True)
class RetryPolicy:
    """Transport-level retries; failures left after ``total`` attempts surface to callers."""

    total: int = 4
    backoff_factor: float = 0.25
    max_backoff_wait: float = 30.0
    respect_retry_after_header: bool = True
    # MailerLite's POST /subscribers is an upsert, so replaying it is safe
    allowed_methods: frozenset[str] = _IDEMPOTENT_AND_UPSERT_METHODS
    status_forcelist: frozenset[int] = frozenset({500, 502, 503, 504})
    retry_on_exceptions: tuple[type[httpx.HTTPError], ...] = (
        httpx.TimeoutException,
        httpx.NetworkError,
        httpx.RemoteProtocolError,
    )
    backoff_jitter: float = 1.0


@dataclass(slots=True, frozen=True)
class RateLimit:
    max_calls: int
    per_seconds: float


@dataclass(slots=True, frozen=True)
class ResilienceConfig:
    name: str
    base_url: str | None = None
    timeout_seconds: float = 30.0
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    ratelimit: RateLimit | None = None
    default_headers: Mapping[str, str] | None = None
