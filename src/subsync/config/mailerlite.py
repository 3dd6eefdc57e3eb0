"""MailerLite configuration values."""

from __future__ import annotations

import os
from dataclasses import dataclass, field

from .env import require_env_vars
from .http_resilience import RateLimit, ResilienceConfig, RetryPolicy

MAILERLITE_BASE_URL = "https://connect.mailerlite.com/api"
MAILERLITE_TIMEOUT_SECONDS = 20.0
# documented account-wide limit is 120 requests per minute
MAILERLITE_RATE_LIMIT = RateLimit(max_calls=120, per_seconds=60.0)


def default_resilience_config(*, base_url: str = MAILERLITE_BASE_URL) -> ResilienceConfig:
    return ResilienceConfig(
        name="mailerlite",
        base_url=base_url,
        timeout_seconds=MAILERLITE_TIMEOUT_SECONDS,
        # 429 is not retried here; the rate governor owns backoff and pausing
        retry=RetryPolicy(),
        ratelimit=MAILERLITE_RATE_LIMIT,
        default_headers={"Accept": "application/json"},
    )


@dataclass(frozen=True)
class MailerLiteConfig:
    """Holds MailerLite API configuration values."""

    api_key: str
    base_url: str = MAILERLITE_BASE_URL
    resilience: ResilienceConfig = field(default_factory=default_resilience_config)


def get_mailerlite_config(*, resilience: ResilienceConfig | None = None) -> MailerLiteConfig:
    values = require_env_vars(("MAILERLITE_API_KEY",))
    base_url = os.getenv("MAILERLITE_BASE_URL") or MAILERLITE_BASE_URL
    return MailerLiteConfig(
        api_key=values["MAILERLITE_API_KEY"],
        base_url=base_url,
        resilience=resilience or default_resilience_config(base_url=base_url),
    )
