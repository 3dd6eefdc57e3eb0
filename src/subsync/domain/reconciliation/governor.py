"""Rate and quota governor for every call made to the secondary service."""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, date, datetime, timedelta
from logging import getLogger

from subsync.domain.errors import (
    FatalConfigError,
    QuotaExhaustedError,
    RateLimitError,
    RateLimitSignal,
    TransientUpstreamError,
)
from subsync.domain.model import JsonValue, PauseReason, utcnow

log = getLogger(__name__)

type Clock = Callable[[], datetime]
type Sleep = Callable[[float], None]


@dataclass(slots=True, frozen=True, kw_only=True)
class GovernorPolicy:
    max_retries: int = 4
    base_delay: float = 0.25
    max_delay: float = 8.0
    cooldown: timedelta = timedelta(seconds=60)
    safety_margin: timedelta = timedelta(seconds=10)
    daily_quota: int | None = None

    def backoff(self, attempt: int) -> float:
        return min(self.base_delay * 2**attempt, self.max_delay)


def next_utc_midnight(now: datetime) -> datetime:
    tomorrow = now.astimezone(UTC).date() + timedelta(days=1)
    return datetime(tomorrow.year, tomorrow.month, tomorrow.day, tzinfo=UTC)


@dataclass(slots=True, kw_only=True)
class QuotaTracker:
    """Calls spent against a daily cap; persisted between invocations as a document."""

    limit: int | None
    day: date | None = None
    used: int = 0

    def _roll(self, now: datetime) -> None:
        today = now.astimezone(UTC).date()
        if self.day != today:
            self.day = today
            self.used = 0

    def exhausted(self, now: datetime) -> bool:
        self._roll(now)
        return self.limit is not None and self.used >= self.limit

    def consume(self, now: datetime) -> None:
        self._roll(now)
        self.used += 1

    def to_document(self) -> dict[str, JsonValue]:
        return {"day": self.day.isoformat() if self.day else None, "used": self.used}

    @classmethod
    def from_document(
        cls, document: dict[str, JsonValue] | None, *, limit: int | None
    ) -> QuotaTracker:
        if not document:
            return cls(limit=limit)
        raw_day = document.get("day")
        raw_used = document.get("used")
        return cls(
            limit=limit,
            day=date.fromisoformat(raw_day) if isinstance(raw_day, str) else None,
            used=raw_used if isinstance(raw_used, int) else 0,
        )


@dataclass(slots=True, kw_only=True)
class Governor:
    """Funnels secondary calls through retry, pause and time-budget bookkeeping."""

    policy: GovernorPolicy = field(default_factory=GovernorPolicy)
    max_duration: timedelta = timedelta(minutes=2)
    clock: Clock = utcnow
    sleep: Sleep = time.sleep
    quota: QuotaTracker | None = None
    blocked_until: datetime | None = None
    blocked_reason: PauseReason = PauseReason.NONE
    started_at: datetime = field(init=False)
    calls: int = field(default=0, init=False)

    def __post_init__(self) -> None:
        self.started_at = self.clock()
        if self.blocked_until is not None and self.blocked_reason is PauseReason.NONE:
            self.blocked_reason = PauseReason.RATE_LIMIT

    @property
    def safety_margin(self) -> timedelta:
        return min(self.policy.safety_margin, self.max_duration / 10)

    def elapsed(self) -> timedelta:
        return self.clock() - self.started_at

    def has_budget(self) -> bool:
        """Return whether a new unit of work may start within the time budget."""

        return self.elapsed() < self.max_duration - self.safety_margin

    def call[T](self, operation: Callable[[], T], *, label: str = "secondary call") -> T:
        self._check_blocked()
        for attempt in range(self.policy.max_retries + 1):
            self._spend()
            try:
                return operation()
            except RateLimitSignal:
                if attempt == self.policy.max_retries:
                    break
                delay = self.policy.backoff(attempt)
                log.warning(
                    f"Rate limited on {label}; retry {attempt + 1}/{self.policy.max_retries} "
                    f"in {delay:.2f}s"
                )
                self.sleep(delay)
            except QuotaExhaustedError as exc:
                next_run_at = exc.next_run_at or next_utc_midnight(self.clock())
                self._block(next_run_at, PauseReason.QUOTA_EXHAUSTED)
                raise QuotaExhaustedError(str(exc), next_run_at=next_run_at) from exc

        pause = max(self.policy.cooldown, timedelta(seconds=self.policy.backoff(attempt)))
        next_run_at = self.clock() + pause
        self._block(next_run_at, PauseReason.RATE_LIMIT)
        log.warning("Rate limit persisted on %s; pausing until %s", label, next_run_at)
        raise RateLimitError(f"rate limited on {label}", next_run_at=next_run_at)

    def preflight(self, ping: Callable[[], None]) -> None:
        """Check the secondary service is reachable before any work starts."""

        try:
            self.call(ping, label="preflight")
        except TransientUpstreamError as exc:
            raise FatalConfigError(f"secondary service unreachable: {exc}") from exc

    def _check_blocked(self) -> None:
        now = self.clock()
        if self.blocked_until is None or now >= self.blocked_until:
            return
        if self.blocked_reason is PauseReason.QUOTA_EXHAUSTED:
            raise QuotaExhaustedError("daily quota exhausted", next_run_at=self.blocked_until)
        raise RateLimitError("rate limit cooldown in effect", next_run_at=self.blocked_until)

    def _spend(self) -> None:
        now = self.clock()
        if self.quota is not None:
            if self.quota.exhausted(now):
                next_run_at = next_utc_midnight(now)
                self._block(next_run_at, PauseReason.QUOTA_EXHAUSTED)
                raise QuotaExhaustedError("daily quota exhausted", next_run_at=next_run_at)
            self.quota.consume(now)
        self.calls += 1

    def _block(self, until: datetime, reason: PauseReason) -> None:
        self.blocked_until = until
        self.blocked_reason = reason
