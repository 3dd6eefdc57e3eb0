"""HTTP client for the MailerLite subscriber API."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from logging import getLogger
from typing import TYPE_CHECKING, Final
from urllib.parse import quote

import httpx
import pydantic

from subsync.adapters.http_resilience import ResilienceConfig, ResilientClient
from subsync.config.mailerlite import MailerLiteConfig, get_mailerlite_config
from subsync.domain.errors import (
    AuthenticationError,
    RateLimitSignal,
    TransientUpstreamError,
    UpstreamError,
)
from subsync.domain.ports import RecordPage

from .schema import (
    ErrorResponse,
    GroupListResponse,
    SubscriberListResponse,
    SubscriberResponse,
)
from .translator import build_fields_payload, parse_subscriber

if TYPE_CHECKING:
    from collections.abc import Callable, Coroutine, Mapping, Sequence
    from types import TracebackType

    from subsync.domain.ports import RemoteRecord, SecondaryService

log = getLogger(__name__)

_AUTH_FAILURES: Final[frozenset[int]] = frozenset({401, 403})
_GROUP_PAGE_SIZE: Final[int] = 100


def _default_client_factory(config: ResilienceConfig) -> ResilientClient:
    return ResilientClient(config)


@dataclass(slots=True)
class MailerLiteService:
    """Synchronous facade over the async MailerLite API.

    Each call maps a single HTTP exchange onto the engine's error taxonomy: 429
    becomes ``RateLimitSignal`` (the governor decides whether to retry), 401/403
    ``AuthenticationError``, 5xx and network failures ``TransientUpstreamError``
    and any other 4xx ``UpstreamError``.
    """

    config: MailerLiteConfig = field(default_factory=get_mailerlite_config)
    client_factory: Callable[[ResilienceConfig], ResilientClient] = field(
        default=_default_client_factory
    )
    _runner: asyncio.Runner | None = field(default=None, init=False, repr=False)
    _client: ResilientClient | None = field(default=None, init=False, repr=False)
    _group_ids: dict[str, str] | None = field(default=None, init=False, repr=False)

    def __enter__(self) -> MailerLiteService:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    def close(self) -> None:
        if self._runner is None:
            return
        if self._client is not None:
            self._runner.run(self._client.aclose())
            self._client = None
        self._runner.close()
        self._runner = None

    def ping(self) -> None:
        self._run(self._request("GET", "/subscribers", params={"limit": 1}))

    def list_page(self, cursor: str | None, limit: int) -> RecordPage:
        params: dict[str, str | int] = {"limit": limit}
        if cursor:
            params["cursor"] = cursor
        response = self._run(self._request("GET", "/subscribers", params=params))
        page = self._parse(SubscriberListResponse, response)
        records = tuple(parse_subscriber(subscriber) for subscriber in page.data)
        return RecordPage(records=records, next_cursor=page.meta.next_cursor)

    def get(self, record_id: str) -> RemoteRecord | None:
        return self._fetch_one(record_id)

    def find_by_email(self, email: str) -> RemoteRecord | None:
        return self._fetch_one(email)

    def create(self, email: str, fields: Mapping[str, object]) -> str:
        body = {"email": email, "fields": build_fields_payload(dict(fields))}
        response = self._run(self._request("POST", "/subscribers", json=body))
        subscriber = self._parse(SubscriberResponse, response).data
        log.debug(f"MailerLite upserted subscriber {subscriber.id} for {email}")
        return subscriber.id

    def update(self, record_id: str, fields: Mapping[str, object]) -> None:
        body = {"fields": build_fields_payload(dict(fields))}
        self._run(self._request("PUT", f"/subscribers/{quote(record_id, safe='')}", json=body))

    def set_groups(
        self, record_id: str, *, add: Sequence[str], remove: Sequence[str]
    ) -> None:
        subscriber = quote(record_id, safe="")
        group_ids = self._groups() if add or remove else {}
        for name in add:
            group_id = group_ids.get(name)
            if group_id is None:
                log.warning(f"MailerLite has no group named {name!r}; {record_id} not added")
                continue
            path = f"/subscribers/{subscriber}/groups/{quote(group_id, safe='')}"
            self._run(self._request("POST", path))
        for name in remove:
            group_id = group_ids.get(name)
            if group_id is None:
                continue
            path = f"/subscribers/{subscriber}/groups/{quote(group_id, safe='')}"
            self._run(self._request("DELETE", path, missing_ok=True))

    def _groups(self) -> dict[str, str]:
        """Group name to id, read once per service instance."""

        if self._group_ids is None:
            group_ids: dict[str, str] = {}
            page = 1
            while True:
                params = {"limit": _GROUP_PAGE_SIZE, "page": page}
                response = self._run(self._request("GET", "/groups", params=params))
                listing = self._parse(GroupListResponse, response)
                group_ids.update((group.name, group.id) for group in listing.data)
                if not listing.data or not listing.links.next:
                    break
                page += 1
            self._group_ids = group_ids
        return self._group_ids

    def _fetch_one(self, id_or_email: str) -> RemoteRecord | None:
        path = f"/subscribers/{quote(id_or_email, safe='@')}"
        response = self._run(self._request("GET", path, missing_ok=True))
        if response is None:
            return None
        return parse_subscriber(self._parse(SubscriberResponse, response).data)

    def _run[T](self, coroutine: Coroutine[object, object, T]) -> T:
        if self._runner is None:
            self._runner = asyncio.Runner()
        return self._runner.run(coroutine)

    def _http(self) -> ResilientClient:
        if self._client is None:
            self._client = self.client_factory(self.config.resilience)
        return self._client

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Mapping[str, str | int] | None = None,
        json: object = None,
        missing_ok: bool = False,
    ) -> httpx.Response | None:
        url = f"{self.config.base_url.rstrip('/')}{path}"
        headers = {
            "Authorization": f"Bearer {self.config.api_key}",
            "Accept": "application/json",
        }
        try:
            response = await self._http().request(
                method, url, params=params, json=json, headers=headers
            )
        except httpx.TransportError as exc:
            raise TransientUpstreamError(f"MailerLite {method} {path} failed: {exc}") from exc

        status = response.status_code
        if status == 404 and missing_ok:
            return None
        if status < 400:
            return response
        if status == 429:
            raise RateLimitSignal(f"MailerLite rate limit on {method} {path}")
        if status in _AUTH_FAILURES:
            raise AuthenticationError(f"MailerLite rejected the API key ({status})")
        if status >= 500:
            raise TransientUpstreamError(f"MailerLite {method} {path} returned {status}")
        message = _error_message(response)
        log.error(f"MailerLite {method} {path} returned {status}: {message}")
        raise UpstreamError(f"MailerLite {method} {path} returned {status}: {message}")

    @staticmethod
    def _parse[TModel: pydantic.BaseModel](
        model: type[TModel], response: httpx.Response | None
    ) -> TModel:
        if response is None:
            raise UpstreamError("MailerLite returned no content")
        try:
            return model.model_validate(response.json())
        except (ValueError, pydantic.ValidationError) as exc:
            raise UpstreamError(f"unexpected MailerLite response payload: {exc}") from exc


def _error_message(response: httpx.Response) -> str:
    try:
        return ErrorResponse.model_validate(response.json()).describe()
    except (ValueError, pydantic.ValidationError):
        return response.text or response.reason_phrase


if TYPE_CHECKING:
    _service_check: SecondaryService = MailerLiteService()
