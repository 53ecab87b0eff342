"""Fetch adapters that turn one date into records or a failure message."""
from __future__ import annotations

import asyncio
import contextlib
import time
from datetime import date
from pathlib import Path
from typing import AsyncIterator, List, Optional, Protocol
from urllib.parse import urlparse

import httpx
import structlog
from pydantic import ValidationError

from recordwatch.observability.metrics import MetricsRegistry
from recordwatch.observability.tracing import log_fetch_result, log_retry, span
from recordwatch.tracking.models import DeathRecord, FetchFailure, FetchResult, FetchSuccess

LOGGER = structlog.get_logger(__name__)


class Fetcher(Protocol):
    """Anything that can retrieve the records published for one date."""

    async def fetch(self, day: date) -> FetchResult:
        ...


def _read_file(url: str) -> httpx.Response:
    parsed = urlparse(url)
    location = (parsed.netloc + parsed.path) or parsed.path
    target = Path(location)
    if not target.is_absolute():
        target = Path.cwd() / target
    text = target.read_text(encoding="utf-8")
    return httpx.Response(200, text=text, request=httpx.Request("GET", url))


def parse_records(payload: object) -> List[DeathRecord]:
    """Accept either a bare JSON list or an object with a ``records`` list."""
    if isinstance(payload, dict):
        payload = payload.get("records", [])
    if not isinstance(payload, list):
        raise ValueError(f"Expected a list of records, got {type(payload).__name__}")
    return [DeathRecord.model_validate(item) for item in payload]


class JsonEndpointFetcher:
    """Fetches ``url_template.format(date=...)`` and decodes JSON records.

    ``file://`` templates are read from disk, anything else goes through the
    shared ``httpx.AsyncClient``.  Transport errors are retried with
    exponential backoff; every other problem becomes a ``FetchFailure``.
    """

    def __init__(
        self,
        *,
        url_template: str,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
        max_attempts: int = 4,
        backoff_seconds: float = 1.0,
        metrics: Optional[MetricsRegistry] = None,
    ) -> None:
        if "{date}" not in url_template:
            raise ValueError("url_template must contain a {date} placeholder")
        self._url_template = url_template
        self._client = client
        self._timeout = timeout
        self._max_attempts = max(1, max_attempts)
        self._backoff = backoff_seconds
        self._metrics = metrics or MetricsRegistry()

    def url_for(self, day: date) -> str:
        return self._url_template.format(date=day.isoformat())

    async def _get(self, url: str) -> httpx.Response:
        if urlparse(url).scheme == "file":
            return await asyncio.to_thread(_read_file, url)
        if self._client is None:
            raise RuntimeError("No HTTP client available")
        delay = self._backoff
        for attempt in range(1, self._max_attempts + 1):
            try:
                start = time.perf_counter()
                response = await self._client.get(url, timeout=self._timeout)
                log_fetch_result(
                    url=url,
                    status=response.status_code,
                    bytes_read=len(response.content or b""),
                    elapsed_ms=int((time.perf_counter() - start) * 1000),
                )
                return response
            except httpx.TransportError as exc:
                self._metrics.incr("fetch_retries")
                log_retry(attempt=attempt, url=url, reason=str(exc))
                if attempt == self._max_attempts:
                    raise
                await asyncio.sleep(delay)
                delay *= 2

    async def fetch(self, day: date) -> FetchResult:
        url = self.url_for(day)
        try:
            with span(name="fetch", day=day.isoformat()):
                response = await self._get(url)
            response.raise_for_status()
            records = parse_records(response.json())
        except httpx.HTTPStatusError as exc:
            return FetchFailure(message=f"HTTP {exc.response.status_code} for {url}")
        except (httpx.HTTPError, OSError, ValidationError, ValueError) as exc:
            LOGGER.debug("fetch_error", url=url, error=str(exc))
            return FetchFailure(message=str(exc) or exc.__class__.__name__)
        return FetchSuccess(records=tuple(records))


@contextlib.asynccontextmanager
async def create_http_client(*, user_agent: str, timeout: float, max_connections: int) -> AsyncIterator[httpx.AsyncClient]:
    """Yield a configured ``httpx.AsyncClient`` for the duration of the context."""
    headers = {"User-Agent": user_agent, "Accept": "application/json"}
    limits = httpx.Limits(max_connections=max_connections, max_keepalive_connections=max_connections)
    async with httpx.AsyncClient(headers=headers, limits=limits, timeout=timeout) as client:
        yield client
