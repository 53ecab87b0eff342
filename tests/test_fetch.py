import asyncio
import json
from datetime import date

import httpx
import pytest

from recordwatch.fetch.fetcher import JsonEndpointFetcher
from recordwatch.observability.metrics import MetricsRegistry
from recordwatch.tracking.models import FetchFailure, FetchSuccess

DAY = date(2024, 1, 1)


def test_fetch_file_scheme(tmp_path):
    (tmp_path / "2024-01-01.json").write_text(
        json.dumps([{"name": "John Smith", "dateOfDeath": "2023-12-30", "fathersName": "Omar"}]),
        encoding="utf-8",
    )
    fetcher = JsonEndpointFetcher(url_template=f"file://{tmp_path}/{{date}}.json")

    result = asyncio.run(fetcher.fetch(DAY))
    assert isinstance(result, FetchSuccess)
    assert result.records[0].name == "John Smith"
    assert result.records[0].fathers_name == "Omar"

    missing = asyncio.run(fetcher.fetch(date(2024, 1, 2)))
    assert isinstance(missing, FetchFailure)


def test_fetch_http_records_object():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(str(request.url))
        return httpx.Response(200, json={"records": [{"name": "Jane Doe", "gender": "female"}]})

    async def _run():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            fetcher = JsonEndpointFetcher(url_template="https://registry.test/records?date={date}", client=client)
            return await fetcher.fetch(DAY)

    result = asyncio.run(_run())
    assert isinstance(result, FetchSuccess)
    assert result.records[0].gender == "female"
    assert seen == ["https://registry.test/records?date=2024-01-01"]


@pytest.mark.parametrize(
    "response, fragment",
    [
        (httpx.Response(503, text="busy"), "HTTP 503"),
        (httpx.Response(200, text="<html>"), ""),
        (httpx.Response(200, json={"records": "nope"}), "Expected a list"),
    ],
)
def test_fetch_http_failures(response, fragment):
    async def _run():
        transport = httpx.MockTransport(lambda request: response)
        async with httpx.AsyncClient(transport=transport) as client:
            fetcher = JsonEndpointFetcher(url_template="https://registry.test/{date}", client=client)
            return await fetcher.fetch(DAY)

    result = asyncio.run(_run())
    assert isinstance(result, FetchFailure)
    assert fragment in result.message
    assert result.message


def test_transport_errors_are_retried_then_reported():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        raise httpx.ConnectError("connection refused", request=request)

    metrics = MetricsRegistry()

    async def _run():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            fetcher = JsonEndpointFetcher(
                url_template="https://registry.test/{date}",
                client=client,
                max_attempts=3,
                backoff_seconds=0,
                metrics=metrics,
            )
            return await fetcher.fetch(DAY)

    result = asyncio.run(_run())
    assert isinstance(result, FetchFailure)
    assert "connection refused" in result.message
    assert len(calls) == 3
    assert metrics.get("fetch_retries") == 3


def test_url_template_requires_date_placeholder():
    with pytest.raises(ValueError):
        JsonEndpointFetcher(url_template="https://registry.test/records")
