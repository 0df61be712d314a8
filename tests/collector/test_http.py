import asyncio
import logging
import re
from typing import List

import httpx
import pytest

pytest.importorskip("pytest_httpx")

from collector.utils.http import (
    HttpClient,
    HttpError,
    RequestOptions,
    RequestTimeoutError,
    backoff_delay_ms,
    is_network_error,
    is_rate_limit_error,
    redact_url,
    successful_values,
)

URL = "https://api.example.com/resource"


class _RecordingSleep:
    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.mark.asyncio
async def test_json_and_text_bodies(httpx_mock):
    httpx_mock.add_response(url=URL, json={"ok": True})
    httpx_mock.add_response(url=f"{URL}.xml", text="<rss/>", headers={"content-type": "application/xml"})

    async with HttpClient() as http:
        assert await http.request(URL) == {"ok": True}
        assert await http.request(f"{URL}.xml") == "<rss/>"


@pytest.mark.asyncio
async def test_server_errors_are_retried_with_growing_backoff(httpx_mock):
    for _ in range(4):
        httpx_mock.add_response(url=URL, status_code=503, text="unavailable")
    sleep = _RecordingSleep()

    async with HttpClient(sleep=sleep) as http:
        with pytest.raises(HttpError) as exc:
            await http.request(URL, RequestOptions(retries=3, retry_delay_ms=10))

    assert exc.value.status_code == 503
    assert "HTTP 503" in str(exc.value)
    assert len(httpx_mock.get_requests()) == 4
    assert sleep.delays == [0.01, 0.02, 0.04]


@pytest.mark.asyncio
async def test_recovers_after_transient_failure(httpx_mock):
    httpx_mock.add_response(url=URL, status_code=502)
    httpx_mock.add_response(url=URL, json=[1, 2, 3])
    sleep = _RecordingSleep()

    async with HttpClient(sleep=sleep) as http:
        assert await http.request(URL, RequestOptions(retries=2, retry_delay_ms=5)) == [1, 2, 3]

    assert sleep.delays == [0.005]


@pytest.mark.asyncio
async def test_client_errors_fail_without_retry(httpx_mock):
    httpx_mock.add_response(url=URL, status_code=404, text="not found")
    sleep = _RecordingSleep()

    async with HttpClient(sleep=sleep) as http:
        with pytest.raises(HttpError) as exc:
            await http.request(URL, RequestOptions(retries=3))

    assert exc.value.is_client_error
    assert len(httpx_mock.get_requests()) == 1
    assert sleep.delays == []


@pytest.mark.asyncio
async def test_transport_timeout_becomes_request_timeout(httpx_mock):
    httpx_mock.add_exception(httpx.ReadTimeout("slow"), url=URL)

    async with HttpClient() as http:
        with pytest.raises(RequestTimeoutError):
            await http.request(URL, RequestOptions(retries=0, timeout_ms=500))


@pytest.mark.asyncio
async def test_hard_timeout_bounds_each_attempt():
    async def handler(request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(1)
        return httpx.Response(200, json={})

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    http = HttpClient(client)
    try:
        with pytest.raises(RequestTimeoutError) as exc:
            await http.request(URL, RequestOptions(retries=0, timeout_ms=50))
    finally:
        await client.aclose()

    assert "50ms" in str(exc.value)


@pytest.mark.asyncio
async def test_batch_respects_concurrency_limit_and_keeps_order():
    in_flight = 0
    peak = 0

    async def handler(request: httpx.Request) -> httpx.Response:
        nonlocal in_flight, peak
        in_flight += 1
        peak = max(peak, in_flight)
        await asyncio.sleep(0.01)
        in_flight -= 1
        n = int(request.url.path.rsplit("/", 1)[-1])
        if n == 7:
            return httpx.Response(500, text="boom")
        return httpx.Response(200, json={"n": n})

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    http = HttpClient(client)
    urls = [f"https://api.example.com/item/{i}" for i in range(23)]
    try:
        results = await http.request_batch(urls, RequestOptions(retries=0), concurrency_limit=5)
    finally:
        await client.aclose()

    assert peak == 5
    assert [r.url for r in results] == urls
    assert not results[7].ok
    assert isinstance(results[7].error, HttpError)
    assert [v["n"] for v in successful_values(results)] == [i for i in range(23) if i != 7]


@pytest.mark.asyncio
async def test_batch_rejects_zero_concurrency():
    async with HttpClient() as http:
        with pytest.raises(ValueError):
            await http.request_batch(["https://a.example.com"], concurrency_limit=0)


@pytest.mark.asyncio
async def test_json_body_is_encoded(httpx_mock):
    httpx_mock.add_response(url=re.compile(r"https://api\.example\.com/.*"), method="POST", json={})

    async with HttpClient() as http:
        await http.request(URL, RequestOptions(method="POST", body={"q": 1}))

    sent = httpx_mock.get_request()
    assert sent.headers["content-type"] == "application/json"
    assert sent.content == b'{"q": 1}'


def test_error_classifiers():
    assert backoff_delay_ms(1000, 0) == 1000
    assert backoff_delay_ms(1000, 2) == 4000
    assert is_rate_limit_error(HttpError("HTTP 429", 429))
    assert is_network_error(HttpError("HTTP 503", 503))
    assert is_network_error(HttpError("reset"))
    assert not is_network_error(HttpError("HTTP 404", 404))
    assert is_network_error(RuntimeError("Connection refused"))


@pytest.mark.asyncio
async def test_credentials_are_redacted_from_logs(httpx_mock, caplog):
    secret_url = "https://newsapi.example.com/v2/top-headlines?country=us&apiKey=SECRET-KEY-123"
    for _ in range(3):
        httpx_mock.add_response(url=secret_url, status_code=503)

    with caplog.at_level(logging.WARNING, logger="collector.utils.http"):
        async with HttpClient(sleep=_RecordingSleep()) as http:
            with pytest.raises(HttpError):
                await http.request(secret_url, RequestOptions(retries=2, retry_delay_ms=1))

    records = [r for r in caplog.records if r.getMessage() in ("http.retry", "http.failed")]
    assert len(records) == 3
    for record in records:
        assert "SECRET-KEY-123" not in record.url
        assert "country=us" in record.url


def test_redact_url_keeps_other_params():
    assert redact_url("https://a.example.com/x?q=1&apiKey=k") == "https://a.example.com/x?q=1"
    assert redact_url("https://a.example.com/x") == "https://a.example.com/x"
