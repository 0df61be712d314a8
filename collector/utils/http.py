"""Async HTTP helper with per-attempt timeout, retry and bounded batching."""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Generic, List, Optional, Sequence, TypeVar

import httpx

from collector.settings import DEFAULT_USER_AGENT
from collector.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")
SleepFn = Callable[[float], Awaitable[Any]]

DEFAULT_TIMEOUT_MS = 30_000
DEFAULT_RETRIES = 3
DEFAULT_RETRY_DELAY_MS = 1_000
DEFAULT_BATCH_CONCURRENCY = 5
# Query parameters never written to logs.
REDACTED_QUERY_PARAMS = ("apiKey", "api_key", "token")


class HttpError(Exception):
    """Request failed; ``status_code`` is None for transport-level failures."""

    def __init__(self, message: str, status_code: Optional[int] = None, body: Any = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body

    @property
    def is_client_error(self) -> bool:
        return self.status_code is not None and 400 <= self.status_code < 500


class RequestTimeoutError(HttpError):
    """A single attempt exceeded its timeout."""


def is_network_error(exc: BaseException) -> bool:
    if isinstance(exc, HttpError):
        return exc.status_code is None or exc.status_code >= 500
    if isinstance(exc, (httpx.TransportError, asyncio.TimeoutError)):
        return True
    message = str(exc).lower()
    return any(marker in message for marker in ("timeout", "network", "connection refused"))


def is_rate_limit_error(exc: BaseException) -> bool:
    return isinstance(exc, HttpError) and exc.status_code == 429


@dataclass(frozen=True)
class RequestOptions:
    method: str = "GET"
    headers: Dict[str, str] = field(default_factory=dict)
    body: Any = None
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    retries: int = DEFAULT_RETRIES
    retry_delay_ms: int = DEFAULT_RETRY_DELAY_MS


@dataclass(frozen=True)
class BatchResult(Generic[T]):
    """Outcome of one URL in :meth:`HttpClient.request_batch`."""

    url: str
    value: Optional[T] = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def successful_values(results: Sequence[BatchResult[T]]) -> List[T]:
    return [r.value for r in results if r.ok]  # type: ignore[misc]


def redact_url(url: str) -> str:
    """Drop credential query parameters so the URL is safe to log."""
    try:
        parsed = httpx.URL(url)
    except httpx.InvalidURL:
        return url
    for name in REDACTED_QUERY_PARAMS:
        if name in parsed.params:
            parsed = parsed.copy_remove_param(name)
    return str(parsed)


def backoff_delay_ms(base_delay_ms: int, attempt: int) -> int:
    """Delay before retrying after ``attempt`` (0-based) failed."""
    return base_delay_ms * (2 ** attempt)


class HttpClient:
    """Thin wrapper over :class:`httpx.AsyncClient`.

    - ``request``: one logical request with up to ``retries + 1`` attempts.
      4xx responses fail immediately, anything else is retried with
      exponential backoff.
    - ``request_batch``: fixed-size chunks issued concurrently, one chunk at a
      time, so no more than ``concurrency_limit`` requests are in flight.
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        *,
        user_agent: str = DEFAULT_USER_AGENT,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            headers={"User-Agent": user_agent},
            follow_redirects=True,
        )
        self._sleep = sleep

    async def __aenter__(self) -> "HttpClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:  # noqa: ANN001
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def request(self, url: str, options: Optional[RequestOptions] = None) -> Any:
        opts = options or RequestOptions()
        last_error: Optional[BaseException] = None
        total_attempts = opts.retries + 1

        for attempt in range(total_attempts):
            try:
                return await self._attempt(url, opts)
            except Exception as exc:
                last_error = exc
                if isinstance(exc, HttpError) and exc.is_client_error:
                    raise
                if attempt < opts.retries:
                    delay_ms = backoff_delay_ms(opts.retry_delay_ms, attempt)
                    logger.warning(
                        "http.retry",
                        extra={
                            "url": redact_url(url),
                            "attempt": attempt + 1,
                            "max_attempts": total_attempts,
                            "delay_ms": delay_ms,
                            "error": str(exc),
                        },
                    )
                    await self._sleep(delay_ms / 1000)

        logger.error(
            "http.failed",
            extra={"url": redact_url(url), "attempts": total_attempts, "error": str(last_error)},
        )
        assert last_error is not None
        raise last_error

    async def request_batch(
        self,
        urls: Sequence[str],
        options: Optional[RequestOptions] = None,
        concurrency_limit: int = DEFAULT_BATCH_CONCURRENCY,
    ) -> List[BatchResult[Any]]:
        if concurrency_limit < 1:
            raise ValueError("concurrency_limit must be >= 1")

        results: List[BatchResult[Any]] = []
        for start in range(0, len(urls), concurrency_limit):
            chunk = urls[start : start + concurrency_limit]
            results.extend(await asyncio.gather(*(self._capture(u, options) for u in chunk)))

        failures = sum(1 for r in results if not r.ok)
        if failures:
            logger.warning(
                "http.batch.partial_failure",
                extra={"failed": failures, "total": len(urls)},
            )
        return results

    async def _capture(self, url: str, options: Optional[RequestOptions]) -> BatchResult[Any]:
        try:
            return BatchResult(url=url, value=await self.request(url, options))
        except Exception as exc:
            return BatchResult(url=url, error=exc)

    async def _attempt(self, url: str, opts: RequestOptions) -> Any:
        headers = dict(opts.headers)
        content: Optional[bytes | str] = None
        if opts.body is not None:
            if isinstance(opts.body, (str, bytes)):
                content = opts.body
            else:
                content = json.dumps(opts.body)
                headers.setdefault("Content-Type", "application/json")

        timeout_s = opts.timeout_ms / 1000
        try:
            resp = await asyncio.wait_for(
                self._client.request(opts.method, url, headers=headers, content=content, timeout=timeout_s),
                timeout=timeout_s,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as exc:
            raise RequestTimeoutError(f"Request timeout after {opts.timeout_ms}ms") from exc

        if not resp.is_success:
            text = resp.text
            raise HttpError(f"HTTP {resp.status_code}: {text[:200]}", resp.status_code, text)

        if "application/json" in resp.headers.get("content-type", ""):
            return resp.json()
        return resp.text
