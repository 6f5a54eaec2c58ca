import asyncio
import logging
import time
from collections import Counter as Tally
from dataclasses import dataclass
from typing import Dict, Optional

import httpx
from fastapi import Request
from prometheus_client import Counter

from sandbox_proxy.cache import CompressingCache
from sandbox_proxy.errors import ProxyError, UpstreamHttpError, classify_exception
from sandbox_proxy.scheduler import RateLimitedScheduler
from sandbox_proxy.transform.context import ProxyRequestContext
from sandbox_proxy.utils import short_url
from sandbox_proxy.utils.exception_logging import log_exception_with_details
from sandbox_proxy.vars import PROXY_VERIFY_TLS

logger = logging.getLogger("uvicorn.error")

UPSTREAM_FETCHES = Counter(
    "proxy_upstream_fetches_total",
    "Outbound fetches by endpoint and outcome",
    ["endpoint", "outcome"],
)


@dataclass
class UpstreamResponse:
    status_code: int
    reason: str
    headers: httpx.Headers
    content: bytes
    url: str
    encoding: Optional[str] = None

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    @property
    def content_type(self) -> str:
        return self.headers.get("content-type", "")

    def text(self) -> str:
        try:
            return self.content.decode(self.encoding or "utf-8", errors="replace")
        except LookupError:
            return self.content.decode("utf-8", errors="replace")


class ProxyService:
    """
    Owns the shared state of the proxy: the outbound scheduler, the content
    cache and the HTTP client. One instance lives on ``app.state``.
    """

    def __init__(
        self,
        scheduler: Optional[RateLimitedScheduler] = None,
        cache: Optional[CompressingCache] = None,
        client: Optional[httpx.AsyncClient] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.scheduler = scheduler if scheduler is not None else RateLimitedScheduler()
        self.cache = cache if cache is not None else CompressingCache()
        self.client = client if client is not None else httpx.AsyncClient(
            transport=transport,
            follow_redirects=True,
            verify=PROXY_VERIFY_TLS,
            timeout=None,
        )
        self.started_at = time.time()
        self._started_monotonic = time.monotonic()
        self.errors: Tally = Tally()
        self.served = 0
        self._latency_total = 0.0

    @property
    def uptime(self) -> float:
        return time.monotonic() - self._started_monotonic

    async def fetch(
        self,
        ctx: ProxyRequestContext,
        headers: Dict[str, str],
        timeout: float,
        label: str = "Upstream request",
        raise_for_status: bool = True,
    ) -> UpstreamResponse:
        """
        Fetch ``ctx.target_url`` through the scheduler.

        The timeout covers queueing and the transfer; when it fires the
        request is cancelled, its scheduler slot freed and ``ProxyTimeout``
        raised. Transport failures are mapped with ``classify_exception``.
        """
        url = ctx.target_url

        async def _do_fetch() -> UpstreamResponse:
            response = await self.client.get(url, headers=headers)
            return UpstreamResponse(
                status_code=response.status_code,
                reason=response.reason_phrase,
                headers=response.headers,
                content=response.content,
                url=str(response.url),
                encoding=response.encoding,
            )

        started = time.monotonic()
        try:
            upstream = await asyncio.wait_for(
                self.scheduler.submit(ctx.hostname, _do_fetch), timeout=timeout
            )
        except Exception as e:
            error = classify_exception(e, url=url, timeout=timeout)
            self.record_error(error)
            UPSTREAM_FETCHES.labels(endpoint=ctx.endpoint, outcome=type(error).__name__).inc()
            log_exception_with_details(
                logger, f"[Proxy] {ctx.endpoint} fetch of {short_url(url)} failed", e, logging.WARNING
            )
            raise error from e

        self._latency_total += time.monotonic() - started
        self.served += 1
        if raise_for_status and not upstream.ok:
            error = UpstreamHttpError(upstream.status_code, upstream.reason, url=url, label=label)
            self.record_error(error)
            UPSTREAM_FETCHES.labels(endpoint=ctx.endpoint, outcome="http_error").inc()
            logger.info(f"[Proxy] {ctx.endpoint} upstream {short_url(url)} answered {upstream.status_code}")
            raise error
        UPSTREAM_FETCHES.labels(endpoint=ctx.endpoint, outcome="ok").inc()
        return upstream

    def record_error(self, error: ProxyError) -> None:
        self.errors[type(error).__name__] += 1

    def performance(self) -> dict:
        http_errors = self.errors.get("UpstreamHttpError", 0)
        transport_errors = sum(self.errors.values()) - http_errors - self.errors.get("InvalidUrl", 0)
        attempts = self.served + transport_errors
        return {
            "served": self.served,
            "averageResponseTimeMs": round(self._latency_total / self.served * 1000, 1) if self.served else 0.0,
            "successRate": round((self.served - http_errors) / attempts, 4) if attempts > 0 else 1.0,
            "errorTypes": dict(self.errors),
        }

    async def aclose(self) -> None:
        await self.scheduler.close()
        await self.client.aclose()
        self.cache.clear()


def get_proxy_service(request: Request) -> ProxyService:
    return request.app.state.proxy_service
