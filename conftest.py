from typing import Callable, Dict, List, Optional, Union

import httpx
import pytest
from fastapi.testclient import TestClient

from sandbox_proxy.cache import CompressingCache
from sandbox_proxy.proxy import ProxyService
from sandbox_proxy.scheduler import RateLimitedScheduler

Handler = Callable[[httpx.Request], httpx.Response]


class FakeUpstream:
    """
    Programmable upstream for ``httpx.MockTransport``.

    Routes are matched on the full URL first and on ``scheme://host/path``
    second; unknown URLs answer 404.
    """

    def __init__(self):
        self.routes: Dict[str, Union[Handler, httpx.Response, Exception]] = {}
        self.requests: List[httpx.Request] = []

    def add(
        self,
        url: str,
        content: Union[str, bytes] = b"",
        status_code: int = 200,
        content_type: Optional[str] = "text/html; charset=utf-8",
        headers: Optional[Dict[str, str]] = None,
    ) -> None:
        all_headers = dict(headers or {})
        if content_type:
            all_headers.setdefault("content-type", content_type)
        body = content.encode("utf-8") if isinstance(content, str) else content
        self.routes[url] = lambda request: httpx.Response(status_code, content=body, headers=all_headers)

    def on(self, url: str, handler: Union[Handler, Exception]) -> None:
        self.routes[url] = handler

    def requests_to(self, url: str) -> List[httpx.Request]:
        return [r for r in self.requests if str(r.url) == url]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = str(request.url)
        route = self.routes.get(url)
        if route is None:
            route = self.routes.get(f"{request.url.scheme}://{request.url.host}{request.url.path}")
        if route is None:
            return httpx.Response(404, text="not found")
        if isinstance(route, Exception):
            raise route
        return route(request)


@pytest.fixture
def upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture
def proxy_service(upstream) -> ProxyService:
    return ProxyService(
        scheduler=RateLimitedScheduler(max_concurrent=5),
        cache=CompressingCache(),
        transport=httpx.MockTransport(upstream),
    )


@pytest.fixture
def client(proxy_service):
    """TestClient for the application, wired to the fake upstream."""
    from sandbox_proxy.server import app

    previous = app.state.proxy_service
    app.state.proxy_service = proxy_service
    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        app.state.proxy_service = previous
