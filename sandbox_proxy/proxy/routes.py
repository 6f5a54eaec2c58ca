"""
Content proxy endpoints.

Every fetching endpoint follows the same shape: validate the target URL,
look the final payload up in the cache, fetch through the scheduler on a
miss, run the content pipeline for HTML, store the result and answer with
CORS and cache headers. Failures surface as ``ProxyError`` and are rendered
by the application's exception handler.
"""

import asyncio
import json
import logging
import re
import time
from typing import Awaitable, Callable, Dict, List, Literal, Optional
from urllib.parse import quote, unquote, urlsplit

from fastapi import APIRouter, Depends, Header, Query
from fastapi.responses import JSONResponse, RedirectResponse, Response
from opentelemetry import trace
from pydantic import BaseModel, Field

from sandbox_proxy.cache import cache_key
from sandbox_proxy.errors import InvalidUrl, ProxyError, UnknownProxyError, classify_exception
from sandbox_proxy.proxy.headers import USER_AGENTS, build_request_headers, random_user_agent
from sandbox_proxy.proxy.service import ProxyService, UpstreamResponse, get_proxy_service
from sandbox_proxy.proxy.validation import HTTP_SCHEMES, WS_SCHEMES, force_https, validate_target_url
from sandbox_proxy.transform import (
    EMBED_CSP,
    ContentKind,
    PolicyFlags,
    ProxyMode,
    ProxyRequestContext,
    Theme,
    inject_custom_css,
    proxy_url,
    render_html,
    render_pdf_viewer,
    render_screenshot_preview,
    security_headers,
)
from sandbox_proxy.utils import short_url
from sandbox_proxy.utils.traced_requests import traced_request
from sandbox_proxy.vars import (
    PROXY_BASE_PATH,
    PROXY_HEALTH_CHECK_URLS,
    PROXY_MAX_CACHEABLE_BYTES,
    PROXY_VERSION,
)

router = APIRouter(prefix=PROXY_BASE_PATH)
tracer = trace.get_tracer(__name__)
logger = logging.getLogger("uvicorn.error")

# Abort timeouts in seconds, covering queueing and transfer
ENDPOINT_TIMEOUTS = {
    "json": 10.0,
    "proxy": 15.0,
    "prefetch": 10.0,
    "image": 20.0,
    "mobile": 20.0,
    "optimize": 20.0,
    "theme": 25.0,
    "site": 25.0,
    "secure": 25.0,
    "video": 30.0,
    "document": 30.0,
}

ENDPOINT_LABELS = {
    "site": "Site load",
    "image": "Image fetch",
    "video": "Video fetch",
    "document": "Document fetch",
    "mobile": "Mobile site fetch",
    "theme": "Theme fetch",
    "optimize": "Optimization",
    "secure": "Secure fetch",
    "json": "API request",
    "proxy": "Proxy request",
}

CACHE_CONTROL = {
    "site": "public, max-age=300",
    "image": "public, max-age=86400, immutable",
    "video": "public, max-age=3600",
    "document": "public, max-age=3600",
    "mobile": "public, max-age=1800",
    "theme": "public, max-age=1800",
    "optimize": "public, max-age=1800",
    "secure": "public, max-age=900",
    "json": "no-cache",
    "proxy": "public, max-age=300",
    "screenshot": "public, max-age=1800",
    "passthrough": "public, max-age=3600",
}

SEARCH_ENGINES = {
    "duckduckgo": "https://duckduckgo.com/?q={query}&ia=web",
    "bing": "https://www.bing.com/search?q={query}",
    "yandex": "https://yandex.com/search/?text={query}",
    "startpage": "https://www.startpage.com/sp/search?query={query}",
}

POPULAR_SITES = {
    "github": "https://github.com",
    "stackoverflow": "https://stackoverflow.com",
    "reddit": "https://reddit.com",
    "wikipedia": "https://wikipedia.org",
    "youtube": "https://youtube.com",
    "twitter": "https://twitter.com",
    "facebook": "https://facebook.com",
    "instagram": "https://instagram.com",
    "linkedin": "https://linkedin.com",
    "discord": "https://discord.com",
    "twitch": "https://twitch.tv",
    "netflix": "https://netflix.com",
    "amazon": "https://amazon.com",
    "google": "https://google.com",
    "bing": "https://bing.com",
    "duckduckgo": "https://duckduckgo.com",
    "hackernews": "https://news.ycombinator.com",
    "medium": "https://medium.com",
    "dev": "https://dev.to",
    "codepen": "https://codepen.io",
    "glitch": "https://glitch.com",
    "replit": "https://replit.com",
    "codesandbox": "https://codesandbox.io",
}

PASSTHROUGH_HEADERS = {"last-modified": "Last-Modified", "etag": "ETag"}
RANGE_HEADERS = {"content-range": "Content-Range", "accept-ranges": "Accept-Ranges"}
HTML_MEDIA_TYPE = "text/html; charset=utf-8"
CORS_HEADERS = {"Access-Control-Allow-Origin": "*"}


def _is_html(upstream: UpstreamResponse) -> bool:
    content_type = upstream.content_type.lower()
    if content_type:
        return "text/html" in content_type or "application/xhtml+xml" in content_type
    return upstream.content.lstrip()[:1] == b"<"


def _response_headers(endpoint: str, cache_state: str, html: bool = True) -> Dict[str, str]:
    headers = dict(CORS_HEADERS)
    headers["Cache-Control"] = CACHE_CONTROL[endpoint if html else "passthrough"]
    headers["X-Cache"] = cache_state
    if html:
        if endpoint == "secure":
            headers.update(security_headers())
            headers["X-Security-Scan"] = "PASSED"
        else:
            headers["Content-Security-Policy"] = EMBED_CSP
        if endpoint == "optimize":
            headers["X-Optimized"] = "true"
    return headers


async def _fetch(
    service: ProxyService,
    ctx: ProxyRequestContext,
    range_header: Optional[str] = None,
    mobile: bool = False,
) -> UpstreamResponse:
    headers = build_request_headers(ctx.content_kind, range_header=range_header, mobile=mobile)
    return await service.fetch(
        ctx,
        headers,
        timeout=ENDPOINT_TIMEOUTS[ctx.endpoint],
        label=ENDPOINT_LABELS.get(ctx.endpoint, "Upstream request"),
    )


async def _guarded(ctx: ProxyRequestContext, produce: Callable[[], Awaitable[Response]]) -> Response:
    """Run an endpoint body, mapping anything unexpected onto the error taxonomy."""
    try:
        return await produce()
    except ProxyError:
        raise
    except Exception as e:
        logger.error(f"[Proxy] {ctx.endpoint} failed for {short_url(ctx.target_url)}: {e}", exc_info=True)
        error = classify_exception(e, url=ctx.target_url)
        if isinstance(error, UnknownProxyError):
            error.error = f"Failed to serve {ctx.endpoint} request"
        raise error from e


async def render_page(
    service: ProxyService,
    ctx: ProxyRequestContext,
    mobile: bool = False,
) -> Response:
    """
    Fetch, transform and cache an HTML page for one of the HTML endpoints.
    Non-HTML bodies are passed through unchanged.
    """
    key = cache_key(ctx.endpoint, ctx.target_url, ctx.mode.value, ctx.flags.fingerprint())
    with traced_request(
        tracer,
        f"proxy.{ctx.endpoint}",
        ctx.target_url,
        ctx.endpoint,
        f"[Proxy] {ctx.endpoint} {short_url(ctx.target_url)} mode={ctx.mode.value}",
        {"proxy.mode": ctx.mode.value},
    ) as span:
        cached = await service.cache.get(key)
        if cached is not None:
            span.set_attribute("proxy.cache", "HIT")
            is_html = cached.content_type.startswith("text/html")
            return Response(
                content=cached.payload,
                media_type=cached.content_type,
                headers=_response_headers(ctx.endpoint, "HIT", html=is_html),
            )
        span.set_attribute("proxy.cache", "MISS")

        async def produce() -> Response:
            upstream = await _fetch(service, ctx, mobile=mobile)
            span.set_attribute("proxy.status_code", upstream.status_code)
            if not _is_html(upstream):
                content_type = upstream.content_type or "application/octet-stream"
                if len(upstream.content) <= PROXY_MAX_CACHEABLE_BYTES:
                    await service.cache.set(key, upstream.content, content_type)
                headers = _response_headers(ctx.endpoint, "MISS", html=False)
                headers.update(_copy_headers(upstream, PASSTHROUGH_HEADERS))
                return Response(content=upstream.content, media_type=content_type, headers=headers)

            html = render_html(upstream.text(), ctx, base_url=upstream.url)
            payload = html.encode("utf-8")
            await service.cache.set(key, payload, HTML_MEDIA_TYPE)
            headers = _response_headers(ctx.endpoint, "MISS")
            headers.update(_copy_headers(upstream, {"last-modified": "Last-Modified"}))
            return Response(content=payload, media_type=HTML_MEDIA_TYPE, headers=headers)

        return await _guarded(ctx, produce)


def _copy_headers(upstream: UpstreamResponse, names: Dict[str, str]) -> Dict[str, str]:
    return {title: upstream.headers[name] for name, title in names.items() if name in upstream.headers}


async def serve_media(
    service: ProxyService,
    ctx: ProxyRequestContext,
    key: str,
    range_header: Optional[str],
    default_type: str,
) -> Response:
    """
    Binary passthrough for images and videos.

    Byte-range requests are forwarded upstream and bypass the cache in
    both directions; their responses carry ``X-Cache: STREAMING``.
    """
    endpoint = ctx.endpoint
    with traced_request(
        tracer,
        f"proxy.{endpoint}",
        ctx.target_url,
        endpoint,
        f"[Proxy] {endpoint} {short_url(ctx.target_url)}" + (f" range={range_header}" if range_header else ""),
        {"proxy.range": range_header or ""},
    ) as span:
        if not range_header:
            cached = await service.cache.get(key)
            if cached is not None:
                span.set_attribute("proxy.cache", "HIT")
                headers = _media_headers(endpoint, "HIT")
                return Response(content=cached.payload, media_type=cached.content_type, headers=headers)

        async def produce() -> Response:
            upstream = await _fetch(service, ctx, range_header=range_header)
            span.set_attribute("proxy.status_code", upstream.status_code)
            content_type = upstream.content_type or default_type
            cache_state = "STREAMING" if range_header else "MISS"
            if not range_header and len(upstream.content) <= PROXY_MAX_CACHEABLE_BYTES:
                await service.cache.set(key, upstream.content, content_type)
            span.set_attribute("proxy.cache", cache_state)
            headers = _media_headers(endpoint, cache_state)
            headers.update(_copy_headers(upstream, PASSTHROUGH_HEADERS))
            status_code = 200
            if upstream.status_code == 206:
                status_code = 206
                headers.update(_copy_headers(upstream, RANGE_HEADERS))
            elif "accept-ranges" in upstream.headers:
                headers["Accept-Ranges"] = upstream.headers["accept-ranges"]
            return Response(
                content=upstream.content,
                status_code=status_code,
                media_type=content_type,
                headers=headers,
            )

        return await _guarded(ctx, produce)


def _media_headers(endpoint: str, cache_state: str) -> Dict[str, str]:
    headers = dict(CORS_HEADERS)
    headers["Cache-Control"] = CACHE_CONTROL[endpoint]
    headers["X-Cache"] = cache_state
    headers["Access-Control-Allow-Headers"] = "Content-Type, Range"
    headers["Access-Control-Expose-Headers"] = "Content-Range, Content-Length, Accept-Ranges"
    return headers


@router.get("/site")
async def proxy_site(
    url: str = Query(...),
    mode: ProxyMode = Query(ProxyMode.EMBED),
    ad_block: bool = Query(False, alias="adBlock"),
    optimize: bool = Query(False),
    service: ProxyService = Depends(get_proxy_service),
):
    """Website proxy with the full HTML pipeline."""
    target = validate_target_url(url)
    ctx = ProxyRequestContext(
        target_url=target,
        endpoint="site",
        mode=mode,
        flags=PolicyFlags(ad_block=ad_block, remove_comments=optimize, minify=optimize),
    )
    return await render_page(service, ctx)


@router.get("/image")
async def proxy_image(
    url: str = Query(...),
    quality: str = Query("auto"),
    format: str = Query("auto"),
    range_header: Optional[str] = Header(None, alias="Range"),
    service: ProxyService = Depends(get_proxy_service),
):
    target = validate_target_url(url)
    ctx = ProxyRequestContext(target_url=target, endpoint="image", content_kind=ContentKind.IMAGE)
    key = cache_key("image", target, quality, format)
    return await serve_media(service, ctx, key, range_header, "image/jpeg")


@router.get("/video")
async def proxy_video(
    url: str = Query(...),
    quality: str = Query("auto"),
    format: str = Query("auto"),
    range_header: Optional[str] = Header(None, alias="Range"),
    service: ProxyService = Depends(get_proxy_service),
):
    target = validate_target_url(url)
    ctx = ProxyRequestContext(target_url=target, endpoint="video", content_kind=ContentKind.VIDEO)
    key = cache_key("video", target, quality, format)
    return await serve_media(service, ctx, key, range_header, "video/mp4")


@router.get("/document")
async def proxy_document(
    url: str = Query(...),
    viewer: Literal["embed", "download"] = Query("embed"),
    service: ProxyService = Depends(get_proxy_service),
):
    """
    PDF and office document proxy. With ``viewer=embed`` PDFs are wrapped in
    an inline viewer page; everything else is returned as is.
    """
    target = validate_target_url(url)
    ctx = ProxyRequestContext(target_url=target, endpoint="document", content_kind=ContentKind.DOCUMENT)
    key = cache_key("doc", target, viewer)

    def _headers(cache_state: str, content_type: str) -> Dict[str, str]:
        headers = dict(CORS_HEADERS)
        headers["Cache-Control"] = CACHE_CONTROL["document"]
        headers["X-Cache"] = cache_state
        if viewer == "download" and not content_type.startswith("text/html"):
            filename = unquote(urlsplit(target).path.rsplit("/", 1)[-1]) or "document"
            headers["Content-Disposition"] = f"attachment; filename*=UTF-8''{quote(filename)}"
        return headers

    with traced_request(
        tracer, "proxy.document", target, "document", f"[Proxy] document {short_url(target)} viewer={viewer}"
    ) as span:
        cached = await service.cache.get(key)
        if cached is not None:
            span.set_attribute("proxy.cache", "HIT")
            return Response(
                content=cached.payload,
                media_type=cached.content_type,
                headers=_headers("HIT", cached.content_type),
            )

        async def produce() -> Response:
            upstream = await _fetch(service, ctx)
            content_type = upstream.content_type or "application/octet-stream"
            payload = upstream.content
            if viewer == "embed" and "pdf" in content_type.lower():
                payload = render_pdf_viewer(upstream.content, target).encode("utf-8")
                content_type = HTML_MEDIA_TYPE
            if len(payload) <= PROXY_MAX_CACHEABLE_BYTES:
                await service.cache.set(key, payload, content_type)
            span.set_attribute("proxy.cache", "MISS")
            return Response(content=payload, media_type=content_type, headers=_headers("MISS", content_type))

        return await _guarded(ctx, produce)


@router.get("/mobile")
async def proxy_mobile(
    url: str = Query(...),
    service: ProxyService = Depends(get_proxy_service),
):
    target = validate_target_url(url)
    ctx = ProxyRequestContext(
        target_url=target,
        endpoint="mobile",
        flags=PolicyFlags(ad_block=True, mobile_optimize=True),
    )
    return await render_page(service, ctx, mobile=True)


@router.get("/theme")
async def proxy_theme(
    url: str = Query(...),
    theme: Theme = Query(Theme.DARK),
    service: ProxyService = Depends(get_proxy_service),
):
    target = validate_target_url(url)
    ctx = ProxyRequestContext(target_url=target, endpoint="theme", flags=PolicyFlags(theme=theme))
    return await render_page(service, ctx)


@router.get("/optimize")
async def proxy_optimize(
    url: str = Query(...),
    minify_html: bool = Query(False, alias="minifyHtml"),
    remove_comments: bool = Query(False, alias="removeComments"),
    optimize_js: bool = Query(False, alias="optimizeJs"),
    service: ProxyService = Depends(get_proxy_service),
):
    target = validate_target_url(url)
    ctx = ProxyRequestContext(
        target_url=target,
        endpoint="optimize",
        flags=PolicyFlags(
            ad_block=True,
            minify=minify_html,
            remove_comments=remove_comments,
            optimize_js=optimize_js,
        ),
    )
    return await render_page(service, ctx)


@router.get("/secure")
async def proxy_secure(
    url: str = Query(...),
    block_malware: bool = Query(True, alias="blockMalware"),
    remove_trackers: bool = Query(True, alias="removeTrackers"),
    https_only: bool = Query(True, alias="httpsOnly"),
    sanitize_content: bool = Query(True, alias="sanitizeContent"),
    service: ProxyService = Depends(get_proxy_service),
):
    """HTML proxy with tracker stripping, sanitizing and hardened headers."""
    target = validate_target_url(url)
    if https_only:
        target = force_https(target)
    ctx = ProxyRequestContext(
        target_url=target,
        endpoint="secure",
        flags=PolicyFlags(
            ad_block=block_malware,
            remove_trackers=remove_trackers,
            https_only=https_only,
            sanitize=sanitize_content,
        ),
    )
    return await render_page(service, ctx)


@router.get("/json")
async def proxy_json(
    url: str = Query(...),
    service: ProxyService = Depends(get_proxy_service),
):
    """JSON API passthrough. The body must parse as JSON."""
    target = validate_target_url(url)
    ctx = ProxyRequestContext(target_url=target, endpoint="json", content_kind=ContentKind.JSON)
    key = cache_key("json", target)
    headers = {**CORS_HEADERS, "Cache-Control": CACHE_CONTROL["json"]}
    with traced_request(tracer, "proxy.json", target, "json", f"[Proxy] json {short_url(target)}") as span:
        cached = await service.cache.get(key)
        if cached is not None:
            span.set_attribute("proxy.cache", "HIT")
            return Response(content=cached.payload, media_type="application/json", headers={**headers, "X-Cache": "HIT"})

        async def produce() -> Response:
            upstream = await _fetch(service, ctx)
            try:
                json.loads(upstream.text())
            except ValueError:
                raise ProxyError(
                    "The upstream response is not valid JSON",
                    url=target,
                    error="Failed to fetch JSON data",
                    status_code=502,
                )
            await service.cache.set(key, upstream.content, "application/json")
            span.set_attribute("proxy.cache", "MISS")
            return Response(content=upstream.content, media_type="application/json", headers={**headers, "X-Cache": "MISS"})

        return await _guarded(ctx, produce)


GENERIC_KINDS = {
    "html": ContentKind.HTML,
    "json": ContentKind.JSON,
    "image": ContentKind.IMAGE,
    "video": ContentKind.VIDEO,
}


@router.get("")
async def proxy_generic(
    url: str = Query(...),
    content_type: Literal["html", "json", "image", "video"] = Query("html", alias="type"),
    range_header: Optional[str] = Header(None, alias="Range"),
    service: ProxyService = Depends(get_proxy_service),
):
    """
    General-purpose proxy. ``type`` only picks the Accept header sent
    upstream; HTML answers go through the site pipeline and anything else is
    passed through.
    """
    target = validate_target_url(url)
    kind = GENERIC_KINDS[content_type]
    ctx = ProxyRequestContext(target_url=target, endpoint="proxy", content_kind=kind)
    if kind == ContentKind.HTML:
        return await render_page(service, ctx)
    if kind == ContentKind.JSON:
        range_header = None
    return await serve_media(service, ctx, cache_key("proxy", target, content_type), range_header, "application/octet-stream")


@router.get("/screenshot")
async def proxy_screenshot(
    url: str = Query(...),
    width: int = Query(1280, ge=1, le=10000),
    height: int = Query(720, ge=1, le=10000),
    format: Literal["png", "jpeg", "webp"] = Query("png"),
    service: ProxyService = Depends(get_proxy_service),
):
    target = validate_target_url(url)
    key = cache_key("screenshot", target, f"{width}x{height}", format)
    headers = {**CORS_HEADERS, "Cache-Control": CACHE_CONTROL["screenshot"]}
    with traced_request(
        tracer, "proxy.screenshot", target, "screenshot", f"[Proxy] screenshot {short_url(target)} {width}x{height}"
    ) as span:
        cached = await service.cache.get(key)
        if cached is not None:
            span.set_attribute("proxy.cache", "HIT")
            return Response(content=cached.payload, media_type=cached.content_type, headers={**headers, "X-Cache": "HIT"})
        payload = render_screenshot_preview(target, width, height, format).encode("utf-8")
        await service.cache.set(key, payload, HTML_MEDIA_TYPE)
        span.set_attribute("proxy.cache", "MISS")
        return Response(content=payload, media_type=HTML_MEDIA_TYPE, headers={**headers, "X-Cache": "MISS"})


@router.get("/search")
async def proxy_search(
    q: str = Query(..., min_length=1),
    engine: str = Query("duckduckgo"),
):
    template = SEARCH_ENGINES.get(engine.lower())
    if template is None:
        raise ProxyError(
            f"Supported engines: {', '.join(SEARCH_ENGINES)}",
            error="Unsupported search engine",
            status_code=400,
        )
    search_url = template.format(query=quote(q, safe=""))
    return RedirectResponse(proxy_url("site", search_url, ProxyMode.EMBED), status_code=302)


@router.get("/popular/{site}")
async def proxy_popular(site: str, mode: ProxyMode = Query(ProxyMode.EMBED)):
    site_url = POPULAR_SITES.get(site.lower())
    if site_url is None:
        return JSONResponse(
            status_code=404,
            content={"error": "Site not found", "available": list(POPULAR_SITES)},
            headers=CORS_HEADERS,
        )
    return RedirectResponse(proxy_url("site", site_url, mode), status_code=302)


@router.get("/websocket")
async def websocket_info(url: str = Query(...)):
    target = validate_target_url(url, schemes=HTTP_SCHEMES + WS_SCHEMES)
    ws_url = re.sub(r"^http", "ws", target, flags=re.IGNORECASE)
    return {
        "websocketUrl": ws_url,
        "proxyEndpoint": f"/ws-proxy?target={quote(ws_url, safe='')}",
        "instructions": "Connect to the proxy endpoint for WebSocket communication",
    }


class InjectCssRequest(BaseModel):
    target_url: str = Field(alias="targetUrl")
    css: str = Field(min_length=1)
    mode: Literal["append", "prepend"] = "append"


@router.post("/inject-css")
async def proxy_inject_css(
    body: InjectCssRequest,
    service: ProxyService = Depends(get_proxy_service),
):
    """Embed a page through the site pipeline and add a custom stylesheet."""
    target = validate_target_url(body.target_url)
    ctx = ProxyRequestContext(target_url=target, endpoint="site", mode=ProxyMode.EMBED)
    page = await render_page(service, ctx)
    if not page.media_type or not page.media_type.startswith("text/html"):
        raise ProxyError(
            "The target did not return an HTML page",
            url=target,
            error="Failed to inject CSS",
            status_code=502,
        )
    html = inject_custom_css(page.body.decode("utf-8"), body.css, body.mode)
    return Response(content=html, media_type=HTML_MEDIA_TYPE, headers=CORS_HEADERS)


class PrefetchRequest(BaseModel):
    urls: List[str]
    priority: str = "low"


async def _prefetch_one(service: ProxyService, url: str) -> dict:
    try:
        target = validate_target_url(url)
    except InvalidUrl as e:
        return {"url": url, "status": "error", "error": e.details}
    key = cache_key("prefetch", target)
    cached = await service.cache.get(key)
    if cached is not None:
        return {"url": url, "status": "cached", "size": len(cached.payload)}
    ctx = ProxyRequestContext(target_url=target, endpoint="prefetch", content_kind=ContentKind.BINARY)
    headers = build_request_headers(ContentKind.BINARY)
    try:
        upstream = await service.fetch(ctx, headers, ENDPOINT_TIMEOUTS["prefetch"], raise_for_status=False)
    except ProxyError as e:
        return {"url": url, "status": "error", "error": e.details or e.error}
    if not upstream.ok:
        return {"url": url, "status": "failed", "error": f"{upstream.status_code} {upstream.reason}".strip()}
    content_type = upstream.content_type or "application/octet-stream"
    if len(upstream.content) <= PROXY_MAX_CACHEABLE_BYTES:
        await service.cache.set(key, upstream.content, content_type)
    return {"url": url, "status": "prefetched", "size": len(upstream.content), "contentType": content_type}


@router.post("/prefetch")
async def proxy_prefetch(
    body: PrefetchRequest,
    service: ProxyService = Depends(get_proxy_service),
):
    """Warm the cache for several URLs. Fetches still go through the scheduler."""
    logger.info(f"[Proxy] prefetch of {len(body.urls)} urls (priority={body.priority})")
    results = await asyncio.gather(*(_prefetch_one(service, url) for url in body.urls))
    return {
        "success": True,
        "prefetched": sum(1 for r in results if r["status"] == "prefetched"),
        "cached": sum(1 for r in results if r["status"] == "cached"),
        "failed": sum(1 for r in results if r["status"] in ("failed", "error")),
        "results": results,
    }


@router.get("/metrics")
async def proxy_metrics(service: ProxyService = Depends(get_proxy_service)):
    return {
        "requestQueue": service.scheduler.stats(),
        "contentCache": service.cache.stats(),
        "performance": service.performance(),
        "features": FEATURES,
    }


async def _probe(service: ProxyService, url: str) -> dict:
    started = time.monotonic()
    try:
        response = await service.client.get(
            url, headers={"User-Agent": random_user_agent()}, timeout=5.0
        )
    except Exception as e:
        error = classify_exception(e, url=url, timeout=5.0)
        return {
            "url": url,
            "status": "error",
            "responseTime": round((time.monotonic() - started) * 1000),
            "error": error.details,
        }
    return {
        "url": url,
        "status": "healthy" if response.is_success else "unhealthy",
        "responseTime": round((time.monotonic() - started) * 1000),
        "statusCode": response.status_code,
    }


@router.get("/health")
async def proxy_health(service: ProxyService = Depends(get_proxy_service)):
    """Liveness plus optional upstream reachability probes."""
    checks = await asyncio.gather(*(_probe(service, url) for url in PROXY_HEALTH_CHECK_URLS))
    healthy = sum(1 for c in checks if c["status"] == "healthy")
    total = len(checks)
    cache_stats = service.cache.stats()
    return {
        "status": "healthy" if healthy == total else "degraded",
        "uptime": round(service.uptime, 3),
        "checks": list(checks),
        "summary": {
            "healthy": healthy,
            "total": total,
            "successRate": f"{round(healthy / total * 100)}%" if total else "100%",
        },
        "cache": {"size": cache_stats["cacheSize"], "hitRate": cache_stats["hitRate"]},
        "queue": {
            "length": service.scheduler.queue_depth,
            "processing": service.scheduler.in_flight,
        },
    }


FEATURES = {
    "adBlocking": True,
    "trackerBlocking": True,
    "contentCompression": True,
    "userAgentRotation": True,
    "requestQueuing": True,
    "responseCache": True,
    "websocketProxy": True,
    "documentViewer": True,
    "screenshotPreview": True,
}


@router.get("/config")
async def proxy_config(service: ProxyService = Depends(get_proxy_service)):
    scheduler = service.scheduler
    cache = service.cache
    return {
        "version": PROXY_VERSION,
        "features": {
            "rateLimiting": {
                "enabled": True,
                "maxRequestsPerWindow": scheduler.rate_limits.limit,
                "windowSeconds": scheduler.rate_limits.window_seconds,
                "backoffStrategy": "exponential",
                "backoffCapMs": scheduler.rate_limits.backoff_cap_ms,
            },
            "caching": {
                "enabled": True,
                "maxItems": cache.max_size,
                "ttlSeconds": cache.max_age,
                "compression": True,
                "compressThresholdBytes": cache.compress_threshold,
            },
            "security": {
                "httpsEnforcement": True,
                "contentSanitization": True,
                "trackerBlocking": True,
            },
            "optimization": {
                "htmlMinification": True,
                "commentRemoval": True,
                "jsOptimization": True,
            },
            "userAgent": {"rotation": True, "pool": len(USER_AGENTS)},
        },
        "endpoints": {
            f"{PROXY_BASE_PATH}/site": "Website proxy with full HTML processing",
            f"{PROXY_BASE_PATH}/image": "Image proxy with range support",
            f"{PROXY_BASE_PATH}/video": "Video streaming proxy",
            f"{PROXY_BASE_PATH}/document": "PDF and document viewer",
            f"{PROXY_BASE_PATH}/mobile": "Mobile-optimized website proxy",
            f"{PROXY_BASE_PATH}/theme": "Theme injection proxy",
            f"{PROXY_BASE_PATH}/optimize": "Content optimization proxy",
            f"{PROXY_BASE_PATH}/secure": "Security-enhanced proxy",
            f"{PROXY_BASE_PATH}": "General-purpose proxy, Accept header chosen by type",
            f"{PROXY_BASE_PATH}/json": "JSON API passthrough",
            f"{PROXY_BASE_PATH}/screenshot": "Fixed-size page preview",
            f"{PROXY_BASE_PATH}/search": "Search engine redirect",
            f"{PROXY_BASE_PATH}/popular/{{site}}": "Popular site redirect",
            f"{PROXY_BASE_PATH}/websocket": "WebSocket proxy configuration",
            f"{PROXY_BASE_PATH}/inject-css": "Custom CSS injection",
            f"{PROXY_BASE_PATH}/prefetch": "Content prefetching service",
            f"{PROXY_BASE_PATH}/metrics": "Queue, cache and performance metrics",
            f"{PROXY_BASE_PATH}/health": "Health check and diagnostics",
            "/ws-proxy": "WebSocket relay",
            "/ws": "Direct heartbeat socket",
        },
        "limits": {
            "maxCacheableBytes": PROXY_MAX_CACHEABLE_BYTES,
            "maxConcurrentRequests": scheduler.max_concurrent,
            "timeoutSeconds": ENDPOINT_TIMEOUTS,
        },
    }
