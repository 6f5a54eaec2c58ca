"""
URL rewriting for proxied HTML.

In embed mode every relative reference is routed back through the proxy so
the client never leaves the sandbox: navigations go to the site endpoint,
images and videos (detected by suffix) to their dedicated endpoints. In
simple mode relative references only become absolute.
"""

import re
from typing import Optional
from urllib.parse import quote, urljoin

from bs4.element import NavigableString, Stylesheet

from sandbox_proxy.transform.context import ProxyMode
from sandbox_proxy.transform.markup import (
    INJECTED_ATTR,
    best_effort,
    has_injection,
    inject_into_head,
    parse,
    style_block,
)
from sandbox_proxy.transform.patterns import CSS_URL, IMAGE_SUFFIX, VIDEO_SUFFIX
from sandbox_proxy.vars import PROXY_BASE_PATH

_SCHEME = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.-]*:")
_SKIPPED_SCHEMES = ("data:", "blob:", "mailto:", "tel:", "javascript:", "about:")

NAVIGATION_TAGS = {"a", "area"}
FRAME_TAGS = {"iframe", "frame"}
MEDIA_SRC_TAGS = {"img", "source", "video", "audio", "track", "script", "embed", "input"}


def proxy_url(endpoint: str, absolute_url: str, mode: Optional[ProxyMode] = None) -> str:
    url = f"{PROXY_BASE_PATH}/{endpoint}?url={quote(absolute_url, safe='')}"
    if mode is not None:
        url += f"&mode={ProxyMode(mode).value}"
    return url


def is_rewritable(value: Optional[str]) -> bool:
    """
    True for references that are relative to the page: not absolute, not
    protocol-relative, not a special scheme, not a bare fragment and not
    already pointing at the proxy.
    """
    if not value:
        return False
    value = value.strip()
    if not value or value.startswith("#") or value.startswith("//"):
        return False
    if value.lower().startswith(_SKIPPED_SCHEMES) or _SCHEME.match(value):
        return False
    if value.startswith(f"{PROXY_BASE_PATH}/"):
        return False
    return True


def _resolve(base_url: str, value: str) -> Optional[str]:
    try:
        return urljoin(base_url, value.strip())
    except ValueError:
        return None


def _media_route(absolute_url: str) -> Optional[str]:
    if IMAGE_SUFFIX.search(absolute_url):
        return "image"
    if VIDEO_SUFFIX.search(absolute_url):
        return "video"
    return None


def rewrite_css_urls(css: str, base_url: str, mode: ProxyMode = ProxyMode.EMBED) -> str:
    """Rewrite relative ``url()`` references; images go through the proxy in embed mode."""

    def _replace(match: re.Match) -> str:
        raw = match.group(2)
        if not is_rewritable(raw):
            return match.group(0)
        absolute = _resolve(base_url, raw)
        if absolute is None:
            return match.group(0)
        if mode == ProxyMode.EMBED and IMAGE_SUFFIX.search(absolute):
            return f'url("{proxy_url("image", absolute)}")'
        return f'url("{absolute}")'

    return CSS_URL.sub(_replace, css)


def _rewrite_reference(tag, attr: str, base_url: str, mode: ProxyMode) -> None:
    value = tag.get(attr)
    if isinstance(value, list):
        return
    if not is_rewritable(value):
        return
    absolute = _resolve(base_url, value)
    if absolute is None:
        return
    if mode == ProxyMode.SIMPLE:
        tag[attr] = absolute
        return

    if attr == "action" or (attr == "href" and tag.name in NAVIGATION_TAGS):
        tag[attr] = proxy_url("site", absolute, mode)
    elif attr == "src" and tag.name in FRAME_TAGS:
        tag[attr] = proxy_url("site", absolute, mode)
    elif attr in ("src", "poster", "href"):
        route = _media_route(absolute)
        tag[attr] = proxy_url(route, absolute) if route else absolute
    else:
        tag[attr] = absolute


def _is_blank(node) -> bool:
    return isinstance(node, NavigableString) and not node.strip()


def _drop_base(base) -> None:
    # Two blank neighbours would merge into one on the next parse
    if _is_blank(base.previous_sibling) and _is_blank(base.next_sibling):
        base.next_sibling.extract()
    base.decompose()


@best_effort
def rewrite_urls(html: str, base_url: str, mode: ProxyMode = ProxyMode.EMBED) -> str:
    mode = ProxyMode(mode)
    soup = parse(html)

    for base in soup.find_all("base"):
        _drop_base(base)

    for tag in soup.find_all(True):
        if tag.has_attr(INJECTED_ATTR):
            continue
        for attr in ("href", "src", "action", "poster"):
            if tag.has_attr(attr):
                _rewrite_reference(tag, attr, base_url, mode)
        style = tag.get("style")
        if isinstance(style, str) and "url(" in style.lower():
            tag["style"] = rewrite_css_urls(style, base_url, mode)

    for style_tag in soup.find_all("style"):
        css = style_tag.string
        if css and "url(" in css.lower():
            style_tag.string.replace_with(Stylesheet(rewrite_css_urls(str(css), base_url, mode)))

    return str(soup)


_FRAME_META = re.compile(
    r"""<meta[^>]*http-equiv\s*=\s*['"]?(?:X-Frame-Options|Content-Security-Policy)['"]?[^>]*>""",
    re.IGNORECASE,
)
_VIEWPORT_META = re.compile(r"""<meta[^>]*name\s*=\s*['"]?viewport['"]?[^>]*>""", re.IGNORECASE)

EMBED_VIEWPORT = '<meta name="viewport" content="width=device-width, initial-scale=1.0, user-scalable=yes">'

EMBED_STYLES = """
body { margin: 0 !important; padding: 0 !important; overflow-x: auto !important; }
iframe { border: none !important; }
* { box-sizing: border-box; }
body, html { max-width: 100vw; overflow-x: auto; }
"""


@best_effort
def strip_frame_restrictions(html: str) -> str:
    """Drop meta-level framing restrictions and normalise the viewport."""
    html = _FRAME_META.sub("", html)
    return _VIEWPORT_META.sub(EMBED_VIEWPORT, html)


@best_effort
def inject_proxy_head(html: str, base_url: str, mode: ProxyMode = ProxyMode.EMBED) -> str:
    """
    Add no-cache and referrer meta tags plus layout fixes for embedding.

    A ``<base>`` tag is only added in simple mode; in embed mode it would make
    the browser resolve the rewritten ``/proxy/...`` links against the
    upstream host.
    """
    if has_injection(html, "proxy-head"):
        return html
    parts = []
    if ProxyMode(mode) == ProxyMode.SIMPLE:
        parts.append(f'<base href="{_resolve(base_url, "/") or base_url}">')
    parts.extend(
        [
            '<meta http-equiv="Cache-Control" content="no-cache, no-store, must-revalidate">',
            '<meta http-equiv="Pragma" content="no-cache">',
            '<meta http-equiv="Expires" content="0">',
            '<meta name="referrer" content="no-referrer">',
            style_block("proxy-head", EMBED_STYLES),
        ]
    )
    return inject_into_head(html, "".join(parts), at_start=True)
