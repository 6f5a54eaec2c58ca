import re
from typing import Dict

from sandbox_proxy.transform.markup import best_effort, has_injection, inject_into_head, parse
from sandbox_proxy.transform.patterns import (
    AD_INS_CLASSES,
    DANGEROUS_SCRIPT,
    TRACKER_INLINE_PATTERNS,
    is_ad_class,
    is_ad_url,
    is_tracker_url,
    matches_any,
)

SECURE_CSP = (
    "default-src 'self' https: data: blob:; "
    "script-src 'self' https: 'unsafe-inline'; "
    "style-src 'self' https: 'unsafe-inline'; "
    "object-src 'none'; base-uri 'self'; form-action 'self'"
)

EMBED_CSP = (
    "frame-ancestors *; default-src * data: blob: 'unsafe-inline' 'unsafe-eval'; "
    "script-src * 'unsafe-inline' 'unsafe-eval'; style-src * 'unsafe-inline';"
)

_ON_ATTR = re.compile(r"^on[a-z]+$", re.IGNORECASE)


def _decomposed(tag) -> bool:
    return getattr(tag, "decomposed", False)


@best_effort
def filter_ads(html: str) -> str:
    """Remove ad scripts, frames, pixels and ad containers."""
    soup = parse(html)
    removed = 0
    for tag in soup.find_all(["script", "iframe", "img"]):
        if _decomposed(tag):
            continue
        if is_ad_url(tag.get("src") or ""):
            tag.decompose()
            removed += 1
    for tag in soup.find_all(["div", "ins"]):
        if _decomposed(tag):
            continue
        classes = tag.get("class") or []
        if tag.name == "ins" and any(c in AD_INS_CLASSES for c in classes):
            tag.decompose()
            removed += 1
        elif tag.name == "div" and is_ad_class(classes):
            tag.decompose()
            removed += 1
    return str(soup) if removed else html


@best_effort
def remove_trackers(html: str) -> str:
    """Remove analytics scripts, tracking pixels and pixel ``<noscript>`` fallbacks."""
    soup = parse(html)
    removed = 0
    for tag in soup.find_all(["script", "img", "iframe"]):
        if _decomposed(tag):
            continue
        src = tag.get("src") or ""
        inline = (tag.string or "") if tag.name == "script" and not src else ""
        if is_tracker_url(src) or matches_any(str(inline), TRACKER_INLINE_PATTERNS):
            tag.decompose()
            removed += 1
    for tag in soup.find_all("noscript"):
        if not _decomposed(tag) and is_tracker_url(tag.decode_contents()):
            tag.decompose()
            removed += 1
    return str(soup) if removed else html


@best_effort
def sanitize(html: str) -> str:
    """Strip inline event handlers and scripts that use eval or document.write."""
    soup = parse(html)
    changed = False
    for tag in soup.find_all(True):
        handlers = [name for name in tag.attrs if _ON_ATTR.match(name)]
        for name in handlers:
            del tag[name]
            changed = True
    for script in soup.find_all("script"):
        if script.get("src"):
            continue
        if DANGEROUS_SCRIPT.search(script.string or ""):
            script.decompose()
            changed = True
    return str(soup) if changed else html


def security_headers(https: bool = True) -> Dict[str, str]:
    headers = {
        "Content-Security-Policy": f"{SECURE_CSP}; frame-ancestors 'self'",
        "X-Content-Type-Options": "nosniff",
        "X-Frame-Options": "SAMEORIGIN",
        "Referrer-Policy": "no-referrer",
    }
    if https:
        headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
    return headers


@best_effort
def inject_security_meta(html: str) -> str:
    if has_injection(html, "security"):
        return html
    snippet = (
        '<meta data-proxy-injected="security" http-equiv="Content-Security-Policy" '
        f'content="{SECURE_CSP}">'
        '<meta http-equiv="X-Content-Type-Options" content="nosniff">'
        '<meta http-equiv="X-Frame-Options" content="SAMEORIGIN">'
        '<meta http-equiv="Referrer-Policy" content="no-referrer">'
        '<meta name="robots" content="noindex, nofollow">'
    )
    return inject_into_head(html, snippet)


@best_effort
def upgrade_insecure(html: str) -> str:
    """Point plain ``http://`` references at their ``https://`` equivalents."""
    soup = parse(html)
    changed = False
    for tag in soup.find_all(True):
        for attr in ("href", "src", "action", "poster"):
            value = tag.get(attr)
            if isinstance(value, str) and value.lower().startswith("http://"):
                tag[attr] = "https://" + value[len("http://"):]
                changed = True
    return str(soup) if changed else html
