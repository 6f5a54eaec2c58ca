import random
from typing import Dict, Optional

from sandbox_proxy.transform.context import ContentKind

USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:109.0) Gecko/20100101 Firefox/121.0",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.1 Safari/605.1.15",
]

MOBILE_USER_AGENT = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_1 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.1 Mobile/15E148 Safari/604.1"
)

ACCEPT_BY_KIND = {
    ContentKind.HTML: "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,*/*;q=0.8",
    ContentKind.IMAGE: "image/avif,image/webp,image/apng,image/svg+xml,image/*,*/*;q=0.8",
    ContentKind.VIDEO: "video/mp4,video/webm,video/ogg,video/*;q=0.9,application/octet-stream;q=0.8,*/*;q=0.7",
    ContentKind.DOCUMENT: (
        "application/pdf,application/msword,"
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document,"
        "application/vnd.ms-excel,"
        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet,*/*"
    ),
    ContentKind.JSON: "application/json, text/plain, */*",
    ContentKind.BINARY: "*/*",
}

_FETCH_DEST = {
    ContentKind.HTML: ("document", "navigate"),
    ContentKind.IMAGE: ("image", "no-cors"),
    ContentKind.VIDEO: ("video", "no-cors"),
}


def random_user_agent() -> str:
    return random.choice(USER_AGENTS)


def accept_for(kind: ContentKind) -> str:
    return ACCEPT_BY_KIND.get(ContentKind(kind), "*/*")


def build_request_headers(
    kind: ContentKind,
    range_header: Optional[str] = None,
    mobile: bool = False,
) -> Dict[str, str]:
    """
    Outbound headers for one fetch. ``Range`` is only forwarded for
    image and video fetches.
    """
    kind = ContentKind(kind)
    headers = {
        "Accept": accept_for(kind),
        "Accept-Language": "en-US,en;q=0.9",
        "User-Agent": MOBILE_USER_AGENT if mobile else random_user_agent(),
        "Cache-Control": "no-cache",
    }
    if kind in _FETCH_DEST:
        dest, mode = _FETCH_DEST[kind]
        headers["Sec-Fetch-Dest"] = dest
        headers["Sec-Fetch-Mode"] = mode
        headers["Sec-Fetch-Site"] = "none" if kind == ContentKind.HTML else "cross-site"
    if kind == ContentKind.HTML:
        headers["Upgrade-Insecure-Requests"] = "1"
    if range_header and kind in (ContentKind.IMAGE, ContentKind.VIDEO):
        headers["Range"] = range_header
    return headers
