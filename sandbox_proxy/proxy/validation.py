from typing import Iterable, Optional
from urllib.parse import urlsplit

from sandbox_proxy.errors import InvalidUrl

HTTP_SCHEMES = ("http", "https")
WS_SCHEMES = ("ws", "wss")

# Hostnames that come from a client resolving a relative API path as a URL
_INCOMPLETE_HOSTS = {"api"}


def validate_target_url(raw: Optional[str], schemes: Iterable[str] = HTTP_SCHEMES) -> str:
    """
    Check that ``raw`` is an absolute URL we are willing to fetch and return
    it unchanged. Raises ``InvalidUrl`` otherwise.
    """
    if not raw or not raw.strip():
        raise InvalidUrl("URL parameter is required")
    raw = raw.strip()
    try:
        parts = urlsplit(raw)
        hostname = parts.hostname
        # Accessing the port validates it
        parts.port
    except ValueError:
        raise InvalidUrl("Invalid URL format", url=raw)

    schemes = tuple(schemes)
    if parts.scheme.lower() not in schemes:
        allowed = "/".join(s.upper() for s in schemes)
        raise InvalidUrl(f"Only {allowed} URLs are allowed", url=raw)

    if not hostname or hostname in _INCOMPLETE_HOSTS or (
        "localhost" in hostname and "." not in hostname
    ):
        raise InvalidUrl(
            "The hostname appears to be invalid or incomplete",
            url=raw,
            error="Invalid hostname",
        )
    return raw


def force_https(url: str) -> str:
    parts = urlsplit(url)
    if parts.scheme.lower() != "http":
        return url
    return parts._replace(scheme="https").geturl()
