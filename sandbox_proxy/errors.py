"""
Error taxonomy for the proxy endpoints.

Every failure that reaches an endpoint boundary is converted into a
``ProxyError`` and rendered as ``{"error", "details", "url"}`` JSON with the
matching HTTP status.
"""

import asyncio
import errno
import socket
import ssl
from typing import Optional

import httpx

from sandbox_proxy.utils.exception_logging import format_exception_message, iter_exception_chain


class ProxyError(Exception):
    status_code = 500
    error = "Proxy request failed"

    def __init__(
        self,
        details: str = "",
        url: Optional[str] = None,
        error: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(details or error or self.error)
        self.details = details
        self.url = url
        if error is not None:
            self.error = error
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self) -> dict:
        return {"error": self.error, "details": self.details, "url": self.url}


class InvalidUrl(ProxyError):
    status_code = 400
    error = "Invalid URL"


class ProxyTimeout(ProxyError):
    status_code = 408
    error = "Request timeout"


class UpstreamNotFound(ProxyError):
    status_code = 404
    error = "Website not found"


class UpstreamRefused(ProxyError):
    status_code = 503
    error = "Connection refused"


class UpstreamReset(ProxyError):
    status_code = 503
    error = "Connection reset"


class TlsError(ProxyError):
    status_code = 502
    error = "SSL certificate error"


class UpstreamHttpError(ProxyError):
    error = "Upstream request failed"

    def __init__(
        self,
        status_code: int,
        reason: str = "",
        url: Optional[str] = None,
        label: str = "Upstream request",
    ):
        super().__init__(
            details=f"The upstream server answered {status_code} {reason}".strip(),
            url=url,
            error=f"{label} failed: {status_code} {reason}".strip(),
            status_code=status_code if 400 <= status_code <= 599 else 502,
        )
        self.upstream_status = status_code


class UnknownProxyError(ProxyError):
    status_code = 500
    error = "Failed to fetch the requested URL"


_DNS_MARKERS = (
    "name or service not known",
    "nodename nor servname",
    "getaddrinfo",
    "enotfound",
    "name resolution",
)


def classify_exception(
    exc: BaseException, url: Optional[str] = None, timeout: Optional[float] = None
) -> ProxyError:
    """Map a transport-level failure onto the proxy error taxonomy."""
    if isinstance(exc, ProxyError):
        if exc.url is None:
            exc.url = url
        return exc

    if isinstance(exc, (asyncio.TimeoutError, httpx.TimeoutException)):
        limit = f" ({timeout:g}s limit)" if timeout else ""
        return ProxyTimeout(f"The website took too long to respond{limit}", url=url)

    for cause in iter_exception_chain(exc):
        if isinstance(cause, ssl.SSLError):
            return TlsError("There was an issue with the website's SSL certificate", url=url)
        if isinstance(cause, socket.gaierror):
            return UpstreamNotFound("The domain name could not be resolved", url=url)
        if isinstance(cause, ConnectionRefusedError):
            return UpstreamRefused("The website refused the connection", url=url)
        if isinstance(cause, ConnectionResetError):
            return UpstreamReset("The connection was reset by the server", url=url)
        if isinstance(cause, OSError) and cause.errno == errno.ECONNREFUSED:
            return UpstreamRefused("The website refused the connection", url=url)

    message = str(exc).lower()
    if "certificate" in message or "ssl" in message:
        return TlsError("There was an issue with the website's SSL certificate", url=url)
    if any(marker in message for marker in _DNS_MARKERS):
        return UpstreamNotFound("The domain name could not be resolved", url=url)
    if "refused" in message:
        return UpstreamRefused("The website refused the connection", url=url)
    if "reset" in message or isinstance(exc, httpx.RemoteProtocolError):
        return UpstreamReset("The connection was reset by the server", url=url)

    return UnknownProxyError(format_exception_message(exc), url=url)
