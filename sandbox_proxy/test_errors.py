import asyncio
import socket
import ssl

import httpx
import pytest

from sandbox_proxy.errors import (
    InvalidUrl,
    ProxyTimeout,
    TlsError,
    UnknownProxyError,
    UpstreamHttpError,
    UpstreamNotFound,
    UpstreamRefused,
    UpstreamReset,
    classify_exception,
)

URL = "https://example.com/page"


def _wrapped(cause: BaseException, message: str = "transport failed") -> httpx.ConnectError:
    error = httpx.ConnectError(message)
    error.__cause__ = cause
    return error


def test_proxy_error_renders_error_details_and_url():
    error = InvalidUrl("Only HTTP/HTTPS URLs are allowed", url="ftp://x")

    assert error.status_code == 400
    assert error.to_dict() == {
        "error": "Invalid URL",
        "details": "Only HTTP/HTTPS URLs are allowed",
        "url": "ftp://x",
    }


def test_upstream_http_error_keeps_upstream_status():
    error = UpstreamHttpError(404, "Not Found", url=URL, label="Image request")

    assert error.status_code == 404
    assert error.upstream_status == 404
    assert error.error == "Image request failed: 404 Not Found"


def test_upstream_redirect_status_maps_to_bad_gateway():
    assert UpstreamHttpError(304, "Not Modified", url=URL).status_code == 502


@pytest.mark.parametrize(
    "exc, expected",
    [
        (asyncio.TimeoutError(), ProxyTimeout),
        (httpx.ReadTimeout("read timed out"), ProxyTimeout),
        (_wrapped(ConnectionRefusedError(111, "Connection refused")), UpstreamRefused),
        (_wrapped(ConnectionResetError(104, "Connection reset by peer")), UpstreamReset),
        (_wrapped(socket.gaierror(-2, "Name or service not known")), UpstreamNotFound),
        (_wrapped(ssl.SSLError(1, "CERTIFICATE_VERIFY_FAILED")), TlsError),
        (httpx.ConnectError("[Errno -2] Name or service not known"), UpstreamNotFound),
        (httpx.ConnectError("[Errno 111] Connection refused"), UpstreamRefused),
        (httpx.ConnectError("[SSL: CERTIFICATE_VERIFY_FAILED] certificate verify failed"), TlsError),
        (httpx.RemoteProtocolError("Server disconnected without sending a response."), UpstreamReset),
    ],
)
def test_classify_exception(exc, expected):
    error = classify_exception(exc, url=URL, timeout=10)

    assert isinstance(error, expected)
    assert error.url == URL


def test_timeout_details_mention_the_limit():
    error = classify_exception(asyncio.TimeoutError(), url=URL, timeout=25)

    assert error.status_code == 408
    assert "25s limit" in error.details


def test_unknown_failure_is_internal_error():
    error = classify_exception(RuntimeError("boom"), url=URL)

    assert isinstance(error, UnknownProxyError)
    assert error.status_code == 500
    assert error.details == "boom"


def test_proxy_errors_pass_through_and_get_url():
    original = UpstreamHttpError(500, "Internal Server Error")

    assert classify_exception(original, url=URL) is original
    assert original.url == URL
