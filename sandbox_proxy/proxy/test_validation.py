import pytest

from sandbox_proxy.errors import InvalidUrl
from sandbox_proxy.proxy.headers import MOBILE_USER_AGENT, USER_AGENTS, build_request_headers
from sandbox_proxy.proxy.validation import WS_SCHEMES, force_https, validate_target_url
from sandbox_proxy.transform import ContentKind


@pytest.mark.parametrize(
    "url",
    [
        "https://example.com",
        "http://example.com:8080/path?q=1#frag",
        "  https://example.com/padded  ",
        "https://sub.localhost.example/",
    ],
)
def test_valid_urls(url):
    assert validate_target_url(url) == url.strip()


@pytest.mark.parametrize(
    "url, details",
    [
        (None, "URL parameter is required"),
        ("   ", "URL parameter is required"),
        ("https://example.com:99999/", "Invalid URL format"),
        ("http://[::1/", "Invalid URL format"),
        ("ftp://example.com/", "Only HTTP/HTTPS URLs are allowed"),
        ("javascript:alert(1)", "Only HTTP/HTTPS URLs are allowed"),
        ("example.com/page", "Only HTTP/HTTPS URLs are allowed"),
        ("https://", "The hostname appears to be invalid or incomplete"),
        ("https://api/users", "The hostname appears to be invalid or incomplete"),
        ("http://localhost:3000/", "The hostname appears to be invalid or incomplete"),
    ],
)
def test_invalid_urls(url, details):
    with pytest.raises(InvalidUrl) as exc_info:
        validate_target_url(url)

    assert exc_info.value.details == details
    assert exc_info.value.status_code == 400


def test_invalid_hostname_has_its_own_error_title():
    with pytest.raises(InvalidUrl) as exc_info:
        validate_target_url("https://api/x")

    assert exc_info.value.error == "Invalid hostname"


def test_websocket_schemes():
    assert validate_target_url("wss://echo.example.com/", schemes=WS_SCHEMES) == "wss://echo.example.com/"
    with pytest.raises(InvalidUrl):
        validate_target_url("https://echo.example.com/", schemes=WS_SCHEMES)


def test_force_https():
    assert force_https("http://example.com/a?b=1") == "https://example.com/a?b=1"
    assert force_https("https://example.com/") == "https://example.com/"


def test_html_headers():
    headers = build_request_headers(ContentKind.HTML)

    assert headers["User-Agent"] in USER_AGENTS
    assert headers["Upgrade-Insecure-Requests"] == "1"
    assert headers["Sec-Fetch-Mode"] == "navigate"
    assert "Range" not in headers


def test_range_is_only_forwarded_for_media():
    assert build_request_headers(ContentKind.VIDEO, range_header="bytes=0-")["Range"] == "bytes=0-"
    assert build_request_headers(ContentKind.IMAGE, range_header="bytes=0-")["Range"] == "bytes=0-"
    assert "Range" not in build_request_headers(ContentKind.HTML, range_header="bytes=0-")
    assert "Range" not in build_request_headers(ContentKind.JSON, range_header="bytes=0-")


def test_mobile_user_agent():
    assert build_request_headers(ContentKind.HTML, mobile=True)["User-Agent"] == MOBILE_USER_AGENT


def test_json_accept():
    headers = build_request_headers(ContentKind.JSON)

    assert headers["Accept"].startswith("application/json")
    assert "Sec-Fetch-Dest" not in headers
