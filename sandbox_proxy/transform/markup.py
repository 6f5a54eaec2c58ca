import functools
import logging
import re
from typing import Callable

from bs4 import BeautifulSoup

logger = logging.getLogger("uvicorn.error")

INJECTED_ATTR = "data-proxy-injected"

_HEAD_CLOSE = re.compile(r"</head\s*>", re.IGNORECASE)
_HEAD_OPEN = re.compile(r"<head(?:\s[^>]*)?>", re.IGNORECASE)
_HTML_OPEN = re.compile(r"<html(?:\s[^>]*)?>", re.IGNORECASE)


def best_effort(func: Callable[..., str]) -> Callable[..., str]:
    """
    Wrap an HTML pass so that any failure leaves the document untouched.
    The first positional argument of the wrapped function is the document.
    """

    @functools.wraps(func)
    def wrapper(html: str, *args, **kwargs) -> str:
        if not html:
            return html
        try:
            return func(html, *args, **kwargs)
        except Exception as e:
            logger.warning(f"[Transform] {func.__name__} failed, keeping input: {e}")
            return html

    return wrapper


def parse(html: str) -> BeautifulSoup:
    return BeautifulSoup(html, "html.parser")


def has_injection(html: str, name: str) -> bool:
    return f'{INJECTED_ATTR}="{name}"' in html


def inject_into_head(html: str, snippet: str, at_start: bool = False) -> str:
    """
    Insert ``snippet`` into the document head, creating one if missing.
    The rest of the markup is left byte for byte as it was.
    """
    if at_start:
        match = _HEAD_OPEN.search(html)
        if match:
            return html[: match.end()] + snippet + html[match.end():]
    match = _HEAD_CLOSE.search(html)
    if match:
        return html[: match.start()] + snippet + html[match.start():]
    match = _HEAD_OPEN.search(html)
    if match:
        return html[: match.end()] + snippet + html[match.end():]
    match = _HTML_OPEN.search(html)
    if match:
        return html[: match.end()] + f"<head>{snippet}</head>" + html[match.end():]
    return f"<head>{snippet}</head>{html}"


def style_block(name: str, css: str) -> str:
    return f'<style type="text/css" {INJECTED_ATTR}="{name}">{css}</style>'
