import logging
import time
from contextlib import contextmanager
from typing import Dict, Optional
from urllib.parse import urlsplit

from opentelemetry.trace import Status, StatusCode, Tracer

from sandbox_proxy.errors import ProxyError
from sandbox_proxy.utils import short_url

logger = logging.getLogger("uvicorn.error")


@contextmanager
def traced_request(
    tracer: Tracer,
    operation: str,
    target_url: Optional[str],
    endpoint: Optional[str],
    start_message: str,
    extra_attrs: Optional[Dict] = None,
):
    """
    Span one proxied request: tag it with target and endpoint, log the start
    message, and on the way out record duration and any proxy error status.
    """
    started = time.monotonic()
    with tracer.start_as_current_span(operation) as span:
        if target_url:
            span.set_attribute("proxy.target_url", short_url(target_url))
            span.set_attribute("proxy.target_host", urlsplit(target_url).hostname or "")
        if endpoint:
            span.set_attribute("proxy.endpoint", endpoint)
        for key, value in (extra_attrs or {}).items():
            span.set_attribute(key, value)
        logger.info(start_message)
        try:
            yield span
        except ProxyError as e:
            span.set_attribute("proxy.error", e.error)
            span.set_attribute("http.status_code", e.status_code)
            span.set_status(Status(StatusCode.ERROR, e.details or e.error))
            raise
        finally:
            span.set_attribute("proxy.duration_ms", round((time.monotonic() - started) * 1000, 1))
