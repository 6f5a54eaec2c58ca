import base64
import html as html_lib
from typing import Optional

from opentelemetry import trace

from sandbox_proxy.transform.context import ProxyMode, ProxyRequestContext, Theme
from sandbox_proxy.transform.filters import (
    filter_ads,
    inject_security_meta,
    remove_trackers,
    sanitize,
    upgrade_insecure,
)
from sandbox_proxy.transform.markup import best_effort, inject_into_head, style_block
from sandbox_proxy.transform.rewrite import inject_proxy_head, proxy_url, rewrite_urls, strip_frame_restrictions
from sandbox_proxy.transform.styles import inject_theme, optimize, optimize_mobile

tracer = trace.get_tracer(__name__)

HARDENED_ENDPOINTS = {"secure"}
OPTIMIZING_ENDPOINTS = {"optimize"}


def render_html(html: str, ctx: ProxyRequestContext, base_url: Optional[str] = None) -> str:
    """
    Run the content passes selected by ``ctx`` over an upstream document.

    Passes run in a fixed order: ad filtering, tracker removal, sanitizing,
    URL rewriting, embed head injection, mobile, theme, optimize and finally
    the security meta block. ``base_url`` is the URL the document was
    actually served from and defaults to the requested one.
    """
    base_url = base_url or ctx.target_url
    flags = ctx.flags
    with tracer.start_as_current_span("proxy.transform") as span:
        span.set_attribute("proxy.endpoint", ctx.endpoint)
        span.set_attribute("proxy.mode", ctx.mode.value)
        span.set_attribute("proxy.flags", flags.fingerprint())
        span.set_attribute("proxy.input_bytes", len(html))

        if flags.ad_block:
            html = filter_ads(html)
        if flags.remove_trackers:
            html = remove_trackers(html)
        if flags.sanitize:
            html = sanitize(html)
        if flags.https_only:
            html = upgrade_insecure(html)

        html = rewrite_urls(html, base_url, ctx.mode)
        html = strip_frame_restrictions(html)
        html = inject_proxy_head(html, base_url, ctx.mode)

        if flags.mobile_optimize:
            html = optimize_mobile(html)
        if flags.theme != Theme.NONE:
            html = inject_theme(html, flags.theme)
        if ctx.endpoint in OPTIMIZING_ENDPOINTS or flags.minify or flags.remove_comments or flags.optimize_js:
            html = optimize(
                html,
                minify=flags.minify,
                remove_comments=flags.remove_comments,
                optimize_js=flags.optimize_js,
            )
        if ctx.endpoint in HARDENED_ENDPOINTS:
            html = inject_security_meta(html)

        span.set_attribute("proxy.output_bytes", len(html))
    return html


@best_effort
def inject_custom_css(html: str, css: str, position: str = "append") -> str:
    """Add a caller supplied stylesheet at the start or end of the head."""
    block = style_block("custom", f"\n/* Custom Injected CSS */\n{css}\n")
    return inject_into_head(html, block, at_start=position == "prepend")


PDF_VIEWER_TEMPLATE = """<!DOCTYPE html>
<html>
<head>
<meta charset="utf-8">
<title>PDF Viewer</title>
<style>
body {{ margin: 0; padding: 0; height: 100vh; overflow: hidden; }}
iframe {{ width: 100%; height: 100%; border: none; }}
.pdf-controls {{ position: fixed; top: 10px; right: 10px; z-index: 1000; background: rgba(0,0,0,0.8); padding: 10px; border-radius: 5px; }}
.pdf-controls a, .pdf-controls button {{ background: #007bff; color: white; border: none; padding: 5px 10px; margin: 0 2px; border-radius: 3px; cursor: pointer; text-decoration: none; font: 13px sans-serif; }}
</style>
</head>
<body>
<div class="pdf-controls">
<a href="{download}" target="_blank" rel="noopener noreferrer">Download</a>
<button type="button" onclick="window.print()">Print</button>
</div>
<iframe src="data:application/pdf;base64,{payload}" type="application/pdf" title="{title}"></iframe>
</body>
</html>
"""


def render_pdf_viewer(payload: bytes, target_url: str) -> str:
    """Wrap a PDF in a minimal page that displays it inline."""
    escaped = html_lib.escape(target_url, quote=True)
    return PDF_VIEWER_TEMPLATE.format(
        download=escaped,
        title=escaped,
        payload=base64.b64encode(payload).decode("ascii"),
    )


SCREENSHOT_TEMPLATE = """<!DOCTYPE html>
<html>
<head>
<meta charset="utf-8">
<title>Website Screenshot Preview</title>
<style>
body {{ margin: 0; padding: 20px; font-family: Arial, sans-serif; }}
.screenshot-container {{ width: {width}px; height: {height}px; border: 1px solid #ddd; overflow: hidden; position: relative; background: white; }}
.screenshot-iframe {{ width: 100%; height: 100%; border: none; transform-origin: 0 0; transform: scale(1); }}
.screenshot-overlay {{ position: absolute; top: 10px; left: 10px; right: 10px; background: rgba(0,0,0,0.8); color: white; padding: 10px; border-radius: 5px; font-size: 14px; }}
</style>
</head>
<body>
<h2>Website Screenshot Preview</h2>
<div class="screenshot-container">
<div class="screenshot-overlay">Preview of: {title}</div>
<iframe class="screenshot-iframe" src="{frame}"></iframe>
</div>
<p>Dimensions: {width}x{height} | Format: {format}</p>
</body>
</html>
"""


def render_screenshot_preview(target_url: str, width: int, height: int, image_format: str) -> str:
    """
    Preview page framing the embedded site at a fixed size. No image is
    rendered server side; the format is only reported.
    """
    return SCREENSHOT_TEMPLATE.format(
        width=int(width),
        height=int(height),
        title=html_lib.escape(target_url, quote=True),
        frame=html_lib.escape(proxy_url("site", target_url, ProxyMode.EMBED), quote=True),
        format=html_lib.escape(image_format.upper()),
    )
