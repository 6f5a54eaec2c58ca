from .context import ContentKind, PolicyFlags, ProxyMode, ProxyRequestContext, Theme
from .filters import (
    EMBED_CSP,
    filter_ads,
    inject_security_meta,
    remove_trackers,
    sanitize,
    security_headers,
    upgrade_insecure,
)
from .pipeline import inject_custom_css, render_html, render_pdf_viewer, render_screenshot_preview
from .rewrite import inject_proxy_head, proxy_url, rewrite_css_urls, rewrite_urls, strip_frame_restrictions
from .styles import inject_theme, optimize, optimize_mobile

__all__ = [
    "ContentKind",
    "PolicyFlags",
    "ProxyMode",
    "ProxyRequestContext",
    "Theme",
    "EMBED_CSP",
    "filter_ads",
    "inject_security_meta",
    "remove_trackers",
    "sanitize",
    "security_headers",
    "upgrade_insecure",
    "inject_custom_css",
    "render_html",
    "render_pdf_viewer",
    "render_screenshot_preview",
    "inject_proxy_head",
    "proxy_url",
    "rewrite_css_urls",
    "rewrite_urls",
    "strip_frame_restrictions",
    "inject_theme",
    "optimize",
    "optimize_mobile",
]
