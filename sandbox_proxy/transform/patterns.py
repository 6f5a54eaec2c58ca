"""
Pattern lists used by the filtering passes.

These are a starting configuration tuned to well known ad and tracking
hosts. They are not exhaustive and must not be treated as a security
boundary.
"""

import re

AD_URL_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"doubleclick\.net",
        r"googlesyndication\.com",
        r"googletagmanager\.com",
        r"facebook\.com/tr",
        r"analytics\.google\.com",
        r"googleadservices\.com",
        r"amazon-adsystem\.com",
        r"(?:^|[/.])ads\.",
        r"(?:^|[/.])adsystem\.",
    )
]

TRACKER_URL_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"google-analytics\.com",
        r"googletagmanager\.com",
        r"analytics\.google\.com",
        r"facebook\.com/tr",
        r"connect\.facebook\.net",
        r"doubleclick\.net",
        r"static\.hotjar\.com",
        r"cdn\.segment\.com",
        r"scorecardresearch\.com",
    )
]

# Inline snippets that only exist to bootstrap a tracker
TRACKER_INLINE_PATTERNS = [
    re.compile(p)
    for p in (
        r"GoogleAnalyticsObject",
        r"\bgtag\s*\(",
        r"\bfbq\s*\(",
        r"googletagmanager\.com/gtm\.js",
    )
]

AD_CLASS_PREFIXES = ("ad-", "ads-", "google-ad")
AD_CLASS_WORDS = ("advertisement",)
AD_INS_CLASSES = ("adsbygoogle",)

IMAGE_SUFFIX = re.compile(r"\.(?:jpe?g|png|gif|webp|avif|svg|ico|bmp)(?:[?#].*)?$", re.IGNORECASE)
VIDEO_SUFFIX = re.compile(r"\.(?:mp4|webm|ogv|ogg|avi|mov|m4v|m3u8)(?:[?#].*)?$", re.IGNORECASE)

DANGEROUS_SCRIPT = re.compile(r"\beval\s*\(|document\.write", re.IGNORECASE)

CSS_URL = re.compile(r"""url\(\s*(["']?)([^"')]*?)\1\s*\)""", re.IGNORECASE)


def matches_any(value: str, patterns) -> bool:
    return bool(value) and any(p.search(value) for p in patterns)


def is_ad_url(value: str) -> bool:
    return matches_any(value, AD_URL_PATTERNS)


def is_tracker_url(value: str) -> bool:
    return matches_any(value, TRACKER_URL_PATTERNS)


def is_ad_class(classes) -> bool:
    for token in classes or ():
        token = token.lower()
        if token.startswith(AD_CLASS_PREFIXES) or any(w in token for w in AD_CLASS_WORDS):
            return True
    return False
