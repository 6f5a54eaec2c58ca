from urllib.parse import urlsplit, urlunsplit


def short_url(url: str, limit: int = 120) -> str:
    """Shorten a URL for log lines, dropping any userinfo."""
    if not url:
        return "<empty>"
    try:
        parts = urlsplit(url)
        if parts.username or parts.password:
            netloc = parts.hostname or ""
            if parts.port:
                netloc = f"{netloc}:{parts.port}"
            url = urlunsplit(parts._replace(netloc=netloc))
    except ValueError:
        pass
    return url if len(url) <= limit else f"{url[:limit]}..."
