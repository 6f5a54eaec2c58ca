from enum import Enum
from urllib.parse import urlsplit

from pydantic import BaseModel, ConfigDict


class ProxyMode(str, Enum):
    EMBED = "embed"
    SIMPLE = "simple"


class ContentKind(str, Enum):
    HTML = "html"
    IMAGE = "image"
    VIDEO = "video"
    DOCUMENT = "document"
    JSON = "json"
    BINARY = "binary"


class Theme(str, Enum):
    NONE = "none"
    DARK = "dark"
    LIGHT = "light"
    AUTO = "auto"


class PolicyFlags(BaseModel):
    """Content policies for one request, validated once at the endpoint."""

    model_config = ConfigDict(frozen=True)

    ad_block: bool = False
    remove_trackers: bool = False
    https_only: bool = False
    sanitize: bool = False
    mobile_optimize: bool = False
    theme: Theme = Theme.NONE
    minify: bool = False
    remove_comments: bool = False
    optimize_js: bool = False

    def fingerprint(self) -> str:
        """Stable, compact rendering used inside cache keys."""
        parts = []
        for name, value in self.model_dump().items():
            if isinstance(value, Enum):
                value = value.value
            elif isinstance(value, bool):
                value = int(value)
            parts.append(f"{name}={value}")
        return ",".join(parts)


class ProxyRequestContext(BaseModel):
    model_config = ConfigDict(frozen=True)

    target_url: str
    endpoint: str = "site"
    mode: ProxyMode = ProxyMode.EMBED
    content_kind: ContentKind = ContentKind.HTML
    flags: PolicyFlags = PolicyFlags()

    @property
    def hostname(self) -> str:
        return urlsplit(self.target_url).hostname or ""

    @property
    def origin(self) -> str:
        parts = urlsplit(self.target_url)
        return f"{parts.scheme}://{parts.netloc}"
