from .routes import router
from .service import ProxyService, UpstreamResponse, get_proxy_service
from .validation import validate_target_url

__all__ = ["router", "ProxyService", "UpstreamResponse", "get_proxy_service", "validate_target_url"]
