import os

SERVICE_NAME = os.getenv("SERVICE_NAME", "sandbox-proxy")
HOST = os.environ.get("HOSTNAME", "0.0.0.0")
PORT = int(os.environ.get("PORT", "5000"))

PROXY_BASE_PATH = os.environ.get("PROXY_BASE_PATH", "/proxy").rstrip("/")
PROXY_VERSION = "2.0.0"

# Scheduler
PROXY_MAX_CONCURRENT = int(os.getenv("PROXY_MAX_CONCURRENT", "5"))
PROXY_RATE_LIMIT = int(os.getenv("PROXY_RATE_LIMIT", "50"))
PROXY_RATE_WINDOW_SECONDS = float(os.getenv("PROXY_RATE_WINDOW_SECONDS", "60"))
PROXY_BACKOFF_BASE_MS = int(os.getenv("PROXY_BACKOFF_BASE_MS", "1000"))
PROXY_BACKOFF_CAP_MS = int(os.getenv("PROXY_BACKOFF_CAP_MS", "30000"))
PROXY_RATE_TABLE_SIZE = int(os.getenv("PROXY_RATE_TABLE_SIZE", "1000"))

# Cache
PROXY_CACHE_MAX_AGE = float(os.getenv("PROXY_CACHE_MAX_AGE", "300"))
PROXY_CACHE_MAX_SIZE = int(os.getenv("PROXY_CACHE_MAX_SIZE", "100"))
PROXY_CACHE_COMPRESS_THRESHOLD = int(
    os.getenv("PROXY_CACHE_COMPRESS_THRESHOLD", "1024")
)
PROXY_CACHE_EVICT_BATCH = int(os.getenv("PROXY_CACHE_EVICT_BATCH", "10"))
PROXY_MAX_CACHEABLE_BYTES = int(
    os.getenv("PROXY_MAX_CACHEABLE_BYTES", str(10 * 1024 * 1024))
)

# Content policies
PROXY_VERIFY_TLS = os.getenv("PROXY_VERIFY_TLS", "true").lower() == "true"

# WebSockets
WS_HEARTBEAT_INTERVAL = float(os.getenv("WS_HEARTBEAT_INTERVAL", "30"))
PROXY_DEFAULT_ORIGIN = os.getenv("PROXY_DEFAULT_ORIGIN", "https://proxy.webos.dev")

# Health probes, comma separated. Empty disables upstream probing.
PROXY_HEALTH_CHECK_URLS = [
    u.strip() for u in os.getenv("PROXY_HEALTH_CHECK_URLS", "").split(",") if u.strip()
]

OTLP_ENDPOINT = os.getenv("OTLP_ENDPOINT")
OTLP_HEADERS = os.getenv("OTLP_HEADERS", "")
