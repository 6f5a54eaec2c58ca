import logging
from contextlib import asynccontextmanager
from typing import Sequence

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import ReadableSpan, TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, SpanExporter, SpanExportResult
from prometheus_client import Info
from prometheus_fastapi_instrumentator import Instrumentator

from sandbox_proxy.errors import InvalidUrl, ProxyError
from sandbox_proxy.proxy import ProxyService
from sandbox_proxy.proxy import router as proxy_router
from sandbox_proxy.vars import OTLP_ENDPOINT, OTLP_HEADERS, PROXY_BASE_PATH, PROXY_VERSION, SERVICE_NAME
from sandbox_proxy.ws import router as ws_router

logger = logging.getLogger("uvicorn.error")

PROXY_FEATURES = "caching,compression,adblock,security,websocket"


class FilteringSpanExporter(SpanExporter):
    """
    Wrapper exporter that drops the per-message ASGI spans emitted for
    response bodies and relayed WebSocket frames.
    """

    NOISY_EVENTS = {"http.response.body", "websocket.send", "websocket.receive"}

    def __init__(self, exporter: SpanExporter):
        self.exporter = exporter

    def export(self, spans: Sequence[ReadableSpan]) -> SpanExportResult:
        filtered_spans = [
            span
            for span in spans
            if not (span.attributes and span.attributes.get("asgi.event.type") in self.NOISY_EVENTS)
        ]
        if filtered_spans:
            return self.exporter.export(filtered_spans)
        return SpanExportResult.SUCCESS

    def shutdown(self):
        return self.exporter.shutdown()

    def force_flush(self, timeout_millis: int = 30000):
        return self.exporter.force_flush(timeout_millis)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"[Server] {SERVICE_NAME} {PROXY_VERSION} serving {PROXY_BASE_PATH}")
    try:
        yield
    finally:
        service: ProxyService = app.state.proxy_service
        await service.aclose()
        logger.info("[Server] Proxy service closed")


app = FastAPI(title=SERVICE_NAME, version=PROXY_VERSION, lifespan=lifespan)
app.state.proxy_service = ProxyService()
# Overridable WebSocket settings; None means the library defaults
app.state.ws_connect = None
app.state.ws_heartbeat_interval = None

instrumentator = Instrumentator()
instrumentator.instrument(app).expose(app)


def _error_response(status_code: int, content: dict) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=content, headers={"Access-Control-Allow-Origin": "*"})


@app.exception_handler(ProxyError)
async def proxy_error_handler(request: Request, exc: ProxyError):
    if isinstance(exc, InvalidUrl):
        request.app.state.proxy_service.record_error(exc)
    return _error_response(exc.status_code, exc.to_dict())


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    problems = []
    for error in exc.errors():
        name = error.get("loc", ("",))[-1]
        if error.get("type") == "missing":
            problems.append(f"{name} parameter is required")
        else:
            problems.append(f"{name}: {error.get('msg')}")
    error = InvalidUrl(
        "; ".join(problems),
        url=request.query_params.get("url"),
        error="Invalid request parameters",
    )
    request.app.state.proxy_service.record_error(error)
    return _error_response(error.status_code, error.to_dict())


@app.middleware("http")
async def proxy_headers(request: Request, call_next):
    response = await call_next(request)
    if request.url.path.startswith(PROXY_BASE_PATH):
        response.headers["X-Proxy-Version"] = PROXY_VERSION
        response.headers["X-Proxy-Features"] = PROXY_FEATURES
        response.headers["X-Powered-By"] = SERVICE_NAME
    return response


trace.set_tracer_provider(TracerProvider(resource=Resource.create({"service.name": SERVICE_NAME})))
tracer_provider = trace.get_tracer_provider()
if OTLP_ENDPOINT:
    otlp_exporter = OTLPSpanExporter(
        endpoint=OTLP_ENDPOINT,
        headers=(dict(h.split("=", 1) for h in OTLP_HEADERS.split(",") if "=" in h) if OTLP_HEADERS else None),
    )
    tracer_provider.add_span_processor(BatchSpanProcessor(FilteringSpanExporter(otlp_exporter)))

FastAPIInstrumentor.instrument_app(app)

app_info = Info("fastapi_app_info", "Application Info")
app_info.info({"app_name": SERVICE_NAME, "version": PROXY_VERSION})

app.include_router(proxy_router)
app.include_router(ws_router)
