import logging

from fastapi import FastAPI
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from previewguard import __version__
from previewguard.api.middleware.auth import ApiKeyMiddleware
from previewguard.api.middleware.logging import RequestLoggingMiddleware
from previewguard.api.routes.convert import router as convert_router
from previewguard.config import Settings, get_settings
from previewguard.core.converter import ConverterDispatcher
from previewguard.core.pipeline import ConversionPipeline
from previewguard.core.scan_client import ScanClient
from previewguard.core.sinks import LocalEphemeralSink, RemoteSink, SinkRouter
from previewguard.engines import ClamdAdapter, ClamdscanAdapter, LibreOfficeRenderer, ScanEngine
from previewguard.services.ephemeral_store import EphemeralStore

logger = logging.getLogger(__name__)


def build_scan_engine(settings: Settings) -> ScanEngine:
    if settings.scan_backend == "clamdscan":
        return ClamdscanAdapter(
            binary=settings.clamdscan_binary, timeout=settings.scan_timeout_seconds
        )
    return ClamdAdapter(
        host=settings.clamav_host,
        port=settings.clamav_port,
        socket_path=settings.clamav_socket,
        timeout=settings.scan_timeout_seconds,
        instream=settings.clamav_instream,
    )


def create_app(
    settings: Settings | None = None,
    *,
    scan_engine: ScanEngine | None = None,
    renderer: LibreOfficeRenderer | None = None,
    store: EphemeralStore | None = None,
    remote_sink: RemoteSink | None = None,
) -> FastAPI:
    """Build the application and wire its collaborators onto ``app.state``.

    Every collaborator can be injected; the defaults are built from
    *settings*.
    """
    settings = settings or get_settings()

    app = FastAPI(
        title="PreviewGuard API",
        description="Scan-first upload conversion service",
        version=__version__,
        debug=settings.debug,
    )

    app.add_middleware(ApiKeyMiddleware, api_key=settings.api_key)
    app.add_middleware(RequestLoggingMiddleware)

    app.include_router(convert_router)

    store = store or EphemeralStore(
        storage_dir=settings.local_store_dir,
        ttl_seconds=settings.local_store_ttl_seconds,
    )
    scan_client = ScanClient(
        scan_engine or build_scan_engine(settings),
        timeout=settings.scan_timeout_seconds,
        max_workers=settings.scan_max_workers,
    )
    converter = ConverterDispatcher(
        settings.work_dir,
        renderer
        or LibreOfficeRenderer(
            binary=settings.soffice_binary, timeout=settings.conversion_timeout_seconds
        ),
        concurrency=settings.conversion_concurrency,
        timeout=settings.conversion_timeout_seconds,
    )
    sinks = SinkRouter(
        remote_sink or RemoteSink(timeout=settings.upload_timeout_seconds),
        LocalEphemeralSink(store),
    )

    # Collaborators stored on app state so they can be accessed by routes and tests
    app.state.settings = settings
    app.state.store = store
    app.state.scan_client = scan_client
    app.state.converter = converter
    app.state.pipeline = ConversionPipeline(
        scan_client=scan_client,
        converter=converter,
        sinks=sinks,
        local_prefix=settings.local_sink_prefix,
        allow_local=settings.allow_local_sink,
    )

    @app.get("/healthz", tags=["health"])
    async def health_check() -> JSONResponse:
        return JSONResponse({"status": "ok"})

    @app.get("/readyz", tags=["health"])
    async def readiness_check() -> JSONResponse:
        engine_ok = await app.state.scan_client.ping()
        body = {
            "status": "ready" if engine_ok else "unavailable",
            "scan_engine": app.state.scan_client.engine.name,
        }
        return JSONResponse(body, status_code=200 if engine_ok else 503)

    @app.get("/metrics", include_in_schema=False)
    async def metrics() -> Response:
        return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)

    @app.on_event("startup")
    async def startup_event() -> None:
        logger.info("PreviewGuard API starting up (environment=%s)", settings.environment)
        if not settings.api_key:
            logger.warning("API_KEY is not set; POST /convert will answer 500")
        app.state.store.start()

    @app.on_event("shutdown")
    async def shutdown_event() -> None:
        await app.state.store.stop()
        app.state.scan_client.shutdown()
        app.state.converter.shutdown()
        logger.info("PreviewGuard API shutting down")

    return app


logging.basicConfig(
    level=get_settings().log_level, format="%(asctime)s %(levelname)s %(message)s"
)

app = create_app()
