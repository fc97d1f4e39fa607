from contextlib import asynccontextmanager
import logging
import time

from fastapi import FastAPI
from starlette.requests import Request

from ledger_resolver.api.router import api_router
from ledger_resolver.core.config import Settings, get_settings
from ledger_resolver.core.telemetry import TelemetryRuntime, configure_logging, setup_api_telemetry, shutdown_api_telemetry
from ledger_resolver.services.resolver import get_resolver

logger = logging.getLogger(__name__)


async def log_request(request: Request, call_next):
    started_at = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - started_at) * 1000.0
    # Log the route template so project ids do not fan out into distinct log keys.
    route = request.scope.get("route")
    logger.info(
        "http request method=%s route=%s path=%s status=%s duration_ms=%.2f",
        request.method,
        getattr(route, "path", None),
        request.url.path,
        response.status_code,
        elapsed_ms,
    )
    return response


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings)
    runtime: TelemetryRuntime | None = None

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        try:
            yield
        finally:
            if runtime is not None:
                shutdown_api_telemetry(app, runtime)
            get_resolver.cache_clear()

    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.middleware("http")(log_request)
    app.include_router(api_router)
    runtime = setup_api_telemetry(app, settings)
    return app


app = create_app()
