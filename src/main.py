"""FastAPI application entry point.

Run with: uvicorn src.main:app --port 8000
"""

# ruff: noqa: E402  -- uvloop.install() must run before other imports

import uvloop

uvloop.install()

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from config.settings import Settings, settings
from src.bootstrap import AppContainer, build_container
from src.pm_common.errors import AppError
from src.pm_common.logging_setup import configure_logging
from src.pm_common.request_log import RequestLogMiddleware
from src.pm_common.response import error_response
from src.pm_market.api.router import router as market_router
from src.pm_oracle.api.router import router as oracle_router

VERSION = "0.1.0"


def create_app(
    container: AppContainer | None = None,
    *,
    app_settings: Settings = settings,
    start_background: bool | None = None,
) -> FastAPI:
    """Build the app. A pre-built container skips production wiring (tests)."""
    run_scheduler = app_settings.SCHEDULER_ENABLED if start_background is None else start_background

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Startup: wire services, start sweeps. Shutdown: drain, dispose."""
        configure_logging(app_settings.LOG_LEVEL)
        built = container or build_container(app_settings)
        app.state.container = built
        if run_scheduler:
            built.scheduler.start()
        yield
        if built.scheduler.running:
            await built.scheduler.stop(app_settings.SHUTDOWN_GRACE_SECONDS)
        await built.aclose()

    app = FastAPI(
        title=app_settings.APP_NAME,
        version=VERSION,
        lifespan=lifespan,
    )
    if container is not None:
        # Available before lifespan runs, e.g. for transports that skip it
        app.state.container = container

    app.add_middleware(RequestLogMiddleware)

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
        resp = error_response(exc.code, exc.message)
        resp.request_id = getattr(request.state, "request_id", resp.request_id)
        return JSONResponse(
            status_code=exc.http_status,
            content=resp.model_dump(),
        )

    app.include_router(market_router, prefix="/api/v1")
    app.include_router(oracle_router, prefix="/api/v1")

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok", "version": VERSION}

    return app


app = create_app()
