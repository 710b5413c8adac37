"""
FastAPI service shell shared by edge proxy control plane processes.
"""

import os
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from shared.config import ServiceConfig, get_config
from shared.errors import ControlPlaneException
from shared.logging import clear_context, configure_logging, get_logger, set_request_id
from shared.metrics import get_metrics_collector

VERSION = "1.0.0"


class BaseService:
    """Common app wiring: request context, error translation, lifecycle.

    Subclasses register their routes in ``_setup_routes`` and their backend
    start/stop work in ``startup``/``shutdown``. The edge service owns every
    path on every host, so no fixed routes are registered here.
    """

    def __init__(self, service_name: str, port: int, config: Optional[ServiceConfig] = None):
        self.service_name = service_name
        self.port = port
        self.config = config or get_config(service_name, port)
        configure_logging(service_name, self.config.log_level, json_output=self.config.env != "local")

        self.logger = get_logger(f"{service_name}.service")
        self.metrics = get_metrics_collector(service_name)
        self._started_at = time.monotonic()

        self.app = FastAPI(
            title=f"{service_name.title()} Service",
            version=VERSION,
            docs_url=None,
            redoc_url=None,
            openapi_url=None,
            lifespan=self._lifespan,
        )
        self._setup_middleware()
        self._setup_exception_handlers()
        self._setup_routes()

    def _setup_middleware(self):

        @self.app.middleware("http")
        async def request_context(request: Request, call_next):
            request_id = set_request_id(request.headers.get("X-Request-ID"))
            started = time.perf_counter()
            try:
                response = await call_next(request)
            except Exception:
                clear_context()
                raise
            elapsed = time.perf_counter() - started

            # Set by the dispatcher; "unknown" when it never ran
            route = getattr(request.state, "route_kind", "unknown")
            self.metrics.record_http_request(request.method, route, response.status_code, elapsed)
            self.logger.info(
                "HTTP request",
                method=request.method,
                host=request.headers.get("host"),
                path=request.url.path,
                route=route,
                status_code=response.status_code,
                duration_ms=round(elapsed * 1000, 2),
            )

            response.headers.setdefault("X-Request-ID", request_id)
            clear_context()
            return response

    def _setup_exception_handlers(self):
        """Translate exceptions that escape a route into JSON errors."""

        @self.app.exception_handler(ControlPlaneException)
        async def control_plane_error(request: Request, exc: ControlPlaneException):
            self.logger.warning("Control plane error", code=exc.code, message=exc.message, details=exc.details)
            self.metrics.record_error(exc.code)
            return JSONResponse(status_code=exc.status_code, content=exc.to_response().to_body())

        @self.app.exception_handler(Exception)
        async def unhandled_error(request: Request, exc: Exception):
            self.logger.error("Unhandled exception", error=str(exc), exc_info=True)
            self.metrics.record_error("INTERNAL_ERROR")
            return JSONResponse(status_code=500, content={"error": "Internal server error"})

    @asynccontextmanager
    async def _lifespan(self, app: FastAPI) -> AsyncIterator[None]:
        await self.startup()
        try:
            yield
        finally:
            await self.shutdown()

    def _setup_routes(self):
        """Register service routes. Override in subclasses."""

    async def startup(self):
        """Open backend connections. Override in subclasses."""

    async def shutdown(self):
        """Release backend connections. Override in subclasses."""

    async def _check_dependencies(self) -> Dict[str, str]:
        """Map of dependency name to "ok" or "error". Override in subclasses."""
        return {}

    async def health_status(self) -> Dict[str, Any]:
        dependencies = await self._check_dependencies()
        healthy = all(state == "ok" for state in dependencies.values())
        return {
            "service": self.service_name,
            "status": "ok" if healthy else "degraded",
            "uptime_seconds": round(time.monotonic() - self._started_at, 3),
            "dependencies": dependencies,
            "version": VERSION,
            "commit": os.getenv("GIT_COMMIT", "unknown"),
        }

    def run(self):
        import uvicorn
        uvicorn.run(self.app, host=self.config.host, port=self.config.port,
                    log_level=self.config.log_level.lower())
