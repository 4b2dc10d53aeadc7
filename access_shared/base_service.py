"""
Base service class for Media Gate access layer services.
"""

import os
import time
from typing import Dict, Optional

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST

from access_shared.config import ServiceConfig, get_config
from access_shared.errors import AccessLayerException, ValidationError
from access_shared.logging import (
    clear_context, configure_logging, get_logger, set_request_id, set_subject_context
)
from access_shared.metrics import get_metrics_collector


SERVICE_VERSION = "1.0.0"


class BaseService:
    """
    FastAPI application shell shared by access layer services.

    Subclasses add their routes and override ``_check_dependencies`` so that
    ``/health`` reflects the stores they rely on.
    """

    def __init__(self, service_name: str, port: int, config: Optional[ServiceConfig] = None):
        self.service_name = service_name
        self.port = port
        self.config = config or get_config(service_name, port)
        self.metrics = get_metrics_collector(service_name)
        self._start_time = time.time()

        configure_logging(service_name, self.config.log_level)
        self.logger = get_logger(service_name)

        self.app = self._create_app()
        self._setup_middleware()
        self._setup_routes()
        self._setup_error_handlers()

    def _create_app(self) -> FastAPI:
        title = self.service_name.replace("_", " ").title()
        docs_enabled = self.config.env == "local"
        return FastAPI(
            title=f"{title} Service",
            description=f"Media Gate Access Layer - {title} Service",
            version=SERVICE_VERSION,
            docs_url="/docs" if docs_enabled else None,
            redoc_url="/redoc" if docs_enabled else None,
        )

    def _setup_middleware(self):
        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"] if self.config.env == "local" else [],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
            expose_headers=["X-Request-ID", "X-RateLimit-Limit", "X-RateLimit-Remaining", "X-RateLimit-Reset"],
        )

        @self.app.middleware("http")
        async def request_context(request: Request, call_next):
            started = time.perf_counter()
            request_id = set_request_id(request.headers.get("X-Request-ID"))
            set_subject_context(request.headers.get("X-User-Id"))
            try:
                response = await call_next(request)
                elapsed = time.perf_counter() - started

                # Route templates keep preview tokens and ids out of metric labels
                route = request.scope.get("route")
                endpoint = getattr(route, "path", request.url.path)
                self.metrics.record_http_request(request.method, endpoint, response.status_code, elapsed)
                self.logger.info(
                    "HTTP request",
                    method=request.method,
                    endpoint=endpoint,
                    status_code=response.status_code,
                    duration_ms=round(elapsed * 1000, 2)
                )

                response.headers["X-Request-ID"] = request_id
                return response
            finally:
                clear_context()

    def _setup_routes(self):

        @self.app.get("/health")
        async def health_check():
            """Health check endpoint."""
            dependencies = await self._check_dependencies()
            status = "ok" if all(state == "ok" for state in dependencies.values()) else "degraded"
            self.metrics.record_health_check(status)

            return JSONResponse(
                status_code=200 if status == "ok" else 503,
                content={
                    "service": self.service_name,
                    "status": status,
                    "uptime_seconds": round(time.time() - self._start_time, 3),
                    "dependencies": dependencies,
                    "version": SERVICE_VERSION,
                    "commit": os.getenv("GIT_COMMIT", "unknown")
                }
            )

        @self.app.get("/metrics")
        async def metrics_endpoint():
            """Prometheus metrics endpoint."""
            return Response(content=self.metrics.render(), media_type=CONTENT_TYPE_LATEST)

    def _setup_error_handlers(self):

        @self.app.exception_handler(AccessLayerException)
        async def access_layer_exception_handler(request: Request, exc: AccessLayerException):
            return self._error_response(request, exc)

        @self.app.exception_handler(RequestValidationError)
        async def request_validation_handler(request: Request, exc: RequestValidationError):
            fields = {".".join(str(part) for part in error["loc"]): error["msg"] for error in exc.errors()}
            return self._error_response(request, ValidationError("Invalid request", {"fields": fields}))

        @self.app.exception_handler(Exception)
        async def general_exception_handler(request: Request, exc: Exception):
            self.logger.error("Unhandled exception", path=request.url.path, error=str(exc), exc_info=True)
            self.metrics.record_error("INTERNAL_ERROR")
            return JSONResponse(
                status_code=500,
                content={
                    "statusCode": 500,
                    "code": "INTERNAL_ERROR",
                    "message": "Internal server error",
                    "details": {}
                }
            )

    def _error_response(self, request: Request, exc: AccessLayerException) -> JSONResponse:
        log = self.logger.error if exc.status_code >= 500 else self.logger.warning
        log("Request rejected", code=exc.code, message=exc.message, details=exc.details, path=request.url.path)
        self.metrics.record_error(exc.code)
        return JSONResponse(status_code=exc.status_code, content=exc.to_body(), headers=exc.headers or None)

    async def _check_dependencies(self) -> Dict[str, str]:
        """Map of dependency name to "ok" or "error". Override in subclasses."""
        return {}

    def run(self):
        """Run the service."""
        import uvicorn
        uvicorn.run(
            self.app,
            host=self.config.host,
            port=self.config.port,
            log_level=self.config.log_level.lower()
        )
