import logging
import time

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from prometheus_client import Counter, Histogram
from prometheus_fastapi_instrumentator import Instrumentator

from forumfiles.core.config import settings
from forumfiles.core.errors import AppError

logger = logging.getLogger("forumfiles")

links_issued = Counter("public_links_issued_total", "Public links issued")
link_redemptions = Counter("public_link_redemptions_total", "Public link redemption attempts", ["outcome"])
cleanup_runs = Counter("cleanup_runs_total", "Cleanup loop runs")
cleanup_objects_purged = Counter("cleanup_objects_purged_total", "Stored objects purged for deleted files")
cleanup_codes_deleted = Counter("cleanup_codes_deleted_total", "Expired verification codes deleted")
cleanup_failed_purges = Counter("cleanup_failed_purges_total", "Failed object purges in cleanup")
cleanup_duration = Histogram("cleanup_duration_seconds", "Duration of a cleanup run in seconds")


def report_link_issued() -> None:
    links_issued.inc()


def report_redemption(outcome: str) -> None:
    link_redemptions.labels(outcome=outcome).inc()


def report_cleanup(objects_purged: int, codes_deleted: int, failed: int, duration: float) -> None:
    """Record cleanup metrics to Prometheus."""
    cleanup_runs.inc()
    if objects_purged:
        cleanup_objects_purged.inc(objects_purged)
    if codes_deleted:
        cleanup_codes_deleted.inc(codes_deleted)
    if failed:
        cleanup_failed_purges.inc(failed)
    cleanup_duration.observe(duration)


def _first_error_message(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid request"
    err = errors[0]
    field = ".".join(str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path", "form"))
    return f"{field}: {err.get('msg')}" if field else str(err.get("msg"))


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):
        return JSONResponse(status_code=exc.status_code, content=exc.to_payload(), headers=exc.headers)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=400,
            content={"detail": _first_error_message(exc), "kind": "validation_error"},
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error: %s %s -> %s", request.method, request.url.path, exc)
        content = {"detail": "Internal server error", "kind": "internal"}
        if not settings.is_production:
            content["error"] = type(exc).__name__
        return JSONResponse(status_code=500, content=content)


def setup_monitoring(app: FastAPI):
    register_error_handlers(app)
    Instrumentator().instrument(app).expose(app, endpoint="/metrics", include_in_schema=False)

    @app.middleware("http")
    async def monitor_requests(request: Request, call_next):
        start_time = time.time()
        response = None
        try:
            response = await call_next(request)
            return response
        finally:
            process_time = time.time() - start_time
            # route templates keep link codes out of the log
            route = request.scope.get("route")
            logger.info("method=%s path=%s status=%s duration=%.4fs",
                        request.method, getattr(route, "path", request.url.path),
                        getattr(response, "status_code", 500), process_time)
