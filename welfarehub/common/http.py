"""Shared FastAPI wiring: error envelope, request metrics, probes."""

from time import perf_counter

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from welfarehub.common.config import settings
from welfarehub.common.errors import ServiceError, ValidationError
from welfarehub.common.logging import bind_log_context, logger
from welfarehub.common.metrics import http_request_duration_seconds, http_requests_total, metrics_response


def ok(data=None, **extra) -> dict:
    """Success envelope."""

    body = {"success": True}
    if data is not None:
        body["data"] = data
    body.update(extra)
    return body


def error_response(status_code: int, message: str, **details) -> JSONResponse:
    body = {"success": False, "error": message}
    body.update(details)
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body))


async def _service_error_handler(_: Request, exc: ServiceError) -> JSONResponse:
    return error_response(exc.status_code, exc.message, **exc.details)


async def _request_validation_handler(_: Request, exc: RequestValidationError) -> JSONResponse:
    error = ValidationError.from_pydantic("Invalid request data", exc)
    return error_response(error.status_code, error.message, **error.details)


async def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled_error method=%s path=%s error=%s", request.method, request.url.path, exc)
    return error_response(500, "Internal server error")


async def _metrics_middleware(request: Request, call_next):
    """Record request count and latency for every HTTP call."""

    start = perf_counter()
    route = request.url.path
    status_code = 500
    try:
        with bind_log_context(trace_id=request.headers.get("x-trace-id")):
            response = await call_next(request)
        status_code = response.status_code
        route_obj = request.scope.get("route")
        if route_obj is not None and getattr(route_obj, "path", None):
            route = route_obj.path
        return response
    finally:
        http_request_duration_seconds.labels(
            service=settings.service_name,
            route=route,
            method=request.method,
        ).observe(max(0.0, perf_counter() - start))
        http_requests_total.labels(
            service=settings.service_name,
            route=route,
            method=request.method,
            status_code=str(status_code),
        ).inc()


def install_common_routes(app: FastAPI) -> None:
    """Attach error handlers, request metrics, `/health` and `/metrics`."""

    app.add_exception_handler(ServiceError, _service_error_handler)
    app.add_exception_handler(RequestValidationError, _request_validation_handler)
    app.add_exception_handler(Exception, _unhandled_error_handler)
    app.middleware("http")(_metrics_middleware)

    @app.get("/health")
    def health():
        """Container health probe endpoint."""

        return {"ok": True}

    @app.get("/metrics")
    def metrics():
        """Prometheus scrape endpoint."""

        return metrics_response()
