from collections import defaultdict
from time import perf_counter
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from giftregistry.api.routes import analytics, auth, contributions, gift_items, notifications, payments, registries
from giftregistry.core.config import settings
from giftregistry.core.errors import error_body
from giftregistry.core.logger import configure_logging, request_id_var
from giftregistry.db.session import async_session_factory, create_schema, describe_database


logger = configure_logging()

app = FastAPI(
    title=settings.app_name,
    description="Gift registries with pooled contributions",
    version="0.1.0",
)

metrics = {
    "requests_total": 0,
    "errors_total": 0,
    "latency_total_ms": 0.0,
    "by_path": defaultdict(
        lambda: {"count": 0, "errors": 0, "latency_total_ms": 0.0}
    ),
}


cors_origins = settings.backend_cors_origins
if not cors_origins and settings.frontend_url:
    cors_origins = [settings.frontend_url]

logger.info("CORS origins parsed=%s", cors_origins)

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Request-Id"],
    max_age=600,
)


def _record(path: str, duration_ms: float, error: bool) -> None:
    metrics["requests_total"] += 1
    metrics["latency_total_ms"] += duration_ms
    path_metrics = metrics["by_path"][path]
    path_metrics["count"] += 1
    path_metrics["latency_total_ms"] += duration_ms
    if error:
        metrics["errors_total"] += 1
        path_metrics["errors"] += 1


@app.middleware("http")
async def tracing_middleware(request: Request, call_next):
    request_id = request.headers.get("X-Request-Id") or str(uuid4())
    token = request_id_var.set(request_id)
    start = perf_counter()
    try:
        response = await call_next(request)
    except Exception:
        duration_ms = (perf_counter() - start) * 1000.0
        _record(request.url.path, duration_ms, error=True)
        logger.exception(
            "Request failed method=%s path=%s duration_ms=%.2f",
            request.method,
            request.url.path,
            duration_ms,
        )
        raise
    finally:
        request_id_var.reset(token)

    duration_ms = (perf_counter() - start) * 1000.0
    _record(request.url.path, duration_ms, error=response.status_code >= 500)
    logger.info(
        "Request completed id=%s method=%s path=%s status=%s duration_ms=%.2f",
        request_id,
        request.method,
        request.url.path,
        response.status_code,
        duration_ms,
    )
    response.headers["X-Request-Id"] = request_id
    return response


@app.middleware("http")
async def security_headers_middleware(request: Request, call_next):
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    return response


@app.on_event("startup")
async def on_startup() -> None:
    db_info = describe_database()
    logger.info(
        "DB config driver=%s host=%s database=%s",
        db_info["driver"],
        db_info["host"],
        db_info["database"],
    )
    if settings.create_schema_on_startup:
        await create_schema()
    if not settings.payments_configured:
        logger.warning("PAYMENT_SECRET_KEY not set; payment intents are disabled")
    if not settings.payment_webhook_secret:
        logger.warning("PAYMENT_WEBHOOK_SECRET not set; payment webhooks are rejected")


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    message = exc.detail if isinstance(exc.detail, str) else "Request failed"
    if exc.status_code >= 500:
        logger.error(
            "Request error status=%s method=%s path=%s error=%s",
            exc.status_code,
            request.method,
            request.url.path,
            message,
        )
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(message, getattr(exc, "field", None)),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    loc = [part for part in first.get("loc", ()) if isinstance(part, str) and part not in ("body", "query", "path")]
    field = loc[-1] if loc else None
    message = first.get("msg", "Invalid request")
    if field:
        message = f"{field}: {message}"
    return JSONResponse(status_code=400, content=error_body(message, field))


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content=error_body("Internal server error"))


app.include_router(auth.router)
app.include_router(registries.router)
app.include_router(gift_items.router)
app.include_router(contributions.router)
app.include_router(payments.router)
app.include_router(notifications.router)
app.include_router(analytics.router)


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/health/db")
async def health_db():
    try:
        async with async_session_factory() as session:
            result = await session.execute(select(1))
            return {"status": "ok", "database": str(result.scalar())}
    except SQLAlchemyError:
        logger.exception("DB health check failed")
        return JSONResponse(status_code=503, content={"status": "error", "error": "Database unavailable"})


@app.get("/metrics")
async def get_metrics() -> dict[str, object]:
    by_path = {
        path: {
            "count": data["count"],
            "errors": data["errors"],
            "avg_latency_ms": (
                data["latency_total_ms"] / data["count"] if data["count"] else 0.0
            ),
        }
        for path, data in metrics["by_path"].items()
    }
    return {
        "requests_total": metrics["requests_total"],
        "errors_total": metrics["errors_total"],
        "avg_latency_ms": (
            metrics["latency_total_ms"] / metrics["requests_total"]
            if metrics["requests_total"]
            else 0.0
        ),
        "by_path": by_path,
    }
