import asyncio
from time import perf_counter
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import select
from sqlalchemy.engine import make_url

from wishsync.api.routes import auth, wishlists, ws
from wishsync.core.config import settings
from wishsync.core.errors import WishlistError
from wishsync.core.logger import configure_logging
from wishsync.core.metrics import service_metrics
from wishsync.db.session import async_session_factory, create_schema
from wishsync.realtime.manager import BroadcastHub
from wishsync.realtime.snapshots import SqlSnapshotAssembler


logger = configure_logging()

app = FastAPI(
    title=settings.app_name,
    description="Shared Telegram wishlist with live reservations",
    version="0.1.0",
)
app.state.hub = BroadcastHub(SqlSnapshotAssembler())

logger.info("CORS origins parsed=%s", settings.backend_cors_origins)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.backend_cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    max_age=600,
)


@app.middleware("http")
async def tracing_middleware(request: Request, call_next):
    request_id = request.headers.get("X-Request-Id") or str(uuid4())
    path = request.url.path
    start = perf_counter()
    try:
        response = await call_next(request)
    except Exception:
        duration_ms = (perf_counter() - start) * 1000.0
        service_metrics.record_request(path, duration_ms, error=True)
        logger.exception("Request failed id=%s method=%s path=%s", request_id, request.method, path)
        raise

    duration_ms = (perf_counter() - start) * 1000.0
    service_metrics.record_request(path, duration_ms, error=response.status_code >= 500)
    logger.info(
        "Request completed id=%s method=%s path=%s status=%s duration_ms=%.2f",
        request_id,
        request.method,
        path,
        response.status_code,
        duration_ms,
    )
    response.headers["X-Request-Id"] = request_id
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    return response


def _log_loop_exception(loop, context) -> None:
    exc = context.get("exception")
    logger.error("Async error: %s", context.get("message", "Async error"), exc_info=exc)


@app.on_event("startup")
async def on_startup() -> None:
    asyncio.get_running_loop().set_exception_handler(_log_loop_exception)

    if (settings.environment or "local").lower() != "local":
        settings.validate_secrets()
    elif not settings.telegram_bot_token:
        logger.warning("TELEGRAM_BOT_TOKEN is not set; /auth/telegram will answer 500")

    db_url = make_url(settings.postgres_dsn)
    logger.info("DB driver=%s host=%s database=%s", db_url.get_backend_name(), db_url.host, db_url.database)

    await create_schema()


@app.exception_handler(WishlistError)
async def wishlist_error_handler(request: Request, exc: WishlistError):
    service_metrics.record_rejection(exc.status_code)
    logger.info(
        "Request rejected method=%s path=%s status=%s detail=%s",
        request.method,
        request.url.path,
        exc.status_code,
        exc.detail,
    )
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    service_metrics.record_rejection(400)
    errors = [
        {"loc": list(error.get("loc", ())), "msg": error.get("msg", ""), "type": error.get("type", "")}
        for error in exc.errors()
    ]
    return JSONResponse(status_code=400, content={"detail": "Malformed request", "errors": errors})


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


app.include_router(auth.router)
app.include_router(wishlists.router)
app.include_router(ws.router)


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/health/db")
async def health_db():
    try:
        async with async_session_factory() as session:
            result = await session.execute(select(1))
            return {"status": "ok", "database": str(result.scalar())}
    except Exception:
        logger.exception("DB health check failed")
        return JSONResponse(status_code=500, content={"status": "error"})


@app.get("/metrics")
async def get_metrics(request: Request) -> dict[str, object]:
    hub: BroadcastHub = request.app.state.hub
    share_ids = await hub.share_ids()
    connections = [await hub.subscriber_count(share_id) for share_id in share_ids]
    return {
        **service_metrics.snapshot(),
        "live_wishlists": len(share_ids),
        "live_connections": sum(connections),
    }
