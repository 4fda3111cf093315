from contextlib import asynccontextmanager
import logging
import time
import uuid

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from scenemedia.api.v1.router import api_router
from scenemedia.core.exceptions import (
    AppError,
    BackupFormatError,
    EntityNotFoundError,
    InvalidAssetKindError,
    StorageError,
)
from scenemedia.core.logging import configure_logging
from scenemedia.core.metrics import get_metrics_payload
from scenemedia.core.request_context import reset_request_id, set_request_id
from scenemedia.core.settings import settings
from scenemedia.core.telemetry import setup_telemetry
from scenemedia.db.base import Base
from scenemedia.db.session import get_engine, init_engine
from scenemedia.services import job_queue


logger = logging.getLogger("scenemedia")

_ERROR_STATUS: dict[type[AppError], int] = {
    EntityNotFoundError: 404,
    InvalidAssetKindError: 400,
    BackupFormatError: 400,
    StorageError: 503,
}


def _is_polling_request(method: str, path: str) -> bool:
    if method != "GET":
        return False
    return path.startswith("/v1/jobs/") or path == "/metrics"


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(settings.log_level, settings.log_file)

    init_engine(settings.database_url)

    setup_telemetry(app, service_name="scenemedia")

    if settings.db_auto_create and settings.database_url.startswith("sqlite"):
        engine = get_engine()
        Base.metadata.create_all(bind=engine)

    await job_queue.start_worker()
    try:
        yield
    finally:
        await job_queue.stop_worker()


app = FastAPI(title="scenemedia", lifespan=lifespan)


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
    request.state.request_id = request_id
    token = set_request_id(request_id)
    start = time.perf_counter()
    try:
        try:
            response = await call_next(request)
        except Exception:
            duration_ms = (time.perf_counter() - start) * 1000
            logger.exception(
                "request_failed",
                extra={
                    "method": request.method,
                    "path": request.url.path,
                    "duration_ms": duration_ms,
                },
            )
            raise

        duration_ms = (time.perf_counter() - start) * 1000
        request_logger = logger.debug if _is_polling_request(request.method, request.url.path) else logger.info
        request_logger(
            "request_complete",
            extra={
                "method": request.method,
                "path": request.url.path,
                "status": response.status_code,
                "duration_ms": duration_ms,
            },
        )
        response.headers["x-request-id"] = request_id
        return response
    finally:
        reset_request_id(token)


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    request_id = getattr(request.state, "request_id", None)
    status_code = next(
        (code for error_type, code in _ERROR_STATUS.items() if isinstance(exc, error_type)),
        500,
    )
    if status_code >= 500:
        logger.error("app_error", extra={"error": str(exc), "error_type": type(exc).__name__})
    return JSONResponse(
        status_code=status_code,
        content={"detail": str(exc), "request_id": request_id},
    )


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError):
    request_id = getattr(request.state, "request_id", None)
    return JSONResponse(
        status_code=400,
        content={"detail": str(exc), "request_id": request_id},
    )


@app.get("/health")
def health():
    return {"status": "ok"}


@app.get("/metrics")
def metrics_endpoint():
    return PlainTextResponse(get_metrics_payload(), media_type="text/plain; version=0.0.4; charset=utf-8")


app.include_router(api_router)
