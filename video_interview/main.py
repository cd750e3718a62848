import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from fastapi.staticfiles import StaticFiles
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from pydantic import ValidationError

from video_interview.api.v1.interviews import get_pipeline
from video_interview.api.v1.routes import router as api_v1_router
from video_interview.core.config import settings
from video_interview.core.error_handling import (
    ApplicationError, application_error_handler, http_exception_handler,
    validation_exception_handler, generic_exception_handler
)
from video_interview.core.logging_config import setup_production_logging, RequestLoggingMiddleware
from video_interview.core.metrics import collector, registry
from video_interview.services.interview_session import sessions

logger = logging.getLogger("startup")


def _apply_media_lifecycle() -> None:
    """Best-effort TTL rule for stored clips; missing IAM permissions must not block startup."""
    if settings.storage_backend != "s3" or not settings.s3_bucket:
        return
    from video_interview.core.s3 import S3ObjectStorage

    try:
        S3ObjectStorage().upsert_lifecycle_rule(f"{settings.media_prefix}/", settings.retention_media_days)
    except Exception as exc:
        logger.warning("Could not apply media lifecycle rule: %s", exc)


@asynccontextmanager
async def lifespan(app: FastAPI):
    _apply_media_lifecycle()
    yield
    # Unsent clips are discarded with their sessions
    await sessions.close_all()
    await get_pipeline().drain()


setup_production_logging()

app = FastAPI(
    title="Video Interview API",
    version="1.0.0",
    openapi_url="/api/openapi.json",
    docs_url="/api/docs",
    lifespan=lifespan,
)

app.add_exception_handler(ApplicationError, application_error_handler)  # type: ignore[arg-type]
app.add_exception_handler(HTTPException, http_exception_handler)  # type: ignore[arg-type]
app.add_exception_handler(RequestValidationError, validation_exception_handler)  # type: ignore[arg-type]
app.add_exception_handler(ValidationError, validation_exception_handler)  # type: ignore[arg-type]
app.add_exception_handler(Exception, generic_exception_handler)  # type: ignore[arg-type]

origins = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]
for o in settings.cors_allowed_origins:
    if o not in origins:
        origins.append(o)

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "OPTIONS"],
    allow_headers=["*"],
    max_age=86400,
)
app.add_middleware(RequestLoggingMiddleware)


@app.get("/healthz", tags=["health"])
def healthcheck():
    return {"status": "ok", **collector.snapshot()}


@app.get("/metrics", tags=["health"])
def metrics_prometheus():
    return Response(content=generate_latest(registry), media_type=CONTENT_TYPE_LATEST)


app.include_router(api_v1_router, prefix="/api/v1")

# Local backend serves its own clips so locators resolve in development
if settings.storage_backend == "local":
    app.mount("/media", StaticFiles(directory=settings.local_storage_path, check_dir=False), name="media")
