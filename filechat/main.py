from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
import time
import uuid

from filechat.api.routes import router, registry
from filechat.config import CORS_ORIGINS, LOG_LEVEL
from filechat.observability.logger import setup_logging, get_logger
from filechat.observability.metrics import metrics_tracker
from filechat.observability.posthog_client import posthog_client

# Initialize logging FIRST
setup_logging(log_level=LOG_LEVEL)
logger = get_logger(__name__)


app = FastAPI(
    title="File Chat API",
    description="Upload files to Gemini and ask questions about them",
    version="1.0.0"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """
    Log every request with its latency and record request metrics.
    """

    request_id = str(uuid.uuid4())
    request.state.request_id = request_id

    logger.info(
        "request_started",
        extra={
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
            "client_ip": request.client.host if request.client else None
        }
    )

    start_time = time.time()

    try:

        response = await call_next(request)

        latency = time.time() - start_time

        if response.status_code < 500:
            metrics_tracker.record_success(latency)
        else:
            metrics_tracker.record_failure()

        logger.info(
            "request_completed",
            extra={
                "request_id": request_id,
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "latency_seconds": round(latency, 3)
            }
        )

        return response

    except Exception as e:

        latency = time.time() - start_time

        metrics_tracker.record_failure()

        posthog_client.track_error(
            distinct_id=request_id,
            error_type=type(e).__name__,
            error_message=str(e),
            endpoint=request.url.path,
        )

        logger.error(
            "request_failed",
            extra={
                "request_id": request_id,
                "method": request.method,
                "path": request.url.path,
                "latency_seconds": round(latency, 3),
                "error": str(e),
                "error_type": type(e).__name__
            },
            exc_info=True
        )

        raise


app.include_router(router)


@app.on_event("startup")
async def startup_event():

    logger.info(
        "application_startup",
        extra={
            "version": "1.0.0",
            "api_key_configured": registry.has_api_key,
            "activation_records": len(registry.activation_store.records()),
        },
    )

    if not registry.has_api_key:

        logger.warning(
            "missing_api_key",
            extra={
                "warning_detail":
                "GEMINI_API_KEY not set. Configure it via POST /api/config/test-key."
            }
        )


@app.on_event("shutdown")
async def shutdown_event():

    logger.info("application_shutdown")


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):

    request_id = getattr(request.state, "request_id", "unknown")

    logger.error(
        "unhandled_exception",
        extra={
            "request_id": request_id,
            "path": request.url.path,
            "error": str(exc),
            "error_type": type(exc).__name__
        },
        exc_info=True
    )

    posthog_client.track_error(
        distinct_id=request_id,
        error_type=type(exc).__name__,
        error_message=str(exc),
        endpoint=request.url.path,
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "detail": "An internal error occurred. Please try again.",
            "request_id": request_id,
            "error_type": type(exc).__name__
        }
    )


@app.get("/")
async def root():

    return {
        "message": "File Chat API",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/health",
        "endpoints": {
            "list": "GET /api/files",
            "upload": "POST /api/files/upload",
            "chat": "POST /api/files/chat",
            "info": "GET /api/files/info/{file_id}",
            "settings": "POST /api/config/test-key",
        },
    }
