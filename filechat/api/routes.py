from fastapi import APIRouter, Depends, File, HTTPException, Request, UploadFile
from fastapi.concurrency import run_in_threadpool
import logging
import time

from datetime import datetime, timezone
from typing import Optional

from filechat.config import (
    ALLOWED_MIME_TYPES,
    GEMINI_API_KEY,
    MAX_FILE_SIZE_MB,
    SERVICE_LIMITS,
)
from filechat.llm.gemini_service import (
    FileNotFoundUpstreamError,
    GeminiService,
    UploadFailedError,
    normalize_file_id,
)
from filechat.llm.invocation import AllModelsUnavailableError
from filechat.models import (
    ActivationResponse,
    ChatRequest,
    ChatResponse,
    ConfigStatusResponse,
    DeleteFileResponse,
    FileInfo,
    FileListItem,
    FilesUsage,
    FileStatus,
    HealthResponse,
    ListFilesResponse,
    ModelUsage,
    TestKeyRequest,
    TestKeyResponse,
    UploadResponse,
    UsageResponse,
)
from filechat.observability.metrics import metrics_tracker
from filechat.observability.posthog_client import posthog_client
from filechat.services.registry import (
    InvalidApiKeyError,
    ServiceNotConfiguredError,
    ServiceRegistry,
)
from filechat.storage.activation import FileActivationStore
from filechat.workflow.file_chat import (
    EmptyResponseError,
    FileChatError,
    UnknownFileError,
    answer_question,
)


# ============================================================
# LOGGER
# ============================================================

logger = logging.getLogger(__name__)

router = APIRouter()


# ============================================================
# GLOBAL SINGLETONS
# ============================================================

registry = ServiceRegistry(
    activation_store=FileActivationStore(),
    api_key=GEMINI_API_KEY,
)


def get_registry() -> ServiceRegistry:
    return registry


def get_service(registry: ServiceRegistry = Depends(get_registry)) -> GeminiService:

    try:
        return registry.require_service()
    except ServiceNotConfiguredError as e:
        raise HTTPException(status_code=503, detail=str(e))


def get_activation_store(
    registry: ServiceRegistry = Depends(get_registry),
) -> FileActivationStore:
    return registry.activation_store


# ============================================================
# HELPERS
# ============================================================

def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", "unknown")


def validate_upload(content: bytes, mime_type: Optional[str]):

    if mime_type not in ALLOWED_MIME_TYPES:
        raise HTTPException(
            status_code=415,
            detail=(
                "Unsupported file type. Allowed types: PDF, TXT, MD, DOCX, "
                "XLSX, PPTX, images (JPEG, PNG, GIF, WEBP)"
            ),
        )

    if not content:
        raise HTTPException(status_code=400, detail="Empty file")

    size_mb = len(content) / (1024 * 1024)

    if size_mb > MAX_FILE_SIZE_MB:
        raise HTTPException(
            status_code=413,
            detail=f"File too large: {size_mb:.2f}MB (max {MAX_FILE_SIZE_MB}MB)",
        )


def _status_model(store: FileActivationStore, file_id: str) -> FileStatus:

    record = store.get_status(file_id)

    if record is None:
        return FileStatus(file_id=file_id, active=True)

    return FileStatus(**record)


# ============================================================
# HEALTH
# ============================================================

@router.get("/health", response_model=HealthResponse)
def health_check(registry: ServiceRegistry = Depends(get_registry)):

    service = registry.service

    return HealthResponse(
        status="healthy",
        api_key_configured=service is not None,
        current_model=service.current_model if service else None,
    )


# ============================================================
# UPLOAD FILE
# ============================================================

@router.post("/api/files/upload", response_model=UploadResponse)
async def upload_file(
    request: Request,
    file: UploadFile = File(...),
    service: GeminiService = Depends(get_service),
):

    start_time = time.time()

    content = await file.read()

    validate_upload(content, file.content_type)

    try:

        info = await run_in_threadpool(
            service.upload_file,
            content,
            file.filename,
            file.content_type,
        )

    except UploadFailedError as e:

        raise HTTPException(status_code=500, detail=str(e))

    except Exception as e:

        logger.error(
            "Upload failed",
            extra={"upload_filename": file.filename, "error": str(e)},
        )

        posthog_client.track_error(
            distinct_id=_request_id(request),
            error_type=type(e).__name__,
            error_message=str(e),
            endpoint="/api/files/upload",
        )

        raise HTTPException(
            status_code=500,
            detail=f"Error uploading file: {e}",
        )

    posthog_client.track_file_upload(
        distinct_id=_request_id(request),
        file_id=info["id"],
        mime_type=info["mime_type"],
        size_bytes=info["size_bytes"],
        latency=time.time() - start_time,
    )

    return UploadResponse(file=FileInfo(**info))


# ============================================================
# LIST FILES
# ============================================================

@router.get("/api/files", response_model=ListFilesResponse)
def list_files(
    include_inactive: bool = False,
    page_size: Optional[int] = None,
    service: GeminiService = Depends(get_service),
    store: FileActivationStore = Depends(get_activation_store),
):

    try:
        files = service.list_files(page_size=page_size)
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error listing files: {e}")

    items = [
        FileListItem(
            **info,
            is_active=store.is_active(info["id"]),
            status=_status_model(store, info["id"]),
        )
        for info in files
    ]

    active_count = sum(1 for item in items if item.is_active)

    visible = items if include_inactive else [i for i in items if i.is_active]

    return ListFilesResponse(
        files=visible,
        count=len(visible),
        total=len(items),
        active=active_count,
        inactive=len(items) - active_count,
    )


# ============================================================
# CHAT
# ============================================================

@router.post("/api/files/chat", response_model=ChatResponse)
async def chat_with_files(
    payload: ChatRequest,
    request: Request,
    service: GeminiService = Depends(get_service),
    store: FileActivationStore = Depends(get_activation_store),
):

    start_time = time.time()
    model_before = service.current_model

    history = [turn.dict() for turn in payload.conversation_history or []]

    try:

        result = await answer_question(
            question=payload.question,
            service=service,
            activation_store=store,
            file_id=payload.file_id,
            file_ids=payload.file_ids,
            history=history,
        )

    except UnknownFileError as e:

        raise HTTPException(status_code=404, detail=str(e))

    except FileChatError as e:

        raise HTTPException(status_code=400, detail=str(e))

    except AllModelsUnavailableError as e:

        posthog_client.track_error(
            distinct_id=_request_id(request),
            error_type=type(e).__name__,
            error_message=str(e),
            endpoint="/api/files/chat",
        )

        raise HTTPException(status_code=503, detail=str(e))

    except EmptyResponseError as e:

        raise HTTPException(status_code=502, detail=str(e))

    except Exception as e:

        logger.error(
            "Chat failed",
            extra={"error": str(e), "error_type": type(e).__name__},
        )

        posthog_client.track_error(
            distinct_id=_request_id(request),
            error_type=type(e).__name__,
            error_message=str(e),
            endpoint="/api/files/chat",
        )

        raise HTTPException(
            status_code=500,
            detail=f"Error fetching information: {e}",
        )

    if result["model"] != model_before:

        posthog_client.track_model_fallback(
            distinct_id=_request_id(request),
            from_model=model_before,
            to_model=result["model"],
        )

    posthog_client.track_question(
        distinct_id=_request_id(request),
        question=payload.question,
        file_ids=result["file_ids_used"],
        model=result["model"],
        latency=time.time() - start_time,
        history_turns=len(history),
    )

    return ChatResponse(**result)


# ============================================================
# FILE INFO / STATUS
# ============================================================

@router.get("/api/files/info/{file_id:path}", response_model=FileInfo)
def get_file_info(file_id: str, service: GeminiService = Depends(get_service)):

    try:
        info = service.get_file(file_id)
    except FileNotFoundUpstreamError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Error fetching file information: {e}",
        )

    return FileInfo(**info)


@router.get("/api/files/{file_id}/status", response_model=FileStatus)
def get_file_status(
    file_id: str,
    store: FileActivationStore = Depends(get_activation_store),
):

    return _status_model(store, normalize_file_id(file_id))


# ============================================================
# ACTIVATE / DEACTIVATE
# ============================================================

@router.post("/api/files/{file_id}/deactivate", response_model=ActivationResponse)
def deactivate_file(
    file_id: str,
    request: Request,
    store: FileActivationStore = Depends(get_activation_store),
):

    file_id = normalize_file_id(file_id)
    record = store.deactivate(file_id)

    posthog_client.track_activation_change(
        distinct_id=_request_id(request),
        file_id=file_id,
        active=False,
    )

    return ActivationResponse(
        file_id=file_id,
        active=False,
        status=FileStatus(**record),
        message="File deactivated successfully",
    )


@router.post("/api/files/{file_id}/activate", response_model=ActivationResponse)
def activate_file(
    file_id: str,
    request: Request,
    store: FileActivationStore = Depends(get_activation_store),
):

    file_id = normalize_file_id(file_id)
    record = store.reactivate(file_id)

    posthog_client.track_activation_change(
        distinct_id=_request_id(request),
        file_id=file_id,
        active=True,
    )

    return ActivationResponse(
        file_id=file_id,
        active=True,
        status=FileStatus(**record),
        message="File reactivated successfully",
    )


# ============================================================
# DELETE FILE
# ============================================================

@router.delete("/api/files/{file_id}", response_model=DeleteFileResponse)
def delete_file(file_id: str, service: GeminiService = Depends(get_service)):

    try:
        deleted_id = service.delete_file(file_id)
    except FileNotFoundUpstreamError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error deleting file: {e}")

    # The activation record, if any, is left in place
    return DeleteFileResponse(
        file_id=deleted_id,
        message="File deleted successfully",
        success=True,
    )


# ============================================================
# CONFIG
# ============================================================

@router.post("/api/config/test-key", response_model=TestKeyResponse)
def test_api_key(
    payload: TestKeyRequest,
    registry: ServiceRegistry = Depends(get_registry),
):

    api_key = (payload.api_key or "").strip()

    if not api_key:
        raise HTTPException(status_code=400, detail="API key is required")

    try:
        registry.test_and_apply(api_key)
    except InvalidApiKeyError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return TestKeyResponse(
        success=True,
        message="API key is valid and has been applied",
    )


@router.get("/api/config/status", response_model=ConfigStatusResponse)
def config_status(registry: ServiceRegistry = Depends(get_registry)):

    return ConfigStatusResponse(
        has_api_key=registry.has_api_key,
        configured=registry.has_api_key,
    )


@router.get("/api/config/usage", response_model=UsageResponse)
def config_usage(
    registry: ServiceRegistry = Depends(get_registry),
    service: GeminiService = Depends(get_service),
):

    files_usage = FilesUsage()

    try:

        files = service.list_files()

        files_usage.total = len(files)

        for info in files:

            if info["state"] == "ACTIVE":
                files_usage.active += 1
            elif info["state"] == "PROCESSING":
                files_usage.processing += 1
            elif info["state"] == "FAILED":
                files_usage.failed += 1

            files_usage.total_size += info["size_bytes"] or 0

            if not registry.activation_store.is_active(info["id"]):
                files_usage.deactivated += 1

    except Exception as e:

        logger.warning(
            "File usage lookup failed",
            extra={"error": str(e)},
        )

    metrics = metrics_tracker.get_metrics()

    return UsageResponse(
        api_key={"configured": True, "key_preview": registry.api_key_preview},
        model=ModelUsage(
            current=service.current_model,
            available=service.policy.available_models,
            calls=metrics["model_calls"],
            fallbacks=metrics["model_fallbacks"],
        ),
        files=files_usage,
        limits=SERVICE_LIMITS,
        timestamp=datetime.now(timezone.utc).isoformat(),
    )


# ============================================================
# METRICS ENDPOINT
# ============================================================

@router.get("/metrics")
def get_metrics():

    return metrics_tracker.get_metrics()
