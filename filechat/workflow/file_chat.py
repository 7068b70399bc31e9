# filechat/workflow/file_chat.py

import logging
from typing import Dict, List, Optional

from fastapi.concurrency import run_in_threadpool

from filechat.llm.gemini_service import (
    FileNotFoundUpstreamError,
    GeminiService,
    normalize_file_id,
)
from filechat.storage.activation import FileActivationStore


logger = logging.getLogger(__name__)


class FileChatError(Exception):
    """Request rejected before any model call."""


class NoFilesError(FileChatError):

    def __init__(self):
        super().__init__("No files found. Upload files first.")


class NoActiveFilesError(FileChatError):

    def __init__(self):
        super().__init__(
            "No active files found. Reactivate files or upload new ones."
        )


class InactiveFileError(FileChatError):

    def __init__(self, file_id: str):
        self.file_id = file_id
        super().__init__("This file is deactivated. Reactivate it to use it.")


class UnknownFileError(FileChatError):

    def __init__(self, file_id: str):
        self.file_id = file_id
        super().__init__(f"File not found: {file_id}")


class EmptyResponseError(RuntimeError):

    def __init__(self):
        super().__init__("The model returned no answer. Please try again.")


def resolve_file_ids(
    file_id: Optional[str],
    file_ids: Optional[List[str]],
    activation_store: FileActivationStore,
    service: GeminiService,
) -> List[str]:
    """
    Decide which files a question is answered with.

    An explicit single file must not be inactive. An explicit list is
    filtered down to its active members. With neither, every uploaded
    file is listed and filtered.
    """

    file_id = normalize_file_id(file_id) if file_id else None

    if file_id:

        if not activation_store.is_active(file_id):
            raise InactiveFileError(file_id)

        return [file_id]

    # blank entries are dropped, a list of only blanks means "all files"
    explicit = [normalize_file_id(ref) for ref in file_ids or [] if ref and ref.strip()]
    explicit = [ref for ref in explicit if ref]

    if explicit:

        active = activation_store.filter_active(explicit)

        if not active:
            raise NoActiveFilesError()

        return active

    all_files = service.list_files()

    if not all_files:
        raise NoFilesError()

    active = activation_store.filter_active([f["id"] for f in all_files])

    if not active:
        raise NoActiveFilesError()

    return active


def build_file_parts(file_ids: List[str], service: GeminiService) -> List[Dict]:

    parts = []

    for file_id in file_ids:

        try:
            info = service.get_file(file_id)
        except FileNotFoundUpstreamError:
            raise UnknownFileError(file_id)

        parts.append(
            {
                "file_data": {
                    "file_uri": info["uri"] or file_id,
                    "mime_type": info["mime_type"],
                }
            }
        )

    return parts


async def answer_question(
    question: str,
    service: GeminiService,
    activation_store: FileActivationStore,
    file_id: Optional[str] = None,
    file_ids: Optional[List[str]] = None,
    history: Optional[List[Dict]] = None,
) -> Dict:
    """
    Answer ``question`` using the resolved files as context.

    Returns the generated text, the primary file id, the ids actually
    attached and the model that produced the answer.
    """

    resolved = await run_in_threadpool(
        resolve_file_ids, file_id, file_ids, activation_store, service
    )

    parts = await run_in_threadpool(build_file_parts, resolved, service)
    parts.append({"text": question})

    history_mode = bool(history)

    async def make_call(model_name: str, use_history: bool) -> str:
        return await service.generate(
            model_name,
            parts,
            history=history,
            history_mode=use_history,
        )

    logger.info(
        "Generating answer",
        extra={
            "files": len(resolved),
            "history_mode": history_mode,
            "model": service.current_model,
        },
    )

    text = await service.policy.invoke(make_call, history_mode)

    if not text:
        raise EmptyResponseError()

    return {
        "response": text,
        "file_id": resolved[0],
        "file_ids_used": resolved,
        "model": service.current_model,
    }
