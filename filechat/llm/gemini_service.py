# filechat/llm/gemini_service.py

import logging
import os
import tempfile
import time
from typing import Dict, List, Optional, Sequence

import google.ai.generativelanguage as glm
from google.api_core import exceptions as google_exceptions
from google.api_core.client_options import ClientOptions
from google.generativeai import protos
from google.generativeai.client import FileServiceClient

from filechat.config import (
    GEMINI_MODELS,
    KEY_VALIDATION_MODEL,
    UPLOAD_POLL_INTERVAL,
)
from filechat.llm.invocation import ModelInvocationPolicy
from filechat.prompts.system_prompts import FILE_QA_SYSTEM_PROMPT, KEY_VALIDATION_PROMPT


logger = logging.getLogger(__name__)


class UploadFailedError(RuntimeError):
    pass


class FileNotFoundUpstreamError(LookupError):

    def __init__(self, file_id: str):
        self.file_id = file_id
        super().__init__(f"File not found: {file_id}")


def normalize_file_id(file_ref: str) -> str:
    """
    Reduce any accepted file reference to the bare id.

    "abc123", "files/abc123" and
    "https://generativelanguage.googleapis.com/v1beta/files/abc123"
    all become "abc123".
    """

    file_id = file_ref.strip()

    if "/files/" in file_id:
        file_id = file_id.split("/files/", 1)[1]

    if "/" in file_id:
        file_id = file_id.rstrip("/").split("/")[-1]

    return file_id


def _state_name(state) -> Optional[str]:

    if state is None:
        return None

    return getattr(state, "name", str(state))


def _timestamp(value) -> Optional[str]:

    if value is None:
        return None

    if hasattr(value, "isoformat"):
        return value.isoformat()

    return str(value)


def file_to_dict(file) -> Dict:

    size = getattr(file, "size_bytes", None)

    return {
        "id": normalize_file_id(file.name),
        "name": file.name,
        "display_name": getattr(file, "display_name", None) or None,
        "mime_type": getattr(file, "mime_type", None),
        "size_bytes": int(size) if size else None,
        "state": _state_name(getattr(file, "state", None)),
        "create_time": _timestamp(getattr(file, "create_time", None)),
        "update_time": _timestamp(getattr(file, "update_time", None)),
        "expiration_time": _timestamp(getattr(file, "expiration_time", None)),
        "uri": getattr(file, "uri", None),
    }


def to_proto_part(part: Dict) -> protos.Part:

    if "file_data" in part:
        return protos.Part(
            file_data=protos.FileData(
                file_uri=part["file_data"]["file_uri"],
                mime_type=part["file_data"]["mime_type"] or "",
            )
        )

    return protos.Part(text=part["text"])


def response_text(response) -> str:
    """Text of the first candidate, or "" when blocked or empty."""

    if not response.candidates:
        return ""

    content = response.candidates[0].content

    return "".join(part.text for part in content.parts if part.text)


class GeminiService:
    """
    File storage and generation for one Gemini API key.

    The service holds its own SDK clients built for its key, so several
    services with different keys can exist side by side and none of them
    touches the SDK's process-wide configuration. Each service owns its
    ModelInvocationPolicy, so swapping the key also resets the current
    model to the first one in the list.
    """

    def __init__(
        self,
        api_key: str,
        models: Optional[Sequence[str]] = None,
        policy: Optional[ModelInvocationPolicy] = None,
        file_client=None,
        generative_client=None,
        async_generative_client=None,
    ):

        if not api_key:
            raise ValueError("GEMINI_API_KEY not configured")

        self.api_key = api_key
        self.policy = policy or ModelInvocationPolicy(models or GEMINI_MODELS)

        self._client_options = ClientOptions(api_key=api_key)

        self._file_client = file_client or FileServiceClient(
            client_options=self._client_options
        )
        self._generative_client = generative_client or glm.GenerativeServiceClient(
            client_options=self._client_options
        )

        # grpc.aio channels bind to the running loop, so this one is
        # created on first use inside the server's event loop
        self._async_generative_client = async_generative_client

    @property
    def current_model(self) -> str:
        return self.policy.current_model

    def _async_client(self):

        if self._async_generative_client is None:
            self._async_generative_client = glm.GenerativeServiceAsyncClient(
                client_options=self._client_options
            )

        return self._async_generative_client

    # ============================================================
    # FILES
    # ============================================================

    def upload_file(self, content: bytes, filename: str, mime_type: str) -> Dict:

        suffix = os.path.splitext(filename)[1]
        fd, temp_path = tempfile.mkstemp(prefix="gemini-upload-", suffix=suffix)

        try:

            with os.fdopen(fd, "wb") as buffer:
                buffer.write(content)

            file = self._file_client.create_file(
                path=temp_path,
                mime_type=mime_type,
                display_name=filename,
            )

            while _state_name(file.state) == "PROCESSING":
                time.sleep(UPLOAD_POLL_INTERVAL)
                file = self._file_client.get_file(name=file.name)

            if _state_name(file.state) == "FAILED":
                raise UploadFailedError(f"File processing failed: {filename}")

            info = file_to_dict(file)
            info["display_name"] = info["display_name"] or filename
            info["mime_type"] = info["mime_type"] or mime_type

            logger.info(
                "File uploaded",
                extra={"file_id": info["id"], "mime_type": info["mime_type"]},
            )

            return info

        finally:

            try:
                os.remove(temp_path)
            except OSError as e:
                logger.warning(
                    "Temporary upload file cleanup failed",
                    extra={"path": temp_path, "error": str(e)},
                )

    def list_files(self, page_size: Optional[int] = None) -> List[Dict]:

        request = protos.ListFilesRequest(page_size=page_size or 0)

        # the pager walks every page
        files = self._file_client.list_files(request=request)

        return [file_to_dict(file) for file in files]

    def get_file(self, file_ref: str) -> Dict:

        file_id = normalize_file_id(file_ref)

        try:
            file = self._file_client.get_file(name=f"files/{file_id}")
        except google_exceptions.NotFound:
            raise FileNotFoundUpstreamError(file_id)

        return file_to_dict(file)

    def delete_file(self, file_ref: str) -> str:

        file_id = normalize_file_id(file_ref)

        try:
            self._file_client.delete_file(name=f"files/{file_id}")
        except google_exceptions.NotFound:
            raise FileNotFoundUpstreamError(file_id)

        logger.info("File deleted", extra={"file_id": file_id})

        return file_id

    # ============================================================
    # GENERATION
    # ============================================================

    def build_request(
        self,
        model_name: str,
        parts: List[Dict],
        history: Optional[List[Dict]] = None,
        history_mode: bool = False,
    ) -> protos.GenerateContentRequest:
        """
        Single-shot requests carry one user turn. In history mode the
        earlier turns come first, as a chat session would send them.
        """

        contents = []

        if history_mode and history:
            contents.extend(
                protos.Content(role=turn["role"], parts=[protos.Part(text=turn["text"])])
                for turn in history
            )

        contents.append(
            protos.Content(role="user", parts=[to_proto_part(p) for p in parts])
        )

        return protos.GenerateContentRequest(
            model=f"models/{model_name}",
            contents=contents,
            system_instruction=protos.Content(
                parts=[protos.Part(text=FILE_QA_SYSTEM_PROMPT)]
            ),
        )

    async def generate(
        self,
        model_name: str,
        parts: List[Dict],
        history: Optional[List[Dict]] = None,
        history_mode: bool = False,
    ) -> str:

        request = self.build_request(model_name, parts, history, history_mode)

        response = await self._async_client().generate_content(request=request)

        return response_text(response)

    def ping(self, model_name: str = KEY_VALIDATION_MODEL) -> str:

        request = protos.GenerateContentRequest(
            model=f"models/{model_name}",
            contents=[
                protos.Content(
                    role="user",
                    parts=[protos.Part(text=KEY_VALIDATION_PROMPT)],
                )
            ],
        )

        return response_text(self._generative_client.generate_content(request=request))
