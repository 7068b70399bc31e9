# filechat/observability/posthog_client.py

"""
PostHog event tracking.

- Disabled unless POSTHOG_API_KEY is set
- Uses the request id as distinct_id
- Never raises into the request path
"""

import os
import logging
from typing import Optional, Dict, Any, List

from posthog import Posthog


logger = logging.getLogger(__name__)


class PostHogClient:

    def __init__(self):

        self._enabled = False
        self._client: Optional[Posthog] = None

        api_key = os.getenv("POSTHOG_API_KEY")
        host = os.getenv("POSTHOG_HOST", "https://app.posthog.com")

        if not api_key:
            logger.info("PostHog disabled: POSTHOG_API_KEY not set")
            return

        try:

            self._client = Posthog(
                project_api_key=api_key,
                host=host,
                timeout=5,
                flush_interval=1,
            )

            self._enabled = True

            logger.info(
                "PostHog client initialized",
                extra={"host": host}
            )

        except Exception as e:

            logger.error(
                "PostHog initialization failed",
                extra={"error": str(e)}
            )

    @property
    def enabled(self) -> bool:
        return self._enabled

    def _track(
        self,
        distinct_id: str,
        event: str,
        properties: Optional[Dict[str, Any]] = None,
    ):

        if not self._enabled or not self._client:
            return

        try:

            self._client.capture(
                distinct_id=distinct_id,
                event=event,
                properties=properties or {},
            )

        except Exception as e:

            logger.warning(
                "PostHog tracking failed",
                extra={
                    "event": event,
                    "error": str(e),
                }
            )

    def track_file_upload(
        self,
        distinct_id: str,
        file_id: str,
        mime_type: str,
        size_bytes: Optional[int],
        latency: float,
    ):

        self._track(
            distinct_id,
            "file_uploaded",
            {
                "file_id": file_id,
                "mime_type": mime_type,
                "size_bytes": size_bytes,
                "latency_seconds": latency,
            },
        )

    def track_question(
        self,
        distinct_id: str,
        question: str,
        file_ids: List[str],
        model: str,
        latency: float,
        history_turns: int,
    ):

        self._track(
            distinct_id,
            "question_asked",
            {
                "question_length": len(question),
                "files_used": len(file_ids),
                "model": model,
                "history_turns": history_turns,
                "latency_seconds": latency,
            },
        )

    def track_model_fallback(
        self,
        distinct_id: str,
        from_model: str,
        to_model: str,
    ):

        self._track(
            distinct_id,
            "model_fallback",
            {"from_model": from_model, "to_model": to_model},
        )

    def track_activation_change(
        self,
        distinct_id: str,
        file_id: str,
        active: bool,
    ):

        self._track(
            distinct_id,
            "file_activation_changed",
            {"file_id": file_id, "active": active},
        )

    def track_error(
        self,
        distinct_id: str,
        error_type: str,
        error_message: str,
        endpoint: str,
    ):

        self._track(
            distinct_id,
            "system_error",
            {
                "error_type": error_type,
                "error_message": error_message,
                "endpoint": endpoint,
            },
        )


posthog_client = PostHogClient()
