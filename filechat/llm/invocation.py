# filechat/llm/invocation.py

import asyncio
import logging
import threading
from typing import Awaitable, Callable, List, Optional, Sequence

from filechat.config import (
    FALLBACK_INITIAL_DELAY,
    FALLBACK_MAX_ATTEMPTS,
    OVERLOAD_MARKERS,
    PRIMARY_INITIAL_DELAY,
    PRIMARY_MAX_ATTEMPTS,
    RATE_LIMIT_MARKERS,
)
from filechat.observability.metrics import metrics_tracker


logger = logging.getLogger(__name__)


MakeCall = Callable[[str, bool], Awaitable[str]]
Sleep = Callable[[float], Awaitable[None]]


class AllModelsUnavailableError(RuntimeError):
    """Every configured model stayed overloaded after its retries."""

    def __init__(self, last_error: BaseException):
        self.last_error = last_error
        super().__init__(
            "All models are overloaded or unavailable. "
            "Please try again in a few moments. "
            f"Original error: {last_error}"
        )


def is_overloaded(error: BaseException) -> bool:
    message = str(error)
    return any(marker in message for marker in OVERLOAD_MARKERS)


def is_retryable(error: BaseException) -> bool:
    message = str(error)
    return is_overloaded(error) or any(
        marker in message for marker in RATE_LIMIT_MARKERS
    )


async def retry_with_backoff(
    fn: Callable[[], Awaitable[str]],
    max_attempts: int,
    initial_delay: float,
    sleep: Sleep = asyncio.sleep,
) -> str:
    """
    Run ``fn`` up to ``max_attempts`` times.

    Only retryable failures are retried. After every retryable failure the
    loop backs off ``initial_delay * 2 ** attempt`` seconds, so three attempts
    wait 1s, 2s and 4s before the last error is re-raised. A non-retryable
    failure propagates at once with no delay.
    """

    last_error: Optional[BaseException] = None

    for attempt in range(max_attempts):

        try:
            return await fn()

        except Exception as e:

            if not is_retryable(e):
                raise

            last_error = e
            delay = initial_delay * (2 ** attempt)

            logger.warning(
                "Model attempt failed",
                extra={
                    "attempt": attempt + 1,
                    "max_attempts": max_attempts,
                    "retry_delay_seconds": delay,
                    "error": str(e),
                },
            )

            await sleep(delay)

    raise last_error


class ModelInvocationPolicy:
    """
    Retry and fallback across an ordered list of models.

    The current model is shared by every request in the process. When a
    fallback succeeds it becomes the current model for all later calls.
    The lock only guards single reads and writes of the cursor: two requests
    that fall back concurrently may both write a winner, last writer wins.
    """

    def __init__(
        self,
        models: Sequence[str],
        primary_attempts: int = PRIMARY_MAX_ATTEMPTS,
        primary_delay: float = PRIMARY_INITIAL_DELAY,
        fallback_attempts: int = FALLBACK_MAX_ATTEMPTS,
        fallback_delay: float = FALLBACK_INITIAL_DELAY,
        sleep: Sleep = asyncio.sleep,
    ):

        if not models:
            raise ValueError("At least one model is required")

        self._models: List[str] = list(models)
        self._current_index = 0
        self._lock = threading.Lock()

        self.primary_attempts = primary_attempts
        self.primary_delay = primary_delay
        self.fallback_attempts = fallback_attempts
        self.fallback_delay = fallback_delay

        self._sleep = sleep

    @property
    def available_models(self) -> List[str]:
        return list(self._models)

    @property
    def current_index(self) -> int:
        with self._lock:
            return self._current_index

    @property
    def current_model(self) -> str:
        with self._lock:
            return self._models[self._current_index]

    def _set_current(self, index: int):
        with self._lock:
            self._current_index = index

    def reset(self):
        self._set_current(0)

    async def invoke(self, make_call: MakeCall, history_mode: bool = False) -> str:

        start_index = self.current_index
        model = self._models[start_index]

        try:

            text = await retry_with_backoff(
                lambda: make_call(model, history_mode),
                self.primary_attempts,
                self.primary_delay,
                self._sleep,
            )

            metrics_tracker.record_model_call(model)

            return text

        except Exception as e:

            if not is_overloaded(e):
                raise

            logger.warning(
                "Model overloaded, trying fallback models",
                extra={"model": model, "history_mode": history_mode},
            )

            last_error: BaseException = e

        for index, candidate in enumerate(self._models):

            if index == start_index:
                continue

            logger.info(
                "Trying fallback model",
                extra={"model": candidate},
            )

            try:

                text = await retry_with_backoff(
                    lambda: make_call(candidate, history_mode),
                    self.fallback_attempts,
                    self.fallback_delay,
                    self._sleep,
                )

            except Exception as e:

                last_error = e

                logger.warning(
                    "Fallback model failed",
                    extra={"model": candidate, "error": str(e)},
                )

                continue

            self._set_current(index)

            metrics_tracker.record_model_call(candidate, fallback=True)

            logger.info(
                "Fallback model succeeded",
                extra={"from_model": model, "to_model": candidate},
            )

            return text

        raise AllModelsUnavailableError(last_error)
