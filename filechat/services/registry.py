import logging
import threading
from typing import Callable, Optional

from filechat.llm.gemini_service import GeminiService
from filechat.storage.activation import FileActivationStore


logger = logging.getLogger(__name__)


class ServiceNotConfiguredError(RuntimeError):

    def __init__(self):
        super().__init__("API key not configured. Configure it in Settings.")


class InvalidApiKeyError(ValueError):

    def __init__(self, error: BaseException):
        self.error = error
        super().__init__(
            "Invalid API key or missing permissions. Check it and try again."
        )


class ServiceRegistry:
    """
    Process-wide holder of the Gemini service and the activation store.

    The Gemini service is swapped as a whole when the key changes, so
    handlers that already hold the old service finish their calls on it.
    The activation store does not depend on the key and lives for the
    whole process.
    """

    def __init__(
        self,
        activation_store: FileActivationStore,
        api_key: Optional[str] = None,
        service_factory: Callable[[str], GeminiService] = GeminiService,
    ):

        self.activation_store = activation_store

        self._service_factory = service_factory
        self._service: Optional[GeminiService] = None
        self._lock = threading.Lock()

        if api_key:

            try:

                self.configure(api_key)

                logger.info("Gemini service configured from environment")

            except Exception as e:

                logger.error(
                    "Gemini service initialization failed",
                    extra={"error": str(e)},
                )

    @property
    def service(self) -> Optional[GeminiService]:
        return self._service

    @property
    def has_api_key(self) -> bool:
        return self._service is not None

    @property
    def api_key_preview(self) -> Optional[str]:

        service = self._service
        if service is None:
            return None

        key = service.api_key

        return f"{key[:10]}...{key[-4:]}"

    def require_service(self) -> GeminiService:

        service = self._service
        if service is None:
            raise ServiceNotConfiguredError()

        return service

    def configure(self, api_key: str) -> GeminiService:

        service = self._service_factory(api_key)

        with self._lock:
            self._service = service

        return service

    def test_and_apply(self, api_key: str) -> GeminiService:
        """
        Validate ``api_key`` with a trivial generation, then swap it in.

        The candidate talks to the API through its own clients, so requests
        in flight keep using the current service until the swap. On failure
        the current service is left untouched.
        """

        candidate = self._service_factory(api_key)

        try:

            candidate.ping()

        except Exception as e:

            logger.warning(
                "API key validation failed",
                extra={"error": str(e)},
            )

            raise InvalidApiKeyError(e)

        with self._lock:
            self._service = candidate

        logger.info("API key validated and applied")

        return candidate
