# tests/conftest.py
import os
import sys
import tempfile

import pytest

# Add project root to Python path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

# Keep logs, metrics and activation tables out of the working tree.
# Must be set before filechat.config is imported.
_TEST_ROOT = tempfile.mkdtemp(prefix="filechat-tests-")
os.environ["STORAGE_DIR"] = os.path.join(_TEST_ROOT, "storage")
os.environ["LOG_DIR"] = os.path.join(_TEST_ROOT, "logs")
os.environ.pop("GEMINI_API_KEY", None)
os.environ.pop("POSTHOG_API_KEY", None)

from fastapi.testclient import TestClient

from filechat.api.routes import get_registry
from filechat.llm.gemini_service import FileNotFoundUpstreamError, normalize_file_id
from filechat.llm.invocation import ModelInvocationPolicy
from filechat.main import app
from filechat.services.registry import ServiceRegistry
from filechat.storage.activation import FileActivationStore


MODELS = ["model-a", "model-b", "model-c"]


class RecordingSleep:
    """Stands in for asyncio.sleep and records every requested delay."""

    def __init__(self):
        self.delays = []

    async def __call__(self, delay: float):
        self.delays.append(delay)


class FakeGeminiService:
    """
    In-memory replacement for GeminiService.

    ``outcomes`` maps a model name to a list of results consumed one per
    call: an Exception instance is raised, anything else is returned.
    A model with no queued outcome answers "answer from <model>".
    """

    def __init__(self, api_key: str, models=None):
        self.api_key = api_key
        self.sleep = RecordingSleep()
        self.policy = ModelInvocationPolicy(models or MODELS, sleep=self.sleep)
        self.files = {}
        self.outcomes = {}
        self.calls = []
        self.ping_error = None

    @property
    def current_model(self):
        return self.policy.current_model

    def ping(self, model_name=None):
        if self.ping_error:
            raise self.ping_error
        return "ok"

    def add_file(self, file_id, display_name=None, mime_type="application/pdf",
                 state="ACTIVE", size_bytes=1024):
        self.files[file_id] = {
            "id": file_id,
            "name": f"files/{file_id}",
            "display_name": display_name or f"{file_id}.pdf",
            "mime_type": mime_type,
            "size_bytes": size_bytes,
            "state": state,
            "create_time": "2026-10-19T10:00:00+00:00",
            "update_time": "2026-10-19T10:00:00+00:00",
            "expiration_time": "2026-10-21T10:00:00+00:00",
            "uri": f"https://generativelanguage.googleapis.com/v1beta/files/{file_id}",
        }
        return self.files[file_id]

    def upload_file(self, content, filename, mime_type):
        file_id = f"up{len(self.files) + 1}"
        return self.add_file(file_id, display_name=filename, mime_type=mime_type,
                             size_bytes=len(content))

    def list_files(self, page_size=None):
        files = list(self.files.values())
        return files[:page_size] if page_size else files

    def get_file(self, file_ref):
        file_id = normalize_file_id(file_ref)
        if file_id not in self.files:
            raise FileNotFoundUpstreamError(file_id)
        return self.files[file_id]

    def delete_file(self, file_ref):
        file_id = normalize_file_id(file_ref)
        if file_id not in self.files:
            raise FileNotFoundUpstreamError(file_id)
        del self.files[file_id]
        return file_id

    async def generate(self, model_name, parts, history=None, history_mode=False):
        self.calls.append(
            {
                "model": model_name,
                "parts": parts,
                "history": history,
                "history_mode": history_mode,
            }
        )
        queue = self.outcomes.get(model_name)
        if queue:
            outcome = queue.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome
        return f"answer from {model_name}"


@pytest.fixture
def activation_store(tmp_path):
    return FileActivationStore(str(tmp_path / "file_statuses.json"))


@pytest.fixture
def fake_service():
    return FakeGeminiService("AIzaSyTEST-KEY-0000001234")


@pytest.fixture
def registry(activation_store, fake_service):
    """Registry already configured with ``fake_service``."""
    def factory(api_key):
        if api_key == fake_service.api_key:
            return fake_service
        return FakeGeminiService(api_key)

    registry = ServiceRegistry(
        activation_store=activation_store,
        service_factory=factory,
    )
    registry.configure(fake_service.api_key)
    return registry


@pytest.fixture
def client(registry):
    """
    FastAPI test client wired to the fake registry.
    """
    app.dependency_overrides[get_registry] = lambda: registry
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def unconfigured_client(activation_store):
    registry = ServiceRegistry(
        activation_store=activation_store,
        service_factory=FakeGeminiService,
    )
    app.dependency_overrides[get_registry] = lambda: registry
    yield TestClient(app)
    app.dependency_overrides.clear()
