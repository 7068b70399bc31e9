"""
Configuration for the File Chat API.

This file centralizes all tunable parameters for uploads, model invocation
and persistence. Every value can be overridden through the environment
(a local .env file is loaded first).
"""

import os

from dotenv import load_dotenv

load_dotenv()


def _env_list(name: str, default: list) -> list:
    raw = os.getenv(name)
    if not raw:
        return list(default)
    return [item.strip() for item in raw.split(",") if item.strip()]


# ========== CREDENTIALS ==========

# Optional at startup: the key can also be applied at runtime
# through POST /api/config/test-key
GEMINI_API_KEY = os.getenv("GEMINI_API_KEY")


# ========== MODEL CONFIGURATION ==========

# Priority order. Index 0 is the default model after startup
# or after a credential swap.
GEMINI_MODELS = _env_list(
    "GEMINI_MODELS",
    [
        "gemini-2.5-flash",
        "gemini-2.0-flash",
        "gemini-pro-latest",
        "gemini-flash-latest",
    ],
)

# Model used for the trivial generation that validates a new API key
KEY_VALIDATION_MODEL = GEMINI_MODELS[0] if GEMINI_MODELS else "gemini-2.5-flash"


# ========== RETRY / FALLBACK ==========

# Current model: 3 attempts, backoff 1s, 2s, 4s
PRIMARY_MAX_ATTEMPTS = 3
PRIMARY_INITIAL_DELAY = 1.0

# Each fallback model: 2 attempts, backoff 2s, 4s
FALLBACK_MAX_ATTEMPTS = 2
FALLBACK_INITIAL_DELAY = 2.0

# Substrings of an upstream error message that make it retryable
OVERLOAD_MARKERS = ("503", "overloaded", "Service Unavailable")
RATE_LIMIT_MARKERS = ("429", "rate limit")


# ========== UPLOADS ==========

MAX_FILE_SIZE_MB = 20

UPLOAD_POLL_INTERVAL = 1.0  # seconds between state checks while PROCESSING

ALLOWED_MIME_TYPES = [
    "application/pdf",
    "text/plain",
    "text/markdown",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "application/vnd.ms-excel",
    "application/vnd.openxmlformats-officedocument.presentationml.presentation",
    "application/vnd.ms-powerpoint",
    "image/jpeg",
    "image/png",
    "image/gif",
    "image/webp",
]


# ========== STORAGE ==========

STORAGE_DIR = os.getenv("STORAGE_DIR", "storage")

ACTIVATION_STORE_PATH = os.path.join(STORAGE_DIR, "file_statuses.json")
METRICS_PATH = os.path.join(STORAGE_DIR, "metrics.json")


# ========== LOGGING ==========

LOG_DIR = os.getenv("LOG_DIR", "logs")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")


# ========== HTTP ==========

CORS_ORIGINS = _env_list(
    "CORS_ORIGINS",
    [
        "http://localhost:3000",
        "http://localhost:5173",
        "http://localhost:8501",  # streamlit
    ],
)

API_BASE = os.getenv("FILECHAT_API_BASE", "http://127.0.0.1:8000")


# ========== DOCUMENTED LIMITS (served by /api/config/usage) ==========

SERVICE_LIMITS = {
    "rate_limit": {
        "free": "15 RPM",
        "paid": "360 RPM",
        "note": "Limits vary by account type",
    },
    "token_limit": {
        "input": "1M tokens",
        "output": "8K tokens",
        "note": "Limits vary by model",
    },
    "file_limit": {
        "max_size": f"{MAX_FILE_SIZE_MB} MB per file",
        "supported_formats": [
            "PDF", "TXT", "MD", "DOCX", "XLSX", "PPTX",
            "JPEG", "PNG", "GIF", "WEBP",
        ],
    },
    "storage": {
        "note": "Files are stored by the Gemini Files API",
        "expiration": "Uploaded files expire after 48 hours",
    },
}


# ========== DESIGN TRADE-OFFS (DOCUMENTED) ==========

"""
TRADE-OFF DECISIONS:

1. Sticky fallback model:
   - A fallback that succeeds becomes the default for every later request
   - Avoids paying the primary's failure latency again while it is degraded
   - Limitation: never probes the primary again until restart or key swap

2. Only overload errors trigger fallback:
   - 429 / rate limit is retried on the same model but never escalated
   - Quota is per key, not per model, so another model rarely helps

3. Whole-table JSON persistence for activation flags:
   - Simple, human-readable, fine for a few hundred files
   - Every mutation rewrites the file under a single-writer lock

4. Activation records are never pruned:
   - Deleting a file upstream leaves its record behind
   - Harmless: unknown ids are never listed, so stale records are never read
"""
