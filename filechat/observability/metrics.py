import json
import logging
import os
import threading
from typing import Dict, List

from filechat.config import METRICS_PATH


logger = logging.getLogger(__name__)


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


class MetricsTracker:
    """
    Request and model-usage counters, persisted as JSON.

    Model counters answer "which model is actually serving traffic"
    for /api/config/usage and /metrics.
    """

    def __init__(self, path: str = METRICS_PATH):

        self._path = path
        self._lock = threading.Lock()

        self._metrics = self._empty()

        self._load()

    @staticmethod
    def _empty() -> Dict:

        return {

            "total_requests": 0,
            "successful_requests": 0,
            "failed_requests": 0,

            "total_latency": 0.0,
            "avg_latency": 0.0,
            "latencies": [],

            # model name -> successful generations
            "model_calls": {},
            "model_fallbacks": 0,

        }

    @staticmethod
    def _validated(data) -> Dict:
        """Merge a loaded payload over the empty shape, rejecting wrong types."""

        if not isinstance(data, dict):
            raise ValueError(f"expected an object, got {type(data).__name__}")

        merged = MetricsTracker._empty()

        for key, default in merged.items():

            if key not in data:
                continue

            value = data[key]

            if isinstance(default, list):
                valid = isinstance(value, list) and all(_is_number(v) for v in value)
            elif isinstance(default, dict):
                valid = isinstance(value, dict) and all(
                    isinstance(v, int) and not isinstance(v, bool)
                    for v in value.values()
                )
            else:
                valid = _is_number(value)

            if not valid:
                raise ValueError(f"bad value for {key!r}: {value!r}")

            merged[key] = value

        return merged

    def _load(self):

        if not os.path.exists(self._path):
            return

        try:

            with open(self._path, "r") as f:
                data = json.load(f)

            self._metrics = self._validated(data)

        except (OSError, ValueError) as e:

            logger.warning(
                "Metrics load failed, starting fresh",
                extra={"path": self._path, "error": str(e)},
            )

    def _save(self):

        try:

            directory = os.path.dirname(self._path)
            if directory:
                os.makedirs(directory, exist_ok=True)

            with open(self._path, "w") as f:
                json.dump(self._metrics, f, indent=2)

        except OSError as e:

            logger.warning(
                "Metrics save failed",
                extra={"path": self._path, "error": str(e)},
            )

    def record_success(self, latency: float):

        with self._lock:

            self._metrics["total_requests"] += 1
            self._metrics["successful_requests"] += 1
            self._metrics["total_latency"] += latency

            self._metrics["avg_latency"] = (
                self._metrics["total_latency"]
                / self._metrics["total_requests"]
            )

            self._metrics["latencies"].append(latency)

            self._save()

    def record_failure(self):

        with self._lock:

            self._metrics["total_requests"] += 1
            self._metrics["failed_requests"] += 1

            self._save()

    def record_model_call(self, model: str, fallback: bool = False):

        with self._lock:

            calls = self._metrics["model_calls"]
            calls[model] = calls.get(model, 0) + 1

            if fallback:
                self._metrics["model_fallbacks"] += 1

            self._save()

    def get_metrics(self) -> Dict:

        with self._lock:
            snapshot = dict(self._metrics)
            snapshot["model_calls"] = dict(self._metrics["model_calls"])

        snapshot["p95_latency"] = self.get_latency_percentile(95)

        return snapshot

    def get_latency_percentile(self, percentile: float) -> float:

        latencies: List[float] = self._metrics.get("latencies", [])

        if not latencies:
            return 0.0

        sorted_latencies = sorted(latencies)

        index = int(len(sorted_latencies) * percentile / 100)
        index = min(index, len(sorted_latencies) - 1)

        return sorted_latencies[index]

    def reset(self):

        with self._lock:
            self._metrics = self._empty()
            self._save()


metrics_tracker = MetricsTracker()
