import json
import logging
import os
import tempfile
import threading
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from filechat.config import ACTIVATION_STORE_PATH


logger = logging.getLogger(__name__)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class FileActivationStore:
    """
    Active/inactive flag per uploaded file.

    A file with no record is active. Records are created by the first
    deactivate or reactivate call and are never removed, even after the file
    itself is deleted upstream.

    The whole table is rewritten on every mutation and read once here in the
    constructor. Read and write failures are logged and swallowed: the
    in-memory table stays authoritative for the life of the process.
    """

    def __init__(self, path: str = ACTIVATION_STORE_PATH):

        self._path = path
        self._records: Dict[str, dict] = {}
        self._lock = threading.Lock()

        self._load()

    @property
    def path(self) -> str:
        return self._path

    # ============================================================
    # PERSISTENCE
    # ============================================================

    def _load(self):

        if not os.path.exists(self._path):
            logger.info(
                "Activation table not found. Starting fresh.",
                extra={"path": self._path},
            )
            return

        try:

            with open(self._path, "r") as f:
                data = json.load(f)

            if not isinstance(data, list):
                raise ValueError("expected a list of records")

            restored = {}

            for entry in data:

                file_id = entry["file_id"]

                record = {"file_id": file_id, "active": bool(entry["active"])}

                for key in ("deactivated_at", "reactivated_at"):
                    if entry.get(key):
                        record[key] = entry[key]

                restored[file_id] = record

            self._records = restored

            logger.info(
                "Activation table loaded",
                extra={"records": len(self._records)},
            )

        except (OSError, ValueError, KeyError, TypeError) as e:

            self._records = {}

            logger.warning(
                "Activation table load failed, starting empty",
                extra={"path": self._path, "error": str(e)},
            )

    def _save(self):
        """
        Replace the table file atomically.

        The table is written to a temporary file in the same directory and
        renamed over the old one, so a crash mid-write leaves the previous
        table intact.
        """

        temp_path = None

        try:

            payload = json.dumps(list(self._records.values()), indent=2)

            directory = os.path.dirname(self._path) or "."
            os.makedirs(directory, exist_ok=True)

            fd, temp_path = tempfile.mkstemp(
                dir=directory,
                prefix=".file_statuses-",
                suffix=".tmp",
            )

            with os.fdopen(fd, "w") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())

            os.replace(temp_path, self._path)
            temp_path = None

        except (OSError, TypeError, ValueError) as e:

            logger.error(
                "Activation table save failed",
                extra={"path": self._path, "error": str(e)},
            )

        finally:

            if temp_path is not None:

                try:
                    os.remove(temp_path)
                except OSError as e:
                    logger.warning(
                        "Activation temp file cleanup failed",
                        extra={"path": temp_path, "error": str(e)},
                    )

    # ============================================================
    # QUERIES
    # ============================================================

    def is_active(self, file_id: str) -> bool:

        record = self._records.get(file_id)

        return record["active"] if record else True

    def get_status(self, file_id: str) -> Optional[dict]:

        record = self._records.get(file_id)

        return dict(record) if record else None

    def filter_active(self, file_ids: Iterable[str]) -> List[str]:

        return [file_id for file_id in file_ids if self.is_active(file_id)]

    def records(self) -> List[dict]:

        with self._lock:
            return [dict(record) for record in self._records.values()]

    # ============================================================
    # MUTATIONS
    # ============================================================

    def deactivate(self, file_id: str) -> dict:

        with self._lock:

            record = self._records.setdefault(file_id, {"file_id": file_id})
            record["active"] = False
            record["deactivated_at"] = _now()

            self._save()

            result = dict(record)

        logger.info("File deactivated", extra={"file_id": file_id})

        return result

    def reactivate(self, file_id: str) -> dict:

        with self._lock:

            record = self._records.setdefault(file_id, {"file_id": file_id})
            record["active"] = True
            record["reactivated_at"] = _now()

            self._save()

            result = dict(record)

        logger.info("File reactivated", extra={"file_id": file_id})

        return result
