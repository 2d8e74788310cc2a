"""Insert-only output stores for post-processed subtitle tracks.

Entries are keyed by idempotency key. Because an entry's content is fully
determined by its key, concurrent writers of the same key race harmlessly;
the first stored entry wins and later inserts are no-ops.
"""

import json
import logging
import threading
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from tenacity import (
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from src.subtitles.models import PostProcessOutput
from src.subtitles.post_process_config import CacheSettings
from src.utils import write_text_atomic

logger = logging.getLogger(__name__)

CACHE_READ_ATTEMPTS = 3
CACHE_READ_WAIT_SEC = 0.05


class CacheReadError(Exception):
    """Raised when the cache file is empty or truncated mid-write."""

    pass


class SubtitleOutputStore(ABC):
    """Key-value store for successful post-process outputs."""

    @abstractmethod
    def get(self, key: str) -> PostProcessOutput | None:
        """Return the stored output for ``key``, or None."""

    @abstractmethod
    def _insert(self, output: PostProcessOutput) -> bool:
        """Store the output unless its key exists; return True if written."""

    def insert(self, output: PostProcessOutput) -> bool:
        """Insert a validated output. Existing keys are never overwritten.

        Raises
        ------
            ValueError: If the output still carries validation errors

        """
        if output.validation_errors:
            raise ValueError(
                f"Refusing to cache output {output.idempotency_key} with "
                f"{len(output.validation_errors)} validation error(s)"
            )
        return self._insert(output)


class InMemorySubtitleOutputStore(SubtitleOutputStore):
    """Process-local store, shared by every invocation holding a reference."""

    def __init__(self):
        self._entries: dict[str, PostProcessOutput] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> PostProcessOutput | None:
        with self._lock:
            return self._entries.get(key)

    def _insert(self, output: PostProcessOutput) -> bool:
        with self._lock:
            if output.idempotency_key in self._entries:
                return False
            self._entries[output.idempotency_key] = output
        logger.info(f"Stored subtitle output {output.idempotency_key} in memory")
        return True

    def __len__(self) -> int:
        return len(self._entries)


class JsonFileSubtitleOutputStore(SubtitleOutputStore):
    """Single JSON document on disk, rewritten atomically on every insert."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self._lock = threading.Lock()

    def _load_once(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}

        raw = self.path.read_text(encoding="utf-8")
        if not raw.strip():
            raise CacheReadError(f"Cache file is empty: {self.path}")
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise CacheReadError(f"Cache file is truncated: {self.path}") from e

        entries = data.get("entries") if isinstance(data, dict) else None
        return entries if isinstance(entries, dict) else {}

    def _load_entries(self) -> dict[str, Any]:
        retryer = Retrying(
            stop=stop_after_attempt(CACHE_READ_ATTEMPTS),
            wait=wait_fixed(CACHE_READ_WAIT_SEC),
            retry=retry_if_exception_type(CacheReadError),
            reraise=True,
        )
        for attempt in retryer:
            with attempt:
                return self._load_once()
        return {}

    def _write_entries(self, entries: dict[str, Any]) -> None:
        write_text_atomic(
            self.path, json.dumps({"entries": entries}, ensure_ascii=False, indent=2)
        )

    def get(self, key: str) -> PostProcessOutput | None:
        entry = self._load_entries().get(key)
        if not isinstance(entry, dict) or "output" not in entry:
            return None
        return PostProcessOutput.model_validate(entry["output"])

    def _insert(self, output: PostProcessOutput) -> bool:
        with self._lock:
            entries = self._load_entries()
            if output.idempotency_key in entries:
                logger.debug(f"Cache entry {output.idempotency_key} already exists")
                return False

            entries[output.idempotency_key] = {
                "idempotency_key": output.idempotency_key,
                "saved_at": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
                "output": output.model_dump(mode="json"),
            }
            self._write_entries(entries)

        logger.info(f"Stored subtitle output {output.idempotency_key} in {self.path}")
        return True


def create_output_store(cache_settings: CacheSettings) -> SubtitleOutputStore:
    if cache_settings.backend == "memory":
        return InMemorySubtitleOutputStore()
    return JsonFileSubtitleOutputStore(Path(cache_settings.json_path))
