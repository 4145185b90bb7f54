"""JSON document collections shared by the marketplace stores."""

import fcntl
import json
import os
import tempfile
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator

from .errors import InvalidSchemaVersionError, StorageUnavailableError

SCHEMA_VERSION = 1

# Backoff bounds while waiting for a collection lock
_LOCK_INITIAL_DELAY = 0.005
_LOCK_MAX_DELAY = 0.1


class DocumentCollection:
    """
    A named list of JSON documents stored in a single file.

    Readers load the file without locking; writes go through a temp file and
    os.replace, so a reader always sees a whole snapshot. Read-modify-write
    sequences must run under ``_lock()``, which serializes writers across
    threads and processes sharing the data directory.
    """

    collection: str = ""

    def __init__(self, data_dir: Path, lock_timeout: float = 5.0):
        """
        Initialize the collection.

        Args:
            data_dir: Directory holding the collection files.
            lock_timeout: Seconds to wait for the write lock before giving up.
        """
        if not self.collection:
            raise TypeError(f"{type(self).__name__} must set 'collection'")
        self.data_dir = Path(data_dir)
        self.lock_timeout = lock_timeout
        self.path = self.data_dir / f"{self.collection}.json"

    def _ensure_dir(self) -> None:
        """Ensure data directory exists."""
        self.data_dir.mkdir(parents=True, exist_ok=True)

    @contextmanager
    def _lock(self) -> Iterator[None]:
        """Acquire exclusive lock on the collection for read-modify-write operations."""
        self._ensure_dir()
        lock_path = self.data_dir / f".{self.collection}.lock"
        with open(lock_path, "w") as lock_file:
            self._acquire(lock_file.fileno())
            try:
                yield
            finally:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)

    def _acquire(self, fd: int) -> None:
        """Take the flock, retrying with bounded backoff until lock_timeout."""
        deadline = time.monotonic() + self.lock_timeout
        delay = _LOCK_INITIAL_DELAY
        while True:
            try:
                fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                return
            except BlockingIOError:
                if time.monotonic() >= deadline:
                    raise StorageUnavailableError(self.collection, self.lock_timeout)
                time.sleep(delay)
                delay = min(delay * 2, _LOCK_MAX_DELAY)

    def _load_data(self) -> dict[str, Any]:
        """Load collection data from disk."""
        if not self.path.exists():
            return {"schema_version": SCHEMA_VERSION, self.collection: []}

        with open(self.path, "r", encoding="utf-8") as f:
            data = json.load(f)

        version = data.get("schema_version", 0)
        if version != SCHEMA_VERSION:
            raise InvalidSchemaVersionError(self.collection, version, SCHEMA_VERSION)
        data.setdefault(self.collection, [])
        return data

    def _save_data(self, data: dict[str, Any]) -> None:
        """Save collection data to disk atomically."""
        self._ensure_dir()

        fd, temp_path = tempfile.mkstemp(
            dir=self.data_dir, prefix=f".{self.collection}_", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
                f.write("\n")
            os.replace(temp_path, self.path)
        except Exception:
            try:
                os.unlink(temp_path)
            except OSError:
                pass
            raise

    def _documents(self) -> list[dict[str, Any]]:
        """Snapshot of all documents, without locking."""
        return self._load_data()[self.collection]

    @staticmethod
    def _index_of(documents: list[dict[str, Any]], key: str, value: Any) -> int | None:
        for i, doc in enumerate(documents):
            if doc.get(key) == value:
                return i
        return None
