"""Small persistent JSON file helpers.

Provides `load_json_file` / `save_json_file` used by the irrigation ledger and
the weather cache. Writes go through a temporary file and `os.replace` so a
crash mid-write never leaves a truncated ledger behind.
"""
from __future__ import annotations

import json
import logging
import os
import time
from contextlib import suppress
from typing import Any

logger = logging.getLogger(__name__)


class FileLock:
    """Advisory lock next to a JSON file, held while it is read or replaced.

    Creates ``<path>.lock`` with ``O_EXCL`` and polls until ``timeout``. Good
    enough for a cron job racing a manual run on the same Raspberry Pi.
    """

    def __init__(self, path: str, timeout: float = 5.0, poll_interval: float = 0.05) -> None:
        self.lock_path = path + ".lock"
        self.timeout = float(timeout)
        self.poll_interval = float(poll_interval)
        self._held = False

    def acquire(self) -> bool:
        deadline = time.monotonic() + self.timeout
        while True:
            try:
                os.close(os.open(self.lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY))
            except FileExistsError:
                if time.monotonic() >= deadline:
                    return False
                time.sleep(self.poll_interval)
            else:
                self._held = True
                return True

    def release(self) -> None:
        if not self._held:
            return
        self._held = False
        with suppress(FileNotFoundError):
            os.unlink(self.lock_path)

    def __enter__(self):
        if not self.acquire():
            raise TimeoutError(f"{self.lock_path} is held by another process")
        return self

    def __exit__(self, exc_type, exc, tb):
        self.release()


def load_json_file(path: str) -> Any:
    """Read and decode a JSON file.

    Raises:
        FileNotFoundError: the file does not exist
        json.JSONDecodeError: the content is not valid JSON
        TimeoutError: another writer holds the lock
    """
    with FileLock(path):
        with open(path, "r", encoding="utf-8") as fh:
            return json.load(fh)


def save_json_file(path: str, data: Any, indent: int | None = 4) -> None:
    """Atomically replace ``path`` with the JSON encoding of ``data``."""
    directory = os.path.dirname(os.path.abspath(path))
    os.makedirs(directory, exist_ok=True)
    with FileLock(path):
        tmp = path + ".tmp"
        try:
            with open(tmp, "w", encoding="utf-8") as fh:
                json.dump(data, fh, indent=indent)
            os.replace(tmp, path)
        except (OSError, TypeError, ValueError):
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise
    logger.debug("Saved JSON file %s", path)
