"""Persistent store for projects and tasks.

The whole entity graph lives in a single JSON document. Loading never
fails: a missing, unreadable or malformed file yields an empty root.
Saving replaces the document atomically and lets filesystem errors
propagate untouched.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import IO, Iterator, Optional

from .config import resolve_file_path
from .models import StoreState
from .taskqueue_logging import log_performance

logger = logging.getLogger("taskqueue.store")


class TaskStore:
    """Load and save the task document at ``file_path``."""

    def __init__(self, file_path: Optional[Path | str] = None):
        self.file_path = resolve_file_path(file_path).resolve()

    @property
    def lock_path(self) -> Path:
        return self.file_path.with_name(self.file_path.name + ".lock")

    @log_performance("store_load")
    def load(self) -> StoreState:
        """Read the document and recompute identifier watermarks."""
        try:
            raw = self.file_path.read_text(encoding="utf-8")
        except FileNotFoundError:
            logger.debug(f"No task file at {self.file_path}; starting empty")
            return StoreState()
        except (OSError, UnicodeDecodeError) as e:
            logger.warning(f"Could not read task file {self.file_path}: {e}; starting empty")
            return StoreState()

        try:
            return StoreState.from_dict(json.loads(raw))
        except (json.JSONDecodeError, KeyError, TypeError, ValueError, AttributeError, RecursionError) as e:
            logger.warning(f"Task file {self.file_path} is malformed ({e}); starting empty")
            return StoreState()

    @log_performance("store_save")
    def save(self, state: StoreState) -> None:
        """Replace the document with ``state``.

        The content is written to a sibling temporary file and renamed over
        the target so readers never observe a truncated document.
        """
        payload = json.dumps(state.to_dict(), indent=2, ensure_ascii=False)
        try:
            self.file_path.parent.mkdir(parents=True, exist_ok=True)
            self._write_atomic(payload)
        except OSError as e:
            logger.error(f"Failed to save task file {self.file_path}: {e}")
            raise

    def _write_atomic(self, payload: str) -> None:
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{self.file_path.name}.", suffix=".tmp", dir=self.file_path.parent
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(payload)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, self.file_path)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
            raise

    @contextmanager
    def lock(self) -> Iterator[Optional[IO[str]]]:
        """Hold an advisory exclusive lock on the task file.

        Cooperating processes serialize their read-modify-write cycles on it.
        Platforms without ``fcntl`` run unlocked.
        """
        try:
            import fcntl
        except ModuleNotFoundError:
            yield None
            return

        self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        handle = self.lock_path.open("a+", encoding="utf-8")
        try:
            fcntl.flock(handle.fileno(), fcntl.LOCK_EX)
            try:
                yield handle
            finally:
                fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
        finally:
            handle.close()
