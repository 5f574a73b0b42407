"""Base class for state persisted as a JSON checkpoint file."""

import json
import logging
import os
import time
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, Optional, Tuple

from ..models import StoreUnavailable

logger = logging.getLogger(__name__)


class CheckpointTracker(ABC):
    """Loads state on construction and rewrites the checkpoint atomically on save.

    A ``None`` checkpoint file keeps the state in memory only. Several
    processes may share one checkpoint: writers serialize on a lock file next
    to it and re-read the checkpoint before changing anything.
    """

    LOCK_TIMEOUT = 10.0
    STALE_LOCK_AFTER = 60.0

    def __init__(self, checkpoint_file: Optional[Path]):
        self.checkpoint_file = Path(checkpoint_file) if checkpoint_file else None
        self._stamp: Optional[Tuple[int, int, int]] = None
        self._lock_depth = 0
        if self.checkpoint_file:
            self.checkpoint_file.parent.mkdir(parents=True, exist_ok=True)
        self.load()

    @abstractmethod
    def _get_default_state(self) -> Dict[str, Any]:
        """Return default state structure for new checkpoints."""

    @abstractmethod
    def _deserialize_state(self, data: Dict[str, Any]) -> None:
        """Deserialize loaded data into instance state."""

    @abstractmethod
    def _serialize_state(self) -> Dict[str, Any]:
        """Serialize instance state for saving."""

    @property
    def lock_file(self) -> Optional[Path]:
        if not self.checkpoint_file:
            return None
        return self.checkpoint_file.with_suffix(self.checkpoint_file.suffix + ".lock")

    def _file_stamp(self) -> Optional[Tuple[int, int, int]]:
        # Each save replaces the file, so the inode changes even within one mtime tick
        try:
            st = self.checkpoint_file.stat()
        except FileNotFoundError:
            return None
        return st.st_ino, st.st_mtime_ns, st.st_size

    def load(self) -> None:
        """Load state from the checkpoint file, or start from the default state."""
        if not self.checkpoint_file or not self.checkpoint_file.exists():
            self._stamp = None
            self._deserialize_state(self._get_default_state())
            return

        try:
            self._stamp = self._file_stamp()
            with open(self.checkpoint_file, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Failed to load checkpoint {self.checkpoint_file}: {e}")
            raise StoreUnavailable(f"cannot read checkpoint {self.checkpoint_file}: {e}") from e

        self._deserialize_state(data)

    def refresh(self) -> None:
        """Reload if another writer replaced the checkpoint since we last saw it."""
        if self.checkpoint_file and self._file_stamp() != self._stamp:
            logger.debug(f"Checkpoint {self.checkpoint_file} changed on disk, reloading")
            self.load()

    @contextmanager
    def exclusive(self) -> Iterator[None]:
        """Hold the cross-process writer lock and start from the state on disk.

        Re-entrant within one instance; the outermost holder does the reload.
        """
        if not self.checkpoint_file or self._lock_depth:
            self._lock_depth += 1
            try:
                yield
            finally:
                self._lock_depth -= 1
            return

        lock_file = self.lock_file
        deadline = time.monotonic() + self.LOCK_TIMEOUT
        while True:
            try:
                fd = os.open(lock_file, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
                break
            except FileExistsError:
                self._break_stale_lock(lock_file)
                if time.monotonic() >= deadline:
                    raise StoreUnavailable(
                        f"checkpoint {self.checkpoint_file} is locked by another process ({lock_file})"
                    )
                time.sleep(0.01)
            except OSError as e:
                raise StoreUnavailable(f"cannot lock checkpoint {self.checkpoint_file}: {e}") from e

        try:
            self._lock_depth += 1
            os.write(fd, str(os.getpid()).encode())
            self.load()
            yield
        finally:
            self._lock_depth -= 1
            os.close(fd)
            try:
                os.unlink(lock_file)
            except FileNotFoundError:
                pass

    def _break_stale_lock(self, lock_file: Path) -> None:
        # A writer that died mid-save leaves its lock file behind
        try:
            age = time.time() - lock_file.stat().st_mtime
        except FileNotFoundError:
            return
        if age > self.STALE_LOCK_AFTER:
            logger.warning(f"Removing stale lock {lock_file} ({age:.0f}s old)")
            try:
                os.unlink(lock_file)
            except FileNotFoundError:
                pass

    def save(self) -> None:
        """Write the checkpoint via a temp file so readers never see partial state."""
        if not self.checkpoint_file:
            return

        tmp_file = self.checkpoint_file.with_suffix(self.checkpoint_file.suffix + ".tmp")
        try:
            with open(tmp_file, "w", encoding="utf-8") as f:
                json.dump(self._serialize_state(), f, ensure_ascii=False)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_file, self.checkpoint_file)
        except OSError as e:
            logger.error(f"Failed to save checkpoint {self.checkpoint_file}: {e}")
            raise StoreUnavailable(f"cannot write checkpoint {self.checkpoint_file}: {e}") from e
        self._stamp = self._file_stamp()
