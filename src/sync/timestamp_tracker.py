"""Watermark tracking for maintaining synchronization state."""

import os
import tempfile
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path

import structlog
from pydantic import ValidationError

from src.models.stop_place import SyncState

log = structlog.stdlib.get_logger()


class WatermarkStore(ABC):
    """Persists the "synchronized until" timestamp between cycles."""

    @abstractmethod
    def get(self) -> datetime | None:
        """Return the last persisted watermark, or None if never synchronized."""
        pass

    @abstractmethod
    def set(self, synced_until: datetime) -> None:
        """Persist a new watermark."""
        pass


class InMemoryWatermarkStore(WatermarkStore):
    """Watermark held in process memory, used for dry runs and tests."""

    def __init__(self, synced_until: datetime | None = None):
        self._synced_until = synced_until
        self._lock = threading.Lock()

    def get(self) -> datetime | None:
        with self._lock:
            return self._synced_until

    def set(self, synced_until: datetime) -> None:
        with self._lock:
            self._synced_until = synced_until
        log.info("watermark_saved", synced_until=synced_until, store="memory")


class FileWatermarkStore(WatermarkStore):
    """Manages the sync watermark in a JSON file."""

    def __init__(self, path: str | Path):
        """
        Initialize watermark store.

        Args:
            path: Location of the JSON state file (created on first save)
        """
        self._path = Path(path)
        log.info("watermark_store_initialized", path=str(self._path))

    @property
    def path(self) -> Path:
        return self._path

    def get(self) -> datetime | None:
        """
        Load the watermark from disk.

        Returns:
            Last synchronized timestamp, None if no state file exists

        Raises:
            RuntimeError: If the state file cannot be read or parsed
        """
        if not self._path.exists():
            log.info("no_sync_state_found", path=str(self._path))
            return None

        try:
            sync_state = SyncState.model_validate_json(self._path.read_text(encoding="utf-8"))
        except (OSError, ValidationError) as e:
            log.error("failed_to_load_sync_state", path=str(self._path), error=str(e))
            raise RuntimeError(f"Failed to load sync state: {e}") from e

        log.info("sync_state_loaded", synced_until=sync_state.synced_until)
        return sync_state.synced_until

    def set(self, synced_until: datetime) -> None:
        """
        Save the watermark to disk.

        The file is replaced atomically so a crash never leaves a partial document.

        Args:
            synced_until: End of the window that was just synchronized

        Raises:
            RuntimeError: If the state file cannot be written
        """
        sync_state = SyncState(synced_until=synced_until, updated_at=datetime.now(timezone.utc))
        log.info("saving_sync_state", synced_until=synced_until, path=str(self._path))

        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=self._path.parent, prefix=self._path.name, suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(sync_state.model_dump_json(indent=2))
                os.replace(tmp_name, self._path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as e:
            log.error("failed_to_save_sync_state", path=str(self._path), error=str(e))
            raise RuntimeError(f"Failed to save sync state: {e}") from e

        log.info("sync_state_saved", synced_until=synced_until)
