"""
Local durable snapshot store.

Writes are atomic: serialize to a temp file in the same directory, copy the
current primary to `<name>.bak`, then rename the temp file over the primary.
Loads try the primary, then the backup; a document counts only if it parses
as a full snapshot.
"""
import json
import os
import shutil
from pathlib import Path
from typing import Any, Dict, Optional

from loguru import logger

from ..core.exceptions import SnapshotCorruptError
from ..utils.time_utils import format_ts
from .snapshot import Snapshot


class StateStore:

    def __init__(self, state_path: str = "data/state.json", archive_dir: str = "data/archive"):
        self.path = Path(state_path)
        self.backup_path = self.path.with_name(self.path.name + ".bak")
        self.tmp_path = self.path.with_name(self.path.name + ".tmp")
        self.archive_dir = Path(archive_dir)

    @staticmethod
    def _read(path: Path) -> Dict[str, Any]:
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            raise SnapshotCorruptError(f"{path}: {e}") from e
        # Parseable JSON is not enough; the document has to restore
        try:
            Snapshot.from_dict(data)
        except SnapshotCorruptError as e:
            raise SnapshotCorruptError(f"{path}: {e}") from e
        except (AttributeError, TypeError, ValueError) as e:
            raise SnapshotCorruptError(f"{path}: malformed snapshot ({e})") from e
        return data

    def _primary_is_valid(self) -> bool:
        if not self.path.exists():
            return False
        try:
            self._read(self.path)
            return True
        except SnapshotCorruptError:
            return False

    def save(self, snapshot: Dict[str, Any]) -> None:
        """Atomically replace the primary snapshot, keeping the previous one as backup."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.tmp_path, "w", encoding="utf-8") as f:
            json.dump(snapshot, f, indent=2)
            f.flush()
            os.fsync(f.fileno())

        # A corrupt primary must not overwrite a good backup
        if self._primary_is_valid():
            shutil.copy2(self.path, self.backup_path)
        os.replace(self.tmp_path, self.path)

    def load(self) -> Optional[Dict[str, Any]]:
        """Primary, else backup, else None (caller starts fresh)."""
        if not self.path.exists() and not self.backup_path.exists():
            logger.info(f"No state at {self.path}, starting fresh")
            return None

        for candidate in (self.path, self.backup_path):
            if not candidate.exists():
                continue
            try:
                data = self._read(candidate)
            except SnapshotCorruptError as e:
                logger.error(f"Snapshot unreadable: {e}")
                continue
            if candidate == self.backup_path:
                logger.warning(f"Recovered state from backup {self.backup_path}")
            return data

        logger.critical(f"State at {self.path} and its backup are both unreadable, starting from a fresh snapshot")
        return None

    def archive(self, snapshot: Dict[str, Any], now_ms: int) -> Path:
        """Write a timestamped copy under the archive directory."""
        self.archive_dir.mkdir(parents=True, exist_ok=True)
        target = self.archive_dir / f"state_{format_ts(now_ms)}.json"
        with open(target, "w", encoding="utf-8") as f:
            json.dump(snapshot, f, indent=2)
        logger.info(f"State archived to {target}")
        return target
