"""State store — JSON snapshot of the ledger for restart recovery.

The snapshot preserves everything needed to rebuild the state machine:
task records in creation order, worker records in registration order,
the assignment relation, and handle authorization flags. Writes go to
a temporary file that replaces the snapshot atomically, so a crash
mid-write never leaves a half-written state file.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from sealedtask.errors import StateCorruptionError
from sealedtask.models.ciphertext import HandleRecord
from sealedtask.models.task import EncryptedTask
from sealedtask.models.worker import WorkerRecord

SNAPSHOT_VERSION = 1


@dataclass
class LedgerSnapshot:
    """Everything the ledger owns, in iteration order."""
    tasks: list[EncryptedTask] = field(default_factory=list)
    assignments: dict[str, str] = field(default_factory=dict)
    workers: list[WorkerRecord] = field(default_factory=list)
    handles: list[HandleRecord] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": SNAPSHOT_VERSION,
            "tasks": [t.to_dict() for t in self.tasks],
            "assignments": dict(self.assignments),
            "workers": [w.to_dict() for w in self.workers],
            "handles": [h.to_dict() for h in self.handles],
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> LedgerSnapshot:
        version = data.get("version")
        if version != SNAPSHOT_VERSION:
            raise ValueError(f"Unsupported snapshot version: {version!r}")
        return LedgerSnapshot(
            tasks=[EncryptedTask.from_dict(t) for t in data["tasks"]],
            assignments={str(k): str(v) for k, v in data["assignments"].items()},
            workers=[WorkerRecord.from_dict(w) for w in data["workers"]],
            handles=[HandleRecord.from_dict(h) for h in data["handles"]],
        )


class StateStore:
    """File-backed snapshot store.

    Usage:
        store = StateStore(data_dir / "state.json")
        snapshot = store.load()   # None on first start
        store.save(snapshot)
    """

    def __init__(self, storage_path: Path) -> None:
        self._storage_path = storage_path

    @property
    def storage_path(self) -> Path:
        return self._storage_path

    def load(self) -> Optional[LedgerSnapshot]:
        """Load the last snapshot, or None if none was ever written.

        Raises StateCorruptionError if the file exists but cannot be
        parsed into a snapshot.
        """
        if not self._storage_path.exists():
            return None
        try:
            data = json.loads(self._storage_path.read_text(encoding="utf-8"))
            return LedgerSnapshot.from_dict(data)
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise StateCorruptionError(
                f"Corrupt state snapshot {self._storage_path}: {e}"
            ) from e

    def save(self, snapshot: LedgerSnapshot) -> None:
        """Atomically replace the snapshot. Raises OSError on write failure."""
        self._storage_path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._storage_path.with_suffix(self._storage_path.suffix + ".tmp")
        with tmp_path.open("w", encoding="utf-8") as f:
            json.dump(snapshot.to_dict(), f, indent=2, sort_keys=True, ensure_ascii=False)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, self._storage_path)
