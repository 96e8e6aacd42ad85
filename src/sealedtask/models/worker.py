"""Worker records — identity, reputation, and completion counters."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional


@dataclass
class WorkerRecord:
    """A registered worker.

    reputation and completed_tasks only ever increase. Records are
    never deleted.
    """
    identity: str
    reputation: int = 0
    completed_tasks: int = 0
    registered_utc: Optional[datetime] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "identity": self.identity,
            "reputation": self.reputation,
            "completed_tasks": self.completed_tasks,
            "registered_utc": (
                self.registered_utc.isoformat() if self.registered_utc else None
            ),
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> WorkerRecord:
        registered = data.get("registered_utc")
        return WorkerRecord(
            identity=data["identity"],
            reputation=int(data["reputation"]),
            completed_tasks=int(data["completed_tasks"]),
            registered_utc=datetime.fromisoformat(registered) if registered else None,
        )
