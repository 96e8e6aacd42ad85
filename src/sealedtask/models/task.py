"""Encrypted task models.

Task lifecycle: ACTIVE → COMPLETED

A task is created ACTIVE with its payload sealed behind a ciphertext
handle. It becomes COMPLETED only when the assigned worker presents a
verified opening of that handle; the disclosed cleartext is stored on
the task at the same moment. COMPLETED is terminal.

A task whose deadline passes while ACTIVE stays ACTIVE. Submissions
are refused past the deadline, but there is no expiry transition.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional


class TaskPhase(str, enum.Enum):
    """Lifecycle phase of an encrypted task."""
    ACTIVE = "active"
    COMPLETED = "completed"


@dataclass
class EncryptedTask:
    """A task whose payload is an encrypted 32-bit unsigned value.

    The key is chosen by the requester and never changes. The
    ciphertext handle is owned by this task alone. is_active and
    is_completed are derived from the single phase field, so they can
    never both be true.
    """
    key: str
    title: str
    ciphertext_handle: str
    reward_amount: int
    deadline: datetime
    requester: str
    description: str = ""
    phase: TaskPhase = TaskPhase.ACTIVE
    disclosed_value: Optional[int] = None
    created_utc: Optional[datetime] = None
    completed_utc: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.phase == TaskPhase.ACTIVE

    @property
    def is_completed(self) -> bool:
        return self.phase == TaskPhase.COMPLETED

    def to_dict(self, assignee: Optional[str] = None) -> dict[str, Any]:
        """Read projection used by the query façade and the state store."""
        return {
            "key": self.key,
            "title": self.title,
            "description": self.description,
            "ciphertext_handle": self.ciphertext_handle,
            "reward_amount": self.reward_amount,
            "deadline": self.deadline.isoformat(),
            "requester": self.requester,
            "phase": self.phase.value,
            "is_active": self.is_active,
            "is_completed": self.is_completed,
            "disclosed_value": self.disclosed_value,
            "assignee": assignee,
            "created_utc": self.created_utc.isoformat() if self.created_utc else None,
            "completed_utc": self.completed_utc.isoformat() if self.completed_utc else None,
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> EncryptedTask:
        created = data.get("created_utc")
        completed = data.get("completed_utc")
        return EncryptedTask(
            key=data["key"],
            title=data["title"],
            description=data.get("description", ""),
            ciphertext_handle=data["ciphertext_handle"],
            reward_amount=int(data["reward_amount"]),
            deadline=datetime.fromisoformat(data["deadline"]),
            requester=data["requester"],
            phase=TaskPhase(data["phase"]),
            disclosed_value=data.get("disclosed_value"),
            created_utc=datetime.fromisoformat(created) if created else None,
            completed_utc=datetime.fromisoformat(completed) if completed else None,
        )
