"""Task state machine — enforces the one-way completion transition.

Task lifecycle:
    ACTIVE → COMPLETED

State semantics:
- ACTIVE: open for assignment; the assignee may submit a verified
  opening until the deadline.
- COMPLETED: terminal — the opening was verified and the cleartext
  disclosed.

There is no cancelled or expired state. Fail-closed: invalid
transitions return errors and leave the task untouched.
"""

from __future__ import annotations

from sealedtask.models.task import EncryptedTask, TaskPhase


# Valid transitions: {from_phase: {allowed_to_phases}}
_TRANSITIONS: dict[TaskPhase, set[TaskPhase]] = {
    TaskPhase.ACTIVE: {TaskPhase.COMPLETED},
    TaskPhase.COMPLETED: set(),
}


class TaskStateMachine:
    """Validates and applies task phase transitions.

    Pure computation: validates transitions only. Side effects (event
    logging, persistence, worker credit) are handled by the service layer.
    """

    @staticmethod
    def validate_transition(
        task: EncryptedTask,
        target: TaskPhase,
    ) -> list[str]:
        """Check if a transition is valid. Returns errors (empty = OK)."""
        current = task.phase
        allowed = _TRANSITIONS.get(current, set())

        if target not in allowed:
            allowed_str = ", ".join(s.value for s in sorted(allowed, key=lambda x: x.value))
            return [
                f"Invalid task transition: {current.value} → {target.value}. "
                f"Allowed from {current.value}: [{allowed_str}]"
            ]
        return []

    @staticmethod
    def apply_transition(
        task: EncryptedTask,
        target: TaskPhase,
    ) -> list[str]:
        """Validate and apply a phase transition.

        Returns errors if the transition is invalid. On success,
        mutates task.phase and returns an empty list.
        """
        errors = TaskStateMachine.validate_transition(task, target)
        if errors:
            return errors
        task.phase = target
        return []
