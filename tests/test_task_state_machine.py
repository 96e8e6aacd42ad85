"""Tests for task state machine — one-way completion transition."""

from datetime import datetime, timezone

from sealedtask.ledger.state_machine import TaskStateMachine
from sealedtask.models.task import EncryptedTask, TaskPhase


def _make_task(phase: TaskPhase = TaskPhase.ACTIVE) -> EncryptedTask:
    return EncryptedTask(
        key="T-001",
        title="Test Task",
        ciphertext_handle="0x" + "ab" * 32,
        reward_amount=10,
        deadline=datetime(2026, 6, 1, tzinfo=timezone.utc),
        requester="client-1",
        phase=phase,
    )


class TestValidTransitions:
    def test_active_to_completed(self) -> None:
        task = _make_task(TaskPhase.ACTIVE)
        errors = TaskStateMachine.validate_transition(task, TaskPhase.COMPLETED)
        assert errors == []


class TestInvalidTransitions:
    def test_completed_to_anything(self) -> None:
        """Terminal phase COMPLETED has no outgoing transitions."""
        task = _make_task(TaskPhase.COMPLETED)
        for target in TaskPhase:
            errors = TaskStateMachine.validate_transition(task, target)
            assert len(errors) == 1
            assert "Invalid task transition" in errors[0]

    def test_active_to_active(self) -> None:
        task = _make_task(TaskPhase.ACTIVE)
        errors = TaskStateMachine.validate_transition(task, TaskPhase.ACTIVE)
        assert len(errors) == 1


class TestApplyTransition:
    def test_apply_mutates_phase(self) -> None:
        task = _make_task()
        errors = TaskStateMachine.apply_transition(task, TaskPhase.COMPLETED)
        assert errors == []
        assert task.is_completed
        assert not task.is_active

    def test_apply_invalid_leaves_task(self) -> None:
        task = _make_task(TaskPhase.COMPLETED)
        errors = TaskStateMachine.apply_transition(task, TaskPhase.ACTIVE)
        assert errors
        assert task.phase == TaskPhase.COMPLETED


class TestQueries:
    def test_flags_mutually_exclusive(self) -> None:
        for phase in TaskPhase:
            task = _make_task(phase)
            assert task.is_active != task.is_completed
