"""Pure state transition functions for the task lifecycle."""

import logging
from typing import Any

from src.core.errors import InvalidTransitionError
from src.domain.task import Task, TaskStatus


logger = logging.getLogger(__name__)


# Allowed transitions. Completed and rejected are terminal.
TRANSITIONS: dict[TaskStatus, set[TaskStatus]] = {
    TaskStatus.PENDING: {TaskStatus.OPEN, TaskStatus.REJECTED},
    TaskStatus.OPEN: {TaskStatus.AWARDED},
    TaskStatus.AWARDED: {TaskStatus.VERIFICATION},
    TaskStatus.VERIFICATION: {TaskStatus.AWARDED, TaskStatus.COMPLETED},
    TaskStatus.COMPLETED: set(),
    TaskStatus.REJECTED: set(),
}

TERMINAL_STATES = frozenset(status for status, targets in TRANSITIONS.items() if not targets)


def can_transition(source: TaskStatus, target: TaskStatus) -> bool:
    """Return True if ``source -> target`` is an edge of the lifecycle graph."""
    return target in TRANSITIONS[source]


def ensure_transition(task: Task, target: TaskStatus) -> None:
    """Raise InvalidTransitionError unless the task may move to ``target``."""
    if not can_transition(task.status, target):
        msg = f"Cannot move task {task.id} from {task.status} to {target}"
        raise InvalidTransitionError(msg)


def transition(task: Task, target: TaskStatus, **updates: Any) -> Task:
    """Return a copy of the task moved to ``target`` with the given field updates applied."""
    ensure_transition(task, target)
    logger.debug("Transitioning task %s from %s to %s", task.id, task.status, target)
    return task.model_copy(update={**updates, "status": target})
