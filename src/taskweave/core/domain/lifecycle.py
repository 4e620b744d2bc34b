"""
Task Lifecycle State Machine and Thread Locks

Transitions are one-directional. The only loop is ``working -> working``,
taken once per task when reflection asks for a retry.
"""

import structlog

from taskweave.core.domain.errors import InvalidTransitionError, ThreadBusyError
from taskweave.core.domain.models import Task, TaskState, utc_now

_ALLOWED: dict[TaskState, frozenset[TaskState]] = {
    TaskState.SUBMITTED: frozenset(
        {TaskState.WORKING, TaskState.FAILED, TaskState.CANCELED}
    ),
    TaskState.WORKING: frozenset(
        {
            TaskState.WORKING,
            TaskState.COMPLETED,
            TaskState.FAILED,
            TaskState.CANCELED,
            TaskState.INPUT_REQUIRED,
        }
    ),
    TaskState.INPUT_REQUIRED: frozenset(
        {TaskState.WORKING, TaskState.FAILED, TaskState.CANCELED}
    ),
    TaskState.COMPLETED: frozenset(),
    TaskState.FAILED: frozenset(),
    TaskState.CANCELED: frozenset(),
}


def can_transition(task: Task, target: TaskState) -> bool:
    if target not in _ALLOWED[task.state]:
        return False
    if task.state == TaskState.WORKING and target == TaskState.WORKING:
        return not task.retry_performed
    return True


def transition(task: Task, target: TaskState) -> Task:
    """
    Move a task to ``target``.

    ``working -> working`` marks the reflection retry as performed.

    Raises:
        InvalidTransitionError: If the transition is not allowed
    """
    if not can_transition(task, target):
        raise InvalidTransitionError(
            f"Task '{task.id}' cannot move from {task.state.value} to {target.value}",
            task_id=task.id,
        )
    if task.state == TaskState.WORKING and target == TaskState.WORKING:
        task.retry_performed = True
    task.state = target
    task.updated_at = utc_now()
    return task


class ThreadLockManager:
    """
    Tracks which thread has a working task.

    A second execution for a busy thread is rejected rather than queued.
    Acquire and release never await, so they are atomic on the event loop.
    """

    def __init__(self) -> None:
        self._active: dict[str, str] = {}
        self.logger = structlog.get_logger().bind(component="thread_locks")

    def acquire(self, thread_id: str, task_id: str) -> None:
        holder = self._active.get(thread_id)
        if holder is not None and holder != task_id:
            self.logger.info("thread_busy", thread_id=thread_id, active_task_id=holder)
            raise ThreadBusyError(thread_id, holder)
        self._active[thread_id] = task_id

    def release(self, thread_id: str, task_id: str) -> None:
        if self._active.get(thread_id) == task_id:
            del self._active[thread_id]

    def holder(self, thread_id: str) -> str | None:
        return self._active.get(thread_id)

    def is_busy(self, thread_id: str) -> bool:
        return thread_id in self._active
