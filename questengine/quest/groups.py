"""Task group runtime: sequential or parallel tasks under a membership rule."""
from __future__ import annotations
import logging
from typing import List

from ..core.events import Signal, SubscriptionScope
from .context import QuestContext
from .model import CompletionRule, ExecutionMode, TaskGroupDef, TaskGroupState, TaskState
from .tasks import TaskRuntime

logger = logging.getLogger(__name__)


class TaskGroupRuntime:
    """Runs the tasks of one TaskGroupDef and derives the group state from them.

    Rules:
        all: every task completed
        any: the first completed task suffices; the rest are abandoned
        at_least: required_count tasks completed; the rest are abandoned

    A failed task fails the group unless the group is failure tolerant, in
    which case the group only fails once completion is impossible.
    """

    def __init__(self, definition: TaskGroupDef, context: QuestContext):
        self.definition = definition
        self.context = context
        self.state = TaskGroupState.NOT_STARTED
        self.abandoned = False
        self.tasks: List[TaskRuntime] = [TaskRuntime(t, context) for t in definition.tasks]

        self.on_completed = Signal("group_completed")
        self.on_failed = Signal("group_failed")

        self._links = SubscriptionScope()
        for task in self.tasks:
            self._links.add(task.on_completed.connect(self._on_task_completed))
            self._links.add(task.on_failed.connect(self._on_task_failed))

    def __repr__(self) -> str:
        return f"TaskGroupRuntime({self.name!r}, {self.state.value})"

    @property
    def name(self) -> str:
        return self.definition.name

    @property
    def sequential(self) -> bool:
        return self.definition.execution is ExecutionMode.SEQUENTIAL

    @property
    def required(self) -> int:
        return self.definition.required

    @property
    def completed_count(self) -> int:
        return sum(1 for t in self.tasks if t.state is TaskState.COMPLETED)

    @property
    def current_tasks(self) -> List[TaskRuntime]:
        if self.state is not TaskGroupState.IN_PROGRESS or self.abandoned:
            return []
        return [t for t in self.tasks if t.is_active]

    @property
    def progress(self) -> float:
        if not self.tasks:
            return 1.0 if self.state is TaskGroupState.COMPLETED else 0.0
        if self.definition.rule is CompletionRule.ALL:
            return sum(t.progress for t in self.tasks) / len(self.tasks)
        if self.required <= 0:
            return 1.0
        return min(1.0, self.completed_count / self.required)

    def start(self) -> bool:
        """Start the group: the first task if sequential, every task if parallel."""
        if self.state is not TaskGroupState.NOT_STARTED:
            logger.warning("Task group '%s' cannot start from state %s", self.name, self.state.value)
            return False
        self.state = TaskGroupState.IN_PROGRESS
        self.abandoned = False
        logger.debug("Task group '%s' started (%s, %s)", self.name,
                     self.definition.execution.value, self.definition.rule.value)

        if not self.tasks or self.required <= 0:
            self.complete()
            return True

        if self.sequential:
            self._start_next()
        else:
            for task in self.tasks:
                # a task completing on start may already have settled the group
                if self.state is not TaskGroupState.IN_PROGRESS:
                    break
                if task.state is TaskState.NOT_STARTED:
                    task.start()
        return True

    def complete(self) -> bool:
        if self.state is not TaskGroupState.IN_PROGRESS:
            return False
        self._abandon_tasks()
        self.state = TaskGroupState.COMPLETED
        logger.debug("Task group '%s' completed", self.name)
        self.on_completed.emit(self)
        return True

    def fail(self) -> bool:
        if self.state is not TaskGroupState.IN_PROGRESS:
            return False
        self._abandon_tasks()
        self.state = TaskGroupState.FAILED
        logger.debug("Task group '%s' failed", self.name)
        self.on_failed.emit(self)
        return True

    def reset(self) -> None:
        for task in self.tasks:
            task.reset()
        self.state = TaskGroupState.NOT_STARTED
        self.abandoned = False

    def abandon(self) -> None:
        self._abandon_tasks()
        self.abandoned = True

    def dispose(self) -> None:
        """Unsubscribe everything and detach from the tasks."""
        for task in self.tasks:
            task.reset()
        self._links.close()

    def restore(self, state: TaskGroupState) -> None:
        """Seed the group state. Task states are restored separately."""
        self.state = state
        self.abandoned = False

    def resume(self) -> None:
        """Re-subscribe restored in-progress tasks, starting the next one if none runs."""
        if self.state is not TaskGroupState.IN_PROGRESS:
            return
        for task in self.tasks:
            task.resume()
        if self.sequential and not any(t.is_active for t in self.tasks):
            self._start_next()

    def revalidate(self) -> None:
        if self.state is not TaskGroupState.IN_PROGRESS:
            return
        for task in list(self.tasks):
            if self.state is not TaskGroupState.IN_PROGRESS:
                break
            task.revalidate()
        if self.state is TaskGroupState.IN_PROGRESS:
            self._check_rule()

    def _start_next(self) -> None:
        for task in self.tasks:
            if task.state is TaskState.NOT_STARTED:
                task.start()
                return

    def _abandon_tasks(self) -> None:
        for task in self.tasks:
            if task.state is TaskState.IN_PROGRESS:
                task.abandon()

    def _on_task_completed(self, task: TaskRuntime) -> None:
        if self.state is not TaskGroupState.IN_PROGRESS or self.abandoned:
            return
        self._check_rule()

    def _on_task_failed(self, task: TaskRuntime) -> None:
        if self.state is not TaskGroupState.IN_PROGRESS or self.abandoned:
            return
        if not self.definition.failure_tolerant:
            logger.debug("Task '%s' failed group '%s'", task.id, self.name)
            self.fail()
            return
        self._check_rule()

    def _check_rule(self) -> None:
        completed = self.completed_count
        failed = sum(1 for t in self.tasks if t.state is TaskState.FAILED)
        pending = len(self.tasks) - completed - failed

        if self.definition.failure_tolerant and self.definition.rule is CompletionRule.ALL:
            # tolerant "all": settle once every task is terminal
            if pending == 0:
                if completed > 0:
                    self.complete()
                else:
                    self.fail()
            elif self.sequential and not any(t.is_active for t in self.tasks):
                self._start_next()
            return

        if completed >= self.required:
            self.complete()
        elif completed + pending < self.required:
            self.fail()
        elif self.sequential and not any(t.is_active for t in self.tasks):
            self._start_next()
