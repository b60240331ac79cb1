"""Task runtime: the smallest trackable objective.

One TaskRuntime drives the shared state machine
(NotStarted -> InProgress -> Completed | Failed, reset from anywhere) and
dispatches on TaskDef.kind for the variant payload:

- counter: count bounded to [0, target], completes at target
- flag: completes when its completion conditions hold
- text_match: completes when a pushed string equals the target exactly
- location: completes when the target location is reached
- timed: countdown advanced by tick(); expiry fails the task
- discovery: set of allow-listed ids, completes at the required count
"""
from __future__ import annotations
import logging
from typing import Any, Dict, List, Optional

from config import DEFAULT_TIME_LIMIT
from ..core.events import Signal, Subscription
from .context import QuestContext
from .dsl import Condition, build_conditions, check_all, check_any, subscribe_all, unsubscribe_all
from .model import TaskDef, TaskKind, TaskState

logger = logging.getLogger(__name__)


class TaskRuntime:
    """Mutable runtime state of one TaskDef."""

    def __init__(self, definition: TaskDef, context: QuestContext):
        self.definition = definition
        self.context = context
        self.state = TaskState.NOT_STARTED
        self.abandoned = False
        self.expired = False

        self.completion_conditions: List[Condition] = build_conditions(
            definition.completion_conditions, context)
        self.failure_conditions: List[Condition] = build_conditions(
            definition.failure_conditions, context)
        self._signal_handle: Optional[Subscription] = None

        self.count = 0
        self.text = ""
        self.reached = False
        self.remaining = self.time_limit
        self.discovered: List[str] = []

        self.on_started = Signal("task_started")
        self.on_updated = Signal("task_updated")
        self.on_completed = Signal("task_completed")
        self.on_failed = Signal("task_failed")

    def __repr__(self) -> str:
        return f"TaskRuntime({self.id!r}, {self.kind.value}, {self.state.value})"

    @property
    def id(self) -> str:
        return self.definition.id

    @property
    def kind(self) -> TaskKind:
        return self.definition.kind

    @property
    def title(self) -> str:
        return self.definition.title or self.definition.id

    @property
    def target_count(self) -> int:
        return max(0, self.definition.target_count)

    @property
    def required_discoveries(self) -> int:
        return self.definition.required_count

    @property
    def time_limit(self) -> float:
        if self.definition.time_limit is None:
            return DEFAULT_TIME_LIMIT
        return float(self.definition.time_limit)

    @property
    def is_active(self) -> bool:
        return self.state is TaskState.IN_PROGRESS and not self.abandoned

    @property
    def is_terminal(self) -> bool:
        return self.state in (TaskState.COMPLETED, TaskState.FAILED)

    @property
    def progress(self) -> float:
        """Progress ratio in [0, 1]."""
        if self.state is TaskState.COMPLETED:
            return 1.0
        kind = self.kind
        if kind is TaskKind.COUNTER:
            if self.target_count == 0:
                return 1.0
            return self.count / self.target_count
        elif kind is TaskKind.DISCOVERY:
            required = self.required_discoveries
            if required <= 0:
                return 1.0
            return min(1.0, len(self.discovered) / required)
        return 0.0

    @property
    def time_progress(self) -> float:
        """Share of a timed task's limit still remaining, in [0, 1]."""
        if self.kind is not TaskKind.TIMED:
            return 0.0
        limit = self.time_limit
        if limit <= 0:
            return 0.0
        return max(0.0, min(1.0, self.remaining / limit))

    # Lifecycle

    def start(self) -> bool:
        """Start the task and subscribe its conditions.

        Returns:
            True if the task was started, False if it was not NotStarted
        """
        if self.state is not TaskState.NOT_STARTED:
            logger.warning("Task '%s' cannot start from state %s", self.id, self.state.value)
            return False

        self._clear_payload()
        self.abandoned = False
        self.state = TaskState.IN_PROGRESS
        self._subscribe()
        logger.debug("Task '%s' started", self.id)
        self.on_started.emit(self)

        if self.kind is TaskKind.COUNTER and self.target_count == 0:
            self.complete()
        elif self.kind is TaskKind.FLAG and self.completion_conditions and self._completion_met():
            self.complete()
        return True

    def complete(self) -> bool:
        if self.state is not TaskState.IN_PROGRESS:
            return False
        self._unsubscribe()
        if self.kind is TaskKind.COUNTER:
            self.count = self.target_count
        elif self.kind is TaskKind.LOCATION:
            self.reached = True
        self.state = TaskState.COMPLETED
        logger.debug("Task '%s' completed", self.id)
        self.on_completed.emit(self)
        return True

    def fail(self) -> bool:
        if self.state is not TaskState.IN_PROGRESS:
            return False
        self._unsubscribe()
        self.state = TaskState.FAILED
        logger.debug("Task '%s' failed", self.id)
        self.on_failed.emit(self)
        return True

    def reset(self) -> None:
        self._unsubscribe()
        self.state = TaskState.NOT_STARTED
        self.abandoned = False
        self._clear_payload()
        self.on_updated.emit(self)

    def abandon(self) -> None:
        """Stop listening without changing state or progress."""
        self._unsubscribe()
        self.abandoned = True

    def force_complete(self) -> bool:
        if self.state is TaskState.NOT_STARTED:
            self.state = TaskState.IN_PROGRESS
        return self.complete()

    def force_fail(self) -> bool:
        if self.state is TaskState.NOT_STARTED:
            self.state = TaskState.IN_PROGRESS
        return self.fail()

    # Variant input

    def increment(self, amount: int = 1) -> bool:
        """Advance a counter by amount, clamped to the target."""
        if self.kind is not TaskKind.COUNTER:
            logger.warning("Task '%s' is not a counter", self.id)
            return False
        if not self.is_active or amount <= 0:
            return False
        new_count = min(self.target_count, self.count + amount)
        if new_count == self.count:
            return False
        self.count = new_count
        self.on_updated.emit(self)
        if self.count >= self.target_count:
            self.complete()
        return True

    def decrement(self, amount: int = 1) -> bool:
        """Undo counter progress or the most recent discovery."""
        if not self.is_active or amount <= 0:
            return False
        if self.kind is TaskKind.COUNTER:
            if self.count <= 0:
                return False
            self.count = max(0, self.count - amount)
        elif self.kind is TaskKind.DISCOVERY:
            if not self.discovered:
                return False
            del self.discovered[-amount:]
        else:
            logger.warning("Task '%s' (%s) does not support decrement", self.id, self.kind.value)
            return False
        self.on_updated.emit(self)
        return True

    def submit_text(self, text: Any) -> bool:
        """Push a string; completes on an exact, case-sensitive match."""
        if self.kind is not TaskKind.TEXT_MATCH or not self.is_active:
            return False
        self.text = "" if text is None else str(text)
        self.on_updated.emit(self)
        if self.text == self.definition.target_text:
            return self.complete()
        return False

    def reach(self, location_id: Any) -> bool:
        if self.kind is not TaskKind.LOCATION or not self.is_active:
            return False
        if location_id != self.definition.target_location:
            return False
        self.reached = True
        return self.complete()

    def tick(self, dt: float) -> None:
        """Advance a timed task's countdown; expiry fails the task."""
        if self.kind is not TaskKind.TIMED or not self.is_active or dt <= 0:
            return
        self.remaining = max(0.0, self.remaining - dt)
        self.on_updated.emit(self)
        if self.remaining <= 0:
            logger.debug("Timed task '%s' expired", self.id)
            self.expired = True
            self.fail()

    def add_time(self, seconds: float) -> bool:
        if self.kind is not TaskKind.TIMED or not self.is_active:
            return False
        self.remaining += seconds
        self.on_updated.emit(self)
        return True

    def mark_objective_complete(self) -> bool:
        if self.kind is not TaskKind.TIMED or not self.is_active or self.remaining <= 0:
            return False
        return self.complete()

    def discover(self, discovery_id: Any) -> bool:
        """Record a discovery.

        Returns:
            True if the id is allow-listed and was not discovered before
        """
        if self.kind is not TaskKind.DISCOVERY or not self.is_active:
            return False
        if discovery_id not in self.definition.allow_list or discovery_id in self.discovered:
            return False
        self.discovered.append(discovery_id)
        self.on_updated.emit(self)
        if len(self.discovered) >= self.required_discoveries:
            self.complete()
        return True

    # Snapshot support

    def payload(self) -> Any:
        kind = self.kind
        if kind is TaskKind.COUNTER:
            return self.count
        elif kind is TaskKind.FLAG:
            return self.state is TaskState.COMPLETED
        elif kind is TaskKind.TEXT_MATCH:
            return self.text
        elif kind is TaskKind.LOCATION:
            return self.reached
        elif kind is TaskKind.TIMED:
            return self.remaining
        return list(self.discovered)

    def capture(self) -> Dict[str, Any]:
        return {"task_id": self.id, "state": self.state.value, "payload": self.payload()}

    def restore(self, state: TaskState, payload: Any = None) -> None:
        """Seed state and payload directly. Emits nothing and subscribes nothing."""
        self._unsubscribe()
        self.abandoned = False
        self.expired = False
        self._clear_payload()
        self.state = state
        kind = self.kind
        if payload is None:
            return
        if kind is TaskKind.COUNTER:
            self.count = max(0, min(self.target_count, int(payload)))
        elif kind is TaskKind.TEXT_MATCH:
            self.text = str(payload)
        elif kind is TaskKind.LOCATION:
            self.reached = bool(payload)
        elif kind is TaskKind.TIMED:
            self.remaining = max(0.0, float(payload))
        elif kind is TaskKind.DISCOVERY:
            allowed = self.definition.allow_list
            self.discovered = [d for d in dict.fromkeys(payload) if d in allowed]

    def resume(self) -> None:
        """Re-subscribe a restored in-progress task without emitting started."""
        if self.state is TaskState.IN_PROGRESS and not self.abandoned:
            self._subscribe()

    def revalidate(self) -> None:
        """Settle an in-progress task whose restored payload is already terminal."""
        if not self.is_active:
            return
        kind = self.kind
        if kind is TaskKind.COUNTER and self.count >= self.target_count:
            self.complete()
        elif kind is TaskKind.DISCOVERY and len(self.discovered) >= self.required_discoveries:
            self.complete()
        elif kind is TaskKind.TIMED and self.remaining <= 0:
            self.expired = True
            self.fail()
        elif kind is TaskKind.LOCATION and self.reached:
            self.complete()
        elif kind is TaskKind.TEXT_MATCH and self.text and self.text == self.definition.target_text:
            self.complete()

    # Internals

    def _clear_payload(self) -> None:
        self.count = 0
        self.text = ""
        self.reached = False
        self.remaining = self.time_limit
        self.discovered = []
        self.expired = False

    def _completion_met(self) -> bool:
        if self.definition.require_all:
            return check_all(self.completion_conditions)
        return check_any(self.completion_conditions)

    def _subscribe(self) -> None:
        subscribe_all(self.completion_conditions, self._on_completion_fulfilled)
        subscribe_all(self.failure_conditions, self._on_failure_fulfilled)
        key = self.definition.signal_event
        if key and self._signal_handle is None:
            self._signal_handle = self.context.bus.subscribe(key, self._on_signal)

    def _unsubscribe(self) -> None:
        unsubscribe_all(self.completion_conditions)
        unsubscribe_all(self.failure_conditions)
        handle, self._signal_handle = self._signal_handle, None
        if handle is not None:
            handle.dispose()

    def _on_completion_fulfilled(self) -> None:
        if not self.is_active:
            return
        kind = self.kind
        if kind is TaskKind.COUNTER:
            self.increment()
        elif kind is TaskKind.FLAG:
            if not self.definition.require_all or check_all(self.completion_conditions):
                self.complete()
        else:
            self.complete()

    def _on_failure_fulfilled(self) -> None:
        if self.is_active:
            self.fail()

    def _on_signal(self, payload: Any) -> None:
        if not self.is_active:
            return
        kind = self.kind
        if kind is TaskKind.COUNTER:
            self.increment()
        elif kind is TaskKind.FLAG:
            self._on_completion_fulfilled()
        elif kind is TaskKind.TEXT_MATCH:
            self.submit_text(payload)
        elif kind is TaskKind.LOCATION:
            self.reach(payload)
        elif kind is TaskKind.TIMED:
            self.mark_objective_complete()
        elif kind is TaskKind.DISCOVERY:
            self.discover(payload)
