"""Stage runtime: task groups plus outgoing transitions.

Stage state machine:
    NotReached -[enter]-> InProgress -[complete]-> Completed
    InProgress -[fail]-> Failed
    InProgress -[skip]-> Skipped
    * -[reset]-> NotReached

A stage never enters its target itself. complete() emits on_completed with
the chosen target index (None when the quest should end) and the owning
QuestRuntime moves the quest's single stage pointer.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

from ..core.events import Signal, SubscriptionScope
from .context import QuestContext
from .dsl import Condition, build_conditions, check_all, subscribe_all, unsubscribe_all
from .groups import TaskGroupRuntime
from .model import StageDef, StageState, TaskGroupState, TransitionDef, TransitionTrigger
from .tasks import TaskRuntime

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChoiceView:
    """A player choice as surfaced to UI/game code."""
    choice_id: str
    label: str
    target_stage: int
    priority: int
    available: bool


def _by_priority(entries: List[Tuple[TransitionDef, List[Condition]]]):
    # sorted() is stable: equal priorities keep authoring order
    return sorted(entries, key=lambda entry: -entry[0].priority)


class StageRuntime:
    """Mutable runtime state of one StageDef."""

    def __init__(self, definition: StageDef, context: QuestContext):
        self.definition = definition
        self.context = context
        self.state = StageState.NOT_REACHED
        self.group_cursor = -1
        self.awaiting_choice = False
        self.groups: List[TaskGroupRuntime] = [TaskGroupRuntime(g, context) for g in definition.groups]
        self.transitions: List[Tuple[TransitionDef, List[Condition]]] = [
            (t, build_conditions(t.conditions, context)) for t in definition.transitions
        ]

        self.on_entered = Signal("stage_entered")
        self.on_completed = Signal("stage_completed")  # (stage, target index or None)
        self.on_failed = Signal("stage_failed")
        self.on_choices_available = Signal("choices_available")

        self._links = SubscriptionScope()
        for group in self.groups:
            self._links.add(group.on_completed.connect(self._on_group_completed))
            self._links.add(group.on_failed.connect(self._on_group_failed))

    def __repr__(self) -> str:
        return f"StageRuntime({self.index}, {self.name!r}, {self.state.value})"

    @property
    def index(self) -> int:
        return self.definition.index

    @property
    def name(self) -> str:
        return self.definition.name

    @property
    def current_group(self) -> Optional[TaskGroupRuntime]:
        if 0 <= self.group_cursor < len(self.groups):
            return self.groups[self.group_cursor]
        return None

    @property
    def reached_groups(self) -> List[TaskGroupRuntime]:
        return self.groups[:self.group_cursor + 1]

    @property
    def current_tasks(self) -> List[TaskRuntime]:
        group = self.current_group
        if self.state is not StageState.IN_PROGRESS or group is None:
            return []
        return group.current_tasks

    @property
    def all_tasks(self) -> List[TaskRuntime]:
        return [task for group in self.groups for task in group.tasks]

    @property
    def groups_complete(self) -> bool:
        return all(g.state is TaskGroupState.COMPLETED for g in self.groups)

    @property
    def progress(self) -> float:
        tasks = [task for group in self.reached_groups for task in group.tasks]
        if not tasks:
            return 1.0 if self.state is StageState.COMPLETED else 0.0
        return sum(t.progress for t in tasks) / len(tasks)

    # Lifecycle

    def enter(self) -> bool:
        """Enter the stage: subscribe transition conditions, then start the first group."""
        if self.state is StageState.IN_PROGRESS:
            logger.warning("Stage %d ('%s') is already in progress", self.index, self.name)
            return False
        if self.state is not StageState.NOT_REACHED:
            self.reset()

        self.state = StageState.IN_PROGRESS
        self.group_cursor = -1
        self.awaiting_choice = False
        self._subscribe_transitions()
        logger.debug("Stage %d ('%s') entered", self.index, self.name)
        self.on_entered.emit(self)

        if not self.groups:
            self._on_groups_complete()
        else:
            self._start_group(0)
        return True

    def complete(self, target: Optional[int] = None) -> bool:
        """Complete the stage, handing the target stage index to the owner."""
        if self.state is not StageState.IN_PROGRESS:
            return False
        self._halt()
        self.state = StageState.COMPLETED
        self.awaiting_choice = False
        logger.debug("Stage %d ('%s') completed (next: %s)", self.index, self.name, target)
        self.on_completed.emit(self, target)
        return True

    def fail(self) -> bool:
        if self.state is not StageState.IN_PROGRESS:
            return False
        self._halt()
        self.state = StageState.FAILED
        self.awaiting_choice = False
        logger.debug("Stage %d ('%s') failed", self.index, self.name)
        self.on_failed.emit(self)
        return True

    def skip(self) -> bool:
        if self.state is not StageState.IN_PROGRESS:
            return False
        self._halt()
        self.state = StageState.SKIPPED
        self.awaiting_choice = False
        logger.debug("Stage %d ('%s') skipped", self.index, self.name)
        return True

    def reset(self) -> None:
        unsubscribe_all(c for _, conditions in self.transitions for c in conditions)
        for group in self.groups:
            group.reset()
        self.group_cursor = -1
        self.awaiting_choice = False
        self.state = StageState.NOT_REACHED

    def abandon(self) -> None:
        """Stop every subscription of the stage without changing its state."""
        self._halt()
        self.awaiting_choice = False

    def dispose(self) -> None:
        self.reset()
        for group in self.groups:
            group.dispose()
        self._links.close()

    # Transitions

    def trigger_manual(self) -> bool:
        """Fire the highest-priority valid Manual transition."""
        if self.state is not StageState.IN_PROGRESS:
            logger.warning("Stage %d is not in progress; manual transition ignored", self.index)
            return False
        for transition, conditions in _by_priority(self._entries(TransitionTrigger.MANUAL)):
            if check_all(conditions):
                return self.complete(transition.target)
        logger.warning("Stage %d has no valid manual transition", self.index)
        return False

    def get_choices(self, include_unavailable: bool = False) -> List[ChoiceView]:
        """List the stage's player choices, highest priority first."""
        if self.state is not StageState.IN_PROGRESS:
            return []
        views = []
        for transition, conditions in _by_priority(self._entries(TransitionTrigger.PLAYER_CHOICE)):
            available = check_all(conditions)
            if available or include_unavailable:
                views.append(ChoiceView(
                    choice_id=transition.effective_choice_id,
                    label=transition.label or f"Go to stage {transition.target}",
                    target_stage=transition.target,
                    priority=transition.priority,
                    available=available,
                ))
        return views

    def get_implicit_choice(self) -> Optional[ChoiceView]:
        """Highest-priority gated choice whose conditions are currently met."""
        if self.state is not StageState.IN_PROGRESS:
            return None
        for transition, conditions in _by_priority(self._entries(TransitionTrigger.PLAYER_CHOICE)):
            if conditions and check_all(conditions):
                return ChoiceView(transition.effective_choice_id,
                                  transition.label or f"Go to stage {transition.target}",
                                  transition.target, transition.priority, True)
        return None

    def select_choice(self, choice_id: str) -> Optional[TransitionDef]:
        """Apply a player choice and complete the stage toward its target.

        Returns:
            The selected transition, or None if the choice was rejected
        """
        if self.state is not StageState.IN_PROGRESS:
            logger.warning("Stage %d is not in progress; choice '%s' ignored", self.index, choice_id)
            return None
        for transition, conditions in self._entries(TransitionTrigger.PLAYER_CHOICE):
            if transition.effective_choice_id != choice_id:
                continue
            if not check_all(conditions):
                logger.warning("Choice '%s' on stage %d is not available", choice_id, self.index)
                return None
            for modification in transition.flag_modifications:
                self.context.flags.apply_modification(modification)
            self.complete(transition.target)
            return transition
        logger.warning("Unknown choice id '%s' on stage %d", choice_id, self.index)
        return None

    # Restore support

    def restore(self, state: StageState, group_cursor: int) -> None:
        """Seed state and cursor; groups before the cursor count as completed."""
        self.reset()
        self.state = state
        if state is StageState.NOT_REACHED or not self.groups:
            return
        self.group_cursor = max(0, min(group_cursor, len(self.groups) - 1))
        cursor_state = {
            StageState.IN_PROGRESS: TaskGroupState.IN_PROGRESS,
            StageState.FAILED: TaskGroupState.FAILED,
        }.get(state, TaskGroupState.COMPLETED)
        for i, group in enumerate(self.groups):
            if i < self.group_cursor:
                group.restore(TaskGroupState.COMPLETED)
            elif i == self.group_cursor:
                group.restore(cursor_state)

    def resume(self) -> None:
        """Re-subscribe a restored in-progress stage without emitting entered."""
        if self.state is not StageState.IN_PROGRESS:
            return
        self._subscribe_transitions()
        group = self.current_group
        if group is not None:
            group.resume()

    def revalidate(self) -> None:
        if self.state is not StageState.IN_PROGRESS:
            return
        group = self.current_group
        if group is None:
            self._on_groups_complete()
        elif group.state is TaskGroupState.IN_PROGRESS:
            group.revalidate()

    # Internals

    def _entries(self, trigger: TransitionTrigger) -> List[Tuple[TransitionDef, List[Condition]]]:
        return [(t, c) for t, c in self.transitions if t.trigger is trigger]

    def _subscribe_transitions(self) -> None:
        for transition, conditions in self.transitions:
            if transition.trigger is TransitionTrigger.ON_CONDITIONS_MET:
                hook = self._make_conditions_hook(transition, conditions)
            elif transition.trigger is TransitionTrigger.PLAYER_CHOICE:
                hook = self._on_choice_condition
            else:
                hook = _noop
            subscribe_all(conditions, hook)

    def _make_conditions_hook(self, transition: TransitionDef, conditions: List[Condition]):
        def hook() -> None:
            if self.state is StageState.IN_PROGRESS and conditions and check_all(conditions):
                logger.debug("Stage %d: conditions met for transition to %d",
                             self.index, transition.target)
                self.complete(transition.target)
        return hook

    def _on_choice_condition(self) -> None:
        if self.state is StageState.IN_PROGRESS and self.awaiting_choice:
            self.on_choices_available.emit(self)

    def _halt(self) -> None:
        unsubscribe_all(c for _, conditions in self.transitions for c in conditions)
        for group in self.groups:
            if group.state is TaskGroupState.IN_PROGRESS:
                group.abandon()

    def _start_group(self, index: int) -> None:
        self.group_cursor = index
        self.groups[index].start()

    def _on_group_completed(self, group: TaskGroupRuntime) -> None:
        if self.state is not StageState.IN_PROGRESS or group is not self.current_group:
            return
        if self.group_cursor < len(self.groups) - 1:
            logger.debug("Stage %d: advancing to group %d", self.index, self.group_cursor + 1)
            self._start_group(self.group_cursor + 1)
        else:
            self._on_groups_complete()

    def _on_group_failed(self, group: TaskGroupRuntime) -> None:
        if self.state is StageState.IN_PROGRESS and group is self.current_group:
            self.fail()

    def _on_groups_complete(self) -> None:
        if self.definition.terminal:
            self.complete(None)
            return

        for transition, conditions in _by_priority(self._entries(TransitionTrigger.ON_GROUPS_COMPLETE)):
            if check_all(conditions):
                self.complete(transition.target)
                return

        pending = self._entries(TransitionTrigger.ON_CONDITIONS_MET)
        for transition, conditions in _by_priority(pending):
            if conditions and check_all(conditions):
                self.complete(transition.target)
                return

        if self.definition.choice_transitions:
            self.awaiting_choice = True
            logger.debug("Stage %d awaiting player choice", self.index)
            self.on_choices_available.emit(self)
            return

        logger.warning("Stage %d ('%s') has no valid transition. Treating as terminal.",
                       self.index, self.name)
        self.complete(None)


def _noop() -> None:
    pass
