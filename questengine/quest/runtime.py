"""Quest runtime: owns the stage pointer of one quest instance.

The runtime builds fresh stage, group and task runtimes from its QuestDef
(again on every restart), forwards their lifecycle through its own signals,
and moves the single current stage index when a stage completes toward a
target. Entering a target stage is queued on the cascade queue so long
stage chains do not nest calls.
"""

import logging
from typing import Any, Dict, List, Optional

from ..core.events import Signal, SubscriptionScope
from .context import QuestContext
from .dsl import Condition, build_conditions, check_all, subscribe_all, unsubscribe_all
from .model import QuestDef, QuestState, StageState, TaskGroupState, TaskState
from .stages import ChoiceView, StageRuntime
from .tasks import TaskRuntime

logger = logging.getLogger(__name__)


class QuestRuntime:
    """Runtime state machine of one quest instance.

    Lifecycle: NotStarted -[start]-> InProgress -[complete|fail]-> terminal.
    restart() rebuilds every runtime entity from the definition and starts again.
    """

    def __init__(self, definition: QuestDef, context: Optional[QuestContext] = None):
        self.definition = definition
        self.context = context or QuestContext()
        self.state = QuestState.NOT_STARTED
        self.current_stage_index = -1
        self.choice_decisions: Dict[int, str] = {}
        self.stages: Dict[int, StageRuntime] = {}
        self._generation = 0
        self._links = SubscriptionScope()

        self.quest_started = Signal("quest_started")
        self.quest_completed = Signal("quest_completed")
        self.quest_failed = Signal("quest_failed")
        self.quest_restarted = Signal("quest_restarted")
        self.quest_updated = Signal("quest_updated")
        self.stage_entered = Signal("stage_entered")
        self.stage_completed = Signal("stage_completed")
        self.stage_failed = Signal("stage_failed")
        self.stage_transition = Signal("stage_transition")
        self.choices_available = Signal("choices_available")
        self.task_started = Signal("task_started")
        self.task_updated = Signal("task_updated")
        self.task_completed = Signal("task_completed")
        self.task_failed = Signal("task_failed")

        self._build()

    def __repr__(self) -> str:
        return f"QuestRuntime({self.id!r}, {self.state.value}, stage={self.current_stage_index})"

    @property
    def id(self) -> str:
        return self.definition.id

    @property
    def title(self) -> str:
        return self.definition.title or self.definition.id

    @property
    def is_active(self) -> bool:
        return self.state is QuestState.IN_PROGRESS

    @property
    def current_stage(self) -> Optional[StageRuntime]:
        if self.state is QuestState.NOT_STARTED:
            return None
        return self.stages.get(self.current_stage_index)

    @property
    def current_tasks(self) -> List[TaskRuntime]:
        """Tasks currently in progress (several for a parallel group)."""
        stage = self.current_stage
        if not self.is_active or stage is None:
            return []
        return stage.current_tasks

    @property
    def current_task(self) -> Optional[TaskRuntime]:
        tasks = self.current_tasks
        return tasks[0] if tasks else None

    @property
    def all_tasks(self) -> List[TaskRuntime]:
        return [task for stage in self.stages.values() for task in stage.all_tasks]

    @property
    def awaiting_choice(self) -> bool:
        stage = self.current_stage
        return self.is_active and stage is not None and stage.awaiting_choice

    @property
    def progress(self) -> float:
        """Mean task progress over the groups reached so far."""
        if self.state is QuestState.COMPLETED:
            return 1.0
        tasks = [
            task
            for stage in self.stages.values()
            if stage.state is not StageState.NOT_REACHED
            for group in stage.reached_groups
            for task in group.tasks
        ]
        if not tasks:
            return 0.0
        return sum(t.progress for t in tasks) / len(tasks)

    def get_stage(self, index: int) -> Optional[StageRuntime]:
        return self.stages.get(index)

    def get_task(self, task_id: str) -> Optional[TaskRuntime]:
        for task in self.all_tasks:
            if task.id == task_id:
                return task
        return None

    # Lifecycle

    def start(self, force: bool = False) -> bool:
        """Start the quest and enter its first stage.

        Args:
            force: Skip the start condition check

        Returns:
            True if the quest was started
        """
        if self.state is not QuestState.NOT_STARTED:
            logger.warning("Quest '%s' cannot start from state %s", self.id, self.state.value)
            return False
        if not force and not check_all(self._start_conditions):
            logger.debug("Quest '%s' start conditions not met", self.id)
            return False

        unsubscribe_all(self._start_conditions)
        self.state = QuestState.IN_PROGRESS
        self._subscribe_quest_conditions()
        logger.info("Quest '%s' started", self.id)
        self.quest_started.emit(self)

        first = self.definition.first_stage_index
        generation = self._generation
        self.context.queue.run(lambda: self._begin(first, generation))
        return True

    def arm_start_conditions(self, on_ready=None) -> None:
        """Subscribe the start conditions so the quest starts once they hold.

        Args:
            on_ready: Called instead of start() when the conditions hold
        """
        if self.state is not QuestState.NOT_STARTED:
            return
        hook = on_ready or self.start

        def ready() -> None:
            if self.state is QuestState.NOT_STARTED and check_all(self._start_conditions):
                hook()

        subscribe_all(self._start_conditions, ready)

    def complete(self) -> bool:
        if self.state is not QuestState.IN_PROGRESS:
            logger.warning("Quest '%s' cannot complete from state %s", self.id, self.state.value)
            return False
        self.context.queue.run(self._complete)
        return True

    def fail(self) -> bool:
        if self.state is not QuestState.IN_PROGRESS:
            logger.warning("Quest '%s' cannot fail from state %s", self.id, self.state.value)
            return False
        self.context.queue.run(self._fail)
        return True

    def restart(self) -> bool:
        """Rebuild every runtime entity from the definition and start again."""
        self._teardown()
        self._build()
        logger.info("Quest '%s' restarted", self.id)
        self.quest_restarted.emit(self)
        return self.start(force=True)

    def dispose(self) -> None:
        """Release every subscription; the runtime must not be used afterwards."""
        self._teardown()
        self.stages = {}

    # Stage control

    def set_stage(self, index: int) -> bool:
        """Jump to a stage, completing the current one if it is still running."""
        if not self.is_active:
            logger.warning("Cannot set stage on quest '%s' - not in progress", self.id)
            return False
        if index not in self.stages:
            logger.warning("Quest '%s' has no stage %d", self.id, index)
            return False

        def job() -> None:
            stage = self.current_stage
            if stage is not None and stage.state is StageState.IN_PROGRESS:
                stage.complete(index)
            else:
                self._schedule_enter(index)

        self.context.queue.run(job)
        return True

    def trigger_manual_transition(self) -> bool:
        stage = self.current_stage
        if not self.is_active or stage is None:
            logger.warning("Quest '%s' has no active stage", self.id)
            return False
        result = []
        self.context.queue.run(lambda: result.append(stage.trigger_manual()))
        return bool(result and result[0])

    def get_choices(self, include_unavailable: bool = False) -> List[ChoiceView]:
        stage = self.current_stage
        if not self.is_active or stage is None:
            return []
        return stage.get_choices(include_unavailable)

    def get_implicit_choice(self) -> Optional[ChoiceView]:
        stage = self.current_stage
        if not self.is_active or stage is None:
            return None
        return stage.get_implicit_choice()

    def select_choice(self, choice_id: str) -> bool:
        """Select a player choice on the current stage.

        Returns:
            True if the choice was applied, False if it was rejected
        """
        stage = self.current_stage
        if not self.is_active or stage is None:
            logger.warning("Quest '%s' is not in progress; choice '%s' ignored", self.id, choice_id)
            return False
        result = []

        def job() -> None:
            transition = stage.select_choice(choice_id)
            if transition is not None:
                self.choice_decisions[stage.index] = choice_id
                logger.info("Quest '%s': choice '%s' selected on stage %d",
                            self.id, choice_id, stage.index)
            result.append(transition is not None)

        self.context.queue.run(job)
        return bool(result and result[0])

    def reset_stage(self) -> bool:
        """Reset the current stage and enter it again."""
        stage = self.current_stage
        if not self.is_active or stage is None:
            return False

        def job() -> None:
            stage.reset()
            stage.enter()

        self.context.queue.run(job)
        return True

    # Task control

    def force_complete_task(self, task_id: str) -> bool:
        return self._task_job(task_id, lambda task: task.force_complete())

    def force_fail_task(self, task_id: str) -> bool:
        return self._task_job(task_id, lambda task: task.force_fail())

    def reset_task(self, task_id: str) -> bool:
        def reset(task: TaskRuntime) -> bool:
            task.reset()
            group = self._group_of(task)
            stage = self.current_stage
            if (group is not None and stage is not None and group is stage.current_group
                    and group.state is TaskGroupState.IN_PROGRESS
                    and (not group.sequential or not any(t.is_active for t in group.tasks))):
                task.start()
            return True

        return self._task_job(task_id, reset)

    def increment_current_task(self, amount: int = 1) -> bool:
        task = self.current_task
        if task is None:
            return False
        return self._task_job(task.id, lambda t: t.increment(amount))

    def decrement_current_task(self, amount: int = 1) -> bool:
        task = self.current_task
        if task is None:
            return False
        return self._task_job(task.id, lambda t: t.decrement(amount))

    def tick(self, dt: float) -> None:
        """Advance the countdown of every running timed task."""
        if not self.is_active:
            return

        def job() -> None:
            for task in list(self.current_tasks):
                task.tick(dt)

        self.context.queue.run(job)

    # Snapshot support

    def restore_state(self, state: QuestState, current_stage_index: int,
                      task_states: Dict[str, Any], stage_states: Optional[Dict[int, Any]] = None,
                      group_cursor: Optional[int] = None,
                      choice_decisions: Optional[Dict[int, str]] = None) -> None:
        """Rebuild the runtime and seed it from saved state without emitting.

        Args:
            state: Saved quest state
            current_stage_index: Saved stage pointer
            task_states: task id -> (TaskState, payload)
            stage_states: stage index -> StageState for stages other than the current one
            group_cursor: Saved group cursor of the current stage, derived when None
            choice_decisions: stage index -> selected choice id
        """
        self._teardown()
        self._build()
        self.state = state
        self.current_stage_index = current_stage_index
        self.choice_decisions = dict(choice_decisions or {})

        for index, stage_state in (stage_states or {}).items():
            stage = self.stages.get(index)
            if stage is not None and index != current_stage_index:
                stage.restore(stage_state, len(stage.groups) - 1)

        current = self.stages.get(current_stage_index)
        if current is not None and state is not QuestState.NOT_STARTED:
            current_state = StageState.IN_PROGRESS if state is QuestState.IN_PROGRESS else \
                (stage_states or {}).get(current_stage_index, StageState.COMPLETED)
            if group_cursor is None:
                group_cursor = _derive_cursor(current, task_states)
            current.restore(current_state, group_cursor)

        for task in self.all_tasks:
            saved = task_states.get(task.id)
            if saved is not None:
                task.restore(saved[0], saved[1])

        if state is QuestState.NOT_STARTED:
            return
        if state is QuestState.IN_PROGRESS:
            self._subscribe_quest_conditions()
            if current is not None:
                current.resume()
                self.context.queue.run(current.revalidate)
            elif self.stages:
                logger.warning("Quest '%s' restored at missing stage %d; entering first stage",
                               self.id, current_stage_index)
                generation = self._generation
                self.context.queue.run(lambda: self._begin(self.definition.first_stage_index, generation))

    # Internals

    def _build(self) -> None:
        self._generation += 1
        self.state = QuestState.NOT_STARTED
        self.current_stage_index = -1
        self.choice_decisions = {}
        context = self.context
        self._start_conditions: List[Condition] = build_conditions(self.definition.start_conditions, context)
        self._failure_conditions: List[Condition] = build_conditions(self.definition.failure_conditions, context)
        self._task_failure_conditions: List[Condition] = build_conditions(
            self.definition.task_failure_conditions, context)

        self.stages = {s.index: StageRuntime(s, context) for s in self.definition.stages}
        links = self._links
        for stage in self.stages.values():
            links.add(stage.on_entered.connect(self._on_stage_entered))
            links.add(stage.on_completed.connect(self._on_stage_completed))
            links.add(stage.on_failed.connect(self._on_stage_failed))
            links.add(stage.on_choices_available.connect(self._on_choices_available))
            for task in stage.all_tasks:
                links.add(task.on_started.connect(self._on_task_started))
                links.add(task.on_updated.connect(self._on_task_updated))
                links.add(task.on_completed.connect(self._on_task_completed))
                links.add(task.on_failed.connect(self._on_task_failed))

    def _teardown(self) -> None:
        unsubscribe_all(self._start_conditions)
        self._unsubscribe_quest_conditions()
        self._links.close()
        for stage in self.stages.values():
            stage.dispose()

    def _subscribe_quest_conditions(self) -> None:
        subscribe_all(self._failure_conditions, self._on_quest_failure_condition)
        subscribe_all(self._task_failure_conditions, self._on_task_failure_condition)

    def _unsubscribe_quest_conditions(self) -> None:
        unsubscribe_all(self._failure_conditions)
        unsubscribe_all(self._task_failure_conditions)

    def _begin(self, first: int, generation: int) -> None:
        if generation != self._generation or not self.is_active:
            return
        if first < 0:
            logger.warning("Quest '%s' has no stages. Completing immediately.", self.id)
            self._complete()
            return
        self._enter_stage(first)

    def _schedule_enter(self, index: int) -> None:
        generation = self._generation
        source = self.current_stage_index

        def job() -> None:
            # the quest may have moved on while the job was queued
            if generation != self._generation or not self.is_active:
                return
            if self.current_stage_index != source:
                return
            self._enter_stage(index)

        self.context.queue.run(job)

    def _enter_stage(self, index: int) -> None:
        stage = self.stages.get(index)
        if stage is None:
            logger.warning("Quest '%s': stage %d does not exist. Treating as terminal.", self.id, index)
            self._complete()
            return
        previous = self.current_stage_index
        self.current_stage_index = index
        self.stage_transition.emit(self, previous, index)
        stage.enter()

    def _complete(self) -> None:
        if self.state is not QuestState.IN_PROGRESS:
            return
        self.state = QuestState.COMPLETED
        self._unsubscribe_quest_conditions()
        stage = self.current_stage
        if stage is not None and stage.state is StageState.IN_PROGRESS:
            stage.complete(None)
        logger.info("Quest '%s' completed", self.id)
        self._give_rewards()
        self.quest_completed.emit(self)
        self.quest_updated.emit(self)

    def _fail(self) -> None:
        if self.state is not QuestState.IN_PROGRESS:
            return
        self.state = QuestState.FAILED
        self._unsubscribe_quest_conditions()
        stage = self.current_stage
        if stage is not None and stage.state is StageState.IN_PROGRESS:
            stage.fail()
        logger.info("Quest '%s' failed", self.id)
        self.quest_failed.emit(self)
        self.quest_updated.emit(self)

    def _give_rewards(self) -> None:
        for reward in self.definition.rewards:
            handler = self.context.rewards.get(reward.reward_type)
            if handler is None:
                logger.warning("Quest '%s': no reward handler for '%s'", self.id, reward.reward_type)
                continue
            handler(reward.amount)

    def _task_job(self, task_id: str, action) -> bool:
        task = self.get_task(task_id)
        if task is None:
            logger.warning("Quest '%s' has no task '%s'", self.id, task_id)
            return False
        result = []
        self.context.queue.run(lambda: result.append(action(task)))
        return bool(result and result[0])

    def _group_of(self, task: TaskRuntime):
        for stage in self.stages.values():
            for group in stage.groups:
                if task in group.tasks:
                    return group
        return None

    # Signal handlers

    def _on_stage_entered(self, stage: StageRuntime) -> None:
        logger.debug("Quest '%s' entered stage %d", self.id, stage.index)
        self.stage_entered.emit(self, stage)
        self.quest_updated.emit(self)

    def _on_stage_completed(self, stage: StageRuntime, target: Optional[int]) -> None:
        self.stage_completed.emit(self, stage)
        if not self.is_active or stage.index != self.current_stage_index:
            return
        if target is None:
            self._complete()
        else:
            self._schedule_enter(target)

    def _on_stage_failed(self, stage: StageRuntime) -> None:
        self.stage_failed.emit(self, stage)
        self.quest_updated.emit(self)
        if self.is_active and stage.definition.fail_quest_on_failure:
            self._fail()

    def _on_choices_available(self, stage: StageRuntime) -> None:
        if self.is_active and stage.index == self.current_stage_index:
            self.choices_available.emit(self, stage.get_choices())

    def _on_task_started(self, task: TaskRuntime) -> None:
        self.task_started.emit(self, task)

    def _on_task_updated(self, task: TaskRuntime) -> None:
        self.task_updated.emit(self, task)
        self.quest_updated.emit(self)

    def _on_task_completed(self, task: TaskRuntime) -> None:
        self.task_completed.emit(self, task)
        self.quest_updated.emit(self)

    def _on_task_failed(self, task: TaskRuntime) -> None:
        self.task_failed.emit(self, task)
        self.quest_updated.emit(self)
        if task.expired and task.definition.fail_quest_on_expire:
            logger.info("Quest '%s': timed task '%s' expired", self.id, task.id)
            self._fail()

    def _on_quest_failure_condition(self) -> None:
        if self.is_active:
            self._fail()

    def _on_task_failure_condition(self) -> None:
        for task in list(self.current_tasks):
            task.fail()


def _derive_cursor(stage: StageRuntime, task_states: Dict[str, Any]) -> int:
    """First group whose saved tasks are not all terminal."""
    for i, group in enumerate(stage.groups):
        states = [task_states.get(t.id, (TaskState.NOT_STARTED, None))[0] for t in group.tasks]
        completed = sum(1 for s in states if s is TaskState.COMPLETED)
        if completed < group.required:
            return i
    return max(0, len(stage.groups) - 1)
