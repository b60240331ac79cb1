"""Quest definition data models.

This module defines the immutable authored structures of the quest system
(QuestDef, StageDef, TaskGroupDef, TaskDef, TransitionDef, ConditionDef,
RewardDef, QuestLineDef) and the state enums shared by the runtime entities.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from ..core.world_flags import FlagModification


class TaskState(Enum):
    NOT_STARTED = "NotStarted"
    IN_PROGRESS = "InProgress"
    COMPLETED = "Completed"
    FAILED = "Failed"


class TaskGroupState(Enum):
    NOT_STARTED = "NotStarted"
    IN_PROGRESS = "InProgress"
    COMPLETED = "Completed"
    FAILED = "Failed"


class StageState(Enum):
    NOT_REACHED = "NotReached"
    IN_PROGRESS = "InProgress"
    COMPLETED = "Completed"
    FAILED = "Failed"
    SKIPPED = "Skipped"


class QuestState(Enum):
    NOT_STARTED = "NotStarted"
    IN_PROGRESS = "InProgress"
    COMPLETED = "Completed"
    FAILED = "Failed"


class TaskKind(Enum):
    """Closed set of task variants."""
    COUNTER = "counter"
    FLAG = "flag"
    TEXT_MATCH = "text_match"
    LOCATION = "location"
    TIMED = "timed"
    DISCOVERY = "discovery"


class TransitionTrigger(Enum):
    ON_GROUPS_COMPLETE = "on_groups_complete"
    ON_CONDITIONS_MET = "on_conditions_met"
    MANUAL = "manual"
    PLAYER_CHOICE = "player_choice"


class ExecutionMode(Enum):
    SEQUENTIAL = "sequential"
    PARALLEL = "parallel"


class CompletionRule(Enum):
    ALL = "all"
    ANY = "any"
    AT_LEAST = "at_least"


@dataclass(frozen=True)
class ConditionDef:
    """A declarative condition for the DSL system.

    Examples:
        {"op": "event", "args": {"key": "enemy_killed", "value": "wolf"}}
        {"op": "flag", "args": {"key": "reputation", "compare": "ge", "value": 20}}
    """
    op: str
    args: Dict[str, Any] = field(default_factory=dict)
    inverted: bool = False


@dataclass(frozen=True)
class RewardDef:
    """One reward entry, handed to the reward handler registered for its type."""
    reward_type: str
    amount: int = 1


@dataclass(frozen=True)
class TaskDef:
    """A single trackable objective.

    Only the fields relevant to the task's kind are read by the runtime.
    """
    id: str
    kind: TaskKind = TaskKind.FLAG
    title: str = ""
    completion_conditions: Tuple[ConditionDef, ...] = ()
    failure_conditions: Tuple[ConditionDef, ...] = ()
    signal_event: Optional[str] = None  # bus key feeding the variant's own input
    require_all: bool = False  # flag tasks: every completion condition must hold
    target_count: int = 1  # counter
    target_text: str = ""  # text_match
    target_location: str = ""  # location
    time_limit: Optional[float] = None  # timed, seconds
    fail_quest_on_expire: bool = False  # timed
    allow_list: Tuple[str, ...] = ()  # discovery
    required_discoveries: Optional[int] = None  # discovery, defaults to len(allow_list)

    @property
    def required_count(self) -> int:
        if self.required_discoveries is not None:
            return self.required_discoveries
        return len(self.allow_list)


@dataclass(frozen=True)
class TaskGroupDef:
    """An ordered or parallel collection of tasks."""
    name: str = "Task Group"
    tasks: Tuple[TaskDef, ...] = ()
    execution: ExecutionMode = ExecutionMode.SEQUENTIAL
    rule: CompletionRule = CompletionRule.ALL
    required_count: int = 1  # at_least
    failure_tolerant: bool = False

    @property
    def required(self) -> int:
        """Number of completed tasks needed for the group to complete."""
        if self.rule is CompletionRule.ANY:
            return min(1, len(self.tasks))
        if self.rule is CompletionRule.AT_LEAST:
            return self.required_count
        return len(self.tasks)


@dataclass(frozen=True)
class TransitionDef:
    """An edge from a stage to a target stage."""
    target: int
    trigger: TransitionTrigger = TransitionTrigger.ON_GROUPS_COMPLETE
    conditions: Tuple[ConditionDef, ...] = ()
    priority: int = 0
    label: str = ""
    choice_id: Optional[str] = None
    flag_modifications: Tuple[FlagModification, ...] = ()

    @property
    def is_player_choice(self) -> bool:
        return self.trigger is TransitionTrigger.PLAYER_CHOICE

    @property
    def effective_choice_id(self) -> str:
        """Authored choice id, or a stable one derived from the target."""
        return self.choice_id or f"choice_to_{self.target}"


@dataclass(frozen=True)
class StageDef:
    """A numbered phase of a quest (0, 10, 20... leaves room for insertions)."""
    index: int
    name: str = "New Stage"
    groups: Tuple[TaskGroupDef, ...] = ()
    transitions: Tuple[TransitionDef, ...] = ()
    terminal: bool = False
    optional: bool = False
    hidden: bool = False
    fail_quest_on_failure: bool = False

    def transitions_for(self, trigger: TransitionTrigger) -> List[TransitionDef]:
        return [t for t in self.transitions if t.trigger is trigger]

    @property
    def choice_transitions(self) -> List[TransitionDef]:
        return self.transitions_for(TransitionTrigger.PLAYER_CHOICE)

    @property
    def total_task_count(self) -> int:
        return sum(len(g.tasks) for g in self.groups)


@dataclass(frozen=True)
class QuestDef:
    """A quest with stages, start/failure conditions and rewards."""
    id: str
    title: str = ""
    description: str = ""
    stages: Tuple[StageDef, ...] = ()
    start_conditions: Tuple[ConditionDef, ...] = ()
    failure_conditions: Tuple[ConditionDef, ...] = ()
    task_failure_conditions: Tuple[ConditionDef, ...] = ()
    rewards: Tuple[RewardDef, ...] = ()

    def get_stage(self, index: int) -> Optional[StageDef]:
        """Get the stage with the given (sparse) index."""
        for stage in self.stages:
            if stage.index == index:
                return stage
        return None

    @property
    def first_stage_index(self) -> int:
        return min((s.index for s in self.stages), default=-1)

    @property
    def stage_indices(self) -> List[int]:
        return [s.index for s in self.stages]

    def all_tasks(self) -> List[TaskDef]:
        return [task for stage in self.stages for group in stage.groups for task in group.tasks]


class QuestLineState(Enum):
    LOCKED = "Locked"
    AVAILABLE = "Available"
    IN_PROGRESS = "InProgress"
    COMPLETED = "Completed"
    FAILED = "Failed"


@dataclass(frozen=True)
class QuestLineDef:
    """A storyline grouping an ordered list of quests.

    The line only tracks its member quests; chaining them is left to the
    quests' own start conditions.
    """
    id: str
    title: str = ""
    description: str = ""
    quest_ids: Tuple[str, ...] = ()
    prerequisite: Optional[str] = None  # questline that must be completed first
    fail_on_quest_failed: bool = False
    rewards: Tuple[RewardDef, ...] = ()

    @property
    def quest_count(self) -> int:
        return len(set(self.quest_ids))
