"""Quest engine package."""

from .model import (
    QuestDef, StageDef, TaskGroupDef, TaskDef, TransitionDef, ConditionDef, RewardDef, QuestLineDef,
    QuestState, StageState, TaskGroupState, TaskState, QuestLineState,
    TaskKind, TransitionTrigger, ExecutionMode, CompletionRule,
)
from .errors import (
    QuestEngineError, QuestDefinitionError, SnapshotError, UnknownQuestError, UnknownQuestLineError,
)
from .context import QuestContext, QUEST_STATE_EVENT, QUESTLINE_STATE_EVENT
from .dsl import build_condition, check_all, check_any
from .tasks import TaskRuntime
from .groups import TaskGroupRuntime
from .stages import StageRuntime, ChoiceView
from .runtime import QuestRuntime
from .questlines import QuestLineRuntime
from .manager import QuestManager
from .loader import load_catalog, load_quest_file, load_quests, load_questlines
from .validator import validate_definition, validate_questline
from .snapshot import capture_quest, restore_quest, capture_system, validate_snapshot

__all__ = [
    'QuestDef', 'StageDef', 'TaskGroupDef', 'TaskDef', 'TransitionDef', 'ConditionDef', 'RewardDef',
    'QuestLineDef',
    'QuestState', 'StageState', 'TaskGroupState', 'TaskState', 'QuestLineState',
    'TaskKind', 'TransitionTrigger', 'ExecutionMode', 'CompletionRule',
    'QuestEngineError', 'QuestDefinitionError', 'SnapshotError', 'UnknownQuestError',
    'UnknownQuestLineError',
    'QuestContext', 'QUEST_STATE_EVENT', 'QUESTLINE_STATE_EVENT',
    'build_condition', 'check_all', 'check_any',
    'TaskRuntime', 'TaskGroupRuntime', 'StageRuntime', 'ChoiceView',
    'QuestRuntime', 'QuestLineRuntime', 'QuestManager',
    'load_catalog', 'load_quest_file', 'load_quests', 'load_questlines',
    'validate_definition', 'validate_questline',
    'capture_quest', 'restore_quest', 'capture_system', 'validate_snapshot',
]
