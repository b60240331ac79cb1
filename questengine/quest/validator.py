"""Authoring validation for quest definitions.

Detects problems in a QuestDef before play. Problems are reported as a list
of warning strings; nothing here raises during runtime traversal.
"""

from typing import Any, Iterable, List, Optional

from ..core.world_flags import FlagOp
from .dsl import COMPARATORS, CONDITION_OPS
from .model import (
    CompletionRule, ConditionDef, QuestDef, QuestLineDef, StageDef, TaskDef, TaskKind, TransitionTrigger,
)


def validate_definition(definition: QuestDef) -> List[str]:
    """Validate a quest definition.

    Args:
        definition: Quest to check

    Returns:
        List of warning messages (empty if valid)
    """
    warnings = []

    if not definition.stages:
        warnings.append("Quest has no stages")

    indices = [stage.index for stage in definition.stages]
    for index in sorted(set(i for i in indices if indices.count(i) > 1)):
        warnings.append(f"Duplicate stage index {index}")

    task_ids = [task.id for task in definition.all_tasks()]
    for task_id in sorted(set(t for t in task_ids if task_ids.count(t) > 1)):
        warnings.append(f"Duplicate task id '{task_id}'")

    _check_conditions(definition.start_conditions, "start conditions", warnings)
    _check_conditions(definition.failure_conditions, "failure conditions", warnings)
    _check_conditions(definition.task_failure_conditions, "task failure conditions", warnings)

    known = set(indices)
    for stage in definition.stages:
        _validate_stage(stage, known, warnings)

    return warnings


def validate_questline(definition: QuestLineDef, known_quests: Optional[Iterable[str]] = None) -> List[str]:
    """Validate a quest line; known_quests, when given, are the ids it may reference."""
    warnings = []
    quest_ids = list(definition.quest_ids)

    if not quest_ids:
        warnings.append("Quest line has no quests")
    for quest_id in sorted(set(q for q in quest_ids if quest_ids.count(q) > 1)):
        warnings.append(f"Duplicate quest '{quest_id}'")
    if known_quests is not None:
        known = set(known_quests)
        for quest_id in quest_ids:
            if quest_id not in known:
                warnings.append(f"References unknown quest '{quest_id}'")
    if definition.prerequisite == definition.id:
        warnings.append("Quest line is its own prerequisite")

    return warnings


def _validate_stage(stage: StageDef, known_indices: set, warnings: List[str]) -> None:
    where = f"Stage {stage.index}"

    if not stage.terminal and not stage.transitions:
        warnings.append(f"{where} is not terminal and has no transitions")

    choice_ids = []
    for i, transition in enumerate(stage.transitions):
        label = f"{where} transition {i}"
        if transition.target not in known_indices:
            warnings.append(f"{label} targets missing stage {transition.target}")
        if transition.trigger is TransitionTrigger.ON_CONDITIONS_MET and not transition.conditions:
            warnings.append(f"{label} is on_conditions_met with no conditions")
        if transition.flag_modifications and not transition.is_player_choice:
            warnings.append(f"{label} has flag modifications but is not a player choice")
        for modification in transition.flag_modifications:
            if modification.op is not FlagOp.SET and isinstance(modification.value, bool):
                warnings.append(f"{label} applies {modification.op.value} with a boolean value")
        if transition.is_player_choice:
            choice_ids.append(transition.effective_choice_id)
        _check_conditions(transition.conditions, label, warnings)

    for choice_id in sorted(set(c for c in choice_ids if choice_ids.count(c) > 1)):
        warnings.append(f"{where} has duplicate choice id '{choice_id}'")

    for g, group in enumerate(stage.groups):
        label = f"{where} group {g} ('{group.name}')"
        if not group.tasks:
            warnings.append(f"{label} has no tasks")
        if group.rule is CompletionRule.AT_LEAST and not 1 <= group.required_count <= len(group.tasks):
            warnings.append(f"{label} requires {group.required_count} of {len(group.tasks)} tasks")
        for task in group.tasks:
            _validate_task(task, warnings)


def _validate_task(task: TaskDef, warnings: List[str]) -> None:
    label = f"Task '{task.id}'"
    kind = task.kind

    if kind is TaskKind.COUNTER and task.target_count < 1:
        warnings.append(f"{label} has counter target {task.target_count}")
    elif kind is TaskKind.DISCOVERY:
        if not task.allow_list:
            warnings.append(f"{label} has an empty allow list")
        if task.required_count > len(task.allow_list):
            warnings.append(
                f"{label} requires {task.required_count} discoveries but allows {len(task.allow_list)}")
    elif kind is TaskKind.TIMED and task.time_limit is not None and task.time_limit <= 0:
        warnings.append(f"{label} has time limit {task.time_limit}")
    elif kind is TaskKind.LOCATION and not task.target_location:
        warnings.append(f"{label} has no target location")
    elif kind is TaskKind.TEXT_MATCH and not task.target_text:
        warnings.append(f"{label} has no target text")
    elif kind is TaskKind.FLAG and not task.completion_conditions and not task.signal_event:
        warnings.append(f"{label} has no completion conditions")

    _check_conditions(task.completion_conditions, label, warnings)
    _check_conditions(task.failure_conditions, f"{label} failure", warnings)


def _check_conditions(conditions: Iterable[Any], where: str, warnings: List[str]) -> None:
    for condition in conditions:
        if isinstance(condition, ConditionDef):
            op, args = condition.op, condition.args
        else:
            op, args = condition.get("op"), condition.get("args", {})

        if op not in CONDITION_OPS:
            warnings.append(f"{where}: unknown condition op '{op}'")
        elif op in ("event", "flag") and not args.get("key"):
            warnings.append(f"{where}: {op} condition has no key")
        elif op == "quest_state" and not args.get("quest_id"):
            warnings.append(f"{where}: quest_state condition has no quest_id")
        elif op == "questline_state" and not args.get("questline_id"):
            warnings.append(f"{where}: questline_state condition has no questline_id")
        elif op in ("all", "any"):
            _check_conditions(args.get("conditions", []), where, warnings)

        compare_op = args.get("compare")
        if compare_op is not None and compare_op not in COMPARATORS:
            warnings.append(f"{where}: unknown comparator '{compare_op}'")
