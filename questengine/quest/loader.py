"""Quest definition loader from structured JSON files.

This module loads quest and quest line definitions from JSON authoring
files, checks them against the quest schemas and converts them into
QuestDef and QuestLineDef objects.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

import jsonschema

from config import get_strict_validation
from ..core.world_flags import FlagModification, FlagOp
from .errors import QuestDefinitionError
from .model import (
    CompletionRule, ConditionDef, ExecutionMode, QuestDef, QuestLineDef, RewardDef, StageDef,
    TaskDef, TaskGroupDef, TaskKind, TransitionDef, TransitionTrigger,
)
from .schema import QUEST_LIST_SCHEMA, QUEST_SCHEMA, QUESTLINE_SCHEMA
from .validator import validate_definition, validate_questline

logger = logging.getLogger(__name__)


def load_quest_file(path: str, strict: Optional[bool] = None) -> List[QuestDef]:
    """Load quest definitions from a JSON file.

    Args:
        path: Path to the quest JSON file
        strict: Raise on authoring warnings; defaults to QE_STRICT_VALIDATION

    Returns:
        List of QuestDef objects loaded from the file

    Raises:
        FileNotFoundError: If the file doesn't exist
        QuestDefinitionError: If the JSON or its structure is invalid
    """
    quests, _ = load_catalog(path, strict=strict)
    return quests


def load_catalog(path: str, strict: Optional[bool] = None) -> Tuple[List[QuestDef], List[QuestLineDef]]:
    """Load both the quests and the quest lines of a JSON file."""
    quest_path = Path(path)
    if not quest_path.exists():
        raise FileNotFoundError(f"Quest file not found: {path}")

    try:
        with open(quest_path, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise QuestDefinitionError(f"Invalid JSON in quest file {path}: {e}")

    quests = load_quests(data, strict=strict)
    questlines = load_questlines(data, strict=strict)
    logger.debug("Loaded %d quest(s) and %d quest line(s) from %s", len(quests), len(questlines), path)
    return quests, questlines


def load_quests(data: Dict[str, Any], strict: Optional[bool] = None) -> List[QuestDef]:
    """Parse quest definitions from already-decoded JSON data.

    Args:
        data: Either {"quests": [...]} or a single quest object
        strict: Raise on authoring warnings; defaults to QE_STRICT_VALIDATION

    Returns:
        Parsed QuestDef objects
    """
    is_list = isinstance(data, dict) and 'quests' in data
    try:
        jsonschema.validate(data, QUEST_LIST_SCHEMA if is_list else QUEST_SCHEMA)
    except jsonschema.ValidationError as e:
        location = "/".join(str(p) for p in e.absolute_path) or "<root>"
        raise QuestDefinitionError(f"Quest data invalid at {location}: {e.message}")

    if strict is None:
        strict = get_strict_validation()

    quest_list = data['quests'] if is_list else [data]
    quests = []
    for quest_data in quest_list:
        quest = _parse_quest(quest_data)
        warnings = validate_definition(quest)
        for warning in warnings:
            logger.warning("Quest '%s': %s", quest.id, warning)
        if strict and warnings:
            raise QuestDefinitionError(f"Quest '{quest.id}' failed validation: " + "; ".join(warnings))
        quests.append(quest)
    return quests


def load_questlines(data: Dict[str, Any], strict: Optional[bool] = None,
                    known_quests: Optional[Iterable[str]] = None) -> List[QuestLineDef]:
    """Parse the "questlines" list of already-decoded JSON data.

    Args:
        data: Authoring data; anything without a "questlines" list yields none
        strict: Raise on authoring warnings; defaults to QE_STRICT_VALIDATION
        known_quests: Quest ids the lines may reference; unchecked when None
    """
    if not isinstance(data, dict) or 'questlines' not in data:
        return []
    if not isinstance(data['questlines'], list):
        raise QuestDefinitionError("Quest data invalid at questlines: not an array")

    if strict is None:
        strict = get_strict_validation()

    questlines = []
    for i, line_data in enumerate(data['questlines']):
        try:
            jsonschema.validate(line_data, QUESTLINE_SCHEMA)
        except jsonschema.ValidationError as e:
            location = "/".join(["questlines", str(i)] + [str(p) for p in e.absolute_path])
            raise QuestDefinitionError(f"Quest data invalid at {location}: {e.message}")

        questline = _parse_questline(line_data)
        warnings = validate_questline(questline, known_quests)
        for warning in warnings:
            logger.warning("Quest line '%s': %s", questline.id, warning)
        if strict and warnings:
            raise QuestDefinitionError(
                f"Quest line '{questline.id}' failed validation: " + "; ".join(warnings))
        questlines.append(questline)
    return questlines


def _parse_questline(line_data: Dict[str, Any]) -> QuestLineDef:
    return QuestLineDef(
        id=line_data['id'],
        title=line_data.get('title', ''),
        description=line_data.get('description', ''),
        quest_ids=tuple(line_data.get('quests', [])),
        prerequisite=line_data.get('prerequisite'),
        fail_on_quest_failed=line_data.get('fail_on_quest_failed', False),
        rewards=_parse_rewards(line_data.get('rewards', [])),
    )


def _parse_quest(quest_data: Dict[str, Any]) -> QuestDef:
    return QuestDef(
        id=quest_data['id'],
        title=quest_data.get('title', ''),
        description=quest_data.get('description', ''),
        stages=tuple(_parse_stage(s) for s in quest_data.get('stages', [])),
        start_conditions=_parse_conditions(quest_data.get('start_conditions', [])),
        failure_conditions=_parse_conditions(quest_data.get('failure_conditions', [])),
        task_failure_conditions=_parse_conditions(quest_data.get('task_failure_conditions', [])),
        rewards=_parse_rewards(quest_data.get('rewards', [])),
    )


def _parse_stage(stage_data: Dict[str, Any]) -> StageDef:
    return StageDef(
        index=stage_data['index'],
        name=stage_data.get('name', 'New Stage'),
        groups=tuple(_parse_group(g) for g in stage_data.get('groups', [])),
        transitions=tuple(_parse_transition(t) for t in stage_data.get('transitions', [])),
        terminal=stage_data.get('terminal', False),
        optional=stage_data.get('optional', False),
        hidden=stage_data.get('hidden', False),
        fail_quest_on_failure=stage_data.get('fail_quest_on_failure', False),
    )


def _parse_group(group_data: Dict[str, Any]) -> TaskGroupDef:
    return TaskGroupDef(
        name=group_data.get('name', 'Task Group'),
        tasks=tuple(_parse_task(t) for t in group_data.get('tasks', [])),
        execution=ExecutionMode(group_data.get('execution', 'sequential')),
        rule=CompletionRule(group_data.get('rule', 'all')),
        required_count=group_data.get('required_count', 1),
        failure_tolerant=group_data.get('failure_tolerant', False),
    )


def _parse_task(task_data: Dict[str, Any]) -> TaskDef:
    """Parse a task; fields not used by its kind keep their defaults."""
    return TaskDef(
        id=task_data['id'],
        kind=TaskKind(task_data.get('kind', 'flag')),
        title=task_data.get('title', ''),
        completion_conditions=_parse_conditions(task_data.get('completion_conditions', [])),
        failure_conditions=_parse_conditions(task_data.get('failure_conditions', [])),
        signal_event=task_data.get('signal_event'),
        require_all=task_data.get('require_all', False),
        target_count=task_data.get('target_count', 1),
        target_text=task_data.get('target_text', ''),
        target_location=task_data.get('target_location', ''),
        time_limit=task_data.get('time_limit'),
        fail_quest_on_expire=task_data.get('fail_quest_on_expire', False),
        allow_list=tuple(task_data.get('allow_list', [])),
        required_discoveries=task_data.get('required_discoveries'),
    )


def _parse_transition(transition_data: Dict[str, Any]) -> TransitionDef:
    return TransitionDef(
        target=transition_data['target'],
        trigger=TransitionTrigger(transition_data.get('trigger', 'on_groups_complete')),
        conditions=_parse_conditions(transition_data.get('conditions', [])),
        priority=transition_data.get('priority', 0),
        label=transition_data.get('label', ''),
        choice_id=transition_data.get('choice_id'),
        flag_modifications=tuple(
            FlagModification(m['key'], FlagOp(m.get('op', 'set')), m.get('value', True))
            for m in transition_data.get('flag_modifications', [])
        ),
    )


def _parse_conditions(condition_list: List[Dict[str, Any]]):
    return tuple(_parse_condition(c) for c in condition_list)


def _parse_condition(condition_data: Dict[str, Any]) -> ConditionDef:
    # Format: {"op": "flag", "args": {"key": "reputation", "compare": "ge", "value": 20}}
    return ConditionDef(
        op=condition_data['op'],
        args=condition_data.get('args', {}),
        inverted=condition_data.get('inverted', False),
    )


def _parse_rewards(reward_list: List[Dict[str, Any]]):
    return tuple(RewardDef(r['type'], r.get('amount', 1)) for r in reward_list)
