"""Flat quest snapshots for an external persistence collaborator.

Per quest:
    {"quest_id", "state", "current_stage_index", "group_cursor",
     "stage_states": {index: state}, "tasks": [{"task_id", "state", "payload"}],
     "choice_decisions": {stage index: choice id}}

Per quest line:
    {"questline_id", "state", "completed_quests": [quest id]}

System:
    {"version": 1, "quests": [...], "questlines": [...], "world_flags": {key: value}}

JSON object keys are strings, so stage indices are stored as strings.
Restoring seeds state directly and never replays completion notifications
for tasks that were already completed when captured.
"""

import logging
from typing import TYPE_CHECKING, Any, Dict

import jsonschema

from .errors import SnapshotError
from .model import QuestState, StageState, TaskState
from .runtime import QuestRuntime
from .schema import QUEST_SNAPSHOT_SCHEMA, SNAPSHOT_SCHEMA

if TYPE_CHECKING:
    from .manager import QuestManager

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = 1


def capture_quest(quest: QuestRuntime) -> Dict[str, Any]:
    """Capture one quest instance."""
    stage = quest.current_stage
    return {
        "quest_id": quest.id,
        "state": quest.state.value,
        "current_stage_index": quest.current_stage_index,
        "group_cursor": stage.group_cursor if stage is not None else None,
        "stage_states": {
            str(index): s.state.value
            for index, s in quest.stages.items()
            if s.state is not StageState.NOT_REACHED
        },
        "tasks": [task.capture() for task in quest.all_tasks],
        "choice_decisions": {str(index): choice for index, choice in quest.choice_decisions.items()},
    }


def restore_quest(quest: QuestRuntime, data: Dict[str, Any]) -> None:
    """Restore one quest instance from capture_quest() output.

    Raises:
        SnapshotError: If the data is malformed or belongs to another quest
    """
    _validate(data, QUEST_SNAPSHOT_SCHEMA)
    if data["quest_id"] != quest.id:
        raise SnapshotError(f"Snapshot for '{data['quest_id']}' cannot restore quest '{quest.id}'")

    try:
        stage_states = {int(k): StageState(v) for k, v in data.get("stage_states", {}).items()}
        decisions = {int(k): v for k, v in data.get("choice_decisions", {}).items()}
    except ValueError as e:
        raise SnapshotError(f"Invalid stage key in snapshot of '{quest.id}': {e}")

    known = {task.id for task in quest.all_tasks}
    task_states = {}
    for entry in data.get("tasks", []):
        task_id = entry["task_id"]
        if task_id not in known:
            logger.warning("Snapshot of '%s' references unknown task '%s'", quest.id, task_id)
            continue
        task_states[task_id] = (TaskState(entry["state"]), entry.get("payload"))

    quest.restore_state(
        QuestState(data["state"]),
        data["current_stage_index"],
        task_states,
        stage_states=stage_states,
        group_cursor=data.get("group_cursor"),
        choice_decisions=decisions,
    )
    logger.debug("Restored quest '%s' (%s, stage %d)", quest.id, quest.state.value,
                 quest.current_stage_index)


def capture_system(manager: "QuestManager") -> Dict[str, Any]:
    """Capture every quest and quest line of a manager plus the world flags."""
    return {
        "version": SNAPSHOT_VERSION,
        "quests": [capture_quest(quest) for quest in manager.quests],
        "questlines": [line.capture() for line in manager.questlines],
        "world_flags": manager.flags.snapshot(),
    }


def validate_snapshot(data: Dict[str, Any]) -> None:
    """Check a system snapshot against SNAPSHOT_SCHEMA.

    Raises:
        SnapshotError: If the snapshot is malformed or of a newer version
    """
    _validate(data, SNAPSHOT_SCHEMA)
    if data["version"] > SNAPSHOT_VERSION:
        raise SnapshotError(f"Unsupported snapshot version {data['version']}")


def _validate(data: Dict[str, Any], schema: Dict[str, Any]) -> None:
    try:
        jsonschema.validate(data, schema)
    except jsonschema.ValidationError as e:
        location = "/".join(str(p) for p in e.absolute_path) or "<root>"
        raise SnapshotError(f"Snapshot invalid at {location}: {e.message}")
