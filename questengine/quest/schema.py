"""JSON schema definitions for quest authoring files and snapshots.

Structural checks only; semantic checks (dangling transition targets,
duplicate ids...) live in validator.py.
"""

CONDITION_SCHEMA = {
    "type": "object",
    "required": ["op"],
    "properties": {
        "op": {"type": "string", "enum": ["event", "flag", "all", "any", "quest_state", "questline_state",
                                          "always", "never"]},
        "args": {"type": "object"},
        "inverted": {"type": "boolean"}
    },
    "additionalProperties": False
}

CONDITION_LIST_SCHEMA = {"type": "array", "items": CONDITION_SCHEMA}

FLAG_MODIFICATION_SCHEMA = {
    "type": "object",
    "required": ["key"],
    "properties": {
        "key": {"type": "string", "minLength": 1},
        "op": {"type": "string", "enum": ["set", "add", "subtract"]},
        "value": {"type": ["boolean", "integer"]}
    },
    "additionalProperties": False
}

TASK_SCHEMA = {
    "type": "object",
    "required": ["id"],
    "properties": {
        "id": {"type": "string", "minLength": 1},
        "kind": {"type": "string", "enum": ["counter", "flag", "text_match", "location", "timed", "discovery"]},
        "title": {"type": "string"},
        "completion_conditions": CONDITION_LIST_SCHEMA,
        "failure_conditions": CONDITION_LIST_SCHEMA,
        "signal_event": {"type": ["string", "null"]},
        "require_all": {"type": "boolean"},
        "target_count": {"type": "integer", "minimum": 0},
        "target_text": {"type": "string"},
        "target_location": {"type": "string"},
        "time_limit": {"type": ["number", "null"]},
        "fail_quest_on_expire": {"type": "boolean"},
        "allow_list": {"type": "array", "items": {"type": "string"}},
        "required_discoveries": {"type": ["integer", "null"], "minimum": 0}
    },
    "additionalProperties": False
}

GROUP_SCHEMA = {
    "type": "object",
    "properties": {
        "name": {"type": "string"},
        "execution": {"type": "string", "enum": ["sequential", "parallel"]},
        "rule": {"type": "string", "enum": ["all", "any", "at_least"]},
        "required_count": {"type": "integer", "minimum": 0},
        "failure_tolerant": {"type": "boolean"},
        "tasks": {"type": "array", "items": TASK_SCHEMA}
    },
    "additionalProperties": False
}

TRANSITION_SCHEMA = {
    "type": "object",
    "required": ["target"],
    "properties": {
        "target": {"type": "integer"},
        "trigger": {"type": "string", "enum": ["on_groups_complete", "on_conditions_met", "manual", "player_choice"]},
        "conditions": CONDITION_LIST_SCHEMA,
        "priority": {"type": "integer"},
        "label": {"type": "string"},
        "choice_id": {"type": ["string", "null"]},
        "flag_modifications": {"type": "array", "items": FLAG_MODIFICATION_SCHEMA}
    },
    "additionalProperties": False
}

STAGE_SCHEMA = {
    "type": "object",
    "required": ["index"],
    "properties": {
        "index": {"type": "integer"},
        "name": {"type": "string"},
        "groups": {"type": "array", "items": GROUP_SCHEMA},
        "transitions": {"type": "array", "items": TRANSITION_SCHEMA},
        "terminal": {"type": "boolean"},
        "optional": {"type": "boolean"},
        "hidden": {"type": "boolean"},
        "fail_quest_on_failure": {"type": "boolean"}
    },
    "additionalProperties": False
}

REWARD_LIST_SCHEMA = {
    "type": "array",
    "items": {
        "type": "object",
        "required": ["type"],
        "properties": {
            "type": {"type": "string", "minLength": 1},
            "amount": {"type": "integer"}
        },
        "additionalProperties": False
    }
}

QUEST_SCHEMA = {
    "type": "object",
    "required": ["id", "stages"],
    "properties": {
        "id": {"type": "string", "minLength": 1},
        "title": {"type": "string"},
        "description": {"type": "string"},
        "stages": {"type": "array", "items": STAGE_SCHEMA},
        "start_conditions": CONDITION_LIST_SCHEMA,
        "failure_conditions": CONDITION_LIST_SCHEMA,
        "task_failure_conditions": CONDITION_LIST_SCHEMA,
        "rewards": REWARD_LIST_SCHEMA
    },
    "additionalProperties": False
}

QUESTLINE_SCHEMA = {
    "type": "object",
    "required": ["id", "quests"],
    "properties": {
        "id": {"type": "string", "minLength": 1},
        "title": {"type": "string"},
        "description": {"type": "string"},
        "quests": {"type": "array", "items": {"type": "string", "minLength": 1}},
        "prerequisite": {"type": ["string", "null"]},
        "fail_on_quest_failed": {"type": "boolean"},
        "rewards": REWARD_LIST_SCHEMA
    },
    "additionalProperties": False
}

QUEST_LIST_SCHEMA = {
    "type": "object",
    "required": ["quests"],
    "properties": {
        "quests": {"type": "array", "items": QUEST_SCHEMA},
        "questlines": {"type": "array", "items": QUESTLINE_SCHEMA}
    },
    "additionalProperties": False
}

_STATES = ["NotStarted", "InProgress", "Completed", "Failed"]

QUEST_SNAPSHOT_SCHEMA = {
    "type": "object",
    "required": ["quest_id", "state", "current_stage_index"],
    "properties": {
        "quest_id": {"type": "string", "minLength": 1},
        "state": {"type": "string", "enum": _STATES},
        "current_stage_index": {"type": "integer"},
        "group_cursor": {"type": ["integer", "null"]},
        "stage_states": {
            "type": "object",
            "additionalProperties": {
                "type": "string",
                "enum": ["NotReached", "InProgress", "Completed", "Failed", "Skipped"]
            }
        },
        "tasks": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["task_id", "state"],
                "properties": {
                    "task_id": {"type": "string"},
                    "state": {"type": "string", "enum": _STATES},
                    "payload": {
                        "type": ["integer", "number", "boolean", "string", "array", "null"],
                        "items": {"type": "string"}
                    }
                },
                "additionalProperties": False
            }
        },
        "choice_decisions": {"type": "object", "additionalProperties": {"type": "string"}}
    },
    "additionalProperties": False
}

QUESTLINE_SNAPSHOT_SCHEMA = {
    "type": "object",
    "required": ["questline_id", "state"],
    "properties": {
        "questline_id": {"type": "string", "minLength": 1},
        "state": {"type": "string", "enum": ["Locked", "Available", "InProgress", "Completed", "Failed"]},
        "completed_quests": {"type": "array", "items": {"type": "string"}}
    },
    "additionalProperties": False
}

SNAPSHOT_SCHEMA = {
    "type": "object",
    "required": ["version", "quests"],
    "properties": {
        "version": {"type": "integer", "minimum": 1},
        "quests": {"type": "array", "items": QUEST_SNAPSHOT_SCHEMA},
        "questlines": {"type": "array", "items": QUESTLINE_SNAPSHOT_SCHEMA},
        "world_flags": {
            "type": "object",
            "additionalProperties": {"type": ["boolean", "integer"]}
        }
    },
    "additionalProperties": False
}
