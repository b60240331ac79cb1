"""Test quest and system snapshots."""

import sys
import os
import json
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

import pytest

from questengine.core.events import EventBus
from questengine.core.world_flags import WorldFlagStore
from questengine.quest.context import QuestContext
from questengine.quest.errors import SnapshotError, UnknownQuestError
from questengine.quest.manager import QuestManager
from questengine.quest.model import (
    ConditionDef, QuestDef, QuestState, StageDef, StageState, TaskDef, TaskGroupDef, TaskKind, TaskState,
    TransitionDef, TransitionTrigger,
)
from questengine.quest.runtime import QuestRuntime
from questengine.quest.snapshot import capture_quest, restore_quest, validate_snapshot

HUNT = QuestDef(id="hunt", stages=(
    StageDef(index=0, groups=(TaskGroupDef(tasks=(
        TaskDef(id="kill", kind=TaskKind.COUNTER, target_count=3, signal_event="wolf"),)),),
        transitions=(TransitionDef(target=10),)),
    StageDef(index=10, terminal=True),
))

ERRANDS = QuestDef(id="errands", stages=(
    StageDef(index=0, groups=(TaskGroupDef(tasks=(
        TaskDef(id="a", completion_conditions=(ConditionDef("event", {"key": "a_done"}),)),
        TaskDef(id="b", completion_conditions=(ConditionDef("event", {"key": "b_done"}),)),
    )),), transitions=(TransitionDef(target=10),)),
    StageDef(index=10, terminal=True),
))

CROSSROADS = QuestDef(id="crossroads", stages=(
    StageDef(index=0, transitions=(
        TransitionDef(target=10, trigger=TransitionTrigger.PLAYER_CHOICE, choice_id="left"),
        TransitionDef(target=20, trigger=TransitionTrigger.PLAYER_CHOICE, choice_id="right"),
    )),
    StageDef(index=10, terminal=True),
    StageDef(index=20, terminal=True),
))


def fresh(definition):
    return QuestRuntime(definition, QuestContext(bus=EventBus(), flags=WorldFlagStore()))


def test_capture_in_progress_quest():
    quest = fresh(HUNT)
    quest.start()
    quest.context.bus.raise_event("wolf")
    quest.context.bus.raise_event("wolf")

    data = capture_quest(quest)

    assert data == {
        "quest_id": "hunt",
        "state": "InProgress",
        "current_stage_index": 0,
        "group_cursor": 0,
        "stage_states": {"0": "InProgress"},
        "tasks": [{"task_id": "kill", "state": "InProgress", "payload": 2}],
        "choice_decisions": {},
    }


def test_restore_resumes_progress():
    original = fresh(HUNT)
    original.start()
    original.context.bus.raise_event("wolf")
    original.context.bus.raise_event("wolf")
    data = json.loads(json.dumps(capture_quest(original)))

    restored = fresh(HUNT)
    restore_quest(restored, data)

    assert restored.state is QuestState.IN_PROGRESS
    assert restored.get_task("kill").count == 2
    assert restored.progress == pytest.approx(2 / 3)

    restored.context.bus.raise_event("wolf")

    assert restored.state is QuestState.COMPLETED
    assert restored.current_stage_index == 10


def test_restore_does_not_refire_completed_tasks():
    original = fresh(ERRANDS)
    original.start()
    original.context.bus.raise_event("a_done")
    data = capture_quest(original)

    restored = fresh(ERRANDS)
    events = []
    restored.task_completed.connect(lambda q, t: events.append(("completed", t.id)))
    restored.task_started.connect(lambda q, t: events.append(("started", t.id)))
    restore_quest(restored, data)

    assert restored.get_task("a").state is TaskState.COMPLETED
    assert restored.get_task("b").state is TaskState.IN_PROGRESS
    assert events == []

    restored.context.bus.raise_event("a_done")
    restored.context.bus.raise_event("b_done")

    assert events == [("completed", "b")]
    assert restored.state is QuestState.COMPLETED


def test_restore_derives_missing_group_cursor():
    original = fresh(ERRANDS)
    original.start()
    data = capture_quest(original)
    del data["group_cursor"]

    restored = fresh(ERRANDS)
    restore_quest(restored, data)

    assert restored.current_stage.group_cursor == 0
    assert restored.current_tasks == [restored.get_task("a")]


def test_choice_decisions_survive():
    original = fresh(CROSSROADS)
    original.start()
    assert original.select_choice("left")
    data = json.loads(json.dumps(capture_quest(original)))

    assert data["state"] == "Completed"
    assert data["choice_decisions"] == {"0": "left"}

    restored = fresh(CROSSROADS)
    restore_quest(restored, data)

    assert restored.state is QuestState.COMPLETED
    assert restored.choice_decisions == {0: "left"}
    assert restored.get_stage(0).state is StageState.COMPLETED
    assert restored.get_stage(20).state is StageState.NOT_REACHED


def test_restore_rejects_other_quest():
    original = fresh(HUNT)
    original.start()
    with pytest.raises(SnapshotError):
        restore_quest(fresh(ERRANDS), capture_quest(original))


def test_restore_warns_about_unknown_task(caplog):
    original = fresh(HUNT)
    original.start()
    data = capture_quest(original)
    data["tasks"].append({"task_id": "ghost", "state": "Completed", "payload": None})

    restore_quest(fresh(HUNT), data)

    assert "unknown task 'ghost'" in caplog.text


class TestSystemSnapshot:
    """Manager level capture and restore, world flags included."""

    def make_manager(self):
        manager = QuestManager(bus=EventBus(), flags=WorldFlagStore())
        manager.register(HUNT)
        manager.register(ERRANDS)
        return manager

    def test_round_trip_through_manager(self):
        manager = self.make_manager()
        manager.add_quest("hunt")
        manager.add_quest("errands")
        manager.bus.raise_event("wolf")
        manager.bus.raise_event("a_done")
        manager.flags.set("reputation", 15)
        data = json.loads(json.dumps(manager.capture_snapshot()))

        assert data["version"] == 1
        assert data["world_flags"] == {"reputation": 15}

        other = self.make_manager()
        other.restore_snapshot(data)

        assert other.flags.get("reputation") == 15
        assert other.get_quest("hunt").get_task("kill").count == 1
        assert other.get_quest("errands").get_task("b").is_active

        other.bus.raise_event("b_done")
        assert other.is_completed("errands")

    def test_restore_replaces_existing_quests(self):
        manager = self.make_manager()
        manager.add_quest("hunt")
        snapshot = manager.capture_snapshot()
        manager.add_quest("errands")

        manager.restore_snapshot(snapshot)

        assert [q.id for q in manager.quests] == ["hunt"]
        assert manager.bus.subscriber_count("a_done") == 0

    def test_unregistered_quest_leaves_state_untouched(self):
        manager = self.make_manager()
        manager.add_quest("hunt")
        snapshot = manager.capture_snapshot()
        snapshot["quests"][0]["quest_id"] = "unknown"

        with pytest.raises(UnknownQuestError):
            manager.restore_snapshot(snapshot)

        assert manager.is_active("hunt")

    def test_newer_version_rejected(self):
        with pytest.raises(SnapshotError):
            validate_snapshot({"version": 2, "quests": []})

    def test_malformed_snapshot_rejected(self):
        bad = {"version": 1, "quests": [{"quest_id": "hunt", "state": "Sleeping", "current_stage_index": 0}]}
        with pytest.raises(SnapshotError) as excinfo:
            self.make_manager().restore_snapshot(bad)
        assert "quests/0/state" in str(excinfo.value)
