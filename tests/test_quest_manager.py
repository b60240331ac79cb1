"""Test the quest manager: admission, policies, chains and queries."""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

import pytest

from questengine.core.events import EventBus
from questengine.core.world_flags import WorldFlagStore
from questengine.quest.errors import QuestDefinitionError, UnknownQuestError
from questengine.quest.manager import QuestManager
from questengine.quest.model import (
    ConditionDef, QuestDef, QuestState, RewardDef, StageDef, TaskDef, TaskGroupDef, TaskKind,
    TransitionDef,
)


def simple_quest(quest_id, event_key=None, start_conditions=(), rewards=()):
    """One stage with a flag task completed by an event, then a terminal stage."""
    event_key = event_key or f"{quest_id}_done"
    return QuestDef(
        id=quest_id,
        start_conditions=start_conditions,
        rewards=rewards,
        stages=(
            StageDef(index=0, groups=(TaskGroupDef(tasks=(TaskDef(
                id=f"{quest_id}_task",
                completion_conditions=(ConditionDef("event", {"key": event_key}),)),)),),
                transitions=(TransitionDef(target=1),)),
            StageDef(index=1, terminal=True),
        ),
    )


@pytest.fixture
def manager():
    manager = QuestManager(bus=EventBus(), flags=WorldFlagStore(), allow_multiple_active=True,
                           allow_replay=False)
    manager.register(simple_quest("intro"))
    return manager


def test_register_duplicate_rejected(manager):
    with pytest.raises(QuestDefinitionError):
        manager.register(simple_quest("intro"))
    manager.register(simple_quest("intro"), replace=True)


def test_add_unknown_quest(manager):
    with pytest.raises(UnknownQuestError):
        manager.add_quest("missing")


def test_add_quest_starts_it(manager):
    quest = manager.add_quest("intro")

    assert quest.state is QuestState.IN_PROGRESS
    assert manager.is_active("intro")
    assert manager.active_quests() == [quest]
    assert manager.quest_state("intro") is QuestState.IN_PROGRESS
    assert manager.quest_state("missing") is None


def test_add_quest_twice_rejected(manager, caplog):
    manager.add_quest("intro")
    assert manager.add_quest("intro") is None
    assert "already added" in caplog.text


def test_completion_and_queries(manager):
    completed = []
    manager.on_quest_completed.connect(lambda q: completed.append(q.id))
    manager.add_quest("intro")

    manager.bus.raise_event("intro_done")

    assert manager.is_completed("intro")
    assert [q.id for q in manager.completed_quests()] == ["intro"]
    assert manager.active_quests() == []
    assert completed == ["intro"]


def test_start_conditions_subscribed_until_met(manager):
    """A quest waits for its start conditions and then starts by itself."""
    manager.register(simple_quest(
        "ambush", start_conditions=(ConditionDef("flag", {"key": "night", "value": True}),)))

    quest = manager.add_quest("ambush")
    assert quest.state is QuestState.NOT_STARTED

    manager.flags.set("night", True)

    assert quest.state is QuestState.IN_PROGRESS
    assert quest.current_stage_index == 0


def test_force_start_skips_conditions(manager):
    manager.register(simple_quest("locked", start_conditions=(ConditionDef("never"),)))
    quest = manager.add_quest("locked", force_start=True)
    assert quest.state is QuestState.IN_PROGRESS


def test_quest_chain_via_quest_state(manager):
    manager.register(simple_quest(
        "sequel",
        start_conditions=(ConditionDef("quest_state", {"quest_id": "intro", "state": "Completed"}),)))
    manager.add_quest("intro")
    sequel = manager.add_quest("sequel")
    assert sequel.state is QuestState.NOT_STARTED

    manager.bus.raise_event("intro_done")

    assert sequel.state is QuestState.IN_PROGRESS


def test_single_active_policy():
    manager = QuestManager(allow_multiple_active=False)
    manager.register(simple_quest("a"))
    manager.register(simple_quest("b"))

    manager.add_quest("a")
    second = manager.add_quest("b")

    assert manager.is_active("a")
    assert second.state is QuestState.NOT_STARTED
    assert not manager.start_quest("b")
    manager.bus.raise_event("a_done")
    assert manager.start_quest("b")


def test_replay_policy():
    manager = QuestManager(allow_replay=True)
    manager.register(simple_quest("daily"))
    manager.add_quest("daily")
    manager.bus.raise_event("daily_done")

    replay = manager.add_quest("daily")

    assert replay is not None
    assert replay.state is QuestState.IN_PROGRESS


def test_no_replay_by_default(manager):
    manager.add_quest("intro")
    manager.bus.raise_event("intro_done")
    assert manager.add_quest("intro") is None


def test_fail_remove_restart(manager):
    manager.add_quest("intro")

    assert manager.fail_quest("intro")
    assert manager.is_failed("intro")
    assert [q.id for q in manager.failed_quests()] == ["intro"]

    assert manager.restart_quest("intro")
    assert manager.is_active("intro")

    assert manager.remove_quest("intro")
    assert manager.get_quest("intro") is None
    assert not manager.remove_quest("intro")
    assert manager.bus.subscriber_count("intro_done") == 0


def test_complete_quest_grants_rewards():
    given = []
    manager = QuestManager(rewards={"xp": given.append})
    manager.register(simple_quest("intro", rewards=(RewardDef("xp", 50),)))
    manager.add_quest("intro")

    assert manager.complete_quest("intro")

    assert given == [50]
    assert not manager.complete_quest("intro")


def test_tick_drives_timed_tasks():
    manager = QuestManager()
    manager.register(QuestDef(id="race", stages=(
        StageDef(index=0, terminal=True, groups=(TaskGroupDef(tasks=(
            TaskDef(id="run", kind=TaskKind.TIMED, time_limit=3, fail_quest_on_expire=True),)),)),
    )))
    manager.add_quest("race")

    manager.tick(2)
    assert manager.is_active("race")
    manager.tick(2)

    assert manager.is_failed("race")


def test_load_file(manager, tmp_path):
    path = tmp_path / "quests.json"
    path.write_text('{"id": "from_file", "stages": [{"index": 0, "terminal": true}]}', encoding="utf-8")

    definitions = manager.load_file(str(path))

    assert [d.id for d in definitions] == ["from_file"]
    assert manager.add_quest("from_file").state is QuestState.COMPLETED
