"""Test stage runtimes: group cursor, transition policy and player choices."""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

import pytest

from questengine.core.events import EventBus
from questengine.core.world_flags import FlagModification, FlagOp, WorldFlagStore
from questengine.quest.context import QuestContext
from questengine.quest.model import (
    ConditionDef, StageDef, StageState, TaskDef, TaskGroupDef, TaskGroupState, TaskState,
    TransitionDef, TransitionTrigger,
)
from questengine.quest.stages import StageRuntime

REPUTATION_20 = ConditionDef("flag", {"key": "reputation", "compare": "ge", "value": 20})


@pytest.fixture
def context():
    return QuestContext(bus=EventBus(), flags=WorldFlagStore({"reputation": 10}))


def group_of(*task_ids):
    return TaskGroupDef(tasks=tuple(
        TaskDef(id=t, completion_conditions=(ConditionDef("event", {"key": f"{t}_done"}),))
        for t in task_ids
    ))


def make_stage(context, **kwargs):
    kwargs.setdefault("index", 0)
    stage = StageRuntime(StageDef(**kwargs), context)
    outcome = []
    stage.on_completed.connect(lambda s, target: outcome.append(("completed", target)))
    stage.on_failed.connect(lambda s: outcome.append(("failed", None)))
    stage.on_choices_available.connect(lambda s: outcome.append(("choices", None)))
    return stage, outcome


def test_groups_run_in_order(context):
    stage, outcome = make_stage(context, groups=(group_of("a"), group_of("b")),
                                transitions=(TransitionDef(target=10),))
    stage.enter()
    first, second = stage.groups

    assert stage.group_cursor == 0
    assert second.state is TaskGroupState.NOT_STARTED
    context.bus.raise_event("a_done")
    assert stage.group_cursor == 1
    assert second.state is TaskGroupState.IN_PROGRESS
    assert first.state is TaskGroupState.COMPLETED
    context.bus.raise_event("b_done")

    assert stage.state is StageState.COMPLETED
    assert outcome == [("completed", 10)]


def test_terminal_stage_completes_without_target(context):
    stage, outcome = make_stage(context, groups=(group_of("a"),), terminal=True,
                                transitions=(TransitionDef(target=10),))
    stage.enter()
    context.bus.raise_event("a_done")
    assert outcome == [("completed", None)]


def test_zero_groups_evaluates_transitions_on_enter(context):
    stage, outcome = make_stage(context, transitions=(TransitionDef(target=20),))
    stage.enter()
    assert outcome == [("completed", 20)]


def test_highest_priority_valid_transition_wins(context):
    stage, outcome = make_stage(context, groups=(group_of("a"),), transitions=(
        TransitionDef(target=10, priority=1),
        TransitionDef(target=20, priority=5, conditions=(REPUTATION_20,)),
        TransitionDef(target=30, priority=3),
        TransitionDef(target=40, priority=3),
    ))
    stage.enter()
    context.bus.raise_event("a_done")
    assert outcome == [("completed", 30)]


def test_equal_priority_keeps_authoring_order(context):
    stage, outcome = make_stage(context, groups=(group_of("a"),), transitions=(
        TransitionDef(target=40),
        TransitionDef(target=30),
    ))
    stage.enter()
    context.bus.raise_event("a_done")
    assert outcome == [("completed", 40)]


def test_no_valid_transition_falls_back_to_terminal(context, caplog):
    stage, outcome = make_stage(context, groups=(group_of("a"),), transitions=(
        TransitionDef(target=10, conditions=(REPUTATION_20,)),
    ))
    stage.enter()
    context.bus.raise_event("a_done")

    assert outcome == [("completed", None)]
    assert "Treating as terminal" in caplog.text


def test_unmet_conditions_transition_does_not_hold_stage_open(context, caplog):
    stage, outcome = make_stage(context, groups=(group_of("a"),), transitions=(
        TransitionDef(target=50, trigger=TransitionTrigger.ON_CONDITIONS_MET, conditions=(REPUTATION_20,)),
    ))
    stage.enter()
    context.bus.raise_event("a_done")

    assert stage.state is StageState.COMPLETED
    assert outcome == [("completed", None)]
    assert "Treating as terminal" in caplog.text
    context.flags.set("reputation", 30)
    assert outcome == [("completed", None)]


def test_manual_only_stage_ends_when_groups_complete(context, caplog):
    stage, outcome = make_stage(context, groups=(group_of("a"),), transitions=(
        TransitionDef(target=10, trigger=TransitionTrigger.MANUAL),
    ))
    stage.enter()
    context.bus.raise_event("a_done")

    assert outcome == [("completed", None)]
    assert "Treating as terminal" in caplog.text
    assert not stage.trigger_manual()


def test_conditions_met_transition_fires_mid_stage(context):
    """An on_conditions_met transition abandons the running groups."""
    stage, outcome = make_stage(context, groups=(group_of("a"),), transitions=(
        TransitionDef(target=10),
        TransitionDef(target=99, trigger=TransitionTrigger.ON_CONDITIONS_MET,
                      conditions=(ConditionDef("event", {"key": "guards_alerted"}),)),
    ))
    stage.enter()
    task = stage.groups[0].tasks[0]

    context.bus.raise_event("guards_alerted")

    assert outcome == [("completed", 99)]
    assert task.state is TaskState.IN_PROGRESS
    assert task.abandoned
    assert context.bus.subscriber_count("a_done") == 0
    assert context.bus.subscriber_count("guards_alerted") == 0


def test_conditions_met_transition_with_flag(context):
    stage, outcome = make_stage(context, groups=(group_of("a"),), transitions=(
        TransitionDef(target=10),
        TransitionDef(target=50, trigger=TransitionTrigger.ON_CONDITIONS_MET, conditions=(REPUTATION_20,)),
    ))
    stage.enter()
    context.flags.set("reputation", 30)
    assert outcome == [("completed", 50)]


def test_group_failure_fails_stage(context):
    fragile = TaskGroupDef(tasks=(TaskDef(
        id="sneak",
        completion_conditions=(ConditionDef("event", {"key": "vault_reached"}),),
        failure_conditions=(ConditionDef("event", {"key": "alert"}),),
    ),))
    stage, outcome = make_stage(context, groups=(fragile,), transitions=(
        TransitionDef(target=10),
        TransitionDef(target=20, trigger=TransitionTrigger.ON_CONDITIONS_MET,
                      conditions=(ConditionDef("event", {"key": "vault_reached"}),)),
    ))
    stage.enter()

    context.bus.raise_event("alert")

    assert stage.state is StageState.FAILED
    assert outcome == [("failed", None)]
    assert context.bus.subscriber_count("vault_reached") == 0


def test_manual_transition(context):
    stage, outcome = make_stage(context, groups=(group_of("a"),), transitions=(
        TransitionDef(target=10, trigger=TransitionTrigger.MANUAL, conditions=(REPUTATION_20,)),
        TransitionDef(target=20, trigger=TransitionTrigger.MANUAL),
    ))
    stage.enter()
    assert stage.trigger_manual()
    assert outcome == [("completed", 20)]
    assert not stage.trigger_manual()


def test_reenter_completed_stage_resets_it(context):
    stage, outcome = make_stage(context, groups=(group_of("a"),), transitions=(TransitionDef(target=10),))
    stage.enter()
    context.bus.raise_event("a_done")
    assert stage.state is StageState.COMPLETED

    assert stage.enter()

    assert stage.state is StageState.IN_PROGRESS
    assert stage.groups[0].tasks[0].state is TaskState.IN_PROGRESS
    assert not stage.enter()


def test_skip_and_reset(context):
    stage, _ = make_stage(context, groups=(group_of("a"),), transitions=(TransitionDef(target=10),))
    stage.enter()
    assert stage.skip()
    assert stage.state is StageState.SKIPPED
    assert context.bus.subscriber_count("a_done") == 0

    stage.reset()
    assert stage.state is StageState.NOT_REACHED
    assert stage.group_cursor == -1


class TestPlayerChoice:
    """Choice gate, exclusivity and implicit choice."""

    def make_choice_stage(self, context):
        return make_stage(context, index=10, groups=(group_of("a"),), transitions=(
            TransitionDef(target=20, trigger=TransitionTrigger.PLAYER_CHOICE, label="Slay",
                          choice_id="slay",
                          flag_modifications=(FlagModification("alpha_slain"),)),
            TransitionDef(target=30, trigger=TransitionTrigger.PLAYER_CHOICE, label="Spare",
                          priority=1, conditions=(REPUTATION_20,),
                          flag_modifications=(FlagModification("reputation", FlagOp.ADD, 5),)),
        ))

    def test_stage_awaits_choice(self, context):
        stage, outcome = self.make_choice_stage(context)
        stage.enter()
        context.bus.raise_event("a_done")

        assert stage.state is StageState.IN_PROGRESS
        assert stage.awaiting_choice
        assert outcome == [("choices", None)]

    def test_gated_choice_excluded_until_condition_met(self, context):
        stage, _ = self.make_choice_stage(context)
        stage.enter()

        assert [c.choice_id for c in stage.get_choices()] == ["slay"]
        everything = stage.get_choices(include_unavailable=True)
        assert [(c.choice_id, c.available) for c in everything] == [("choice_to_30", False), ("slay", True)]

        context.flags.apply_modification(FlagModification("reputation", FlagOp.SET, 25))

        assert [c.choice_id for c in stage.get_choices()] == ["choice_to_30", "slay"]

    def test_select_unavailable_choice_is_rejected(self, context, caplog):
        stage, outcome = self.make_choice_stage(context)
        stage.enter()

        assert stage.select_choice("choice_to_30") is None
        assert stage.select_choice("flee") is None

        assert stage.state is StageState.IN_PROGRESS
        assert context.flags.get("reputation") == 10
        assert outcome == []
        assert "not available" in caplog.text
        assert "Unknown choice id" in caplog.text

    def test_select_choice_applies_modifications_once(self, context):
        context.flags.set("reputation", 25)
        stage, outcome = self.make_choice_stage(context)
        stage.enter()
        context.bus.raise_event("a_done")

        transition = stage.select_choice("choice_to_30")

        assert transition.target == 30
        assert context.flags.get("reputation") == 30
        assert outcome == [("choices", None), ("completed", 30)]
        assert stage.select_choice("choice_to_30") is None
        assert context.flags.get("reputation") == 30

    def test_implicit_choice(self, context):
        stage, outcome = self.make_choice_stage(context)
        stage.enter()
        context.bus.raise_event("a_done")
        assert stage.get_implicit_choice() is None

        context.flags.set("reputation", 20)

        implicit = stage.get_implicit_choice()
        assert implicit.choice_id == "choice_to_30"
        assert implicit.label == "Spare"
        assert outcome == [("choices", None), ("choices", None)]
