"""Smoke test for the demo script and its quest file."""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

import quest_engine_demo


def test_demo_runs(capsys):
    manager = quest_engine_demo.main()

    assert manager.is_completed("wolves_at_the_gate")
    assert manager.is_completed("elders_gratitude")
    assert manager.is_questline_completed("village_defense")
    wolves = manager.get_quest("wolves_at_the_gate")
    assert wolves.choice_decisions == {10: "spare"}
    assert manager.flags.get("reputation") == 30
    assert "Completed quests" in capsys.readouterr().out


def test_demo_rewards():
    rewards = []
    manager = quest_engine_demo.create_demo_manager(rewards)
    manager.add_quest("wolves_at_the_gate")

    manager.complete_quest("wolves_at_the_gate")

    assert rewards == [("xp", 150), ("gold", 40)]
