#!/usr/bin/env python3
"""
Demonstration of the quest progression engine.

This demo shows how the engine works with:
- Loading quest definitions from JSON
- Event-driven task progress and stage transitions
- Player choices gated by world flags
- Quest chains started by another quest's completion
- A quest line tracking the chained quests
- Timed tasks driven by an external tick
- Snapshot capture and restore
"""

import sys
import os

# Add the current directory to Python path
sys.path.insert(0, os.path.dirname(__file__))

from config import configure_logging
from questengine import EventBus, QuestManager, WorldFlagStore

DEMO_QUESTS = os.path.join(os.path.dirname(__file__), "assets", "quests", "demo_quests.json")


def create_demo_manager(rewards_log=None):
    """Create a manager with the demo quests registered."""
    if rewards_log is None:
        rewards_log = []
    manager = QuestManager(
        bus=EventBus(),
        flags=WorldFlagStore({"reputation": 10}),
        rewards={
            "xp": lambda amount: rewards_log.append(("xp", amount)),
            "gold": lambda amount: rewards_log.append(("gold", amount)),
        },
    )
    manager.load_file(DEMO_QUESTS)
    return manager


def describe(quest):
    stage = quest.current_stage
    stage_name = stage.name if stage is not None else "-"
    tasks = ", ".join(f"{t.id}={t.state.value}" for t in quest.current_tasks) or "none"
    return (f"{quest.title}: {quest.state.value}, stage {quest.current_stage_index} ({stage_name}), "
            f"progress {quest.progress:.2f}, current tasks: {tasks}")


def describe_line(line):
    return (f"{line.title}: {line.state.value}, "
            f"{line.completed_count}/{line.total_count} quests, next: {line.next_quest_id or '-'}")


def demo_linear_progress(manager):
    """Demonstrate counter progress driven by bus events."""
    print("=== DEMO: Event-driven Progress ===")

    line = manager.add_questline("village_defense")
    quest = manager.add_quest("wolves_at_the_gate")
    # waits for its start condition
    manager.add_quest("elders_gratitude")
    print(f"  {describe(quest)}")
    print(f"  {describe_line(line)}")

    for _ in range(3):
        manager.bus.raise_event("enemy_killed", "wolf")
        print(f"  wolf killed -> {describe(quest)}")
    manager.bus.raise_event("enemy_killed", "rabbit")
    print(f"  rabbit killed (ignored) -> {describe(quest)}")
    print()


def demo_player_choice(manager):
    """Demonstrate the choice gate and world flag side effects."""
    print("=== DEMO: Player Choice ===")

    quest = manager.get_quest("wolves_at_the_gate")
    manager.bus.raise_event("clue_found", "paw_print")
    manager.bus.raise_event("clue_found", "torn_fur")
    manager.bus.raise_event("location_reached", "wolf_den")
    print(f"  {describe(quest)}")
    print(f"  awaiting choice: {quest.awaiting_choice}")

    for choice in quest.get_choices(include_unavailable=True):
        print(f"  choice {choice.choice_id!r}: {choice.label} (available: {choice.available})")

    print(f"  select 'spare' with reputation {manager.flags.get('reputation')}: "
          f"{quest.select_choice('spare')}")

    manager.flags.set("reputation", 25)
    print(f"  reputation raised to 25; implicit choice: {quest.get_implicit_choice()}")
    print(f"  select 'spare': {quest.select_choice('spare')}")
    print(f"  {describe(quest)}")
    print(f"  reputation now {manager.flags.get('reputation')}, decisions {quest.choice_decisions}")
    print()


def demo_quest_chain(manager):
    """Demonstrate a quest started by another quest's completion."""
    print("=== DEMO: Quest Chain & Timed Task ===")

    follow_up = manager.get_quest("elders_gratitude")
    print(f"  {describe(follow_up)}")

    manager.bus.raise_event("player_said", "Moonrise")
    print(f"  said 'Moonrise' (case-sensitive) -> {describe(follow_up)}")
    manager.bus.raise_event("player_said", "moonrise")
    print(f"  said 'moonrise' -> {describe(follow_up)}")

    snapshot = manager.capture_snapshot()

    for _ in range(4):
        manager.tick(10.0)
        task = follow_up.get_task("reach_mill")
        print(f"  tick 10s -> remaining {task.remaining:.0f}s, task {task.state.value}")
    print(f"  {describe(follow_up)}")

    manager.restore_snapshot(snapshot)
    restored = manager.get_quest("elders_gratitude")
    print(f"  restored snapshot -> {describe(restored)}")
    manager.tick(5.0)
    manager.bus.raise_event("mill_reached")
    print(f"  reached the mill in time -> {describe(restored)}")
    print(f"  {describe_line(manager.get_questline('village_defense'))}")
    print()


def main():
    """Run all demos."""
    configure_logging()
    print("Quest Progression Engine - Demo")
    print("=" * 50)
    print()

    rewards_log = []
    manager = create_demo_manager(rewards_log)
    demo_linear_progress(manager)
    demo_player_choice(manager)
    print(f"Rewards granted: {rewards_log}")
    print()
    demo_quest_chain(manager)

    print("Completed quests:", ", ".join(q.id for q in manager.completed_quests()))
    return manager


if __name__ == "__main__":
    main()
