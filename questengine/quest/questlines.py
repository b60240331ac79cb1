"""Quest lines: storylines that track a set of member quests.

A line does not start or chain its quests; the quest manager reports member
quest lifecycle changes to it and the line derives its own state:
Available -> InProgress once a member quest starts, Completed once every
member quest has completed (an empty line never completes), Failed when a
member fails and the line is authored with fail_on_quest_failed.
"""

import logging
from typing import Any, Callable, Dict, Iterable, Optional, Set

from ..core.events import Signal
from .context import QuestContext
from .model import QuestLineDef, QuestLineState, QuestState

logger = logging.getLogger(__name__)


class QuestLineRuntime:
    """Runtime state of one quest line."""

    def __init__(self, definition: QuestLineDef, context: Optional[QuestContext] = None):
        self.definition = definition
        self.context = context or QuestContext()
        self.state = QuestLineState.AVAILABLE
        self.completed_quests: Set[str] = set()

        self.on_started = Signal("questline_started")
        self.on_updated = Signal("questline_updated")
        self.on_quest_completed = Signal("questline_quest_completed")
        self.on_completed = Signal("questline_completed")
        self.on_failed = Signal("questline_failed")

    def __repr__(self) -> str:
        return f"QuestLineRuntime({self.id!r}, {self.state.value}, {self.completed_count}/{self.total_count})"

    @property
    def id(self) -> str:
        return self.definition.id

    @property
    def title(self) -> str:
        return self.definition.title or self.definition.id

    @property
    def total_count(self) -> int:
        return self.definition.quest_count

    @property
    def completed_count(self) -> int:
        return len(self.completed_quests)

    @property
    def progress(self) -> float:
        """Share of member quests completed; an empty line counts as done."""
        if self.total_count == 0:
            return 1.0
        return self.completed_count / self.total_count

    @property
    def is_finished(self) -> bool:
        return self.state in (QuestLineState.COMPLETED, QuestLineState.FAILED)

    @property
    def next_quest_id(self) -> Optional[str]:
        """First member quest, in authored order, that has not completed."""
        for quest_id in self.definition.quest_ids:
            if quest_id not in self.completed_quests:
                return quest_id
        return None

    def contains(self, quest_id: str) -> bool:
        return quest_id in self.definition.quest_ids

    # Member quest notifications

    def notify_quest_started(self, quest_id: str) -> None:
        if self.is_finished or not self.contains(quest_id):
            return
        if not self._begin():
            self.on_updated.emit(self)

    def notify_quest_completed(self, quest_id: str) -> None:
        if self.is_finished or not self.contains(quest_id):
            return
        self.completed_quests.add(quest_id)
        self._begin()
        self.on_quest_completed.emit(self, quest_id)
        self._check_progress()

    def notify_quest_failed(self, quest_id: str) -> None:
        if self.is_finished or not self.contains(quest_id):
            return
        if self.definition.fail_on_quest_failed:
            self.state = QuestLineState.FAILED
            logger.info("Quest line '%s' failed (quest '%s' failed)", self.id, quest_id)
            self.on_failed.emit(self)
        else:
            self.on_updated.emit(self)

    def sync(self, lookup: Callable[[str], Optional[QuestState]]) -> None:
        """Catch up with member quests that moved before the line was added."""
        states = {quest_id: lookup(quest_id) for quest_id in self.definition.quest_ids}
        if self.definition.fail_on_quest_failed and QuestState.FAILED in states.values():
            failed = next(q for q, s in states.items() if s is QuestState.FAILED)
            self.notify_quest_failed(failed)
            return
        self.completed_quests.update(q for q, s in states.items() if s is QuestState.COMPLETED)
        if any(s in (QuestState.IN_PROGRESS, QuestState.COMPLETED) for s in states.values()):
            self._begin()
        if self.completed_quests:
            self._check_progress()

    # Snapshots

    def capture(self) -> Dict[str, Any]:
        return {
            "questline_id": self.id,
            "state": self.state.value,
            "completed_quests": sorted(self.completed_quests),
        }

    def restore(self, state: QuestLineState, completed_quests: Iterable[str] = ()) -> None:
        """Seed state directly. Emits nothing."""
        self.state = state
        self.completed_quests = {q for q in completed_quests if self.contains(q)}

    # Internal

    def _begin(self) -> bool:
        if self.state is not QuestLineState.AVAILABLE:
            return False
        self.state = QuestLineState.IN_PROGRESS
        logger.info("Quest line '%s' started", self.id)
        self.on_started.emit(self)
        return True

    def _check_progress(self) -> None:
        if self.is_finished:
            return
        if self.total_count and self.completed_count >= self.total_count:
            self.state = QuestLineState.COMPLETED
            logger.info("Quest line '%s' completed", self.id)
            self._give_rewards()
            self.on_completed.emit(self)
        else:
            self.on_updated.emit(self)

    def _give_rewards(self) -> None:
        for reward in self.definition.rewards:
            handler = self.context.rewards.get(reward.reward_type)
            if handler is None:
                logger.warning("Quest line '%s': no reward handler for '%s'", self.id, reward.reward_type)
                continue
            handler(reward.amount)
