"""Collaborators shared by the runtime entities of one quest manager."""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional

from ..core.events import CascadeQueue, EventBus
from ..core.world_flags import WorldFlagStore
from .model import QuestLineState, QuestState

# Raised on the bus whenever a managed quest changes state; payload is (quest_id, QuestState)
QUEST_STATE_EVENT = "quest.state_changed"
# Same for quest lines; payload is (questline_id, QuestLineState)
QUESTLINE_STATE_EVENT = "questline.state_changed"

RewardHandler = Callable[[int], None]


@dataclass
class QuestContext:
    """Everything a runtime entity needs from the outside world."""
    bus: EventBus = field(default_factory=EventBus)
    flags: WorldFlagStore = field(default_factory=WorldFlagStore)
    rewards: Dict[str, RewardHandler] = field(default_factory=dict)
    quest_state_lookup: Optional[Callable[[str], Optional[QuestState]]] = None
    questline_state_lookup: Optional[Callable[[str], Optional[QuestLineState]]] = None

    @property
    def queue(self) -> CascadeQueue:
        return self.bus.queue

    def quest_state(self, quest_id: str) -> Optional[QuestState]:
        if self.quest_state_lookup is None:
            return None
        return self.quest_state_lookup(quest_id)

    def questline_state(self, questline_id: str) -> Optional[QuestLineState]:
        if self.questline_state_lookup is None:
            return None
        return self.questline_state_lookup(questline_id)
