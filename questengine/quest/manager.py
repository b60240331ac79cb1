"""Quest manager: definition registry and the set of running quests.

The manager is constructed explicitly and handed to whoever needs it; it
owns its registry, its quest runtimes, the quest lines tracking them and
the QuestContext they share.
"""

import logging
from typing import Dict, List, Optional

from config import get_allow_multiple_active, get_allow_replay
from ..core.events import EventBus, Signal
from ..core.world_flags import WorldFlagStore
from .context import QUEST_STATE_EVENT, QUESTLINE_STATE_EVENT, QuestContext, RewardHandler
from .errors import QuestDefinitionError, UnknownQuestError, UnknownQuestLineError
from .loader import load_catalog
from .model import QuestDef, QuestLineDef, QuestLineState, QuestState
from .questlines import QuestLineRuntime
from .runtime import QuestRuntime
from .snapshot import capture_system, restore_quest, validate_snapshot
from .validator import validate_questline

logger = logging.getLogger(__name__)


class QuestManager:
    """Admits, starts and tracks quest runtimes.

    Args:
        bus: Event source shared with game code
        flags: World flag store shared with game code
        rewards: reward type -> handler(amount)
        allow_multiple_active: More than one quest may run at once (QE_ALLOW_MULTIPLE_ACTIVE)
        allow_replay: A completed quest may be added again (QE_ALLOW_REPLAY)
    """

    def __init__(self, bus: Optional[EventBus] = None, flags: Optional[WorldFlagStore] = None,
                 rewards: Optional[Dict[str, RewardHandler]] = None,
                 allow_multiple_active: Optional[bool] = None,
                 allow_replay: Optional[bool] = None):
        self.context = QuestContext(
            bus=bus or EventBus(),
            flags=flags or WorldFlagStore(),
            rewards=dict(rewards or {}),
            quest_state_lookup=self.quest_state,
            questline_state_lookup=self.questline_state,
        )
        self.allow_multiple_active = (get_allow_multiple_active()
                                      if allow_multiple_active is None else allow_multiple_active)
        self.allow_replay = get_allow_replay() if allow_replay is None else allow_replay
        self.definitions: Dict[str, QuestDef] = {}
        self._quests: Dict[str, QuestRuntime] = {}
        self.questline_definitions: Dict[str, QuestLineDef] = {}
        self._questlines: Dict[str, QuestLineRuntime] = {}

        self.on_quest_added = Signal("quest_added")
        self.on_quest_started = Signal("quest_started")
        self.on_quest_completed = Signal("quest_completed")
        self.on_quest_failed = Signal("quest_failed")
        self.on_quest_removed = Signal("quest_removed")
        self.on_questline_added = Signal("questline_added")
        self.on_questline_started = Signal("questline_started")
        self.on_questline_updated = Signal("questline_updated")
        self.on_questline_completed = Signal("questline_completed")
        self.on_questline_failed = Signal("questline_failed")

    @property
    def bus(self) -> EventBus:
        return self.context.bus

    @property
    def flags(self) -> WorldFlagStore:
        return self.context.flags

    @property
    def quests(self) -> List[QuestRuntime]:
        return list(self._quests.values())

    @property
    def questlines(self) -> List[QuestLineRuntime]:
        return list(self._questlines.values())

    # Registry

    def register(self, definition: QuestDef, replace: bool = False) -> None:
        if definition.id in self.definitions and not replace:
            raise QuestDefinitionError(f"Quest '{definition.id}' is already registered")
        self.definitions[definition.id] = definition

    def register_reward_handler(self, reward_type: str, handler: RewardHandler) -> None:
        self.context.rewards[reward_type] = handler

    def register_questline(self, definition: QuestLineDef, replace: bool = False) -> None:
        if definition.id in self.questline_definitions and not replace:
            raise QuestDefinitionError(f"Quest line '{definition.id}' is already registered")
        self.questline_definitions[definition.id] = definition

    def load_file(self, path: str, strict: Optional[bool] = None) -> List[QuestDef]:
        """Load and register every quest and quest line of a JSON authoring file."""
        definitions, questlines = load_catalog(path, strict=strict)
        for definition in definitions:
            self.register(definition, replace=True)
        for questline in questlines:
            self.register_questline(questline, replace=True)
        return definitions

    def get_definition(self, quest_id: str) -> QuestDef:
        try:
            return self.definitions[quest_id]
        except KeyError:
            raise UnknownQuestError(quest_id)

    def get_questline_definition(self, questline_id: str) -> QuestLineDef:
        try:
            return self.questline_definitions[questline_id]
        except KeyError:
            raise UnknownQuestLineError(questline_id)

    # Lifecycle

    def add_quest(self, quest_id: str, force_start: bool = False) -> Optional[QuestRuntime]:
        """Admit a quest and start it when its start conditions hold.

        If the start conditions are not met yet they are subscribed, and the
        quest starts by itself once they become true.

        Returns:
            The quest runtime, or None if the quest was not admitted
        """
        definition = self.get_definition(quest_id)
        existing = self._quests.get(quest_id)
        if existing is not None:
            if existing.state is QuestState.COMPLETED and self.allow_replay:
                self.remove_quest(quest_id)
            else:
                logger.warning("Quest '%s' already added (%s)", quest_id, existing.state.value)
                return None

        quest = QuestRuntime(definition, self.context)
        self._quests[quest_id] = quest
        quest.quest_started.connect(self._on_started)
        quest.quest_completed.connect(self._on_completed)
        quest.quest_failed.connect(self._on_failed)
        logger.info("Quest '%s' added", quest_id)
        self.on_quest_added.emit(quest)

        if not self.start_quest(quest_id, force=force_start):
            quest.arm_start_conditions(lambda: self.start_quest(quest_id))
        return quest

    def start_quest(self, quest_id: str, force: bool = False) -> bool:
        quest = self._quests.get(quest_id)
        if quest is None:
            return self.add_quest(quest_id, force_start=force) is not None and self.is_active(quest_id)
        if quest.state is not QuestState.NOT_STARTED:
            logger.warning("Quest '%s' cannot start from state %s", quest_id, quest.state.value)
            return False
        if not self.allow_multiple_active and self.active_quests():
            logger.warning("Quest '%s' not started: another quest is active", quest_id)
            return False
        return quest.start(force=force)

    def complete_quest(self, quest_id: str) -> bool:
        quest = self._quests.get(quest_id)
        return quest is not None and quest.complete()

    def fail_quest(self, quest_id: str) -> bool:
        quest = self._quests.get(quest_id)
        return quest is not None and quest.fail()

    def restart_quest(self, quest_id: str) -> bool:
        quest = self._quests.get(quest_id)
        if quest is None:
            logger.warning("Cannot restart quest '%s' - not added", quest_id)
            return False
        return quest.restart()

    def remove_quest(self, quest_id: str) -> bool:
        quest = self._quests.pop(quest_id, None)
        if quest is None:
            return False
        quest.dispose()
        logger.info("Quest '%s' removed", quest_id)
        self.on_quest_removed.emit(quest)
        return True

    def add_questline(self, questline_id: str) -> Optional[QuestLineRuntime]:
        """Start tracking a quest line.

        Member quests that already started or completed are counted right
        away. A failed line may be added again; a locked one is refused.

        Returns:
            The quest line runtime, or None if the line was not admitted
        """
        definition = self.get_questline_definition(questline_id)
        existing = self._questlines.get(questline_id)
        if existing is not None:
            if existing.state is not QuestLineState.FAILED:
                logger.warning("Quest line '%s' already added (%s)", questline_id, existing.state.value)
                return None
            self.remove_questline(questline_id)
        if self.questline_state(questline_id) is QuestLineState.LOCKED:
            logger.info("Quest line '%s' not added: prerequisite '%s' not completed",
                        questline_id, definition.prerequisite)
            return None
        for warning in validate_questline(definition, self.definitions):
            logger.warning("Quest line '%s': %s", questline_id, warning)

        line = QuestLineRuntime(definition, self.context)
        self._questlines[questline_id] = line
        self._connect_questline(line)
        logger.info("Quest line '%s' added", questline_id)
        self.on_questline_added.emit(line)
        self._publish_questline_state(line)
        line.sync(self.quest_state)
        return line

    def remove_questline(self, questline_id: str) -> bool:
        line = self._questlines.pop(questline_id, None)
        if line is None:
            return False
        logger.info("Quest line '%s' removed", questline_id)
        return True

    def tick(self, dt: float) -> None:
        """Advance timed tasks of every active quest."""
        def job() -> None:
            for quest in self.active_quests():
                quest.tick(dt)

        self.context.queue.run(job)

    # Queries

    def get_quest(self, quest_id: str) -> Optional[QuestRuntime]:
        return self._quests.get(quest_id)

    def quest_state(self, quest_id: str) -> Optional[QuestState]:
        quest = self._quests.get(quest_id)
        return quest.state if quest is not None else None

    def active_quests(self) -> List[QuestRuntime]:
        return [q for q in self._quests.values() if q.state is QuestState.IN_PROGRESS]

    def completed_quests(self) -> List[QuestRuntime]:
        return [q for q in self._quests.values() if q.state is QuestState.COMPLETED]

    def failed_quests(self) -> List[QuestRuntime]:
        return [q for q in self._quests.values() if q.state is QuestState.FAILED]

    def is_active(self, quest_id: str) -> bool:
        return self.quest_state(quest_id) is QuestState.IN_PROGRESS

    def is_completed(self, quest_id: str) -> bool:
        return self.quest_state(quest_id) is QuestState.COMPLETED

    def is_failed(self, quest_id: str) -> bool:
        return self.quest_state(quest_id) is QuestState.FAILED

    def get_questline(self, questline_id: str) -> Optional[QuestLineRuntime]:
        return self._questlines.get(questline_id)

    def questline_state(self, questline_id: str) -> Optional[QuestLineState]:
        """State of a tracked line; Available or Locked for a registered one not added yet."""
        line = self._questlines.get(questline_id)
        if line is not None:
            return line.state
        definition = self.questline_definitions.get(questline_id)
        if definition is None:
            return None
        if definition.prerequisite:
            # only a tracked line can have completed
            required = self._questlines.get(definition.prerequisite)
            if required is None or required.state is not QuestLineState.COMPLETED:
                return QuestLineState.LOCKED
        return QuestLineState.AVAILABLE

    def active_questlines(self) -> List[QuestLineRuntime]:
        return [line for line in self._questlines.values()
                if line.state in (QuestLineState.AVAILABLE, QuestLineState.IN_PROGRESS)]

    def completed_questlines(self) -> List[QuestLineRuntime]:
        return [line for line in self._questlines.values() if line.state is QuestLineState.COMPLETED]

    def is_questline_completed(self, questline_id: str) -> bool:
        return self.questline_state(questline_id) is QuestLineState.COMPLETED

    # Snapshots

    def capture_snapshot(self) -> dict:
        return capture_system(self)

    def restore_snapshot(self, data: dict) -> None:
        """Replace every quest, quest line and the world flags with a captured snapshot.

        Raises:
            SnapshotError: If the snapshot is malformed
            UnknownQuestError: If it references an unregistered quest
            UnknownQuestLineError: If it references an unregistered quest line
        """
        validate_snapshot(data)
        for entry in data["quests"]:
            self.get_definition(entry["quest_id"])
        for entry in data.get("questlines", []):
            self.get_questline_definition(entry["questline_id"])

        for quest_id in list(self._quests):
            self.remove_quest(quest_id)
        for questline_id in list(self._questlines):
            self.remove_questline(questline_id)
        self.flags.restore(data.get("world_flags", {}))

        # lines first: a restored quest may start on a questline_state condition
        for entry in data.get("questlines", []):
            questline_id = entry["questline_id"]
            line = QuestLineRuntime(self.get_questline_definition(questline_id), self.context)
            self._questlines[questline_id] = line
            self._connect_questline(line)
            line.restore(QuestLineState(entry["state"]), entry.get("completed_quests", []))

        for entry in data["quests"]:
            quest_id = entry["quest_id"]
            quest = QuestRuntime(self.get_definition(quest_id), self.context)
            self._quests[quest_id] = quest
            quest.quest_started.connect(self._on_started)
            quest.quest_completed.connect(self._on_completed)
            quest.quest_failed.connect(self._on_failed)
            restore_quest(quest, entry)
            if quest.state is QuestState.NOT_STARTED:
                quest.arm_start_conditions(lambda qid=quest_id: self.start_quest(qid))
        logger.info("Restored %d quest(s) and %d quest line(s) from snapshot",
                    len(data["quests"]), len(self._questlines))

    # Signal handlers

    def _publish_state(self, quest: QuestRuntime) -> None:
        self.bus.raise_event(QUEST_STATE_EVENT, (quest.id, quest.state))

    def _on_started(self, quest: QuestRuntime) -> None:
        self.on_quest_started.emit(quest)
        self._publish_state(quest)
        for line in list(self._questlines.values()):
            line.notify_quest_started(quest.id)

    def _on_completed(self, quest: QuestRuntime) -> None:
        self.on_quest_completed.emit(quest)
        self._publish_state(quest)
        for line in list(self._questlines.values()):
            line.notify_quest_completed(quest.id)

    def _on_failed(self, quest: QuestRuntime) -> None:
        self.on_quest_failed.emit(quest)
        self._publish_state(quest)
        for line in list(self._questlines.values()):
            line.notify_quest_failed(quest.id)

    def _connect_questline(self, line: QuestLineRuntime) -> None:
        line.on_started.connect(self._on_questline_started)
        line.on_updated.connect(self.on_questline_updated.emit)
        line.on_completed.connect(self._on_questline_completed)
        line.on_failed.connect(self._on_questline_failed)

    def _publish_questline_state(self, line: QuestLineRuntime) -> None:
        self.bus.raise_event(QUESTLINE_STATE_EVENT, (line.id, line.state))

    def _on_questline_started(self, line: QuestLineRuntime) -> None:
        self.on_questline_started.emit(line)
        self._publish_questline_state(line)

    def _on_questline_completed(self, line: QuestLineRuntime) -> None:
        self.on_questline_completed.emit(line)
        self._publish_questline_state(line)
        # lines waiting on this one are no longer locked
        for definition in self.questline_definitions.values():
            if definition.prerequisite == line.id and definition.id not in self._questlines:
                self.bus.raise_event(QUESTLINE_STATE_EVENT, (definition.id, QuestLineState.AVAILABLE))

    def _on_questline_failed(self, line: QuestLineRuntime) -> None:
        self.on_questline_failed.emit(line)
        self._publish_questline_state(line)
