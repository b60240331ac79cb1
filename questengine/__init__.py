"""Quest progression engine: stages, task groups, tasks and player choices."""

from .core.events import EventBus, CascadeQueue, Signal, Subscription
from .core.world_flags import WorldFlagStore, FlagModification, FlagOp
from .quest.manager import QuestManager
from .quest.questlines import QuestLineRuntime
from .quest.runtime import QuestRuntime

__all__ = [
    'EventBus', 'CascadeQueue', 'Signal', 'Subscription',
    'WorldFlagStore', 'FlagModification', 'FlagOp',
    'QuestManager', 'QuestRuntime', 'QuestLineRuntime',
]
