"""Quest engine exceptions."""


class QuestEngineError(Exception):
    """Base class for quest engine errors."""


class QuestDefinitionError(QuestEngineError):
    """Raised when authored quest data cannot be loaded or fails strict validation."""


class SnapshotError(QuestEngineError):
    """Raised when a snapshot is malformed or references unknown data."""


class UnknownQuestError(QuestEngineError, KeyError):
    """Raised when a quest definition id is not registered."""


class UnknownQuestLineError(QuestEngineError, KeyError):
    """Raised when a quest line definition id is not registered."""
