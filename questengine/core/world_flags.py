"""Process-wide world flags shared by every quest.

Flags are boolean or integer values keyed by string. Conditions read them;
player choices write them through apply_modification().
"""
from __future__ import annotations
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Union

from .events import Signal

logger = logging.getLogger(__name__)

FlagValue = Union[bool, int]


class FlagOp(Enum):
    """Operations a choice may apply to a world flag."""
    SET = "set"
    ADD = "add"
    SUBTRACT = "subtract"


@dataclass(frozen=True)
class FlagModification:
    """A single authored world flag change."""
    key: str
    op: FlagOp = FlagOp.SET
    value: FlagValue = True


class WorldFlagStore:
    """Keyed flag storage with change notification."""

    def __init__(self, initial: Optional[Dict[str, FlagValue]] = None):
        self._values: Dict[str, FlagValue] = {}
        self.on_change = Signal("world_flag_changed")
        for key, value in (initial or {}).items():
            self._check_value(key, value)
            self._values[key] = value

    @staticmethod
    def _check_value(key: str, value) -> None:
        if not isinstance(value, (bool, int)):
            raise TypeError(f"World flag '{key}' must be bool or int, got {type(value).__name__}")

    def get(self, key: str, default: Optional[FlagValue] = None) -> Optional[FlagValue]:
        return self._values.get(key, default)

    def get_int(self, key: str, default: int = 0) -> int:
        return int(self._values.get(key, default))

    def get_bool(self, key: str, default: bool = False) -> bool:
        return bool(self._values.get(key, default))

    def has(self, key: str) -> bool:
        return key in self._values

    def set(self, key: str, value: FlagValue) -> None:
        self._check_value(key, value)
        old = self._values.get(key)
        if key in self._values and old == value and type(old) is type(value):
            return
        self._values[key] = value
        logger.debug("World flag '%s': %r -> %r", key, old, value)
        self.on_change.emit(key, old, value)

    def apply_modification(self, modification: FlagModification) -> bool:
        """Apply one modification.

        Returns:
            True if the modification was applied
        """
        key, op, value = modification.key, modification.op, modification.value
        if op is FlagOp.SET:
            self.set(key, value)
            return True

        current = self._values.get(key, 0)
        if isinstance(current, bool) or isinstance(value, bool):
            logger.warning("Cannot %s on boolean world flag '%s'", op.value, key)
            return False
        if op is FlagOp.ADD:
            self.set(key, current + value)
        else:
            self.set(key, current - value)
        return True

    def snapshot(self) -> Dict[str, FlagValue]:
        return dict(self._values)

    def restore(self, values: Dict[str, FlagValue]) -> None:
        """Replace every flag with the given values, notifying changes."""
        for key in [k for k in self._values if k not in values]:
            old = self._values.pop(key)
            self.on_change.emit(key, old, None)
        for key, value in values.items():
            self.set(key, value)

    def reset(self) -> None:
        self.restore({})

    def __contains__(self, key: str) -> bool:
        return key in self._values

    def __len__(self) -> int:
        return len(self._values)
