"""Declarative condition evaluation DSL for the quest system.

Conditions are authored as ConditionDef({"op": ..., "args": {...}}) and built
into runtime instances per owner by build_condition(). Supported ops:
- event: matches payloads of a bus event (latched once observed)
- flag: compares a world flag value
- all / any: composite over child conditions, short-circuit
- quest_state: checks the state of another managed quest
- questline_state: checks the state of a managed quest line
- always / never: constants
"""

import logging
import operator
from typing import Any, Callable, Dict, Iterable, List, Optional

from ..core.events import Subscription
from .context import QUEST_STATE_EVENT, QUESTLINE_STATE_EVENT, QuestContext
from .errors import QuestDefinitionError
from .model import ConditionDef, QuestLineState, QuestState

logger = logging.getLogger(__name__)

COMPARATORS: Dict[str, Callable[[Any, Any], bool]] = {
    "eq": operator.eq,
    "ne": operator.ne,
    "gt": operator.gt,
    "ge": operator.ge,
    "lt": operator.lt,
    "le": operator.le,
}

CONDITION_OPS = ("event", "flag", "all", "any", "quest_state", "questline_state", "always", "never")

_ANY_VALUE = object()


def compare(actual: Any, compare_op: str, expected: Any) -> bool:
    """Compare two values with one of the COMPARATORS.

    Args:
        actual: Observed value (event payload or flag value)
        compare_op: Comparator name, e.g. "ge"
        expected: Authored value

    Returns:
        True if the comparison holds; False for missing or incomparable values
    """
    fn = COMPARATORS.get(compare_op)
    if fn is None:
        logger.warning("Unknown comparator '%s'", compare_op)
        return False
    if actual is None and compare_op not in ("eq", "ne"):
        return False
    try:
        return bool(fn(actual, expected))
    except TypeError:
        return False


class Condition:
    """Base runtime condition. Pure conditions only implement _evaluate()."""

    event_driven = False

    def __init__(self, inverted: bool = False):
        self.inverted = inverted

    def evaluate(self) -> bool:
        return self._evaluate() != self.inverted

    def _evaluate(self) -> bool:
        raise NotImplementedError

    @property
    def subscribed(self) -> bool:
        return False

    def subscribe(self, on_fulfilled: Callable[[], None]) -> None:
        """Register the owner's hook. Pure conditions ignore it."""

    def unsubscribe(self) -> None:
        """Release the registration. Safe to call when not subscribed."""


class ConstantCondition(Condition):
    def __init__(self, value: bool, inverted: bool = False):
        super().__init__(inverted)
        self.value = value

    def _evaluate(self) -> bool:
        return self.value


class EventCondition(Condition):
    """Fulfilled by a bus event whose payload satisfies the match predicate.

    evaluate() reports whether a matching event was observed since the last
    subscribe(); inversion applies to the payload match.
    """

    event_driven = True

    def __init__(self, context: QuestContext, key: str, compare_op: str = "eq",
                 value: Any = _ANY_VALUE, inverted: bool = False):
        super().__init__(inverted)
        self.context = context
        self.key = key
        self.compare_op = compare_op
        self.value = value
        self._matched = False
        self._handle: Optional[Subscription] = None
        self._callback: Optional[Callable[[], None]] = None

    def matches(self, payload: Any) -> bool:
        if self.value is _ANY_VALUE:
            result = True
        else:
            result = compare(payload, self.compare_op, self.value)
        return result != self.inverted

    def evaluate(self) -> bool:
        return self._matched

    @property
    def subscribed(self) -> bool:
        return self._handle is not None and self._handle.active

    def subscribe(self, on_fulfilled: Callable[[], None]) -> None:
        if self.subscribed:
            return
        self._matched = False
        self._callback = on_fulfilled
        self._handle = self.context.bus.subscribe(self.key, self._on_event, self.matches)

    def unsubscribe(self) -> None:
        handle, self._handle = self._handle, None
        self._callback = None
        if handle is not None:
            handle.dispose()

    def _on_event(self, payload: Any) -> None:
        self._matched = True
        callback = self._callback
        if callback is not None:
            callback()


class FlagCondition(Condition):
    """Compares a world flag; notifies when it goes from unmet to met."""

    event_driven = True

    def __init__(self, context: QuestContext, key: str, compare_op: str = "eq",
                 value: Any = True, inverted: bool = False):
        super().__init__(inverted)
        self.context = context
        self.key = key
        self.compare_op = compare_op
        self.value = value
        self._handle: Optional[Subscription] = None
        self._callback: Optional[Callable[[], None]] = None
        self._last = False

    def _evaluate(self) -> bool:
        return compare(self.context.flags.get(self.key), self.compare_op, self.value)

    @property
    def subscribed(self) -> bool:
        return self._handle is not None and self._handle.active

    def subscribe(self, on_fulfilled: Callable[[], None]) -> None:
        if self.subscribed:
            return
        self._callback = on_fulfilled
        self._last = self.evaluate()
        self._handle = self.context.flags.on_change.connect(self._on_flag_changed)

    def unsubscribe(self) -> None:
        handle, self._handle = self._handle, None
        self._callback = None
        if handle is not None:
            handle.dispose()

    def _on_flag_changed(self, key: str, old: Any, new: Any) -> None:
        if key != self.key:
            return
        now = self.evaluate()
        became_met = now and not self._last
        self._last = now
        if became_met and self._callback is not None:
            self.context.queue.run(self._fire)

    def _fire(self) -> None:
        # the owner may have unsubscribed while the job was queued
        if self._callback is not None and self.evaluate():
            self._callback()


class QuestStateCondition(Condition):
    """Checks another quest's state; re-checked when any managed quest changes state."""

    event_driven = True
    state_event = QUEST_STATE_EVENT

    def __init__(self, context: QuestContext, quest_id: str, state: QuestState,
                 inverted: bool = False):
        super().__init__(inverted)
        self.context = context
        self.quest_id = quest_id
        self.state = state
        self._handle: Optional[Subscription] = None
        self._callback: Optional[Callable[[], None]] = None

    def _current(self) -> Any:
        return self.context.quest_state(self.quest_id)

    def _evaluate(self) -> bool:
        return self._current() is self.state

    @property
    def subscribed(self) -> bool:
        return self._handle is not None and self._handle.active

    def subscribe(self, on_fulfilled: Callable[[], None]) -> None:
        if self.subscribed:
            return
        self._callback = on_fulfilled
        self._handle = self.context.bus.subscribe(
            self.state_event,
            self._on_quest_state,
            lambda payload: payload[0] == self.quest_id,
        )

    def unsubscribe(self) -> None:
        handle, self._handle = self._handle, None
        self._callback = None
        if handle is not None:
            handle.dispose()

    def _on_quest_state(self, payload: Any) -> None:
        if self._callback is not None and self.evaluate():
            self._callback()


class QuestLineStateCondition(QuestStateCondition):
    """Checks a quest line's state; re-checked when any managed line changes state."""

    state_event = QUESTLINE_STATE_EVENT

    def __init__(self, context: QuestContext, questline_id: str, state: QuestLineState,
                 inverted: bool = False):
        super().__init__(context, questline_id, state, inverted)

    @property
    def questline_id(self) -> str:
        return self.quest_id

    def _current(self) -> Any:
        return self.context.questline_state(self.quest_id)


class CompositeCondition(Condition):
    """AND/OR over child conditions, evaluated in order with short-circuit."""

    def __init__(self, children: List[Condition], require_all: bool = True,
                 inverted: bool = False):
        super().__init__(inverted)
        self.children = children
        self.require_all = require_all
        self._callback: Optional[Callable[[], None]] = None
        self._subscribed = False

    @property
    def event_driven(self) -> bool:
        return any(child.event_driven for child in self.children)

    def _evaluate(self) -> bool:
        if self.require_all:
            return all(child.evaluate() for child in self.children)
        return any(child.evaluate() for child in self.children)

    @property
    def subscribed(self) -> bool:
        return self._subscribed

    def subscribe(self, on_fulfilled: Callable[[], None]) -> None:
        if self._subscribed:
            return
        self._subscribed = True
        self._callback = on_fulfilled
        for child in self.children:
            if child.event_driven:
                child.subscribe(self._on_child)

    def unsubscribe(self) -> None:
        if not self._subscribed:
            return
        self._subscribed = False
        self._callback = None
        for child in self.children:
            child.unsubscribe()

    def _on_child(self) -> None:
        if self._callback is not None and self.evaluate():
            self._callback()


def build_condition(defn: ConditionDef, context: QuestContext) -> Condition:
    """Build a fresh runtime condition from its definition.

    Args:
        defn: Authored condition
        context: Bus, flag store and quest state lookup to bind to

    Returns:
        A runtime Condition owned by the caller

    Raises:
        QuestDefinitionError: If the op is unknown or a required arg is missing
    """
    op = defn.op
    args = defn.args

    if op == "event":
        key = args.get("key")
        if not key:
            raise QuestDefinitionError("event condition requires 'key'")
        value = args["value"] if "value" in args else _ANY_VALUE
        return EventCondition(context, key, args.get("compare", "eq"), value, defn.inverted)

    elif op == "flag":
        key = args.get("key")
        if not key:
            raise QuestDefinitionError("flag condition requires 'key'")
        return FlagCondition(context, key, args.get("compare", "eq"),
                             args.get("value", True), defn.inverted)

    elif op in ("all", "any"):
        children = [build_condition(_as_def(child), context) for child in args.get("conditions", [])]
        return CompositeCondition(children, require_all=(op == "all"), inverted=defn.inverted)

    elif op == "quest_state":
        quest_id = args.get("quest_id")
        if not quest_id:
            raise QuestDefinitionError("quest_state condition requires 'quest_id'")
        try:
            state = QuestState(args.get("state", QuestState.COMPLETED.value))
        except ValueError:
            raise QuestDefinitionError(f"Unknown quest state '{args.get('state')}'")
        return QuestStateCondition(context, quest_id, state, defn.inverted)

    elif op == "questline_state":
        questline_id = args.get("questline_id")
        if not questline_id:
            raise QuestDefinitionError("questline_state condition requires 'questline_id'")
        try:
            state = QuestLineState(args.get("state", QuestLineState.COMPLETED.value))
        except ValueError:
            raise QuestDefinitionError(f"Unknown quest line state '{args.get('state')}'")
        return QuestLineStateCondition(context, questline_id, state, defn.inverted)

    elif op == "always":
        return ConstantCondition(True, defn.inverted)

    elif op == "never":
        return ConstantCondition(False, defn.inverted)

    raise QuestDefinitionError(f"Unknown condition op: {op}")


def _as_def(child: Any) -> ConditionDef:
    if isinstance(child, ConditionDef):
        return child
    return ConditionDef(op=child["op"], args=child.get("args", {}),
                        inverted=child.get("inverted", False))


def build_conditions(defns: Iterable[ConditionDef], context: QuestContext) -> List[Condition]:
    return [build_condition(defn, context) for defn in defns]


def check_all(conditions: Iterable[Condition]) -> bool:
    """Check if all conditions are met. An empty list is satisfied."""
    return all(condition.evaluate() for condition in conditions)


def check_any(conditions: Iterable[Condition]) -> bool:
    """Check if any condition is met. An empty list is not satisfied."""
    return any(condition.evaluate() for condition in conditions)


def subscribe_all(conditions: Iterable[Condition], on_fulfilled: Callable[[], None]) -> None:
    for condition in conditions:
        if condition.event_driven:
            condition.subscribe(on_fulfilled)


def unsubscribe_all(conditions: Iterable[Condition]) -> None:
    for condition in conditions:
        condition.unsubscribe()
