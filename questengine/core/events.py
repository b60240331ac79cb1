"""Event plumbing shared by every runtime entity.

Provides:
- Subscription / SubscriptionScope: disposable handles and their owner-side guard
- Signal: observer list used for lifecycle notifications
- CascadeQueue: FIFO work queue drained to completion within one external call
- EventBus: keyed publish/subscribe with ordered, synchronous delivery

A single external call (raising an event, selecting a choice, ticking time)
may complete tasks, groups and stages and enter new stages. That work is
queued on the CascadeQueue instead of nesting calls, so the stack depth does
not grow with the length of a stage chain.
"""
from __future__ import annotations
import logging
from collections import deque
from typing import Any, Callable, Deque, Dict, List, Optional

from config import MAX_CASCADE_STEPS

logger = logging.getLogger(__name__)


class CascadeOverflowError(RuntimeError):
    """Raised when one drain exceeds the configured step budget."""


class Subscription:
    """Handle for a registered callback. Disposing it twice is a no-op."""

    def __init__(self, on_dispose: Optional[Callable[["Subscription"], None]] = None):
        self._on_dispose = on_dispose
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def dispose(self) -> None:
        if not self._active:
            return
        self._active = False
        on_dispose, self._on_dispose = self._on_dispose, None
        if on_dispose is not None:
            on_dispose(self)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.dispose()


class SubscriptionScope:
    """Collects handles owned by one entity and releases them together."""

    def __init__(self):
        self._handles: List[Subscription] = []

    def add(self, handle: Optional[Subscription]) -> Optional[Subscription]:
        if handle is not None:
            self._handles.append(handle)
        return handle

    def close(self) -> None:
        handles, self._handles = self._handles, []
        for handle in handles:
            handle.dispose()

    def __len__(self) -> int:
        return sum(1 for h in self._handles if h.active)


class Signal:
    """Observer list. Listeners are snapshotted when the signal is emitted."""

    def __init__(self, name: str = ""):
        self.name = name
        self._listeners: List[tuple] = []

    def connect(self, callback: Callable[..., Any]) -> Subscription:
        handle = Subscription(self._remove)
        self._listeners.append((handle, callback))
        return handle

    def _remove(self, handle: Subscription) -> None:
        self._listeners = [(h, cb) for h, cb in self._listeners if h is not handle]

    def emit(self, *args: Any) -> None:
        for handle, callback in list(self._listeners):
            if handle.active:
                callback(*args)

    def clear(self) -> None:
        for handle, _ in list(self._listeners):
            handle.dispose()

    def __len__(self) -> int:
        return len(self._listeners)


class CascadeQueue:
    """Work queue drained to completion by the outermost caller."""

    def __init__(self, max_steps: int = MAX_CASCADE_STEPS):
        self.max_steps = max_steps
        self._jobs: Deque[Callable[[], None]] = deque()
        self._draining = False

    @property
    def draining(self) -> bool:
        return self._draining

    def post(self, job: Callable[[], None]) -> None:
        """Enqueue a job without draining."""
        self._jobs.append(job)

    def run(self, job: Callable[[], None]) -> None:
        """Enqueue a job and drain unless a drain is already in progress."""
        self._jobs.append(job)
        if not self._draining:
            self.drain()

    def drain(self) -> None:
        if self._draining:
            return
        self._draining = True
        steps = 0
        try:
            while self._jobs:
                steps += 1
                if steps > self.max_steps:
                    self._jobs.clear()
                    raise CascadeOverflowError(
                        f"Cascade exceeded {self.max_steps} steps; check the stage graph for cycles"
                    )
                job = self._jobs.popleft()
                job()
        except BaseException:
            # leftover work belongs to the failed cascade
            self._jobs.clear()
            raise
        finally:
            self._draining = False

    def __len__(self) -> int:
        return len(self._jobs)


class EventBus:
    """Keyed publish/subscribe bus.

    Subscribers of one raise are notified in subscription order from a
    snapshot taken when the event is raised: callbacks registered during the
    cascade do not see the event that caused them to be registered.
    """

    def __init__(self, queue: Optional[CascadeQueue] = None):
        self.queue = queue or CascadeQueue()
        self._subscribers: Dict[str, List[tuple]] = {}

    def subscribe(
        self,
        key: str,
        callback: Callable[[Any], None],
        predicate: Optional[Callable[[Any], bool]] = None,
    ) -> Subscription:
        """Register a callback for an event key.

        Args:
            key: Event identity
            callback: Called with the payload
            predicate: Optional payload filter evaluated before the callback

        Returns:
            Subscription handle; dispose it to unsubscribe
        """
        handle = Subscription(lambda h: self._remove(key, h))
        self._subscribers.setdefault(key, []).append((handle, callback, predicate))
        return handle

    def unsubscribe(self, handle: Optional[Subscription]) -> None:
        if handle is not None:
            handle.dispose()

    def _remove(self, key: str, handle: Subscription) -> None:
        entries = self._subscribers.get(key)
        if not entries:
            return
        remaining = [entry for entry in entries if entry[0] is not handle]
        if remaining:
            self._subscribers[key] = remaining
        else:
            del self._subscribers[key]

    def raise_event(self, key: str, payload: Any = None) -> None:
        """Deliver an event and drain the resulting cascade before returning."""
        snapshot = list(self._subscribers.get(key, ()))
        logger.debug("Event '%s' raised (payload=%r, %d subscribers)", key, payload, len(snapshot))
        self.queue.run(lambda: self._deliver(snapshot, payload))

    def _deliver(self, snapshot: List[tuple], payload: Any) -> None:
        for handle, callback, predicate in snapshot:
            if not handle.active:
                continue
            if predicate is not None and not predicate(payload):
                continue
            callback(payload)

    def subscriber_count(self, key: str) -> int:
        return len(self._subscribers.get(key, ()))

    def clear(self) -> None:
        for entries in list(self._subscribers.values()):
            for handle, _, _ in list(entries):
                handle.dispose()
        self._subscribers.clear()
