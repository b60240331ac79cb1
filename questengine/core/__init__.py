"""Shared runtime plumbing: event bus, cascade queue, world flags."""

from .events import (
    CascadeOverflowError, CascadeQueue, EventBus, Signal, Subscription, SubscriptionScope,
)
from .world_flags import FlagModification, FlagOp, WorldFlagStore

__all__ = [
    'CascadeOverflowError', 'CascadeQueue', 'EventBus', 'Signal', 'Subscription', 'SubscriptionScope',
    'FlagModification', 'FlagOp', 'WorldFlagStore',
]
