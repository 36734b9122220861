"""Push subscription lifecycle and notification dispatch."""

from __future__ import annotations

from typing import TYPE_CHECKING

from offline_agent.push.models import (
    Notification,
    NotificationIntent,
    Outcome,
    PushSubscription,
    SubscriptionState,
)

if TYPE_CHECKING:
    from offline_agent.push.dispatcher import NotificationDispatcher
    from offline_agent.push.subscription import SubscriptionManager

__all__ = [
    "Notification",
    "NotificationDispatcher",
    "NotificationIntent",
    "Outcome",
    "PushSubscription",
    "SubscriptionManager",
    "SubscriptionState",
]


def __getattr__(name: str):
    if name == "NotificationDispatcher":
        from offline_agent.push.dispatcher import NotificationDispatcher as _NotificationDispatcher

        return _NotificationDispatcher
    if name == "SubscriptionManager":
        from offline_agent.push.subscription import SubscriptionManager as _SubscriptionManager

        return _SubscriptionManager
    raise AttributeError(name)
