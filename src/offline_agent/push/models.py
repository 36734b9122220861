from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict

from offline_agent.core.errors import AgentError

SubscriptionState = Literal["unsupported", "unsubscribed", "subscribed"]
KeyName = Literal["p256dh", "auth"]


@dataclass(frozen=True, slots=True)
class PushSubscription:
    endpoint: str
    p256dh: Optional[bytes] = None
    auth: Optional[bytes] = None

    def get_key(self, name: KeyName) -> Optional[bytes]:
        if name == "p256dh":
            return self.p256dh
        if name == "auth":
            return self.auth
        return None


@dataclass(frozen=True, slots=True)
class NotificationIntent:
    title: str
    body: str
    icon: str
    badge: str
    tag: str
    data: Mapping[str, Any] = field(default_factory=dict)
    vibrate: Tuple[int, ...] = ()
    require_interaction: bool = True

    def target_url(self, default: str = "/") -> str:
        url = self.data.get("url")
        if isinstance(url, str) and url.strip():
            return url
        return default


@dataclass(frozen=True, slots=True)
class Notification:
    """A notification currently shown on the notification surface."""

    notification_id: str
    intent: NotificationIntent


@dataclass(frozen=True, slots=True)
class Outcome:
    """Result of an interactive push operation; falsy on failure."""

    ok: bool
    error: Optional[AgentError] = None

    def __bool__(self) -> bool:
        return self.ok


class PushPayloadData(BaseModel):
    model_config = ConfigDict(frozen=True, extra="allow")

    url: Optional[str] = None


class PushPayload(BaseModel):
    """Wire format of an inbound push body. Every field is optional."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    title: Optional[str] = None
    body: Optional[str] = None
    icon: Optional[str] = None
    badge: Optional[str] = None
    tag: Optional[str] = None
    data: Optional[PushPayloadData] = None
