from __future__ import annotations

from typing import Awaitable, Callable, Optional

from offline_agent.config.models import PermissionSetting
from offline_agent.push.models import Notification, NotificationIntent, PushSubscription

PushListener = Callable[[Optional[bytes]], Awaitable[None]]


class PushService:
    async def get_subscription(self) -> Optional[PushSubscription]:
        """Return the existing registration for this installation, if any."""
        raise NotImplementedError

    async def subscribe(self, application_server_key: bytes) -> PushSubscription:
        """Create a registration, or return the existing one."""
        raise NotImplementedError

    async def unsubscribe(self, subscription: PushSubscription) -> bool:
        """Revoke the registration. Returns False when there was nothing to revoke."""
        raise NotImplementedError

    def set_listener(self, listener: Optional[PushListener]) -> None:
        """Register the coroutine that receives raw push bodies."""
        raise NotImplementedError


class PermissionPrompt:
    @property
    def current(self) -> PermissionSetting:
        raise NotImplementedError

    async def request(self) -> PermissionSetting:
        raise NotImplementedError


class NotificationSurface:
    async def show(self, intent: NotificationIntent) -> Notification:
        """Show a notification. A visible notification with the same tag is replaced."""
        raise NotImplementedError

    async def close(self, notification: Notification) -> None:
        raise NotImplementedError

    def visible(self) -> list[Notification]:
        raise NotImplementedError


class ClientView:
    @property
    def url(self) -> str:
        raise NotImplementedError

    async def navigate(self, url: str) -> None:
        raise NotImplementedError

    async def focus(self) -> None:
        raise NotImplementedError


class ClientViews:
    def match_all(self, origin: str) -> list[ClientView]:
        """Return the open views that belong to origin."""
        raise NotImplementedError

    async def open_window(self, url: str) -> ClientView:
        raise NotImplementedError
