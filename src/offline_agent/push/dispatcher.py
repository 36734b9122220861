from __future__ import annotations

import asyncio
import json
import logging
from typing import Optional

from pydantic import ValidationError
from yarl import URL

from offline_agent.config.models import NotificationDefaults
from offline_agent.core.errors import PayloadParseError
from offline_agent.core.http import resolve, same_origin
from offline_agent.push.interfaces import ClientViews, NotificationSurface
from offline_agent.push.models import Notification, NotificationIntent, PushPayload

logger = logging.getLogger(__name__)

# Web Push caps encrypted records at 4096 bytes; a decrypted body is smaller.
MAX_PAYLOAD_BYTES = 4096


def parse_payload(raw: Optional[bytes], defaults: NotificationDefaults) -> NotificationIntent:
    """
    Turn an untrusted push body into a notification intent.

    Raises PayloadParseError for anything that is not a JSON object matching
    the payload schema. Missing fields take the configured defaults.
    """
    if not raw:
        raise PayloadParseError("Empty push payload")
    if len(raw) > MAX_PAYLOAD_BYTES:
        raise PayloadParseError(f"Push payload too large: {len(raw)} bytes")
    try:
        decoded = json.loads(raw)
    except (ValueError, RecursionError) as e:
        raise PayloadParseError(f"Push payload is not JSON: {e}") from e
    if not isinstance(decoded, dict):
        raise PayloadParseError(f"Push payload must be an object, got: {type(decoded).__name__}")
    try:
        payload = PushPayload.model_validate(decoded)
        data = payload.data.model_dump(exclude_none=True) if payload.data else {}
    except ValidationError as e:
        raise PayloadParseError(f"Push payload failed validation: {e.error_count()} error(s)") from e
    except (RecursionError, ValueError) as e:
        raise PayloadParseError(f"Push payload could not be read: {type(e).__name__}") from e
    return NotificationIntent(
        title=payload.title or defaults.title,
        body=payload.body if payload.body is not None else defaults.body,
        icon=payload.icon or defaults.icon,
        badge=payload.badge or defaults.badge,
        tag=payload.tag or defaults.tag,
        data=data,
        vibrate=tuple(defaults.vibrate),
        require_interaction=defaults.require_interaction,
    )


class NotificationDispatcher:
    """
    Show inbound pushes and route clicks on them.

    Neither path raises: there is no interactive caller to report to, so
    failures are logged and absorbed. Dropped payloads are counted for
    operators in dropped_payloads.
    """

    def __init__(
        self,
        *,
        surface: NotificationSurface,
        views: ClientViews,
        origin: str | URL,
        defaults: NotificationDefaults,
    ) -> None:
        self._surface = surface
        self._views = views
        self._origin = URL(origin) if isinstance(origin, str) else origin
        self._defaults = defaults
        self._focus_lock = asyncio.Lock()
        self.dropped_payloads = 0

    async def handle_push(self, raw: Optional[bytes]) -> Optional[Notification]:
        try:
            intent = parse_payload(raw, self._defaults)
        except PayloadParseError as e:
            self.dropped_payloads += 1
            logger.warning("push.payload_dropped dropped_total=%d reason=%s", self.dropped_payloads, e)
            return None

        try:
            notification = await self._surface.show(intent)
        except Exception:
            logger.exception("Failed to show notification. tag=%s", intent.tag)
            return None
        logger.info("push.notification_shown tag=%s", intent.tag)
        return notification

    async def handle_click(self, notification: Notification) -> None:
        try:
            await self._surface.close(notification)
        except Exception:
            logger.exception("Failed to close clicked notification. tag=%s", notification.intent.tag)

        target = self._resolve_target(notification.intent)
        try:
            await self._focus_or_open(target)
        except Exception:
            logger.exception("Failed to route notification click. target=%s", target)

    def _resolve_target(self, intent: NotificationIntent) -> str:
        target = resolve(self._origin, intent.target_url(self._defaults.url))
        if not same_origin(target, self._origin):
            logger.warning("push.click_target_rejected target=%s", target)
            target = resolve(self._origin, self._defaults.url)
        return str(target)

    async def _focus_or_open(self, target: str) -> None:
        # Search and act as one unit so two quick clicks cannot both open a view.
        async with self._focus_lock:
            for view in self._views.match_all(str(self._origin)):
                await view.navigate(target)
                await view.focus()
                logger.info("push.click_focused target=%s", target)
                return
            await self._views.open_window(target)
            logger.info("push.click_opened target=%s", target)
