from __future__ import annotations

import logging
from typing import Optional

from offline_agent.core.errors import (
    AgentError,
    KeyExtractionError,
    PermissionDenied,
    UnsupportedEnvironment,
)
from offline_agent.push.interfaces import PermissionPrompt, PushService
from offline_agent.push.models import Outcome, PushSubscription, SubscriptionState
from offline_agent.push.registry import SubscriptionRegistry

logger = logging.getLogger(__name__)


class SubscriptionManager:
    """
    Owns the single push registration of this installation.

    subscribe() and unsubscribe() never raise for expected failures; they
    return an Outcome that carries the typed error so the caller can decide
    what to tell the user.
    """

    def __init__(
        self,
        *,
        push_service: Optional[PushService],
        permission: Optional[PermissionPrompt],
        registry: SubscriptionRegistry,
    ) -> None:
        self._push_service = push_service
        self._permission = permission
        self._registry = registry

    def check_support(self) -> bool:
        return self._push_service is not None and self._permission is not None

    async def current_status(self) -> SubscriptionState:
        if not self.check_support():
            return "unsupported"
        assert self._push_service is not None
        subscription = await self._push_service.get_subscription()
        return "subscribed" if subscription is not None else "unsubscribed"

    async def subscribe(self) -> Outcome:
        try:
            subscription = await self._subscribe()
        except AgentError as e:
            logger.warning("push.subscribe_failed error_type=%s error=%s", type(e).__name__, e)
            return Outcome(ok=False, error=e)
        except Exception as e:
            logger.exception("Unexpected push subscribe error.")
            return Outcome(ok=False, error=AgentError(str(e)))
        logger.info("push.subscribed endpoint_tail=%s", subscription.endpoint[-6:])
        return Outcome(ok=True)

    async def _subscribe(self) -> PushSubscription:
        if not self.check_support():
            raise UnsupportedEnvironment("Push notifications are not available in this environment")
        assert self._push_service is not None and self._permission is not None

        permission = await self._permission.request()
        if permission != "granted":
            raise PermissionDenied(f"Notification permission is {permission}")

        application_server_key = await self._registry.fetch_public_key()

        # The push service hands back the existing registration when there is one.
        subscription = await self._push_service.get_subscription()
        if subscription is None:
            subscription = await self._push_service.subscribe(application_server_key)

        p256dh = subscription.get_key("p256dh")
        auth = subscription.get_key("auth")
        if not p256dh or not auth:
            raise KeyExtractionError("Push subscription is missing the p256dh or auth key")

        # A failure here leaves the local registration in place; the next call re-syncs it.
        await self._registry.register(subscription)
        return subscription

    async def unsubscribe(self) -> Outcome:
        if not self.check_support():
            return Outcome(ok=False, error=UnsupportedEnvironment("Push notifications are not available"))
        assert self._push_service is not None

        try:
            subscription = await self._push_service.get_subscription()
            if subscription is None:
                logger.debug("push.unsubscribe_noop reason=no_subscription")
                return Outcome(ok=True)
            await self._registry.forget(subscription.endpoint)
            await self._push_service.unsubscribe(subscription)
        except AgentError as e:
            logger.warning("push.unsubscribe_failed error_type=%s error=%s", type(e).__name__, e)
            return Outcome(ok=False, error=e)
        except Exception as e:
            logger.exception("Unexpected push unsubscribe error.")
            return Outcome(ok=False, error=AgentError(str(e)))
        logger.info("push.unsubscribed")
        return Outcome(ok=True)
