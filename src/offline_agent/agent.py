from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from aiohttp import web
from yarl import URL

from offline_agent.cache.models import GenerationHandle
from offline_agent.cache.store import CacheStore
from offline_agent.config.models import AppConfig
from offline_agent.core.http import resolve
from offline_agent.net.fetcher import Fetcher, HttpFetcher
from offline_agent.push.dispatcher import NotificationDispatcher
from offline_agent.push.interfaces import ClientViews, NotificationSurface
from offline_agent.push.local import (
    ClientViewRegistry,
    ConfiguredPermissionPrompt,
    InMemoryNotificationSurface,
    LocalPushService,
)
from offline_agent.push.registry import HttpSubscriptionRegistry, SubscriptionRegistry
from offline_agent.push.subscription import SubscriptionManager
from offline_agent.routing.proxy import build_app
from offline_agent.routing.router import RequestRouter

logger = logging.getLogger(__name__)


class OfflineAgent:
    """
    Wires the cache, router and push components for one origin.

    install() seeds the configured cache generation and promotes it,
    activate() retires every other generation, serve() runs the local proxy.
    """

    def __init__(
        self,
        config: AppConfig,
        *,
        fetcher: Optional[Fetcher] = None,
        registry: Optional[SubscriptionRegistry] = None,
        surface: Optional[NotificationSurface] = None,
        views: Optional[ClientViews] = None,
        ask_permission: Optional[Callable[[], Awaitable[bool]]] = None,
    ) -> None:
        self.config = config
        self.origin = URL(config.app.origin)
        self.store = CacheStore(config.cache.root_dir)
        self._owns_fetcher = fetcher is None
        self.fetcher: Fetcher = fetcher if fetcher is not None else HttpFetcher(config.network)
        self.router = RequestRouter(
            store=self.store,
            fetcher=self.fetcher,
            origin=self.origin,
            api_prefix=config.router.api_prefix,
            offline_document=config.cache.offline_document,
        )

        self.push_service: Optional[LocalPushService] = None
        permission: Optional[ConfiguredPermissionPrompt] = None
        if config.push.enabled:
            endpoint_base = config.push.endpoint_base or (
                f"http://{config.proxy.host}:{config.proxy.port}{config.proxy.push_path}"
            )
            self.push_service = LocalPushService(endpoint_base=endpoint_base, state_path=config.push.state_path)
            permission = ConfiguredPermissionPrompt(config.push.permission, ask=ask_permission)

        self.subscriptions = SubscriptionManager(
            push_service=self.push_service,
            permission=permission,
            registry=registry if registry is not None else HttpSubscriptionRegistry(config.backend, origin=str(self.origin)),
        )
        self.surface = surface if surface is not None else InMemoryNotificationSurface()
        self.dispatcher = NotificationDispatcher(
            surface=self.surface,
            views=views if views is not None else ClientViewRegistry(),
            origin=self.origin,
            defaults=config.push.defaults,
        )
        if self.push_service is not None:
            self.push_service.set_listener(self.dispatcher.handle_push)

    async def install(self) -> GenerationHandle:
        generation_id = self.config.cache.name
        manifest = [resolve(self.origin, path) for path in self.config.cache.manifest]
        handle = await self.store.open(generation_id)
        await self.store.seed(handle, manifest, self.fetcher)
        await self.store.promote(generation_id)
        logger.info("agent.installed generation=%s assets=%d", generation_id, len(manifest))
        return handle

    async def activate(self) -> list[str]:
        removed = await self.store.evict_stale()
        logger.info("agent.activated generation=%s removed=%s", self.config.cache.name, removed)
        return removed

    def build_web_app(self) -> web.Application:
        return build_app(
            router=self.router,
            origin=self.origin,
            push_service=self.push_service,
            push_path=self.config.proxy.push_path,
        )

    async def serve(self, *, run_seconds: Optional[float] = None) -> None:
        runner = web.AppRunner(self.build_web_app())
        await runner.setup()
        site = web.TCPSite(runner, self.config.proxy.host, self.config.proxy.port)
        await site.start()
        logger.info(
            "agent.serving host=%s port=%s origin=%s",
            self.config.proxy.host,
            self.config.proxy.port,
            self.origin,
        )
        try:
            if run_seconds is not None:
                await asyncio.sleep(run_seconds)
            else:
                await asyncio.Event().wait()
        finally:
            await runner.cleanup()

    async def close(self) -> None:
        await self.router.drain()
        await self.store.close()
        if self._owns_fetcher and isinstance(self.fetcher, HttpFetcher):
            await self.fetcher.stop()
