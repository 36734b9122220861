from __future__ import annotations

import asyncio
import logging
from typing import Literal

from yarl import URL

from offline_agent.cache.store import CacheStore
from offline_agent.core.errors import NetworkError, OfflineUnavailableError
from offline_agent.core.http import Request, ResponseSnapshot, request_identity, resolve, same_origin
from offline_agent.net.fetcher import Fetcher

logger = logging.getLogger(__name__)

Policy = Literal["network_only", "network_first", "stale_while_revalidate", "passthrough"]

# Only GET responses are cacheable.
_CACHEABLE_METHODS = frozenset({"GET"})


class RequestRouter:
    """
    Classify each request and serve it from the network, the cache, or both.

    The rules are checked in order: API prefix, navigation, same origin,
    cross origin. The router holds no per-request state; background
    revalidations are tracked only so shutdown can wait for them.
    """

    def __init__(
        self,
        *,
        store: CacheStore,
        fetcher: Fetcher,
        origin: str | URL,
        api_prefix: str = "/api/",
        offline_document: str = "/index.html",
    ) -> None:
        self._store = store
        self._fetcher = fetcher
        self._origin = URL(origin) if isinstance(origin, str) else origin
        self._api_prefix = api_prefix
        self._offline_identity = request_identity("GET", resolve(self._origin, offline_document))
        self._revalidations: set[asyncio.Task] = set()

    def determine_policy(self, request: Request) -> Policy:
        if request.url.path.startswith(self._api_prefix):
            return "network_only"

        if request.mode == "navigate":
            return "network_first"

        if same_origin(request.url, self._origin):
            return "stale_while_revalidate"

        return "passthrough"

    async def handle(self, request: Request) -> ResponseSnapshot:
        policy = self.determine_policy(request)
        logger.debug("router.dispatch policy=%s method=%s url=%s", policy, request.method, request.url)

        if policy == "network_only" or policy == "passthrough":
            return await self._fetcher.fetch(request)

        if policy == "network_first":
            return await self._network_first(request)

        return await self._stale_while_revalidate(request)

    async def _network_first(self, request: Request) -> ResponseSnapshot:
        try:
            return await self._fetcher.fetch(request)
        except NetworkError as e:
            fallback = await self._store.match(self._offline_identity)
            if fallback is None:
                logger.warning("router.offline_unavailable url=%s", request.url)
                raise OfflineUnavailableError(f"Offline and no cached document for {request.url}") from e
            logger.info("router.offline_fallback url=%s", request.url)
            return fallback.response

    async def _stale_while_revalidate(self, request: Request) -> ResponseSnapshot:
        if request.method not in _CACHEABLE_METHODS:
            return await self._fetcher.fetch(request)

        identity = request.identity
        cached = await self._store.match(identity)
        if cached is None:
            logger.debug("router.cache_miss url=%s", request.url)
            return await self._fetch_and_store(request, identity)

        logger.debug("router.cache_hit url=%s", request.url)
        task = asyncio.create_task(self._revalidate(request, identity))
        self._revalidations.add(task)
        task.add_done_callback(self._revalidations.discard)
        return cached.response

    async def _fetch_and_store(self, request: Request, identity: str) -> ResponseSnapshot:
        response = await self._fetcher.fetch(request)
        if response.ok:
            handle = self._store.current()
            if handle is not None:
                await self._store.put(handle, identity, response)
        return response

    async def _revalidate(self, request: Request, identity: str) -> None:
        try:
            await self._fetch_and_store(request, identity)
        except NetworkError as e:
            logger.debug("router.revalidate_failed url=%s error=%s", request.url, e)
        except Exception:
            logger.exception("Unexpected revalidation error. url=%s", request.url)

    async def drain(self) -> None:
        """Wait for in-flight background revalidations."""
        while self._revalidations:
            await asyncio.gather(*list(self._revalidations), return_exceptions=True)
