from __future__ import annotations

import asyncio
import logging
from typing import Optional

import aiohttp

from offline_agent.config.models import NetworkSettings
from offline_agent.core.errors import NetworkError
from offline_agent.core.http import Request, ResponseSnapshot, filter_headers
from offline_agent.core.utils import format_rfc3339, utc_now

logger = logging.getLogger(__name__)


class Fetcher:
    async def fetch(self, request: Request) -> ResponseSnapshot:
        """
        Perform the request against the network.

        Any HTTP status is a response. Only transport failures (DNS, refused
        connection, timeout) raise NetworkError.
        """
        raise NotImplementedError


class HttpFetcher(Fetcher):
    def __init__(self, config: NetworkSettings) -> None:
        self.config = config
        self._session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self) -> HttpFetcher:
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()

    async def start(self) -> None:
        """Open the shared client session."""
        if self._session and not self._session.closed:
            return
        timeout = aiohttp.ClientTimeout(total=self.config.timeout_seconds)
        self._session = aiohttp.ClientSession(timeout=timeout, auto_decompress=True)

    async def stop(self) -> None:
        """Close the shared client session."""
        if self._session:
            await self._session.close()
            self._session = None

    async def fetch(self, request: Request) -> ResponseSnapshot:
        if not self._session or self._session.closed:
            await self.start()
        assert self._session is not None

        logger.debug("net.fetch_start method=%s url=%s", request.method, request.url)
        headers = [(name, value) for name, value in request.headers if name.lower() != "host"]
        try:
            async with self._session.request(
                request.method,
                request.url,
                headers=headers,
                data=request.body or None,
                allow_redirects=True,
            ) as response:
                body = await response.read()
                snapshot = ResponseSnapshot(
                    status=response.status,
                    reason=response.reason or "",
                    headers=filter_headers(tuple(response.headers.items())),
                    body=body,
                    url=str(response.url),
                    fetched_at=format_rfc3339(utc_now()),
                )
        except asyncio.TimeoutError as e:
            logger.warning("net.fetch_timeout method=%s url=%s", request.method, request.url)
            raise NetworkError(f"Timed out fetching {request.url}") from e
        except aiohttp.ClientError as e:
            logger.warning("net.fetch_failed method=%s url=%s error=%s", request.method, request.url, e)
            raise NetworkError(f"Failed to fetch {request.url}: {e}") from e

        logger.debug(
            "net.fetch_done method=%s url=%s status=%s size=%d",
            request.method,
            request.url,
            snapshot.status,
            len(snapshot.body),
        )
        return snapshot
