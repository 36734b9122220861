from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional

import aiohttp
from yarl import URL

from offline_agent.config.models import BackendSettings
from offline_agent.core.codec import decode_key, encode_key
from offline_agent.core.errors import BackendSyncError, DecodeError
from offline_agent.push.models import PushSubscription

logger = logging.getLogger(__name__)


class SubscriptionRegistry:
    async def fetch_public_key(self) -> bytes:
        raise NotImplementedError

    async def register(self, subscription: PushSubscription) -> None:
        raise NotImplementedError

    async def forget(self, endpoint: str) -> None:
        raise NotImplementedError


def subscription_to_json(subscription: PushSubscription) -> Dict[str, Any]:
    return {
        "endpoint": subscription.endpoint,
        "keys": {
            "p256dh": encode_key(subscription.p256dh or b""),
            "auth": encode_key(subscription.auth or b""),
        },
    }


class HttpSubscriptionRegistry(SubscriptionRegistry):
    """Client for the CRM backend's /api/push endpoints."""

    def __init__(self, config: BackendSettings, *, origin: str) -> None:
        self.config = config
        self._base_url = URL(config.base_url or origin)

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.config.auth_token:
            headers["Authorization"] = f"Bearer {self.config.auth_token}"
        return headers

    async def _request(self, method: str, path: str, *, json_body: Optional[dict] = None) -> Any:
        url = self._base_url.join(URL(path))
        timeout = aiohttp.ClientTimeout(total=self.config.timeout_seconds)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.request(method, url, json=json_body, headers=self._headers()) as response:
                    if response.status < 200 or response.status > 299:
                        text = await response.text()
                        raise BackendSyncError(
                            f"{method} {url} failed with status={response.status}: {text[:200]}"
                        )
                    if response.content_type == "application/json":
                        return await response.json()
                    return None
        except asyncio.TimeoutError as e:
            raise BackendSyncError(f"{method} {url} timed out") from e
        except aiohttp.ClientError as e:
            raise BackendSyncError(f"{method} {url} failed: {e}") from e

    async def fetch_public_key(self) -> bytes:
        payload = await self._request("GET", self.config.public_key_path)
        public_key = payload.get("publicKey") if isinstance(payload, dict) else None
        if not isinstance(public_key, str) or not public_key.strip():
            raise BackendSyncError("Backend returned no push public key")
        try:
            return decode_key(public_key)
        except DecodeError:
            logger.error("Backend push public key is not valid base64url. key_len=%d", len(public_key))
            raise

    async def register(self, subscription: PushSubscription) -> None:
        await self._request("POST", self.config.subscribe_path, json_body=subscription_to_json(subscription))
        logger.info("push.backend_registered endpoint=%s", _redact(subscription.endpoint))

    async def forget(self, endpoint: str) -> None:
        await self._request("DELETE", self.config.unsubscribe_path, json_body={"endpoint": endpoint})
        logger.info("push.backend_forgotten endpoint=%s", _redact(endpoint))


def _redact(value: str, keep_tail: int = 6) -> str:
    # Endpoints are capability URLs; never log them whole.
    if len(value) <= keep_tail:
        return "***"
    return f"***{value[-keep_tail:]}"
