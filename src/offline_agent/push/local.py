from __future__ import annotations

import asyncio
import json
import logging
import secrets
import webbrowser
from pathlib import Path
from typing import Awaitable, Callable, Dict, Optional

import http_ece
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec
from yarl import URL

from offline_agent.cache.io import atomic_write_json
from offline_agent.config.models import PermissionSetting
from offline_agent.core.codec import decode_key, encode_key
from offline_agent.core.http import same_origin
from offline_agent.push.interfaces import (
    ClientView,
    ClientViews,
    NotificationSurface,
    PermissionPrompt,
    PushListener,
    PushService,
)
from offline_agent.push.models import Notification, NotificationIntent, PushSubscription

logger = logging.getLogger(__name__)


def generate_subscription_keys() -> tuple[ec.EllipticCurvePrivateKey, bytes, bytes]:
    """Return (P-256 private key, its uncompressed public point, 16-byte auth secret)."""
    private_key = ec.generate_private_key(ec.SECP256R1())
    public_raw = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.X962,
        format=serialization.PublicFormat.UncompressedPoint,
    )
    return private_key, public_raw, secrets.token_bytes(16)


class LocalPushService(PushService):
    """
    Push transport hosted by the agent itself.

    Endpoints are capability URLs under endpoint_base; the proxy forwards
    POSTs on them to deliver(). Bodies arrive encrypted with aes128gcm
    (RFC 8188/8291) to the subscription keys and are decrypted here. The
    registration survives restarts through a small JSON state file.

    The VAPID Authorization header is not checked: the endpoint token is an
    unguessable capability and only a sender holding the auth secret can
    produce a body that decrypts.
    """

    def __init__(self, *, endpoint_base: str, state_path: Optional[str | Path] = None) -> None:
        self._endpoint_base = endpoint_base.rstrip("/")
        self._state_path = Path(state_path) if state_path else None
        self._listener: Optional[PushListener] = None
        self._subscription: Optional[PushSubscription] = None
        self._private_key: Optional[ec.EllipticCurvePrivateKey] = None
        self._server_key: Optional[bytes] = None
        self._lock = asyncio.Lock()
        self._load_state()

    @property
    def application_server_key(self) -> Optional[bytes]:
        return self._server_key

    def _load_state(self) -> None:
        if self._state_path is None or not self._state_path.exists():
            return
        try:
            payload = json.loads(self._state_path.read_text(encoding="utf-8"))
            subscription = PushSubscription(
                endpoint=payload["endpoint"],
                p256dh=decode_key(payload["p256dh"]),
                auth=decode_key(payload["auth"]),
            )
            private_key = serialization.load_pem_private_key(
                payload["private_key"].encode("ascii"), password=None
            )
            stored_server_key = payload.get("application_server_key")
            server_key = decode_key(stored_server_key) if stored_server_key else None
        except Exception:
            logger.exception("Failed to read push state, starting unsubscribed. path=%s", self._state_path)
            return
        if not isinstance(private_key, ec.EllipticCurvePrivateKey):
            logger.warning("push.state_key_unusable path=%s", self._state_path)
            return
        self._subscription = subscription
        self._private_key = private_key
        self._server_key = server_key

    def _write_state(self) -> None:
        if self._state_path is None:
            return
        if self._subscription is None or self._private_key is None:
            self._state_path.unlink(missing_ok=True)
            return
        private_pem = self._private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )
        atomic_write_json(
            self._state_path,
            {
                "endpoint": self._subscription.endpoint,
                "p256dh": encode_key(self._subscription.p256dh or b""),
                "auth": encode_key(self._subscription.auth or b""),
                "private_key": private_pem.decode("ascii"),
                "application_server_key": encode_key(self._server_key) if self._server_key else None,
            },
        )

    def set_listener(self, listener: Optional[PushListener]) -> None:
        self._listener = listener

    async def get_subscription(self) -> Optional[PushSubscription]:
        return self._subscription

    async def subscribe(self, application_server_key: bytes) -> PushSubscription:
        """
        Return the installation's subscription, creating it on first use.

        An existing subscription is only reused for the same application
        server key; a different key raises ValueError until the current
        subscription is revoked.
        """
        if not application_server_key:
            raise ValueError("An application server key is required to subscribe")
        async with self._lock:
            if self._subscription is not None:
                if self._server_key is None:
                    self._server_key = application_server_key
                    self._write_state()
                elif not secrets.compare_digest(self._server_key, application_server_key):
                    raise ValueError("A subscription with a different application server key already exists")
                return self._subscription
            private_key, public_raw, auth_secret = generate_subscription_keys()
            token = secrets.token_urlsafe(32)
            self._subscription = PushSubscription(
                endpoint=f"{self._endpoint_base}/{token}",
                p256dh=public_raw,
                auth=auth_secret,
            )
            self._private_key = private_key
            self._server_key = application_server_key
            self._write_state()
            logger.info("push.local_endpoint_issued")
            return self._subscription

    async def unsubscribe(self, subscription: PushSubscription) -> bool:
        async with self._lock:
            if self._subscription is None or self._subscription.endpoint != subscription.endpoint:
                return False
            self._subscription = None
            self._private_key = None
            self._server_key = None
            self._write_state()
            logger.info("push.local_endpoint_revoked")
            return True

    def owns_token(self, token: str) -> bool:
        if self._subscription is None:
            return False
        expected = self._subscription.endpoint.encode("utf-8")
        return secrets.compare_digest(expected, f"{self._endpoint_base}/{token}".encode("utf-8"))

    async def deliver(self, token: str, body: Optional[bytes]) -> None:
        """
        Decrypt a push body and hand it to the listener.

        Raises LookupError for unknown or revoked endpoints. A body that does
        not decrypt reaches the listener as None, which drops it.
        """
        if not self.owns_token(token):
            raise LookupError("Push endpoint is gone")
        if self._listener is None:
            logger.warning("push.delivery_without_listener")
            return
        await self._listener(self._decrypt(body) if body else None)

    def _decrypt(self, body: bytes) -> Optional[bytes]:
        if self._subscription is None or self._private_key is None:
            return None
        try:
            return http_ece.decrypt(
                body,
                private_key=self._private_key,
                auth_secret=self._subscription.auth,
                version="aes128gcm",
            )
        except (http_ece.ECEException, InvalidTag, ValueError) as e:
            logger.warning("push.decrypt_failed size=%d error=%s", len(body), e)
            return None


class ConfiguredPermissionPrompt(PermissionPrompt):
    """Permission decided by configuration, optionally asking the user when undecided."""

    def __init__(
        self,
        setting: PermissionSetting,
        *,
        ask: Optional[Callable[[], Awaitable[bool]]] = None,
    ) -> None:
        self._state: PermissionSetting = setting
        self._ask = ask

    @property
    def current(self) -> PermissionSetting:
        return self._state

    async def request(self) -> PermissionSetting:
        if self._state != "default":
            return self._state
        if self._ask is None:
            return "denied"
        self._state = "granted" if await self._ask() else "denied"
        return self._state


class InMemoryNotificationSurface(NotificationSurface):
    """Notification surface keyed by tag: showing a tag again replaces it."""

    def __init__(self) -> None:
        self._by_tag: Dict[str, Notification] = {}
        self._counter = 0

    async def show(self, intent: NotificationIntent) -> Notification:
        self._counter += 1
        notification = Notification(notification_id=f"n{self._counter}", intent=intent)
        replaced = self._by_tag.get(intent.tag)
        self._by_tag[intent.tag] = notification
        logger.debug(
            "notification.shown tag=%s replaced=%s title=%s",
            intent.tag,
            replaced is not None,
            intent.title,
        )
        return notification

    async def close(self, notification: Notification) -> None:
        current = self._by_tag.get(notification.intent.tag)
        if current is not None and current.notification_id == notification.notification_id:
            del self._by_tag[notification.intent.tag]

    def visible(self) -> list[Notification]:
        return list(self._by_tag.values())


Opener = Callable[[str, bool], Awaitable[None]]


async def browser_opener(url: str, new_window: bool) -> None:
    loop = asyncio.get_running_loop()
    await loop.run_in_executor(None, webbrowser.open, url, 1 if new_window else 0)


class BrowserClientView(ClientView):
    def __init__(self, url: str, opener: Opener) -> None:
        self._url = url
        self._opener = opener
        self.focused = False

    @property
    def url(self) -> str:
        return self._url

    async def navigate(self, url: str) -> None:
        self._url = url
        await self._opener(url, False)

    async def focus(self) -> None:
        self.focused = True


class ClientViewRegistry(ClientViews):
    """
    Client views this agent opened, searched by origin.

    The browser never reports closed tabs back, so only the most recent
    max_views views are remembered.
    """

    def __init__(self, opener: Opener = browser_opener, *, max_views: int = 8) -> None:
        if max_views < 1:
            raise ValueError("max_views must be at least 1")
        self._opener = opener
        self._max_views = max_views
        self._views: list[BrowserClientView] = []

    def match_all(self, origin: str) -> list[ClientView]:
        base = URL(origin)
        return [view for view in self._views if same_origin(URL(view.url), base)]

    async def open_window(self, url: str) -> ClientView:
        view = BrowserClientView(url, self._opener)
        await self._opener(url, True)
        self._views.append(view)
        del self._views[: -self._max_views]
        return view
