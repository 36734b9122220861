from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field

PermissionSetting = Literal["granted", "denied", "default"]


class AppSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    # Origin of the CRM web client, e.g. https://u-sistem.space
    origin: str


class FileRotationSettings(BaseModel):
    """
    Date-based rotation settings (daily).

    This maps cleanly to Python's standard library TimedRotatingFileHandler behavior.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    backup_count: int


class FileLoggingSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    path: str
    rotation: FileRotationSettings


class LoggingSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    level: str
    file: FileLoggingSettings


class CacheSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    # Bumping the name is the only way to ship a new asset set.
    name: str
    root_dir: str = "data/cache"
    manifest: Sequence[str] = ("/", "/index.html", "/icon-512.png", "/icon-192.png", "/manifest.json")
    offline_document: str = "/index.html"


class RouterSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    api_prefix: str = "/api/"


class NetworkSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    timeout_seconds: float = 30.0


class ProxySettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    host: str = "127.0.0.1"
    port: int = 8787
    push_path: str = "/__push__"


class NotificationDefaults(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    title: str = "U-sistem"
    body: str = ""
    icon: str = "/icon-192.png"
    badge: str = "/icon-192.png"
    tag: str = "default"
    url: str = "/"
    vibrate: Sequence[int] = (200, 100, 200)
    require_interaction: bool = True


class PushSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    enabled: bool = True
    permission: PermissionSetting = "default"
    # Base URL handed out as the push endpoint; empty means the local proxy address.
    endpoint_base: str = ""
    state_path: str = "data/push/subscription.json"
    defaults: NotificationDefaults = Field(default_factory=NotificationDefaults)


class BackendSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    # Empty means the app origin.
    base_url: str = ""
    public_key_path: str = "/api/push/public-key"
    subscribe_path: str = "/api/push/subscribe"
    unsubscribe_path: str = "/api/push/unsubscribe"
    timeout_seconds: float = 15.0
    auth_token: Optional[str] = None


class AppConfig(BaseModel):
    """Effective runtime configuration after applying all precedence rules."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    app: AppSettings
    logging: LoggingSettings
    cache: CacheSettings
    router: RouterSettings = Field(default_factory=RouterSettings)
    network: NetworkSettings = Field(default_factory=NetworkSettings)
    proxy: ProxySettings = Field(default_factory=ProxySettings)
    push: PushSettings = Field(default_factory=PushSettings)
    backend: BackendSettings = Field(default_factory=BackendSettings)


@dataclass(frozen=True, slots=True)
class ConfigLoadRequest:
    """
    Optional inputs for a configuration loader.

    Implementations may use these to control where configuration is read from.
    """

    yaml_path: str = "data/config/config.yaml"
    env_prefix: str = "APP__"
    dotenv_path: Optional[str] = "data/.env"
