from __future__ import annotations


class AgentError(Exception):
    """Base class for errors raised by the offline agent."""


class UnsupportedEnvironment(AgentError):
    """The hosting environment cannot deliver push notifications."""


class PermissionDenied(AgentError):
    """The user declined the notification permission."""


class KeyExtractionError(AgentError):
    """The push service returned a subscription without p256dh or auth keys."""


class BackendSyncError(AgentError):
    """A call to the backend subscription registry failed."""


class DecodeError(AgentError, ValueError):
    """Key text is not valid base64url."""


class PayloadParseError(AgentError):
    """An inbound push body is not a well-formed notification payload."""


class NetworkError(AgentError):
    """A fetch could not produce a response."""


class OfflineUnavailableError(NetworkError):
    """A navigation failed and no offline document is cached."""


class SeedError(AgentError):
    """A manifest URL could not be fetched while seeding a generation."""

    def __init__(self, url: str, reason: str) -> None:
        super().__init__(f"Failed to seed {url}: {reason}")
        self.url = url
        self.reason = reason


__all__ = [
    "AgentError",
    "BackendSyncError",
    "DecodeError",
    "KeyExtractionError",
    "NetworkError",
    "OfflineUnavailableError",
    "PayloadParseError",
    "PermissionDenied",
    "SeedError",
    "UnsupportedEnvironment",
]
