from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal, Mapping, Optional, Sequence, Tuple

from yarl import URL

RequestMode = Literal["navigate", "same-origin", "no-cors", "cors"]
HeaderPairs = Tuple[Tuple[str, str], ...]

# Hop-by-hop headers are never stored or replayed.
_HOP_BY_HOP = frozenset(
    {
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "te",
        "trailer",
        "transfer-encoding",
        "upgrade",
        "content-encoding",
        "content-length",
    }
)


def _freeze_headers(headers: Optional[Mapping[str, str] | Sequence[Tuple[str, str]]]) -> HeaderPairs:
    if not headers:
        return ()
    items = headers.items() if isinstance(headers, Mapping) else headers
    return tuple((str(name), str(value)) for name, value in items)


def filter_headers(headers: HeaderPairs) -> HeaderPairs:
    return tuple((name, value) for name, value in headers if name.lower() not in _HOP_BY_HOP)


@dataclass(frozen=True, slots=True)
class Request:
    method: str
    url: URL
    mode: RequestMode = "same-origin"
    headers: HeaderPairs = ()
    body: bytes = b""

    @classmethod
    def build(
        cls,
        url: str | URL,
        *,
        method: str = "GET",
        mode: RequestMode = "same-origin",
        headers: Optional[Mapping[str, str] | Sequence[Tuple[str, str]]] = None,
        body: bytes = b"",
    ) -> Request:
        return cls(
            method=method.upper(),
            url=URL(url) if isinstance(url, str) else url,
            mode=mode,
            headers=_freeze_headers(headers),
            body=body,
        )

    @property
    def identity(self) -> str:
        return request_identity(self.method, self.url)


@dataclass(frozen=True, slots=True)
class ResponseSnapshot:
    """Immutable copy of a response captured at fetch time."""

    status: int
    body: bytes
    headers: HeaderPairs = ()
    reason: str = ""
    url: str = ""
    fetched_at: str = ""
    from_cache: bool = field(default=False, compare=False)

    @property
    def ok(self) -> bool:
        return 200 <= self.status <= 299

    def header(self, name: str) -> Optional[str]:
        lowered = name.lower()
        for key, value in self.headers:
            if key.lower() == lowered:
                return value
        return None


def origin_of(url: URL) -> Tuple[str, str, Optional[int]]:
    return (url.scheme.lower(), (url.host or "").lower(), url.port)


def same_origin(a: URL, b: URL) -> bool:
    return origin_of(a) == origin_of(b)


def canonical_url(url: URL) -> str:
    if not url.is_absolute():
        raise ValueError(f"Request URL must be absolute: {url}")
    port = None if url.is_default_port() else url.port
    rebuilt = URL.build(
        scheme=url.scheme.lower(),
        host=(url.host or "").lower(),
        port=port,
        path=url.raw_path or "/",
        query_string=url.raw_query_string,
        encoded=True,
    )
    return str(rebuilt)


def request_identity(method: str, url: URL) -> str:
    return f"{method.upper()} {canonical_url(url)}"


def resolve(origin: URL, path: str) -> URL:
    return origin.join(URL(path))


__all__ = [
    "HeaderPairs",
    "Request",
    "RequestMode",
    "ResponseSnapshot",
    "canonical_url",
    "filter_headers",
    "origin_of",
    "request_identity",
    "resolve",
    "same_origin",
]
