from __future__ import annotations

import base64
import binascii

from offline_agent.core.errors import DecodeError


def decode_key(text: str) -> bytes:
    """
    Decode a base64url key (application server key, p256dh, auth secret).

    Padding may be omitted. The URL-safe characters are mapped back to the
    standard alphabet before a strict decode, so anything outside the alphabet
    raises DecodeError instead of being skipped.
    """
    if not isinstance(text, str):
        raise DecodeError(f"Key text must be str, got: {type(text).__name__}")
    stripped = text.strip().rstrip("=")
    if len(stripped) % 4 == 1:
        raise DecodeError(f"Invalid key length: {len(stripped)}")

    padding = "=" * ((4 - len(stripped) % 4) % 4)
    standard = (stripped + padding).replace("-", "+").replace("_", "/")
    try:
        return base64.b64decode(standard, validate=True)
    except (binascii.Error, ValueError) as e:
        raise DecodeError(f"Invalid key text: {e}") from e


def encode_key(raw: bytes) -> str:
    return base64.urlsafe_b64encode(bytes(raw)).decode("ascii").rstrip("=")


__all__ = ["decode_key", "encode_key"]
