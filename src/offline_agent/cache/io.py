from __future__ import annotations

import base64
import json
import logging
import uuid
from pathlib import Path
from typing import Dict, Optional, Sequence, Tuple

from offline_agent.cache.models import (
    CacheIndex,
    CachedEntry,
    GenerationRecord,
    SchemaVersion,
)
from offline_agent.core.http import ResponseSnapshot

logger = logging.getLogger(__name__)


def _tmp_path_for(path: Path) -> Path:
    # Unique per writer so concurrent writes to one key never share a temp file.
    return path.with_name(f"{path.name}.{uuid.uuid4().hex}.tmp")


def atomic_write_json(path: Path, payload: dict) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = _tmp_path_for(path)
    tmp_path.write_text(json.dumps(payload, indent=2, sort_keys=True), encoding="utf-8")
    tmp_path.replace(path)


def write_batch(items: Sequence[Tuple[Path, dict]]) -> None:
    """
    Write several JSON files, staging every one before any of them lands.

    Every payload is first written to a temp file. Only when all temp files
    exist are they renamed into place; a failure before that point removes the
    temp files and leaves the targets untouched. A failure while renaming
    removes the temp files not yet moved and re-raises; targets renamed before
    it keep their new content.
    """
    staged: list[Tuple[Path, Path]] = []
    try:
        for path, payload in items:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = _tmp_path_for(path)
            staged.append((tmp_path, path))
            tmp_path.write_text(json.dumps(payload, sort_keys=True), encoding="utf-8")
    except OSError:
        for tmp_path, _ in staged:
            tmp_path.unlink(missing_ok=True)
        raise
    moved = 0
    try:
        for tmp_path, path in staged:
            tmp_path.replace(path)
            moved += 1
    except OSError:
        for tmp_path, _ in staged[moved:]:
            tmp_path.unlink(missing_ok=True)
        raise


def encode_entry(entry: CachedEntry) -> dict:
    response = entry.response
    return {
        "identity": entry.identity,
        "status": response.status,
        "reason": response.reason,
        "headers": [[name, value] for name, value in response.headers],
        "url": response.url,
        "fetched_at": response.fetched_at,
        "body": base64.b64encode(response.body).decode("ascii"),
    }


def decode_entry(payload: dict) -> CachedEntry:
    return CachedEntry(
        identity=payload["identity"],
        response=ResponseSnapshot(
            status=int(payload["status"]),
            reason=payload.get("reason", ""),
            headers=tuple((str(name), str(value)) for name, value in payload.get("headers", [])),
            url=payload.get("url", ""),
            fetched_at=payload.get("fetched_at", ""),
            body=base64.b64decode(payload.get("body", "")),
            from_cache=True,
        ),
    )


def read_entry_file(path: Path) -> Optional[CachedEntry]:
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    try:
        return decode_entry(json.loads(raw))
    except (ValueError, KeyError, TypeError):
        logger.warning("Discarding unreadable cache entry. path=%s", path, exc_info=True)
        return None


def _encode_generation(record: GenerationRecord) -> dict:
    return {
        "state": record.state,
        "sequence": record.sequence,
        "directory": record.directory,
        "created_at": record.created_at,
    }


def encode_index(index: CacheIndex) -> dict:
    return {
        "schema_version": index.schema_version,
        "current": index.current,
        "next_sequence": index.next_sequence,
        "generations": {
            generation_id: _encode_generation(record) for generation_id, record in index.generations.items()
        },
    }


def decode_index(payload: dict) -> CacheIndex:
    generations: Dict[str, GenerationRecord] = {}
    for generation_id, record_payload in payload.get("generations", {}).items():
        generations[generation_id] = GenerationRecord(
            generation_id=generation_id,
            state=record_payload["state"],
            sequence=int(record_payload["sequence"]),
            directory=record_payload["directory"],
            created_at=record_payload.get("created_at", ""),
        )
    return CacheIndex(
        schema_version=int(payload.get("schema_version", SchemaVersion)),
        current=payload.get("current"),
        next_sequence=int(payload.get("next_sequence", 1)),
        generations=generations,
    )


def read_index_file(path: Path) -> CacheIndex:
    if not path.exists():
        return CacheIndex(schema_version=SchemaVersion)
    try:
        index = decode_index(json.loads(path.read_text(encoding="utf-8")))
    except Exception:
        logger.exception("Failed to read cache index, starting fresh. path=%s", path)
        return CacheIndex(schema_version=SchemaVersion)
    if index.schema_version != SchemaVersion:
        logger.warning(
            "Cache index schema version mismatch, starting fresh. path=%s expected=%s actual=%s",
            path,
            SchemaVersion,
            index.schema_version,
        )
        return CacheIndex(schema_version=SchemaVersion)
    return index
