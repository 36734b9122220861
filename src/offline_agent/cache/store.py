from __future__ import annotations

import asyncio
import logging
import shutil
from pathlib import Path
from typing import Iterable, Optional, Sequence

from yarl import URL

from offline_agent.cache.io import (
    atomic_write_json,
    encode_entry,
    encode_index,
    read_entry_file,
    read_index_file,
    write_batch,
)
from offline_agent.cache.models import (
    CacheIndex,
    CachedEntry,
    GenerationHandle,
    GenerationRecord,
)
from offline_agent.core.errors import NetworkError, SeedError
from offline_agent.core.http import Request, ResponseSnapshot
from offline_agent.core.utils import format_rfc3339, hash_text, utc_now
from offline_agent.net.fetcher import Fetcher

logger = logging.getLogger(__name__)

INDEX_FILENAME = "index.json"
GENERATIONS_DIRNAME = "generations"


def _log_task_result(task: asyncio.Task) -> None:
    try:
        task.result()
    except asyncio.CancelledError:
        return
    except Exception:
        logger.exception("Background generation deletion failed.")


class CacheStore:
    """
    Versioned response cache kept on disk.

    Each generation is a directory of entry files plus a record in index.json.
    Readers only ever see a whole generation: a generation becomes current
    through promote(), and the router reads through the current pointer.
    """

    def __init__(self, root_dir: str | Path) -> None:
        self._root = Path(root_dir)
        self._index_path = self._root / INDEX_FILENAME
        self._generations_dir = self._root / GENERATIONS_DIRNAME
        self._lock = asyncio.Lock()
        self._index: CacheIndex = read_index_file(self._index_path)
        self._deletion_tasks: set[asyncio.Task] = set()

    @property
    def root(self) -> Path:
        return self._root

    def _handle_for(self, record: GenerationRecord) -> GenerationHandle:
        return GenerationHandle(generation_id=record.generation_id, path=self._generations_dir / record.directory)

    def _persist_index(self) -> None:
        atomic_write_json(self._index_path, encode_index(self._index))

    def _entry_path(self, handle: GenerationHandle, identity: str) -> Path:
        return handle.path / f"{hash_text(identity)}.json"

    def _is_readable(self, handle: GenerationHandle) -> bool:
        record = self._index.generations.get(handle.generation_id)
        return record is not None and record.state != "retired"

    async def open(self, generation_id: str) -> GenerationHandle:
        async with self._lock:
            record = self._index.generations.get(generation_id)
            if record is None:
                record = GenerationRecord(
                    generation_id=generation_id,
                    state="seeding",
                    sequence=self._index.next_sequence,
                    directory=hash_text(generation_id)[:24],
                    created_at=format_rfc3339(utc_now()),
                )
                self._index.next_sequence += 1
                self._index.generations[generation_id] = record
                self._persist_index()
                logger.info("cache.generation_created generation=%s sequence=%s", generation_id, record.sequence)
            handle = self._handle_for(record)
            handle.path.mkdir(parents=True, exist_ok=True)
            return handle

    async def seed(self, handle: GenerationHandle, manifest: Sequence[str | URL], fetcher: Fetcher) -> int:
        """
        Fetch every manifest URL and commit the responses as one batch.

        Any unreachable URL or non-2xx status fails the whole seed and nothing
        from the batch is written.
        """
        if not self._is_readable(handle):
            raise SeedError(handle.generation_id, "generation is retired")

        requests = [Request.build(url) for url in manifest]
        results = await asyncio.gather(
            *(self._fetch_for_seed(fetcher, request) for request in requests),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, BaseException):
                logger.warning(
                    "cache.seed_failed generation=%s error=%s",
                    handle.generation_id,
                    result,
                )
                if isinstance(result, SeedError):
                    raise result
                raise SeedError(handle.generation_id, str(result)) from result

        if not self._is_readable(handle):
            raise SeedError(handle.generation_id, "generation was retired while seeding")
        entries = [
            CachedEntry(identity=request.identity, response=response)
            for request, response in zip(requests, results)
        ]
        write_batch([(self._entry_path(handle, entry.identity), encode_entry(entry)) for entry in entries])
        logger.info("cache.seeded generation=%s entries=%d", handle.generation_id, len(entries))
        return len(entries)

    async def _fetch_for_seed(self, fetcher: Fetcher, request: Request) -> ResponseSnapshot:
        try:
            response = await fetcher.fetch(request)
        except NetworkError as e:
            raise SeedError(str(request.url), str(e)) from e
        if not response.ok:
            raise SeedError(str(request.url), f"status={response.status}")
        return response

    async def lookup(self, handle: GenerationHandle, identity: str) -> Optional[CachedEntry]:
        if not self._is_readable(handle):
            return None
        return read_entry_file(self._entry_path(handle, identity))

    async def match(self, identity: str) -> Optional[CachedEntry]:
        handle = self.current()
        if handle is None:
            return None
        return await self.lookup(handle, identity)

    async def put(self, handle: GenerationHandle, identity: str, response: ResponseSnapshot) -> bool:
        if not self._is_readable(handle):
            logger.debug("cache.put_discarded generation=%s identity=%s", handle.generation_id, identity)
            return False
        entry = CachedEntry(identity=identity, response=response)
        atomic_write_json(self._entry_path(handle, identity), encode_entry(entry))
        return True

    async def promote(self, generation_id: str) -> None:
        async with self._lock:
            if generation_id not in self._index.generations:
                raise KeyError(f"Unknown cache generation: {generation_id}")
            retired: list[str] = []
            for record in self._index.generations.values():
                if record.generation_id == generation_id:
                    record.state = "current"
                elif record.state != "retired":
                    record.state = "retired"
                    retired.append(record.generation_id)
                else:
                    retired.append(record.generation_id)
            self._index.current = generation_id
            self._persist_index()
        logger.info("cache.promoted generation=%s retired=%s", generation_id, retired)

        if retired:
            task = asyncio.create_task(self._delete_generations(retired))
            self._deletion_tasks.add(task)
            task.add_done_callback(self._deletion_tasks.discard)
            task.add_done_callback(_log_task_result)

    async def evict_stale(self) -> list[str]:
        async with self._lock:
            current = self._index.current
            if current is None:
                logger.warning("cache.evict_skipped reason=no_current_generation")
                return []
            stale = [gid for gid in self._index.generations if gid != current]
            removed = [gid for gid in stale if self._remove_generation_locked(gid)]
            self._remove_orphan_directories_locked()
        if removed:
            logger.info("cache.evicted generations=%s", removed)
        return removed

    async def _delete_generations(self, generation_ids: Iterable[str]) -> None:
        async with self._lock:
            for generation_id in generation_ids:
                record = self._index.generations.get(generation_id)
                if record is None or record.state != "retired":
                    continue
                self._remove_generation_locked(generation_id)

    def _remove_generation_locked(self, generation_id: str) -> bool:
        record = self._index.generations.get(generation_id)
        if record is None:
            return False
        if record.state == "current":
            return False
        # Mark retired and drop from the index before touching files so readers stop.
        record.state = "retired"
        del self._index.generations[generation_id]
        self._persist_index()
        shutil.rmtree(self._handle_for(record).path, ignore_errors=True)
        return True

    def _remove_orphan_directories_locked(self) -> None:
        if not self._generations_dir.exists():
            return
        known = {record.directory for record in self._index.generations.values()}
        for child in self._generations_dir.iterdir():
            if child.is_dir() and child.name not in known:
                logger.info("cache.orphan_removed path=%s", child)
                shutil.rmtree(child, ignore_errors=True)

    def current(self) -> Optional[GenerationHandle]:
        if self._index.current is None:
            return None
        record = self._index.generations.get(self._index.current)
        if record is None:
            return None
        return self._handle_for(record)

    def generations(self) -> list[GenerationRecord]:
        return self._index.ordered()

    def entry_count(self, handle: GenerationHandle) -> int:
        if not handle.path.exists():
            return 0
        return sum(1 for path in handle.path.glob("*.json"))

    async def close(self) -> None:
        if self._deletion_tasks:
            await asyncio.gather(*list(self._deletion_tasks), return_exceptions=True)
