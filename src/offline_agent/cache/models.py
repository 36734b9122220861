from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Literal, Optional

from offline_agent.core.http import ResponseSnapshot

SchemaVersion = 1

# seeding -> current -> retired. Only promote() moves a generation to current.
GenerationState = Literal["seeding", "current", "retired"]


@dataclass(slots=True)
class GenerationRecord:
    generation_id: str
    state: GenerationState
    sequence: int
    directory: str
    created_at: str


@dataclass(slots=True)
class CacheIndex:
    schema_version: int
    current: Optional[str] = None
    next_sequence: int = 1
    generations: Dict[str, GenerationRecord] = field(default_factory=dict)

    def ordered(self) -> list[GenerationRecord]:
        return sorted(self.generations.values(), key=lambda record: record.sequence)


@dataclass(frozen=True, slots=True)
class GenerationHandle:
    generation_id: str
    path: Path


@dataclass(frozen=True, slots=True)
class CachedEntry:
    identity: str
    response: ResponseSnapshot
