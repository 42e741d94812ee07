"""Core data structures for the jsonbabel translator."""

from __future__ import annotations

import pathlib
from dataclasses import dataclass, field
from typing import Any, Dict, List, NamedTuple, Optional, Tuple, Union

from .errors import FormatGuardMismatch
from .hashing import fingerprint

Segment = Union[str, int]
PathKey = Tuple[Segment, ...]
JsonValue = Any


class Occurrence(NamedTuple):
    """One place a leaf string appears: which document and where inside it."""

    document_id: str
    path: PathKey


@dataclass
class Document:
    """A parsed source document and its flattened leaf strings."""

    document_id: str
    tree: JsonValue
    leaves: Dict[PathKey, str] = field(default_factory=dict)
    source_path: Optional[pathlib.Path] = None

    @property
    def fingerprints(self) -> set[str]:
        return {fingerprint(text) for text in self.leaves.values()}


@dataclass
class UniqueString:
    """A leaf string shared by every place it occurs across documents."""

    text: str
    fingerprint: str
    occurrences: List[Occurrence] = field(default_factory=list)

    @property
    def document_ids(self) -> List[str]:
        seen: Dict[str, None] = {}
        for occurrence in self.occurrences:
            seen.setdefault(occurrence.document_id, None)
        return list(seen)


@dataclass
class Batch:
    """A bounded group of unique strings sent in one backend call."""

    batch_id: int
    language: str
    strings: List[UniqueString]

    def __len__(self) -> int:
        return len(self.strings)


@dataclass
class BatchOutcome:
    """Result of one backend call: translations or the reason it failed."""

    batch: Batch
    translations: Dict[str, str] = field(default_factory=dict)
    error: Optional[str] = None
    duration: float = 0.0
    format_warnings: List[FormatGuardMismatch] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.error is None
