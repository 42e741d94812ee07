"""Collapsing of leaf strings shared across documents."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, List

from .hashing import fingerprint
from .structures import Document, Occurrence, UniqueString


@dataclass
class DedupeResult:
    """Unique strings in first-seen order plus occurrence accounting."""

    strings: Dict[str, UniqueString] = field(default_factory=dict)
    total_occurrences: int = 0

    @property
    def unique_count(self) -> int:
        return len(self.strings)

    @property
    def savings(self) -> int:
        """Leaf strings that did not need their own translation."""

        return self.total_occurrences - self.unique_count

    def for_document(self, document_id: str) -> List[UniqueString]:
        return [
            unique
            for unique in self.strings.values()
            if document_id in unique.document_ids
        ]


def dedupe(documents: Iterable[Document]) -> DedupeResult:
    """Merge the flattened leaves of ``documents`` into unique strings."""

    result = DedupeResult()
    for document in documents:
        for path, text in document.leaves.items():
            digest = fingerprint(text)
            unique = result.strings.get(digest)
            if unique is None:
                unique = UniqueString(text=text, fingerprint=digest)
                result.strings[digest] = unique
            unique.occurrences.append(Occurrence(document.document_id, path))
            result.total_occurrences += 1
    return result
