"""Rebuilding translated documents and checking them against their source."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional, Set

from . import paths
from .hashing import fingerprint
from .structures import Document, JsonValue, PathKey

METADATA_KEY = "_translator_metadata"
TOOL_NAME = "jsonbabel"


def rebuild(document: Document, translations: Mapping[str, str]) -> JsonValue:
    """Apply fingerprint-keyed translations to every matching leaf of ``document``."""

    by_path: Dict[PathKey, str] = {}
    for path, text in document.leaves.items():
        translated = translations.get(fingerprint(text))
        if translated is not None:
            by_path[path] = translated
    return paths.reconstruct(document.tree, by_path)


def sort_keys(node: JsonValue) -> JsonValue:
    """Recursively order object keys lexicographically; arrays keep their order."""

    if isinstance(node, dict):
        return {key: sort_keys(node[key]) for key in sorted(node)}
    if isinstance(node, list):
        return [sort_keys(item) for item in node]
    return node


def build_metadata(
    *,
    provider: str,
    source_language: str,
    target_language: str,
    total_strings: int,
    source_file: Optional[str] = None,
    timestamp: Optional[datetime] = None,
) -> Dict[str, Any]:
    moment = timestamp or datetime.now(timezone.utc)
    metadata: Dict[str, Any] = {
        "tool": TOOL_NAME,
        "provider": provider,
        "source_language": source_language,
        "target_language": target_language,
        "timestamp": moment.isoformat(),
        "total_strings": total_strings,
    }
    if source_file:
        metadata["source_file"] = source_file
    return metadata


def inject_metadata(tree: JsonValue, metadata: Mapping[str, Any]) -> JsonValue:
    """Return ``tree`` with the metadata object as its first key.

    Only object roots can carry metadata; arrays and scalars come back as-is.
    """

    if not isinstance(tree, dict):
        return tree
    result: Dict[str, Any] = {METADATA_KEY: dict(metadata)}
    for key, value in tree.items():
        if key != METADATA_KEY:
            result[key] = value
    return result


def key_set(tree: JsonValue) -> Set[str]:
    """Flattened, displayable paths of every leaf, metadata excluded."""

    if isinstance(tree, dict) and METADATA_KEY in tree:
        tree = {key: value for key, value in tree.items() if key != METADATA_KEY}
    return {paths.display(path) for path in paths.leaf_paths(tree)}


@dataclass
class KeyComparison:
    """Outcome of comparing source and output key sets."""

    source_keys: Set[str] = field(default_factory=set)
    missing_keys: Set[str] = field(default_factory=set)
    extra_keys: Set[str] = field(default_factory=set)

    @property
    def is_valid(self) -> bool:
        return not self.missing_keys and not self.extra_keys


def compare_keys(source: JsonValue, output: JsonValue) -> KeyComparison:
    source_keys = key_set(source)
    output_keys = key_set(output)
    return KeyComparison(
        source_keys=source_keys,
        missing_keys=source_keys - output_keys,
        extra_keys=output_keys - source_keys,
    )
