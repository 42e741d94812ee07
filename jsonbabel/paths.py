"""Flattening of nested documents into path-addressed leaf strings and back."""

from __future__ import annotations

import copy
from typing import Dict, Iterator, List, Mapping, Tuple

from .structures import JsonValue, PathKey, Segment

MAX_DEPTH = 200

SEPARATOR = "\x00"
ESCAPE = "\x01"
INDEX_OPEN = "["
INDEX_CLOSE = "]"

_ESCAPES = {
    ESCAPE: ESCAPE + "e",
    SEPARATOR: ESCAPE + "s",
}
_EMPTY_SEGMENT = ESCAPE + "n"
_LITERAL_BRACKET = ESCAPE + "b"
_UNESCAPES = {"e": ESCAPE, "s": SEPARATOR, "b": INDEX_OPEN}


class PathDepthError(ValueError):
    """Raised when a document nests deeper than ``MAX_DEPTH``."""


def _walk(
    node: JsonValue,
    prefix: PathKey,
    max_depth: int,
) -> Iterator[Tuple[PathKey, JsonValue]]:
    if len(prefix) > max_depth:
        raise PathDepthError(f"Document nesting exceeds {max_depth} levels.")
    if isinstance(node, dict):
        for key, value in node.items():
            yield from _walk(value, prefix + (key,), max_depth)
    elif isinstance(node, list):
        for index, value in enumerate(node):
            yield from _walk(value, prefix + (index,), max_depth)
    else:
        yield prefix, node


def flatten(document: JsonValue, *, max_depth: int = MAX_DEPTH) -> Dict[PathKey, str]:
    """Map every leaf string of ``document`` to its path, in document order.

    Object keys are visited in insertion order and arrays in index order.
    Numbers, booleans and null are left out; they pass through
    :func:`reconstruct` untouched.
    """

    return {
        path: value
        for path, value in _walk(document, (), max_depth)
        if isinstance(value, str)
    }


def leaf_paths(document: JsonValue, *, max_depth: int = MAX_DEPTH) -> List[PathKey]:
    """Paths of every leaf, including numbers, booleans and null."""

    return [path for path, _ in _walk(document, (), max_depth)]


def _encode_segment(segment: Segment) -> str:
    if isinstance(segment, int):
        return f"{INDEX_OPEN}{segment}{INDEX_CLOSE}"
    if segment == "":
        return _EMPTY_SEGMENT
    escaped = "".join(_ESCAPES.get(char, char) for char in segment)
    if escaped.startswith(INDEX_OPEN):
        # A leading bracket would read back as an array index.
        escaped = _LITERAL_BRACKET + escaped[1:]
    return escaped


def _decode_segment(raw: str) -> Segment:
    if raw == _EMPTY_SEGMENT:
        return ""
    if raw.startswith(INDEX_OPEN) and raw.endswith(INDEX_CLOSE):
        return int(raw[1:-1])

    chars: list[str] = []
    index = 0
    while index < len(raw):
        char = raw[index]
        if char == ESCAPE:
            if index + 1 >= len(raw) or raw[index + 1] not in _UNESCAPES:
                raise ValueError(f"Invalid escape sequence in path segment {raw!r}.")
            chars.append(_UNESCAPES[raw[index + 1]])
            index += 2
            continue
        chars.append(char)
        index += 1
    return "".join(chars)


def encode(path: PathKey) -> str:
    """Encode a path as a single string that :func:`decode` reverses exactly."""

    return SEPARATOR.join(_encode_segment(segment) for segment in path)


def decode(encoded: str) -> PathKey:
    """Split an encoded path back into its original segments."""

    if encoded == "":
        return ()
    return tuple(_decode_segment(raw) for raw in encoded.split(SEPARATOR))


def display(path: PathKey) -> str:
    """Human-readable dotted form of a path, e.g. ``menu.items[2].label``."""

    parts: list[str] = []
    for segment in path:
        if isinstance(segment, int):
            parts.append(f"{INDEX_OPEN}{segment}{INDEX_CLOSE}")
        elif parts:
            parts.append(f".{segment}")
        else:
            parts.append(segment)
    return "".join(parts)


def reconstruct(original: JsonValue, translations: Mapping[PathKey, str]) -> JsonValue:
    """Return a deep copy of ``original`` with the mapped leaves replaced.

    Leaves missing from ``translations`` keep their original value, so an empty
    mapping returns a tree equal to ``original``. The input is never mutated.
    """

    result = copy.deepcopy(original)
    if not translations:
        return result
    if () in translations:
        return translations[()]

    for path, value in translations.items():
        parent = result
        try:
            for segment in path[:-1]:
                parent = parent[segment]
            current = parent[path[-1]]
        except (KeyError, IndexError, TypeError):
            continue
        if isinstance(current, str):
            parent[path[-1]] = value
    return result
