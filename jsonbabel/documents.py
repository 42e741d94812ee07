"""Reading, locating and writing JSON documents."""

from __future__ import annotations

import glob
import json
import pathlib
from collections import Counter
from typing import Dict, Iterable, List, Mapping, TypeVar

from . import paths
from .errors import DocumentReadError, OverwriteRefusedError
from .structures import Document, JsonValue

DEFAULT_OUTPUT_TEMPLATE = "{dir}/{name}.{lang}.json"
GLOB_CHARACTERS = frozenset("*?[")

K = TypeVar("K")


def is_glob(pattern: str) -> bool:
    return any(char in pattern for char in GLOB_CHARACTERS)


def expand_inputs(patterns: Iterable[str]) -> List[pathlib.Path]:
    """Resolve file arguments and glob patterns to unique absolute paths.

    Order follows the arguments; matches of one pattern are sorted.
    """

    seen: dict[pathlib.Path, None] = {}
    for pattern in patterns:
        expanded = str(pathlib.Path(pattern).expanduser())
        if is_glob(expanded):
            candidates = sorted(glob.glob(expanded, recursive=True))
        else:
            candidates = [expanded]
        for candidate in candidates:
            path = pathlib.Path(candidate).resolve()
            if path.is_dir():
                continue
            seen.setdefault(path, None)
    return list(seen)


def document_id_for(path: pathlib.Path) -> str:
    return str(path.expanduser().resolve())


def load_document(document_id: str, tree: JsonValue) -> Document:
    """Wrap an already parsed tree, flattening its leaf strings."""

    try:
        leaves = paths.flatten(tree)
    except paths.PathDepthError as exc:
        raise DocumentReadError(document_id, str(exc)) from exc
    return Document(document_id=document_id, tree=tree, leaves=leaves)


def read_document(path: pathlib.Path) -> Document:
    """Parse the JSON file at ``path``; any failure is scoped to this document."""

    document_id = document_id_for(path)
    try:
        raw = pathlib.Path(document_id).read_text(encoding="utf-8-sig")
    except (OSError, UnicodeDecodeError) as exc:
        raise DocumentReadError(document_id, f"could not be read ({exc})") from exc
    try:
        tree = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise DocumentReadError(document_id, f"is not valid JSON ({exc})") from exc
    except RecursionError as exc:
        raise DocumentReadError(document_id, "nests too deeply to parse") from exc

    document = load_document(document_id, tree)
    document.source_path = pathlib.Path(document_id)
    return document


def render_output_path(template: str, source: pathlib.Path, language: str) -> pathlib.Path:
    """Substitute ``{dir}``, ``{name}`` and ``{lang}`` literally into ``template``."""

    name = source.name[: -len(".json")] if source.name.lower().endswith(".json") else source.stem
    rendered = (
        template.replace("{dir}", str(source.parent))
        .replace("{name}", name)
        .replace("{lang}", language)
    )
    return pathlib.Path(rendered).expanduser()


def find_output_conflicts(
    destinations: Mapping[K, pathlib.Path],
    inputs: Iterable[pathlib.Path],
) -> Dict[K, OverwriteRefusedError]:
    """Outputs that would overwrite an input of the run or another output.

    ``destinations`` maps any key (the runner uses document and language
    pairs) to a rendered output path. Every output involved in a clash is
    refused, not only the later ones.
    """

    input_paths = {path.resolve() for path in inputs}
    claims = Counter(destination.resolve() for destination in destinations.values())

    conflicts: Dict[K, OverwriteRefusedError] = {}
    for key, destination in destinations.items():
        resolved = destination.resolve()
        if resolved in input_paths:
            conflicts[key] = OverwriteRefusedError(
                f"The output path {destination} is an input document. "
                "Refusing to overwrite it."
            )
        elif claims[resolved] > 1:
            conflicts[key] = OverwriteRefusedError(
                f"The output path {destination} would be written {claims[resolved]} times "
                "in this run. Use {name} and {lang} in the output pattern to keep outputs apart."
            )
    return conflicts


def serialise(tree: JsonValue) -> str:
    return json.dumps(tree, ensure_ascii=False, indent=2)


def write_document(path: pathlib.Path, tree: JsonValue) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(serialise(tree), encoding="utf-8")


def read_tree(path: pathlib.Path) -> JsonValue:
    return json.loads(path.read_text(encoding="utf-8"))
