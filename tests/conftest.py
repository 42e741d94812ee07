from __future__ import annotations

import json
import pathlib
import threading
from typing import Callable, List, Sequence

import pytest

from jsonbabel.providers import DEFAULT_SOURCE_LANGUAGE, TranslationProvider


class RecordingProvider(TranslationProvider):
    """Prefixes every string with the target language and remembers each call."""

    name = "recording"

    def __init__(self, *, fail_on: str | None = None, detected: str = "English") -> None:
        self.calls: List[dict] = []
        self.fail_on = fail_on
        self.detected = detected
        self._lock = threading.Lock()

    def translate(
        self,
        strings: Sequence[str],
        *,
        target_language: str,
        source_language: str = DEFAULT_SOURCE_LANGUAGE,
        context: str | None = None,
    ) -> List[str]:
        with self._lock:
            self.calls.append(
                {
                    "strings": list(strings),
                    "target_language": target_language,
                    "source_language": source_language,
                    "context": context,
                }
            )
        if self.fail_on is not None and any(self.fail_on in text for text in strings):
            raise RuntimeError("backend unavailable")
        return [f"[{target_language}] {text}" for text in strings]

    def detect_language(self, samples: Sequence[str]) -> str:
        return self.detected

    @property
    def translated_strings(self) -> List[str]:
        return [text for call in self.calls for text in call["strings"]]


@pytest.fixture
def provider() -> RecordingProvider:
    return RecordingProvider()


@pytest.fixture
def write_json(tmp_path: pathlib.Path) -> Callable[[str, object], pathlib.Path]:
    def _write(name: str, content: object) -> pathlib.Path:
        path = tmp_path / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(content, ensure_ascii=False), encoding="utf-8")
        return path.resolve()

    return _write


def read_json(path: pathlib.Path) -> object:
    return json.loads(path.read_text(encoding="utf-8"))
