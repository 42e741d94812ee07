"""Persistent translation cache keyed by document, language and fingerprint.

The store is a single JSON file shaped as
``{document_id: {language: {fingerprint: translation}}}``. It is loaded once at
the start of a run, mutated in memory and written back once at the end through
a temporary file that atomically replaces the previous store. Separate runs
sharing one file are not isolated from each other: the last full persist wins.
"""

from __future__ import annotations

import json
import logging
import os
import pathlib
import tempfile
from threading import RLock
from typing import Dict, Iterable, Optional

from .errors import CacheLoadError, PersistError

logger = logging.getLogger(__name__)

LanguageEntries = Dict[str, str]
DocumentEntries = Dict[str, LanguageEntries]
CacheData = Dict[str, DocumentEntries]


def _validate(data: object) -> CacheData:
    if not isinstance(data, dict):
        raise CacheLoadError("Cache root must be an object keyed by document.")
    for document_id, languages in data.items():
        if not isinstance(languages, dict):
            raise CacheLoadError(f"Cache entry for {document_id!r} is not an object.")
        for language, entries in languages.items():
            if not isinstance(entries, dict) or not all(
                isinstance(value, str) for value in entries.values()
            ):
                raise CacheLoadError(
                    f"Cache entries for {document_id!r}/{language!r} are malformed."
                )
    return data  # type: ignore[return-value]


class TranslationCache:
    """In-memory view of the persisted cache with explicit load/persist."""

    def __init__(
        self,
        path: Optional[pathlib.Path] = None,
        data: Optional[CacheData] = None,
    ) -> None:
        self.path = path
        self._data: CacheData = data if data is not None else {}
        self._lock = RLock()
        self.dirty = False
        self.load_error: Optional[CacheLoadError] = None

    @classmethod
    def load(cls, path: pathlib.Path) -> "TranslationCache":
        """Read the store at ``path``; unreadable or corrupt stores load empty."""

        cache = cls(path=path)
        if not path.exists():
            return cache
        try:
            raw = path.read_text(encoding="utf-8")
            cache._data = _validate(json.loads(raw))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError, CacheLoadError) as exc:
            cache.load_error = (
                exc if isinstance(exc, CacheLoadError) else CacheLoadError(str(exc))
            )
            logger.warning(
                "Translation cache at %s could not be loaded (%s); starting empty.",
                path,
                exc,
            )
        return cache

    def lookup(self, document_id: str, language: str, fingerprint: str) -> Optional[str]:
        with self._lock:
            return self._data.get(document_id, {}).get(language, {}).get(fingerprint)

    def lookup_any(
        self,
        document_ids: Iterable[str],
        language: str,
        fingerprint: str,
    ) -> Optional[str]:
        """Return the first hit found under any of ``document_ids``."""

        for document_id in document_ids:
            hit = self.lookup(document_id, language, fingerprint)
            if hit is not None:
                return hit
        return None

    def record(
        self,
        document_id: str,
        language: str,
        fingerprint: str,
        translation: str,
    ) -> None:
        """Store a translation; rewriting the same value changes nothing."""

        with self._lock:
            entries = self._data.setdefault(document_id, {}).setdefault(language, {})
            previous = entries.get(fingerprint)
            if previous == translation:
                return
            if previous is not None:
                logger.warning(
                    "Replacing cached translation for %s in %s (%s): %r -> %r",
                    fingerprint[:12],
                    document_id,
                    language,
                    previous,
                    translation,
                )
            entries[fingerprint] = translation
            self.dirty = True

    def prune(
        self,
        document_id: str,
        language: str,
        current_fingerprints: Iterable[str],
    ) -> int:
        """Drop entries whose source string left the document; return the count."""

        keep = set(current_fingerprints)
        with self._lock:
            entries = self._data.get(document_id, {}).get(language)
            if not entries:
                return 0
            stale = [fingerprint for fingerprint in entries if fingerprint not in keep]
            for fingerprint in stale:
                del entries[fingerprint]
            if stale:
                self.dirty = True
            return len(stale)

    def persist(self) -> None:
        """Write the whole cache atomically to its backing file."""

        if self.path is None:
            raise PersistError("Translation cache has no backing file.")
        with self._lock:
            payload = json.dumps(self._data, ensure_ascii=False, indent=2)
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                fd, temp_name = tempfile.mkstemp(
                    prefix=f".{self.path.name}.",
                    suffix=".tmp",
                    dir=str(self.path.parent),
                )
                try:
                    with os.fdopen(fd, "w", encoding="utf-8") as handle:
                        handle.write(payload)
                        handle.flush()
                        os.fsync(handle.fileno())
                    os.replace(temp_name, self.path)
                except BaseException:
                    if os.path.exists(temp_name):
                        os.unlink(temp_name)
                    raise
            except OSError as exc:
                raise PersistError(
                    f"Could not write translation cache to {self.path}: {exc}"
                ) from exc
            self.dirty = False
