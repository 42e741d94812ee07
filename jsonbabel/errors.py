"""Error definitions for the jsonbabel translator."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, auto
from typing import Iterable, Optional


class ErrorCategory(Enum):
    """Categorises runtime errors for reporting."""

    DOCUMENT_READ = auto()
    CACHE_LOAD = auto()
    TRANSLATION = auto()
    FORMAT_GUARD = auto()
    KEY_COMPLETENESS = auto()
    PERSIST = auto()
    FILE_IO = auto()


class JsonBabelError(Exception):
    """Base exception for all custom errors."""


class DocumentReadError(JsonBabelError):
    """Raised when an input document cannot be read or parsed."""

    def __init__(self, document_id: str, message: str) -> None:
        super().__init__(f"{document_id}: {message}")
        self.document_id = document_id


class CacheLoadError(JsonBabelError):
    """Raised when the persisted cache is unreadable or corrupt."""


class BatchTranslationError(JsonBabelError):
    """Raised when a batch fails or the backend breaks the list contract."""


class FormatGuardMismatch(JsonBabelError):
    """Raised when protected sentinels are lost or duplicated by the backend."""


class KeyCompletenessFailure(JsonBabelError):
    """Raised when output documents do not carry the source key set."""

    def __init__(self, document_id: str, missing: Iterable[str], extra: Iterable[str]) -> None:
        self.document_id = document_id
        self.missing = sorted(missing)
        self.extra = sorted(extra)
        message = f"{len(self.missing)} missing, {len(self.extra)} unexpected"
        shown = self.missing[:5] or self.extra[:5]
        if shown:
            message += f" (e.g. {', '.join(shown)})"
        super().__init__(message)


class PersistError(JsonBabelError):
    """Raised when the cache cannot be written to its backing store."""


class OverwriteRefusedError(JsonBabelError):
    """Raised when an output path would overwrite its own source."""


class TranslationProviderConfigurationError(JsonBabelError):
    """Raised when the translation provider is misconfigured."""


class TranslationProviderError(JsonBabelError):
    """Raised when the translation provider fails permanently."""


@dataclass
class ErrorRecord:
    """Stores context for a handled error."""

    category: ErrorCategory
    message: str
    details: Optional[str] = None
    document_id: Optional[str] = None
    language: Optional[str] = None
    batch_index: Optional[int] = None
    string_count: Optional[int] = None

    def describe(self) -> str:
        """Render the record with whatever location context it carries."""

        context: list[str] = []
        if self.document_id:
            context.append(f"document {self.document_id}")
        if self.language:
            context.append(f"language {self.language}")
        if self.batch_index is not None:
            context.append(f"batch {self.batch_index}")
        if self.string_count is not None:
            context.append(f"{self.string_count} strings")
        text = self.message
        if context:
            text = f"{text} [{', '.join(context)}]"
        if self.details:
            text = f"{text}: {self.details}"
        return text
