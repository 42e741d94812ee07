"""Error collection policy for a translation run."""

from __future__ import annotations

import logging
from threading import Lock
from typing import List, Optional

from .errors import ErrorCategory, ErrorRecord

logger = logging.getLogger(__name__)

WARNING_CATEGORIES = frozenset({ErrorCategory.FORMAT_GUARD, ErrorCategory.CACHE_LOAD})


class ErrorPolicy:
    """Collects non-fatal errors so sibling work keeps going.

    Per-document and per-batch failures are recorded and logged instead of
    raised.
    """

    def __init__(self) -> None:
        self.records: List[ErrorRecord] = []
        self._lock = Lock()

    def handle_error(
        self,
        category: ErrorCategory,
        message: str,
        details: Optional[str] = None,
        *,
        document_id: Optional[str] = None,
        language: Optional[str] = None,
        batch_index: Optional[int] = None,
        string_count: Optional[int] = None,
    ) -> ErrorRecord:
        """Record an error with its location context and log it."""

        record = ErrorRecord(
            category=category,
            message=message,
            details=details,
            document_id=document_id,
            language=language,
            batch_index=batch_index,
            string_count=string_count,
        )
        with self._lock:
            self.records.append(record)

        if category in WARNING_CATEGORIES:
            logger.warning(record.describe())
        else:
            logger.error(record.describe())
        return record
