"""Batch planning and bounded-parallel dispatch to a translation provider."""

from __future__ import annotations

import logging
import math
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, List, Sequence

from . import guard
from .errors import BatchTranslationError, FormatGuardMismatch
from .providers import DEFAULT_SOURCE_LANGUAGE, TranslationProvider
from .structures import Batch, BatchOutcome, UniqueString

logger = logging.getLogger(__name__)

MAX_BATCH_SIZE = 100
DEFAULT_MAX_WORKERS = 4


def batch_sizes(count: int, max_batch_size: int = MAX_BATCH_SIZE) -> List[int]:
    """Split ``count`` items into near-equal batch sizes within the ceiling.

    250 items with a ceiling of 100 become ``[84, 83, 83]`` rather than
    ``[100, 100, 50]``.
    """

    if count <= 0:
        return []
    max_batch_size = max(1, max_batch_size)
    batches = math.ceil(count / max_batch_size)
    base, extra = divmod(count, batches)
    return [base + 1 if index < extra else base for index in range(batches)]


def target_batch_size(count: int, max_batch_size: int = MAX_BATCH_SIZE) -> int:
    sizes = batch_sizes(count, max_batch_size)
    return math.ceil(count / len(sizes)) if sizes else 0


def plan_batches(
    strings: Sequence[UniqueString],
    language: str,
    max_batch_size: int = MAX_BATCH_SIZE,
) -> List[Batch]:
    """Partition ``strings`` in order into numbered batches for ``language``."""

    batches: List[Batch] = []
    cursor = 0
    for batch_id, size in enumerate(batch_sizes(len(strings), max_batch_size), start=1):
        batches.append(
            Batch(batch_id=batch_id, language=language, strings=list(strings[cursor:cursor + size]))
        )
        cursor += size
    return batches


def merge_outcomes(outcomes: Sequence[BatchOutcome]) -> Dict[str, str]:
    """Union of successful batch translations keyed by fingerprint."""

    merged: Dict[str, str] = {}
    for outcome in outcomes:
        if outcome.succeeded:
            merged.update(outcome.translations)
    return merged


class BatchScheduler:
    """Sends batches to a provider concurrently and collects explicit outcomes."""

    def __init__(
        self,
        provider: TranslationProvider,
        *,
        max_batch_size: int = MAX_BATCH_SIZE,
        max_workers: int = DEFAULT_MAX_WORKERS,
        preserve_formats: bool = False,
    ) -> None:
        self.provider = provider
        self.max_batch_size = max(1, max_batch_size)
        self.max_workers = max(1, max_workers)
        self.preserve_formats = preserve_formats

    def plan(self, strings: Sequence[UniqueString], language: str) -> List[Batch]:
        return plan_batches(strings, language, self.max_batch_size)

    def dispatch(
        self,
        batches: Sequence[Batch],
        *,
        source_language: str = DEFAULT_SOURCE_LANGUAGE,
        context: str | None = None,
    ) -> List[BatchOutcome]:
        """Run every batch and return the outcomes in batch order.

        A failing batch never cancels its siblings.
        """

        if not batches:
            return []
        workers = min(self.max_workers, len(batches))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="jsonbabel-batch") as pool:
            futures = [
                pool.submit(
                    self._run_batch,
                    batch,
                    source_language=source_language,
                    context=context,
                )
                for batch in batches
            ]
            outcomes = [future.result() for future in futures]
        return outcomes

    def _run_batch(
        self,
        batch: Batch,
        *,
        source_language: str,
        context: str | None,
    ) -> BatchOutcome:
        started = time.perf_counter()
        outcome = BatchOutcome(batch=batch)

        texts = [unique.text for unique in batch.strings]
        tokens: List[guard.RecoveryToken] = []
        if self.preserve_formats:
            protected = [guard.protect(text) for text in texts]
            texts = [text for text, _ in protected]
            tokens = [token for _, token in protected]

        try:
            results = self.provider.translate(
                texts,
                target_language=batch.language,
                source_language=source_language,
                context=context,
            )
            self._check_results(batch, results)
        except Exception as exc:
            outcome.error = str(exc) or exc.__class__.__name__
            outcome.duration = time.perf_counter() - started
            logger.info(
                "Batch %d (%s, %d strings) failed after %.2fs: %s",
                batch.batch_id,
                batch.language,
                len(batch),
                outcome.duration,
                outcome.error,
            )
            return outcome

        for index, (unique, translated) in enumerate(zip(batch.strings, results)):
            if tokens and tokens[index]:
                problems = guard.find_mismatches(translated, tokens[index])
                outcome.format_warnings.extend(
                    FormatGuardMismatch(f"{unique.text!r}: {problem}") for problem in problems
                )
                translated = guard.restore(translated, tokens[index], warn=False)
            outcome.translations[unique.fingerprint] = translated

        outcome.duration = time.perf_counter() - started
        logger.info(
            "Batch %d (%s, %d strings) completed in %.2fs.",
            batch.batch_id,
            batch.language,
            len(batch),
            outcome.duration,
        )
        return outcome

    @staticmethod
    def _check_results(batch: Batch, results: object) -> None:
        if not isinstance(results, list):
            raise BatchTranslationError(
                f"Backend returned {type(results).__name__} instead of a list."
            )
        if len(results) != len(batch):
            raise BatchTranslationError(
                f"Backend returned {len(results)} results for {len(batch)} strings."
            )
        for index, item in enumerate(results):
            if not isinstance(item, str) or not item.strip():
                raise BatchTranslationError(
                    f"Backend returned an empty or non-string result at index {index}."
                )
