"""High-level orchestration of a translation run."""

from __future__ import annotations

import logging
import pathlib
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from . import reconstruct
from .cache import TranslationCache
from .dedupe import DedupeResult, dedupe
from .documents import (
    DEFAULT_OUTPUT_TEMPLATE,
    find_output_conflicts,
    read_document,
    read_tree,
    render_output_path,
    write_document,
)
from .errors import (
    DocumentReadError,
    ErrorCategory,
    ErrorRecord,
    JsonBabelError,
    KeyCompletenessFailure,
    OverwriteRefusedError,
    PersistError,
)
from .policy import ErrorPolicy
from .providers import DEFAULT_SOURCE_LANGUAGE, TranslationProvider
from .scheduler import (
    DEFAULT_MAX_WORKERS,
    MAX_BATCH_SIZE,
    BatchScheduler,
    batch_sizes,
    merge_outcomes,
    target_batch_size,
)
from .structures import Document, JsonValue, UniqueString

logger = logging.getLogger(__name__)

DETECTION_SAMPLE_SIZE = 10
EXIT_KEY_CHECK_FAILED = 3


@dataclass
class LanguageSummary:
    """What happened for one target language."""

    language: str
    cache_hits: int = 0
    new_strings: int = 0
    translated_strings: int = 0
    failed_strings: int = 0
    pruned_entries: int = 0
    batch_count: int = 0
    target_batch_size: int = 0
    saved_api_calls: int = 0
    failed_batches: List[int] = field(default_factory=list)
    batch_times: List[float] = field(default_factory=list)
    translation_seconds: float = 0.0
    outputs: Dict[str, JsonValue] = field(default_factory=dict)
    output_paths: Dict[str, pathlib.Path] = field(default_factory=dict)
    key_failures: Dict[str, reconstruct.KeyComparison] = field(default_factory=dict)


@dataclass
class TranslationSummary:
    """Report returned after a run across all documents and languages."""

    documents: List[str]
    failed_documents: List[str]
    total_strings: int
    unique_strings: int
    provider_name: str
    source_language: str
    languages: List[LanguageSummary]
    elapsed_seconds: float
    cache: Optional[TranslationCache] = None
    cache_persisted: bool = False
    dry_run: bool = False
    strict_keys: bool = False
    errors: List[ErrorRecord] = field(default_factory=list)

    @property
    def deduplication_savings(self) -> int:
        return self.total_strings - self.unique_strings

    @property
    def error_messages(self) -> List[str]:
        return [record.describe() for record in self.errors]

    @property
    def key_check_failed(self) -> bool:
        return any(summary.key_failures for summary in self.languages)

    @property
    def exit_code(self) -> int:
        if self.strict_keys and self.key_check_failed:
            return EXIT_KEY_CHECK_FAILED
        return 0


class TranslationRunner:
    """Coordinates flattening, caching, dispatch and reconstruction."""

    def __init__(
        self,
        *,
        provider: TranslationProvider,
        target_languages: Sequence[str],
        cache: Optional[TranslationCache] = None,
        output_template: Optional[str] = DEFAULT_OUTPUT_TEMPLATE,
        write_outputs: bool = True,
        source_language: Optional[str] = None,
        detect_source: bool = False,
        context: Optional[str] = None,
        max_batch_size: int = MAX_BATCH_SIZE,
        max_workers: int = DEFAULT_MAX_WORKERS,
        language_workers: int = 1,
        preserve_formats: bool = False,
        include_metadata: bool = False,
        sort_keys: bool = False,
        check_keys: bool = False,
        dry_run: bool = False,
    ) -> None:
        if not target_languages:
            raise JsonBabelError("No target languages specified.")
        self.provider = provider
        self.target_languages = list(dict.fromkeys(target_languages))
        self.cache = cache
        self.output_template = output_template or DEFAULT_OUTPUT_TEMPLATE
        self.write_outputs = write_outputs
        self.source_language = source_language
        self.detect_source = detect_source
        self.context = context
        self.max_batch_size = max(1, max_batch_size)
        self.language_workers = max(1, language_workers)
        self.include_metadata = include_metadata
        self.sort_keys = sort_keys
        self.check_keys = check_keys
        self.dry_run = dry_run

        self.error_policy = ErrorPolicy()
        self.scheduler = BatchScheduler(
            provider,
            max_batch_size=self.max_batch_size,
            max_workers=max_workers,
            preserve_formats=preserve_formats,
        )

    def run(self, inputs: Sequence[pathlib.Path]) -> TranslationSummary:
        """Translate the JSON files at ``inputs`` into every target language."""

        documents: List[Document] = []
        failed: List[str] = []
        for path in inputs:
            try:
                documents.append(read_document(path))
            except DocumentReadError as exc:
                failed.append(exc.document_id)
                self.error_policy.handle_error(
                    ErrorCategory.DOCUMENT_READ,
                    "Skipping unreadable document",
                    str(exc),
                    document_id=exc.document_id,
                )
        if not documents:
            raise JsonBabelError("None of the input documents could be read.")
        return self.run_documents(documents, failed_documents=failed)

    def run_documents(
        self,
        documents: Sequence[Document],
        *,
        failed_documents: Sequence[str] = (),
    ) -> TranslationSummary:
        """Translate already loaded documents; outputs are written when enabled."""

        started = time.perf_counter()
        if self.cache is not None and self.cache.load_error is not None:
            self.error_policy.handle_error(
                ErrorCategory.CACHE_LOAD,
                "Translation cache unreadable, continuing with an empty cache",
                str(self.cache.load_error),
            )

        deduped = dedupe(documents)
        source_language = self._resolve_source_language(deduped)

        if self.dry_run:
            languages = [
                self._plan_language(documents, deduped, language)
                for language in self.target_languages
            ]
        else:
            if self.language_workers > 1 and len(self.target_languages) > 1:
                workers = min(self.language_workers, len(self.target_languages))
                with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="jsonbabel-lang") as pool:
                    languages = list(
                        pool.map(
                            lambda language: self._translate_language(
                                documents, deduped, language, source_language
                            ),
                            self.target_languages,
                        )
                    )
            else:
                languages = [
                    self._translate_language(documents, deduped, language, source_language)
                    for language in self.target_languages
                ]
            self._finish_outputs(documents, languages, failed_documents)

        persisted = False
        if not self.dry_run and self.cache is not None and self.cache.dirty:
            try:
                self.cache.persist()
                persisted = True
            except PersistError as exc:
                self.error_policy.handle_error(
                    ErrorCategory.PERSIST,
                    "Translation cache could not be saved",
                    str(exc),
                )

        return TranslationSummary(
            documents=[document.document_id for document in documents],
            failed_documents=list(failed_documents),
            total_strings=deduped.total_occurrences,
            unique_strings=deduped.unique_count,
            provider_name=self.provider.name,
            source_language=source_language,
            languages=languages,
            elapsed_seconds=time.perf_counter() - started,
            cache=self.cache,
            cache_persisted=persisted,
            dry_run=self.dry_run,
            strict_keys=self.check_keys,
            errors=list(self.error_policy.records),
        )

    def _resolve_source_language(self, deduped: DedupeResult) -> str:
        if self.detect_source and deduped.unique_count:
            samples = [unique.text for unique in deduped.strings.values()][:DETECTION_SAMPLE_SIZE]
            detected = self.provider.detect_language(samples)
            logger.info("Detected source language: %s", detected)
            return detected
        return self.source_language or DEFAULT_SOURCE_LANGUAGE

    def _split_cached(
        self,
        deduped: DedupeResult,
        language: str,
    ) -> tuple[Dict[str, str], List[UniqueString], Dict[str, str]]:
        """Split unique strings into cache hits, misses and blank passthroughs."""

        hits: Dict[str, str] = {}
        misses: List[UniqueString] = []
        blanks: Dict[str, str] = {}
        for unique in deduped.strings.values():
            if not unique.text.strip():
                blanks[unique.fingerprint] = unique.text
                continue
            hit = None
            if self.cache is not None:
                hit = self.cache.lookup_any(unique.document_ids, language, unique.fingerprint)
            if hit is None:
                misses.append(unique)
            else:
                hits[unique.fingerprint] = hit
        return hits, misses, blanks

    def _plan_language(
        self,
        documents: Sequence[Document],
        deduped: DedupeResult,
        language: str,
    ) -> LanguageSummary:
        hits, misses, _ = self._split_cached(deduped, language)
        summary = LanguageSummary(
            language=language,
            cache_hits=len(hits),
            new_strings=len(misses),
            batch_count=len(batch_sizes(len(misses), self.max_batch_size)),
            target_batch_size=target_batch_size(len(misses), self.max_batch_size),
        )
        summary.saved_api_calls = self._saved_calls(deduped, summary.batch_count)
        for document in documents:
            summary.output_paths[document.document_id] = render_output_path(
                self.output_template, pathlib.Path(document.document_id), language
            )
        return summary

    def _saved_calls(self, deduped: DedupeResult, batch_count: int) -> int:
        without_dedupe = len(batch_sizes(deduped.total_occurrences, self.max_batch_size))
        return max(0, without_dedupe - batch_count)

    def _translate_language(
        self,
        documents: Sequence[Document],
        deduped: DedupeResult,
        language: str,
        source_language: str,
    ) -> LanguageSummary:
        hits, misses, blanks = self._split_cached(deduped, language)
        summary = LanguageSummary(language=language, cache_hits=len(hits), new_strings=len(misses))

        batches = self.scheduler.plan(misses, language)
        summary.batch_count = len(batches)
        summary.target_batch_size = target_batch_size(len(misses), self.max_batch_size)
        summary.saved_api_calls = self._saved_calls(deduped, summary.batch_count)

        started = time.perf_counter()
        outcomes = self.scheduler.dispatch(
            batches,
            source_language=source_language,
            context=self.context,
        )
        summary.translation_seconds = time.perf_counter() - started

        for outcome in outcomes:
            summary.batch_times.append(outcome.duration)
            affected = sorted(
                {document_id for unique in outcome.batch.strings for document_id in unique.document_ids}
            )
            if not outcome.succeeded:
                summary.failed_batches.append(outcome.batch.batch_id)
                summary.failed_strings += len(outcome.batch)
                self.error_policy.handle_error(
                    ErrorCategory.TRANSLATION,
                    "Batch failed; its strings keep their original text",
                    outcome.error,
                    document_id=", ".join(affected),
                    language=language,
                    batch_index=outcome.batch.batch_id,
                    string_count=len(outcome.batch),
                )
                continue
            for warning in outcome.format_warnings:
                self.error_policy.handle_error(
                    ErrorCategory.FORMAT_GUARD,
                    "Protected text was altered by the backend",
                    str(warning),
                    document_id=", ".join(affected),
                    language=language,
                    batch_index=outcome.batch.batch_id,
                )

        fresh = merge_outcomes(outcomes)
        summary.translated_strings = len(fresh)
        translations = {**hits, **fresh}

        if self.cache is not None:
            for document in documents:
                for unique in deduped.for_document(document.document_id):
                    translated = translations.get(unique.fingerprint)
                    if translated is not None:
                        self.cache.record(
                            document.document_id, language, unique.fingerprint, translated
                        )
                summary.pruned_entries += self.cache.prune(
                    document.document_id, language, document.fingerprints
                )

        translations.update(blanks)

        for document in documents:
            summary.outputs[document.document_id] = self._build_output(
                document, translations, language, source_language
            )
        return summary

    def _build_output(
        self,
        document: Document,
        translations: Dict[str, str],
        language: str,
        source_language: str,
    ) -> JsonValue:
        tree = reconstruct.rebuild(document, translations)
        if self.sort_keys:
            tree = reconstruct.sort_keys(tree)
        if self.include_metadata:
            tree = reconstruct.inject_metadata(
                tree,
                reconstruct.build_metadata(
                    provider=self.provider.name,
                    source_language=source_language,
                    target_language=language,
                    total_strings=len(document.leaves),
                    source_file=pathlib.Path(document.document_id).name,
                ),
            )
        return tree

    def _finish_outputs(
        self,
        documents: Sequence[Document],
        languages: Sequence[LanguageSummary],
        failed_documents: Sequence[str],
    ) -> None:
        conflicts: Dict[Tuple[str, str], OverwriteRefusedError] = {}
        destinations: Dict[Tuple[str, str], pathlib.Path] = {}
        if self.write_outputs:
            for summary in languages:
                for document in documents:
                    destinations[(document.document_id, summary.language)] = render_output_path(
                        self.output_template, pathlib.Path(document.document_id), summary.language
                    )
            inputs = [pathlib.Path(document.document_id) for document in documents]
            inputs.extend(pathlib.Path(path) for path in failed_documents)
            conflicts = find_output_conflicts(destinations, inputs)

        for summary in languages:
            for document in documents:
                key = (document.document_id, summary.language)
                output = summary.outputs[document.document_id]
                if self.write_outputs:
                    written, output = self._write_output(
                        document, output, destinations[key], conflicts.get(key), summary
                    )
                    if not written:
                        continue
                if self.check_keys:
                    self._check_keys(document, output, summary)

    def _write_output(
        self,
        document: Document,
        output: JsonValue,
        destination: pathlib.Path,
        conflict: Optional[OverwriteRefusedError],
        summary: LanguageSummary,
    ) -> Tuple[bool, JsonValue]:
        """Write one output; on success return the tree as read back from disk."""

        try:
            if conflict is not None:
                raise conflict
            write_document(destination, output)
            written = read_tree(destination)
        except (OverwriteRefusedError, OSError, ValueError) as exc:
            self.error_policy.handle_error(
                ErrorCategory.FILE_IO,
                "Could not write translated document",
                str(exc),
                document_id=document.document_id,
                language=summary.language,
            )
            return False, output
        summary.output_paths[document.document_id] = destination
        return True, written

    def _check_keys(self, document: Document, output: JsonValue, summary: LanguageSummary) -> None:
        comparison = reconstruct.compare_keys(document.tree, output)
        if comparison.is_valid:
            return
        summary.key_failures[document.document_id] = comparison
        failure = KeyCompletenessFailure(
            document.document_id, comparison.missing_keys, comparison.extra_keys
        )
        self.error_policy.handle_error(
            ErrorCategory.KEY_COMPLETENESS,
            "Output keys differ from the source",
            str(failure),
            document_id=document.document_id,
            language=summary.language,
        )
