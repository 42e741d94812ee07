"""Command line interface for the jsonbabel translator."""

from __future__ import annotations

import argparse
import logging
import pathlib
import sys
from typing import Any, Iterable, Optional

from .cache import TranslationCache
from .configuration import cache_path, get_settings, validate_provider_settings
from .documents import DEFAULT_OUTPUT_TEMPLATE, expand_inputs, serialise
from .errors import (
    JsonBabelError,
    TranslationProviderConfigurationError,
)
from .providers import PROVIDER_ALIASES, build_provider, normalise_provider_name
from .translator import TranslationRunner, TranslationSummary

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_INTERRUPTED = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="jsonbabel",
        description=(
            "Translate JSON i18n files efficiently with caching and deduplication."
        ),
    )
    parser.add_argument(
        "inputs",
        nargs="*",
        help="Path(s) to source JSON file(s) or glob patterns.",
    )
    parser.add_argument(
        "-l",
        "--lang",
        help="Target language code(s), comma-separated for multiple.",
    )
    parser.add_argument(
        "-o",
        "--output",
        help="Output file path or pattern. Use {dir}, {name} and {lang} as placeholders.",
    )
    parser.add_argument(
        "--stdout",
        action="store_true",
        help="Print translated documents instead of writing files.",
    )
    parser.add_argument(
        "--stats",
        action="store_true",
        help="Show detailed statistics.",
    )
    parser.add_argument(
        "--no-cache",
        dest="cache",
        action="store_false",
        help="Disable the translation cache.",
    )
    parser.add_argument(
        "--cache-file",
        help="Custom cache file path.",
    )
    parser.add_argument(
        "-p",
        "--provider",
        help="Translation provider: " + ", ".join(sorted(PROVIDER_ALIASES)) + ".",
    )
    parser.add_argument(
        "-m",
        "--model",
        help="Provider-specific model identifier.",
    )
    parser.add_argument(
        "--gemini-model",
        help="Gemini model identifier (default: gemini-2.5-flash).",
    )
    parser.add_argument(
        "--ollama-url",
        help="Ollama server URL (default: http://localhost:11434).",
    )
    parser.add_argument(
        "-b",
        "--batch-size",
        type=int,
        help="Maximum strings per translation request (default: 100).",
    )
    parser.add_argument(
        "--workers",
        type=int,
        help="Maximum concurrent translation requests (default: 4).",
    )
    parser.add_argument(
        "--language-workers",
        type=int,
        help="Maximum target languages processed at once (default: 1).",
    )
    parser.add_argument(
        "--list-providers",
        action="store_true",
        help="List available translation providers and exit.",
    )
    parser.add_argument(
        "-s",
        "--source-language",
        help="Source language name (default: English).",
    )
    parser.add_argument(
        "--detect-source",
        action="store_true",
        help="Auto-detect the source language instead of assuming English.",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Preview what would be translated without calling the provider.",
    )
    parser.add_argument(
        "--preserve-formats",
        action="store_true",
        help="Protect URLs, emails, numbers, dates and placeholders from translation.",
    )
    parser.add_argument(
        "--metadata",
        action="store_true",
        help="Add translation metadata to output files (may break some i18n parsers).",
    )
    parser.add_argument(
        "--sort-keys",
        action="store_true",
        help="Sort output JSON keys alphabetically.",
    )
    parser.add_argument(
        "--check-keys",
        action="store_true",
        help="Verify all source keys exist in the output; exit with an error otherwise.",
    )
    parser.add_argument(
        "--context",
        help='Extra translation instructions, e.g. "Use formal tone".',
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Show detailed progress information.",
    )
    parser.add_argument(
        "--debug-provider",
        action="store_true",
        help="Log complete provider requests and responses for troubleshooting.",
    )
    return parser


def parse_languages(value: str | None) -> list[str]:
    if not value:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]


def configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


def list_providers(settings: Any) -> list[str]:
    """Describe which providers can be used with the current configuration."""

    available: list[str] = []
    if settings.OPENAI_API_KEY:
        available.append("openai (API key found)")
        available.append("legacy_openai (API key found)")
    if settings.AZURE_OPENAI_API_KEY and settings.AZURE_OPENAI_ENDPOINT:
        available.append("azure_openai (endpoint configured)")
    if settings.GEMINI_API_KEY:
        available.append("gemini (API key found)")
    try:
        ollama = build_provider("ollama", settings=settings)
    except TranslationProviderConfigurationError:
        ollama = None
    if ollama is not None and ollama.is_available():
        available.append(f"ollama (local, {settings.OLLAMA_BASE_URL})")
    available.append("echo (returns source text)")
    return available


def execute_translation(
    args: argparse.Namespace,
    settings: Any,
) -> tuple[int, TranslationSummary | None, str | None]:
    """Execute a translation run and return the exit code, summary, and message."""

    languages = parse_languages(args.lang)
    if not languages:
        return EXIT_FAILURE, None, "No valid target languages specified."

    inputs = expand_inputs(args.inputs)
    if not inputs:
        return EXIT_FAILURE, None, "No files found matching the input patterns."

    try:
        provider_name = normalise_provider_name(args.provider or settings.LLM_PROVIDER)
        if not args.dry_run or args.detect_source:
            validate_provider_settings(settings, provider_name)
            provider = build_provider(
                provider_name,
                model=args.model,
                settings=settings,
                debug=bool(args.debug_provider or settings.JSONBABEL_PROVIDER_DEBUG),
            )
        else:
            provider = build_provider("echo")
            provider.name = provider_name
    except TranslationProviderConfigurationError as exc:
        return EXIT_FAILURE, None, str(exc)

    cache = None
    if args.cache:
        cache_file = (
            pathlib.Path(args.cache_file).expanduser()
            if args.cache_file
            else cache_path(settings)
        )
        cache = TranslationCache.load(cache_file.resolve())

    runner = TranslationRunner(
        provider=provider,
        target_languages=languages,
        cache=cache,
        output_template=args.output or DEFAULT_OUTPUT_TEMPLATE,
        write_outputs=not args.stdout,
        source_language=args.source_language,
        detect_source=args.detect_source,
        context=args.context,
        max_batch_size=args.batch_size or settings.JSONBABEL_MAX_BATCH_SIZE,
        max_workers=args.workers or settings.JSONBABEL_MAX_WORKERS,
        language_workers=args.language_workers or settings.JSONBABEL_LANGUAGE_WORKERS,
        preserve_formats=args.preserve_formats,
        include_metadata=args.metadata,
        sort_keys=args.sort_keys,
        check_keys=args.check_keys,
        dry_run=args.dry_run,
    )

    try:
        summary = runner.run(inputs)
    except JsonBabelError as exc:
        return EXIT_FAILURE, None, str(exc)
    except KeyboardInterrupt:
        return EXIT_INTERRUPTED, None, "Translation interrupted by user."

    return summary.exit_code, summary, None


class _SettingsView:
    """Settings with a few command line overrides layered on top."""

    def __init__(self, settings: Any, overrides: dict[str, Any]) -> None:
        self._settings = settings
        self._overrides = overrides

    def __getattr__(self, name: str) -> Any:
        if name in self._overrides:
            return self._overrides[name]
        return getattr(self._settings, name)


def _format_seconds(seconds: float) -> str:
    return f"{seconds * 1000:.2f}ms"


def print_outputs(summary: TranslationSummary) -> None:
    """Write translated documents to stdout, one block per document."""

    several = len(summary.documents) > 1 or len(summary.languages) > 1
    for language in summary.languages:
        for document_id, tree in language.outputs.items():
            if several:
                print(f"\n=== {pathlib.Path(document_id).name} ({language.language}) ===")
            print(serialise(tree))


def print_dry_run(summary: TranslationSummary, *, stdout: bool) -> None:
    print("--- DRY RUN ---")
    print(f"  Files to process:      {len(summary.documents)}")
    print(f"  Total strings:         {summary.total_strings}")
    print(f"  Unique strings:        {summary.unique_strings}")
    print(f"  Deduplication savings: {summary.deduplication_savings}")
    print(f"  Source language:       {summary.source_language}")
    for language in summary.languages:
        print(f"\n  Target language: {language.language}")
        print(f"    Cached translations:     {language.cache_hits}")
        print(f"    New strings to translate: {language.new_strings}")
        print(f"    Estimated API calls:      {language.batch_count}")
        if language.saved_api_calls:
            print(f"    API calls saved by deduplication: {language.saved_api_calls}")
        for document_id, path in language.output_paths.items():
            target = "stdout" if stdout else str(path)
            print(f"    {pathlib.Path(document_id).name} -> {target}")
    print("\nDry run complete. No API calls were made.")


def print_summary(summary: TranslationSummary, *, stats: bool) -> None:
    """Output a friendly report once processing completes."""

    print("\nTranslation complete.")
    print(f"  Files:           {len(summary.documents)} processed")
    if summary.failed_documents:
        print(f"                   {len(summary.failed_documents)} skipped (unreadable)")
    print(
        f"  Strings:         {summary.total_strings} total / "
        f"{summary.unique_strings} unique "
        f"({summary.deduplication_savings} deduplicated)"
    )
    print(f"  Provider:        {summary.provider_name}")
    print(f"  Source language: {summary.source_language}")
    for language in summary.languages:
        written = len(language.output_paths)
        print(
            f"  {language.language}: {language.cache_hits} cached, "
            f"{language.translated_strings} translated, "
            f"{language.failed_strings} failed, {written} file(s) written"
        )
        if not stats:
            continue
        print(f"    - Stale strings pruned:   {language.pruned_entries}")
        print(
            f"    - Batches sent to API:    {language.batch_count} "
            f"(target size: ~{language.target_batch_size})"
        )
        print(f"    - Total API time:         {_format_seconds(language.translation_seconds)}")
        if language.saved_api_calls:
            print(f"    - API calls saved:        {language.saved_api_calls} (by deduplication)")
        times = [duration for duration in language.batch_times if duration > 0]
        if times:
            print(f"    - Fastest batch:          {_format_seconds(min(times))}")
            print(f"    - Slowest batch:          {_format_seconds(max(times))}")
            print(f"    - Average batch:          {_format_seconds(sum(times) / len(times))}")
    if summary.cache is not None:
        state = "saved" if summary.cache_persisted else "unchanged"
        print(f"  Cache:           {summary.cache.path} ({state})")
    print(f"  Elapsed time:    {summary.elapsed_seconds:.2f} seconds")
    if summary.errors:
        print("  Notes:")
        for message in summary.error_messages:
            print(f"    - {message}")


def main(argv: Optional[Iterable[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)
    configure_logging(args.verbose)

    try:
        settings = get_settings()
    except TranslationProviderConfigurationError as exc:
        print(exc)
        return EXIT_FAILURE

    overrides: dict[str, Any] = {}
    if args.ollama_url:
        overrides["OLLAMA_BASE_URL"] = args.ollama_url
    if args.gemini_model:
        overrides["GEMINI_MODEL"] = args.gemini_model
    if overrides:
        settings = _SettingsView(settings, overrides)

    if args.list_providers:
        print("Available providers:")
        for entry in list_providers(settings):
            print(f"  - {entry}")
        return EXIT_OK

    if not args.inputs:
        parser.error("the following arguments are required: inputs")
    if not args.lang:
        parser.error("the following arguments are required: -l/--lang")
    if args.output and args.stdout:
        parser.error("cannot use both -o/--output and --stdout")

    exit_code, summary, message = execute_translation(args, settings)

    if message:
        print(message)
    if summary is None:
        return exit_code
    if summary.dry_run:
        print_dry_run(summary, stdout=args.stdout)
    elif args.stdout:
        print_outputs(summary)
        if summary.errors:
            for note in summary.error_messages:
                print(note, file=sys.stderr)
    else:
        print_summary(summary, stats=args.stats)
    return exit_code


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
