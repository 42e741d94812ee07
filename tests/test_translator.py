import json

import pytest

from jsonbabel import reconstruct
from jsonbabel.cache import TranslationCache
from jsonbabel.errors import ErrorCategory, JsonBabelError
from jsonbabel.hashing import fingerprint
from jsonbabel.translator import EXIT_KEY_CHECK_FAILED, TranslationRunner

from .conftest import RecordingProvider, read_json


def make_runner(provider, **options):
    options.setdefault("target_languages", ["de"])
    return TranslationRunner(provider=provider, **options)


def test_single_document_translates_each_unique_string_once(provider, write_json):
    source = write_json("en.json", {"a": "Hello", "b": {"c": "Hello"}, "n": 5})

    summary = make_runner(provider).run([source])

    assert provider.translated_strings == ["Hello"]
    assert read_json(source.with_name("en.de.json")) == {
        "a": "[de] Hello",
        "b": {"c": "[de] Hello"},
        "n": 5,
    }
    assert summary.total_strings == 2
    assert summary.unique_strings == 1
    assert summary.deduplication_savings == 1
    assert summary.exit_code == 0


def test_shared_strings_across_documents_are_sent_once(provider, write_json):
    first = write_json("a.json", {"save": "Save"})
    second = write_json("b.json", {"button": "Save", "cancel": "Cancel"})

    make_runner(provider).run([first, second])

    assert len(provider.calls) == 1
    assert provider.translated_strings == ["Save", "Cancel"]
    assert read_json(first.with_name("a.de.json")) == {"save": "[de] Save"}
    assert read_json(second.with_name("b.de.json")) == {
        "button": "[de] Save",
        "cancel": "[de] Cancel",
    }


def test_second_run_is_served_from_cache(provider, write_json, tmp_path):
    source = write_json("en.json", {"a": "Hello", "b": ["World", 1]})
    cache_file = tmp_path / "cache" / "store.json"

    first = make_runner(provider, cache=TranslationCache.load(cache_file)).run([source])
    first_output = source.with_name("en.de.json").read_bytes()
    assert first.cache_persisted

    again = RecordingProvider()
    second = make_runner(again, cache=TranslationCache.load(cache_file)).run([source])

    assert again.calls == []
    assert second.languages[0].cache_hits == 2
    assert not second.cache_persisted
    assert source.with_name("en.de.json").read_bytes() == first_output


def test_removed_strings_are_pruned_from_cache(provider, write_json, tmp_path):
    source = write_json("en.json", {"a": "Hello", "b": "Bye"})
    cache_file = tmp_path / "store.json"
    make_runner(provider, cache=TranslationCache.load(cache_file)).run([source])

    write_json("en.json", {"a": "Hello"})
    cache = TranslationCache.load(cache_file)
    summary = make_runner(RecordingProvider(), cache=cache).run([source])

    assert summary.languages[0].pruned_entries == 1
    stored = json.loads(cache_file.read_text(encoding="utf-8"))
    assert stored == {str(source): {"de": {fingerprint("Hello"): "[de] Hello"}}}


def test_failed_batch_keeps_original_text(write_json, tmp_path):
    provider = RecordingProvider(fail_on="Broken")
    source = write_json("en.json", {"ok": "Fine", "bad": "Broken"})
    cache = TranslationCache(path=tmp_path / "store.json")

    summary = make_runner(provider, cache=cache, max_batch_size=1).run([source])

    assert read_json(source.with_name("en.de.json")) == {"ok": "[de] Fine", "bad": "Broken"}
    language = summary.languages[0]
    assert language.failed_strings == 1
    assert language.translated_strings == 1
    (record,) = [error for error in summary.errors if error.category is ErrorCategory.TRANSLATION]
    assert record.batch_index in language.failed_batches
    assert record.string_count == 1
    assert record.document_id == str(source)
    assert cache.lookup(str(source), "de", fingerprint("Broken")) is None
    assert cache.lookup(str(source), "de", fingerprint("Fine")) == "[de] Fine"


def test_unreadable_document_is_skipped(provider, write_json, tmp_path):
    good = write_json("good.json", {"a": "Hello"})
    bad = tmp_path / "bad.json"
    bad.write_text("{oops", encoding="utf-8")

    summary = make_runner(provider).run([good, bad.resolve()])

    assert summary.documents == [str(good)]
    assert summary.failed_documents == [str(bad.resolve())]
    assert summary.errors[0].category is ErrorCategory.DOCUMENT_READ
    assert good.with_name("good.de.json").exists()


def test_no_readable_documents_is_fatal(provider, tmp_path):
    bad = tmp_path / "bad.json"
    bad.write_text("{oops", encoding="utf-8")

    with pytest.raises(JsonBabelError):
        make_runner(provider).run([bad])


def test_dry_run_plans_without_calling_the_backend(provider, write_json, tmp_path):
    source = write_json("en.json", {f"k{index}": f"text {index}" for index in range(250)})
    cache = TranslationCache(path=tmp_path / "store.json")

    summary = make_runner(provider, cache=cache, dry_run=True).run([source])

    assert provider.calls == []
    assert summary.dry_run
    language = summary.languages[0]
    assert language.new_strings == 250
    assert language.batch_count == 3
    assert language.target_batch_size == 84
    assert language.output_paths == {str(source): source.with_name("en.de.json")}
    assert not source.with_name("en.de.json").exists()
    assert not (tmp_path / "store.json").exists()


def test_multiple_languages_share_one_cache(provider, write_json, tmp_path):
    source = write_json("en.json", {"a": "Hello"})
    cache = TranslationCache(path=tmp_path / "store.json")

    summary = make_runner(
        provider, cache=cache, target_languages=["de", "fr"], language_workers=2
    ).run([source])

    assert sorted(call["target_language"] for call in provider.calls) == ["de", "fr"]
    assert [language.language for language in summary.languages] == ["de", "fr"]
    assert read_json(source.with_name("en.fr.json")) == {"a": "[fr] Hello"}
    assert cache.lookup(str(source), "fr", fingerprint("Hello")) == "[fr] Hello"


def test_outputs_without_writing(provider, write_json):
    source = write_json("en.json", ["One", "Two"])

    summary = make_runner(provider, write_outputs=False).run([source])

    assert summary.languages[0].outputs == {str(source): ["[de] One", "[de] Two"]}
    assert summary.languages[0].output_paths == {}
    assert not source.with_name("en.de.json").exists()


def test_metadata_and_sorted_keys(provider, write_json):
    source = write_json("en.json", {"b": "Bye", "a": "Hello"})

    make_runner(provider, include_metadata=True, sort_keys=True).run([source])

    output = read_json(source.with_name("en.de.json"))
    assert list(output) == [reconstruct.METADATA_KEY, "a", "b"]
    metadata = output[reconstruct.METADATA_KEY]
    assert metadata["target_language"] == "de"
    assert metadata["provider"] == "recording"
    assert metadata["total_strings"] == 2
    assert metadata["source_file"] == "en.json"


def test_key_check_passes_for_complete_outputs(provider, write_json):
    source = write_json("en.json", {"a": "Hello", "b": [1, None]})

    summary = make_runner(provider, check_keys=True).run([source])

    assert not summary.key_check_failed
    assert summary.exit_code == 0


def test_key_check_failure_sets_exit_code(provider, write_json, monkeypatch):
    source = write_json("en.json", {"a": "Hello", "b": "Bye"})
    monkeypatch.setattr(reconstruct, "rebuild", lambda document, translations: {"a": "x"})

    summary = make_runner(provider, check_keys=True).run([source])

    assert summary.key_check_failed
    assert summary.exit_code == EXIT_KEY_CHECK_FAILED
    (record,) = [e for e in summary.errors if e.category is ErrorCategory.KEY_COMPLETENESS]
    assert "1 missing" in record.details


def test_corrupt_cache_is_treated_as_empty(provider, write_json, tmp_path):
    source = write_json("en.json", {"a": "Hello"})
    cache_file = tmp_path / "store.json"
    cache_file.write_text("not json", encoding="utf-8")

    summary = make_runner(provider, cache=TranslationCache.load(cache_file)).run([source])

    assert provider.translated_strings == ["Hello"]
    assert summary.errors[0].category is ErrorCategory.CACHE_LOAD
    assert TranslationCache.load(cache_file).lookup(str(source), "de", fingerprint("Hello"))


def test_output_that_would_overwrite_source_is_refused(provider, write_json):
    source = write_json("en.json", {"a": "Hello"})

    summary = make_runner(provider, output_template="{dir}/{name}.json").run([source])

    assert read_json(source) == {"a": "Hello"}
    assert summary.errors[0].category is ErrorCategory.FILE_IO


def test_detected_source_language_reaches_the_backend(write_json):
    provider = RecordingProvider(detected="French")
    source = write_json("fr.json", {"a": "Bonjour"})

    summary = make_runner(provider, detect_source=True, context="Be brief").run([source])

    assert summary.source_language == "French"
    assert provider.calls[0]["source_language"] == "French"
    assert provider.calls[0]["context"] == "Be brief"


def test_no_target_languages_is_rejected(provider):
    with pytest.raises(JsonBabelError):
        TranslationRunner(provider=provider, target_languages=[])


def test_blank_strings_are_kept_and_never_sent(provider, write_json, tmp_path):
    source = write_json("en.json", {"title": "Hello", "placeholder": "", "spacer": "  "})
    cache = TranslationCache(path=tmp_path / "store.json")

    summary = make_runner(provider, cache=cache).run([source])

    assert provider.translated_strings == ["Hello"]
    assert read_json(source.with_name("en.de.json")) == {
        "title": "[de] Hello",
        "placeholder": "",
        "spacer": "  ",
    }
    assert summary.errors == []
    assert summary.languages[0].failed_strings == 0
    assert cache.lookup(str(source), "de", fingerprint("")) is None


def test_documents_sharing_an_output_path_are_refused(provider, write_json, tmp_path):
    first = write_json("a.json", {"a": "One"})
    second = write_json("b.json", {"b": "Two"})
    template = str(tmp_path / "out" / "{lang}.json")

    summary = make_runner(provider, output_template=template).run([first, second])

    assert not (tmp_path / "out" / "de.json").exists()
    assert summary.languages[0].output_paths == {}
    refusals = [e for e in summary.errors if e.category is ErrorCategory.FILE_IO]
    assert sorted(record.document_id for record in refusals) == [str(first), str(second)]
    assert "2 times" in refusals[0].details


def test_languages_sharing_an_output_path_are_refused(provider, write_json, tmp_path):
    source = write_json("en.json", {"a": "Hello"})
    template = str(tmp_path / "{name}.out.json")

    summary = make_runner(provider, output_template=template, target_languages=["de", "fr"]).run(
        [source]
    )

    assert not (tmp_path / "en.out.json").exists()
    refusals = [e for e in summary.errors if e.category is ErrorCategory.FILE_IO]
    assert sorted(record.language for record in refusals) == ["de", "fr"]


def test_output_landing_on_another_input_is_refused(provider, write_json, tmp_path):
    english = write_json("en.json", {"a": "Hello"})
    german = write_json("de.json", {"a": "Hallo"})
    template = str(tmp_path / "{lang}.json")

    summary = make_runner(provider, output_template=template, target_languages=["de"]).run(
        [english, german]
    )

    assert read_json(german) == {"a": "Hallo"}
    refusals = [e for e in summary.errors if e.category is ErrorCategory.FILE_IO]
    assert all("input document" in record.details for record in refusals)
    assert summary.languages[0].output_paths == {}


def test_key_check_reads_back_the_written_file(provider, write_json, monkeypatch):
    source = write_json("en.json", {"a": "Hello", "b": "Bye"})

    def truncated_write(path, tree):
        path.write_text(json.dumps({"a": tree["a"]}), encoding="utf-8")

    monkeypatch.setattr("jsonbabel.translator.write_document", truncated_write)

    summary = make_runner(provider, check_keys=True).run([source])

    assert summary.languages[0].outputs[str(source)] == {"a": "[de] Hello", "b": "[de] Bye"}
    assert summary.key_check_failed
    assert summary.exit_code == EXIT_KEY_CHECK_FAILED
    comparison = summary.languages[0].key_failures[str(source)]
    assert comparison.missing_keys == {"b"}


def test_unreadable_written_output_is_a_file_error(provider, write_json, monkeypatch):
    source = write_json("en.json", {"a": "Hello"})

    def garbled_write(path, tree):
        path.write_text("{", encoding="utf-8")

    monkeypatch.setattr("jsonbabel.translator.write_document", garbled_write)

    summary = make_runner(provider, check_keys=True).run([source])

    (record,) = summary.errors
    assert record.category is ErrorCategory.FILE_IO
    assert summary.languages[0].output_paths == {}
    assert not summary.key_check_failed
