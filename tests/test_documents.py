import json
import pathlib

import pytest

from jsonbabel import documents
from jsonbabel.errors import DocumentReadError, OverwriteRefusedError


def test_default_output_template():
    source = pathlib.Path("/data/locales/en.json")

    output = documents.render_output_path(documents.DEFAULT_OUTPUT_TEMPLATE, source, "de")

    assert output == pathlib.Path("/data/locales/en.de.json")


def test_custom_output_template():
    source = pathlib.Path("/data/locales/app.messages.json")

    output = documents.render_output_path("{dir}/{lang}/{name}.json", source, "pt-BR")

    assert output == pathlib.Path("/data/locales/pt-BR/app.messages.json")


def test_expand_inputs_handles_globs_and_duplicates(tmp_path):
    for name in ("b.json", "a.json", "sub/c.json", "notes.txt"):
        path = tmp_path / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("{}", encoding="utf-8")

    flat = documents.expand_inputs([str(tmp_path / "*.json")])
    recursive = documents.expand_inputs(
        [str(tmp_path / "a.json"), str(tmp_path / "**" / "*.json")]
    )

    root = tmp_path.resolve()
    assert flat == [root / "a.json", root / "b.json"]
    assert recursive == [root / "a.json", root / "b.json", root / "sub" / "c.json"]
    assert documents.expand_inputs([str(tmp_path / "*.yaml")]) == []


def test_read_document_accepts_byte_order_mark(tmp_path):
    path = tmp_path / "en.json"
    path.write_bytes("\ufeff".encode("utf-8") + json.dumps({"a": "Hi"}).encode("utf-8"))

    document = documents.read_document(path)

    assert document.leaves == {("a",): "Hi"}
    assert document.document_id == str(path.resolve())
    assert document.source_path == path.resolve()


@pytest.mark.parametrize("content", ["{oops", ""])
def test_read_document_reports_invalid_json(tmp_path, content):
    path = tmp_path / "bad.json"
    path.write_text(content, encoding="utf-8")

    with pytest.raises(DocumentReadError) as excinfo:
        documents.read_document(path)

    assert excinfo.value.document_id == str(path.resolve())


def test_read_document_reports_missing_file(tmp_path):
    with pytest.raises(DocumentReadError):
        documents.read_document(tmp_path / "missing.json")


def test_output_may_not_overwrite_an_input(tmp_path):
    source = tmp_path / "en.json"
    other = tmp_path / "fr.json"

    conflicts = documents.find_output_conflicts(
        {"en": tmp_path / "." / "en.json", "fr": tmp_path / "fr.de.json"},
        [source, other],
    )

    assert list(conflicts) == ["en"]
    assert isinstance(conflicts["en"], OverwriteRefusedError)


def test_shared_output_paths_refuse_every_claimant(tmp_path):
    conflicts = documents.find_output_conflicts(
        {
            ("a.json", "de"): tmp_path / "out" / "de.json",
            ("b.json", "de"): tmp_path / "out" / ".." / "out" / "de.json",
            ("a.json", "fr"): tmp_path / "out" / "fr.json",
        },
        [tmp_path / "a.json", tmp_path / "b.json"],
    )

    assert sorted(conflicts) == [("a.json", "de"), ("b.json", "de")]
    assert "2 times" in str(conflicts[("a.json", "de")])


def test_write_document_creates_directories_and_keeps_unicode(tmp_path):
    path = tmp_path / "out" / "ja" / "en.json"

    documents.write_document(path, {"greeting": "こんにちは"})

    text = path.read_text(encoding="utf-8")
    assert "こんにちは" in text
    assert json.loads(text) == {"greeting": "こんにちは"}
