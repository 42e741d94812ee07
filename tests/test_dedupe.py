from jsonbabel.dedupe import dedupe
from jsonbabel.documents import load_document
from jsonbabel.hashing import fingerprint


def test_shared_strings_collapse_across_documents():
    first = load_document("a.json", {"save": "Save", "title": "Home"})
    second = load_document("b.json", {"button": {"label": "Save"}})

    result = dedupe([first, second])

    assert result.total_occurrences == 3
    assert result.unique_count == 2
    assert result.savings == 1
    save = result.strings[fingerprint("Save")]
    assert save.document_ids == ["a.json", "b.json"]
    assert [occurrence.path for occurrence in save.occurrences] == [("save",), ("button", "label")]


def test_first_seen_order_and_per_document_view():
    first = load_document("a.json", {"x": "One", "y": "Two"})
    second = load_document("b.json", ["Three", "One"])

    result = dedupe([first, second])

    assert [unique.text for unique in result.strings.values()] == ["One", "Two", "Three"]
    assert [unique.text for unique in result.for_document("b.json")] == ["One", "Three"]


def test_duplicates_within_one_document():
    document = load_document("a.json", {"a": "Hello", "b": {"c": "Hello"}})

    result = dedupe([document])

    assert result.unique_count == 1
    assert result.strings[fingerprint("Hello")].document_ids == ["a.json"]
