import pytest

from jsonbabel import paths


def nested(depth: int) -> dict:
    node: object = "leaf"
    for _ in range(depth):
        node = {"k": node}
    return node  # type: ignore[return-value]


def test_flatten_collects_strings_in_document_order():
    document = {"a": "Hello", "b": {"c": "World", "d": [1, "x", None, True]}}

    assert paths.flatten(document) == {
        ("a",): "Hello",
        ("b", "c"): "World",
        ("b", "d", 1): "x",
    }
    assert list(paths.flatten(document)) == [("a",), ("b", "c"), ("b", "d", 1)]


def test_root_scalar_string_is_a_single_leaf():
    assert paths.flatten("hi") == {(): "hi"}
    assert paths.reconstruct("hi", {(): "salut"}) == "salut"


def test_empty_containers_have_no_leaves():
    assert paths.flatten({}) == {}
    assert paths.flatten({"a": [], "b": {}}) == {}


@pytest.mark.parametrize(
    "path",
    [
        ("a.b", "c"),
        ("",),
        ("[0]",),
        ("[",),
        ("a\x00b",),
        ("a\x01b", "\x01"),
        ("menu", 0, "items", 12, "label"),
        ("x]", "[y"),
    ],
)
def test_encode_decode_round_trip(path):
    assert paths.decode(paths.encode(path)) == path


def test_encoding_distinguishes_dotted_keys_from_nesting():
    assert paths.encode(("a.b", "c")) != paths.encode(("a", "b", "c"))
    assert paths.encode(("a\x00b",)) != paths.encode(("a", "b"))
    assert paths.encode(("[3]",)) != paths.encode((3,))


def test_decode_rejects_bad_escape():
    with pytest.raises(ValueError):
        paths.decode("a\x01zb")


def test_reconstruct_applies_subset_and_leaves_original_untouched():
    original = {"a": "Hello", "b": {"c": "World"}, "n": 3, "flag": False, "none": None}
    result = paths.reconstruct(original, {("b", "c"): "Welt"})

    assert result == {"a": "Hello", "b": {"c": "Welt"}, "n": 3, "flag": False, "none": None}
    assert original["b"]["c"] == "World"


def test_reconstruct_with_empty_mapping_is_structurally_equal():
    original = {"a": ["x", {"y": "z"}], "b": 1.5}
    result = paths.reconstruct(original, {})

    assert result == original
    assert result is not original


def test_reconstruct_ignores_paths_that_do_not_address_strings():
    original = {"a": "Hello", "n": 1}
    result = paths.reconstruct(original, {("n",): "one", ("missing", "x"): "?"})

    assert result == original


def test_keys_with_special_characters_survive_the_round_trip():
    document = {"a.b": {"": "empty key", "[0]": "bracket", "x\x00y": "nul"}}
    flat = paths.flatten(document)
    encoded = {paths.encode(path): text.upper() for path, text in flat.items()}
    translated = {paths.decode(key): text for key, text in encoded.items()}

    assert paths.reconstruct(document, translated) == {
        "a.b": {"": "EMPTY KEY", "[0]": "BRACKET", "x\x00y": "NUL"}
    }


def test_depth_limit():
    assert paths.flatten(nested(paths.MAX_DEPTH)) == {("k",) * paths.MAX_DEPTH: "leaf"}
    with pytest.raises(paths.PathDepthError):
        paths.flatten(nested(paths.MAX_DEPTH + 1))


def test_display():
    assert paths.display(("menu", "items", 2, "label")) == "menu.items[2].label"
    assert paths.display((0, "a")) == "[0].a"
    assert paths.display(()) == ""
