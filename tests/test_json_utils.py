"""Tests for embedded-state extraction and JSON repair."""

import json

from links2media.utils.json_utils import (
    extract_object_after,
    extract_script_json,
    extract_state,
    find_arrays_by_key,
    first_str,
    get_int,
    get_list,
    get_path,
    get_str,
    loads_lenient,
    repair_json,
    walk_json,
)


class TestExtractObjectAfter:
    """Balanced-brace scan after an anchor."""

    def test_simple_object(self):
        html = '<script>window.__INITIAL_STATE__={"a":{"b":1}};</script>'
        assert extract_object_after(html, "window.__INITIAL_STATE__") == '{"a":{"b":1}}'

    def test_braces_inside_strings_are_ignored(self):
        html = """var s = {"text": "a } b", 'x': '{', "esc": "q\\"}"} ; tail"""
        assert extract_object_after(html, "var s") == """{"text": "a } b", 'x': '{', "esc": "q\\"}"}"""

    def test_array_opener(self):
        html = "window.picture_page_info_list = [{'url': 'a'}, {'url': 'b'}];"
        raw = extract_object_after(html, "window.picture_page_info_list", opener="[")
        assert raw == "[{'url': 'a'}, {'url': 'b'}]"

    def test_missing_anchor_or_unbalanced(self):
        assert extract_object_after("<html></html>", "window.x") is None
        assert extract_object_after("window.x = {\"a\": 1", "window.x") is None
        assert extract_object_after(None, "window.x") is None


class TestRepair:
    """Repair of near-JSON page state."""

    def test_escaped_slash_trailing_comma_and_undefined(self):
        broken = '{"url":"https:\\u002F\\u002Fexample.com\\/a.jpg","tags":["x","y",],"extra":undefined,}'
        valid = '{"url":"https://example.com/a.jpg","tags":["x","y"],"extra":null}'
        assert loads_lenient(broken) == json.loads(valid)

    def test_hex_escapes(self):
        assert loads_lenient('{"q":"a\\x26b"}') == {"q": "a&b"}

    def test_trailing_comma_inside_string_is_kept(self):
        assert loads_lenient('{"s":",]", "n":[1,],}') == {"s": ",]", "n": [1]}

    def test_undefined_inside_string_is_kept(self):
        assert loads_lenient('{"s":"undefined","v":undefined}') == {"s": "undefined", "v": None}

    def test_comments_are_stripped(self):
        text = '{\n  // note\n  "a": 1, /* block */ "b": "http://x.y/z"\n}'
        assert loads_lenient(text) == {"a": 1, "b": "http://x.y/z"}

    def test_non_aggressive_keeps_bare_tokens(self):
        assert "undefined" in repair_json('{"a":undefined}')
        assert "null" in repair_json('{"a":undefined}', aggressive=True)

    def test_non_finite_constants_become_null(self):
        assert loads_lenient('{"a": NaN, "b": Infinity, "c": -Infinity, "d": 1}') == {
            "a": None,
            "b": None,
            "c": None,
            "d": 1,
        }
        assert loads_lenient('{"w": Infinity, "tags": [NaN,],}') == {"w": None, "tags": [None]}

    def test_unrepairable_returns_none(self):
        assert loads_lenient("{not json at all") is None
        assert loads_lenient("") is None
        assert loads_lenient(None) is None


def test_extract_state_uses_first_parseable_anchor():
    html = "window.A = {broken; window.B = {\"ok\": true};"
    assert extract_state(html, ["window.A", "window.B"]) == {"ok": True}


def test_extract_script_json():
    html = '<html><script id="__NEXT_DATA__" type="application/json">{"props":{"x":1}}</script></html>'
    assert extract_script_json(html, "__NEXT_DATA__") == {"props": {"x": 1}}
    assert extract_script_json(html, "missing") is None


class TestAccessors:
    """Typed access into parsed trees."""

    tree = {"a": {"b": [{"c": "x"}, {"c": 5}]}, "n": "42", "e": "", "t": True}

    def test_get_path(self):
        assert get_path(self.tree, "a", "b", 0, "c") == "x"
        assert get_path(self.tree, "a", "b", 5) is None
        assert get_path(self.tree, "a", "missing", "c") is None

    def test_get_str(self):
        assert get_str(self.tree, "a", "b", 1, "c") == "5"
        assert get_str(self.tree, "e") is None
        assert get_str(self.tree, "t") is None

    def test_get_int(self):
        assert get_int(self.tree, "n") == 42
        assert get_int(self.tree, "a") is None

    def test_non_finite_floats_are_missing(self):
        tree = {"w": float("inf"), "h": float("nan")}
        assert get_int(tree, "w") is None
        assert get_int(tree, "h") is None
        assert get_str(tree, "w") is None

    def test_get_list(self):
        assert len(get_list(self.tree, "a", "b")) == 2
        assert get_list(self.tree, "n") == []

    def test_first_str(self):
        assert first_str(self.tree, [("missing",), ("e",), ("a", "b", 0, "c")]) == "x"


def test_walk_json_stops_early():
    seen = []

    def _visit(key, value):
        seen.append(key)
        return key == "stop"

    walk_json({"a": 1, "b": {"stop": 2, "after": 3}, "c": 4}, _visit)
    assert seen == ["a", "b", "stop"]


def test_find_arrays_by_key():
    tree = {"x": {"imageList": [1, 2]}, "y": [{"images": [3]}], "imageList": "not a list"}
    assert find_arrays_by_key(tree, ["imageList", "images"]) == [[1, 2], [3]]
