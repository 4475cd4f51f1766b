"""
Tests for the data-column codecs.
"""
import json

import pytest

from logstore.codec import CircularJSONCodec, JSONCodec, decycle, retrocycle


@pytest.fixture
def codec():
    return CircularJSONCodec()


class TestCircularJSONCodec:
    def test_plain_values_unchanged(self, codec):
        value = {"a": 1, "b": [1, 2, {"c": "d"}], "e": None, "f": True}
        assert codec.decode(codec.encode(value)) == value

    def test_scalars(self, codec):
        for value in ("text", 3, 2.5, None, False):
            assert codec.decode(codec.encode(value)) == value

    def test_self_reference_preserved(self, codec):
        value = {"name": "root"}
        value["self"] = value
        decoded = codec.decode(codec.encode(value))
        assert decoded["name"] == "root"
        assert decoded["self"] is decoded

    def test_nested_cycle_points_to_ancestor(self, codec):
        parent = {"name": "parent", "children": []}
        child = {"name": "child", "parent": parent}
        parent["children"].append(child)
        decoded = codec.decode(codec.encode({"tree": parent}))
        tree = decoded["tree"]
        assert tree["children"][0]["parent"] is tree

    def test_list_cycle(self, codec):
        items = [1, 2]
        items.append(items)
        decoded = codec.decode(codec.encode(items))
        assert decoded[:2] == [1, 2]
        assert decoded[2] is decoded

    def test_shared_reference_keeps_identity(self, codec):
        shared = {"k": "v"}
        decoded = codec.decode(codec.encode({"a": shared, "b": shared}))
        assert decoded["a"] == {"k": "v"}
        assert decoded["b"] is decoded["a"]

    def test_keys_with_quotes_and_brackets(self, codec):
        inner = {"x": 1}
        value = {'we"ird]["key': inner, "other": inner}
        decoded = codec.decode(codec.encode(value))
        assert decoded["other"] is decoded['we"ird]["key']

    def test_encoded_form_is_json(self, codec):
        value = {"a": 1}
        value["me"] = value
        assert json.loads(codec.encode(value)) == {"a": 1, "me": {"$ref": "$"}}

    def test_non_json_values_stringified(self, codec):
        class Thing:
            def __str__(self):
                return "thing"

        assert codec.decode(codec.encode({"t": Thing()})) == {"t": "thing"}

    def test_decode_none(self, codec):
        assert codec.decode(None) is None


class TestHelpers:
    def test_decycle_tuple_becomes_list(self):
        assert decycle({"t": (1, 2)}) == {"t": [1, 2]}

    def test_decycle_non_string_keys(self):
        assert decycle({1: "a", None: "b"}) == {"1": "a", "null": "b"}

    def test_retrocycle_ignores_non_path_ref(self):
        value = {"$ref": "not a path"}
        assert retrocycle({"x": value}) == {"x": {"$ref": "not a path"}}


class TestJSONCodec:
    def test_round_trip(self):
        codec = JSONCodec()
        assert codec.decode(codec.encode({"a": [1, 2]})) == {"a": [1, 2]}

    def test_circular_rejected(self):
        value = {}
        value["self"] = value
        with pytest.raises(ValueError):
            JSONCodec().encode(value)


class TestReservedKeys:
    def test_ref_shaped_user_dicts_round_trip(self, codec):
        value = {"schema": {"$ref": "$"}, "doc": {"$ref": '$["schema"]'}}
        decoded = codec.decode(codec.encode(value))
        assert decoded == value
        assert decoded["schema"] is not decoded

    def test_ref_shaped_root(self, codec):
        assert codec.decode(codec.encode({"$ref": "$"})) == {"$ref": "$"}

    def test_literal_shaped_user_dicts_round_trip(self, codec):
        value = {"a": {"$literal": {"x": 1}}, "b": {"$literal": 5}, "c": [{"$ref": "$[0]"}]}
        assert codec.decode(codec.encode(value)) == value

    def test_shared_ref_shaped_dict_keeps_identity(self, codec):
        shared = {"$ref": '$["q"]'}
        decoded = codec.decode(codec.encode({"p": shared, "q": shared}))
        assert decoded["p"] == shared
        assert decoded["q"] is decoded["p"]

    def test_escaped_form(self, codec):
        assert json.loads(codec.encode({"k": {"$ref": "$"}})) == {"k": {"$literal": {"$ref": "$"}}}

    def test_cycle_through_escaped_dict(self, codec):
        holder = {"$ref": "x"}
        value = {"holder": holder, "list": []}
        value["list"].append(value)
        decoded = codec.decode(codec.encode(value))
        assert decoded["holder"] == {"$ref": "x"}
        assert decoded["list"][0] is decoded
