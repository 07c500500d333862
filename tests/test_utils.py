"""Tests for kfg.utils dot-path helpers."""

import pytest

from kfg.errors import StructuralError
from kfg.utils import (
    deep_merge,
    delete_property,
    flatten,
    get_property,
    set_property,
    split_path,
    unflatten,
)


class TestGetProperty:
    def test_nested_lookup(self):
        assert get_property({"a": {"b": {"c": 1}}}, "a.b.c") == 1

    def test_missing_segment_returns_none(self):
        assert get_property({"a": {}}, "a.b.c") is None

    def test_non_dict_intermediate_returns_none(self):
        assert get_property({"a": 5}, "a.b") is None

    def test_empty_path_returns_object(self):
        data = {"a": 1}
        assert get_property(data, "") is data
        assert get_property(data, None) is data


class TestSetProperty:
    def test_creates_intermediate_dicts(self):
        data: dict = {}
        set_property(data, "a.b.c", 1)
        assert data == {"a": {"b": {"c": 1}}}

    def test_replaces_none_intermediate(self):
        data = {"a": None}
        set_property(data, "a.b", 2)
        assert data == {"a": {"b": 2}}

    def test_non_dict_intermediate_raises(self):
        with pytest.raises(StructuralError):
            set_property({"a": 5}, "a.b", 1)


class TestDeleteProperty:
    def test_removes_leaf(self):
        data = {"a": {"b": 1, "c": 2}}
        assert delete_property(data, "a.b") is True
        assert data == {"a": {"c": 2}}

    def test_missing_path_is_false(self):
        data = {"a": {"c": 2}}
        assert delete_property(data, "a.b") is False
        assert delete_property(data, "x.y") is False
        assert data == {"a": {"c": 2}}


class TestMergeAndFlatten:
    def test_deep_merge_does_not_mutate(self):
        target = {"a": {"b": 1, "c": 2}}
        merged = deep_merge(target, {"a": {"b": 10}, "d": 4})
        assert merged == {"a": {"b": 10, "c": 2}, "d": 4}
        assert target == {"a": {"b": 1, "c": 2}}

    def test_deep_merge_replaces_non_dicts(self):
        assert deep_merge({"a": [1, 2]}, {"a": [3]}) == {"a": [3]}

    def test_flatten_keeps_lists_and_empty_dicts(self):
        flat = flatten({"a": {"b": 1, "c": [1, 2]}, "e": {}})
        assert flat == {"a.b": 1, "a.c": [1, 2], "e": {}}

    def test_flatten_with_prefix(self):
        assert flatten({"port": 1}, "app") == {"app.port": 1}

    def test_unflatten_inverts_flatten(self):
        nested = {"a": {"b": 1, "c": {"d": "x"}}, "e": True}
        assert unflatten(flatten(nested)) == nested

    def test_split_path_skips_empty_segments(self):
        assert split_path("a..b.") == ["a", "b"]
