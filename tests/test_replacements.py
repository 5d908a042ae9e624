import json

import pytest

from wingsd.replacements import (
    ConfigurationFileReplacement,
    PathNotFoundError,
    ReplaceValue,
    ValueType,
    iterate_over_json,
    lookup_configuration_value,
    read_file_bytes,
    set_value_at_path,
)


def rep(match, replace_with, if_value=""):
    return ConfigurationFileReplacement.from_dict(
        {"match": match, "replace_with": replace_with, "if_value": if_value}
    )


def test_replace_value_string_unescapes():
    rv = ReplaceValue.from_json('"\\u00a7Foo"')
    assert rv.type is ValueType.STRING
    assert rv.value == "\\u00a7Foo"
    assert str(rv) == "§Foo"


def test_replace_value_other_types():
    assert str(ReplaceValue.from_json("null")) == "<nil>"
    assert str(ReplaceValue.from_json("true")) == "true"
    assert str(ReplaceValue.from_json("[1]")) == "<invalid>"


def test_key_value_conversion():
    assert rep("a", True).key_value("true") is True
    assert rep("a", "x").key_value("25565") == 25565
    assert rep("a", "x").key_value("abc") == "abc"


def test_from_dict_falls_back_to_value_key():
    r = ConfigurationFileReplacement.from_dict({"match": "a", "value": "b"})
    assert str(r.replace_with) == "b"
    assert r.if_value == ""


def test_from_dict_requires_match():
    with pytest.raises(ValueError):
        ConfigurationFileReplacement.from_dict({"replace_with": "b"})


def test_set_value_creates_nested_maps():
    data = {}
    set_value_at_path(data, "a.b.c", 5)
    assert data == {"a": {"b": {"c": 5}}}


def test_set_value_collision_raises():
    with pytest.raises(ValueError):
        set_value_at_path({"a": 1}, "a.b", 2)


def test_set_array_element():
    data = {"a": [{"b": 1}]}
    set_value_at_path(data, "a[0].b", 2)
    assert data == {"a": [{"b": 2}]}


def test_missing_array_is_created_for_index_zero():
    data = {}
    set_value_at_path(data, "list[0].c", "v")
    assert data == {"list": [{"c": "v"}]}


def test_missing_array_non_zero_index_raises():
    with pytest.raises(ValueError):
        set_value_at_path({}, "list[1].c", "v")


def test_lookup_configuration_value():
    cfg = {"docker": {"interface": "172.18.0.1"}}
    r = rep("server-ip", "{{config.docker.interface}}:25565")
    assert lookup_configuration_value(cfg, r) == "172.18.0.1:25565"


def test_lookup_missing_key_returns_empty():
    r = rep("x", "{{config.docker.missing}}")
    assert lookup_configuration_value({"docker": {}}, r) == ""


def test_lookup_plain_value_passes_through():
    assert lookup_configuration_value({}, rep("x", 42)) == "42"


def test_iterate_over_json_wildcard():
    doc = json.dumps({"servers": {"x": {"address": "a"}, "y": {"address": "b"}}})
    out = iterate_over_json(doc, [rep("servers.*.address", "0.0.0.0")], {})
    assert {v["address"] for v in out["servers"].values()} == {"0.0.0.0"}


def test_iterate_over_json_simple_and_int():
    out = iterate_over_json('{"port": 1}', [rep("port", "25565")], {})
    assert out == {"port": 25565}


def test_if_value_mismatch_leaves_value():
    data = {"port": 1}
    rep("port", "2", if_value="9").set_at_pathway(data, "port", "2")
    assert data == {"port": 1}


def test_regex_if_value_on_existing_path_raises_not_found():
    data = {"port": "1"}
    with pytest.raises(PathNotFoundError):
        rep("port", "2", if_value="regex:1").set_at_pathway(data, "port", "2")
    assert data == {"port": "1"}


def test_read_file_bytes_creates_file(tmp_path):
    path = tmp_path / "new.cfg"
    assert read_file_bytes(path) == b""
    assert path.exists()
    path.write_bytes(b"abc")
    assert read_file_bytes(path) == b"abc"