import json
import xml.etree.ElementTree as ET

import pytest
import yaml

from wingsd.config_file import ConfigurationFile, ConfigurationParser
from wingsd.replacements import ConfigurationFileReplacement


def _rep(match, replace_with, if_value=None):
    data = {"match": match, "replace_with": replace_with}
    if if_value is not None:
        data["if_value"] = if_value
    return ConfigurationFileReplacement.from_dict(data)


def _file(parser, *replacements, name="config"):
    return ConfigurationFile(file_name=name, parser=parser, replace=list(replacements))


def test_from_dict_reads_fields():
    cf = ConfigurationFile.from_dict(
        {"file": "server.properties", "parser": "properties",
         "replace": [{"match": "server-port", "replace_with": "25565"}]}
    )
    assert cf.file_name == "server.properties"
    assert cf.parser is ConfigurationParser.PROPERTIES
    assert [r.match for r in cf.replace] == ["server-port"]


def test_from_dict_yml_alias_and_bad_replace():
    cf = ConfigurationFile.from_dict({"file": "a.yml", "parser": "yml", "replace": "broken"})
    assert cf.parser is ConfigurationParser.YAML
    assert cf.replace == []


def test_from_dict_missing_file_key():
    with pytest.raises(ValueError):
        ConfigurationFile.from_dict({"parser": "json", "replace": []})


def test_json_replacement_with_config_reference(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"listeners": {"host": "0.0.0.0"}, "port": 1}))
    cf = _file(
        ConfigurationParser.JSON,
        _rep("listeners.host", "{{config.docker.interface}}"),
        _rep("port", "25565"),
    )
    cf.parse(path, {"docker": {"interface": "172.18.0.1"}})
    data = json.loads(path.read_text())
    assert data["listeners"]["host"] == "172.18.0.1"
    assert data["port"] == 25565


def test_json_wildcard(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"servers": {"a": {"address": "x"}, "b": {"address": "y"}}}))
    _file(ConfigurationParser.JSON, _rep("servers.*.address", "z")).parse(path, {})
    data = json.loads(path.read_text())
    assert {v["address"] for v in data["servers"].values()} == {"z"}


def test_json_escapes_html(tmp_path):
    path = tmp_path / "config.json"
    path.write_text("{}")
    _file(ConfigurationParser.JSON, _rep("motd", "<b>")).parse(path, {})
    text = path.read_text()
    assert "\\u003cb\\u003e" in text
    assert json.loads(text) == {"motd": "<b>"}


def test_json_empty_file_is_error(tmp_path):
    path = tmp_path / "config.json"
    path.write_text("")
    with pytest.raises(ValueError):
        _file(ConfigurationParser.JSON, _rep("a", "b")).parse(path, {})


def test_yaml_replacement(tmp_path):
    path = tmp_path / "config.yml"
    path.write_text("server:\n  port: 8080\n  host: example\n")
    _file(ConfigurationParser.YAML, _rep("server.port", "{{config.api.port}}")).parse(
        path, {"api": {"port": 9090}}
    )
    data = yaml.safe_load(path.read_text())
    assert data == {"server": {"port": 9090, "host": "example"}}


def test_properties_keeps_header_and_escapes(tmp_path):
    path = tmp_path / "server.properties"
    path.write_text("#Minecraft server properties\n#generated\nmotd=A Server\nserver-port=1\n")
    _file(ConfigurationParser.PROPERTIES, _rep("motd", "§Foo")).parse(path, {})
    text = path.read_text()
    assert text.startswith("#Minecraft server properties\n#generated\n")
    assert "motd=\\u00a7Foo\n" in text
    assert "server-port=1\n" in text
    assert text.index("motd=") < text.index("server-port=")


def test_properties_if_value_mismatch_is_skipped(tmp_path):
    path = tmp_path / "server.properties"
    path.write_text("server-port=1\n")
    _file(ConfigurationParser.PROPERTIES, _rep("server-port", "2", if_value="3")).parse(path, {})
    assert path.read_text() == "server-port=1\n"


def test_properties_expansion_and_new_key(tmp_path):
    path = tmp_path / "app.properties"
    path.write_text("base=/srv\nlocation=${base}/data\n")
    _file(ConfigurationParser.PROPERTIES, _rep("extra", "value")).parse(path, {})
    lines = path.read_text().splitlines()
    assert lines == ["base=/srv", "location=/srv/data", "extra=value"]


def test_properties_circular_reference(tmp_path):
    path = tmp_path / "app.properties"
    path.write_text("a=${b}\nb=${a}\n")
    with pytest.raises(ValueError):
        _file(ConfigurationParser.PROPERTIES, _rep("a", "b")).parse(path, {})


def test_properties_in_missing_directory_is_created(tmp_path):
    path = tmp_path / "nested" / "dir" / "server.properties"
    _file(ConfigurationParser.PROPERTIES, _rep("key", "value")).parse(path, {})
    assert path.read_text() == "key=value\n"


def test_text_file_line_prefix(tmp_path):
    path = tmp_path / "settings.txt"
    path.write_text("server-port=1\nmotd=hi\n")
    _file(ConfigurationParser.FILE, _rep("server-port", "server-port=2")).parse(path, {})
    assert path.read_text() == "server-port=2\nmotd=hi\n"


def test_text_file_missing_is_created_empty(tmp_path):
    path = tmp_path / "sub" / "settings.txt"
    _file(ConfigurationParser.FILE, _rep("a", "b")).parse(path, {})
    assert path.read_text() == ""


def test_ini_sections(tmp_path):
    path = tmp_path / "config.ini"
    path.write_text("[server]\nport = 1\nname = foo\n")
    _file(
        ConfigurationParser.INI,
        _rep("server.port", "2"),
        _rep("motd", "hi"),
        _rep("other.key", "v"),
    ).parse(path, {})
    text = path.read_text()
    lines = text.splitlines()
    assert "port = 2" in lines
    assert "name = foo" in lines
    assert "motd = hi" in lines
    assert "[other]" in lines
    assert "key = v" in lines
    assert text.index("motd") < text.index("[server]") < text.index("[other]")


def test_xml_created_from_empty_file(tmp_path):
    path = tmp_path / "config.xml"
    _file(ConfigurationParser.XML, _rep("Root.Property", "[value='testing']")).parse(path, {})
    text = path.read_text()
    assert text.startswith('<?xml version="1.0" encoding="utf-8"?>')
    root = ET.fromstring(text.split("\n", 1)[1])
    assert root.tag == "Root"
    assert root.find("Property").get("value") == "testing"


def test_xml_sets_text_on_existing(tmp_path):
    path = tmp_path / "config.xml"
    path.write_text("<Settings><Port>1</Port><Name>a</Name></Settings>")
    _file(ConfigurationParser.XML, _rep("Settings.Port", "25565")).parse(path, {})
    root = ET.fromstring(path.read_text())
    assert root.find("Port").text == "25565"
    assert root.find("Name").text == "a"


def test_unknown_parser_leaves_file(tmp_path):
    path = tmp_path / "config.toml"
    path.write_text("a = 1\n")
    _file("toml", _rep("a", "2")).parse(path, {})
    assert path.read_text() == "a = 1\n"