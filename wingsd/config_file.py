"""Server configuration files that are rewritten before a server boots."""

from __future__ import annotations

import enum
import json
import logging
import os
import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Iterator

import yaml

from wingsd.replacements import (
    XML_VALUE_MATCH_REGEX,
    ConfigurationFileReplacement,
    iterate_over_json,
    lookup_configuration_value,
    read_file_bytes,
)

log = logging.getLogger(__name__)

_XML_DECLARATION = '<?xml version="1.0" encoding="utf-8"?>'
_XML_DECLARATION_REGEX = re.compile(rb"^\s*<\?xml[^>]*\?>", re.S)
_XML_ERROR_NO_ELEMENTS = 3

_PROPERTY_LINE = re.compile(r"((?:\\.|[^\\=:\s])*)\s*[=:]?\s*(.*)", re.S)
_PROPERTY_ESCAPE = re.compile(r"\\(u[0-9a-fA-F]{4}|.)", re.S)
_PROPERTY_ESCAPES = {"t": "\t", "n": "\n", "r": "\r", "f": "\f"}
_EXPANSION = re.compile(r"\$\{([^}]*)\}")
_MAX_EXPANSION_DEPTH = 64

_GO_JSON_ESCAPES = (
    ("&", "\\u0026"),
    ("<", "\\u003c"),
    (">", "\\u003e"),
    ("\u2028", "\\u2028"),
    ("\u2029", "\\u2029"),
)
_QUOTE_ESCAPES = {
    "\a": "\\a", "\b": "\\b", "\f": "\\f", "\n": "\\n",
    "\r": "\\r", "\t": "\\t", "\v": "\\v", '"': '\\"', "\\": "\\\\",
}


class ConfigurationParser(str, enum.Enum):
    """The file formats a configuration file can be parsed as."""

    FILE = "file"
    YAML = "yaml"
    PROPERTIES = "properties"
    INI = "ini"
    JSON = "json"
    XML = "xml"

    def __str__(self) -> str:
        return self.value


def _parser_of(name: str) -> ConfigurationParser | str:
    if name == "yml":
        return ConfigurationParser.YAML
    try:
        return ConfigurationParser(name)
    except ValueError:
        return name


# --------------------------------------------------------------------------- properties


def _unescape_property(text: str) -> str:
    def repl(m: re.Match) -> str:
        seq = m.group(1)
        if len(seq) == 5:
            return chr(int(seq[1:], 16))
        return _PROPERTY_ESCAPES.get(seq, seq)

    return _PROPERTY_ESCAPE.sub(repl, text)


def _continues(line: str) -> bool:
    trailing = len(line) - len(line.rstrip("\\"))
    return trailing % 2 == 1


def _iter_property_pairs(text: str) -> Iterator[tuple[str, str]]:
    lines = iter(text.replace("\r\n", "\n").replace("\r", "\n").split("\n"))
    for line in lines:
        line = line.lstrip(" \t\f")
        if not line or line[0] in "#!":
            continue
        while _continues(line):
            line = line[:-1] + next(lines, "").lstrip(" \t\f")
        m = _PROPERTY_LINE.match(line)
        yield _unescape_property(m.group(1)), _unescape_property(m.group(2))


def _expand(text: str, keys: list[str], values: dict[str, str], depth: int = 0) -> str:
    if depth > _MAX_EXPANSION_DEPTH:
        raise ValueError("expansion too deep")

    def repl(m: re.Match) -> str:
        name = m.group(1)
        if name in keys:
            raise ValueError(f"circular reference in: {text}")
        resolved = values[name] if name in values else os.environ.get(name, "")
        return _expand(resolved, [*keys, name], values, depth + 1)

    return _EXPANSION.sub(repl, text)


class _Properties:
    """An ordered set of Java-style properties with ``${key}`` expansion."""

    def __init__(self, values: dict[str, str]) -> None:
        self._values = values

    @classmethod
    def loads(cls, text: str) -> "_Properties":
        props = cls(dict(_iter_property_pairs(text)))
        for key in props.keys():
            props.get(key)
        return props

    def keys(self) -> list[str]:
        return list(self._values)

    def __contains__(self, key: str) -> bool:
        return key in self._values

    def get(self, key: str) -> str | None:
        if key not in self._values:
            return None
        return _expand(self._values[key], [key], self._values)

    def set(self, key: str, value: str) -> None:
        _expand(value, [key], self._values)
        self._values[key] = value


def _quote_ascii(value: str) -> str:
    out = []
    for ch in value:
        code = ord(ch)
        if ch in _QUOTE_ESCAPES:
            out.append(_QUOTE_ESCAPES[ch])
        elif 0x20 <= code < 0x7F:
            out.append(ch)
        elif code < 0x20 or code == 0x7F:
            out.append(f"\\x{code:02x}")
        elif code < 0x10000:
            out.append(f"\\u{code:04x}")
        else:
            out.append(f"\\U{code:08x}")
    return '"' + "".join(out) + '"'


def _leading_comments(text: str) -> str:
    if not text:
        return ""
    lines = text.split("\n")
    if text.endswith("\n"):
        lines.pop()
    header = []
    for line in lines:
        line = line.removesuffix("\r")
        if line and line[0] != "#":
            break
        header.append(line + "\n")
    return "".join(header)


# --------------------------------------------------------------------------- ini


@dataclass
class _IniKey:
    value: str
    comments: list[str] = field(default_factory=list)


@dataclass
class _IniSection:
    name: str
    comments: list[str] = field(default_factory=list)
    keys: dict[str, _IniKey] = field(default_factory=dict)


def _ini_value(text: str) -> str:
    if len(text) > 1 and text[0] in '"`':
        closing = text.rfind(text[0])
        if closing > 0:
            return text[1:closing]
    cut = [i for i in (text.find("#"), text.find(";")) if i >= 0]
    if cut:
        text = text[: min(cut)]
    return text.strip()


def _load_ini(text: str) -> dict[str, _IniSection]:
    sections = {"": _IniSection("")}
    current = sections[""]
    pending: list[str] = []
    for raw in text.splitlines():
        line = raw.strip()
        if not line:
            continue
        if line[0] in "#;":
            pending.append(line)
            continue
        if line.startswith("["):
            end = line.find("]")
            if end < 0:
                raise ValueError(f"unclosed section: {line}")
            name = line[1:end].strip()
            if name == "DEFAULT":
                name = ""
            current = sections.setdefault(name, _IniSection(name))
            current.comments.extend(pending)
            pending = []
            continue
        positions = [i for i in (line.find("="), line.find(":")) if i >= 0]
        if not positions:
            raise ValueError(f"key-value delimiter not found: {line}")
        idx = min(positions)
        key = line[:idx].strip()
        current.keys[key] = _IniKey(_ini_value(line[idx + 1:].strip()), pending)
        pending = []
    if pending:
        current.comments.extend(pending)
    return sections


def _format_ini_value(value: str) -> str:
    if "#" in value or ";" in value or value != value.strip():
        return f"`{value}`"
    return value


def _dump_ini(sections: dict[str, _IniSection]) -> str:
    blocks = []
    for sec in sections.values():
        if not sec.name and not sec.keys and not sec.comments:
            continue
        lines = list(sec.comments)
        if sec.name:
            lines.append(f"[{sec.name}]")
        width = max((len(k) for k in sec.keys), default=0)
        for key, entry in sec.keys.items():
            lines.extend(entry.comments)
            lines.append(f"{key.ljust(width)} = {_format_ini_value(entry.value)}")
        blocks.append("\n".join(lines))
    return "\n\n".join(blocks) + "\n" if blocks else ""


def _split_ini_match(match: str) -> list[str]:
    path: list[str] = []
    current: list[str] = []
    depth = 0
    for ch in match:
        if ch == "[":
            depth += 1
        elif ch == "]":
            depth -= 1
        elif ch == ".":
            if depth > 0 or len(path) == 1:
                current.append(ch)
                continue
            path.append("".join(current))
            current = []
        else:
            current.append(ch)
    path.append("".join(current))
    return path


# --------------------------------------------------------------------------- helpers


def _stringify_keys(obj: Any) -> Any:
    if isinstance(obj, dict):
        return {_key_text(k): _stringify_keys(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_stringify_keys(v) for v in obj]
    return obj


def _key_text(key: Any) -> str:
    if isinstance(key, bool):
        return "true" if key else "false"
    if key is None:
        return "<nil>"
    return str(key)


def _go_json_indent(data: Any) -> str:
    text = json.dumps(data, indent=4, sort_keys=True, ensure_ascii=False)
    for ch, escaped in _GO_JSON_ESCAPES:
        text = text.replace(ch, escaped)
    return text


def _write_text(path: str | os.PathLike, text: str) -> None:
    with open(path, "w", encoding="utf-8", newline="") as fh:
        fh.write(text)


# --------------------------------------------------------------------------- file


@dataclass
class ConfigurationFile:
    """A server configuration file and the replacements to apply to it."""

    file_name: str
    parser: ConfigurationParser | str
    replace: list[ConfigurationFileReplacement] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict) -> "ConfigurationFile":
        if not isinstance(data, dict):
            raise ValueError("configuration file definition must be an object")
        try:
            file_name, parser, raw_replace = data["file"], data["parser"], data["replace"]
        except KeyError as err:
            raise ValueError(f"configuration file definition is missing key {err}") from err
        if not isinstance(file_name, str):
            raise ValueError("configuration file 'file' must be a string")
        if not isinstance(parser, str):
            raise ValueError("configuration file 'parser' must be a string")

        replacements: list[ConfigurationFileReplacement] = []
        if raw_replace is not None:
            try:
                if not isinstance(raw_replace, list):
                    raise ValueError("'replace' must be an array")
                replacements = [ConfigurationFileReplacement.from_dict(r) for r in raw_replace]
            except (ValueError, TypeError, AttributeError) as err:
                log.warning(
                    "failed to unmarshal configuration file replacement (file=%s, error=%s)",
                    file_name, err,
                )
                replacements = []
        return cls(file_name=file_name, parser=_parser_of(parser), replace=replacements)

    def parse(self, path: str | os.PathLike, configuration: dict | None = None,
              internal: bool = False) -> None:
        """Apply the replacements to the file at ``path`` and write it back."""
        configuration = configuration if configuration is not None else {}
        log.debug("parsing server configuration file (path=%s, parser=%s)", path, self.parser)

        handler = self._handlers().get(self.parser)
        if handler is None:
            return
        try:
            handler(path, configuration)
        except FileNotFoundError:
            if internal:
                return
            parent = os.path.dirname(os.fspath(path))
            try:
                if parent:
                    os.makedirs(parent, 0o755, exist_ok=True)
            except OSError as err:
                raise OSError(
                    f"failed to create base directory for missing configuration file: {err}"
                ) from err
            try:
                open(path, "wb").close()
            except OSError as err:
                raise OSError(f"failed to create missing configuration file: {err}") from err
            self.parse(path, configuration, True)

    def _handlers(self) -> dict[Any, Callable[[Any, dict], None]]:
        return {
            ConfigurationParser.PROPERTIES: self._parse_properties_file,
            ConfigurationParser.FILE: self._parse_text_file,
            ConfigurationParser.YAML: self._parse_yaml_file,
            ConfigurationParser.JSON: self._parse_json_file,
            ConfigurationParser.INI: self._parse_ini_file,
            ConfigurationParser.XML: self._parse_xml_file,
        }

    def _parse_xml_file(self, path: str | os.PathLike, configuration: dict) -> None:
        raw = read_file_bytes(path)
        decl = _XML_DECLARATION_REGEX.match(raw)
        declaration = decl.group(0).strip().decode("utf-8") if decl else None

        root: ET.Element | None
        builder = ET.XMLParser(target=ET.TreeBuilder(insert_comments=True))
        try:
            builder.feed(raw)
            root = builder.close()
        except ET.ParseError as err:
            if err.code != _XML_ERROR_NO_ELEMENTS:
                raise
            root = None

        if root is None and declaration is None:
            declaration = _XML_DECLARATION

        for i, rep in enumerate(self.replace):
            value = lookup_configuration_value(configuration, rep)
            if i == 0 and root is None:
                root = ET.Element(rep.match.split(".", 1)[0])

            xpath = "./" + rep.match.replace(".", "/")
            if "*" not in xpath:
                element = root
                for tag in rep.match.split(".")[1:]:
                    found = element.find(tag)
                    element = found if found is not None else ET.SubElement(element, tag)

            document = ET.Element("document")
            document.append(root)
            attr = XML_VALUE_MATCH_REGEX.match(value)
            for element in document.findall(xpath):
                if attr:
                    element.set(attr.group(1), attr.group(2))
                else:
                    element.text = value

        parts = []
        if declaration:
            parts.append(declaration)
        if root is not None:
            ET.indent(root, space="  ")
            parts.append(ET.tostring(root, encoding="unicode"))
        _write_text(path, "\n".join(parts) + "\n")

    def _parse_ini_file(self, path: str | os.PathLike, configuration: dict) -> None:
        text = read_file_bytes(path).decode("utf-8")
        sections = _load_ini(text)

        for rep in self.replace:
            parts = _split_ini_match(rep.match)
            value = lookup_configuration_value(configuration, rep)
            key, name = parts[0], ""
            if len(parts) == 2:
                name, key = parts[0], parts[1]
            section = sections.setdefault(name, _IniSection(name))
            if key in section.keys:
                section.keys[key].value = value
            else:
                section.keys[key] = _IniKey(value)

        _write_text(path, _dump_ini(sections))

    def _parse_json_file(self, path: str | os.PathLike, configuration: dict) -> None:
        data = iterate_over_json(read_file_bytes(path), self.replace, configuration)
        _write_text(path, _go_json_indent(data))

    def _parse_yaml_file(self, path: str | os.PathLike, configuration: dict) -> None:
        loaded = yaml.safe_load(read_file_bytes(path))
        if loaded is None:
            loaded = {}
        if not isinstance(loaded, dict):
            raise ValueError("yaml: cannot unmarshal document into a map")

        as_json = json.dumps(_stringify_keys(loaded), default=str, ensure_ascii=False)
        data = iterate_over_json(as_json, self.replace, configuration)
        dumped = yaml.safe_dump(
            data, default_flow_style=False, sort_keys=True, allow_unicode=True,
            indent=4, width=2**30,
        )
        _write_text(path, dumped)

    def _parse_text_file(self, path: str | os.PathLike, configuration: dict) -> None:
        text = Path(path).read_bytes().decode("utf-8", errors="surrogateescape")
        lines = text.split("\n")
        for i, line in enumerate(lines):
            for rep in self.replace:
                if line.startswith(rep.match):
                    lines[i] = str(rep.replace_with)
        Path(path).write_bytes("\n".join(lines).encode("utf-8", errors="surrogateescape"))

    def _parse_properties_file(self, path: str | os.PathLike, configuration: dict) -> None:
        with open(path, encoding="utf-8", newline="") as fh:
            text = fh.read()
        header = _leading_comments(text)

        try:
            props = _Properties.loads(text)
        except ValueError as err:
            raise ValueError(
                f"parser: could not load properties file for configuration update: {err}"
            ) from err

        for rep in self.replace:
            data = lookup_configuration_value(configuration, rep)
            current = props.get(rep.match)
            if rep.if_value and (current is None or current != rep.if_value):
                continue
            try:
                props.set(rep.match, data)
            except ValueError as err:
                raise ValueError(f"parser: failed to set replacement value: {err}") from err

        body = []
        for key in props.keys():
            value = props.get(key)
            if value is None:
                continue
            # Non-ASCII characters are deliberately written as escape sequences.
            body.append(key + "=" + _quote_ascii(value).strip('"') + "\n")

        _write_text(path, header + "".join(body))