"""Find-and-replace rules applied to structured server configuration data."""

from __future__ import annotations

import enum
import json
import logging
import os
import re
from dataclasses import dataclass
from typing import Any, Iterable

log = logging.getLogger(__name__)

# Matches "{{config.some.key}}" style references to the daemon configuration.
CONFIG_MATCH_REGEX = re.compile(r"\{\{\s?config\.([\w.-]+)\s?\}\}")

# Matches "[attr='value']" used to set XML attributes inline.
XML_VALUE_MATCH_REGEX = re.compile(r"^\[(\w+)='(.*)'\]$")

_ARRAY_ELEMENT_REGEX = re.compile(r"^([^\[\]]+)\[(\d+)](\..+)?$")
_ATOI_REGEX = re.compile(r"[+-]?[0-9]+")
_TRUE_WORDS = {"1", "t", "T", "TRUE", "true", "True"}
_INT64_MIN, _INT64_MAX = -(2**63), 2**63 - 1


class ValueType(enum.Enum):
    """The JSON type of a replacement value."""

    STRING = "string"
    NUMBER = "number"
    OBJECT = "object"
    ARRAY = "array"
    BOOLEAN = "boolean"
    NULL = "null"


class PathNotFoundError(LookupError):
    """Raised when a path does not resolve inside a container."""


class _NotArrayError(ValueError):
    pass


class _OutOfBoundsError(IndexError):
    pass


class _PathCollisionError(ValueError):
    pass


def _type_of(obj: Any) -> ValueType:
    if obj is None:
        return ValueType.NULL
    if isinstance(obj, bool):
        return ValueType.BOOLEAN
    if isinstance(obj, (int, float)):
        return ValueType.NUMBER
    if isinstance(obj, str):
        return ValueType.STRING
    if isinstance(obj, list):
        return ValueType.ARRAY
    return ValueType.OBJECT


@dataclass(frozen=True)
class ReplaceValue:
    """A raw JSON value used as a replacement; strings keep their escapes in ``value``."""

    value: str
    type: ValueType

    @classmethod
    def from_json(cls, raw: str | bytes) -> "ReplaceValue":
        text = raw.decode("utf-8") if isinstance(raw, bytes) else raw
        text = text.strip()
        kind = _type_of(json.loads(text))
        if kind is ValueType.STRING:
            text = text[1:-1]
        return cls(value=text, type=kind)

    @classmethod
    def _from_python(cls, obj: Any) -> "ReplaceValue":
        return cls.from_json(json.dumps(obj, ensure_ascii=False))

    def __str__(self) -> str:
        if self.type is ValueType.STRING:
            return json.loads('"' + self.value + '"')
        if self.type is ValueType.NULL:
            return "<nil>"
        if self.type in (ValueType.BOOLEAN, ValueType.NUMBER):
            return self.value
        return "<invalid>"


def _split_path(path: str) -> list[str]:
    return [p.replace("~1", ".").replace("~0", "~") for p in path.split(".")]


_MISSING = object()


def _search(container: Any, parts: list[str]) -> Any:
    obj = container
    for part in parts:
        if isinstance(obj, dict):
            if part not in obj:
                return _MISSING
            obj = obj[part]
        elif isinstance(obj, list):
            if not part.isdigit() or int(part) >= len(obj):
                return _MISSING
            obj = obj[int(part)]
        else:
            return _MISSING
    return obj


def _set_path(container: Any, parts: list[str], value: Any) -> None:
    obj = container
    last = len(parts) - 1
    for i, part in enumerate(parts):
        if isinstance(obj, dict):
            if i == last:
                obj[part] = value
            else:
                nxt = obj.get(part)
                if nxt is None:
                    nxt = obj[part] = {}
                obj = nxt
        elif isinstance(obj, list):
            if not _ATOI_REGEX.fullmatch(part):
                raise PathNotFoundError(f"failed to resolve path segment '{part}'")
            index = int(part)
            if index < 0 or index >= len(obj):
                raise _OutOfBoundsError(f"index {index} out of bounds")
            if i == last:
                obj[index] = value
            else:
                obj = obj[index]
        else:
            raise _PathCollisionError(f"encountered value collision at path segment '{part}'")


def _array_element(container: Any, index: int, path: str) -> Any:
    found = _search(container, _split_path(path))
    if found is _MISSING:
        raise PathNotFoundError(path)
    if not isinstance(found, list):
        raise _NotArrayError(f"value at '{path}' is not an array")
    if index >= len(found):
        raise _OutOfBoundsError(f"index {index} out of bounds")
    return found[index]


def _children(obj: Any) -> list[Any]:
    if isinstance(obj, list):
        return list(obj)
    if isinstance(obj, dict):
        return list(obj.values())
    return []


def _go_expand(match: re.Match, template: str) -> str:
    def repl(m: re.Match) -> str:
        if m.group(1) == "$":
            return "$"
        name = m.group(2) or m.group(3)
        try:
            key: int | str = int(name) if name.isdigit() else name
            return match.group(key) or ""
        except (IndexError, error_types):
            return ""

    error_types = re.error
    return re.sub(r"\$(\$|\{(\w+)\}|(\w+))", repl, template)


def _parse_bool(value: str) -> bool:
    return value in _TRUE_WORDS


@dataclass
class ConfigurationFileReplacement:
    """A single find/replace instruction for a configuration file."""

    match: str
    replace_with: ReplaceValue
    if_value: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> "ConfigurationFileReplacement":
        match = data.get("match")
        if not isinstance(match, str):
            raise ValueError("replacement is missing a string 'match' key")
        if_value = data.get("if_value", "")
        if not isinstance(if_value, str):
            raise ValueError("replacement 'if_value' must be a string")
        if "replace_with" in data:
            raw = data["replace_with"]
        elif "value" in data:
            raw = data["value"]
        else:
            raise ValueError("replacement is missing a 'replace_with' key")
        return cls(match=match, replace_with=ReplaceValue._from_python(raw), if_value=if_value)

    def key_value(self, value: str) -> Any:
        """Convert a replacement string into a bool or int where appropriate."""
        if self.replace_with.type is ValueType.BOOLEAN:
            return _parse_bool(value)
        if _ATOI_REGEX.fullmatch(value):
            number = int(value)
            if _INT64_MIN <= number <= _INT64_MAX:
                return number
        return value

    def set_at_pathway(self, container: Any, path: str, value: str) -> None:
        """Set ``value`` at ``path`` honouring the ``if_value`` condition."""
        if not self.if_value:
            set_value_at_path(container, path, self.key_value(value))
            return

        parts = _split_path(path)
        if self.if_value.startswith("regex:"):
            if _search(container, parts) is not _MISSING:
                raise PathNotFoundError(path)
            pattern = self.if_value[len("regex:"):]
            try:
                regex = re.compile(pattern)
            except re.error as err:
                log.warning(
                    "configuration if_value using invalid regexp, cannot perform replacement "
                    "(if_value=%s, error=%s)", pattern, err,
                )
                return
            found = _search(container, parts)
            current = "null" if found is _MISSING else json.dumps(found, ensure_ascii=False)
            current = current.strip('"')
            if regex.search(current):
                replaced = regex.sub(lambda m: _go_expand(m, value), current)
                set_value_at_path(container, path, replaced)
            return

        whole = json.dumps(container, separators=(",", ":"), sort_keys=True, ensure_ascii=False)
        if _search(container, parts) is not _MISSING and whole != self.if_value:
            return
        set_value_at_path(container, path, self.key_value(value))


def set_value_at_path(container: Any, path: str, value: Any) -> None:
    """Set a value at a dotted path, supporting a single ``key[index]`` array element."""
    m = _ARRAY_ELEMENT_REGEX.match(path)
    if m is None:
        _set_path(container, _split_path(path), value)
        return

    base, index = m.group(1), int(m.group(2))
    tail = (m.group(3) or "").removeprefix(".")
    try:
        element = _array_element(container, index, base)
    except (_NotArrayError, PathNotFoundError, _OutOfBoundsError) as err:
        if index != 0 or isinstance(err, _OutOfBoundsError):
            raise ValueError(f"error while parsing array element at path: {err}") from err
        try:
            _set_path(container, _split_path(base), [{}])
        except (ValueError, LookupError) as exc:
            raise ValueError(f"failed to create empty array for missing element: {exc}") from exc
        element = _array_element(container, 0, base)

    try:
        _set_path(element, _split_path(tail), value)
    except (ValueError, IndexError) as err:
        raise ValueError(f"failed to set value at config path: {path}: {err}") from err


def _to_snake(s: str) -> str:
    s = re.sub(r"([A-Z]+)([A-Z][a-z])", r"\1_\2", s)
    s = re.sub(r"([a-z\d])([A-Z])", r"\1_\2", s)
    s = re.sub(r"[-\s.]+", "_", s)
    return s.lower()


def _raw_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False)


def lookup_configuration_value(configuration: dict, replacement: ConfigurationFileReplacement) -> str:
    """Resolve ``{{config.x.y}}`` references against the daemon configuration."""
    rv = replacement.replace_with
    if rv.type is not ValueType.STRING or not CONFIG_MATCH_REGEX.search(rv.value):
        return str(rv)

    text = str(rv)
    first = CONFIG_MATCH_REGEX.search(text)
    hunt_path = first.group(1) if first else ""
    keys = [_to_snake(part) for part in hunt_path.split(".")]

    obj: Any = configuration
    for key in keys:
        if not isinstance(obj, dict) or key not in obj:
            log.debug("attempted to load a configuration value that does not exist (path=%s)", keys)
            return ""
        obj = obj[key]
    found = _raw_text(obj)
    return CONFIG_MATCH_REGEX.sub(lambda _m: found, text)


def iterate_over_json(
    data: str | bytes,
    replacements: Iterable[ConfigurationFileReplacement],
    configuration: dict,
) -> Any:
    """Apply every replacement to JSON ``data`` and return the resulting structure."""
    parsed = json.loads(data)
    for rep in replacements:
        value = lookup_configuration_value(configuration, rep)
        if ".*" in rep.match:
            head, tail = rep.match.split(".*", 1)
            found = _search(parsed, _split_path(head.strip(".")))
            for child in _children(None if found is _MISSING else found):
                try:
                    rep.set_at_pathway(child, tail.strip("."), value)
                except PathNotFoundError:
                    continue
                except (ValueError, IndexError) as err:
                    raise ValueError(f"failed to set config value of array child: {err}") from err
            continue
        try:
            rep.set_at_pathway(parsed, rep.match, value)
        except PathNotFoundError:
            continue
        except (ValueError, IndexError) as err:
            raise ValueError(f"unable to set config value at pathway: {rep.match}: {err}") from err
    return parsed


def read_file_bytes(path: str | os.PathLike) -> bytes:
    """Read a file, creating it empty first if it does not exist."""
    fd = os.open(path, os.O_CREAT | os.O_RDWR, 0o644)
    with os.fdopen(fd, "rb") as fh:
        return fh.read()