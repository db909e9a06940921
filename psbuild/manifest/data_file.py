"""Reading and writing PowerShell data files (``.psd1``)."""

from __future__ import annotations

import copy
import re
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

from tree_sitter import Node

from ..config import resolve_encoding
from ..errors import ManifestLoadError
from ..parsing import STRING_KINDS, ParsedScript, ScriptParseError, ScriptParser, named_children, string_value

_BARE_KEY_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_INT_RE = re.compile(r"^[+-]?\d+$")
_FLOAT_RE = re.compile(r"^[+-]?(?:\d+\.\d*|\.\d+|\d+)(?:e[+-]?\d+)?$", re.IGNORECASE)
_HEX_RE = re.compile(r"^0x[0-9a-f]+$", re.IGNORECASE)

_CONSTANTS = {"$true": True, "$false": False, "$null": None}

_INDENT = "    "


class _DataReader:
    """Converts the syntax tree of a data file into Python values."""

    def __init__(self, script: ParsedScript) -> None:
        self.script = script

    def read(self) -> Dict[str, Any]:
        statements = self.script.top_level_statements()
        if len(statements) != 1:
            raise ManifestLoadError("data file must contain a single hashtable literal")
        data = self.value(statements[0])
        if not isinstance(data, dict):
            raise ManifestLoadError("data file must contain a single hashtable literal")
        return data

    def value(self, node: Node) -> Any:
        while True:
            text = self.script.text(node).strip()
            if _is_number(text):
                return _number(text)
            if node.type == "hash_literal_expression":
                return self._hashtable(node)
            if node.type == "array_expression":
                return self._array(node)
            if node.type == "array_literal_expression" and len(named_children(node)) > 1:
                return [self.value(child) for child in named_children(node)]
            if node.type in STRING_KINDS:
                return string_value(text)
            if node.type == "variable" and text.lower() in _CONSTANTS:
                return _CONSTANTS[text.lower()]
            children = named_children(node)
            if node.type in ("variable", "command") or len(children) != 1:
                raise ManifestLoadError(f"unsupported value {text!r}")
            node = children[0]

    def _hashtable(self, node: Node) -> Dict[str, Any]:
        result: Dict[str, Any] = {}
        for body in named_children(node):
            entries = [body] if body.type == "hash_entry" else named_children(body)
            for entry in entries:
                parts = named_children(entry)
                if entry.type != "hash_entry" or len(parts) < 2:
                    raise ManifestLoadError(f"invalid hashtable entry {self.script.text(entry)!r}")
                key, value = parts[0], parts[1]
                result[self._key(key)] = self.value(value)
        return result

    def _key(self, node: Node) -> str:
        strings = self.script.strings(node)
        return strings[0] if strings else self.script.text(node).strip()

    def _array(self, node: Node) -> List[Any]:
        items: List[Any] = []
        pending = named_children(node)
        while pending:
            child = pending.pop(0)
            if child.type == "statement_list":
                pending[:0] = named_children(child)
                continue
            value = self.value(child)
            # Nested arrays flatten, as they do when PowerShell evaluates @().
            if isinstance(value, list):
                items.extend(value)
            else:
                items.append(value)
        return items


def _is_number(text: str) -> bool:
    return bool(_INT_RE.match(text) or _HEX_RE.match(text) or _FLOAT_RE.match(text))


def _number(text: str) -> Any:
    if _INT_RE.match(text):
        return int(text)
    if _HEX_RE.match(text):
        return int(text, 16)
    return float(text)


def parse_data(text: str) -> Dict[str, Any]:
    """Parse PowerShell data-file text into an ordered dictionary."""
    try:
        script = ScriptParser().parse(text)
    except ScriptParseError as exc:
        raise ManifestLoadError(str(exc)) from exc
    return _DataReader(script).read()


def load_data_file(path: Path, *, encoding: Optional[str] = None) -> Dict[str, Any]:
    codec = resolve_encoding(encoding) if encoding else "utf-8"
    if codec == "utf-8":
        codec = "utf-8-sig"
    try:
        text = path.read_text(encoding=codec)
    except (OSError, UnicodeDecodeError) as exc:
        raise ManifestLoadError(f"unable to read {path.name}: {exc}") from exc
    try:
        return parse_data(text)
    except ManifestLoadError as exc:
        raise ManifestLoadError(f"{path.name}: {exc}") from exc


def render_data(data: Mapping[str, Any]) -> str:
    """Render a mapping as PowerShell data-file text."""
    lines = ["@{", ""]
    for key, value in data.items():
        lines.append(f"{_render_key(key)} = {_render_value(value, 0)}")
        lines.append("")
    lines.append("}")
    return "\n".join(lines) + "\n"


def _render_key(key: str) -> str:
    return key if _BARE_KEY_RE.match(key) else _quote(key)


def _render_value(value: Any, depth: int) -> str:
    if value is None:
        return "$null"
    if isinstance(value, bool):
        return "$true" if value else "$false"
    if isinstance(value, (int, float)):
        return repr(value)
    if isinstance(value, str):
        return _quote(value)
    if isinstance(value, Mapping):
        if not value:
            return "@{}"
        inner = _INDENT * (depth + 1)
        entries = [f"{inner}{_render_key(key)} = {_render_value(item, depth + 1)}" for key, item in value.items()]
        return "@{\n" + "\n".join(entries) + f"\n{_INDENT * depth}}}"
    if isinstance(value, (list, tuple)):
        if not value:
            return "@()"
        return "@(" + ", ".join(_render_value(item, depth) for item in value) + ")"
    raise TypeError(f"cannot render {type(value).__name__} as PowerShell data")


def _quote(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def write_data_file(path: Path, data: Mapping[str, Any], *, encoding: str = "utf8") -> None:
    path.write_text(render_data(data), encoding=resolve_encoding(encoding), newline="\n")


def split_nested(data: Mapping[str, Any], *keys: str) -> Tuple[Dict[str, Any], Dict[str, Any]]:
    """Return ``data`` without the sub-mapping at ``keys`` plus that sub-mapping."""
    base = copy.deepcopy(dict(data))
    parent: Any = base
    for key in keys[:-1]:
        parent = parent.get(key) if isinstance(parent, dict) else None
        if not isinstance(parent, dict):
            return base, {}
    nested = parent.get(keys[-1]) if isinstance(parent, dict) else None
    if not isinstance(nested, dict):
        return base, {}
    parent[keys[-1]] = {}
    return base, nested


def merge_nested(data: Dict[str, Any], updates: Mapping[str, Any], *keys: str) -> Dict[str, Any]:
    """Set each field of ``updates`` inside the sub-mapping at ``keys``."""
    merged = copy.deepcopy(data)
    parent = merged
    for key in keys:
        child = parent.get(key)
        if not isinstance(child, dict):
            child = {}
            parent[key] = child
        parent = child
    for field, value in updates.items():
        parent[field] = value
    return merged


__all__ = [
    "load_data_file",
    "merge_nested",
    "parse_data",
    "render_data",
    "split_nested",
    "write_data_file",
]
