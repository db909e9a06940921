"""PowerShell parsing on top of the tree-sitter grammar."""

from __future__ import annotations

from .syntax import (
    CommandElement,
    STRING_KINDS,
    ParsedScript,
    ScriptParseError,
    ScriptParser,
    directive_modules,
    enclosing_scope,
    find_all,
    named_children,
    parse_script,
    string_value,
    walk,
)

__all__ = [
    "CommandElement",
    "STRING_KINDS",
    "ParsedScript",
    "ScriptParseError",
    "ScriptParser",
    "directive_modules",
    "enclosing_scope",
    "find_all",
    "named_children",
    "parse_script",
    "string_value",
    "walk",
]
