"""Tree-sitter access to PowerShell source."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterator, List, Optional

import tree_sitter_powershell
from tree_sitter import Language, Node, Parser, Tree

POWERSHELL = Language(tree_sitter_powershell.language())

# Kinds that only group the statements of the scope they sit in.
_CONTAINER_KINDS = ("statement_list", "script_block", "script_block_body")

# Kinds that open a new scope for definitions and their attributes.
SCOPE_KINDS = (
    "function_statement",
    "script_block_expression",
    "class_statement",
    "class_method_definition",
)

STRING_KINDS = (
    "string_literal",
    "verbatim_string_characters",
    "expandable_string_literal",
    "verbatim_here_string_characters",
    "expandable_here_string_literal",
)

_REQUIRES_RE = re.compile(r"^#requires\s+(?P<rest>.*)$", re.IGNORECASE | re.DOTALL)
_OPENERS = {"(": ")", "{": "}", "[": "]"}
_QUOTES = ("'", '"')


class ScriptParseError(ValueError):
    """Raised when PowerShell source does not parse cleanly."""

    def __init__(self, message: str, line: int, column: int) -> None:
        self.line = line
        self.column = column
        super().__init__(f"{message} at line {line}, column {column}")


@dataclass(frozen=True)
class CommandElement:
    """A parameter (``-Name``) or argument following a command name."""

    kind: str
    text: str
    value: str


@dataclass
class ParsedScript:
    """A parsed PowerShell source with helpers over its syntax tree."""

    source: bytes
    tree: Tree

    @property
    def root(self) -> Node:
        return self.tree.root_node

    def text(self, node: Node) -> str:
        return self.source[node.start_byte : node.end_byte].decode("utf-8", errors="replace")

    def top_level_statements(self) -> List[Node]:
        """Statements of the script scope, in source order, without comments."""
        statements: List[Node] = []
        pending = [self.root]
        while pending:
            node = pending.pop()
            for child in reversed(named_children(node)):
                if child.type in _CONTAINER_KINDS:
                    pending.append(child)
                else:
                    statements.append(child)
        return sorted(statements, key=lambda node: node.start_byte)

    def comments(self) -> Iterator[Node]:
        return (node for node in walk(self.root) if node.type == "comment")

    def required_modules(self) -> List[str]:
        """Module names from every ``#Requires -Modules`` directive."""
        modules: List[str] = []
        for comment in self.comments():
            match = _REQUIRES_RE.match(self.text(comment).strip())
            if match is None:
                continue
            for module in directive_modules(match.group("rest")):
                if module not in modules:
                    modules.append(module)
        return modules

    def function_name(self, definition: Node) -> str:
        for child in definition.named_children:
            if child.type == "function_name":
                return self.text(child)
        return ""

    def command_name(self, command: Node) -> Optional[str]:
        for child in command.named_children:
            if child.type == "command_name":
                return self.text(child)
        return None

    def command_elements(self, command: Node) -> List[CommandElement]:
        """Parameters and arguments of ``command`` after its name."""
        elements: List[CommandElement] = []
        previous_end: Optional[int] = None
        for node in _element_nodes(command):
            text = self.text(node)
            if node.type == "command_argument_sep" and text.strip() != ":":
                previous_end = None
                continue
            # ``-Name:value`` is one element even when the grammar splits it.
            attached = (
                bool(elements)
                and elements[-1].kind == "parameter"
                and previous_end == node.start_byte
                and (text.startswith(":") or elements[-1].text.endswith(":"))
            )
            if attached:
                text = elements.pop().text + text
                elements.append(CommandElement("parameter", text, text))
            elif node.type == "command_parameter":
                elements.append(CommandElement("parameter", text.strip(), text.strip()))
            else:
                elements.append(CommandElement("argument", text.strip(), string_value(text.strip())))
            previous_end = node.end_byte
        return elements

    def strings(self, node: Node) -> List[str]:
        """Values of the string literals under ``node``, outermost first."""
        values: List[str] = []
        pending = [node]
        while pending:
            current = pending.pop()
            if current.type in STRING_KINDS:
                values.append(string_value(self.text(current)))
                continue
            pending.extend(reversed(named_children(current)))
        return values


class ScriptParser:
    """Parses PowerShell source with the tree-sitter grammar."""

    def __init__(self) -> None:
        self._parser = Parser(POWERSHELL)

    def parse(self, source: str) -> ParsedScript:
        source_bytes = source.encode("utf-8")
        script = ParsedScript(source=source_bytes, tree=self._parser.parse(source_bytes))
        if script.root.has_error:
            node = first_error(script.root)
            line, column = node.start_point
            if node.is_missing:
                message = f"missing '{node.type}'"
            else:
                snippet = script.text(node).strip().splitlines()
                message = f"unexpected {snippet[0]!r}" if snippet else "syntax error"
            raise ScriptParseError(message, line + 1, column + 1)
        return script


def parse_script(source: str) -> ParsedScript:
    return ScriptParser().parse(source)


def named_children(node: Node) -> List[Node]:
    return [child for child in node.named_children if child.type != "comment"]


def walk(node: Node) -> Iterator[Node]:
    pending = [node]
    while pending:
        current = pending.pop()
        yield current
        pending.extend(reversed(current.children))


def find_all(node: Node, kind: str) -> List[Node]:
    return [current for current in walk(node) if current.type == kind]


def enclosing_scope(node: Node) -> Optional[Node]:
    current = node.parent
    while current is not None:
        if current.type in SCOPE_KINDS:
            return current
        current = current.parent
    return None


def first_error(root: Node) -> Node:
    """The first ``ERROR`` or missing node below ``root``, in source order."""
    current = root
    while True:
        if current.type == "ERROR" or current.is_missing:
            return current
        broken = [child for child in current.children if child.has_error or child.is_missing]
        if not broken:
            return current
        current = broken[0]


def string_value(text: str) -> str:
    """Strip the quotes of a string literal; other text is returned unchanged."""
    if len(text) >= 4 and text[0] == "@" and text[1] in _QUOTES and text[-1] == "@":
        body = text[2:-2]
        if body.startswith("\r\n"):
            body = body[2:]
        elif body.startswith("\n"):
            body = body[1:]
        return body.rstrip("\r\n")
    if len(text) >= 2 and text[0] == text[-1] == "'":
        return text[1:-1].replace("''", "'")
    if len(text) >= 2 and text[0] == text[-1] == '"':
        return text[1:-1].replace('""', '"').replace('`"', '"')
    return text


def directive_modules(rest: str) -> List[str]:
    """Module entries of the ``-Modules`` parameter in a ``#Requires`` line."""
    modules: List[str] = []
    collecting = False
    for word in _directive_words(rest):
        if word.startswith("-") and len(word) > 1 and not word[1].isdigit():
            collecting = word[1:].casefold() in ("modules", "module")
            continue
        if collecting and word != ",":
            modules.append(string_value(word))
    return modules


def _directive_words(text: str) -> List[str]:
    """Split directive arguments on top-level whitespace and commas."""
    words: List[str] = []
    current: List[str] = []
    closers: List[str] = []
    quote: Optional[str] = None

    def _flush() -> None:
        if current:
            words.append("".join(current))
            current.clear()

    for char in text:
        if quote is not None:
            current.append(char)
            if char == quote:
                quote = None
            continue
        if char in _QUOTES:
            quote = char
            current.append(char)
        elif char in _OPENERS:
            closers.append(_OPENERS[char])
            current.append(char)
        elif closers and char == closers[-1]:
            closers.pop()
            current.append(char)
        elif closers:
            current.append(char)
        elif char == ",":
            _flush()
            words.append(",")
        elif char.isspace():
            _flush()
        else:
            current.append(char)
    _flush()
    return words


def _element_nodes(command: Node) -> Iterator[Node]:
    for child in named_children(command):
        if child.type == "command_name":
            continue
        if child.type == "command_elements":
            yield from named_children(child)
        else:
            yield child


__all__ = [
    "CommandElement",
    "POWERSHELL",
    "ParsedScript",
    "STRING_KINDS",
    "ScriptParseError",
    "ScriptParser",
    "directive_modules",
    "enclosing_scope",
    "find_all",
    "first_error",
    "named_children",
    "parse_script",
    "string_value",
    "walk",
]
