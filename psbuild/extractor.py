"""Extraction of a single validated function definition from a source file."""

from __future__ import annotations

from pathlib import Path
from typing import List, Optional

from tree_sitter import Node

from .errors import StructuralViolation
from .logging import get_logger
from .models import ContentOrigin, DefinitionRecord
from .parsing import (
    CommandElement,
    ParsedScript,
    ScriptParseError,
    ScriptParser,
    enclosing_scope,
    find_all,
    named_children,
    string_value,
)

ALIAS_COMMANDS = ("set-alias", "new-alias")

ALIAS_ATTRIBUTES = ("alias", "aliasattribute")

_ATTRIBUTE_NAMESPACE = "system.management.automation."

# Alias cmdlet switches that do not consume the following token.
_ALIAS_SWITCHES = ("force", "passthru", "whatif", "confirm", "verbose", "debug")

_TYPOGRAPHIC_DASHES = {ord("–"): "-", ord("—"): "-"}


class DefinitionExtractor:
    """Parses one ``.ps1`` file into a :class:`DefinitionRecord`.

    A file must hold exactly one top-level function. Alias-setting commands
    (``Set-Alias``/``New-Alias``) are the only other statements allowed at the
    top level; script-level ``param`` blocks and ``begin``/``process``/``end``
    blocks are rejected because they would execute when the module loads.
    """

    def __init__(self, parser: ScriptParser | None = None) -> None:
        self.parser = parser or ScriptParser()
        self.logger = get_logger("extractor")

    def extract(
        self,
        name: str,
        content: str,
        *,
        path: Optional[Path] = None,
        origin: ContentOrigin = ContentOrigin.WORKTREE,
        include_requires: bool = True,
    ) -> DefinitionRecord:
        label = path if path is not None else Path(f"{name}.ps1")
        if any(char.isspace() for char in name):
            raise StructuralViolation("file names must not contain whitespace", path=label)

        try:
            script = self.parser.parse(content.translate(_TYPOGRAPHIC_DASHES))
        except ScriptParseError as exc:
            raise StructuralViolation(f"unable to parse: {exc}", path=label) from exc

        statements = script.top_level_statements()
        self._reject_script_level_blocks(script, statements, label)
        definition = self._single_definition(statements, label)
        alias_commands = [command for command in map(_alias_command, statements) if command is not None]

        requires: List[str] = script.required_modules() if include_requires else []
        lines: List[str] = []
        if requires:
            lines.append(f"#Requires -Modules {', '.join(requires)}")
        lines.append(script.text(definition))
        aliases: List[str] = []
        for command in alias_commands:
            lines.append(script.text(_statement_of(command)).strip())
            alias = alias_statement_target(script.command_elements(command))
            if alias:
                aliases.append(alias)
        aliases.extend(parameter_block_aliases(script, definition))

        parsed_name = script.function_name(definition)
        if parsed_name != name:
            self.logger.debug("%s defines function '%s'; exporting it as '%s'", label.name, parsed_name, name)

        return DefinitionRecord(
            name=name,
            parsed_name=parsed_name,
            body="\n".join(lines),
            requires=tuple(requires),
            aliases=tuple(_unique(aliases)),
            origin=origin,
        )

    # ------------------------------------------------------------------
    # Validation

    @staticmethod
    def _reject_script_level_blocks(script: ParsedScript, statements: List[Node], label: Path) -> None:
        for statement in statements:
            if statement.type == "param_block":
                raise StructuralViolation("script-level param block is not allowed", path=label)
            if statement.type in ("named_block_list", "named_block"):
                kinds = [script.text(block).split(None, 1)[0].lower() for block in _named_blocks(statement)]
                raise StructuralViolation(f"script-level {', '.join(kinds)} blocks are not allowed", path=label)
            if statement.type == "function_statement" or _alias_command(statement) is not None:
                continue
            lines = script.text(statement).strip().splitlines() or [""]
            raise StructuralViolation(f"statement outside the function definition: {lines[0]!r}", path=label)

    @staticmethod
    def _single_definition(statements: List[Node], label: Path) -> Node:
        definitions = [statement for statement in statements if statement.type == "function_statement"]
        if len(definitions) != 1:
            raise StructuralViolation(
                f"expected exactly one function definition, found {len(definitions)}", path=label
            )
        return definitions[0]


def alias_statement_target(elements: List[CommandElement]) -> Optional[str]:
    """Return the alias a ``Set-Alias``/``New-Alias`` command declares."""
    for index, element in enumerate(elements):
        if element.kind != "parameter":
            continue
        parameter, _, inline = element.value[1:].partition(":")
        if parameter.casefold() != "name":
            continue
        if inline:
            return string_value(inline)
        if index + 1 < len(elements) and elements[index + 1].kind == "argument":
            return elements[index + 1].value
        return None

    skip_next = False
    for element in elements:
        if skip_next:
            skip_next = False
            continue
        if element.kind == "parameter":
            parameter, colon, inline = element.value[1:].partition(":")
            if colon:
                skip_next = not inline
            else:
                skip_next = parameter.casefold() not in _ALIAS_SWITCHES
            continue
        return element.value
    return None


def parameter_block_aliases(script: ParsedScript, definition: Node) -> List[str]:
    """Collect ``[Alias(...)]`` values attached to the function's own param block.

    Attributes on individual parameters and on param blocks of nested script
    blocks or functions are skipped.
    """
    aliases: List[str] = []
    for attribute in find_all(definition, "attribute"):
        holder = attribute.parent
        if holder is not None and holder.type == "attribute_list":
            holder = holder.parent
        if holder is None or holder.type != "param_block" or enclosing_scope(holder) != definition:
            continue
        name = _attribute_name(script, attribute).casefold().removeprefix(_ATTRIBUTE_NAMESPACE)
        if name not in ALIAS_ATTRIBUTES:
            continue
        for argument in find_all(attribute, "attribute_argument"):
            if any(child.type == "=" for child in argument.children):
                continue
            aliases.extend(value for value in script.strings(argument) if value)
    return aliases


def _attribute_name(script: ParsedScript, attribute: Node) -> str:
    for child in attribute.named_children:
        if child.type == "attribute_name":
            return script.text(child).strip()
    return ""


def _alias_command(statement: Node) -> Optional[Node]:
    """The ``Set-Alias``/``New-Alias`` command a top-level statement consists of."""
    node = statement
    while node.type in ("pipeline", "pipeline_chain"):
        children = named_children(node)
        if len(children) != 1:
            return None
        node = children[0]
    if node.type != "command":
        return None
    name = next((child for child in node.named_children if child.type == "command_name"), None)
    if name is None or name.text is None:
        return None
    return node if name.text.decode("utf-8").casefold() in ALIAS_COMMANDS else None


def _statement_of(command: Node) -> Node:
    node = command
    while node.parent is not None and node.parent.type in ("pipeline", "pipeline_chain"):
        node = node.parent
    return node


def _named_blocks(statement: Node) -> List[Node]:
    if statement.type == "named_block":
        return [statement]
    return [child for child in named_children(statement) if child.type == "named_block"]


def _unique(values: List[str]) -> List[str]:
    seen: List[str] = []
    for value in values:
        if value not in seen:
            seen.append(value)
    return seen


__all__ = [
    "ALIAS_COMMANDS",
    "DefinitionExtractor",
    "alias_statement_target",
    "parameter_block_aliases",
]
