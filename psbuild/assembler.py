"""Assembly of extracted definitions into a single script module."""

from __future__ import annotations

import shutil
from pathlib import Path
from typing import Iterable, List, Mapping, Optional

from .config import resolve_encoding
from .errors import SourceEncodingError, StructuralViolation
from .logging import get_logger
from .models import DefinitionRecord, ModuleArtifact

GENERATED_MARKER = "# Generated by psbuild. Changes to this file will be overwritten."

EXPORT_DELIMITER = ","

MODULE_SUFFIX = ".psm1"


def export_sort_key(name: str) -> tuple[str, str]:
    return (name.casefold(), name)


def sorted_unique(names: Iterable[str]) -> List[str]:
    return sorted(set(names), key=export_sort_key)


class ArtifactAssembler:
    """Writes the ``.psm1`` artifact and computes its export surface."""

    def __init__(self, marker: str = GENERATED_MARKER) -> None:
        self.marker = marker
        self.logger = get_logger("assembler")

    def artifact_path(self, target_dir: Path) -> Path:
        return target_dir / f"{target_dir.name}{MODULE_SUFFIX}"

    def assemble(
        self,
        records: Mapping[str, DefinitionRecord],
        target_dir: Path,
        *,
        encoding: str = "utf8",
        mark_generated: bool = True,
    ) -> Optional[ModuleArtifact]:
        if not records:
            self.logger.warning("No definitions to assemble for %s; nothing written", target_dir)
            return None

        codec = resolve_encoding(encoding)
        target_dir = Path(target_dir)
        if target_dir.exists():
            self.logger.debug("Removing previous build output at %s", target_dir)
            if target_dir.is_dir():
                shutil.rmtree(target_dir)
            else:
                target_dir.unlink()
        target_dir.mkdir(parents=True)

        artifact = self.artifact_path(target_dir)
        ordered = [records[name] for name in sorted(records, key=export_sort_key)]

        functions = sorted_unique(records)
        if not functions:
            raise StructuralViolation(f"no functions exported from {target_dir}", path=artifact)
        self._validate_names(functions, "function", artifact)
        aliases = sorted_unique(alias for record in ordered for alias in record.aliases)
        self._validate_names(aliases, "alias", artifact)

        chunks: List[str] = []
        if mark_generated:
            chunks.append(self.marker + "\n")
        for record in ordered:
            chunks.append(_normalize_newlines(record.body).rstrip("\n") + "\n\n")
        chunks.append(f"Export-ModuleMember -Function {_quote_list(functions)}\n")
        if aliases:
            chunks.append(f"Export-ModuleMember -Alias {_quote_list(aliases)}\n")
        try:
            payload = "".join(chunks).encode(codec)
        except UnicodeEncodeError as exc:
            raise SourceEncodingError(
                f"cannot encode module text as {encoding}: {exc.reason} at position {exc.start}", path=artifact
            ) from exc
        artifact.write_bytes(payload)

        self.logger.info(
            "Wrote %s with %d function(s) and %d alias(es)", artifact, len(functions), len(aliases)
        )
        return ModuleArtifact(path=artifact, records=ordered, functions=functions, aliases=aliases)

    @staticmethod
    def _validate_names(names: List[str], kind: str, artifact: Path) -> None:
        invalid = [name for name in names if EXPORT_DELIMITER in name]
        if invalid:
            raise StructuralViolation(
                f"{kind} names must not contain '{EXPORT_DELIMITER}': {', '.join(invalid)}", path=artifact
            )


def _normalize_newlines(text: str) -> str:
    return text.replace("\r\n", "\n").replace("\r", "\n")


def _quote_list(names: List[str]) -> str:
    return ", ".join("'" + name.replace("'", "''") + "'" for name in names)


__all__ = [
    "ArtifactAssembler",
    "EXPORT_DELIMITER",
    "GENERATED_MARKER",
    "MODULE_SUFFIX",
    "export_sort_key",
    "sorted_unique",
]
