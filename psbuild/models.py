"""Core data models shared across psbuild components."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Tuple


class VcsStatus(str, Enum):
    """Working-tree state of a definition source file."""

    CLEAN = "clean"
    MODIFIED = "modified"
    UNTRACKED = "untracked"


class ContentOrigin(str, Enum):
    """Where the text chosen for a definition came from."""

    HISTORY = "history"
    WORKTREE = "worktree"


@dataclass
class SourceFile:
    """A definition source file discovered in a module directory."""

    path: Path
    text: str
    status: VcsStatus = VcsStatus.CLEAN

    @property
    def name(self) -> str:
        return self.path.stem


@dataclass(frozen=True)
class ResolvedEntry:
    name: str
    content: str
    origin: ContentOrigin
    path: Optional[Path] = None


class ResolvedContent:
    """Insertion-only mapping of definition name to the content chosen for it.

    The first claim for a name wins; later claims are ignored so that content
    taken from git history is never replaced by a working-tree scan.
    """

    def __init__(self) -> None:
        self._entries: Dict[str, ResolvedEntry] = {}

    def claim(
        self,
        name: str,
        content: str,
        origin: ContentOrigin,
        *,
        path: Optional[Path] = None,
    ) -> bool:
        if name in self._entries:
            return False
        self._entries[name] = ResolvedEntry(name=name, content=content, origin=origin, path=path)
        return True

    def get(self, name: str) -> Optional[ResolvedEntry]:
        return self._entries.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self._entries

    def __getitem__(self, name: str) -> ResolvedEntry:
        return self._entries[name]

    def __iter__(self) -> Iterator[ResolvedEntry]:
        return iter(list(self._entries.values()))

    def __len__(self) -> int:
        return len(self._entries)

    def names(self) -> List[str]:
        return list(self._entries)


@dataclass(frozen=True)
class DefinitionRecord:
    """A single validated function extracted from one source file."""

    name: str
    parsed_name: str
    body: str
    requires: Tuple[str, ...] = ()
    aliases: Tuple[str, ...] = ()
    origin: ContentOrigin = ContentOrigin.WORKTREE


@dataclass
class ModuleArtifact:
    """The generated script module and its export surface."""

    path: Path
    records: List[DefinitionRecord]
    functions: List[str]
    aliases: List[str] = field(default_factory=list)


@dataclass
class LintFinding:
    """An error-severity diagnostic reported by the script analyzer."""

    rule: str
    severity: str
    script: str
    line: Optional[int]
    message: str


@dataclass
class BuildOutcome:
    """Result of building one source directory."""

    source: Path
    target: Path
    artifact: Optional[ModuleArtifact] = None
    manifest: Optional[Path] = None
    findings: List[LintFinding] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.error is not None
