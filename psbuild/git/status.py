"""Reconciliation of working-tree state against the last git commit."""

from __future__ import annotations

import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Set

from ..errors import VcsUnavailableError
from ..logging import get_logger
from ..models import ContentOrigin, ResolvedContent, VcsStatus


@dataclass(frozen=True)
class StatusReport:
    """Repository-relative paths git reports as changed under a directory."""

    modified: Sequence[str]
    untracked: Sequence[str]


@dataclass
class ReconcileResult:
    """Content resolved from history plus the files the scan must skip."""

    resolved: ResolvedContent
    excluded: Set[Path] = field(default_factory=set)
    statuses: Dict[Path, VcsStatus] = field(default_factory=dict)

    @property
    def unresolved(self) -> Set[Path]:
        return set(self.statuses)


class VcsReconciler:
    """Decides which version of each definition file is authoritative."""

    SOURCE_SUFFIX = ".ps1"

    def __init__(self, runner: Callable[..., str] | None = None) -> None:
        self._runner = runner or self._default_runner
        self.logger = get_logger("vcs")

    def reconcile(self, source_dir: Path, *, include_uncommitted: bool = False) -> ReconcileResult:
        source = Path(source_dir).resolve()
        report = self.status(source)

        statuses: Dict[Path, VcsStatus] = {}
        for path in sorted(p for p in source.iterdir() if p.is_file()):
            state = _match_status(path, report)
            if state is not VcsStatus.CLEAN:
                statuses[path] = state

        result = ReconcileResult(resolved=ResolvedContent(), statuses=statuses)
        if include_uncommitted:
            if statuses:
                self.logger.info(
                    "Including %d modified or untracked file(s) from the working tree of %s",
                    len(statuses),
                    source,
                )
            return result

        for path, state in statuses.items():
            if path.suffix.lower() != self.SOURCE_SUFFIX:
                continue
            result.excluded.add(path)
            content = self.committed_content(path)
            if content:
                result.resolved.claim(path.stem, content, ContentOrigin.HISTORY, path=path)
                result.excluded.discard(path)
                self.logger.info("Using last committed version of %s (%s)", path.name, state.value)
            else:
                self.logger.warning(
                    "Skipping %s: file is %s and has no committed version", path.stem, state.value
                )
        return result

    def status(self, source_dir: Path) -> StatusReport:
        args = [
            "git",
            "-c",
            "core.quotepath=off",
            "status",
            "--porcelain",
            "--untracked-files=all",
            "--",
            ".",
        ]
        try:
            output = self._run(args, cwd=source_dir, capture_output=True)
        except (OSError, subprocess.CalledProcessError) as exc:
            raise VcsUnavailableError(f"Unable to query git status for {source_dir}: {_describe(exc)}") from exc
        return parse_porcelain(output)

    def committed_content(self, path: Path) -> Optional[str]:
        """Return the file's content at HEAD, or None when it has no history."""
        try:
            output = self._run(["git", "show", f"HEAD:./{path.name}"], cwd=path.parent, capture_output=True)
        except (OSError, subprocess.CalledProcessError) as exc:
            self.logger.debug("No committed version of %s: %s", path.name, _describe(exc))
            return None
        # Files saved with a UTF-8 BOM keep it in `git show` output.
        output = output.lstrip("\ufeff")
        return output if output.strip() else None

    # ------------------------------------------------------------------
    # Internals

    def _run(
        self,
        args: Iterable[str],
        *,
        cwd: Path,
        capture_output: bool = False,
    ) -> str:
        return self._runner(args, cwd=cwd, capture_output=capture_output)

    @staticmethod
    def _default_runner(
        args: Iterable[str],
        *,
        cwd: Path,
        capture_output: bool = False,
    ) -> str:
        completed = subprocess.run(
            list(args),
            cwd=str(cwd),
            check=True,
            text=True,
            encoding="utf-8",
            errors="replace",
            capture_output=capture_output,
        )
        return completed.stdout if capture_output else ""


def parse_porcelain(output: str) -> StatusReport:
    """Split ``git status --porcelain`` output into modified and untracked paths."""
    modified: List[str] = []
    untracked: List[str] = []
    for line in output.splitlines():
        if len(line) < 4:
            continue
        code, path = line[:2], line[3:]
        if " -> " in path:
            path = path.split(" -> ", 1)[1]
        path = _unquote(path.strip())
        if code == "??":
            untracked.append(path)
        elif code != "!!":
            modified.append(path)
    return StatusReport(modified=modified, untracked=untracked)


def _match_status(path: Path, report: StatusReport) -> VcsStatus:
    absolute = _normalize(str(path))
    for relative in report.untracked:
        if _suffix_matches(absolute, relative):
            return VcsStatus.UNTRACKED
    for relative in report.modified:
        if _suffix_matches(absolute, relative):
            return VcsStatus.MODIFIED
    return VcsStatus.CLEAN


def _suffix_matches(absolute: str, relative: str) -> bool:
    normalized = _normalize(relative).lstrip("/")
    return bool(normalized) and (absolute == normalized or absolute.endswith(f"/{normalized}"))


def _normalize(path: str) -> str:
    return path.replace("\\", "/")


def _unquote(path: str) -> str:
    if len(path) >= 2 and path.startswith('"') and path.endswith('"'):
        return path[1:-1].replace('\\"', '"').replace("\\\\", "\\")
    return path


def _describe(exc: BaseException) -> str:
    if isinstance(exc, subprocess.CalledProcessError):
        stderr = exc.stderr.strip() if isinstance(exc.stderr, str) else ""
        return stderr or f"exit status {exc.returncode}"
    return str(exc)


__all__ = ["ReconcileResult", "StatusReport", "VcsReconciler", "parse_porcelain"]
