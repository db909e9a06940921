"""Helper utilities for constructing module source directories in tests."""

from __future__ import annotations

import textwrap
from pathlib import Path
from typing import Mapping

from psbuild.config import ModuleTarget


class ModuleSourceBuilder:
    """Utility for writing definition files into a throwaway module directory."""

    def __init__(self, tmp_path: Path, name: str = "MyModule") -> None:
        self.root = tmp_path
        self.source = tmp_path / "src" / name
        self.target = tmp_path / "out" / name
        self.source.mkdir(parents=True)

    def write(self, files: Mapping[str, str]) -> None:
        """Write `name -> contents` entries into the source directory."""
        for relative, content in files.items():
            path = self.source / relative
            path.parent.mkdir(parents=True, exist_ok=True)
            normalised = textwrap.dedent(content).lstrip("\n")
            path.write_text(normalised, encoding="utf-8")

    def module(self) -> ModuleTarget:
        """Return the source/target pair for the module under construction."""
        return ModuleTarget(source=self.source.resolve(), target=self.target.resolve())


def clean_git(args, cwd, capture_output=False):  # type: ignore[no-untyped-def]
    """Runner reporting a clean working tree for every git invocation."""
    return ""


__all__ = ["ModuleSourceBuilder", "clean_git"]
