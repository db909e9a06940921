"""Exception hierarchy shared by the build pipeline."""

from __future__ import annotations

from pathlib import Path
from typing import Optional


class PSBuildError(RuntimeError):
    """Base class for failures raised while building a module."""


class VcsUnavailableError(PSBuildError):
    """Raised when git cannot report the state of a source directory."""


class StructuralViolation(PSBuildError):
    """Raised when a source file or export surface breaks a structural rule."""

    def __init__(self, message: str, *, path: Optional[Path] = None) -> None:
        self.path = path
        if path is not None:
            message = f"{path.name}: {message}"
        super().__init__(message)


class SourceEncodingError(PSBuildError):
    """Raised when module text cannot be decoded or encoded in the expected encoding."""

    def __init__(self, message: str, *, path: Optional[Path] = None) -> None:
        self.path = path
        if path is not None:
            message = f"{path.name}: {message}"
        super().__init__(message)


class ManifestLoadError(PSBuildError):
    """Raised when a module manifest cannot be read as PowerShell data."""


__all__ = [
    "ManifestLoadError",
    "PSBuildError",
    "SourceEncodingError",
    "StructuralViolation",
    "VcsUnavailableError",
]
