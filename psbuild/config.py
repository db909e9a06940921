"""Configuration loading for psbuild (.psbuild.yml)."""

from __future__ import annotations

import codecs
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import yaml

from .errors import PSBuildError

CONFIG_FILENAME = ".psbuild.yml"

# PowerShell -Encoding names mapped onto Python codecs.
_POWERSHELL_ENCODINGS: Dict[str, str] = {
    "utf8": "utf-8",
    "utf8nobom": "utf-8",
    "utf8bom": "utf-8-sig",
    "unicode": "utf-16",
    "bigendianunicode": "utf-16-be",
    "utf32": "utf-32",
    "ascii": "ascii",
    "latin1": "latin-1",
}


class ConfigError(PSBuildError):
    """Raised when the configuration file cannot be parsed."""


@dataclass
class ModuleTarget:
    """One source directory and the directory its module is written to."""

    source: Path
    target: Path

    @property
    def module_name(self) -> str:
        return self.target.name


@dataclass
class BuildOptions:
    """Switches that influence every module in a build run."""

    encoding: str = "utf8"
    include_uncommitted: bool = False
    skip_lint: bool = False
    skip_requires: bool = False
    mark_generated: bool = True


@dataclass
class BuildConfig:
    """Represents the settings defined in .psbuild.yml."""

    root: Path
    modules: List[ModuleTarget] = field(default_factory=list)
    options: BuildOptions = field(default_factory=BuildOptions)


def load_config(config_path: Path) -> BuildConfig:
    """Load configuration from disk."""
    config_file = _resolve_config_path(config_path)
    root = config_file.parent.resolve()

    if not config_file.exists():
        return BuildConfig(root=root)

    data = _read_config(config_file)
    if not isinstance(data, dict):
        raise ConfigError(f"{CONFIG_FILENAME} must contain a mapping at the root")

    options = BuildOptions()
    encoding = _as_str(data.get("encoding"))
    if encoding:
        resolve_encoding(encoding)
        options.encoding = encoding
    for name in ("include_uncommitted", "skip_lint", "skip_requires", "mark_generated"):
        value = _as_bool(data.get(name))
        if value is not None:
            setattr(options, name, value)

    modules = _parse_modules(data.get("modules"), root)
    return BuildConfig(root=root, modules=modules, options=options)


def resolve_encoding(name: str) -> str:
    """Return the Python codec for a PowerShell or Python encoding name."""
    key = name.strip().replace("-", "").replace("_", "").lower()
    if key in _POWERSHELL_ENCODINGS:
        return _POWERSHELL_ENCODINGS[key]
    try:
        return codecs.lookup(name).name
    except LookupError as exc:
        raise ConfigError(f"Unknown encoding '{name}'") from exc


def _resolve_config_path(config_path: Path) -> Path:
    config_path = config_path.expanduser()
    if config_path.is_dir():
        return (config_path / CONFIG_FILENAME).resolve()
    return config_path.resolve()


def _read_config(path: Path) -> Dict[str, Any]:
    text = path.read_text(encoding="utf-8")
    if not text.strip():
        return {}
    try:
        loaded = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Failed to parse {path.name}: {exc}") from exc
    return loaded or {}


def _parse_modules(value: Any, root: Path) -> List[ModuleTarget]:
    if value is None:
        return []
    entries: List[tuple[Any, Any]] = []
    if isinstance(value, dict):
        entries = list(value.items())
    elif isinstance(value, Sequence) and not isinstance(value, str):
        for item in value:
            if not isinstance(item, dict):
                raise ConfigError("Each entry under 'modules' must be a mapping with source and target")
            entries.append((item.get("source"), item.get("target")))
    else:
        raise ConfigError("'modules' must be a list or a mapping of source to target")

    modules: List[ModuleTarget] = []
    for source, target in entries:
        source_str = _as_str(source)
        target_str = _as_str(target)
        if not source_str or not target_str:
            raise ConfigError("Module entries require both a source and a target directory")
        modules.append(
            ModuleTarget(source=_resolve_path(root, source_str), target=_resolve_path(root, target_str))
        )
    return modules


def _resolve_path(root: Path, value: str) -> Path:
    path = Path(value).expanduser()
    if not path.is_absolute():
        path = root / path
    return path.resolve()


def _as_str(value: Any) -> Optional[str]:
    return str(value) if isinstance(value, (str, int, float)) and not isinstance(value, bool) else None


def _as_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"true", "yes", "1"}:
            return True
        if lowered in {"false", "no", "0"}:
            return False
    return None


__all__ = [
    "CONFIG_FILENAME",
    "BuildConfig",
    "BuildOptions",
    "ConfigError",
    "ModuleTarget",
    "load_config",
    "resolve_encoding",
]
