"""Reconciliation of a module manifest with the generated export surface."""

from __future__ import annotations

from pathlib import Path
from typing import Callable, Collection, Dict, Optional

from ..errors import ManifestLoadError
from ..logging import get_logger
from ..models import ModuleArtifact
from .data_file import load_data_file, merge_nested, split_nested, write_data_file

MANIFEST_SUFFIX = ".psd1"

ROOT_MODULE_KEY = "RootModule"
FUNCTIONS_KEY = "FunctionsToExport"
ALIASES_KEY = "AliasesToExport"
PRIVATE_DATA_PATH = ("PrivateData", "PSData")

ConfirmCallback = Callable[[Path], bool]


def refuse(path: Path) -> bool:
    """Default confirmation used when nobody can be asked."""
    return False


class ManifestReconciler:
    """Loads the source directory's ``.psd1`` and rewrites its export fields."""

    def __init__(self, confirm: Optional[ConfirmCallback] = None) -> None:
        self._confirm = confirm or refuse
        self.logger = get_logger("manifest")

    def locate(self, source_dir: Path) -> Optional[Path]:
        candidates = sorted(
            path for path in Path(source_dir).iterdir() if path.is_file() and path.suffix.lower() == MANIFEST_SUFFIX
        )
        if not candidates:
            self.logger.debug("No module manifest found in %s", source_dir)
            return None
        if len(candidates) > 1:
            names = ", ".join(path.name for path in candidates)
            self.logger.warning("Found multiple manifests in %s (%s); skipping manifest update", source_dir, names)
            return None
        return candidates[0]

    def reconcile(
        self,
        source_dir: Path,
        artifact: ModuleArtifact,
        *,
        unresolved: Collection[Path] = (),
        include_uncommitted: bool = False,
        encoding: str = "utf8",
    ) -> Optional[Path]:
        manifest = self.locate(source_dir)
        if manifest is None:
            return None

        if not include_uncommitted and _contains(unresolved, manifest):
            if not self._confirm(manifest):
                self.logger.warning("Skipping %s: it has uncommitted changes", manifest.name)
                return None
            self.logger.info("Using uncommitted %s after confirmation", manifest.name)

        try:
            data = load_data_file(manifest)
        except ManifestLoadError as exc:
            self.logger.error("Unable to load manifest %s: %s", manifest, exc)
            return None

        data[ROOT_MODULE_KEY] = artifact.path.name
        data[FUNCTIONS_KEY] = list(artifact.functions)
        data[ALIASES_KEY] = list(artifact.aliases)

        output = artifact.path.parent / manifest.name
        self.write(output, data, encoding=encoding)
        self.logger.info("Wrote manifest %s", output)
        return output

    def write(self, output: Path, data: Dict[str, object], *, encoding: str = "utf8") -> None:
        """Create a fresh manifest, then apply the PSData fields as a second update."""
        base, ps_data = split_nested(data, *PRIVATE_DATA_PATH)
        write_data_file(output, base, encoding=encoding)
        if not ps_data:
            return
        current = load_data_file(output, encoding=encoding)
        write_data_file(output, merge_nested(current, ps_data, *PRIVATE_DATA_PATH), encoding=encoding)


def _contains(paths: Collection[Path], candidate: Path) -> bool:
    resolved = candidate.resolve()
    return any(Path(path).resolve() == resolved for path in paths)


__all__ = [
    "ALIASES_KEY",
    "FUNCTIONS_KEY",
    "MANIFEST_SUFFIX",
    "ManifestReconciler",
    "ROOT_MODULE_KEY",
    "refuse",
]
