"""Pipeline orchestration for module builds."""

from __future__ import annotations

import codecs
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from .assembler import ArtifactAssembler
from .config import BuildConfig, BuildOptions, ModuleTarget
from .errors import PSBuildError, SourceEncodingError
from .extractor import DefinitionExtractor
from .git.status import ReconcileResult, VcsReconciler
from .logging import get_logger
from .manifest import ManifestReconciler
from .models import BuildOutcome, ContentOrigin, DefinitionRecord, SourceFile, VcsStatus
from .postproc.lint import ScriptAnalyzerLinter

SOURCE_SUFFIX = ".ps1"

# UTF-32 marks are checked first; the little-endian one begins with the UTF-16 mark.
_BYTE_ORDER_MARKS = (
    (codecs.BOM_UTF32_LE, "utf-32"),
    (codecs.BOM_UTF32_BE, "utf-32"),
    (codecs.BOM_UTF8, "utf-8-sig"),
    (codecs.BOM_UTF16_LE, "utf-16"),
    (codecs.BOM_UTF16_BE, "utf-16"),
)


class Orchestrator:
    """Builds each configured module directory, one after another."""

    def __init__(
        self,
        reconciler: VcsReconciler | None = None,
        extractor: DefinitionExtractor | None = None,
        assembler: ArtifactAssembler | None = None,
        manifest_reconciler: ManifestReconciler | None = None,
        linter: ScriptAnalyzerLinter | None = None,
    ) -> None:
        self.reconciler = reconciler or VcsReconciler()
        self.extractor = extractor or DefinitionExtractor()
        self.assembler = assembler or ArtifactAssembler()
        self.manifest_reconciler = manifest_reconciler or ManifestReconciler()
        self.linter = linter or ScriptAnalyzerLinter()
        self.logger = get_logger("orchestrator")

    def run(self, config: BuildConfig) -> List[BuildOutcome]:
        """Build every module in ``config``; failures do not stop the batch."""
        if not config.modules:
            self.logger.warning("No modules configured under %s", config.root)
            return []
        return [self.build_module(module, config.options) for module in config.modules]

    def build_module(self, module: ModuleTarget, options: BuildOptions) -> BuildOutcome:
        outcome = BuildOutcome(source=module.source, target=module.target)
        self.logger.info("Building %s from %s", module.module_name, module.source)
        try:
            records, reconcile = self.collect_records(module.source, options)
            artifact = self.assembler.assemble(
                records,
                module.target,
                encoding=options.encoding,
                mark_generated=options.mark_generated,
            )
        except PSBuildError as exc:
            self.logger.error("Build of %s failed: %s", module.source, exc)
            outcome.error = str(exc)
            return outcome

        if artifact is None:
            return outcome
        outcome.artifact = artifact

        outcome.manifest = self.manifest_reconciler.reconcile(
            module.source,
            artifact,
            unresolved=reconcile.unresolved if reconcile is not None else (),
            include_uncommitted=options.include_uncommitted,
            encoding=options.encoding,
        )

        if options.skip_lint:
            self.logger.debug("Skipping script analysis for %s", module.target)
        else:
            outcome.findings = self.linter.lint(module.target)
        return outcome

    def check_module(self, module: ModuleTarget, options: BuildOptions) -> BuildOutcome:
        """Validate every definition in a module without writing output."""
        outcome = BuildOutcome(source=module.source, target=module.target)
        try:
            records, _ = self.collect_records(module.source, options)
        except PSBuildError as exc:
            self.logger.error("Check of %s failed: %s", module.source, exc)
            outcome.error = str(exc)
            return outcome
        self.logger.info("%s: %d definition(s) valid", module.source, len(records))
        return outcome

    def collect_records(
        self, source_dir: Path, options: BuildOptions
    ) -> Tuple[Dict[str, DefinitionRecord], Optional[ReconcileResult]]:
        """Resolve and extract every definition in ``source_dir``."""
        source = Path(source_dir)
        if not source.is_dir():
            self.logger.warning("Source directory %s does not exist; skipping", source)
            return {}, None

        reconcile = self.reconciler.reconcile(source, include_uncommitted=options.include_uncommitted)
        resolved = reconcile.resolved
        for source_file in self.scan_sources(source, reconcile):
            claimed = resolved.claim(
                source_file.name, source_file.text, ContentOrigin.WORKTREE, path=source_file.path
            )
            if not claimed:
                self.logger.debug(
                    "%s already resolved from git history; ignoring working copy", source_file.path.name
                )

        records: Dict[str, DefinitionRecord] = {}
        for entry in resolved:
            records[entry.name] = self.extractor.extract(
                entry.name,
                entry.content,
                path=entry.path,
                origin=entry.origin,
                include_requires=not options.skip_requires,
            )
        return records, reconcile

    @staticmethod
    def scan_sources(source_dir: Path, reconcile: ReconcileResult) -> List[SourceFile]:
        """Read the working-tree definition files the reconciler did not exclude."""
        files: List[SourceFile] = []
        for path in sorted(Path(source_dir).resolve().iterdir()):
            if not path.is_file() or path.suffix.lower() != SOURCE_SUFFIX:
                continue
            if path in reconcile.excluded:
                continue
            status = reconcile.statuses.get(path, VcsStatus.CLEAN)
            files.append(SourceFile(path=path, text=_read_source(path), status=status))
        return files


def _read_source(path: Path) -> str:
    """Decode a source file by its byte order mark, defaulting to UTF-8."""
    data = path.read_bytes()
    codec = next((name for mark, name in _BYTE_ORDER_MARKS if data.startswith(mark)), "utf-8")
    try:
        return data.decode(codec)
    except UnicodeDecodeError as exc:
        raise SourceEncodingError(
            f"cannot decode as {codec}: {exc.reason} at byte {exc.start}", path=path
        ) from exc


__all__ = ["Orchestrator", "SOURCE_SUFFIX"]
