"""End-to-end tests for building module directories."""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path

import pytest

from psbuild.config import BuildConfig, BuildOptions
from psbuild.git.status import VcsReconciler
from psbuild.manifest import ManifestReconciler, load_data_file
from psbuild.orchestrator import Orchestrator
from psbuild.postproc.lint import ScriptAnalyzerLinter
from tests._fixtures.module_builder import ModuleSourceBuilder, clean_git

GET_FOO = """
function Get-Foo {
    'foo'
}
Set-Alias -Name gf -Value Get-Foo
"""

GET_BAR = """
function Get-Bar {
    [CmdletBinding()]
    param()
    'bar'
}
"""


class _RecordingLinter(ScriptAnalyzerLinter):
    def __init__(self) -> None:
        super().__init__(runner=lambda args, cwd, capture_output=False: "")
        self.linted: list[Path] = []

    def lint(self, target_dir: Path):  # type: ignore[no-untyped-def]
        self.linted.append(Path(target_dir))
        return super().lint(target_dir)


def _orchestrator(runner=clean_git, linter=None, confirm=None) -> Orchestrator:  # type: ignore[no-untyped-def]
    return Orchestrator(
        reconciler=VcsReconciler(runner=runner),
        manifest_reconciler=ManifestReconciler(confirm=confirm),
        linter=linter or _RecordingLinter(),
    )


def _history_runner(status_output: str, history: dict[str, str]):  # type: ignore[no-untyped-def]
    def runner(args, cwd, capture_output=False):  # type: ignore[no-untyped-def]
        args = list(args)
        if "status" in args:
            return status_output
        if args[:2] == ["git", "show"]:
            if args[2] in history:
                return history[args[2]]
            raise subprocess.CalledProcessError(128, args, stderr="fatal: invalid object name")
        return ""

    return runner


def test_build_module_exports_sorted_functions_and_aliases(module_builder: ModuleSourceBuilder) -> None:
    module_builder.write({"Get-Foo.ps1": GET_FOO, "Get-Bar.ps1": GET_BAR, "README.md": "docs"})
    linter = _RecordingLinter()

    outcome = _orchestrator(linter=linter).build_module(module_builder.module(), BuildOptions())

    assert not outcome.failed
    assert outcome.artifact is not None
    assert outcome.artifact.functions == ["Get-Bar", "Get-Foo"]
    assert outcome.artifact.aliases == ["gf"]
    text = outcome.artifact.path.read_text(encoding="utf-8")
    assert text.index("function Get-Bar") < text.index("function Get-Foo")
    assert "Set-Alias -Name gf -Value Get-Foo" in text
    assert outcome.manifest is None
    assert linter.linted == [module_builder.module().target]


def test_build_module_updates_manifest(module_builder: ModuleSourceBuilder) -> None:
    module_builder.write(
        {
            "Get-Foo.ps1": GET_FOO,
            "MyModule.psd1": "@{\n    ModuleVersion = '1.0.0'\n    FunctionsToExport = '*'\n}\n",
        }
    )

    outcome = _orchestrator().build_module(module_builder.module(), BuildOptions(skip_lint=True))

    assert outcome.manifest == module_builder.module().target / "MyModule.psd1"
    data = load_data_file(outcome.manifest)
    assert data["RootModule"] == "MyModule.psm1"
    assert data["FunctionsToExport"] == ["Get-Foo"]
    assert data["AliasesToExport"] == ["gf"]


def test_build_module_uses_committed_content_for_modified_file(module_builder: ModuleSourceBuilder) -> None:
    module_builder.write({"Get-Foo.ps1": "function Get-Foo { 'half finished' }\n"})
    runner = _history_runner(
        " M src/MyModule/Get-Foo.ps1\n",
        {"HEAD:./Get-Foo.ps1": "function Get-Foo { 'committed' }\n"},
    )

    outcome = _orchestrator(runner=runner).build_module(module_builder.module(), BuildOptions(skip_lint=True))

    assert outcome.artifact is not None
    text = outcome.artifact.path.read_text(encoding="utf-8")
    assert "'committed'" in text
    assert "'half finished'" not in text


def test_build_module_extracts_committed_content_saved_with_bom(module_builder: ModuleSourceBuilder) -> None:
    module_builder.write({"Get-Foo.ps1": "function Get-Foo { 'half finished' }\n"})
    runner = _history_runner(
        " M src/MyModule/Get-Foo.ps1\n",
        {"HEAD:./Get-Foo.ps1": "\ufefffunction Get-Foo { 'committed' }\n"},
    )

    outcome = _orchestrator(runner=runner).build_module(module_builder.module(), BuildOptions(skip_lint=True))

    assert not outcome.failed
    assert outcome.artifact is not None
    assert "\ufeff" not in outcome.artifact.path.read_text(encoding="utf-8")


def test_build_module_include_uncommitted_uses_working_tree(module_builder: ModuleSourceBuilder) -> None:
    module_builder.write(
        {
            "Get-Foo.ps1": "function Get-Foo { 'half finished' }\n",
            "New-Thing.ps1": "function New-Thing { }\n",
        }
    )
    runner = _history_runner(
        " M src/MyModule/Get-Foo.ps1\n?? src/MyModule/New-Thing.ps1\n",
        {"HEAD:./Get-Foo.ps1": "function Get-Foo { 'committed' }\n"},
    )

    outcome = _orchestrator(runner=runner).build_module(
        module_builder.module(), BuildOptions(include_uncommitted=True, skip_lint=True)
    )

    assert outcome.artifact is not None
    assert outcome.artifact.functions == ["Get-Foo", "New-Thing"]
    text = outcome.artifact.path.read_text(encoding="utf-8")
    assert "'half finished'" in text
    assert "'committed'" not in text


def test_build_module_skips_untracked_file_without_history(
    module_builder: ModuleSourceBuilder, caplog: pytest.LogCaptureFixture
) -> None:
    module_builder.write({"Get-Foo.ps1": GET_FOO, "New-Thing.ps1": "function New-Thing { }\n"})
    runner = _history_runner("?? src/MyModule/New-Thing.ps1\n", {})

    with caplog.at_level(logging.WARNING, logger="psbuild"):
        outcome = _orchestrator(runner=runner).build_module(
            module_builder.module(), BuildOptions(skip_lint=True)
        )

    assert outcome.artifact is not None
    assert outcome.artifact.functions == ["Get-Foo"]
    assert "Skipping New-Thing" in caplog.text


def test_build_module_structural_violation_fails_directory(module_builder: ModuleSourceBuilder) -> None:
    module_builder.write(
        {
            "Get-Foo.ps1": GET_FOO,
            "Get-Bad.ps1": "function Get-Bad { }\nfunction Get-Worse { }\n",
        }
    )
    linter = _RecordingLinter()

    outcome = _orchestrator(linter=linter).build_module(module_builder.module(), BuildOptions())

    assert outcome.failed
    assert "Get-Bad.ps1" in (outcome.error or "")
    assert outcome.artifact is None
    assert not module_builder.module().target.exists()
    assert linter.linted == []


def test_build_module_git_unavailable_fails_directory(module_builder: ModuleSourceBuilder) -> None:
    module_builder.write({"Get-Foo.ps1": GET_FOO})

    def runner(args, cwd, capture_output=False):  # type: ignore[no-untyped-def]
        raise FileNotFoundError("git")

    outcome = _orchestrator(runner=runner).build_module(module_builder.module(), BuildOptions())

    assert outcome.failed
    assert outcome.artifact is None


def test_build_module_empty_directory_warns(
    module_builder: ModuleSourceBuilder, caplog: pytest.LogCaptureFixture
) -> None:
    with caplog.at_level(logging.WARNING, logger="psbuild"):
        outcome = _orchestrator().build_module(module_builder.module(), BuildOptions())

    assert not outcome.failed
    assert outcome.artifact is None
    assert not module_builder.module().target.exists()
    assert "No definitions to assemble" in caplog.text


def test_build_module_missing_source_directory_warns(
    tmp_path: Path, caplog: pytest.LogCaptureFixture
) -> None:
    builder = ModuleSourceBuilder(tmp_path)
    builder.source.rmdir()

    with caplog.at_level(logging.WARNING, logger="psbuild"):
        outcome = _orchestrator().build_module(builder.module(), BuildOptions())

    assert not outcome.failed
    assert outcome.artifact is None
    assert "does not exist" in caplog.text


def test_build_module_is_idempotent(module_builder: ModuleSourceBuilder) -> None:
    module_builder.write({"Get-Foo.ps1": GET_FOO, "Get-Bar.ps1": GET_BAR})
    orchestrator = _orchestrator()
    module = module_builder.module()

    first = orchestrator.build_module(module, BuildOptions(skip_lint=True))
    first_bytes = first.artifact.path.read_bytes()  # type: ignore[union-attr]
    second = orchestrator.build_module(module, BuildOptions(skip_lint=True))

    assert second.artifact is not None and first.artifact is not None
    assert second.artifact.path.read_bytes() == first_bytes
    assert second.artifact.functions == first.artifact.functions
    assert second.artifact.aliases == first.artifact.aliases


def test_run_continues_after_failed_directory(tmp_path: Path) -> None:
    broken = ModuleSourceBuilder(tmp_path, name="Broken")
    broken.write({"Get-Bad.ps1": "Write-Host 'side effect'\nfunction Get-Bad { }\n"})
    healthy = ModuleSourceBuilder(tmp_path, name="Healthy")
    healthy.write({"Get-Foo.ps1": GET_FOO})
    config = BuildConfig(
        root=tmp_path,
        modules=[broken.module(), healthy.module()],
        options=BuildOptions(skip_lint=True),
    )

    outcomes = _orchestrator().run(config)

    assert [outcome.failed for outcome in outcomes] == [True, False]
    assert outcomes[1].artifact is not None
    assert outcomes[1].artifact.path.name == "Healthy.psm1"


def test_run_without_modules_warns(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level(logging.WARNING, logger="psbuild"):
        outcomes = _orchestrator().run(BuildConfig(root=tmp_path))

    assert outcomes == []
    assert "No modules configured" in caplog.text


def test_check_module_validates_without_writing(module_builder: ModuleSourceBuilder) -> None:
    module_builder.write({"Get-Foo.ps1": GET_FOO, "Get-Bad.ps1": "function Get-Bad { }\nGet-Date\n"})

    outcome = _orchestrator().check_module(module_builder.module(), BuildOptions())

    assert outcome.failed
    assert "Get-Bad.ps1" in (outcome.error or "")
    assert not module_builder.module().target.exists()


def test_scan_sources_attaches_working_tree_status(module_builder: ModuleSourceBuilder) -> None:
    module_builder.write({"Get-Foo.ps1": GET_FOO, "Get-Bar.ps1": GET_BAR, "notes.txt": "x"})
    runner = _history_runner(" M src/MyModule/Get-Foo.ps1\n", {})
    reconcile = VcsReconciler(runner=runner).reconcile(module_builder.source, include_uncommitted=True)

    files = Orchestrator.scan_sources(module_builder.source, reconcile)

    assert [(source.name, source.status.value) for source in files] == [
        ("Get-Bar", "clean"),
        ("Get-Foo", "modified"),
    ]


def test_build_module_reads_utf16_source(module_builder: ModuleSourceBuilder) -> None:
    (module_builder.source / "Get-Foo.ps1").write_text(GET_FOO, encoding="utf-16")

    outcome = _orchestrator().build_module(module_builder.module(), BuildOptions(skip_lint=True))

    assert not outcome.failed
    assert outcome.artifact is not None
    assert outcome.artifact.functions == ["Get-Foo"]
    assert outcome.artifact.aliases == ["gf"]


def test_run_continues_after_undecodable_source(tmp_path: Path) -> None:
    broken = ModuleSourceBuilder(tmp_path, name="A")
    (broken.source / "Get-Foo.ps1").write_bytes(b"function Get-Foo { 'caf\xe9' }\n")
    healthy = ModuleSourceBuilder(tmp_path, name="B")
    healthy.write({"Get-Bar.ps1": GET_BAR})
    config = BuildConfig(
        root=tmp_path,
        modules=[broken.module(), healthy.module()],
        options=BuildOptions(skip_lint=True),
    )

    outcomes = _orchestrator().run(config)

    assert [outcome.failed for outcome in outcomes] == [True, False]
    assert "Get-Foo.ps1: cannot decode as utf-8" in (outcomes[0].error or "")
    assert (healthy.target / "B.psm1").exists()


def test_run_continues_after_unencodable_artifact(tmp_path: Path) -> None:
    accented = ModuleSourceBuilder(tmp_path, name="A")
    accented.write({"Get-Foo.ps1": "function Get-Foo { 'café' }\n"})
    plain = ModuleSourceBuilder(tmp_path, name="B")
    plain.write({"Get-Bar.ps1": GET_BAR})
    config = BuildConfig(
        root=tmp_path,
        modules=[accented.module(), plain.module()],
        options=BuildOptions(encoding="ascii", skip_lint=True),
    )

    outcomes = _orchestrator().run(config)

    assert [outcome.failed for outcome in outcomes] == [True, False]
    assert "A.psm1: cannot encode module text as ascii" in (outcomes[0].error or "")
    assert not (accented.target / "A.psm1").exists()
    assert (plain.target / "B.psm1").read_bytes().isascii()
