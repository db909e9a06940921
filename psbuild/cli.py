"""CLI entrypoints for psbuild commands."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import List, Sequence

from .config import BuildConfig, ConfigError, ModuleTarget, load_config, resolve_encoding
from .logging import configure_logging
from .manifest import ManifestReconciler
from .models import BuildOutcome
from .orchestrator import Orchestrator


def _add_verbose_option(
    parser: argparse.ArgumentParser, *, suppress_default: bool = False
) -> None:
    kwargs: dict[str, object] = {
        "action": "store_true",
        "help": "Increase log verbosity for troubleshooting.",
    }
    if suppress_default:
        kwargs["default"] = argparse.SUPPRESS
    else:
        kwargs["default"] = False
    parser.add_argument(
        "-v",
        "--verbose",
        **kwargs,
    )


def _add_log_file_option(
    parser: argparse.ArgumentParser, *, suppress_default: bool = False
) -> None:
    parser.add_argument(
        "--log-file",
        default=argparse.SUPPRESS if suppress_default else None,
        help="Also write log records, with timestamps, to this file.",
    )


def _add_module_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "path",
        nargs="?",
        default=".",
        help="Directory containing .psbuild.yml, or the config file itself (defaults to current directory).",
    )
    parser.add_argument(
        "--source",
        action="append",
        default=[],
        help="Source directory of definition files; pair each with --target. Overrides configured modules.",
    )
    parser.add_argument(
        "--target",
        action="append",
        default=[],
        help="Output directory for the module built from the matching --source.",
    )
    parser.add_argument(
        "--include-uncommitted",
        action="store_true",
        default=None,
        help="Build modified and untracked files as they are in the working tree.",
    )
    parser.add_argument(
        "--skip-requires",
        action="store_true",
        default=None,
        help="Do not carry #Requires -Modules directives into the module.",
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="psbuild",
        description="Assemble PowerShell script modules from per-function source files.",
    )
    _add_verbose_option(parser)
    _add_log_file_option(parser)
    subparsers = parser.add_subparsers(dest="command", required=True)

    build_parser = subparsers.add_parser(
        "build",
        help="Build every configured module and update its manifest.",
    )
    _add_verbose_option(build_parser, suppress_default=True)
    _add_log_file_option(build_parser, suppress_default=True)
    _add_module_options(build_parser)
    build_parser.add_argument(
        "--skip-lint",
        action="store_true",
        default=None,
        help="Skip the PSScriptAnalyzer check of the generated module.",
    )
    build_parser.add_argument(
        "--no-generated-marker",
        dest="mark_generated",
        action="store_false",
        default=None,
        help="Do not write the generated-file marker at the top of the module.",
    )
    build_parser.add_argument(
        "--encoding",
        default=None,
        help="Output encoding (utf8, utf8BOM, unicode, ascii, ... or any Python codec).",
    )
    build_parser.add_argument(
        "--yes",
        action="store_true",
        help="Use manifests with uncommitted changes without asking.",
    )

    check_parser = subparsers.add_parser(
        "check",
        help="Validate definition files without writing any output.",
    )
    _add_verbose_option(check_parser, suppress_default=True)
    _add_log_file_option(check_parser, suppress_default=True)
    _add_module_options(check_parser)

    return parser


def _load(parser: argparse.ArgumentParser, args: argparse.Namespace) -> BuildConfig:
    try:
        config = load_config(Path(args.path))
    except ConfigError as exc:
        parser.exit(2, f"psbuild: {exc}\n")

    if len(args.source) != len(args.target):
        parser.error("--source and --target must be given the same number of times")
    if args.source:
        config.modules = [
            ModuleTarget(source=Path(source).resolve(), target=Path(target).resolve())
            for source, target in zip(args.source, args.target)
        ]

    options = config.options
    for name in ("include_uncommitted", "skip_requires", "skip_lint", "mark_generated", "encoding"):
        value = getattr(args, name, None)
        if value is not None:
            setattr(options, name, value)
    try:
        resolve_encoding(options.encoding)
    except ConfigError as exc:
        parser.exit(2, f"psbuild: {exc}\n")
    return config


def _confirm_manifest(path: Path) -> bool:
    if not sys.stdin.isatty():
        return False
    answer = input(f"{path.name} has uncommitted changes. Use it anyway? [y/N] ")
    return answer.strip().lower() in {"y", "yes"}


def main(argv: list[str] | None = None) -> None:
    """CLI entrypoint for psbuild commands."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    configure_logging(
        verbose=bool(args.verbose),
        log_file=Path(args.log_file) if args.log_file else None,
    )
    config = _load(parser, args)

    if args.command == "build":
        confirm = (lambda path: True) if args.yes else _confirm_manifest
        orchestrator = Orchestrator(manifest_reconciler=ManifestReconciler(confirm=confirm))
        outcomes = orchestrator.run(config)
        _report(outcomes)
    elif args.command == "check":
        orchestrator = Orchestrator()
        outcomes = [orchestrator.check_module(module, config.options) for module in config.modules]
        if not outcomes:
            print("No modules configured")
    else:  # pragma: no cover - argparse enforces choices
        parser.exit(1, "Unknown command\n")

    if any(outcome.failed for outcome in outcomes):
        failed = ", ".join(_relativize(outcome.source) for outcome in outcomes if outcome.failed)
        parser.exit(1, f"psbuild {args.command} failed for: {failed}\nRun with --verbose for more details.\n")


def _report(outcomes: Sequence[BuildOutcome]) -> None:
    if not outcomes:
        print("No modules configured")
    for outcome in outcomes:
        if outcome.artifact is None:
            continue
        lines: List[str] = [f"Module written to {_relativize(outcome.artifact.path)}"]
        if outcome.manifest is not None:
            lines.append(f"Manifest written to {_relativize(outcome.manifest)}")
        if outcome.findings:
            lines.append(f"{len(outcome.findings)} script analyzer error(s) reported")
        print("\n".join(lines))


def _relativize(path: Path) -> str:
    try:
        return str(path.relative_to(Path.cwd()))
    except ValueError:
        return str(path)


if __name__ == "__main__":
    main(sys.argv[1:])
