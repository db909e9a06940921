"""Post-build syntax check of generated modules via PSScriptAnalyzer."""

from __future__ import annotations

import json
import subprocess
from pathlib import Path
from typing import Any, Callable, Iterable, List

from ..logging import get_logger
from ..models import LintFinding

_SEVERITIES = {0: "Information", 1: "Warning", 2: "Error", 3: "ParseError"}
_REPORTED = {"Error", "ParseError"}


class ScriptAnalyzerLinter:
    """Runs ``Invoke-ScriptAnalyzer`` against a build directory."""

    def __init__(self, runner: Callable[..., str] | None = None, executable: str = "pwsh") -> None:
        self._runner = runner or self._default_runner
        self.executable = executable
        self.logger = get_logger("lint")

    def lint(self, target_dir: Path) -> List[LintFinding]:
        target = Path(target_dir)
        script = (
            f"Invoke-ScriptAnalyzer -Path {_quote(str(target))} -Recurse -Severity Error, ParseError"
            " | Select-Object RuleName, Severity, ScriptName, Line, Message"
            " | ConvertTo-Json -Depth 3 -Compress"
        )
        args = [self.executable, "-NoProfile", "-NonInteractive", "-Command", script]
        try:
            output = self._runner(args, cwd=target, capture_output=True)
        except FileNotFoundError:
            self.logger.warning("%s not found; skipping script analysis of %s", self.executable, target)
            return []
        except subprocess.CalledProcessError as exc:
            stderr = exc.stderr.strip() if isinstance(exc.stderr, str) else ""
            self.logger.warning("Script analysis of %s failed: %s", target, stderr or exc)
            return []

        findings = parse_findings(output)
        for finding in findings:
            self.logger.error(
                "%s:%s [%s] %s", finding.script, finding.line or "?", finding.rule, finding.message
            )
        if not findings:
            self.logger.debug("Script analysis found no errors in %s", target)
        return findings

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


def parse_findings(output: str) -> List[LintFinding]:
    """Convert ``ConvertTo-Json`` output into error-severity findings."""
    text = output.strip()
    if not text:
        return []
    try:
        payload: Any = json.loads(text)
    except json.JSONDecodeError:
        return [
            LintFinding(rule="ScriptAnalyzer", severity="Error", script="", line=None, message=text)
        ]
    if isinstance(payload, dict):
        payload = [payload]
    findings: List[LintFinding] = []
    for item in payload or []:
        if not isinstance(item, dict):
            continue
        severity = _severity_name(item.get("Severity"))
        if severity not in _REPORTED:
            continue
        line = item.get("Line")
        findings.append(
            LintFinding(
                rule=str(item.get("RuleName") or ""),
                severity=severity,
                script=str(item.get("ScriptName") or ""),
                line=line if isinstance(line, int) else None,
                message=str(item.get("Message") or ""),
            )
        )
    return findings


def _severity_name(value: Any) -> str:
    if isinstance(value, int):
        return _SEVERITIES.get(value, str(value))
    return str(value or "")


def _quote(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


__all__ = ["ScriptAnalyzerLinter", "parse_findings"]
