"""
issue-loop — placeholder scan over unified diffs

File: src/issue_loop/verification_plane/placeholder_scan.py
Last updated: 2026-10-17

Purpose
- Flag placeholder markers introduced by an attempt, looking only at added lines.

What should be included in this file
- Unified-diff walker that tracks the current target file.
- Regex matching with glob-based path exclusion.
- Deterministic finding ordering and text/JSON formatting for the standalone gate script.

Functional requirements
- Only ``+`` lines are scanned; ``+++`` file headers and context/removed lines never are.
- Files matching an exclusion glob are skipped entirely.
"""

from __future__ import annotations

import fnmatch
import json
import re
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import PurePosixPath

DEFAULT_PLACEHOLDER_PATTERNS: tuple[str, ...] = (
    r"\bTODO\b",
    r"\bFIXME\b",
    r"\bXXX\b",
    r"\bHACK\b",
    r"raise\s+NotImplementedError",
    r"\bnot\s+implemented\b",
    r"\bplaceholder\b",
)
DEFAULT_EXCLUDE_GLOBS: tuple[str, ...] = (
    "*.md",
    "docs/**",
    "tests/**",
    "**/fixtures/**",
)

_HUNK_HEADER = re.compile(r"^@@ -\d+(?:,\d+)? \+(\d+)(?:,\d+)? @@")


@dataclass(frozen=True, slots=True)
class PlaceholderFinding:
    path: str
    line: int
    pattern: str
    snippet: str

    def sort_key(self) -> tuple[str, int, str]:
        return (self.path, self.line, self.pattern)

    def to_dict(self) -> dict[str, object]:
        return {
            "path": self.path,
            "line": self.line,
            "pattern": self.pattern,
            "snippet": self.snippet,
        }


@dataclass(frozen=True, slots=True)
class PlaceholderScanResult:
    findings: tuple[PlaceholderFinding, ...]
    scanned_files: tuple[str, ...]

    @property
    def passed(self) -> bool:
        return not self.findings

    def to_dict(self) -> dict[str, object]:
        return {
            "passed": self.passed,
            "findings": [finding.to_dict() for finding in self.findings],
            "scanned_files": list(self.scanned_files),
        }


def scan_placeholder_patterns(
    diff_text: str,
    *,
    patterns: Sequence[str] = DEFAULT_PLACEHOLDER_PATTERNS,
    exclude_globs: Sequence[str] = DEFAULT_EXCLUDE_GLOBS,
    ignore_case: bool = False,
) -> PlaceholderScanResult:
    """Scan the added lines of ``diff_text`` for placeholder markers."""

    flags = re.IGNORECASE if ignore_case else 0
    compiled = [(raw, re.compile(raw, flags)) for raw in patterns if raw.strip()]
    findings: list[PlaceholderFinding] = []
    scanned: set[str] = set()

    current_path: str | None = None
    skip_file = False
    new_line_number = 0

    for line in diff_text.splitlines():
        if line.startswith("+++"):
            current_path = _target_path(line[3:].strip())
            skip_file = current_path is None or _is_excluded(current_path, exclude_globs)
            if current_path is not None and not skip_file:
                scanned.add(current_path)
            continue
        if line.startswith("---"):
            continue
        hunk = _HUNK_HEADER.match(line)
        if hunk is not None:
            new_line_number = int(hunk.group(1))
            continue
        if line.startswith("+"):
            if current_path is not None and not skip_file:
                added = line[1:]
                for raw, regex in compiled:
                    if regex.search(added):
                        findings.append(
                            PlaceholderFinding(
                                path=current_path,
                                line=new_line_number,
                                pattern=raw,
                                snippet=added.strip()[:200],
                            )
                        )
            new_line_number += 1
            continue
        if line.startswith(" "):
            new_line_number += 1

    ordered = tuple(sorted(set(findings), key=lambda item: item.sort_key()))
    return PlaceholderScanResult(findings=ordered, scanned_files=tuple(sorted(scanned)))


def format_text(result: PlaceholderScanResult) -> str:
    if result.passed:
        return f"No placeholder markers in added lines ({len(result.scanned_files)} files).\n"
    lines = ["Placeholder markers in added lines:"]
    for finding in result.findings:
        lines.append(f"  {finding.path}:{finding.line} [{finding.pattern}] {finding.snippet}")
    lines.append(f"Summary: findings={len(result.findings)} files={len(result.scanned_files)}")
    return "\n".join(lines) + "\n"


def format_json(result: PlaceholderScanResult) -> str:
    return json.dumps(result.to_dict(), sort_keys=True, indent=2, ensure_ascii=False) + "\n"


def _target_path(raw: str) -> str | None:
    candidate = raw.split("\t", 1)[0].strip()
    if candidate == "/dev/null":
        return None
    if candidate.startswith("b/"):
        candidate = candidate[2:]
    parts = [part for part in PurePosixPath(candidate).parts if part not in {"", "."}]
    return PurePosixPath(*parts).as_posix() if parts else None


def _is_excluded(rel_path: str, exclude_globs: Sequence[str]) -> bool:
    for pattern in exclude_globs:
        if not pattern:
            continue
        if fnmatch.fnmatchcase(rel_path, pattern):
            return True
        if pattern.endswith("/**") and rel_path.startswith(pattern[:-3] + "/"):
            return True
        if pattern.startswith("**/") and fnmatch.fnmatchcase(rel_path, pattern[3:]):
            return True
    return False


__all__ = [
    "DEFAULT_EXCLUDE_GLOBS",
    "DEFAULT_PLACEHOLDER_PATTERNS",
    "PlaceholderFinding",
    "PlaceholderScanResult",
    "format_json",
    "format_text",
    "scan_placeholder_patterns",
]
