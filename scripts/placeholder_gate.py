"""
issue-loop — standalone placeholder gate

File: scripts/placeholder_gate.py
Last updated: 2026-10-17

Purpose
- Run the attempt placeholder scan outside the loop, for CI or pre-commit use.

What should be included in this file
- Diff source selection: ``--diff-file``, stdin (``-``), or ``git diff`` against ``--base``.
- Stable text/json output and strict gate exit semantics.

Functional requirements
- Exit code `0` when no added line carries a placeholder marker.
- Exit code `1` when findings exist.
- Exit code `2` for wrapper/runtime failures.
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Sequence
    from types import ModuleType


REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = REPO_ROOT / "src"


def _load_modules() -> tuple[ModuleType, ModuleType]:
    try:
        from issue_loop.integration_plane import git
        from issue_loop.verification_plane import placeholder_scan
    except ModuleNotFoundError:
        if str(SRC_PATH) not in sys.path:
            sys.path.insert(0, str(SRC_PATH))
        from issue_loop.integration_plane import git
        from issue_loop.verification_plane import placeholder_scan
    return placeholder_scan, git


def _build_parser(
    default_patterns: Sequence[str], default_exclude: Sequence[str]
) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Fail when added diff lines contain placeholder markers."
    )
    source = parser.add_mutually_exclusive_group()
    source.add_argument(
        "--diff-file",
        default=None,
        help="Unified diff to scan ('-' reads stdin).",
    )
    source.add_argument(
        "--base",
        default=None,
        help="Scan `git diff <base>` plus untracked files (default when no diff file: HEAD).",
    )
    parser.add_argument(
        "--repo-root",
        default=".",
        help="Working tree for --base mode (default: current working directory).",
    )
    parser.add_argument(
        "--pattern",
        dest="patterns",
        action="append",
        default=None,
        help=f"Regex to flag, repeatable (default: {', '.join(default_patterns)}).",
    )
    parser.add_argument(
        "--exclude",
        nargs="*",
        default=list(default_exclude),
        help="Path globs to skip entirely.",
    )
    parser.add_argument("--ignore-case", action="store_true", help="Case-insensitive patterns.")
    parser.add_argument(
        "--format",
        dest="output_format",
        choices=("text", "json"),
        default="text",
        help="Output format.",
    )
    return parser


def _read_diff(args: argparse.Namespace, git: ModuleType) -> str:
    if args.diff_file == "-":
        return sys.stdin.read()
    if args.diff_file:
        return Path(args.diff_file).read_text(encoding="utf-8")
    workspace = git.GitWorkspace(Path(args.repo_root).resolve())
    return str(workspace.attempt_diff(args.base or "HEAD"))


def main(argv: Sequence[str] | None = None) -> int:
    placeholder_scan, git = _load_modules()
    parser = _build_parser(
        placeholder_scan.DEFAULT_PLACEHOLDER_PATTERNS, placeholder_scan.DEFAULT_EXCLUDE_GLOBS
    )
    args = parser.parse_args(argv)

    try:
        diff_text = _read_diff(args, git)
        result = placeholder_scan.scan_placeholder_patterns(
            diff_text,
            patterns=tuple(args.patterns or placeholder_scan.DEFAULT_PLACEHOLDER_PATTERNS),
            exclude_globs=tuple(args.exclude),
            ignore_case=bool(args.ignore_case),
        )
        if args.output_format == "json":
            sys.stdout.write(placeholder_scan.format_json(result))
        else:
            sys.stdout.write(placeholder_scan.format_text(result))
        return 0 if result.passed else 1
    except Exception as exc:  # noqa: BLE001 - wrapper boundary
        sys.stderr.write(f"placeholder-gate crashed: {exc}\n")
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
