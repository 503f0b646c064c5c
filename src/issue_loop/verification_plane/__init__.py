"""
issue-loop — verification plane

File: src/issue_loop/verification_plane/__init__.py
Last updated: 2026-10-17

Purpose
- Authoritative command verification plus evidence guards for each attempt.
"""

from issue_loop.verification_plane.guards import (
    GateMode,
    GuardPolicy,
    GuardReport,
    GuardResult,
    run_guards,
)
from issue_loop.verification_plane.placeholder_scan import (
    PlaceholderFinding,
    PlaceholderScanResult,
    scan_placeholder_patterns,
)
from issue_loop.verification_plane.runner import (
    CommandExecutor,
    CommandResult,
    CommandSpec,
    LocalSubprocessExecutor,
    VerifySuiteResult,
    increment_tasks_since_full_verify,
    record_full_verify_success,
    run_verify_suite,
    select_global_commands,
)

__all__ = [
    "CommandExecutor",
    "CommandResult",
    "CommandSpec",
    "GateMode",
    "GuardPolicy",
    "GuardReport",
    "GuardResult",
    "LocalSubprocessExecutor",
    "PlaceholderFinding",
    "PlaceholderScanResult",
    "VerifySuiteResult",
    "increment_tasks_since_full_verify",
    "record_full_verify_success",
    "run_guards",
    "run_verify_suite",
    "scan_placeholder_patterns",
    "select_global_commands",
]
