"""
issue-loop — package root

File: src/issue_loop/__init__.py
Last updated: 2026-10-17

Purpose
- Drive a JSON task graph to completion with a single coding agent, using a GitHub issue
  comment thread as the append-only event log.

Functional requirements
- Must not have side effects at import time (no config loading, no logging init).
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
