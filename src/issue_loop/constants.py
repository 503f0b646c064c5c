"""Stable constants shared across loop planes."""

from __future__ import annotations

from pathlib import PurePosixPath
from typing import Final

# Schema versions for persisted contracts.
CONFIG_SCHEMA_VERSION: Final[int] = 1
EVENT_ENVELOPE_VERSION: Final[int] = 1

# Default runtime paths (relative to the repository root unless overridden by config).
DEFAULT_DOCUMENT_PATH: Final[PurePosixPath] = PurePosixPath("prd.json")
DEFAULT_LOCK_PATH: Final[PurePosixPath] = PurePosixPath(".issue-loop/loop.lock")
DEFAULT_LOG_DIR: Final[PurePosixPath] = PurePosixPath(".issue-loop/logs")

# Document defaults.
DEFAULT_FORMULA: Final[str] = "feature"
DEFAULT_SUMMARY_EVERY_N_TASK_LOGS: Final[int] = 5
TASK_ID_PREFIX: Final[str] = "US-"
TASK_UID_PREFIX: Final[str] = "tsk_"
WISP_ID_PREFIX: Final[str] = "wsp_"
REVIEW_ID_PREFIX: Final[str] = "rvw_"
UID_HASH_LENGTH: Final[int] = 12

# Comment headings on the remote log.
TASK_LOG_TITLE: Final[str] = "## 📝 Task Log"
TASK_LOG_EVENT_HEADING: Final[str] = "### Event JSON"
REVIEW_LOG_TITLE: Final[str] = "## 🔎 Review Log"
REVIEW_EVENT_HEADING: Final[str] = "### Review Event JSON"
WISP_TITLE: Final[str] = "## 🪶 Wisp"
WISP_EVENT_HEADING: Final[str] = "### Wisp JSON"
BROWSER_VERIFICATION_TITLE: Final[str] = "## 🌐 Browser Verification"
BROWSER_EVENT_HEADING: Final[str] = "### Browser Event JSON"
COMPACTION_TITLE: Final[str] = "## 🧾 Compacted Summary"
DISCOVERY_NOTE_TITLE: Final[str] = "## 🔍 Discovery Note"
BLOCKED_LABEL: Final[str] = "AI: Blocked"

# Review severities, most severe first.
REVIEW_SEVERITIES: Final[tuple[str, ...]] = ("critical", "high", "medium", "low")
SEVERITY_WEIGHT: Final[dict[str, int]] = {
    "low": 1,
    "medium": 2,
    "high": 3,
    "critical": 4,
}

__all__ = [
    "BLOCKED_LABEL",
    "BROWSER_EVENT_HEADING",
    "BROWSER_VERIFICATION_TITLE",
    "COMPACTION_TITLE",
    "CONFIG_SCHEMA_VERSION",
    "DEFAULT_DOCUMENT_PATH",
    "DEFAULT_FORMULA",
    "DEFAULT_LOCK_PATH",
    "DEFAULT_LOG_DIR",
    "DEFAULT_SUMMARY_EVERY_N_TASK_LOGS",
    "DISCOVERY_NOTE_TITLE",
    "EVENT_ENVELOPE_VERSION",
    "REVIEW_EVENT_HEADING",
    "REVIEW_ID_PREFIX",
    "REVIEW_LOG_TITLE",
    "REVIEW_SEVERITIES",
    "SEVERITY_WEIGHT",
    "TASK_ID_PREFIX",
    "TASK_LOG_EVENT_HEADING",
    "TASK_LOG_TITLE",
    "TASK_UID_PREFIX",
    "UID_HASH_LENGTH",
    "WISP_EVENT_HEADING",
    "WISP_ID_PREFIX",
    "WISP_TITLE",
]
