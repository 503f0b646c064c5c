"""Git integration for attempt diffs and commit ranges."""

from issue_loop.integration_plane.git import GitCommandError, GitResult, GitWorkspace

__all__ = ["GitCommandError", "GitResult", "GitWorkspace"]
