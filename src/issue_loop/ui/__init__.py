"""UI package exports for the CLI router and plain-text rendering."""

from issue_loop.ui.cli import CLIError, build_parser, run_cli
from issue_loop.ui.render import CLIRenderer, create_renderer

__all__ = [
    "CLIError",
    "CLIRenderer",
    "build_parser",
    "create_renderer",
    "run_cli",
]
