"""Synthesis plane: execution agent adapters and prompt rendering."""

from issue_loop.synthesis_plane.agent import (
    AgentBackend,
    AgentOutput,
    CliAgent,
    ExecutionAgent,
    parse_advisory_result,
)
from issue_loop.synthesis_plane.prompts import PromptTemplateEngine, RenderedPrompt

__all__ = [
    "AgentBackend",
    "AgentOutput",
    "CliAgent",
    "ExecutionAgent",
    "PromptTemplateEngine",
    "RenderedPrompt",
    "parse_advisory_result",
]
