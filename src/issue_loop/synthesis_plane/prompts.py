"""
issue-loop — prompt rendering

File: src/issue_loop/synthesis_plane/prompts.py
Last updated: 2026-10-17

Purpose
- Render the execution and review prompts from packaged jinja2 templates.

What should be included in this file
- Strict rendering (undefined variables raise) with a per-template variable whitelist.
- Prompt hashing for the attempt log.

Functional requirements
- Must render prompts deterministically for same inputs.
- A template root override lets operators replace the default prompt text.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from jinja2 import Environment, StrictUndefined, TemplateError, meta

from issue_loop.utils.hashing import sha256_text

if TYPE_CHECKING:
    from collections.abc import Collection, Mapping

TASK_PROMPT = "task_prompt.md.j2"
REVIEW_PROMPT = "review_prompt.md.j2"

TASK_PROMPT_VARIABLES: tuple[str, ...] = (
    "work_unit",
    "task",
    "context",
    "context_manifest_hash",
    "attempt",
    "max_attempts",
    "event_heading",
    "task_log_title",
    "browser_required",
    "wisp_heading",
)
REVIEW_PROMPT_VARIABLES: tuple[str, ...] = (
    "work_unit",
    "scope",
    "review_id",
    "task",
    "base_ref",
    "head_ref",
    "changed_files",
    "review_heading",
    "review_title",
)

_TEMPLATE_NAME_RE = re.compile(r"^[A-Za-z0-9_]+\.md\.j2$")


class PromptTemplateError(RuntimeError):
    """Base error for prompt template loading and rendering."""


class PromptTemplateNotFoundError(PromptTemplateError, FileNotFoundError):
    """Raised when a template file does not exist."""


class PromptTemplateVariableError(PromptTemplateError, ValueError):
    """Raised for missing/extra variables or whitelist violations."""


@dataclass(frozen=True, slots=True)
class RenderedPrompt:
    """Rendered prompt plus deterministic hashes for the attempt log."""

    prompt: str
    prompt_hash: str
    template_name: str
    template_hash: str


class PromptTemplateEngine:
    """Deterministic jinja2 renderer over one template directory."""

    def __init__(self, *, template_root: Path | str | None = None) -> None:
        root = Path(template_root) if template_root is not None else default_template_root()
        resolved_root = root.resolve()
        if not resolved_root.is_dir():
            raise PromptTemplateNotFoundError(f"template root is not a directory: {resolved_root}")
        self._template_root = resolved_root
        self._environment = Environment(
            undefined=StrictUndefined,
            autoescape=False,
            trim_blocks=True,
            lstrip_blocks=True,
            newline_sequence="\n",
            keep_trailing_newline=True,
        )

    @property
    def template_root(self) -> Path:
        return self._template_root

    def render(
        self,
        template_name: str,
        *,
        variables: Mapping[str, object],
        allowed_variables: Collection[str],
    ) -> RenderedPrompt:
        if not _TEMPLATE_NAME_RE.fullmatch(template_name):
            raise ValueError(f"invalid template name: {template_name!r}")
        template_path = self._template_root / template_name
        if not template_path.is_file():
            raise PromptTemplateNotFoundError(
                f"template not found: {template_name!r} under {self._template_root}"
            )
        source = _normalize_newlines(template_path.read_text(encoding="utf-8"))

        declared = set(meta.find_undeclared_variables(self._environment.parse(source)))
        allowed = set(allowed_variables)
        unexpected_in_template = sorted(declared - allowed)
        if unexpected_in_template:
            raise PromptTemplateVariableError(
                "template uses variables not allowed by whitelist: "
                + ", ".join(unexpected_in_template)
            )
        unexpected_inputs = sorted(set(variables) - allowed)
        if unexpected_inputs:
            raise PromptTemplateVariableError(
                "unexpected variables were provided: " + ", ".join(unexpected_inputs)
            )
        missing = sorted(declared - set(variables))
        if missing:
            raise PromptTemplateVariableError(
                "missing required template variables: " + ", ".join(missing)
            )

        try:
            rendered = self._environment.from_string(source).render(**dict(variables))
        except TemplateError as exc:
            raise PromptTemplateError(f"failed to render {template_name}: {exc}") from exc
        prompt = _normalize_newlines(rendered)
        return RenderedPrompt(
            prompt=prompt,
            prompt_hash=sha256_text(prompt),
            template_name=template_name,
            template_hash=sha256_text(source),
        )

    def render_task_prompt(self, variables: Mapping[str, object]) -> RenderedPrompt:
        return self.render(
            TASK_PROMPT, variables=variables, allowed_variables=TASK_PROMPT_VARIABLES
        )

    def render_review_prompt(self, variables: Mapping[str, object]) -> RenderedPrompt:
        return self.render(
            REVIEW_PROMPT, variables=variables, allowed_variables=REVIEW_PROMPT_VARIABLES
        )


def default_template_root() -> Path:
    return Path(__file__).resolve().parent / "templates"


def _normalize_newlines(text: str) -> str:
    return text.replace("\r\n", "\n").replace("\r", "\n")


__all__ = [
    "REVIEW_PROMPT",
    "REVIEW_PROMPT_VARIABLES",
    "TASK_PROMPT",
    "TASK_PROMPT_VARIABLES",
    "PromptTemplateEngine",
    "PromptTemplateError",
    "PromptTemplateNotFoundError",
    "PromptTemplateVariableError",
    "RenderedPrompt",
    "default_template_root",
]
