"""Execution agent adapters — delegate a prompt to a local CLI tool (claude, codex).

File: src/issue_loop/synthesis_plane/agent.py

Purpose
- ``ExecutionAgent`` protocol the loop and the review lane talk to.
- ``CliAgent`` running Claude Code in print mode (stream-json) or ``codex exec``.

Security
- Never extracts or logs auth tokens. The CLI tools manage their own authentication.
- Agent output is treated as untrusted: the ``<result>`` tag is advisory only and never
  decides pass/fail.
"""

from __future__ import annotations

import asyncio
import enum
import json
import re
import shutil
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Final, Protocol, runtime_checkable

import structlog

from issue_loop.errors import AgentInvocationFailure

if TYPE_CHECKING:
    from collections.abc import Sequence
    from pathlib import Path


class AgentBackend(enum.Enum):
    """Supported CLI tool backends."""

    CLAUDE_CODE = "claude"
    CODEX_CLI = "codex"


AGENT_BINARY_NAMES: Final[dict[AgentBackend, str]] = {
    AgentBackend.CLAUDE_CODE: "claude",
    AgentBackend.CODEX_CLI: "codex",
}

# Maximum prompt size before switching from CLI arg to stdin pipe
_STDIN_THRESHOLD: Final[int] = 100_000

_ADVISORY_RESULT_RE = re.compile(r"<result>\s*(PASS|FAIL)\s*</result>", re.IGNORECASE)


@dataclass(frozen=True, slots=True)
class AgentOutput:
    text: str
    exit_code: int
    stderr: str = ""
    duration_ms: int = 0
    advisory_result: str | None = None


@runtime_checkable
class ExecutionAgent(Protocol):
    """Anything that can take a prompt and work inside a checkout."""

    async def execute(self, prompt: str, *, cwd: Path | str | None = None) -> AgentOutput: ...


def parse_advisory_result(text: str) -> str | None:
    """Return ``PASS``/``FAIL`` from the last ``<result>`` tag, if any."""

    matches = _ADVISORY_RESULT_RE.findall(text)
    if not matches:
        return None
    return str(matches[-1]).upper()


class CliAgent:
    """Agent that runs a locally installed CLI in non-interactive mode."""

    def __init__(
        self,
        *,
        backend: AgentBackend | str,
        binary_path: str | None = None,
        model: str = "",
        extra_args: Sequence[str] = (),
        timeout_seconds: float | None = None,
        logger: Any | None = None,
    ) -> None:
        self._backend = backend if isinstance(backend, AgentBackend) else AgentBackend(backend)
        self._model = model
        self._extra_args = tuple(extra_args)
        self._timeout_seconds = timeout_seconds
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

        if binary_path is not None:
            self._binary_path = binary_path
        else:
            binary_name = AGENT_BINARY_NAMES[self._backend]
            resolved = shutil.which(binary_name)
            if resolved is None:
                raise AgentInvocationFailure(
                    f"{binary_name} CLI not found on PATH. "
                    "Install it or set agent.binary_path."
                )
            self._binary_path = resolved

    @property
    def backend(self) -> AgentBackend:
        return self._backend

    async def execute(self, prompt: str, *, cwd: Path | str | None = None) -> AgentOutput:
        start = time.perf_counter()
        try:
            stdout, stderr, returncode = await self._execute_cli(
                prompt, cwd=None if cwd is None else str(cwd)
            )
        except TimeoutError as exc:
            raise AgentInvocationFailure(
                f"{self._backend.value} timed out after {self._timeout_seconds}s"
            ) from exc
        except OSError as exc:
            raise AgentInvocationFailure(
                f"failed to start {self._backend.value}: {exc}"
            ) from exc
        elapsed_ms = int((time.perf_counter() - start) * 1000)

        text = self._parse_output(stdout)
        if returncode != 0 and not text.strip():
            raise AgentInvocationFailure(
                f"{self._backend.value} exited with code {returncode} and no output: "
                f"{stderr.strip()[:200] if stderr.strip() else '(no stderr)'}",
                exit_code=returncode,
                stderr=stderr,
            )

        advisory = parse_advisory_result(text)
        self._logger.info(
            "agent_finished",
            backend=self._backend.value,
            exit_code=returncode,
            duration_ms=elapsed_ms,
            output_chars=len(text),
            advisory_result=advisory,
        )
        return AgentOutput(
            text=text,
            exit_code=returncode,
            stderr=stderr,
            duration_ms=elapsed_ms,
            advisory_result=advisory,
        )

    async def _execute_cli(self, prompt: str, *, cwd: str | None) -> tuple[str, str, int]:
        use_stdin = len(prompt) > _STDIN_THRESHOLD
        cmd = self.build_command(prompt, use_stdin=use_stdin)
        stdin_data = prompt.encode("utf-8") if use_stdin else None

        stdin_mode = (
            asyncio.subprocess.PIPE if stdin_data is not None else asyncio.subprocess.DEVNULL
        )
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            stdin=stdin_mode,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=cwd,
        )
        try:
            stdout, stderr = await asyncio.wait_for(
                proc.communicate(stdin_data), timeout=self._timeout_seconds
            )
        except TimeoutError:
            proc.kill()
            await proc.wait()
            raise
        return (
            stdout.decode("utf-8", errors="replace"),
            stderr.decode("utf-8", errors="replace"),
            proc.returncode or 0,
        )

    def build_command(self, prompt: str, *, use_stdin: bool = False) -> list[str]:
        prompt_arg = "-" if use_stdin else prompt
        if self._backend is AgentBackend.CODEX_CLI:
            cmd = [self._binary_path, "exec", "--full-auto"]
            if self._model:
                cmd.extend(["--model", self._model])
            cmd.extend(self._extra_args)
            cmd.append(prompt_arg)
            return cmd
        cmd = [
            self._binary_path,
            "-p",
            prompt_arg,
            "--verbose",
            "--output-format",
            "stream-json",
        ]
        if self._model:
            cmd.extend(["--model", self._model])
        cmd.extend(self._extra_args)
        return cmd

    def _parse_output(self, stdout: str) -> str:
        if self._backend is AgentBackend.CLAUDE_CODE:
            return parse_claude_stream_output(stdout)
        return stdout.strip()


def parse_claude_stream_output(stdout: str) -> str:
    """Extract the final answer from Claude Code stream-json output.

    The last event with ``type == "result"`` wins. Without one, the raw stdout is
    returned so nothing the agent printed is lost.
    """

    for line in reversed(stdout.splitlines()):
        line = line.strip()
        if not line:
            continue
        try:
            event = json.loads(line)
        except (json.JSONDecodeError, ValueError):
            continue
        if not isinstance(event, dict) or event.get("type") != "result":
            continue

        result = event.get("result")
        if isinstance(result, str):
            return result
        if isinstance(result, list):
            texts = [
                block["text"]
                for block in result
                if isinstance(block, dict)
                and block.get("type") == "text"
                and isinstance(block.get("text"), str)
            ]
            if texts:
                return "\n".join(texts)
    return stdout.strip()


__all__ = [
    "AGENT_BINARY_NAMES",
    "AgentBackend",
    "AgentOutput",
    "CliAgent",
    "ExecutionAgent",
    "parse_advisory_result",
    "parse_claude_stream_output",
]
