"""
issue-loop — unit tests for execution agent adapters

File: tests/unit/synthesis_plane/test_agent.py
Last updated: 2026-10-17
"""

from __future__ import annotations

import json
import stat
from pathlib import Path

import pytest

from issue_loop.errors import AgentInvocationFailure
from issue_loop.synthesis_plane.agent import (
    AgentBackend,
    CliAgent,
    ExecutionAgent,
    parse_advisory_result,
    parse_claude_stream_output,
)


def _script(tmp_path: Path, body: str) -> str:
    path = tmp_path / "fake-agent"
    path.write_text("#!/bin/sh\n" + body + "\n", encoding="utf-8")
    path.chmod(path.stat().st_mode | stat.S_IXUSR)
    return str(path)


def test_stream_output_prefers_last_result_event() -> None:
    stream = "\n".join(
        [
            json.dumps({"type": "system", "subtype": "init"}),
            json.dumps({"type": "result", "result": "first"}),
            "not json",
            json.dumps({"type": "result", "result": [{"type": "text", "text": "final"}]}),
            "",
        ]
    )

    assert parse_claude_stream_output(stream) == "final"


def test_stream_output_without_result_returns_raw_text() -> None:
    assert parse_claude_stream_output("  plain output \n") == "plain output"


def test_advisory_result_uses_last_tag() -> None:
    assert parse_advisory_result("<result>FAIL</result> then <result> pass </result>") == "PASS"
    assert parse_advisory_result("nothing") is None


def test_build_command_per_backend() -> None:
    claude = CliAgent(backend="claude", binary_path="/bin/claude", model="opus")
    codex = CliAgent(backend=AgentBackend.CODEX_CLI, binary_path="/bin/codex", extra_args=["-q"])

    assert claude.build_command("do it") == [
        "/bin/claude",
        "-p",
        "do it",
        "--verbose",
        "--output-format",
        "stream-json",
        "--model",
        "opus",
    ]
    assert codex.build_command("do it", use_stdin=True) == [
        "/bin/codex",
        "exec",
        "--full-auto",
        "-q",
        "-",
    ]
    assert isinstance(claude, ExecutionAgent)


def test_missing_binary_is_an_agent_failure(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PATH", "")

    with pytest.raises(AgentInvocationFailure, match="not found on PATH"):
        CliAgent(backend="codex")


@pytest.mark.slow
@pytest.mark.asyncio
async def test_execute_returns_output_and_advisory_result(tmp_path: Path) -> None:
    binary = _script(tmp_path, 'echo "implemented it <result>PASS</result>"')
    agent = CliAgent(backend="codex", binary_path=binary)

    output = await agent.execute("prompt", cwd=tmp_path)

    assert output.exit_code == 0
    assert output.advisory_result == "PASS"
    assert "implemented it" in output.text


@pytest.mark.slow
@pytest.mark.asyncio
async def test_non_zero_exit_with_output_is_not_fatal(tmp_path: Path) -> None:
    binary = _script(tmp_path, 'echo "partial work"\nexit 1')
    agent = CliAgent(backend="codex", binary_path=binary)

    output = await agent.execute("prompt")

    assert output.exit_code == 1
    assert output.text == "partial work"


@pytest.mark.slow
@pytest.mark.asyncio
async def test_non_zero_exit_without_output_is_fatal(tmp_path: Path) -> None:
    binary = _script(tmp_path, 'echo "auth expired" >&2\nexit 3')
    agent = CliAgent(backend="codex", binary_path=binary)

    with pytest.raises(AgentInvocationFailure, match="auth expired") as excinfo:
        await agent.execute("prompt")

    assert excinfo.value.exit_code == 3


@pytest.mark.slow
@pytest.mark.asyncio
async def test_timeout_is_an_agent_failure(tmp_path: Path) -> None:
    binary = _script(tmp_path, "sleep 5")
    agent = CliAgent(backend="codex", binary_path=binary, timeout_seconds=0.2)

    with pytest.raises(AgentInvocationFailure, match="timed out"):
        await agent.execute("prompt")
