"""
issue-loop — unit tests for the async command executor

File: tests/unit/utils/test_process.py
Last updated: 2026-10-17
"""

from __future__ import annotations

import sys

import pytest

from issue_loop.utils.process import CommandResult, CommandSpec, LocalSubprocessExecutor


def test_spec_rejects_empty_argv_and_bad_timeout() -> None:
    with pytest.raises(ValueError):
        CommandSpec(argv=())
    with pytest.raises(ValueError):
        CommandSpec(argv=("true",), timeout_seconds=0)


def test_timed_out_result_has_no_exit_code() -> None:
    with pytest.raises(ValueError):
        CommandResult(argv=("x",), exit_code=1, stdout="", stderr="", duration_ms=0, timed_out=True)


@pytest.mark.slow
@pytest.mark.asyncio
async def test_run_captures_output_and_exit_code() -> None:
    executor = LocalSubprocessExecutor()

    result = await executor.run(
        CommandSpec(
            argv=(sys.executable, "-c", "import sys; print('out'); print('err', file=sys.stderr)")
        )
    )

    assert result.is_success()
    assert result.stdout.strip() == "out"
    assert result.stderr.strip() == "err"


@pytest.mark.slow
@pytest.mark.asyncio
async def test_timeout_kills_the_child() -> None:
    executor = LocalSubprocessExecutor()

    result = await executor.run(
        CommandSpec(argv=(sys.executable, "-c", "import time; time.sleep(5)"), timeout_seconds=0.2)
    )

    assert result.timed_out
    assert result.exit_code is None
    assert not result.is_success()


@pytest.mark.asyncio
async def test_spawn_failure_becomes_error_result() -> None:
    executor = LocalSubprocessExecutor(redactor=lambda text: text.replace("definitely", "***"))

    result = await executor.run(CommandSpec(argv=("definitely-not-a-command-xyz",)))

    assert result.error is not None
    assert "definitely" not in result.error
    assert result.exit_code is None
