"""Command-line interface router for issue-loop."""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import json
import sys
from collections.abc import Iterator, Mapping, Sequence
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Any, Final

import structlog

from issue_loop.config import (
    ConfigLoadError,
    ConfigValidationError,
    effective_config,
    load_config,
)
from issue_loop.control_plane.controller import (
    LoopOutcome,
    LoopResult,
    create_controller,
    open_thread,
)
from issue_loop.control_plane.lock import LoopLock
from issue_loop.control_plane.scheduler import Scheduler
from issue_loop.domain.identity import new_run_id
from issue_loop.domain.models import FindingStatus
from issue_loop.errors import (
    AgentInvocationFailure,
    CorruptStateError,
    LockContentionError,
    LogWriteFailure,
)
from issue_loop.knowledge_plane.wisps import (
    PromotionTarget,
    collect_active_wisps,
    create_wisp,
    find_wisp,
    promote_wisp,
)
from issue_loop.observability.logging import configure_structlog, correlation_scope, setup_logging
from issue_loop.persistence.task_graph_store import TaskGraphStore
from issue_loop.review_plane.lane import approve_finding
from issue_loop.ui.render import CLIRenderer, create_renderer
from issue_loop.utils.clock import utc_now

OUTCOME_EXIT_CODES: Final[Mapping[LoopOutcome, int]] = {
    LoopOutcome.COMPLETE: 0,
    LoopOutcome.BLOCKED: 1,
    LoopOutcome.REPLAN_REQUIRED: 6,
    LoopOutcome.ITERATION_CAP: 7,
}

EXIT_CONFIG: Final[int] = 2
EXIT_AGENT: Final[int] = 3
EXIT_INTERNAL: Final[int] = 4
EXIT_LOCK: Final[int] = 5


@dataclass(frozen=True, slots=True)
class CLIError(RuntimeError):
    """Typed CLI failure with an explicit process exit code."""

    message: str
    exit_code: int = 1

    def __str__(self) -> str:
        return self.message


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse command router for all supported CLI workflows."""

    parser = argparse.ArgumentParser(
        prog="issue-loop",
        description=(
            "issue-loop: drive a task graph to completion with a coding agent,\n"
            "using a GitHub issue comment thread as the durable event log.\n\n"
            "Common workflows:\n"
            "  issue-loop run --max-iterations 10   Run the loop\n"
            "  issue-loop status                    Show document progress\n"
            "  issue-loop wisp add --note '...'     Leave a short-lived hint\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--repo-root",
        default=".",
        help="Repository root directory (default: current working directory).",
    )
    common.add_argument(
        "--config",
        dest="config_path",
        default=None,
        help="Path to TOML config (default: <repo-root>/issue-loop.toml if present).",
    )
    common.add_argument(
        "--profile",
        default=None,
        help="Config profile overlay name (fast, balanced, strict).",
    )
    common.add_argument(
        "--document",
        dest="document_path",
        default=None,
        help="Override paths.document (the task graph JSON file).",
    )
    common.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        default=False,
        help="Enable debug logging.",
    )
    common.add_argument(
        "--no-color",
        action="store_true",
        default=False,
        help="Disable color output.",
    )

    subparsers = parser.add_subparsers(dest="command", metavar="<command>")

    run_parser = subparsers.add_parser(
        "run",
        parents=[common],
        help="Run the main loop until a terminal outcome or the iteration cap.",
        description="Acquire the process lock and drive the task graph.",
    )
    run_parser.add_argument(
        "--max-iterations",
        type=int,
        default=None,
        help="Stop after N iterations (default: loop.max_iterations).",
    )
    run_parser.add_argument("--json", action="store_true", help="Emit a JSON result.")
    run_parser.set_defaults(handler=_cmd_run)

    status_parser = subparsers.add_parser(
        "status",
        parents=[common],
        help="Show document status, progress, and the next scheduled task.",
    )
    status_parser.add_argument("--json", action="store_true", help="Emit JSON.")
    status_parser.set_defaults(handler=_cmd_status)

    backfill_parser = subparsers.add_parser(
        "backfill",
        parents=[common],
        help="Fill missing uids and bookkeeping fields, then save if anything changed.",
    )
    backfill_parser.set_defaults(handler=_cmd_backfill)

    wisp_parser = subparsers.add_parser("wisp", help="Manage short-lived hints.")
    wisp_sub = wisp_parser.add_subparsers(dest="wisp_command", metavar="<action>")

    wisp_add = wisp_sub.add_parser("add", parents=[common], help="Post a new wisp.")
    wisp_add.add_argument("--note", required=True, help="Hint text.")
    wisp_add.add_argument("--task-uid", default=None, help="Task uid the hint refers to.")
    wisp_add.add_argument(
        "--ttl-minutes",
        type=int,
        default=None,
        help="Lifetime in minutes (default: wisps.default_ttl_minutes).",
    )
    wisp_add.set_defaults(handler=_cmd_wisp_add)

    wisp_list = wisp_sub.add_parser("list", parents=[common], help="List active wisps.")
    wisp_list.add_argument("--json", action="store_true", help="Emit JSON.")
    wisp_list.set_defaults(handler=_cmd_wisp_list)

    wisp_promote = wisp_sub.add_parser(
        "promote",
        parents=[common],
        help="Promote a wisp to a discovery note or a discovered task.",
    )
    wisp_promote.add_argument("wisp_id", help="Wisp id (wsp_...).")
    wisp_promote.add_argument(
        "--target",
        choices=[item.value for item in PromotionTarget],
        default=PromotionTarget.NOTE.value,
        help="Promotion target (default: note).",
    )
    wisp_promote.set_defaults(handler=_cmd_wisp_promote)

    review_parser = subparsers.add_parser("review", help="Operate on review findings.")
    review_sub = review_parser.add_subparsers(dest="review_command", metavar="<action>")
    review_approve = review_sub.add_parser(
        "approve",
        parents=[common],
        help="Accept a finding so it no longer blocks completion.",
    )
    review_approve.add_argument("review_id")
    review_approve.add_argument("finding_id")
    review_approve.set_defaults(handler=_cmd_review_approve)

    config_parser = subparsers.add_parser(
        "config",
        parents=[common],
        help="Print the effective configuration with secrets redacted.",
    )
    config_parser.add_argument("--json", action="store_true", help="Emit compact JSON.")
    config_parser.set_defaults(handler=_cmd_config)

    return parser


# ---------------------------------------------------------------------------
# Entrypoints
# ---------------------------------------------------------------------------


def run_cli(argv: Sequence[str] | None = None) -> int:
    """Parse argv, route to a command handler, and return process exit code."""

    parser = build_parser()
    namespace = parser.parse_args(list(argv) if argv is not None else None)
    handler = getattr(namespace, "handler", None)
    if not callable(handler):
        parser.print_help(sys.stderr)
        return EXIT_CONFIG

    configure_structlog()
    try:
        result = handler(namespace)
    except CLIError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return exc.exit_code
    return int(result)


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


def _cmd_run(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    store = _require_store(config)
    max_iterations = getattr(args, "max_iterations", None)
    if max_iterations is not None and max_iterations < 1:
        raise CLIError("--max-iterations must be >= 1", exit_code=EXIT_CONFIG)

    run_id = new_run_id(utc_now())
    handle = setup_logging(_observability(config, args), run_id=run_id)
    log = structlog.get_logger(__name__)
    try:
        with correlation_scope(run_id=run_id), _hold_lock(config):
            log.info("loop_run_started", document=str(store.path), max_iterations=max_iterations)
            result = asyncio.run(_run_loop(config, store, max_iterations))
            log.info("loop_run_finished", outcome=result.outcome.value, reason=result.reason)
    except AgentInvocationFailure as exc:
        raise CLIError(f"agent failure: {exc}", exit_code=EXIT_AGENT) from exc
    except CorruptStateError as exc:
        raise CLIError(str(exc), exit_code=EXIT_CONFIG) from exc
    finally:
        handle.shutdown()

    exit_code = OUTCOME_EXIT_CODES[result.outcome]
    if _flag(args, "json"):
        payload: dict[str, object] = {"command": "run", "run_id": run_id, **result.to_dict()}
        _emit_json(payload)
        return exit_code

    renderer = _get_renderer(args)
    renderer.kv("Run ID", run_id)
    renderer.status("Outcome", result.outcome.value)
    renderer.kv("Iterations", result.iterations)
    if result.reason:
        renderer.kv("Reason", result.reason)
    if result.attempts:
        renderer.table(
            ["TASK", "ATTEMPT", "RESULT"],
            [
                [item.task_id, str(item.attempt), "pass" if item.passed else "fail"]
                for item in result.attempts
            ],
            title="Attempts:",
        )
    renderer.kv("Log", handle.log_path)
    if result.outcome is LoopOutcome.ITERATION_CAP:
        renderer.next_steps(["issue-loop run"])
    elif result.outcome is not LoopOutcome.COMPLETE:
        renderer.next_steps(["issue-loop status"])
    return exit_code


async def _run_loop(
    config: Mapping[str, Any], store: TaskGraphStore, max_iterations: int | None
) -> LoopResult:
    controller = await create_controller(config, store=store)
    return await controller.run(max_iterations=max_iterations)


def _cmd_status(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    store = _require_store(config)
    document = _load_document(store)
    passed, total = document.progress()
    decision = Scheduler(max_attempts=config["loop"]["max_attempts"]).schedule(document)
    open_findings = [
        f"{item.review_id}/{item.finding_id} [{item.severity}] {item.task_id}"
        for item in document.review.findings
        if item.status is FindingStatus.OPEN
    ]
    retry = document.execution_retry

    payload: dict[str, object] = {
        "command": "status",
        "document": str(store.path),
        "work_unit": document.work_unit,
        "status": document.status.value,
        "progress": {"passed": passed, "total": total},
        "next": decision.to_dict(),
        "execution_retry": retry.to_dict(),
        "tasks_since_full_verify": document.verification.tasks_since_full_verify,
        "open_findings": open_findings,
    }
    if _flag(args, "json"):
        _emit_json(payload)
        return 0

    renderer = _get_renderer(args)
    renderer.kv("Document", store.path)
    renderer.kv("Work unit", document.work_unit)
    renderer.status("Status", document.status.value)
    renderer.kv("Progress", f"{passed}/{total} passed")
    renderer.kv("Next", decision.task_id or decision.outcome.value)
    if decision.diagnostic:
        renderer.kv("Diagnostic", decision.diagnostic)
    renderer.kv("Consecutive retries", retry.consecutive_retries)
    if retry.last_replan_reason:
        renderer.kv("Last replan reason", retry.last_replan_reason)
    renderer.table(
        ["ID", "PRIORITY", "ATTEMPTS", "STATE", "TITLE"],
        [
            [
                task.id,
                str(task.priority),
                str(task.attempts),
                "passed" if task.passes else "pending",
                task.title,
            ]
            for task in document.tasks
        ],
        title="Tasks:",
    )
    if open_findings:
        renderer.section("Open review findings:")
        renderer.items(open_findings)
    return 0


def _cmd_backfill(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    store = _require_store(config)
    with _hold_lock(config):
        document = _load_document(store)
        changed = store.backfill_defaults(document)
        if changed:
            store.save(document)
    renderer = _get_renderer(args)
    renderer.kv("Document", store.path)
    renderer.kv("Changed", str(changed).lower())
    return 0


def _cmd_wisp_add(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    store = _require_store(config)
    document = _load_document(store)
    ttl_minutes = getattr(args, "ttl_minutes", None)
    if ttl_minutes is None:
        ttl_minutes = config["wisps"]["default_ttl_minutes"]
    if ttl_minutes < 1:
        raise CLIError("--ttl-minutes must be >= 1", exit_code=EXIT_CONFIG)

    async def _add() -> Any:
        thread = await open_thread(config, document)
        return await create_wisp(
            thread,
            task_uid=_optional_str(getattr(args, "task_uid", None)),
            note=str(args.note),
            ttl=timedelta(minutes=ttl_minutes),
            now=utc_now(),
        )

    wisp = _run_remote(_add())
    renderer = _get_renderer(args)
    renderer.kv("Wisp", wisp.id)
    renderer.kv("Expires", wisp.expires_at)
    return 0


def _cmd_wisp_list(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    document = _load_document(_require_store(config))

    async def _list() -> Any:
        thread = await open_thread(config, document)
        return collect_active_wisps(await thread.list_comments(), utc_now())

    wisps = _run_remote(_list())
    if _flag(args, "json"):
        _emit_json({"command": "wisp list", "wisps": [item.to_dict() for item in wisps]})
        return 0

    renderer = _get_renderer(args)
    if not wisps:
        renderer.text("No active wisps.")
        return 0
    renderer.table(
        ["ID", "EXPIRES", "TASK UID", "NOTE"],
        [[item.id, item.expires_at, item.task_uid or "", item.note] for item in wisps],
    )
    return 0


def _cmd_wisp_promote(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    store = _require_store(config)
    target = PromotionTarget(args.target)

    with _hold_lock(config):
        document = _load_document(store)

        async def _promote() -> Any:
            thread = await open_thread(config, document)
            located = find_wisp(await thread.list_comments(), args.wisp_id)
            if located is None:
                raise CLIError(f"unknown wisp: {args.wisp_id}", exit_code=EXIT_CONFIG)
            return await promote_wisp(
                thread,
                document,
                located[1],
                target,
                work_unit=document.work_unit,
                now=utc_now(),
            )

        promotion = _run_remote(_promote())
        if promotion.tasks:
            store.save(document)

    renderer = _get_renderer(args)
    renderer.kv("Wisp", promotion.wisp_id)
    renderer.kv("Target", promotion.target.value)
    if promotion.tasks:
        renderer.kv("Tasks", ", ".join(task.id for task in promotion.tasks))
    if not promotion.marked_promoted:
        renderer.warning("wisp comment was not marked promoted; it may be promoted again")
    return 0


def _cmd_review_approve(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    store = _require_store(config)
    with _hold_lock(config):
        document = _load_document(store)
        try:
            finding = approve_finding(document, args.review_id, args.finding_id)
        except KeyError as exc:
            raise CLIError(str(exc.args[0]), exit_code=EXIT_CONFIG) from exc
        store.save(document)
    renderer = _get_renderer(args)
    renderer.kv("Finding", f"{finding.review_id}/{finding.finding_id}")
    renderer.kv("Status", finding.status.value)
    return 0


def _cmd_config(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    profile = _optional_str(getattr(args, "profile", None))
    redacted = effective_config(config)

    if _flag(args, "json"):
        _emit_json({"command": "config", "active_profile": profile, "config": redacted})
        return 0

    renderer = _get_renderer(args)
    renderer.kv("Active profile", profile or "(default)")
    renderer.text(json.dumps(redacted, indent=2, sort_keys=True, ensure_ascii=False))
    return 0


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _emit_json(payload: Mapping[str, object]) -> None:
    """Emit a JSON payload to stdout with deterministic formatting."""

    print(json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False))


def _get_renderer(args: argparse.Namespace) -> CLIRenderer:
    return create_renderer(no_color=_flag(args, "no_color"), verbose=_flag(args, "verbose"))


def _repo_root(args: argparse.Namespace) -> Path:
    raw = _optional_str(getattr(args, "repo_root", None)) or "."
    candidate = Path(raw).expanduser().resolve()
    if not candidate.is_dir():
        raise CLIError(f"repo root is not a directory: {candidate}", exit_code=EXIT_CONFIG)
    return candidate


def _load_effective_config(args: argparse.Namespace) -> dict[str, Any]:
    repo_root = _repo_root(args)
    config_path = _optional_str(getattr(args, "config_path", None))
    profile = _optional_str(getattr(args, "profile", None))
    overrides: dict[str, object] = {}
    document_path = _optional_str(getattr(args, "document_path", None))
    if document_path is not None:
        overrides["paths.document"] = str(Path(document_path).expanduser().resolve())

    try:
        return load_config(
            config_path,
            profile=profile,
            cli_overrides=overrides,
            search_dir=repo_root,
        )
    except (ConfigLoadError, ConfigValidationError) as exc:
        raise CLIError(str(exc), exit_code=EXIT_CONFIG) from exc


def _observability(config: Mapping[str, Any], args: argparse.Namespace) -> dict[str, Any]:
    observability = dict(config["observability"])
    if _flag(args, "verbose"):
        observability["log_level"] = "DEBUG"
    return observability


def _require_store(config: Mapping[str, Any]) -> TaskGraphStore:
    store = TaskGraphStore(config["paths"]["document"])
    if not store.exists():
        raise CLIError(f"task graph document not found: {store.path}", exit_code=EXIT_CONFIG)
    return store


def _load_document(store: TaskGraphStore) -> Any:
    try:
        return store.load()
    except CorruptStateError as exc:
        raise CLIError(str(exc), exit_code=EXIT_CONFIG) from exc


@contextlib.contextmanager
def _hold_lock(config: Mapping[str, Any]) -> Iterator[LoopLock]:
    lock = LoopLock(config["paths"]["lock_file"])
    try:
        lock.acquire()
    except LockContentionError as exc:
        raise CLIError(
            f"another issue-loop process holds {exc.lock_path}", exit_code=EXIT_LOCK
        ) from exc
    try:
        yield lock
    finally:
        lock.release()


def _run_remote(coro: Any) -> Any:
    try:
        return asyncio.run(coro)
    except LogWriteFailure as exc:
        raise CLIError(f"issue thread unavailable: {exc}", exit_code=EXIT_INTERNAL) from exc
    except ValueError as exc:
        raise CLIError(str(exc), exit_code=EXIT_CONFIG) from exc


def _optional_str(value: object) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise CLIError(f"expected string argument, got {type(value).__name__}", exit_code=2)
    normalized = value.strip()
    return normalized or None


def _flag(args: argparse.Namespace, name: str) -> bool:
    return bool(getattr(args, name, False))


__all__ = ["CLIError", "OUTCOME_EXIT_CODES", "build_parser", "run_cli"]
