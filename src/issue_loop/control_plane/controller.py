"""
issue-loop — main loop controller

File: src/issue_loop/control_plane/controller.py
Last updated: 2026-10-17

Purpose
- Drive one work unit's task graph to completion: schedule, prompt the agent, confirm its
  task log, verify authoritatively, run guards, record the outcome, fan out review.

What should be included in this file
- ``LoopSettings`` derived from the validated config mapping.
- ``LoopController.run`` returning a ``LoopResult`` with an explicit terminal outcome.
- ``create_controller`` wiring the store, remote thread, agents, prompts and git.

Functional requirements
- Pass/fail comes only from verification and guards; agent self-reports are advisory.
- The document is saved after every state change so an interrupted run resumes cleanly.
- Terminal states (``blocked``, ``replan_required``, ``complete``) are written to the document.
- ``LogWriteFailure`` is the only error recovered locally; everything else propagates.

Non-functional requirements
- Exactly one task in flight; review passes run beside the loop as asyncio tasks.
"""

from __future__ import annotations

import enum
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog

from issue_loop.constants import (
    BLOCKED_LABEL,
    TASK_LOG_EVENT_HEADING,
    TASK_LOG_TITLE,
    WISP_EVENT_HEADING,
)
from issue_loop.control_plane.compaction import maybe_post_compaction_summary
from issue_loop.control_plane.discovery import enqueue_discovered_tasks
from issue_loop.control_plane.retry import (
    mark_replan_required,
    should_trigger_stale_plan,
    update_execution_retry_counters,
)
from issue_loop.control_plane.scheduler import ScheduleOutcome, Scheduler
from issue_loop.domain.models import DiscoverySource, DocumentStatus
from issue_loop.domain.policies import (
    TaskSizingLimits,
    task_requires_browser_verification,
    update_task_state_authoritative,
    validate_task_sizing,
)
from issue_loop.errors import (
    AttemptBudgetExhausted,
    IssueLoopError,
    LogWriteFailure,
    StalePlanDetected,
    VerificationFailure,
)
from issue_loop.event_log.confirmation import confirm_task_log
from issue_loop.event_log.extractor import EventCursor
from issue_loop.event_log.thread import GhIssueThread
from issue_loop.integration_plane.git import GitWorkspace
from issue_loop.knowledge_plane.context import (
    build_context_manifest,
    build_issue_context_bundle,
    compute_context_manifest_hash,
    ingest_task_patterns_into_document,
)
from issue_loop.observability.logging import correlation_scope
from issue_loop.review_plane.lane import (
    ReviewLane,
    ReviewPolicy,
    ingest_review_findings,
    review_enabled,
    run_final_review,
)
from issue_loop.synthesis_plane.agent import CliAgent
from issue_loop.synthesis_plane.prompts import PromptTemplateEngine
from issue_loop.utils.clock import format_utc, utc_now
from issue_loop.utils.process import LocalSubprocessExecutor
from issue_loop.verification_plane.guards import GateMode, GuardPolicy, GuardReport, run_guards
from issue_loop.verification_plane.runner import (
    VerifySuiteResult,
    increment_tasks_since_full_verify,
    record_full_verify_success,
    run_verify_suite,
    select_global_commands,
)

if TYPE_CHECKING:
    from datetime import datetime

    from issue_loop.domain.models import Task, TaskGraphDocument
    from issue_loop.event_log.envelopes import TaskLogEnvelope
    from issue_loop.event_log.thread import Comment, CommentThread
    from issue_loop.persistence.task_graph_store import TaskGraphStore
    from issue_loop.synthesis_plane.agent import ExecutionAgent
    from issue_loop.utils.process import CommandExecutor


class LoopOutcome(enum.StrEnum):
    COMPLETE = "complete"
    BLOCKED = "blocked"
    REPLAN_REQUIRED = "replan_required"
    ITERATION_CAP = "iteration_cap"


class SizingMode(enum.StrEnum):
    ENFORCE = "enforce"
    WARN = "warn"
    OFF = "off"


@dataclass(frozen=True, slots=True)
class LoopSettings:
    """Typed view over the validated config used by the loop."""

    max_iterations: int = 25
    max_attempts: int = 3
    confirmation_window: int = 5
    context_max_task_logs: int = 10
    verify_timeout_seconds: float = 600.0
    max_output_lines: int = 200
    full_global_commands: tuple[str, ...] = ()
    fast_global_commands: tuple[str, ...] = ()
    security_commands: tuple[str, ...] = ()
    full_every_n_tasks: int = 5
    run_full_before_completion: bool = True
    guard_policy: GuardPolicy = field(default_factory=GuardPolicy)
    same_task_threshold: int = 2
    global_threshold: int = 5
    review_policy: ReviewPolicy = field(default_factory=ReviewPolicy)
    sizing_mode: SizingMode = SizingMode.WARN
    sizing_limits: TaskSizingLimits = field(default_factory=TaskSizingLimits)
    workdir: Path = field(default_factory=Path.cwd)

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> LoopSettings:
        loop = config["loop"]
        verification = config["verification"]
        guards = config["guards"]
        retry = config["retry"]
        review = config["review"]
        sizing = config["task_sizing"]
        return cls(
            max_iterations=loop["max_iterations"],
            max_attempts=loop["max_attempts"],
            confirmation_window=loop["confirmation_window"],
            context_max_task_logs=loop["context_max_task_logs"],
            verify_timeout_seconds=verification["timeout_seconds"],
            max_output_lines=verification["max_output_lines"],
            full_global_commands=tuple(verification["full_global_commands"]),
            fast_global_commands=tuple(verification["fast_global_commands"]),
            security_commands=tuple(verification["security_commands"]),
            full_every_n_tasks=verification["full_every_n_tasks"],
            run_full_before_completion=verification["run_full_before_completion"],
            guard_policy=GuardPolicy(
                gate_mode=GateMode(guards["gate_mode"]),
                event_required=guards["event_required"],
                min_search_queries=guards["min_search_queries"],
                placeholder_scan=guards["placeholder_scan"],
                placeholder_patterns=tuple(guards["placeholder_patterns"]),
                placeholder_exclude=tuple(guards["placeholder_exclude"]),
                browser_required_for_ui=guards["browser_required_for_ui"],
                allowed_browser_tools=tuple(guards["allowed_browser_tools"]),
                ui_keywords=tuple(guards["ui_keywords"]),
                context_manifest_required=guards["context_manifest_required"],
            ),
            same_task_threshold=retry["same_task_threshold"],
            global_threshold=retry["global_threshold"],
            review_policy=ReviewPolicy(
                enabled=review["enabled"],
                auto_enqueue_severities=tuple(review["auto_enqueue_severities"]),
                min_confidence=review["min_confidence"],
                blocking_severities=tuple(review["blocking_severities"]),
                drain_timeout_seconds=review["drain_timeout_seconds"],
            ),
            sizing_mode=SizingMode(sizing["mode"]),
            sizing_limits=TaskSizingLimits(
                max_acceptance_criteria=sizing["max_acceptance_criteria"],
                max_verify_commands=sizing["max_verify_commands"],
                max_description_chars=sizing["max_description_chars"],
            ),
            workdir=Path(config["paths"]["workdir"]),
        )


@dataclass(frozen=True, slots=True)
class AttemptOutcome:
    """Authoritative verdict for one attempt at one task."""

    task_id: str
    attempt: int
    passed: bool
    verify: VerifySuiteResult
    guards: GuardReport
    event: TaskLogEnvelope | None = None
    full_verify: bool = False
    advisory_result: str | None = None
    base_ref: str | None = None
    head_ref: str | None = None
    errors: tuple[IssueLoopError, ...] = ()

    @property
    def failure_reasons(self) -> tuple[str, ...]:
        reasons = [f"verify failed: {command}" for command in self.verify.failed]
        reasons.extend(f"{item.name}: {item.reason}" for item in self.guards.failures)
        return tuple(reasons)


@dataclass(frozen=True, slots=True)
class LoopResult:
    outcome: LoopOutcome
    iterations: int
    reason: str = ""
    last_task_id: str | None = None
    attempts: tuple[AttemptOutcome, ...] = ()
    errors: tuple[IssueLoopError, ...] = ()

    def to_dict(self) -> dict[str, object]:
        return {
            "outcome": self.outcome.value,
            "iterations": self.iterations,
            "reason": self.reason,
            "lastTaskId": self.last_task_id,
            "attempts": [
                {"taskId": item.task_id, "attempt": item.attempt, "passed": item.passed}
                for item in self.attempts
            ],
            "errors": [
                {"type": type(error).__name__, "message": str(error)} for error in self.errors
            ],
        }


class LoopController:
    """Single-instance driver for one work unit. Callers hold the process lock."""

    def __init__(
        self,
        *,
        store: TaskGraphStore,
        thread: CommentThread,
        agent: ExecutionAgent,
        prompts: PromptTemplateEngine,
        settings: LoopSettings,
        git: GitWorkspace | None = None,
        review_lane: ReviewLane | None = None,
        executor: CommandExecutor | None = None,
        clock: Callable[[], datetime] = utc_now,
        logger: Any | None = None,
    ) -> None:
        self._store = store
        self._thread = thread
        self._agent = agent
        self._prompts = prompts
        self._settings = settings
        self._git = git
        self._review_lane = review_lane
        self._executor = executor
        self._clock = clock
        self._log = logger if logger is not None else structlog.get_logger(__name__)
        self._scheduler = Scheduler(max_attempts=settings.max_attempts, logger=self._log)
        self._review_cursor = EventCursor()

    @property
    def settings(self) -> LoopSettings:
        return self._settings

    async def run(self, *, max_iterations: int | None = None) -> LoopResult:
        limit = max_iterations if max_iterations is not None else self._settings.max_iterations
        if limit < 1:
            raise ValueError("max_iterations must be >= 1")

        document = self._store.load_and_backfill()
        if document.status is DocumentStatus.REPLAN_REQUIRED:
            reason = document.execution_retry.last_replan_reason or "replan required"
            self._log.warning("loop_refused_replan_pending", reason=reason)
            return LoopResult(LoopOutcome.REPLAN_REQUIRED, 0, reason=reason)
        if document.status is DocumentStatus.BLOCKED:
            self._log.info("loop_resuming_blocked_document", work_unit=document.work_unit)
            document.status = DocumentStatus.ACTIVE
            self._store.save(document)

        attempts: list[AttemptOutcome] = []
        try:
            for iteration in range(1, limit + 1):
                with correlation_scope(work_unit=document.work_unit, iteration=iteration):
                    result = await self._iterate(document, iteration, attempts)
                if result is not None:
                    return result
            self._log.warning("loop_iteration_cap_reached", iterations=limit)
            return LoopResult(
                LoopOutcome.ITERATION_CAP,
                limit,
                reason=f"stopped after {limit} iterations",
                last_task_id=attempts[-1].task_id if attempts else None,
                attempts=tuple(attempts),
            )
        finally:
            if self._review_lane is not None:
                await self._review_lane.drain(self._settings.review_policy.drain_timeout_seconds)

    async def _iterate(
        self,
        document: TaskGraphDocument,
        iteration: int,
        attempts: list[AttemptOutcome],
    ) -> LoopResult | None:
        reviewing = self._reviewing(document)
        if reviewing:
            await self._ingest_reviews(document)

        decision = self._scheduler.schedule(document)
        last_task_id = attempts[-1].task_id if attempts else None

        if decision.outcome is ScheduleOutcome.COMPLETE:
            return await self._complete(document, iteration, attempts)

        if decision.outcome is not ScheduleOutcome.SELECTED or decision.task_id is None:
            return await self._block(
                document,
                iteration,
                decision.diagnostic or decision.outcome.value,
                attempts,
                errors=_exhaustion_errors(document, decision.exhausted),
            )

        task = document.task_by_id(decision.task_id)
        if task is None:
            raise RuntimeError(f"scheduler selected unknown task {decision.task_id}")

        violations = self._sizing_violations(task)
        if violations and self._settings.sizing_mode is SizingMode.ENFORCE:
            reason = "task sizing limits exceeded: " + "; ".join(violations)
            mark_replan_required(document, reason, self._clock(), source="task_sizing")
            self._store.save(document)
            return LoopResult(
                LoopOutcome.REPLAN_REQUIRED,
                iteration,
                reason=reason,
                last_task_id=task.id,
                attempts=tuple(attempts),
                errors=(StalePlanDetected(reason),),
            )

        with correlation_scope(task_id=task.id, task_uid=task.uid, attempt=task.attempts + 1):
            outcome = await self._run_attempt(document, task)
        attempts.append(outcome)
        last_task_id = task.id

        now = self._clock()
        update_task_state_authoritative(task, passed=outcome.passed, attempted_at=format_utc(now))
        update_execution_retry_counters(
            document.execution_retry, task.id, outcome.passed, logger=self._log
        )
        self._update_cadence(document, outcome, now)
        self._store.save(document)

        if outcome.event is not None:
            await self._absorb_task_log(document, task, outcome.event, now)

        if outcome.passed and reviewing and self._review_lane is not None:
            self._review_lane.spawn(task, (outcome.base_ref, outcome.head_ref))

        signal = should_trigger_stale_plan(
            document.execution_retry,
            self._settings.same_task_threshold,
            self._settings.global_threshold,
            logger=self._log,
        )
        if signal is not None:
            mark_replan_required(document, signal.reason, now, logger=self._log)
            self._store.save(document)
            return LoopResult(
                LoopOutcome.REPLAN_REQUIRED,
                iteration,
                reason=signal.reason,
                last_task_id=last_task_id,
                attempts=tuple(attempts),
                errors=(signal.to_error(),),
            )
        return None

    async def _run_attempt(self, document: TaskGraphDocument, task: Task) -> AttemptOutcome:
        settings = self._settings
        attempt_number = task.attempts + 1
        base_ref = await self._git.head_async() if self._git is not None else None

        comments, high_water = await self._comments_and_mark()
        bundle = build_issue_context_bundle(
            document,
            comments,
            task,
            self._clock(),
            max_task_logs=settings.context_max_task_logs,
        )
        manifest_hash = compute_context_manifest_hash(build_context_manifest(bundle))
        rendered = self._prompts.render_task_prompt(
            {
                "work_unit": document.work_unit,
                "task": bundle.task,
                "context": bundle.to_dict(),
                "context_manifest_hash": manifest_hash,
                "attempt": attempt_number,
                "max_attempts": settings.max_attempts,
                "event_heading": TASK_LOG_EVENT_HEADING,
                "task_log_title": TASK_LOG_TITLE,
                "browser_required": task_requires_browser_verification(
                    task, settings.guard_policy.ui_keywords
                ),
                "wisp_heading": WISP_EVENT_HEADING,
            }
        )
        self._log.info(
            "attempt_started",
            task_id=task.id,
            attempt=attempt_number,
            prompt_hash=rendered.prompt_hash,
            context_manifest_hash=manifest_hash,
        )

        output = await self._agent.execute(rendered.prompt, cwd=settings.workdir)

        event = await confirm_task_log(
            self._thread,
            work_unit=document.work_unit,
            task_id=task.id,
            expected_uid=task.uid,
            attempt=attempt_number,
            after_comment_id=high_water,
            window=settings.confirmation_window,
            logger=self._log,
        )

        global_commands, full_verify = select_global_commands(
            document.verification,
            full_commands=settings.full_global_commands,
            fast_commands=settings.fast_global_commands,
            full_every_n_tasks=settings.full_every_n_tasks,
        )
        verify = await run_verify_suite(
            task.verify_commands,
            global_commands,
            settings.security_commands,
            timeout_per_command=settings.verify_timeout_seconds,
            max_output_lines=settings.max_output_lines,
            cwd=str(settings.workdir),
            executor=self._executor,
            logger=self._log,
        )

        diff_text = await self._git.attempt_diff_async(base_ref) if self._git is not None else ""
        head_ref = await self._git.head_async() if self._git is not None else None
        guards = run_guards(
            settings.guard_policy,
            task=task,
            event=event,
            diff_text=diff_text,
            comments=await self._comments_or_empty(),
            context_manifest_hash=manifest_hash,
            logger=self._log,
        )
        errors: list[IssueLoopError] = []
        if not verify.all_passed:
            errors.append(VerificationFailure(task.id, verify.failed))
        if not guards.passed and settings.guard_policy.gate_mode is GateMode.ENFORCE:
            errors.append(guards.violation(task.id))
        passed = not errors

        if output.advisory_result is not None and (output.advisory_result == "PASS") != passed:
            self._log.info(
                "advisory_result_overruled",
                task_id=task.id,
                advisory_result=output.advisory_result,
                passed=passed,
            )
        self._log.info(
            "attempt_finished",
            task_id=task.id,
            attempt=attempt_number,
            passed=passed,
            event_confirmed=event is not None,
            verify_failed=list(verify.failed),
            guard_failures=[item.name for item in guards.failures],
            errors=[str(error) for error in errors],
        )
        return AttemptOutcome(
            task_id=task.id,
            attempt=attempt_number,
            passed=passed,
            verify=verify,
            guards=guards,
            event=event,
            full_verify=full_verify,
            advisory_result=output.advisory_result,
            base_ref=base_ref,
            head_ref=head_ref,
            errors=tuple(errors),
        )

    async def _absorb_task_log(
        self,
        document: TaskGraphDocument,
        task: Task,
        event: TaskLogEnvelope,
        now: datetime,
    ) -> None:
        if event.discovered:
            enqueue_discovered_tasks(
                document,
                parent_id=task.id,
                parent_uid=task.uid,
                parent_priority=task.priority,
                candidates=event.discovered,
                work_unit=document.work_unit,
                discovery_source=DiscoverySource.TASK_LOG,
                logger=self._log,
            )
        ingest_task_patterns_into_document(document, event, now=now, logger=self._log)
        self._store.save(document)

        await maybe_post_compaction_summary(document, self._thread, now=now, logger=self._log)
        self._store.save(document)

    async def _complete(
        self,
        document: TaskGraphDocument,
        iteration: int,
        attempts: list[AttemptOutcome],
    ) -> LoopResult | None:
        settings = self._settings
        if (
            settings.run_full_before_completion
            and settings.full_global_commands
            and document.verification.tasks_since_full_verify > 0
        ):
            verify = await run_verify_suite(
                (),
                settings.full_global_commands,
                settings.security_commands,
                timeout_per_command=settings.verify_timeout_seconds,
                max_output_lines=settings.max_output_lines,
                cwd=str(settings.workdir),
                executor=self._executor,
                logger=self._log,
            )
            if not verify.all_passed:
                return await self._block(
                    document,
                    iteration,
                    "full verification failed before completion: " + ", ".join(verify.failed),
                    attempts,
                )
            record_full_verify_success(document.verification, self._clock())
            self._store.save(document)

        if self._reviewing(document) and self._review_lane is not None:
            await self._review_lane.drain(settings.review_policy.drain_timeout_seconds)
            base_ref = _first_base_ref(attempts)
            head_ref = await self._git.head_async() if self._git is not None else None
            final = await run_final_review(
                self._review_lane,
                document,
                self._thread,
                settings.review_policy,
                base_ref=base_ref,
                head_ref=head_ref,
                cursor=self._review_cursor,
                logger=self._log,
            )
            self._store.save(document)
            if final.new_task_ids:
                self._log.info("completion_deferred", new_task_ids=list(final.new_task_ids))
                return None
            if not final.clean:
                if final.review_failed:
                    reason = "final review did not produce a usable review event"
                else:
                    pending = ", ".join(
                        f"{item.review_id}/{item.finding_id}" for item in final.blocking_findings
                    )
                    reason = f"blocking review findings await approval: {pending}"
                return await self._block(document, iteration, reason, attempts)

        document.status = DocumentStatus.COMPLETE
        self._store.save(document)
        passing, total = document.progress()
        self._log.info("loop_complete", passing=passing, total=total)
        return LoopResult(
            LoopOutcome.COMPLETE,
            iteration,
            reason=f"{passing}/{total} tasks passing",
            last_task_id=attempts[-1].task_id if attempts else None,
            attempts=tuple(attempts),
        )

    async def _block(
        self,
        document: TaskGraphDocument,
        iteration: int,
        reason: str,
        attempts: list[AttemptOutcome],
        *,
        errors: tuple[IssueLoopError, ...] = (),
    ) -> LoopResult:
        document.status = DocumentStatus.BLOCKED
        self._store.save(document)
        self._log.warning("loop_blocked", reason=reason, errors=[str(error) for error in errors])
        try:
            await self._thread.add_label(BLOCKED_LABEL)
        except LogWriteFailure as exc:
            self._log.warning("blocked_label_failed", detail=str(exc))
        return LoopResult(
            LoopOutcome.BLOCKED,
            iteration,
            reason=reason,
            last_task_id=attempts[-1].task_id if attempts else None,
            attempts=tuple(attempts),
            errors=errors,
        )

    async def _ingest_reviews(self, document: TaskGraphDocument) -> None:
        try:
            comments = await self._thread.list_comments()
        except LogWriteFailure as exc:
            self._log.warning("review_ingest_skipped", detail=str(exc))
            return
        ingested = ingest_review_findings(
            document,
            comments,
            self._settings.review_policy,
            cursor=self._review_cursor,
            logger=self._log,
        )
        if ingested.changed:
            self._store.save(document)

    async def _comments_or_empty(self) -> list[Comment]:
        try:
            return await self._thread.list_comments()
        except LogWriteFailure as exc:
            self._log.warning("remote_log_unreadable", detail=str(exc))
            return []

    async def _comments_and_mark(self) -> tuple[list[Comment], int | None]:
        """Return the thread and its newest comment id; the mark is ``None`` when unreadable."""

        try:
            comments = await self._thread.list_comments()
        except LogWriteFailure as exc:
            self._log.warning("remote_log_unreadable", detail=str(exc))
            return [], None
        return comments, max((comment.id for comment in comments), default=0)

    def _reviewing(self, document: TaskGraphDocument) -> bool:
        return review_enabled(document, self._settings.review_policy.enabled)

    def _sizing_violations(self, task: Task) -> list[str]:
        if self._settings.sizing_mode is SizingMode.OFF:
            return []
        violations = validate_task_sizing(task, self._settings.sizing_limits)
        for violation in violations:
            self._log.warning(
                "task_sizing_violation",
                task_id=task.id,
                violation=violation,
                mode=self._settings.sizing_mode.value,
            )
        return violations

    def _update_cadence(
        self, document: TaskGraphDocument, outcome: AttemptOutcome, now: datetime
    ) -> None:
        if not outcome.passed:
            return
        if outcome.full_verify:
            record_full_verify_success(document.verification, now)
        else:
            increment_tasks_since_full_verify(document.verification)


def _exhaustion_errors(
    document: TaskGraphDocument, exhausted: Sequence[str]
) -> tuple[AttemptBudgetExhausted, ...]:
    errors = []
    for task_id in exhausted:
        task = document.task_by_id(task_id)
        errors.append(AttemptBudgetExhausted(task_id, task.attempts if task is not None else 0))
    return tuple(errors)


def resolve_issue_number(config: Mapping[str, Any], document: TaskGraphDocument) -> int:
    """Configured ``github.issue_number`` wins; otherwise the document's ``issueNumber``."""

    configured = config["github"]["issue_number"]
    if configured > 0:
        return int(configured)
    raw = str(document.work_unit).strip().lstrip("#")
    if not raw.isdigit() or int(raw) <= 0:
        raise ValueError(
            f"document issueNumber {document.work_unit!r} is not a GitHub issue number; "
            "set github.issue_number"
        )
    return int(raw)


async def open_thread(
    config: Mapping[str, Any],
    document: TaskGraphDocument,
    *,
    logger: Any | None = None,
) -> GhIssueThread:
    github = config["github"]
    workdir = str(config["paths"]["workdir"])
    repo = github["repo"] or await GhIssueThread.resolve_repo(
        gh_binary=github["gh_binary"], cwd=workdir
    )
    return GhIssueThread(
        repo,
        resolve_issue_number(config, document),
        gh_binary=github["gh_binary"],
        timeout_seconds=github["timeout_seconds"],
        cwd=workdir,
        logger=logger,
    )


def create_agent(
    config: Mapping[str, Any],
    *,
    reviewer: bool = False,
    logger: Any | None = None,
) -> CliAgent:
    agent = config["agent"]
    backend = agent["backend"]
    model = agent["model"]
    if reviewer:
        review = config["review"]
        if review["backend"] != "inherit":
            backend = review["backend"]
        model = review["model"] or model
    binary_path = agent["binary_path"] if backend == agent["backend"] else ""
    timeout = agent["timeout_seconds"]
    return CliAgent(
        backend=backend,
        binary_path=binary_path or None,
        model=model,
        extra_args=agent["extra_args"],
        timeout_seconds=timeout if timeout > 0 else None,
        logger=logger,
    )


async def create_controller(
    config: Mapping[str, Any],
    *,
    store: TaskGraphStore,
    logger: Any | None = None,
) -> LoopController:
    """Wire a controller from validated config. The document must already exist."""

    settings = LoopSettings.from_config(config)
    document = store.load()
    thread = await open_thread(config, document, logger=logger)
    template_dir = config["paths"]["template_dir"]
    prompts = PromptTemplateEngine(template_root=template_dir or None)
    git = GitWorkspace(settings.workdir)
    workspace = git if git.is_repository() else None

    review_lane: ReviewLane | None = None
    if review_enabled(document, settings.review_policy.enabled):
        review_lane = ReviewLane(
            reviewer=create_agent(config, reviewer=True, logger=logger),
            thread=thread,
            prompts=prompts,
            work_unit=document.work_unit,
            cwd=settings.workdir,
            git=workspace,
            logger=logger,
        )

    return LoopController(
        store=store,
        thread=thread,
        agent=create_agent(config, logger=logger),
        prompts=prompts,
        settings=settings,
        git=workspace,
        review_lane=review_lane,
        executor=LocalSubprocessExecutor(),
        logger=logger,
    )


def _first_base_ref(attempts: Sequence[AttemptOutcome]) -> str | None:
    for attempt in attempts:
        if attempt.base_ref:
            return attempt.base_ref
    return None


__all__ = [
    "AttemptOutcome",
    "LoopController",
    "LoopOutcome",
    "LoopResult",
    "LoopSettings",
    "SizingMode",
    "create_agent",
    "create_controller",
    "open_thread",
    "resolve_issue_number",
]
