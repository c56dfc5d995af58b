"""The sequential build loop.

One agent invocation per iteration, followed by one failure classification,
one recovery decision, one scope check and one replan check. The deadline is
checked before each iteration starts; an in-flight agent call is never
interrupted.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path

from rich.console import Console
from rich.markup import escape

from .agent import AgentResult, run_agent
from .config import BuildloopConfig, parse_deadline
from .plan import PlanFileError, PlanItem, get_by_id, mark_deferred, next_unit, read_plan, write_plan
from .progress import append_progress, format_deferral_line, format_failure_line, format_replan_line
from .prompt import COMPLETE_SIGNAL, build_iteration_prompt, with_guidance
from .recovery import RecoveryManager, contains_failure_indicators, parse_recovery_strategy
from .replan import ReplanManager, ReplanResult, parse_replan_strategy
from .scope import Constraints, ScopeManager, format_deferral_reason, suggest_simplification

logger = logging.getLogger(__name__)

AgentRunner = Callable[[str, str, int | None], AgentResult]


@dataclass
class RunSummary:
    """End-of-run counts."""

    total_iterations: int
    iterations_run: int = 0
    completed: int = 0
    failed: int = 0
    skipped: int = 0
    recovered: int = 0
    complete_signal: bool = False
    errors: list[str] = field(default_factory=list)
    replans: list[ReplanResult] = field(default_factory=list)
    start_time: datetime = field(default_factory=datetime.now)
    end_time: datetime | None = None

    @property
    def duration(self) -> timedelta:
        end = self.end_time or datetime.now()
        return end - self.start_time


def _default_runner(agent_cmd: str, prompt: str, timeout: int | None) -> AgentResult:
    return run_agent(agent_cmd, prompt, timeout=timeout)


class BuildLoop:
    """Drives the agent over the plan until completion or budget exhaustion."""

    def __init__(
        self,
        config: BuildloopConfig,
        console: Console | None = None,
        agent_runner: AgentRunner | None = None,
        work_dir: Path | None = None,
    ):
        self.config = config
        self.console = console or Console()
        self.agent_runner = agent_runner or _default_runner
        self.plan_path = Path(config.run.plan_file)
        self.progress_path = Path(config.run.progress_file)
        self.quiet = config.ui.quiet

        self.recovery = RecoveryManager(
            max_retries=config.recovery.max_retries,
            default_strategy=parse_recovery_strategy(config.recovery.strategy),
            work_dir=work_dir,
        )
        self.replan_strategy = parse_replan_strategy(config.replan.strategy)
        self.replanner = ReplanManager(
            self.plan_path,
            config.run.agent_cmd,
            auto_replan=config.replan.auto,
            threshold=config.replan.threshold,
            agent_timeout=config.run.agent_timeout or None,
        )
        self.scope = ScopeManager(
            Constraints(
                max_iterations_per_feature=config.scope.limit,
                deadline=parse_deadline(config.scope.deadline),
            )
        )

        self.summary = RunSummary(total_iterations=config.run.iterations)
        self._plans: list[PlanItem] = []
        self._current: PlanItem | None = None
        self._guidance = ""
        self._consecutive_failures = 0
        self._skipped: set[int] = set()

    @property
    def current_unit_id(self) -> int:
        return self._current.id if self._current else 0

    def _print(self, message: str) -> None:
        if not self.quiet:
            self.console.print(message)

    def _load_plans(self) -> list[PlanItem]:
        try:
            self._plans = read_plan(self.plan_path)
        except PlanFileError as e:
            logger.warning("Keeping previous plan: %s", e)
        return self._plans

    def run(self) -> RunSummary:
        """Run up to ``config.run.iterations`` iterations.

        Raises:
            PlanFileError: If the plan file cannot be read at start-up.
        """
        self._plans = read_plan(self.plan_path)
        self._print_header()

        for iteration in range(1, self.config.run.iterations + 1):
            if self.scope.is_deadline_exceeded():
                self._print("[yellow]Deadline exceeded - stopping execution[/yellow]")
                break

            self.summary.iterations_run = iteration
            if self._run_iteration(iteration):
                break
        else:
            self._print(
                f"[dim]Completed {self.config.run.iterations} iteration(s) "
                "without completion signal.[/dim]"
            )

        self.summary.end_time = datetime.now()
        self.summary.recovered = self.recovery.recovered_count
        return self.summary

    def _print_header(self) -> None:
        cfg = self.config
        self._print("[bold cyan]buildloop - iterative development loop[/bold cyan]")
        self._print(f"[dim]Plan file: {cfg.run.plan_file}[/dim]")
        self._print(f"[dim]Progress file: {cfg.run.progress_file}[/dim]")
        self._print(f"[dim]Iterations: {cfg.run.iterations}[/dim]")
        self._print(f"[dim]Agent command: {cfg.run.agent_cmd}[/dim]")
        self._print(
            f"[dim]Recovery strategy: {cfg.recovery.strategy} "
            f"(max {cfg.recovery.max_retries} retries)[/dim]"
        )
        if cfg.scope.limit > 0 or cfg.scope.deadline:
            limit = str(cfg.scope.limit) if cfg.scope.limit > 0 else "unlimited"
            deadline = cfg.scope.deadline or "none"
            self._print(f"[dim]Scope control: max {limit} iterations/unit, deadline {deadline}[/dim]")
        if cfg.replan.auto:
            self._print(
                f"[dim]Auto-replan: enabled (strategy: {cfg.replan.strategy}, "
                f"threshold: {cfg.replan.threshold} failures)[/dim]"
            )
        self._print("")

    def _select_unit(self) -> None:
        unit = next_unit(self._load_plans(), exclude=self._skipped)
        if unit is None or unit.id == self.current_unit_id:
            return

        self._current = unit
        scope = self.scope.start_feature(unit.id, len(unit.steps), unit.description)
        logger.info(
            "Working on unit #%d (%s complexity): %s",
            unit.id,
            scope.estimated_complexity.value,
            unit.description,
        )

    def _defer_if_needed(self) -> bool:
        """Defer the current unit once its budget is used up, before it runs again."""
        unit_id = self.current_unit_id
        if not unit_id:
            return False
        should_defer, reason = self.scope.should_defer(unit_id)
        if not should_defer:
            return False

        self.scope.defer_feature(unit_id, reason)
        reason_text = format_deferral_reason(reason)
        self._print(f"[yellow]Unit #{unit_id} deferred: {reason_text}[/yellow]")

        if mark_deferred(self._plans, unit_id, reason.value):
            try:
                write_plan(self.plan_path, self._plans)
            except PlanFileError as e:
                logger.warning("Failed to mark unit #%d deferred: %s", unit_id, e)
            else:
                self.replanner.note_own_write()

        feature_scope = self.scope.get_feature_scope(unit_id)
        used = feature_scope.iterations_used if feature_scope else 0
        append_progress(self.progress_path, format_deferral_line(unit_id, reason_text, used))

        self.summary.skipped += 1
        self._current = None
        return True

    def _suggest_simplification(self) -> None:
        unit = self._current
        if unit is None or not self.scope.should_suggest_simplification(unit.id):
            return
        self._print(f"[yellow]Unit #{unit.id} may be complex. Suggestions:[/yellow]")
        for suggestion in suggest_simplification(len(unit.steps), unit.description):
            self._print(f"  - {escape(suggestion)}")

    def _build_prompt(self) -> str:
        run = self.config.run
        prompt = build_iteration_prompt(
            self.plan_path,
            self.progress_path,
            run.typecheck_cmd or "the project's type checker",
            run.test_cmd or "the project's test suite",
        )
        prompt = with_guidance(prompt, self._guidance)
        self._guidance = ""
        return prompt

    def _run_iteration(self, iteration: int) -> bool:
        """Run one iteration. Returns True when the run should stop."""
        self._select_unit()
        self._print(
            f"[bold]Iteration {iteration}/{self.config.run.iterations}[/bold]"
        )

        if self._defer_if_needed():
            self._select_unit()
        self.scope.record_iteration(self.current_unit_id)
        self._suggest_simplification()

        if self.current_unit_id and self.config.scope.limit > 0:
            remaining = self.scope.remaining_iterations(self.current_unit_id)
            logger.debug("%d iteration(s) remaining for unit #%d", remaining, self.current_unit_id)

        prompt = self._build_prompt()
        result = self.agent_runner(
            self.config.run.agent_cmd,
            prompt,
            self.config.run.agent_timeout or None,
        )
        if result.output:
            self._print(escape(result.output))

        if COMPLETE_SIGNAL in result.output:
            self._print(
                f"[green]✓ Plan complete! Detected completion signal after "
                f"{iteration} iteration(s).[/green]"
            )
            self.summary.completed += 1
            self.summary.complete_signal = True
            return True

        if result.exit_code != 0 or contains_failure_indicators(result.output):
            if not self._handle_failure(result, iteration):
                self._handle_success()
        else:
            self._handle_success()

        self._print("")
        return False

    def _handle_failure(self, result: AgentResult, iteration: int) -> bool:
        """Classify and recover. Returns False when no failure was found."""
        unit_id = self.current_unit_id
        failure, recovery = self.recovery.handle_failure(
            result.output, result.exit_code, unit_id, iteration
        )
        if failure is None:
            return False

        self._print(f"[yellow]Failure detected: {escape(str(failure))}[/yellow]")
        self.summary.errors.append(str(failure))
        self._consecutive_failures += 1
        append_progress(self.progress_path, format_failure_line(failure))

        if recovery.should_skip:
            self._print(f"[dim]Recovery: {escape(recovery.message)}[/dim]")
            self.summary.skipped += 1
            self.replanner.add_blocked_feature(unit_id)
            self._skipped.add(unit_id)
            self._current = None
            self._guidance = ""
        elif recovery.should_retry:
            self._print(f"[dim]Recovery: {escape(recovery.message)}[/dim]")
            if recovery.modified_prompt:
                self._guidance = recovery.modified_prompt

        if not recovery.success:
            self._print(f"[red]Recovery action failed: {escape(recovery.message)}[/red]")
            self.summary.failed += 1

        self.replanner.update_state(
            unit_id, self._consecutive_failures, [failure.type.value], self._plans
        )
        self.replanner.increment_iterations()
        self._maybe_replan()
        return True

    def _maybe_replan(self) -> None:
        should_replan, trigger = self.replanner.should_replan()
        if not should_replan:
            return

        self._print(f"[bold cyan]Automatic replanning triggered: {trigger.value}[/bold cyan]")
        try:
            result = self.replanner.execute_replan(self.replan_strategy, trigger)
        except OSError as e:
            logger.error("Replanning failed: could not back up plan: %s", e)
            self._print(f"[red]Replanning failed: {escape(str(e))}[/red]")
            return

        self.summary.replans.append(result)
        if not result.success:
            self._print(f"[red]Replanning failed: {escape(result.message)}[/red]")
            return

        self._print(f"[green]✓ Replanning completed: {escape(result.message)}[/green]")
        logger.debug("Plan backup: %s", result.backup_path)
        if not result.diff.is_empty():
            self._print(escape(result.diff.summary()))
        if result.new_plans:
            self._plans = list(result.new_plans)
            refreshed = get_by_id(self._plans, self.current_unit_id)
            if refreshed is not None:
                self._current = refreshed

        append_progress(
            self.progress_path,
            format_replan_line(trigger.value, self.replan_strategy.value),
        )
        self._consecutive_failures = 0

    def _handle_success(self) -> None:
        self._consecutive_failures = 0
        self.replanner.reset_state()

        unit_id = self.current_unit_id
        if not unit_id:
            return
        self.recovery.record_success(unit_id)

        unit = get_by_id(self._load_plans(), unit_id)
        if unit is not None and unit.tested:
            self.scope.complete_feature(unit_id)
            self.summary.completed += 1
            self._current = None


def run_iterations(
    config: BuildloopConfig,
    console: Console | None = None,
    agent_runner: AgentRunner | None = None,
) -> RunSummary:
    """Run the loop and print the end-of-run summary."""
    console = console or Console()
    loop = BuildLoop(config, console=console, agent_runner=agent_runner)
    summary = loop.run()
    render_summary(summary, console)
    render_recovery_summary(loop.recovery, console)
    if config.scope.limit > 0 or config.scope.deadline:
        render_scope_summary(loop.scope, console)
    return summary


def render_summary(summary: RunSummary, console: Console) -> None:
    console.print()
    console.print("[bold]Run Summary[/bold]")
    console.print(f"  Iterations: {summary.iterations_run}/{summary.total_iterations}")
    console.print(f"  Duration: {_format_duration(summary.duration)}")
    console.print(f"  [green]Completed: {summary.completed}[/green]")
    if summary.failed:
        console.print(f"  [red]Failed: {summary.failed}[/red]")
    if summary.skipped:
        console.print(f"  [yellow]Skipped: {summary.skipped}[/yellow]")
    if summary.recovered:
        console.print(f"  [cyan]Recovered from failures: {summary.recovered}[/cyan]")
    if summary.replans:
        console.print(f"  Replans: {len(summary.replans)}")
    if summary.errors:
        console.print(f"  [dim]Errors: {len(summary.errors)}[/dim]")


def render_recovery_summary(recovery: RecoveryManager, console: Console) -> None:
    text = recovery.failure_summary()
    if text == "No failures recorded":
        return
    console.print()
    console.print("[bold]Recovery[/bold]")
    console.print(escape(text))


def render_scope_summary(scope: ScopeManager, console: Console) -> None:
    console.print()
    console.print("[bold]Scope[/bold]")
    console.print(escape(scope.format_status()))
    for info in scope.deferral_info():
        console.print(
            f"  [yellow]#{info.feature_id}[/yellow]: {format_deferral_reason(info.reason)} "
            f"({info.iterations_used} iteration(s))"
        )


def _format_duration(delta: timedelta) -> str:
    seconds = int(delta.total_seconds())
    minutes, seconds = divmod(seconds, 60)
    return f"{minutes}m{seconds}s" if minutes else f"{seconds}s"
