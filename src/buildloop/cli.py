"""buildloop CLI.

Main entry point for the buildloop command.
"""

from __future__ import annotations

import logging
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape

from . import __version__
from .config import (
    BuildloopConfig,
    ConfigError,
    format_config_for_display,
    get_config_path,
    is_config_key,
    load_config,
    parse_config_value,
    save_config,
)
from .loop import run_iterations
from .plan import PlanFileError, filter_deferred, filter_tested, read_plan
from .replan import ReplanManager, parse_replan_strategy
from .scope import format_deferral_reason
from .utils.errors import handle_exception, set_debug_mode

console = Console()


def setup_logging(level: str, no_color: bool = False) -> None:
    """Route log records through rich on the shared console."""
    handler = RichHandler(console=console, show_path=False, markup=False, rich_tracebacks=False)
    if no_color:
        console.no_color = True
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[handler],
        force=True,
    )


def _load(ctx: click.Context) -> BuildloopConfig:
    try:
        config = load_config(ctx.obj.get("config_path"))
    except ConfigError as e:
        handle_exception(console, e, "loading configuration")
    return config


def _plan_path(config: BuildloopConfig, plan: str | None) -> Path:
    return Path(plan or config.run.plan_file)


@click.group(invoke_without_command=True)
@click.option("--version", "-v", is_flag=True, help="Show version and exit")
@click.option("--debug", "-d", is_flag=True, help="Enable debug mode with verbose error output")
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Path to a buildloop TOML config file",
)
@click.pass_context
def main(ctx: click.Context, version: bool, debug: bool, config_path: Path | None) -> None:
    """buildloop - adaptive build loop for AI coding agents.

    Repeatedly runs an agent against a plan file, recovering from failures,
    deferring units that exceed their budget and replanning when local
    recovery is not enough.

    Use --debug for verbose error output with stack traces.
    """
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path

    if debug:
        set_debug_mode(True)

    if version:
        console.print(f"buildloop version {__version__}")
        return

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


@main.command()
@click.option("--iterations", "-n", type=int, help="Maximum number of iterations")
@click.option("--plan", "plan_file", help="Path to the plan file")
@click.option("--progress", "progress_file", help="Path to the progress file")
@click.option("--agent", "agent_cmd", help="AI agent command")
@click.option("--max-retries", type=int, help="Failures allowed per unit before skipping")
@click.option(
    "--recovery-strategy",
    type=click.Choice(["retry", "skip", "rollback"], case_sensitive=False),
    help="Default recovery strategy",
)
@click.option("--scope-limit", type=int, help="Max iterations per unit (0 = unlimited)")
@click.option("--deadline", help="Run time budget, e.g. 30m, 2h, 1h30m")
@click.option("--auto-replan/--no-auto-replan", default=None, help="Replan automatically on triggers")
@click.option("--replan-strategy", help="Replan strategy (incremental, agent, none)")
@click.option("--replan-threshold", type=int, help="Consecutive failures before replanning")
@click.option("--verbose", is_flag=True, help="Enable debug logging")
@click.option("--quiet", "-q", is_flag=True, help="Only print the summary")
@click.pass_context
def run(
    ctx: click.Context,
    iterations: int | None,
    plan_file: str | None,
    progress_file: str | None,
    agent_cmd: str | None,
    max_retries: int | None,
    recovery_strategy: str | None,
    scope_limit: int | None,
    deadline: str | None,
    auto_replan: bool | None,
    replan_strategy: str | None,
    replan_threshold: int | None,
    verbose: bool,
    quiet: bool,
) -> None:
    """Run the build loop.

    \b
    Examples:
        buildloop run -n 20
        buildloop run --scope-limit 5 --deadline 2h
        buildloop run --auto-replan --replan-strategy agent
    """
    config = _load(ctx)

    overrides = {
        "run.iterations": iterations,
        "run.plan_file": plan_file,
        "run.progress_file": progress_file,
        "run.agent_cmd": agent_cmd,
        "recovery.max_retries": max_retries,
        "recovery.strategy": recovery_strategy,
        "scope.limit": scope_limit,
        "scope.deadline": deadline,
        "replan.auto": auto_replan,
        "replan.strategy": replan_strategy,
        "replan.threshold": replan_threshold,
    }
    for key, value in overrides.items():
        if value is not None:
            config.set(key, value)
    if verbose:
        config.ui.log_level = "debug"
    if quiet:
        config.ui.quiet = True

    try:
        config.validate()
    except ConfigError as e:
        handle_exception(console, e, "validating configuration")

    setup_logging(config.ui.log_level, config.ui.no_color)

    try:
        summary = run_iterations(config, console)
    except PlanFileError as e:
        handle_exception(console, e, "reading plan", plan_path=config.run.plan_file)

    if summary.failed and not summary.completed:
        ctx.exit(1)


@main.command()
@click.option("--plan", "plan_file", help="Path to the plan file")
@click.pass_context
def status(ctx: click.Context, plan_file: str | None) -> None:
    """Show tested, untested and deferred unit counts."""
    config = _load(ctx)
    path = _plan_path(config, plan_file)
    try:
        plans = read_plan(path)
    except PlanFileError as e:
        handle_exception(console, e, "reading plan", plan_path=str(path))

    tested = filter_tested(plans, True)
    deferred = filter_deferred(filter_tested(plans, False), True)
    remaining = len(plans) - len(tested) - len(deferred)

    console.print(f"[bold]Plan: {path}[/bold]")
    console.print(f"  [green]Tested: {len(tested)}[/green]")
    console.print(f"  Untested: {remaining}")
    console.print(f"  [yellow]Deferred: {len(deferred)}[/yellow]")
    console.print(f"  [dim]Total: {len(plans)}[/dim]")


@main.command()
@click.option("--plan", "plan_file", help="Path to the plan file")
@click.pass_context
def deferred(ctx: click.Context, plan_file: str | None) -> None:
    """List deferred units and why they were deferred."""
    config = _load(ctx)
    path = _plan_path(config, plan_file)
    try:
        plans = read_plan(path)
    except PlanFileError as e:
        handle_exception(console, e, "reading plan", plan_path=str(path))

    items = filter_deferred(plans, True)
    if not items:
        console.print("[dim]No deferred units[/dim]")
        return

    console.print(f"[bold]{len(items)} deferred unit(s):[/bold]")
    for item in items:
        reason = format_deferral_reason(item.defer_reason) if item.defer_reason else "unknown"
        console.print(f"  [yellow]#{item.id}[/yellow] {escape(item.description)}")
        console.print(f"    [dim]Reason: {escape(reason)}[/dim]")


def _replanner(config: BuildloopConfig, plan_file: str | None) -> ReplanManager:
    path = _plan_path(config, plan_file)
    return ReplanManager(
        path,
        config.run.agent_cmd,
        auto_replan=config.replan.auto,
        threshold=config.replan.threshold,
        agent_timeout=config.run.agent_timeout or None,
    )


@main.command()
@click.option("--plan", "plan_file", help="Path to the plan file")
@click.pass_context
def versions(ctx: click.Context, plan_file: str | None) -> None:
    """List numbered plan backups."""
    config = _load(ctx)
    manager = _replanner(config, plan_file)

    found = manager.get_versions()
    if not found:
        console.print("[dim]No plan backups found[/dim]")
        return

    for v in found:
        trigger = f" ({v.trigger})" if v.trigger else ""
        console.print(
            f"  [cyan]v{v.version}[/cyan] {v.timestamp.strftime('%Y-%m-%d %H:%M:%S')}"
            f"{trigger} [dim]{v.path}[/dim]"
        )


@main.command()
@click.argument("version", type=int)
@click.option("--plan", "plan_file", help="Path to the plan file")
@click.pass_context
def restore(ctx: click.Context, version: int, plan_file: str | None) -> None:
    """Restore plan backup VERSION over the live plan file."""
    config = _load(ctx)
    manager = _replanner(config, plan_file)
    try:
        saved = manager.restore_version(version)
    except (ValueError, OSError) as e:
        handle_exception(console, e, "restoring plan", plan_path=str(manager.plan_path))

    console.print(f"[green]✓[/green] Restored {manager.plan_path} from version {version}")
    if saved is not None:
        console.print(f"[dim]Previous content saved to {saved}[/dim]")


@main.command()
@click.option("--strategy", "-s", help="Replan strategy (incremental, agent, none)")
@click.option("--plan", "plan_file", help="Path to the plan file")
@click.pass_context
def replan(ctx: click.Context, strategy: str | None, plan_file: str | None) -> None:
    """Replan now, without waiting for a trigger."""
    config = _load(ctx)
    setup_logging(config.ui.log_level, config.ui.no_color)
    try:
        strategy_type = parse_replan_strategy(strategy or config.replan.strategy)
    except ValueError as e:
        handle_exception(console, e, "parsing strategy")

    manager = _replanner(config, plan_file)
    try:
        result = manager.manual_replan(strategy_type)
    except OSError as e:
        handle_exception(console, e, "backing up plan", plan_path=str(manager.plan_path))

    if not result.success:
        console.print(f"[red]Replanning failed:[/red] {escape(result.message)}")
        if result.backup_path:
            console.print(f"[dim]Backup: {result.backup_path}[/dim]")
        ctx.exit(1)

    console.print(f"[green]✓[/green] {escape(result.message)}")
    console.print(f"[dim]Backup: {result.backup_path}[/dim]")
    console.print(escape(result.diff.summary()))


@main.group()
def config() -> None:
    """Show configuration."""


@config.command("show")
@click.pass_context
def config_show(ctx: click.Context) -> None:
    """Show the effective configuration."""
    cfg = _load(ctx)
    console.print(escape(format_config_for_display(cfg)))


@config.command("get")
@click.argument("key")
@click.pass_context
def config_get(ctx: click.Context, key: str) -> None:
    """Show one configuration value, e.g. recovery.max_retries."""
    cfg = _load(ctx)
    if not is_config_key(cfg, key):
        console.print(f"[yellow]Key not found: {escape(key)}[/yellow]")
        ctx.exit(1)
    console.print(escape(f"{key} = {cfg.get(key)!r}"))


@config.command("set")
@click.argument("key")
@click.argument("value")
@click.pass_context
def config_set(ctx: click.Context, key: str, value: str) -> None:
    """Set a configuration value and save it to the config file.

    \b
    Examples:
        buildloop config set recovery.max_retries 5
        buildloop config set replan.auto true
        buildloop config set scope.deadline 2h
    """
    path = _config_file(ctx)
    try:
        cfg = load_config(path, apply_env=False)
        cfg.set(key, parse_config_value(cfg, key, value))
        cfg.validate()
    except ConfigError as e:
        handle_exception(console, e, "setting configuration")

    try:
        save_config(cfg, path)
    except OSError as e:
        handle_exception(console, e, "saving configuration")
    console.print(f"[green]✓ Set {escape(key)} = {escape(repr(cfg.get(key)))}[/green]")


@config.command("init")
@click.option("--force", is_flag=True, help="Overwrite an existing config file")
@click.pass_context
def config_init(ctx: click.Context, force: bool) -> None:
    """Write a config file with the default settings."""
    path = _config_file(ctx)
    if path.exists() and not force:
        console.print(f"[yellow]Config already exists: {path}[/yellow]")
        console.print("[dim]Use --force to overwrite[/dim]")
        ctx.exit(1)

    try:
        save_config(BuildloopConfig(), path)
    except OSError as e:
        handle_exception(console, e, "saving configuration")
    console.print(f"[green]✓ Created {path}[/green]")


@config.command("path")
@click.pass_context
def config_path_cmd(ctx: click.Context) -> None:
    """Print the configuration file path."""
    click.echo(str(_config_file(ctx)))


def _config_file(ctx: click.Context) -> Path:
    return ctx.obj.get("config_path") or get_config_path()


if __name__ == "__main__":
    main()
