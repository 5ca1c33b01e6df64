"""CLI entry point for taskplan."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text
from rich.tree import Tree

from . import __version__
from .analyzer import analyze_goal, suggest_strategy
from .config import ConfigValidationError, EngineConfig, load_config
from .documents import load_plan
from .engine import PlanningEngine
from .errors import DocumentError, InvalidPlanError
from .events import JsonlEventSink, PlanEvent
from .models import PlanStatus, StepStatus
from .plan import Plan


def _find_repo_root() -> Path:
    """Walk up to find .git directory."""
    p = Path.cwd()
    while p != p.parent:
        if (p / ".git").exists():
            return p
        p = p.parent
    return Path.cwd()


def _status_style(status: PlanStatus | StepStatus) -> str:
    return {
        "PENDING": "yellow",
        "DRAFT": "yellow",
        "APPROVED": "blue",
        "IN_PROGRESS": "cyan",
        "COMPLETED": "green",
        "SKIPPED": "dim",
        "FAILED": "red",
        "BLOCKED": "magenta",
        "CANCELLED": "dim",
    }.get(status.name, "dim")


def _setup_logging(verbose: bool) -> None:
    if not verbose:
        return
    logger = logging.getLogger("taskplan")
    logger.setLevel(logging.DEBUG)
    logger.addHandler(RichHandler(console=Console(stderr=True), show_path=False))


def _error(console: Console, message: str) -> int:
    console.print(Text(message, style="red"))
    return 1


def _load(path: str, config: EngineConfig) -> Plan:
    return load_plan(
        Path(path),
        minutes_per_1k_tokens=config.minutes_per_1k_tokens,
        confidence=config.confidence,
    )


def _file_parser(prog: str) -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog=prog, add_help=False)
    p.add_argument("file")
    return p


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


def _steps_table(plan: Plan) -> Table:
    table = Table(expand=False, show_edge=False, pad_edge=False)
    table.add_column("#", style="dim", justify="right")
    table.add_column("ID", style="bold")
    table.add_column("Type")
    table.add_column("Title")
    table.add_column("Depends on", style="dim")
    table.add_column("Status")
    table.add_column("Tokens", style="dim", justify="right")
    for step in plan.steps:
        table.add_row(
            str(step.order),
            step.id,
            f"{step.type.icon} {step.type.display_name}",
            step.title[:60],
            ", ".join(plan.dependencies.get(step.id, ())) or "-",
            Text(step.status.display_name, style=_status_style(step.status)),
            str(step.estimated_tokens),
        )
    return table


def _render_plan(plan: Plan, console: Console) -> None:
    effort = plan.estimated_effort
    console.print(Panel(
        f"[bold]{escape(plan.goal)}[/bold]\n"
        f"{plan.analysis.scope.display_name} / {plan.analysis.complexity.display_name}"
        f" · {plan.strategy.approach.display_name}\n"
        f"{effort.total_steps} steps · {effort.time_string}"
        f" · confidence {effort.confidence_percent}",
        title=f"Plan {plan.id[:8]} v{plan.version}",
        subtitle=plan.status.display_name,
        style=_status_style(plan.status),
        expand=False,
    ))
    console.print(_steps_table(plan))

    if plan.risks:
        risks = Table(title="Risks", expand=False, show_edge=False, pad_edge=False)
        risks.add_column("Level", style="bold")
        risks.add_column("Score", justify="right")
        risks.add_column("Risk")
        risks.add_column("Mitigation", style="dim")
        for risk in plan.risks:
            risks.add_row(
                risk.level.display_name,
                f"{risk.score:.2f}",
                risk.description,
                risk.mitigation,
            )
        console.print(risks)


def _render_validation(plan: Plan, console: Console) -> bool:
    validation = plan.validate()
    for error in validation.errors:
        console.print(Text(f"error: {error}", style="red"))
    for warning in validation.warnings:
        console.print(Text(f"warning: {warning}", style="yellow"))
    if validation.valid:
        console.print(Text("Plan is valid.", style="green"))
    return validation.valid


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def cmd_analyze(argv: list[str], console: Console) -> int:
    goal = " ".join(argv).strip()
    if not goal:
        return _error(console, "No goal provided.")

    analysis = analyze_goal(goal)
    strategy = suggest_strategy(analysis)

    table = Table(show_header=False, expand=False, show_edge=False, pad_edge=False, box=None)
    table.add_column("Field", style="bold")
    table.add_column("Value")
    table.add_row("Scope", analysis.scope.display_name)
    table.add_row("Complexity", analysis.complexity.display_name)
    table.add_row("Difficulty", f"{analysis.difficulty_score}/10")
    table.add_row("Approach", strategy.approach.display_name)
    table.add_row("Reasoning", strategy.reasoning)
    for unknown in analysis.unknowns:
        table.add_row("Unknown", Text(unknown, style="yellow"))
    console.print(Panel(table, title="Goal analysis", style="cyan", expand=False))
    return 0


def cmd_show(argv: list[str], console: Console, config: EngineConfig) -> int:
    args = _file_parser("taskplan show").parse_args(argv)
    try:
        plan = _load(args.file, config)
    except DocumentError as exc:
        return _error(console, str(exc))
    _render_plan(plan, console)
    return 0


def cmd_validate(argv: list[str], console: Console, config: EngineConfig) -> int:
    args = _file_parser("taskplan validate").parse_args(argv)
    try:
        plan = _load(args.file, config)
    except DocumentError as exc:
        return _error(console, str(exc))
    return 0 if _render_validation(plan, console) else 1


def cmd_layers(argv: list[str], console: Console, config: EngineConfig) -> int:
    args = _file_parser("taskplan layers").parse_args(argv)
    try:
        plan = _load(args.file, config)
    except DocumentError as exc:
        return _error(console, str(exc))

    validation = plan.validate()
    if not validation.valid:
        for error in validation.errors:
            console.print(Text(f"error: {error}", style="red"))
        return 1

    tree = Tree(f"[bold]{escape(plan.goal)}[/bold]")
    for level, layer in enumerate(plan.get_parallelizable_steps()):
        branch = tree.add(f"[cyan]Layer {level}[/cyan] ({len(layer)} parallel)")
        for step in layer:
            branch.add(f"{step.type.icon} [bold]{escape(step.id)}[/bold] {escape(step.title)}")
    console.print(tree)
    return 0


def _event_line(event: PlanEvent) -> str:
    details = " ".join(
        f"{key}={value}" for key, value in event.payload.items() if value is not None
    )
    return f"[dim]{event.kind:<15}[/dim] {escape(details)}".rstrip()


def cmd_simulate(argv: list[str], console: Console, config: EngineConfig) -> int:
    """Drive a plan document through the engine, layer by layer."""
    p = argparse.ArgumentParser(prog="taskplan simulate", add_help=False)
    p.add_argument("file")
    p.add_argument("--skip", action="append", default=[])
    p.add_argument("--fail", default=None)
    p.add_argument("--events", default=None)
    args = p.parse_args(argv)

    try:
        draft = _load(args.file, config)
    except DocumentError as exc:
        return _error(console, str(exc))

    engine = PlanningEngine(config=config)
    engine.add_listener(lambda event: console.print(_event_line(event)))
    if args.events:
        engine.add_listener(JsonlEventSink(Path(args.events)))

    try:
        plan = engine.create_detailed_plan(
            draft.goal,
            draft.analysis,
            draft.strategy,
            draft.steps,
            dependencies=draft.dependencies,
            risks=draft.risks,
        )
    except InvalidPlanError as exc:
        for error in exc.errors:
            console.print(Text(f"error: {error}", style="red"))
        return 1

    engine.start_plan(plan.id)
    skip = set(args.skip)
    while True:
        current = engine.get_plan(plan.id)
        if current is None or current.status.is_terminal:
            break
        ready = current.get_ready_steps()
        if not ready:
            break
        for step in ready:
            if step.id in skip:
                engine.skip_step(plan.id, step.id)
                continue
            engine.start_step(plan.id, step.id)
            if step.id == args.fail:
                engine.fail_step(plan.id, step.id, "simulated failure")
                break
            engine.complete_step(plan.id, step.id, "ok")

    final = engine.get_plan(plan.id)
    if final is None:
        return 1
    console.print(Panel(
        f"{final.status.display_name} · progress {final.progress:.0%}",
        title="simulate",
        style=_status_style(final.status),
        expand=False,
    ))
    return 0 if final.status == PlanStatus.COMPLETED else 1


def cmd_serve(argv: list[str], console: Console) -> int:
    p = argparse.ArgumentParser(prog="taskplan serve", add_help=False)
    p.add_argument("--host", default="127.0.0.1")
    p.add_argument("--port", type=int, default=8430)
    p.add_argument("--reload", action="store_true")
    args = p.parse_args(argv)

    import uvicorn

    console.print(Panel(
        f"Starting web server at [bold]http://{args.host}:{args.port}[/bold]",
        title="taskplan serve",
        style="cyan",
        expand=False,
    ))
    uvicorn.run(
        "taskplan.web:create_app",
        factory=True,
        host=args.host,
        port=args.port,
        reload=args.reload,
    )
    return 0


def _print_help(console: Console) -> None:
    help_text = Text()
    help_text.append("taskplan", style="bold")
    help_text.append(f" {__version__}", style="dim")
    help_text.append(" - plan goals as step graphs and schedule their execution")
    console.print(help_text)
    console.print()

    cmds = Table(show_header=False, expand=False, show_edge=False, pad_edge=False, box=None)
    cmds.add_column("Command", style="bold cyan")
    cmds.add_column("Description")
    cmds.add_row("taskplan analyze <goal>", "Classify a goal and suggest a strategy")
    cmds.add_row("taskplan show <file>", "Render a plan document")
    cmds.add_row("taskplan validate <file>", "Check a plan for cycles and dangling steps")
    cmds.add_row("taskplan layers <file>", "Show steps grouped into parallel layers")
    cmds.add_row("taskplan simulate <file>", "Run a plan through the engine")
    cmds.add_row("taskplan serve", "Start the JSON API")
    console.print(cmds)
    console.print()

    opts = Table(show_header=False, expand=False, show_edge=False, pad_edge=False, box=None)
    opts.add_column("Option", style="bold")
    opts.add_column("Description", style="dim")
    opts.add_row("--config PATH", "Engine config (default: .taskplan/taskplan.toml)")
    opts.add_row("--skip ID", "simulate: skip this step (repeatable)")
    opts.add_row("--fail ID", "simulate: fail this step")
    opts.add_row("--events PATH", "simulate: append events as JSONL")
    opts.add_row("--verbose", "Log engine transitions")
    opts.add_row("--version", "Show version")
    console.print(opts)


def _pop_option(raw: list[str], name: str) -> str | None:
    if name not in raw:
        return None
    idx = raw.index(name)
    value = raw[idx + 1] if idx + 1 < len(raw) else None
    del raw[idx : idx + 2]
    return value


def main(argv: list[str] | None = None) -> None:
    raw = list(argv if argv is not None else sys.argv[1:])
    console = Console()

    if "--version" in raw:
        console.print(Text(f"taskplan {__version__}", style="bold"))
        sys.exit(0)

    verbose = "--verbose" in raw
    raw = [arg for arg in raw if arg != "--verbose"]
    _setup_logging(verbose)

    config_path = _pop_option(raw, "--config")
    if not raw or raw == ["--help"] or raw == ["-h"]:
        _print_help(console)
        sys.exit(0)

    try:
        if config_path is not None:
            config = load_config(Path(config_path))
        else:
            config = load_config(repo_root=_find_repo_root())
    except ConfigValidationError as exc:
        sys.exit(_error(console, str(exc)))

    command, rest = raw[0], raw[1:]
    if command == "analyze":
        sys.exit(cmd_analyze(rest, console))
    if command == "show":
        sys.exit(cmd_show(rest, console, config))
    if command == "validate":
        sys.exit(cmd_validate(rest, console, config))
    if command == "layers":
        sys.exit(cmd_layers(rest, console, config))
    if command == "simulate":
        sys.exit(cmd_simulate(rest, console, config))
    if command == "serve":
        sys.exit(cmd_serve(rest, console))

    _print_help(console)
    sys.exit(_error(console, f"Unknown command: {command}"))


if __name__ == "__main__":
    main()
