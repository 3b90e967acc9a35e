"""Typer-based CLI for uiscan."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import List, Optional, Tuple

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from . import __version__
from .config import DEFAULT_OUTPUT_DIR, Settings
from .config_manager import load_settings, write_default_config
from .errors import ConfigError, SourceTreeUnavailable
from .graph_export import export_dot
from .mocks import mocks_document, render_playwright, synthesize, synthesize_integrations
from .models import TestSelectorCandidate
from .patcher import Decision
from .pipeline import ScanOrchestrator, ScanResult, changed_paths_from_file
from .report import SCOPE_MODES, Scope, write_artifacts

console = Console()
err_console = Console(stderr=True)

app = typer.Typer(
    help="Map UI components, their API calls and test selectors.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

MAX_TABLE_ROWS = 25


def version_callback(value: bool):
    """Print version and exit."""
    if value:
        typer.echo(f"uiscan v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        "-v",
        help="Show version and exit.",
        callback=version_callback,
        is_eager=True,
    )
):
    """uiscan: static inventory, selector audit and mock fixtures for UI code."""
    pass


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=err_console, show_path=False, show_time=False)],
        force=True,
    )


def _require_root(root: Path) -> Path:
    if not root.exists() or not root.is_dir():
        typer.echo(f"Source root does not exist: {root}", err=True)
        raise typer.Exit(code=2)
    return root.resolve()


def _load(root: Path, config_file: Optional[Path]) -> Settings:
    try:
        return load_settings(root, config_file)
    except ConfigError as exc:
        raise typer.BadParameter(str(exc), param_hint="--config")


def _orchestrator(root: Path, settings: Settings) -> ScanOrchestrator:
    try:
        return ScanOrchestrator(root, settings)
    except SourceTreeUnavailable as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(code=2)
    except ConfigError as exc:
        raise typer.BadParameter(str(exc), param_hint="--config")


def _prompt_decision(candidate: TestSelectorCandidate) -> Tuple[Decision, Optional[str]]:
    label = "rename" if candidate.action == "rename" else "add"
    console.print(
        f"\n[bold]{candidate.location}[/bold] <{candidate.element}> "
        f"{label} [cyan]{candidate.attribute}[/cyan]=[green]{candidate.suggested}[/green]"
        + (f" (current: [yellow]{candidate.existing}[/yellow], {candidate.violation})" if candidate.existing else "")
    )
    choice = typer.prompt("[a]ccept / [m]odify / [s]kip", default="a").strip().lower()
    if choice.startswith("m"):
        value = typer.prompt("New value", default=candidate.suggested)
        return Decision.MODIFY, value
    if choice.startswith("s"):
        return Decision.SKIP, None
    return Decision.ACCEPT, None


def _scope(orchestrator: ScanOrchestrator, mode: str, changed: List[str], changed_from: Optional[Path],
           paths: List[str]) -> Scope:
    if mode not in SCOPE_MODES:
        raise typer.BadParameter(f"Mode must be one of: {', '.join(SCOPE_MODES)}", param_hint="--mode")
    if mode == "changeset":
        listed = list(changed)
        if changed_from is not None:
            if not changed_from.exists():
                raise typer.BadParameter(f"{changed_from} does not exist", param_hint="--changed-from")
            listed.extend(changed_paths_from_file(changed_from))
        if not listed:
            raise typer.BadParameter("changeset mode needs --changed or --changed-from", param_hint="--mode")
        return Scope.changeset(orchestrator.canonical_paths(listed))
    if mode == "path":
        if not paths:
            raise typer.BadParameter("path mode needs at least one --path", param_hint="--mode")
        return Scope.single(orchestrator.canonical_paths(paths))
    return Scope.full()


def _print_summary(result: ScanResult) -> None:
    coverage = result.report.coverage
    inventory = result.report.inventory

    table = Table(title=f"Scan summary ({result.scope.mode})", show_header=True)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    table.add_row("Files analyzed", str(coverage.files_analyzed))
    table.add_row("Pages", str(len(inventory.pages)))
    table.add_row("Endpoints", str(len(inventory.endpoints)))
    table.add_row("Unresolved calls", str(coverage.unresolved_calls))
    table.add_row("Resolution errors", str(coverage.resolution_errors))
    table.add_row("Parse failures", str(coverage.parse_failures))
    table.add_row("Selectors present", str(coverage.selectors_present))
    table.add_row("Selectors missing", str(coverage.selectors_missing))
    table.add_row("Naming violations", str(coverage.naming_violations))
    table.add_row("Selector coverage", f"{coverage.coverage_pct:.1f}%")
    console.print(table)

    if inventory.endpoints:
        endpoints = Table(title="Endpoints", show_header=True)
        endpoints.add_column("Method", style="bold")
        endpoints.add_column("Endpoint", style="green")
        endpoints.add_column("Components")
        for entry in inventory.endpoints[:MAX_TABLE_ROWS]:
            endpoints.add_row(entry["method"], entry["endpoint"], "\n".join(entry["components"]))
        console.print(endpoints)

    if coverage.missing:
        missing = Table(title="Missing selectors", show_header=True)
        missing.add_column("File", style="cyan")
        missing.add_column("Location")
        missing.add_column("Element")
        missing.add_column("Suggested", style="green")
        for row in coverage.missing[:MAX_TABLE_ROWS]:
            missing.add_row(row["file"], row["location"], row["element"], row["suggested"])
        if len(coverage.missing) > MAX_TABLE_ROWS:
            missing.caption = f"... and {len(coverage.missing) - MAX_TABLE_ROWS} more (see coverage.md)"
        console.print(missing)

    if coverage.violations:
        violations = Table(title="Naming violations", show_header=True)
        violations.add_column("File", style="cyan")
        violations.add_column("Location")
        violations.add_column("Current", style="yellow")
        violations.add_column("Suggested", style="green")
        for row in coverage.violations[:MAX_TABLE_ROWS]:
            violations.add_row(row["file"], row["location"], str(row["current"]), row["suggested"])
        console.print(violations)


@app.command("scan")
def scan(
    root: Path = typer.Argument(..., help="Source tree to analyze."),
    mode: str = typer.Option("full", "--mode", "-m", help="full, changeset or path."),
    changed: List[str] = typer.Option([], "--changed", help="Changed file (repeatable, changeset mode)."),
    changed_from: Optional[Path] = typer.Option(None, "--changed-from", help="File listing changed paths."),
    path: List[str] = typer.Option([], "--path", "-p", help="File to analyze (repeatable, path mode)."),
    fix: bool = typer.Option(False, "--fix", help="Write missing and corrected selectors into the sources."),
    interactive: bool = typer.Option(False, "--interactive", "-i", help="Confirm each selector change (needs --fix)."),
    diff: bool = typer.Option(False, "--diff", help="Print the selector patch as a unified diff."),
    out: Optional[Path] = typer.Option(None, "--out", "-o", help=f"Artifact directory (default: ROOT/{DEFAULT_OUTPUT_DIR})."),
    playwright: bool = typer.Option(False, "--playwright", help="Also write a Playwright route module."),
    fail_threshold: Optional[int] = typer.Option(
        None, "--fail-threshold", help="Exit 1 when unresolved calls + resolution errors exceed this."),
    config_file: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to uiscan.toml."),
    workers: Optional[int] = typer.Option(None, "--workers", "-w", min=1, help="Parallel analysis tasks."),
    verbose: bool = typer.Option(False, "--verbose", help="Debug logging."),
):
    """Build the component graph, extract API calls, audit selectors and write reports."""
    if interactive and not fix:
        raise typer.BadParameter("--interactive needs --fix", param_hint="--interactive")
    _configure_logging(verbose)
    root = _require_root(root)
    settings = _load(root, config_file)
    orchestrator = _orchestrator(root, settings)
    scope = _scope(orchestrator, mode, changed, changed_from, path)

    result = orchestrator.run(
        scope,
        fix=fix,
        diff=diff,
        decider=_prompt_decision if interactive else None,
        workers=workers,
        fail_threshold=fail_threshold,
    )

    for patch_result in result.report.patches:
        if diff and patch_result.diff:
            typer.echo(patch_result.diff)
        if fix:
            style = "green" if patch_result.success else "red"
            console.print(f"[{style}]{patch_result}[/{style}]")

    out_dir = out or root / DEFAULT_OUTPUT_DIR
    write_artifacts(result.report, out_dir, playwright=playwright)
    _print_summary(result)
    console.print(f"Artifacts written to [cyan]{out_dir}[/cyan]")

    if result.exceeds_threshold:
        console.print(
            Panel.fit(
                f"{result.report.coverage.failure_count} unresolved call(s) and resolution error(s) "
                f"exceed the threshold of {result.fail_threshold}",
                border_style="red",
            )
        )
        raise typer.Exit(code=1)


@app.command("mocks")
def mocks(
    root: Path = typer.Argument(..., help="Source tree to analyze."),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write mocks JSON here instead of stdout."),
    playwright_file: Optional[Path] = typer.Option(None, "--playwright", help="Write a Playwright route module."),
    config_file: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to uiscan.toml."),
    verbose: bool = typer.Option(False, "--verbose", help="Debug logging."),
):
    """Synthesize mock fixtures and route rules only."""
    _configure_logging(verbose)
    root = _require_root(root)
    settings = _load(root, config_file)
    orchestrator = _orchestrator(root, settings)
    orchestrator.build_graph(Scope.full())
    files = orchestrator.analyze(Scope.full())

    routes = synthesize(orchestrator.calls_for(files), settings.mocks)
    host_routes, stubs = synthesize_integrations(orchestrator.graph, orchestrator.integrations)
    routes += host_routes
    doc = json.dumps(mocks_document(routes, stubs), indent=2) + "\n"
    if output:
        output.write_text(doc, encoding="utf-8")
        typer.echo(f"Wrote {len(routes)} route(s) to {output}")
    else:
        typer.echo(doc)
    if playwright_file:
        playwright_file.write_text(render_playwright(routes, stubs), encoding="utf-8")
        typer.echo(f"Wrote Playwright routes to {playwright_file}")


@app.command("graph")
def graph(
    root: Path = typer.Argument(..., help="Source tree to analyze."),
    focus: str = typer.Option("", "--focus", "-f", help="Only show this module and its neighbours."),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write DOT here instead of stdout."),
    no_external: bool = typer.Option(False, "--no-external", help="Hide third-party packages."),
    config_file: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to uiscan.toml."),
):
    """Export the component graph as Graphviz DOT."""
    _configure_logging(False)
    root = _require_root(root)
    settings = _load(root, config_file)
    orchestrator = _orchestrator(root, settings)
    orchestrator.build_graph(Scope.full())
    doc = export_dot(orchestrator.graph, output, focus=focus, include_external=not no_external)
    if output:
        typer.echo(f"Exported graph to {output}")
    else:
        typer.echo(doc, nl=False)


@app.command("init")
def init(
    root: Path = typer.Argument(Path("."), help="Project root."),
    force: bool = typer.Option(False, "--force", help="Overwrite an existing uiscan.toml."),
):
    """Write a default uiscan.toml."""
    root = _require_root(root)
    try:
        path = write_default_config(root, overwrite=force)
    except ConfigError as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(code=1)
    typer.echo(f"Wrote {path}")


if __name__ == "__main__":
    app()
