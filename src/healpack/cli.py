"""Command-line interface for the self-healing pipeline.

Commands:
- prophet-scan: pre-build scan (exit 0 clear, 1 blocked, 2 the scan itself crashed)
- surgeon-analyze: classify a failed build's output (exit 0 retry, 1 escalate)
- run: the full Prophet -> build -> Surgeon -> deploy -> probe pipeline
- memory: inspect Repair Memory

``prophet-scan`` and ``surgeon-analyze`` are also installed as standalone
console scripts; the orchestrator invokes them as separate processes.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Optional

import click
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from healpack import __version__
from healpack.config import Settings, load_settings
from healpack.exceptions import ConfigurationError, HealpackError, RepairMemoryError
from healpack.logging_config import configure_logging
from healpack.orchestrator import build_orchestrator
from healpack.prophet import ProphetResult, run_prophet
from healpack.remediation import build_default_registry
from healpack.repair_memory import RepairMemoryStore
from healpack.surgeon import Surgeon

logger = logging.getLogger(__name__)

PROJECT_ROOT = click.argument(
    "project_root",
    type=click.Path(exists=True, file_okay=False, dir_okay=True, path_type=Path),
)


def _prepare(project_root: Path, **overrides) -> Settings:
    """Load settings for this phase process and attach the audit log."""
    root = project_root.resolve()
    try:
        settings = load_settings(root, **overrides)
    except ValidationError as e:
        raise click.UsageError(f"Invalid configuration: {e}") from e

    configure_logging(
        audit_log=settings.audit_log_path(root),
        log_level=settings.log_level,
        log_format=settings.log_format,
    )
    return settings


def _print_prophet_summary(result: ProphetResult) -> None:
    for check in result.checks:
        status = "BLOCKING" if check.blocking else ("ERROR" if check.error else "ok")
        click.echo(
            f"  {check.name:<18} issues={check.issues} fixed={check.fixed} "
            f"unfixed={check.unfixed} [{status}]"
        )
    click.echo(
        f"Prophet: {result.total_issues} issue(s), {result.auto_fixed} auto-fixed, "
        f"{'BLOCKED' if result.blocked else 'clear'} ({result.duration_ms}ms)"
    )


@click.group()
@click.version_option(version=__version__, prog_name="healpack")
def cli():
    """Healpack - self-healing build and deploy pipeline."""
    pass


@cli.command(name="prophet-scan")
@PROJECT_ROOT
@click.option("--json", "as_json", is_flag=True, help="Print the full scan result as JSON")
@click.pass_context
def prophet_scan(ctx: click.Context, project_root: Path, as_json: bool):
    """Run the pre-build scan against PROJECT_ROOT.

    Exits 0 when clear, 1 when blocked and 2 when the scan could not complete,
    so a crash is never mistaken for a blocking verdict.
    """
    try:
        settings = _prepare(project_root)
        result = run_prophet(project_root, settings)

        if as_json:
            click.echo(json.dumps(result.to_dict(), indent=2))
        else:
            _print_prophet_summary(result)
        code = 1 if result.blocked else 0
    except click.ClickException:
        raise
    except Exception as e:
        logger.error(f"[Prophet] Scan crashed: {type(e).__name__}: {e}")
        click.echo(f"Prophet scan crashed: {type(e).__name__}: {e}", err=True)
        code = 2

    ctx.exit(code)


@cli.command(name="surgeon-analyze")
@PROJECT_ROOT
@click.argument(
    "build_output_file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
)
@click.option("--json", "as_json", is_flag=True, help="Print the analysis as JSON")
@click.pass_context
def surgeon_analyze(ctx: click.Context, project_root: Path, build_output_file: Path, as_json: bool):
    """Analyze a failed build's captured output and record fixes."""
    settings = _prepare(project_root)
    root = project_root.resolve()

    try:
        build_output = build_output_file.read_text(encoding="utf-8", errors="replace")
        memory = RepairMemoryStore(settings.repair_memory_path(root))
        surgeon = Surgeon(
            memory,
            remediations=build_default_registry(settings, root),
            project_root=root,
        )
        result = surgeon.analyze(build_output)
    except (HealpackError, OSError) as e:
        logger.error(f"[Surgeon] ESCALATION: {e}. Sovereign intervention required.")
        ctx.exit(1)

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
    else:
        for decision in result.decisions:
            click.echo(f"  [{decision.source}] {decision.pattern_key}: {decision.description}")
        verdict = "fix applied, retry build" if result.fix_applied else "no fix, escalate"
        click.echo(f"Surgeon: {len(result.matched_errors)} recognized error(s), {verdict}")

    ctx.exit(0 if result.fix_applied else 1)


@cli.command(name="run")
@PROJECT_ROOT
@click.option("--skip-prophet", is_flag=True, help="Bypass the pre-build scan")
@click.option(
    "--max-retries",
    type=click.IntRange(min=1),
    default=None,
    help="Maximum build attempts (default: 3)",
)
@click.option("--build-command", default=None, help="Build command to wrap")
@click.option("--deploy-command", default=None, help="Deploy command run after a green build")
@click.option("--health-url", default=None, help="URL probed once after deploy")
@click.pass_context
def run_pipeline(
    ctx: click.Context,
    project_root: Path,
    skip_prophet: bool,
    max_retries: Optional[int],
    build_command: Optional[str],
    deploy_command: Optional[str],
    health_url: Optional[str],
):
    """Run the full self-healing pipeline against PROJECT_ROOT."""
    settings = _prepare(
        project_root,
        max_retries=max_retries,
        build_command=build_command,
        deploy_command=deploy_command,
        health_url=health_url,
    )
    if not settings.build_command:
        raise click.UsageError("A build command is required (--build-command or HEALPACK_BUILD_COMMAND)")

    try:
        orchestrator = build_orchestrator(project_root, settings, skip_prophet=skip_prophet)
    except ConfigurationError as e:
        raise click.UsageError(str(e)) from e
    except RepairMemoryError as e:
        raise click.ClickException(f"ESCALATION: {e}. Sovereign intervention required.") from e

    outcome = orchestrator.run()
    click.echo(outcome.message)
    ctx.exit(outcome.exit_code)


@cli.command(name="memory")
@PROJECT_ROOT
@click.option("--json", "as_json", is_flag=True, help="Print entries and stats as JSON")
def show_memory(project_root: Path, as_json: bool):
    """Show the Repair Memory of PROJECT_ROOT."""
    settings = _prepare(project_root)
    try:
        store = RepairMemoryStore(settings.repair_memory_path(project_root.resolve()))
    except RepairMemoryError as e:
        raise click.ClickException(str(e)) from e

    entries = store.entries()
    stats = store.stats()

    if as_json:
        payload = {
            "entries": [entry.model_dump(mode="json") for entry in entries],
            "stats": stats,
        }
        click.echo(json.dumps(payload, indent=2))
        return

    console = Console()
    if not entries:
        console.print("[dim]Repair memory is empty[/dim]")
        return

    table = Table(title=f"Repair Memory ({store.path})")
    table.add_column("Pattern", style="cyan")
    table.add_column("Category", style="magenta")
    table.add_column("Fix", style="green")
    table.add_column("Uses", justify="right")
    table.add_column("Success", justify="right")
    table.add_column("Last used")
    table.add_column("Description")

    for entry in entries:
        table.add_row(
            entry.pattern_key,
            entry.category,
            entry.fix_name,
            str(entry.use_count),
            f"{entry.success_rate:.0%}" + (" (deprecated)" if entry.deprecated else ""),
            entry.last_used_at.strftime("%Y-%m-%d %H:%M"),
            entry.description,
        )

    console.print(table)
    console.print(
        f"[bold]{stats['total_entries']}[/bold] entries, "
        f"[bold]{stats['total_uses']}[/bold] total uses, "
        f"{stats['avg_success_rate']:.0%} average success, "
        f"{stats['deprecated_fixes']} deprecated"
    )


def main():
    """Console entry point for ``healpack``."""
    cli(prog_name="healpack")


if __name__ == "__main__":
    main()
