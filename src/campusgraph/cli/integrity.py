"""CLI commands for data integrity checks and repairs.

Usage:
    campusgraph integrity check [--sample-size N] [--output FILE]
    campusgraph integrity repair [--issues FILE] [--apply]
"""

import json
import sys
from pathlib import Path

import click
from pydantic import TypeAdapter

from ..quality import IntegrityIssue, Severity
from ..services import CatalogEngine
from .catalog import echo_json, run_with_engine

SEVERITY_COLORS = {
    Severity.CRITICAL: "red",
    Severity.HIGH: "yellow",
    Severity.MEDIUM: "white",
    Severity.LOW: "bright_black",
}


@click.group(name="integrity")
def cli():
    """Data integrity commands."""
    pass


@cli.command(name="check")
@click.option(
    "--sample-size", type=click.IntRange(min=1), default=None, help="Rows sampled per check"
)
@click.option("--skip-mismatches", is_flag=True, help="Skip course/college name checks")
@click.option("--skip-orphans", is_flag=True, help="Skip orphan checks")
@click.option("--skip-duplicates", is_flag=True, help="Skip duplicate checks")
@click.option("--skip-links", is_flag=True, help="Skip link table checks")
@click.option(
    "--output",
    "-o",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Write the full report as JSON",
)
def check(
    sample_size: int | None,
    skip_mismatches: bool,
    skip_orphans: bool,
    skip_duplicates: bool,
    skip_links: bool,
    output: Path | None,
):
    """Run an integrity sweep and print a summary.

    Exits with status 1 when critical issues are found.
    """

    async def _check(engine: CatalogEngine):
        return await engine.integrity.check(
            sample_size=sample_size,
            check_mismatches=not skip_mismatches,
            check_orphans=not skip_orphans,
            check_duplicates=not skip_duplicates,
            check_links=not skip_links,
        )

    report = run_with_engine(_check)

    click.echo(f"\nHealth score: {report.health_score}/100")
    click.echo("=" * 60)
    for severity in Severity:
        click.echo(f"  {severity.value:<10} {report.counts.get(severity.value, 0)}")

    for issue in report.issues:
        label = click.style(f"[{issue.severity.value}]", fg=SEVERITY_COLORS[issue.severity])
        click.echo(f"{label} {issue.kind.value} {issue.entity_type.value}:{issue.entity_id}")
        click.echo(f"    {issue.message}")

    if output:
        output.write_text(report.model_dump_json(indent=2))
        click.echo(f"\nReport written to {output}")

    if report.counts.get(Severity.CRITICAL.value, 0):
        sys.exit(1)


@cli.command(name="repair")
@click.option(
    "--issues",
    "issues_file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Report or issue list from 'integrity check --output'; a fresh sweep otherwise",
)
@click.option("--apply", is_flag=True, help="Write the fixes (dry run by default)")
def repair(issues_file: Path | None, apply: bool):
    """Repair course/college name mismatches."""

    async def _repair(engine: CatalogEngine):
        if issues_file is None:
            issues = (await engine.integrity.check()).issues
        else:
            data = json.loads(issues_file.read_text())
            if isinstance(data, dict):
                data = data.get("issues", [])
            issues = TypeAdapter(list[IntegrityIssue]).validate_python(data)
        return await engine.integrity.repair(issues, dry_run=not apply)

    result = run_with_engine(_repair)
    echo_json(result.model_dump(mode="json"))

    if not apply:
        click.echo("Dry run completed. No changes made. Pass --apply to write fixes.")
