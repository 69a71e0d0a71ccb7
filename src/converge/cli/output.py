"""Rendering of plans and run results."""

import json
from typing import Any, Dict, List

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from converge.core.models import PlanAction, ResultOutcome
from converge.orchestrator.executor import PlanEntry, RunReport, TeardownResult, TeardownStatus

console = Console()

OUTCOME_STYLES = {
    ResultOutcome.UNCHANGED: "dim",
    ResultOutcome.CREATED: "green",
    ResultOutcome.UPDATED: "yellow",
    ResultOutcome.FAILED: "red",
}

ACTION_STYLES = {
    PlanAction.NO_OP: "dim",
    PlanAction.CREATE: "green",
    PlanAction.UPDATE: "yellow",
}


def _format_delta(delta: Dict[str, Any]) -> str:
    return ", ".join(f"{key}={json.dumps(value, default=str)}" for key, value in sorted(delta.items()))


def _output_json(data: Any):
    """Output in JSON format."""
    click.echo(json.dumps(data, indent=2, default=str))


def plan_to_dict(entry: PlanEntry) -> Dict[str, Any]:
    return {
        "name": entry.spec.logical_name,
        "kind": entry.spec.kind.value,
        "identity": entry.spec.identity,
        "action": entry.plan.action.value if entry.plan else None,
        "delta": entry.plan.delta if entry.plan else {},
        "resource_id": entry.observed.resource_id if entry.observed else None,
        "blocked_by": entry.blocked_by,
        "error": entry.error.message if entry.error else None,
    }


def render_plan(entries: List[PlanEntry], format: str = "table"):
    """Display what an apply would do."""
    if format == "json":
        _output_json([plan_to_dict(entry) for entry in entries])
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("Resource", style="cyan")
    table.add_column("Kind")
    table.add_column("Action")
    table.add_column("Details", style="white")

    for entry in entries:
        if entry.error:
            action, details = "[red]error[/red]", entry.error.message
        elif entry.blocked_by:
            action = "[blue]pending[/blue]"
            details = f"waits for {', '.join(entry.blocked_by)}"
        else:
            style = ACTION_STYLES[entry.plan.action]
            action = f"[{style}]{entry.plan.action.value}[/{style}]"
            details = _format_delta(entry.plan.delta) if entry.plan.delta else (
                entry.observed.resource_id or ""
            )
        table.add_row(entry.spec.logical_name, entry.spec.kind.value, action, details)

    console.print(table)


def render_report(report: RunReport, format: str = "table"):
    """Display the results of an apply run."""
    if format == "json":
        _output_json({
            "status": report.status.value,
            "duration": round(report.duration, 3),
            "counts": report.counts(),
            "results": [result.to_dict() for result in report.results.values()],
            "skipped": report.skipped,
        })
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("Resource", style="cyan")
    table.add_column("Kind")
    table.add_column("Outcome")
    table.add_column("Resource ID / Reason", style="white")
    table.add_column("Duration", justify="right")

    for name, result in report.results.items():
        style = OUTCOME_STYLES[result.outcome]
        detail = result.reason if result.is_failed() else (result.resource_id or "")
        table.add_row(
            name,
            result.spec.kind.value,
            f"[{style}]{result.outcome.value}[/{style}]",
            detail,
            f"{result.duration:.1f}s",
        )
    for name in report.skipped:
        table.add_row(name, "", "[dim]skipped[/dim]", "", "")

    console.print(table)

    counts = report.counts()
    summary = ", ".join(f"{key}: {value}" for key, value in counts.items() if value)
    if report.is_success():
        console.print(Panel.fit(
            f"[green]✓ Converged[/green]\n\n{summary}\nDuration: {report.duration:.2f}s",
            title="Apply Complete",
            border_style="green"
        ))
    else:
        console.print(Panel.fit(
            f"[red]✗ Apply failed[/red]\n\n{summary}\nDuration: {report.duration:.2f}s",
            title="Apply Failed",
            border_style="red"
        ))
        for result in report.failed():
            if result.error and result.error.suggestions:
                console.print(f"\n[bold]{result.spec.logical_name}[/bold]")
                for suggestion in result.error.suggestions:
                    console.print(f"  • {suggestion}")


def render_teardown(results: List[TeardownResult], format: str = "table"):
    """Display the results of a destroy run."""
    if format == "json":
        _output_json([
            {
                "name": result.spec.logical_name,
                "kind": result.spec.kind.value,
                "status": result.status.value,
                "resource_id": result.resource_id,
                "error": result.error.message if result.error else None,
            }
            for result in results
        ])
        return

    styles = {
        TeardownStatus.DELETED: "green",
        TeardownStatus.ABSENT: "dim",
        TeardownStatus.FAILED: "red",
        TeardownStatus.KEPT: "yellow",
    }
    table = Table(show_header=True, header_style="bold")
    table.add_column("Resource", style="cyan")
    table.add_column("Kind")
    table.add_column("Status")
    table.add_column("Details", style="white")

    for result in results:
        style = styles[result.status]
        details = result.error.message if result.error else (result.resource_id or "")
        table.add_row(
            result.spec.logical_name,
            result.spec.kind.value,
            f"[{style}]{result.status.value}[/{style}]",
            details,
        )

    console.print(table)
