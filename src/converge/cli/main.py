"""Main CLI entry point."""

import signal
import sys
from contextlib import contextmanager
from typing import Optional

import click
from rich.panel import Panel
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn

from converge.cli.output import console, render_plan, render_report, render_teardown
from converge.config.parser import Config, ConfigValidationError
from converge.core.reconciler import Reconciler
from converge.core.waiter import CancellationToken
from converge.orchestrator.executor import ReconcileExecutor
from converge.providers.aws import AWSProvider
from converge.utils.aws_client import AWSClientManager
from converge.utils.errors import ReconcileError, error_handler
from converge.utils.logging import get_logger, setup_logging

logger = get_logger(__name__)


@click.group()
@click.option('--profile', help='AWS profile to use')
@click.option('--region', help='AWS region')
@click.option('--log-level', default='info', type=click.Choice(['debug', 'info', 'warning', 'error']))
@click.option('--log-dir', default='.converge/logs', help='Directory for JSON log files (empty to disable)')
@click.pass_context
def cli(ctx, profile, region, log_level, log_dir):
    """Converge AWS resources to their declared state."""
    ctx.ensure_object(dict)
    ctx.obj['profile'] = profile
    ctx.obj['region'] = region
    ctx.obj['log_level'] = log_level

    setup_logging(log_level, log_dir or None)


def load_config(config_path: str = "converge.yaml") -> Config:
    """Load and validate configuration file."""
    try:
        config = Config(config_path)
        config.load()
        return config
    except FileNotFoundError:
        console.print(f"[red]Error:[/red] Configuration file not found: {config_path}")
        sys.exit(1)
    except ConfigValidationError as e:
        console.print("[red]Configuration validation failed:[/red]\n")
        console.print(str(e), markup=False)
        sys.exit(1)


def build_client_manager(
    config: Config,
    profile: Optional[str] = None,
    region: Optional[str] = None
) -> AWSClientManager:
    # Command-line flags win over the configuration file
    return AWSClientManager(
        profile=profile or config.project.profile,
        region=region or config.project.region,
        max_pool_connections=max(10, config.settings.max_workers * 2),
    )


def build_executor(
    config: Config,
    profile: Optional[str] = None,
    region: Optional[str] = None
) -> ReconcileExecutor:
    """Create the executor for a configuration, wired to AWS."""
    provider = AWSProvider(build_client_manager(config, profile, region))

    settings = config.settings
    reconciler = Reconciler(
        provider,
        wait_config=settings.wait.to_wait_config(),
        wait_overrides=settings.wait_configs(),
    )
    return ReconcileExecutor(
        reconciler,
        retry_policy=settings.retry.to_policy(),
        max_workers=settings.max_workers,
        parallel=settings.parallel,
    )


@contextmanager
def cancel_on_interrupt():
    """Turn Ctrl-C into a cancellation request instead of killing the run."""
    token = CancellationToken()

    def handle_interrupt(signum, frame):
        console.print("\n[yellow]Cancelling; waiting for in-flight calls to finish...[/yellow]")
        token.cancel()

    previous = signal.signal(signal.SIGINT, handle_interrupt)
    try:
        yield token
    finally:
        signal.signal(signal.SIGINT, previous)


def _fail(error: ReconcileError):
    console.print(f"[red]Error:[/red] {error.message}")
    for suggestion in error.suggestions:
        console.print(f"  • {suggestion}")
    sys.exit(1)


@cli.command()
@click.option('--config', default='converge.yaml', help='Path to configuration file')
@click.option('--check-credentials', is_flag=True, help='Also check that AWS credentials work')
@click.pass_context
def validate(ctx, config, check_credentials):
    """Validate configuration file."""
    cfg = load_config(config)
    console.print(
        f"[green]✓[/green] {config} is valid: project {cfg.project.project}, "
        f"{len(cfg.specs)} resources"
    )

    if check_credentials:
        client_manager = build_client_manager(cfg, ctx.obj.get('profile'), ctx.obj.get('region'))
        try:
            credentials = client_manager.validate_credentials()
        except ReconcileError as e:
            _fail(e)
        console.print(
            f"[green]✓[/green] AWS account {credentials.account_id} "
            f"in {credentials.region}"
        )


@cli.command()
@click.option('--config', default='converge.yaml', help='Path to configuration file')
@click.option('--only', multiple=True, help='Limit to these resources (and their dependencies)')
@click.option('--format', 'output_format', type=click.Choice(['table', 'json']), default='table',
              help='Output format')
@click.pass_context
def plan(ctx, config, only, output_format):
    """Show what apply would change, without changing anything."""
    cfg = load_config(config)
    try:
        executor = build_executor(cfg, ctx.obj.get('profile'), ctx.obj.get('region'))
        entries = executor.plan(cfg.get_specs(list(only)))
    except ConfigValidationError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)
    except ReconcileError as e:
        _fail(e)

    render_plan(entries, output_format)

    if any(entry.error for entry in entries):
        sys.exit(1)


@cli.command()
@click.option('--config', default='converge.yaml', help='Path to configuration file')
@click.option('--only', multiple=True, help='Limit to these resources (and their dependencies)')
@click.option('--parallel/--sequential', default=None, help='Reconcile independent resources concurrently')
@click.option('--format', 'output_format', type=click.Choice(['table', 'json']), default='table',
              help='Output format')
@click.pass_context
def apply(ctx, config, only, parallel, output_format):
    """Create or update resources until they match the configuration."""
    cfg = load_config(config)

    try:
        executor = build_executor(cfg, ctx.obj.get('profile'), ctx.obj.get('region'))
        if parallel is not None:
            executor.parallel = parallel
        specs = cfg.get_specs(list(only))
    except ConfigValidationError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)
    except ReconcileError as e:
        _fail(e)

    if output_format == 'table':
        console.print(Panel.fit(
            f"[bold]Applying {cfg.project.project}[/bold]\n"
            f"Resources: {len(specs)}\n"
            f"Mode: {'parallel' if executor.parallel else 'sequential'}",
            title="Apply",
            border_style="cyan"
        ))

    try:
        with cancel_on_interrupt() as token, Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TaskProgressColumn(),
            console=console,
            transient=True,
            disable=output_format != 'table'
        ) as progress:
            task_id = progress.add_task("[cyan]Reconciling...", total=len(specs))

            def on_result(name, result):
                mark = "[red]✗[/red]" if result.is_failed() else "[green]✓[/green]"
                progress.update(task_id, advance=1, description=f"{mark} {name}")

            report = executor.execute(specs, cancel=token, progress_callback=on_result)
    except ReconcileError as e:
        _fail(e)
    except Exception as e:
        error = error_handler.handle_exception(e)
        error_handler.log_error(error)
        _fail(error)

    render_report(report, output_format)

    if not report.is_success():
        sys.exit(1)


@cli.command()
@click.option('--config', default='converge.yaml', help='Path to configuration file')
@click.option('--yes', '-y', is_flag=True, help='Skip confirmation prompt')
@click.option('--format', 'output_format', type=click.Choice(['table', 'json']), default='table',
              help='Output format')
@click.pass_context
def destroy(ctx, config, yes, output_format):
    """Delete every resource declared in the configuration, dependents first."""
    cfg = load_config(config)
    specs = cfg.get_specs()

    if not yes:
        confirm = click.confirm(
            f"Delete {len(specs)} resources of project {cfg.project.project}?",
            default=False
        )
        if not confirm:
            console.print("Aborted.")
            return

    try:
        executor = build_executor(cfg, ctx.obj.get('profile'), ctx.obj.get('region'))
        with cancel_on_interrupt() as token:
            results = executor.destroy(specs, cancel=token)
    except ReconcileError as e:
        _fail(e)

    render_teardown(results, output_format)

    if any(result.is_failed() for result in results):
        sys.exit(1)


def main():
    cli(obj={})


if __name__ == '__main__':
    main()
