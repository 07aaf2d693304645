"""tunnelward-monitor: unattended supervision of the account population"""

from pathlib import Path
from typing import Optional

import click
from rich import box
from rich.table import Table

from ..core.scheduler import CronScheduler, run_forever
from ..utils.exceptions import CleanupIncomplete
from .common import console, get_app, handle_errors, require_root, status_text


@click.group(invoke_without_command=True)
@click.option(
    "--data-dir",
    envvar="TUNNELWARD_DATA_DIR",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
)
@click.pass_context
def cli(ctx: click.Context, data_dir: Optional[Path]):
    """SSH User Manager Monitor (runs `monitor` when no command is given)"""
    ctx.ensure_object(dict).setdefault("data_dir", data_dir)
    if ctx.invoked_subcommand is None:
        ctx.invoke(monitor)


@cli.command()
@click.option("--report", "include_report", is_flag=True, help="Also write the usage report")
@click.pass_context
@handle_errors
def monitor(ctx: click.Context, include_report: bool = False):
    """Run the full monitoring cycle"""
    require_root(ctx)
    app = get_app(ctx)
    console.print("[blue]Starting SSH User Manager monitoring cycle[/blue]")
    run = app.supervisor.run_monitor(include_report=include_report)

    if run.health_issues:
        console.print("[red]System health issues detected:[/red]")
        for issue in run.health_issues:
            console.print(f"[red]  - {issue}[/red]")
    else:
        console.print("[green]System health check passed[/green]")
    console.print(f"[blue]Active SSH sessions: {run.session_count}[/blue]")
    for username in run.expiring:
        console.print(f"[yellow]Expiring soon: {username}[/yellow]")
    for username in run.removed:
        console.print(f"[yellow]Removed expired user: {username}[/yellow]")
    for log in run.rotated_logs:
        console.print(f"[yellow]Rotated log: {log}[/yellow]")
    if run.report_path:
        console.print(f"[green]Usage report generated: {run.report_path}[/green]")

    if not run.succeeded:
        console.print(f"[bold red]Expired user cleanup failed: {run.cleanup_error}[/bold red]")
        raise SystemExit(1)
    console.print("[green]Monitoring cycle completed[/green]")


@cli.command()
@click.pass_context
@handle_errors
def status(ctx: click.Context):
    """Quick status"""
    app = get_app(ctx)
    port = app.config.stunnel_port
    count, _ = app.controller.usage()
    sessions = app.supervisor.sessions.observe()
    console.print("[blue]SSH User Manager Quick Status[/blue]")
    console.print(f"Stunnel: {status_text(app.services.transport_running(), 'Running', 'Not Running')}")
    console.print(f"SSH: {status_text(app.services.ssh_running(), 'Running', 'Not Running')}")
    console.print(f"Port {port}: {status_text(app.services.port_listening(port), 'Listening', 'Not Listening')}")
    console.print(f"Users: {count}")
    console.print(f"Active sessions: {sessions.session_count}")


@cli.command()
@click.pass_context
@handle_errors
def cleanup(ctx: click.Context):
    """Cleanup expired users only"""
    require_root(ctx)
    app = get_app(ctx)
    try:
        removed = app.supervisor.run_cleanup()
    except CleanupIncomplete as e:
        for username in e.removed:
            console.print(f"[yellow]Removed expired user: {username}[/yellow]")
        raise
    if removed:
        for username in removed:
            console.print(f"[yellow]Removed expired user: {username}[/yellow]")
    else:
        console.print("[green]No expired users found[/green]")


@cli.command()
@click.pass_context
@handle_errors
def health(ctx: click.Context):
    """Check system health"""
    app = get_app(ctx)
    result = app.supervisor.check_health()
    table = Table(title=f"System Health: {result.status.value}", box=box.SIMPLE)
    table.add_column("Check", style="cyan")
    table.add_column("Result")
    for name, check in result.checks.items():
        ok = check.get("status") == "ok"
        table.add_row(name, "[green]ok[/green]" if ok else f"[red]{check.get('error')}[/red]")
    console.print(table)
    if not result.healthy:
        raise SystemExit(1)


@cli.command()
@click.pass_context
@handle_errors
def sessions(ctx: click.Context):
    """Monitor active sessions"""
    app = get_app(ctx)
    report = app.supervisor.monitor_sessions()
    console.print(f"[blue]Active SSH sessions: {report.session_count}[/blue]")
    for user, count in report.sessions_per_user.items():
        console.print(f"[blue]  - {user}: {count}[/blue]")
    if report.suspicious_users:
        console.print("[yellow]Users with multiple sessions detected:[/yellow]")
        console.print(f"[yellow]{report.suspicious_summary()}[/yellow]")


@cli.command()
@click.pass_context
@handle_errors
def expiring(ctx: click.Context):
    """Check for expiring users"""
    app = get_app(ctx)
    records = app.supervisor.check_expiring()
    if not records:
        console.print("[green]No users expiring soon[/green]")
        return
    days = app.settings.monitor.expiry_warning_days
    console.print(f"[yellow]Users expiring within {days} days:[/yellow]")
    for record in records:
        console.print(f"[yellow]  - {record.username} expires on {record.expires_at.isoformat()}[/yellow]")


@cli.command()
@click.pass_context
@handle_errors
def report(ctx: click.Context):
    """Generate usage report"""
    app = get_app(ctx)
    path = app.supervisor.generate_report()
    console.print(f"[green]Usage report generated: {path}[/green]")


@cli.command(name="install-cron")
@click.argument("cron_schedule", required=False)
@click.pass_context
@handle_errors
def install_cron(ctx: click.Context, cron_schedule: Optional[str]):
    """Install cron job (default: settings monitor.cron_schedule)"""
    app = get_app(ctx)
    cron_schedule = cron_schedule or app.settings.monitor.cron_schedule
    scheduler = CronScheduler()
    try:
        installed = scheduler.install(cron_schedule)
    except ValueError as e:
        console.print(f"[bold red]Error: {e}[/bold red]")
        raise SystemExit(2)
    if installed:
        console.print("[green]Cron job installed successfully[/green]")
        console.print(f"Schedule: {cron_schedule}")
        console.print(f"Command: {scheduler.marker}")
    else:
        console.print("[yellow]Cron job already exists[/yellow]")


@cli.command(name="remove-cron")
@click.pass_context
@handle_errors
def remove_cron(ctx: click.Context):
    """Remove cron job"""
    if CronScheduler().remove():
        console.print("[green]Cron job removed successfully[/green]")
    else:
        console.print("[yellow]No cron job found[/yellow]")


@cli.command()
@click.option("--interval-hours", type=int, default=None, help="Defaults to settings monitor.interval_hours")
@click.pass_context
@handle_errors
def watch(ctx: click.Context, interval_hours: Optional[int]):
    """Run the monitoring cycle in the foreground on a fixed interval"""
    require_root(ctx)
    app = get_app(ctx)
    interval = interval_hours or app.settings.monitor.interval_hours
    console.print(f"[blue]Monitoring every {interval} hour(s); Ctrl+C to stop[/blue]")
    try:
        run_forever(app.supervisor.run_monitor, interval_hours=interval)
    except KeyboardInterrupt:
        console.print("[yellow]Stopped[/yellow]")


if __name__ == "__main__":
    cli()
