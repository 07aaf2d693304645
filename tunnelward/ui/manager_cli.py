"""tunnelward: manage SSH accounts reached through the stunnel transport"""

from pathlib import Path
from typing import Optional

import click
from rich import box
from rich.table import Table

from ..models.account import AccountStatus, AuthMode
from ..utils.config import describe_config
from ..utils.exceptions import CleanupIncomplete
from .common import console, get_app, handle_errors, require_root, status_text

STATUS_STYLES = {
    AccountStatus.ACTIVE: "green",
    AccountStatus.EXPIRED: "yellow",
    AccountStatus.DELETED: "red",
}


@click.group()
@click.option(
    "--data-dir",
    envvar="TUNNELWARD_DATA_DIR",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Directory holding manager.conf, settings.yaml and users.db",
)
@click.pass_context
def cli(ctx: click.Context, data_dir: Optional[Path]):
    """SSH User Manager for Stunnel"""
    ctx.ensure_object(dict).setdefault("data_dir", data_dir)


@cli.command()
@click.argument("username")
@click.argument("days", type=int, required=False)
@click.option("--password", "use_password", is_flag=True, help="Password authentication instead of a keypair")
@click.pass_context
@handle_errors
def create(ctx: click.Context, username: str, days: Optional[int], use_password: bool):
    """Create a new SSH user (key auth unless --password)"""
    require_root(ctx)
    app = get_app(ctx)
    mode = AuthMode.PASSWORD if use_password else AuthMode.KEY

    console.print(f"[blue]Creating SSH user: {username}[/blue]")
    created = app.controller.create(username, days=days, mode=mode)
    record, creds = created.record, created.credentials
    port = app.config.stunnel_port

    console.print("[green]User created successfully![/green]")
    console.print(f"[yellow]Username: {username}[/yellow]")
    if creds.auth_mode == AuthMode.PASSWORD:
        console.print(f"[yellow]Password: {creds.password}[/yellow]")
        console.print(f"[yellow]Connection: ssh {username}@your_server_ip -p {port} (via stunnel)[/yellow]")
    else:
        console.print(f"[yellow]Private key saved to: {creds.private_key_path}[/yellow]")
        console.print(f"[yellow]Public key: {creds.public_key}[/yellow]")
        console.print(
            f"[yellow]Connection: ssh -i {creds.private_key_path} {username}@your_server_ip -p {port} (via stunnel)[/yellow]"
        )
    console.print(f"[green]User {username} expires on: {record.expires_at.isoformat()}[/green]")


@cli.command()
@click.argument("username")
@click.pass_context
@handle_errors
def delete(ctx: click.Context, username: str):
    """Delete an SSH user"""
    require_root(ctx)
    app = get_app(ctx)
    console.print(f"[yellow]Deleting user: {username}[/yellow]")
    app.controller.delete(username)
    console.print(f"[green]User {username} deleted successfully[/green]")


@cli.command(name="list")
@click.pass_context
@handle_errors
def list_users(ctx: click.Context):
    """List all users"""
    app = get_app(ctx)
    views = app.controller.list_accounts()
    if not views:
        console.print("[yellow]No users found[/yellow]")
        return

    table = Table(title="SSH Users (via Stunnel)", box=box.SIMPLE)
    table.add_column("Username", style="cyan")
    table.add_column("Created")
    table.add_column("Expires")
    table.add_column("Auth")
    table.add_column("Status")
    for view in views:
        record = view.record
        style = STATUS_STYLES[view.status]
        table.add_row(
            record.username,
            record.created_at.strftime("%Y-%m-%d %H:%M:%S"),
            record.expires_at.isoformat(),
            record.auth_mode.value if record.auth_mode else "-",
            f"[{style}]{view.status.value}[/{style}]",
        )
    console.print(table)
    count, max_users = app.controller.usage()
    console.print(f"[blue]Total users: {count}/{max_users}[/blue]")


@cli.command()
@click.argument("username")
@click.pass_context
@handle_errors
def show(ctx: click.Context, username: str):
    """Show user details"""
    app = get_app(ctx)
    details = app.controller.show(username)
    record, identity = details.record, details.identity

    table = Table(title=f"User Details: {username}", show_header=False, box=box.SIMPLE)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("Created", record.created_at.strftime("%Y-%m-%d %H:%M:%S"))
    table.add_row("Expires", record.expires_at.isoformat())
    table.add_row("Auth mode", record.auth_mode.value if record.auth_mode else "unknown")
    table.add_row("Status", details.status.value)
    table.add_row("System user", "exists" if identity.exists else "missing")
    if identity.exists:
        table.add_row("SSH directory", "exists" if identity.credential_dir_exists else "missing")
        table.add_row("Authorized keys", "configured" if identity.authorized_keys_configured else "not configured")
        table.add_row("Private key", "available" if identity.private_key_available else "not available")
    console.print(table)


@cli.command()
@click.pass_context
@handle_errors
def cleanup(ctx: click.Context):
    """Remove expired users"""
    require_root(ctx)
    app = get_app(ctx)
    try:
        removed = app.controller.cleanup()
    except CleanupIncomplete as e:
        for username in e.removed:
            console.print(f"[yellow]Removed expired user: {username}[/yellow]")
        raise
    if not removed:
        console.print("[green]No expired users found[/green]")
        return
    console.print(f"[yellow]Found {len(removed)} expired user(s)[/yellow]")
    for username in removed:
        console.print(f"[yellow]Removed expired user: {username}[/yellow]")


@cli.command()
@click.pass_context
@handle_errors
def config(ctx: click.Context):
    """Show current configuration"""
    app = get_app(ctx)
    table = Table(title="Current Configuration", show_header=False, box=box.SIMPLE)
    table.add_column("Key", style="cyan")
    table.add_column("Value")
    for key, value in describe_config(app.config, app.config_manager).items():
        table.add_row(key, value)
    table.add_row("Log file", app.settings.logging.file_path)
    console.print(table)


@cli.command()
@click.pass_context
@handle_errors
def status(ctx: click.Context):
    """Show system status"""
    app = get_app(ctx)
    count, max_users = app.controller.usage()
    port = app.config.stunnel_port
    console.print("[blue]System Status:[/blue]")
    console.print(f"Users: {count}/{max_users}")
    console.print(f"Stunnel service: {status_text(app.services.transport_running())}")
    console.print(f"SSH service: {status_text(app.services.ssh_running())}")
    console.print(f"Port {port}: {status_text(app.services.port_listening(port), 'listening', 'not listening')}")


@cli.command(name="restart-transport")
@click.pass_context
@handle_errors
def restart_transport(ctx: click.Context):
    """Restart the stunnel service"""
    require_root(ctx)
    app = get_app(ctx)
    name = app.services.restart_transport()
    console.print(f"[green]Restarted {name}[/green]")


if __name__ == "__main__":
    cli()
