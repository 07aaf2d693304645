"""Shared helpers for the command line entry points"""

import functools
import os
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.markup import escape

from ..app import TunnelwardApp
from ..utils.exceptions import TunnelwardError

console = Console(highlight=False)


def get_app(ctx: click.Context) -> TunnelwardApp:
    """App from the context object, built on first use"""
    obj = ctx.ensure_object(dict)
    app = obj.get("app")
    if app is None:
        data_dir: Optional[Path] = obj.get("data_dir")
        app = TunnelwardApp(data_dir=data_dir).initialize()
        obj["app"] = app
    return app


def status_text(ok: bool, yes: str = "running", no: str = "not running") -> str:
    return f"[green]{yes}[/green]" if ok else f"[red]{no}[/red]"


def handle_errors(func):
    """Print category + identifier for known failures and exit with their code"""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except TunnelwardError as e:
            detail = escape(f" [{e.identifier}]") if e.identifier else ""
            console.print(f"[bold red]Error ({e.category}){detail}: {escape(str(e))}[/bold red]")
            raise SystemExit(e.exit_code)

    return wrapper


def require_root(ctx: click.Context) -> None:
    if not ctx.ensure_object(dict).get("require_root", True):
        return
    if os.geteuid() != 0:
        console.print("[bold red]Error: This command must be run as root[/bold red]")
        raise SystemExit(1)
