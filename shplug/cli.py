"""Command line front end for shplug.

Declarations are read from the declarations file (``SHPLUG_DECLARATIONS``,
default ``$SHPLUG_HOME/plugins``), one plugin per line::

    zsh-users/zsh-autosuggestions
    junegunn/fzf, from:gh-r, as:cmd
    b4b4r07/enhancd, of:init.sh, frozen:1

Activate installed plugins from the shell's startup file with::

    eval "$(shplug load)"
"""

from __future__ import annotations

import contextlib
import logging
import sys
import typing as t
from collections.abc import Iterator
from pathlib import Path

import rich.console
import rich.markup
import rich.logging
import rich.table
import typer

from shplug import __version__, activation, scheduler
from shplug import status as drift
from shplug._private_path import PrivatePath
from shplug.config import load_settings
from shplug.context import Context
from shplug.errors import ConfigError, Interrupted
from shplug.registry import Registry, load_declarations
from shplug.validator import validate_registry

app = typer.Typer(
    help="Plugin manager for interactive shells.",
    invoke_without_command=True,
)
console = rich.console.Console()
err_console = rich.console.Console(stderr=True)

Ids = t.Annotated[list[str] | None, typer.Argument(help="Plugin ids (owner/name); default: all declared")]

_STATE_STYLES = {
    drift.DriftState.UP_TO_DATE: "green",
    drift.DriftState.FAST_FORWARDABLE: "cyan",
    drift.DriftState.LOCAL_OUT_OF_DATE: "yellow",
    drift.DriftState.NOT_ON_BRANCH: "magenta",
    drift.DriftState.NOT_INITIALIZED: "red",
    drift.DriftState.UNKNOWN: "dim",
    drift.DriftState.UNMANAGED: "dim",
}


def _version(value: bool) -> None:
    if value:
        console.print(f"shplug {__version__}")
        raise typer.Exit


@app.callback()
def _main(  # pyright: ignore[reportUnusedFunction]
    ctx: typer.Context,
    config: t.Annotated[Path | None, typer.Option(help="YAML settings file")] = None,
    version: t.Annotated[
        bool,
        typer.Option("--version", callback=_version, is_eager=True, help="Show the version and exit"),
    ] = False,
) -> None:
    """Plugin manager for interactive shells."""
    ctx.obj = config
    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())


class _Session(t.NamedTuple):
    ctx: Context
    declaration_failures: int


def _open(typer_ctx: typer.Context, out: rich.console.Console) -> _Session:
    """Load settings and declarations, validate them and build the core context."""
    try:
        settings = load_settings(path=t.cast("Path | None", typer_ctx.obj))
    except ConfigError as exc:
        err_console.print(f"[red]Error:[/red] {rich.markup.escape(str(exc))}")
        raise SystemExit(1) from None

    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(message)s",
        handlers=[rich.logging.RichHandler(console=err_console, show_path=False)],
    )

    registry = Registry()
    errors = load_declarations(registry, settings.declarations)
    for error in errors:
        err_console.print(f"[red]Error:[/red] {rich.markup.escape(error)}", highlight=False)
    failures = len(errors) + validate_registry(registry, settings.repos_dir, err_console)

    if not len(registry):
        err_console.print(f"[red]Error:[/red] no plugins declared in {PrivatePath(settings.declarations)}")
        raise SystemExit(1)
    return _Session(Context.create(settings, registry, out), failures)


def _finish(session: _Session, code: int) -> None:
    """Exit with *code*, or 1 when only the declarations had problems."""
    if code == 0 and session.declaration_failures:
        code = 1
    if code:
        raise SystemExit(min(code, 255))


@contextlib.contextmanager
def _interruptible() -> Iterator[None]:
    try:
        yield
    except Interrupted:
        err_console.print("\n[red bold]Interrupted.[/red bold] In-flight jobs were stopped.")
        raise SystemExit(130) from None


def _confirm_frozen(plugin_id: str) -> bool:
    return typer.confirm(f"{plugin_id} is frozen. Update anyway?", default=False)


def _summarize(summary: scheduler.RunSummary, verb: str) -> None:
    failures = summary.failures
    if not summary.results:
        console.print(f"[green]Nothing to {verb.lower()}.[/green]")
    elif failures:
        console.print(f"\n[red bold]{failures} failure(s)[/red bold] ({summary.elapsed:.1f}s)")
    else:
        console.print(f"\n[green bold]{verb} complete[/green bold] ({summary.elapsed:.1f}s)")


@app.command()
def install(
    ctx: typer.Context,
    ids: Ids = None,
    *,
    verbose: t.Annotated[bool, typer.Option("--verbose", help="Report plugins already installed")] = False,
) -> None:
    """Install declared plugins that are not on disk yet."""
    session = _open(ctx, console)
    with _interruptible():
        summary = scheduler.install(session.ctx, ids, verbose=verbose)
    _summarize(summary, "Install")
    _finish(session, summary.exit_code)


@app.command()
def update(
    ctx: typer.Context,
    ids: Ids = None,
    *,
    self_update: t.Annotated[bool, typer.Option("--self", help="Update shplug's own checkout")] = False,
) -> None:
    """Update installed plugins; frozen plugins only when named."""
    session = _open(ctx, console)
    confirm = _confirm_frozen if sys.stdin.isatty() else None
    with _interruptible():
        if self_update:
            summary = scheduler.update_self(session.ctx)
        else:
            summary = scheduler.update(session.ctx, ids, confirm=confirm)
    _summarize(summary, "Update")
    _finish(session, summary.exit_code)


@app.command()
def load(ctx: typer.Context) -> None:
    """Print shell code that activates installed plugins."""
    session = _open(ctx, err_console)
    with _interruptible():
        plan = activation.load(session.ctx)
    script = plan.render()
    if script:
        typer.echo(script)
    _finish(session, 0)


@app.command(name="list")
def list_plugins(ctx: typer.Context) -> None:
    """List declared plugins in declaration order."""
    session = _open(ctx, console)
    table = rich.table.Table(title="Declared plugins")
    table.add_column("Plugin")
    table.add_column("Kind")
    table.add_column("Specifiers")
    table.add_column("Installed")
    for plugin_id in session.ctx.registry.ids():
        spec = session.ctx.spec(plugin_id)
        specifiers = ", ".join(f"{key}:{value}" for key, value in spec.specifiers().items() if key != "as")
        installed = "[green]yes[/green]" if spec.dir.exists() else "[red]no[/red]"
        table.add_row(plugin_id, spec.kind, rich.markup.escape(specifiers), installed)
    console.print(table)
    _finish(session, 0)


@app.command()
def check(
    ctx: typer.Context,
    ids: Ids = None,
    *,
    verbose: t.Annotated[bool, typer.Option("--verbose", help="Name each missing plugin")] = False,
    install_missing: t.Annotated[bool, typer.Option("--install", help="Install what is missing")] = False,
) -> None:
    """Exit non-zero when declared plugins are not installed."""
    session = _open(ctx, console)
    missing = drift.check(session.ctx, ids, verbose=verbose)
    if not missing:
        console.print("[green]All plugins are installed.[/green]")
        _finish(session, 0)
        return
    if not install_missing:
        console.print(f"[yellow]{len(missing)} plugin(s) not installed.[/yellow] Run 'shplug install'.")
        raise SystemExit(1)
    with _interruptible():
        summary = scheduler.install(session.ctx, missing, verbose=verbose)
    _summarize(summary, "Install")
    _finish(session, summary.exit_code)


@app.command()
def status(ctx: typer.Context, ids: Ids = None) -> None:
    """Compare each checkout with its remote."""
    session = _open(ctx, console)
    with _interruptible():
        records = drift.status(session.ctx, ids)

    table = rich.table.Table(title="Plugin status")
    table.add_column("Plugin")
    table.add_column("State")
    table.add_column("Local")
    table.add_column("Tracking")
    table.add_column("Remote URL")
    for record in records:
        style = _STATE_STYLES[record.state]
        tracking = f"{record.tracking_remote}/{record.merge_branch}" if record.tracking_remote else ""
        table.add_row(
            record.plugin_id,
            f"[{style}]{record.state.value}[/{style}]",
            record.local_ref,
            tracking,
            rich.markup.escape(record.remote_url or record.detail),
        )
    console.print(table)
    _finish(session, 0)


if __name__ == "__main__":
    app()
