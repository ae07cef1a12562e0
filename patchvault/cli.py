"""patchvault CLI — the main entry point.

Each command resolves the configuration, opens the vault and calls one
lifecycle operation. Failures print a single-line diagnostic and exit 1.
"""

import functools
import logging

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from patchvault import __version__
from patchvault.errors import ExternalToolFailure, PatchVaultError

console = Console()
err_console = Console(stderr=True)

STATE_STYLES = {
    "pending": "yellow",
    "committed": "green",
    "rolledback": "red",
}


def _configure_logging(verbose: bool) -> None:
    logger = logging.getLogger("patchvault")
    logger.setLevel(logging.DEBUG if verbose else logging.WARNING)
    if not logger.handlers:
        logger.addHandler(RichHandler(console=err_console, show_path=False))
    logger.propagate = False


def _lifecycle(ctx: click.Context):
    """Build the lifecycle engine for this invocation from the resolved config."""
    from patchvault.config import load_config
    from patchvault.lifecycle import PatchLifecycle

    config = load_config(ctx.obj.get("config_file"), **ctx.obj["overrides"])
    return PatchLifecycle.from_config(config)


def handle_errors(func):
    """Turn PatchVaultError into a one-line diagnostic and exit status 1."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except ExternalToolFailure as e:
            if e.output.strip():
                click.echo(e.output.rstrip("\n"), err=True)
            err_console.print(f"[red]Error:[/] {escape(str(e))}", highlight=False, soft_wrap=True)
            raise SystemExit(1)
        except PatchVaultError as e:
            err_console.print(f"[red]Error:[/] {escape(str(e))}", highlight=False, soft_wrap=True)
            raise SystemExit(1)

    return wrapper


patch_id_argument = click.argument("patch_id", type=click.IntRange(min=1))


@click.group()
@click.version_option(version=__version__)
@click.option(
    "--config", "-c", "config_file", default=None, type=click.Path(dir_okay=False),
    help="YAML config file (default: $PATCHVAULT_CONFIG or ~/.patchvault.yaml)",
)
@click.option("--source", default=None, help="Source tree (overrides config)")
@click.option("--target", default=None, help="Target tree (overrides config)")
@click.option("--vault", default=None, help="Vault directory (overrides config)")
@click.option("--verbose", "-v", is_flag=True, help="Log debug output")
@click.pass_context
def main(
    ctx: click.Context,
    config_file: str | None,
    source: str | None,
    target: str | None,
    vault: str | None,
    verbose: bool,
):
    """patchvault — carry numbered patches from a source tree to a target tree.

    Diffs taken from the source tree are stored in a vault as numbered
    patches, then tested, applied and committed (or rolled back) against
    the target tree.
    """
    ctx.ensure_object(dict)
    ctx.obj["config_file"] = config_file
    ctx.obj["overrides"] = {"source": source, "target": target, "vault": vault}
    _configure_logging(verbose)


# ── Create ───────────────────────────────────────────────────────────


@main.command()
@click.argument("rev1")
@click.argument("rev2")
@click.argument("path", required=False)
@click.pass_context
@handle_errors
def diff(ctx: click.Context, rev1: str, rev2: str, path: str | None):
    """Store the source-tree diff REV1..REV2 (optionally limited to PATH)."""
    patch_id = _lifecycle(ctx).create(rev1, rev2, path)
    console.print(f"[green]Created patch {patch_id}[/]", highlight=False)


@main.command(name="make-patch")
@click.argument("rev")
@click.pass_context
@handle_errors
def make_patch(ctx: click.Context, rev: str):
    """Store the change introduced by the single commit REV."""
    patch_id = _lifecycle(ctx).create_from_commit(rev)
    console.print(f"[green]Created patch {patch_id}[/]", highlight=False)


# ── Target tree ──────────────────────────────────────────────────────


@main.command(name="test")
@patch_id_argument
@click.pass_context
@handle_errors
def test_patch(ctx: click.Context, patch_id: int):
    """Dry-run a pending patch against the target tree."""
    result = _lifecycle(ctx).preview(patch_id)
    if result.text:
        click.echo(result.text)
    console.print(f"[green]Patch {patch_id} applies cleanly.[/]")


@main.command()
@patch_id_argument
@click.pass_context
@handle_errors
def apply(ctx: click.Context, patch_id: int):
    """Apply a pending patch to the target tree's working files."""
    result = _lifecycle(ctx).apply(patch_id)
    if result.text:
        click.echo(result.text)
    console.print(
        f"[green]Applied patch {patch_id}.[/] "
        f"Run 'commit {patch_id}' or 'rollback {patch_id}' next."
    )


@main.command()
@patch_id_argument
@click.pass_context
@handle_errors
def commit(ctx: click.Context, patch_id: int):
    """Commit the target tree and mark a pending patch as committed."""
    result = _lifecycle(ctx).commit(patch_id)
    if result.output is not None and result.output.text:
        click.echo(result.output.text)
    _print_commit(result)


@main.command()
@patch_id_argument
@click.pass_context
@handle_errors
def committed(ctx: click.Context, patch_id: int):
    """Mark a pending patch as committed (the commit was made by hand)."""
    _print_commit(_lifecycle(ctx).mark_committed(patch_id))


@main.command()
@patch_id_argument
@click.pass_context
@handle_errors
def rollback(ctx: click.Context, patch_id: int):
    """Revert the target tree and retire a pending patch."""
    removed = _lifecycle(ctx).rollback(patch_id)
    for path in removed:
        console.print(f"  removed {escape(str(path))}", highlight=False, soft_wrap=True)
    console.print(f"[red]Patch {patch_id} rolled back.[/]")


# ── History ──────────────────────────────────────────────────────────


@main.command()
@click.pass_context
@handle_errors
def latest(ctx: click.Context):
    """Show the most recent committed patch."""
    metadata = _lifecycle(ctx).latest()
    if metadata is None:
        console.print("[yellow]No history available: nothing has been committed yet.[/]")
        return
    console.print(Panel(_describe(metadata), title=f"Latest: patch {metadata.patch_id}"))


@main.command()
@click.pass_context
@handle_errors
def status(ctx: click.Context):
    """List every patch in the vault with its state."""
    engine = _lifecycle(ctx)
    rows = engine.status()
    if not rows:
        console.print("[yellow]Vault is empty.[/]")
        return

    table = Table(title=f"Patches ({len(rows)})")
    table.add_column("ID", justify="right", style="cyan")
    table.add_column("State")
    table.add_column("Range")
    table.add_column("Path")
    table.add_column("Summary")

    for row in rows:
        style = STATE_STYLES.get(row.state.value, "")
        meta = row.metadata
        if meta is None:
            table.add_row(
                str(row.patch_id), f"[{style}]{row.state.value}[/]", "", "", "(no metadata)"
            )
            continue
        table.add_row(
            str(row.patch_id),
            f"[{style}]{row.state.value}[/]",
            meta.revision_range,
            escape(meta.path or ""),
            escape(meta.summary[0][:60]) if meta.summary else "",
        )

    console.print(table)
    latest_id = engine.vault.latest_committed()
    console.print(f"Latest committed: {latest_id if latest_id else '(none)'}", highlight=False)


@main.command()
@patch_id_argument
@click.pass_context
@handle_errors
def show(ctx: click.Context, patch_id: int):
    """Print a patch's metadata and diff text."""
    row, diff_bytes = _lifecycle(ctx).show(patch_id)
    style = STATE_STYLES.get(row.state.value, "")
    body = f"State: [{style}]{row.state.value}[/]"
    if row.metadata:
        body += "\n" + _describe(row.metadata)
    console.print(Panel(body, title=f"Patch {patch_id}"))
    click.echo(diff_bytes, nl=False)


@main.command()
@click.pass_context
@handle_errors
def history(ctx: click.Context):
    """Print the append-only creation log."""
    text = _lifecycle(ctx).history()
    if not text:
        console.print("[yellow]History log is empty.[/]")
        return
    click.echo(text, nl=False)


def _print_commit(result) -> None:
    console.print(f"[green]Patch {result.patch_id} committed.[/]")
    if not result.pointer_advanced:
        console.print(
            "[yellow]Latest pointer unchanged: a newer patch was already committed.[/]"
        )


def _describe(metadata) -> str:
    lines = [
        f"Range:   {metadata.from_rev}..{metadata.to_rev}",
        f"         {metadata.from_sha}..{metadata.to_sha}",
        f"Path:    {metadata.path or '(whole tree)'}",
        f"Created: {metadata.created_at}",
    ]
    if metadata.summary:
        lines.append("Commits:")
        lines.extend(f"  {s}" for s in metadata.summary)
    return escape("\n".join(lines))


if __name__ == "__main__":
    main()
