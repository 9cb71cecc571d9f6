"""
Main CLI entry point.
"""

import typer

from bimsync import __version__
from bimsync.cli import discover, sync


def version_callback(value: bool):
    """Callback to display version and exit."""
    if value:
        typer.echo(f"bimsync version {__version__}")
        raise typer.Exit()


app = typer.Typer(
    name="bimsync",
    help="bimsync - Sync BIM models from external sources into renderable manifests",
    add_completion=True,
)

# Register subcommands
app.command(name="discover")(discover.discover)
app.command(name="sync")(sync.sync)


@app.callback(invoke_without_command=True)
def entrypoint(
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-v",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
):
    """
    bimsync - Sync BIM models from external sources into renderable manifests.

    Run 'bimsync <command> --help' for help on a specific command.
    """
    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit()


def main():
    """Main CLI entry point."""
    app()


if __name__ == "__main__":
    main()
