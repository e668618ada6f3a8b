"""
CLI interface for the songbook.

Usage:
    songbook serve
    songbook add song.chopro
    songbook search "artist:beatles yesterday"
    songbook get yesterday-the-beatles --type text/html --transpose 2

Commands run against the data root with the administrator key.
"""

import asyncio
import sys
from pathlib import Path
from typing import Optional

import typer
from typing_extensions import Annotated

from .api import Songbook
from .logging_config import configure_quiet_mode, enable_debug_mode, verbose_from_env
from .render import SUPPORTED_TYPES
from .types import Operation, OperationKind, Result

# Configure quiet mode by default (suppress verbose library output)
# Set SONGBOOK_VERBOSE=1 to enable debug mode via environment
if verbose_from_env():
    enable_debug_mode()
else:
    configure_quiet_mode(quiet=True)


def _version_callback(value: bool):
    if value:
        from importlib.metadata import version
        print(f"songbook {version('songbook')}")
        raise typer.Exit()


def _verbose_callback(value: bool):
    if value:
        enable_debug_mode()


_data_root_override: Optional[Path] = None


def _data_root_callback(value: Optional[Path]):
    global _data_root_override
    if value is not None:
        _data_root_override = value


app = typer.Typer(
    name="songbook",
    help="Songbook server and command line tools.",
    no_args_is_help=True,
    rich_markup_mode=None,
)


@app.callback()
def main_callback(
    verbose: Annotated[bool, typer.Option(
        "--verbose", "-v",
        help="Enable debug-level logging to stderr",
        callback=_verbose_callback,
        is_eager=True,
    )] = False,
    version: Annotated[Optional[bool], typer.Option(
        "--version",
        help="Show version and exit",
        callback=_version_callback,
        is_eager=True,
    )] = None,
    data_root: Annotated[Optional[Path], typer.Option(
        "--data-root", "-d",
        envvar="DATA_ROOT",
        help="Path to the data root (default: ./data)",
        callback=_data_root_callback,
        is_eager=True,
    )] = None,
):
    """Songbook server and command line tools."""


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------

def _get_songbook() -> Songbook:
    """Open the songbook, reporting configuration errors cleanly."""
    try:
        return Songbook(_data_root_override)
    except ValueError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)


def _run(songbook: Songbook, kind: OperationKind, **fields) -> Result:
    """Run one operation as administrator; exit 1 on failure."""
    operation = Operation(kind, request_key=songbook.admin_key, activate=False, **fields)
    result = asyncio.run(songbook.handle(operation))
    if not result.ok:
        typer.echo(f"Error ({int(result.status)}): {result.body}", err=True)
        raise typer.Exit(1)
    return result


def _read_song_file(file: Path) -> str:
    """Song text from a file, or stdin for '-'."""
    if str(file) == "-":
        return sys.stdin.read()
    try:
        return file.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        typer.echo(f"Error: cannot read {file}: {e}", err=True)
        raise typer.Exit(1)


def _echo_body(body: str) -> None:
    typer.echo(body, nl=not body.endswith("\n"))


SongFileArgument = Annotated[
    Path,
    typer.Argument(help="Song file in ChordPro format ('-' for stdin)"),
]


# -----------------------------------------------------------------------------
# Commands
# -----------------------------------------------------------------------------

@app.command()
def serve(
    host: Annotated[Optional[str], typer.Option(
        "--host", help="Interface to bind (default from config)",
    )] = None,
    port: Annotated[Optional[int], typer.Option(
        "--port", "-p", help="Port to listen on (default from config)",
    )] = None,
):
    """Run the HTTP server."""
    import uvicorn

    from .server import create_app

    songbook = _get_songbook()
    config = songbook.config
    host = host or config.host
    port = port or config.port
    try:
        typer.echo(f"Starting server on '{host}:{port}'", err=True)
        if songbook.pending_activation:
            typer.echo(f"Administrator key: {songbook.admin_key}", err=True)
        uvicorn.run(create_app(songbook), host=host, port=port,
                    log_level=config.log_level.lower())
    finally:
        songbook.close()


@app.command()
def reindex():
    """Rebuild the search index from the song files."""
    with _get_songbook() as songbook:
        result = _run(songbook, OperationKind.REINDEX)
    typer.echo(f"Reindexed {result.body} songs")


@app.command()
def keys(
    regenerate: Annotated[bool, typer.Option(
        "--regenerate", help="Create a new administrator key",
    )] = False,
    user: Annotated[Optional[str], typer.Option(
        "--user", help="Set the user key (required for reading)",
    )] = None,
    clear_user: Annotated[bool, typer.Option(
        "--clear-user", help="Remove the user key (reading becomes open)",
    )] = False,
):
    """
    Show or change the access keys.

    \b
    Examples:
        songbook keys                    # Show keys
        songbook keys --regenerate       # New administrator key
        songbook keys --user s3cret      # Require a key for reading
        songbook keys --clear-user       # Open reading to everybody
    """
    if user is not None and clear_user:
        typer.echo("Error: Specify either --user or --clear-user, not both", err=True)
        raise typer.Exit(1)

    with _get_songbook() as songbook:
        state = songbook.access.state
        try:
            if regenerate:
                state.regenerate_admin_key()
            if user is not None:
                state.set_user_key(user)
            elif clear_user:
                state.set_user_key(None)
        except (OSError, ValueError) as e:
            typer.echo(f"Error: {e}", err=True)
            raise typer.Exit(1)

        typer.echo(f"administrator: {state.admin_key}")
        typer.echo(f"user: {state.user_key or '(none, reading is open)'}")
        if state.pending_activation:
            typer.echo("administrator key not yet activated")


@app.command()
def search(
    query: Annotated[Optional[str], typer.Argument(help="Search query (empty lists all songs)")] = None,
):
    """
    Search songs.

    \b
    Examples:
        songbook search yesterday
        songbook search 'artist:beatles -title:help'
        songbook search '"let it be"'
    """
    with _get_songbook() as songbook:
        result = _run(songbook, OperationKind.SEARCH, query=query, accept="text/plain")
    _echo_body(result.body)


@app.command()
def get(
    id: Annotated[str, typer.Argument(help="Song ID")],
    content_type: Annotated[str, typer.Option(
        "--type", "-t", help=f"Representation: {', '.join(SUPPORTED_TYPES)}",
    )] = "text/song",
    transpose: Annotated[int, typer.Option(
        "--transpose", help="Shift chords by this many semitones",
    )] = 0,
):
    """Print a song."""
    if content_type not in SUPPORTED_TYPES:
        typer.echo(f"Error: unsupported type {content_type!r}", err=True)
        raise typer.Exit(1)
    with _get_songbook() as songbook:
        result = _run(songbook, OperationKind.READ, id=id,
                      accept=content_type, transpose=transpose)
    _echo_body(result.body)


@app.command()
def add(file: SongFileArgument):
    """Add a song; prints its new ID."""
    body = _read_song_file(file)
    with _get_songbook() as songbook:
        result = _run(songbook, OperationKind.CREATE, raw_body=body)
    typer.echo(result.id)


@app.command()
def update(
    id: Annotated[str, typer.Argument(help="Song ID")],
    file: SongFileArgument,
):
    """Replace the text of an existing song."""
    body = _read_song_file(file)
    with _get_songbook() as songbook:
        result = _run(songbook, OperationKind.UPDATE, id=id, raw_body=body)
    typer.echo(f"Updated {result.id}")


@app.command()
def remove(
    id: Annotated[str, typer.Argument(help="Song ID")],
):
    """Delete a song."""
    with _get_songbook() as songbook:
        result = _run(songbook, OperationKind.DELETE, id=id)
    typer.echo(f"Deleted {result.id}")


# -----------------------------------------------------------------------------

def main():
    try:
        app()
    except SystemExit:
        raise  # Let typer handle exit codes
    except KeyboardInterrupt:
        raise SystemExit(130)  # Standard exit code for Ctrl+C
    except Exception as e:
        # Log full traceback to file, show clean message to user
        from .errors import log_exception
        log_path = log_exception(e, context="songbook CLI")
        typer.echo(f"Error: {e}", err=True)
        typer.echo(f"Details logged to {log_path}", err=True)
        raise SystemExit(1)


if __name__ == "__main__":
    main()
