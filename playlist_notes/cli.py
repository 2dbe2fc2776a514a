"""
Command-line interface for playlist-notes.

This module implements the CLI using Click; rich-click is used for the
help formatting and colors.

Commands:
    pnotes init                         Create this device's identity
    pnotes restore <code>               Join an existing identity with a recovery code
    pnotes rotate                       Issue a new recovery code
    pnotes import <url>                 Import a playlist and merge remote notes
    pnotes more                         Load the next page of the playlist
    pnotes demo                         Load the read-only demo playlist
    pnotes sync                         Flush queues and merge remote notes
    pnotes flush                        Flush queues only
    pnotes show                         Print tracks, tags and notes
    pnotes note <track> <body>          Add a note (--at / --until in ms)
    pnotes tag <track> <tag>            Add a tag
    pnotes untag <track> <tag>          Remove a tag
    pnotes delete-note <track> <note>   Delete a note
    pnotes recover                      Recover state after an interrupted migration

Options:
    --config <path>                     Path to config.yaml
    --verbose                           Show debug output

Usage:
    pnotes init
    pnotes import "https://open.spotify.com/playlist/..."
    pnotes note 20VuO95A8RxUPlShnfYArW "sampled here" --at 130000
    pnotes tag 20VuO95A8RxUPlShnfYArW bass
    pnotes sync
"""

import sys
from pathlib import Path
from typing import Callable

import rich_click as click

# Configure rich-click for better help formatting
click.rich_click.USE_RICH_MARKUP = True
click.rich_click.SHOW_ARGUMENTS = True
click.rich_click.STYLE_ERRORS_SUGGESTION = "magenta italic"
click.rich_click.MAX_WIDTH = 100
click.rich_click.COMMAND_GROUPS = {
    "cli": [
        {"name": "Identity", "commands": ["init", "restore", "rotate"]},
        {"name": "Playlists", "commands": ["import", "more", "demo", "show"]},
        {"name": "Annotations", "commands": ["note", "tag", "untag", "delete-note"]},
        {"name": "Sync", "commands": ["sync", "flush", "recover"]},
    ],
}

from playlist_notes import __version__
from playlist_notes.app import Application
from playlist_notes.core import (
    ConfigError,
    PlaylistNotesError,
    RateLimited,
    StorageError,
    TransientError,
    get_logger,
    load_config,
    setup_logging,
    shutdown_logging,
)
from playlist_notes.state.models import PersistedState


logger = get_logger(__name__)


def format_ms(value: int | None) -> str:
    """Format milliseconds as m:ss."""
    if value is None:
        return ""
    seconds = value // 1000
    return f"{seconds // 60}:{seconds % 60:02d}"


def _run(ctx: click.Context, action: Callable[[Application], None]) -> None:
    """
    Build the application, run one command and report errors.
    
    Every error is reported on stderr and exits with code 1
    (130 on Ctrl-C).
    """
    app: Application | None = None
    options = ctx.obj or {}
    
    try:
        config = load_config(options.get("config_path"))
        setup_logging(config.storage.directory, verbose=options.get("verbose", False))
        app = Application(config)
        action(app)
    
    except ConfigError as e:
        click.echo(f"Configuration error: {e.message}", err=True)
        sys.exit(1)
    
    except StorageError as e:
        click.echo(f"Storage error: {e.message}", err=True)
        logger.error(f"Storage error: {e.message}", exc_info=True)
        sys.exit(1)
    
    except RateLimited as e:
        hint = f" (retry in {e.retry_after:.0f}s)" if e.retry_after else ""
        click.echo(f"Rate limited: {e.message}{hint}", err=True)
        sys.exit(1)
    
    except PlaylistNotesError as e:
        click.echo(f"Error: {e.message}", err=True)
        logger.debug(f"Details: {e.details}")
        sys.exit(1)
    
    except KeyboardInterrupt:
        click.echo("\nInterrupted by user", err=True)
        sys.exit(130)
    
    except Exception as e:
        click.echo(f"Unexpected error: {e}", err=True)
        logger.exception("Unexpected error")
        sys.exit(1)
    
    finally:
        if app is not None:
            app.close()
        shutdown_logging()


@click.group()
@click.option(
    "--config",
    "config_path",
    type=click.Path(path_type=Path, dir_okay=False),
    default=None,
    help="Path to config.yaml (default: ./config.yaml).",
)
@click.option("--verbose", is_flag=True, help="Show debug output.")
@click.version_option(version=__version__, prog_name="pnotes")
@click.pass_context
def cli(ctx: click.Context, config_path: Path | None, verbose: bool) -> None:
    """
    Annotate playlists with notes and tags, synced across your devices.
    """
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["verbose"] = verbose


# =============================================================================
# Identity
# =============================================================================

@cli.command()
@click.pass_context
def init(ctx: click.Context) -> None:
    """Create this device's anonymous identity."""
    def action(app: Application) -> None:
        result = app.identity.bootstrap()
        if result.recovery_code is None:
            click.echo(f"Device already initialized ({result.device_id})")
            return
        click.echo(f"Device: {result.device_id}")
        click.echo(f"Recovery code: {result.recovery_code}")
        click.echo("Write it down: it is shown only once and restores your notes on other devices.")
    
    _run(ctx, action)


@cli.command()
@click.argument("code")
@click.pass_context
def restore(ctx: click.Context, code: str) -> None:
    """Associate this device with the identity owning CODE."""
    def action(app: Application) -> None:
        identity = app.identity.restore(code)
        click.echo(f"Restored identity on device {identity.device_id}")
        if app.machine.state.import_meta.playlist_id:
            app.orchestrator.sync_remote()
    
    _run(ctx, action)


@cli.command()
@click.pass_context
def rotate(ctx: click.Context) -> None:
    """Issue a new recovery code; the old one stops working."""
    def action(app: Application) -> None:
        result = app.identity.rotate()
        click.echo(f"New recovery code: {result.recovery_code}")
    
    _run(ctx, action)


# =============================================================================
# Playlists
# =============================================================================

def _sync_after_load(app: Application) -> None:
    try:
        app.orchestrator.sync_remote()
    except TransientError as e:
        click.echo(f"Working offline: {e.message}", err=True)


@cli.command(name="import")
@click.argument("url")
@click.pass_context
def import_(ctx: click.Context, url: str) -> None:
    """Import the playlist at URL."""
    def action(app: Application) -> None:
        result = app.imports.import_initial(url)
        if result is None:
            return
        click.echo(f"Loaded {len(result.tracks)} tracks: {result.title}")
        if result.has_more:
            click.echo("More tracks available: run 'pnotes more'")
        _sync_after_load(app)
    
    _run(ctx, action)


@cli.command()
@click.pass_context
def more(ctx: click.Context) -> None:
    """Load the next page of the active playlist."""
    def action(app: Application) -> None:
        added = app.imports.import_more()
        click.echo(f"Added {added or 0} tracks")
    
    _run(ctx, action)


@cli.command()
@click.pass_context
def demo(ctx: click.Context) -> None:
    """Load the read-only demo playlist."""
    def action(app: Application) -> None:
        result = app.imports.load_demo()
        if result is not None:
            click.echo(f"Loaded demo playlist '{result.title}' ({len(result.tracks)} tracks, read-only)")
    
    _run(ctx, action)


def _print_state(state: PersistedState) -> None:
    meta = state.import_meta
    if not meta.playlist_id:
        click.echo("No playlist loaded. Run 'pnotes import <url>' or 'pnotes demo'.")
        return
    
    suffix = " [read-only]" if state.read_only else ""
    click.echo(f"{meta.playlist_title or meta.playlist_id} ({meta.provider}){suffix}")
    
    for position, track in enumerate(state.tracks, start=1):
        tags = state.tags_for(track.id)
        tag_text = f"  [{', '.join(tags)}]" if tags else ""
        click.echo(f"{position:3d}. {track.title} - {track.artist}  ({track.id}){tag_text}")
        for note in state.notes_for(track.id):
            span = format_ms(note.timestamp_ms)
            if note.timestamp_end_ms is not None:
                span = f"{span}-{format_ms(note.timestamp_end_ms)}"
            prefix = f"@{span} " if span else ""
            click.echo(f"       {prefix}{note.body}  ({note.id})")
    
    if meta.has_more:
        click.echo("More tracks available: run 'pnotes more'")


@cli.command()
@click.pass_context
def show(ctx: click.Context) -> None:
    """Print tracks with their tags and notes."""
    _run(ctx, lambda app: _print_state(app.machine.state))


# =============================================================================
# Annotations
# =============================================================================

@cli.command()
@click.argument("track_id")
@click.argument("body")
@click.option("--at", "timestamp_ms", type=click.IntRange(min=0), default=None, help="Start position in ms.")
@click.option("--until", "timestamp_end_ms", type=click.IntRange(min=0), default=None, help="End position in ms.")
@click.pass_context
def note(
    ctx: click.Context,
    track_id: str,
    body: str,
    timestamp_ms: int | None,
    timestamp_end_ms: int | None
) -> None:
    """Add a note to TRACK_ID."""
    def action(app: Application) -> None:
        created = app.orchestrator.add_note(track_id, body, timestamp_ms, timestamp_end_ms)
        if created is None:
            click.echo("Playlist is read-only; note not added", err=True)
            return
        click.echo(f"Added note {created.id}")
    
    _run(ctx, action)


def _tag_command(ctx: click.Context, track_id: str, tag: str, add: bool) -> None:
    def action(app: Application) -> None:
        if add:
            result = app.orchestrator.add_tag(track_id, tag)
        else:
            result = app.orchestrator.remove_tag(track_id, tag)
        if result.warning:
            click.echo("Playlist is read-only; tags unchanged", err=True)
            return
        # A CLI process does not outlive the debounce window
        app.orchestrator.flush_tags()
        click.echo(f"Tags: {', '.join(result.state.tags_for(track_id)) or '(none)'}")
    
    _run(ctx, action)


@cli.command()
@click.argument("track_id")
@click.argument("tag")
@click.pass_context
def tag(ctx: click.Context, track_id: str, tag: str) -> None:
    """Add TAG to TRACK_ID."""
    _tag_command(ctx, track_id, tag, add=True)


@cli.command()
@click.argument("track_id")
@click.argument("tag")
@click.pass_context
def untag(ctx: click.Context, track_id: str, tag: str) -> None:
    """Remove TAG from TRACK_ID."""
    _tag_command(ctx, track_id, tag, add=False)


@cli.command(name="delete-note")
@click.argument("track_id")
@click.argument("note_id")
@click.pass_context
def delete_note(ctx: click.Context, track_id: str, note_id: str) -> None:
    """Delete NOTE_ID from TRACK_ID (sent to the server on the next sync)."""
    def action(app: Application) -> None:
        removed = app.orchestrator.delete_note(track_id, note_id)
        if removed is None:
            click.echo("Playlist is read-only; note not deleted", err=True)
            return
        click.echo(f"Deleted note {note_id}; run 'pnotes sync' to propagate")
    
    _run(ctx, action)


# =============================================================================
# Sync
# =============================================================================

@cli.command()
@click.pass_context
def sync(ctx: click.Context) -> None:
    """Flush queued changes and merge notes from other devices."""
    def action(app: Application) -> None:
        report = app.orchestrator.on_reconnect()
        click.echo(
            f"Tags sent: {report.tags.sent}, deletions completed: {report.deletions.completed}, "
            f"pending: {len(app.orchestrator.tag_queue) + len(app.orchestrator.deletion_queue)}"
        )
        if report.sync_error:
            click.echo(f"Merge skipped: {report.sync_error}", err=True)
        else:
            click.echo("Merged remote notes" if report.merged else "Nothing to merge")
    
    _run(ctx, action)


@cli.command()
@click.option("--force", is_flag=True, help="Also send deletions that are still undoable.")
@click.pass_context
def flush(ctx: click.Context, force: bool) -> None:
    """Send queued tag updates and deletions without merging."""
    def action(app: Application) -> None:
        tags = app.orchestrator.flush_tags()
        deletions = app.orchestrator.flush_deletions(force=force)
        click.echo(
            f"Tags: {tags.sent} sent, {tags.retryable} pending, {tags.dropped} dropped; "
            f"deletions: {deletions.completed} completed, {deletions.retryable} pending, "
            f"{deletions.unauthorized + deletions.failed} dropped"
        )
    
    _run(ctx, action)


@cli.command()
@click.option("--backup", "from_backup", is_flag=True, help="Restore the pre-merge backup instead.")
@click.pass_context
def recover(ctx: click.Context, from_backup: bool) -> None:
    """Recover state after an interrupted migration (or from the backup)."""
    def action(app: Application) -> None:
        if from_backup:
            restored = app.restore_backup()
            click.echo("Restored state from backup" if restored else "No backup available")
            return
        # Application startup already promotes a pending-migration snapshot
        pending = app.state_store.get_pending_migration_snapshot()
        if pending is None:
            click.echo("Nothing to recover")
            return
        recovered = app.state_store.recover_from_pending_migration()
        if recovered is not None:
            app.machine.replace_state(recovered)
            click.echo("Recovered state from pending-migration snapshot")
    
    _run(ctx, action)


def main() -> None:
    """Entry point for the pnotes console script."""
    cli(obj={})


if __name__ == "__main__":
    main()
