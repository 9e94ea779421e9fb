"""
Tempo Playlist CLI - Command Line Interface

Subcommands:
    login   Authorize with Spotify (PKCE) and store tokens
    logout  Delete stored tokens
    scan    Build a tempo-matched selection and optionally save it as a playlist
"""

import argparse
import asyncio
import logging
import signal
import sys
from datetime import datetime
from typing import Callable, List, Optional

import httpx

from src.logger import setup_logging
from src.spotify.auth import build_authorization_request, exchange_code, parse_redirect
from src.spotify.client import SpotifyClient
from src.spotify.exceptions import SpotifyAuthenticationError, SpotifyError
from src.spotify.models import CreatedPlaylist, PlaylistSource

from .assembler import DurationTargetAssembler
from .config import TempoPlaylistConfig
from .diagnostics_log import DiagnosticsLogger
from .exceptions import ConfigurationError, PlaylistCreationError
from .models import AssemblerState, ScanSession, ScanSettings
from .scheduler import CancellationToken
from .status_tracker import ItemState, LiveStatusTracker, StatusEvent
from .tempo_oracle import TempoOracleClient

logger = logging.getLogger(__name__)

_STATE_MARKERS = {
    ItemState.MATCHED: "[match]",
    ItemState.REJECTED: "[skip] ",
    ItemState.UNRESOLVED: "[????] ",
}


def create_parser() -> argparse.ArgumentParser:
    """
    Create argument parser for CLI.

    Returns:
        Configured ArgumentParser instance
    """
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose debug logging",
    )

    parser = argparse.ArgumentParser(
        prog="tempo-playlist",
        description="Build Spotify playlists that match a target tempo range",
        epilog="Example: tempo-playlist scan --min-bpm 150 --max-bpm 170 --minutes 45 --create",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--version",
        action="version",
        version="%(prog)s 1.0.0",
    )

    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")
    subparsers.required = True

    subparsers.add_parser("login", parents=[common], help="Authorize with Spotify")
    subparsers.add_parser("logout", parents=[common], help="Delete stored Spotify tokens")

    scan = subparsers.add_parser("scan", parents=[common], help="Scan playlists for tempo matches")
    scan.add_argument("--min-bpm", type=float, metavar="BPM", help="Lower tempo bound (default: TEMPO_MIN_BPM or 100)")
    scan.add_argument("--max-bpm", type=float, metavar="BPM", help="Upper tempo bound (default: TEMPO_MAX_BPM or 130)")
    scan.add_argument(
        "--minutes",
        type=float,
        metavar="MIN",
        help="Target duration in minutes (default: TEMPO_TARGET_MINUTES or 30)",
    )
    scan.add_argument(
        "--concurrency",
        type=int,
        metavar="N",
        help="Maximum simultaneous tempo lookups (default: TEMPO_MAX_CONCURRENCY or 10)",
    )
    scan.add_argument(
        "--order",
        choices=["recent", "random"],
        help="Playlist scan order (default: TEMPO_SOURCE_ORDER or recent)",
    )
    scan.add_argument(
        "--playlist",
        action="append",
        dest="playlists",
        metavar="PLAYLIST",
        help="Scan only this playlist, by id or name (repeatable; default: all playlists)",
    )
    scan.add_argument("--seed", type=int, help="Random seed for --order random")
    scan.add_argument(
        "--no-saved",
        action="store_true",
        help="Do not fall back to saved tracks when playlists come up short",
    )
    scan.add_argument("--create", action="store_true", help="Create the playlist after scanning")
    scan.add_argument("--name", type=str, help="Playlist name (default: Smart <N>min Mix (<min>-<max> BPM))")

    return parser


def apply_overrides(config: TempoPlaylistConfig, args: argparse.Namespace) -> TempoPlaylistConfig:
    """Apply scan flags on top of environment configuration."""
    overrides = {
        "min_bpm": getattr(args, "min_bpm", None),
        "max_bpm": getattr(args, "max_bpm", None),
        "target_minutes": getattr(args, "minutes", None),
        "max_concurrency": getattr(args, "concurrency", None),
        "source_order": getattr(args, "order", None),
    }
    for field_name, value in overrides.items():
        if value is not None:
            setattr(config, field_name, value)
    if getattr(args, "no_saved", False):
        config.include_saved = False
    return config


def select_sources(available: List[PlaylistSource], wanted: List[str]) -> List[PlaylistSource]:
    """
    Pick the playlists named on the command line.

    Each entry matches a playlist id exactly or a playlist name ignoring case.
    The result follows the order of ``wanted`` and holds each playlist once.

    Raises:
        ConfigurationError: If an entry matches none of the user's playlists
    """
    selected: List[PlaylistSource] = []
    missing: List[str] = []
    for entry in wanted:
        match = next(
            (s for s in available if s.id == entry or s.name.casefold() == entry.casefold()),
            None,
        )
        if match is None:
            missing.append(entry)
        elif match not in selected:
            selected.append(match)
    if missing:
        raise ConfigurationError(f"Unknown playlist(s): {', '.join(missing)}")
    return selected


def format_duration(duration_ms: int) -> str:
    seconds = duration_ms // 1000
    return f"{seconds // 60}:{seconds % 60:02d}"


def display_scan_header(settings: ScanSettings) -> None:
    print()
    print("=" * 70)
    print("TEMPO PLAYLIST SCAN")
    print("=" * 70)
    print(f"Tempo range:     {settings.tempo_range}")
    print(f"Target:          {settings.target_minutes:g} minutes")
    print(f"Concurrency:     {settings.max_concurrency}")
    print(f"Playlist order:  {settings.source_order.value}")
    print(f"Saved tracks:    {'yes' if settings.include_saved else 'no'}")
    print(f"Started:         {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print("=" * 70)
    print()


def display_status_event(event: StatusEvent) -> None:
    """Print one line per settled track."""
    if event.kind != "settled":
        return
    status = event.status
    marker = _STATE_MARKERS.get(status.state)
    if marker is None:
        return
    if status.state is ItemState.MATCHED:
        detail = f"{status.display_bpm:.0f} BPM ({status.variant.value})"
    elif status.bpm is not None:
        detail = f"{status.bpm:.0f} BPM"
    else:
        detail = "no tempo"
    print(f"{marker} {detail:<24} {status.title} - {status.artist}")


def display_review(session: ScanSession) -> None:
    """
    Display the selection table and scan summary.

    Args:
        session: Finished scan session
    """
    print()
    print("=" * 70)
    print("SCAN CANCELLED" if session.cancelled else "SCAN SUMMARY")
    print("=" * 70)

    if session.selection:
        print(f"{'#':>3}  {'BPM':>5}  {'Variant':<11}  {'Time':>5}  Track")
        for index, match in enumerate(session.selection, start=1):
            track = match.track
            print(
                f"{index:>3}  {match.display_bpm:>5.0f}  {match.variant.value:<11}  "
                f"{format_duration(track.duration_ms):>5}  {track.name} - {track.artist}"
            )
        print("-" * 70)

    breakdown = session.variant_breakdown()
    print(f"Selected:        {len(session.selection)} tracks")
    print(f"Duration:        {session.accumulated_minutes:.1f} / {session.target_minutes:g} minutes")
    print(
        "Variants:        "
        + ", ".join(f"{variant.value} {count}" for variant, count in breakdown.items())
    )
    print(f"Analyzed:        {session.settled_count} of {session.submitted_count} queued")
    print(f"Rejected:        {session.rejected_count}")
    print(f"No tempo found:  {session.unresolved_count}")
    if session.source_names():
        print(f"Sources:         {', '.join(session.source_names())}")
    if session.skipped_sources:
        print(f"Unreadable:      {', '.join(source.name for source in session.skipped_sources)}")
    print("=" * 70)
    print()

    if not session.selection:
        print("No tracks matched the tempo range. Try widening it or adding more playlists.")
    elif not session.target_reached:
        print("Target duration not reached; the partial selection is shown above.")


def display_created(playlist: CreatedPlaylist) -> None:
    print(f"Created playlist '{playlist.name}' with {playlist.track_count} tracks")
    if playlist.url:
        print(f"Open it at: {playlist.url}")


def display_error(error: Exception) -> None:
    """
    Display error message with appropriate context.

    Args:
        error: Exception that occurred
    """
    print()
    print("=" * 70)
    print("ERROR")
    print("=" * 70)

    if isinstance(error, SpotifyAuthenticationError):
        print(f"Spotify authorization failed: {error}")
        print()
        print("Your session has expired or was revoked. Run 'tempo-playlist login' again.")

    elif isinstance(error, ConfigurationError):
        print(f"Invalid configuration: {error}")
        print()
        print("Check the TEMPO_* environment variables and command line flags.")

    elif isinstance(error, PlaylistCreationError):
        print(f"Playlist creation failed: {error}")
        print()
        print("The selection was kept. Run the scan again with --create to retry.")

    elif isinstance(error, SpotifyError):
        print(f"Spotify API error: {error}")
        print()
        print("Please check your network connection and try again.")

    elif isinstance(error, EnvironmentError):
        print(f"Environment error: {error}")
        print()
        print("Please ensure:")
        print("1. SPOTIFY_CLIENT_ID environment variable is set")
        print("2. GEMINI_API_KEY environment variable is set")

    else:
        print(f"Unexpected error: {error}")
        print()
        print("Please check the logs for more details.")

    print("=" * 70)
    print()


def install_interrupt_handler(cancel_token: CancellationToken) -> Callable[[], None]:
    """Route Ctrl-C to the cancellation token. Returns a callable that uninstalls it."""
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, cancel_token.cancel, "interrupted by user")
    except (NotImplementedError, RuntimeError):
        logger.debug("Signal handlers unavailable; Ctrl-C will abort instead of cancelling")
        return lambda: None

    def uninstall() -> None:
        loop.remove_signal_handler(signal.SIGINT)

    return uninstall


async def run_login(config: TempoPlaylistConfig, input_func: Callable[[str], str] = input) -> int:
    """Interactive PKCE authorization."""
    spotify_config = config.to_spotify_config()
    request = build_authorization_request(spotify_config)

    print("Open this URL in your browser and approve access:")
    print()
    print(request.url)
    print()
    redirect_url = input_func("Paste the URL you were redirected to: ").strip()

    code = parse_redirect(redirect_url, request.state)
    async with httpx.AsyncClient(timeout=spotify_config.timeout_seconds) as http_client:
        token = await exchange_code(http_client, spotify_config, code, request.verifier)

    store = config.token_store()
    store.save(token)

    async with SpotifyClient(spotify_config, token, token_store=store) as spotify:
        user = await spotify.get_current_user()
    print(f"Logged in as {user.display_name or user.id}")
    return 0


def run_logout(config: TempoPlaylistConfig) -> int:
    if config.token_store().clear():
        print("Stored Spotify tokens deleted")
    else:
        print("No stored Spotify tokens found")
    return 0


async def run_scan(config: TempoPlaylistConfig, args: argparse.Namespace) -> int:
    """Scan, review, and optionally create the playlist."""
    settings = config.to_scan_settings(random_seed=getattr(args, "seed", None))

    store = config.token_store()
    token = store.load()
    if token is None:
        print("Not logged in. Run 'tempo-playlist login' first.")
        return 1

    oracle = TempoOracleClient(config.gemini_api_key)
    if config.diagnostics_dir:
        diagnostics = DiagnosticsLogger(config.diagnostics_dir)
        oracle.add_listener(diagnostics.record_attempt)
        logger.info(f"Writing oracle diagnostics to {diagnostics.log_file}")

    tracker = LiveStatusTracker()
    unsubscribe = tracker.subscribe(display_status_event)
    cancel_token = CancellationToken()
    uninstall = install_interrupt_handler(cancel_token)

    try:
        async with SpotifyClient(config.to_spotify_config(), token, token_store=store) as spotify:
            assembler = DurationTargetAssembler(spotify, oracle, settings, tracker=tracker)
            display_scan_header(settings)
            print("Press Ctrl-C to stop early and keep what has been found.")
            print()

            sources = None
            if getattr(args, "playlists", None):
                sources = select_sources(await spotify.get_my_playlists(), args.playlists)

            session = await assembler.scan(cancel_token, sources=sources)
            display_review(session)

            if assembler.state is not AssemblerState.REVIEW:
                return 1

            if args.create:
                playlist = await assembler.create_playlist(name=args.name)
                display_created(playlist)
            return 0
    finally:
        uninstall()
        unsubscribe()


async def async_main(args: argparse.Namespace) -> int:
    """
    Async main function.

    Args:
        args: Parsed CLI arguments

    Returns:
        Exit code (0 for success, 1 for failure)
    """
    try:
        config = TempoPlaylistConfig.from_environment(require_oracle=args.command == "scan")

        if args.command == "login":
            return await run_login(config)
        if args.command == "logout":
            return run_logout(config)

        apply_overrides(config, args)
        return await run_scan(config, args)

    except Exception as e:
        display_error(e)
        if args.verbose:
            logger.exception("Detailed error traceback:")
        return 1


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main CLI entry point.

    Returns:
        Exit code (0 for success, 1 for failure)
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    setup_logging("DEBUG" if args.verbose else None)

    try:
        return asyncio.run(async_main(args))
    except KeyboardInterrupt:
        print()
        print("=" * 70)
        print("INTERRUPTED")
        print("=" * 70)
        print("Cancelled by user")
        return 1


if __name__ == "__main__":
    sys.exit(main())
