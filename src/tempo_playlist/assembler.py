"""
Duration Target Assembler - Progressive Tempo Playlist Scan

Drives a scan from playlist listing to a reviewed selection:

1. Order the user's playlists (most recently modified first, or shuffled)
2. Stream each playlist's tracks page by page into the scan scheduler
3. Match every settled tempo estimate against the target range
4. Accept matches until the accumulated duration reaches the target
5. Fall back to the saved library when the playlists come up short

The builder moves through ``select -> scanning-primary -> (scanning-secondary)
-> review -> creating -> complete``. ``reset()`` returns to ``select`` from
anywhere, and an unrecoverable failure returns there before re-raising.
"""

import asyncio
import logging
import random
from dataclasses import replace
from typing import AsyncIterator, Callable, List, Optional, Sequence, Set

from src.spotify.client import SpotifyClient
from src.spotify.exceptions import SpotifyAuthenticationError, SpotifyError, SpotifyResponseError
from src.spotify.models import SAVED_TRACKS_SOURCE, CreatedPlaylist, PlaylistSource, Track

from .exceptions import InvalidStateError, PlaylistCreationError
from .models import (
    AssemblerState,
    EstimateOutcome,
    ScanPhase,
    ScanSession,
    ScanSettings,
    SourceOrder,
    TempoEstimate,
)
from .scheduler import CancellationToken, ConcurrentScanScheduler, ScanOutcome
from .status_tracker import ItemState, LiveStatusTracker
from .tempo_matcher import match_tempo
from .tempo_oracle import TempoOracleClient

logger = logging.getLogger(__name__)

PageFetcher = Callable[[PlaylistSource], AsyncIterator[List[Track]]]

_SCANNING_STATES = (AssemblerState.SCANNING_PRIMARY, AssemblerState.SCANNING_SECONDARY)


def order_sources(
    sources: Sequence[PlaylistSource],
    policy: SourceOrder,
    rng: Optional[random.Random] = None,
) -> List[PlaylistSource]:
    """Order primary sources for scanning.

    RECENT sorts by ``modified_at`` newest first. The sort is stable and
    sources without a timestamp keep their API order after the dated ones.
    RANDOM shuffles a copy with ``rng``.
    """
    policy = SourceOrder(policy)
    ordered = list(sources)
    if policy is SourceOrder.RANDOM:
        (rng or random.Random()).shuffle(ordered)
        return ordered

    dated = [source for source in ordered if source.modified_at is not None]
    undated = [source for source in ordered if source.modified_at is None]
    dated.sort(key=lambda source: source.modified_at, reverse=True)
    return dated + undated


def newest_first(tracks: Sequence[Track]) -> List[Track]:
    """Order one page of tracks by ``added_at``, most recently added first.

    The sort is stable and tracks without a timestamp keep their page order
    after the dated ones.
    """
    dated = [track for track in tracks if track.added_at is not None]
    undated = [track for track in tracks if track.added_at is None]
    dated.sort(key=lambda track: track.added_at, reverse=True)
    return dated + undated


def default_playlist_name(session: ScanSession) -> str:
    minutes = round(session.accumulated_minutes)
    return f"Smart {minutes}min Mix ({session.tempo_range.min_bpm:g}-{session.tempo_range.max_bpm:g} BPM)"


def default_playlist_description(session: ScanSession) -> str:
    minutes = round(session.accumulated_minutes)
    return (
        f"Smart tempo playlist: {session.tempo_range.min_bpm:g}-{session.tempo_range.max_bpm:g} BPM, "
        f"{minutes} minutes. Created from {', '.join(session.source_names()) or 'your library'}."
    )


class DurationTargetAssembler:
    """Builds a tempo-filtered selection that reaches a target duration.

    Example:
        >>> assembler = DurationTargetAssembler(spotify, oracle, ScanSettings(TempoRange(150, 170)))
        >>> session = await assembler.scan()
        >>> if assembler.state is AssemblerState.REVIEW:
        ...     playlist = await assembler.create_playlist()
    """

    def __init__(
        self,
        catalog: SpotifyClient,
        oracle: TempoOracleClient,
        settings: ScanSettings,
        *,
        tracker: Optional[LiveStatusTracker] = None,
        rng: Optional[random.Random] = None,
    ):
        self.catalog = catalog
        self.oracle = oracle
        self.settings = settings
        self.tracker = tracker or LiveStatusTracker()
        self.rng = rng or random.Random(settings.random_seed)
        self.state = AssemblerState.SELECT
        self.session: Optional[ScanSession] = None
        self._progress: Optional[asyncio.Condition] = None
        self.oracle.add_listener(self.tracker.record_attempt)

    def _set_state(self, state: AssemblerState) -> None:
        if state is not self.state:
            logger.debug(f"Assembler state {self.state.value} -> {state.value}")
            self.state = state

    def reset(self) -> None:
        """Discard the current session and return to ``select``."""
        self.session = None
        self.tracker.clear()
        self._set_state(AssemblerState.SELECT)

    async def _analyze(self, track: Track, cancel_token: CancellationToken) -> TempoEstimate:
        self.tracker.item_started(track)
        return await self.oracle.resolve(track.name, track.artist, cancel_token, item_id=track.id)

    def _stopped(self, session: ScanSession, scheduler: ConcurrentScanScheduler) -> bool:
        return session.target_reached or scheduler.halted

    async def _wait_drained(self, session: ScanSession) -> None:
        """Wait until the consumer has handled every submitted track."""
        async with self._progress:
            await self._progress.wait_for(lambda: session.settled_count >= session.submitted_count)

    async def _scan_sources(
        self,
        session: ScanSession,
        scheduler: ConcurrentScanScheduler,
        sources: Sequence[PlaylistSource],
        fetch: PageFetcher,
        seen: Set[str],
    ) -> None:
        for source in sources:
            if self._stopped(session, scheduler):
                return

            session.current_source = source
            session.sources.append(source)
            logger.info(f"Scanning {source.name} ({source.track_count} tracks)")

            pages = fetch(source)
            try:
                async for page in pages:
                    if self._stopped(session, scheduler):
                        return
                    for track in newest_first(page):
                        if track.id in seen:
                            logger.debug(f"Skipping already seen track {track.id} ({track.name})")
                            continue
                        seen.add(track.id)
                        self.tracker.item_queued(track)
                        scheduler.submit(track)
                        session.submitted_count += 1
            except (SpotifyAuthenticationError, SpotifyResponseError):
                raise
            except SpotifyError as e:
                # Unreadable sources are skipped; auth and shape errors end the scan
                logger.warning(f"Skipping {source.name}: {e}")
                session.skipped_sources.append(source)
            finally:
                await pages.aclose()

    async def _produce(
        self,
        session: ScanSession,
        scheduler: ConcurrentScanScheduler,
        sources: Sequence[PlaylistSource],
    ) -> None:
        seen: Set[str] = set()
        try:
            await self._scan_sources(session, scheduler, sources, self.catalog.iter_playlist_tracks, seen)
            await self._wait_drained(session)

            if self._stopped(session, scheduler):
                return
            if not self.settings.include_saved:
                logger.info(
                    f"Playlists yielded {session.accumulated_minutes:.1f} of "
                    f"{session.target_minutes:.1f} minutes; saved library disabled"
                )
                return

            logger.info(
                f"Playlists yielded {session.accumulated_minutes:.1f} of "
                f"{session.target_minutes:.1f} minutes, scanning saved tracks"
            )
            session.advance_phase(ScanPhase.SCANNING_SECONDARY)
            self._set_state(AssemblerState.SCANNING_SECONDARY)
            await self._scan_sources(session, scheduler, [SAVED_TRACKS_SOURCE], self.catalog.iter_saved_tracks, seen)
        except BaseException:
            scheduler.halt()
            raise
        finally:
            scheduler.close()

    def _consume(self, session: ScanSession, scheduler: ConcurrentScanScheduler, outcome: ScanOutcome) -> None:
        session.settled_count += 1
        track: Track = outcome.item

        if outcome.error is not None:
            raise outcome.error

        if not outcome.started:
            self.tracker.item_settled(track, ItemState.DISCARDED)
            return

        estimate: TempoEstimate = outcome.result
        if estimate.outcome is EstimateOutcome.CANCELLED:
            self.tracker.item_settled(track, ItemState.CANCELLED)
            return

        if session.target_reached:
            logger.debug(f"Discarding late result for {track.name}: target already reached")
            self.tracker.item_settled(track, ItemState.DISCARDED, bpm=estimate.bpm)
            return

        if not estimate.is_resolved:
            session.unresolved_count += 1
            logger.info(f"No tempo for {track.name!r} by {track.artist}, excluded")
            self.tracker.item_settled(track, ItemState.UNRESOLVED)
            return

        match = match_tempo(estimate.bpm, session.tempo_range, track)
        if match is None:
            session.rejected_count += 1
            self.tracker.item_settled(track, ItemState.REJECTED, bpm=estimate.bpm)
            return

        if not session.accept(match):
            self.tracker.item_settled(track, ItemState.DISCARDED, bpm=estimate.bpm)
            return

        logger.info(
            f"Accepted {track.name!r} by {track.artist} at {match.display_bpm:.1f} BPM "
            f"({match.variant.value}), {session.accumulated_minutes:.1f}/{session.target_minutes:.1f} min"
        )
        self.tracker.item_settled(track, ItemState.MATCHED, bpm=estimate.bpm, match=match)

        if session.target_reached:
            logger.info(f"Target of {session.target_minutes:.1f} minutes reached with {len(session.selection)} tracks")
            scheduler.halt()

    async def scan(
        self,
        cancel_token: Optional[CancellationToken] = None,
        sources: Optional[Sequence[PlaylistSource]] = None,
    ) -> ScanSession:
        """Run one progressive scan.

        Args:
            cancel_token: Token the caller may cancel to stop the scan early
            sources: Primary playlists to scan (default: all of the user's playlists)

        Returns:
            The finished ScanSession. The builder is in ``review`` when the
            selection is non-empty, otherwise back in ``select``.

        Raises:
            InvalidStateError: If the builder is not in ``select``
            SpotifyAuthenticationError: If the Spotify session cannot be refreshed
        """
        if self.state is not AssemblerState.SELECT:
            raise InvalidStateError(f"Cannot start a scan while {self.state.value}")

        token = cancel_token or CancellationToken()
        session = ScanSession(
            target_duration_ms=self.settings.target_duration_ms,
            tempo_range=self.settings.tempo_range,
        )
        self.session = session
        self._progress = asyncio.Condition()
        self.tracker.clear()
        self._set_state(AssemblerState.SCANNING_PRIMARY)

        try:
            if sources is None:
                sources = await self.catalog.get_my_playlists()
            ordered = order_sources(sources, self.settings.source_order, self.rng)
            logger.info(
                f"Scanning {len(ordered)} playlists for {session.tempo_range}, "
                f"target {session.target_minutes:.1f} minutes"
            )

            scheduler = ConcurrentScanScheduler(
                self._analyze,
                max_concurrency=self.settings.max_concurrency,
                cancel_token=token,
            )
            async with scheduler:
                producer = asyncio.create_task(self._produce(session, scheduler, ordered))
                try:
                    async for outcome in scheduler.results():
                        self._consume(session, scheduler, outcome)
                        async with self._progress:
                            self._progress.notify_all()
                except BaseException:
                    scheduler.halt()
                    if not producer.done():
                        producer.cancel()
                    await asyncio.gather(producer, return_exceptions=True)
                    raise
                await producer

        except Exception as e:
            logger.error(f"Scan failed: {e}")
            self._set_state(AssemblerState.SELECT)
            raise
        finally:
            if self.state in _SCANNING_STATES:
                self._set_state(AssemblerState.SELECT)

        session.cancelled = token.cancelled
        session.current_source = None
        session.advance_phase(ScanPhase.COMPLETE)

        if session.selection:
            self._set_state(AssemblerState.REVIEW)
        else:
            self._set_state(AssemblerState.SELECT)

        outcome = "cancelled" if session.cancelled else "finished"
        logger.info(
            f"Scan {outcome}: {len(session.selection)} tracks, "
            f"{session.accumulated_minutes:.1f}/{session.target_minutes:.1f} minutes "
            f"({session.settled_count} analyzed, {session.rejected_count} rejected, "
            f"{session.unresolved_count} unresolved, {len(session.skipped_sources)} sources skipped)"
        )
        return session

    async def create_playlist(
        self,
        session: Optional[ScanSession] = None,
        name: Optional[str] = None,
        public: bool = False,
    ) -> CreatedPlaylist:
        """Write the reviewed selection to a new Spotify playlist.

        Raises:
            InvalidStateError: If the builder is not in ``review`` or the selection is empty
            PlaylistCreationError: If Spotify rejects any step; the builder returns to ``review``
        """
        if self.state is not AssemblerState.REVIEW:
            raise InvalidStateError(f"Cannot create a playlist while {self.state.value}")
        session = session or self.session
        if session is None or not session.selection:
            raise InvalidStateError("No tracks selected")

        name = name or default_playlist_name(session)
        uris = [match.track.uri for match in session.selection]
        self._set_state(AssemblerState.CREATING)

        try:
            user = await self.catalog.get_current_user()
            playlist = await self.catalog.create_playlist(
                user.id, name, default_playlist_description(session), public=public
            )
            added = await self.catalog.add_tracks(playlist.id, uris)
        except SpotifyError as e:
            logger.error(f"Failed to create playlist {name!r}: {e}")
            self._set_state(AssemblerState.REVIEW)
            raise PlaylistCreationError(f"Failed to create playlist: {e}") from e
        except BaseException:
            self._set_state(AssemblerState.REVIEW)
            raise

        self._set_state(AssemblerState.COMPLETE)
        logger.info(f"Created playlist {playlist.name!r} with {added} tracks at {playlist.url}")
        return replace(playlist, track_count=added)
