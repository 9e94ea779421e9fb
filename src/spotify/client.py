"""Async HTTP client for the Spotify Web API."""

import asyncio
import logging
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple
from urllib.parse import quote, urljoin

import httpx

from .auth import refresh_access_token
from .exceptions import (
    SpotifyAuthenticationError,
    SpotifyError,
    SpotifyNotFoundError,
    SpotifyResponseError,
)
from .models import (
    SAVED_TRACKS_SOURCE,
    CreatedPlaylist,
    PlaylistSource,
    SpotifyConfig,
    SpotifyToken,
    SpotifyUser,
    Track,
)
from .token_store import TokenStore
from .transform import transform_playlist, transform_track

logger = logging.getLogger(__name__)

PLAYLISTS_PAGE_SIZE = 50
PLAYLIST_TRACKS_PAGE_SIZE = 100
SAVED_TRACKS_PAGE_SIZE = 50
MAX_TRACKS_PER_INSERT = 100

# Refresh ahead of expiry so long scans don't hit 401 on every request
PROACTIVE_REFRESH_MARGIN = 60

BASE_BACKOFF = 2
MAX_BACKOFF = 64


def chunked(values: List[Any], size: int) -> List[List[Any]]:
    """Split ``values`` into consecutive lists of at most ``size`` elements.

    Examples:
        >>> chunked([1, 2, 3, 4, 5], 2)
        [[1, 2], [3, 4], [5]]
        >>> chunked([], 100)
        []
    """
    return [values[i : i + size] for i in range(0, len(values), size)]


class SpotifyClient:
    """Rate-limit aware async client for the Spotify Web API.

    This client wraps every request with:
    - Bearer authentication from the session token
    - A single token refresh on HTTP 401, shared between concurrent requests
    - Retry-After backoff on HTTP 429 (uncapped, the quota recovers)
    - Exponential backoff on network failures
    - Offset pagination that stops on the first short page

    Attributes:
        config: SpotifyConfig for this authenticated session
        client: httpx.AsyncClient used for all requests
        refresh_count: Number of token refreshes performed

    Example:
        >>> async with SpotifyClient(config, token) as spotify:
        ...     user = await spotify.get_current_user()
        ...     for source in await spotify.get_my_playlists():
        ...         async for page in spotify.iter_playlist_tracks(source):
        ...             print(len(page))
    """

    def __init__(
        self,
        config: SpotifyConfig,
        token: SpotifyToken,
        *,
        token_store: Optional[TokenStore] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """Initialize Spotify API client.

        Args:
            config: SpotifyConfig with client ID and request tuning
            token: Current access/refresh token pair
            token_store: Optional store that receives refreshed tokens
            http_client: Optional preconfigured httpx.AsyncClient (testing)
        """
        self.config = config
        self._token = token
        self._token_store = token_store
        self._refresh_lock = asyncio.Lock()
        # (stale access token, error) of the last rejected refresh
        self._failed_refresh: Optional[Tuple[str, SpotifyAuthenticationError]] = None
        self.refresh_count = 0

        self._owns_client = http_client is None
        if http_client is None:
            transport = httpx.AsyncHTTPTransport(
                limits=httpx.Limits(
                    max_connections=100,
                    max_keepalive_connections=20,
                    keepalive_expiry=5.0,
                ),
                retries=3,  # connection-level retries only
            )
            http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(
                    connect=10.0,
                    read=config.timeout_seconds,
                    write=10.0,
                    pool=5.0,
                ),
                transport=transport,
                follow_redirects=True,
            )
        self.client = http_client

        logger.info(f"Initialized Spotify client for {config.api_base_url}")

    @property
    def token(self) -> SpotifyToken:
        return self._token

    async def __aenter__(self) -> "SpotifyClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    def _build_url(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        return urljoin(self.config.api_base_url, path.lstrip("/"))

    async def _refresh_token(self, stale_access_token: str) -> None:
        """Refresh the session token unless a concurrent request already did.

        Every caller passes the access token its failed request carried. The
        first caller through the lock refreshes; later callers holding the
        same stale token find it replaced and reuse the new one, or find the
        refresh of that token rejected and get the same failure.

        Raises:
            SpotifyAuthenticationError: If the refresh is rejected
        """
        async with self._refresh_lock:
            if self._token.access_token != stale_access_token:
                logger.debug("Reusing Spotify token refreshed by a concurrent request")
                return

            if self._failed_refresh is not None and self._failed_refresh[0] == stale_access_token:
                error = self._failed_refresh[1]
                logger.debug("Token refresh already rejected for this session, not retrying")
                raise SpotifyAuthenticationError(error.status, error.message) from error

            logger.info("Spotify token expired, refreshing")
            try:
                new_token = await refresh_access_token(
                    self.client, self.config, self._token.refresh_token
                )
            except SpotifyAuthenticationError as e:
                self._failed_refresh = (stale_access_token, e)
                raise
            self._token = new_token
            self.refresh_count += 1
            if self._token_store is not None:
                self._token_store.save(new_token)

    def _retry_after(self, response: httpx.Response) -> float:
        retry_after = response.headers.get("Retry-After")
        if retry_after is None:
            return self.config.default_retry_after
        try:
            return max(0.0, float(retry_after))
        except ValueError:
            return self.config.default_retry_after

    def _handle_response(self, response: httpx.Response, method: str, path: str) -> Dict[str, Any]:
        """Parse a final (non-401, non-429) response.

        Raises:
            SpotifyNotFoundError: For HTTP 404
            SpotifyError: For any other HTTP error status
            SpotifyResponseError: If the body is not a JSON object
        """
        status = response.status_code
        if status == 404:
            raise SpotifyNotFoundError(status, f"{method} {path} not found")
        if status >= 400:
            logger.error(f"Spotify {method} {path} failed ({status}): {response.text[:200]}")
            raise SpotifyError(status, f"{method} {path} failed: {response.text[:200]}")

        if status == 204 or not response.content:
            return {}

        try:
            data = response.json()
        except ValueError as e:
            raise SpotifyResponseError(status, f"{method} {path} returned invalid JSON") from e

        if not isinstance(data, dict):
            raise SpotifyResponseError(status, f"{method} {path} returned {type(data).__name__}, expected object")
        return data

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json_body: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        url = self._build_url(path)

        if self._token.refresh_token and self._token.is_expired(margin_seconds=PROACTIVE_REFRESH_MARGIN):
            await self._refresh_token(self._token.access_token)

        refreshed = False
        transport_failures = 0
        while True:
            sent_token = self._token.access_token
            try:
                response = await self.client.request(
                    method,
                    url,
                    params=params,
                    json=json_body,
                    headers={"Authorization": f"Bearer {sent_token}"},
                )
            except httpx.TransportError as e:
                transport_failures += 1
                if transport_failures > self.config.max_transport_retries:
                    logger.error(f"Spotify {method} {path} failed after {transport_failures} attempts: {e}")
                    raise SpotifyError(None, f"{method} {path} failed: {e}") from e
                wait_time = min(BASE_BACKOFF ** transport_failures, MAX_BACKOFF)
                logger.warning(
                    f"Attempt {transport_failures}: Spotify {method} {path} failed: {e}. "
                    f"Retrying in {wait_time}s..."
                )
                await asyncio.sleep(wait_time)
                continue

            if response.status_code == 401:
                if refreshed:
                    raise SpotifyAuthenticationError(401, "Still unauthorized after token refresh")
                refreshed = True
                await self._refresh_token(sent_token)
                continue

            if response.status_code == 429:
                wait_time = self._retry_after(response)
                logger.warning(f"Rate limited (429) on {method} {path}, waiting {wait_time:.1f}s")
                await asyncio.sleep(wait_time)
                continue

            return self._handle_response(response, method, path)

    async def get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Authenticated GET returning the decoded JSON object."""
        return await self._request("GET", path, params=params)

    async def post(self, path: str, body: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Authenticated POST with a JSON body."""
        return await self._request("POST", path, json_body=body or {})

    async def paginate(
        self,
        path: str,
        page_size: int,
        params: Optional[Dict[str, Any]] = None,
        start_offset: int = 0,
    ) -> AsyncIterator[List[Dict[str, Any]]]:
        """Yield successive ``items`` lists from an offset-paginated endpoint.

        There is more to fetch only while a page comes back exactly
        ``page_size`` long; the first short page ends the iteration.

        Raises:
            SpotifyResponseError: If a page has no ``items`` list
        """
        if page_size < 1:
            raise ValueError("page_size must be positive")

        offset = start_offset
        while True:
            query = dict(params or {})
            query.update({"limit": page_size, "offset": offset})
            page = await self.get(path, query)

            items = page.get("items")
            if not isinstance(items, list):
                raise SpotifyResponseError(None, f"Page from {path} has no items list")

            logger.debug(f"Fetched {len(items)} items from {path} at offset {offset}")
            yield items

            if len(items) < page_size:
                return
            offset += page_size
            if self.config.page_delay:
                await asyncio.sleep(self.config.page_delay)

    async def get_current_user(self) -> SpotifyUser:
        data = await self.get("me")
        if not data.get("id"):
            raise SpotifyResponseError(None, "Profile response missing id")
        return SpotifyUser(id=data["id"], display_name=data.get("display_name"), email=data.get("email"))

    async def iter_my_playlists(self) -> AsyncIterator[PlaylistSource]:
        async for items in self.paginate("me/playlists", PLAYLISTS_PAGE_SIZE):
            for raw in items:
                source = transform_playlist(raw)
                if source is not None:
                    yield source

    async def get_my_playlists(self) -> List[PlaylistSource]:
        """Return all of the user's playlists in API order."""
        playlists = [source async for source in self.iter_my_playlists()]
        logger.info(f"Loaded {len(playlists)} playlists")
        return playlists

    async def iter_playlist_tracks(self, source: PlaylistSource) -> AsyncIterator[List[Track]]:
        """Yield one list of scannable tracks per page of a playlist."""
        path = f"playlists/{quote(source.id, safe='')}/tracks"
        async for items in self.paginate(path, PLAYLIST_TRACKS_PAGE_SIZE, start_offset=source.offset):
            yield [track for track in (transform_track(raw, source) for raw in items) if track]

    async def iter_saved_tracks(self, source: PlaylistSource = SAVED_TRACKS_SOURCE) -> AsyncIterator[List[Track]]:
        """Yield one list of scannable tracks per page of the saved library."""
        async for items in self.paginate("me/tracks", SAVED_TRACKS_PAGE_SIZE, start_offset=source.offset):
            yield [track for track in (transform_track(raw, source) for raw in items) if track]

    async def create_playlist(
        self,
        user_id: str,
        name: str,
        description: str = "",
        public: bool = False,
    ) -> CreatedPlaylist:
        data = await self.post(
            f"users/{quote(user_id, safe='')}/playlists",
            {"name": name, "description": description, "public": public},
        )
        if not data.get("id"):
            raise SpotifyResponseError(None, "Create playlist response missing id")
        return CreatedPlaylist(
            id=data["id"],
            name=data.get("name") or name,
            url=(data.get("external_urls") or {}).get("spotify"),
        )

    async def add_tracks(self, playlist_id: str, uris: List[str]) -> int:
        """Insert track URIs in batches of at most 100. Returns the number inserted."""
        path = f"playlists/{quote(playlist_id, safe='')}/tracks"
        batches = chunked(list(uris), MAX_TRACKS_PER_INSERT)
        for index, batch in enumerate(batches):
            await self.post(path, {"uris": batch})
            logger.debug(f"Inserted batch {index + 1}/{len(batches)} ({len(batch)} tracks) into {playlist_id}")
            if self.config.page_delay and index < len(batches) - 1:
                await asyncio.sleep(self.config.page_delay)
        return len(uris)
