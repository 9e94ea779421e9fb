"""Spotify OAuth2 Authorization Code flow with PKCE.

The builder runs as a public client (no client secret), so every
authorization uses a Proof Key for Code Exchange pair.

Authorization Flow:
    1. Generate a random code verifier and derive its S256 challenge
    2. Generate a random state nonce
    3. Send the user to the authorize URL with challenge and state
    4. Spotify redirects back with ``code`` and ``state``
    5. Exchange code + verifier + redirect URI for access and refresh tokens

Example:
    >>> config = SpotifyConfig(client_id="abc123")
    >>> request = build_authorization_request(config)
    >>> print(request.url)
    https://accounts.spotify.com/authorize?client_id=abc123&response_type=code&...
    >>> code = parse_redirect(redirected_url, request.state)
    >>> token = await exchange_code(http_client, config, code, request.verifier)
"""

import base64
import hashlib
import logging
import secrets
import time
from dataclasses import dataclass
from typing import Optional
from urllib.parse import parse_qs, urlencode, urlparse

import httpx

from .exceptions import SpotifyAuthenticationError
from .models import SpotifyConfig, SpotifyToken

logger = logging.getLogger(__name__)

PKCE_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789-._~"
DEFAULT_EXPIRES_IN = 3600
EXPIRY_SKEW_SECONDS = 30


@dataclass(frozen=True)
class AuthorizationRequest:
    """Everything needed to complete one authorization round trip."""

    url: str
    verifier: str
    state: str


def generate_code_verifier(length: int = 64) -> str:
    """Generate a PKCE code verifier (43-128 unreserved characters)."""
    if not 43 <= length <= 128:
        raise ValueError("PKCE verifier length must be between 43 and 128")
    return "".join(secrets.choice(PKCE_ALPHABET) for _ in range(length))


def create_code_challenge(verifier: str) -> str:
    """Derive the S256 code challenge: base64url(sha256(verifier)) without padding."""
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")


def generate_state(length: int = 16) -> str:
    """Generate the state nonce echoed back on redirect."""
    return "".join(secrets.choice(PKCE_ALPHABET) for _ in range(length))


def build_authorization_request(
    config: SpotifyConfig,
    verifier: Optional[str] = None,
    state: Optional[str] = None,
) -> AuthorizationRequest:
    """Build the authorize URL together with its verifier and state.

    Args:
        config: Spotify session configuration
        verifier: Optional pre-generated verifier (testing)
        state: Optional pre-generated state (testing)

    Returns:
        AuthorizationRequest holding the URL to open and the secrets to keep
    """
    verifier = verifier or generate_code_verifier()
    state = state or generate_state()
    params = {
        "client_id": config.client_id,
        "response_type": "code",
        "redirect_uri": config.redirect_uri,
        "scope": " ".join(config.scopes),
        "state": state,
        "code_challenge_method": "S256",
        "code_challenge": create_code_challenge(verifier),
    }
    url = f"{config.authorize_url}?{urlencode(params)}"
    logger.debug(f"Built Spotify authorize URL for redirect {config.redirect_uri}")
    return AuthorizationRequest(url=url, verifier=verifier, state=state)


def parse_redirect(redirect_url: str, expected_state: str) -> str:
    """Extract the authorization code from the URL Spotify redirected to.

    Raises:
        SpotifyAuthenticationError: If the user denied access, the state does
            not match, or no code is present
    """
    query = parse_qs(urlparse(redirect_url.strip()).query)
    error = query.get("error", [None])[0]
    if error:
        raise SpotifyAuthenticationError(None, f"Authorization denied: {error}")

    state = query.get("state", [None])[0]
    if state != expected_state:
        raise SpotifyAuthenticationError(None, "Authorization state mismatch")

    code = query.get("code", [None])[0]
    if not code:
        raise SpotifyAuthenticationError(None, "Redirect URL does not contain an authorization code")
    return code


def _token_from_payload(
    payload: dict,
    fallback_refresh_token: Optional[str] = None,
    now: Optional[float] = None,
) -> SpotifyToken:
    access_token = payload.get("access_token")
    if not access_token:
        raise SpotifyAuthenticationError(None, "Token response missing access_token")

    current = time.time() if now is None else now
    expires_in = int(payload.get("expires_in") or DEFAULT_EXPIRES_IN)
    return SpotifyToken(
        access_token=access_token,
        refresh_token=payload.get("refresh_token") or fallback_refresh_token,
        expires_at=current + expires_in - EXPIRY_SKEW_SECONDS,
    )


async def _post_token_form(http_client: httpx.AsyncClient, config: SpotifyConfig, form: dict) -> dict:
    try:
        response = await http_client.post(
            config.token_url,
            data=form,
            headers={"Content-Type": "application/x-www-form-urlencoded"},
            timeout=config.timeout_seconds,
        )
    except httpx.HTTPError as e:
        raise SpotifyAuthenticationError(None, f"Token request failed: {e}") from e

    if response.status_code != 200:
        raise SpotifyAuthenticationError(
            response.status_code, f"Token request rejected: {response.text[:200]}"
        )

    try:
        return response.json()
    except ValueError as e:
        raise SpotifyAuthenticationError(response.status_code, "Token response is not JSON") from e


async def exchange_code(
    http_client: httpx.AsyncClient,
    config: SpotifyConfig,
    code: str,
    verifier: str,
) -> SpotifyToken:
    """Exchange an authorization code for an access/refresh token pair.

    Raises:
        SpotifyAuthenticationError: If the exchange is rejected
    """
    form = {
        "client_id": config.client_id,
        "grant_type": "authorization_code",
        "code": code,
        "redirect_uri": config.redirect_uri,
        "code_verifier": verifier,
    }
    payload = await _post_token_form(http_client, config, form)
    logger.info("Logged in to Spotify")
    return _token_from_payload(payload)


async def refresh_access_token(
    http_client: httpx.AsyncClient,
    config: SpotifyConfig,
    refresh_token: Optional[str],
) -> SpotifyToken:
    """Obtain a new access token. Keeps the old refresh token if none is returned.

    Raises:
        SpotifyAuthenticationError: If no refresh token is available or the
            refresh is rejected
    """
    if not refresh_token:
        raise SpotifyAuthenticationError(None, "No refresh token available, please log in again")

    form = {
        "client_id": config.client_id,
        "grant_type": "refresh_token",
        "refresh_token": refresh_token,
    }
    payload = await _post_token_form(http_client, config, form)
    logger.info("Refreshed Spotify token")
    return _token_from_payload(payload, fallback_refresh_token=refresh_token)
