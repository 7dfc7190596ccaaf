"""OAuth2 utilities for organizers' Google Calendar connections."""

import hashlib
import hmac
import logging
import re
import secrets
import time
from typing import Optional, Tuple
from urllib.parse import urlencode

import requests  # type: ignore

from meeting_scheduler.config import GoogleOAuthConfig
from meeting_scheduler.db.types import DatabaseInterface
from meeting_scheduler.models import StoredTokens

logger = logging.getLogger(__name__)

GOOGLE_TOKEN_URI = "https://oauth2.googleapis.com/token"
GOOGLE_AUTH_BASE_URL = "https://accounts.google.com/o/oauth2/v2/auth"
CALENDAR_SCOPES = [
    "https://www.googleapis.com/auth/calendar",
    "https://www.googleapis.com/auth/calendar.events",
]
REFRESH_MARGIN_SECONDS = 300
TOKEN_REQUEST_TIMEOUT = 10
STATE_MAX_AGE_SECONDS = 600
STATE_PAYLOAD_PATTERN = re.compile(r"([0-9]+)\.([0-9]+)\.[A-Za-z0-9_-]+")


def needs_refresh(
    expiry: int, now: Optional[float] = None, margin_seconds: int = REFRESH_MARGIN_SECONDS
) -> bool:
    """True when the token expires within `margin_seconds`. Unknown expiry (0) counts as expired."""
    current_time = int(now if now is not None else time.time())
    return not expiry or expiry <= current_time + margin_seconds


def refresh_access_token(
    oauth_config: GoogleOAuthConfig, refresh_token: str
) -> Tuple[str, int]:
    """Trade a refresh token for a new access token.

    Returns:
        Tuple of (access_token, expiry_timestamp)

    Raises:
        ValueError: If the token endpoint rejects the refresh
    """
    data = {
        "client_id": oauth_config.client_id,
        "client_secret": oauth_config.client_secret,
        "refresh_token": refresh_token,
        "grant_type": "refresh_token",
    }

    response = requests.post(GOOGLE_TOKEN_URI, data=data, timeout=TOKEN_REQUEST_TIMEOUT)
    if response.status_code != 200:
        logger.error(f"Failed to refresh token: {response.text}")
        raise ValueError(
            f"Failed to refresh token: {response.status_code} - {response.text}"
        )

    token_data = response.json()
    access_token = token_data["access_token"]
    expires_in = token_data.get("expires_in", 3600)
    expiry = int(time.time()) + expires_in
    return access_token, expiry


def ensure_fresh_tokens(
    database: DatabaseInterface,
    oauth_config: Optional[GoogleOAuthConfig],
    organizer_id: int,
    margin_seconds: int = REFRESH_MARGIN_SECONDS,
) -> Optional[StoredTokens]:
    """Stored tokens for the organizer, refreshed and persisted when close to expiry.

    Returns None when the organizer never connected, or when a needed
    refresh is impossible or fails. Callers treat None as "not connected
    right now" and degrade.
    """
    tokens = database.get_calendar_tokens(organizer_id)
    if not tokens:
        return None

    if not needs_refresh(tokens.expiry, margin_seconds=margin_seconds):
        return tokens

    if not tokens.refresh_token or not oauth_config:
        logger.warning(
            f"Calendar token for organizer {organizer_id} expired and cannot be refreshed"
        )
        return None

    logger.info(f"Refreshing calendar access token for organizer {organizer_id}")
    try:
        access_token, expiry = refresh_access_token(oauth_config, tokens.refresh_token)
    except (ValueError, KeyError, requests.RequestException) as e:
        logger.error(f"Token refresh failed for organizer {organizer_id}: {e}")
        return None

    database.store_calendar_tokens(organizer_id, access_token, None, expiry)
    return StoredTokens(
        organizer_id=organizer_id,
        access_token=access_token,
        refresh_token=tokens.refresh_token,
        expiry=expiry,
    )


def _state_signature(oauth_config: GoogleOAuthConfig, payload: str) -> str:
    key = (oauth_config.state_secret or oauth_config.client_secret).encode()
    return hmac.new(key, payload.encode(), hashlib.sha256).hexdigest()


def sign_state(
    oauth_config: GoogleOAuthConfig, organizer_id: int, now: Optional[float] = None
) -> str:
    """Signed `state` value binding a consent flow to one organizer.

    Format: `<organizer_id>.<issued_at>.<nonce>.<hmac-sha256 hex>`.
    """
    issued_at = int(now if now is not None else time.time())
    payload = f"{organizer_id}.{issued_at}.{secrets.token_urlsafe(16)}"
    return f"{payload}.{_state_signature(oauth_config, payload)}"


def verify_state(
    oauth_config: GoogleOAuthConfig, state: Optional[str], now: Optional[float] = None
) -> Optional[int]:
    """Organizer id carried by a state from sign_state, or None if forged or stale."""
    if not state:
        return None

    payload, _, signature = state.rpartition(".")
    match = STATE_PAYLOAD_PATTERN.fullmatch(payload)
    if not match:
        logger.warning("Malformed OAuth state")
        return None

    expected = _state_signature(oauth_config, payload)
    if not hmac.compare_digest(signature.encode(), expected.encode()):
        logger.warning("Invalid OAuth state signature")
        return None

    current_time = int(now if now is not None else time.time())
    if current_time - int(match.group(2)) > STATE_MAX_AGE_SECONDS:
        logger.debug("OAuth state expired")
        return None

    return int(match.group(1))


def get_authorization_url(oauth_config: GoogleOAuthConfig, organizer_id: int) -> str:
    """URL that starts the consent flow. A signed organizer id travels in `state`."""
    params = {
        "client_id": oauth_config.client_id,
        "redirect_uri": oauth_config.redirect_uri,
        "response_type": "code",
        "scope": " ".join(CALENDAR_SCOPES),
        "access_type": "offline",
        "prompt": "consent",
        "state": sign_state(oauth_config, organizer_id),
    }
    return f"{GOOGLE_AUTH_BASE_URL}?{urlencode(params)}"


def exchange_code_for_tokens(
    oauth_config: GoogleOAuthConfig, code: str
) -> Tuple[str, Optional[str], int]:
    """Exchange authorization code for access and refresh tokens.

    Returns:
        Tuple of (access_token, refresh_token, expiry_timestamp). Google
        omits the refresh token on repeat consents, so it may be None.

    Raises:
        ValueError: If unable to exchange the code
    """
    data = {
        "client_id": oauth_config.client_id,
        "client_secret": oauth_config.client_secret,
        "code": code,
        "grant_type": "authorization_code",
        "redirect_uri": oauth_config.redirect_uri,
    }

    response = requests.post(GOOGLE_TOKEN_URI, data=data, timeout=TOKEN_REQUEST_TIMEOUT)
    if response.status_code != 200:
        raise ValueError(
            f"Failed to exchange code: {response.status_code} - {response.text}"
        )

    token_data = response.json()
    access_token = token_data["access_token"]
    refresh_token = token_data.get("refresh_token")
    expires_in = token_data.get("expires_in", 3600)  # Default to 1 hour
    expiry = int(time.time()) + expires_in

    return access_token, refresh_token, expiry
