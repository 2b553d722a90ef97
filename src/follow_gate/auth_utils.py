# src/follow_gate/auth_utils.py
import logging
import secrets
import typing
from urllib.parse import urlencode

from pydantic import ValidationError

from .config import Settings
from .errors import AuthDenied, MissingCode, StateMismatch, TokenExchangeFailed
from .session_data import AccessToken
from .spotify_client import SPOTIFY_AUTHORIZE_URL, SpotifyAPIError, SpotifyClient

logger = logging.getLogger(__name__)


# --- OAuth Flow Functions ---

def build_auth_url(settings: Settings, state: str) -> str:
    """
    Builds the Spotify authorization URL.
    The 'state' is generated and stored in the cookie by the calling route (/login).
    """
    params = {
        "response_type": "code",
        "client_id": settings.CLIENT_ID,
        "scope": " ".join(settings.scopes),
        "redirect_uri": str(settings.REDIRECT_URI),
        "state": state,
    }
    if settings.SHOW_DIALOG:
        params["show_dialog"] = "true"
    auth_url = f"{SPOTIFY_AUTHORIZE_URL}?{urlencode(params)}"
    logger.info(f"AUTH: build_auth_url - scopes: {params['scope']}, redirect URI: {params['redirect_uri']}")
    return auth_url


def verify_callback(
        code: typing.Optional[str],
        state: typing.Optional[str],
        expected_state: typing.Optional[str],
        provider_error: typing.Optional[str] = None,
) -> str:
    """
    Runs the callback checks in order and returns the authorization code.
    Provider error, then missing code, then the anti-forgery comparison.
    """
    if provider_error:
        logger.info(f"AUTH: verify_callback - Spotify reported '{provider_error}'")
        raise AuthDenied(f"Spotify authorization failed: {provider_error}")
    if not code:
        raise MissingCode("No authorization code was returned. Please try logging in again.")
    if not state or not expected_state:
        logger.warning(
            f"AUTH: verify_callback - state present: {bool(state)}, stored state present: {bool(expected_state)}")
        raise StateMismatch("Authentication state missing. Please try logging in again.")
    if not secrets.compare_digest(state.encode("utf-8"), expected_state.encode("utf-8")):
        logger.warning("AUTH: verify_callback - state mismatch. Possible CSRF attack.")
        raise StateMismatch("Authentication state mismatch. Please try logging in again.")
    return code


async def get_token_from_code(
        spotify: SpotifyClient,
        settings: Settings,
        code: typing.Optional[str],
        state: typing.Optional[str],
        expected_state: typing.Optional[str],
        provider_error: typing.Optional[str] = None,
) -> AccessToken:
    """
    Exchanges the authorization code for an access token.
    Verifies the returned state against expected_state (read from the cookie by the calling route).
    """
    auth_code = verify_callback(code, state, expected_state, provider_error)

    try:
        token_result = await spotify.exchange_code(
            code=auth_code,
            redirect_uri=str(settings.REDIRECT_URI),
            client_id=settings.CLIENT_ID,
            client_secret=settings.CLIENT_SECRET,
        )
    except SpotifyAPIError as e:
        logger.error(f"AUTH: get_token_from_code - error acquiring token: {e}")
        raise TokenExchangeFailed(f"Failed to get access token: {e.message}") from e

    try:
        token = AccessToken.model_validate(token_result)
    except ValidationError as e:
        logger.error("AUTH: get_token_from_code - token response had no usable access_token")
        raise TokenExchangeFailed("Failed to get access token: malformed token response") from e

    logger.info(f"AUTH: get_token_from_code - token acquired. Granted scopes: {token.scope}")
    return token
