# src/follow_gate/spotify_client.py

import base64
import logging
import typing

import httpx

logger = logging.getLogger(__name__)

SPOTIFY_ACCOUNTS_BASE_URL = "https://accounts.spotify.com"
SPOTIFY_AUTHORIZE_URL = f"{SPOTIFY_ACCOUNTS_BASE_URL}/authorize"
SPOTIFY_TOKEN_URL = f"{SPOTIFY_ACCOUNTS_BASE_URL}/api/token"
SPOTIFY_API_BASE_URL = "https://api.spotify.com/v1"


class SpotifyAPIError(Exception):
    """A failed call to Spotify: non-2xx status, malformed body, transport error or timeout."""

    def __init__(self, operation: str, message: str, status_code: typing.Optional[int] = None):
        self.operation = operation
        self.message = message
        self.status_code = status_code
        super().__init__(f"{operation}: {message} (status={status_code})")

    @property
    def unauthorized(self) -> bool:
        return self.status_code == 401


def basic_auth_header(client_id: str, client_secret: str) -> str:
    credentials = f"{client_id}:{client_secret}".encode("utf-8")
    return "Basic " + base64.b64encode(credentials).decode("ascii")


def error_message(response: httpx.Response) -> str:
    """
    Pull a readable message out of a Spotify error response.

    The Web API answers `{"error": {"status": ..., "message": ...}}`, the
    accounts service answers the OAuth shape `{"error": ..., "error_description": ...}`.
    """
    try:
        data = response.json()
    except ValueError:
        return response.text[:200] or response.reason_phrase
    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, dict):
            return str(error.get("message") or response.reason_phrase)
        if error:
            return str(data.get("error_description") or error)
    return response.reason_phrase


class SpotifyClient:
    def __init__(
            self,
            http: httpx.AsyncClient,
            api_base_url: str = SPOTIFY_API_BASE_URL,
            token_url: str = SPOTIFY_TOKEN_URL,
    ):
        self.http = http
        self.api_base_url = api_base_url.rstrip("/")
        self.token_url = token_url

    @classmethod
    def from_settings(cls, settings, transport: typing.Optional[httpx.AsyncBaseTransport] = None) -> "SpotifyClient":
        http = httpx.AsyncClient(
            timeout=httpx.Timeout(settings.REQUEST_TIMEOUT_SECONDS),
            transport=transport,
        )
        return cls(http)

    async def aclose(self) -> None:
        await self.http.aclose()

    async def _request(
            self,
            operation: str,
            method: str,
            url: str,
            *,
            token: typing.Optional[str] = None,
            headers: typing.Optional[dict] = None,
            **kwargs,
    ) -> typing.Any:
        headers = dict(headers or {})
        if token:
            headers["Authorization"] = f"Bearer {token}"
        try:
            response = await self.http.request(method, url, headers=headers, **kwargs)
        except httpx.TimeoutException as e:
            logger.warning(f"SPOTIFY: {operation} timed out ({type(e).__name__})")
            raise SpotifyAPIError(operation, "Request to Spotify timed out") from e
        except httpx.RequestError as e:
            logger.warning(f"SPOTIFY: {operation} could not reach Spotify ({type(e).__name__})")
            raise SpotifyAPIError(operation, "Could not connect to Spotify") from e

        if not response.is_success:
            message = error_message(response)
            logger.warning(f"SPOTIFY: {operation} failed: {response.status_code} - {message}")
            raise SpotifyAPIError(operation, message, response.status_code)

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            logger.warning(f"SPOTIFY: {operation} returned a malformed body (status {response.status_code})")
            raise SpotifyAPIError(operation, "Malformed response from Spotify", response.status_code) from e

    # --- Accounts service ---

    async def exchange_code(self, code: str, redirect_uri: str, client_id: str, client_secret: str) -> dict:
        data = await self._request(
            "token_exchange",
            "POST",
            self.token_url,
            data={
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": redirect_uri,
            },
            headers={
                "Authorization": basic_auth_header(client_id, client_secret),
                "Content-Type": "application/x-www-form-urlencoded",
            },
        )
        if not isinstance(data, dict):
            raise SpotifyAPIError("token_exchange", "Malformed token response from Spotify")
        return data

    # --- Web API ---

    async def current_user(self, token: str) -> dict:
        data = await self._request("current_user", "GET", f"{self.api_base_url}/me", token=token)
        if not isinstance(data, dict) or not data.get("id"):
            raise SpotifyAPIError("current_user", "Malformed profile response from Spotify")
        return data

    async def get_artist(self, token: str, artist_id: str) -> dict:
        data = await self._request("get_artist", "GET", f"{self.api_base_url}/artists/{artist_id}", token=token)
        if not isinstance(data, dict):
            raise SpotifyAPIError("get_artist", "Malformed artist response from Spotify")
        return data

    async def follows_artists(self, token: str, artist_ids: typing.List[str]) -> typing.List[bool]:
        data = await self._request(
            "check_artist_follow",
            "GET",
            f"{self.api_base_url}/me/following/contains",
            token=token,
            params={"type": "artist", "ids": ",".join(artist_ids)},
        )
        if not isinstance(data, list) or len(data) != len(artist_ids):
            raise SpotifyAPIError("check_artist_follow", "Malformed follow status response from Spotify")
        return [bool(item) for item in data]

    async def playlist_followed_by(self, token: str, playlist_id: str, user_id: str) -> bool:
        data = await self._request(
            "check_playlist_follow",
            "GET",
            f"{self.api_base_url}/playlists/{playlist_id}/followers/contains",
            token=token,
            params={"ids": user_id},
        )
        if not isinstance(data, list) or not data:
            raise SpotifyAPIError("check_playlist_follow", "Malformed follow status response from Spotify")
        return bool(data[0])

    async def playlist_follower_count(self, token: str, playlist_id: str) -> int:
        data = await self._request(
            "playlist_followers",
            "GET",
            f"{self.api_base_url}/playlists/{playlist_id}",
            token=token,
            params={"fields": "followers.total"},
        )
        try:
            return int(data["followers"]["total"])
        except (TypeError, KeyError, ValueError) as e:
            raise SpotifyAPIError("playlist_followers", "Malformed playlist response from Spotify") from e

    async def follow_artists(self, token: str, artist_ids: typing.List[str]) -> None:
        await self._request(
            "follow_artist",
            "PUT",
            f"{self.api_base_url}/me/following",
            token=token,
            params={"type": "artist", "ids": ",".join(artist_ids)},
        )

    async def follow_playlist(self, token: str, playlist_id: str, public: bool = True) -> None:
        await self._request(
            "follow_playlist",
            "PUT",
            f"{self.api_base_url}/playlists/{playlist_id}/followers",
            token=token,
            json={"public": public},
        )
