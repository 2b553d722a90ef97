import httpx
import pytest
from fastapi.testclient import TestClient

from follow_gate.config import Settings
from follow_gate.main import create_app

ARTIST_ID = "0TnOYISbd1XYRBk9myaseg"
PLAYLIST_ID = "4hOKQuZbraPDIfaGbM3lKI"
USER_TOKEN = "user-token"


class FakeSpotify:
    """Stands in for accounts.spotify.com and api.spotify.com behind httpx.MockTransport."""

    def __init__(self):
        self.requests = []
        self.token_status = 200
        self.token_body = {
            "access_token": USER_TOKEN,
            "token_type": "Bearer",
            "expires_in": 3600,
            "scope": "user-follow-read user-follow-modify",
            "refresh_token": "refresh-token",
        }
        self.followed = {"artist": False, "playlist": False}
        self.follower_total = 0
        self.follow_errors = {}
        # When False, follow requests succeed but the status never changes
        self.follow_sticks = True
        self.status_overrides = {}
        self.timeout_paths = set()

    def calls(self, method, path):
        return [r for r in self.requests if r.method == method and r.url.path == path]

    @property
    def token_requests(self):
        return self.calls("POST", "/api/token")

    @property
    def api_requests(self):
        return [r for r in self.requests if r.url.host == "api.spotify.com"]

    def transport(self):
        return httpx.MockTransport(self.handler)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path in self.timeout_paths:
            raise httpx.ReadTimeout("timed out", request=request)
        if path in self.status_overrides:
            code, message = self.status_overrides[path]
            return httpx.Response(code, json={"error": {"status": code, "message": message}})

        if request.url.host == "accounts.spotify.com" and path == "/api/token":
            return httpx.Response(self.token_status, json=self.token_body)

        if request.headers.get("Authorization") != f"Bearer {USER_TOKEN}":
            return httpx.Response(401, json={"error": {"status": 401, "message": "Invalid access token"}})

        if path == "/v1/me":
            return httpx.Response(200, json={"id": "listener", "display_name": "Listener"})
        if path == "/v1/me/following/contains":
            return httpx.Response(200, json=[self.followed["artist"]])
        if path == "/v1/me/following" and request.method == "PUT":
            return self._follow("artist")
        if path == f"/v1/playlists/{PLAYLIST_ID}/followers/contains":
            return httpx.Response(200, json=[self.followed["playlist"]])
        if path == f"/v1/playlists/{PLAYLIST_ID}/followers" and request.method == "PUT":
            return self._follow("playlist")
        if path == f"/v1/playlists/{PLAYLIST_ID}":
            return httpx.Response(200, json={"followers": {"total": self.follower_total}})
        if path == f"/v1/artists/{ARTIST_ID}":
            return httpx.Response(200, json={
                "name": "Test Artist",
                "images": [{"url": "https://i.scdn.co/image/test-artist"}],
                "external_urls": {"spotify": f"https://open.spotify.com/artist/{ARTIST_ID}"},
            })
        return httpx.Response(404, json={"error": {"status": 404, "message": "Not found"}})

    def _follow(self, kind):
        if kind in self.follow_errors:
            code, message = self.follow_errors[kind]
            return httpx.Response(code, json={"error": {"status": code, "message": message}})
        if self.follow_sticks:
            self.followed[kind] = True
        return httpx.Response(204)


def build_settings(**overrides) -> Settings:
    values = {
        "CLIENT_ID": "client-id",
        "CLIENT_SECRET": "client-secret",
        "REDIRECT_URI": "https://gate.example.com/callback",
        "ARTIST_ID": ARTIST_ID,
        "PLAYLIST_ID": PLAYLIST_ID,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    for name in Settings.model_fields:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def fake_spotify():
    return FakeSpotify()


@pytest.fixture
def make_client(fake_spotify):
    def _make(**overrides) -> TestClient:
        app = create_app(build_settings(**overrides), transport=fake_spotify.transport())
        return TestClient(app, base_url="https://testserver")
    return _make


@pytest.fixture
def client(make_client):
    return make_client()
