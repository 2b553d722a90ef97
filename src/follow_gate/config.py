# src/follow_gate/config.py

from pathlib import Path
from typing import Any, List, Literal, Optional, Union

from dotenv import load_dotenv
from pydantic import AnyHttpUrl, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .resources import ResourceKind, TargetResource

# .env is at the project root, two levels up from src/follow_gate/
CONFIG_FILE_DIR = Path(__file__).resolve().parent
PROJECT_ROOT_DIR = CONFIG_FILE_DIR.parent.parent
ENV_FILE_PATH = PROJECT_ROOT_DIR / ".env"

REQUIRED_SETTINGS = ("CLIENT_ID", "CLIENT_SECRET", "REDIRECT_URI", "ARTIST_ID")

# Used when the playlist is gated but PLAYLIST_ID is not set.
DEFAULT_PLAYLIST_ID = "37i9dQZF1DXcBWIGoYBM5M"


class Settings(BaseSettings):
    # === Spotify application ===
    CLIENT_ID: str
    CLIENT_SECRET: str
    REDIRECT_URI: AnyHttpUrl
    SHOW_DIALOG: bool = False
    # Comma-separated override; derived from the gating policy when unset
    SPOTIFY_SCOPES: Union[str, List[str], None] = None

    # === Gated resources ===
    ARTIST_ID: str
    PLAYLIST_ID: Optional[str] = None
    GATED_RESOURCES: Union[str, List[str]] = ["artist"]
    PLAYLIST_VERIFICATION: Literal["direct", "follower_count"] = "direct"

    # === Routing ===
    FAILURE_MODE: Literal["render", "redirect"] = "render"
    SUCCESS_REDIRECT_URL: Optional[AnyHttpUrl] = None
    FAILURE_REDIRECT_URL: Optional[AnyHttpUrl] = None

    # === Server ===
    HOST: str = "0.0.0.0"
    PORT: int = 3000
    COOKIE_SECURE: bool = True
    REQUEST_TIMEOUT_SECONDS: float = 10.0
    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"

    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
        frozen=True,
    )

    @field_validator("CLIENT_ID", "CLIENT_SECRET", "ARTIST_ID", mode="before")
    @classmethod
    def reject_blank(cls, v: Any) -> Any:
        if isinstance(v, str):
            v = v.strip()
            if not v:
                raise ValueError("must not be blank")
        return v

    @field_validator("PLAYLIST_ID", "SUCCESS_REDIRECT_URL", "FAILURE_REDIRECT_URL", mode="before")
    @classmethod
    def blank_as_unset(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("LOG_LEVEL", mode="before")
    @classmethod
    def upper_log_level(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip().upper()
        return v

    @field_validator("GATED_RESOURCES", "SPOTIFY_SCOPES", mode="before")
    @classmethod
    def parse_comma_separated(cls, v: Any) -> Any:
        if isinstance(v, str):
            return [item.strip() for item in v.split(",") if item.strip()]
        return v

    @model_validator(mode="after")
    def check_policy(self) -> "Settings":
        kinds = [kind.lower() for kind in self.GATED_RESOURCES]
        unknown = [kind for kind in kinds if kind not in {k.value for k in ResourceKind}]
        if unknown:
            raise ValueError(f"GATED_RESOURCES contains unknown resource types: {', '.join(unknown)}")
        if ResourceKind.ARTIST.value not in kinds:
            raise ValueError("GATED_RESOURCES must include 'artist'")
        if self.FAILURE_MODE == "redirect":
            missing = [
                name for name in ("SUCCESS_REDIRECT_URL", "FAILURE_REDIRECT_URL")
                if getattr(self, name) is None
            ]
            if missing:
                raise ValueError(f"FAILURE_MODE=redirect requires {', '.join(missing)}")
        if self.REQUEST_TIMEOUT_SECONDS <= 0:
            raise ValueError("REQUEST_TIMEOUT_SECONDS must be positive")
        return self

    # === Derived properties ===
    @property
    def gates_playlist(self) -> bool:
        return ResourceKind.PLAYLIST.value in [kind.lower() for kind in self.GATED_RESOURCES]

    @property
    def playlist_id(self) -> str:
        return self.PLAYLIST_ID or DEFAULT_PLAYLIST_ID

    @property
    def scopes(self) -> List[str]:
        if self.SPOTIFY_SCOPES:
            return list(self.SPOTIFY_SCOPES)
        scopes = ["user-follow-read"]
        if self.FAILURE_MODE == "render":
            # The follow page's "Follow Now" action mutates follow status
            scopes.append("user-follow-modify")
        if self.gates_playlist:
            scopes += ["playlist-read-private", "playlist-modify-public"]
        return scopes

    def target_resources(self) -> List[TargetResource]:
        resources = [TargetResource(ResourceKind.ARTIST, self.ARTIST_ID)]
        if self.gates_playlist:
            resources.append(TargetResource(ResourceKind.PLAYLIST, self.playlist_id))
        return resources

    def summary(self) -> dict:
        """Loggable view of the settings. Never includes the client secret."""
        return {
            "client_id": self.CLIENT_ID,
            "client_secret_set": bool(self.CLIENT_SECRET),
            "redirect_uri": str(self.REDIRECT_URI),
            "gated_resources": [str(resource) for resource in self.target_resources()],
            "playlist_verification": self.PLAYLIST_VERIFICATION,
            "failure_mode": self.FAILURE_MODE,
            "scopes": self.scopes,
            "port": self.PORT,
        }


def load_settings(env_file: Optional[Path] = ENV_FILE_PATH) -> Settings:
    """Load `.env` (when present) into the environment and build the settings once."""
    if env_file is not None and env_file.exists():
        load_dotenv(dotenv_path=env_file, override=False)
    return Settings(_env_file=None)


def missing_settings(error: ValidationError) -> List[str]:
    """Names of the required variables a settings ValidationError complains about."""
    names = set()
    for item in error.errors():
        if item.get("loc"):
            names.add(str(item["loc"][0]).upper())
    return sorted(name for name in names if name in REQUIRED_SETTINGS)
