# src/follow_gate/resources.py

import enum
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Optional


class ResourceKind(str, enum.Enum):
    ARTIST = "artist"
    PLAYLIST = "playlist"


@dataclass(frozen=True)
class TargetResource:
    """A gated Spotify entity. Built once from the settings."""
    kind: ResourceKind
    id: str

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.id}"


@dataclass(frozen=True)
class FollowOutcome:
    """
    Follow status per gated resource.

    `weak` lists resources whose status came from the playlist follower-count
    heuristic rather than a direct "does this user follow it" query. A weak
    entry only says that somebody follows the playlist.
    """
    statuses: Dict[TargetResource, bool]
    weak: FrozenSet[TargetResource] = field(default_factory=frozenset)

    @property
    def satisfied(self) -> bool:
        return bool(self.statuses) and all(self.statuses.values())

    @property
    def missing(self) -> list:
        return [resource for resource, followed in self.statuses.items() if not followed]


@dataclass(frozen=True)
class ArtistProfile:
    name: str
    image_url: Optional[str] = None
    spotify_url: Optional[str] = None

    @classmethod
    def from_api(cls, payload: dict) -> "ArtistProfile":
        images = payload.get("images") or []
        return cls(
            name=payload.get("name") or "this artist",
            image_url=images[0].get("url") if images else None,
            spotify_url=(payload.get("external_urls") or {}).get("spotify"),
        )

    @classmethod
    def placeholder(cls, artist_id: str) -> "ArtistProfile":
        return cls(name="this artist", spotify_url=f"https://open.spotify.com/artist/{artist_id}")
