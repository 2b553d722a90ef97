# src/follow_gate/follow_verifier.py
import asyncio
import logging
import typing

from .config import Settings
from .errors import FollowActionFailed, VerificationAfterActionFailed, VerificationFailed
from .resources import ArtistProfile, FollowOutcome, ResourceKind, TargetResource
from .spotify_client import SpotifyAPIError, SpotifyClient

logger = logging.getLogger(__name__)


class FollowVerifier:
    """
    Reads and changes the current user's follow status for the gated resources.

    Every method takes the access token of the request being served and never
    keeps it. Spotify failures leave this class as `FollowGateError` subclasses.
    """

    def __init__(self, spotify: SpotifyClient, settings: Settings):
        self.spotify = spotify
        self.playlist_verification = settings.PLAYLIST_VERIFICATION

    async def check_follow_status(
            self,
            token: str,
            resources: typing.Sequence[TargetResource],
            user_id: typing.Optional[str] = None,
    ) -> FollowOutcome:
        """Queries every resource concurrently. Raises VerificationFailed if any query fails."""
        try:
            results = await asyncio.gather(
                *(self._is_following(token, resource, user_id) for resource in resources)
            )
        except SpotifyAPIError as e:
            logger.error(f"VERIFIER: check_follow_status failed: {e}")
            raise VerificationFailed(
                "Could not check your follow status on Spotify. Please try again.",
                status_code=401 if e.unauthorized else None,
            ) from e

        statuses = {resource: followed for resource, (followed, _) in zip(resources, results)}
        weak = frozenset(resource for resource, (_, is_weak) in zip(resources, results) if is_weak)
        outcome = FollowOutcome(statuses=statuses, weak=weak)
        logger.info(
            "VERIFIER: follow status "
            + ", ".join(f"{resource}={followed}" for resource, followed in statuses.items())
        )
        return outcome

    async def _is_following(
            self,
            token: str,
            resource: TargetResource,
            user_id: typing.Optional[str],
    ) -> typing.Tuple[bool, bool]:
        """Returns (followed, weak_evidence) for one resource."""
        if resource.kind is ResourceKind.ARTIST:
            followed = await self.spotify.follows_artists(token, [resource.id])
            return followed[0], False

        if self.playlist_verification == "follower_count":
            # Only proves that somebody follows the playlist, not this user.
            total = await self.spotify.playlist_follower_count(token, resource.id)
            logger.warning(
                f"VERIFIER: {resource} checked by follower count ({total}); this is not a per-user check")
            return total > 0, True

        if user_id is None:
            user_id = (await self.spotify.current_user(token))["id"]
        return await self.spotify.playlist_followed_by(token, resource.id, user_id), False

    async def subscribe(self, token: str, resources: typing.Sequence[TargetResource]) -> None:
        """
        Follows every resource. Already-followed resources are a no-op on
        Spotify's side. All resources are attempted even after a failure, and
        earlier successes are not undone.
        """
        failures = []
        for resource in resources:
            try:
                if resource.kind is ResourceKind.ARTIST:
                    await self.spotify.follow_artists(token, [resource.id])
                else:
                    await self.spotify.follow_playlist(token, resource.id)
                logger.info(f"VERIFIER: followed {resource}")
            except SpotifyAPIError as e:
                logger.error(f"VERIFIER: follow {resource} failed: {e}")
                failures.append((resource, e))

        if failures:
            failed = [resource for resource, _ in failures]
            details = "; ".join(f"Could not follow the {resource.kind.value}: {e.message}" for resource, e in failures)
            raise FollowActionFailed(failed, details)

    async def check_and_gate(self, token: str, resources: typing.Sequence[TargetResource]) -> bool:
        outcome = await self.check_follow_status(token, resources)
        return outcome.satisfied

    async def verify_follow(self, token: str, resources: typing.Sequence[TargetResource]) -> FollowOutcome:
        """
        Identity probe, follow, then re-check. Raises
        VerificationAfterActionFailed when Spotify accepted the follow but the
        re-check does not show it yet; the user should retry.
        """
        try:
            user = await self.spotify.current_user(token)
        except SpotifyAPIError as e:
            logger.error(f"VERIFIER: identity probe failed: {e}")
            raise VerificationFailed(
                "Your Spotify session is no longer valid. Please log in again."
                if e.unauthorized else "Could not reach Spotify. Please try again.",
                status_code=401 if e.unauthorized else None,
            ) from e

        await self.subscribe(token, resources)

        outcome = await self.check_follow_status(token, resources, user_id=user["id"])
        if not outcome.satisfied:
            missing = ", ".join(resource.kind.value for resource in outcome.missing)
            logger.warning(f"VERIFIER: follow accepted but not visible yet for: {missing}")
            raise VerificationAfterActionFailed(
                f"Spotify has not confirmed the follow for the {missing} yet. Please try again in a moment.")
        return outcome

    async def artist_profile(self, token: str, artist_id: str) -> ArtistProfile:
        try:
            return ArtistProfile.from_api(await self.spotify.get_artist(token, artist_id))
        except SpotifyAPIError as e:
            logger.warning(f"VERIFIER: artist profile unavailable, using placeholder: {e}")
            return ArtistProfile.placeholder(artist_id)
