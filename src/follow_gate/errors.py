# src/follow_gate/errors.py

from typing import Iterable, Optional

from fastapi import status


class FollowGateError(Exception):
    """
    A classified failure of the follow gate.

    `tag` is the machine-readable name sent back in redirects and JSON bodies,
    `details` the sanitized message shown to the user.
    """
    tag = "follow_gate_error"
    error = "Follow gate error"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, details: Optional[str] = None, status_code: Optional[int] = None):
        self.details = details or self.error
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.details)

    def to_dict(self) -> dict:
        return {"error": self.error, "details": self.details}


class ConfigMissing(FollowGateError):
    tag = "config_missing"
    error = "Missing required configuration"

    def __init__(self, names: Iterable[str]):
        self.names = list(names)
        super().__init__(f"Missing required environment variables: {', '.join(self.names)}")


class AuthDenied(FollowGateError):
    tag = "auth_denied"
    error = "Spotify authorization was denied"
    status_code = status.HTTP_403_FORBIDDEN


class MissingCode(FollowGateError):
    tag = "missing_code"
    error = "Authorization code missing"
    status_code = status.HTTP_400_BAD_REQUEST


class StateMismatch(FollowGateError):
    tag = "state_mismatch"
    error = "Authentication state mismatch"
    status_code = status.HTTP_400_BAD_REQUEST


class TokenExchangeFailed(FollowGateError):
    tag = "token_exchange_failed"
    error = "Failed to get access token"
    status_code = status.HTTP_502_BAD_GATEWAY


class VerificationFailed(FollowGateError):
    tag = "verification_failed"
    error = "Failed to verify follow status"
    status_code = status.HTTP_502_BAD_GATEWAY


class VerificationAfterActionFailed(FollowGateError):
    tag = "verification_after_action_failed"
    error = "Follow not confirmed yet"
    status_code = status.HTTP_409_CONFLICT


class FollowActionFailed(FollowGateError):
    tag = "follow_action_failed"
    error = "Failed to follow"
    status_code = status.HTTP_502_BAD_GATEWAY

    def __init__(self, failed: Iterable, details: Optional[str] = None):
        self.failed = list(failed)
        super().__init__(details)
