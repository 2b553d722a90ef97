# src/follow_gate/session_data.py

import secrets
import string
from typing import Optional

from pydantic import BaseModel, Field

STATE_COOKIE_NAME = "spotify_auth_state"
STATE_COOKIE_MAX_AGE = 60 * 60  # 1 hour
STATE_LENGTH = 16
STATE_ALPHABET = string.ascii_letters + string.digits


class AuthSession(BaseModel):
    """
    The one piece of per-browser state: the anti-forgery token of an
    in-flight login. It lives only in the client cookie and is cleared
    when the callback consumes it.
    """
    state: str

    @classmethod
    def new(cls) -> "AuthSession":
        return cls(state="".join(secrets.choice(STATE_ALPHABET) for _ in range(STATE_LENGTH)))

    def set_cookie(self, response, secure: bool = True) -> None:
        response.set_cookie(
            key=STATE_COOKIE_NAME,
            value=self.state,
            max_age=STATE_COOKIE_MAX_AGE,
            httponly=True,
            secure=secure,
            samesite="lax",
            path="/",
        )

    @staticmethod
    def clear_cookie(response, secure: bool = True) -> None:
        response.delete_cookie(
            key=STATE_COOKIE_NAME,
            httponly=True,
            secure=secure,
            samesite="lax",
            path="/",
        )


class AccessToken(BaseModel):
    """
    Token endpoint response. Used for the rest of the request and dropped;
    the refresh token, if Spotify sends one, is never kept.
    """
    access_token: str = Field(min_length=1)
    token_type: str = "Bearer"
    expires_in: Optional[int] = None
    scope: Optional[str] = None

    def __repr__(self) -> str:
        return f"AccessToken(token_type={self.token_type!r}, expires_in={self.expires_in!r}, scope={self.scope!r})"

    __str__ = __repr__
