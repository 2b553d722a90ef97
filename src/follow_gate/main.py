# src/follow_gate/main.py

import logging
import re
import sys
import typing
from pathlib import Path
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import httpx
import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse, Response
from fastapi.templating import Jinja2Templates
from pydantic import ValidationError

from . import auth_utils
from .config import Settings, load_settings, missing_settings
from .errors import ConfigMissing, FollowGateError, VerificationFailed
from .follow_verifier import FollowVerifier
from .session_data import STATE_COOKIE_NAME, AuthSession
from .spotify_client import SpotifyClient

logger = logging.getLogger(__name__)

PACKAGE_DIR = Path(__file__).resolve().parent
templates = Jinja2Templates(directory=PACKAGE_DIR / "templates")

NO_STORE_HEADERS = {"Cache-Control": "no-store", "Referrer-Policy": "no-referrer"}

ACCESS_TOKEN_PATTERN = re.compile(r"(access_token=)[^&\s\"]*")


def redact_access_token(text: str) -> str:
    return ACCESS_TOKEN_PATTERN.sub(r"\1***", text)


class RedactAccessTokenFilter(logging.Filter):
    """Masks the `access_token` query value in uvicorn access log lines."""

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.args, tuple):
            record.args = tuple(
                redact_access_token(arg) if isinstance(arg, str) else arg for arg in record.args
            )
        if isinstance(record.msg, str):
            record.msg = redact_access_token(record.msg)
        return True


def install_access_log_filter() -> None:
    access_logger = logging.getLogger("uvicorn.access")
    if not any(isinstance(f, RedactAccessTokenFilter) for f in access_logger.filters):
        access_logger.addFilter(RedactAccessTokenFilter())


def with_query(url: str, **params: str) -> str:
    """Merge params into the query string of url, keeping what is already there."""
    parts = urlsplit(url)
    query = parse_qsl(parts.query, keep_blank_values=True)
    query += [(key, value) for key, value in params.items() if value is not None]
    return urlunsplit(parts._replace(query=urlencode(query)))


def success_url(settings: Settings) -> str:
    if settings.SUCCESS_REDIRECT_URL is not None:
        return str(settings.SUCCESS_REDIRECT_URL)
    return with_query("/", status="following")


def failure_response(settings: Settings, error: FollowGateError) -> RedirectResponse:
    """Redirect to the failure surface with the error tag and a user-facing message."""
    base = str(settings.FAILURE_REDIRECT_URL) if settings.FAILURE_MODE == "redirect" else "/"
    return RedirectResponse(
        url=with_query(base, error=error.tag, details=error.details),
        status_code=status.HTTP_302_FOUND,
    )


def create_app(
        settings: typing.Optional[Settings] = None,
        transport: typing.Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    if settings is None:
        settings = load_settings()

    spotify = SpotifyClient.from_settings(settings, transport=transport)
    verifier = FollowVerifier(spotify, settings)

    app = FastAPI(
        title="Spotify Follow Gate",
        description="Grants access once the visitor follows the configured Spotify artist (and playlist).",
        version="0.1.0",
    )
    app.state.settings = settings
    app.state.spotify = spotify
    app.state.verifier = verifier

    # --- Startup / Shutdown ---
    @app.on_event("startup")
    async def startup_event():
        logger.info("--- Spotify Follow Gate Starting Up ---")
        for key, value in settings.summary().items():
            logger.info(f"{key}: {value}")

    @app.on_event("shutdown")
    async def shutdown_event():
        await spotify.aclose()

    # --- Pages ---
    @app.get("/", response_class=HTMLResponse)
    async def read_root(
            request: Request,
            error: typing.Optional[str] = None,
            details: typing.Optional[str] = None,
    ):
        return templates.TemplateResponse(
            request,
            "index.html",
            {
                "error": error,
                "details": details,
                "following": request.query_params.get("status") == "following",
            },
        )

    @app.get("/health", include_in_schema=False)
    async def health():
        return {"status": "ok"}

    @app.get("/favicon.ico", include_in_schema=False)
    async def favicon():
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    # --- Authentication Routes ---
    @app.get("/login")
    async def login():
        session = AuthSession.new()
        auth_url = auth_utils.build_auth_url(settings, state=session.state)
        response = RedirectResponse(url=auth_url, status_code=status.HTTP_302_FOUND)
        session.set_cookie(response, secure=settings.COOKIE_SECURE)
        logger.info("LOGIN: redirecting to Spotify authorize endpoint")
        return response

    @app.get("/callback")
    async def callback(
            request: Request,
            code: typing.Optional[str] = None,
            state: typing.Optional[str] = None,
            error: typing.Optional[str] = None,
    ):
        expected_state = request.cookies.get(STATE_COOKIE_NAME)
        resources = settings.target_resources()
        try:
            token = await auth_utils.get_token_from_code(
                spotify, settings, code=code, state=state, expected_state=expected_state, provider_error=error)

            if await verifier.check_and_gate(token.access_token, resources):
                logger.info("CALLBACK: all gated resources followed, redirecting to success destination")
                response = RedirectResponse(url=success_url(settings), status_code=status.HTTP_302_FOUND)
            elif settings.FAILURE_MODE == "redirect":
                logger.info("CALLBACK: not following, redirecting to failure destination")
                response = RedirectResponse(url=str(settings.FAILURE_REDIRECT_URL), status_code=status.HTTP_302_FOUND)
            else:
                logger.info("CALLBACK: not following, rendering follow page")
                artist = await verifier.artist_profile(token.access_token, settings.ARTIST_ID)
                response = templates.TemplateResponse(
                    request,
                    "follow.html",
                    {
                        "artist": artist,
                        "gates_playlist": settings.gates_playlist,
                        "access_token": token.access_token,
                        "success_url": success_url(settings),
                    },
                    headers=NO_STORE_HEADERS,
                )
        except FollowGateError as e:
            logger.warning(f"CALLBACK: {e.tag}: {e.details}")
            response = failure_response(settings, e)
        except Exception:
            logger.exception("CALLBACK: unexpected error during callback")
            response = failure_response(
                settings, VerificationFailed("An unexpected error occurred. Please try again."))

        AuthSession.clear_cookie(response, secure=settings.COOKIE_SECURE)
        return response

    # --- Follow Now action (called by follow.html) ---
    @app.get("/follow")
    async def follow(access_token: typing.Optional[str] = None):
        if not access_token or not access_token.strip():
            return JSONResponse(
                status_code=status.HTTP_400_BAD_REQUEST,
                content={"error": "No access token provided", "details": "Please log in with Spotify again."},
            )
        try:
            await verifier.verify_follow(access_token.strip(), settings.target_resources())
        except FollowGateError as e:
            logger.warning(f"FOLLOW: {e.tag}: {e.details}")
            return JSONResponse(status_code=e.status_code, content=e.to_dict(), headers=NO_STORE_HEADERS)
        return JSONResponse(content={"success": True}, headers=NO_STORE_HEADERS)

    return app


def run() -> None:
    """Console entry point. Refuses to bind a port unless the configuration is complete."""
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    try:
        settings = load_settings()
    except ValidationError as e:
        missing = missing_settings(e)
        if missing:
            logger.critical(f"STARTUP: {ConfigMissing(missing).details}")
        for item in e.errors():
            location = ".".join(str(part) for part in item.get("loc", ())) or "settings"
            logger.critical(f"STARTUP: invalid configuration: {location}: {item.get('msg')}")
        sys.exit(1)

    logging.getLogger().setLevel(settings.LOG_LEVEL)
    # /follow carries the bearer token in its query string
    install_access_log_filter()
    uvicorn.run(create_app(settings), host=settings.HOST, port=settings.PORT)


if __name__ == "__main__":
    run()
