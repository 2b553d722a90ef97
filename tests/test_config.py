import logging

import pytest
from pydantic import ValidationError

import follow_gate.main as main_mod
from follow_gate import config
from follow_gate.config import DEFAULT_PLAYLIST_ID, Settings, missing_settings
from follow_gate.resources import ResourceKind, TargetResource

from conftest import ARTIST_ID, build_settings

REQUIRED_ENV = {
    "CLIENT_ID": "client-id",
    "CLIENT_SECRET": "client-secret",
    "REDIRECT_URI": "http://localhost:3000/callback",
    "ARTIST_ID": ARTIST_ID,
}


def test_missing_required_settings_are_reported():
    with pytest.raises(ValidationError) as exc_info:
        Settings(_env_file=None)

    assert missing_settings(exc_info.value) == ["ARTIST_ID", "CLIENT_ID", "CLIENT_SECRET", "REDIRECT_URI"]


def test_blank_value_counts_as_missing(monkeypatch):
    for name, value in REQUIRED_ENV.items():
        monkeypatch.setenv(name, value)
    monkeypatch.setenv("CLIENT_SECRET", "   ")

    with pytest.raises(ValidationError) as exc_info:
        Settings(_env_file=None)

    assert missing_settings(exc_info.value) == ["CLIENT_SECRET"]


def test_defaults_from_environment(monkeypatch):
    for name, value in REQUIRED_ENV.items():
        monkeypatch.setenv(name, value)

    settings = Settings(_env_file=None)

    assert settings.PORT == 3000
    assert settings.FAILURE_MODE == "render"
    assert settings.target_resources() == [TargetResource(ResourceKind.ARTIST, ARTIST_ID)]
    assert settings.scopes == ["user-follow-read", "user-follow-modify"]


def test_gated_resources_parsed_from_comma_list(monkeypatch):
    for name, value in REQUIRED_ENV.items():
        monkeypatch.setenv(name, value)
    monkeypatch.setenv("GATED_RESOURCES", "artist, playlist")

    settings = Settings(_env_file=None)

    assert settings.gates_playlist
    assert settings.target_resources()[1] == TargetResource(ResourceKind.PLAYLIST, DEFAULT_PLAYLIST_ID)
    assert "playlist-modify-public" in settings.scopes


def test_gated_resources_must_include_artist():
    with pytest.raises(ValidationError, match="must include 'artist'"):
        build_settings(GATED_RESOURCES="playlist")


def test_unknown_resource_type_rejected():
    with pytest.raises(ValidationError, match="unknown resource types"):
        build_settings(GATED_RESOURCES="artist,album")


def test_redirect_mode_requires_destinations():
    with pytest.raises(ValidationError, match="FAILURE_REDIRECT_URL"):
        build_settings(FAILURE_MODE="redirect", SUCCESS_REDIRECT_URL="https://example.com/download")


def test_redirect_mode_scopes_are_read_only():
    settings = build_settings(
        FAILURE_MODE="redirect",
        SUCCESS_REDIRECT_URL="https://example.com/download",
        FAILURE_REDIRECT_URL="https://example.com/please-follow",
    )

    assert settings.scopes == ["user-follow-read"]


def test_scope_override():
    settings = build_settings(SPOTIFY_SCOPES="user-follow-read,user-read-email")

    assert settings.scopes == ["user-follow-read", "user-read-email"]


def test_settings_are_frozen():
    settings = build_settings()

    with pytest.raises(ValidationError):
        settings.ARTIST_ID = "someone-else"


def test_summary_never_contains_secret():
    summary = build_settings(CLIENT_SECRET="super-secret-value").summary()

    assert "super-secret-value" not in repr(summary)
    assert summary["client_secret_set"] is True


def test_run_refuses_to_start_without_configuration(monkeypatch, caplog):
    served = []
    monkeypatch.setattr(main_mod, "load_settings", lambda: config.load_settings(env_file=None))
    monkeypatch.setattr(main_mod.uvicorn, "run", lambda *args, **kwargs: served.append(kwargs))
    caplog.set_level(logging.CRITICAL)

    with pytest.raises(SystemExit) as exc_info:
        main_mod.run()

    assert exc_info.value.code == 1
    assert served == []
    assert "Missing required environment variables" in caplog.text
    assert "CLIENT_ID" in caplog.text


def test_run_serves_on_configured_port(monkeypatch):
    served = []
    for name, value in REQUIRED_ENV.items():
        monkeypatch.setenv(name, value)
    monkeypatch.setenv("PORT", "8123")
    monkeypatch.setattr(main_mod, "load_settings", lambda: config.load_settings(env_file=None))
    monkeypatch.setattr(main_mod.uvicorn, "run", lambda app, **kwargs: served.append(kwargs))

    main_mod.run()

    assert served == [{"host": "0.0.0.0", "port": 8123}]


def test_log_level_is_normalised():
    assert build_settings(LOG_LEVEL="debug").LOG_LEVEL == "DEBUG"


def test_unknown_log_level_rejected():
    with pytest.raises(ValidationError):
        build_settings(LOG_LEVEL="verbose")


def test_run_refuses_unknown_log_level(monkeypatch, caplog):
    served = []
    for name, value in REQUIRED_ENV.items():
        monkeypatch.setenv(name, value)
    monkeypatch.setenv("LOG_LEVEL", "verbose")
    monkeypatch.setattr(main_mod, "load_settings", lambda: config.load_settings(env_file=None))
    monkeypatch.setattr(main_mod.uvicorn, "run", lambda *args, **kwargs: served.append(kwargs))
    caplog.set_level(logging.CRITICAL)

    with pytest.raises(SystemExit) as exc_info:
        main_mod.run()

    assert exc_info.value.code == 1
    assert served == []
    assert "LOG_LEVEL" in caplog.text


def test_run_redacts_access_token_in_access_log(monkeypatch):
    for name, value in REQUIRED_ENV.items():
        monkeypatch.setenv(name, value)
    monkeypatch.setattr(main_mod, "load_settings", lambda: config.load_settings(env_file=None))
    monkeypatch.setattr(main_mod.uvicorn, "run", lambda *args, **kwargs: None)
    access_logger = logging.getLogger("uvicorn.access")
    monkeypatch.setattr(access_logger, "filters", [])

    main_mod.run()

    # Same shape as uvicorn's access log record
    record = logging.LogRecord(
        "uvicorn.access", logging.INFO, __file__, 0,
        '%s - "%s %s HTTP/%s" %d',
        ("127.0.0.1:48188", "GET", "/follow?access_token=BEARER-SECRET-XYZ&x=1", "1.1", 502),
        None,
    )
    assert access_logger.filter(record)
    message = record.getMessage()
    assert "BEARER-SECRET-XYZ" not in message
    assert "/follow?access_token=***&x=1" in message


def test_access_log_filter_is_installed_once():
    main_mod.install_access_log_filter()
    main_mod.install_access_log_filter()

    filters = logging.getLogger("uvicorn.access").filters
    assert sum(isinstance(f, main_mod.RedactAccessTokenFilter) for f in filters) == 1
