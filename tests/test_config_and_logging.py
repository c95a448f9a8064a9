from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest
import structlog
from pydantic import ValidationError

from backend.app.config import DEFAULT_USER_AGENT, AppSettings, load_settings
from backend.app.logging_config import (
    ROOT_LOGGER_NAME,
    TELEMETRY_LOG_FILE_NAME,
    TELEMETRY_LOGGER_NAME,
    _stream_supports_color,  # pyright: ignore[reportPrivateUsage]
    configure_application_logging,
    resolve_log_level,
)


def test_load_settings_derives_paths_from_data_dir(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    data_dir = tmp_path / "data"
    monkeypatch.setenv("LINK_SHELF_DATA_DIR", str(data_dir))
    monkeypatch.setenv("LINK_SHELF_METADATA_FETCH_TIMEOUT_MS", "750")
    monkeypatch.setenv("LINK_SHELF_METADATA_USER_AGENT", "  link-shelf-tests/1.0  ")
    monkeypatch.setenv("LINK_SHELF_TELEMETRY_SINK", " LOG ")

    settings = load_settings()

    assert settings.data_dir == data_dir.resolve()
    assert settings.db_path == (data_dir / "links.db").resolve()
    assert settings.log_dir == (data_dir / "logs").resolve()
    assert settings.metadata_fetch_timeout_ms == 750
    assert settings.metadata_user_agent == "link-shelf-tests/1.0"
    assert settings.telemetry_sink == "log"


def test_explicit_db_path_is_kept(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LINK_SHELF_DATA_DIR", str(tmp_path / "data"))
    monkeypatch.setenv("LINK_SHELF_DB_PATH", str(tmp_path / "elsewhere" / "custom.db"))

    settings = load_settings()

    assert settings.db_path == (tmp_path / "elsewhere" / "custom.db").resolve()
    assert settings.log_dir == (tmp_path / "data" / "logs").resolve()


def test_config_env_bool_branches(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LINK_SHELF_DATA_DIR", str(tmp_path))

    monkeypatch.setenv("LINK_SHELF_METADATA_FETCH_ENABLED", "off")
    assert load_settings().metadata_fetch_enabled is False

    monkeypatch.setenv("LINK_SHELF_METADATA_FETCH_ENABLED", "YES")
    assert load_settings().metadata_fetch_enabled is True

    monkeypatch.setenv("LINK_SHELF_METADATA_FETCH_ENABLED", "invalid")
    monkeypatch.setenv("LINK_SHELF_TELEMETRY_ENABLED", "0")
    fallback = load_settings()
    assert fallback.metadata_fetch_enabled is True
    assert fallback.telemetry_enabled is False


def test_blank_user_agent_falls_back_to_default(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("LINK_SHELF_DATA_DIR", str(tmp_path))
    monkeypatch.setenv("LINK_SHELF_METADATA_USER_AGENT", "   ")

    assert load_settings().metadata_user_agent == DEFAULT_USER_AGENT
    assert DEFAULT_USER_AGENT == "link-shelf/0.1"


def test_load_settings_rejects_invalid_values(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("LINK_SHELF_DATA_DIR", str(tmp_path))

    monkeypatch.setenv("LINK_SHELF_TELEMETRY_SINK", "otlp")
    with pytest.raises(ValidationError, match="LINK_SHELF_TELEMETRY_SINK"):
        load_settings()

    monkeypatch.setenv("LINK_SHELF_TELEMETRY_SINK", "none")
    monkeypatch.setenv("LINK_SHELF_METADATA_FETCH_TIMEOUT_MS", "10")
    with pytest.raises(ValidationError):
        load_settings()


def test_resolve_log_level() -> None:
    assert resolve_log_level(" debug ") == logging.DEBUG
    assert resolve_log_level("warning") == logging.WARNING
    assert resolve_log_level("chatty") == logging.INFO


def test_configure_application_logging_creates_files(tmp_path: Path) -> None:
    settings = AppSettings(
        data_dir=tmp_path,
        db_path=tmp_path / "links.db",
        log_dir=tmp_path / "logs",
        log_level="INFO",
    )
    paths = configure_application_logging(settings)
    logging.getLogger("link_shelf.test").info("runtime-log-test")
    structlog.get_logger(TELEMETRY_LOGGER_NAME).info(
        "telemetry",
        telemetry_event="test.event",
    )

    app_logger = logging.getLogger(ROOT_LOGGER_NAME)
    assert len(app_logger.handlers) == 2
    assert {handler.level for handler in app_logger.handlers} == {logging.INFO, logging.DEBUG}
    for handler in app_logger.handlers:
        handler.flush()
    telemetry_logger = logging.getLogger(TELEMETRY_LOGGER_NAME)
    assert telemetry_logger.propagate is False
    assert len(telemetry_logger.handlers) == 1
    for handler in telemetry_logger.handlers:
        handler.flush()

    log_events = [
        json.loads(line)
        for line in paths.log_file.read_text(encoding="utf-8").splitlines()
        if line.strip()
    ]
    runtime_event = next(
        event for event in log_events if event.get("event") == "runtime-log-test"
    )
    assert runtime_event["logger"] == "link_shelf.test"
    assert runtime_event["level"] == "info"
    assert runtime_event["module"]
    assert runtime_event["lineno"]
    assert all(event.get("telemetry_event") != "test.event" for event in log_events)

    telemetry_log_file = settings.log_dir / TELEMETRY_LOG_FILE_NAME
    assert telemetry_log_file == paths.telemetry_log_file
    telemetry_events = [
        json.loads(line)
        for line in telemetry_log_file.read_text(encoding="utf-8").splitlines()
        if line.strip()
    ]
    telemetry_event = next(
        event for event in telemetry_events if event.get("telemetry_event") == "test.event"
    )
    assert telemetry_event["logger"] == TELEMETRY_LOGGER_NAME


def test_stream_supports_color_detects_tty() -> None:
    class _TTY:
        def isatty(self) -> bool:
            return True

    class _Broken:
        def isatty(self) -> bool:
            raise RuntimeError("boom")

    assert _stream_supports_color(_TTY()) is True
    assert _stream_supports_color(_Broken()) is False
    assert _stream_supports_color(object()) is False
