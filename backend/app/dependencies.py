from __future__ import annotations

from functools import lru_cache

from backend.app.config import AppSettings, load_settings
from backend.app.repositories.database import Database
from backend.app.repositories.link_repository import LinkRepository
from backend.app.services.link_service import LinkService
from backend.app.services.metadata_service import MetadataService
from backend.app.services.page_fetcher import PageFetcher
from backend.app.telemetry import TelemetryClient, build_telemetry_client


@lru_cache(maxsize=1)
def get_settings() -> AppSettings:
    return load_settings()


@lru_cache(maxsize=1)
def get_database() -> Database:
    database = Database(get_settings().db_path)
    database.initialize()
    return database


@lru_cache(maxsize=1)
def get_telemetry() -> TelemetryClient:
    settings = get_settings()
    return build_telemetry_client(
        enabled=settings.telemetry_enabled,
        sink=settings.telemetry_sink,
    )


@lru_cache(maxsize=1)
def get_metadata_service() -> MetadataService:
    settings = get_settings()
    return MetadataService(
        fetcher=PageFetcher(
            user_agent=settings.metadata_user_agent,
            max_bytes=settings.metadata_fetch_max_bytes,
        ),
        telemetry=get_telemetry(),
        enabled=settings.metadata_fetch_enabled,
        timeout_ms=settings.metadata_fetch_timeout_ms,
    )


@lru_cache(maxsize=1)
def get_link_service() -> LinkService:
    return LinkService(
        store=LinkRepository(get_database()),
        metadata_service=get_metadata_service(),
        telemetry=get_telemetry(),
    )


def reset_cached_dependencies() -> None:
    get_link_service.cache_clear()
    get_metadata_service.cache_clear()
    get_telemetry.cache_clear()
    get_database.cache_clear()
    get_settings.cache_clear()
