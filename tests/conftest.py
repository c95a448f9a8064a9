from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from backend.app.dependencies import reset_cached_dependencies
from backend.app.main import create_app
from backend.app.repositories.database import Database
from backend.app.repositories.link_repository import LinkRepository


@pytest.fixture
def database(tmp_path: Path) -> Database:
    db = Database(tmp_path / "links.db")
    db.initialize()
    return db


@pytest.fixture
def repository(database: Database) -> LinkRepository:
    return LinkRepository(database)


@pytest.fixture
def client(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[TestClient]:
    data_dir = tmp_path / "runtime-data"
    data_dir.mkdir(parents=True, exist_ok=True)

    monkeypatch.setenv("LINK_SHELF_DATA_DIR", str(data_dir))
    monkeypatch.setenv("LINK_SHELF_METADATA_FETCH_ENABLED", "0")
    monkeypatch.setenv("LINK_SHELF_TELEMETRY_SINK", "none")
    reset_cached_dependencies()

    app = create_app()
    with TestClient(app) as test_client:
        yield test_client

    reset_cached_dependencies()
