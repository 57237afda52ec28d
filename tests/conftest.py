from __future__ import annotations

from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from src.studio.config import MediaPaths
from src.studio.db.db_init import init_db


@pytest.fixture
def session_factory(tmp_path: Path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'repo.db'}",
        future=True,
        connect_args={"check_same_thread": False},
    )
    factory = sessionmaker(bind=engine, expire_on_commit=False)
    init_db(engine, factory)
    return factory


@pytest.fixture
def media_paths(tmp_path: Path) -> MediaPaths:
    root = tmp_path / "media"
    paths = MediaPaths(root=root, results=root / "results")
    paths.results.mkdir(parents=True, exist_ok=True)
    return paths
