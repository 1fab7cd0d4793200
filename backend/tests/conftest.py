"""Shared pytest fixtures."""

from collections.abc import Generator
from pathlib import Path
from unittest.mock import MagicMock

import pytest
from sqlalchemy import Engine
from sqlalchemy.orm import Session, sessionmaker

from src.db import create_tables, make_engine
from src.services.artifacts import ArtifactCache
from src.services.job_store import JobStore


@pytest.fixture()
def engine() -> Generator[Engine, None, None]:
    """In-memory SQLite engine with the jobs table created."""
    eng = make_engine("sqlite://")
    create_tables(eng)
    yield eng
    eng.dispose()


@pytest.fixture()
def session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture()
def store(session_factory: sessionmaker[Session]) -> JobStore:
    return JobStore(session_factory)


@pytest.fixture()
def cache(tmp_path: Path) -> ArtifactCache:
    return ArtifactCache(tmp_path / "techpacks", max_age_days=7)


@pytest.fixture()
def mock_store() -> MagicMock:
    """Mock JobStore for tests that only check which writes happen."""
    return MagicMock(spec=JobStore)
