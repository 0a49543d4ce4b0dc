"""
Shared pytest fixtures for integration tests.

Repository and flow tests run against every available SQL backend:
SQLite always (through aiosqlite), PostgreSQL when testcontainers and
Docker are available. Unavailable backends are skipped, not failed.
"""

from __future__ import annotations

import subprocess
from collections.abc import AsyncGenerator, Generator
from pathlib import Path
from typing import TYPE_CHECKING, Any

import pytest
import pytest_asyncio

from payrelay.repositories import (
    UnitOfWorkFactory,
    create_relay_engine,
    create_schema,
    drop_schema,
    sqlalchemy_unit_of_work_factory,
)
from tests.conftest import AIOSQLITE_AVAILABLE

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine


# ============================================================================
# Testcontainers Detection
# ============================================================================

TESTCONTAINERS_AVAILABLE = False

try:
    from testcontainers.postgres import PostgresContainer

    TESTCONTAINERS_AVAILABLE = True
except ImportError:
    PostgresContainer = None  # type: ignore[assignment, misc]


def is_docker_available() -> bool:
    """Check if Docker is available for running containers."""
    try:
        result = subprocess.run(["docker", "info"], capture_output=True, timeout=5)
        return result.returncode == 0
    except (subprocess.TimeoutExpired, OSError):
        return False


DOCKER_AVAILABLE = is_docker_available()


# ============================================================================
# PostgreSQL Fixtures
# ============================================================================


@pytest.fixture(scope="session")
def postgres_container() -> Generator[Any, None, None]:
    """
    Provide a PostgreSQL container shared by the whole session.
    """
    if not TESTCONTAINERS_AVAILABLE or not DOCKER_AVAILABLE:
        pytest.skip("PostgreSQL testcontainer not available")

    container = PostgresContainer("postgres:16")
    container.start()

    yield container

    container.stop()


@pytest.fixture(scope="session")
def postgres_connection_url(postgres_container: Any) -> str:
    # testcontainers returns a psycopg2 URL
    url = postgres_container.get_connection_url()
    return url.replace("postgresql://", "postgresql+asyncpg://").replace("psycopg2", "asyncpg")


# ============================================================================
# Backend-parametrized Fixtures
# ============================================================================


@pytest_asyncio.fixture(
    params=[
        pytest.param("sqlite", marks=pytest.mark.sqlite),
        pytest.param("postgresql", marks=pytest.mark.postgres),
    ]
)
async def relay_engine(
    request: pytest.FixtureRequest, tmp_path: Path
) -> AsyncGenerator[AsyncEngine, None]:
    """
    Engine with a fresh payrelay schema, once per backend.

    The PostgreSQL database is shared across the session, so its schema is
    dropped and recreated for every test.
    """
    if request.param == "sqlite":
        if not AIOSQLITE_AVAILABLE:
            pytest.skip("aiosqlite not installed")
        url = f"sqlite+aiosqlite:///{tmp_path / 'relay.db'}"
    else:
        url = request.getfixturevalue("postgres_connection_url")

    engine = create_relay_engine(url)
    await drop_schema(engine)
    await create_schema(engine)

    yield engine

    await engine.dispose()


@pytest.fixture
def relay_uow_factory(relay_engine: AsyncEngine) -> UnitOfWorkFactory:
    return sqlalchemy_unit_of_work_factory(relay_engine, enable_tracing=False)
