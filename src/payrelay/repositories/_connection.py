"""
Connection helpers shared by the SQLAlchemy repositories.

Repositories accept either an ``AsyncConnection`` that belongs to a unit of
work or a bare ``AsyncEngine``. With a connection, statements join the
caller's transaction; with an engine, each call runs in its own short
transaction (useful for statistics and maintenance jobs).
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy import Select
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine


@asynccontextmanager
async def connection_scope(
    bind: AsyncConnection | AsyncEngine,
    transactional: bool = True,
) -> AsyncIterator[AsyncConnection]:
    """
    Yield a connection to execute statements on.

    Args:
        bind: Unit-of-work connection or engine
        transactional: Only used for engines. True opens ``engine.begin()``
            so writes commit on exit; False opens a plain connection for reads.

    Example:
        >>> async with connection_scope(self._bind) as conn:
        ...     await conn.execute(insert(outbox_events).values(**row))
    """
    if isinstance(bind, AsyncEngine):
        if transactional:
            async with bind.begin() as connection:
                yield connection
        else:
            async with bind.connect() as connection:
                yield connection
    else:
        yield bind


def dialect_name(bind: AsyncConnection | AsyncEngine) -> str:
    """Backend name used for the ``db.system`` span attribute."""
    return bind.dialect.name


def for_update(
    query: Select,  # type: ignore[type-arg]
    bind: AsyncConnection | AsyncEngine,
    skip_locked: bool = True,
) -> Select:  # type: ignore[type-arg]
    """
    Turn ``query`` into a locking read where the backend supports it.

    PostgreSQL gets ``FOR UPDATE SKIP LOCKED`` so concurrent publishers and
    reconcilers claim disjoint rows. SQLite has no row locks and serializes
    writers itself, so the query is returned unchanged.
    """
    if dialect_name(bind) == "sqlite":
        return query
    return query.with_for_update(skip_locked=skip_locked)
