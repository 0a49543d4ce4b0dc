"""
Shared storage for the in-memory repositories.

All in-memory repositories of one service point at the same
:class:`InMemoryDatabase`. Rows are stored as plain dicts keyed by primary
key, and repositories copy rows in and out so callers never share mutable
state with the store. A unit of work holds :attr:`InMemoryDatabase.lock` for
its whole lifetime and rolls back by restoring a snapshot.
"""

import asyncio
import copy
from typing import Any

TABLES = ("orders", "payments", "outbox_events", "payment_requests", "retry_records")

Snapshot = dict[str, dict[Any, dict[str, Any]]]


class InMemoryDatabase:
    """
    Process-local tables guarded by an asyncio lock.

    Example:
        >>> database = InMemoryDatabase()
        >>> async with InMemoryUnitOfWork(database) as uow:
        ...     await uow.orders.save(order)
    """

    def __init__(self) -> None:
        self.lock = asyncio.Lock()
        self._tables: Snapshot = {name: {} for name in TABLES}

    def table(self, name: str) -> dict[Any, dict[str, Any]]:
        return self._tables[name]

    def snapshot(self) -> Snapshot:
        return copy.deepcopy(self._tables)

    def restore(self, snapshot: Snapshot) -> None:
        self._tables = snapshot

    def clear(self) -> None:
        self._tables = {name: {} for name in TABLES}

    def count(self, name: str) -> int:
        return len(self._tables[name])

    def __repr__(self) -> str:
        sizes = ", ".join(f"{name}={len(rows)}" for name, rows in self._tables.items())
        return f"InMemoryDatabase({sizes})"
