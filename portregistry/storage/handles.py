"""Session-scoped handles for registry entries.

A binding layer hands callers opaque handles instead of row ids. Handles are
recorded in the temporary ``entry_handles`` table and the live ``Entry``
objects are kept here, so exposing the same row twice returns the very same
object. Nothing in this module survives closing the registry.
"""

from __future__ import annotations

import itertools
import logging
from typing import TYPE_CHECKING, Iterable

from sqlalchemy import delete, insert, select

from portregistry.errors import HandleNotFoundError
from portregistry.storage.models import entry_handles_table

if TYPE_CHECKING:
    from portregistry.storage.entries import Entry
    from portregistry.storage.manager import Registry

logger = logging.getLogger(__name__)

HANDLE_PREFIX = "entry"


class HandleRegistry:
    """Maps entry ids to stable handles for one registry session."""

    def __init__(self, registry: Registry):
        self._registry = registry
        self._by_handle: dict[str, Entry] = {}
        self._by_entry_id: dict[int, Entry] = {}
        self._counter = itertools.count()

    def __len__(self) -> int:
        return len(self._by_handle)

    def _mint(self) -> str:
        while True:
            handle = f"{HANDLE_PREFIX}{next(self._counter)}"
            if handle not in self._by_handle:
                return handle

    def expose(self, entry_id: int) -> Entry:
        """Return the handle for ``entry_id``, minting one if needed."""
        return self.expose_all([entry_id])[0]

    def expose_all(self, entry_ids: Iterable[int]) -> list[Entry]:
        """Return handles for each id, preserving order.

        New handles are recorded in a single transaction.
        """
        from portregistry.storage.entries import Entry

        entries: list[Entry] = []
        minted: list[Entry] = []
        for entry_id in entry_ids:
            entry = self._by_entry_id.get(entry_id)
            if entry is None:
                entry = Entry(self._registry, entry_id, self._mint())
                self._by_entry_id[entry_id] = entry
                self._by_handle[entry.handle] = entry
                minted.append(entry)
            entries.append(entry)

        if minted:
            with self._registry.session() as session:
                session.execute(
                    insert(entry_handles_table),
                    [{"entry_id": e.id, "handle": e.handle} for e in minted],
                )
                session.commit()
            logger.debug(f"Minted {len(minted)} entry handle(s)")
        return entries

    def resolve(self, handle: str) -> Entry:
        """Return the entry a handle refers to.

        Raises:
            HandleNotFoundError: If the handle is unknown in this session
        """
        try:
            return self._by_handle[handle]
        except KeyError:
            raise HandleNotFoundError(handle) from None

    def exists(self, handle: str) -> bool:
        """Check whether ``handle`` resolves in this session. No storage access."""
        return handle in self._by_handle

    def handle_for(self, entry_id: int) -> str | None:
        """Return the recorded handle for an entry id, if any."""
        with self._registry.session() as session:
            return session.execute(
                select(entry_handles_table.c.handle).where(
                    entry_handles_table.c.entry_id == entry_id
                )
            ).scalar_one_or_none()

    def release(self, handle: str) -> None:
        """Forget a handle. The entry stays in storage.

        Raises:
            HandleNotFoundError: If the handle is unknown in this session
        """
        entry = self.resolve(handle)
        self.release_entries([entry.id])

    def release_entries(self, entry_ids: Iterable[int]) -> None:
        """Forget the handles of the given entry ids, ignoring unknown ids."""
        released = []
        for entry_id in entry_ids:
            entry = self._by_entry_id.pop(entry_id, None)
            if entry is None:
                continue
            del self._by_handle[entry.handle]
            entry._detach()
            released.append(entry_id)

        if released:
            with self._registry.session() as session:
                session.execute(
                    delete(entry_handles_table).where(
                        entry_handles_table.c.entry_id.in_(released)
                    )
                )
                session.commit()

    def clear(self) -> None:
        """Invalidate every handle. Called when the registry closes."""
        for entry in self._by_handle.values():
            entry._detach()
        self._by_handle.clear()
        self._by_entry_id.clear()
