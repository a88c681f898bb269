"""File ownership map: which entry owns which filesystem path.

``map`` is all-or-nothing: the first conflicting path rolls back the whole
batch. ``unmap`` is not: paths removed before a failure stay removed, since
a failed unmap points at a caller bug rather than a race with another
writer.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Iterable, Optional

from sqlalchemy import delete, insert, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from portregistry.errors import (
    AlreadyOwnedError,
    InvalidEntryError,
    NotOwnedError,
    StorageError,
)
from portregistry.storage.models import FileMapping, Port

if TYPE_CHECKING:
    from portregistry.storage.entries import Entry
    from portregistry.storage.manager import Registry

logger = logging.getLogger(__name__)


def _require_entry(session: Session, entry: Entry) -> None:
    if session.execute(select(Port.id).where(Port.id == entry.id)).first() is None:
        raise InvalidEntryError(entry_id=entry.id)


class FileMap:
    """Transactional binding of filesystem paths to registry entries."""

    def __init__(self, registry: Registry):
        self._registry = registry

    def map(self, entry: Entry, paths: Iterable[str], mtime: Optional[int] = None) -> None:
        """Bind every path to ``entry``.

        Raises:
            InvalidEntryError: If the entry does not exist
            AlreadyOwnedError: If any path is already owned (by any entry,
                including this one); nothing in the batch is bound
            StorageError: On any other storage failure
        """
        paths = list(paths)
        with self._registry.session() as session:
            try:
                _require_entry(session, entry)
                for path in paths:
                    owner_id = session.execute(
                        select(FileMapping.port_id).where(FileMapping.path == path)
                    ).scalar_one_or_none()
                    if owner_id is not None:
                        raise AlreadyOwnedError(path, owner_id)
                    try:
                        session.execute(
                            insert(FileMapping).values(
                                port_id=entry.id, path=path, mtime=mtime
                            )
                        )
                    except IntegrityError as exc:
                        raise AlreadyOwnedError(path) from exc
                session.commit()
            except (AlreadyOwnedError, InvalidEntryError):
                session.rollback()
                raise
            except SQLAlchemyError as exc:
                session.rollback()
                raise StorageError("map files", str(exc)) from exc

        logger.debug(f"Mapped {len(paths)} file(s) to entry {entry.id}")

    def unmap(self, entry: Entry, paths: Iterable[str]) -> None:
        """Release each path from ``entry``, stopping at the first one it doesn't own.

        Raises:
            NotOwnedError: If a path is unowned or owned by another entry;
                paths before it remain unmapped (``completed`` is set)
            StorageError: On a storage failure
        """
        removed = 0
        with self._registry.session() as session:
            try:
                for path in paths:
                    result = session.execute(
                        delete(FileMapping).where(
                            FileMapping.port_id == entry.id,
                            FileMapping.path == path,
                        )
                    )
                    if result.rowcount == 0:
                        session.commit()
                        raise NotOwnedError(path, completed=removed)
                    removed += 1
                session.commit()
            except SQLAlchemyError as exc:
                session.rollback()
                raise StorageError("unmap files", str(exc)) from exc

        logger.debug(f"Unmapped {removed} file(s) from entry {entry.id}")

    def list(self, entry: Entry) -> list[str]:
        """Paths currently owned by ``entry``.

        Raises:
            InvalidEntryError: If the entry does not exist
        """
        try:
            with self._registry.session() as session:
                _require_entry(session, entry)
                return list(
                    session.execute(
                        select(FileMapping.path)
                        .where(FileMapping.port_id == entry.id)
                        .order_by(FileMapping.path)
                    ).scalars()
                )
        except SQLAlchemyError as exc:
            raise StorageError("list files", str(exc)) from exc

    def owner(self, path: str) -> Optional[Entry]:
        """The entry owning ``path``, or None if nobody owns it."""
        try:
            with self._registry.session() as session:
                owner_id = session.execute(
                    select(FileMapping.port_id).where(FileMapping.path == path)
                ).scalar_one_or_none()
        except SQLAlchemyError as exc:
            raise StorageError("find file owner", str(exc)) from exc
        if owner_id is None:
            return None
        return self._registry.handles.expose(owner_id)
