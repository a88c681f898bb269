"""Entry store: create, delete, read, write and search registry entries.

Every statement is built with bound parameters; property names are checked
against ENTRY_PROPERTIES before they are used to pick a column, and values
never reach the SQL text.
"""

from __future__ import annotations

import logging
import re
from enum import Enum
from typing import TYPE_CHECKING, Iterable, Iterator, Mapping, Optional, Sequence, Union

from pydantic import BaseModel
from sqlalchemy import Integer, cast, delete, func, insert, literal_column, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from portregistry.errors import (
    ConstraintError,
    DuplicateError,
    InvalidEntryError,
    InvalidKeyError,
    InvalidPatternError,
    InvalidStrategyError,
    HandleNotFoundError,
    StorageError,
)
from portregistry.storage.models import FileMapping, Port

if TYPE_CHECKING:
    from portregistry.storage.manager import Registry

logger = logging.getLogger(__name__)

# Recognized entry property names, in column order
ENTRY_PROPERTIES = (
    "name",
    "portfile",
    "url",
    "location",
    "epoch",
    "version",
    "revision",
    "variants",
    "date",
    "state",
)

# Properties holding non-negative integers (stored as text)
COUNTER_PROPERTIES = frozenset({"epoch", "revision"})


class EntryState(str, Enum):
    """States the install workflow writes. Any other string is allowed too."""

    IMPORTED = "imported"
    INSTALLED = "installed"
    ACTIVE = "active"


class MatchStrategy(str, Enum):
    """How search values are matched against property values."""

    EXACT = "exact"
    GLOB = "glob"
    REGEXP = "regexp"


class EntryRecord(BaseModel):
    """Snapshot of every property of one entry."""

    id: int
    name: Optional[str] = None
    portfile: Optional[str] = None
    url: Optional[str] = None
    location: Optional[str] = None
    epoch: Optional[str] = None
    version: Optional[str] = None
    revision: Optional[str] = None
    variants: Optional[str] = None
    date: Optional[str] = None
    state: Optional[str] = None


class Entry:
    """Live handle to one row of the ports table.

    Entries are minted by the handle registry; within one registry session
    the same row is always represented by the same Entry object.
    """

    def __init__(self, registry: Registry, entry_id: int, handle: str):
        self._registry: Optional[Registry] = registry
        self._id = entry_id
        self._handle = handle

    @property
    def id(self) -> int:
        return self._id

    @property
    def handle(self) -> str:
        return self._handle

    @property
    def registry(self) -> Registry:
        if self._registry is None:
            raise HandleNotFoundError(self._handle, entry_id=self._id)
        return self._registry

    def _detach(self) -> None:
        self._registry = None

    def get(self, key: str) -> Optional[str]:
        return self.registry.entries.get_property(self, key)

    def set(self, key: str, value) -> None:
        self.registry.entries.set_property(self, key, value)

    def describe(self) -> EntryRecord:
        return self.registry.entries.describe(self)

    def map(self, paths: Iterable[str], mtime: Optional[int] = None) -> None:
        self.registry.files.map(self, paths, mtime=mtime)

    def unmap(self, paths: Iterable[str]) -> None:
        self.registry.files.unmap(self, paths)

    def files(self) -> list[str]:
        return self.registry.files.list(self)

    def __repr__(self) -> str:
        return f"Entry(handle={self._handle!r}, id={self._id!r})"


Predicates = Union[Mapping[str, str], Iterable[tuple[str, str]]]


def validate_key(key: str) -> str:
    """Return ``key`` if it names an entry property.

    Raises:
        InvalidKeyError: If the key is not a recognized property
    """
    if key not in ENTRY_PROPERTIES:
        raise InvalidKeyError(key)
    return key


def _as_counter(key: str, value) -> str:
    """Normalize an epoch/revision value to its canonical text form.

    Leading zeros are dropped, so "01" and 1 are stored as the same value.

    Raises:
        ConstraintError: If the value is not a non-negative integer
    """
    if isinstance(value, bool):
        raise ConstraintError(f"{key} must be a non-negative integer, got {value!r}")
    if isinstance(value, int):
        if value < 0:
            raise ConstraintError(f"{key} must be a non-negative integer, got {value!r}")
        return str(value)
    text = str(value)
    if not text.isascii() or not text.isdigit():
        raise ConstraintError(f"{key} must be a non-negative integer, got {value!r}")
    return str(int(text))


def _normalize_predicates(predicates: Predicates) -> list[tuple[str, str]]:
    if isinstance(predicates, Mapping):
        pairs = list(predicates.items())
    else:
        pairs = [tuple(pair) for pair in predicates]
    for key, _ in pairs:
        validate_key(key)
    return pairs


def _coerce_strategy(strategy) -> MatchStrategy:
    try:
        return MatchStrategy(strategy)
    except ValueError:
        raise InvalidStrategyError(
            f"invalid matching strategy {strategy!r}; expected one of "
            f"{', '.join(s.value for s in MatchStrategy)}"
        ) from None


class EntryStore:
    """CRUD and search operations over the ports table."""

    def __init__(self, registry: Registry):
        self._registry = registry

    @property
    def _handles(self):
        return self._registry.handles

    def _expose(self, entry_ids: Sequence[int]) -> list[Entry]:
        return self._handles.expose_all(entry_ids)

    def _select_ids(self, operation: str, statement) -> list[int]:
        try:
            with self._registry.session() as session:
                return list(session.execute(statement).scalars())
        except SQLAlchemyError as exc:
            raise StorageError(operation, str(exc)) from exc

    # Creation and deletion

    def create(
        self,
        name: str,
        version: str,
        revision: Union[int, str] = 0,
        variants: str = "",
        epoch: Union[int, str] = 0,
    ) -> Entry:
        """Insert a new entry and return its handle.

        Raises:
            ConstraintError: If epoch or revision is not a non-negative integer
            DuplicateError: If (name, epoch, version, revision, variants) or
                (url, epoch, version, revision, variants) already exists
            StorageError: On any other storage failure
        """
        values = {
            "name": name,
            "version": version,
            "revision": _as_counter("revision", revision),
            "variants": variants,
            "epoch": _as_counter("epoch", epoch),
            "date": literal_column("NOW()"),
        }
        with self._registry.session() as session:
            try:
                result = session.execute(insert(Port).values(**values))
                entry_id = result.inserted_primary_key[0]
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise DuplicateError(
                    f"entry {name} {version}_{values['revision']} "
                    f"{variants!r} (epoch {values['epoch']}) already exists"
                ) from exc
            except SQLAlchemyError as exc:
                session.rollback()
                raise StorageError("create entry", str(exc)) from exc

        logger.info(f"Created entry {name} @{version}_{values['revision']}{variants} (id {entry_id})")
        return self._handles.expose(entry_id)

    def delete(self, entries: Iterable[Entry]) -> int:
        """Delete entries and free the files they own.

        Runs as one transaction. A missing entry stops the batch; deletions
        made before it stay committed and the error reports how many.

        Returns:
            Number of entries deleted

        Raises:
            InvalidEntryError: If an entry does not exist (``completed`` is set)
            StorageError: On a storage failure (``completed`` is not reported)
        """
        entries = list(entries)
        deleted: list[int] = []
        failure: Optional[InvalidEntryError] = None

        with self._registry.session() as session:
            try:
                for entry in entries:
                    freed = session.execute(
                        delete(FileMapping).where(FileMapping.port_id == entry.id)
                    ).rowcount
                    result = session.execute(delete(Port).where(Port.id == entry.id))
                    if result.rowcount == 0:
                        failure = InvalidEntryError(
                            entry_id=entry.id, completed=len(deleted)
                        )
                        break
                    if freed:
                        logger.debug(f"Freed {freed} file(s) owned by entry {entry.id}")
                    deleted.append(entry.id)
                session.commit()
            except SQLAlchemyError as exc:
                session.rollback()
                raise StorageError("delete entries", str(exc)) from exc

        self._handles.release_entries(deleted)
        logger.info(f"Deleted {len(deleted)} entr{'y' if len(deleted) == 1 else 'ies'}")
        if failure is not None:
            raise failure
        return len(deleted)

    def release(self, entries: Iterable[Entry]) -> None:
        """Drop the session handles of ``entries``; storage is untouched."""
        self._handles.release_entries(entry.id for entry in entries)

    # Properties

    def get_property(self, entry: Entry, key: str) -> Optional[str]:
        """Read one property of an entry.

        Raises:
            InvalidKeyError: If ``key`` is not a recognized property
            InvalidEntryError: If the entry does not exist
        """
        column = getattr(Port, validate_key(key))
        try:
            with self._registry.session() as session:
                row = session.execute(
                    select(column).where(Port.id == entry.id)
                ).one_or_none()
        except SQLAlchemyError as exc:
            raise StorageError(f"get {key}", str(exc)) from exc
        if row is None:
            raise InvalidEntryError(entry_id=entry.id)
        value = row[0]
        return value if value is None else str(value)

    def set_property(self, entry: Entry, key: str, value) -> None:
        """Write one property of an entry.

        Raises:
            InvalidKeyError: If ``key`` is not a recognized property
            ConstraintError: If the write violates a constraint; the row is
                left unchanged
            InvalidEntryError: If the entry does not exist
            StorageError: On any other storage failure
        """
        validate_key(key)
        if isinstance(value, Enum):
            value = value.value
        if key in COUNTER_PROPERTIES:
            value = _as_counter(key, value)
        elif value is not None:
            value = str(value)

        with self._registry.session() as session:
            try:
                result = session.execute(
                    update(Port).where(Port.id == entry.id).values({key: value})
                )
                if result.rowcount == 0:
                    session.rollback()
                    raise InvalidEntryError(entry_id=entry.id)
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConstraintError(
                    f"setting {key} of entry {entry.id} violates a constraint"
                ) from exc
            except SQLAlchemyError as exc:
                session.rollback()
                raise StorageError(f"set {key}", str(exc)) from exc

    def describe(self, entry: Entry) -> EntryRecord:
        """Read every property of an entry at once.

        Raises:
            InvalidEntryError: If the entry does not exist
        """
        try:
            with self._registry.session() as session:
                port = session.get(Port, entry.id)
                if port is None:
                    raise InvalidEntryError(entry_id=entry.id)
                return EntryRecord(
                    id=port.id, **{key: getattr(port, key) for key in ENTRY_PROPERTIES}
                )
        except SQLAlchemyError as exc:
            raise StorageError("describe entry", str(exc)) from exc

    # Queries

    def search(
        self,
        predicates: Predicates = (),
        strategy: Union[MatchStrategy, str] = MatchStrategy.EXACT,
    ) -> list[Entry]:
        """Find entries whose properties match every predicate.

        With no predicates, returns every entry. Results are ordered by row id.

        Raises:
            InvalidKeyError: If a predicate key is not a recognized property
            InvalidStrategyError: If ``strategy`` is unknown
            InvalidPatternError: If a regexp predicate does not compile
            StorageError: On a storage failure
        """
        pairs = _normalize_predicates(predicates)
        strategy = _coerce_strategy(strategy)
        if strategy is MatchStrategy.REGEXP:
            for _, pattern in pairs:
                try:
                    re.compile(pattern)
                except re.error as exc:
                    raise InvalidPatternError(f"invalid pattern {pattern!r}: {exc}") from exc

        statement = select(Port.id)
        for key, value in pairs:
            column = getattr(Port, key)
            if strategy is MatchStrategy.EXACT:
                statement = statement.where(column == value)
            elif strategy is MatchStrategy.GLOB:
                statement = statement.where(column.op("GLOB")(value))
            else:
                statement = statement.where(column.regexp_match(value))
        statement = statement.order_by(Port.id)

        return self._expose(self._select_ids("search entries", statement))

    def lookup(
        self,
        name: str,
        version: str,
        revision: Union[int, str] = 0,
        variants: str = "",
        epoch: Union[int, str] = 0,
    ) -> Optional[Entry]:
        """Find the entry with exactly this identity, if recorded."""
        statement = select(Port.id).where(
            Port.name == name,
            Port.version == version,
            Port.revision == _as_counter("revision", revision),
            Port.variants == variants,
            Port.epoch == _as_counter("epoch", epoch),
        )
        ids = self._select_ids("lookup entry", statement)
        return self._handles.expose(ids[0]) if ids else None

    def installed(self, name: Optional[str] = None, version: Optional[str] = None) -> list[Entry]:
        """Entries that are installed or active, optionally by name and version."""
        statement = select(Port.id).where(
            Port.state.in_([EntryState.INSTALLED.value, EntryState.ACTIVE.value])
        )
        if name is not None:
            statement = statement.where(Port.name == name)
            if version is not None:
                statement = statement.where(Port.version == version)
        return self._expose(self._select_ids("installed entries", statement.order_by(Port.id)))

    def active(self, name: Optional[str] = None) -> list[Entry]:
        """Entries that are active, optionally by name."""
        statement = select(Port.id).where(Port.state == EntryState.ACTIVE.value)
        if name is not None:
            statement = statement.where(Port.name == name)
        return self._expose(self._select_ids("active entries", statement.order_by(Port.id)))

    def latest(self, name: str) -> Optional[Entry]:
        """The newest recorded entry for ``name`` by epoch, version and revision."""
        statement = (
            select(Port.id)
            .where(Port.name == name)
            .order_by(
                cast(Port.epoch, Integer).desc(),
                Port.version.desc(),
                Port.revision.desc(),
                Port.id.desc(),
            )
            .limit(1)
        )
        ids = self._select_ids("latest entry", statement)
        return self._handles.expose(ids[0]) if ids else None

    def exists(self, handle: str) -> bool:
        """Check whether ``handle`` names a live entry in this session.

        Only the handle registry is consulted; storage is never queried.
        """
        return isinstance(handle, str) and self._handles.exists(handle)

    def __iter__(self) -> Iterator[Entry]:
        return iter(self.search())

    def count(self) -> int:
        """Number of entries in the registry."""
        statement = select(func.count()).select_from(Port)
        try:
            with self._registry.session() as session:
                return session.execute(statement).scalar_one()
        except SQLAlchemyError as exc:
            raise StorageError("count entries", str(exc)) from exc
