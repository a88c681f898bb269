"""Registry session: the open connection to one registry file.

A Registry object replaces process-global connection state. It owns the
engine, the temporary session tables and the handle registry, and it wires
the entry store and file map to them.
"""

from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Iterator, Literal, Optional, Union
import logging

from sqlalchemy import create_engine, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from portregistry.errors import NotOpenError, SchemaError, StorageError
from portregistry.storage.entries import EntryStore
from portregistry.storage.files import FileMap
from portregistry.storage.handles import HandleRegistry
from portregistry.storage.models import Meta
from portregistry.storage.schema import create_session_tables, initialize_schema

if TYPE_CHECKING:
    from portregistry.settings import RegistrySettings

logger = logging.getLogger(__name__)

JournalMode = Literal["WAL", "DELETE", "TRUNCATE", "MEMORY"]
JOURNAL_MODES = ("WAL", "DELETE", "TRUNCATE", "MEMORY")

MEMORY_PATH = ":memory:"


class Registry:
    """An open registry session.

    Usage:
        with Registry(path) as registry:
            vim = registry.entries.create("vim", "7.1.002", 0, "+multibyte", 0)
            vim.set("state", "installed")
            registry.files.map(vim, ["/opt/local/bin/vim"])

    IMPORTANT:
    - One Registry per process (or thread); concurrent writers to the same
      file are not supported.
    - The engine holds exactly one connection (StaticPool). The temporary
      session tables and the handle table only exist on that connection.
    - Closing invalidates every Entry handed out by this registry.
    """

    def __init__(
        self,
        registry_path: Union[Path, str],
        journal_mode: JournalMode = "WAL",
    ):
        """Open (and if needed initialize) the registry at ``registry_path``.

        Args:
            registry_path: Registry database file, or ":memory:"
            journal_mode: SQLite journal mode for the file

        Raises:
            SchemaError: If the file holds an incompatible schema
            ValueError: If the journal mode is unknown
        """
        if journal_mode not in JOURNAL_MODES:
            raise ValueError(f"Unknown journal mode {journal_mode!r}")

        # Handle in-memory database path
        if str(registry_path) == MEMORY_PATH:
            self.registry_path: Optional[Path] = None
            db_url = "sqlite:///:memory:"
        else:
            self.registry_path = Path(registry_path)
            self.registry_path.parent.mkdir(parents=True, exist_ok=True)
            db_url = f"sqlite:///{self.registry_path}"

        self._active_sessions = 0
        self.engine: Optional[Engine] = create_engine(
            db_url,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
        self._sessionmaker = sessionmaker(bind=self.engine, expire_on_commit=False)

        try:
            self._set_journal_mode(journal_mode)
            initialize_schema(self.engine)
            create_session_tables(self.engine)
        except Exception:
            self.engine.dispose()
            self.engine = None
            raise

        self.handles = HandleRegistry(self)
        self.entries = EntryStore(self)
        self.files = FileMap(self)

        logger.info(f"Opened registry {self.location}")

    def _set_journal_mode(self, journal_mode: JournalMode) -> None:
        # journal_mode is checked against JOURNAL_MODES before it gets here
        try:
            with self.engine.connect() as connection:
                connection.exec_driver_sql(f"PRAGMA journal_mode={journal_mode}")
        except SQLAlchemyError as exc:
            raise SchemaError(f"cannot open registry {self.location}: {exc}") from exc

    @classmethod
    def from_settings(cls, settings: "RegistrySettings") -> "Registry":
        """Open the registry described by ``settings``."""
        return cls(settings.registry_path, journal_mode=settings.journal_mode)

    @property
    def location(self) -> str:
        return MEMORY_PATH if self.registry_path is None else str(self.registry_path)

    @property
    def is_open(self) -> bool:
        return self.engine is not None

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Get a SQLAlchemy session bound to the registry connection.

        Raises:
            NotOpenError: If the registry has been closed
        """
        if self.engine is None:
            raise NotOpenError()

        session = self._sessionmaker()
        self._active_sessions += 1
        try:
            yield session
        finally:
            self._active_sessions -= 1
            session.close()

    def metadata_value(self, key: str) -> Optional[str]:
        """Read a value from the registry's metadata table."""
        try:
            with self.session() as session:
                return session.execute(
                    select(Meta.value).where(Meta.key == key)
                ).scalar_one_or_none()
        except SQLAlchemyError as exc:
            raise StorageError(f"read metadata {key}", str(exc)) from exc

    def close(self) -> None:
        """Close the registry, invalidating every handle.

        Closing while sessions are still open is done best-effort and logged.

        Raises:
            NotOpenError: If the registry is already closed
        """
        if self.engine is None:
            raise NotOpenError()

        if self._active_sessions:
            logger.warning(
                f"Closing registry {self.location} with "
                f"{self._active_sessions} session(s) still open"
            )
        self.handles.clear()
        self.engine.dispose()
        self.engine = None
        logger.info(f"Closed registry {self.location}")

    def __enter__(self) -> "Registry":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        if self.is_open:
            self.close()
        return False

    def __repr__(self) -> str:
        state = "open" if self.is_open else "closed"
        return f"Registry({self.location!r}, {state})"


def open_registry(
    registry_path: Union[Path, str], journal_mode: JournalMode = "WAL"
) -> Registry:
    """Open or initialize the registry at ``registry_path``."""
    return Registry(registry_path, journal_mode=journal_mode)
