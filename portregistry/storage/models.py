"""Registry database models.

This module defines the SQLAlchemy models for a registry file (the
persistent ``metadata``, ``ports`` and ``files`` tables) and the temporary
tables that live only as long as one registry session.

IMPORTANT: ``ports.version`` and ``ports.revision`` use the VERSION
collation, which is registered on every connection (see
storage/schema.py). Comparisons, ordering and the uniqueness constraints
on those columns all go through it, so "7.1" and "7.01" are the same
version as far as the database is concerned.
"""

from typing import List, Optional
from sqlalchemy import (
    Column,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, relationship, Mapped, mapped_column

from portregistry.utils.version_compare import VERSION_COLLATION

# Schema version (increment on breaking changes)
REGISTRY_SCHEMA_VERSION = "1.000"


class RegistryBase(DeclarativeBase):
    pass


class Meta(RegistryBase):
    """Metadata key-value store for a registry file.

    Holds ``version`` (the schema version) and ``created`` (unix time the
    registry was initialised).
    """

    __tablename__ = "metadata"

    key: Mapped[str] = mapped_column(String, primary_key=True)
    value: Mapped[Optional[str]] = mapped_column(String)


class Port(RegistryBase):
    """One recorded port instance.

    ``id`` is an INTEGER PRIMARY KEY and therefore aliases SQLite's rowid;
    AUTOINCREMENT keeps ids from being reused after deletion.

    Every attribute is stored as text; epoch and revision are validated as
    non-negative integers by the entry store before they are written.
    """

    __tablename__ = "ports"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[Optional[str]] = mapped_column(String)
    portfile: Mapped[Optional[str]] = mapped_column(String)
    url: Mapped[Optional[str]] = mapped_column(String)
    location: Mapped[Optional[str]] = mapped_column(String)
    epoch: Mapped[Optional[str]] = mapped_column(String)
    version: Mapped[Optional[str]] = mapped_column(String(collation=VERSION_COLLATION))
    revision: Mapped[Optional[str]] = mapped_column(String(collation=VERSION_COLLATION))
    variants: Mapped[Optional[str]] = mapped_column(String)
    state: Mapped[Optional[str]] = mapped_column(String)
    date: Mapped[Optional[str]] = mapped_column(String)

    # Relationships
    files: Mapped[List["FileMapping"]] = relationship(back_populates="port")

    __table_args__ = (
        UniqueConstraint("name", "epoch", "version", "revision", "variants"),
        UniqueConstraint("url", "epoch", "version", "revision", "variants"),
        Index("port_name", "name", "epoch", "version", "revision", "variants"),
        Index("port_url", "url", "epoch", "version", "revision", "variants"),
        Index("port_state", "state"),
        {"sqlite_autoincrement": True},
    )

    def __repr__(self) -> str:
        return (
            f"Port(id={self.id!r}, name={self.name!r}, version={self.version!r}, "
            f"revision={self.revision!r}, variants={self.variants!r})"
        )


class FileMapping(RegistryBase):
    """A filesystem path owned by a port.

    CRITICAL: ``path`` is the primary key, so a path can be owned by at most
    one port registry-wide. ``port_id`` must reference a live port; foreign
    keys are enforced per connection (PRAGMA foreign_keys=ON).
    """

    __tablename__ = "files"

    path: Mapped[str] = mapped_column(String, primary_key=True)
    port_id: Mapped[int] = mapped_column(ForeignKey("ports.id"), nullable=False)
    mtime: Mapped[Optional[int]] = mapped_column(Integer)

    # Relationship
    port: Mapped["Port"] = relationship(back_populates="files")

    __table_args__ = (Index("file_port", "port_id"),)


# Session-scoped tables. Created as TEMPORARY tables on the session's single
# connection, so they vanish as soon as the registry is closed.
session_metadata = MetaData()

items_table = Table(
    "items",
    session_metadata,
    Column("refcount", Integer),
    Column("proc", String, unique=True),
    Column("name", String),
    Column("url", String),
    Column("path", String),
    Column("worker", String),
    Column("options", String),
    Column("variants", String),
    prefixes=["TEMPORARY"],
)

indexes_table = Table(
    "indexes",
    session_metadata,
    Column("file", String),
    Column("name", String),
    Column("attached", Integer),
    prefixes=["TEMPORARY"],
)

entry_handles_table = Table(
    "entry_handles",
    session_metadata,
    Column("entry_id", Integer, unique=True, nullable=False),
    Column("handle", String, unique=True, nullable=False),
    prefixes=["TEMPORARY"],
)
