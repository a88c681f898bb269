"""Schema management for registry files.

Creates the persistent tables once per registry file, the temporary session
tables once per registry session, and registers the SQL helpers (VERSION
collation, REGEXP and NOW functions) on every SQLite connection.
"""

import logging
import re
import sqlite3
import time

from sqlalchemy import event, inspect, insert, literal_column, select
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from portregistry.errors import SchemaError
from portregistry.storage.models import (
    REGISTRY_SCHEMA_VERSION,
    Meta,
    RegistryBase,
    session_metadata,
)
from portregistry.utils.version_compare import VERSION_COLLATION, compare

logger = logging.getLogger(__name__)


def _sql_regexp(pattern, value):
    """REGEXP function for SQLite: ``value REGEXP pattern``."""
    if pattern is None or value is None:
        return None
    return re.search(pattern, value) is not None


def _sql_now():
    """NOW function for SQLite: the current unix timestamp."""
    return int(time.time())


def _sql_version_collation(a: str, b: str) -> int:
    return compare(a, b)


# CRITICAL: Register on every connection, not once per engine.
# SQLite keeps PRAGMAs, functions and collations per connection.
@event.listens_for(Engine, "connect")
def register_sqlite_helpers(dbapi_conn, connection_record):
    """Set PRAGMAs and register the registry's SQL helpers.

    Without the VERSION collation SQLite refuses to prepare any statement
    touching ``ports.version`` or ``ports.revision``.
    """
    if not isinstance(dbapi_conn, sqlite3.Connection):
        return
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()
    dbapi_conn.create_collation(VERSION_COLLATION, _sql_version_collation)
    dbapi_conn.create_function("REGEXP", 2, _sql_regexp, deterministic=True)
    dbapi_conn.create_function("NOW", 0, _sql_now)


def _check_existing_tables(connection: Connection) -> None:
    """Refuse to touch a file whose tables don't match ours.

    Raises:
        SchemaError: If a registry table exists without the expected columns
    """
    inspector = inspect(connection)
    existing = set(inspector.get_table_names())
    for table in RegistryBase.metadata.sorted_tables:
        if table.name not in existing:
            continue
        columns = {column["name"] for column in inspector.get_columns(table.name)}
        missing = {column.name for column in table.columns} - columns
        if missing:
            raise SchemaError(
                f"incompatible registry schema: table {table.name!r} is missing "
                f"columns {', '.join(sorted(missing))}"
            )


def _verify_schema_version(connection: Connection, location: str) -> None:
    """Verify the registry schema version matches the code version.

    Raises:
        SchemaError: If the stored version differs
    """
    stored = connection.execute(
        select(Meta.value).where(Meta.key == "version")
    ).scalar_one_or_none()

    if stored is None:
        # New registry, record version and creation time
        connection.execute(
            insert(Meta).values(key="version", value=REGISTRY_SCHEMA_VERSION)
        )
        connection.execute(
            insert(Meta).values(key="created", value=literal_column("NOW()"))
        )
        logger.info(f"Initialized registry schema v{REGISTRY_SCHEMA_VERSION} at {location}")
    elif stored != REGISTRY_SCHEMA_VERSION:
        raise SchemaError(
            f"registry schema version mismatch: database is v{stored}, "
            f"code expects v{REGISTRY_SCHEMA_VERSION} ({location})"
        )


def initialize_schema(engine: Engine) -> None:
    """Create the persistent registry tables if needed and verify the version.

    Idempotent: opening an existing, compatible registry changes nothing.

    Raises:
        SchemaError: If the schema is incompatible or cannot be created
    """
    location = engine.url.database or ":memory:"
    try:
        with engine.begin() as connection:
            _check_existing_tables(connection)
            RegistryBase.metadata.create_all(connection)
            _verify_schema_version(connection, location)
    except SchemaError:
        raise
    except SQLAlchemyError as exc:
        raise SchemaError(f"cannot create registry tables in {location}: {exc}") from exc


def create_session_tables(engine: Engine) -> None:
    """Create the temporary per-session tables.

    The engine must hand out a single connection (StaticPool); temporary
    tables are only visible on the connection that created them.

    Raises:
        SchemaError: If the tables cannot be created
    """
    try:
        with engine.begin() as connection:
            session_metadata.create_all(connection)
    except SQLAlchemyError as exc:
        raise SchemaError(f"cannot create session tables: {exc}") from exc
