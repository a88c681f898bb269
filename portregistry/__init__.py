"""Persistent registry of installed ports."""

from portregistry.errors import (
    AlreadyOwnedError,
    ConstraintError,
    DuplicateError,
    HandleNotFoundError,
    InvalidEntryError,
    InvalidKeyError,
    InvalidPatternError,
    InvalidStrategyError,
    NotOpenError,
    NotOwnedError,
    RegistryError,
    SchemaError,
    StorageError,
)
from portregistry.storage import (
    ENTRY_PROPERTIES,
    Entry,
    EntryRecord,
    EntryState,
    MatchStrategy,
    Registry,
    open_registry,
)
from portregistry.utils.version_compare import compare

__version__ = "2.0.0"

__all__ = [
    "AlreadyOwnedError",
    "ConstraintError",
    "DuplicateError",
    "ENTRY_PROPERTIES",
    "Entry",
    "EntryRecord",
    "EntryState",
    "HandleNotFoundError",
    "InvalidEntryError",
    "InvalidKeyError",
    "InvalidPatternError",
    "InvalidStrategyError",
    "MatchStrategy",
    "NotOpenError",
    "NotOwnedError",
    "Registry",
    "RegistryError",
    "SchemaError",
    "StorageError",
    "compare",
    "open_registry",
]
