"""Storage module for the port registry.

This module implements the registry storage engine:
1. Schema (storage/models.py, storage/schema.py) - persistent metadata/ports/files
   tables plus temporary per-session tables
2. Entry store (storage/entries.py) - CRUD and search over ports
3. File map (storage/files.py) - path ownership with registry-wide uniqueness
4. Handles (storage/handles.py) - session-stable handles for entries

Configuration is loaded separately via pydantic settings (see portregistry/settings.py).
"""

from portregistry.storage.entries import (
    ENTRY_PROPERTIES,
    Entry,
    EntryRecord,
    EntryState,
    EntryStore,
    MatchStrategy,
)
from portregistry.storage.files import FileMap
from portregistry.storage.handles import HandleRegistry
from portregistry.storage.manager import Registry, open_registry

__all__ = [
    "ENTRY_PROPERTIES",
    "Entry",
    "EntryRecord",
    "EntryState",
    "EntryStore",
    "FileMap",
    "HandleRegistry",
    "MatchStrategy",
    "Registry",
    "open_registry",
]
