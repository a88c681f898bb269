"""Error types raised by the port registry.

Every error carries a short machine-readable ``code`` so a binding layer can
translate failures without parsing messages. Batch operations that stop
partway report how much work was committed in ``completed``.
"""

from typing import Optional


class RegistryError(Exception):
    """Base class for all registry failures."""

    code = "registry::error"


class SchemaError(RegistryError):
    """Required tables, collations or metadata could not be established."""

    code = "registry::schema"


class NotOpenError(RegistryError):
    """The registry session has been closed (or was never opened)."""

    code = "registry::not-open"

    def __init__(self, message: str = "registry is not open"):
        super().__init__(message)


class DuplicateError(RegistryError):
    """Creating an entry would violate a uniqueness invariant."""

    code = "registry::duplicate"


class ConstraintError(RegistryError):
    """A property write was rejected by a constraint."""

    code = "registry::constraint"


class InvalidKeyError(RegistryError, KeyError):
    """An unrecognized entry property name was used."""

    code = "registry::invalid-key"

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"invalid entry property {key!r}")

    def __str__(self) -> str:
        return self.args[0]


class InvalidEntryError(RegistryError):
    """An operation targeted an entry that does not exist in storage."""

    code = "registry::invalid-entry"

    def __init__(
        self,
        message: str = "an invalid entry was passed",
        entry_id: Optional[int] = None,
        completed: int = 0,
    ):
        self.entry_id = entry_id
        self.completed = completed
        super().__init__(message)


class HandleNotFoundError(InvalidEntryError):
    """A handle does not resolve to a live entry in this session.

    Handles are released when their entry is deleted, so this is also what
    the ``Entry`` accessors raise for a deleted entry.
    """

    code = "registry::not-found"

    def __init__(self, handle: str, entry_id: Optional[int] = None):
        self.handle = handle
        super().__init__(f'could not find entry "{handle}"', entry_id=entry_id)


class InvalidStrategyError(RegistryError):
    """An unknown search matching strategy was requested."""

    code = "registry::invalid-strategy"


class InvalidPatternError(RegistryError):
    """A regular-expression search pattern failed to compile."""

    code = "registry::invalid-pattern"


class AlreadyOwnedError(RegistryError):
    """A path being mapped is already owned by an entry."""

    code = "registry::already-owned"

    def __init__(self, path: str, owner_id: Optional[int] = None):
        self.path = path
        self.owner_id = owner_id
        super().__init__(f'an existing port owns "{path}"')


class NotOwnedError(RegistryError):
    """A path being unmapped is not owned by the given entry."""

    code = "registry::not-owned"

    def __init__(self, path: str, completed: int = 0):
        self.path = path
        self.completed = completed
        super().__init__(f"{path} is not mapped to this entry")


class StorageError(RegistryError):
    """Catch-all for failures raised by the storage engine."""

    code = "registry::sqlite-error"

    def __init__(self, operation: str, detail: str):
        self.operation = operation
        self.detail = detail
        super().__init__(f"sqlite error: {detail} while executing {operation}")
