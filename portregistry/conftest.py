"""Shared test fixtures for registry tests."""

import os
import random
import sqlite3

import pytest
from faker import Faker
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from portregistry.storage.factories import FileMappingFactory, PortFactory
from portregistry.storage.manager import Registry


@pytest.fixture(scope="session", autouse=True)
def setup_factory_seed():
    """Configure factory_boy/Faker to use a deterministic seed for reproducibility.

    The seed can be set via FACTORY_SEED environment variable, or will be
    randomly generated. The seed is printed to stdout for reproducibility.
    """
    seed = os.environ.get("FACTORY_SEED")
    if seed:
        seed = int(seed)
    else:
        seed = random.randint(0, 2**32 - 1)

    print(f"\n{'=' * 70}")
    print(f"Factory seed: {seed}")
    print(f"To reproduce this test run, set: FACTORY_SEED={seed}")
    print(f"{'=' * 70}\n")

    Faker.seed(seed)
    random.seed(seed)

    return seed


@pytest.fixture
def fail_statement(monkeypatch):
    """Make the nth statement of a given kind against a table fail.

    Usage: ``fail_statement(Insert, "files", nth=2)``. The failure is raised
    from ``Session.execute`` as an OperationalError wrapping a sqlite3
    "disk I/O error"; every other statement runs normally.
    """

    def install(statement_type, table_name: str, nth: int = 1) -> None:
        execute = Session.execute
        calls = 0

        def failing_execute(self, statement, *args, **kwargs):
            nonlocal calls
            if isinstance(statement, statement_type) and statement.table.name == table_name:
                calls += 1
                if calls == nth:
                    raise OperationalError(
                        str(statement), {}, sqlite3.OperationalError("disk I/O error")
                    )
            return execute(self, statement, *args, **kwargs)

        monkeypatch.setattr(Session, "execute", failing_execute)

    return install


@pytest.fixture
def registry_path(tmp_path):
    return tmp_path / "registry.db"


@pytest.fixture
def registry(registry_path):
    """An open registry backed by a temporary file."""
    reg = Registry(registry_path)
    yield reg
    if reg.is_open:
        reg.close()


@pytest.fixture
def registry_session(registry):
    """A session on the registry with the model factories bound to it."""
    with registry.session() as session:
        PortFactory._meta.sqlalchemy_session = session  # type: ignore[misc]
        FileMappingFactory._meta.sqlalchemy_session = session  # type: ignore[misc]
        yield session


@pytest.fixture
def sample_entries(registry):
    """The vim/zlib/pcre scenario used throughout the registry tests.

    Returns a dict keyed by short names.
    """
    store = registry.entries
    entries = {
        "vim1": store.create("vim", "7.1.000", 0, "multibyte +", 0),
        "vim2": store.create("vim", "7.1.002", 0, "", 0),
        "vim3": store.create("vim", "7.1.002", 0, "multibyte +", 0),
        "zlib": store.create("zlib", "1.2.3", 1, "", 0),
        "pcre": store.create("pcre", "7.1", 1, "utf8 +", 0),
    }
    states = {
        "vim1": "installed",
        "vim2": "installed",
        "vim3": "active",
        "zlib": "active",
        "pcre": "installed",
    }
    for key, state in states.items():
        entries[key].set("state", state)
    return entries
