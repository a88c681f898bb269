"""Tests for the entry store."""

import pytest
from sqlalchemy import Delete, Insert
from sqlalchemy.exc import OperationalError

from portregistry.errors import (
    ConstraintError,
    DuplicateError,
    HandleNotFoundError,
    InvalidEntryError,
    InvalidKeyError,
    InvalidPatternError,
    InvalidStrategyError,
    StorageError,
)
from portregistry.storage.entries import (
    ENTRY_PROPERTIES,
    EntryRecord,
    EntryState,
    MatchStrategy,
    validate_key,
)
from portregistry.storage.manager import Registry


@pytest.fixture
def store(registry: Registry):
    return registry.entries


class TestCreate:
    def test_create_sets_identity(self, store):
        entry = store.create("vim", "7.1.002", 0, "multibyte +", 0)

        assert entry.handle.startswith("entry")
        assert entry.get("name") == "vim"
        assert entry.get("version") == "7.1.002"
        assert entry.get("revision") == "0"
        assert entry.get("epoch") == "0"
        assert entry.get("variants") == "multibyte +"

    def test_create_leaves_other_properties_unset(self, store):
        entry = store.create("zlib", "1.2.3", 1)

        assert entry.get("state") is None
        assert entry.get("url") is None
        assert entry.get("portfile") is None
        assert entry.get("location") is None

    def test_create_records_date(self, store):
        entry = store.create("zlib", "1.2.3", 1)

        date = entry.get("date")
        assert date is not None
        assert date.isdigit()

    def test_identical_entry_is_duplicate(self, store):
        store.create("vim", "7.1.002", 0, "multibyte +", 0)

        with pytest.raises(DuplicateError):
            store.create("vim", "7.1.002", 0, "multibyte +", 0)

    def test_distinct_variants_are_not_duplicates(self, store):
        store.create("vim", "7.1.002", 0, "multibyte +", 0)
        store.create("vim", "7.1.002", 0, "", 0)

        assert store.count() == 2

    def test_equivalent_version_is_duplicate(self, store):
        """Test that versions equal under the VERSION collation collide."""
        store.create("pcre", "7.1", 1, "", 0)

        with pytest.raises(DuplicateError):
            store.create("pcre", "7.01", 1, "", 0)

    def test_duplicate_leaves_store_unchanged(self, store):
        store.create("zlib", "1.2.3", 1)

        with pytest.raises(DuplicateError):
            store.create("zlib", "1.2.3", 1)
        assert store.count() == 1

    def test_string_counters_accepted(self, store):
        entry = store.create("zlib", "1.2.3", "2", "", "1")

        assert entry.get("revision") == "2"
        assert entry.get("epoch") == "1"

    def test_counters_stored_without_leading_zeros(self, store):
        entry = store.create("zlib", "1.2.3", "007", "", "01")

        assert entry.get("revision") == "7"
        assert entry.get("epoch") == "1"

    def test_leading_zero_epoch_is_duplicate(self, store):
        store.create("foo", "1.0", 0, "", 1)

        with pytest.raises(DuplicateError):
            store.create("foo", "1.0", 0, "", "01")
        assert store.count() == 1

    def test_leading_zero_counters_found_by_value(self, store):
        entry = store.create("foo", "1.0", "02", "", "01")

        assert store.search({"epoch": 1}) == [entry]
        assert store.search({"epoch": "1", "revision": "2"}) == [entry]
        assert store.lookup("foo", "1.0", 2, "", 1) is entry

    @pytest.mark.parametrize("revision", [-1, "abc", "1.5", True])
    def test_invalid_revision_rejected(self, store, revision):
        with pytest.raises(ConstraintError):
            store.create("zlib", "1.2.3", revision)
        assert store.count() == 0


class TestProperties:
    def test_set_and_get(self, store):
        entry = store.create("vim", "7.1.002")

        entry.set("state", "installed")
        entry.set("portfile", "/ports/editors/vim/Portfile")

        assert entry.get("state") == "installed"
        assert entry.get("portfile") == "/ports/editors/vim/Portfile"

    def test_set_state_enum(self, store):
        entry = store.create("vim", "7.1.002")

        entry.set("state", EntryState.ACTIVE)
        assert entry.get("state") == "active"

    def test_set_none_clears(self, store):
        entry = store.create("vim", "7.1.002")
        entry.set("location", "/opt/local/var/macports/software/vim")

        entry.set("location", None)
        assert entry.get("location") is None

    def test_invalid_key(self, store):
        entry = store.create("vim", "7.1.002")

        with pytest.raises(InvalidKeyError, match="invalid entry property 'color'"):
            entry.get("color")
        with pytest.raises(InvalidKeyError):
            entry.set("color", "red")

    def test_invalid_key_is_key_error(self):
        with pytest.raises(KeyError):
            validate_key("name; DROP TABLE ports")

    def test_set_counter_validated(self, store):
        entry = store.create("vim", "7.1.002")

        with pytest.raises(ConstraintError):
            entry.set("epoch", "-1")
        assert entry.get("epoch") == "0"

    def test_set_violating_uniqueness(self, store):
        first = store.create("vim", "7.1.002")
        second = store.create("vim", "7.1.002", 0, "multibyte +")

        with pytest.raises(ConstraintError):
            second.set("variants", "")
        assert second.get("variants") == "multibyte +"
        assert first.get("variants") == ""

    def test_set_url_violating_uniqueness(self, store):
        """Test that two entries with the same version data can't share a url."""
        vim = store.create("vim", "7.1.002", 0, "multibyte +")
        gvim = store.create("gvim", "7.1.002", 0, "multibyte +")
        gvim.set("url", "file:///ports/editors/gvim")

        vim.set("url", "file:///ports/editors/vim")
        with pytest.raises(ConstraintError):
            gvim.set("url", "file:///ports/editors/vim")
        assert gvim.get("url") == "file:///ports/editors/gvim"
        assert vim.get("url") == "file:///ports/editors/vim"

    def test_set_url_allowed_for_other_versions(self, store):
        old = store.create("vim", "7.1.000")
        new = store.create("vim", "7.1.002")

        old.set("url", "file:///ports/editors/vim")
        new.set("url", "file:///ports/editors/vim")
        assert new.get("url") == "file:///ports/editors/vim"

    def test_set_revision_normalized(self, store):
        entry = store.create("vim", "7.1.002")

        entry.set("revision", "02")
        assert entry.get("revision") == "2"

    def test_set_on_deleted_entry(self, store):
        entry = store.create("vim", "7.1.002")
        store.delete([entry])

        with pytest.raises(InvalidEntryError):
            store.set_property(entry, "state", "installed")
        with pytest.raises(InvalidEntryError):
            store.get_property(entry, "state")

    def test_describe(self, store):
        entry = store.create("zlib", "1.2.3", 1)
        entry.set("state", "active")

        record = entry.describe()
        assert isinstance(record, EntryRecord)
        assert record.id == entry.id
        assert record.name == "zlib"
        assert record.revision == "1"
        assert record.state == "active"
        assert set(record.model_dump()) == {"id", *ENTRY_PROPERTIES}

    def test_quotes_round_trip(self, store):
        """Test that quote characters are stored verbatim."""
        name = "vim'; DROP TABLE ports; --"
        variants = 'multibyte "+" \'x\''
        entry = store.create(name, "7.1.002", 0, variants)

        assert entry.get("name") == name
        assert entry.get("variants") == variants
        assert store.search({"name": name}) == [entry]
        assert store.count() == 1


class TestDelete:
    def test_delete_removes_entries(self, store, sample_entries):
        deleted = store.delete([sample_entries["vim1"], sample_entries["zlib"]])

        assert deleted == 2
        assert store.count() == 3

    def test_delete_frees_files(self, registry, store):
        entry = store.create("vim", "7.1.002")
        entry.map(["/opt/local/bin/vim", "/opt/local/bin/vimdiff"])

        store.delete([entry])

        assert registry.files.owner("/opt/local/bin/vim") is None
        replacement = store.create("vim", "7.1.003")
        replacement.map(["/opt/local/bin/vim"])
        assert replacement.files() == ["/opt/local/bin/vim"]

    def test_delete_releases_handles(self, store):
        entry = store.create("vim", "7.1.002")
        handle = entry.handle

        store.delete([entry])

        assert not store.exists(handle)
        with pytest.raises(HandleNotFoundError):
            entry.get("name")

    def test_delete_missing_entry_keeps_earlier_deletions(self, store, sample_entries):
        gone = sample_entries["pcre"]
        store.delete([gone])

        with pytest.raises(InvalidEntryError) as exc_info:
            store.delete([sample_entries["vim1"], gone, sample_entries["zlib"]])

        assert exc_info.value.completed == 1
        assert exc_info.value.entry_id == gone.id
        remaining = {entry.get("name") + entry.get("version") for entry in store}
        assert remaining == {"vim7.1.002", "zlib1.2.3"}

    def test_delete_nothing(self, store):
        assert store.delete([]) == 0


class TestSearch:
    def test_search_all(self, store, sample_entries):
        assert store.search() == list(sample_entries.values())

    def test_search_exact(self, store, sample_entries):
        result = store.search({"name": "vim", "version": "7.1.002"})

        assert result == [sample_entries["vim2"], sample_entries["vim3"]]

    def test_search_pairs(self, store, sample_entries):
        result = store.search([("name", "vim"), ("variants", "")])

        assert result == [sample_entries["vim2"]]

    def test_search_no_match(self, store, sample_entries):
        assert store.search({"name": "perl5"}) == []

    def test_search_glob(self, store, sample_entries):
        result = store.search({"name": "*i*"}, strategy=MatchStrategy.GLOB)

        assert result == [
            sample_entries["vim1"],
            sample_entries["vim2"],
            sample_entries["vim3"],
            sample_entries["zlib"],
        ]

    def test_search_glob_is_case_sensitive(self, store, sample_entries):
        assert store.search({"name": "VIM"}, strategy="glob") == []

    def test_search_regexp(self, store, sample_entries):
        result = store.search({"state": "^inst"}, strategy="regexp")

        assert result == [
            sample_entries["vim1"],
            sample_entries["vim2"],
            sample_entries["pcre"],
        ]

    def test_search_regexp_skips_null(self, store, sample_entries):
        store.create("perl5", "5.8.8")

        result = store.search({"state": "."}, strategy=MatchStrategy.REGEXP)
        assert len(result) == 5

    def test_search_returns_same_objects(self, store, sample_entries):
        first = store.search({"name": "zlib"})
        second = store.search({"name": "zlib"})

        assert first[0] is second[0] is sample_entries["zlib"]

    def test_invalid_strategy(self, store):
        with pytest.raises(InvalidStrategyError, match="invalid matching strategy"):
            store.search({"name": "vim"}, strategy="fuzzy")

    def test_invalid_pattern(self, store, sample_entries):
        with pytest.raises(InvalidPatternError):
            store.search({"name": "vim("}, strategy="regexp")

    def test_invalid_search_key(self, store):
        with pytest.raises(InvalidKeyError):
            store.search({"colour": "red"})

    def test_iteration(self, store, sample_entries):
        assert list(store) == list(sample_entries.values())
        assert store.count() == 5


class TestQueries:
    def test_install_scenario(self, store, sample_entries):
        """Test the state searches the install workflow relies on."""
        installed_or_active = store.search(
            {"state": "^(installed|active)$"}, strategy=MatchStrategy.REGEXP
        )
        active = store.search({"state": "active"})

        assert len(installed_or_active) == 5
        assert active == [sample_entries["vim3"], sample_entries["zlib"]]

    def test_installed(self, store, sample_entries):
        assert len(store.installed()) == 5

    def test_installed_by_name(self, store, sample_entries):
        assert store.installed("vim") == [
            sample_entries["vim1"],
            sample_entries["vim2"],
            sample_entries["vim3"],
        ]

    def test_installed_by_name_and_version(self, store, sample_entries):
        assert store.installed("vim", "7.1.002") == [
            sample_entries["vim2"],
            sample_entries["vim3"],
        ]

    def test_installed_skips_imported(self, store, sample_entries):
        sample_entries["pcre"].set("state", "imported")

        assert sample_entries["pcre"] not in store.installed()

    def test_active(self, store, sample_entries):
        assert store.active() == [sample_entries["vim3"], sample_entries["zlib"]]
        assert store.active("vim") == [sample_entries["vim3"]]
        assert store.active("pcre") == []

    def test_lookup(self, store, sample_entries):
        assert store.lookup("vim", "7.1.000", 0, "multibyte +") is sample_entries["vim1"]
        assert store.lookup("vim", "7.1.000", 0, "") is None

    def test_latest(self, store, sample_entries):
        assert store.latest("vim") is sample_entries["vim3"]
        assert store.latest("perl5") is None

    def test_latest_prefers_epoch(self, store):
        store.create("foo", "2.0", 0, "", 0)
        newer = store.create("foo", "1.0", 0, "", 1)

        assert store.latest("foo") is newer

    def test_latest_compares_versions(self, store):
        store.create("foo", "1.9")
        newer = store.create("foo", "1.10")
        store.create("foo", "1.2")

        assert store.latest("foo") is newer


class TestExists:
    def test_exists(self, store):
        entry = store.create("vim", "7.1.002")

        assert store.exists(entry.handle)
        assert not store.exists("entry9999")

    @pytest.mark.parametrize("handle", [None, 0, b"entry0"])
    def test_exists_non_string(self, store, handle):
        assert not store.exists(handle)


class TestStorageFailures:
    def test_create_failure(self, store, fail_statement):
        fail_statement(Insert, "ports")

        with pytest.raises(StorageError) as exc_info:
            store.create("vim", "7.1.002")

        assert exc_info.value.operation == "create entry"
        assert "disk I/O error" in exc_info.value.detail
        assert isinstance(exc_info.value.__cause__, OperationalError)
        assert exc_info.value.code == "registry::sqlite-error"
        assert store.count() == 0

    def test_delete_failure_rolls_back_batch(self, store, sample_entries, fail_statement):
        fail_statement(Delete, "ports", nth=2)
        vim1, vim2 = sample_entries["vim1"], sample_entries["vim2"]

        with pytest.raises(StorageError) as exc_info:
            store.delete([vim1, vim2])

        assert exc_info.value.operation == "delete entries"
        assert isinstance(exc_info.value.__cause__, OperationalError)
        assert store.count() == 5
        assert store.exists(vim1.handle)
        assert vim1.get("version") == "7.1.000"
